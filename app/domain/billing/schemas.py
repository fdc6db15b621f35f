"""Billing domain schemas - Pydantic models for validation"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .pricing import (
    DEFAULT_CURRENCY,
    PAYMENT_TYPES,
    PLAN_MONTHLY_PRICES,
    SUBSCRIPTION_INTERVALS,
    SUPPORTED_CURRENCIES,
    validate_amount,
)


class PaymentIntentCreate(BaseModel):
    """Schema for POST /payments/intent"""

    amount: int
    currency: str = DEFAULT_CURRENCY
    description: Optional[str] = None
    payment_type: str = "consultation"
    invoice_id: Optional[int] = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: int) -> int:
        if not validate_amount(v):
            raise ValueError("amount must be between 1 and 999999999 minor units")
        return v

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        v = v.upper()
        if v not in SUPPORTED_CURRENCIES:
            raise ValueError(f"currency must be one of {', '.join(SUPPORTED_CURRENCIES)}")
        return v

    @field_validator("payment_type")
    @classmethod
    def validate_payment_type(cls, v: str) -> str:
        if v not in PAYMENT_TYPES:
            raise ValueError(f"payment_type must be one of {', '.join(PAYMENT_TYPES)}")
        return v


class ConfirmPaymentRequest(BaseModel):
    """Schema for POST /payments/intent/{id}/confirm"""

    payment_method_id: Optional[str] = None


class SubscriptionCreate(BaseModel):
    """Schema for POST /payments/subscriptions"""

    plan: str
    interval: str = "monthly"
    price_id: Optional[str] = None
    trial_days: Optional[int] = Field(default=None, ge=0, le=90)

    @field_validator("plan")
    @classmethod
    def validate_plan(cls, v: str) -> str:
        if v not in PLAN_MONTHLY_PRICES:
            raise ValueError(f"plan must be one of {', '.join(PLAN_MONTHLY_PRICES)}")
        return v

    @field_validator("interval")
    @classmethod
    def validate_interval(cls, v: str) -> str:
        if v not in SUBSCRIPTION_INTERVALS:
            raise ValueError(f"interval must be one of {', '.join(SUBSCRIPTION_INTERVALS)}")
        return v


class CancelSubscriptionRequest(BaseModel):
    """Schema for POST /payments/subscriptions/{id}/cancel"""

    immediately: bool = False
    reason: Optional[str] = None


class RefundRequest(BaseModel):
    """Schema for POST /payments/admin/payments/{id}/refund"""

    amount: Optional[int] = None
    reason: Optional[str] = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and not validate_amount(v):
            raise ValueError("amount must be between 1 and 999999999 minor units")
        return v


class InvoiceItemIn(BaseModel):
    """A line item passed to invoice creation"""

    description: str
    quantity: int = Field(ge=1)
    unit_price: int = Field(ge=0)
