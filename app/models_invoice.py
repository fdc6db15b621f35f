"""
Billing Models - subscriptions, payments, invoices and invoice line items
All monetary amounts are stored as integers in minor currency units (centavos/cents)
"""

from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from .database import Base


class Subscription(Base):
    """Recurring plan a user pays for"""

    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    plan = Column(String(50), nullable=False)  # basic, premium, professional
    # active, inactive, cancelled, expired, past_due, trialing
    status = Column(String(20), default="active", nullable=False, index=True)
    interval = Column(String(20), default="monthly", nullable=False)  # monthly, quarterly, yearly
    amount = Column(Integer, nullable=False)
    currency = Column(String(3), default="MXN", nullable=False)

    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True, index=True)
    trial_start = Column(DateTime, nullable=True)
    trial_end = Column(DateTime, nullable=True)

    # Cancellation
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    # Stripe references
    stripe_subscription_id = Column(String(255), unique=True, nullable=True)
    stripe_price_id = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="subscriptions")
    invoices = relationship("Invoice", back_populates="subscription")


class Payment(Base):
    """Single charge attempt tracked through a Stripe PaymentIntent"""

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    amount = Column(Integer, nullable=False)
    currency = Column(String(3), default="MXN", nullable=False)
    # pending, processing, completed, failed, cancelled, refunded
    status = Column(String(20), default="pending", nullable=False, index=True)
    payment_method = Column(String(20), default="card", nullable=True)  # card, bank_transfer, oxxo, spei
    payment_type = Column(
        String(20), default="one_time", nullable=False
    )  # consultation, subscription, one_time
    description = Column(Text, nullable=True)

    # Stripe references
    stripe_payment_intent_id = Column(String(255), unique=True, nullable=True)
    stripe_customer_id = Column(String(255), nullable=True)
    failure_reason = Column(Text, nullable=True)

    # Refunds (partial refunds keep refund_amount < amount)
    refund_amount = Column(Integer, nullable=True)
    refund_reason = Column(Text, nullable=True)
    refunded_at = Column(DateTime, nullable=True)

    # "metadata" is reserved on declarative classes
    extra_data = Column("metadata", JSON, nullable=True)
    processed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="payments")


class Invoice(Base):
    """Invoice issued to a user, optionally for a subscription period or payment"""

    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    subscription_id = Column(
        Integer, ForeignKey("subscriptions.id", ondelete="SET NULL"), nullable=True, index=True
    )
    payment_id = Column(Integer, ForeignKey("payments.id", ondelete="SET NULL"), nullable=True)

    invoice_number = Column(String(50), unique=True, nullable=False, index=True)
    # draft, sent, paid, overdue, cancelled, refunded
    status = Column(String(20), default="draft", nullable=False, index=True)

    # Pricing
    subtotal = Column(Integer, nullable=False)
    tax_amount = Column(Integer, default=0, nullable=False)
    total_amount = Column(Integer, nullable=False)
    currency = Column(String(3), default="MXN", nullable=False)

    due_date = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    # Snapshots taken at creation time so later profile edits don't alter issued invoices
    customer_info = Column(JSON, nullable=True)
    company_info = Column(JSON, nullable=True)

    # PDF
    pdf_url = Column(String(500), nullable=True)

    sent_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="invoices")
    subscription = relationship("Subscription", back_populates="invoices")
    payment = relationship("Payment")
    items = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.id",
    )


class InvoiceItem(Base):
    """Invoice line item"""

    __tablename__ = "invoice_items"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(
        Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    description = Column(String(500), nullable=False)
    quantity = Column(Integer, default=1, nullable=False)
    unit_price = Column(Integer, nullable=False)
    amount = Column(Integer, nullable=False)  # quantity * unit_price

    invoice = relationship("Invoice", back_populates="items")
