"""Billing state machines - allowed status transitions for payments, subscriptions and invoices"""

from enum import Enum

from fastapi import HTTPException


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    PAST_DUE = "past_due"
    TRIALING = "trialing"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class InvalidTransitionError(ValueError):
    """Raised when a status change is not allowed by the state machine"""

    def __init__(self, kind: str, current: str, target: str):
        super().__init__(f"Cannot move {kind} from '{current}' to '{target}'")
        self.kind = kind
        self.current = current
        self.target = target


PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {
        PaymentStatus.PROCESSING,
        PaymentStatus.CANCELLED,
        # Stripe can report a failed or succeeded intent before confirm is called
        PaymentStatus.FAILED,
        PaymentStatus.COMPLETED,
    },
    PaymentStatus.PROCESSING: {
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    },
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: set(),
    PaymentStatus.CANCELLED: set(),
    PaymentStatus.REFUNDED: set(),
}

SUBSCRIPTION_TRANSITIONS = {
    SubscriptionStatus.TRIALING: {
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.PAST_DUE,
        SubscriptionStatus.CANCELLED,
        SubscriptionStatus.EXPIRED,
    },
    SubscriptionStatus.ACTIVE: {
        SubscriptionStatus.PAST_DUE,
        SubscriptionStatus.CANCELLED,
        SubscriptionStatus.EXPIRED,
    },
    SubscriptionStatus.PAST_DUE: {
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELLED,
        SubscriptionStatus.EXPIRED,
    },
    SubscriptionStatus.INACTIVE: {SubscriptionStatus.ACTIVE},
    SubscriptionStatus.CANCELLED: set(),
    SubscriptionStatus.EXPIRED: set(),
}

INVOICE_TRANSITIONS = {
    # A payment can settle an invoice before it was ever emailed
    InvoiceStatus.DRAFT: {InvoiceStatus.SENT, InvoiceStatus.PAID, InvoiceStatus.CANCELLED},
    InvoiceStatus.SENT: {InvoiceStatus.PAID, InvoiceStatus.OVERDUE, InvoiceStatus.CANCELLED},
    InvoiceStatus.OVERDUE: {InvoiceStatus.PAID, InvoiceStatus.CANCELLED},
    InvoiceStatus.PAID: {InvoiceStatus.REFUNDED},
    InvoiceStatus.CANCELLED: set(),
    InvoiceStatus.REFUNDED: set(),
}

_MACHINES = {
    "payment": (PaymentStatus, PAYMENT_TRANSITIONS),
    "subscription": (SubscriptionStatus, SUBSCRIPTION_TRANSITIONS),
    "invoice": (InvoiceStatus, INVOICE_TRANSITIONS),
}


def can_transition(kind: str, current: str, target: str) -> bool:
    """Same-state moves are allowed (no-op); unknown statuses never are"""
    status_enum, transitions = _MACHINES[kind]
    try:
        current_status = status_enum(current)
        target_status = status_enum(target)
    except ValueError:
        return False
    if current_status == target_status:
        return True
    return target_status in transitions[current_status]


def ensure_transition(kind: str, current: str, target: str) -> None:
    if not can_transition(kind, current, target):
        raise InvalidTransitionError(kind, current, target)


def apply_transition(kind: str, row, target: str) -> None:
    """Move an ORM row to target status or fail with HTTP 409"""
    try:
        ensure_transition(kind, row.status, target)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    row.status = target
