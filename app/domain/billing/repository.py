"""Billing repository - Database operations for payments, subscriptions and invoices"""

from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from ...models import User
from ...models_invoice import Invoice, Payment, Subscription

OPEN_SUBSCRIPTION_STATUSES = ("active", "trialing", "past_due")


class BillingRepository:
    """Repository for billing database operations"""

    @staticmethod
    def get_user_by_id(db: Session, user_id: str) -> Optional[User]:
        """Get user by ID"""
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_user_by_stripe_customer_id(db: Session, customer_id: str) -> Optional[User]:
        """Get user by Stripe customer ID"""
        return db.query(User).filter(User.stripe_customer_id == customer_id).first()

    # Payments

    @staticmethod
    def get_payment(db: Session, payment_id: int) -> Optional[Payment]:
        return db.query(Payment).filter(Payment.id == payment_id).first()

    @staticmethod
    def get_payment_by_intent(db: Session, intent_id: str) -> Optional[Payment]:
        return db.query(Payment).filter(Payment.stripe_payment_intent_id == intent_id).first()

    @staticmethod
    def list_payments(
        db: Session,
        page: int,
        limit: int,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Tuple[list, int]:
        """Newest first; returns (rows, total)"""
        query = db.query(Payment)
        if user_id:
            query = query.filter(Payment.user_id == user_id)
        if status:
            query = query.filter(Payment.status == status)
        total = query.count()
        rows = (
            query.order_by(Payment.created_at.desc(), Payment.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return rows, total

    # Subscriptions

    @staticmethod
    def get_subscription(db: Session, subscription_id: int) -> Optional[Subscription]:
        return db.query(Subscription).filter(Subscription.id == subscription_id).first()

    @staticmethod
    def get_subscription_by_stripe_id(db: Session, stripe_id: str) -> Optional[Subscription]:
        return (
            db.query(Subscription).filter(Subscription.stripe_subscription_id == stripe_id).first()
        )

    @staticmethod
    def get_open_subscription(
        db: Session, user_id: str, statuses=OPEN_SUBSCRIPTION_STATUSES
    ) -> Optional[Subscription]:
        """Most recent subscription in one of the given statuses"""
        return (
            db.query(Subscription)
            .filter(Subscription.user_id == user_id, Subscription.status.in_(statuses))
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .first()
        )

    @staticmethod
    def subscriptions_renewing_on(db: Session, day: date) -> list:
        """Active subscriptions whose current period ends on the given day"""
        start = datetime.combine(day, time.min)
        return (
            db.query(Subscription)
            .filter(
                Subscription.status == "active",
                Subscription.current_period_end >= start,
                Subscription.current_period_end < start + timedelta(days=1),
            )
            .order_by(Subscription.id)
            .all()
        )

    # Invoices

    @staticmethod
    def get_invoice(db: Session, invoice_id: int) -> Optional[Invoice]:
        """Invoice with its items loaded"""
        return (
            db.query(Invoice)
            .options(selectinload(Invoice.items))
            .filter(Invoice.id == invoice_id)
            .first()
        )

    @staticmethod
    def invoice_number_exists(db: Session, invoice_number: str) -> bool:
        return (
            db.query(Invoice.id).filter(Invoice.invoice_number == invoice_number).first()
            is not None
        )

    @staticmethod
    def add_invoice(db: Session, invoice: Invoice, items: list) -> Invoice:
        db.add(invoice)
        db.flush()
        for item in items:
            item.invoice_id = invoice.id
            db.add(item)
        db.flush()
        return invoice

    @staticmethod
    def subscription_invoiced_on(db: Session, subscription_id: int, day: date) -> bool:
        start = datetime.combine(day, time.min)
        return (
            db.query(Invoice.id)
            .filter(
                Invoice.subscription_id == subscription_id,
                Invoice.created_at >= start,
                Invoice.created_at < start + timedelta(days=1),
            )
            .first()
            is not None
        )

    @staticmethod
    def list_invoices(
        db: Session, user_id: str, page: int, limit: int, status: Optional[str] = None
    ) -> Tuple[list, int]:
        query = db.query(Invoice).filter(Invoice.user_id == user_id)
        if status:
            query = query.filter(Invoice.status == status)
        total = query.count()
        rows = (
            query.options(selectinload(Invoice.items))
            .order_by(Invoice.created_at.desc(), Invoice.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return rows, total

    @staticmethod
    def invoice_stats_by_status(db: Session) -> list:
        """Rows of (status, count, total_amount)"""
        return (
            db.query(
                Invoice.status,
                func.count(Invoice.id),
                func.coalesce(func.sum(Invoice.total_amount), 0),
            )
            .group_by(Invoice.status)
            .all()
        )

    @staticmethod
    def invoices_for_payment(db: Session, payment_id: int) -> list:
        return db.query(Invoice).filter(Invoice.payment_id == payment_id).all()
