"""Payment service - Business logic for payments, subscriptions and Stripe webhooks"""

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

import stripe
from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...models import User
from ...models_invoice import Payment, Subscription
from ...services.audit_service import create_audit_log
from ...services.notification_service import create_notification
from ...services.webhook_event_service import claim_webhook_event, mark_webhook_event_processed
from .invoice_service import InvoiceService
from .pricing import (
    DEFAULT_CURRENCY,
    INTERVAL_MONTHS,
    format_currency,
    plan_amount,
    validate_amount,
    validate_currency,
)
from .repository import BillingRepository
from .states import (
    InvoiceStatus,
    PaymentStatus,
    SubscriptionStatus,
    apply_transition,
    can_transition,
)
from .stripe_service import StripeGateway

logger = logging.getLogger(__name__)


class StripeEventKind(str, Enum):
    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"


def parse_stripe_event_kind(event_type: Optional[str]) -> Optional[StripeEventKind]:
    try:
        return StripeEventKind(event_type)
    except ValueError:
        return None


# Stripe subscription statuses -> local statuses
STRIPE_SUBSCRIPTION_STATUSES = {
    "active": SubscriptionStatus.ACTIVE.value,
    "trialing": SubscriptionStatus.TRIALING.value,
    "past_due": SubscriptionStatus.PAST_DUE.value,
    "unpaid": SubscriptionStatus.PAST_DUE.value,
    "canceled": SubscriptionStatus.CANCELLED.value,
    "incomplete": SubscriptionStatus.INACTIVE.value,
    "incomplete_expired": SubscriptionStatus.EXPIRED.value,
    "paused": SubscriptionStatus.INACTIVE.value,
}


def _from_epoch(value) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def _subscription_periods(stripe_subscription) -> tuple:
    """(start, end) from the subscription, or from its first item on newer API versions"""
    start = stripe_subscription.get("current_period_start")
    end = stripe_subscription.get("current_period_end")
    if not start or not end:
        items = (stripe_subscription.get("items") or {}).get("data") or []
        if items:
            start = start or items[0].get("current_period_start")
            end = end or items[0].get("current_period_end")
    return _from_epoch(start), _from_epoch(end)


def _invoice_subscription_id(stripe_invoice: dict) -> Optional[str]:
    subscription_id = stripe_invoice.get("subscription")
    if subscription_id:
        return subscription_id if isinstance(subscription_id, str) else subscription_id.get("id")
    details = ((stripe_invoice.get("parent") or {}).get("subscription_details")) or {}
    return details.get("subscription")


def serialize_payment(payment: Payment) -> dict:
    return {
        "id": payment.id,
        "user_id": payment.user_id,
        "amount": payment.amount,
        "currency": payment.currency,
        "status": payment.status,
        "payment_method": payment.payment_method,
        "payment_type": payment.payment_type,
        "description": payment.description,
        "stripe_payment_intent_id": payment.stripe_payment_intent_id,
        "failure_reason": payment.failure_reason,
        "refund_amount": payment.refund_amount,
        "refund_reason": payment.refund_reason,
        "refunded_at": payment.refunded_at,
        "metadata": payment.extra_data,
        "processed_at": payment.processed_at,
        "created_at": payment.created_at,
    }


def serialize_subscription(subscription: Subscription) -> dict:
    return {
        "id": subscription.id,
        "user_id": subscription.user_id,
        "plan": subscription.plan,
        "status": subscription.status,
        "interval": subscription.interval,
        "amount": subscription.amount,
        "currency": subscription.currency,
        "current_period_start": subscription.current_period_start,
        "current_period_end": subscription.current_period_end,
        "trial_start": subscription.trial_start,
        "trial_end": subscription.trial_end,
        "cancel_at_period_end": subscription.cancel_at_period_end,
        "cancelled_at": subscription.cancelled_at,
        "cancellation_reason": subscription.cancellation_reason,
        "stripe_subscription_id": subscription.stripe_subscription_id,
        "created_at": subscription.created_at,
    }


class PaymentService:
    """Service for payment and subscription operations"""

    def __init__(
        self,
        db: Session,
        gateway: Optional[StripeGateway] = None,
        invoice_service: Optional[InvoiceService] = None,
    ):
        self.db = db
        self.repo = BillingRepository()
        self.gateway = gateway or StripeGateway()
        self._invoice_service = invoice_service

    @property
    def invoices(self) -> InvoiceService:
        if self._invoice_service is None:
            self._invoice_service = InvoiceService(self.db)
        return self._invoice_service

    def _require_gateway(self) -> None:
        if not self.gateway.is_available():
            raise HTTPException(status_code=503, detail="Payment provider not configured")

    def _get_owned_payment(self, payment_id: int, user: User) -> Payment:
        payment = self.repo.get_payment(self.db, payment_id)
        if not payment:
            raise HTTPException(status_code=404, detail="Payment not found")
        if payment.user_id != user.id and user.role != "admin":
            raise HTTPException(status_code=403, detail="Access denied")
        return payment

    # ============================================================================
    # PAYMENTS
    # ============================================================================

    async def create_payment_intent(
        self,
        user: User,
        amount: int,
        currency: str = DEFAULT_CURRENCY,
        description: Optional[str] = None,
        payment_type: str = "consultation",
        invoice_id: Optional[int] = None,
    ) -> dict:
        """Create a Stripe payment intent and a matching pending payment row"""
        if not validate_amount(amount):
            raise HTTPException(status_code=400, detail="Invalid payment amount")
        if not validate_currency(currency):
            raise HTTPException(status_code=400, detail=f"Unsupported currency: {currency}")
        self._require_gateway()

        metadata = {"user_id": user.id, "payment_type": payment_type}
        if invoice_id is not None:
            invoice = self.repo.get_invoice(self.db, invoice_id)
            if not invoice or invoice.user_id != user.id:
                raise HTTPException(status_code=404, detail="Invoice not found")
            metadata["invoice_id"] = str(invoice_id)

        try:
            customer_id = await self.gateway.get_or_create_customer(user)
            intent = await self.gateway.create_payment_intent(
                amount=amount,
                currency=currency,
                customer_id=customer_id,
                description=description,
                metadata=metadata,
            )
        except stripe.StripeError as e:
            logger.error(f"❌ Stripe error creating payment intent for {user.id}: {e}")
            raise HTTPException(status_code=502, detail="Payment provider error")

        try:
            user.stripe_customer_id = customer_id
            payment = Payment(
                user_id=user.id,
                amount=amount,
                currency=currency,
                status=PaymentStatus.PENDING.value,
                payment_method="card",
                payment_type=payment_type,
                description=description,
                stripe_payment_intent_id=intent["id"],
                stripe_customer_id=customer_id,
                extra_data=metadata,
            )
            self.db.add(payment)
            self.db.flush()
            create_audit_log(
                self.db,
                action="payment_intent_created",
                user_id=user.id,
                resource="payment",
                resource_id=payment.id,
                details={"amount": amount, "currency": currency, "payment_intent_id": intent["id"]},
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to record payment intent {intent['id']} for {user.id}: {e}")
            raise

        logger.info(f"✅ Payment intent {intent['id']} created for user {user.id} ({format_currency(amount, currency)})")
        return {
            "payment_id": payment.id,
            "client_secret": intent["client_secret"],
            "amount": amount,
            "currency": currency,
        }

    async def confirm_payment(
        self, payment_id: int, user: User, payment_method_id: Optional[str] = None
    ) -> dict:
        payment = self._get_owned_payment(payment_id, user)
        self._require_gateway()
        apply_transition("payment", payment, PaymentStatus.PROCESSING.value)

        try:
            await self.gateway.confirm_payment_intent(payment.stripe_payment_intent_id, payment_method_id)
        except stripe.StripeError as e:
            self.db.rollback()
            logger.error(f"❌ Stripe error confirming payment {payment_id}: {e}")
            raise HTTPException(status_code=502, detail="Payment provider error")

        self.db.commit()
        logger.info(f"✅ Payment {payment_id} confirmed, now processing")
        return serialize_payment(payment)

    def process_successful_payment(self, intent: dict) -> dict:
        payment = self.repo.get_payment_by_intent(self.db, intent.get("id"))
        if not payment:
            logger.warning(f"⚠️ No payment row for succeeded intent {intent.get('id')}")
            return {"status": "payment_not_found"}
        if not can_transition("payment", payment.status, PaymentStatus.COMPLETED.value):
            logger.warning(f"⚠️ Payment {payment.id} is {payment.status}; ignoring success event")
            return {"status": "ignored", "payment_id": payment.id}
        if payment.status == PaymentStatus.COMPLETED.value:
            return {"status": "already_completed", "payment_id": payment.id}

        payment.status = PaymentStatus.COMPLETED.value
        payment.processed_at = datetime.utcnow()
        create_notification(
            self.db,
            user_id=payment.user_id,
            notification_type="payment_successful",
            title="Pago recibido",
            message=f"Tu pago de {format_currency(payment.amount, payment.currency)} se ha completado",
            data={"payment_id": payment.id},
        )
        create_audit_log(
            self.db,
            action="payment_completed",
            user_id=payment.user_id,
            resource="payment",
            resource_id=payment.id,
            details={"amount": payment.amount, "payment_intent_id": payment.stripe_payment_intent_id},
        )

        invoice_id = (intent.get("metadata") or {}).get("invoice_id") or (
            payment.extra_data or {}
        ).get("invoice_id")
        if invoice_id:
            self._settle_invoice(int(invoice_id), payment.id)

        self.db.flush()
        logger.info(f"✅ Payment {payment.id} completed")
        return {"status": "completed", "payment_id": payment.id}

    def _settle_invoice(self, invoice_id: int, payment_id: int) -> None:
        invoice = self.repo.get_invoice(self.db, invoice_id)
        if invoice is None:
            logger.warning(f"⚠️ Payment {payment_id} references unknown invoice {invoice_id}")
            return
        if invoice.status == InvoiceStatus.PAID.value:
            return
        if not can_transition("invoice", invoice.status, InvoiceStatus.PAID.value):
            logger.warning(
                f"⚠️ Invoice {invoice.invoice_number} is {invoice.status}; not marking paid"
            )
            return
        self.invoices.record_invoice_paid(invoice, payment_id)

    def process_failed_payment(self, intent: dict) -> dict:
        payment = self.repo.get_payment_by_intent(self.db, intent.get("id"))
        if not payment:
            logger.warning(f"⚠️ No payment row for failed intent {intent.get('id')}")
            return {"status": "payment_not_found"}
        if not can_transition("payment", payment.status, PaymentStatus.FAILED.value):
            logger.warning(f"⚠️ Payment {payment.id} is {payment.status}; ignoring failure event")
            return {"status": "ignored", "payment_id": payment.id}

        error = intent.get("last_payment_error") or {}
        reason = error.get("message") or "Payment failed"
        payment.status = PaymentStatus.FAILED.value
        payment.failure_reason = reason
        create_notification(
            self.db,
            user_id=payment.user_id,
            notification_type="payment_failed",
            title="Pago rechazado",
            message=f"Tu pago de {format_currency(payment.amount, payment.currency)} no se pudo completar",
            data={"payment_id": payment.id, "reason": reason},
        )
        create_audit_log(
            self.db,
            action="payment_failed",
            user_id=payment.user_id,
            resource="payment",
            resource_id=payment.id,
            details={"failure_reason": reason, "payment_intent_id": payment.stripe_payment_intent_id},
            success=False,
            error_message=reason,
        )
        self.db.flush()
        logger.info(f"❌ Payment {payment.id} failed: {reason}")
        return {"status": "failed", "payment_id": payment.id}

    async def refund_payment(
        self,
        payment_id: int,
        amount: Optional[int] = None,
        reason: Optional[str] = None,
        admin: Optional[User] = None,
    ) -> dict:
        """Refund a completed payment in full or in part"""
        payment = self.repo.get_payment(self.db, payment_id)
        if not payment:
            raise HTTPException(status_code=404, detail="Payment not found")
        refund_amount = payment.amount if amount is None else amount
        if refund_amount <= 0 or refund_amount > payment.amount:
            raise HTTPException(status_code=400, detail="Refund amount exceeds the payment amount")

        if payment.stripe_payment_intent_id:
            self._require_gateway()
        apply_transition("payment", payment, PaymentStatus.REFUNDED.value)
        if payment.stripe_payment_intent_id:
            try:
                await self.gateway.refund_payment_intent(
                    payment.stripe_payment_intent_id, amount=refund_amount, reason=reason
                )
            except stripe.StripeError as e:
                self.db.rollback()
                logger.error(f"❌ Stripe error refunding payment {payment_id}: {e}")
                raise HTTPException(status_code=502, detail="Payment provider error")

        try:
            payment.refund_amount = refund_amount
            payment.refund_reason = reason
            payment.refunded_at = datetime.utcnow()
            if refund_amount == payment.amount:
                for invoice in self.repo.invoices_for_payment(self.db, payment.id):
                    if invoice.status == InvoiceStatus.PAID.value:
                        apply_transition("invoice", invoice, InvoiceStatus.REFUNDED.value)
            create_notification(
                self.db,
                user_id=payment.user_id,
                notification_type="payment_refunded",
                title="Reembolso procesado",
                message=f"Se ha reembolsado {format_currency(refund_amount, payment.currency)}",
                data={"payment_id": payment.id, "refund_amount": refund_amount},
            )
            create_audit_log(
                self.db,
                action="payment_refunded",
                user_id=admin.id if admin else payment.user_id,
                resource="payment",
                resource_id=payment.id,
                details={
                    "refund_amount": refund_amount,
                    "reason": reason,
                    "customer_id": payment.user_id,
                },
                risk_level="high",
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to record refund of payment {payment_id}: {e}")
            raise

        logger.info(f"✅ Payment {payment_id} refunded ({format_currency(refund_amount, payment.currency)})")
        return serialize_payment(payment)

    def get_payment_history(
        self, user_id: str, page: int = 1, limit: int = 20, status: Optional[str] = None
    ) -> tuple:
        return self.repo.list_payments(self.db, page, limit, user_id=user_id, status=status)

    def list_all_payments(self, page: int = 1, limit: int = 20, status: Optional[str] = None) -> tuple:
        return self.repo.list_payments(self.db, page, limit, status=status)

    # ============================================================================
    # SUBSCRIPTIONS
    # ============================================================================

    async def create_subscription(
        self,
        user: User,
        plan: str,
        interval: str = "monthly",
        price_id: Optional[str] = None,
        trial_days: Optional[int] = None,
    ) -> dict:
        existing = self.repo.get_open_subscription(
            self.db,
            user.id,
            statuses=(SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value),
        )
        if existing:
            raise HTTPException(status_code=409, detail="User already has an active subscription")
        try:
            amount = plan_amount(plan, interval)
        except KeyError:
            raise HTTPException(status_code=400, detail=f"Unknown plan or interval: {plan}/{interval}")
        if not price_id:
            raise HTTPException(status_code=400, detail="price_id is required")
        self._require_gateway()

        try:
            customer_id = await self.gateway.get_or_create_customer(user)
            remote = await self.gateway.create_subscription(
                customer_id=customer_id,
                price_id=price_id,
                trial_days=trial_days,
                metadata={"user_id": user.id, "plan": plan, "interval": interval},
            )
        except stripe.StripeError as e:
            logger.error(f"❌ Stripe error creating subscription for {user.id}: {e}")
            raise HTTPException(status_code=502, detail="Payment provider error")

        now = datetime.utcnow()
        period_start, period_end = _subscription_periods(remote)
        try:
            user.stripe_customer_id = customer_id
            subscription = Subscription(
                user_id=user.id,
                plan=plan,
                status=STRIPE_SUBSCRIPTION_STATUSES.get(
                    remote.get("status"), SubscriptionStatus.INACTIVE.value
                ),
                interval=interval,
                amount=amount,
                currency=DEFAULT_CURRENCY,
                current_period_start=period_start or now,
                current_period_end=period_end
                or now + timedelta(days=30 * INTERVAL_MONTHS[interval]),
                trial_start=_from_epoch(remote.get("trial_start")),
                trial_end=_from_epoch(remote.get("trial_end")),
                stripe_subscription_id=remote["id"],
                stripe_price_id=price_id,
            )
            self.db.add(subscription)
            self.db.flush()
            create_audit_log(
                self.db,
                action="subscription_created",
                user_id=user.id,
                resource="subscription",
                resource_id=subscription.id,
                details={"plan": plan, "interval": interval, "amount": amount},
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to record subscription for {user.id}: {e}")
            raise

        logger.info(f"✅ Subscription {subscription.id} ({plan}/{interval}) created for {user.id}")
        return serialize_subscription(subscription)

    def get_current_subscription(self, user: User) -> Optional[Subscription]:
        return self.repo.get_open_subscription(self.db, user.id)

    async def cancel_subscription(
        self,
        subscription_id: int,
        user: User,
        immediately: bool = False,
        reason: Optional[str] = None,
    ) -> dict:
        subscription = self.repo.get_subscription(self.db, subscription_id)
        if not subscription:
            raise HTTPException(status_code=404, detail="Subscription not found")
        if subscription.user_id != user.id and user.role != "admin":
            raise HTTPException(status_code=403, detail="Access denied")

        if immediately:
            apply_transition("subscription", subscription, SubscriptionStatus.CANCELLED.value)
            subscription.cancelled_at = datetime.utcnow()
        else:
            if subscription.status not in (
                SubscriptionStatus.ACTIVE.value,
                SubscriptionStatus.TRIALING.value,
                SubscriptionStatus.PAST_DUE.value,
            ):
                raise HTTPException(
                    status_code=409, detail=f"Cannot cancel a {subscription.status} subscription"
                )
            subscription.cancel_at_period_end = True
        subscription.cancellation_reason = reason

        if subscription.stripe_subscription_id:
            self._require_gateway()
            try:
                await self.gateway.cancel_subscription(
                    subscription.stripe_subscription_id, immediately=immediately
                )
            except stripe.StripeError as e:
                self.db.rollback()
                logger.error(f"❌ Stripe error cancelling subscription {subscription_id}: {e}")
                raise HTTPException(status_code=502, detail="Payment provider error")

        create_audit_log(
            self.db,
            action="subscription_cancelled",
            user_id=user.id,
            resource="subscription",
            resource_id=subscription.id,
            details={"immediately": immediately, "reason": reason},
            risk_level="medium",
        )
        self.db.commit()
        logger.info(
            f"✅ Subscription {subscription_id} cancelled "
            f"({'immediately' if immediately else 'at period end'})"
        )
        return serialize_subscription(subscription)

    # ============================================================================
    # STRIPE WEBHOOKS
    # ============================================================================

    def handle_webhook_event(self, event: dict) -> dict:
        """Record and dispatch a verified Stripe event; repeated event ids are no-ops"""
        event_id = event.get("id")
        event_type = event.get("type")
        if not event_id or not event_type:
            raise HTTPException(status_code=400, detail="Malformed Stripe event")

        try:
            if not claim_webhook_event(self.db, "stripe", event_id, event_type, event):
                self.db.rollback()
                return {"status": "duplicate_event", "event_type": event_type}

            kind = parse_stripe_event_kind(event_type)
            if kind is None:
                logger.info(f"ℹ️ Ignoring unhandled Stripe event type: {event_type}")
                result = {"status": "ignored"}
            else:
                logger.info(f"🔔 Handling Stripe event {event_type} ({event_id})")
                obj = (event.get("data") or {}).get("object") or {}
                result = STRIPE_EVENT_HANDLERS[kind](self, obj)

            mark_webhook_event_processed(self.db, "stripe", event_id)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to process Stripe event {event_type} ({event_id}): {e}")
            raise

        result.setdefault("event_type", event_type)
        return result

    def on_invoice_payment_succeeded(self, stripe_invoice: dict) -> dict:
        subscription = self._subscription_for_invoice(stripe_invoice)
        if subscription is None:
            return {"status": "subscription_not_found"}

        if subscription.status != SubscriptionStatus.ACTIVE.value and can_transition(
            "subscription", subscription.status, SubscriptionStatus.ACTIVE.value
        ):
            subscription.status = SubscriptionStatus.ACTIVE.value

        intent_id = stripe_invoice.get("payment_intent")
        if intent_id and self.repo.get_payment_by_intent(self.db, intent_id):
            self.db.flush()
            return {"status": "already_recorded", "subscription_id": subscription.id}

        payment = Payment(
            user_id=subscription.user_id,
            amount=stripe_invoice.get("amount_paid") or subscription.amount,
            currency=(stripe_invoice.get("currency") or subscription.currency).upper(),
            status=PaymentStatus.COMPLETED.value,
            payment_method="card",
            payment_type="subscription",
            description="Subscription payment",
            stripe_payment_intent_id=intent_id,
            stripe_customer_id=stripe_invoice.get("customer"),
            extra_data={"stripe_invoice_id": stripe_invoice.get("id")},
            processed_at=datetime.utcnow(),
        )
        self.db.add(payment)
        self.db.flush()
        create_audit_log(
            self.db,
            action="subscription_payment_completed",
            user_id=subscription.user_id,
            resource="payment",
            resource_id=payment.id,
            details={"subscription_id": subscription.id, "amount": payment.amount},
        )
        self.db.flush()
        logger.info(f"✅ Subscription {subscription.id} payment recorded as payment {payment.id}")
        return {"status": "recorded", "subscription_id": subscription.id, "payment_id": payment.id}

    def on_invoice_payment_failed(self, stripe_invoice: dict) -> dict:
        subscription = self._subscription_for_invoice(stripe_invoice)
        if subscription is None:
            return {"status": "subscription_not_found"}

        if can_transition("subscription", subscription.status, SubscriptionStatus.PAST_DUE.value):
            subscription.status = SubscriptionStatus.PAST_DUE.value
        create_notification(
            self.db,
            user_id=subscription.user_id,
            notification_type="subscription_payment_failed",
            title="Pago de suscripción rechazado",
            message="No pudimos cobrar tu suscripción. Actualiza tu método de pago.",
            data={"subscription_id": subscription.id},
        )
        self.db.flush()
        logger.warning(f"⚠️ Subscription {subscription.id} payment failed; status {subscription.status}")
        return {"status": subscription.status, "subscription_id": subscription.id}

    def on_subscription_updated(self, remote: dict) -> dict:
        subscription = self.repo.get_subscription_by_stripe_id(self.db, remote.get("id"))
        if subscription is None:
            logger.warning(f"⚠️ Unknown Stripe subscription {remote.get('id')}")
            return {"status": "subscription_not_found"}

        target = STRIPE_SUBSCRIPTION_STATUSES.get(remote.get("status"))
        if target and can_transition("subscription", subscription.status, target):
            subscription.status = target
            if target == SubscriptionStatus.CANCELLED.value and not subscription.cancelled_at:
                subscription.cancelled_at = datetime.utcnow()
        elif target:
            logger.warning(
                f"⚠️ Ignoring subscription {subscription.id} move {subscription.status} -> {target}"
            )

        period_start, period_end = _subscription_periods(remote)
        if period_start:
            subscription.current_period_start = period_start
        if period_end:
            subscription.current_period_end = period_end
        if "cancel_at_period_end" in remote:
            subscription.cancel_at_period_end = bool(remote["cancel_at_period_end"])
        self.db.flush()
        return {"status": subscription.status, "subscription_id": subscription.id}

    def on_subscription_deleted(self, remote: dict) -> dict:
        subscription = self.repo.get_subscription_by_stripe_id(self.db, remote.get("id"))
        if subscription is None:
            logger.warning(f"⚠️ Unknown Stripe subscription {remote.get('id')}")
            return {"status": "subscription_not_found"}

        if can_transition("subscription", subscription.status, SubscriptionStatus.CANCELLED.value):
            subscription.status = SubscriptionStatus.CANCELLED.value
            subscription.cancelled_at = subscription.cancelled_at or datetime.utcnow()
        self.db.flush()
        return {"status": subscription.status, "subscription_id": subscription.id}

    def _subscription_for_invoice(self, stripe_invoice: dict) -> Optional[Subscription]:
        stripe_subscription_id = _invoice_subscription_id(stripe_invoice)
        subscription = (
            self.repo.get_subscription_by_stripe_id(self.db, stripe_subscription_id)
            if stripe_subscription_id
            else None
        )
        if subscription is None:
            logger.warning(
                f"⚠️ Stripe invoice {stripe_invoice.get('id')} has no known subscription"
            )
        return subscription


STRIPE_EVENT_HANDLERS: dict[StripeEventKind, Callable[[PaymentService, dict], dict]] = {
    StripeEventKind.PAYMENT_INTENT_SUCCEEDED: PaymentService.process_successful_payment,
    StripeEventKind.PAYMENT_INTENT_FAILED: PaymentService.process_failed_payment,
    StripeEventKind.INVOICE_PAYMENT_SUCCEEDED: PaymentService.on_invoice_payment_succeeded,
    StripeEventKind.INVOICE_PAYMENT_FAILED: PaymentService.on_invoice_payment_failed,
    StripeEventKind.SUBSCRIPTION_UPDATED: PaymentService.on_subscription_updated,
    StripeEventKind.SUBSCRIPTION_DELETED: PaymentService.on_subscription_deleted,
}

_unhandled = set(StripeEventKind) - set(STRIPE_EVENT_HANDLERS)
if _unhandled:
    raise RuntimeError(
        f"Stripe event kinds without a handler: {sorted(k.value for k in _unhandled)}"
    )
