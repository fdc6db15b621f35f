"""Billing router - FastAPI endpoints for payments, subscriptions and invoices"""

import json
import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_admin
from ...database import get_db
from ...models import User
from ...responses import error_response, paginated, success_response
from .invoice_service import InvoiceService, serialize_invoice
from .payment_service import PaymentService, serialize_payment, serialize_subscription
from .schemas import (
    CancelSubscriptionRequest,
    ConfirmPaymentRequest,
    PaymentIntentCreate,
    RefundRequest,
    SubscriptionCreate,
)
from .stripe_service import StripeGateway, StripeNotConfiguredError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


def get_stripe_gateway() -> StripeGateway:
    """Dependency injection for StripeGateway"""
    return StripeGateway()


def get_invoice_service(db: Session = Depends(get_db)) -> InvoiceService:
    """Dependency injection for InvoiceService"""
    return InvoiceService(db)


def get_payment_service(
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    invoice_service: InvoiceService = Depends(get_invoice_service),
) -> PaymentService:
    """Dependency injection for PaymentService"""
    return PaymentService(db, gateway=gateway, invoice_service=invoice_service)


# ============================================================================
# PAYMENTS
# ============================================================================


@router.post("/intent")
async def create_payment_intent(
    body: PaymentIntentCreate,
    user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    """Create a payment intent for the current user"""
    result = await service.create_payment_intent(
        user,
        amount=body.amount,
        currency=body.currency,
        description=body.description,
        payment_type=body.payment_type,
        invoice_id=body.invoice_id,
    )
    return success_response(result, message="Payment intent created", status_code=201)


@router.post("/intent/{payment_id}/confirm")
async def confirm_payment(
    payment_id: int,
    body: Optional[ConfirmPaymentRequest] = None,
    user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    """Confirm a pending payment"""
    payment = await service.confirm_payment(
        payment_id, user, payment_method_id=body.payment_method_id if body else None
    )
    return success_response(payment, message="Payment confirmed")


@router.get("/history")
async def get_payment_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = None,
    user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    """Get the current user's payments, newest first"""
    rows, total = service.get_payment_history(user.id, page, limit, status)
    return success_response(paginated([serialize_payment(p) for p in rows], page, limit, total))


# ============================================================================
# SUBSCRIPTIONS
# ============================================================================


@router.post("/subscriptions")
async def create_subscription(
    body: SubscriptionCreate,
    user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    """Subscribe the current user to a plan"""
    subscription = await service.create_subscription(
        user,
        plan=body.plan,
        interval=body.interval,
        price_id=body.price_id,
        trial_days=body.trial_days,
    )
    return success_response(subscription, message="Subscription created", status_code=201)


@router.get("/subscriptions/current")
async def get_current_subscription(
    user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    """Get the current user's open subscription, or null"""
    subscription = service.get_current_subscription(user)
    return success_response(serialize_subscription(subscription) if subscription else None)


@router.post("/subscriptions/{subscription_id}/cancel")
async def cancel_subscription(
    subscription_id: int,
    body: Optional[CancelSubscriptionRequest] = None,
    user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    """Cancel a subscription now or at the end of the period"""
    body = body or CancelSubscriptionRequest()
    subscription = await service.cancel_subscription(
        subscription_id, user, immediately=body.immediately, reason=body.reason
    )
    return success_response(subscription, message="Subscription cancelled")


# ============================================================================
# INVOICES
# ============================================================================


@router.get("/invoices")
async def list_invoices(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = None,
    user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    """Get the current user's invoices, newest first"""
    rows, total = service.get_user_invoices(user.id, page, limit, status)
    return success_response(paginated([serialize_invoice(i) for i in rows], page, limit, total))


@router.get("/invoices/{invoice_id}")
async def get_invoice(
    invoice_id: int,
    user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    """Get one invoice with its items"""
    return success_response(serialize_invoice(service.get_invoice(invoice_id, user)))


@router.get("/invoices/{invoice_id}/pdf")
async def download_invoice_pdf(
    invoice_id: int,
    user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    """Stream the invoice PDF, rendering it on first access"""
    invoice = service.get_invoice(invoice_id, user)
    pdf_bytes = service.get_invoice_pdf_bytes(invoice.id)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="factura_{invoice.invoice_number}.pdf"'},
    )


@router.post("/invoices/{invoice_id}/resend")
async def resend_invoice(
    invoice_id: int,
    user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    """Email the invoice to its customer again"""
    service.get_invoice(invoice_id, user)
    invoice = await service.send_invoice_by_email(invoice_id)
    return success_response(serialize_invoice(invoice), message="Invoice sent")


# ============================================================================
# ADMIN
# ============================================================================


@router.get("/admin/payments")
async def list_all_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = None,
    admin: User = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    """List every payment (admin only)"""
    rows, total = service.list_all_payments(page, limit, status)
    return success_response(paginated([serialize_payment(p) for p in rows], page, limit, total))


@router.get("/admin/statistics")
async def get_invoice_statistics(
    admin: User = Depends(require_admin),
    service: InvoiceService = Depends(get_invoice_service),
):
    """Invoice counts and sums by status (admin only)"""
    return success_response(service.get_invoice_statistics())


@router.post("/admin/invoices/send-pending")
async def send_pending_invoices(
    admin: User = Depends(require_admin),
    service: InvoiceService = Depends(get_invoice_service),
):
    """Run the subscription invoice auto-send now (admin only)"""
    result = await service.auto_send_subscription_invoices()
    return success_response(
        {
            "invoicesSent": result["processed"],
            "succeeded": result["succeeded"],
            "failed": result["failed"],
            "message": f"Processed {result['processed']} subscription invoices",
        }
    )


@router.post("/admin/payments/{payment_id}/refund")
async def refund_payment(
    payment_id: int,
    body: Optional[RefundRequest] = None,
    admin: User = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    """Refund a completed payment (admin only)"""
    body = body or RefundRequest()
    payment = await service.refund_payment(
        payment_id, amount=body.amount, reason=body.reason, admin=admin
    )
    return success_response(payment, message="Payment refunded")


# ============================================================================
# STRIPE WEBHOOK
# ============================================================================


@router.post("/webhooks/stripe")
async def handle_stripe_webhook(
    request: Request,
    gateway: StripeGateway = Depends(get_stripe_gateway),
    service: PaymentService = Depends(get_payment_service),
):
    """Verify a Stripe event signature and apply it"""
    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")

    try:
        gateway.construct_event(payload, signature)
    except StripeNotConfiguredError as e:
        logger.error(f"❌ Stripe webhook received but not configured: {e}")
        return error_response("Stripe webhooks not configured", 503)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning(f"🚫 Stripe webhook rejected: {e}")
        return error_response("Webhook verification failed", 400)

    result = service.handle_webhook_event(json.loads(payload))
    return success_response(result, message="Webhook processed")
