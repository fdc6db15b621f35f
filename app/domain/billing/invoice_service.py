"""Invoice service - Business logic for invoice lifecycle, PDFs and email dispatch"""

import logging
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ...email_service import send_invoice_email
from ...models import User
from ...models_invoice import Invoice, InvoiceItem, Subscription
from ...services.audit_service import create_audit_log
from ...services.invoice_pdf_generator import (
    InvoicePDFGenerator,
    default_company_info,
    invoice_to_pdf_data,
)
from ...services.notification_service import create_notification
from ...storage import get_invoice_store
from .pricing import (
    DEFAULT_CURRENCY,
    INVOICE_DUE_DAYS,
    calculate_invoice_totals,
    format_currency,
    generate_invoice_number,
    validate_currency,
)
from .repository import BillingRepository
from .schemas import InvoiceItemIn
from .states import InvalidTransitionError, InvoiceStatus, apply_transition

logger = logging.getLogger(__name__)

MAX_INVOICE_NUMBER_ATTEMPTS = 5

INTERVAL_LABELS = {
    "monthly": "Mensual",
    "quarterly": "Trimestral",
    "yearly": "Anual",
}


def render_invoice_pdf(invoice: Invoice) -> bytes:
    return InvoicePDFGenerator(invoice_to_pdf_data(invoice)).generate()


def serialize_invoice(invoice: Invoice) -> dict:
    return {
        "id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "user_id": invoice.user_id,
        "subscription_id": invoice.subscription_id,
        "payment_id": invoice.payment_id,
        "status": invoice.status,
        "subtotal": invoice.subtotal,
        "tax_amount": invoice.tax_amount,
        "total_amount": invoice.total_amount,
        "currency": invoice.currency,
        "due_date": invoice.due_date,
        "notes": invoice.notes,
        "customer_info": invoice.customer_info,
        "company_info": invoice.company_info,
        "pdf_url": invoice.pdf_url,
        "sent_at": invoice.sent_at,
        "paid_at": invoice.paid_at,
        "created_at": invoice.created_at,
        "items": [
            {
                "id": item.id,
                "description": item.description,
                "quantity": item.quantity,
                "unit_price": item.unit_price,
                "amount": item.amount,
            }
            for item in invoice.items
        ],
    }


class InvoiceService:
    """Service for invoice operations"""

    def __init__(self, db: Session, storage=None):
        self.db = db
        self.repo = BillingRepository()
        self.storage = storage or get_invoice_store()

    def _validate_items(self, items: Iterable) -> list:
        validated = []
        try:
            for item in items:
                if isinstance(item, InvoiceItemIn):
                    validated.append(item)
                else:
                    validated.append(InvoiceItemIn.model_validate(item))
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=f"Invalid invoice item: {e.errors()[0]['msg']}")
        if not validated:
            raise HTTPException(status_code=400, detail="An invoice needs at least one item")
        return validated

    def _unique_invoice_number(self) -> str:
        for _ in range(MAX_INVOICE_NUMBER_ATTEMPTS):
            candidate = generate_invoice_number(datetime.utcnow().date())
            if not self.repo.invoice_number_exists(self.db, candidate):
                return candidate
            logger.warning(f"⚠️ Invoice number collision on {candidate}, regenerating")
        raise RuntimeError(
            f"Could not generate a unique invoice number after {MAX_INVOICE_NUMBER_ATTEMPTS} attempts"
        )

    def get_invoice_or_404(self, invoice_id: int) -> Invoice:
        invoice = self.repo.get_invoice(self.db, invoice_id)
        if not invoice:
            raise HTTPException(status_code=404, detail="Invoice not found")
        return invoice

    def create_invoice(
        self,
        user_id: str,
        items: Iterable,
        subscription_id: Optional[int] = None,
        payment_id: Optional[int] = None,
        due_date: Optional[datetime] = None,
        currency: str = DEFAULT_CURRENCY,
        notes: Optional[str] = None,
    ) -> Invoice:
        """
        Create a draft invoice with its items in one transaction.

        Amounts are minor units; tax is 16% of the subtotal rounded half-up.
        Customer and company details are snapshotted onto the invoice.
        """
        customer = self.repo.get_user_by_id(self.db, user_id)
        if not customer:
            raise HTTPException(status_code=404, detail="Customer not found")
        if not validate_currency(currency):
            raise HTTPException(status_code=400, detail=f"Unsupported currency: {currency}")

        line_items = self._validate_items(items)
        subtotal, tax, total, amounts = calculate_invoice_totals(line_items)

        try:
            invoice = Invoice(
                user_id=user_id,
                subscription_id=subscription_id,
                payment_id=payment_id,
                invoice_number=self._unique_invoice_number(),
                status=InvoiceStatus.DRAFT.value,
                subtotal=subtotal,
                tax_amount=tax,
                total_amount=total,
                currency=currency,
                due_date=due_date or datetime.utcnow() + timedelta(days=INVOICE_DUE_DAYS),
                notes=notes,
                customer_info={
                    "name": customer.name or customer.email,
                    "email": customer.email,
                    "phone": customer.phone,
                },
                company_info=default_company_info(),
            )
            rows = [
                InvoiceItem(
                    description=item.description,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    amount=amount,
                )
                for item, amount in zip(line_items, amounts)
            ]
            self.repo.add_invoice(self.db, invoice, rows)
            create_audit_log(
                self.db,
                action="invoice_created",
                user_id=user_id,
                resource="invoice",
                resource_id=invoice.id,
                details={
                    "invoice_number": invoice.invoice_number,
                    "total_amount": total,
                    "currency": currency,
                    "subscription_id": subscription_id,
                },
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to create invoice for user {user_id}: {e}")
            raise

        self.db.refresh(invoice)
        logger.info(
            f"✅ Invoice {invoice.invoice_number} created for user {user_id} "
            f"({format_currency(total, currency)})"
        )
        return invoice

    def _render_and_store(self, invoice: Invoice) -> bytes:
        """Render the PDF, store it and record pdf_url on the invoice (caller commits)"""
        pdf_bytes = render_invoice_pdf(invoice)
        timestamp = datetime.utcnow().strftime("%Y%m%d%H%M%S")
        invoice.pdf_url = self.storage.save(
            f"invoice_{invoice.invoice_number}_{timestamp}.pdf", pdf_bytes
        )
        create_audit_log(
            self.db,
            action="invoice_pdf_generated",
            user_id=invoice.user_id,
            resource="invoice",
            resource_id=invoice.id,
            details={"invoice_number": invoice.invoice_number, "pdf_url": invoice.pdf_url},
        )
        return pdf_bytes

    def generate_invoice_pdf(self, invoice_id: int) -> str:
        """Render and store the invoice PDF; returns its URL"""
        invoice = self.get_invoice_or_404(invoice_id)
        try:
            self._render_and_store(invoice)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to generate PDF for invoice {invoice_id}: {e}")
            raise

        logger.info(f"📄 PDF for invoice {invoice.invoice_number} stored at {invoice.pdf_url}")
        return invoice.pdf_url

    def get_invoice_pdf_bytes(self, invoice_id: int) -> bytes:
        """Stored PDF bytes; rendered on first access, never regenerated afterwards"""
        invoice = self.get_invoice_or_404(invoice_id)
        if invoice.pdf_url:
            return self.storage.read(invoice.pdf_url)

        try:
            pdf_bytes = self._render_and_store(invoice)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to generate PDF for invoice {invoice_id}: {e}")
            raise
        return pdf_bytes

    async def send_invoice_by_email(self, invoice_id: int) -> Invoice:
        """Email the invoice PDF to the customer and mark the invoice as sent"""
        invoice = self.get_invoice_or_404(invoice_id)
        if invoice.status in (InvoiceStatus.CANCELLED.value, InvoiceStatus.REFUNDED.value):
            error = InvalidTransitionError("invoice", invoice.status, InvoiceStatus.SENT.value)
            raise HTTPException(status_code=409, detail=str(error))

        customer = invoice.customer_info or {}
        if not customer.get("email"):
            raise HTTPException(status_code=400, detail="Invoice has no customer email")

        pdf_bytes = self.get_invoice_pdf_bytes(invoice_id)
        total = format_currency(invoice.total_amount, invoice.currency)

        result = await send_invoice_email(
            to=customer["email"],
            customer_name=customer.get("name") or customer["email"],
            invoice_number=invoice.invoice_number,
            total=total,
            pdf_bytes=pdf_bytes,
            due_date=invoice.due_date.strftime("%d/%m/%Y") if invoice.due_date else None,
        )

        try:
            # A resend of an already sent or paid invoice keeps its status
            if invoice.status == InvoiceStatus.DRAFT.value:
                apply_transition("invoice", invoice, InvoiceStatus.SENT.value)
            invoice.sent_at = datetime.utcnow()
            create_notification(
                self.db,
                user_id=invoice.user_id,
                notification_type="invoice_sent",
                title="Factura enviada",
                message=f"Tu factura {invoice.invoice_number} por {total} ha sido enviada",
                data={"invoice_id": invoice.id, "invoice_number": invoice.invoice_number},
            )
            create_audit_log(
                self.db,
                action="invoice_sent",
                user_id=invoice.user_id,
                resource="invoice",
                resource_id=invoice.id,
                details={
                    "email": customer["email"],
                    "message_id": result.get("id") if isinstance(result, dict) else None,
                },
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to record sending of invoice {invoice_id}: {e}")
            raise

        logger.info(f"📧 Invoice {invoice.invoice_number} sent to {customer['email']}")
        return invoice

    def mark_invoice_as_paid(self, invoice_id: int, payment_id: Optional[int]) -> Invoice:
        invoice = self.get_invoice_or_404(invoice_id)
        if invoice.status == InvoiceStatus.PAID.value:
            logger.info(f"ℹ️ Invoice {invoice.invoice_number} already paid")
            return invoice

        try:
            self.record_invoice_paid(invoice, payment_id)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to mark invoice {invoice_id} as paid: {e}")
            raise

        logger.info(f"✅ Invoice {invoice.invoice_number} marked as paid (payment {payment_id})")
        return invoice

    def record_invoice_paid(self, invoice: Invoice, payment_id: Optional[int]) -> None:
        """Move the invoice to paid and notify the customer (caller commits)"""
        apply_transition("invoice", invoice, InvoiceStatus.PAID.value)
        invoice.payment_id = payment_id
        invoice.paid_at = datetime.utcnow()
        create_notification(
            self.db,
            user_id=invoice.user_id,
            notification_type="invoice_paid",
            title="Factura pagada",
            message=f"Hemos recibido el pago de tu factura {invoice.invoice_number}",
            data={"invoice_id": invoice.id, "payment_id": payment_id},
        )
        create_audit_log(
            self.db,
            action="invoice_paid",
            user_id=invoice.user_id,
            resource="invoice",
            resource_id=invoice.id,
            details={"payment_id": payment_id, "amount": invoice.total_amount},
        )

    def get_user_invoices(
        self, user_id: str, page: int = 1, limit: int = 20, status: Optional[str] = None
    ) -> tuple:
        """Returns (invoices, total)"""
        return self.repo.list_invoices(self.db, user_id, page, limit, status)

    def get_invoice(self, invoice_id: int, user: User) -> Invoice:
        invoice = self.get_invoice_or_404(invoice_id)
        if invoice.user_id != user.id and user.role != "admin":
            raise HTTPException(status_code=403, detail="Access denied")
        return invoice

    def create_subscription_invoice(self, subscription: Subscription) -> Invoice:
        interval = INTERVAL_LABELS.get(subscription.interval, subscription.interval)
        return self.create_invoice(
            user_id=subscription.user_id,
            items=[
                {
                    "description": f"Suscripción {subscription.plan} - {interval}",
                    "quantity": 1,
                    "unit_price": subscription.amount,
                }
            ],
            subscription_id=subscription.id,
            currency=subscription.currency or DEFAULT_CURRENCY,
        )

    async def auto_send_subscription_invoices(self, today: Optional[date] = None) -> dict:
        """
        Invoice every active subscription renewing tomorrow that was not invoiced today.

        Failures are isolated per subscription; "processed" counts attempts.
        """
        today = today or datetime.utcnow().date()
        renewing = self.repo.subscriptions_renewing_on(self.db, today + timedelta(days=1))

        processed = succeeded = failed = 0
        for subscription in renewing:
            if self.repo.subscription_invoiced_on(self.db, subscription.id, today):
                continue

            processed += 1
            try:
                invoice = self.create_subscription_invoice(subscription)
                await self.send_invoice_by_email(invoice.id)
                succeeded += 1
            except Exception as e:
                self.db.rollback()
                failed += 1
                logger.error(f"❌ Auto-send failed for subscription {subscription.id}: {e}")

        logger.info(
            f"✅ Subscription invoices auto-send: processed={processed} "
            f"succeeded={succeeded} failed={failed}"
        )
        return {"processed": processed, "succeeded": succeeded, "failed": failed}

    def get_invoice_statistics(self) -> dict:
        by_status = {}
        total_invoices = 0
        for status, count, amount in self.repo.invoice_stats_by_status(self.db):
            by_status[status] = {"count": count, "total_amount": int(amount or 0)}
            total_invoices += count

        return {
            "total_invoices": total_invoices,
            "by_status": by_status,
            "total_revenue": by_status.get(InvoiceStatus.PAID.value, {}).get("total_amount", 0),
        }
