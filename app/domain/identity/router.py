"""Identity router - Clerk webhook receiver and admin sync endpoints"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ...auth import require_admin
from ...cache import get_cache
from ...config import CLERK_WEBHOOK_SECRET
from ...database import get_db
from ...models import User
from ...responses import error_response, success_response, utc_timestamp
from ...webhook_security import WebhookSignatureError, verify_clerk_webhook
from .clerk_client import ClerkAPIError, ClerkClient
from .events import EventKind, IdentityPayloadError, parse_event
from .reconciliation_service import ReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])


def get_reconciliation_service(
    db: Session = Depends(get_db), cache=Depends(get_cache)
) -> ReconciliationService:
    """Dependency injection for ReconciliationService"""
    return ReconciliationService(db, clerk_client=ClerkClient(cache=cache))


# ============================================================================
# CLERK WEBHOOK
# ============================================================================


@router.post("/clerk")
@router.post("/webhook")
async def handle_clerk_webhook(
    request: Request,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    Verify a Svix-signed Clerk event and reconcile the local user tables.

    Responses:
      - 200 on acceptance, including duplicates and events that need no work
      - 400 when svix headers are missing or the signature does not verify
      - 500 when the signing secret is not configured or processing fails
    """
    if not CLERK_WEBHOOK_SECRET:
        logger.error("❌ CLERK_WEBHOOK_SECRET not configured")
        return error_response("Webhook secret not configured", 500)

    try:
        delivery_id, raw_body = await verify_clerk_webhook(request, CLERK_WEBHOOK_SECRET)
    except WebhookSignatureError as e:
        logger.warning(f"🚫 Clerk webhook rejected: {e}")
        return error_response("Webhook verification failed", 400, errors=str(e))

    try:
        event = parse_event(raw_body)
        logger.info(f"🔔 Clerk webhook received id={delivery_id} type={event.type}")
        result = service.process_delivery(delivery_id, event)
    except IdentityPayloadError as e:
        logger.warning(f"⚠️ Unusable Clerk payload {delivery_id}: {e}")
        return error_response(str(e), 400)
    except Exception as e:
        logger.error(f"❌ Clerk webhook {delivery_id} processing failed: {e}")
        return error_response("Webhook processing failed", 500)

    return success_response(result, message="Webhook processed")


@router.get("/clerk")
async def clerk_webhook_info():
    """Show webhook configuration for quick manual checks"""
    return success_response(
        {
            "endpoint": "/api/webhooks/clerk",
            "method": "POST",
            "configured": bool(CLERK_WEBHOOK_SECRET),
            "supported_events": [kind.value for kind in EventKind],
        }
    )


@router.get("/health")
async def webhook_health():
    return success_response(
        {
            "status": "healthy",
            "webhook_secret_configured": bool(CLERK_WEBHOOK_SECRET),
            "checked_at": utc_timestamp(),
        }
    )


# ============================================================================
# ADMIN SYNC
# ============================================================================


@router.post("/sync-user/{user_id}")
async def sync_user(
    user_id: str,
    _: User = Depends(require_admin),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Re-sync one user from the Clerk Backend API"""
    try:
        result = await service.sync_user_from_clerk(user_id)
    except ClerkAPIError as e:
        status_code = 404 if e.status_code == 404 else 502
        return error_response(f"Failed to fetch user from Clerk: {e}", status_code)
    except IdentityPayloadError as e:
        return error_response(str(e), 400)
    return success_response(result, message="User synced")


@router.get("/validate-user/{user_id}")
async def validate_user(
    user_id: str,
    _: User = Depends(require_admin),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Compare the Clerk record with the local row"""
    try:
        result = await service.validate_user_consistency(user_id)
    except ClerkAPIError as e:
        status_code = 404 if e.status_code == 404 else 502
        return error_response(f"Failed to fetch user from Clerk: {e}", status_code)
    except IdentityPayloadError as e:
        return error_response(str(e), 400)
    return success_response(result)
