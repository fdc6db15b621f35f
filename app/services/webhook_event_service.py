"""
Webhook delivery ledger shared by the Clerk and Stripe receivers
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ..database import dialect_insert
from ..models import WebhookEvent

logger = logging.getLogger(__name__)


def claim_webhook_event(
    db: Session, provider: str, event_id: str, event_type: str, payload: Optional[dict] = None
) -> bool:
    """
    Record a delivery inside the caller's transaction.

    Returns False when the same (provider, event_id) was already processed successfully.
    A row left unprocessed by an earlier failed attempt can be claimed again.
    """
    stmt = (
        dialect_insert(db, WebhookEvent)
        .values(
            provider=provider,
            event_id=event_id,
            event_type=event_type,
            payload=payload,
            processed=False,
        )
        .on_conflict_do_nothing(index_elements=["provider", "event_id"])
    )
    result = db.execute(stmt)
    if result.rowcount:
        return True

    existing = (
        db.query(WebhookEvent)
        .filter(WebhookEvent.provider == provider, WebhookEvent.event_id == event_id)
        .first()
    )
    if existing and existing.processed:
        logger.info(f"🔄 {provider} webhook {event_id} already processed, skipping")
        return False
    return True


def mark_webhook_event_processed(
    db: Session, provider: str, event_id: str, error_message: Optional[str] = None
) -> None:
    """Flag a delivery as handled (or store why it failed) in the current session"""
    event = (
        db.query(WebhookEvent)
        .filter(WebhookEvent.provider == provider, WebhookEvent.event_id == event_id)
        .first()
    )
    if not event:
        return
    event.processed = error_message is None
    event.processed_at = datetime.utcnow()
    event.error_message = error_message
