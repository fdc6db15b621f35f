"""
In-app notifications for users (invoice sent, invoice paid, ...)
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..models import Notification

logger = logging.getLogger(__name__)


def create_notification(
    db: Session,
    user_id: str,
    notification_type: str,
    title: str,
    message: str,
    data: Optional[dict] = None,
) -> Notification:
    """
    Add a notification for a user to the current session

    Args:
        db: Database session (caller commits)
        user_id: Recipient user ID
        notification_type: Type of notification (e.g. invoice_sent)
        title: Short title shown in the UI
        message: Body text
        data: Optional payload for deep links (invoice id, number, ...)
    """
    notification = Notification(
        user_id=user_id,
        type=notification_type,
        title=title,
        message=message,
        data=data or {},
    )
    db.add(notification)
    logger.info(f"🔔 Notification queued for user {user_id}: {notification_type}")
    return notification
