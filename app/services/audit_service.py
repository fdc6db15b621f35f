"""
Audit trail for security-relevant and billing events
Entries join the caller's transaction; they are never committed on their own
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..models import AuditLog

logger = logging.getLogger(__name__)

RISK_LEVELS = ("low", "medium", "high", "critical")


def create_audit_log(
    db: Session,
    action: str,
    user_id: Optional[str] = None,
    resource: Optional[str] = None,
    resource_id: Optional[str] = None,
    details: Optional[dict] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    risk_level: str = "low",
    success: bool = True,
    error_message: Optional[str] = None,
) -> AuditLog:
    """Add an audit entry to the current session"""
    if risk_level not in RISK_LEVELS:
        risk_level = "low"

    entry = AuditLog(
        user_id=user_id,
        action=action,
        resource=resource,
        resource_id=str(resource_id) if resource_id is not None else None,
        details=details or {},
        ip_address=ip_address,
        user_agent=user_agent,
        risk_level=risk_level,
        success=success,
        error_message=error_message,
    )
    db.add(entry)
    logger.debug(f"📝 Audit: {action} user={user_id} {resource}={resource_id}")
    return entry
