"""
Reconciliation service - keeps local user rows in agreement with Clerk

Writes are idempotent by constraint: every insert is an atomic
INSERT ... ON CONFLICT DO NOTHING, so repeated or concurrent deliveries of the
same event converge on one user row, one preferences row and one profile row.
"""

import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ...services.audit_service import create_audit_log
from ...services.webhook_event_service import claim_webhook_event, mark_webhook_event_processed
from .clerk_client import ClerkClient
from .events import (
    INFORMATIONAL_KINDS,
    EventKind,
    IdentityEvent,
    IdentityPayloadError,
    IdentityUser,
    derive_status,
    normalize_user_payload,
)
from .repository import IdentityRepository

logger = logging.getLogger(__name__)


class ReconciliationService:
    """Applies Clerk user lifecycle events to the database"""

    def __init__(self, db: Session, clerk_client: Optional[ClerkClient] = None):
        self.db = db
        self.repo = IdentityRepository()
        self.clerk = clerk_client or ClerkClient()

    # ------------------------------------------------------------------
    # Event entry points
    # ------------------------------------------------------------------

    def process_delivery(self, delivery_id: str, event: IdentityEvent) -> dict:
        """Handle one verified webhook delivery, skipping ids already processed"""
        if not claim_webhook_event(self.db, "clerk", delivery_id, event.type, event.data):
            self.db.rollback()
            return {"status": "duplicate_delivery", "event_type": event.type}

        try:
            result = self.handle_event(event)
            mark_webhook_event_processed(self.db, "clerk", delivery_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return result

    def handle_event(self, event: IdentityEvent) -> dict:
        """Dispatch an event to its handler"""
        if event.kind is None:
            logger.info(f"ℹ️ Ignoring unsupported Clerk event type: {event.type}")
            return {"status": "ignored", "event_type": event.type}

        logger.info(f"🔔 Handling Clerk event {event.kind.value}")
        handler = EVENT_HANDLERS[event.kind]
        result = handler(self, event.data)
        result.setdefault("event_type", event.kind.value)
        return result

    def on_user_created(self, data: dict) -> dict:
        return self.create_user(normalize_user_payload(data))

    def on_user_updated(self, data: dict) -> dict:
        return self.update_user(normalize_user_payload(data))

    def on_user_deleted(self, data: dict) -> dict:
        user_id = data.get("id")
        if not user_id:
            raise IdentityPayloadError("user.deleted payload is missing an id")
        return self.delete_user(user_id)

    def on_email_verified(self, data: dict) -> dict:
        return self.mark_email_verified(data)

    def on_informational(self, data: dict) -> dict:
        logger.info(
            f"ℹ️ Informational Clerk event for user {data.get('user_id') or data.get('id')}"
        )
        return {"status": "logged"}

    # ------------------------------------------------------------------
    # Reconciliation operations
    # ------------------------------------------------------------------

    def create_user(self, identity: IdentityUser) -> dict:
        """
        Create the user with default preferences and a role profile in one transaction.

        A user that already exists (same id, or the email belongs to another id) is a
        benign conflict: nothing is written and the call still succeeds.
        """
        role = identity.role or "patient"
        status = derive_status(role, identity.onboarding_complete, identity.status)

        try:
            inserted = self.repo.insert_user_if_absent(
                self.db,
                {
                    "id": identity.id,
                    "email": identity.email,
                    "first_name": identity.first_name,
                    "last_name": identity.last_name,
                    "name": identity.name,
                    "phone": identity.phone,
                    "avatar_url": identity.avatar_url,
                    "role": role,
                    "status": status,
                    "verified": identity.email_verified,
                    "last_sign_in_at": identity.last_sign_in_at,
                },
            )

            if not inserted:
                if self.repo.get_user(self.db, identity.id):
                    logger.info(f"ℹ️ User {identity.id} already exists, nothing to create")
                    return {"status": "already_exists", "user_id": identity.id}

                logger.warning(
                    f"⚠️ Email {identity.email} already belongs to another user, skipping {identity.id}"
                )
                return {"status": "email_conflict", "user_id": identity.id}

            self.repo.ensure_preferences(self.db, identity.id)
            self.repo.ensure_role_profile(self.db, identity.id, role)
            create_audit_log(
                self.db,
                action="user_created",
                user_id=identity.id,
                resource="user",
                resource_id=identity.id,
                details={"role": role, "status": status, "source": "clerk_webhook"},
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to create user {identity.id}: {e}")
            raise

        logger.info(f"✅ User created: {identity.id} ({identity.email}) role={role}")
        return {"status": "created", "user_id": identity.id}

    def update_user(self, identity: IdentityUser) -> dict:
        """
        Partial update from Clerk data; creates the user when the row does not exist yet
        (updates may arrive before the matching created event).
        """
        user = self.repo.get_user(self.db, identity.id)
        if not user:
            logger.info(f"ℹ️ User {identity.id} not found on update, creating instead")
            return self.create_user(identity)

        if identity.email != user.email:
            owner = self.repo.get_user_by_email(self.db, identity.email)
            if owner and owner.id != user.id:
                logger.warning(
                    f"⚠️ Email {identity.email} already belongs to {owner.id}, skipping update of {user.id}"
                )
                return {"status": "email_conflict", "user_id": user.id}

        fields = {
            "email": identity.email,
            "first_name": identity.first_name,
            "last_name": identity.last_name,
            "name": identity.name,
            "phone": identity.phone,
            "avatar_url": identity.avatar_url,
            "verified": identity.email_verified,
        }
        if identity.last_sign_in_at:
            fields["last_sign_in_at"] = identity.last_sign_in_at

        old_role = user.role
        new_role = identity.role or old_role
        if identity.role:
            fields["role"] = identity.role
        # Onboarding only moves the status of non-professionals
        onboarding_changed = identity.onboarding_complete is not None and new_role != "professional"
        if identity.status or new_role != old_role or onboarding_changed:
            fields["status"] = derive_status(
                new_role, identity.onboarding_complete, identity.status
            )

        try:
            self.repo.update_user(self.db, user, fields)
            if new_role != old_role:
                # The previous role's profile row is intentionally left in place
                self.repo.ensure_role_profile(self.db, user.id, new_role)
                logger.info(f"🔄 Role changed for {user.id}: {old_role} -> {new_role}")
            create_audit_log(
                self.db,
                action="user_updated",
                user_id=user.id,
                resource="user",
                resource_id=user.id,
                details={"fields": sorted(fields.keys()), "old_role": old_role, "new_role": new_role},
                risk_level="high" if new_role != old_role else "low",
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to update user {identity.id}: {e}")
            raise

        logger.info(f"✅ User updated: {user.id}")
        return {"status": "updated", "user_id": user.id, "role_changed": new_role != old_role}

    def delete_user(self, user_id: str) -> dict:
        """Delete the user and everything it owns; deleting an unknown user is a no-op"""
        user = self.repo.get_user(self.db, user_id)
        if not user:
            logger.info(f"ℹ️ User {user_id} not found on delete, nothing to do")
            return {"status": "not_found", "user_id": user_id}

        try:
            self.repo.delete_user(self.db, user)
            create_audit_log(
                self.db,
                action="user_deleted",
                user_id=user_id,
                resource="user",
                resource_id=user_id,
                details={"source": "clerk_webhook"},
                risk_level="high",
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to delete user {user_id}: {e}")
            raise

        logger.info(f"✅ User deleted: {user_id}")
        return {"status": "deleted", "user_id": user_id}

    def mark_email_verified(self, data: dict) -> dict:
        """Set verified=true on the user owning a newly verified email address"""
        email = (data.get("email_address") or "").strip().lower()
        if not email:
            raise IdentityPayloadError("emailAddress.verified payload is missing email_address")

        user = self.repo.get_user_by_email(self.db, email)
        if not user:
            logger.info(f"ℹ️ No user with email {email} to mark verified")
            return {"status": "not_found"}

        self.repo.update_user(self.db, user, {"verified": True})
        self.db.commit()
        return {"status": "verified", "user_id": user.id}

    # ------------------------------------------------------------------
    # Admin sync against the Clerk Backend API
    # ------------------------------------------------------------------

    async def sync_user_from_clerk(self, user_id: str) -> dict:
        """Pull the current Clerk record and reconcile the local row"""
        clerk_user = await self.clerk.get_user(user_id)
        result = self.update_user(normalize_user_payload(clerk_user))
        logger.info(f"✅ Manual sync for {user_id}: {result['status']}")
        return result

    async def validate_user_consistency(self, user_id: str) -> dict:
        """Compare email, role and verified between Clerk and the database"""
        clerk_user = normalize_user_payload(await self.clerk.get_user(user_id))
        user = self.repo.get_user(self.db, user_id)
        if not user:
            return {
                "consistent": False,
                "inconsistencies": [{"field": "user", "clerk": user_id, "database": None}],
            }

        inconsistencies = []
        if clerk_user.email != user.email:
            inconsistencies.append(
                {"field": "email", "clerk": clerk_user.email, "database": user.email}
            )
        if clerk_user.role and clerk_user.role != user.role:
            inconsistencies.append({"field": "role", "clerk": clerk_user.role, "database": user.role})
        if clerk_user.email_verified != user.verified:
            inconsistencies.append(
                {"field": "verified", "clerk": clerk_user.email_verified, "database": user.verified}
            )

        if inconsistencies:
            logger.warning(f"⚠️ User {user_id} inconsistent with Clerk: {inconsistencies}")
            create_audit_log(
                self.db,
                action="user_inconsistency_detected",
                user_id=user_id,
                resource="user_consistency",
                resource_id=user_id,
                details={"inconsistencies": inconsistencies},
                risk_level="medium",
            )
            self.db.commit()

        return {
            "consistent": not inconsistencies,
            "inconsistencies": inconsistencies,
            "rows": self.repo.count_rows(self.db, user_id),
        }


EVENT_HANDLERS: dict[EventKind, Callable[[ReconciliationService, dict], dict]] = {
    EventKind.USER_CREATED: ReconciliationService.on_user_created,
    EventKind.USER_UPDATED: ReconciliationService.on_user_updated,
    EventKind.USER_DELETED: ReconciliationService.on_user_deleted,
    EventKind.EMAIL_ADDRESS_VERIFIED: ReconciliationService.on_email_verified,
    **{kind: ReconciliationService.on_informational for kind in INFORMATIONAL_KINDS},
}

_unhandled = set(EventKind) - set(EVENT_HANDLERS)
if _unhandled:
    raise RuntimeError(
        f"Identity event kinds without a handler: {sorted(k.value for k in _unhandled)}"
    )
