"""
Identity events - Clerk webhook envelope parsing and user payload normalization

Everything that knows the shape of Clerk's JSON lives here. The rest of the
identity domain only sees EventKind and IdentityUser.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ValidationError

from ...models import USER_ROLES, USER_STATUSES


class IdentityPayloadError(ValueError):
    """Raised when a webhook body or user payload cannot be used"""

    pass


class EventKind(str, Enum):
    """Every Clerk event type this service understands"""

    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_DELETED = "user.deleted"
    SESSION_CREATED = "session.created"
    SESSION_ENDED = "session.ended"
    SESSION_REMOVED = "session.removed"
    SESSION_REVOKED = "session.revoked"
    EMAIL_CREATED = "email.created"
    SMS_CREATED = "sms.created"
    EMAIL_ADDRESS_VERIFIED = "emailAddress.verified"


# Logged only; no database writes
INFORMATIONAL_KINDS = frozenset(
    {
        EventKind.SESSION_CREATED,
        EventKind.SESSION_ENDED,
        EventKind.SESSION_REMOVED,
        EventKind.SESSION_REVOKED,
        EventKind.EMAIL_CREATED,
        EventKind.SMS_CREATED,
    }
)


class WebhookEnvelope(BaseModel):
    type: str
    data: dict
    object: Optional[str] = None


class IdentityEvent(BaseModel):
    type: str
    kind: Optional[EventKind] = None  # None for event types we don't handle
    data: dict


class IdentityUser(BaseModel):
    """Internal view of a Clerk user"""

    id: str
    email: str
    email_verified: bool = False
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    name: str
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    # Only set when public metadata carried a valid value
    role: Optional[str] = None
    status: Optional[str] = None
    onboarding_complete: Optional[bool] = None
    last_sign_in_at: Optional[datetime] = None


def parse_event(raw_body: bytes) -> IdentityEvent:
    """Parse a verified webhook body into an IdentityEvent"""
    try:
        envelope = WebhookEnvelope.model_validate(json.loads(raw_body))
    except (ValueError, ValidationError) as e:
        raise IdentityPayloadError(f"Invalid webhook payload: {e}") from e

    try:
        kind = EventKind(envelope.type)
    except ValueError:
        kind = None

    return IdentityEvent(type=envelope.type, kind=kind, data=envelope.data)


def _pick_primary(entries: list, primary_id: Optional[str]) -> Optional[dict]:
    """Return the entry whose id matches primary_id, else the first entry"""
    if not entries:
        return None
    for entry in entries:
        if primary_id and entry.get("id") == primary_id:
            return entry
    return entries[0]


def _from_epoch_ms(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc).replace(tzinfo=None)
    except (TypeError, ValueError, OverflowError):
        return None


def normalize_user_payload(data: dict) -> IdentityUser:
    """
    Map a Clerk user object into an IdentityUser.

    Email is the primary email address (falling back to the first one); the display
    name falls back to the email local-part when first/last name are blank.
    """
    user_id = data.get("id")
    if not user_id:
        raise IdentityPayloadError("User payload is missing an id")

    email_entry = _pick_primary(
        data.get("email_addresses") or [], data.get("primary_email_address_id")
    )
    email = (email_entry or {}).get("email_address")
    if not email:
        raise IdentityPayloadError(f"No usable email address for user {user_id}")
    email = email.strip().lower()

    verification = (email_entry or {}).get("verification") or {}
    phone_entry = _pick_primary(
        data.get("phone_numbers") or [], data.get("primary_phone_number_id")
    )

    first_name = (data.get("first_name") or "").strip() or None
    last_name = (data.get("last_name") or "").strip() or None
    full_name = " ".join(part for part in (first_name, last_name) if part)

    metadata = data.get("public_metadata") or {}
    role = metadata.get("role")
    status = metadata.get("status")
    onboarding = metadata.get("onboardingComplete")

    return IdentityUser(
        id=user_id,
        email=email,
        email_verified=verification.get("status") == "verified",
        first_name=first_name,
        last_name=last_name,
        name=full_name or email.split("@")[0],
        phone=(phone_entry or {}).get("phone_number"),
        avatar_url=data.get("image_url") or None,
        role=role if role in USER_ROLES else None,
        status=status if status in USER_STATUSES else None,
        onboarding_complete=onboarding if isinstance(onboarding, bool) else None,
        last_sign_in_at=_from_epoch_ms(data.get("last_sign_in_at")),
    )


def derive_status(
    role: str, onboarding_complete: Optional[bool] = None, explicit: Optional[str] = None
) -> str:
    """Account status for a role; an explicit metadata status wins"""
    if explicit in USER_STATUSES:
        return explicit
    if role == "professional":
        return "pending_validation"
    if onboarding_complete is False:
        return "incomplete"
    return "active"
