import json

import pytest

from app.domain.identity.events import (
    EventKind,
    IdentityPayloadError,
    derive_status,
    normalize_user_payload,
    parse_event,
)


def test_normalize_uses_primary_email_and_full_name(clerk_user):
    data = clerk_user(email="  Ana@Example.COM ", role="patient")
    data["email_addresses"].insert(
        0, {"id": "idn_other", "email_address": "old@example.com", "verification": {}}
    )

    identity = normalize_user_payload(data)

    assert identity.id == "user_2abc"
    assert identity.email == "ana@example.com"
    assert identity.email_verified is True
    assert identity.name == "Ana García"
    assert identity.role == "patient"
    assert identity.avatar_url == "https://img.clerk.com/avatar.png"
    assert identity.last_sign_in_at is not None


def test_normalize_falls_back_to_first_email_and_email_local_part(clerk_user):
    data = clerk_user(email="dr.house@example.com", first_name=None, last_name="  ")
    data["primary_email_address_id"] = None

    identity = normalize_user_payload(data)

    assert identity.email == "dr.house@example.com"
    assert identity.name == "dr.house"


def test_normalize_drops_unknown_role_and_status(clerk_user):
    identity = normalize_user_payload(clerk_user(role="superuser", status="banned"))

    assert identity.role is None
    assert identity.status is None


def test_normalize_reads_onboarding_flag(clerk_user):
    identity = normalize_user_payload(clerk_user(onboardingComplete=False))

    assert identity.onboarding_complete is False


def test_normalize_requires_id_and_email(clerk_user):
    data = clerk_user()
    data["id"] = None
    with pytest.raises(IdentityPayloadError):
        normalize_user_payload(data)

    data = clerk_user()
    data["email_addresses"] = []
    with pytest.raises(IdentityPayloadError):
        normalize_user_payload(data)


def test_parse_event_maps_known_types():
    event = parse_event(json.dumps({"type": "user.created", "data": {"id": "user_1"}}).encode())

    assert event.kind is EventKind.USER_CREATED
    assert event.data == {"id": "user_1"}


def test_parse_event_keeps_unknown_types_without_kind():
    event = parse_event(json.dumps({"type": "organization.created", "data": {}}).encode())

    assert event.kind is None
    assert event.type == "organization.created"


@pytest.mark.parametrize("body", [b"not json", b'{"data": {}}', b'{"type": "user.created"}'])
def test_parse_event_rejects_malformed_bodies(body):
    with pytest.raises(IdentityPayloadError):
        parse_event(body)


@pytest.mark.parametrize(
    "role,onboarding,explicit,expected",
    [
        ("patient", None, None, "active"),
        ("patient", False, None, "incomplete"),
        ("professional", True, None, "pending_validation"),
        ("admin", None, None, "active"),
        ("professional", None, "active", "active"),
    ],
)
def test_derive_status(role, onboarding, explicit, expected):
    assert derive_status(role, onboarding, explicit) == expected
