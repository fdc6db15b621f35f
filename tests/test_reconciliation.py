import asyncio
import json

import pytest

from app.domain.identity.clerk_client import ClerkClient
from app.domain.identity.events import normalize_user_payload, parse_event
from app.domain.identity.reconciliation_service import ReconciliationService
from app.models import AuditLog, PatientProfile, ProfessionalProfile, User, UserPreferences, WebhookEvent


class FakeClerkClient(ClerkClient):
    def __init__(self, users: dict):
        super().__init__(secret_key="sk_test")
        self.users = users

    async def get_user(self, user_id: str) -> dict:
        return self.users[user_id]


@pytest.fixture
def service(db):
    return ReconciliationService(db, clerk_client=ClerkClient(secret_key=None))


def event(event_type: str, data: dict):
    return parse_event(json.dumps({"type": event_type, "object": "event", "data": data}).encode())


def test_create_user_writes_user_preferences_and_patient_profile(db, service, clerk_user):
    result = service.create_user(normalize_user_payload(clerk_user()))

    assert result == {"status": "created", "user_id": "user_2abc"}
    user = db.query(User).filter(User.id == "user_2abc").one()
    assert user.role == "patient"
    assert user.status == "active"
    assert user.verified is True
    assert service.repo.count_rows(db, "user_2abc") == {
        "users": 1,
        "preferences": 1,
        "patient_profiles": 1,
        "professional_profiles": 0,
    }
    preferences = db.query(UserPreferences).filter(UserPreferences.user_id == "user_2abc").one()
    assert preferences.theme == "light"
    assert preferences.language == "es"
    assert db.query(AuditLog).filter(AuditLog.action == "user_created").count() == 1


def test_create_professional_gets_placeholder_profile(db, service, clerk_user):
    service.create_user(normalize_user_payload(clerk_user(role="professional")))

    user = db.query(User).filter(User.id == "user_2abc").one()
    profile = db.query(ProfessionalProfile).filter(ProfessionalProfile.user_id == "user_2abc").one()
    assert user.status == "pending_validation"
    assert profile.license_number == "PENDING"
    assert profile.dni == "PENDING"
    assert profile.verified is False


def test_repeated_create_converges_on_one_row_each(db, service, clerk_user):
    identity = normalize_user_payload(clerk_user())

    first = service.create_user(identity)
    second = service.create_user(identity)

    assert first["status"] == "created"
    assert second["status"] == "already_exists"
    assert service.repo.count_rows(db, "user_2abc") == {
        "users": 1,
        "preferences": 1,
        "patient_profiles": 1,
        "professional_profiles": 0,
    }


def test_atomic_insert_keeps_one_row_for_the_same_id(db, service):
    values = {"id": "user_race", "email": "race@example.com", "role": "patient", "status": "active"}

    assert service.repo.insert_user_if_absent(db, values) is True
    assert service.repo.insert_user_if_absent(db, dict(values)) is False
    db.commit()

    assert db.query(User).filter(User.id == "user_race").count() == 1


def test_email_owned_by_another_user_is_a_benign_conflict(db, service, clerk_user):
    service.create_user(normalize_user_payload(clerk_user(user_id="user_a")))

    result = service.create_user(normalize_user_payload(clerk_user(user_id="user_b")))

    assert result["status"] == "email_conflict"
    assert db.query(User).count() == 1


def test_update_before_create_creates_the_user(db, service, clerk_user):
    result = service.handle_event(event("user.updated", clerk_user(first_name="Lucía")))

    assert result["status"] == "created"
    assert db.query(User).filter(User.id == "user_2abc").one().name == "Lucía García"


def test_update_changes_fields(db, service, clerk_user):
    service.create_user(normalize_user_payload(clerk_user()))

    result = service.update_user(
        normalize_user_payload(clerk_user(email="ana.nueva@example.com", first_name="Anita"))
    )

    assert result == {"status": "updated", "user_id": "user_2abc", "role_changed": False}
    db.expire_all()
    user = db.query(User).filter(User.id == "user_2abc").one()
    assert user.email == "ana.nueva@example.com"
    assert user.first_name == "Anita"


def test_role_change_keeps_previous_profile(db, service, clerk_user):
    service.create_user(normalize_user_payload(clerk_user()))

    result = service.update_user(normalize_user_payload(clerk_user(role="professional")))

    assert result["role_changed"] is True
    db.expire_all()
    user = db.query(User).filter(User.id == "user_2abc").one()
    assert user.role == "professional"
    assert user.status == "pending_validation"
    assert db.query(PatientProfile).filter(PatientProfile.user_id == "user_2abc").count() == 1
    assert db.query(ProfessionalProfile).filter(ProfessionalProfile.user_id == "user_2abc").count() == 1
    audit = db.query(AuditLog).filter(AuditLog.action == "user_updated").one()
    assert audit.risk_level == "high"


def test_delete_removes_user_and_owned_rows(db, service, clerk_user):
    service.create_user(normalize_user_payload(clerk_user()))

    result = service.handle_event(event("user.deleted", {"id": "user_2abc", "deleted": True}))

    assert result["status"] == "deleted"
    assert service.repo.count_rows(db, "user_2abc") == {
        "users": 0,
        "preferences": 0,
        "patient_profiles": 0,
        "professional_profiles": 0,
    }
    # The audit trail outlives the user
    assert db.query(AuditLog).filter(AuditLog.action == "user_deleted").count() == 1


def test_delete_unknown_user_is_a_no_op(service):
    assert service.delete_user("user_missing") == {"status": "not_found", "user_id": "user_missing"}


def test_email_verified_event_marks_user_verified(db, service, clerk_user):
    service.create_user(normalize_user_payload(clerk_user(verified=False)))

    result = service.handle_event(
        event("emailAddress.verified", {"email_address": "ANA@example.com"})
    )

    assert result["status"] == "verified"
    db.expire_all()
    assert db.query(User).filter(User.id == "user_2abc").one().verified is True


def test_session_and_unknown_events_write_nothing(db, service):
    assert service.handle_event(event("session.created", {"user_id": "user_1"}))["status"] == "logged"
    assert service.handle_event(event("organization.created", {}))["status"] == "ignored"
    assert db.query(User).count() == 0


def test_duplicate_delivery_is_processed_once(db, service, clerk_user):
    created = event("user.created", clerk_user())

    first = service.process_delivery("msg_1", created)
    second = service.process_delivery("msg_1", created)

    assert first["status"] == "created"
    assert second["status"] == "duplicate_delivery"
    assert db.query(AuditLog).filter(AuditLog.action == "user_created").count() == 1


def test_late_update_after_delete_recreates_user(db, service, clerk_user):
    service.process_delivery("msg_1", event("user.created", clerk_user()))
    service.process_delivery("msg_2", event("user.deleted", {"id": "user_2abc"}))

    result = service.process_delivery("msg_3", event("user.updated", clerk_user()))

    assert result["status"] == "created"
    assert db.query(User).count() == 1


def test_sync_and_validate_against_clerk(db, clerk_user):
    remote = clerk_user(role="professional")
    service = ReconciliationService(db, clerk_client=FakeClerkClient({"user_2abc": remote}))
    service.create_user(normalize_user_payload(clerk_user()))

    report = asyncio.run(service.validate_user_consistency("user_2abc"))
    assert report["consistent"] is False
    assert [item["field"] for item in report["inconsistencies"]] == ["role"]

    result = asyncio.run(service.sync_user_from_clerk("user_2abc"))
    assert result["status"] == "updated"
    assert asyncio.run(service.validate_user_consistency("user_2abc"))["consistent"] is True


def test_update_to_an_email_owned_by_another_user_is_a_conflict(db, service, clerk_user):
    service.create_user(normalize_user_payload(clerk_user(user_id="user_stale", email="new@example.com")))
    service.create_user(normalize_user_payload(clerk_user(user_id="user_a", email="old@example.com")))

    result = service.process_delivery(
        "msg_conflict", event("user.updated", clerk_user(user_id="user_a", email="new@example.com"))
    )

    assert result == {"status": "email_conflict", "user_id": "user_a", "event_type": "user.updated"}
    db.expire_all()
    assert db.query(User).filter(User.id == "user_a").one().email == "old@example.com"
    assert db.query(WebhookEvent).filter(WebhookEvent.event_id == "msg_conflict").one().processed is True


def test_onboarding_flag_rederives_patient_status(db, service, clerk_user):
    service.create_user(normalize_user_payload(clerk_user()))

    service.update_user(normalize_user_payload(clerk_user(onboardingComplete=False)))
    db.expire_all()
    assert db.query(User).filter(User.id == "user_2abc").one().status == "incomplete"

    service.update_user(normalize_user_payload(clerk_user(onboardingComplete=True)))
    db.expire_all()
    assert db.query(User).filter(User.id == "user_2abc").one().status == "active"


def test_onboarding_flag_leaves_professional_status_alone(db, service, clerk_user):
    service.create_user(normalize_user_payload(clerk_user(role="professional", status="active")))

    service.update_user(normalize_user_payload(clerk_user(role="professional", onboardingComplete=True)))

    db.expire_all()
    assert db.query(User).filter(User.id == "user_2abc").one().status == "active"
