import asyncio
from datetime import datetime

import pytest
from fastapi import HTTPException

from app.domain.identity.clerk_client import ClerkClient
from app.domain.users.profile_service import ProfileService
from app.domain.users.schemas import ProfileUpdate
from app.models import AuditLog, PatientProfile, ProfessionalProfile, User, UserPreferences


@pytest.fixture
def service(db):
    return ProfileService(db, clerk_client=ClerkClient(secret_key=None))


def test_partial_update_keeps_missing_fields(db, service, make_user):
    user = make_user(phone="+52 55 0000 0000", avatar_url="https://img.example.com/a.png")

    profile = service.update_profile(user, ProfileUpdate(name="Ana María", avatar_url=None))

    assert profile["name"] == "Ana María"
    assert profile["phone"] == "+52 55 0000 0000"
    assert profile["avatar_url"] == "https://img.example.com/a.png"
    audit = db.query(AuditLog).filter(AuditLog.action == "profile_updated").one()
    assert audit.details["user_fields"] == ["name"]


def test_patient_fields_are_merged_into_profile(db, service, make_user):
    user = make_user()

    service.update_profile(
        user,
        ProfileUpdate(patient={"allergies": "Penicilina", "date_of_birth": "1990-05-01"}),
    )
    profile = service.update_profile(user, ProfileUpdate(patient={"gender": "female"}))

    assert profile["patient_profile"]["allergies"] == "Penicilina"
    assert profile["patient_profile"]["gender"] == "female"
    assert profile["patient_profile"]["date_of_birth"] == datetime(1990, 5, 1)
    assert db.query(PatientProfile).filter(PatientProfile.user_id == user.id).count() == 1


def test_professional_fields_update_and_other_section_is_ignored(db, service, make_user):
    user = make_user(user_id="user_doc", role="professional", status="pending_validation")
    db.add(ProfessionalProfile(user_id=user.id, license_number="CED-123", dni="DNI-9"))
    db.commit()

    profile = service.update_profile(
        user,
        ProfileUpdate(
            professional={"bio": "Cardióloga", "consultation_fee": 80000},
            patient={"allergies": "Ninguna"},
        ),
    )

    professional = profile["professional_profile"]
    assert professional["bio"] == "Cardióloga"
    assert professional["consultation_fee"] == 80000
    assert professional["license_number"] == "CED-123"
    assert db.query(PatientProfile).count() == 0


def test_default_preferences_are_created_on_read(db, service, make_user):
    user = make_user()

    preferences = service.get_preferences(user.id)

    assert preferences["theme"] == "light"
    assert preferences["language"] == "es"
    assert preferences["sms_notifications"] is False
    assert db.query(UserPreferences).filter(UserPreferences.user_id == user.id).count() == 1


def test_admin_cannot_self_upgrade(db, service, make_user):
    admin = make_user(user_id="user_admin", role="admin")

    with pytest.raises(HTTPException) as exc:
        asyncio.run(service.upgrade_to_professional(admin, "CED-1", "DNI-1"))

    assert exc.value.status_code == 403
    db.expire_all()
    assert db.query(User).filter(User.id == "user_admin").one().role == "admin"
    assert db.query(ProfessionalProfile).count() == 0


def test_profile_endpoints_use_envelope(client, login, make_user):
    login(make_user())

    response = client.put(
        "/users/profile", json={"phone": "+52 55 1111 2222", "patient": {"gender": "female"}}
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["message"] == "Profile updated successfully"
    assert payload["data"]["phone"] == "+52 55 1111 2222"
    assert payload["data"]["name"] == "Ana García"
    assert payload["data"]["patient_profile"]["gender"] == "female"

    preferences = client.get("/users/preferences").json()
    assert preferences["success"] is True
    assert preferences["data"]["timezone"] == "Europe/Madrid"


def test_negative_consultation_fee_is_rejected(client, login, make_user):
    login(make_user(user_id="user_doc", role="professional"))

    response = client.put("/users/profile", json={"professional": {"consultation_fee": -1}})

    assert response.status_code == 422
