from app.models import AuditLog, ProfessionalProfile, User, UserPreferences


def test_profile_creates_default_preferences_on_first_read(client, db, login, make_user):
    login(make_user())

    response = client.get("/users/profile")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["id"] == "user_patient"
    assert data["role"] == "patient"
    assert data["preferences"]["theme"] == "light"
    assert data["patient_profile"] is None
    assert db.query(UserPreferences).count() == 1


def test_professional_profile_is_included_for_professionals(client, db, login, make_user):
    user = make_user(user_id="user_doc", role="professional", status="pending_validation")
    db.add(ProfessionalProfile(user_id=user.id, license_number="CED-123", dni="DNI-9"))
    db.commit()
    login(user)

    data = client.get("/users/profile").json()["data"]

    assert data["professional_profile"]["license_number"] == "CED-123"
    assert "patient_profile" not in data


def test_upgrade_without_license_is_rejected_and_nothing_changes(client, db, login, make_user):
    user = make_user()
    login(user)

    response = client.patch("/users/role", json={"role": "professional", "dni": "DNI-1"})

    assert response.status_code == 400
    assert response.json()["success"] is False
    db.expire_all()
    assert db.query(User).filter(User.id == user.id).one().role == "patient"
    assert db.query(ProfessionalProfile).count() == 0


def test_upgrade_to_professional(client, db, login, make_user):
    user = make_user()
    login(user)

    response = client.patch(
        "/users/role",
        json={"role": "professional", "license_number": " CED-777 ", "dni": "DNI-1"},
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["role"] == "professional"
    assert data["status"] == "pending_validation"
    assert data["professional_profile"]["license_number"] == "CED-777"
    assert data["professional_profile"]["specialty"] == "Medicina General"
    # Clerk is not configured in tests; the local change still stands
    assert data["clerk_synced"] is False
    audit = db.query(AuditLog).filter(AuditLog.action == "role_changed").one()
    assert audit.risk_level == "high"


def test_only_professional_role_can_be_requested(client, login, make_user):
    login(make_user())

    response = client.patch(
        "/users/role", json={"role": "admin", "license_number": "CED-1", "dni": "DNI-1"}
    )

    assert response.status_code == 422


def test_preferences_update_is_partial(client, login, make_user):
    login(make_user())

    response = client.put("/users/preferences", json={"theme": "dark", "sms_notifications": True})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["theme"] == "dark"
    assert data["sms_notifications"] is True
    assert data["language"] == "es"
    assert data["email_notifications"] is True

    data = client.put("/users/preferences", json={"language": "en"}).json()["data"]
    assert data["theme"] == "dark"
    assert data["language"] == "en"


def test_invalid_preferences_are_rejected(client, login, make_user):
    login(make_user())

    response = client.put("/users/preferences", json={"theme": "neon"})

    assert response.status_code == 422
    assert response.json()["message"] == "Validation error"


def test_requests_without_token_are_rejected(client):
    response = client.get("/users/profile")

    assert response.status_code in (401, 403)
    assert response.json()["success"] is False
