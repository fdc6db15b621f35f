"""Profile service - Business logic for profiles, role upgrades and preferences"""

import logging
from datetime import datetime, time
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...models import PatientProfile, ProfessionalProfile, User
from ...services.audit_service import create_audit_log
from ..identity.clerk_client import ClerkAPIError, ClerkClient
from .repository import UserRepository
from .schemas import PreferencesUpdate, ProfileUpdate

logger = logging.getLogger(__name__)

PREFERENCE_FIELDS = (
    "theme",
    "notifications_enabled",
    "language",
    "timezone",
    "email_notifications",
    "sms_notifications",
    "marketing_emails",
)

PROFESSIONAL_FIELDS = (
    "license_number",
    "dni",
    "specialty",
    "verified",
    "profile_completed",
    "subscription_plan",
    "bio",
    "experience_years",
    "consultation_fee",
)

PATIENT_FIELDS = (
    "date_of_birth",
    "gender",
    "emergency_contact_name",
    "emergency_contact_phone",
    "medical_history",
    "allergies",
    "current_medications",
)


def _columns(obj, fields) -> Optional[dict]:
    if obj is None:
        return None
    return {field: getattr(obj, field) for field in fields}


class ProfileService:
    """Service for user profiles and role transitions"""

    def __init__(self, db: Session, clerk_client: Optional[ClerkClient] = None):
        self.db = db
        self.repo = UserRepository()
        self.clerk = clerk_client or ClerkClient()

    def get_profile(self, user_id: str) -> dict:
        """Merged view of user, preferences and the profile matching the user's role"""
        user = self.repo.get_user_with_preferences(self.db, user_id)
        if not user:
            raise HTTPException(status_code=404, detail="User not found")

        preferences = user.preferences
        if preferences is None:
            self.repo.create_default_preferences(self.db, user_id)
            self.db.commit()
            preferences = self.repo.get_preferences(self.db, user_id)

        profile = {
            "id": user.id,
            "email": user.email,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "name": user.name,
            "phone": user.phone,
            "avatar_url": user.avatar_url,
            "role": user.role,
            "status": user.status,
            "verified": user.verified,
            "created_at": user.created_at,
            "updated_at": user.updated_at,
            "preferences": _columns(preferences, PREFERENCE_FIELDS),
        }

        if user.role == "professional":
            profile["professional_profile"] = _columns(
                self.repo.get_professional_profile(self.db, user_id), PROFESSIONAL_FIELDS
            )
        elif user.role == "patient":
            profile["patient_profile"] = _columns(
                self.repo.get_patient_profile(self.db, user_id), PATIENT_FIELDS
            )

        return profile

    def update_profile(
        self,
        user: User,
        update: ProfileUpdate,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> dict:
        """
        Merge the provided fields into the user and its role profile.

        Null or missing values keep what is stored. Only the section matching the
        user's role is applied; the other one is ignored.
        """
        user_fields = {
            key: value
            for key, value in update.model_dump(include={"name", "phone", "avatar_url"}).items()
            if value is not None
        }

        profile_model, profile_fields = None, {}
        if user.role == "professional" and update.professional:
            profile_model = ProfessionalProfile
            profile_fields = update.professional.model_dump(exclude_none=True)
        elif user.role == "patient" and update.patient:
            profile_model = PatientProfile
            profile_fields = update.patient.model_dump(exclude_none=True)
            if "date_of_birth" in profile_fields:
                profile_fields["date_of_birth"] = datetime.combine(
                    profile_fields["date_of_birth"], time.min
                )

        try:
            if not self.repo.update_user_fields(self.db, user.id, user_fields):
                raise HTTPException(status_code=404, detail="User not found")
            if profile_model is not None:
                self.repo.update_role_profile(self.db, profile_model, user.id, profile_fields)
            create_audit_log(
                self.db,
                action="profile_updated",
                user_id=user.id,
                resource="user_profile",
                resource_id=user.id,
                details={
                    "user_fields": sorted(user_fields.keys()),
                    "profile_fields": sorted(profile_fields.keys()),
                },
                ip_address=ip_address,
                user_agent=user_agent,
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to update profile for {user.id}: {e}")
            raise

        logger.info(
            f"✅ Profile updated for {user.id}: {sorted(user_fields)} {sorted(profile_fields)}"
        )
        self.db.expire_all()
        return self.get_profile(user.id)

    def get_preferences(self, user_id: str) -> dict:
        """Current preferences, creating the default row on first read"""
        preferences = self.repo.get_preferences(self.db, user_id)
        if preferences is None:
            self.repo.create_default_preferences(self.db, user_id)
            self.db.commit()
            preferences = self.repo.get_preferences(self.db, user_id)
        return _columns(preferences, PREFERENCE_FIELDS)

    async def upgrade_to_professional(
        self,
        user: User,
        license_number: Optional[str],
        dni: Optional[str],
        specialty: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> dict:
        """
        Turn a user into a professional pending validation.

        License number and DNI are both required; nothing is written when either is missing.
        The new role is mirrored into Clerk public metadata after the local commit.
        """
        if user.role == "admin":
            raise HTTPException(status_code=403, detail="Admins cannot change their own role")

        license_number = (license_number or "").strip()
        dni = (dni or "").strip()
        if not license_number or not dni:
            raise HTTPException(
                status_code=400,
                detail="license_number and dni are required to become a professional",
            )

        old_role = user.role
        try:
            user.role = "professional"
            user.status = "pending_validation"
            self.repo.upsert_professional_profile(
                self.db, user.id, license_number, dni, (specialty or "").strip() or None
            )
            create_audit_log(
                self.db,
                action="role_changed",
                user_id=user.id,
                resource="user_role",
                resource_id=user.id,
                details={"old_role": old_role, "new_role": "professional", "source": "self_service"},
                ip_address=ip_address,
                user_agent=user_agent,
                risk_level="high",
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to upgrade user {user.id} to professional: {e}")
            raise

        logger.info(f"✅ User {user.id} upgraded: {old_role} -> professional")

        clerk_synced = False
        try:
            await self.clerk.update_public_metadata(
                user.id, {"role": "professional", "onboardingComplete": False}
            )
            clerk_synced = True
        except ClerkAPIError as e:
            # Local state is authoritative; Clerk catches up on the next sync
            logger.warning(f"⚠️ Failed to mirror role to Clerk for {user.id}: {e}")

        profile = self.get_profile(user.id)
        profile["clerk_synced"] = clerk_synced
        return profile

    def update_preferences(self, user_id: str, update: PreferencesUpdate) -> dict:
        """Apply only provided fields; create the default row first when missing"""
        fields = {
            key: value
            for key, value in update.model_dump(exclude_unset=True).items()
            if value is not None and key in PREFERENCE_FIELDS
        }

        try:
            updated = self.repo.update_preferences(self.db, user_id, fields)
            if not updated:
                logger.info(f"ℹ️ No preferences for {user_id}, creating defaults and retrying")
                self.repo.create_default_preferences(self.db, user_id)
                self.repo.update_preferences(self.db, user_id, fields)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to update preferences for {user_id}: {e}")
            raise

        preferences = self.repo.get_preferences(self.db, user_id)
        logger.info(f"✅ Preferences updated for {user_id}: {sorted(fields.keys())}")
        return _columns(preferences, PREFERENCE_FIELDS)
