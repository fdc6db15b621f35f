"""Identity repository - conflict-safe writes for users and their side tables"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...database import dialect_insert
from ...models import (
    DEFAULT_SPECIALTY,
    PENDING_PLACEHOLDER,
    PatientProfile,
    ProfessionalProfile,
    User,
    UserPreferences,
)


class IdentityRepository:
    """Repository for user reconciliation database operations"""

    @staticmethod
    def get_user(db: Session, user_id: str) -> Optional[User]:
        """Get user by Clerk ID"""
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_user_by_email(db: Session, email: str) -> Optional[User]:
        """Get user by email"""
        return db.query(User).filter(User.email == email).first()

    @staticmethod
    def insert_user_if_absent(db: Session, values: dict) -> bool:
        """
        INSERT ... ON CONFLICT DO NOTHING on any unique key (id or email).

        Returns True when this call created the row.
        """
        now = datetime.utcnow()
        stmt = (
            dialect_insert(db, User)
            .values(created_at=now, updated_at=now, **values)
            .on_conflict_do_nothing()
        )
        return db.execute(stmt).rowcount == 1

    @staticmethod
    def ensure_preferences(db: Session, user_id: str) -> None:
        """Create default preferences unless the user already has them"""
        stmt = (
            dialect_insert(db, UserPreferences)
            .values(user_id=user_id)
            .on_conflict_do_nothing(index_elements=["user_id"])
        )
        db.execute(stmt)

    @staticmethod
    def ensure_role_profile(db: Session, user_id: str, role: str) -> None:
        """Create the side-table row for a role unless it already exists (admins have none)"""
        if role == "patient":
            stmt = dialect_insert(db, PatientProfile).values(user_id=user_id)
        elif role == "professional":
            stmt = dialect_insert(db, ProfessionalProfile).values(
                user_id=user_id,
                license_number=PENDING_PLACEHOLDER,
                dni=PENDING_PLACEHOLDER,
                specialty=DEFAULT_SPECIALTY,
                verified=False,
                profile_completed=False,
            )
        else:
            return
        db.execute(stmt.on_conflict_do_nothing(index_elements=["user_id"]))

    @staticmethod
    def update_user(db: Session, user: User, fields: dict) -> User:
        """Apply a partial update (caller commits)"""
        for key, value in fields.items():
            setattr(user, key, value)
        user.updated_at = datetime.utcnow()
        db.flush()
        return user

    @staticmethod
    def delete_user(db: Session, user: User) -> None:
        """Delete the user; ORM cascades remove preferences, profiles and billing rows"""
        db.delete(user)
        db.flush()

    @staticmethod
    def count_rows(db: Session, user_id: str) -> dict:
        """Row counts per table for a user (used by consistency checks)"""
        return {
            "users": db.query(User).filter(User.id == user_id).count(),
            "preferences": db.query(UserPreferences)
            .filter(UserPreferences.user_id == user_id)
            .count(),
            "patient_profiles": db.query(PatientProfile)
            .filter(PatientProfile.user_id == user_id)
            .count(),
            "professional_profiles": db.query(ProfessionalProfile)
            .filter(ProfessionalProfile.user_id == user_id)
            .count(),
        }
