"""Users repository - Database operations for profiles and preferences"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from ...database import dialect_insert
from ...models import DEFAULT_SPECIALTY, PatientProfile, ProfessionalProfile, User, UserPreferences


class UserRepository:
    """Repository for user profile database operations"""

    @staticmethod
    def get_user_with_preferences(db: Session, user_id: str) -> Optional[User]:
        """Get user joined with preferences"""
        return (
            db.query(User)
            .options(joinedload(User.preferences))
            .filter(User.id == user_id)
            .first()
        )

    @staticmethod
    def get_patient_profile(db: Session, user_id: str) -> Optional[PatientProfile]:
        return db.query(PatientProfile).filter(PatientProfile.user_id == user_id).first()

    @staticmethod
    def get_professional_profile(db: Session, user_id: str) -> Optional[ProfessionalProfile]:
        return (
            db.query(ProfessionalProfile).filter(ProfessionalProfile.user_id == user_id).first()
        )

    @staticmethod
    def create_default_preferences(db: Session, user_id: str) -> None:
        stmt = (
            dialect_insert(db, UserPreferences)
            .values(user_id=user_id)
            .on_conflict_do_nothing(index_elements=["user_id"])
        )
        db.execute(stmt)

    @staticmethod
    def update_preferences(db: Session, user_id: str, fields: dict) -> int:
        """Update only the given columns; returns the number of rows touched"""
        if not fields:
            return db.query(UserPreferences).filter(UserPreferences.user_id == user_id).count()
        return (
            db.query(UserPreferences)
            .filter(UserPreferences.user_id == user_id)
            .update({**fields, "updated_at": datetime.utcnow()}, synchronize_session="fetch")
        )

    @staticmethod
    def get_preferences(db: Session, user_id: str) -> Optional[UserPreferences]:
        return db.query(UserPreferences).filter(UserPreferences.user_id == user_id).first()

    @staticmethod
    def upsert_professional_profile(
        db: Session,
        user_id: str,
        license_number: str,
        dni: str,
        specialty: Optional[str],
    ) -> None:
        """Insert the professional profile, or refresh its credentials if it exists"""
        now = datetime.utcnow()
        stmt = dialect_insert(db, ProfessionalProfile).values(
            user_id=user_id,
            license_number=license_number,
            dni=dni,
            specialty=specialty or DEFAULT_SPECIALTY,
            verified=False,
            profile_completed=False,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={
                "license_number": stmt.excluded.license_number,
                "dni": stmt.excluded.dni,
                "specialty": stmt.excluded.specialty,
                "verified": False,
                "updated_at": now,
            },
        )
        db.execute(stmt)

    @staticmethod
    def update_user_fields(db: Session, user_id: str, fields: dict) -> int:
        """Update the given user columns; returns the number of rows touched"""
        if not fields:
            return db.query(User).filter(User.id == user_id).count()
        return (
            db.query(User)
            .filter(User.id == user_id)
            .update({**fields, "updated_at": datetime.utcnow()}, synchronize_session="fetch")
        )

    @staticmethod
    def update_role_profile(db: Session, model, user_id: str, fields: dict) -> None:
        """Update a role profile row, creating it with its defaults first when missing"""
        now = datetime.utcnow()
        db.execute(
            dialect_insert(db, model)
            .values(user_id=user_id, created_at=now, updated_at=now)
            .on_conflict_do_nothing(index_elements=["user_id"])
        )
        if fields:
            db.query(model).filter(model.user_id == user_id).update(
                {**fields, "updated_at": now}, synchronize_session="fetch"
            )
