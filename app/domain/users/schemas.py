"""Users domain schemas - Pydantic models for validation"""

from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, field_validator


class RoleUpgradeRequest(BaseModel):
    """Schema for PATCH /users/role"""

    role: Literal["professional"] = "professional"
    license_number: Optional[str] = None
    dni: Optional[str] = None
    specialty: Optional[str] = None


class PreferencesUpdate(BaseModel):
    """Schema for PUT /users/preferences - only provided fields are applied"""

    theme: Optional[str] = None
    notifications_enabled: Optional[bool] = None
    language: Optional[str] = None
    timezone: Optional[str] = None
    email_notifications: Optional[bool] = None
    sms_notifications: Optional[bool] = None
    marketing_emails: Optional[bool] = None

    @field_validator("theme")
    @classmethod
    def validate_theme(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if v not in {"light", "dark", "system"}:
            raise ValueError("theme must be 'light', 'dark' or 'system'")
        return v

    @field_validator("language")
    @classmethod
    def validate_language(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if v not in {"es", "en"}:
            raise ValueError("language must be 'es' or 'en'")
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("timezone cannot be blank")
        return v


class PatientProfileUpdate(BaseModel):
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    medical_history: Optional[str] = None
    allergies: Optional[str] = None
    current_medications: Optional[str] = None


class ProfessionalProfileUpdate(BaseModel):
    specialty: Optional[str] = None
    bio: Optional[str] = None
    experience_years: Optional[int] = None
    consultation_fee: Optional[int] = None

    @field_validator("experience_years", "consultation_fee")
    @classmethod
    def validate_non_negative(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("must be zero or greater")
        return v


class ProfileUpdate(BaseModel):
    """Schema for PUT /users/profile - null or missing fields keep their current value"""

    name: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    patient: Optional[PatientProfileUpdate] = None
    professional: Optional[ProfessionalProfileUpdate] = None
