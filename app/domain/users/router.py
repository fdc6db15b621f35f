"""Users router - FastAPI endpoints for profile and role management"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...cache import get_cache
from ...database import get_db
from ...models import User
from ...responses import success_response
from ..identity.clerk_client import ClerkClient
from .profile_service import ProfileService
from .schemas import PreferencesUpdate, ProfileUpdate, RoleUpgradeRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Users"])


def get_profile_service(db: Session = Depends(get_db), cache=Depends(get_cache)) -> ProfileService:
    """Dependency injection for ProfileService"""
    return ProfileService(db, clerk_client=ClerkClient(cache=cache))


@router.get("/profile")
async def get_profile(
    user: User = Depends(get_current_user),
    service: ProfileService = Depends(get_profile_service),
):
    """Get the current user's profile with role-specific data"""
    return success_response(service.get_profile(user.id))


@router.put("/profile")
async def update_profile(
    body: ProfileUpdate,
    request: Request,
    user: User = Depends(get_current_user),
    service: ProfileService = Depends(get_profile_service),
):
    """Update name, phone, avatar and the role-specific profile fields"""
    profile = service.update_profile(
        user,
        body,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return success_response(profile, message="Profile updated successfully")


@router.patch("/role")
async def change_role(
    body: RoleUpgradeRequest,
    request: Request,
    user: User = Depends(get_current_user),
    service: ProfileService = Depends(get_profile_service),
):
    """Upgrade the current user to professional"""
    profile = await service.upgrade_to_professional(
        user,
        license_number=body.license_number,
        dni=body.dni,
        specialty=body.specialty,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return success_response(profile, message="Role updated to professional")


@router.get("/preferences")
async def get_preferences(
    user: User = Depends(get_current_user),
    service: ProfileService = Depends(get_profile_service),
):
    """Get the current user's preferences"""
    return success_response(service.get_preferences(user.id))


@router.put("/preferences")
async def update_preferences(
    body: PreferencesUpdate,
    user: User = Depends(get_current_user),
    service: ProfileService = Depends(get_profile_service),
):
    """Update the current user's preferences (partial)"""
    return success_response(
        service.update_preferences(user.id, body), message="Preferences updated"
    )
