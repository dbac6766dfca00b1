"""User profile routes"""

from fastapi import APIRouter, Depends, File, UploadFile, status
from sqlalchemy.orm import Session
from typing import Optional

from account_api.api.deps import get_app_settings, get_current_user, get_user_service
from account_api.api.uploads import staged_file
from account_api.config import Settings
from account_api.core.database import get_db
from account_api.models.user import User
from account_api.schemas.response import APIResponse
from account_api.schemas.user import AccountUpdateRequest, ChangePasswordRequest
from account_api.services.user_service import UserService

router = APIRouter()


@router.get("/me", response_model=APIResponse)
def get_my_profile(
    current_user: User = Depends(get_current_user),
    user_service: UserService = Depends(get_user_service)
):
    """
    Get current user profile

    Args:
        current_user: Current authenticated user

    Returns:
        User profile
    """
    return APIResponse(
        message="Current user details",
        data=user_service.get_current_user(current_user),
    )


@router.patch("/me", response_model=APIResponse)
def update_account_details(
    data: AccountUpdateRequest,
    current_user: User = Depends(get_current_user),
    user_service: UserService = Depends(get_user_service),
    db: Session = Depends(get_db)
):
    """Update fullname and email of the current user"""
    user = user_service.update_account_details(db, current_user, data)
    return APIResponse(message="Account details updated successfully", data=user)


@router.post("/change-password", response_model=APIResponse, status_code=status.HTTP_200_OK)
def change_password(
    data: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    user_service: UserService = Depends(get_user_service),
    db: Session = Depends(get_db)
):
    """Change password after verifying the old one"""
    user_service.change_password(db, current_user, data)
    return APIResponse(message="Password changed successfully", data={})


@router.patch("/avatar", response_model=APIResponse)
def update_avatar(
    avatar: Optional[UploadFile] = File(None),
    current_user: User = Depends(get_current_user),
    settings: Settings = Depends(get_app_settings),
    user_service: UserService = Depends(get_user_service),
    db: Session = Depends(get_db)
):
    """Replace the avatar with the uploaded ``avatar`` file"""
    with staged_file(avatar, settings.get_temp_dir()) as path:
        user = user_service.update_avatar(db, current_user, path)
    return APIResponse(message="Avatar updated successfully", data=user)


@router.patch("/cover", response_model=APIResponse)
def update_cover_image(
    cover_image: Optional[UploadFile] = File(None, alias="coverImage"),
    current_user: User = Depends(get_current_user),
    settings: Settings = Depends(get_app_settings),
    user_service: UserService = Depends(get_user_service),
    db: Session = Depends(get_db)
):
    """Replace the cover image with the uploaded ``coverImage`` file"""
    with staged_file(cover_image, settings.get_temp_dir()) as path:
        user = user_service.update_cover_image(db, current_user, path)
    return APIResponse(message="Cover image updated successfully", data=user)
