"""User schemas"""

from pydantic import BaseModel, ConfigDict
from typing import Optional
from datetime import datetime


class RegistrationRequest(BaseModel):
    """Registration form fields plus staged file paths"""
    fullname: str = ""
    email: str = ""
    username: str = ""
    password: str = ""
    avatar_path: Optional[str] = None
    cover_image_path: Optional[str] = None


class UserLogin(BaseModel):
    """User login schema - either email or username identifies the user"""
    email: Optional[str] = None
    username: Optional[str] = None
    password: str = ""


class RefreshTokenRequest(BaseModel):
    """Refresh token supplied in the body when no cookie is present"""
    refresh_token: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    old_password: str = ""
    new_password: str = ""


class AccountUpdateRequest(BaseModel):
    fullname: str = ""
    email: str = ""


class UserResponse(BaseModel):
    """User response schema - never carries password hash or refresh token"""
    id: int
    username: str
    email: str
    fullname: str
    avatar: str
    cover_image: Optional[str] = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TokenResponse(BaseModel):
    """Login/refresh payload"""
    user: UserResponse
    access_token: str
    refresh_token: str
