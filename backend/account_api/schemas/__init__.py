"""Pydantic schemas for API validation"""

from account_api.schemas.user import (
    RegistrationRequest,
    UserLogin,
    RefreshTokenRequest,
    ChangePasswordRequest,
    AccountUpdateRequest,
    UserResponse,
    TokenResponse,
)
from account_api.schemas.response import APIResponse, ErrorResponse, HealthResponse

__all__ = [
    "RegistrationRequest", "UserLogin", "RefreshTokenRequest", "ChangePasswordRequest",
    "AccountUpdateRequest", "UserResponse", "TokenResponse",
    "APIResponse", "ErrorResponse", "HealthResponse"
]
