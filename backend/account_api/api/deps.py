"""API dependencies - service lookup and authentication"""

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional

from account_api.config import Settings
from account_api.core.database import get_db
from account_api.core.exceptions import AuthenticationError
from account_api.models.user import User
from account_api.repositories.user_repository import UserRepository
from account_api.services.token_service import TokenService
from account_api.services.user_service import UserService

ACCESS_TOKEN_COOKIE = "accessToken"
REFRESH_TOKEN_COOKIE = "refreshToken"

# Bearer header is optional; the access token may come from a cookie instead
security = HTTPBearer(auto_error=False)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


def get_user_service(request: Request) -> UserService:
    return request.app.state.user_service


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    token_service: TokenService = Depends(get_token_service),
    db: Session = Depends(get_db)
) -> User:
    """
    Get current authenticated user from the access token

    The token is read from the ``accessToken`` cookie, falling back to an
    ``Authorization: Bearer`` header.

    Returns:
        Current user

    Raises:
        AuthenticationError: If token is missing, invalid, or user not found
    """
    token = request.cookies.get(ACCESS_TOKEN_COOKIE)
    if not token and credentials:
        token = credentials.credentials
    if not token:
        raise AuthenticationError("Unauthorized request")

    user_id = token_service.verify_access_token(token)

    user = UserRepository(db).get_by_id(user_id)
    if not user:
        raise AuthenticationError("Invalid access token")

    return user
