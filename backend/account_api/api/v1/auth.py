"""Authentication routes - registration and session lifecycle"""

from fastapi import APIRouter, Depends, File, Form, Request, Response, UploadFile, status
from sqlalchemy.orm import Session
from typing import Optional

from account_api.api.deps import (
    ACCESS_TOKEN_COOKIE,
    REFRESH_TOKEN_COOKIE,
    get_app_settings,
    get_current_user,
    get_user_service,
)
from account_api.api.uploads import staged_file
from account_api.config import Settings
from account_api.core.database import get_db
from account_api.models.user import User
from account_api.schemas.response import APIResponse
from account_api.schemas.user import (
    RefreshTokenRequest,
    RegistrationRequest,
    TokenResponse,
    UserLogin,
)
from account_api.services.user_service import UserService

router = APIRouter()


def _cookie_options(settings: Settings) -> dict:
    return {"httponly": True, "secure": settings.is_production, "samesite": "lax"}


def _set_session_cookies(response: Response, tokens: TokenResponse, settings: Settings) -> None:
    options = _cookie_options(settings)
    response.set_cookie(ACCESS_TOKEN_COOKIE, tokens.access_token, **options)
    response.set_cookie(REFRESH_TOKEN_COOKIE, tokens.refresh_token, **options)


@router.post("/register", response_model=APIResponse, status_code=status.HTTP_201_CREATED)
def register(
    fullname: str = Form(""),
    email: str = Form(""),
    username: str = Form(""),
    password: str = Form(""),
    avatar: Optional[UploadFile] = File(None),
    cover_image: Optional[UploadFile] = File(None, alias="coverImage"),
    settings: Settings = Depends(get_app_settings),
    user_service: UserService = Depends(get_user_service),
    db: Session = Depends(get_db)
):
    """
    Register a new user (multipart form with ``avatar`` and optional ``coverImage``)

    Returns:
        Created user without credential fields
    """
    temp_dir = settings.get_temp_dir()
    with staged_file(avatar, temp_dir) as avatar_path, \
            staged_file(cover_image, temp_dir) as cover_path:
        user = user_service.register(
            db,
            RegistrationRequest(
                fullname=fullname,
                email=email,
                username=username,
                password=password,
                avatar_path=avatar_path,
                cover_image_path=cover_path,
            ),
        )

    return APIResponse(message="User registered successfully", data=user)


@router.post("/login", response_model=APIResponse, status_code=status.HTTP_200_OK)
def login(
    credentials: UserLogin,
    response: Response,
    settings: Settings = Depends(get_app_settings),
    user_service: UserService = Depends(get_user_service),
    db: Session = Depends(get_db)
):
    """
    Login endpoint - authenticate user, set session cookies and return tokens

    Args:
        credentials: Email or username, and password
    """
    tokens = user_service.login(db, credentials)
    _set_session_cookies(response, tokens, settings)
    return APIResponse(message="User logged in successfully", data=tokens)


@router.post("/logout", response_model=APIResponse, status_code=status.HTTP_200_OK)
def logout(
    response: Response,
    current_user: User = Depends(get_current_user),
    settings: Settings = Depends(get_app_settings),
    user_service: UserService = Depends(get_user_service),
    db: Session = Depends(get_db)
):
    """Logout endpoint - revoke the stored refresh token and clear cookies"""
    user_service.logout(db, current_user.id)

    options = _cookie_options(settings)
    response.delete_cookie(ACCESS_TOKEN_COOKIE, **options)
    response.delete_cookie(REFRESH_TOKEN_COOKIE, **options)
    return APIResponse(message="User logged out successfully", data={})


@router.post("/refresh-token", response_model=APIResponse, status_code=status.HTTP_200_OK)
def refresh_token(
    request: Request,
    response: Response,
    body: Optional[RefreshTokenRequest] = None,
    settings: Settings = Depends(get_app_settings),
    user_service: UserService = Depends(get_user_service),
    db: Session = Depends(get_db)
):
    """
    Rotate the session using the refresh token from the cookie or the body

    Returns:
        User and a new token pair; the presented refresh token stops working
    """
    incoming = request.cookies.get(REFRESH_TOKEN_COOKIE) or (body.refresh_token if body else None)

    tokens = user_service.refresh_access_token(db, incoming)
    _set_session_cookies(response, tokens, settings)
    return APIResponse(message="Access token refreshed", data=tokens)
