"""User service - registration, sessions and profile updates"""

import hmac
import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from account_api.core.exceptions import (
    AuthenticationError,
    BaseAPIException,
    CreationError,
    InvalidCredentialsError,
    ResourceAlreadyExistsError,
    ResourceNotFoundError,
    ServerError,
    TokenInvalidError,
    UploadError,
    ValidationError,
)
from account_api.core.security import get_password_hash, verify_password
from account_api.models.user import User
from account_api.repositories.user_repository import UserRepository
from account_api.schemas.user import (
    AccountUpdateRequest,
    ChangePasswordRequest,
    RegistrationRequest,
    TokenResponse,
    UserLogin,
    UserResponse,
)
from account_api.services.media_service import MediaService, UploadedAsset
from account_api.services.token_service import TokenPair, TokenService

logger = logging.getLogger(__name__)

STALE_REFRESH_TOKEN_MESSAGE = "Refresh token is expired or already used"


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


class UserService:
    """Account flows built on the user repository, token and media services"""

    def __init__(self, token_service: TokenService, media_service: MediaService):
        self.token_service = token_service
        self.media_service = media_service

    # Registration

    def register(self, db: Session, data: RegistrationRequest) -> UserResponse:
        """
        Register a new user

        The existence check is a best-effort pre-check: two concurrent
        registrations can both pass it, and the loser is rejected by the
        table's unique constraints during ``create``.

        Args:
            db: Database session
            data: Registration fields and staged upload paths

        Returns:
            Created user without credential fields
        """
        fullname = _clean(data.fullname)
        email = _clean(data.email).lower()
        username = _clean(data.username).lower()
        password = data.password or ""

        if not all([fullname, email, username, password.strip()]):
            raise ValidationError("All fields are required")

        repo = UserRepository(db)
        if repo.exists_with(username=username, email=email):
            raise ResourceAlreadyExistsError("User with email or username")

        if not data.avatar_path:
            raise ValidationError("Avatar file is missing")

        # Rejected passwords fail here, before any asset is uploaded
        password_hash = get_password_hash(password)

        try:
            avatar = self.media_service.upload(data.avatar_path)
        except UploadError:
            raise UploadError("Failed to upload avatar")
        uploaded: List[UploadedAsset] = [avatar]

        cover: Optional[UploadedAsset] = None
        if data.cover_image_path:
            try:
                cover = self.media_service.upload(data.cover_image_path)
            except UploadError:
                self._discard_uploads(uploaded)
                raise UploadError("Failed to upload cover image")
            uploaded.append(cover)

        try:
            user = repo.create(
                fullname=fullname,
                email=email,
                username=username,
                password_hash=password_hash,
                avatar=avatar.url,
                cover_image=cover.url if cover else "",
            )
        except IntegrityError:
            logger.warning("Registration lost a uniqueness race for %s", username)
            self._discard_uploads(uploaded)
            raise ResourceAlreadyExistsError("User with email or username")
        except Exception as e:
            logger.error(f"User creation failed for {username}: {e}")
            self._discard_uploads(uploaded)
            raise CreationError(
                "Something went wrong while registering the user and images were deleted"
            )

        logger.info(f"Created user: {user.username} (id: {user.id})")
        return UserResponse.model_validate(user)

    def _discard_uploads(self, assets: List[UploadedAsset]) -> None:
        """Compensating step: delete assets whose owning record was never written"""
        for asset in assets:
            try:
                deleted = self.media_service.delete(asset.public_id)
            except Exception:
                logger.exception("Cleanup of uploaded asset %s failed", asset.public_id)
                continue
            if not deleted:
                logger.error("Uploaded asset %s could not be deleted", asset.public_id)

    # Sessions

    def _issue_and_store(self, repo: UserRepository, user: User) -> TokenPair:
        pair = self.token_service.issue_token_pair(user)
        repo.set_refresh_token(user.id, pair.refresh_token)
        return pair

    def login(self, db: Session, credentials: UserLogin) -> TokenResponse:
        """
        Authenticate by email or username and start a session

        Args:
            db: Database session
            credentials: Identifier and password

        Returns:
            User plus a fresh token pair; the refresh token is now the stored one
        """
        email = _clean(credentials.email).lower()
        username = _clean(credentials.username).lower()
        if not email and not username:
            raise ValidationError("Email or username is required")

        repo = UserRepository(db)
        user = repo.find_by_identifier(email=email or None, username=username or None)
        if not user:
            raise ResourceNotFoundError("User")

        if not verify_password(credentials.password, user.password_hash):
            raise InvalidCredentialsError()

        pair = self._issue_and_store(repo, user)
        logger.info(f"User logged in: {user.username}")
        return TokenResponse(
            user=UserResponse.model_validate(user),
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
        )

    def logout(self, db: Session, user_id: int) -> None:
        """Clear the stored refresh token; a missing user is a no-op"""
        if UserRepository(db).set_refresh_token(user_id, None):
            logger.info(f"User logged out: {user_id}")

    def refresh_access_token(self, db: Session, incoming_token: Optional[str]) -> TokenResponse:
        """
        Rotate the session: verify the presented refresh token, check it is
        still the stored one, then issue and store a new pair.

        Raises:
            AuthenticationError: Token absent, invalid, expired, or not current
            ServerError: Any unexpected failure
        """
        if not incoming_token:
            raise AuthenticationError("Refresh token is required")

        try:
            claims = self.token_service.verify_refresh_token(incoming_token)

            repo = UserRepository(db)
            user = repo.get_by_id(claims.user_id)
            if not user:
                raise TokenInvalidError("Invalid refresh token")

            stored = user.refresh_token
            if not stored or not hmac.compare_digest(
                stored.encode("utf-8"), incoming_token.encode("utf-8")
            ):
                logger.warning(f"Rejected stale refresh token for user {user.id}")
                raise AuthenticationError(STALE_REFRESH_TOKEN_MESSAGE)

            pair = self.token_service.issue_token_pair(user)
            if not repo.replace_refresh_token(user.id, incoming_token, pair.refresh_token):
                logger.warning(f"Concurrent refresh detected for user {user.id}")
                raise AuthenticationError(STALE_REFRESH_TOKEN_MESSAGE)
        except BaseAPIException:
            raise
        except Exception:
            logger.exception("Refreshing access token failed")
            raise ServerError("Something went wrong while refreshing the access token")

        logger.info(f"Rotated refresh token for user {user.id}")
        return TokenResponse(
            user=UserResponse.model_validate(user),
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
        )

    # Profile

    def get_current_user(self, user: User) -> UserResponse:
        return UserResponse.model_validate(user)

    def change_password(self, db: Session, user: User, data: ChangePasswordRequest) -> None:
        """
        Replace the password hash after checking the old password

        Existing sessions are left valid; tokens are not rotated here.
        """
        if not data.new_password or not data.new_password.strip():
            raise ValidationError("New password is required")

        if not verify_password(data.old_password, user.password_hash):
            raise InvalidCredentialsError("Invalid old password")

        user.password_hash = get_password_hash(data.new_password)
        UserRepository(db).save(user)
        logger.info(f"Password changed for user {user.id}")

    def update_account_details(
        self, db: Session, user: User, data: AccountUpdateRequest
    ) -> UserResponse:
        fullname = _clean(data.fullname)
        email = _clean(data.email).lower()
        if not fullname or not email:
            raise ValidationError("Fullname and email are required")

        repo = UserRepository(db)
        if repo.exists_with(email=email, exclude_id=user.id):
            raise ResourceAlreadyExistsError("User with email")

        user.fullname = fullname
        user.email = email
        try:
            repo.save(user)
        except IntegrityError:
            raise ResourceAlreadyExistsError("User with email")
        return UserResponse.model_validate(user)

    def _replace_image(
        self, db: Session, user: User, local_path: Optional[str], field: str, label: str
    ) -> UserResponse:
        if not local_path:
            raise ValidationError(f"{label} file is missing")

        asset = self.media_service.upload(local_path)
        if not asset.url:
            raise UploadError(f"Failed to upload {label.lower()}")

        setattr(user, field, asset.url)
        try:
            UserRepository(db).save(user)
        except SQLAlchemyError:
            self._discard_uploads([asset])
            raise

        logger.info(f"{label} updated for user {user.id}")
        return UserResponse.model_validate(user)

    def update_avatar(self, db: Session, user: User, local_path: Optional[str]) -> UserResponse:
        return self._replace_image(db, user, local_path, "avatar", "Avatar")

    def update_cover_image(self, db: Session, user: User, local_path: Optional[str]) -> UserResponse:
        return self._replace_image(db, user, local_path, "cover_image", "Cover image")
