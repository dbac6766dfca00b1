"""Access/refresh token issuance and verification."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from account_api.config import Settings
from account_api.core.exceptions import TokenInvalidError
from account_api.core.security import (
    ACCESS_TOKEN_TYPE,
    REFRESH_TOKEN_TYPE,
    create_token,
    decode_token,
)
from account_api.models.user import User


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class RefreshClaims:
    user_id: int
    expires_at: datetime


class TokenService:
    """
    Sign and verify access/refresh tokens.

    Stateless: persisting the refresh token on the user record, and checking
    that a presented refresh token is still the stored one, is up to the caller.
    """

    def __init__(self, settings: Settings):
        self._algorithm = settings.ALGORITHM
        self._access_secret = settings.ACCESS_TOKEN_SECRET
        self._refresh_secret = settings.REFRESH_TOKEN_SECRET
        self.access_ttl = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        self.refresh_ttl = timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)

    def create_access_token(self, user: User) -> str:
        return create_token(
            {
                "sub": str(user.id),
                "username": user.username,
                "email": user.email,
                "fullname": user.fullname,
            },
            secret=self._access_secret,
            expires_delta=self.access_ttl,
            token_type=ACCESS_TOKEN_TYPE,
            algorithm=self._algorithm,
        )

    def create_refresh_token(self, user: User) -> str:
        return create_token(
            {"sub": str(user.id)},
            secret=self._refresh_secret,
            expires_delta=self.refresh_ttl,
            token_type=REFRESH_TOKEN_TYPE,
            algorithm=self._algorithm,
        )

    def issue_token_pair(self, user: User) -> TokenPair:
        return TokenPair(
            access_token=self.create_access_token(user),
            refresh_token=self.create_refresh_token(user),
        )

    @staticmethod
    def _subject(payload: dict) -> int:
        try:
            return int(payload["sub"])
        except (KeyError, TypeError, ValueError):
            raise TokenInvalidError("Invalid token payload")

    def verify_access_token(self, token: str) -> int:
        """
        Verify an access token

        Returns:
            int: The user id carried in ``sub``

        Raises:
            TokenInvalidError, TokenExpiredError
        """
        payload = decode_token(
            token,
            secret=self._access_secret,
            token_type=ACCESS_TOKEN_TYPE,
            algorithm=self._algorithm,
        )
        return self._subject(payload)

    def verify_refresh_token(self, token: str) -> RefreshClaims:
        """
        Verify a refresh token's signature and expiry

        Raises:
            TokenInvalidError, TokenExpiredError
        """
        payload = decode_token(
            token,
            secret=self._refresh_secret,
            token_type=REFRESH_TOKEN_TYPE,
            algorithm=self._algorithm,
        )
        return RefreshClaims(
            user_id=self._subject(payload),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )
