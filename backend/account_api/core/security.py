"""Security utilities - JWT, password hashing"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Any
from jose import ExpiredSignatureError, JWTError, jwt
import bcrypt
import secrets

from account_api.core.exceptions import TokenExpiredError, TokenInvalidError, ValidationError

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"

# bcrypt only accepts inputs up to this many bytes
MAX_PASSWORD_BYTES = 72


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash

    Args:
        plain_password: Plain text password
        hashed_password: Hashed password

    Returns:
        bool: True if password matches
    """
    if not plain_password or not hashed_password:
        return False
    encoded = plain_password.encode('utf-8')
    if len(encoded) > MAX_PASSWORD_BYTES:
        return False
    return bcrypt.checkpw(
        encoded,
        hashed_password.encode('utf-8')
    )


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt

    Args:
        password: Plain text password

    Returns:
        str: Hashed password

    Raises:
        ValidationError: If the password is longer than bcrypt accepts
    """
    encoded = password.encode('utf-8')
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise ValidationError(
            f"Password is too long (max {MAX_PASSWORD_BYTES} bytes)"
        )
    return bcrypt.hashpw(
        encoded,
        bcrypt.gensalt()
    ).decode('utf-8')


def create_token(
    data: Dict[str, Any],
    *,
    secret: str,
    expires_delta: timedelta,
    token_type: str,
    algorithm: str = "HS256",
) -> str:
    """
    Create a signed JWT

    Args:
        data: Claims to encode in token
        secret: Signing key
        expires_delta: Token lifetime
        token_type: Value of the ``typ`` claim
        algorithm: JWS algorithm

    Returns:
        str: Encoded JWT token
    """
    to_encode = data.copy()
    now = datetime.now(timezone.utc)

    to_encode.update({
        "exp": now + expires_delta,
        "iat": now,
        "jti": secrets.token_urlsafe(32),  # Unique token ID
        "typ": token_type,
    })

    return jwt.encode(to_encode, secret, algorithm=algorithm)


def decode_token(
    token: str,
    *,
    secret: str,
    token_type: str,
    algorithm: str = "HS256",
) -> Dict[str, Any]:
    """
    Decode and verify a JWT

    Raises:
        TokenExpiredError: If the token is past its ``exp``
        TokenInvalidError: If the signature, type or payload is wrong
    """
    try:
        payload = jwt.decode(token, secret, algorithms=[algorithm])
    except ExpiredSignatureError:
        raise TokenExpiredError()
    except JWTError:
        raise TokenInvalidError()

    if payload.get("typ") != token_type:
        raise TokenInvalidError(f"Token is not a valid {token_type} token")
    if not payload.get("sub"):
        raise TokenInvalidError("Invalid token payload")
    return payload
