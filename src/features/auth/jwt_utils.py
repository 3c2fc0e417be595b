"""Token codec: signed access tokens and opaque refresh/reset secrets."""

import hashlib
import hmac
import secrets
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from jwt.exceptions import DecodeError, ExpiredSignatureError, InvalidSignatureError, InvalidTokenError

from src.config.settings import settings
from src.features.user.models import UserRole

from .exceptions import AccessTokenExpired, AccessTokenInvalidSignature, AccessTokenMalformed

ACCESS_TOKEN_TYPE = "access"
REQUIRED_CLAIMS = ["sub", "role", "sid", "iat", "exp"]


@dataclass(frozen=True)
class AccessTokenClaims:
    """Verified access token contents.

    session_id is the refresh-token lineage that minted the token.
    """

    user_id: int
    role: UserRole
    session_id: uuid.UUID
    issued_at: datetime
    expires_at: datetime


def create_access_token(
    user_id: int,
    role: str,
    session_id: uuid.UUID,
    expires_delta: timedelta | None = None,
    secret_key: str | None = None,
) -> str:
    """Create a JWT access token.

    Args:
        user_id: Subject of the token
        role: User role claim
        session_id: Lineage id of the refresh token chain
        expires_delta: Optional expiration time delta
        secret_key: Optional signing secret override

    Returns:
        Encoded JWT token string

    """
    now = datetime.now(UTC)
    expire = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))

    to_encode: dict[str, Any] = {
        "sub": str(user_id),
        "role": str(role),
        "sid": str(session_id),
        "iat": now,
        "exp": expire,
        "jti": uuid.uuid4().hex,
        "type": ACCESS_TOKEN_TYPE,
    }
    return jwt.encode(to_encode, secret_key or settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, secret_key: str | None = None) -> AccessTokenClaims:
    """Decode and verify a JWT access token.

    Raises:
        AccessTokenExpired: If the token is past its expiry
        AccessTokenInvalidSignature: If the signature does not match
        AccessTokenMalformed: If the token cannot be decoded or has bad claims

    """
    try:
        payload = jwt.decode(
            token,
            secret_key or settings.secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"require": REQUIRED_CLAIMS},
        )
    except ExpiredSignatureError as err:
        raise AccessTokenExpired(str(err)) from err
    except InvalidSignatureError as err:
        raise AccessTokenInvalidSignature(str(err)) from err
    except (DecodeError, InvalidTokenError) as err:
        raise AccessTokenMalformed(str(err)) from err

    if payload.get("type") != ACCESS_TOKEN_TYPE:
        raise AccessTokenMalformed("Invalid token type, expected access")

    try:
        return AccessTokenClaims(
            user_id=int(payload["sub"]),
            role=UserRole(payload["role"]),
            session_id=uuid.UUID(payload["sid"]),
            issued_at=datetime.fromtimestamp(payload["iat"], UTC),
            expires_at=datetime.fromtimestamp(payload["exp"], UTC),
        )
    except (TypeError, ValueError) as err:
        raise AccessTokenMalformed("Invalid token payload") from err


def hash_token(raw_token: str, key: str | None = None) -> str:
    """Keyed hash of an opaque token; only this value is ever persisted."""
    secret = (key or settings.refresh_secret_key).encode()
    return hmac.new(secret, raw_token.encode(), hashlib.sha256).hexdigest()


def generate_refresh_secret() -> tuple[str, str]:
    """Create a refresh token.

    Returns:
        (raw_value, hash): the raw value goes to the caller once, the hash to the ledger

    """
    raw = secrets.token_urlsafe(48)
    return raw, hash_token(raw)


def generate_reset_secret() -> tuple[str, str]:
    """Create a password reset token. Same contract as generate_refresh_secret."""
    raw = secrets.token_urlsafe(32)
    return raw, hash_token(raw)
