from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import bcrypt
import jwt

from batch_alert.core.config import get_settings

BCRYPT_MAX_PASSWORD_BYTES = 72
TOKEN_ALGORITHM = "HS256"


class PasswordTooLongError(ValueError):
    """Raised when attempting to hash a password that exceeds bcrypt's limits."""


def _ensure_password_size(password: str) -> None:
    if len(password.encode("utf-8")) > BCRYPT_MAX_PASSWORD_BYTES:
        raise PasswordTooLongError(
            f"Password exceeds bcrypt's maximum supported size of {BCRYPT_MAX_PASSWORD_BYTES} bytes when encoded in UTF-8."
        )


def hash_password(password: str) -> str:
    _ensure_password_size(password)
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())
    return hashed.decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    try:
        _ensure_password_size(password)
    except PasswordTooLongError:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        return False


def generate_temporary_password() -> str:
    return secrets.token_urlsafe(12)


@dataclass(frozen=True)
class TokenPayload:
    profile_id: int
    token_id: str
    expires_at: datetime


def create_access_token(profile_id: int, *, expires_delta: timedelta | None = None) -> tuple[str, TokenPayload]:
    """Issue a signed session token for ``profile_id``."""

    settings = get_settings()
    now = datetime.now(timezone.utc)
    expires_at = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    payload = TokenPayload(profile_id=profile_id, token_id=uuid4().hex, expires_at=expires_at)
    token = jwt.encode(
        {
            "sub": str(profile_id),
            "jti": payload.token_id,
            "iat": now,
            "exp": expires_at,
        },
        settings.secret_key,
        algorithm=TOKEN_ALGORITHM,
    )
    return token, payload


def decode_access_token(token: str) -> TokenPayload | None:
    """Return the token payload, or ``None`` when the token is invalid or expired."""

    settings = get_settings()
    try:
        claims = jwt.decode(token, settings.secret_key, algorithms=[TOKEN_ALGORITHM])
    except jwt.PyJWTError:
        return None
    try:
        profile_id = int(claims["sub"])
        token_id = str(claims["jti"])
        expires_at = datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc)
    except (KeyError, TypeError, ValueError):
        return None
    return TokenPayload(profile_id=profile_id, token_id=token_id, expires_at=expires_at)
