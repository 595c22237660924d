from __future__ import annotations

import hmac
from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from .errors import AuthError
from .storage import SQLiteStore

ALGORITHM = "HS256"
TOKEN_TYPE_CHANNEL = "channel"
TOKEN_TYPE_ADMIN = "admin"


def create_access_token(data: dict[str, Any], secret: str, *, ttl_hours: int = 24) -> str:
    to_encode = data.copy()
    expire = datetime.now(tz=UTC) + timedelta(hours=ttl_hours)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, secret, algorithm=ALGORITHM)


def decode_token(token: str, secret: str) -> dict[str, Any] | None:
    try:
        return jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError:
        return None


def _matches(candidate: str | None, expected: str | None) -> bool:
    if not candidate or not expected:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


def authenticate_channel(
    store: SQLiteStore,
    channel_id: str,
    password: str | None,
    *,
    secret: str,
    ttl_hours: int = 24,
) -> str | None:
    """Check a channel password and return an access token.

    Public channels need no token and return ``None``. Admin-only channels
    always refuse channel passwords (403); use :func:`authenticate_admin`.
    """
    channel = store.get_channel(channel_id)
    if not channel:
        raise AuthError("Channel not found", status_code=404)
    if not channel["is_private"]:
        return None
    if channel["is_admin_only"]:
        raise AuthError("Admin authentication required", status_code=403)
    expected = channel.get("password")
    if not _matches(password, str(expected) if expected else None):
        raise AuthError("Invalid password", status_code=401)
    return create_access_token(
        {"channel_id": channel_id, "type": TOKEN_TYPE_CHANNEL}, secret, ttl_hours=ttl_hours
    )


def authenticate_admin(
    password: str | None, admin_password: str | None, *, secret: str, ttl_hours: int = 24
) -> str:
    if not _matches(password, admin_password):
        raise AuthError("Invalid admin password", status_code=401)
    return create_access_token({"type": TOKEN_TYPE_ADMIN}, secret, ttl_hours=ttl_hours)


def is_admin(claims: dict[str, Any] | None) -> bool:
    return claims is not None and claims.get("type") == TOKEN_TYPE_ADMIN


def can_read_channel(channel: dict[str, object], claims: dict[str, Any] | None) -> bool:
    if not channel["is_private"]:
        return True
    if is_admin(claims):
        return True
    if channel["is_admin_only"] or not claims:
        return False
    return claims.get("type") == TOKEN_TYPE_CHANNEL and claims.get("channel_id") == channel["id"]
