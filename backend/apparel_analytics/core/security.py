"""JWT helpers for portal access tokens.

Tokens are issued by the portal's auth layer; this service only verifies them and
reads the actor claims (tenant, role and the vendor/tailor binding).
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from apparel_analytics.config import settings


def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None,
) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def create_actor_token(
    subject: str,
    *,
    tenant_id: str | None,
    role: str,
    vendor_id: str | None = None,
    tailor_id: str | None = None,
    expires_minutes: Optional[int] = None,
) -> str:
    """Convenience helper used by scripts and tests."""

    claims: dict = {"sub": subject, "tenant_id": tenant_id, "role": role}
    if vendor_id:
        claims["vendor_id"] = vendor_id
    if tailor_id:
        claims["tailor_id"] = tailor_id
    minutes = expires_minutes or settings.access_token_expire_minutes
    return create_access_token(claims, expires_delta=timedelta(minutes=minutes))


def decode_access_token(token: str) -> Optional[dict]:
    """Decode JWT access token; returns the claims or None if invalid."""

    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
    if not payload.get("sub"):
        return None
    return payload
