import hmac
from typing import Callable, NoReturn, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from apparel_analytics.config import settings
from apparel_analytics.core.security import decode_access_token
from apparel_analytics.database import SessionLocal, get_db
from apparel_analytics.services.query_service import AnalyticsQueryService
from apparel_analytics.services.scoping import (
    ActorContext,
    AnalyticsQueryError,
    ScopeForbiddenError,
    coerce_role,
)

bearer_optional = HTTPBearer(auto_error=False)

_DB_DEP = Depends(get_db)
_BEARER_DEP = Depends(bearer_optional)


def raise_query_error(exc: AnalyticsQueryError) -> NoReturn:
    raise HTTPException(status_code=exc.status_code, detail=exc.to_detail()) from exc


def _extract_bearer_from_headers(request: Request) -> Optional[str]:
    raw = request.headers.get("authorization")
    if not raw:
        return None
    s = str(raw).strip()
    if s.lower().startswith("bearer "):
        return s.split(" ", 1)[1].strip() or None
    return None


def _claim(claims: dict, key: str) -> Optional[str]:
    val = claims.get(key)
    if val is None:
        return None
    s = str(val).strip()
    return s or None


def get_current_actor(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = _BEARER_DEP,
) -> ActorContext:
    token = credentials.credentials if credentials else _extract_bearer_from_headers(request)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    claims = decode_access_token(token)
    if not claims:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    try:
        role = coerce_role(claims.get("role"))
    except ScopeForbiddenError as exc:
        raise_query_error(exc)

    return ActorContext(
        tenant_id=_claim(claims, "tenant_id"),
        user_id=_claim(claims, "sub"),
        role=role,
        vendor_id=_claim(claims, "vendor_id"),
        tailor_id=_claim(claims, "tailor_id"),
    )


_ACTOR_DEP = Depends(get_current_actor)


def get_query_service(
    actor: ActorContext = _ACTOR_DEP,
    db: Session = _DB_DEP,
) -> AnalyticsQueryService:
    """A query service bound to the caller's resolved scope."""

    try:
        return AnalyticsQueryService(db, actor).init()
    except AnalyticsQueryError as exc:
        raise_query_error(exc)


def get_session_factory() -> Callable[[], Session]:
    return SessionLocal


def require_cron_secret(
    authorization: str | None = Header(default=None, description="Bearer cron secret"),
) -> None:
    """Require the scheduler's shared secret.

    Decoupled from user auth so an external cron can trigger jobs without a session.
    """

    expected = (settings.cron_secret or "").strip()
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cron is not configured",
        )

    if not authorization:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")

    parts = authorization.strip().split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    token = parts[1].strip()
    if not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid token")

    return None
