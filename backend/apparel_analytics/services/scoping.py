"""Actor context, row visibility and the typed errors of the analytics query layer.

Visibility per role:

- admin, manager: every row of the actor's tenant
- vendor: rows whose style belongs to the vendor, or whose vendor_id matches
- tailor: per-tailor sub-total rows whose tailor_id matches

The same predicate is exposed twice: ``apply_*`` narrows a SQLAlchemy query and
``allows`` checks an in-memory row computed on the fly, so stored and fallback rows
are filtered identically.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from sqlalchemy import false, or_
from sqlalchemy.orm import Query, Session

from apparel_analytics import models
from apparel_analytics.models import RoleName


class AnalyticsQueryError(Exception):
    status_code = 400
    code = "analytics_error"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.extra = dict(extra or {})

    def to_detail(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.extra}


class AnalyticsInputError(AnalyticsQueryError):
    status_code = 400
    code = "invalid_input"


class InvalidMetricError(AnalyticsInputError):
    code = "invalid_metric"


class ScopeForbiddenError(AnalyticsQueryError):
    status_code = 403
    code = "forbidden_scope"


class QueryServiceNotInitializedError(AnalyticsQueryError):
    status_code = 500
    code = "query_service_not_initialized"


@dataclass(frozen=True)
class ActorContext:
    tenant_id: str | None
    user_id: str | None
    role: RoleName | str
    vendor_id: str | None = None
    tailor_id: str | None = None


def _ids(values: Iterable[str] | None) -> frozenset[str]:
    out: set[str] = set()
    for v in values or ():
        for part in str(v).split(","):
            s = part.strip()
            if s:
                out.add(s)
    return frozenset(out)


@dataclass(frozen=True)
class DimensionFilters:
    """Optional narrowing filters; an empty set means "no filter" on that dimension."""

    style_ids: frozenset[str] = field(default_factory=frozenset)
    vendor_ids: frozenset[str] = field(default_factory=frozenset)
    tailor_ids: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_params(
        cls,
        *,
        style_ids: Iterable[str] | None = None,
        vendor_ids: Iterable[str] | None = None,
        tailor_ids: Iterable[str] | None = None,
    ) -> "DimensionFilters":
        return cls(
            style_ids=_ids(style_ids),
            vendor_ids=_ids(vendor_ids),
            tailor_ids=_ids(tailor_ids),
        )

    def matches(self, *, style_id: str, vendor_id: str | None, tailor_id: str | None = None) -> bool:
        if self.style_ids and style_id not in self.style_ids:
            return False
        if self.vendor_ids and vendor_id not in self.vendor_ids:
            return False
        if self.tailor_ids and tailor_id not in self.tailor_ids:
            return False
        return True


def coerce_role(role: RoleName | str | None) -> RoleName:
    if isinstance(role, RoleName):
        return role
    try:
        return RoleName(str(role or "").strip().lower())
    except ValueError:
        raise ScopeForbiddenError(f"Unknown role: {role!r}", code="unknown_role") from None


@dataclass(frozen=True)
class ResolvedScope:
    tenant_id: str | None
    role: RoleName
    vendor_id: str | None = None
    tailor_id: str | None = None
    vendor_style_ids: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_tailor(self) -> bool:
        return self.role == RoleName.tailor

    def allows(self, *, style_id: str, vendor_id: str | None, tailor_id: str | None = None) -> bool:
        if self.tenant_id is None:
            return False
        if self.role in (RoleName.admin, RoleName.manager):
            return True
        if self.role == RoleName.vendor:
            return style_id in self.vendor_style_ids or (
                vendor_id is not None and vendor_id == self.vendor_id
            )
        # Tailors only ever see their own sub-total rows.
        return tailor_id is not None and tailor_id == self.tailor_id

    def _apply(self, q: Query, model, *, tailor_rows: bool) -> Query:
        if self.tenant_id is None:
            return q.filter(false())
        q = q.filter(model.tenant_id == self.tenant_id)
        if self.role in (RoleName.admin, RoleName.manager):
            return q
        if self.role == RoleName.vendor:
            clauses = [model.vendor_id == self.vendor_id]
            if self.vendor_style_ids:
                clauses.append(model.style_id.in_(sorted(self.vendor_style_ids)))
            return q.filter(or_(*clauses))
        if not tailor_rows:
            return q.filter(false())
        return q.filter(model.tailor_id == self.tailor_id)

    def apply_style_rows(self, q: Query, model=models.DailyKpi) -> Query:
        return self._apply(q, model, tailor_rows=False)

    def apply_tailor_rows(self, q: Query, model=models.DailyKpiTailor) -> Query:
        return self._apply(q, model, tailor_rows=True)

    def check_filters(self, filters: DimensionFilters) -> None:
        """Reject filters that reach outside the actor's visibility instead of emptying them."""

        if self.role == RoleName.vendor:
            foreign_vendors = filters.vendor_ids - {self.vendor_id}
            if foreign_vendors:
                raise ScopeForbiddenError(
                    "Vendor actors may only query their own vendor",
                    extra={"vendor_ids": sorted(foreign_vendors)},
                )
            foreign_styles = filters.style_ids - self.vendor_style_ids
            if foreign_styles:
                raise ScopeForbiddenError(
                    "Requested styles do not belong to this vendor",
                    extra={"style_ids": sorted(foreign_styles)},
                )
        elif self.role == RoleName.tailor:
            foreign_tailors = filters.tailor_ids - {self.tailor_id}
            if foreign_tailors:
                raise ScopeForbiddenError(
                    "Tailor actors may only query their own assignments",
                    extra={"tailor_ids": sorted(foreign_tailors)},
                )


def resolve_scope(db: Session, actor: ActorContext) -> ResolvedScope:
    role = coerce_role(actor.role)
    tenant_id = (actor.tenant_id or "").strip() or None

    if role == RoleName.vendor:
        if not actor.vendor_id:
            raise ScopeForbiddenError("Vendor actor has no vendor_id", code="missing_vendor_id")
        style_ids: frozenset[str] = frozenset()
        if tenant_id is not None:
            rows = (
                db.query(models.Style.id)
                .filter(models.Style.tenant_id == tenant_id)
                .filter(models.Style.vendor_id == actor.vendor_id)
                .all()
            )
            style_ids = frozenset(str(r[0]) for r in rows)
        return ResolvedScope(
            tenant_id=tenant_id,
            role=role,
            vendor_id=actor.vendor_id,
            vendor_style_ids=style_ids,
        )

    if role == RoleName.tailor:
        if not actor.tailor_id:
            raise ScopeForbiddenError("Tailor actor has no tailor_id", code="missing_tailor_id")
        return ResolvedScope(tenant_id=tenant_id, role=role, tailor_id=actor.tailor_id)

    return ResolvedScope(tenant_id=tenant_id, role=role)
