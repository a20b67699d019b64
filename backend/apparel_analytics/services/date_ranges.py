from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from apparel_analytics.config import settings
from apparel_analytics.services.scoping import AnalyticsInputError

DEFAULT_PRESET = "30d"

_DAYS_PRESET_RE = re.compile(r"^(\d{1,4})d$")
_NAMED_PRESETS = {"today", "mtd", "ytd"}

# Local-day bounds and the comparison window must stay inside datetime's range.
MIN_DATE = date(1900, 1, 1)
MAX_DATE = date(9998, 12, 31)


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar-day range. ``start > end`` is a valid, empty range."""

    start: date
    end: date

    @property
    def is_empty(self) -> bool:
        return self.start > self.end

    @property
    def days(self) -> int:
        if self.is_empty:
            return 0
        return (self.end - self.start).days + 1

    def iter_days(self):
        for n in range(self.days):
            yield self.start + timedelta(days=n)

    def previous(self) -> "DateRange":
        """The immediately preceding range of equal length, clipped at ``MIN_DATE``."""
        length = max(self.days, 1)
        prev_end = self.start - timedelta(days=1)
        if prev_end < MIN_DATE:
            return DateRange(start=MIN_DATE, end=MIN_DATE - timedelta(days=1))
        prev_start = max(MIN_DATE.toordinal(), prev_end.toordinal() - (length - 1))
        return DateRange(start=date.fromordinal(prev_start), end=prev_end)


def analytics_today(now: datetime | None = None) -> date:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(ZoneInfo(settings.analytics_timezone)).date()


def day_bounds_utc(d: date, tz_name: str | None = None) -> tuple[datetime, datetime]:
    """``[start, next_start)`` of the local calendar day ``d``, expressed in UTC."""
    tz = ZoneInfo(tz_name or settings.analytics_timezone)
    start = datetime.combine(d, time(0, 0, 0), tzinfo=tz)
    end = datetime.combine(d + timedelta(days=1), time(0, 0, 0), tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def range_bounds_utc(start: date, end: date, tz_name: str | None = None) -> tuple[datetime, datetime]:
    lo, _ = day_bounds_utc(start, tz_name)
    _, hi = day_bounds_utc(end, tz_name)
    return lo, hi


def _parse_iso_date(value: str, field: str) -> date:
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        raise AnalyticsInputError(
            f"{field} must be an ISO date (YYYY-MM-DD)",
            code="invalid_date",
        ) from None


def is_supported_date(d: date) -> bool:
    return MIN_DATE <= d <= MAX_DATE


def _checked(d: date, field: str) -> date:
    if not is_supported_date(d):
        raise AnalyticsInputError(
            f"{field} must be between {MIN_DATE.isoformat()} and {MAX_DATE.isoformat()}",
            code="invalid_date",
            extra={"field": field, "value": d.isoformat()},
        )
    return d


def preset_range(preset: str, *, today: date) -> DateRange:
    p = str(preset or "").strip().lower()
    if p == "today":
        return DateRange(start=today, end=today)
    if p == "mtd":
        return DateRange(start=today.replace(day=1), end=today)
    if p == "ytd":
        return DateRange(start=date(today.year, 1, 1), end=today)

    m = _DAYS_PRESET_RE.match(p)
    if m and int(m.group(1)) > 0:
        # "7d" is the seven days ending today.
        n = int(m.group(1))
        return DateRange(start=today - timedelta(days=n - 1), end=today)

    raise AnalyticsInputError(
        f"Unknown date preset: {preset!r}",
        code="invalid_preset",
        extra={"allowed": sorted(_NAMED_PRESETS) + ["<N>d"]},
    )


def resolve_date_range(
    *,
    start: str | date | None = None,
    end: str | date | None = None,
    preset: str | None = None,
    today: date | None = None,
) -> DateRange:
    """Explicit ``start``/``end`` win over ``preset``; neither means the default preset.

    An inverted explicit range is returned as-is (empty); a half-specified one is an error.
    """

    today = today or analytics_today()

    if start is not None or end is not None:
        if start is None or end is None:
            raise AnalyticsInputError(
                "start and end must be provided together",
                code="incomplete_date_range",
            )
        s = start if isinstance(start, date) else _parse_iso_date(start, "start")
        e = end if isinstance(end, date) else _parse_iso_date(end, "end")
        return DateRange(start=_checked(s, "start"), end=_checked(e, "end"))

    return preset_range(preset or DEFAULT_PRESET, today=today)
