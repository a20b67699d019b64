from __future__ import annotations

import argparse
import json
from datetime import date, timedelta

from apparel_analytics.database import SessionLocal
from apparel_analytics.services.scheduler import (
    default_target_date,
    run_scheduled_analytics,
    run_scheduled_financials,
)


def _parse_iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("Invalid date, expected YYYY-MM-DD") from exc


def _dates(args: argparse.Namespace) -> list[date]:
    if args.start or args.end:
        if not (args.start and args.end):
            raise SystemExit("--start and --end must be given together")
        if args.end < args.start:
            raise SystemExit("--end must not be before --start")
        n = (args.end - args.start).days + 1
        return [args.start + timedelta(days=i) for i in range(n)]
    return [args.date or default_target_date()]


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Daily KPI rollups (+ financial periods) for one date or a backfill range."
    )
    parser.add_argument("--date", type=_parse_iso_date, default=None, help="defaults to yesterday")
    parser.add_argument("--start", type=_parse_iso_date, default=None)
    parser.add_argument("--end", type=_parse_iso_date, default=None)
    parser.add_argument("--tenant-id", action="append", dest="tenant_ids", default=None)
    parser.add_argument("--skip-financial", action="store_true")
    args = parser.parse_args()

    report: list[dict] = []
    ok = True

    db = SessionLocal()
    try:
        for day in _dates(args):
            analytics = run_scheduled_analytics(db, target_date=day, tenant_ids=args.tenant_ids)
            entry = {"analytics": analytics.as_dict()}
            ok = ok and analytics.success
            if not args.skip_financial:
                entry["financial"] = run_scheduled_financials(db, target_date=day).as_dict()
            report.append(entry)
    finally:
        db.close()

    print(json.dumps(report, ensure_ascii=False, indent=2, default=str))
    return 0 if ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
