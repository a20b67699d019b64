from __future__ import annotations

import csv
import io
import json

from apparel_analytics.schemas.analytics import DrilldownPage

EXPORT_FORMATS = ("csv", "json")

_COLUMNS = [
    "date",
    "style_id",
    "style_code",
    "style_name",
    "vendor_id",
    "vendor_name",
    "tailor_id",
    "cutting_received_pcs",
    "in_production_pcs",
    "in_production_orders",
    "completed_pcs",
    "completed_issued_pcs",
    "rejected_pcs",
    "shipped_pcs",
    "shipment_count",
    "late_shipments",
    "expected_receivable_amount",
    "tailor_expense_amount",
]


def build_drilldown_export(page: DrilldownPage, *, fmt: str) -> tuple[bytes, str]:
    """Serialize drilldown rows; returns ``(body, media_type)``.

    Read-only: works on an already scoped query result.
    """

    if fmt == "json":
        payload = {
            "data": [row.model_dump(mode="json") for row in page.data],
            "pagination": page.pagination.model_dump(),
        }
        return json.dumps(payload, sort_keys=True).encode("utf-8"), "application/json"

    if fmt != "csv":
        raise ValueError(f"unsupported export format: {fmt}")

    buf = io.StringIO(newline="")
    writer = csv.DictWriter(buf, fieldnames=_COLUMNS, lineterminator="\n")
    writer.writeheader()
    for row in page.data:
        values = row.model_dump(mode="json")
        writer.writerow({k: "" if values.get(k) is None else str(values[k]) for k in _COLUMNS})
    return buf.getvalue().encode("utf-8"), "text/csv"
