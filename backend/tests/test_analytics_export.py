from __future__ import annotations

import csv
import io
import json
from datetime import date

import pytest

from apparel_analytics.schemas.analytics import DrilldownPage, DrilldownRow, Pagination
from apparel_analytics.services.analytics_export import build_drilldown_export


@pytest.fixture
def page():
    return DrilldownPage(
        data=[
            DrilldownRow(
                date=date(2026, 3, 11),
                style_id="s-1",
                style_code="ST-1",
                style_name="Shirt, full sleeve",
                vendor_id="v-1",
                vendor_name="Vendor A",
                cutting_received_pcs=120,
                expected_receivable_amount=1500.5,
            ),
            DrilldownRow(date=date(2026, 3, 10), style_id="s-2", shipped_pcs=7),
        ],
        pagination=Pagination(total=2, limit=50, skip=0, has_more=False),
    )


def test_csv_export(page):
    body, media_type = build_drilldown_export(page, fmt="csv")

    assert media_type == "text/csv"
    rows = list(csv.DictReader(io.StringIO(body.decode("utf-8"))))
    assert len(rows) == 2
    assert rows[0]["date"] == "2026-03-11"
    assert rows[0]["style_name"] == "Shirt, full sleeve"
    assert rows[0]["cutting_received_pcs"] == "120"
    assert rows[0]["expected_receivable_amount"] == "1500.5"
    assert rows[1]["vendor_name"] == ""
    assert rows[1]["tailor_id"] == ""
    assert rows[1]["shipped_pcs"] == "7"


def test_csv_export_of_empty_page_has_header_only():
    empty = DrilldownPage(pagination=Pagination(total=0, limit=50, skip=0, has_more=False))

    body, _ = build_drilldown_export(empty, fmt="csv")

    lines = body.decode("utf-8").splitlines()
    assert len(lines) == 1
    assert lines[0].split(",")[:3] == ["date", "style_id", "style_code"]


def test_json_export(page):
    body, media_type = build_drilldown_export(page, fmt="json")

    assert media_type == "application/json"
    payload = json.loads(body)
    assert payload["pagination"]["total"] == 2
    assert payload["data"][0]["style_id"] == "s-1"
    assert payload["data"][1]["vendor_id"] is None
    assert list(payload) == ["data", "pagination"]


def test_unknown_format_rejected(page):
    with pytest.raises(ValueError):
        build_drilldown_export(page, fmt="xlsx")
