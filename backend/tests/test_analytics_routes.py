from __future__ import annotations

from datetime import date, datetime, timezone

import pytest
from fastapi.testclient import TestClient

from apparel_analytics import models
from apparel_analytics.config import settings
from apparel_analytics.core.security import create_actor_token
from apparel_analytics.main import app
from apparel_analytics.services.rollup_engine import refresh_daily_analytics

import factories as f

client = TestClient(app)

D1 = date(2026, 3, 10)
CRON_HEADERS = {"Authorization": "Bearer test-cron-secret"}


def _auth(role: str = "admin", tenant_id: str = "t1", **claims) -> dict:
    token = create_actor_token("user-1", tenant_id=tenant_id, role=role, **claims)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def seeded(db_session):
    va = f.vendor(db_session, name="Vendor A")
    vb = f.vendor(db_session, name="Vendor B")
    sa = f.style(db_session, vendor_id=va.id, code="ST-A", name="Shirt")
    sb = f.style(db_session, vendor_id=vb.id, code="ST-B", name="Trouser")
    f.cutting(db_session, style=sa, day=D1, pcs=100)
    f.cutting(db_session, style=sb, day=D1, pcs=40)
    f.shipment(db_session, style=sa, day=D1, pcs=10, invoice_value=1000.0)
    db_session.commit()
    refresh_daily_analytics(
        db_session, tenant_id="t1", day=D1, now=datetime(2026, 3, 11, tzinfo=timezone.utc)
    )
    db_session.commit()
    return {"vendor_a": va.id, "vendor_b": vb.id, "style_a": sa.id, "style_b": sb.id}


def _range(**extra) -> dict:
    params = {"start": D1.isoformat(), "end": D1.isoformat()}
    params.update(extra)
    return params


def test_requires_bearer_token():
    resp = client.get("/api/analytics/kpis")
    assert resp.status_code == 401


def test_rejects_invalid_token():
    resp = client.get("/api/analytics/kpis", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


def test_rejects_unknown_role():
    resp = client.get("/api/analytics/kpis", headers=_auth(role="auditor"))
    assert resp.status_code == 403
    assert resp.json()["detail"]["code"] == "unknown_role"


def test_admin_kpis(seeded):
    resp = client.get("/api/analytics/kpis", params=_range(), headers=_auth())

    assert resp.status_code == 200
    body = resp.json()
    assert body["cutting_received"]["pcs"] == 140
    assert body["pcs_shipped"]["total"] == 10
    assert body["expected_receivable"]["amount"] == 1000.0
    assert body["date_range"] == {"start": "2026-03-10", "end": "2026-03-10"}


def test_vendor_kpis_are_scoped(seeded):
    headers = _auth(role="vendor", vendor_id=seeded["vendor_a"])

    resp = client.get("/api/analytics/kpis", params=_range(), headers=headers)

    assert resp.status_code == 200
    assert resp.json()["cutting_received"]["pcs"] == 100


def test_vendor_foreign_filter_is_403(seeded):
    headers = _auth(role="vendor", vendor_id=seeded["vendor_a"])

    resp = client.get(
        "/api/analytics/table",
        params=_range(vendor_ids=seeded["vendor_b"]),
        headers=headers,
    )

    assert resp.status_code == 403
    assert resp.json()["detail"]["code"] == "forbidden_scope"


def test_invalid_metric_is_400(seeded):
    resp = client.get("/api/analytics/trends", params=_range(metric="revenue"), headers=_auth())

    assert resp.status_code == 400
    detail = resp.json()["detail"]
    assert detail["code"] == "invalid_metric"
    assert "shipped_pcs" in detail["allowed"]


def test_invalid_date_is_400():
    resp = client.get(
        "/api/analytics/kpis",
        params={"start": "2026-13-01", "end": "2026-12-01"},
        headers=_auth(),
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "invalid_date"


@pytest.mark.parametrize(
    "params",
    [
        {"start": "9999-12-30", "end": "9999-12-31"},
        {"start": "0001-01-01", "end": "0001-01-03"},
    ],
)
def test_out_of_window_dates_are_400_not_500(params):
    for path in ("/api/analytics/kpis", "/api/analytics/cards", "/api/analytics/trends"):
        resp = client.get(path, params=params, headers=_auth())
        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "invalid_date"


@pytest.mark.parametrize("limit", [-5, 0])
def test_nonsensical_limit_is_clamped(seeded, limit):
    breakdown = client.get(
        "/api/analytics/breakdown",
        params=_range(metric="cutting_received_pcs", limit=limit),
        headers=_auth(),
    )
    table = client.get("/api/analytics/table", params=_range(limit=limit), headers=_auth())

    assert breakdown.status_code == 200
    assert len(breakdown.json()) == 2
    assert table.status_code == 200
    assert table.json()["pagination"]["limit"] == settings.table_default_limit


def test_breakdown_and_trends(seeded):
    breakdown = client.get(
        "/api/analytics/breakdown",
        params=_range(metric="cuttingReceived", group_by="style"),
        headers=_auth(),
    )
    trends = client.get(
        "/api/analytics/trends",
        params=_range(metric="shipped_pcs", granularity="day"),
        headers=_auth(),
    )

    assert breakdown.status_code == 200
    assert [b["label"] for b in breakdown.json()] == ["ST-A - Shirt", "ST-B - Trouser"]
    assert trends.status_code == 200
    assert trends.json() == [{"date": "2026-03-10", "label": "2026-03-10", "value": 10.0}]


def test_table_filters_accept_comma_separated_ids(seeded):
    ids = f"{seeded['style_a']},{seeded['style_b']}"
    resp = client.get("/api/analytics/table", params=_range(style_ids=ids), headers=_auth())

    assert resp.status_code == 200
    assert resp.json()["pagination"]["total"] == 2


def test_overview_runs_all_reads(seeded):
    resp = client.get(
        "/api/analytics/overview",
        params=_range(metric="cutting_received_pcs", group_by="vendor"),
        headers=_auth(),
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["kpis"]["cutting_received"]["pcs"] == 140
    assert len(body["cards"]) == 10
    assert body["trend"][0]["value"] == 140.0
    assert {b["label"] for b in body["breakdown"]} == {"Vendor A", "Vendor B"}


def test_export_csv(seeded):
    resp = client.get("/api/analytics/export", params=_range(format="csv"), headers=_auth())

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert "attachment" in resp.headers["content-disposition"]
    lines = resp.text.strip().splitlines()
    assert lines[0].startswith("date,style_id,style_code")
    assert len(lines) == 3


def test_export_rejects_unknown_format(seeded):
    resp = client.get("/api/analytics/export", params=_range(format="xlsx"), headers=_auth())

    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "invalid_format"


def test_cron_requires_secret():
    assert client.post("/api/cron/analytics").status_code == 401
    assert (
        client.post("/api/cron/analytics", headers={"Authorization": "Bearer wrong"}).status_code
        == 403
    )
    assert (
        client.post("/api/cron/analytics", headers={"Authorization": "test-cron-secret"}).status_code
        == 401
    )


def test_cron_unconfigured_is_503(monkeypatch):
    monkeypatch.setattr(settings, "cron_secret", None)

    resp = client.get("/api/cron/analytics", headers=CRON_HEADERS)

    assert resp.status_code == 503


def test_cron_analytics_refreshes_every_tenant(db_session):
    va = f.vendor(db_session)
    sa = f.style(db_session, vendor_id=va.id)
    f.cutting(db_session, style=sa, day=D1, pcs=12)
    vb = f.vendor(db_session, tenant_id="t2")
    sb = f.style(db_session, vendor_id=vb.id, tenant_id="t2")
    f.cutting(db_session, style=sb, day=D1, pcs=3)
    db_session.commit()

    resp = client.post("/api/cron/analytics", params={"date": "2026-03-10"}, headers=CRON_HEADERS)

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["date"] == "2026-03-10"
    assert [(r["tenant_id"], r["count"]) for r in body["results"]] == [("t1", 1), ("t2", 1)]

    db_session.expire_all()
    assert db_session.query(models.DailyKpi).count() == 2

    again = client.get("/api/cron/analytics", params={"date": "2026-03-10"}, headers=CRON_HEADERS)
    assert again.status_code == 200
    assert db_session.query(models.DailyKpi).count() == 2


def test_cron_rejects_bad_date():
    resp = client.post("/api/cron/analytics", params={"date": "10/03/2026"}, headers=CRON_HEADERS)

    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "invalid_date"


def test_cron_rejects_date_outside_supported_window():
    resp = client.post("/api/cron/analytics", params={"date": "9999-12-31"}, headers=CRON_HEADERS)

    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "invalid_date"


def test_cron_financial_calculation(db_session):
    resp = client.post(
        "/api/cron/financial-calculation",
        params={"date": "2026-03-31"},
        headers=CRON_HEADERS,
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["results"]["monthly"]["period_key"] == "2026-03"
    assert body["results"]["quarterly"]["period_key"] == "2026-Q1"
    assert body["results"]["weekly"] is None
    assert db_session.query(models.FinancialPeriod).count() == 3


def test_healthchecks():
    for path in ("/health", "/healthz", "/api/health"):
        resp = client.get(path)
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
    assert client.get("/health").headers.get("X-Request-ID")
