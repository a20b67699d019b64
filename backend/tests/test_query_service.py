from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import event

from apparel_analytics.models import RoleName
from apparel_analytics.services.date_ranges import DateRange
from apparel_analytics.services.query_service import (
    STYLE_ONLY_KPIS,
    AnalyticsQueryService,
    clamp_limit,
    compute_trend,
    resolve_metric,
)
from apparel_analytics.services.rollup_engine import refresh_daily_analytics
from apparel_analytics.services.scoping import (
    ActorContext,
    AnalyticsInputError,
    DimensionFilters,
    InvalidMetricError,
    QueryServiceNotInitializedError,
    ScopeForbiddenError,
)

import factories as f

D1 = date(2026, 3, 10)
D2 = date(2026, 3, 11)
D3 = date(2026, 3, 12)
TODAY = date(2026, 3, 20)
RANGE = DateRange(D1, D3)
NOW = datetime(2026, 3, 20, 2, 0, tzinfo=timezone.utc)


@dataclass
class Seeded:
    db: object
    vendor_a: object
    vendor_b: object
    style_a: object
    style_b: object
    style_c: object
    tailor_a: object
    tailor_b: object


@pytest.fixture
def seeded(memory_session) -> Seeded:
    db = memory_session
    va = f.vendor(db, name="Vendor A")
    vb = f.vendor(db, name="Vendor B")
    sa = f.style(db, vendor_id=va.id, code="ST-A", name="Shirt")
    sb = f.style(db, vendor_id=vb.id, code="ST-B", name="Trouser")
    sc = f.style(db, vendor_id=vb.id, code="ST-C", name="Jacket")
    ta = f.tailor(db, name="Tailor A")
    tb = f.tailor(db, name="Tailor B")

    f.cutting(db, style=sa, day=D1, pcs=100, meters=40.0)
    f.cutting(db, style=sa, day=D2, pcs=50)
    f.cutting(db, style=sb, day=D1, pcs=30)
    f.cutting(db, style=sb, day=D3, pcs=70)
    f.cutting(db, style=sc, day=D1, pcs=10)
    f.job(db, style=sa, tailor_id=ta.id, issue_day=D1, issued=40, rate=10.0)
    f.job(db, style=sb, tailor_id=tb.id, issue_day=D2, issued=20, rate=5.0)
    f.shipment(db, style=sa, day=D3, pcs=25, invoice_value=2500.0)
    db.commit()

    for day in (D1, D2, D3):
        refresh_daily_analytics(db, tenant_id="t1", day=day, now=NOW)
    db.commit()
    return Seeded(db, va, vb, sa, sb, sc, ta, tb)


def _svc(db, **actor) -> AnalyticsQueryService:
    actor.setdefault("tenant_id", "t1")
    actor.setdefault("user_id", "u1")
    actor.setdefault("role", RoleName.admin)
    return AnalyticsQueryService(db, ActorContext(**actor), today=TODAY).init()


def test_range_total_equals_sum_of_daily_totals(seeded):
    svc = _svc(seeded.db)

    total = svc.get_dashboard_kpis(RANGE)
    per_day = [svc.get_dashboard_kpis(DateRange(d, d)) for d in RANGE.iter_days()]

    assert total.cutting_received.pcs == 260
    assert total.cutting_received.pcs == sum(k.cutting_received.pcs for k in per_day)
    assert total.in_production.pcs == sum(k.in_production.pcs for k in per_day) == 60
    assert total.in_production.orders == 2
    assert total.pcs_shipped.total == 25
    assert total.expected_receivable.amount == 2500.0
    assert total.tailoring_expense.amount == 500.0
    assert total.cutting_received.fabric_meters == 40.0
    assert total.expected_receivable.currency == "INR"


def test_pending_from_tailors_counts_open_jobs(seeded):
    kpis = _svc(seeded.db).get_dashboard_kpis(RANGE)

    assert kpis.pending_from_tailors.pcs == 60
    assert kpis.pending_from_tailors.assignments == 2

    early = _svc(seeded.db).get_dashboard_kpis(DateRange(D1, D1))
    assert early.pending_from_tailors.pcs == 40


def test_vendor_sees_only_own_styles(seeded):
    svc = _svc(seeded.db, role=RoleName.vendor, vendor_id=seeded.vendor_a.id)

    kpis = svc.get_dashboard_kpis(RANGE)
    breakdown = svc.get_breakdown("cutting_received_pcs", "vendor", RANGE)
    table = svc.get_drilldown_table(RANGE)

    assert kpis.cutting_received.pcs == 150
    assert kpis.pending_from_tailors.pcs == 40
    assert [b.key for b in breakdown] == [seeded.vendor_a.id]
    assert {r.style_id for r in table.data} == {seeded.style_a.id}


def test_disjoint_vendors_never_leak(seeded):
    a = _svc(seeded.db, role=RoleName.vendor, vendor_id=seeded.vendor_a.id)
    b = _svc(seeded.db, role=RoleName.vendor, vendor_id=seeded.vendor_b.id)
    admin = _svc(seeded.db)

    a_rows = {(r.date, r.style_id) for r in a.get_drilldown_table(RANGE).data}
    b_rows = {(r.date, r.style_id) for r in b.get_drilldown_table(RANGE).data}

    assert a_rows and b_rows
    assert a_rows.isdisjoint(b_rows)
    assert (
        a.get_dashboard_kpis(RANGE).cutting_received.pcs
        + b.get_dashboard_kpis(RANGE).cutting_received.pcs
        == admin.get_dashboard_kpis(RANGE).cutting_received.pcs
    )


def test_vendor_filter_outside_scope_is_forbidden(seeded):
    svc = _svc(seeded.db, role=RoleName.vendor, vendor_id=seeded.vendor_a.id)

    with pytest.raises(ScopeForbiddenError):
        svc.get_dashboard_kpis(RANGE, DimensionFilters.from_params(vendor_ids=[seeded.vendor_b.id]))
    with pytest.raises(ScopeForbiddenError):
        svc.get_drilldown_table(RANGE, filters=DimensionFilters.from_params(style_ids=[seeded.style_b.id]))


def test_vendor_actor_without_vendor_id_is_forbidden(seeded):
    with pytest.raises(ScopeForbiddenError):
        _svc(seeded.db, role=RoleName.vendor)


def test_breakdown_percentages_over_limited_set(seeded):
    items = _svc(seeded.db).get_breakdown("cutting_received_pcs", "style", RANGE, limit=2)

    assert [i.key for i in items] == [seeded.style_a.id, seeded.style_b.id]
    assert [i.value for i in items] == [150.0, 100.0]
    assert [i.percentage for i in items] == [60.0, 40.0]
    assert items[0].label == "ST-A - Shirt"
    assert abs(sum(i.percentage for i in items) - 100.0) < 0.05


def test_breakdown_is_sorted_descending(seeded):
    items = _svc(seeded.db).get_breakdown("cuttingReceived", "style", RANGE)

    values = [i.value for i in items]
    assert values == sorted(values, reverse=True)
    assert len(items) == 3


def test_breakdown_by_tailor_uses_tailor_rows(seeded):
    items = _svc(seeded.db).get_breakdown("in_production_pcs", "tailor", RANGE)

    assert [(i.label, i.value) for i in items] == [("Tailor A", 40.0), ("Tailor B", 20.0)]


def test_breakdown_by_tailor_rejects_style_only_metric(seeded):
    with pytest.raises(InvalidMetricError):
        _svc(seeded.db).get_breakdown("shipped_pcs", "tailor", RANGE)


def test_invalid_inputs(seeded):
    svc = _svc(seeded.db)

    with pytest.raises(InvalidMetricError) as exc:
        svc.get_trend_data("revenue", RANGE)
    assert exc.value.status_code == 400
    assert "allowed" in exc.value.to_detail()

    with pytest.raises(AnalyticsInputError) as exc:
        resolve_metric(None)
    assert exc.value.code == "missing_metric"

    with pytest.raises(AnalyticsInputError):
        svc.get_trend_data("shipped_pcs", RANGE, granularity="hour")
    with pytest.raises(AnalyticsInputError):
        svc.get_breakdown("shipped_pcs", "color", RANGE)


def test_limits_are_clamped(seeded):
    svc = _svc(seeded.db)

    page = svc.get_drilldown_table(RANGE, limit=10_000)

    assert page.pagination.limit == 500
    assert clamp_limit(None, default=10, maximum=100) == 10
    assert clamp_limit(0, default=10, maximum=100) == 10
    assert clamp_limit(1_000, default=10, maximum=100) == 100


def test_drilldown_is_date_descending_and_paginated(seeded):
    page = _svc(seeded.db).get_drilldown_table(RANGE, limit=2, skip=0)

    assert page.pagination.total == 7
    assert page.pagination.has_more is True
    assert [r.date for r in page.data] == [D3, D3]
    assert page.data[0].vendor_name in {"Vendor A", "Vendor B"}

    last = _svc(seeded.db).get_drilldown_table(RANGE, limit=2, skip=6)
    assert len(last.data) == 1
    assert last.pagination.has_more is False


def test_inverted_range_and_missing_tenant_return_zeros(seeded):
    inverted = _svc(seeded.db).get_dashboard_kpis(DateRange(D3, D1))
    no_tenant = _svc(seeded.db, tenant_id=None).get_dashboard_kpis(RANGE)

    for kpis in (inverted, no_tenant):
        assert kpis.cutting_received.pcs == 0
        assert kpis.pcs_shipped.total == 0
        assert kpis.pending_from_tailors.pcs == 0

    assert _svc(seeded.db).get_trend_data("shipped_pcs", DateRange(D3, D1)) == []
    assert _svc(seeded.db, tenant_id=None).get_drilldown_table(RANGE).pagination.total == 0


def test_query_before_init_raises(seeded):
    svc = AnalyticsQueryService(seeded.db, ActorContext(tenant_id="t1", user_id="u", role="admin"))

    with pytest.raises(QueryServiceNotInitializedError):
        svc.get_dashboard_kpis(RANGE)


def test_unknown_role_is_forbidden(seeded):
    with pytest.raises(ScopeForbiddenError):
        _svc(seeded.db, role="auditor")


@pytest.mark.parametrize(
    "current, previous, expected",
    [
        (100.0, 100.005, (-0.0, "flat")),
        (0.0, 0.0, (0.0, "flat")),
        (5.0, 0.0, (100.0, "up")),
        (50.0, 100.0, (-50.0, "down")),
        (150.0, 100.0, (50.0, "up")),
    ],
)
def test_compute_trend(current, previous, expected):
    assert compute_trend(current, previous, epsilon=0.01) == expected


def test_cards_compare_against_previous_range(seeded):
    cards = {c.id: c for c in _svc(seeded.db).get_kpi_cards(DateRange(D2, D3))}

    cutting = cards["cutting-received"]
    assert cutting.value == 120.0
    assert cutting.trend == -14.29
    assert cutting.trend_direction == "down"
    assert cards["expected-receivable"].unit == "INR"
    assert cards["production-yield"].unit == "%"
    assert len(cards) == 10


def test_trend_buckets_are_zero_filled(seeded):
    svc = _svc(seeded.db)

    daily = svc.get_trend_data("cutting_received_pcs", DateRange(D1, D3 + timedelta(days=1)))
    weekly = svc.get_trend_data("cutting_received_pcs", RANGE, granularity="week")

    assert [p.value for p in daily] == [140.0, 50.0, 70.0, 0.0]
    assert [p.date for p in daily][0] == D1
    assert len(weekly) == 1
    assert weekly[0].date == D1
    assert weekly[0].label == "2026-W11"
    assert weekly[0].value == 260.0


def test_uncovered_days_are_computed_on_the_fly(seeded):
    db = seeded.db
    d4 = D3 + timedelta(days=1)
    f.cutting(db, style=seeded.style_a, day=d4, pcs=5)
    # Beyond "today": never computed.
    f.cutting(db, style=seeded.style_a, day=TODAY + timedelta(days=1), pcs=1000)
    db.commit()

    svc = _svc(db)
    kpis = svc.get_dashboard_kpis(DateRange(D1, TODAY + timedelta(days=1)))

    assert kpis.cutting_received.pcs == 265


def test_tailor_sees_only_own_assignments(seeded):
    svc = _svc(seeded.db, role=RoleName.tailor, tailor_id=seeded.tailor_a.id)

    kpis = svc.get_dashboard_kpis(RANGE)
    cards = svc.get_kpi_cards(RANGE)
    table = svc.get_drilldown_table(RANGE)

    assert kpis.in_production.pcs == 40
    assert kpis.cutting_received is None
    assert kpis.pcs_shipped is None
    assert set(kpis.unavailable) == set(STYLE_ONLY_KPIS)
    assert kpis.pending_from_tailors.pcs == 40
    assert {c.id for c in cards} == {
        "in-production",
        "pcs-completed",
        "tailoring-expense",
        "pending-from-tailors",
        "production-yield",
        "rework-rate",
    }
    assert {r.tailor_id for r in table.data} == {seeded.tailor_a.id}

    with pytest.raises(ScopeForbiddenError):
        svc.get_trend_data("shipped_pcs", RANGE)
    with pytest.raises(ScopeForbiddenError):
        svc.get_dashboard_kpis(RANGE, DimensionFilters.from_params(tailor_ids=[seeded.tailor_b.id]))


def test_tailor_filter_switches_to_tailor_rows(seeded):
    svc = _svc(seeded.db)
    only_b = DimensionFilters.from_params(tailor_ids=[seeded.tailor_b.id])

    kpis = svc.get_dashboard_kpis(RANGE, only_b)

    assert kpis.in_production.pcs == 20
    assert kpis.tailoring_expense.amount == 100.0
    with pytest.raises(InvalidMetricError):
        svc.get_trend_data("shipped_pcs", RANGE, filters=only_b)


def test_tailor_filter_marks_style_only_kpis_unavailable(seeded):
    svc = _svc(seeded.db)
    only_b = DimensionFilters.from_params(tailor_ids=[seeded.tailor_b.id])

    kpis = svc.get_dashboard_kpis(RANGE, only_b)
    cards = svc.get_kpi_cards(RANGE, only_b)
    table = svc.get_drilldown_table(RANGE, filters=only_b)

    assert kpis.unavailable == list(STYLE_ONLY_KPIS)
    assert kpis.cutting_received is None
    assert kpis.pcs_shipped is None
    assert kpis.expected_receivable is None
    assert kpis.late_shipments is None
    assert {c.id for c in cards}.isdisjoint(
        {"cutting-received", "pcs-shipped", "expected-receivable", "late-shipments"}
    )
    assert [(r.tailor_id, r.in_production_pcs, r.shipped_pcs) for r in table.data] == [
        (seeded.tailor_b.id, 20, None)
    ]

    unfiltered = svc.get_dashboard_kpis(RANGE)
    assert unfiltered.unavailable == []
    assert unfiltered.cutting_received.pcs == 260


def test_long_uncovered_range_is_computed_in_a_few_statements(seeded):
    db = seeded.db
    f.cutting(db, style=seeded.style_b, day=date(2017, 5, 1), pcs=7)
    db.commit()
    svc = _svc(db)
    decade = DateRange(date(2016, 3, 20), TODAY)

    statements: list[str] = []

    def count(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    engine = db.get_bind()
    event.listen(engine, "before_cursor_execute", count)
    try:
        kpis = svc.get_dashboard_kpis(decade)
    finally:
        event.remove(engine, "before_cursor_execute", count)

    assert kpis.cutting_received.pcs == 267
    assert kpis.pcs_shipped.total == 25
    assert len(statements) < 20


@pytest.fixture
def quality(memory_session):
    db = memory_session
    va = f.vendor(db)
    sa = f.style(db, vendor_id=va.id, code="ST-Q")
    ta = f.tailor(db, name="Tailor A")
    tb = f.tailor(db, name="Tailor B")
    f.job(
        db, style=sa, tailor_id=ta.id, issue_day=D1, issued=100, returned=90, rejected=9,
        status="completed", completed_day=D1,
    )
    f.job(
        db, style=sa, tailor_id=tb.id, issue_day=D1, issued=50, returned=30,
        status="completed", completed_day=D2,
    )
    f.job(db, style=sa, tailor_id=tb.id, issue_day=D2, issued=80, returned=10)
    f.shipment(db, style=sa, day=D1, pcs=10, promised_day=D1)
    f.shipment(db, style=sa, day=D2, pcs=10, promised_day=D1)
    f.shipment(db, style=sa, day=D3, pcs=10)
    db.commit()
    # D1 from stored rows, D2 and D3 computed at read time.
    refresh_daily_analytics(db, tenant_id="t1", day=D1, now=NOW)
    db.commit()
    return db, ta, tb


def test_yield_rework_and_late_shipment_kpis(quality):
    db, ta, _ = quality

    kpis = _svc(db).get_dashboard_kpis(RANGE)
    cards = {c.id: c for c in _svc(db).get_kpi_cards(RANGE)}
    own = _svc(db, role=RoleName.tailor, tailor_id=ta.id).get_dashboard_kpis(RANGE)

    assert (kpis.production_yield.returned_pcs, kpis.production_yield.issued_pcs) == (120, 150)
    assert kpis.production_yield.percentage == 80.0
    assert kpis.rework_rate.rejected_pcs == 9
    assert kpis.rework_rate.percentage == 7.5
    assert (kpis.late_shipments.count, kpis.late_shipments.total) == (1, 3)
    assert kpis.late_shipments.percentage == 33.33
    assert cards["production-yield"].value == 80.0
    assert cards["rework-rate"].value == 7.5
    assert cards["late-shipments"].value == 1.0
    assert own.production_yield.percentage == 90.0
    assert own.rework_rate.percentage == 10.0
    assert own.late_shipments is None


def test_ratio_metrics_are_ratios_of_sums_per_bucket(quality):
    db, ta, tb = quality
    svc = _svc(db)

    daily = svc.get_trend_data("productionYield", RANGE)
    weekly = svc.get_trend_data("production_yield_pct", RANGE, granularity="week")
    by_tailor = svc.get_breakdown("production_yield_pct", "tailor", RANGE)
    late = svc.get_trend_data("late_shipment_pct", RANGE)

    assert [p.value for p in daily] == [90.0, 60.0, 0.0]
    assert [p.value for p in weekly] == [80.0]
    assert [(b.key, b.value, b.percentage) for b in by_tailor] == [
        (ta.id, 90.0, 90.0),
        (tb.id, 60.0, 60.0),
    ]
    assert [p.value for p in late] == [0.0, 100.0, 0.0]
