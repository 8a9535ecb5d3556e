"""
test_quote_engine.py — Unit tests for the quote aggregator.

Tests cover:
  - compute_quote_total: global and per-line margin, tax retention, linearity
  - Line cost rules (product, machinery, rental, subcontract, disposable)
  - Default margins and payment terms by client type
  - QuoteEngine.price: full run, blocking errors, warn/block policies
  - Per-line breakdown of labor and transport in per_line mode
  - replay of stored totals
"""

import pytest

from app.config import PricingConfig
from app.services.day_span import EventWindow
from app.services.labor_engine import LaborLine
from app.services.quote_engine import (
    QuoteEngine,
    QuoteLine,
    QuoteRequest,
    build_line,
    compute_quote_total,
    default_margin,
    payment_terms,
    replay,
)


def _lines():
    return [
        QuoteLine(kind="product", cost=100000.0, ref="p1"),
        QuoteLine(kind="machinery", cost=50000.0, ref="m1"),
    ]


def _request(sample_workers, single_day_event, **overrides):
    """
    Worker 1 (ARL, surcharge 0 under defaults): 9 h × 20 000 = 180 000.
    Worker 2: 180 000 + 15 000 extra = 195 000.
    Product line p1: 100 000.
    """
    fields = dict(
        event=EventWindow.from_dict(single_day_event),
        client_type="corporativo",
        workers=sample_workers,
        labor_lines=[LaborLine(worker_id=1, line_ids=["p1"]), LaborLine(worker_id=2, line_ids=["p1"])],
        lines=[QuoteLine(kind="product", cost=100000.0, ref="p1")],
    )
    fields.update(overrides)
    return QuoteRequest(**fields)


# ===========================================================================
# Class 1: Totals
# ===========================================================================

class TestQuoteTotal:

    def test_global_margin(self):
        """subtotal 150 000, margin 30 % = 45 000, total 195 000."""
        totals = compute_quote_total(_lines(), 30.0)
        assert totals["subtotal"] == 150000.0
        assert totals["margin_amount"] == 45000.0
        assert totals["retention_amount"] == 0.0
        assert totals["total"] == 195000.0
        assert totals["subtotal_by_kind"] == {"product": 100000.0, "machinery": 50000.0}

    def test_retention_applied_after_margin(self):
        """(150 000 + 45 000) × 4 % = 7 800 → total 187 200."""
        totals = compute_quote_total(_lines(), 30.0, retention_percentage=4.0)
        assert totals["retention_amount"] == 7800.0
        assert totals["total"] == 187200.0

    def test_total_is_linear_in_costs(self):
        single = compute_quote_total(_lines(), 27.5, retention_percentage=4.0)
        doubled = compute_quote_total(
            [QuoteLine(l.kind, l.cost * 2, l.ref) for l in _lines()], 27.5, retention_percentage=4.0,
        )
        assert abs(doubled["total"] - 2 * single["total"]) <= 0.01

    def test_per_line_margin(self):
        """100 000 × 40 % + 50 000 × 30 % (quote default) = 55 000."""
        lines = [
            QuoteLine(kind="product", cost=100000.0, margin_percentage=40.0),
            QuoteLine(kind="machinery", cost=50000.0),
        ]
        totals = compute_quote_total(lines, 30.0, margin_mode="per_line")
        assert totals["margin_amount"] == 55000.0
        assert totals["line_margins"] == [40000.0, 15000.0]
        assert totals["total"] == 205000.0

    def test_per_line_margin_ignored_in_global_mode(self):
        lines = [QuoteLine(kind="product", cost=100000.0, margin_percentage=40.0)]
        assert compute_quote_total(lines, 30.0)["margin_amount"] == 30000.0

    def test_empty_quote(self):
        totals = compute_quote_total([], 30.0)
        assert totals["subtotal"] == 0.0
        assert totals["total"] == 0.0

    def test_unknown_margin_mode(self):
        with pytest.raises(ValueError):
            compute_quote_total(_lines(), 30.0, margin_mode="tiered")


# ===========================================================================
# Class 2: Line cost rules
# ===========================================================================

class TestLineCosts:

    def test_product_unit(self):
        line = build_line({"kind": "product", "pricing": {"unit_price": 1500, "quantity": 40}})
        assert line.cost == 60000.0

    def test_product_measurement(self):
        """12 000 per m × 10 units × 2.5 m each = 300 000."""
        line = build_line({"kind": "product", "pricing": {
            "unit_price": 12000, "quantity": 10, "pricing_type": "measurement", "measurement_per_unit": 2.5,
        }})
        assert line.cost == 300000.0

    def test_machinery_daily_rate_from_eight_hours(self):
        line = build_line({"kind": "machinery", "pricing": {"hours": 9, "hourly_rate": 30000, "daily_rate": 200000}})
        assert line.cost == 200000.0

    def test_machinery_hourly_with_operator_and_setup(self):
        """4 h × 30 000 + 4 h × 10 000 operator + 25 000 setup = 185 000."""
        line = build_line({"kind": "machinery", "pricing": {
            "hours": 4, "hourly_rate": 30000, "daily_rate": 200000,
            "operator_hourly_rate": 10000, "include_operator": True,
            "setup_cost": 25000, "setup_required": True,
        }})
        assert line.cost == 185000.0

    def test_rental_custom_total_overrides(self):
        line = build_line({"kind": "machinery_rental", "pricing": {"hours": 4, "hourly_rate": 1, "custom_total": 90000}})
        assert line.cost == 90000.0

    def test_rental_delivery_and_pickup(self):
        line = build_line({"kind": "machinery_rental", "pricing": {
            "hours": 10, "daily_rate": 150000,
            "delivery_cost": 20000, "include_delivery": True,
            "pickup_cost": 20000, "include_pickup": False,
        }})
        assert line.cost == 170000.0

    def test_subcontract_custom_price(self):
        assert build_line({"kind": "subcontract", "pricing": {"price": 500000, "custom_price": 450000}}).cost == 450000.0

    def test_disposable_minimum_quantity(self):
        """Ordered 20, minimum 50 → 50 × 300 = 15 000."""
        line = build_line({"kind": "disposable", "pricing": {"unit_price": 300, "quantity": 20, "minimum_quantity": 50}})
        assert line.cost == 15000.0

    def test_explicit_cost_wins(self):
        assert build_line({"kind": "product", "cost": 123.45, "pricing": {"unit_price": 1, "quantity": 1}}).cost == 123.45

    def test_transport_needs_explicit_cost(self):
        with pytest.raises(ValueError):
            build_line({"kind": "transport"})

    def test_negative_cost_rejected(self):
        with pytest.raises(ValueError):
            QuoteLine(kind="product", cost=-1.0)

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError):
            QuoteLine(kind="catering", cost=1.0)


# ===========================================================================
# Class 3: Client defaults
# ===========================================================================

class TestClientDefaults:

    @pytest.mark.parametrize("client_type,margin", [
        ("corporativo", 30.0), ("social", 25.0), ("CORPORATIVO", 30.0), (None, 25.0), ("other", 25.0),
    ])
    def test_default_margin(self, client_type, margin):
        assert default_margin(client_type) == margin

    def test_corporate_terms_with_advance(self):
        terms = payment_terms("corporativo", 600000.0)
        assert terms["payment_days"] == 30
        assert terms["advance_percentage"] == 50.0
        assert terms["advance_amount"] == 300000.0

    def test_small_social_quote_has_no_advance(self):
        terms = payment_terms("social", 100000.0)
        assert terms["payment_days"] == 15
        assert terms["advance_amount"] == 0.0


# ===========================================================================
# Class 4: Full pricing run
# ===========================================================================

class TestQuoteEngine:

    def test_full_run(self, quote_engine, sample_workers, single_day_event):
        """
        180 000 + 195 000 + 100 000 = 475 000 subtotal.
        Corporate default margin 30 % = 142 500 → total 617 500.
        """
        priced = quote_engine.price(_request(sample_workers, single_day_event))
        assert priced["subtotal"] == 475000.0
        assert priced["margin_percentage"] == 30.0
        assert priced["margin_amount"] == 142500.0
        assert priced["total"] == 617500.0
        assert priced["finalizable"] is True
        assert priced["warnings"] == []
        assert priced["payment_terms"]["advance_percentage"] == 50.0
        kinds = [l["kind"] for l in priced["lines"]]
        assert kinds == ["labor", "labor", "product"]
        assert "outcome" not in priced["labor"]["lines"][0]

    def test_explicit_margin_overrides_client_default(self, quote_engine, sample_workers, single_day_event):
        priced = quote_engine.price(_request(sample_workers, single_day_event, margin_percentage=10.0))
        assert priced["margin_amount"] == 47500.0

    def test_retention_only_when_enabled(self, sample_workers, single_day_event):
        """(475 000 + 142 500) × 4 % = 24 700 → 592 800."""
        engine = QuoteEngine(PricingConfig(retention_enabled=True))
        priced = engine.price(_request(sample_workers, single_day_event))
        assert priced["retention_amount"] == 24700.0
        assert priced["total"] == 592800.0

    def test_unlinked_labor_blocks(self, quote_engine, sample_workers, single_day_event):
        request = _request(sample_workers, single_day_event, labor_lines=[LaborLine(worker_id=1)])
        priced = quote_engine.price(request)
        assert priced["finalizable"] is False
        assert priced["blocking"][0]["code"] == "unlinked_labor"

    def test_margin_out_of_range_blocks(self, quote_engine, sample_workers, single_day_event):
        priced = quote_engine.price(_request(sample_workers, single_day_event, margin_percentage=250.0))
        assert "margin_out_of_range" in [b["code"] for b in priced["blocking"]]

    def test_unknown_worker_blocks_but_prices_the_rest(self, quote_engine, sample_workers, single_day_event):
        request = _request(
            sample_workers, single_day_event,
            labor_lines=[LaborLine(worker_id=1, line_ids=["p1"]), LaborLine(worker_id=42, line_ids=["p1"])],
        )
        priced = quote_engine.price(request)
        assert priced["labor"]["worker_count"] == 1
        assert "unknown_worker" in [b["code"] for b in priced["blocking"]]

    def test_transport_mismatch_warns_by_default(self, quote_engine, sample_workers, single_day_event):
        transport = [{
            "zone": {"base_cost": 80000}, "unit_count": 3, "mode": "manual",
            "lines": ["p1"], "manual_quantities": [{"line_id": "p1", "quantity": 1}],
        }]
        priced = quote_engine.price(_request(sample_workers, single_day_event, transport=transport))
        assert priced["finalizable"] is True
        assert [w["code"] for w in priced["warnings"]] == ["transport_mismatch"]
        assert priced["transport"]["total_cost"] == 80000.0
        assert priced["subtotal"] == 555000.0

    def test_transport_mismatch_blocks_under_block_policy(self, sample_workers, single_day_event):
        engine = QuoteEngine(PricingConfig(transport_mismatch_policy="block"))
        transport = [{
            "zone": {"base_cost": 80000}, "unit_count": 3, "mode": "manual",
            "lines": ["p1"], "manual_quantities": [{"line_id": "p1", "quantity": 1}],
        }]
        priced = engine.price(_request(sample_workers, single_day_event, transport=transport))
        assert priced["finalizable"] is False
        assert priced["blocking"][0]["code"] == "transport_mismatch"

    def test_unresolved_rate_policy(self, sample_workers, single_day_event):
        workers = dict(sample_workers)
        workers[1] = dict(workers[1], rate_tiers=[{"min_hours": 0, "max_hours": 4, "rate": 25000}])
        request = _request(workers, single_day_event)
        assert QuoteEngine().price(request)["finalizable"] is True
        blocked = QuoteEngine(PricingConfig(unresolved_rate_policy="block")).price(request)
        assert blocked["blocking"][0]["code"] == "unresolved_rate"

    def test_per_line_mode_from_config(self, sample_workers, single_day_event):
        engine = QuoteEngine(PricingConfig(margin_mode="per_line"))
        request = _request(
            sample_workers, single_day_event,
            lines=[QuoteLine(kind="product", cost=100000.0, ref="p1", margin_percentage=50.0)],
        )
        priced = engine.price(request)
        # labor 375 000 × 30 % + product 100 000 × 50 %
        assert priced["margin_amount"] == 112500.0 + 50000.0

    def test_per_line_breakdown_folds_labor_and_transport(self, sample_workers, single_day_event):
        """
        Worker 1: 180 000 split 6 h / 3 h → p1 120 000, p2 60 000.
        Worker 2: 195 000 all on p2. Transport 80 000 attributed to p1.
        p1: 100 000 × 50 % + (120 000 + 80 000) × 30 % = 110 000 → 410 000
        p2: (50 000 + 255 000) × 30 % = 91 500 → 396 500
        Margins add up to the per_line total: 112 500 + 50 000 + 15 000 + 24 000.
        """
        engine = QuoteEngine(PricingConfig(margin_mode="per_line"))
        request = _request(
            sample_workers, single_day_event,
            labor_lines=[
                LaborLine(worker_id=1, line_ids=["p1", "p2"], hours_allocated={"p1": 6, "p2": 3}),
                LaborLine(worker_id=2, line_ids=["p2"]),
            ],
            lines=[
                QuoteLine(kind="product", cost=100000.0, ref="p1", margin_percentage=50.0),
                QuoteLine(kind="machinery", cost=50000.0, ref="p2"),
            ],
            transport=[{"zone": {"base_cost": 80000}, "unit_count": 1, "lines": ["p1"]}],
        )
        priced = engine.price(request)
        p1, p2 = priced["line_breakdown"]
        assert (p1["labor_cost"], p1["transport_cost"], p1["cost"]) == (120000.0, 80000.0, 300000.0)
        assert (p1["margin_amount"], p1["total"]) == (110000.0, 410000.0)
        assert (p2["labor_cost"], p2["cost"], p2["margin_percentage"]) == (255000.0, 305000.0, 30.0)
        assert (p2["margin_amount"], p2["total"]) == (91500.0, 396500.0)
        assert priced["margin_amount"] == p1["margin_amount"] + p2["margin_amount"]
        assert priced["subtotal"] == p1["cost"] + p2["cost"]

    def test_unassigned_transport_spread_over_lines(self, sample_workers, single_day_event):
        engine = QuoteEngine(PricingConfig(margin_mode="per_line"))
        request = _request(
            sample_workers, single_day_event,
            lines=[QuoteLine(kind="product", cost=100000.0, ref="p1"), QuoteLine(kind="product", cost=20000.0, ref="p2")],
            transport=[{"zone": {"base_cost": 80000}, "unit_count": 1}],
        )
        breakdown = engine.price(request)["line_breakdown"]
        assert [row["transport_cost"] for row in breakdown] == [40000.0, 40000.0]

    def test_global_mode_has_no_breakdown(self, quote_engine, sample_workers, single_day_event):
        assert "line_breakdown" not in quote_engine.price(_request(sample_workers, single_day_event))


# ===========================================================================
# Class 5: Replay
# ===========================================================================

class TestReplay:

    def test_replay_matches_priced_quote(self, sample_workers, single_day_event):
        engine = QuoteEngine(PricingConfig(retention_enabled=True))
        priced = engine.price(_request(sample_workers, single_day_event, margin_percentage=27.5))
        result = replay(priced)
        assert result["matches"] is True
        assert result["differences"] == {}

    def test_replay_detects_drift(self, quote_engine, sample_workers, single_day_event):
        stored = dict(quote_engine.price(_request(sample_workers, single_day_event)))
        stored["total"] = stored["total"] + 5.0
        result = replay(stored)
        assert result["matches"] is False
        assert result["differences"] == {"total": -5.0}
