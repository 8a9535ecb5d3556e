"""
quote_engine.py — Quote Aggregator

Covers:
  - Line cost rules for products, machinery, machinery rentals,
    subcontracts and disposables
  - Subtotal → margin (global or per line) → tax retention → total
  - Default margins and payment terms by client type
  - Input validation with tagged outcomes and configurable blocking policies
  - Full pricing run (event hours → labor → transport → lines → totals)
  - Per-line breakdown with labor and transport folded into billable lines
  - Replay of persisted totals for audit

Money is carried as float at full precision through every step and rounded
to 2 decimals only on the returned figures.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from app.config import (
    ADVANCE_PAYMENT_PCT,
    ADVANCE_PAYMENT_THRESHOLD,
    CORPORATE_PAYMENT_DAYS,
    CURRENCY_TOLERANCE,
    DEFAULT_MARGINS,
    DEFAULT_PAYMENT_DAYS,
    FALLBACK_MARGIN_PCT,
    MARGIN_MODES,
    MAX_MARGIN_PCT,
    MIN_MARGIN_PCT,
    PricingConfig,
)
from app.services import outcome as oc
from app.services.day_span import (
    EventHours,
    EventWindow,
    compute_event_hours,
    validate_event_window,
)
from app.services.labor_engine import (
    LaborEngine,
    LaborLine,
    allocate_labor_to_lines,
    validate_line_links,
)
from app.services.outcome import Outcome
from app.services.perf_monitor import tracker
from app.services.rate_resolver import tiers_for_worker
from app.services.transport_allocator import allocate_transport_zones

logger = logging.getLogger("events-pricing.quote")

LINE_KINDS = (
    "labor", "product", "machinery", "machinery_rental",
    "subcontract", "disposable", "transport",
)

# Hours at or above which machinery is billed at its daily rate
MACHINERY_DAILY_THRESHOLD_HOURS: float = 8.0


# ---------------------------------------------------------------------------
# Lines
# ---------------------------------------------------------------------------

@dataclass
class QuoteLine:
    kind: str
    cost: float
    ref: Optional[str] = None
    description: str = ""
    margin_percentage: Optional[float] = None

    def __post_init__(self):
        if self.kind not in LINE_KINDS:
            raise ValueError(f"Unknown line kind {self.kind!r}")
        if self.cost < 0:
            raise ValueError(f"Line {self.ref or self.description!r} has a negative cost")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "ref": self.ref,
            "description": self.description,
            "cost": self.cost,
            "margin_percentage": self.margin_percentage,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuoteLine":
        return cls(
            kind=data["kind"],
            cost=float(data["cost"]),
            ref=None if data.get("ref") is None else str(data["ref"]),
            description=data.get("description") or "",
            margin_percentage=None if data.get("margin_percentage") is None else float(data["margin_percentage"]),
        )


def product_line_cost(
    unit_price: float,
    quantity: float,
    pricing_type: str = "unit",
    measurement_per_unit: Optional[float] = None,
    custom_price: Optional[float] = None,
) -> float:
    """
    unit:         price × quantity
    measurement:  price per measure × quantity × measures per unit (default 1)
    A custom (variable) price replaces the list price in either mode.
    """
    price = custom_price if custom_price else unit_price
    if pricing_type == "measurement":
        return price * quantity * (measurement_per_unit or 1)
    return price * quantity


def machinery_line_cost(
    hours: float,
    hourly_rate: float,
    daily_rate: float,
    operator_hourly_rate: float = 0.0,
    include_operator: bool = False,
    setup_cost: float = 0.0,
    setup_required: bool = False,
    days: int = 1,
) -> float:
    """Own machinery: daily rate from 8 h up, else hourly; operator and setup optional."""
    base = daily_rate if hours >= MACHINERY_DAILY_THRESHOLD_HOURS else hourly_rate * hours
    operator = operator_hourly_rate * hours if include_operator and operator_hourly_rate else 0.0
    setup = setup_cost if setup_required else 0.0
    return (base + operator) * max(1, days) + setup


def machinery_rental_line_cost(
    hours: float,
    hourly_rate: float,
    daily_rate: float,
    operator_hourly_cost: float = 0.0,
    include_operator: bool = False,
    setup_cost: float = 0.0,
    delivery_cost: float = 0.0,
    include_delivery: bool = False,
    pickup_cost: float = 0.0,
    include_pickup: bool = False,
    custom_total: Optional[float] = None,
) -> float:
    """Third-party rental; a custom total overrides every component."""
    if custom_total is not None:
        return custom_total
    base = daily_rate if hours >= MACHINERY_DAILY_THRESHOLD_HOURS else hourly_rate * hours
    operator = operator_hourly_cost * hours if include_operator and operator_hourly_cost else 0.0
    delivery = delivery_cost if include_delivery else 0.0
    pickup = pickup_cost if include_pickup else 0.0
    return base + operator + (setup_cost or 0.0) + delivery + pickup


def subcontract_line_cost(price: float, custom_price: Optional[float] = None) -> float:
    return custom_price if custom_price else price


def disposable_line_cost(
    unit_price: float,
    quantity: float,
    minimum_quantity: float = 0,
    custom_price: Optional[float] = None,
    custom_total: Optional[float] = None,
) -> float:
    """Billed on at least ``minimum_quantity`` units."""
    if custom_total is not None:
        return custom_total
    price = custom_price if custom_price else unit_price
    return price * max(quantity, minimum_quantity)


_LINE_BUILDERS = {
    "product": lambda p: product_line_cost(
        unit_price=float(p.get("unit_price", 0)),
        quantity=float(p.get("quantity", 0)),
        pricing_type=p.get("pricing_type", "unit"),
        measurement_per_unit=p.get("measurement_per_unit"),
        custom_price=p.get("custom_price"),
    ),
    "machinery": lambda p: machinery_line_cost(
        hours=float(p.get("hours", 0)),
        hourly_rate=float(p.get("hourly_rate", 0)),
        daily_rate=float(p.get("daily_rate", 0)),
        operator_hourly_rate=float(p.get("operator_hourly_rate", 0)),
        include_operator=bool(p.get("include_operator", False)),
        setup_cost=float(p.get("setup_cost", 0)),
        setup_required=bool(p.get("setup_required", False)),
        days=int(p.get("days", 1)),
    ),
    "machinery_rental": lambda p: machinery_rental_line_cost(
        hours=float(p.get("hours", 0)),
        hourly_rate=float(p.get("hourly_rate", 0)),
        daily_rate=float(p.get("daily_rate", 0)),
        operator_hourly_cost=float(p.get("operator_hourly_cost", 0)),
        include_operator=bool(p.get("include_operator", False)),
        setup_cost=float(p.get("setup_cost", 0)),
        delivery_cost=float(p.get("delivery_cost", 0)),
        include_delivery=bool(p.get("include_delivery", False)),
        pickup_cost=float(p.get("pickup_cost", 0)),
        include_pickup=bool(p.get("include_pickup", False)),
        custom_total=p.get("custom_total"),
    ),
    "subcontract": lambda p: subcontract_line_cost(
        price=float(p.get("price", 0)),
        custom_price=p.get("custom_price"),
    ),
    "disposable": lambda p: disposable_line_cost(
        unit_price=float(p.get("unit_price", 0)),
        quantity=float(p.get("quantity", 0)),
        minimum_quantity=float(p.get("minimum_quantity", 0)),
        custom_price=p.get("custom_price"),
        custom_total=p.get("custom_total"),
    ),
}


def build_line(data: Dict[str, Any]) -> QuoteLine:
    """
    QuoteLine from a request item: an explicit ``cost`` is taken as is,
    otherwise the cost rule for ``kind`` is applied to ``pricing``.
    """
    kind = data["kind"]
    if data.get("cost") is not None:
        cost = float(data["cost"])
    elif kind in _LINE_BUILDERS:
        cost = _LINE_BUILDERS[kind](data.get("pricing") or {})
    else:
        raise ValueError(f"Line of kind {kind!r} needs an explicit cost")
    return QuoteLine(
        kind=kind,
        cost=cost,
        ref=None if data.get("ref") is None else str(data["ref"]),
        description=data.get("description") or "",
        margin_percentage=data.get("margin_percentage"),
    )


# ---------------------------------------------------------------------------
# Totals
# ---------------------------------------------------------------------------

def compute_quote_total(
    lines: Iterable[QuoteLine],
    margin_percentage: float,
    margin_mode: str = "global",
    retention_percentage: Optional[float] = None,
) -> Dict[str, Any]:
    """
    subtotal  = Σ line costs
    margin    = subtotal × pct / 100                       (global)
              = Σ line cost × (line pct or quote pct) / 100  (per_line)
    retention = (subtotal + margin) × retention pct / 100  (0 when None)
    total     = subtotal + margin − retention
    """
    if margin_mode not in MARGIN_MODES:
        raise ValueError(f"margin_mode must be one of {MARGIN_MODES}, got {margin_mode!r}")

    lines = list(lines)
    subtotal = 0.0
    by_kind: Dict[str, float] = {}
    line_margins: List[float] = []
    for line in lines:
        subtotal += line.cost
        by_kind[line.kind] = by_kind.get(line.kind, 0.0) + line.cost
        pct = line.margin_percentage if line.margin_percentage is not None else margin_percentage
        line_margins.append(line.cost * pct / 100)

    if margin_mode == "per_line":
        margin_amount = sum(line_margins)
    else:
        margin_amount = subtotal * margin_percentage / 100

    retention_pct = retention_percentage or 0.0
    retention_amount = (subtotal + margin_amount) * retention_pct / 100
    total = subtotal + margin_amount - retention_amount

    result = {
        "subtotal": round(subtotal, 2),
        "margin_percentage": margin_percentage,
        "margin_mode": margin_mode,
        "margin_amount": round(margin_amount, 2),
        "retention_percentage": retention_pct,
        "retention_amount": round(retention_amount, 2),
        "total": round(total, 2),
        "subtotal_by_kind": {k: round(v, 2) for k, v in by_kind.items()},
    }
    if margin_mode == "per_line":
        result["line_margins"] = [round(m, 2) for m in line_margins]
    return result


def per_line_breakdown(
    billable_lines: Iterable[QuoteLine],
    labor_by_line: Dict[str, float],
    transport_by_line: Dict[str, float],
    transport_total: float,
    margin_percentage: float,
) -> List[Dict[str, Any]]:
    """
    Billable lines with the labor and transport attributed to them folded in.

    A line's own cost carries its own margin; folded-in labor and transport
    carry the quote margin, as their separate lines do in per_line totals.
    Transport not assigned to any line is spread evenly over the rows.
    """
    rows = [line for line in billable_lines if line.ref is not None]
    if not rows:
        return []
    unassigned = max(0.0, transport_total - sum(transport_by_line.values()))
    share = unassigned / len(rows)

    breakdown = []
    for line in rows:
        labor = labor_by_line.get(line.ref, 0.0)
        transport = transport_by_line.get(line.ref, 0.0) + share
        own_pct = line.margin_percentage if line.margin_percentage is not None else margin_percentage
        margin = line.cost * own_pct / 100 + (labor + transport) * margin_percentage / 100
        cost = line.cost + labor + transport
        breakdown.append({
            "ref": line.ref,
            "kind": line.kind,
            "description": line.description,
            "base_cost": round(line.cost, 2),
            "labor_cost": round(labor, 2),
            "transport_cost": round(transport, 2),
            "cost": round(cost, 2),
            "margin_percentage": own_pct,
            "margin_amount": round(margin, 2),
            "total": round(cost + margin, 2),
        })
    return breakdown


def default_margin(client_type: Optional[str]) -> float:
    return DEFAULT_MARGINS.get((client_type or "").lower(), FALLBACK_MARGIN_PCT)


def payment_terms(client_type: Optional[str], total: float) -> Dict[str, Any]:
    days = CORPORATE_PAYMENT_DAYS if (client_type or "").lower() == "corporativo" else DEFAULT_PAYMENT_DAYS
    advance_pct = ADVANCE_PAYMENT_PCT if total > ADVANCE_PAYMENT_THRESHOLD else 0.0
    return {
        "payment_days": days,
        "advance_percentage": advance_pct,
        "advance_amount": round(total * advance_pct / 100, 2),
    }


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_quote_input(
    margin_percentage: float,
    event: EventWindow,
    workers: Dict[int, Dict[str, Any]],
    labor_lines: Iterable[LaborLine],
    billable_line_ids: Iterable[str],
) -> List[Outcome]:
    """All non-ok outcomes for a quote request; an empty list means clean input."""
    outcomes: List[Outcome] = []
    labor_lines = list(labor_lines)

    if not (MIN_MARGIN_PCT <= margin_percentage <= MAX_MARGIN_PCT):
        outcomes.append(oc.error(
            "margin_out_of_range",
            f"Margin must be between {MIN_MARGIN_PCT:g}% and {MAX_MARGIN_PCT:g}%",
            margin_percentage=margin_percentage,
        ))

    outcomes.append(validate_event_window(event))

    for line in labor_lines:
        worker = workers.get(line.worker_id)
        if worker is None:
            outcomes.append(oc.error("unknown_worker", f"Unknown worker id {line.worker_id}", worker_id=line.worker_id))
        elif not tiers_for_worker(worker, worker.get("category")):
            outcomes.append(oc.warning(
                "worker_without_rates",
                f"Worker {worker.get('name') or line.worker_id} has no rate tiers",
                worker_id=line.worker_id,
            ))

    if labor_lines:
        outcomes.append(validate_line_links(labor_lines, billable_line_ids))

    return oc.non_ok(outcomes)


# ---------------------------------------------------------------------------
# QuoteEngine
# ---------------------------------------------------------------------------

@dataclass
class QuoteRequest:
    event: EventWindow
    client_type: Optional[str] = None
    workers: Dict[int, Dict[str, Any]] = field(default_factory=dict)
    labor_lines: List[LaborLine] = field(default_factory=list)
    lines: List[QuoteLine] = field(default_factory=list)
    transport: List[Dict[str, Any]] = field(default_factory=list)
    margin_percentage: Optional[float] = None
    retention_percentage: Optional[float] = None


class QuoteEngine:
    """
    Runs a complete pricing pass for one quote request.

    Warnings never stop the computation; the configured policies decide
    which of them make the quote non-finalizable.
    """

    # outcome code → PricingConfig attribute holding its policy
    POLICY_CODES = {
        "transport_mismatch": "transport_mismatch_policy",
        "unresolved_rate": "unresolved_rate_policy",
        "worker_without_rates": "unresolved_rate_policy",
    }

    def __init__(self, config: Optional[PricingConfig] = None) -> None:
        self.config = config or PricingConfig()
        self.labor = LaborEngine(self.config)

    def margin_for(self, request: QuoteRequest) -> float:
        if request.margin_percentage is not None:
            return request.margin_percentage
        return default_margin(request.client_type)

    def retention_for(self, request: QuoteRequest) -> float:
        if not self.config.retention_enabled:
            return 0.0
        if request.retention_percentage is not None:
            return request.retention_percentage
        return self.config.retention_percentage

    def blocking_reasons(self, outcomes: Iterable[Outcome]) -> List[Dict[str, Any]]:
        blocking = []
        for outcome in outcomes:
            if outcome.is_error:
                blocking.append(outcome.to_dict())
            elif outcome.is_warning:
                policy_attr = self.POLICY_CODES.get(outcome.code)
                if policy_attr and getattr(self.config, policy_attr) == "block":
                    blocking.append(outcome.to_dict())
        return blocking

    def price(self, request: QuoteRequest) -> Dict[str, Any]:
        start = time.perf_counter()
        event_hours: EventHours = compute_event_hours(request.event)
        margin_pct = self.margin_for(request)
        retention_pct = self.retention_for(request)
        billable_ids = [line.ref for line in request.lines if line.ref is not None]

        outcomes = validate_quote_input(
            margin_pct, request.event, request.workers, request.labor_lines, billable_ids,
        )
        # unknown workers are reported above; price only the known ones
        known_lines = [l for l in request.labor_lines if l.worker_id in request.workers]
        labor = self.labor.price_team(request.workers, known_lines, event_hours)
        for line in labor["lines"]:
            outcomes.extend(
                oc.warning(w["code"], w["message"], **w["details"]) for w in line["warnings"]
            )

        transport = allocate_transport_zones(request.transport)
        outcomes.extend(oc.non_ok(
            zone["reconciliation"]["outcome"] for zone in transport["zones"]
        ))

        lines: List[QuoteLine] = [
            QuoteLine(
                kind="labor",
                cost=l["total_cost"],
                ref=f"worker:{l['worker_id']}",
                description=l["worker_name"],
            )
            for l in labor["lines"]
        ]
        lines.extend(request.lines)
        if transport["total_cost"] > 0:
            lines.append(QuoteLine(kind="transport", cost=transport["total_cost"], description="Transport"))

        totals = compute_quote_total(
            lines, margin_pct, self.config.margin_mode, retention_pct,
        )
        if self.config.margin_mode == "per_line":
            totals["line_breakdown"] = per_line_breakdown(
                request.lines,
                allocate_labor_to_lines(labor["lines"], known_lines),
                transport["per_line_cost"],
                transport["total_cost"],
                margin_pct,
            )
        blocking = self.blocking_reasons(outcomes)

        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        tracker.record_quote_priced(duration_ms)
        logger.info(
            "Quote priced: total=%.2f lines=%d warnings=%d blocking=%d",
            totals["total"], len(lines), len(outcomes), len(blocking),
            extra={"duration_ms": duration_ms},
        )

        return {
            **totals,
            "event_hours": event_hours.to_dict(),
            "labor": {
                **{k: v for k, v in labor.items() if k not in ("outcome", "lines")},
                "lines": [{k: v for k, v in l.items() if k != "outcome"} for l in labor["lines"]],
            },
            "transport": {
                "per_line_cost": transport["per_line_cost"],
                "total_cost": transport["total_cost"],
                "zones": [
                    {**{k: v for k, v in z.items() if k != "reconciliation"},
                     "reconciliation": {k: v for k, v in z["reconciliation"].items() if k != "outcome"}}
                    for z in transport["zones"]
                ],
            },
            "lines": [l.to_dict() for l in lines],
            "payment_terms": payment_terms(request.client_type, totals["total"]),
            "warnings": [o.to_dict() for o in outcomes],
            "blocking": blocking,
            "finalizable": not blocking,
        }


def replay(stored: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recompute totals from a persisted quote's lines and percentages and
    compare them with the stored figures (tolerance: one cent).
    """
    lines = [QuoteLine.from_dict(l) for l in stored["lines"]]
    recomputed = compute_quote_total(
        lines,
        float(stored["margin_percentage"]),
        stored.get("margin_mode", "global"),
        float(stored.get("retention_percentage") or 0.0),
    )
    fields = ("subtotal", "margin_amount", "retention_amount", "total")
    diffs = {
        f: round(recomputed[f] - float(stored[f]), 2)
        for f in fields
        if abs(recomputed[f] - float(stored[f])) > CURRENCY_TOLERANCE
    }
    if diffs:
        logger.warning("Quote replay drift: %s", diffs, extra={"quote_id": stored.get("id")})
    return {
        "matches": not diffs,
        "stored": {f: float(stored[f]) for f in fields},
        "recomputed": {f: recomputed[f] for f in fields},
        "differences": diffs,
    }
