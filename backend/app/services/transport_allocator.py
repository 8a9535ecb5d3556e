"""
transport_allocator.py — Distributes transport trips (a shared cost) across
the billable lines of a quote.

Modes:
  automatic  total = unit_count × cost_per_transport, split evenly across the
             selected lines (or one unassigned row when none are selected)
  manual     caller gives a quantity per line; each row costs
             quantity × cost_per_transport and the summed quantity is
             reconciled against the declared unit count

Reconciliation never corrects a mismatch. It reports deficit / exact /
excess with the delta and leaves acceptance to the caller.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from app.services import outcome as oc
from app.services.outcome import Outcome

logger = logging.getLogger("events-pricing.transport")

AUTOMATIC = "automatic"
MANUAL = "manual"

DEFICIT = "deficit"
EXACT = "exact"
EXCESS = "excess"


@dataclass(frozen=True)
class TransportZone:
    id: Optional[str]
    name: str
    base_cost: float
    additional_equipment_cost: float = 0.0

    def cost_per_transport(self, include_equipment: bool = False) -> float:
        return self.base_cost + (self.additional_equipment_cost if include_equipment else 0.0)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransportZone":
        return cls(
            id=None if data.get("id") is None else str(data["id"]),
            name=str(data.get("name") or ""),
            base_cost=float(data.get("base_cost") or 0.0),
            additional_equipment_cost=float(data.get("additional_equipment_cost") or 0.0),
        )


@dataclass(frozen=True)
class TransportAllocation:
    line_id: str
    quantity: int

    def __post_init__(self):
        if self.quantity < 0:
            raise ValueError(f"transport quantity for line {self.line_id} cannot be negative")


def reconcile(allocated: int, declared: int) -> Dict[str, Any]:
    """Compare allocated units with the declared count."""
    if allocated == declared:
        state, delta = EXACT, 0
        message = f"Allocation is correct: {allocated} of {declared} transport(s) assigned"
        result = oc.ok()
    elif allocated > declared:
        state, delta = EXCESS, allocated - declared
        message = f"Allocation exceeds the declared count by {delta} transport(s)"
    else:
        state, delta = DEFICIT, declared - allocated
        message = f"Allocation is missing {delta} transport(s)"

    if state != EXACT:
        result = oc.warning(
            "transport_mismatch", message,
            state=state, delta=delta, allocated=allocated, declared=declared,
        )
    return {
        "state": state,
        "delta": delta,
        "allocated": allocated,
        "declared": declared,
        "message": message,
        "outcome": result,
    }


def allocate_transport(
    lines: Sequence[str],
    unit_count: int,
    mode: str,
    manual_quantities: Optional[Iterable[Any]] = None,
    cost_per_transport: float = 0.0,
) -> Dict[str, Any]:
    """
    Allocate ``unit_count`` transports over ``lines`` (billable line ids).

    ``manual_quantities`` (manual mode only) holds TransportAllocation
    objects, ``{"line_id", "quantity"}`` dicts, or bare integers paired
    positionally with ``lines``. Returns per-line rows, the total
    cost and the reconciliation record (always ``exact`` in automatic mode).
    """
    if unit_count < 0:
        raise ValueError("unit_count cannot be negative")
    if cost_per_transport < 0:
        raise ValueError("cost_per_transport cannot be negative")

    rows: List[Dict[str, Any]] = []

    if mode == AUTOMATIC:
        total = unit_count * cost_per_transport
        if lines:
            n = len(lines)
            for line_id in lines:
                rows.append({
                    "line_id": line_id,
                    "quantity": unit_count / n,
                    "cost": total / n,
                })
        elif unit_count > 0:
            rows.append({"line_id": None, "quantity": unit_count, "cost": total})
        reconciliation = reconcile(unit_count, unit_count)

    elif mode == MANUAL:
        allocations = []
        for i, a in enumerate(manual_quantities or []):
            if isinstance(a, TransportAllocation):
                allocations.append(a)
            elif isinstance(a, dict):
                allocations.append(TransportAllocation(str(a["line_id"]), int(a["quantity"])))
            else:
                # bare quantities pair positionally with ``lines``
                if i >= len(lines):
                    raise ValueError("more manual quantities than billable lines")
                allocations.append(TransportAllocation(str(lines[i]), int(a)))
        known = set(lines)
        for a in allocations:
            if known and a.line_id not in known:
                raise ValueError(f"transport allocated to unknown line {a.line_id}")
            rows.append({
                "line_id": a.line_id,
                "quantity": a.quantity,
                "cost": a.quantity * cost_per_transport,
            })
        reconciliation = reconcile(sum(a.quantity for a in allocations), unit_count)
        if reconciliation["state"] != EXACT:
            logger.warning("Transport allocation mismatch: %s", reconciliation["message"])
        total = sum(r["cost"] for r in rows)

    else:
        raise ValueError(f"mode must be '{AUTOMATIC}' or '{MANUAL}', got {mode!r}")

    per_line_cost = {
        r["line_id"]: round(r["cost"], 2) for r in rows if r["line_id"] is not None
    }
    return {
        "mode": mode,
        "cost_per_transport": cost_per_transport,
        "unit_count": unit_count,
        "rows": [{**r, "cost": round(r["cost"], 2)} for r in rows],
        "per_line_cost": per_line_cost,
        "total_cost": round(total, 2),
        "reconciliation": reconciliation,
    }


def allocate_transport_zones(requests: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Several transport zones on one quote, summed into one transport cost.

    Each request: ``zone`` (TransportZone or dict), ``unit_count``, ``mode``,
    ``lines``, ``include_equipment``, ``manual_quantities``.
    """
    results = []
    for req in requests:
        zone = req["zone"] if isinstance(req["zone"], TransportZone) else TransportZone.from_dict(req["zone"])
        cpt = zone.cost_per_transport(bool(req.get("include_equipment", False)))
        result = allocate_transport(
            lines=list(req.get("lines") or []),
            unit_count=int(req.get("unit_count", 0)),
            mode=req.get("mode", AUTOMATIC),
            cost_per_transport=cpt,
            manual_quantities=req.get("manual_quantities"),
        )
        result["zone_id"] = zone.id
        result["zone_name"] = zone.name
        results.append(result)

    per_line: Dict[str, float] = {}
    for r in results:
        for line_id, cost in r["per_line_cost"].items():
            per_line[line_id] = round(per_line.get(line_id, 0.0) + cost, 2)

    outcomes: List[Outcome] = [r["reconciliation"]["outcome"] for r in results]
    return {
        "zones": results,
        "per_line_cost": per_line,
        "total_cost": round(sum(r["total_cost"] for r in results), 2),
        "outcome": Outcome.worst(outcomes),
    }
