"""
labor_engine.py — Labor cost per worker, per event

Covers:
  - Per-day rate resolution against the worker's (or category's) rate tiers
  - Single-day and multi-day events (multi-day summed per day, never averaged)
  - Manual extra cost, added once per event
  - ARL / insurance surcharge, fixed or proportional, always explicit in output
  - Team pricing with collected warnings
  - Labor-to-line linkage validation and cost allocation into billable lines
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from app.config import PricingConfig
from app.services import outcome as oc
from app.services.day_span import EventHours, parse_date
from app.services.outcome import Outcome
from app.services.perf_monitor import timed
from app.services.rate_resolver import (
    rate_tier_label,
    resolve_rate_checked,
    tiers_for_worker,
)

logger = logging.getLogger("events-pricing.labor")


# ---------------------------------------------------------------------------
# Labor line
# ---------------------------------------------------------------------------

@dataclass
class LaborLine:
    """
    One worker assigned to a quote.

    ``hours_worked`` / ``per_day_hours`` override the event's own hours;
    ``include_surcharge`` / ``extra_cost`` override the worker's defaults
    when not None. ``hours_allocated`` maps billable line id → hours spent
    on it, used to split the labor cost across lines.
    """
    worker_id: int
    line_ids: List[str] = field(default_factory=list)
    hours_worked: Optional[float] = None
    per_day_hours: Optional[Dict[date, float]] = None
    include_surcharge: Optional[bool] = None
    extra_cost: Optional[float] = None
    extra_cost_reason: Optional[str] = None
    hours_allocated: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LaborLine":
        per_day = data.get("per_day_hours")
        if per_day:
            per_day = {parse_date(k): float(v) for k, v in per_day.items()}
            per_day = {k: v for k, v in per_day.items() if k is not None}
        return cls(
            worker_id=int(data["worker_id"]),
            line_ids=[str(x) for x in data.get("line_ids") or []],
            hours_worked=None if data.get("hours_worked") is None else float(data["hours_worked"]),
            per_day_hours=per_day or None,
            include_surcharge=data.get("include_surcharge"),
            extra_cost=None if data.get("extra_cost") is None else float(data["extra_cost"]),
            extra_cost_reason=data.get("extra_cost_reason"),
            hours_allocated={str(k): float(v) for k, v in (data.get("hours_allocated") or {}).items()},
        )


# ---------------------------------------------------------------------------
# LaborEngine
# ---------------------------------------------------------------------------

class LaborEngine:
    """
    Labor cost calculator for event staff.

    Rates are resolved independently for each event day from that day's own
    hours; extra cost and surcharge are per-event adjustments applied once.
    """

    def __init__(self, config: Optional[PricingConfig] = None) -> None:
        self.config = config or PricingConfig()

    # -----------------------------------------------------------------------
    # 1. Hours for a line
    # -----------------------------------------------------------------------

    @staticmethod
    def hours_for_line(line: LaborLine, event_hours: EventHours) -> Dict[date, float]:
        """Per-day hours billed for ``line``: explicit overrides first, then the event's."""
        if line.per_day_hours:
            return dict(line.per_day_hours)
        if line.hours_worked is not None:
            if event_hours.is_multi_day and event_hours.per_day:
                # flat override applies to every configured day
                return {day: line.hours_worked for day in event_hours.per_day}
            day = next(iter(event_hours.per_day), None)
            return {day: line.hours_worked}
        return dict(event_hours.per_day)

    # -----------------------------------------------------------------------
    # 2. Surcharge
    # -----------------------------------------------------------------------

    def surcharge_for(self, base_cost: float, applied: bool) -> float:
        if not applied:
            return 0.0
        if self.config.surcharge_mode == "proportional":
            return base_cost * self.config.surcharge_percentage / 100
        return self.config.surcharge_amount

    # -----------------------------------------------------------------------
    # 3. Single worker
    # -----------------------------------------------------------------------

    def price_line(
        self,
        worker: Dict[str, Any],
        line: LaborLine,
        event_hours: EventHours,
        category: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Price one worker for one event.

        ``worker`` carries ``id``, ``name``, ``rate_tiers``, ``has_arl``,
        ``default_extra_cost`` and ``default_extra_cost_reason``; ``category``
        (optional) carries ``rate_tiers`` that take precedence.

        Returns per-day breakdown, base cost, extra cost, surcharge flag and
        amount, total cost and any warnings.
        """
        tiers = tiers_for_worker(worker, category or worker.get("category"))
        outcomes: List[Outcome] = []
        per_day_rows: List[Dict[str, Any]] = []
        base_cost = 0.0

        for day, hours in sorted(self.hours_for_line(line, event_hours).items(), key=lambda kv: (kv[0] is None, kv[0])):
            if hours <= 0:
                continue
            rate, result = resolve_rate_checked(tiers, hours)
            if not result.is_ok:
                outcomes.append(oc.warning(
                    result.code, result.message,
                    worker_id=line.worker_id, date=day.isoformat() if day else None, hours=hours,
                ))
            cost = rate * hours
            base_cost += cost
            per_day_rows.append({
                "date": day.isoformat() if day else None,
                "hours": hours,
                "rate": rate,
                "rate_tier": rate_tier_label(hours),
                "cost": round(cost, 2),
            })

        if not per_day_rows:
            outcomes.append(oc.warning(
                "no_hours", f"No billable hours for worker {line.worker_id}", worker_id=line.worker_id,
            ))

        extra_cost = line.extra_cost if line.extra_cost is not None else float(worker.get("default_extra_cost") or 0.0)
        extra_reason = line.extra_cost_reason if line.extra_cost is not None else worker.get("default_extra_cost_reason")
        if extra_cost < 0:
            raise ValueError(f"extra_cost cannot be negative (worker {line.worker_id})")

        surcharge_applied = bool(worker.get("has_arl", False)) if line.include_surcharge is None else bool(line.include_surcharge)
        surcharge = self.surcharge_for(base_cost, surcharge_applied)

        total_hours = sum(row["hours"] for row in per_day_rows)
        total = base_cost + extra_cost + surcharge

        if outcomes:
            logger.warning(
                "Labor line priced with %d warning(s)", len(outcomes),
                extra={"worker_id": line.worker_id},
            )

        return {
            "worker_id": line.worker_id,
            "worker_name": worker.get("name", ""),
            "line_ids": list(line.line_ids),
            "per_day": per_day_rows,
            "total_hours": total_hours,
            # single rate is only meaningful for a one-day line
            "rate": per_day_rows[0]["rate"] if len(per_day_rows) == 1 else None,
            "base_cost": round(base_cost, 2),
            "extra_cost": round(extra_cost, 2),
            "extra_cost_reason": extra_reason,
            "surcharge_applied": surcharge_applied,
            "surcharge_mode": self.config.surcharge_mode,
            "surcharge_amount": round(surcharge, 2),
            "total_cost": round(total, 2),
            "warnings": [o.to_dict() for o in outcomes],
            "outcome": Outcome.worst(outcomes),
        }

    # -----------------------------------------------------------------------
    # 4. Team
    # -----------------------------------------------------------------------

    @timed
    def price_team(
        self,
        workers: Dict[int, Dict[str, Any]],
        lines: Iterable[LaborLine],
        event_hours: EventHours,
    ) -> Dict[str, Any]:
        """Price every labor line; unknown worker ids raise ValueError."""
        results = []
        for line in lines:
            worker = workers.get(line.worker_id)
            if worker is None:
                raise ValueError(f"Unknown worker id {line.worker_id}")
            results.append(self.price_line(worker, line, event_hours))

        outcomes = [r["outcome"] for r in results]
        return {
            "lines": results,
            "worker_count": len(results),
            "total_hours": sum(r["total_hours"] for r in results),
            "total_cost": round(sum(r["total_cost"] for r in results), 2),
            "surcharge_total": round(sum(r["surcharge_amount"] for r in results), 2),
            "extra_cost_total": round(sum(r["extra_cost"] for r in results), 2),
            "outcome": Outcome.worst(outcomes),
        }


# ---------------------------------------------------------------------------
# Line linkage
# ---------------------------------------------------------------------------

def validate_line_links(lines: Iterable[LaborLine], billable_line_ids: Iterable[str]) -> Outcome:
    """Every labor line must reference at least one existing billable line."""
    known = {str(x) for x in billable_line_ids}
    for line in lines:
        if not line.line_ids:
            return oc.error(
                "unlinked_labor",
                f"Worker {line.worker_id} is not assigned to any billable line",
                worker_id=line.worker_id,
            )
        unknown = [x for x in line.line_ids if x not in known]
        if unknown:
            return oc.error(
                "unknown_line",
                f"Worker {line.worker_id} references unknown line(s): {', '.join(unknown)}",
                worker_id=line.worker_id,
                line_ids=unknown,
            )
    return oc.ok()


def allocate_labor_to_lines(
    labor_results: Iterable[Dict[str, Any]],
    lines: Iterable[LaborLine],
) -> Dict[str, float]:
    """
    Spread each worker's total cost over the billable lines they work on.

    Proportional to ``hours_allocated`` when the line gives hours for every
    linked line, otherwise split equally. Returns line id → labor cost.
    """
    by_worker = {line.worker_id: line for line in lines}
    allocation: Dict[str, float] = {}
    for result in labor_results:
        line = by_worker.get(result["worker_id"])
        if line is None or not line.line_ids:
            continue
        cost = result["total_cost"]
        weights = [line.hours_allocated.get(lid, 0.0) for lid in line.line_ids]
        total_weight = sum(weights)
        if total_weight <= 0 or any(w <= 0 for w in weights):
            weights = [1.0] * len(line.line_ids)
            total_weight = float(len(line.line_ids))
        for lid, weight in zip(line.line_ids, weights):
            allocation[lid] = allocation.get(lid, 0.0) + cost * weight / total_weight
    return {lid: round(v, 2) for lid, v in allocation.items()}
