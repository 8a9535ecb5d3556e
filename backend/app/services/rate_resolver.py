"""
rate_resolver.py — Tiered hourly rate lookup for event staff.

A worker (or the worker's category) owns an ordered list of rate tiers:

    [{"min_hours": 0,    "max_hours": 4,    "rate": 25000},
     {"min_hours": 4,    "max_hours": 8,    "rate": 22000},
     {"min_hours": 8,    "max_hours": None, "rate": 20000}]

Lookup is a linear scan returning the FIRST tier whose range contains the
hours value. A ``max_hours`` of None is an open tier ("8h+"). No match
yields 0, which callers treat as "unresolved" and surface as a warning.

Tier integrity (sorted, non-overlapping, gap-free) is checked when tiers are
entered (see validate_tiers), never at resolution time.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from app.services import outcome as oc
from app.services.outcome import Outcome

logger = logging.getLogger("events-pricing.rates")

# Largest hole between consecutive tiers still treated as contiguous (4.00 → 4.01)
TIER_GAP_TOLERANCE: float = 0.01

# Fixed bands used by older worker records
LEGACY_BANDS: Dict[str, Tuple[float, Optional[float]]] = {
    "1-4h": (0.0, 4.0),
    "4-8h": (4.0, 8.0),
    "8h+":  (8.0, None),
}


@dataclass(frozen=True)
class RateTier:
    min_hours: float
    max_hours: Optional[float]
    rate: float
    description: str = ""
    id: Optional[str] = None

    def contains(self, hours: float) -> bool:
        return hours >= self.min_hours and (self.max_hours is None or hours <= self.max_hours)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RateTier":
        max_hours = data.get("max_hours")
        return cls(
            min_hours=float(data.get("min_hours", 0) or 0),
            max_hours=None if max_hours is None else float(max_hours),
            rate=float(data.get("rate", 0) or 0),
            description=str(data.get("description") or ""),
            id=None if data.get("id") is None else str(data["id"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "min_hours": self.min_hours,
            "max_hours": self.max_hours,
            "rate": self.rate,
            "description": self.description,
        }
        if self.id is not None:
            d["id"] = self.id
        return d


def normalize_tiers(raw: Any) -> List[RateTier]:
    """
    Accept any stored rate shape and return a tier list.

    Handles the tier-list format (dicts or RateTier objects) and the legacy
    fixed-band mapping ``{"1-4h": r1, "4-8h": r2, "8h+": r3}``. Empty or
    unknown shapes yield an empty list.
    """
    if not raw:
        return []
    if isinstance(raw, dict):
        tiers = []
        for label, (lo, hi) in LEGACY_BANDS.items():
            if label in raw and raw[label] is not None:
                tiers.append(RateTier(lo, hi, float(raw[label]), description=label))
        return tiers
    tiers = []
    for item in raw:
        tiers.append(item if isinstance(item, RateTier) else RateTier.from_dict(item))
    return tiers


def match_tier(tiers: Sequence[Any], hours: float) -> Optional[RateTier]:
    """First tier containing ``hours``, or None."""
    for tier in normalize_tiers(tiers):
        if tier.contains(hours):
            return tier
    return None


def resolve_rate(tiers: Sequence[Any], hours: float) -> float:
    """Return the rate of the first tier containing ``hours``, or 0.0 when none does."""
    tier = match_tier(tiers, hours)
    return tier.rate if tier is not None else 0.0


def resolve_rate_checked(tiers: Sequence[Any], hours: float) -> Tuple[float, Outcome]:
    """resolve_rate plus a warning outcome when nothing matched. A matched free tier is ok."""
    tier = match_tier(tiers, hours)
    if tier is not None:
        return tier.rate, oc.ok()
    logger.warning("No rate tier matches %.2f hours", hours)
    return 0.0, oc.warning(
        "unresolved_rate",
        f"No rate tier covers {hours:g} hours; labor priced at 0",
        hours=hours,
    )


def tiers_for_worker(worker: Dict[str, Any], category: Optional[Dict[str, Any]] = None) -> List[RateTier]:
    """Category tiers win over the worker's own tiers when the category defines any."""
    if category:
        category_tiers = normalize_tiers(category.get("rate_tiers"))
        if category_tiers:
            return category_tiers
    return normalize_tiers(worker.get("rate_tiers"))


def rate_tier_label(hours: float) -> str:
    if hours <= 4:
        return "1-4h"
    if hours <= 8:
        return "4-8h"
    return "8h+"


def validate_tiers(raw: Iterable[Any]) -> Outcome:
    """
    Data-entry check for a tier list.

    Errors: empty list, negative rate or bounds, min > max, unsorted,
    overlapping ranges, open-ended tier before the last one.
    Warnings: first tier not starting at 0, gaps between tiers, bounded
    last tier (hours beyond it resolve to 0).
    """
    tiers = normalize_tiers(raw)
    if not tiers:
        return oc.error("empty_tiers", "At least one rate tier is required")

    for i, tier in enumerate(tiers):
        if tier.rate < 0 or tier.min_hours < 0:
            return oc.error("negative_value", f"Tier {i + 1} has a negative rate or bound", index=i)
        if tier.max_hours is not None and tier.max_hours < tier.min_hours:
            return oc.error("inverted_range", f"Tier {i + 1}: max_hours below min_hours", index=i)
        if tier.max_hours is None and i != len(tiers) - 1:
            return oc.error("open_tier_not_last", f"Tier {i + 1} is open-ended but not last", index=i)

    gaps = []
    for i in range(1, len(tiers)):
        prev, cur = tiers[i - 1], tiers[i]
        if cur.min_hours < prev.min_hours:
            return oc.error("unsorted", "Tiers must be sorted by min_hours ascending", index=i)
        # prev.max_hours is not None here (open tier checked above)
        if cur.min_hours < prev.max_hours:
            return oc.error(
                "overlap",
                f"Tier {i + 1} starts at {cur.min_hours:g}h inside tier {i} (ends {prev.max_hours:g}h)",
                index=i,
            )
        if cur.min_hours - prev.max_hours > TIER_GAP_TOLERANCE:
            gaps.append((prev.max_hours, cur.min_hours))

    if tiers[0].min_hours > 0:
        return oc.warning(
            "uncovered_start",
            f"Hours below {tiers[0].min_hours:g} resolve to no rate",
            min_hours=tiers[0].min_hours,
        )
    if gaps:
        return oc.warning(
            "gap",
            "Hours between tiers resolve to no rate: "
            + ", ".join(f"{lo:g}-{hi:g}h" for lo, hi in gaps),
            gaps=gaps,
        )
    if tiers[-1].max_hours is not None:
        return oc.warning(
            "bounded_last_tier",
            f"Hours above {tiers[-1].max_hours:g} resolve to no rate",
            max_hours=tiers[-1].max_hours,
        )
    return oc.ok()
