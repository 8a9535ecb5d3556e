"""
Pricing & scheduling configuration — single source of truth for business
constants, default margins and the policy switches passed through the engine.

Import from here in all services and routes rather than hardcoding values.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, replace

# ── Margins ────────────────────────────────────────────────────────────────────

DEFAULT_MARGINS: dict[str, float] = {
    "social":      25.0,
    "corporativo": 30.0,
}
FALLBACK_MARGIN_PCT: float = 25.0

MIN_MARGIN_PCT: float = 0.0
MAX_MARGIN_PCT: float = 200.0

MARGIN_MODES: tuple[str, ...] = ("global", "per_line")

# ── Tax retention ──────────────────────────────────────────────────────────────

DEFAULT_RETENTION_PCT: float = 4.0

# ── Payment terms ──────────────────────────────────────────────────────────────

CORPORATE_PAYMENT_DAYS: int = 30
DEFAULT_PAYMENT_DAYS: int = 15
ADVANCE_PAYMENT_THRESHOLD: float = 500_000.0
ADVANCE_PAYMENT_PCT: float = 50.0

# ── Hours & event windows ──────────────────────────────────────────────────────

MIN_BILLABLE_HOURS: float = 0.5
MAX_SINGLE_DAY_HOURS: float = 24.0
MAX_MULTI_DAY_HOURS: float = 168.0      # one week of continuous work

# Upper bound on any date-range enumeration (one leap year inclusive)
MAX_EVENT_DAYS: int = 366

# Above this many hours a day's schedule is booked as a full-day shift
FULL_DAY_THRESHOLD_HOURS: float = 12.0
# Shifts starting before this hour are morning shifts
AFTERNOON_START_HOUR: int = 14

# ── Shift windows & commitment states ─────────────────────────────────────────

SHIFT_WINDOWS: tuple[str, ...] = ("morning", "afternoon", "full_day")
COMMITMENT_STATUSES: tuple[str, ...] = ("available", "booked", "vacation", "sick", "maintenance")

DEFAULT_SHIFT_TIMES: dict[str, tuple[str, str]] = {
    "morning":   ("08:00", "12:00"),
    "afternoon": ("14:00", "20:00"),
    "full_day":  ("08:00", "20:00"),
}

# ── Worker recommendation scoring ─────────────────────────────────────────────

RECOMMEND_AVAILABLE_SCORE: int = 50
RECOMMEND_TYPE_MATCH_SCORE: int = 30
RECOMMEND_WORKLOAD_CEILING: int = 20
RECOMMEND_WORKLOAD_DAYS: int = 7
RECOMMEND_LIMIT: int = 5

# ── Quotes ─────────────────────────────────────────────────────────────────────

QUOTE_NUMBER_PREFIX: str = os.getenv("QUOTE_NUMBER_PREFIX", "QT")
QUOTE_STATUSES: tuple[str, ...] = ("draft", "approved", "rejected", "completed", "cancelled")
QUOTE_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "draft":     ("approved", "rejected", "cancelled"),
    "approved":  ("completed", "cancelled"),
    "rejected":  (),
    "completed": (),
    "cancelled": (),
}
# Statuses whose entry releases every booked commitment of the quote
RELEASING_STATUSES: tuple[str, ...] = ("rejected", "cancelled")

# Persisted totals must replay within one cent
CURRENCY_TOLERANCE: float = 0.01


# ── Policy object ──────────────────────────────────────────────────────────────

_POLICIES = ("warn", "block")
_SURCHARGE_MODES = ("fixed", "proportional")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be numeric, got {raw!r}")


@dataclass(frozen=True)
class PricingConfig:
    """Explicit switches for one pricing run. Never read ambient state inside engines."""
    margin_mode: str = "global"
    retention_enabled: bool = False
    retention_percentage: float = DEFAULT_RETENTION_PCT
    surcharge_mode: str = "fixed"
    surcharge_amount: float = 0.0
    surcharge_percentage: float = 0.0
    transport_mismatch_policy: str = "warn"
    unresolved_rate_policy: str = "warn"

    def __post_init__(self):
        if self.margin_mode not in MARGIN_MODES:
            raise ValueError(f"margin_mode must be one of {MARGIN_MODES}, got {self.margin_mode!r}")
        if self.surcharge_mode not in _SURCHARGE_MODES:
            raise ValueError(f"surcharge_mode must be one of {_SURCHARGE_MODES}, got {self.surcharge_mode!r}")
        for name in ("transport_mismatch_policy", "unresolved_rate_policy"):
            if getattr(self, name) not in _POLICIES:
                raise ValueError(f"{name} must be one of {_POLICIES}, got {getattr(self, name)!r}")
        if self.retention_percentage < 0 or self.surcharge_amount < 0 or self.surcharge_percentage < 0:
            raise ValueError("retention and surcharge values cannot be negative")

    @classmethod
    def from_env(cls) -> "PricingConfig":
        return cls(
            margin_mode=os.getenv("PRICING_MARGIN_MODE", "global").strip().lower(),
            retention_enabled=_env_bool("PRICING_RETENTION_ENABLED", False),
            retention_percentage=_env_float("PRICING_RETENTION_PCT", DEFAULT_RETENTION_PCT),
            surcharge_mode=os.getenv("PRICING_SURCHARGE_MODE", "fixed").strip().lower(),
            surcharge_amount=_env_float("PRICING_SURCHARGE_AMOUNT", 0.0),
            surcharge_percentage=_env_float("PRICING_SURCHARGE_PCT", 0.0),
            transport_mismatch_policy=os.getenv("PRICING_TRANSPORT_MISMATCH_POLICY", "warn").strip().lower(),
            unresolved_rate_policy=os.getenv("PRICING_UNRESOLVED_RATE_POLICY", "warn").strip().lower(),
        )

    def with_overrides(self, **overrides) -> "PricingConfig":
        """Copy with request-level overrides; ``None`` values are ignored."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
