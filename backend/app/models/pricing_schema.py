"""
Request payloads shared by the pricing and quote routes.

Dates in event windows stay strings here: a malformed date must reach the
day-span calculator (which reports it as incomplete) instead of failing
request validation.
"""
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field

from app.config import PricingConfig

LineKind = Literal[
    "product", "machinery", "machinery_rental", "subcontract", "disposable", "transport", "labor",
]


class RateTierModel(BaseModel):
    min_hours: float = Field(0.0, ge=0)
    max_hours: Optional[float] = Field(None, ge=0, description="None = open tier (e.g. 8h+)")
    rate: float = Field(..., ge=0)
    description: str = ""
    id: Optional[str] = None


class DayScheduleModel(BaseModel):
    date: Optional[str] = None
    start_time: Optional[str] = None     # "HH:MM"
    end_time: Optional[str] = None


class EventWindowModel(BaseModel):
    start_date: Optional[str] = None     # ISO date
    end_date: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    selected_days: List[str] = []
    daily_schedules: List[DayScheduleModel] = []

    model_config = {"json_schema_extra": {
        "example": {
            "start_date": "2024-01-30",
            "end_date": "2024-02-02",
            "selected_days": ["2024-01-30", "2024-01-31", "2024-02-01", "2024-02-02"],
            "daily_schedules": [
                {"date": "2024-01-30", "start_time": "08:00", "end_time": "17:00"},
                {"date": "2024-01-31", "start_time": "08:00", "end_time": "17:00"},
                {"date": "2024-02-01", "start_time": "08:00", "end_time": "17:00"},
                {"date": "2024-02-02", "start_time": "08:00", "end_time": "17:00"},
            ],
        }
    }}

    def to_window(self):
        """
        EventWindow with its daily schedules kept in step with the day
        selection: deselected days lose their schedule, newly selected days
        get an empty one, a single-day event carries none.
        """
        from app.services.day_span import EventWindow, sync_daily_schedules

        event = EventWindow.from_dict(self.model_dump())
        if event.selected_days or not event.is_multi_day:
            event.daily_schedules = sync_daily_schedules(event, event.selected_days)
        return event


class LaborLineModel(BaseModel):
    worker_id: int
    line_ids: List[str] = []
    hours_worked: Optional[float] = Field(None, gt=0)
    per_day_hours: Optional[Dict[str, float]] = None
    include_surcharge: Optional[bool] = None     # None = worker default
    extra_cost: Optional[float] = Field(None, ge=0)
    extra_cost_reason: Optional[str] = None
    hours_allocated: Dict[str, float] = {}


class QuoteLineModel(BaseModel):
    kind: LineKind
    ref: Optional[str] = None
    description: str = ""
    cost: Optional[float] = Field(None, ge=0, description="Explicit cost; otherwise computed from pricing")
    pricing: Optional[Dict[str, Any]] = None
    margin_percentage: Optional[float] = Field(None, ge=0)


class TransportZoneModel(BaseModel):
    id: Optional[str] = None
    name: str = ""
    base_cost: float = Field(..., ge=0)
    additional_equipment_cost: float = Field(0.0, ge=0)


class TransportAllocationModel(BaseModel):
    line_id: str
    quantity: int = Field(..., ge=0)


class TransportRequestModel(BaseModel):
    zone: TransportZoneModel
    unit_count: int = Field(..., ge=0)
    mode: Literal["automatic", "manual"] = "automatic"
    lines: List[str] = []
    include_equipment: bool = False
    manual_quantities: List[TransportAllocationModel] = []

    def to_engine(self) -> Dict[str, Any]:
        return {
            "zone": self.zone.model_dump(),
            "unit_count": self.unit_count,
            "mode": self.mode,
            "lines": list(self.lines),
            "include_equipment": self.include_equipment,
            "manual_quantities": [m.model_dump() for m in self.manual_quantities],
        }


class PricingOverrides(BaseModel):
    margin_mode: Optional[Literal["global", "per_line"]] = None
    retention_enabled: Optional[bool] = None
    retention_percentage: Optional[float] = Field(None, ge=0)
    surcharge_mode: Optional[Literal["fixed", "proportional"]] = None
    surcharge_amount: Optional[float] = Field(None, ge=0)
    surcharge_percentage: Optional[float] = Field(None, ge=0)
    transport_mismatch_policy: Optional[Literal["warn", "block"]] = None
    unresolved_rate_policy: Optional[Literal["warn", "block"]] = None

    def apply(self, base: PricingConfig) -> PricingConfig:
        return base.with_overrides(**self.model_dump())


class QuotePayload(BaseModel):
    client_name: Optional[str] = None
    client_type: Optional[str] = Field(None, description="social | corporativo")
    event_title: Optional[str] = None
    event: EventWindowModel
    labor: List[LaborLineModel] = []
    lines: List[QuoteLineModel] = []
    transport: List[TransportRequestModel] = []
    margin_percentage: Optional[float] = None
    retention_percentage: Optional[float] = Field(None, ge=0)
    config: Optional[PricingOverrides] = None

    def to_quote_request(self):
        """QuoteRequest for the engine; worker records are loaded by the service."""
        from app.services.labor_engine import LaborLine
        from app.services.quote_engine import QuoteRequest, build_line

        return QuoteRequest(
            event=self.event.to_window(),
            client_type=self.client_type,
            labor_lines=[LaborLine.from_dict(l.model_dump()) for l in self.labor],
            lines=[build_line(l.model_dump()) for l in self.lines],
            transport=[t.to_engine() for t in self.transport],
            margin_percentage=self.margin_percentage,
            retention_percentage=self.retention_percentage,
        )
