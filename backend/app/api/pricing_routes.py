"""
Pricing routes — stateless engine calls plus a non-persisting quote preview.

POST /api/v1/pricing/rate            resolve an hourly rate from tiers
POST /api/v1/pricing/validate-tiers  data-entry check for a tier list
POST /api/v1/pricing/day-span        billable hours for one day's times
POST /api/v1/pricing/event-hours     billable hours for an event window
POST /api/v1/pricing/transport       transport allocation + reconciliation
POST /api/v1/pricing/quote-total     subtotal / margin / retention / total
POST /api/v1/pricing/preview         full pricing run, nothing persisted
"""
import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_pricing_config, raise_http
from app.config import PricingConfig
from app.db import get_db
from app.models.pricing_schema import (
    EventWindowModel,
    QuoteLineModel,
    QuotePayload,
    RateTierModel,
    TransportAllocationModel,
    TransportZoneModel,
)
from app.services.day_span import compute_day_span, compute_event_hours
from app.services.quote_engine import build_line, compute_quote_total
from app.services.quote_service import QuoteService
from app.services.rate_resolver import rate_tier_label, resolve_rate_checked, validate_tiers
from app.services.transport_allocator import allocate_transport

router = APIRouter(prefix="/api/v1/pricing", tags=["Pricing Engine"])
logger = logging.getLogger("events-api.pricing")


# ── Pydantic Models ─────────────────────────────────────────────────────────

class RateRequest(BaseModel):
    tiers: List[RateTierModel]
    hours: float = Field(..., ge=0)


class TierListRequest(BaseModel):
    tiers: List[RateTierModel]


class DaySpanRequest(BaseModel):
    start_time: Optional[str] = None
    end_time: Optional[str] = None


class TransportRequest(BaseModel):
    lines: List[str] = []
    unit_count: int = Field(..., ge=0)
    mode: Literal["automatic", "manual"] = "automatic"
    manual_quantities: List[TransportAllocationModel] = []
    zone: Optional[TransportZoneModel] = None
    include_equipment: bool = False
    cost_per_transport: Optional[float] = Field(None, ge=0, description="Used when no zone is given")


class QuoteTotalRequest(BaseModel):
    lines: List[QuoteLineModel]
    margin_percentage: float = Field(..., ge=0)
    margin_mode: Literal["global", "per_line"] = "global"
    retention_percentage: Optional[float] = Field(None, ge=0)


# ── Routes ──────────────────────────────────────────────────────────────────

@router.post("/rate")
async def resolve_rate_endpoint(req: RateRequest):
    rate, result = resolve_rate_checked([t.model_dump() for t in req.tiers], req.hours)
    return {
        "hours": req.hours,
        "rate": rate,
        "rate_tier": rate_tier_label(req.hours),
        "resolved": result.is_ok,
        "outcome": result.to_dict(),
    }


@router.post("/validate-tiers")
async def validate_tiers_endpoint(req: TierListRequest):
    return validate_tiers([t.model_dump() for t in req.tiers]).to_dict()


@router.post("/day-span")
async def day_span_endpoint(req: DaySpanRequest):
    hours = compute_day_span(req.model_dump())
    return {"hours": hours, "complete": hours > 0}


@router.post("/event-hours")
async def event_hours_endpoint(req: EventWindowModel):
    return compute_event_hours(req.to_window()).to_dict()


@router.post("/transport")
async def transport_endpoint(req: TransportRequest):
    if req.zone is not None:
        cpt = req.zone.base_cost + (req.zone.additional_equipment_cost if req.include_equipment else 0.0)
    else:
        cpt = req.cost_per_transport or 0.0
    try:
        result = allocate_transport(
            lines=req.lines,
            unit_count=req.unit_count,
            mode=req.mode,
            manual_quantities=[m.model_dump() for m in req.manual_quantities],
            cost_per_transport=cpt,
        )
    except ValueError as exc:
        raise_http(exc)
    reconciliation = dict(result["reconciliation"])
    reconciliation["outcome"] = reconciliation["outcome"].to_dict()
    return {**result, "reconciliation": reconciliation}


@router.post("/quote-total")
async def quote_total_endpoint(req: QuoteTotalRequest):
    try:
        lines = [build_line(l.model_dump()) for l in req.lines]
        return compute_quote_total(lines, req.margin_percentage, req.margin_mode, req.retention_percentage)
    except ValueError as exc:
        raise_http(exc)


@router.post("/preview")
async def preview_endpoint(
    req: QuotePayload,
    base_config: PricingConfig = Depends(get_pricing_config),
    db: AsyncSession = Depends(get_db),
):
    """Run the whole engine against stored worker records without saving or booking."""
    try:
        config = req.config.apply(base_config) if req.config else base_config
        service = QuoteService(db, config)
        request = req.to_quote_request()
        request.workers = await service.load_workers(l.worker_id for l in request.labor_lines)
        return service.engine.price(request)
    except ValueError as exc:
        raise_http(exc)
