"""
Scheduling routes — availability checks and the booking / release path.

Every write goes through AvailabilityEngine; these handlers only translate
payloads and map engine errors onto HTTP status codes (409 conflict,
503 storage failure, 422 invalid input).
"""
import logging
from datetime import date
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_availability_engine, raise_http
from app.db import get_db
from app.models.orm_models import Worker
from app.services.availability_engine import AvailabilityEngine, validate_shift_request
from app.services.errors import BookingConflictError, StorageError

router = APIRouter(prefix="/api/v1/scheduling", tags=["Staff Scheduling"])
logger = logging.getLogger("events-api.scheduling")

ShiftWindow = Literal["morning", "afternoon", "full_day"]


# ── Pydantic Models ─────────────────────────────────────────────────────────

class AvailabilityRequest(BaseModel):
    worker_id: int
    date: date
    shift_window: ShiftWindow


class BatchAvailabilityRequest(BaseModel):
    worker_ids: List[int] = Field(..., min_length=1)
    date: date
    shift_window: ShiftWindow


class BookingCreate(BaseModel):
    worker_id: int
    date: date
    shift_window: ShiftWindow
    event_ref: str = Field(..., min_length=1)
    line_ref: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    notes: Optional[str] = None


class BookingRelease(BaseModel):
    worker_id: int
    date: date
    shift_window: ShiftWindow
    event_ref: str = Field(..., min_length=1)


class UnavailabilityCreate(BaseModel):
    worker_id: int
    date: date
    shift_window: ShiftWindow = "full_day"
    status: Literal["vacation", "sick", "maintenance"]
    notes: Optional[str] = None


class RecommendationRequest(BaseModel):
    date: date
    shift_window: ShiftWindow
    required_types: List[str] = []
    worker_ids: Optional[List[int]] = None     # default: every active worker


def _require_valid(worker_id, day, shift_window, status="booked"):
    result = validate_shift_request(worker_id, day, shift_window, status)
    if result.is_error:
        raise_http(ValueError(result.message))


# ── Routes ──────────────────────────────────────────────────────────────────

@router.post("/availability")
async def check_availability(
    req: AvailabilityRequest,
    engine: AvailabilityEngine = Depends(get_availability_engine),
):
    try:
        result = await engine.check_availability(req.worker_id, req.date, req.shift_window)
    except StorageError as exc:
        raise_http(exc)
    return result.to_dict()


@router.post("/availability/batch")
async def check_availability_batch(
    req: BatchAvailabilityRequest,
    engine: AvailabilityEngine = Depends(get_availability_engine),
):
    try:
        results = await engine.check_many(req.worker_ids, req.date, req.shift_window)
    except StorageError as exc:
        raise_http(exc)
    return {
        "results": [r.to_dict() for r in results],
        "available_count": sum(1 for r in results if r.available),
    }


@router.post("/bookings", status_code=201)
async def book_worker(
    req: BookingCreate,
    engine: AvailabilityEngine = Depends(get_availability_engine),
):
    _require_valid(req.worker_id, req.date, req.shift_window)
    try:
        commitment = await engine.book_worker(
            req.worker_id, req.date, req.shift_window, req.event_ref,
            line_ref=req.line_ref, start_time=req.start_time, end_time=req.end_time, notes=req.notes,
        )
    except (BookingConflictError, StorageError, ValueError) as exc:
        raise_http(exc)
    return commitment.to_dict()


@router.delete("/bookings")
async def release_worker(
    req: BookingRelease,
    engine: AvailabilityEngine = Depends(get_availability_engine),
):
    try:
        released = await engine.release_worker(req.worker_id, req.date, req.shift_window, req.event_ref)
    except (StorageError, ValueError) as exc:
        raise_http(exc)
    return {"released": released}


@router.post("/unavailability", status_code=201)
async def record_unavailability(
    req: UnavailabilityCreate,
    engine: AvailabilityEngine = Depends(get_availability_engine),
):
    _require_valid(req.worker_id, req.date, req.shift_window, req.status)
    try:
        commitment = await engine.record_unavailability(
            req.worker_id, req.date, req.shift_window, req.status, notes=req.notes,
        )
    except (BookingConflictError, StorageError, ValueError) as exc:
        raise_http(exc)
    return commitment.to_dict()


@router.delete("/commitments/{commitment_id}")
async def remove_commitment(
    commitment_id: int,
    engine: AvailabilityEngine = Depends(get_availability_engine),
):
    try:
        removed = await engine.remove_commitment(commitment_id)
    except StorageError as exc:
        raise_http(exc)
    return {"removed": removed}


@router.get("/conflicts")
async def schedule_conflicts(
    start: date = Query(...),
    end: date = Query(...),
    engine: AvailabilityEngine = Depends(get_availability_engine),
):
    if end < start:
        raise_http(ValueError("end must not be before start"))
    try:
        return {"conflicts": await engine.find_schedule_conflicts(start, end)}
    except StorageError as exc:
        raise_http(exc)


@router.post("/recommendations")
async def recommend_workers(
    req: RecommendationRequest,
    engine: AvailabilityEngine = Depends(get_availability_engine),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Worker).where(Worker.is_active.is_(True))
    if req.worker_ids:
        stmt = stmt.where(Worker.id.in_(req.worker_ids))
    workers = (await db.execute(stmt.order_by(Worker.id))).scalars().all()
    candidates = [{"id": w.id, "name": w.name, "worker_type": w.worker_type} for w in workers]
    try:
        ranked = await engine.recommend_workers(candidates, req.date, req.shift_window, req.required_types)
    except StorageError as exc:
        raise_http(exc)
    return {"recommendations": ranked}
