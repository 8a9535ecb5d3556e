"""
Quote routes — create (prices and books staff), read, update, status, replay.

POST /api/v1/quotes                 price, persist, book every worker
GET  /api/v1/quotes/{id}            stored quote with its lines
PUT  /api/v1/quotes/{id}            re-price a draft, re-book its staff
POST /api/v1/quotes/{id}/status     approve / reject / complete / cancel
GET  /api/v1/quotes/{id}/replay     recompute stored totals for audit
"""
import logging
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_pricing_config, raise_http
from app.config import PricingConfig
from app.db import get_db
from app.models.pricing_schema import QuotePayload
from app.services.errors import (
    BookingConflictError,
    PricingBlockedError,
    QuoteStateError,
    StorageError,
)
from app.services.quote_service import QuoteService

router = APIRouter(prefix="/api/v1/quotes", tags=["Quotes"])
logger = logging.getLogger("events-api.quotes")

_ENGINE_ERRORS = (BookingConflictError, StorageError, QuoteStateError, PricingBlockedError, ValueError)


class StatusUpdate(BaseModel):
    status: Literal["approved", "rejected", "completed", "cancelled"]


def _service(req_config, base_config: PricingConfig, db: AsyncSession) -> QuoteService:
    config = req_config.apply(base_config) if req_config else base_config
    return QuoteService(db, config)


@router.post("", status_code=201)
async def create_quote(
    req: QuotePayload,
    base_config: PricingConfig = Depends(get_pricing_config),
    db: AsyncSession = Depends(get_db),
):
    try:
        service = _service(req.config, base_config, db)
        return await service.create_quote(
            req.to_quote_request(), client_name=req.client_name, event_title=req.event_title,
        )
    except _ENGINE_ERRORS as exc:
        raise_http(exc)


@router.get("/{quote_id}")
async def get_quote(quote_id: int, db: AsyncSession = Depends(get_db)):
    try:
        return await QuoteService(db).get_quote(quote_id)
    except QuoteStateError as exc:
        raise_http(exc)


@router.put("/{quote_id}")
async def update_quote(
    quote_id: int,
    req: QuotePayload,
    base_config: PricingConfig = Depends(get_pricing_config),
    db: AsyncSession = Depends(get_db),
):
    try:
        service = _service(req.config, base_config, db)
        retention_enabled = req.config.retention_enabled if req.config else None
        return await service.update_quote(quote_id, req.to_quote_request(), retention_enabled=retention_enabled)
    except _ENGINE_ERRORS as exc:
        raise_http(exc)


@router.post("/{quote_id}/status")
async def set_quote_status(quote_id: int, req: StatusUpdate, db: AsyncSession = Depends(get_db)):
    try:
        return await QuoteService(db).set_status(quote_id, req.status)
    except _ENGINE_ERRORS as exc:
        raise_http(exc)


@router.get("/{quote_id}/replay")
async def replay_quote(quote_id: int, db: AsyncSession = Depends(get_db)):
    try:
        return await QuoteService(db).replay_quote(quote_id)
    except QuoteStateError as exc:
        raise_http(exc)
