"""
Worker and worker-category records read by the pricing engine.

Rate tiers are validated here, at entry time: errors reject the record,
warnings (gaps, bounded last tier) are returned alongside the saved record.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.db import get_db
from app.models.orm_models import Worker, WorkerCategory
from app.models.pricing_schema import RateTierModel
from app.services.quote_service import worker_to_dict
from app.services.rate_resolver import validate_tiers

router = APIRouter(prefix="/api/v1/workers", tags=["Workers"])
logger = logging.getLogger("events-api.workers")


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    rate_tiers: List[RateTierModel]


class WorkerCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    worker_type: str = "operario"
    category_id: Optional[int] = None
    rate_tiers: List[RateTierModel] = []
    has_arl: bool = False
    default_extra_cost: float = Field(0.0, ge=0)
    default_extra_cost_reason: Optional[str] = None
    is_active: bool = True


def _checked_tiers(tiers: List[RateTierModel]) -> tuple:
    raw = [t.model_dump() for t in tiers]
    result = validate_tiers(raw)
    if result.is_error:
        raise HTTPException(status_code=422, detail=result.to_dict())
    return raw, result


@router.post("/categories", status_code=201)
async def create_category(req: CategoryCreate, db: AsyncSession = Depends(get_db)):
    tiers, result = _checked_tiers(req.rate_tiers)
    category = WorkerCategory(name=req.name, rate_tiers=tiers)
    db.add(category)
    await db.flush()
    logger.info(f"Worker category created: {req.name} ({len(tiers)} tiers)")
    return {"id": category.id, "name": category.name, "rate_tiers": tiers, "tier_check": result.to_dict()}


@router.get("/categories")
async def list_categories(db: AsyncSession = Depends(get_db)):
    rows = (await db.execute(select(WorkerCategory).order_by(WorkerCategory.name))).scalars().all()
    return [{"id": c.id, "name": c.name, "rate_tiers": c.rate_tiers} for c in rows]


@router.post("", status_code=201)
async def create_worker(req: WorkerCreate, db: AsyncSession = Depends(get_db)):
    category = None
    if req.category_id is not None:
        category = await db.get(WorkerCategory, req.category_id)
        if category is None:
            raise HTTPException(status_code=404, detail=f"Category {req.category_id} not found")

    # workers in a tiered category may omit their own tiers
    if req.rate_tiers or category is None or not category.rate_tiers:
        tiers, result = _checked_tiers(req.rate_tiers)
    else:
        tiers, result = [], validate_tiers(category.rate_tiers)

    worker = Worker(
        name=req.name,
        worker_type=req.worker_type,
        category_id=req.category_id,
        rate_tiers=tiers,
        has_arl=req.has_arl,
        default_extra_cost=req.default_extra_cost,
        default_extra_cost_reason=req.default_extra_cost_reason,
        is_active=req.is_active,
    )
    worker.category = category
    db.add(worker)
    await db.flush()
    logger.info(f"Worker created: {req.name}", extra={"worker_id": worker.id})
    return {**worker_to_dict(worker), "tier_check": result.to_dict()}


@router.get("")
async def list_workers(
    worker_type: Optional[str] = None,
    active_only: bool = True,
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Worker).options(selectinload(Worker.category)).order_by(Worker.name)
    if active_only:
        stmt = stmt.where(Worker.is_active.is_(True))
    if worker_type:
        stmt = stmt.where(Worker.worker_type == worker_type)
    return [worker_to_dict(w) for w in (await db.execute(stmt)).scalars().all()]
