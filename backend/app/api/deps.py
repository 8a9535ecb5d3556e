"""FastAPI dependency injection — pricing config, stores and error mapping."""
from functools import lru_cache
from typing import NoReturn
from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from app.config import PricingConfig
from app.db import get_db
from app.services.availability_engine import AvailabilityEngine
from app.services.commitment_store import SqlCommitmentStore
from app.services.errors import (
    BookingConflictError,
    PricingBlockedError,
    QuoteStateError,
    StorageError,
)


@lru_cache(maxsize=1)
def get_pricing_config() -> PricingConfig:
    """Process-wide defaults from the environment; requests may override per call."""
    return PricingConfig.from_env()


async def get_availability_engine(db: AsyncSession = Depends(get_db)) -> AvailabilityEngine:
    return AvailabilityEngine(SqlCommitmentStore(db))


def raise_http(exc: Exception) -> NoReturn:
    """Translate engine exceptions into HTTP errors."""
    if isinstance(exc, BookingConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.to_dict())
    if isinstance(exc, StorageError):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "storage_error", "reason": str(exc)},
        )
    if isinstance(exc, QuoteStateError):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND if exc.not_found else status.HTTP_409_CONFLICT,
            detail=str(exc),
        )
    if isinstance(exc, PricingBlockedError):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": "pricing_blocked", "blocking": exc.blocking},
        )
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    raise exc
