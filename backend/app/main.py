"""
Events Quote & Scheduling API v1.0
FastAPI backend with async PostgreSQL: quote pricing (labor tiers, margins,
retention, transport) and staff booking with double-booking protection.
"""
import os
import time
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.services.logging_config import setup_logging
from app.services.middleware import RequestTimingMiddleware
from app.services.perf_monitor import tracker as perf_tracker

_log_level = os.getenv("LOG_LEVEL", "INFO")
_json_logs = os.getenv("LOG_FORMAT", "json").lower() != "text"
setup_logging(level=_log_level, json_output=_json_logs)
logger = logging.getLogger("events-api")

_PROCESS_START = time.monotonic()

if not os.getenv("DATABASE_URL"):
    logger.warning("MISSING env var: DATABASE_URL — running in dev mode")


@asynccontextmanager
async def lifespan(app: FastAPI):
    from app.db import init_db
    await init_db()
    yield
    from app.db import engine
    await engine.dispose()


app = FastAPI(
    title="Events Quote & Scheduling API",
    version="1.0.0",
    description="Quote pricing and staff scheduling for events and catering",
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# CORS: restricted to allowed origins from env
# ---------------------------------------------------------------------------
_cors_default = "http://localhost:3000,http://localhost:8000"
cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", _cors_default).split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Accept", "X-Request-ID"],
)
# Request timing + X-Request-ID must be outermost so it wraps all other middleware
app.add_middleware(RequestTimingMiddleware)

# Routers
from app.api.pricing_routes import router as pricing_router
from app.api.scheduling_routes import router as scheduling_router
from app.api.worker_routes import router as worker_router
from app.api.quote_routes import router as quote_router

app.include_router(pricing_router)
app.include_router(scheduling_router)
app.include_router(worker_router)
app.include_router(quote_router)


@app.get("/health")
async def health_check():
    return {
        "status": "active",
        "version": "1.0.0",
        "db_configured": bool(os.getenv("DATABASE_URL")),
    }


@app.get("/metrics")
async def metrics():
    """
    Engine activity counters from the in-process PerformanceTracker:
    quotes priced, average pricing time, bookings made/refused, releases
    and storage errors.
    """
    return {
        "uptime_seconds": round(time.monotonic() - _PROCESS_START, 1),
        **perf_tracker.get_metrics(),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True)
