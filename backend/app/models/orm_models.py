"""ORM Models for the quote pricing & scheduling service — SQLAlchemy 2.0"""
from datetime import datetime, date
from decimal import Decimal
from typing import Optional
from sqlalchemy import (
    JSON, String, Text, Boolean, Integer, Numeric, DateTime, Date,
    ForeignKey, UniqueConstraint, Index, text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func
from app.db import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

_BOOKED_ONLY = text("status = 'booked'")


# ── WORKERS ───────────────────────────────────────────────────────────────────
class WorkerCategory(Base):
    __tablename__ = "worker_categories"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    # Ordered list of {min_hours, max_hours|null, rate, description}
    rate_tiers: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    workers: Mapped[list["Worker"]] = relationship("Worker", back_populates="category")


class Worker(Base):
    __tablename__ = "workers"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    worker_type: Mapped[str] = mapped_column(String(50), nullable=False, default="operario")
    category_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("worker_categories.id"))
    rate_tiers: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    has_arl: Mapped[bool] = mapped_column(Boolean, default=False)
    default_extra_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    default_extra_cost_reason: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    category: Mapped[Optional["WorkerCategory"]] = relationship("WorkerCategory", back_populates="workers")


# ── COMMITMENTS ───────────────────────────────────────────────────────────────
class WorkerCommitment(Base):
    """
    One worker state on one date/shift window. Written only through the
    availability engine. The partial unique index is the storage-level
    guard against two concurrent bookings of the same worker/date/window.
    """
    __tablename__ = "worker_commitments"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    worker_id: Mapped[int] = mapped_column(Integer, ForeignKey("workers.id"), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    shift_window: Mapped[str] = mapped_column(String(20), nullable=False)   # morning | afternoon | full_day
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="booked")
    event_ref: Mapped[Optional[str]] = mapped_column(String(64))             # quote number
    line_ref: Mapped[Optional[str]] = mapped_column(String(64))
    start_time: Mapped[Optional[str]] = mapped_column(String(8))
    end_time: Mapped[Optional[str]] = mapped_column(String(8))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index(
            "uq_commitment_booked_window",
            "worker_id", "date", "shift_window",
            unique=True,
            postgresql_where=_BOOKED_ONLY,
            sqlite_where=_BOOKED_ONLY,
        ),
        Index("ix_commitment_worker_date", "worker_id", "date"),
        Index("ix_commitment_event_ref", "event_ref"),
    )


# ── QUOTES ────────────────────────────────────────────────────────────────────
class Quote(Base):
    __tablename__ = "quotes"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    quote_number: Mapped[str] = mapped_column(String(32), nullable=False)
    client_name: Mapped[Optional[str]] = mapped_column(String(255))
    client_type: Mapped[Optional[str]] = mapped_column(String(50))
    event_title: Mapped[Optional[str]] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    event_start_date: Mapped[date] = mapped_column(Date, nullable=False)
    event_end_date: Mapped[date] = mapped_column(Date, nullable=False)
    event_start_time: Mapped[Optional[str]] = mapped_column(String(8))
    event_end_time: Mapped[Optional[str]] = mapped_column(String(8))
    selected_days: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    margin_mode: Mapped[str] = mapped_column(String(20), nullable=False, default="global")
    margin_percentage: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False)
    retention_percentage: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False, default=Decimal("0"))
    retention_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Computed figures stored for audit replay
    subtotal: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    margin_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    retention_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    pricing_snapshot: Mapped[Optional[dict]] = mapped_column(JSONType)    # labor/transport breakdown, warnings
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())
    lines: Mapped[list["QuoteLineRecord"]] = relationship(
        "QuoteLineRecord", back_populates="quote",
        cascade="all, delete-orphan", order_by="QuoteLineRecord.position",
    )
    daily_schedules: Mapped[list["QuoteDailySchedule"]] = relationship(
        "QuoteDailySchedule", back_populates="quote",
        cascade="all, delete-orphan", order_by="QuoteDailySchedule.date",
    )

    __table_args__ = (UniqueConstraint("quote_number", name="uq_quote_number"),)


class QuoteLineRecord(Base):
    __tablename__ = "quote_lines"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    quote_id: Mapped[int] = mapped_column(Integer, ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    ref: Mapped[Optional[str]] = mapped_column(String(64))
    description: Mapped[Optional[str]] = mapped_column(Text)
    cost: Mapped[Decimal] = mapped_column(Numeric(16, 4), nullable=False)
    margin_percentage: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 4))
    quote: Mapped["Quote"] = relationship("Quote", back_populates="lines")


class QuoteDailySchedule(Base):
    __tablename__ = "quote_daily_schedules"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    quote_id: Mapped[int] = mapped_column(Integer, ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[Optional[str]] = mapped_column(String(8))
    end_time: Mapped[Optional[str]] = mapped_column(String(8))
    quote: Mapped["Quote"] = relationship("Quote", back_populates="daily_schedules")

    __table_args__ = (UniqueConstraint("quote_id", "date", name="uq_quote_schedule_day"),)
