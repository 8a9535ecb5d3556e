"""pricing_scheduling_schema

Revision ID: 001_pricing_scheduling
Revises:
Create Date: 2026-10-16

Creates tables for:
- worker_categories, workers (rate tiers, ARL surcharge flag, default extra cost)
- worker_commitments (bookings and unavailability per date/shift window)
- quotes, quote_lines, quote_daily_schedules (stored figures for replay)

The partial unique index uq_commitment_booked_window is the storage guard
against two 'booked' rows for the same worker/date/window.

All DDL is guarded by existence checks so the migration is idempotent:
safe to run even when Base.metadata.create_all() already created the tables.
"""
import logging
from alembic import op
import sqlalchemy as sa
from sqlalchemy import text
from sqlalchemy.dialects.postgresql import JSONB

revision = '001_pricing_scheduling'
down_revision = None
branch_labels = None
depends_on = None

logger = logging.getLogger("alembic.001")

JSONType = sa.JSON().with_variant(JSONB(), "postgresql")


def _table_exists(conn, table_name: str) -> bool:
    result = conn.execute(
        text(
            "SELECT EXISTS("
            "  SELECT 1 FROM information_schema.tables"
            "  WHERE table_name = :tname"
            ")"
        ),
        {"tname": table_name},
    )
    return bool(result.scalar())


def _index_exists(conn, index_name: str) -> bool:
    result = conn.execute(
        text("SELECT EXISTS(SELECT 1 FROM pg_indexes WHERE indexname = :iname)"),
        {"iname": index_name},
    )
    return bool(result.scalar())


def upgrade() -> None:
    conn = op.get_bind()

    # ── worker_categories ─────────────────────────────────────────────────────
    if not _table_exists(conn, 'worker_categories'):
        op.create_table(
            'worker_categories',
            sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
            sa.Column('name', sa.String(120), nullable=False, unique=True),
            sa.Column('rate_tiers', JSONType, nullable=False, server_default='[]'),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        logger.info("Created table: worker_categories")
    else:
        logger.info("Table worker_categories already exists — skipping create")

    # ── workers ───────────────────────────────────────────────────────────────
    if not _table_exists(conn, 'workers'):
        op.create_table(
            'workers',
            sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
            sa.Column('name', sa.String(255), nullable=False),
            sa.Column('worker_type', sa.String(50), nullable=False, server_default='operario'),
            sa.Column('category_id', sa.Integer, sa.ForeignKey('worker_categories.id'), nullable=True),
            sa.Column('rate_tiers', JSONType, nullable=False, server_default='[]'),
            sa.Column('has_arl', sa.Boolean, server_default=sa.false()),
            sa.Column('default_extra_cost', sa.Numeric(12, 2), nullable=False, server_default='0'),
            sa.Column('default_extra_cost_reason', sa.Text, nullable=True),
            sa.Column('is_active', sa.Boolean, server_default=sa.true()),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        logger.info("Created table: workers")
    else:
        logger.info("Table workers already exists — skipping create")

    # ── worker_commitments ────────────────────────────────────────────────────
    if not _table_exists(conn, 'worker_commitments'):
        op.create_table(
            'worker_commitments',
            sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
            sa.Column('worker_id', sa.Integer, sa.ForeignKey('workers.id'), nullable=False),
            sa.Column('date', sa.Date, nullable=False),
            sa.Column('shift_window', sa.String(20), nullable=False),
            sa.Column('status', sa.String(20), nullable=False, server_default='booked'),
            sa.Column('event_ref', sa.String(64), nullable=True),
            sa.Column('line_ref', sa.String(64), nullable=True),
            sa.Column('start_time', sa.String(8), nullable=True),
            sa.Column('end_time', sa.String(8), nullable=True),
            sa.Column('notes', sa.Text, nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        logger.info("Created table: worker_commitments")
    else:
        logger.info("Table worker_commitments already exists — skipping create")

    if not _index_exists(conn, 'uq_commitment_booked_window'):
        op.create_index(
            'uq_commitment_booked_window', 'worker_commitments',
            ['worker_id', 'date', 'shift_window'],
            unique=True,
            postgresql_where=text("status = 'booked'"),
        )
    if not _index_exists(conn, 'ix_commitment_worker_date'):
        op.create_index('ix_commitment_worker_date', 'worker_commitments', ['worker_id', 'date'])
    if not _index_exists(conn, 'ix_commitment_event_ref'):
        op.create_index('ix_commitment_event_ref', 'worker_commitments', ['event_ref'])

    # ── quotes ────────────────────────────────────────────────────────────────
    if not _table_exists(conn, 'quotes'):
        op.create_table(
            'quotes',
            sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
            sa.Column('quote_number', sa.String(32), nullable=False),
            sa.Column('client_name', sa.String(255), nullable=True),
            sa.Column('client_type', sa.String(50), nullable=True),
            sa.Column('event_title', sa.String(255), nullable=True),
            sa.Column('status', sa.String(20), nullable=False, server_default='draft'),
            sa.Column('event_start_date', sa.Date, nullable=False),
            sa.Column('event_end_date', sa.Date, nullable=False),
            sa.Column('event_start_time', sa.String(8), nullable=True),
            sa.Column('event_end_time', sa.String(8), nullable=True),
            sa.Column('selected_days', JSONType, nullable=False, server_default='[]'),
            sa.Column('margin_mode', sa.String(20), nullable=False, server_default='global'),
            sa.Column('margin_percentage', sa.Numeric(8, 4), nullable=False),
            sa.Column('retention_percentage', sa.Numeric(8, 4), nullable=False, server_default='0'),
            sa.Column('retention_enabled', sa.Boolean, nullable=False, server_default=sa.false()),
            sa.Column('subtotal', sa.Numeric(14, 2), nullable=False),
            sa.Column('margin_amount', sa.Numeric(14, 2), nullable=False),
            sa.Column('retention_amount', sa.Numeric(14, 2), nullable=False),
            sa.Column('total', sa.Numeric(14, 2), nullable=False),
            sa.Column('pricing_snapshot', JSONType, nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
            sa.UniqueConstraint('quote_number', name='uq_quote_number'),
        )
        logger.info("Created table: quotes")
    else:
        logger.info("Table quotes already exists — skipping create")

    # ── quote_lines ───────────────────────────────────────────────────────────
    if not _table_exists(conn, 'quote_lines'):
        op.create_table(
            'quote_lines',
            sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
            sa.Column('quote_id', sa.Integer, sa.ForeignKey('quotes.id', ondelete='CASCADE'), nullable=False),
            sa.Column('position', sa.Integer, nullable=False, server_default='0'),
            sa.Column('kind', sa.String(30), nullable=False),
            sa.Column('ref', sa.String(64), nullable=True),
            sa.Column('description', sa.Text, nullable=True),
            sa.Column('cost', sa.Numeric(16, 4), nullable=False),
            sa.Column('margin_percentage', sa.Numeric(8, 4), nullable=True),
        )
        logger.info("Created table: quote_lines")
    else:
        logger.info("Table quote_lines already exists — skipping create")

    # ── quote_daily_schedules ─────────────────────────────────────────────────
    if not _table_exists(conn, 'quote_daily_schedules'):
        op.create_table(
            'quote_daily_schedules',
            sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
            sa.Column('quote_id', sa.Integer, sa.ForeignKey('quotes.id', ondelete='CASCADE'), nullable=False),
            sa.Column('date', sa.Date, nullable=False),
            sa.Column('start_time', sa.String(8), nullable=True),
            sa.Column('end_time', sa.String(8), nullable=True),
            sa.UniqueConstraint('quote_id', 'date', name='uq_quote_schedule_day'),
        )
        logger.info("Created table: quote_daily_schedules")
    else:
        logger.info("Table quote_daily_schedules already exists — skipping create")


def downgrade() -> None:
    conn = op.get_bind()

    for table in ['quote_daily_schedules', 'quote_lines', 'quotes', 'worker_commitments', 'workers', 'worker_categories']:
        if _table_exists(conn, table):
            op.drop_table(table)
