"""
Quote lifecycle — pricing, persistence and staff booking in one unit of work.

Creating a quote is the point at which worker commitments become booked:
every worker on the quote is booked for every configured event day, using
the shift window derived from that day's clock times. Any booking conflict
rolls the whole operation back (quote row included).
"""
import logging
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import QUOTE_NUMBER_PREFIX, QUOTE_TRANSITIONS, RELEASING_STATUSES, PricingConfig
from app.models.orm_models import Quote, QuoteDailySchedule, QuoteLineRecord, Worker
from app.services.availability_engine import AvailabilityEngine, BookingRequest
from app.services.commitment_store import CommitmentStore, SqlCommitmentStore
from app.services.day_span import DaySchedule, EventWindow, compute_event_hours, derive_shift_window
from app.services.errors import BookingConflictError, PricingBlockedError, QuoteStateError, StorageError
from app.services.labor_engine import LaborLine
from app.services.quote_engine import QuoteEngine, QuoteRequest, replay

logger = logging.getLogger("events-api.quotes")


def worker_to_dict(worker: Worker) -> Dict[str, Any]:
    return {
        "id": worker.id,
        "name": worker.name,
        "worker_type": worker.worker_type,
        "category_id": worker.category_id,
        "rate_tiers": list(worker.rate_tiers or []),
        "has_arl": bool(worker.has_arl),
        "default_extra_cost": float(worker.default_extra_cost or 0),
        "default_extra_cost_reason": worker.default_extra_cost_reason,
        "is_active": bool(worker.is_active),
        "category": (
            {"id": worker.category.id, "name": worker.category.name, "rate_tiers": list(worker.category.rate_tiers or [])}
            if worker.category is not None else None
        ),
    }


def quote_to_dict(quote: Quote) -> Dict[str, Any]:
    return {
        "id": quote.id,
        "quote_number": quote.quote_number,
        "client_name": quote.client_name,
        "client_type": quote.client_type,
        "event_title": quote.event_title,
        "status": quote.status,
        "event": event_from_quote(quote).to_dict(),
        "margin_mode": quote.margin_mode,
        "margin_percentage": float(quote.margin_percentage),
        "retention_percentage": float(quote.retention_percentage or 0),
        "retention_enabled": bool(quote.retention_enabled),
        "subtotal": float(quote.subtotal),
        "margin_amount": float(quote.margin_amount),
        "retention_amount": float(quote.retention_amount),
        "total": float(quote.total),
        "lines": [
            {
                "kind": l.kind,
                "ref": l.ref,
                "description": l.description or "",
                "cost": float(l.cost),
                "margin_percentage": None if l.margin_percentage is None else float(l.margin_percentage),
            }
            for l in quote.lines
        ],
        "pricing_snapshot": quote.pricing_snapshot,
    }


def event_from_quote(quote: Quote) -> EventWindow:
    return EventWindow(
        start_date=quote.event_start_date,
        end_date=quote.event_end_date,
        start_time=quote.event_start_time,
        end_time=quote.event_end_time,
        selected_days=[date.fromisoformat(d) for d in quote.selected_days or []],
        daily_schedules=[
            DaySchedule(date=s.date, start_time=s.start_time, end_time=s.end_time)
            for s in quote.daily_schedules
        ],
    )


def booking_requests(event: EventWindow, labor_lines: Iterable[LaborLine]) -> List[BookingRequest]:
    """One booking per worker per configured event day."""
    hours = compute_event_hours(event)
    days: List[tuple] = []
    if hours.is_multi_day:
        for day in sorted(hours.per_day):
            schedule = event.schedule_for(day)
            days.append((day, schedule.start_time, schedule.end_time))
    elif event.start_date is not None:
        days.append((event.start_date, event.start_time, event.end_time))

    requests = []
    for line in labor_lines:
        for day, start, end in days:
            requests.append(BookingRequest(
                worker_id=line.worker_id,
                date=day,
                shift_window=derive_shift_window(start, end),
                line_ref=",".join(line.line_ids) or None,
                start_time=start,
                end_time=end,
            ))
    return requests


class QuoteService:

    def __init__(
        self,
        session: AsyncSession,
        config: Optional[PricingConfig] = None,
        store: Optional[CommitmentStore] = None,
    ):
        self.session = session
        self.config = config or PricingConfig()
        self.engine = QuoteEngine(self.config)
        self.availability = AvailabilityEngine(store or SqlCommitmentStore(session))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def load_workers(self, worker_ids: Iterable[int]) -> Dict[int, Dict[str, Any]]:
        ids = sorted(set(worker_ids))
        if not ids:
            return {}
        result = await self.session.execute(
            select(Worker).options(selectinload(Worker.category)).where(Worker.id.in_(ids))
        )
        return {w.id: worker_to_dict(w) for w in result.scalars().all()}

    async def _get(self, quote_id: int) -> Quote:
        result = await self.session.execute(
            select(Quote)
            .options(selectinload(Quote.lines), selectinload(Quote.daily_schedules))
            .where(Quote.id == quote_id)
        )
        quote = result.scalar_one_or_none()
        if quote is None:
            raise QuoteStateError(f"Quote {quote_id} not found", not_found=True)
        return quote

    async def get_quote(self, quote_id: int) -> Dict[str, Any]:
        return quote_to_dict(await self._get(quote_id))

    async def replay_quote(self, quote_id: int) -> Dict[str, Any]:
        return replay(quote_to_dict(await self._get(quote_id)))

    async def next_quote_number(self, year: Optional[int] = None) -> str:
        """<PREFIX>-<YYYY>-<NNN>, sequential within the year."""
        year = year or date.today().year
        stem = f"{QUOTE_NUMBER_PREFIX}-{year}-"
        result = await self.session.execute(
            select(Quote.quote_number).where(Quote.quote_number.like(f"{stem}%"))
        )
        highest = 0
        for number in result.scalars().all():
            try:
                highest = max(highest, int(number[len(stem):]))
            except ValueError:
                continue
        return f"{stem}{highest + 1:03d}"

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _price(self, request: QuoteRequest, engine: Optional[QuoteEngine] = None) -> Dict[str, Any]:
        engine = engine or self.engine
        if not request.workers:
            request.workers = await self.load_workers(l.worker_id for l in request.labor_lines)
        priced = engine.price(request)
        if not priced["finalizable"]:
            raise PricingBlockedError(priced["blocking"])
        return priced

    def _apply(self, quote: Quote, request: QuoteRequest, priced: Dict[str, Any], retention_enabled: bool) -> None:
        event = request.event
        quote.retention_enabled = retention_enabled
        quote.event_start_date = event.start_date
        quote.event_end_date = event.end_date
        quote.event_start_time = event.start_time
        quote.event_end_time = event.end_time
        quote.selected_days = [d.isoformat() for d in event.selected_days]
        quote.margin_mode = priced["margin_mode"]
        quote.margin_percentage = priced["margin_percentage"]
        quote.retention_percentage = priced["retention_percentage"]
        quote.subtotal = priced["subtotal"]
        quote.margin_amount = priced["margin_amount"]
        quote.retention_amount = priced["retention_amount"]
        quote.total = priced["total"]
        quote.pricing_snapshot = {
            "event_hours": priced["event_hours"],
            "labor": priced["labor"],
            "transport": priced["transport"],
            "payment_terms": priced["payment_terms"],
            "warnings": priced["warnings"],
        }
        quote.lines = [
            QuoteLineRecord(
                position=i,
                kind=l["kind"],
                ref=l["ref"],
                description=l["description"],
                cost=l["cost"],
                margin_percentage=l["margin_percentage"],
            )
            for i, l in enumerate(priced["lines"])
        ]
        quote.daily_schedules = [
            QuoteDailySchedule(date=s.date, start_time=s.start_time, end_time=s.end_time)
            for s in event.daily_schedules
            if s.date is not None
        ]

    async def _book(self, quote: Quote, request: QuoteRequest) -> List[Dict[str, Any]]:
        try:
            booked = await self.availability.book_team(
                booking_requests(request.event, request.labor_lines), quote.quote_number,
            )
        except (BookingConflictError, StorageError):
            await self.session.rollback()
            raise
        return [c.to_dict() for c in booked]

    async def create_quote(
        self,
        request: QuoteRequest,
        client_name: Optional[str] = None,
        event_title: Optional[str] = None,
    ) -> Dict[str, Any]:
        priced = await self._price(request)
        quote = Quote(
            quote_number=await self.next_quote_number(),
            client_name=client_name,
            client_type=request.client_type,
            event_title=event_title,
            status="draft",
        )
        self._apply(quote, request, priced, self.config.retention_enabled)
        self.session.add(quote)
        await self.session.flush()

        bookings = await self._book(quote, request)
        logger.info(
            "Quote %s created: total=%.2f, %d booking(s)", quote.quote_number, priced["total"], len(bookings),
            extra={"quote_id": quote.id, "event_ref": quote.quote_number},
        )
        return {**quote_to_dict(quote), "bookings": bookings, "warnings": priced["warnings"]}

    async def update_quote(
        self,
        quote_id: int,
        request: QuoteRequest,
        retention_enabled: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """
        Re-price a draft quote: its bookings are released and made again.

        ``retention_enabled=None`` keeps the quote's stored retention setting
        (and its percentage, unless the request gives one).
        """
        quote = await self._get(quote_id)
        if quote.status != "draft":
            raise QuoteStateError(f"Only draft quotes can be edited (quote is {quote.status})")
        request.client_type = request.client_type or quote.client_type
        if retention_enabled is None:
            retention_enabled = bool(quote.retention_enabled)
            if retention_enabled and request.retention_percentage is None:
                request.retention_percentage = float(quote.retention_percentage)
        engine = QuoteEngine(self.config.with_overrides(retention_enabled=retention_enabled))
        priced = await self._price(request, engine)

        await self.availability.release_event_bookings(quote.quote_number)
        # old child rows must be gone before rows for the same days are inserted
        quote.lines.clear()
        quote.daily_schedules.clear()
        await self.session.flush()
        self._apply(quote, request, priced, retention_enabled)
        await self.session.flush()

        bookings = await self._book(quote, request)
        logger.info(
            "Quote %s updated: total=%.2f", quote.quote_number, priced["total"],
            extra={"quote_id": quote.id, "event_ref": quote.quote_number},
        )
        return {**quote_to_dict(quote), "bookings": bookings, "warnings": priced["warnings"]}

    async def set_status(self, quote_id: int, status: str) -> Dict[str, Any]:
        quote = await self._get(quote_id)
        allowed = QUOTE_TRANSITIONS.get(quote.status, ())
        if status not in allowed:
            raise QuoteStateError(f"Cannot move quote from {quote.status} to {status}")
        released = 0
        if status in RELEASING_STATUSES:
            released = await self.availability.release_event_bookings(quote.quote_number)
        quote.status = status
        await self.session.flush()
        logger.info(
            "Quote %s → %s (released %d booking(s))", quote.quote_number, status, released,
            extra={"quote_id": quote.id, "event_ref": quote.quote_number},
        )
        return {**quote_to_dict(quote), "released_bookings": released}
