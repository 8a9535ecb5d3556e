"""
Commitment storage backends for the availability engine.

InMemoryCommitmentStore   process-local list, used in tests and local runs
SqlCommitmentStore        worker_commitments table over an AsyncSession

Both enforce the same storage guard: at most one ``booked`` row per
(worker_id, date, shift_window). A violation surfaces as
BookingConflictError(code="storage_conflict"); any other persistence
failure surfaces as StorageError.
"""
import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import date
from typing import Iterable, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.orm_models import WorkerCommitment
from app.services.errors import STORAGE_CONFLICT, BookingConflictError, StorageError

logger = logging.getLogger("events-availability.store")


@dataclass(frozen=True)
class Commitment:
    worker_id: int
    date: date
    shift_window: str
    status: str = "booked"
    event_ref: Optional[str] = None
    line_ref: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    notes: Optional[str] = None
    id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "worker_id": self.worker_id,
            "date": self.date.isoformat(),
            "shift_window": self.shift_window,
            "status": self.status,
            "event_ref": self.event_ref,
            "line_ref": self.line_ref,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "notes": self.notes,
        }


def _duplicate_booking(c: Commitment, existing: Optional[Commitment]) -> BookingConflictError:
    return BookingConflictError(
        worker_id=c.worker_id,
        day=c.date,
        shift_window=c.shift_window,
        status="booked",
        event_ref=existing.event_ref if existing else None,
        reason=f"Worker {c.worker_id} already has a booking on {c.date} ({c.shift_window})",
        code=STORAGE_CONFLICT,
    )


class CommitmentStore(ABC):
    """Read/write contract the availability engine relies on."""

    @abstractmethod
    async def list_for_worker_date(self, worker_id: int, day: date) -> List[Commitment]:
        ...

    @abstractmethod
    async def list_between(
        self, start: date, end: date, worker_ids: Optional[Iterable[int]] = None,
    ) -> List[Commitment]:
        ...

    @abstractmethod
    async def list_for_event(self, event_ref: str) -> List[Commitment]:
        ...

    @abstractmethod
    async def insert(self, commitment: Commitment) -> Commitment:
        ...

    @abstractmethod
    async def delete_booked(self, worker_id: int, day: date, shift_window: str, event_ref: str) -> int:
        ...

    @abstractmethod
    async def delete_event_bookings(self, event_ref: str) -> int:
        ...

    @abstractmethod
    async def delete(self, commitment_id: int) -> int:
        ...


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

class InMemoryCommitmentStore(CommitmentStore):

    def __init__(self, commitments: Iterable[Commitment] = ()):
        self._ids = itertools.count(1)
        self._rows: List[Commitment] = []
        for c in commitments:
            self._rows.append(replace(c, id=c.id or next(self._ids)))

    async def list_for_worker_date(self, worker_id, day):
        return [c for c in self._rows if c.worker_id == worker_id and c.date == day]

    async def list_between(self, start, end, worker_ids=None):
        wanted = None if worker_ids is None else set(worker_ids)
        return sorted(
            (c for c in self._rows
             if start <= c.date <= end and (wanted is None or c.worker_id in wanted)),
            key=lambda c: (c.date, c.worker_id, c.id),
        )

    async def list_for_event(self, event_ref):
        return [c for c in self._rows if c.event_ref == event_ref]

    async def insert(self, commitment):
        if commitment.status == "booked":
            for c in self._rows:
                if (c.status == "booked" and c.worker_id == commitment.worker_id
                        and c.date == commitment.date and c.shift_window == commitment.shift_window):
                    raise _duplicate_booking(commitment, c)
        stored = replace(commitment, id=next(self._ids))
        self._rows.append(stored)
        return stored

    def _remove(self, predicate) -> int:
        before = len(self._rows)
        self._rows = [c for c in self._rows if not predicate(c)]
        return before - len(self._rows)

    async def delete_booked(self, worker_id, day, shift_window, event_ref):
        return self._remove(
            lambda c: c.status == "booked" and c.worker_id == worker_id and c.date == day
            and c.shift_window == shift_window and c.event_ref == event_ref
        )

    async def delete_event_bookings(self, event_ref):
        return self._remove(lambda c: c.status == "booked" and c.event_ref == event_ref)

    async def delete(self, commitment_id):
        return self._remove(lambda c: c.id == commitment_id)


# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------

def _from_row(row: WorkerCommitment) -> Commitment:
    return Commitment(
        id=row.id,
        worker_id=row.worker_id,
        date=row.date,
        shift_window=row.shift_window,
        status=row.status,
        event_ref=row.event_ref,
        line_ref=row.line_ref,
        start_time=row.start_time,
        end_time=row.end_time,
        notes=row.notes,
    )


class SqlCommitmentStore(CommitmentStore):
    """
    Commitment store over the caller's AsyncSession. Writes are flushed,
    not committed; the session owner (request dependency or service)
    decides when the unit of work commits.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _select(self, stmt) -> List[Commitment]:
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.error("Commitment query failed", exc_info=True)
            raise StorageError(f"Commitment store read failed: {exc}") from exc
        return [_from_row(r) for r in result.scalars().all()]

    async def list_for_worker_date(self, worker_id, day):
        return await self._select(
            select(WorkerCommitment)
            .where(WorkerCommitment.worker_id == worker_id, WorkerCommitment.date == day)
            .order_by(WorkerCommitment.id)
        )

    async def list_between(self, start, end, worker_ids=None):
        stmt = select(WorkerCommitment).where(
            WorkerCommitment.date >= start, WorkerCommitment.date <= end,
        )
        if worker_ids is not None:
            stmt = stmt.where(WorkerCommitment.worker_id.in_(list(worker_ids)))
        return await self._select(
            stmt.order_by(WorkerCommitment.date, WorkerCommitment.worker_id, WorkerCommitment.id)
        )

    async def list_for_event(self, event_ref):
        return await self._select(
            select(WorkerCommitment).where(WorkerCommitment.event_ref == event_ref)
        )

    async def insert(self, commitment):
        row = WorkerCommitment(
            worker_id=commitment.worker_id,
            date=commitment.date,
            shift_window=commitment.shift_window,
            status=commitment.status,
            event_ref=commitment.event_ref,
            line_ref=commitment.line_ref,
            start_time=commitment.start_time,
            end_time=commitment.end_time,
            notes=commitment.notes,
        )
        self.session.add(row)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            # the failed flush poisons the transaction; the whole unit of work is abandoned
            await self.session.rollback()
            if commitment.status != "booked":
                raise StorageError(f"Commitment write rejected: {exc.orig}") from exc
            existing = [
                c for c in await self.list_for_worker_date(commitment.worker_id, commitment.date)
                if c.status == "booked" and c.shift_window == commitment.shift_window
            ]
            raise _duplicate_booking(commitment, existing[0] if existing else None) from exc
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("Commitment write failed", exc_info=True)
            raise StorageError(f"Commitment store write failed: {exc}") from exc
        return _from_row(row)

    async def _delete(self, stmt) -> int:
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.error("Commitment delete failed", exc_info=True)
            raise StorageError(f"Commitment store delete failed: {exc}") from exc
        return result.rowcount or 0

    async def delete_booked(self, worker_id, day, shift_window, event_ref):
        return await self._delete(
            delete(WorkerCommitment).where(
                WorkerCommitment.worker_id == worker_id,
                WorkerCommitment.date == day,
                WorkerCommitment.shift_window == shift_window,
                WorkerCommitment.event_ref == event_ref,
                WorkerCommitment.status == "booked",
            )
        )

    async def delete_event_bookings(self, event_ref):
        return await self._delete(
            delete(WorkerCommitment).where(
                WorkerCommitment.event_ref == event_ref,
                WorkerCommitment.status == "booked",
            )
        )

    async def delete(self, commitment_id):
        return await self._delete(
            delete(WorkerCommitment).where(WorkerCommitment.id == commitment_id)
        )
