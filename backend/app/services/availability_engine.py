"""
availability_engine.py — Worker availability, booking and release

The availability engine is the only writer of worker commitments.

Conflict rule for two commitments of the same worker on the same date:
    either one is full_day            → conflict
    both share the same shift window  → conflict
    morning vs afternoon              → no conflict

Booking re-checks availability immediately before writing and refuses on
conflict; the store's uniqueness guard catches what the pre-check cannot
(a concurrent session booking in between). Releasing only ever deletes
``booked`` rows of the given event and is idempotent.
"""
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

from app.config import (
    COMMITMENT_STATUSES,
    RECOMMEND_AVAILABLE_SCORE,
    RECOMMEND_LIMIT,
    RECOMMEND_TYPE_MATCH_SCORE,
    RECOMMEND_WORKLOAD_CEILING,
    RECOMMEND_WORKLOAD_DAYS,
    SHIFT_WINDOWS,
)
from app.services import outcome as oc
from app.services.commitment_store import Commitment, CommitmentStore
from app.services.errors import BookingConflictError, StorageError
from app.services.outcome import Outcome
from app.services.perf_monitor import tracker

logger = logging.getLogger("events-availability")

UNAVAILABLE_STATUSES = ("vacation", "sick", "maintenance")

_STATUS_REASONS = {
    "booked":      "already booked",
    "vacation":    "on vacation",
    "sick":        "on sick leave",
    "maintenance": "unavailable (maintenance)",
}


def shifts_conflict(a: str, b: str) -> bool:
    return a == "full_day" or b == "full_day" or a == b


def _check_window(shift_window: str) -> None:
    if shift_window not in SHIFT_WINDOWS:
        raise ValueError(f"shift_window must be one of {SHIFT_WINDOWS}, got {shift_window!r}")


@dataclass
class AvailabilityResult:
    worker_id: int
    date: date
    shift_window: str
    available: bool
    current_status: str
    conflict: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "date": self.date.isoformat(),
            "shift_window": self.shift_window,
            "available": self.available,
            "current_status": self.current_status,
            "conflict": self.conflict,
        }


@dataclass
class BookingRequest:
    worker_id: int
    date: date
    shift_window: str
    line_ref: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    notes: Optional[str] = None


class AvailabilityEngine:
    """Availability checks and the single booking/release path over a CommitmentStore."""

    def __init__(self, store: CommitmentStore):
        self.store = store

    # -----------------------------------------------------------------------
    # 1. Single worker
    # -----------------------------------------------------------------------

    async def check_availability(self, worker_id: int, day: date, shift_window: str) -> AvailabilityResult:
        """Report the first commitment conflicting with the requested window, if any."""
        _check_window(shift_window)
        for c in await self.store.list_for_worker_date(worker_id, day):
            if c.status == "available" or not shifts_conflict(c.shift_window, shift_window):
                continue
            reason = f"Worker is {_STATUS_REASONS.get(c.status, c.status)} ({c.shift_window})"
            if c.event_ref:
                reason += f" for {c.event_ref}"
            return AvailabilityResult(
                worker_id=worker_id,
                date=day,
                shift_window=shift_window,
                available=False,
                current_status=c.status,
                conflict={
                    "commitment_id": c.id,
                    "status": c.status,
                    "shift_window": c.shift_window,
                    "event_ref": c.event_ref,
                    "reason": reason,
                },
            )
        return AvailabilityResult(worker_id, day, shift_window, True, "available")

    async def book_worker(
        self,
        worker_id: int,
        day: date,
        shift_window: str,
        event_ref: str,
        line_ref: Optional[str] = None,
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Commitment:
        """
        Create a ``booked`` commitment linked to ``event_ref``.

        Raises BookingConflictError (availability_conflict) when the pre-check
        finds a conflict, (storage_conflict) when the store's uniqueness guard
        rejects the write, StorageError on any other persistence failure.
        """
        if not event_ref:
            raise ValueError("event_ref is required to book a worker")
        check = await self.check_availability(worker_id, day, shift_window)
        if not check.available:
            tracker.record_booking_refused()
            logger.warning(
                "Booking refused: %s", check.conflict["reason"],
                extra={"worker_id": worker_id, "event_ref": event_ref},
            )
            raise BookingConflictError(
                worker_id=worker_id,
                day=day,
                shift_window=shift_window,
                status=check.conflict["status"],
                event_ref=check.conflict["event_ref"],
                reason=check.conflict["reason"],
            )

        try:
            created = await self.store.insert(Commitment(
                worker_id=worker_id,
                date=day,
                shift_window=shift_window,
                status="booked",
                event_ref=event_ref,
                line_ref=line_ref,
                start_time=start_time,
                end_time=end_time,
                notes=notes,
            ))
        except BookingConflictError as exc:
            tracker.record_booking_refused()
            logger.warning(
                "Booking rejected by storage guard: %s", exc.reason,
                extra={"worker_id": worker_id, "event_ref": event_ref},
            )
            raise
        except StorageError:
            tracker.record_storage_error()
            raise

        tracker.record_booking()
        logger.info(
            "Worker booked on %s (%s)", day.isoformat(), shift_window,
            extra={"worker_id": worker_id, "event_ref": event_ref},
        )
        return created

    async def release_worker(self, worker_id: int, day: date, shift_window: str, event_ref: str) -> int:
        """Delete the matching booked commitment(s) of ``event_ref``; 0 rows is not an error."""
        _check_window(shift_window)
        try:
            count = await self.store.delete_booked(worker_id, day, shift_window, event_ref)
        except StorageError:
            tracker.record_storage_error()
            raise
        tracker.record_release(count)
        logger.info(
            "Released %d booking(s) on %s (%s)", count, day.isoformat(), shift_window,
            extra={"worker_id": worker_id, "event_ref": event_ref},
        )
        return count

    async def release_event_bookings(self, event_ref: str) -> int:
        """Release every booked commitment of one event (quote cancel / reject / update)."""
        try:
            count = await self.store.delete_event_bookings(event_ref)
        except StorageError:
            tracker.record_storage_error()
            raise
        tracker.record_release(count)
        logger.info("Released %d booking(s) for event", count, extra={"event_ref": event_ref})
        return count

    async def record_unavailability(
        self,
        worker_id: int,
        day: date,
        shift_window: str,
        status: str,
        notes: Optional[str] = None,
    ) -> Commitment:
        """Administrative vacation / sick / maintenance entry, same conflict rule as booking."""
        if status not in UNAVAILABLE_STATUSES:
            raise ValueError(f"status must be one of {UNAVAILABLE_STATUSES}, got {status!r}")
        check = await self.check_availability(worker_id, day, shift_window)
        if not check.available:
            raise BookingConflictError(
                worker_id=worker_id,
                day=day,
                shift_window=shift_window,
                status=check.conflict["status"],
                event_ref=check.conflict["event_ref"],
                reason=check.conflict["reason"],
            )
        created = await self.store.insert(Commitment(
            worker_id=worker_id, date=day, shift_window=shift_window, status=status, notes=notes,
        ))
        logger.info("Recorded %s on %s", status, day.isoformat(), extra={"worker_id": worker_id})
        return created

    async def remove_commitment(self, commitment_id: int) -> int:
        return await self.store.delete(commitment_id)

    # -----------------------------------------------------------------------
    # 2. Batches (repeated single-worker operations)
    # -----------------------------------------------------------------------

    async def check_many(self, worker_ids: Iterable[int], day: date, shift_window: str) -> List[AvailabilityResult]:
        return [await self.check_availability(w, day, shift_window) for w in worker_ids]

    async def book_team(self, requests: Iterable[BookingRequest], event_ref: str) -> List[Commitment]:
        """
        Book every request for ``event_ref``. On the first failure the
        bookings already made by this call are released and the error
        propagates, so the team is booked entirely or not at all.
        """
        booked: List[Commitment] = []
        try:
            for r in requests:
                booked.append(await self.book_worker(
                    r.worker_id, r.date, r.shift_window, event_ref,
                    line_ref=r.line_ref, start_time=r.start_time, end_time=r.end_time, notes=r.notes,
                ))
        except (BookingConflictError, StorageError):
            for c in booked:
                try:
                    await self.release_worker(c.worker_id, c.date, c.shift_window, event_ref)
                except StorageError:
                    logger.error("Could not undo booking %s", c.id, exc_info=True, extra={"event_ref": event_ref})
            raise
        return booked

    # -----------------------------------------------------------------------
    # 3. Reports
    # -----------------------------------------------------------------------

    async def find_schedule_conflicts(self, start: date, end: date) -> List[Dict[str, Any]]:
        """Worker/date groups whose stored commitments break the conflict rule."""
        groups: Dict[tuple, List[Commitment]] = {}
        for c in await self.store.list_between(start, end):
            if c.status == "available":
                continue
            groups.setdefault((c.worker_id, c.date), []).append(c)

        conflicts = []
        for (worker_id, day), items in sorted(groups.items()):
            pairs = [
                (a, b) for i, a in enumerate(items) for b in items[i + 1:]
                if shifts_conflict(a.shift_window, b.shift_window)
            ]
            if pairs:
                conflicts.append({
                    "worker_id": worker_id,
                    "date": day.isoformat(),
                    "commitments": [c.to_dict() for c in items],
                    "conflicting_pairs": [(a.id, b.id) for a, b in pairs],
                })
        return conflicts

    async def recommend_workers(
        self,
        candidates: Sequence[Dict[str, Any]],
        day: date,
        shift_window: str,
        required_types: Optional[Iterable[str]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Advisory ranking of candidate workers for a date/window.

        score = 50 if available
              + 30 if the worker type is one of ``required_types``
              + max(0, 20 − commitments in the previous 7 days)
        Only the top 5 are returned; ranking never blocks booking.
        """
        _check_window(shift_window)
        wanted = {t.lower() for t in required_types or []}
        ids = [int(c["id"]) for c in candidates]
        window_start = day - timedelta(days=RECOMMEND_WORKLOAD_DAYS)
        recent: Dict[int, int] = {}
        for c in await self.store.list_between(window_start, day - timedelta(days=1), ids):
            if c.status == "booked":
                recent[c.worker_id] = recent.get(c.worker_id, 0) + 1

        ranked = []
        for candidate in candidates:
            worker_id = int(candidate["id"])
            check = await self.check_availability(worker_id, day, shift_window)
            type_match = bool(wanted) and str(candidate.get("worker_type", "")).lower() in wanted
            workload = recent.get(worker_id, 0)

            score = 0
            if check.available:
                score += RECOMMEND_AVAILABLE_SCORE
            if type_match:
                score += RECOMMEND_TYPE_MATCH_SCORE
            score += max(0, RECOMMEND_WORKLOAD_CEILING - workload)

            alternatives = []
            if not check.available:
                for other in SHIFT_WINDOWS:
                    if other != shift_window and (await self.check_availability(worker_id, day, other)).available:
                        alternatives.append(other)

            ranked.append({
                "worker_id": worker_id,
                "name": candidate.get("name", ""),
                "worker_type": candidate.get("worker_type"),
                "available": check.available,
                "type_match": type_match,
                "recent_workload": workload,
                "score": score,
                "conflict": check.conflict,
                "alternative_windows": alternatives,
            })

        ranked.sort(key=lambda r: (-r["score"], r["worker_id"]))
        return ranked[:RECOMMEND_LIMIT]


def validate_shift_request(
    worker_id: Optional[int],
    day: Optional[date],
    shift_window: Optional[str],
    status: str = "booked",
    today: Optional[date] = None,
) -> Outcome:
    """Input check for a booking or administrative commitment."""
    if not worker_id:
        return oc.error("missing_worker", "A worker is required")
    if day is None:
        return oc.error("missing_date", "A date is required")
    if day < (today or date.today()):
        return oc.error("past_date", "Cannot schedule a date in the past", date=day.isoformat())
    if shift_window not in SHIFT_WINDOWS:
        return oc.error("invalid_shift_window", f"Unknown shift window {shift_window!r}")
    if status not in COMMITMENT_STATUSES:
        return oc.error("invalid_status", f"Unknown status {status!r}")
    return oc.ok()
