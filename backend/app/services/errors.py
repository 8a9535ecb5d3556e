"""Exceptions raised by the scheduling and quote services."""
from datetime import date
from typing import Optional

AVAILABILITY_CONFLICT = "availability_conflict"
STORAGE_CONFLICT = "storage_conflict"


class SchedulingError(Exception):
    """Base class for commitment store and booking failures."""


class BookingConflictError(SchedulingError):
    """
    A booking was refused because the worker is already committed.

    ``code`` distinguishes the application pre-check (availability_conflict)
    from the storage uniqueness guard (storage_conflict).
    """

    def __init__(
        self,
        worker_id: int,
        day: date,
        shift_window: str,
        status: Optional[str] = None,
        event_ref: Optional[str] = None,
        reason: str = "",
        code: str = AVAILABILITY_CONFLICT,
    ):
        self.worker_id = worker_id
        self.date = day
        self.shift_window = shift_window
        self.status = status
        self.event_ref = event_ref
        self.reason = reason or f"Worker {worker_id} is not available on {day} ({shift_window})"
        self.code = code
        super().__init__(self.reason)

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "worker_id": self.worker_id,
            "date": self.date.isoformat() if self.date else None,
            "shift_window": self.shift_window,
            "status": self.status,
            "event_ref": self.event_ref,
            "reason": self.reason,
        }


class StorageError(SchedulingError):
    """Persistence failure during a booking or release; the operation was not applied."""


class QuoteStateError(Exception):
    """Unknown quote or an illegal status transition."""

    def __init__(self, message: str, not_found: bool = False):
        self.not_found = not_found
        super().__init__(message)


class PricingBlockedError(ValueError):
    """Quote cannot be finalized: an error or a policy-blocked warning was found."""

    def __init__(self, blocking: list):
        self.blocking = blocking
        codes = ", ".join(b.get("code", "") for b in blocking)
        super().__init__(f"Quote cannot be finalized ({codes})")
