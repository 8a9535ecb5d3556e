"""Performance and activity counters for the pricing & scheduling service."""
import time
import logging
import threading
import functools
from typing import Any, Callable, Dict

logger = logging.getLogger("events-api.perf")


def timed(func: Callable) -> Callable:
    """
    Decorator that measures and logs execution time for synchronous functions.

    Usage::

        @timed
        def price_team(...):
            ...
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            logger.debug(
                "function timed",
                extra={
                    "function": func.__qualname__,
                    "duration_ms": duration_ms,
                },
            )
    return wrapper


class PerformanceTracker:
    """
    Thread-safe in-memory tracker for engine activity.

    Tracks:
    - Quotes priced and their average pricing duration
    - Bookings made, bookings refused, releases performed
    - Storage errors on the commitment store
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._quotes_priced: int = 0
        self._total_pricing_ms: float = 0.0
        self._bookings_made: int = 0
        self._bookings_refused: int = 0
        self._commitments_released: int = 0
        self._storage_errors: int = 0

    # ------------------------------------------------------------------
    # Public write API
    # ------------------------------------------------------------------

    def record_quote_priced(self, duration_ms: float) -> None:
        with self._lock:
            self._quotes_priced += 1
            self._total_pricing_ms += duration_ms

    def record_booking(self) -> None:
        with self._lock:
            self._bookings_made += 1

    def record_booking_refused(self) -> None:
        with self._lock:
            self._bookings_refused += 1

    def record_release(self, count: int) -> None:
        with self._lock:
            self._commitments_released += count

    def record_storage_error(self) -> None:
        with self._lock:
            self._storage_errors += 1

    # ------------------------------------------------------------------
    # Public read API
    # ------------------------------------------------------------------

    def get_metrics(self) -> Dict[str, Any]:
        """Snapshot of all counters; averages are 0 when nothing was recorded."""
        with self._lock:
            avg = (
                round(self._total_pricing_ms / self._quotes_priced, 2)
                if self._quotes_priced > 0
                else 0.0
            )
            return {
                "quotes_priced": self._quotes_priced,
                "avg_pricing_duration_ms": avg,
                "bookings_made": self._bookings_made,
                "bookings_refused": self._bookings_refused,
                "commitments_released": self._commitments_released,
                "storage_errors": self._storage_errors,
            }

    def reset(self) -> None:
        """Reset all counters (useful in tests)."""
        with self._lock:
            self._quotes_priced = 0
            self._total_pricing_ms = 0.0
            self._bookings_made = 0
            self._bookings_refused = 0
            self._commitments_released = 0
            self._storage_errors = 0


# Module-level singleton; import this instance everywhere else.
tracker = PerformanceTracker()
