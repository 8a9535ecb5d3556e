"""
test_observability.py — Structured logging and in-process activity counters.
"""

import json
import logging

from app.services.logging_config import JSONFormatter
from app.services.perf_monitor import PerformanceTracker, timed


class TestJSONFormatter:

    def _record(self, **extra):
        record = logging.LogRecord("events-api", logging.INFO, __file__, 10, "booked %s", ("QT-1",), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_basic_fields(self):
        entry = json.loads(JSONFormatter().format(self._record()))
        assert entry["level"] == "INFO"
        assert entry["logger"] == "events-api"
        assert entry["message"] == "booked QT-1"

    def test_context_extras_copied(self):
        entry = json.loads(JSONFormatter().format(self._record(worker_id=7, event_ref="QT-1", duration_ms=1.5)))
        assert entry["worker_id"] == 7
        assert entry["event_ref"] == "QT-1"
        assert entry["duration_ms"] == 1.5

    def test_unknown_extras_ignored(self):
        entry = json.loads(JSONFormatter().format(self._record(password="x")))
        assert "password" not in entry


class TestPerformanceTracker:

    def test_counters(self):
        tracker = PerformanceTracker()
        tracker.record_quote_priced(10.0)
        tracker.record_quote_priced(20.0)
        tracker.record_booking()
        tracker.record_booking_refused()
        tracker.record_release(3)
        tracker.record_storage_error()
        metrics = tracker.get_metrics()
        assert metrics["quotes_priced"] == 2
        assert metrics["avg_pricing_duration_ms"] == 15.0
        assert metrics["bookings_made"] == 1
        assert metrics["bookings_refused"] == 1
        assert metrics["commitments_released"] == 3
        assert metrics["storage_errors"] == 1

    def test_reset(self):
        tracker = PerformanceTracker()
        tracker.record_booking()
        tracker.reset()
        assert tracker.get_metrics()["bookings_made"] == 0
        assert tracker.get_metrics()["avg_pricing_duration_ms"] == 0.0

    def test_timed_returns_result(self):
        @timed
        def add(a, b):
            return a + b

        assert add(2, 3) == 5
        assert add.__name__ == "add"

    def test_timed_log_line_names_the_function(self, caplog):
        @timed
        def price_something():
            return 1

        with caplog.at_level(logging.DEBUG, logger="events-api.perf"):
            price_something()
        record = [r for r in caplog.records if r.name == "events-api.perf"][-1]
        entry = json.loads(JSONFormatter().format(record))
        assert entry["function"].endswith("price_something")
        assert "duration_ms" in entry
