"""Per-request execution trace for the booking API.

Each API call gets an ``ExecutionTrace``.  Steps recorded on it are logged
immediately and kept in an in-memory event log; when the request finishes the
trace is summarized and written (best effort) to the ``debug_logs``
collection so a failed booking can be inspected after the fact.
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Optional, TypedDict

from meetings.store import DataStore

log = logging.getLogger("meetings.tracing")


def redact_pii(value: Optional[str]) -> str:
    """Mask PII for logging: show first 3 and last 2 chars only."""
    if not value or len(value) <= 5:
        return "***"
    return value[:3] + "***" + value[-2:]


class TraceEvent(TypedDict):
    step: int
    timestamp: float
    message: str
    data: dict


class ExecutionTrace:
    """Records the numbered steps of one API call."""

    def __init__(self, function_name: str, **context: Optional[str]) -> None:
        self.function_name = function_name
        self.execution_id = uuid.uuid4().hex
        self.context = {k: v for k, v in context.items() if v}
        self._started = time.monotonic()
        self._events: list[TraceEvent] = []

    @property
    def prefix(self) -> str:
        return f"[{self.function_name}] [{self.execution_id[:8]}]"

    def step(self, message: str, **data) -> None:
        """Record and log the next step."""
        event: TraceEvent = {
            "step": len(self._events) + 1,
            "timestamp": time.time(),
            "message": message,
            "data": data,
        }
        self._events.append(event)
        if data:
            log.info("%s Step %d: %s %s", self.prefix, event["step"], message, data)
        else:
            log.info("%s Step %d: %s", self.prefix, event["step"], message)

    @property
    def events(self) -> list[TraceEvent]:
        return list(self._events)

    @property
    def duration_ms(self) -> int:
        return int((time.monotonic() - self._started) * 1000)

    def summary(self, status: int, success: bool, error: Optional[str] = None) -> dict:
        """Log the outcome and return the record stored in ``debug_logs``."""
        duration = self.duration_ms
        if success:
            log.info("%s Execution completed in %dms (status %d)", self.prefix, duration, status)
        else:
            log.warning(
                "%s Execution failed in %dms (status %d): %s",
                self.prefix, duration, status, error,
            )
        return {
            "id": self.execution_id,
            "function_name": self.function_name,
            "context": self.context,
            "response_status": status,
            "success": success,
            "error_message": error,
            "duration_ms": duration,
            "steps": self.events,
            "created_at": datetime.now(tz=timezone.utc).isoformat(),
        }

    def save(self, store: DataStore, status: int, success: bool, error: Optional[str] = None) -> None:
        """Persist the summary; a storage failure never affects the response."""
        record = self.summary(status, success, error)
        try:
            store.debug_logs.insert(record)
        except Exception:
            log.exception("%s Failed to save debug log", self.prefix)
