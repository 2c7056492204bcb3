"""Typed failures of the booking engine.

Every failure that reaches the API boundary is a ``BookingError`` with a
stable ``kind`` string.  The HTTP layer turns it into a JSON result using the
``status_code`` and ``structured`` attributes of the subclass:

  structured=True   → 200 with ``success: false`` (the caller's UI branches on it)
  structured=False  → ``status_code`` with ``success: false``
"""

from __future__ import annotations


class BookingError(Exception):
    """Base class for booking engine failures."""

    kind: str = "BookingError"
    status_code: int = 500
    structured: bool = False

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_dict(self) -> dict:
        return {"success": False, "error": self.kind, "message": self.message}


class InvalidRequest(BookingError):
    kind = "InvalidRequest"
    status_code = 400


class InvalidDate(BookingError):
    kind = "InvalidDate"
    status_code = 400


class TokenExpired(BookingError):
    """The provider rejected the access token (HTTP 401) or it could not be refreshed."""

    kind = "TokenExpired"
    status_code = 200
    structured = True


class CalendarNotConnected(BookingError):
    kind = "CalendarNotConnected"
    status_code = 200
    structured = True


class SchedulingDisabled(BookingError):
    kind = "SchedulingDisabled"
    status_code = 200
    structured = True


class InvalidPolicy(BookingError):
    """The stored agent config violates a scheduling policy invariant."""

    kind = "InvalidPolicy"
    status_code = 200
    structured = True


class NoAvailableSlots(BookingError):
    kind = "NoAvailableSlots"
    status_code = 200
    structured = True


class ProviderInsertFailed(BookingError):
    kind = "ProviderInsertFailed"
    status_code = 502


class ProviderCancelFailed(BookingError):
    kind = "ProviderCancelFailed"
    status_code = 502


class PersistenceFailed(BookingError):
    """Never surfaced to callers; logged when a MeetingRecord write fails."""

    kind = "PersistenceFailed"


class ConversationNotFound(BookingError):
    kind = "ConversationNotFound"
    status_code = 404


class MeetingNotFound(BookingError):
    kind = "MeetingNotFound"
    status_code = 404


class EventAlreadyExists(Exception):
    """Raised by a provider when an insert collides with an existing event id."""

    def __init__(self, event_id: str) -> None:
        super().__init__(f"Event {event_id} already exists")
        self.event_id = event_id
