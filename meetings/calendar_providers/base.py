"""Abstract base class for calendar providers.

Defines the interface the booking engine needs from a calendar backend:
busy intervals for a window, event insert, event re-fetch and cancellation.
Any calendar backend (Google, Outlook, etc.) implements this ABC.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class BusyInterval:
    """A half-open ``[start, end)`` range the calendar owner is committed to."""

    start: datetime
    end: datetime

    @property
    def malformed(self) -> bool:
        return self.end < self.start


@dataclass(frozen=True)
class TimeSlot:
    """A free window of exactly the meeting duration."""

    start: datetime
    end: datetime

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass
class CalendarEvent:
    """Represents a calendar event to be created."""

    summary: str
    start: datetime
    end: datetime
    timezone: str
    description: str = ""
    attendees: list[str] = field(default_factory=list)  # email addresses
    request_conference: bool = True
    event_id: Optional[str] = None  # client-side id, makes the insert idempotent


class CalendarProvider(ABC):
    """Abstract calendar backend.

    Events are returned in the provider's raw dict form (``id``,
    ``htmlLink``, ``hangoutLink``, ``conferenceData`` ...) so the conference
    poller can inspect them.  Implementations raise ``TokenExpired`` when the
    provider rejects the credentials and ``EventAlreadyExists`` when an insert
    collides with a client-side event id.
    """

    @abstractmethod
    async def list_busy_intervals(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
    ) -> list[BusyInterval]:
        """Return the committed intervals that intersect ``[time_min, time_max)``.

        Args:
            calendar_id: The calendar to query.
            time_min: Beginning of the window.
            time_max: End of the window.

        Returns:
            BusyInterval list ordered by start time.
        """

    @abstractmethod
    async def create_event(
        self, calendar_id: str, event: CalendarEvent
    ) -> dict:
        """Insert a calendar event and return the provider's event resource.

        The result contains at least ``"id"`` and ``"htmlLink"``.
        """

    @abstractmethod
    async def get_event(
        self, calendar_id: str, event_id: str
    ) -> dict:
        """Fetch the current state of an event by id."""

    @abstractmethod
    async def cancel_event(
        self, calendar_id: str, event_id: str
    ) -> bool:
        """Cancel / delete a calendar event.

        Returns:
            True if the event was successfully cancelled.
        """
