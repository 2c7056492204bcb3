"""Calendar event creation and conference-link resolution.

Google attaches the Meet link to a new event asynchronously: the insert
response often carries ``conferenceData.createRequest.status == "pending"``
and no entry points.  ``ConferenceLinkPoller`` re-fetches the event a bounded
number of times and otherwise falls back to the plain ``htmlLink``::

    PENDING ──link in insert response──────────────▶ RESOLVED
       │
       └──▶ RETRYING ──link found within N polls──▶ RESOLVED
                 └────polls exhausted─────────────▶ UNRESOLVED_FALLBACK
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

from meetings.calendar_providers.base import CalendarEvent, CalendarProvider, TimeSlot
from meetings.errors import EventAlreadyExists, ProviderInsertFailed, TokenExpired
from meetings.models.policy import SchedulingPolicy
from meetings.retry import retry_with_fixed_delay

log = logging.getLogger("meetings.conference")

POLL_ATTEMPTS = 3
POLL_DELAY_SECONDS = 2.0


class ConferenceResolutionState(str, enum.Enum):
    PENDING = "pending"
    RETRYING = "retrying"
    RESOLVED = "resolved"
    UNRESOLVED_FALLBACK = "unresolved_fallback"


def extract_conference_link(event: dict | None) -> Optional[str]:
    """The joinable video URI of an event, if the provider has attached one."""
    if not event:
        return None
    entry_points = (event.get("conferenceData") or {}).get("entryPoints") or []
    for entry in entry_points:
        if entry.get("entryPointType") == "video" and entry.get("uri"):
            return entry["uri"]
    return event.get("hangoutLink") or None


def event_bounds(event: dict, fallback: TimeSlot, tz: ZoneInfo) -> TimeSlot:
    """The UTC start/end an event actually has, or ``fallback`` if it carries none.

    Naive ``dateTime`` values are read in ``tz``.
    """
    bounds = []
    for key in ("start", "end"):
        value = (event.get(key) or {}).get("dateTime")
        if not value:
            return fallback
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            log.warning("Unparseable %s %r on event %s", key, value, event.get("id"))
            return fallback
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=tz)
        bounds.append(parsed.astimezone(timezone.utc))
    return TimeSlot(start=bounds[0], end=bounds[1])


def _request_status(event: dict) -> str:
    status = ((event.get("conferenceData") or {}).get("createRequest") or {}).get("status")
    if isinstance(status, dict):
        return status.get("statusCode", "unknown")
    return str(status or "unknown")


@dataclass
class ConferenceResolution:
    link: str
    state: ConferenceResolutionState
    refetches: int

    @property
    def fell_back(self) -> bool:
        return self.state is ConferenceResolutionState.UNRESOLVED_FALLBACK


class ConferenceLinkPoller:
    """Resolves the conference link of one freshly created event."""

    def __init__(
        self,
        provider: CalendarProvider,
        calendar_id: str = "primary",
        attempts: int = POLL_ATTEMPTS,
        delay: float = POLL_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._calendar_id = calendar_id
        self._attempts = attempts
        self._delay = delay
        self._sleep = sleep
        self.state = ConferenceResolutionState.PENDING

    async def resolve(self, created: dict) -> ConferenceResolution:
        fallback = created.get("htmlLink", "")

        link = extract_conference_link(created)
        if link:
            self.state = ConferenceResolutionState.RESOLVED
            return ConferenceResolution(link=link, state=self.state, refetches=0)

        self.state = ConferenceResolutionState.RETRYING
        log.info(
            "Conference data not ready for event %s (status=%s), polling",
            created.get("id"),
            _request_status(created),
        )
        outcome = await retry_with_fixed_delay(
            lambda: self._provider.get_event(self._calendar_id, created["id"]),
            attempts=self._attempts,
            delay=self._delay,
            predicate=lambda event: extract_conference_link(event) is not None,
            sleep=self._sleep,
        )

        if outcome.succeeded:
            self.state = ConferenceResolutionState.RESOLVED
            link = extract_conference_link(outcome.value)
            log.info("Conference link resolved after %d re-fetches", outcome.attempts)
            return ConferenceResolution(link=link, state=self.state, refetches=outcome.attempts)

        self.state = ConferenceResolutionState.UNRESOLVED_FALLBACK
        log.warning(
            "Conference link not available after %d re-fetches, using calendar link",
            outcome.attempts,
        )
        return ConferenceResolution(link=fallback, state=self.state, refetches=outcome.attempts)


@dataclass
class MeetingEventCreation:
    """The event as the provider holds it; ``start``/``end`` are UTC."""

    calendar_event_id: str
    start: datetime
    end: datetime
    html_link: str
    conference_link: str
    fell_back_to_html_link: bool
    state: ConferenceResolutionState
    attempts: int


class MeetingEventCreator:
    """Creates the provider event and resolves its conference link."""

    def __init__(
        self,
        provider: CalendarProvider,
        calendar_id: str = "primary",
        poll_attempts: int = POLL_ATTEMPTS,
        poll_delay: float = POLL_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._calendar_id = calendar_id
        self._poll_attempts = poll_attempts
        self._poll_delay = poll_delay
        self._sleep = sleep

    async def create_meeting(
        self,
        slot: TimeSlot,
        policy: SchedulingPolicy,
        attendees: list[str],
        title: str,
        description: str,
        event_id: Optional[str] = None,
    ) -> MeetingEventCreation:
        event = CalendarEvent(
            summary=title,
            start=slot.start,
            end=slot.end,
            timezone=policy.timezone,
            description=description,
            attendees=attendees,
            request_conference=True,
            event_id=event_id,
        )

        try:
            created = await self._provider.create_event(self._calendar_id, event)
        except TokenExpired:
            raise
        except EventAlreadyExists as e:
            log.info("Event %s already exists, reusing it", e.event_id)
            try:
                created = await self._provider.get_event(self._calendar_id, e.event_id)
            except TokenExpired:
                raise
            except Exception as fetch_error:
                raise ProviderInsertFailed(
                    f"Event {e.event_id} exists but could not be fetched: {fetch_error}"
                ) from fetch_error
            # Deleted events keep their id, so a 409 can point at a cancelled one.
            if created.get("status") == "cancelled":
                raise ProviderInsertFailed(f"Event {e.event_id} was cancelled and cannot be reused")
        except Exception as e:
            log.error("Calendar insert failed: %s", e)
            raise ProviderInsertFailed(f"Failed to create event: {e}") from e

        poller = ConferenceLinkPoller(
            self._provider,
            calendar_id=self._calendar_id,
            attempts=self._poll_attempts,
            delay=self._poll_delay,
            sleep=self._sleep,
        )
        resolution = await poller.resolve(created)

        bounds = event_bounds(created, slot, policy.tz)
        if bounds != slot:
            log.info(
                "Event %s starts at %s, not the requested %s",
                created["id"], bounds.start.isoformat(), slot.start.isoformat(),
            )

        return MeetingEventCreation(
            calendar_event_id=created["id"],
            start=bounds.start,
            end=bounds.end,
            html_link=created.get("htmlLink", ""),
            conference_link=resolution.link,
            fell_back_to_html_link=resolution.fell_back,
            state=resolution.state,
            attempts=resolution.refetches,
        )
