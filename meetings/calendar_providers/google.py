"""Google Calendar provider implementation.

Uses the calendar owner's OAuth access token (obtained and refreshed by
``meetings.tokens``) to talk to the Calendar API v3.  The client library is
synchronous, so each call runs in the default thread pool; every request is
executed over its own authorized HTTP object because ``httplib2`` connections
must not be shared between threads.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import date, datetime, time, timezone
from functools import partial
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import google_auth_httplib2
import httplib2
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from meetings.errors import EventAlreadyExists, TokenExpired

from .base import BusyInterval, CalendarEvent, CalendarProvider

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]

PAGE_SIZE = 250


class GoogleCalendarProvider(CalendarProvider):
    """CalendarProvider backed by Google Calendar API v3."""

    def __init__(self, access_token: str) -> None:
        if not access_token:
            raise ValueError("A Google OAuth access token is required.")
        self._credentials = Credentials(token=access_token, scopes=SCOPES)
        self._service = build(
            "calendar", "v3", credentials=self._credentials, cache_discovery=False
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run_in_executor(self, func, *args, **kwargs) -> Any:
        """Run a synchronous Google API call in the default thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, partial(func, *args, **kwargs)
        )

    def _new_http(self) -> google_auth_httplib2.AuthorizedHttp:
        return google_auth_httplib2.AuthorizedHttp(
            self._credentials, http=httplib2.Http(timeout=30)
        )

    async def _execute(self, request) -> dict:
        """Execute a prepared API request, mapping 401 to ``TokenExpired``."""
        try:
            return await self._run_in_executor(request.execute, http=self._new_http())
        except HttpError as e:
            if e.resp.status == 401:
                raise TokenExpired("Google Calendar token expired") from e
            raise

    @staticmethod
    def _to_rfc3339(dt: datetime) -> str:
        """Convert a datetime to an RFC 3339 string with timezone."""
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.isoformat()

    @staticmethod
    def _parse_boundary(value: dict, calendar_tz: ZoneInfo | timezone) -> datetime | None:
        """Parse an event ``start``/``end`` object into an aware datetime.

        Timed events carry ``dateTime``; all-day events carry a ``date``,
        which is read as midnight in the calendar's own time zone.
        """
        if value.get("dateTime"):
            parsed = datetime.fromisoformat(value["dateTime"].replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=calendar_tz)
            return parsed
        if value.get("date"):
            return datetime.combine(date.fromisoformat(value["date"]), time(0), tzinfo=calendar_tz)
        return None

    @staticmethod
    def _calendar_tz(name: str | None) -> ZoneInfo | timezone:
        if not name:
            return timezone.utc
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown calendar timezone %r, using UTC", name)
            return timezone.utc

    # ------------------------------------------------------------------
    # CalendarProvider interface
    # ------------------------------------------------------------------

    async def list_busy_intervals(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
    ) -> list[BusyInterval]:
        """List the events in the window and reduce each one to its start/end."""
        busy: list[BusyInterval] = []
        page_token = None

        while True:
            response = await self._execute(
                self._service.events().list(
                    calendarId=calendar_id,
                    timeMin=self._to_rfc3339(time_min),
                    timeMax=self._to_rfc3339(time_max),
                    singleEvents=True,
                    orderBy="startTime",
                    maxResults=PAGE_SIZE,
                    pageToken=page_token,
                )
            )
            calendar_tz = self._calendar_tz(response.get("timeZone"))

            for item in response.get("items", []):
                start = self._parse_boundary(item.get("start", {}), calendar_tz)
                end = self._parse_boundary(item.get("end", {}), calendar_tz)
                if start is None or end is None:
                    continue
                interval = BusyInterval(start=start, end=end)
                if interval.malformed:
                    logger.warning(
                        "Event %s ends before it starts (%s > %s); treating as busy",
                        item.get("id"), start.isoformat(), end.isoformat(),
                    )
                busy.append(interval)

            page_token = response.get("nextPageToken")
            if not page_token:
                break

        busy.sort(key=lambda b: b.start)
        return busy

    async def create_event(
        self, calendar_id: str, event: CalendarEvent
    ) -> dict:
        """Insert an event into the Google Calendar.

        Requests a Google Meet conference and sends e-mail invitations to the
        attendees.  When ``event.event_id`` is set it is used as the event id,
        so a retried insert collides (HTTP 409) instead of duplicating.
        """
        body: dict[str, Any] = {
            "summary": event.summary,
            "start": {"dateTime": self._to_rfc3339(event.start), "timeZone": event.timezone},
            "end": {"dateTime": self._to_rfc3339(event.end), "timeZone": event.timezone},
            "guestsCanModify": False,
            "guestsCanInviteOthers": False,
            "guestsCanSeeOtherGuests": True,
        }
        if event.event_id:
            body["id"] = event.event_id
        if event.description:
            body["description"] = event.description
        if event.attendees:
            body["attendees"] = [
                {"email": addr} for addr in event.attendees
            ]
        if event.request_conference:
            body["conferenceData"] = {
                "createRequest": {
                    "requestId": f"meet-{uuid.uuid4().hex}",
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                }
            }

        try:
            result = await self._execute(
                self._service.events().insert(
                    calendarId=calendar_id,
                    body=body,
                    conferenceDataVersion=1,
                    sendUpdates="all",
                )
            )
        except HttpError as e:
            if e.resp.status == 409 and event.event_id:
                raise EventAlreadyExists(event.event_id) from e
            raise

        logger.info("Created event %s on calendar %s", result["id"], calendar_id)
        return result

    async def get_event(
        self, calendar_id: str, event_id: str
    ) -> dict:
        """Re-fetch an event by id."""
        return await self._execute(
            self._service.events().get(calendarId=calendar_id, eventId=event_id)
        )

    async def cancel_event(
        self, calendar_id: str, event_id: str
    ) -> bool:
        """Delete an event from Google Calendar."""
        try:
            await self._execute(
                self._service.events().delete(
                    calendarId=calendar_id, eventId=event_id, sendUpdates="all"
                )
            )
            logger.info(
                "Cancelled event %s on calendar %s", event_id, calendar_id
            )
            return True
        except TokenExpired:
            raise
        except Exception:
            logger.exception(
                "Failed to cancel event %s on calendar %s",
                event_id,
                calendar_id,
            )
            return False
