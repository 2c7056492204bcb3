"""Open-slot search over a single calendar.

``find_slots`` scans ``horizon_days`` calendar days starting from the current
day in the policy's timezone.  Each day is scanned by its own task: the task
fetches that day's busy intervals for the work window and walks candidate
starts on a fixed 30-minute grid, keeping the ones ``has_conflict`` accepts.
Results are joined in day order regardless of which fetch finished first.

All slot instants are returned in UTC.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from meetings.calendar_providers.base import BusyInterval, CalendarProvider, TimeSlot
from meetings.errors import TokenExpired
from meetings.models.policy import WEEKDAYS, SchedulingPolicy

log = logging.getLogger("meetings.availability")

SLOT_STEP = timedelta(minutes=30)
MAX_SLOTS_PER_DAY = 8
MAX_SLOTS = 20


def has_conflict(
    candidate: TimeSlot,
    busy: Iterable[BusyInterval],
    buffer_minutes: int,
) -> bool:
    """True if the buffer-expanded candidate overlaps any busy interval.

    Overlap is half-open: a candidate whose buffered end equals an interval's
    start is free.  A malformed interval (end before start) conflicts with
    every candidate.
    """
    buffer = timedelta(minutes=buffer_minutes)
    buf_start = candidate.start - buffer
    buf_end = candidate.end + buffer
    for interval in busy:
        if interval.malformed:
            return True
        if buf_start < interval.end and buf_end > interval.start:
            return True
    return False


def round_up_to_step(now: datetime, tz: ZoneInfo) -> datetime:
    """Round ``now`` up to the next half hour of local time, returned in UTC."""
    local = now.astimezone(tz)
    floor = local.replace(minute=local.minute - local.minute % 30, second=0, microsecond=0)
    floor_utc = floor.astimezone(timezone.utc)
    if floor == local:
        return floor_utc
    return floor_utc + SLOT_STEP


def _work_bounds(policy: SchedulingPolicy, day: date) -> tuple[datetime, datetime]:
    tz = policy.tz
    start = datetime.combine(day, policy.work_start, tzinfo=tz)
    end = datetime.combine(day, policy.work_end, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


async def _scan_day(
    source: CalendarProvider,
    calendar_id: str,
    policy: SchedulingPolicy,
    day: date,
    scan_from: datetime,
) -> list[TimeSlot]:
    if WEEKDAYS[day.weekday()] not in policy.work_days:
        return []

    work_start, work_end = _work_bounds(policy, day)
    current = max(work_start, scan_from)
    if current >= work_end:
        return []

    try:
        busy = await source.list_busy_intervals(calendar_id, work_start, work_end)
    except TokenExpired:
        raise
    except Exception as e:
        log.error("Busy-interval fetch failed for %s, skipping day: %s", day.isoformat(), e)
        return []

    slots: list[TimeSlot] = []
    duration = policy.duration
    while current + duration <= work_end:
        candidate = TimeSlot(start=current, end=current + duration)
        if not has_conflict(candidate, busy, policy.buffer_minutes):
            slots.append(candidate)
            if len(slots) >= MAX_SLOTS_PER_DAY:
                break
        current += SLOT_STEP
    return slots


async def find_slots(
    source: CalendarProvider,
    policy: SchedulingPolicy,
    horizon_days: int,
    *,
    max_slots: int = MAX_SLOTS,
    now: Optional[datetime] = None,
    calendar_id: str = "primary",
) -> list[TimeSlot]:
    """Return up to ``max_slots`` free slots in chronological order.

    Raises ``TokenExpired`` if any day's fetch is rejected for credentials;
    the remaining day tasks are cancelled.  Other fetch failures only drop
    the affected day.
    """
    if now is None:
        now = datetime.now(tz=timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    scan_from = round_up_to_step(now, policy.tz)
    first_day = scan_from.astimezone(policy.tz).date()

    tasks = [
        asyncio.create_task(
            _scan_day(source, calendar_id, policy, first_day + timedelta(days=offset), scan_from)
        )
        for offset in range(horizon_days)
    ]
    try:
        per_day = await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    slots = [slot for day_slots in per_day for slot in day_slots]
    log.info(
        "Scanned %d days from %s: %d free slots (returning %d)",
        horizon_days, scan_from.isoformat(), len(slots), min(len(slots), max_slots),
    )
    return slots[:max_slots]
