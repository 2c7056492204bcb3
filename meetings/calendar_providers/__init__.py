"""Calendar provider abstractions and implementations."""

from .base import BusyInterval, CalendarEvent, CalendarProvider, TimeSlot

__all__ = ["BusyInterval", "CalendarEvent", "CalendarProvider", "TimeSlot"]
