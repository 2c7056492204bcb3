"""Data models for the booking layer."""

from .booking import (
    AvailabilityRequest,
    AvailabilityResult,
    BookingRequest,
    BookingResult,
    MeetingRecord,
    MeetingSummary,
    SlotOut,
)
from .policy import SchedulingPolicy

__all__ = [
    "AvailabilityRequest",
    "AvailabilityResult",
    "BookingRequest",
    "BookingResult",
    "MeetingRecord",
    "MeetingSummary",
    "SchedulingPolicy",
    "SlotOut",
]
