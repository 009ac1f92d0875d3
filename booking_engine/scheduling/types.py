"""
Booking domain types using Pydantic models.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

ALLOWED_DURATIONS = (15, 30, 45, 60)

Duration = Literal[15, 30, 45, 60]


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalise aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def intervals_overlap(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> bool:
    """Half-open interval overlap; back-to-back intervals do not overlap."""
    return a_start < b_end and b_start < a_end


class BookingStatus(str, Enum):
    """Booking lifecycle states."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.CANCELLED}),
    BookingStatus.CANCELLED: frozenset(),
}


class TimeSlot(BaseModel):
    """A busy or bookable interval."""

    model_config = ConfigDict(frozen=True)

    start_time: datetime
    end_time: datetime
    duration: int

    @classmethod
    def starting_at(cls, start_time: datetime, duration: int) -> "TimeSlot":
        return cls(
            start_time=start_time,
            end_time=start_time + timedelta(minutes=duration),
            duration=duration,
        )

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return intervals_overlap(self.start_time, self.end_time, start, end)


class BusinessHours(BaseModel):
    """When consultations may be booked. Weekdays are 0=Sunday .. 6=Saturday."""

    model_config = ConfigDict(frozen=True)

    days_of_week: frozenset[int] = frozenset({1, 2, 3, 4, 5})
    start_hour: int = 9
    end_hour: int = 17
    timezone: str = "Europe/London"
    buffer_minutes: int = 15
    min_advance_hours: int = 1
    max_advance_hours: int = 24


class FrequencyRule(BaseModel):
    """At most max_bookings of one duration within +/- window_minutes of each other."""

    model_config = ConfigDict(frozen=True)

    duration: int
    max_bookings: int = Field(ge=1)
    window_minutes: int = Field(ge=1)


class Booking(BaseModel):
    """A reservation in the local ledger."""

    id: str
    name: str
    company: str
    email: str
    phone: str | None = None
    inquiry: str
    start_time: datetime
    duration: int
    status: BookingStatus = BookingStatus.PENDING

    calendar_event_id: str | None = None
    calendar_synced: bool = False
    requires_manual_calendar_sync: bool = False

    crm_contact_id: str | None = None
    crm_synced: bool = False
    requires_manual_crm_sync: bool = False

    confirmation_sent: bool = False
    reminder_sent: bool = False

    created_at: datetime
    updated_at: datetime

    @field_validator("start_time", "created_at", "updated_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(minutes=self.duration)

    @property
    def is_active(self) -> bool:
        return self.status != BookingStatus.CANCELLED


class TimeSlotRequest(BaseModel):
    """Requested start and length of a consultation."""

    start_time: datetime
    duration: int


class BookingCreate(BaseModel):
    """Input for creating a booking. Field rules are checked by the service."""

    name: str = ""
    company: str = ""
    email: str = ""
    phone: str | None = None
    inquiry: str = ""
    time_slot: TimeSlotRequest


class BookingUpdate(BaseModel):
    """Mutable fields of an existing booking."""

    inquiry: str | None = None
    time_slot: TimeSlotRequest | None = None


class BookingFilters(BaseModel):
    """Listing filters with pagination."""

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=1000)
    status: BookingStatus | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    email: str | None = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class PaginatedBookings(BaseModel):
    data: list[Booking] = Field(default_factory=list)
    pagination: Pagination
