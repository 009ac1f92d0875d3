"""
Booking domain exceptions.

Each error carries the HTTP status and machine-readable code an outer
surface should answer with, plus a structured payload via to_dict().
"""

from datetime import datetime
from typing import Any


class BookingError(Exception):
    """Base exception for booking request failures."""

    status_code = 400
    error_code = "BOOKING_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error_code, "message": self.message}


class ValidationError(BookingError):
    """Validation error exception"""

    status_code = 400
    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str = "Validation error", details: list[str] | None = None):
        self.details = details or []
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "details": self.details}


class FrequencyLimitError(BookingError):
    """Requester exceeded the booking limit for a duration's rolling window."""

    status_code = 429
    error_code = "FREQUENCY_LIMIT_EXCEEDED"

    def __init__(self, max_bookings: int, window_minutes: int, duration: int):
        self.max_bookings = max_bookings
        self.window_minutes = window_minutes
        self.duration = duration
        super().__init__(
            f"Maximum {max_bookings} bookings of {duration}-minute duration "
            f"within any rolling {format_window(window_minutes)} window exceeded"
        )

    @property
    def retry_after_seconds(self) -> int:
        """Upper bound on how long until the window can have room again."""
        return self.window_minutes * 60

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "max_bookings": self.max_bookings,
            "window_minutes": self.window_minutes,
            "duration": self.duration,
            "retry_after": self.retry_after_seconds,
        }


class ConflictError(BookingError):
    """Conflict error exception"""

    status_code = 409
    error_code = "CONFLICT"

    def __init__(
        self,
        message: str = "Resource conflict",
        start_time: datetime | None = None,
        duration: int | None = None,
    ):
        self.start_time = start_time
        self.duration = duration
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        if self.start_time is not None:
            payload["start_time"] = self.start_time.isoformat()
        if self.duration is not None:
            payload["duration"] = self.duration
        return payload



class NotFoundError(BookingError):
    """Not found error exception"""

    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource"):
        self.resource = resource
        super().__init__(f"{resource} not found")


def format_window(window_minutes: int) -> str:
    """Render a window length as '3-hour', '90-minute' or '1-hour 30-minute'."""
    hours, mins = divmod(window_minutes, 60)
    if hours and mins:
        return f"{hours}-hour {mins}-minute"
    if hours:
        return f"{hours}-hour"
    return f"{mins}-minute"
