"""
CalendarSyncService - Mirrors bookings as events on the calendar provider.
"""

from loguru import logger

from booking_engine.integrations.base import CalendarProvider, EventData
from booking_engine.scheduling.types import Booking
from booking_engine.services.resilience import ProviderGuard


class CalendarSyncService:
    """Creates, replaces and deletes the calendar event backing a booking."""

    def __init__(
        self,
        calendar: CalendarProvider,
        guard: ProviderGuard,
        timezone: str,
        admin_email: str | None = None,
    ):
        self.calendar = calendar
        self.guard = guard
        self.timezone = timezone
        self.admin_email = admin_email

    def build_event(self, booking: Booking) -> EventData:
        description = (
            "Consultation Booking\n\n"
            f"Client: {booking.name}\n"
            f"Company: {booking.company}\n"
            f"Email: {booking.email}\n"
            f"Phone: {booking.phone or 'N/A'}\n\n"
            f"Inquiry:\n{booking.inquiry}\n\n"
            f"Booking ID: {booking.id}"
        )
        attendees = [booking.email]
        if self.admin_email and self.admin_email.lower() != booking.email.lower():
            attendees.append(self.admin_email)

        return EventData(
            summary=f"Consultation - {booking.company}",
            description=description,
            start=booking.start_time,
            end=booking.end_time,
            timezone=self.timezone,
            attendees=attendees,
        )

    async def create_booking_event(self, booking: Booking) -> str:
        """Create the event and return its id."""
        data = self.build_event(booking)
        event = await self.guard.call(lambda: self.calendar.create_event(data))
        logger.info(f"Calendar event {event.id} created for booking {booking.id}")
        return event.id

    async def update_booking_event(self, event_id: str, booking: Booking) -> None:
        data = self.build_event(booking)
        await self.guard.call(lambda: self.calendar.update_event(event_id, data))
        logger.info(f"Calendar event {event_id} updated for booking {booking.id}")

    async def delete_booking_event(self, event_id: str) -> None:
        await self.guard.call(lambda: self.calendar.delete_event(event_id))
        logger.info(f"Calendar event {event_id} deleted")
