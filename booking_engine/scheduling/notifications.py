"""
NotificationService - Plain-text booking emails for the requester and admin.

Every method reports delivery as a bool and never raises.
"""

from zoneinfo import ZoneInfo

from loguru import logger

from booking_engine.integrations.base import EmailMessage, NotificationSender
from booking_engine.scheduling.types import Booking


class NotificationService:
    def __init__(self, sender: NotificationSender, admin_email: str, timezone: str):
        self.sender = sender
        self.admin_email = admin_email
        self.timezone = timezone

    def format_time(self, booking: Booking) -> str:
        local = booking.start_time.astimezone(ZoneInfo(self.timezone))
        return local.strftime("%A, %d %B %Y at %H:%M %Z")

    def _summary(self, booking: Booking) -> str:
        return (
            f"When: {self.format_time(booking)}\n"
            f"Duration: {booking.duration} minutes\n"
            f"Name: {booking.name}\n"
            f"Company: {booking.company}\n"
            f"Email: {booking.email}\n"
            f"Phone: {booking.phone or 'N/A'}\n"
            f"Inquiry: {booking.inquiry}\n"
            f"Booking ID: {booking.id}\n"
        )

    async def send_booking_confirmation(self, booking: Booking) -> bool:
        return await self._deliver(
            EmailMessage(
                to=booking.email,
                subject=f"Booking Confirmation - {self.format_time(booking)}",
                text=f"Hi {booking.name},\n\nYour consultation is confirmed.\n\n"
                + self._summary(booking),
            )
        )

    async def send_admin_notification(self, booking: Booking) -> bool:
        return await self._deliver(
            EmailMessage(
                to=self.admin_email,
                subject=f"New Booking: {booking.name} - {booking.company}",
                text="A new consultation has been booked.\n\n" + self._summary(booking),
            )
        )

    async def send_booking_update(self, booking: Booking) -> bool:
        return await self._deliver(
            EmailMessage(
                to=booking.email,
                subject=f"Booking Updated - {self.format_time(booking)}",
                text=f"Hi {booking.name},\n\nYour consultation has been updated.\n\n"
                + self._summary(booking),
            )
        )

    async def send_cancellation(self, booking: Booking) -> bool:
        return await self._deliver(
            EmailMessage(
                to=booking.email,
                subject=f"Booking Cancelled - {self.format_time(booking)}",
                text=f"Hi {booking.name},\n\nYour consultation has been cancelled.\n\n"
                + self._summary(booking),
            )
        )

    async def _deliver(self, message: EmailMessage) -> bool:
        try:
            sent = await self.sender.send(message)
        except Exception as e:
            logger.error(f"Notification '{message.subject}' to {message.to} failed: {e}")
            return False
        if not sent:
            logger.warning(f"Notification '{message.subject}' to {message.to} not delivered")
        return sent
