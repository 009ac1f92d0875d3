"""
FrequencyLimiter - Per-requester booking limits by duration.

A rule {duration, max_bookings, window_minutes} allows at most
max_bookings non-cancelled bookings of that duration whose start times lie
within window_minutes of the candidate start, in either direction.
"""

from datetime import datetime, timedelta

from loguru import logger

from booking_engine.datastore.repositories import BookingRepository
from booking_engine.exceptions import FrequencyLimitError
from booking_engine.scheduling.types import BookingStatus, FrequencyRule

DEFAULT_FREQUENCY_RULES = (
    FrequencyRule(duration=15, max_bookings=2, window_minutes=90),
    FrequencyRule(duration=30, max_bookings=2, window_minutes=180),
    FrequencyRule(duration=45, max_bookings=2, window_minutes=300),
    FrequencyRule(duration=60, max_bookings=2, window_minutes=720),
)


class FrequencyLimiter:
    """Checks a booking attempt against the rule for its duration."""

    def __init__(
        self,
        repository: BookingRepository,
        rules: list[FrequencyRule] | tuple[FrequencyRule, ...] = DEFAULT_FREQUENCY_RULES,
    ):
        self.repository = repository
        self.rules = {rule.duration: rule for rule in rules}

    def get_rule(self, duration: int) -> FrequencyRule | None:
        return self.rules.get(duration)

    async def check(self, email: str, start_time: datetime, duration: int) -> None:
        """
        Raise if `email` already holds the maximum number of bookings of
        `duration` around `start_time`.

        Raises:
            FrequencyLimitError: If the rule for this duration is exhausted
        """
        rule = self.get_rule(duration)
        if rule is None:
            logger.warning(f"No frequency rule for {duration}-minute bookings, not enforcing")
            return

        window = timedelta(minutes=rule.window_minutes)
        existing = await self.repository.find_by_email_in_range(
            email, start_time - window, start_time + window
        )
        count = sum(
            1
            for booking in existing
            if booking.duration == duration and booking.status != BookingStatus.CANCELLED
        )

        logger.debug(
            f"Frequency check for {email}: {count}/{rule.max_bookings} "
            f"{duration}-minute bookings within {rule.window_minutes} min"
        )
        if count >= rule.max_bookings:
            logger.warning(
                f"Frequency limit hit for {email}: {count} {duration}-minute bookings "
                f"around {start_time.isoformat()}"
            )
            raise FrequencyLimitError(rule.max_bookings, rule.window_minutes, duration)

    async def count_for_email(self, email: str, days: int) -> int:
        """Non-cancelled bookings for `email` created in the last `days` days."""
        return await self.repository.count_by_email_in_window(email, days)
