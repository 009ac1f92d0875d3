"""
AvailabilityEngine - Bookable slots from business hours and calendar busy periods.

Candidate slots are generated per business day in the business timezone,
stepping by duration + buffer. A candidate is bookable when it lies inside
the advance-notice bounds and its buffer-expanded interval does not overlap
any busy period reported by the calendar provider.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable
from zoneinfo import ZoneInfo

from loguru import logger

from booking_engine.integrations.base import CalendarEvent, CalendarProvider
from booking_engine.scheduling.types import BusinessHours, TimeSlot, ensure_utc
from booking_engine.services.cache import CacheKeys, CacheManager, CacheTTL
from booking_engine.services.resilience import ProviderGuard


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def business_weekday(day: date) -> int:
    """Weekday number with 0=Sunday .. 6=Saturday."""
    return (day.weekday() + 1) % 7


class AvailabilityEngine:
    """
    Computes busy and available slots.

    Usage:
        engine = AvailabilityEngine(calendar, guard, cache, business_hours)
        slots = await engine.get_available_slots(start, end, duration=30)
    """

    def __init__(
        self,
        calendar: CalendarProvider | None,
        guard: ProviderGuard | None,
        cache: CacheManager,
        business_hours: BusinessHours,
        calendar_timezone: str = "Europe/London",
        clock: Callable[[], datetime] = _utcnow,
    ):
        if calendar is not None and guard is None:
            raise ValueError("A calendar provider needs a ProviderGuard")
        self.calendar = calendar
        self.guard = guard
        self.cache = cache
        self.business_hours = business_hours
        self.calendar_timezone = calendar_timezone
        self._clock = clock

    @property
    def calendar_enabled(self) -> bool:
        return self.calendar is not None

    async def get_busy_slots(self, start: datetime, end: datetime) -> list[TimeSlot]:
        """
        Busy periods from the calendar provider within [start, end].

        Returns an empty list when no calendar provider is configured.

        Raises:
            ProviderError: If the provider call fails or the circuit is open
        """
        if self.calendar is None or self.guard is None:
            return []

        key = CacheKeys.calendar_busy_slots(start, end)
        cached = await self._cache_get(key)
        if cached is not None:
            return cached

        calendar = self.calendar
        events = await self.guard.call(lambda: calendar.list_events(start, end))
        busy = [
            self._to_slot(event)
            for event in events
            if event.status.lower() != "cancelled"
        ]
        logger.info(
            f"Calendar reports {len(busy)} busy slots between "
            f"{start.isoformat()} and {end.isoformat()}"
        )

        await self._cache_set(key, busy, CacheTTL.CALENDAR_BUSY_SLOTS)
        return busy

    async def is_slot_available(self, start_time: datetime, duration: int) -> bool:
        """True if [start_time, start_time + duration) overlaps no busy period
        of the business day containing it."""
        tz = ZoneInfo(self.business_hours.timezone)
        local_day = ensure_utc(start_time).astimezone(tz).date()
        day_start = datetime.combine(local_day, time.min, tzinfo=tz)
        day_end = datetime.combine(local_day + timedelta(days=1), time.min, tzinfo=tz)

        busy = await self.get_busy_slots(
            day_start.astimezone(timezone.utc), day_end.astimezone(timezone.utc)
        )
        candidate = TimeSlot.starting_at(ensure_utc(start_time), duration)
        for slot in busy:
            if slot.overlaps(candidate.start_time, candidate.end_time):
                logger.info(
                    f"Slot {candidate.start_time.isoformat()} conflicts with busy "
                    f"{slot.start_time.isoformat()}-{slot.end_time.isoformat()}"
                )
                return False
        return True

    async def get_available_slots(
        self,
        start: datetime,
        end: datetime,
        duration: int,
        business_hours: BusinessHours | None = None,
    ) -> list[TimeSlot]:
        """
        Bookable slots of `duration` minutes between start and end.

        Results for the configured hours are cached. Calls passing a
        `business_hours` override are computed fresh and not cached.

        Raises:
            ProviderError: If busy periods cannot be fetched
        """
        hours = business_hours or self.business_hours
        use_cache = business_hours is None

        key = CacheKeys.available_slots(start, end, duration)
        if use_cache:
            cached = await self._cache_get(key)
            if cached is not None:
                return cached

        busy = await self.get_busy_slots(start, end)

        now = self._clock()
        min_start = now + timedelta(hours=hours.min_advance_hours)
        max_start = now + timedelta(hours=hours.max_advance_hours)
        buffer = timedelta(minutes=hours.buffer_minutes)

        available = []
        for slot in self.generate_candidate_slots(start, end, duration, hours):
            if slot.start_time < min_start or slot.start_time > max_start:
                continue
            padded_start = slot.start_time - buffer
            padded_end = slot.end_time + buffer
            if any(b.overlaps(padded_start, padded_end) for b in busy):
                continue
            available.append(slot)

        logger.info(
            f"{len(available)} available {duration}-minute slots between "
            f"{start.isoformat()} and {end.isoformat()}"
        )
        if use_cache:
            await self._cache_set(key, available, CacheTTL.AVAILABLE_SLOTS)
        return available

    def generate_candidate_slots(
        self,
        start: datetime,
        end: datetime,
        duration: int,
        business_hours: BusinessHours | None = None,
    ) -> list[TimeSlot]:
        """Every slot inside business hours that lies wholly within [start, end]."""
        hours = business_hours or self.business_hours
        tz = ZoneInfo(hours.timezone)
        step = timedelta(minutes=duration + hours.buffer_minutes)
        length = timedelta(minutes=duration)
        range_start = ensure_utc(start)
        range_end = ensure_utc(end)

        day = range_start.astimezone(tz).date()
        last_day = range_end.astimezone(tz).date()

        slots = []
        while day <= last_day:
            if business_weekday(day) in hours.days_of_week:
                cursor = datetime.combine(day, time(hour=hours.start_hour), tzinfo=tz)
                close = datetime.combine(day, time(hour=hours.end_hour), tzinfo=tz)
                while cursor + length <= close:
                    slot_start = cursor.astimezone(timezone.utc)
                    if range_start <= slot_start and slot_start + length <= range_end:
                        slots.append(TimeSlot.starting_at(slot_start, duration))
                    cursor += step
            day += timedelta(days=1)
        return slots

    def _to_slot(self, event: CalendarEvent) -> TimeSlot:
        start = self._localize(event.start, event.start_timezone)
        end = self._localize(event.end, event.end_timezone)
        duration = int((end - start).total_seconds() // 60)
        return TimeSlot(start_time=start, end_time=end, duration=duration)

    def _localize(self, value: datetime, tz_name: str | None) -> datetime:
        if value.tzinfo is None:
            value = value.replace(tzinfo=ZoneInfo(tz_name or self.calendar_timezone))
        return value.astimezone(timezone.utc)

    async def _cache_get(self, key: str) -> Any | None:
        try:
            return await self.cache.get(key)
        except Exception as e:
            logger.error(f"Cache read failed for {key}: {e}")
            return None

    async def _cache_set(self, key: str, value: Any, ttl: timedelta) -> None:
        try:
            await self.cache.set(key, value, ttl)
        except Exception as e:
            logger.error(f"Cache write failed for {key}: {e}")
