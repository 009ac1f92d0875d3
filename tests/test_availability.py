"""Tests for slot generation and busy-period filtering."""

from datetime import datetime, timedelta, timezone

import pytest

from booking_engine.integrations.base import CalendarEvent
from booking_engine.scheduling.availability import AvailabilityEngine, business_weekday
from booking_engine.scheduling.types import BusinessHours
from booking_engine.services.errors import ProviderError

from conftest import FixedClock, at


def starts(slots) -> list[str]:
    return [s.start_time.strftime("%H:%M") for s in slots]


class TestCandidateGeneration:
    def test_steps_by_duration_plus_buffer_and_ends_by_close(self, availability):
        slots = availability.generate_candidate_slots(at(0), at(23), 30)
        assert starts(slots) == [
            "09:00", "09:45", "10:30", "11:15", "12:00", "12:45",
            "13:30", "14:15", "15:00", "15:45", "16:30",
        ]
        assert all(s.end_time <= at(17) for s in slots)

    def test_weekend_has_no_slots(self, availability):
        # 2030-01-12 is a Saturday
        assert availability.generate_candidate_slots(at(0, day=12), at(23, day=12), 30) == []

    def test_boundaries_follow_business_timezone(self, availability):
        # British Summer Time: 09:00 London is 08:00 UTC
        start = datetime(2030, 7, 1, tzinfo=timezone.utc)
        slots = availability.generate_candidate_slots(start, start + timedelta(hours=23), 60)
        assert slots[0].start_time == datetime(2030, 7, 1, 8, 0, tzinfo=timezone.utc)
        assert slots[-1].end_time <= datetime(2030, 7, 1, 16, 0, tzinfo=timezone.utc)

    def test_slots_stay_inside_requested_range(self, availability):
        slots = availability.generate_candidate_slots(at(10), at(12), 30)
        assert starts(slots) == ["10:30", "11:15"]

    def test_range_ending_at_midnight_excludes_next_day(self, availability):
        slots = availability.generate_candidate_slots(at(0), at(0, day=8), 30)
        assert len(slots) == 11
        assert all(s.end_time <= at(0, day=8) for s in slots)

    def test_weekday_numbering_starts_on_sunday(self):
        assert business_weekday(at(0, day=6).date()) == 0
        assert business_weekday(at(0, day=7).date()) == 1


class TestAvailableSlots:
    @pytest.mark.asyncio
    async def test_busy_hour_blocks_buffered_neighbours(self, availability, calendar):
        calendar.add_busy(at(10), at(11))

        slots = await availability.get_available_slots(at(0), at(23), 30)

        assert starts(slots) == [
            "09:00", "11:15", "12:00", "12:45", "13:30",
            "14:15", "15:00", "15:45", "16:30",
        ]

    @pytest.mark.asyncio
    async def test_no_slot_buffer_overlaps_busy(self, availability, calendar, business_hours):
        calendar.add_busy(at(9, 20), at(9, 40))
        calendar.add_busy(at(12, 50), at(13, 5))
        calendar.add_busy(at(15, 0), at(16, 0))
        buffer = timedelta(minutes=business_hours.buffer_minutes)

        slots = await availability.get_available_slots(at(0), at(23), 15)
        busy = await availability.get_busy_slots(at(0), at(23))

        assert slots
        for slot in slots:
            for b in busy:
                assert not b.overlaps(slot.start_time - buffer, slot.end_time + buffer)

    @pytest.mark.asyncio
    async def test_advance_notice_bounds(self, calendar, calendar_guard, cache):
        clock = FixedClock(at(8, 30))
        hours = BusinessHours(min_advance_hours=1, max_advance_hours=5)
        engine = AvailabilityEngine(calendar, calendar_guard, cache, hours, clock=clock)

        slots = await engine.get_available_slots(at(0), at(23), 30)

        assert starts(slots) == ["09:45", "10:30", "11:15", "12:00", "12:45", "13:30"]

    @pytest.mark.asyncio
    async def test_business_hours_override(self, availability):
        short_day = BusinessHours(start_hour=14, end_hour=16, buffer_minutes=0,
                                  max_advance_hours=24 * 14)
        slots = await availability.get_available_slots(at(0), at(23), 60, short_day)
        assert starts(slots) == ["14:00", "15:00"]

    @pytest.mark.asyncio
    async def test_override_results_are_not_cached(self, availability, cache):
        short_day = BusinessHours(start_hour=14, end_hour=16, buffer_minutes=0,
                                  max_advance_hours=24 * 14)

        await availability.get_available_slots(at(0), at(23), 30, short_day)
        assert not any(key.startswith("slots:available:") for key in cache.keys())

        slots = await availability.get_available_slots(at(0), at(23), 30)
        assert len(slots) == 11

    @pytest.mark.asyncio
    async def test_next_day_busy_time_outside_range_is_ignored(self, availability, calendar):
        calendar.add_busy(at(0, day=8), at(23, day=8))

        slots = await availability.get_available_slots(at(0), at(0, day=8), 30)

        assert len(slots) == 11
        assert all(s.start_time.date() == at(0).date() for s in slots)

    @pytest.mark.asyncio
    async def test_results_are_cached(self, availability, calendar):
        await availability.get_available_slots(at(0), at(23), 30)
        await availability.get_available_slots(at(0), at(23), 30)
        assert calendar.list_calls == 1

    @pytest.mark.asyncio
    async def test_calendar_disabled_uses_business_hours_only(self, cache, business_hours, clock):
        engine = AvailabilityEngine(None, None, cache, business_hours, clock=clock)

        assert await engine.get_busy_slots(at(0), at(23)) == []
        slots = await engine.get_available_slots(at(0), at(23), 30)
        assert len(slots) == 11
        assert not engine.calendar_enabled

    @pytest.mark.asyncio
    async def test_provider_failure_propagates(self, availability, calendar):
        calendar.error = ProviderError("HTTP 403: forbidden", status_code=403)

        with pytest.raises(ProviderError):
            await availability.get_available_slots(at(0), at(23), 30)


class TestBusySlots:
    @pytest.mark.asyncio
    async def test_cancelled_events_are_ignored(self, availability, calendar):
        calendar.add_busy(at(10), at(11), status="cancelled")
        calendar.add_busy(at(14), at(15))

        busy = await availability.get_busy_slots(at(0), at(23))

        assert [(b.start_time, b.duration) for b in busy] == [(at(14), 60)]

    @pytest.mark.asyncio
    async def test_floating_times_use_event_timezone(self, availability, calendar):
        calendar.events.append(
            CalendarEvent(
                id="ny",
                start=datetime(2030, 1, 7, 10, 0),
                end=datetime(2030, 1, 7, 11, 0),
                start_timezone="America/New_York",
                end_timezone="America/New_York",
            )
        )
        calendar.events.append(
            CalendarEvent(id="local", start=datetime(2030, 1, 7, 12, 0), end=datetime(2030, 1, 7, 12, 30))
        )

        busy = await availability.get_busy_slots(at(0), at(23, 59))

        assert busy[0].start_time == at(15)
        assert busy[1].start_time == at(12)

    @pytest.mark.asyncio
    async def test_is_slot_available_uses_half_open_overlap(self, availability, calendar):
        calendar.add_busy(at(10), at(11))

        assert not await availability.is_slot_available(at(10, 30), 30)
        assert not await availability.is_slot_available(at(9, 45), 30)
        assert await availability.is_slot_available(at(11), 30)
        assert await availability.is_slot_available(at(9, 30), 30)
