"""Tests for the booking ledger repository."""

import asyncio
from datetime import timedelta

import pytest

from booking_engine.exceptions import ConflictError
from booking_engine.scheduling.types import BookingFilters, BookingStatus

from conftest import at


def booking_data(start, duration=30, email="a@x.com", **extra):
    data = {
        "name": "Ada Lovelace",
        "company": "Analytical Engines",
        "email": email,
        "phone": None,
        "inquiry": "Automation",
        "start_time": start,
        "duration": duration,
    }
    data.update(extra)
    return data


class TestCreate:
    @pytest.mark.asyncio
    async def test_insert_returns_confirmed_utc_booking(self, repository):
        booking = await repository.create_if_slot_free(booking_data(at(10)))

        assert len(booking.id) == 32
        assert booking.status == BookingStatus.CONFIRMED
        assert booking.start_time == at(10)
        assert booking.end_time == at(10, 30)
        assert not booking.calendar_synced
        assert not booking.requires_manual_calendar_sync

        stored = await repository.find_by_id(booking.id)
        assert stored == booking

    @pytest.mark.asyncio
    async def test_overlap_is_rejected(self, repository):
        await repository.create_if_slot_free(booking_data(at(10), duration=60))

        with pytest.raises(ConflictError):
            await repository.create_if_slot_free(booking_data(at(10, 45), email="b@x.com"))
        with pytest.raises(ConflictError):
            await repository.create_if_slot_free(booking_data(at(9, 45), email="b@x.com"))

    @pytest.mark.asyncio
    async def test_conflict_reports_requested_window(self, repository):
        await repository.create_if_slot_free(booking_data(at(10), duration=60))

        with pytest.raises(ConflictError) as exc_info:
            await repository.create_if_slot_free(booking_data(at(10, 45), duration=15))

        payload = exc_info.value.to_dict()
        assert payload["error"] == "CONFLICT"
        assert payload["start_time"] == "2030-01-07T10:45:00+00:00"
        assert payload["duration"] == 15

    @pytest.mark.asyncio
    async def test_back_to_back_is_allowed(self, repository):
        await repository.create_if_slot_free(booking_data(at(10)))
        await repository.create_if_slot_free(booking_data(at(10, 30), email="b@x.com"))
        await repository.create_if_slot_free(booking_data(at(9, 30), email="c@x.com"))

    @pytest.mark.asyncio
    async def test_cancelled_booking_frees_slot(self, repository):
        first = await repository.create_if_slot_free(booking_data(at(10)))
        await repository.update(first.id, status=BookingStatus.CANCELLED)

        second = await repository.create_if_slot_free(booking_data(at(10), email="b@x.com"))
        assert second.status == BookingStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_concurrent_creates_for_same_slot_confirm_once(self, repository):
        results = await asyncio.gather(
            *(
                repository.create_if_slot_free(booking_data(at(14), email=f"{i}@x.com"))
                for i in range(5)
            ),
            return_exceptions=True,
        )

        confirmed = [r for r in results if not isinstance(r, Exception)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(confirmed) == 1
        assert len(conflicts) == 4
        assert len(await repository.find_overlapping(at(14), at(14, 30))) == 1


class TestUpdate:
    @pytest.mark.asyncio
    async def test_move_excludes_own_interval(self, repository):
        booking = await repository.create_if_slot_free(booking_data(at(10)))

        moved = await repository.update_if_slot_free(booking.id, at(10, 15), 30)

        assert moved.start_time == at(10, 15)
        assert moved.updated_at >= booking.updated_at

    @pytest.mark.asyncio
    async def test_move_onto_other_booking_conflicts(self, repository):
        booking = await repository.create_if_slot_free(booking_data(at(10)))
        await repository.create_if_slot_free(booking_data(at(11), email="b@x.com"))

        with pytest.raises(ConflictError):
            await repository.update_if_slot_free(booking.id, at(10, 45), 30)

        unchanged = await repository.find_by_id(booking.id)
        assert unchanged.start_time == at(10)

    @pytest.mark.asyncio
    async def test_unknown_booking_returns_none(self, repository):
        assert await repository.update("missing", inquiry="x") is None
        assert await repository.update_if_slot_free("missing", at(10), 30) is None
        assert await repository.find_by_id("missing") is None


class TestQueries:
    @pytest.mark.asyncio
    async def test_find_overlapping_ignores_cancelled_and_excluded(self, repository):
        a = await repository.create_if_slot_free(booking_data(at(10)))
        b = await repository.create_if_slot_free(booking_data(at(11), email="b@x.com"))
        c = await repository.create_if_slot_free(booking_data(at(12), email="c@x.com"))
        await repository.update(c.id, status=BookingStatus.CANCELLED)

        found = await repository.find_overlapping(at(10, 15), at(12, 15))
        assert {x.id for x in found} == {a.id, b.id}

        found = await repository.find_overlapping(at(10, 15), at(12, 15), exclude_id=a.id)
        assert [x.id for x in found] == [b.id]

    @pytest.mark.asyncio
    async def test_find_by_email_in_range_is_inclusive(self, repository):
        await repository.create_if_slot_free(booking_data(at(9)))
        await repository.create_if_slot_free(booking_data(at(12)))
        await repository.create_if_slot_free(booking_data(at(15)))

        found = await repository.find_by_email_in_range("A@x.com", at(9), at(12))
        assert sorted(b.start_time for b in found) == [at(9), at(12)]

    @pytest.mark.asyncio
    async def test_filters_and_pagination(self, repository):
        for i in range(5):
            await repository.create_if_slot_free(
                booking_data(at(9) + timedelta(hours=i), email=f"user{i}@x.com")
            )

        page = await repository.find_many(BookingFilters(page=1, limit=2))
        assert [b.start_time for b in page] == [at(13), at(12)]

        page = await repository.find_many(BookingFilters(page=3, limit=2))
        assert [b.start_time for b in page] == [at(9)]

        assert await repository.count(BookingFilters(email="USER1")) == 1
        assert await repository.count(BookingFilters(date_from=at(11), date_to=at(12))) == 2
        assert await repository.count(BookingFilters(status=BookingStatus.CANCELLED)) == 0

    @pytest.mark.asyncio
    async def test_find_requiring_manual_sync(self, repository):
        a = await repository.create_if_slot_free(booking_data(at(9)))
        await repository.create_if_slot_free(booking_data(at(10), email="b@x.com"))
        await repository.update(a.id, requires_manual_crm_sync=True)

        flagged = await repository.find_requiring_manual_sync()
        assert [b.id for b in flagged] == [a.id]
