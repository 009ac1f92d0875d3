"""Tests for the composition root."""

from datetime import datetime, timedelta, timezone

import pytest

from booking_engine.app import BookingApp
from booking_engine.scheduling.types import BusinessHours
from booking_engine.services.cache import CacheKeys
from booking_engine.services.errors import ProviderError
from booking_engine.services.retry import RetryConfig, RetryPolicy
from booking_engine.settings import Settings

from conftest import FakeCalendar, FakeCRM, FakeSender, make_booking_request, no_sleep


class BrokenCalendar(FakeCalendar):
    async def initialize(self) -> None:
        raise ProviderError("invalid credentials", self.service_id)


def make_settings(**env) -> Settings:
    return Settings.model_validate({"DATABASE_URL": "sqlite+aiosqlite://", **env})


def next_slot() -> datetime:
    start = datetime.now(timezone.utc) + timedelta(days=2)
    return start.replace(hour=10, minute=0, second=0, microsecond=0)


class TestBookingApp:
    @pytest.mark.asyncio
    async def test_lifecycle_and_health(self):
        calendar, crm, sender = FakeCalendar(), FakeCRM(), FakeSender()
        app = BookingApp(
            make_settings(),
            calendar=calendar,
            crm=crm,
            sender=sender,
            retry_policy=RetryPolicy(RetryConfig(max_attempts=1), sleep=no_sleep),
        )

        async with app:
            booking = await app.bookings.create_booking(make_booking_request(next_slot()))
            await app.runner.join()

            stored = await app.bookings.get_booking_by_id(booking.id)
            assert stored.calendar_synced and stored.crm_synced

            health = app.health()
            assert health["providers"] == {"calendar": True, "crm": True, "email": True}
            assert set(health["circuit_breakers"]) == {"fake_calendar", "fake_crm"}
            assert health["open_circuits"] == []
            assert health["background_tasks"]["completed"] == 3

    @pytest.mark.asyncio
    async def test_providers_disabled_by_default(self):
        async with BookingApp(make_settings()) as app:
            assert app.calendar is None
            assert app.crm is None
            assert app.bookings.calendar_sync is None
            assert app.health()["providers"] == {"calendar": False, "crm": False, "email": False}

            booking = await app.bookings.create_booking(make_booking_request(next_slot()))
            await app.runner.join()
            stored = await app.bookings.get_booking_by_id(booking.id)
            assert not stored.requires_manual_calendar_sync
            assert stored.confirmation_sent

    @pytest.mark.asyncio
    async def test_failed_provider_initialization_disables_it(self):
        async with BookingApp(make_settings(), calendar=BrokenCalendar(), crm=FakeCRM()) as app:
            assert app.calendar is None
            assert app.availability.calendar is None
            assert app.bookings.calendar_sync is None
            assert app.crm is not None

    @pytest.mark.asyncio
    async def test_reload_business_hours_drops_slot_cache(self):
        async with BookingApp(make_settings()) as app:
            await app.cache.set(CacheKeys.available_slots(next_slot(), next_slot(), 30), [])
            hours = BusinessHours(start_hour=10, end_hour=14)

            await app.reload_business_hours(hours)

            assert app.availability.business_hours == hours
            assert app.cache.keys() == []

    @pytest.mark.asyncio
    async def test_unreadable_service_account_key_disables_calendar(self, tmp_path):
        settings = make_settings(
            GOOGLE_CALENDAR_ENABLED="true",
            GOOGLE_SERVICE_ACCOUNT_KEY_PATH=str(tmp_path / "missing-key.json"),
        )
        async with BookingApp(settings) as app:
            assert app.calendar is None
            assert app.health()["providers"]["calendar"] is False
