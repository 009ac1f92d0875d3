"""Shared test fixtures, provider fakes and helpers."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from booking_engine.datastore.engine import Database
from booking_engine.datastore.repositories import BookingRepository
from booking_engine.integrations.base import (
    CalendarEvent,
    CalendarProvider,
    Contact,
    ContactData,
    CRMProvider,
    EmailMessage,
    EventData,
    NotificationSender,
)
from booking_engine.scheduling.availability import AvailabilityEngine
from booking_engine.scheduling.booking_service import BookingService
from booking_engine.scheduling.calendar_sync import CalendarSyncService
from booking_engine.scheduling.crm_sync import CRMSyncService
from booking_engine.scheduling.frequency import FrequencyLimiter
from booking_engine.scheduling.notifications import NotificationService
from booking_engine.scheduling.types import BookingCreate, BusinessHours, TimeSlotRequest
from booking_engine.services.cache import CacheManager
from booking_engine.services.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from booking_engine.services.resilience import ProviderGuard
from booking_engine.services.retry import RetryConfig, RetryPolicy
from booking_engine.services.tasks import BackgroundTaskRunner

# Monday 2030-01-07; London is on UTC in January
NOW = datetime(2030, 1, 7, 7, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


async def no_sleep(_delay: float) -> None:
    return None


class FakeCalendar(CalendarProvider):
    service_id = "fake_calendar"

    def __init__(self):
        self.events: list[CalendarEvent] = []
        self.created: list[EventData] = []
        self.updated: list[tuple[str, EventData]] = []
        self.deleted: list[str] = []
        self.list_calls = 0
        self.error: Exception | None = None

    def add_busy(self, start: datetime, end: datetime, status: str = "confirmed") -> None:
        self.events.append(
            CalendarEvent(
                id=f"busy-{len(self.events)}", start=start, end=end, status=status
            )
        )

    async def list_events(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        self.list_calls += 1
        if self.error:
            raise self.error
        return list(self.events)

    async def create_event(self, data: EventData) -> CalendarEvent:
        if self.error:
            raise self.error
        self.created.append(data)
        return CalendarEvent(id=f"evt-{len(self.created)}", start=data.start, end=data.end)

    async def update_event(self, event_id: str, data: EventData) -> CalendarEvent:
        if self.error:
            raise self.error
        self.updated.append((event_id, data))
        return CalendarEvent(id=event_id, start=data.start, end=data.end)

    async def delete_event(self, event_id: str) -> None:
        if self.error:
            raise self.error
        self.deleted.append(event_id)


class FakeCRM(CRMProvider):
    service_id = "fake_crm"

    def __init__(self):
        self.contacts: dict[str, Contact] = {}
        self.updates: list[tuple[str, dict[str, str]]] = []
        self.searches = 0
        self.error: Exception | None = None

    async def upsert_contact(self, data: ContactData) -> Contact:
        if self.error:
            raise self.error
        contact = self.contacts.get(data.email) or Contact(
            id=f"contact-{len(self.contacts) + 1}", email=data.email
        )
        contact.properties.update(
            {"firstname": data.first_name, "lastname": data.last_name or ""}
        )
        self.contacts[data.email] = contact
        return contact

    async def search_contact_by_email(self, email: str) -> Contact | None:
        self.searches += 1
        if self.error:
            raise self.error
        return self.contacts.get(email)

    async def update_contact(self, contact_id: str, properties: dict[str, str]) -> None:
        if self.error:
            raise self.error
        self.updates.append((contact_id, properties))


class FakeSender(NotificationSender):
    def __init__(self, result: bool = True):
        self.result = result
        self.sent: list[EmailMessage] = []

    async def send(self, message: EmailMessage) -> bool:
        self.sent.append(message)
        return self.result


def make_booking_request(
    start_time: datetime,
    duration: int = 30,
    email: str = "a@x.com",
    **overrides,
) -> BookingCreate:
    fields = {
        "name": "Ada Lovelace",
        "company": "Analytical Engines",
        "email": email,
        "phone": "+44 20 7946 0958",
        "inquiry": "Process automation",
    }
    fields.update(overrides)
    return BookingCreate(
        **fields, time_slot=TimeSlotRequest(start_time=start_time, duration=duration)
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def business_hours() -> BusinessHours:
    return BusinessHours(
        days_of_week=frozenset({1, 2, 3, 4, 5}),
        start_hour=9,
        end_hour=17,
        timezone="Europe/London",
        buffer_minutes=15,
        min_advance_hours=1,
        max_advance_hours=24 * 14,
    )


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(RetryConfig(max_attempts=3), sleep=no_sleep)


@pytest_asyncio.fixture
async def database():
    db = Database("sqlite+aiosqlite://")
    await db.init()
    yield db
    await db.close()


@pytest.fixture
def repository(database, retry_policy) -> BookingRepository:
    return BookingRepository(database, retry=retry_policy)


@pytest.fixture
def cache() -> CacheManager:
    return CacheManager(max_size=100)


@pytest.fixture
def calendar() -> FakeCalendar:
    return FakeCalendar()


@pytest.fixture
def crm() -> FakeCRM:
    return FakeCRM()


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def calendar_guard(calendar, clock, retry_policy) -> ProviderGuard:
    breaker = CircuitBreaker(
        calendar.service_id,
        CircuitBreakerConfig(failure_threshold=3, reset_timeout=timedelta(seconds=60)),
        clock=clock,
    )
    return ProviderGuard(breaker, retry_policy)


@pytest.fixture
def crm_guard(crm, clock, retry_policy) -> ProviderGuard:
    breaker = CircuitBreaker(crm.service_id, clock=clock)
    return ProviderGuard(breaker, retry_policy)


@pytest.fixture
def availability(calendar, calendar_guard, cache, business_hours, clock) -> AvailabilityEngine:
    return AvailabilityEngine(
        calendar,
        calendar_guard,
        cache,
        business_hours,
        calendar_timezone="Europe/London",
        clock=clock,
    )


@pytest_asyncio.fixture
async def runner():
    task_runner = BackgroundTaskRunner(workers=2, queue_size=100)
    task_runner.start()
    yield task_runner
    await task_runner.stop()


@pytest.fixture
def service(
    repository,
    availability,
    cache,
    runner,
    calendar,
    calendar_guard,
    crm,
    crm_guard,
    sender,
    clock,
) -> BookingService:
    return BookingService(
        repository=repository,
        frequency=FrequencyLimiter(repository),
        availability=availability,
        cache=cache,
        runner=runner,
        calendar_sync=CalendarSyncService(
            calendar, calendar_guard, "Europe/London", admin_email="admin@example.com"
        ),
        crm_sync=CRMSyncService(crm, crm_guard, cache, clock=clock),
        notifications=NotificationService(sender, "admin@example.com", "Europe/London"),
        clock=clock,
    )


def at(hour: int, minute: int = 0, day: int = 7) -> datetime:
    """UTC instant on January `day`, 2030."""
    return datetime(2030, 1, day, hour, minute, tzinfo=timezone.utc)

