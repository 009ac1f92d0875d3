"""
BookingApp - Wires settings, storage, providers and the booking service.

Providers are enabled by settings unless explicit instances are passed in.
A provider whose initialize() fails is disabled for the process lifetime
and the engine runs without it.
"""

from datetime import timedelta
from typing import Any

from loguru import logger

from booking_engine.datastore.engine import Database
from booking_engine.datastore.repositories import BookingRepository
from booking_engine.integrations.base import CalendarProvider, CRMProvider, NotificationSender
from booking_engine.integrations.email import EmailApiSender, LogOnlySender
from booking_engine.integrations.google_auth import (
    ServiceAccountTokenSource,
    StaticTokenSource,
    TokenSource,
)
from booking_engine.integrations.google_calendar import GoogleCalendarClient
from booking_engine.integrations.hubspot import HubSpotClient
from booking_engine.scheduling.availability import AvailabilityEngine
from booking_engine.scheduling.booking_service import BookingService
from booking_engine.scheduling.calendar_sync import CalendarSyncService
from booking_engine.scheduling.crm_sync import CRMSyncService
from booking_engine.scheduling.frequency import FrequencyLimiter
from booking_engine.scheduling.notifications import NotificationService
from booking_engine.scheduling.types import BusinessHours
from booking_engine.services.cache import CacheKeys, CacheManager
from booking_engine.services.circuit_breaker import (
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
)
from booking_engine.services.client import ServiceClient
from booking_engine.services.resilience import ProviderGuard
from booking_engine.services.retry import RetryConfig, RetryPolicy
from booking_engine.services.tasks import BackgroundTaskRunner
from booking_engine.settings import Settings


class BookingApp:
    """
    Usage:
        async with BookingApp(global_settings) as app:
            booking = await app.bookings.create_booking(data)
    """

    def __init__(
        self,
        settings: Settings,
        *,
        calendar: CalendarProvider | None = None,
        crm: CRMProvider | None = None,
        sender: NotificationSender | None = None,
        retry_policy: RetryPolicy | None = None,
        service_client: ServiceClient | None = None,
    ):
        self.settings = settings
        self.http = service_client or ServiceClient()

        self.database = Database(settings.database_url, echo=settings.database_echo)
        self.repository = BookingRepository(self.database, retry=retry_policy)
        self.cache = CacheManager(max_size=settings.cache_max_size, debug=settings.cache_debug)
        self.runner = BackgroundTaskRunner(
            workers=settings.sync_workers, queue_size=settings.sync_queue_size
        )
        self.breakers = CircuitBreakerRegistry(
            CircuitBreakerConfig(
                failure_threshold=settings.circuit_failure_threshold,
                reset_timeout=timedelta(seconds=settings.circuit_reset_timeout_seconds),
                monitoring_period=timedelta(
                    seconds=settings.circuit_monitoring_period_seconds
                ),
            )
        )

        self.calendar = calendar or self._build_calendar()
        self.crm = crm or self._build_crm()
        self.sender = sender or self._build_sender()

        calendar_retry = retry_policy or RetryPolicy(
            RetryConfig(
                max_attempts=settings.google_calendar_retry_attempts,
                initial_delay=settings.google_calendar_retry_delay_ms / 1000,
            )
        )
        crm_retry = retry_policy or RetryPolicy()

        self.calendar_guard = (
            ProviderGuard(self.breakers.get(self.calendar.service_id), calendar_retry)
            if self.calendar
            else None
        )
        self.crm_guard = (
            ProviderGuard(self.breakers.get(self.crm.service_id), crm_retry)
            if self.crm
            else None
        )

        business_hours = settings.business_hours()
        self.availability = AvailabilityEngine(
            self.calendar,
            self.calendar_guard,
            self.cache,
            business_hours,
            calendar_timezone=settings.google_calendar_timezone,
        )
        self.bookings = BookingService(
            repository=self.repository,
            frequency=FrequencyLimiter(self.repository, settings.parsed_frequency_rules()),
            availability=self.availability,
            cache=self.cache,
            runner=self.runner,
            calendar_sync=(
                CalendarSyncService(
                    self.calendar,
                    self.calendar_guard,
                    business_hours.timezone,
                    admin_email=settings.admin_email,
                )
                if self.calendar
                else None
            ),
            crm_sync=CRMSyncService(self.crm, self.crm_guard, self.cache) if self.crm else None,
            notifications=NotificationService(
                self.sender, settings.admin_email, business_hours.timezone
            ),
        )

    def _build_calendar(self) -> CalendarProvider | None:
        if not self.settings.google_calendar_enabled:
            logger.info("Google Calendar disabled")
            return None
        if self.settings.google_service_account_key_path:
            tokens: TokenSource = ServiceAccountTokenSource(
                self.settings.google_service_account_key_path,
                subject=self.settings.google_calendar_subject or None,
            )
        else:
            tokens = StaticTokenSource(self.settings.google_calendar_access_token)
        return GoogleCalendarClient(
            self.http,
            calendar_id=self.settings.google_calendar_id,
            token_source=tokens,
            default_timezone=self.settings.google_calendar_timezone,
        )

    def _build_crm(self) -> CRMProvider | None:
        if not self.settings.hubspot_enabled:
            logger.info("HubSpot CRM disabled")
            return None
        return HubSpotClient(self.http, access_token=self.settings.hubspot_access_token)

    def _build_sender(self) -> NotificationSender:
        if not self.settings.email_enabled:
            logger.info("Email delivery disabled, notifications will only be logged")
            return LogOnlySender()
        return EmailApiSender(
            self.http,
            api_url=self.settings.email_api_url,
            api_key=self.settings.email_api_key,
            sender=self.settings.email_from,
        )

    async def initialize(self) -> None:
        logger.info("Initializing database...")
        await self.database.init()

        if self.calendar:
            try:
                await self.calendar.initialize()
            except Exception as e:
                logger.error(f"Calendar provider unavailable, continuing without it: {e}")
                self._disable_calendar()

        if self.crm:
            try:
                await self.crm.initialize()
            except Exception as e:
                logger.error(f"CRM provider unavailable, continuing without it: {e}")
                self._disable_crm()

        self.runner.start()
        logger.info("Booking engine ready")

    def _disable_calendar(self) -> None:
        self.calendar = None
        self.calendar_guard = None
        self.availability.calendar = None
        self.availability.guard = None
        self.bookings.calendar_sync = None

    def _disable_crm(self) -> None:
        self.crm = None
        self.crm_guard = None
        self.bookings.crm_sync = None

    async def close(self) -> None:
        logger.info("Stopping background tasks...")
        await self.runner.stop(drain=True)

        if self.calendar:
            await self.calendar.close()
        if self.crm:
            await self.crm.close()
        await self.sender.close()
        await self.http.close()

        logger.info("Closing database connections...")
        await self.database.close()

    async def __aenter__(self) -> "BookingApp":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def reload_business_hours(self, business_hours: BusinessHours) -> None:
        """Swap the active business hours and drop computed slots."""
        self.availability.business_hours = business_hours
        await self.cache.delete_by_pattern(CacheKeys.SLOTS_PREFIX)
        logger.info(
            f"Business hours reloaded: days={sorted(business_hours.days_of_week)} "
            f"{business_hours.start_hour}:00-{business_hours.end_hour}:00 "
            f"{business_hours.timezone}"
        )

    def health(self) -> dict[str, Any]:
        return {
            "providers": {
                "calendar": self.calendar is not None,
                "crm": self.crm is not None,
                "email": not isinstance(self.sender, LogOnlySender),
            },
            "circuit_breakers": self.breakers.get_all_status(),
            "open_circuits": self.breakers.get_open_circuits(),
            "cache": self.cache.get_stats().to_dict(),
            "background_tasks": self.runner.get_stats().to_dict(),
        }
