"""
BookingService - Orchestrates booking creation, changes and cancellation.

Request path: validate -> frequency check -> calendar check (best effort)
-> serialized local conflict check + insert -> cache invalidation.
Calendar sync, CRM sync and notifications are then queued on the
background runner; their failures only set the manual-sync flags.
"""

import asyncio
import math
import re
import zlib
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from loguru import logger

from booking_engine.datastore.repositories import SLOT_TAKEN_MESSAGE, BookingRepository
from booking_engine.exceptions import ConflictError, NotFoundError, ValidationError
from booking_engine.scheduling.availability import AvailabilityEngine
from booking_engine.scheduling.calendar_sync import CalendarSyncService
from booking_engine.scheduling.crm_sync import CRMSyncService
from booking_engine.scheduling.frequency import FrequencyLimiter
from booking_engine.scheduling.notifications import NotificationService
from booking_engine.scheduling.types import (
    ALLOWED_DURATIONS,
    ALLOWED_TRANSITIONS,
    Booking,
    BookingCreate,
    BookingFilters,
    BookingStatus,
    BookingUpdate,
    PaginatedBookings,
    Pagination,
    TimeSlot,
    ensure_utc,
)
from booking_engine.services.cache import CacheKeys, CacheManager
from booking_engine.services.errors import ServiceError
from booking_engine.services.tasks import BackgroundTaskRunner

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^\+?\d{10,15}$")
PHONE_SEPARATORS = re.compile(r"[\s\-\(\)\.]")

DURATION_MESSAGE = "Duration must be 15, 30, 45, or 60 minutes"
FUTURE_MESSAGE = "Start time must be in the future"

SYNC_LOCK_STRIPES = 64


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_time_slot(start_time: datetime, duration: int, now: datetime) -> list[str]:
    errors = []
    if ensure_utc(start_time) <= now:
        errors.append(FUTURE_MESSAGE)
    if duration not in ALLOWED_DURATIONS:
        errors.append(DURATION_MESSAGE)
    return errors


def validate_booking_input(data: BookingCreate, now: datetime) -> list[str]:
    """Every violated field rule, in field order."""
    errors = []
    if not data.name.strip():
        errors.append("Name is required")
    if not data.company.strip():
        errors.append("Company is required")
    if not data.email.strip():
        errors.append("Email is required")
    elif not EMAIL_PATTERN.match(data.email.strip()):
        errors.append("Invalid email format")
    if not data.inquiry.strip():
        errors.append("Inquiry is required")
    if data.phone and not PHONE_PATTERN.match(PHONE_SEPARATORS.sub("", data.phone)):
        errors.append("Invalid phone format")
    errors.extend(
        validate_time_slot(data.time_slot.start_time, data.time_slot.duration, now)
    )
    return errors


class BookingService:
    """
    Booking orchestrator.

    Calendar, CRM and notification collaborators are optional; a missing
    one means that provider is disabled and its sync flags stay false.
    """

    def __init__(
        self,
        repository: BookingRepository,
        frequency: FrequencyLimiter,
        availability: AvailabilityEngine,
        cache: CacheManager,
        runner: BackgroundTaskRunner,
        calendar_sync: CalendarSyncService | None = None,
        crm_sync: CRMSyncService | None = None,
        notifications: NotificationService | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.repository = repository
        self.frequency = frequency
        self.availability = availability
        self.cache = cache
        self.runner = runner
        self.calendar_sync = calendar_sync
        self.crm_sync = crm_sync
        self.notifications = notifications
        self._clock = clock
        self._calendar_locks = [asyncio.Lock() for _ in range(SYNC_LOCK_STRIPES)]
        self._crm_locks = [asyncio.Lock() for _ in range(SYNC_LOCK_STRIPES)]

    # ------------------------------------------------------------------
    # Orchestrator operations
    # ------------------------------------------------------------------

    async def create_booking(self, data: BookingCreate) -> Booking:
        """
        Validate, reserve and confirm a booking.

        Raises:
            ValidationError: If any field rule is violated
            FrequencyLimitError: If the requester's limit for the duration is reached
            ConflictError: If the interval is already taken
        """
        errors = validate_booking_input(data, self._clock())
        if errors:
            logger.warning(f"Booking rejected by validation: {errors}")
            raise ValidationError("Validation failed", details=errors)

        email = data.email.strip()
        start = ensure_utc(data.time_slot.start_time)
        duration = data.time_slot.duration

        await self.frequency.check(email, start, duration)

        if self.availability.calendar_enabled:
            try:
                available = await self.availability.is_slot_available(start, duration)
            except ServiceError as e:
                logger.warning(
                    f"Calendar availability check failed, relying on local ledger: {e}"
                )
            else:
                if not available:
                    raise ConflictError(SLOT_TAKEN_MESSAGE, start, duration)

        booking = await self.repository.create_if_slot_free(
            {
                "name": data.name.strip(),
                "company": data.company.strip(),
                "email": email,
                "phone": data.phone.strip() if data.phone else None,
                "inquiry": data.inquiry.strip(),
                "start_time": start,
                "duration": duration,
            }
        )
        logger.info(f"Booking {booking.id} confirmed for {start.isoformat()}")

        await self.invalidate_caches()
        await self._schedule_created(booking)
        return booking

    async def update_booking(self, booking_id: str, data: BookingUpdate) -> Booking:
        """
        Change the inquiry and/or time slot of an active booking.

        Raises:
            NotFoundError: If the booking does not exist
            ConflictError: If the booking is cancelled or the new slot is taken
            ValidationError: If the new values are invalid
        """
        existing = await self.get_booking_by_id(booking_id)
        if existing.status == BookingStatus.CANCELLED:
            raise ConflictError("Cannot update a cancelled booking")

        errors = []
        fields: dict[str, Any] = {}
        if data.inquiry is not None:
            if not data.inquiry.strip():
                errors.append("Inquiry is required")
            fields["inquiry"] = data.inquiry.strip()
        if data.time_slot is not None:
            errors.extend(
                validate_time_slot(
                    data.time_slot.start_time, data.time_slot.duration, self._clock()
                )
            )
        if errors:
            raise ValidationError("Validation failed", details=errors)

        if data.time_slot is not None:
            updated = await self.repository.update_if_slot_free(
                booking_id,
                ensure_utc(data.time_slot.start_time),
                data.time_slot.duration,
                **fields,
            )
        elif fields:
            updated = await self.repository.update(booking_id, **fields)
        else:
            return existing

        if updated is None:
            raise NotFoundError("Booking")
        logger.info(f"Booking {booking_id} updated")

        await self.invalidate_caches()
        await self._schedule_updated(updated)
        return updated

    async def update_booking_status(self, booking_id: str, status: BookingStatus) -> Booking:
        """
        Move a booking along its lifecycle. Same-status updates are no-ops.

        Raises:
            NotFoundError: If the booking does not exist
            ValidationError: If the transition is not allowed
        """
        existing = await self.get_booking_by_id(booking_id)
        if existing.status == status:
            return existing

        if status not in ALLOWED_TRANSITIONS[existing.status]:
            message = (
                f"Invalid status transition from {existing.status.value} to {status.value}"
            )
            raise ValidationError(message, details=[message])

        updated = await self.repository.update(booking_id, status=status)
        if updated is None:
            raise NotFoundError("Booking")
        logger.info(f"Booking {booking_id} {existing.status.value} -> {status.value}")

        await self.invalidate_caches()
        return updated

    async def cancel_booking(self, booking_id: str) -> Booking:
        """
        Cancel a booking. Cancelling a cancelled booking returns it unchanged.

        Raises:
            NotFoundError: If the booking does not exist
        """
        existing = await self.get_booking_by_id(booking_id)
        if existing.status == BookingStatus.CANCELLED:
            logger.info(f"Booking {booking_id} already cancelled")
            return existing

        cancelled = await self.update_booking_status(booking_id, BookingStatus.CANCELLED)
        await self._schedule_cancelled(cancelled)
        return cancelled

    async def get_booking_by_id(self, booking_id: str) -> Booking:
        booking = await self.repository.find_by_id(booking_id)
        if booking is None:
            raise NotFoundError("Booking")
        return booking

    async def get_bookings(self, filters: BookingFilters | None = None) -> PaginatedBookings:
        filters = filters or BookingFilters()
        total = await self.repository.count(filters)
        data = await self.repository.find_many(filters)
        return PaginatedBookings(
            data=data,
            pagination=Pagination(
                page=filters.page,
                limit=filters.limit,
                total=total,
                total_pages=math.ceil(total / filters.limit),
            ),
        )

    async def get_available_time_slots(
        self, start: datetime, end: datetime, duration: int
    ) -> list[TimeSlot]:
        """
        Slots free both on the calendar and in the local ledger.

        Raises:
            ValidationError: If the range or duration is invalid
            ProviderError: If calendar busy periods cannot be fetched
        """
        errors = []
        if duration not in ALLOWED_DURATIONS:
            errors.append(DURATION_MESSAGE)
        if ensure_utc(end) <= ensure_utc(start):
            errors.append("End date must be after start date")
        if errors:
            raise ValidationError("Validation failed", details=errors)

        slots = await self.availability.get_available_slots(start, end, duration)
        if not slots:
            return []

        booked = await self.repository.find_overlapping(
            min(s.start_time for s in slots), max(s.end_time for s in slots)
        )
        free = [
            slot
            for slot in slots
            if not any(slot.overlaps(b.start_time, b.end_time) for b in booked)
        ]
        if len(free) != len(slots):
            logger.debug(f"{len(slots) - len(free)} slots removed by local bookings")
        return free

    list_available_slots = get_available_time_slots

    async def get_bookings_requiring_manual_sync(self) -> list[Booking]:
        return await self.repository.find_requiring_manual_sync()

    async def retry_manual_sync(self, booking_id: str) -> Booking:
        """Queue the calendar and/or CRM sync again for a flagged booking."""
        booking = await self.get_booking_by_id(booking_id)

        if booking.requires_manual_calendar_sync and self.calendar_sync:
            await self._submit_calendar("calendar_resync", booking_id)

        if booking.requires_manual_crm_sync and self.crm_sync:
            if booking.crm_contact_id:
                await self._submit_crm("crm_status", booking_id, self._push_crm_status)
            else:
                await self._submit_crm("crm_sync", booking_id, self._create_crm)

        if not (booking.requires_manual_calendar_sync or booking.requires_manual_crm_sync):
            logger.info(f"Booking {booking_id} has nothing to re-sync")
        return booking

    async def invalidate_caches(self) -> None:
        for prefix in (CacheKeys.CALENDAR_PREFIX, CacheKeys.SLOTS_PREFIX):
            try:
                await self.cache.delete_by_pattern(prefix)
            except Exception as e:
                logger.error(f"Cache invalidation failed for '{prefix}': {e}")

    # ------------------------------------------------------------------
    # Background scheduling
    # ------------------------------------------------------------------

    async def _schedule_created(self, booking: Booking) -> None:
        if self.calendar_sync:
            await self._submit_calendar("calendar_sync", booking.id)
        if self.crm_sync:
            await self._submit_crm("crm_sync", booking.id, self._create_crm)
        if self.notifications:
            self.runner.submit(
                f"notify_created:{booking.id}", lambda: self._notify_created(booking)
            )

    async def _schedule_updated(self, booking: Booking) -> None:
        if self.calendar_sync:
            await self._submit_calendar("calendar_update", booking.id)
        if self.crm_sync:
            await self._submit_crm("crm_status", booking.id, self._push_crm_status)
        if self.notifications:
            notifications = self.notifications
            self.runner.submit(
                f"notify_updated:{booking.id}",
                lambda: notifications.send_booking_update(booking),
            )

    async def _schedule_cancelled(self, booking: Booking) -> None:
        if self.calendar_sync:
            await self._submit_calendar("calendar_delete", booking.id)
        if self.crm_sync:
            await self._submit_crm("crm_status", booking.id, self._push_crm_status)
        if self.notifications:
            notifications = self.notifications
            self.runner.submit(
                f"notify_cancelled:{booking.id}",
                lambda: notifications.send_cancellation(booking),
            )

    async def _submit_calendar(self, name: str, booking_id: str) -> None:
        if not self.runner.submit(
            f"{name}:{booking_id}", lambda: self._sync_calendar(booking_id)
        ):
            await self._flag_calendar_manual(booking_id)

    async def _submit_crm(
        self, name: str, booking_id: str, job: Callable[[str], Awaitable[None]]
    ) -> None:
        if not self.runner.submit(f"{name}:{booking_id}", lambda: job(booking_id)):
            await self._flag_crm_manual(booking_id)

    @staticmethod
    def _sync_lock(locks: list[asyncio.Lock], booking_id: str) -> asyncio.Lock:
        return locks[zlib.crc32(booking_id.encode()) % len(locks)]

    # ------------------------------------------------------------------
    # Background jobs
    #
    # Jobs carry only the booking id and read the stored booking when they
    # run, under a per-booking lock, so a job queued before a move or a
    # cancellation acts on the booking as it is now.
    # ------------------------------------------------------------------

    async def _sync_calendar(self, booking_id: str) -> None:
        """Make the calendar event match the stored booking."""
        async with self._sync_lock(self._calendar_locks, booking_id):
            booking = await self.repository.find_by_id(booking_id)
            if booking is None:
                logger.warning(f"Booking {booking_id} vanished before calendar sync")
                return

            if booking.status == BookingStatus.CANCELLED:
                await self._remove_calendar_event(booking)
                return

            try:
                if booking.calendar_event_id:
                    await self.calendar_sync.update_booking_event(
                        booking.calendar_event_id, booking
                    )
                    event_id = booking.calendar_event_id
                else:
                    event_id = await self.calendar_sync.create_booking_event(booking)
            except Exception as e:
                logger.error(f"Calendar sync failed for booking {booking_id}: {e}")
                await self._flag_calendar_manual(booking_id)
                return

            await self.repository.update(
                booking_id,
                calendar_event_id=event_id,
                calendar_synced=True,
                requires_manual_calendar_sync=False,
            )

    async def _remove_calendar_event(self, booking: Booking) -> None:
        if not booking.calendar_event_id:
            if booking.requires_manual_calendar_sync:
                await self.repository.update(booking.id, requires_manual_calendar_sync=False)
            logger.info(f"Booking {booking.id} cancelled before its event existed")
            return

        try:
            await self.calendar_sync.delete_booking_event(booking.calendar_event_id)
        except Exception as e:
            logger.error(f"Calendar delete failed for booking {booking.id}: {e}")
            await self._flag_calendar_manual(booking.id)
            return
        await self.repository.update(
            booking.id,
            calendar_event_id=None,
            calendar_synced=True,
            requires_manual_calendar_sync=False,
        )

    async def _create_crm(self, booking_id: str) -> None:
        async with self._sync_lock(self._crm_locks, booking_id):
            booking = await self.repository.find_by_id(booking_id)
            if booking is None:
                return
            try:
                contact_id = await self.crm_sync.sync_booking_to_contact(booking)
            except Exception as e:
                logger.error(f"CRM sync failed for booking {booking_id}: {e}")
                await self._flag_crm_manual(booking_id)
                return
            await self.repository.update(
                booking_id,
                crm_contact_id=contact_id,
                crm_synced=True,
                requires_manual_crm_sync=False,
            )

    async def _push_crm_status(self, booking_id: str) -> None:
        async with self._sync_lock(self._crm_locks, booking_id):
            booking = await self.repository.find_by_id(booking_id)
            if booking is None:
                return
            try:
                await self.crm_sync.update_contact_booking_status(
                    booking.email, booking.id, booking.status
                )
            except Exception as e:
                logger.error(f"CRM status update failed for booking {booking_id}: {e}")
                await self._flag_crm_manual(booking_id)
                return
            await self.repository.update(
                booking_id, crm_synced=True, requires_manual_crm_sync=False
            )

    async def _notify_created(self, booking: Booking) -> None:
        confirmed = await self.notifications.send_booking_confirmation(booking)
        await self.notifications.send_admin_notification(booking)
        if confirmed:
            await self.repository.update(booking.id, confirmation_sent=True)

    async def _flag_calendar_manual(self, booking_id: str) -> None:
        await self.repository.update(
            booking_id, calendar_synced=False, requires_manual_calendar_sync=True
        )
        logger.warning(f"Booking {booking_id} flagged for manual calendar sync")

    async def _flag_crm_manual(self, booking_id: str) -> None:
        await self.repository.update(
            booking_id, crm_synced=False, requires_manual_crm_sync=True
        )
        logger.warning(f"Booking {booking_id} flagged for manual CRM sync")
