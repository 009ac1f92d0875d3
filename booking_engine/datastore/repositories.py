"""
Booking repository - wraps all ledger access.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.datastore.engine import Database
from booking_engine.datastore.models import BookingDB
from booking_engine.exceptions import ConflictError
from booking_engine.scheduling.types import (
    ALLOWED_DURATIONS,
    Booking,
    BookingFilters,
    BookingStatus,
    ensure_utc,
    intervals_overlap,
)
from booking_engine.services.errors import DatabaseError
from booking_engine.services.retry import RetryPolicy

# Longest bookable duration; bounds the look-back of overlap queries
MAX_DURATION = timedelta(minutes=max(ALLOWED_DURATIONS))

SLOT_TAKEN_MESSAGE = (
    "The selected time slot is already booked. Please choose a different time."
)


def to_db_time(value: datetime) -> datetime:
    """Aware datetime -> naive UTC for storage."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_schema(row: BookingDB) -> Booking:
    return Booking(
        id=row.id,
        name=row.name,
        company=row.company,
        email=row.email,
        phone=row.phone,
        inquiry=row.inquiry,
        start_time=row.start_time,
        duration=row.duration,
        status=BookingStatus(row.status),
        calendar_event_id=row.calendar_event_id,
        calendar_synced=row.calendar_synced,
        requires_manual_calendar_sync=row.requires_manual_calendar_sync,
        crm_contact_id=row.crm_contact_id,
        crm_synced=row.crm_synced,
        requires_manual_crm_sync=row.requires_manual_crm_sync,
        confirmation_sent=row.confirmation_sent,
        reminder_sent=row.reminder_sent,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class BookingRepository:
    """Booking ledger Repository"""

    def __init__(self, database: Database, retry: RetryPolicy | None = None):
        self.database = database
        self.retry = retry or RetryPolicy()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_if_slot_free(
        self,
        data: dict[str, Any],
        status: BookingStatus = BookingStatus.CONFIRMED,
    ) -> Booking:
        """
        Insert a booking unless its interval overlaps an active booking.

        The overlap check and insert run in one transaction while holding the
        database write lock, so concurrent requests for the same interval
        cannot both succeed.

        Raises:
            ConflictError: If the interval is already taken
            DatabaseError: If the write fails after retries
        """
        start = data["start_time"]
        end = start + timedelta(minutes=data["duration"])

        async def insert() -> Booking:
            async with self.database.write_lock:
                try:
                    async with self.database.session() as session:
                        if await self._overlapping_rows(session, start, end):
                            logger.warning(
                                f"Slot conflict on insert: {start.isoformat()} "
                                f"({data['duration']} min)"
                            )
                            raise ConflictError(SLOT_TAKEN_MESSAGE, start, data["duration"])

                        row = BookingDB(
                            id=uuid.uuid4().hex,
                            name=data["name"],
                            company=data["company"],
                            email=data["email"],
                            phone=data.get("phone"),
                            inquiry=data["inquiry"],
                            start_time=to_db_time(start),
                            duration=data["duration"],
                            status=status.value,
                        )
                        session.add(row)
                        await session.flush()
                        await session.refresh(row)
                        return to_schema(row)
                except SQLAlchemyError as e:
                    raise DatabaseError(f"Failed to create booking: {e}") from e

        booking = await self.retry.with_retry(insert)
        logger.info(f"Booking {booking.id} stored as {booking.status.value}")
        return booking

    async def update_if_slot_free(
        self,
        booking_id: str,
        start_time: datetime,
        duration: int,
        **fields: Any,
    ) -> Booking | None:
        """
        Move a booking to a new interval unless it overlaps another active one.

        Returns:
            The updated booking, or None if it does not exist

        Raises:
            ConflictError: If the new interval is taken by another booking
        """
        end = start_time + timedelta(minutes=duration)
        async with self.database.write_lock:
            try:
                async with self.database.session() as session:
                    if await self._overlapping_rows(
                        session, start_time, end, exclude_id=booking_id
                    ):
                        logger.warning(f"Slot conflict moving booking {booking_id}")
                        raise ConflictError(SLOT_TAKEN_MESSAGE, start_time, duration)

                    row = await session.get(BookingDB, booking_id)
                    if row is None:
                        return None
                    row.start_time = to_db_time(start_time)
                    row.duration = duration
                    self._apply(row, fields)
                    await session.flush()
                    await session.refresh(row)
                    return to_schema(row)
            except SQLAlchemyError as e:
                raise DatabaseError(f"Failed to update booking {booking_id}: {e}") from e

    async def update(self, booking_id: str, **fields: Any) -> Booking | None:
        """Update fields of a booking. Returns None if it does not exist."""
        try:
            async with self.database.write_lock, self.database.session() as session:
                row = await session.get(BookingDB, booking_id)
                if row is None:
                    logger.warning(f"Booking {booking_id} not found for update")
                    return None
                self._apply(row, fields)
                await session.flush()
                await session.refresh(row)
                logger.debug(f"Booking {booking_id} updated: {sorted(fields)}")
                return to_schema(row)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to update booking {booking_id}: {e}") from e

    @staticmethod
    def _apply(row: BookingDB, fields: dict[str, Any]) -> None:
        for key, value in fields.items():
            if isinstance(value, BookingStatus):
                value = value.value
            elif isinstance(value, datetime):
                value = to_db_time(value)
            setattr(row, key, value)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find_by_id(self, booking_id: str) -> Booking | None:
        try:
            async with self.database.session() as session:
                row = await session.get(BookingDB, booking_id)
                return to_schema(row) if row else None
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to find booking {booking_id}: {e}") from e

    async def find_overlapping(
        self,
        start_time: datetime,
        end_time: datetime,
        exclude_id: str | None = None,
    ) -> list[Booking]:
        """Active bookings whose interval overlaps [start_time, end_time)."""
        try:
            async with self.database.session() as session:
                rows = await self._overlapping_rows(
                    session, start_time, end_time, exclude_id=exclude_id
                )
                return [to_schema(row) for row in rows]
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to query overlapping bookings: {e}") from e

    async def find_by_email_in_range(
        self,
        email: str,
        window_start: datetime,
        window_end: datetime,
    ) -> list[Booking]:
        """Bookings of any status for `email` starting within [window_start, window_end]."""
        stmt = select(BookingDB).where(
            func.lower(BookingDB.email) == email.lower(),
            BookingDB.start_time >= to_db_time(window_start),
            BookingDB.start_time <= to_db_time(window_end),
        )
        try:
            async with self.database.session() as session:
                result = await session.execute(stmt)
                return [to_schema(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to query bookings for {email}: {e}") from e

    async def find_many(self, filters: BookingFilters | None = None) -> list[Booking]:
        """Paginated listing, newest start time first."""
        filters = filters or BookingFilters()
        stmt = (
            self._filtered(select(BookingDB), filters)
            .order_by(BookingDB.start_time.desc())
            .offset((filters.page - 1) * filters.limit)
            .limit(filters.limit)
        )
        try:
            async with self.database.session() as session:
                result = await session.execute(stmt)
                return [to_schema(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to list bookings: {e}") from e

    async def count(self, filters: BookingFilters | None = None) -> int:
        filters = filters or BookingFilters()
        stmt = self._filtered(select(func.count(BookingDB.id)), filters)
        try:
            async with self.database.session() as session:
                result = await session.execute(stmt)
                return int(result.scalar_one())
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to count bookings: {e}") from e

    async def count_by_email_in_window(self, email: str, days: int) -> int:
        """Active bookings for `email` created within the last `days` days."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        stmt = select(func.count(BookingDB.id)).where(
            func.lower(BookingDB.email) == email.lower(),
            BookingDB.created_at >= to_db_time(cutoff),
            BookingDB.status != BookingStatus.CANCELLED.value,
        )
        try:
            async with self.database.session() as session:
                result = await session.execute(stmt)
                return int(result.scalar_one())
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to count bookings for {email}: {e}") from e

    async def find_requiring_manual_sync(self) -> list[Booking]:
        """Bookings whose calendar or CRM sync needs operator follow-up."""
        stmt = (
            select(BookingDB)
            .where(
                BookingDB.requires_manual_calendar_sync.is_(True)
                | BookingDB.requires_manual_crm_sync.is_(True)
            )
            .order_by(BookingDB.start_time)
        )
        try:
            async with self.database.session() as session:
                result = await session.execute(stmt)
                return [to_schema(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to query manual-sync bookings: {e}") from e

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _overlapping_rows(
        session: AsyncSession,
        start_time: datetime,
        end_time: datetime,
        exclude_id: str | None = None,
    ) -> list[BookingDB]:
        # End time is derived, so narrow by start in SQL and finish the
        # overlap test in Python
        stmt = select(BookingDB).where(
            BookingDB.status != BookingStatus.CANCELLED.value,
            BookingDB.start_time < to_db_time(end_time),
            BookingDB.start_time > to_db_time(start_time - MAX_DURATION),
        )
        if exclude_id:
            stmt = stmt.where(BookingDB.id != exclude_id)

        result = await session.execute(stmt)
        start_utc = ensure_utc(start_time)
        end_utc = ensure_utc(end_time)
        rows = []
        for row in result.scalars().all():
            row_start = row.start_time.replace(tzinfo=timezone.utc)
            row_end = row_start + timedelta(minutes=row.duration)
            if intervals_overlap(row_start, row_end, start_utc, end_utc):
                rows.append(row)
        return rows

    @staticmethod
    def _filtered(stmt, filters: BookingFilters):
        if filters.status:
            stmt = stmt.where(BookingDB.status == filters.status.value)
        if filters.email:
            stmt = stmt.where(
                func.lower(BookingDB.email).contains(filters.email.lower())
            )
        if filters.date_from:
            stmt = stmt.where(BookingDB.start_time >= to_db_time(filters.date_from))
        if filters.date_to:
            stmt = stmt.where(BookingDB.start_time <= to_db_time(filters.date_to))
        return stmt
