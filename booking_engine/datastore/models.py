"""
Database model definitions (SQLAlchemy 2.0 declarative mapping).

Datetimes are stored as naive UTC; the repository converts at the boundary.
"""

from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all models"""

    pass


class BookingDB(Base):
    """Consultation bookings ledger"""

    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    company: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    inquiry: Mapped[str] = mapped_column(Text, nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="PENDING", nullable=False)

    calendar_event_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    calendar_synced: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    requires_manual_calendar_sync: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    crm_contact_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    crm_synced: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    requires_manual_crm_sync: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    confirmation_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reminder_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow_naive, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow_naive, onupdate=utcnow_naive, nullable=False
    )

    __table_args__ = (
        Index("idx_bookings_status_start", "status", "start_time"),
        Index("idx_bookings_email_start", "email", "start_time"),
    )

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, start={self.start_time}, status={self.status})>"
