"""
Provider interfaces consumed by the booking engine.

Implementations own their transport and authentication and expose an
explicit initialize()/close() lifecycle. Resilience (circuit breaker and
retry) is applied by the caller through a ProviderGuard, not here.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from pydantic import BaseModel, Field


class CalendarEvent(BaseModel):
    """A remote calendar event."""

    id: str
    summary: str = "Untitled Event"
    description: str | None = None
    start: datetime
    end: datetime
    status: str = "confirmed"
    start_timezone: str | None = None
    end_timezone: str | None = None


class EventData(BaseModel):
    """Payload for creating or replacing a calendar event."""

    summary: str
    description: str
    start: datetime
    end: datetime
    timezone: str
    attendees: list[str] = Field(default_factory=list)
    location: str | None = None


class Contact(BaseModel):
    id: str
    email: str | None = None
    properties: dict[str, str] = Field(default_factory=dict)


class ContactData(BaseModel):
    email: str
    first_name: str
    last_name: str | None = None
    company: str | None = None
    phone: str | None = None
    custom_properties: dict[str, str] = Field(default_factory=dict)


class Attachment(BaseModel):
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


class EmailMessage(BaseModel):
    to: str
    subject: str
    text: str
    attachments: list[Attachment] = Field(default_factory=list)


class CalendarProvider(ABC):
    """Remote calendar holding busy periods and booking events."""

    service_id: str = "calendar"

    async def initialize(self) -> None:
        """Authenticate / open connections. Default: nothing to do."""

    async def close(self) -> None:
        """Release connections. Default: nothing to do."""

    @abstractmethod
    async def list_events(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        """Events overlapping [start, end]."""
        ...

    @abstractmethod
    async def create_event(self, data: EventData) -> CalendarEvent:
        ...

    @abstractmethod
    async def update_event(self, event_id: str, data: EventData) -> CalendarEvent:
        ...

    @abstractmethod
    async def delete_event(self, event_id: str) -> None:
        ...


class CRMProvider(ABC):
    """Remote CRM holding requester contacts."""

    service_id: str = "crm"

    async def initialize(self) -> None:
        """Authenticate / open connections. Default: nothing to do."""

    async def close(self) -> None:
        """Release connections. Default: nothing to do."""

    @abstractmethod
    async def upsert_contact(self, data: ContactData) -> Contact:
        ...

    @abstractmethod
    async def search_contact_by_email(self, email: str) -> Contact | None:
        ...

    @abstractmethod
    async def update_contact(self, contact_id: str, properties: dict[str, str]) -> None:
        ...


class NotificationSender(ABC):
    """Delivers a rendered message. Returns False instead of raising on failure."""

    async def close(self) -> None:
        """Release connections. Default: nothing to do."""

    @abstractmethod
    async def send(self, message: EmailMessage) -> bool:
        ...
