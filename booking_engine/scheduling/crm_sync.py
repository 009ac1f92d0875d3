"""
CRMSyncService - Keeps requester contacts and booking status in the CRM.
"""

from datetime import datetime, timezone
from typing import Callable

from loguru import logger

from booking_engine.integrations.base import ContactData, CRMProvider
from booking_engine.scheduling.types import Booking, BookingStatus
from booking_engine.services.cache import CacheKeys, CacheManager, CacheTTL
from booking_engine.services.errors import ProviderError
from booking_engine.services.resilience import ProviderGuard


def parse_name(full_name: str) -> tuple[str, str | None]:
    """Split a full name into first name and the remainder."""
    parts = full_name.split()
    if not parts:
        return "", None
    if len(parts) == 1:
        return parts[0], None
    return parts[0], " ".join(parts[1:])


class CRMSyncService:
    def __init__(
        self,
        crm: CRMProvider,
        guard: ProviderGuard,
        cache: CacheManager,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.crm = crm
        self.guard = guard
        self.cache = cache
        self._clock = clock

    async def sync_booking_to_contact(self, booking: Booking) -> str:
        """Create or update the requester's contact and return its id."""
        first_name, last_name = parse_name(booking.name)
        data = ContactData(
            email=booking.email,
            first_name=first_name,
            last_name=last_name,
            company=booking.company,
            phone=booking.phone,
        )
        contact = await self.guard.call(lambda: self.crm.upsert_contact(data))
        logger.info(f"CRM contact {contact.id} synced for booking {booking.id}")

        await self._remember(booking.email, contact.id)
        return contact.id

    async def update_contact_booking_status(
        self, email: str, booking_id: str, status: BookingStatus
    ) -> None:
        """
        Push the latest booking status onto the requester's contact.

        Raises:
            ProviderError: If no contact exists for `email` or the update fails
        """
        contact_id = await self._lookup(email)
        if contact_id is None:
            raise ProviderError(f"CRM contact not found for {email}", self.guard.service_id)

        properties = {
            "last_booking_status": status.value,
            "last_booking_status_updated": self._clock().isoformat(),
        }
        await self.guard.call(lambda: self.crm.update_contact(contact_id, properties))
        logger.info(f"CRM contact {contact_id} marked {status.value} for booking {booking_id}")

    async def _lookup(self, email: str) -> str | None:
        key = CacheKeys.crm_contact(email)
        try:
            cached = await self.cache.get(key)
        except Exception as e:
            logger.error(f"Cache read failed for {key}: {e}")
            cached = None
        if cached is not None:
            return cached

        contact = await self.guard.call(lambda: self.crm.search_contact_by_email(email))
        if contact is None:
            return None
        await self._remember(email, contact.id)
        return contact.id

    async def _remember(self, email: str, contact_id: str) -> None:
        key = CacheKeys.crm_contact(email)
        try:
            await self.cache.set(key, contact_id, CacheTTL.CRM_CONTACT)
        except Exception as e:
            logger.error(f"Cache write failed for {key}: {e}")
