"""
HubSpot CRM v3 contacts client.

API Documentation: https://developers.hubspot.com/docs/api/crm/contacts
Authenticates with a private app access token.
"""

from typing import Any

from loguru import logger

from booking_engine.integrations.base import Contact, ContactData, CRMProvider
from booking_engine.services.client import ServiceClient, ServiceConfig
from booking_engine.services.errors import ProviderError

CONTACTS_PATH = "/crm/v3/objects/contacts"


class HubSpotClient(CRMProvider):
    """CRM provider backed by HubSpot contacts."""

    BASE_URL = "https://api.hubapi.com"
    SERVICE_ID = "hubspot"
    service_id = SERVICE_ID

    def __init__(
        self,
        client: ServiceClient,
        access_token: str,
        base_url: str | None = None,
    ):
        self.client = client
        self.access_token = access_token
        self.base_url = base_url or self.BASE_URL
        self._initialized = False

    def is_configured(self) -> bool:
        return bool(self.access_token)

    async def initialize(self) -> None:
        if not self.is_configured():
            raise ProviderError("HubSpot access token missing", service_id=self.SERVICE_ID)
        self.client.register_service(
            ServiceConfig(
                service_id=self.SERVICE_ID,
                base_url=self.base_url,
                timeout=15.0,
                headers={"Authorization": f"Bearer {self.access_token}"},
            )
        )
        self._initialized = True
        logger.info("HubSpot client initialized")

    async def close(self) -> None:
        self._initialized = False

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise ProviderError("HubSpot client not authenticated", self.SERVICE_ID)

    async def search_contact_by_email(self, email: str) -> Contact | None:
        self._ensure_initialized()
        data = await self.client.request(
            self.SERVICE_ID,
            "POST",
            f"{CONTACTS_PATH}/search",
            json_data={
                "filterGroups": [
                    {"filters": [{"propertyName": "email", "operator": "EQ", "value": email}]}
                ],
                "properties": ["email", "firstname", "lastname", "company"],
                "limit": 1,
            },
        )
        results = (data or {}).get("results", [])
        if not results:
            return None
        return self._parse_contact(results[0])

    async def upsert_contact(self, data: ContactData) -> Contact:
        self._ensure_initialized()
        properties = self._properties(data)

        existing = await self.search_contact_by_email(data.email)
        if existing:
            item = await self.client.request(
                self.SERVICE_ID,
                "PATCH",
                f"{CONTACTS_PATH}/{existing.id}",
                json_data={"properties": properties},
            )
            logger.info(f"Updated HubSpot contact {existing.id}")
        else:
            item = await self.client.request(
                self.SERVICE_ID,
                "POST",
                CONTACTS_PATH,
                json_data={"properties": properties},
            )
            logger.info(f"Created HubSpot contact for {data.email}")

        if not item or "id" not in item:
            raise ProviderError("HubSpot returned no contact id", self.SERVICE_ID)
        return self._parse_contact(item)

    async def update_contact(self, contact_id: str, properties: dict[str, str]) -> None:
        self._ensure_initialized()
        await self.client.request(
            self.SERVICE_ID,
            "PATCH",
            f"{CONTACTS_PATH}/{contact_id}",
            json_data={"properties": properties},
        )

    @staticmethod
    def _properties(data: ContactData) -> dict[str, str]:
        properties = {"email": data.email, "firstname": data.first_name}
        if data.last_name:
            properties["lastname"] = data.last_name
        if data.company:
            properties["company"] = data.company
        if data.phone:
            properties["phone"] = data.phone
        properties.update(data.custom_properties)
        return properties

    @staticmethod
    def _parse_contact(item: dict[str, Any]) -> Contact:
        props = {k: str(v) for k, v in (item.get("properties") or {}).items() if v is not None}
        return Contact(id=str(item["id"]), email=props.get("email"), properties=props)
