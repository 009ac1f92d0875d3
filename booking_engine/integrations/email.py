"""
Notification sender for a JSON email API (Resend-compatible payload).
"""

import base64

from loguru import logger

from booking_engine.integrations.base import EmailMessage, NotificationSender
from booking_engine.services.client import ServiceClient, ServiceConfig
from booking_engine.services.errors import ServiceError


class EmailApiSender(NotificationSender):
    """Sends each message with one POST; failures are reported, not raised."""

    SERVICE_ID = "email"

    def __init__(
        self,
        client: ServiceClient,
        api_url: str,
        api_key: str,
        sender: str,
    ):
        self.client = client
        self.sender = sender
        self.client.register_service(
            ServiceConfig(
                service_id=self.SERVICE_ID,
                base_url=api_url,
                timeout=10.0,
                headers={"Authorization": f"Bearer {api_key}"},
            )
        )

    async def send(self, message: EmailMessage) -> bool:
        payload = {
            "from": self.sender,
            "to": [message.to],
            "subject": message.subject,
            "text": message.text,
        }
        if message.attachments:
            payload["attachments"] = [
                {
                    "filename": a.filename,
                    "content": base64.b64encode(a.content).decode("ascii"),
                    "content_type": a.content_type,
                }
                for a in message.attachments
            ]

        try:
            await self.client.request(self.SERVICE_ID, "POST", "/emails", json_data=payload)
        except ServiceError as e:
            logger.error(f"Failed to send email to {message.to}: {e}")
            return False

        logger.info(f"Email '{message.subject}' sent to {message.to}")
        return True


class LogOnlySender(NotificationSender):
    """Used when email delivery is disabled: records the message in the log."""

    async def send(self, message: EmailMessage) -> bool:
        logger.info(f"[email disabled] Would send '{message.subject}' to {message.to}")
        return True
