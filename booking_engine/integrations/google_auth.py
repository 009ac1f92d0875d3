"""
Access tokens for Google APIs.

ServiceAccountTokenSource loads a service account key with google-auth and
refreshes the access token before it expires. StaticTokenSource serves a
fixed token minted elsewhere.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable, Sequence

from google.auth.exceptions import GoogleAuthError, TransportError
from google.auth.transport.requests import Request
from google.oauth2 import service_account
from loguru import logger

from booking_engine.services.errors import ProviderError

CALENDAR_SCOPES = (
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
)


class TokenSource(ABC):
    """Hands out a bearer token that is valid right now."""

    @abstractmethod
    async def get_token(self) -> str:
        """
        Raises:
            ProviderError: If no valid token can be obtained
        """


class StaticTokenSource(TokenSource):
    def __init__(self, token: str, service_id: str = "google_calendar"):
        self.token = token
        self.service_id = service_id

    async def get_token(self) -> str:
        if not self.token:
            raise ProviderError("Google access token missing", self.service_id)
        return self.token


class ServiceAccountTokenSource(TokenSource):
    """
    Service account credentials with automatic refresh.

    Usage:
        tokens = ServiceAccountTokenSource("/secrets/calendar-key.json")
        headers = {"Authorization": f"Bearer {await tokens.get_token()}"}

    The key file is read on first use so a bad path surfaces as a
    ProviderError from the calendar's initialize().
    """

    def __init__(
        self,
        key_path: str | None = None,
        *,
        credentials: Any = None,
        scopes: Sequence[str] = CALENDAR_SCOPES,
        subject: str | None = None,
        request_factory: Callable[[], Any] = Request,
        service_id: str = "google_calendar",
    ):
        self.key_path = key_path
        self.scopes = list(scopes)
        self.subject = subject
        self.service_id = service_id
        self._credentials = credentials
        self._request_factory = request_factory
        self._lock = asyncio.Lock()

    def _load(self) -> Any:
        if self._credentials is not None:
            return self._credentials
        if not self.key_path:
            raise ProviderError(
                "Google service account key path not configured", self.service_id
            )
        try:
            self._credentials = service_account.Credentials.from_service_account_file(
                self.key_path, scopes=self.scopes, subject=self.subject
            )
        except (OSError, ValueError) as e:
            raise ProviderError(
                f"Invalid service account key file {self.key_path}: {e}", self.service_id
            ) from e
        logger.info(
            f"Loaded service account {self._credentials.service_account_email} "
            f"for {self.service_id}"
        )
        return self._credentials

    async def get_token(self) -> str:
        async with self._lock:
            credentials = self._load()
            # `valid` turns false shortly before expiry, so refresh happens early
            if not credentials.valid:
                try:
                    await asyncio.to_thread(credentials.refresh, self._request_factory())
                except GoogleAuthError as e:
                    raise ProviderError(
                        f"Google token refresh failed: {e}",
                        self.service_id,
                        retryable=isinstance(e, TransportError),
                    ) from e
                logger.debug(f"Refreshed Google access token, expires {credentials.expiry}")
            return credentials.token
