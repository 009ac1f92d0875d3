"""
Provider integrations: calendar, CRM and notification delivery.
"""

from booking_engine.integrations.base import (
    Attachment,
    CalendarEvent,
    CalendarProvider,
    Contact,
    ContactData,
    CRMProvider,
    EmailMessage,
    EventData,
    NotificationSender,
)
from booking_engine.integrations.email import EmailApiSender, LogOnlySender
from booking_engine.integrations.google_auth import (
    ServiceAccountTokenSource,
    StaticTokenSource,
    TokenSource,
)
from booking_engine.integrations.google_calendar import GoogleCalendarClient
from booking_engine.integrations.hubspot import HubSpotClient

__all__ = [
    "Attachment",
    "CalendarEvent",
    "CalendarProvider",
    "Contact",
    "ContactData",
    "CRMProvider",
    "EmailMessage",
    "EventData",
    "NotificationSender",
    "EmailApiSender",
    "LogOnlySender",
    "ServiceAccountTokenSource",
    "StaticTokenSource",
    "TokenSource",
    "GoogleCalendarClient",
    "HubSpotClient",
]
