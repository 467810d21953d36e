"""
Google Calendar Service
Handles calendar event creation, updates, and deletion for order reminders
"""
import base64
import enum
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import httpx
from cryptography.fernet import Fernet, InvalidToken

from ..config import CALENDAR_HTTP_TIMEOUT, GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, SECRET_KEY
from ..domain.orders.repository import OrderRepository
from ..models_google_calendar import GoogleCalendarIntegration

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"  # noqa: S105 - OAuth endpoint URL
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
TOKEN_REFRESH_MARGIN = timedelta(minutes=5)


class CalendarAPIError(Exception):
    """A remote calendar call failed (transport error or non-2xx response)"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CalendarEventNotFound(CalendarAPIError):
    """The remote event no longer exists"""


class CalendarAuthError(CalendarAPIError):
    """No usable access token for the user's calendar"""


class DeleteOutcome(str, enum.Enum):
    DELETED = "deleted"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class CalendarCredentials:
    access_token: str
    calendar_id: str = "primary"


@dataclass(frozen=True)
class CalendarEventData:
    title: str
    description: str
    start: datetime
    end: datetime
    timezone: str = "UTC"


class CalendarClient:
    """Capability the reconciler needs from a calendar provider"""

    async def create_event(self, credentials: CalendarCredentials, event: CalendarEventData) -> str:
        raise NotImplementedError

    async def update_event(
        self, credentials: CalendarCredentials, event_id: str, event: CalendarEventData
    ) -> None:
        raise NotImplementedError

    async def delete_event(self, credentials: CalendarCredentials, event_id: str) -> DeleteOutcome:
        raise NotImplementedError


# ============================================================================
# TOKEN STORAGE
# ============================================================================


def get_token_cipher() -> Fernet:
    key = base64.urlsafe_b64encode(hashlib.sha256(SECRET_KEY.encode()).digest())
    return Fernet(key)


def encrypt_token(token: str) -> str:
    return get_token_cipher().encrypt(token.encode()).decode()


def decrypt_token(token: str) -> str:
    return get_token_cipher().decrypt(token.encode()).decode()


async def get_valid_access_token(
    integration: GoogleCalendarIntegration,
    repo: OrderRepository,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    timeout: float = CALENDAR_HTTP_TIMEOUT,
) -> Optional[str]:
    """
    Get a valid access token, refreshing if necessary
    Returns None if refresh fails
    """
    try:
        if not integration.token_needs_refresh(TOKEN_REFRESH_MARGIN):
            return decrypt_token(integration.access_token)

        if not integration.refresh_token:
            logger.error(f"❌ Google Calendar token expired for user {integration.user_id} and no refresh token")
            return None

        logger.info("🔄 Google Calendar token expired, refreshing...")
        refresh_token = decrypt_token(integration.refresh_token)

        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": GOOGLE_CLIENT_ID,
                    "client_secret": GOOGLE_CLIENT_SECRET,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )

        if response.status_code != 200:
            logger.error(f"❌ Token refresh failed: {response.text}")
            return None

        tokens = response.json()
        new_access_token = tokens.get("access_token")
        expires_in = tokens.get("expires_in", 3600)

        if not new_access_token:
            logger.error("❌ No access token in refresh response")
            return None

        integration.access_token = encrypt_token(new_access_token)
        integration.token_expires_at = datetime.utcnow() + timedelta(seconds=expires_in)
        repo.save_calendar_integration(integration)

        logger.info("✅ Google Calendar token refreshed successfully")
        return new_access_token

    except (httpx.HTTPError, InvalidToken) as e:
        logger.error(f"❌ Error getting valid access token: {str(e)}")
        return None


async def load_calendar_credentials(
    repo: OrderRepository,
    user_id: int,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Optional[CalendarCredentials]:
    """
    Credentials for a user's calendar, or None when the calendar is not
    connected or disabled. Raises CalendarAuthError when connected but no
    valid token can be obtained.
    """
    integration = repo.get_calendar_integration(user_id)
    if not integration or not integration.calendar_enabled:
        logger.debug(f"ℹ️ Google Calendar not connected or disabled for user {user_id}")
        return None

    access_token = await get_valid_access_token(integration, repo, transport=transport)
    if not access_token:
        raise CalendarAuthError(f"No valid Google Calendar token for user {user_id}")

    return CalendarCredentials(
        access_token=access_token,
        calendar_id=integration.calendar_id,
    )


# ============================================================================
# GOOGLE CALENDAR CLIENT
# ============================================================================


class GoogleCalendarClient(CalendarClient):
    """Google Calendar v3 events API over httpx"""

    def __init__(
        self,
        timeout: float = CALENDAR_HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.transport = transport

    def _events_url(self, credentials: CalendarCredentials, event_id: Optional[str] = None) -> str:
        url = f"{GOOGLE_CALENDAR_API}/calendars/{credentials.calendar_id}/events"
        return f"{url}/{event_id}" if event_id else url

    @staticmethod
    def _event_body(event: CalendarEventData) -> dict:
        return {
            "summary": event.title,
            "description": event.description,
            "start": {"dateTime": event.start.isoformat(), "timeZone": event.timezone},
            "end": {"dateTime": event.end.isoformat(), "timeZone": event.timezone},
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": 24 * 60},  # 1 day before
                    {"method": "popup", "minutes": 60},  # 1 hour before
                ],
            },
        }

    async def _request(self, method: str, url: str, credentials: CalendarCredentials, **kwargs):
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                return await client.request(
                    method,
                    url,
                    headers={"Authorization": f"Bearer {credentials.access_token}"},
                    **kwargs,
                )
        except httpx.HTTPError as e:
            raise CalendarAPIError(f"{method} {url} failed: {e}") from e

    async def create_event(self, credentials: CalendarCredentials, event: CalendarEventData) -> str:
        response = await self._request(
            "POST", self._events_url(credentials), credentials, json=self._event_body(event)
        )
        if response.status_code not in (200, 201):
            logger.error(f"❌ Failed to create calendar event: {response.text}")
            raise CalendarAPIError("Failed to create calendar event", response.status_code)

        event_id = response.json().get("id")
        if not event_id:
            raise CalendarAPIError("Calendar API returned no event id", response.status_code)

        logger.info(f"✅ Google Calendar event created: {event_id}")
        return event_id

    async def update_event(
        self, credentials: CalendarCredentials, event_id: str, event: CalendarEventData
    ) -> None:
        response = await self._request(
            "PUT", self._events_url(credentials, event_id), credentials, json=self._event_body(event)
        )
        if response.status_code in (404, 410):
            raise CalendarEventNotFound(f"Calendar event {event_id} not found", response.status_code)
        if response.status_code != 200:
            logger.error(f"❌ Failed to update calendar event: {response.text}")
            raise CalendarAPIError("Failed to update calendar event", response.status_code)

        logger.info(f"✅ Google Calendar event updated: {event_id}")

    async def delete_event(self, credentials: CalendarCredentials, event_id: str) -> DeleteOutcome:
        response = await self._request("DELETE", self._events_url(credentials, event_id), credentials)
        if response.status_code in (404, 410):
            logger.info(f"ℹ️ Google Calendar event already gone: {event_id}")
            return DeleteOutcome.NOT_FOUND
        if response.status_code not in (200, 204):
            logger.error(f"❌ Failed to delete calendar event: {response.text}")
            raise CalendarAPIError("Failed to delete calendar event", response.status_code)

        logger.info(f"✅ Google Calendar event deleted: {event_id}")
        return DeleteOutcome.DELETED
