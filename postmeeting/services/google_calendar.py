"""
Service for Google OAuth and the Calendar API: link accounts and list upcoming meetings.
Includes retry logic, rate limiting, and normalization of events into CalendarEvent.
"""
import re
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlencode

import httpx

from postmeeting.config import settings
from postmeeting.exceptions import ConfigurationError, GoogleAPIError
from postmeeting.logging_config import get_logger
from postmeeting.rate_limiters import rate_limiters
from postmeeting.schemas import Attendee, CalendarEvent
from postmeeting.services.base import BaseAPIService
from postmeeting.utils import as_list, async_retry, parse_datetime, safe_dict_get, utcnow

logger = get_logger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/calendar.readonly",
    "openid",
]

CONFERENCE_LINK_RE = re.compile(r"zoom\.us|meet\.google|teams\.microsoft|teams\.live\.com", re.IGNORECASE)
URL_RE = re.compile(r"https?://[^\s)]+", re.IGNORECASE)
NOISE_WORDS = ("birthday", "anniversary", "holiday")


def infer_platform(text: Optional[str]) -> str:
    """Guess the video platform from links and conference names."""
    t = (text or "").lower()
    if re.search(r"zoom\.us|zoom\.com", t):
        return "zoom"
    if "meet.google" in t:
        return "meet"
    if re.search(r"teams\.microsoft|teams\.live\.com", t):
        return "teams"
    return "unknown"


def first_url(text: Optional[str]) -> str:
    match = URL_RE.search(text or "")
    return match.group(0) if match else ""


def is_all_day(event: Dict[str, Any]) -> bool:
    return bool(safe_dict_get(event, "start", "date")) and not safe_dict_get(event, "start", "dateTime")


def looks_like_noise(title: Optional[str]) -> bool:
    t = (title or "").lower()
    return any(word in t for word in NOISE_WORDS)


def is_readable_calendar(calendar: Dict[str, Any]) -> bool:
    """Skip holiday, contacts and room-resource calendars plus free/busy-only ones."""
    cal_id = (calendar.get("id") or "").lower()
    summary = (calendar.get("summary") or "").lower()
    if "holiday@" in cal_id or "holiday" in summary:
        return False
    if "#contacts@" in cal_id or cal_id.endswith("resource.calendar.google.com"):
        return False
    return (calendar.get("accessRole") or "reader") != "freeBusyReader"


def conferencing_url(event: Dict[str, Any]) -> str:
    """
    Pick the meeting link for an event.

    Conference entry points that point at a known provider come first, then the
    Meet hangout link, then the first URL found in location, description or title.
    """
    entry_url = ""
    for ep in as_list(safe_dict_get(event, "conferenceData", "entryPoints")):
        candidate = safe_dict_get(ep, "uri") or safe_dict_get(ep, "label") or ""
        if CONFERENCE_LINK_RE.search(candidate):
            entry_url = candidate
            break
    candidates = [
        entry_url,
        event.get("hangoutLink") or "",
        first_url(event.get("location")),
        first_url(event.get("description")),
        first_url(event.get("summary")),
    ]
    return next((u for u in candidates if u), "")


def normalize_event(account_id: str, calendar_id: str, event: Dict[str, Any]) -> CalendarEvent:
    """Convert a Calendar API event into a CalendarEvent."""
    start = parse_datetime(safe_dict_get(event, "start", "dateTime") or safe_dict_get(event, "start", "date")) or utcnow()
    end = parse_datetime(safe_dict_get(event, "end", "dateTime") or safe_dict_get(event, "end", "date")) or start
    url = conferencing_url(event)
    scan = "\n".join([
        url,
        event.get("location") or "",
        event.get("description") or "",
        event.get("summary") or "",
        safe_dict_get(event, "conferenceData", "conferenceSolution", "name") or "",
    ])
    attendees = [
        Attendee(email=a["email"], name=a.get("displayName"))
        for a in as_list(event.get("attendees"))
        if isinstance(a, dict) and a.get("email")
    ]
    return CalendarEvent(
        id=f"{account_id}:{calendar_id}:{event.get('id')}",
        account_id=account_id,
        title=event.get("summary") or "(no title)",
        start=start,
        end=end,
        attendees=attendees,
        conferencing_url=url or None,
        platform=infer_platform(scan),
    )


class GoogleCalendarService(BaseAPIService):
    """Service to interact with Google OAuth and the Calendar v3 API."""

    platform = "google"
    error_class = GoogleAPIError

    AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"
    REVOKE_URL = "https://oauth2.googleapis.com/revoke"
    USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
    CALENDAR_API = "https://www.googleapis.com/calendar/v3"

    def _require_config(self) -> None:
        if not settings.is_google_configured:
            raise ConfigurationError("Missing GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET")

    @staticmethod
    def redirect_uri() -> str:
        return f"{settings.app_origin.rstrip('/')}/api/oauth/google/callback"

    def build_authorization_url(self, state: str) -> str:
        """Consent URL requesting offline access so a refresh token is issued."""
        self._require_config()
        params = {
            "client_id": settings.google_client_id,
            "redirect_uri": self.redirect_uri(),
            "response_type": "code",
            "scope": " ".join(SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
            "state": state,
        }
        return f"{self.AUTH_URL}?{urlencode(params, quote_via=quote)}"

    @staticmethod
    def _with_expiry(tokens: Dict[str, Any]) -> Dict[str, Any]:
        expires_in = tokens.get("expires_in")
        if expires_in:
            tokens["expires_at"] = (utcnow() + timedelta(seconds=int(expires_in))).isoformat()
        return tokens

    @async_retry()
    async def _token_request(self, data: Dict[str, str], operation: str) -> Dict[str, Any]:
        started = time.time()
        try:
            await rate_limiters.acquire_google_limit()
            async with self._client() as client:
                response = await client.post(self.TOKEN_URL, data=data)
                response.raise_for_status()
                self._record_success(operation, started)
                return self._with_expiry(response.json())
        except httpx.HTTPStatusError as e:
            self._handle_http_error(e, operation)
        except httpx.RequestError as e:
            self._handle_transport_error(e, operation)

    async def exchange_code(self, code: str) -> Dict[str, Any]:
        """Trade an authorization code for tokens."""
        self._require_config()
        return await self._token_request(
            {
                "code": code,
                "client_id": settings.google_client_id,
                "client_secret": settings.google_client_secret,
                "redirect_uri": self.redirect_uri(),
                "grant_type": "authorization_code",
            },
            "exchange_code",
        )

    async def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        """Get a fresh access token. Google omits the refresh token in the reply, so it is carried over."""
        self._require_config()
        tokens = await self._token_request(
            {
                "refresh_token": refresh_token,
                "client_id": settings.google_client_id,
                "client_secret": settings.google_client_secret,
                "grant_type": "refresh_token",
            },
            "refresh_token",
        )
        tokens.setdefault("refresh_token", refresh_token)
        return tokens

    @async_retry()
    async def _get(self, url: str, access_token: str, operation: str, params: Dict[str, Any] = None) -> Dict[str, Any]:
        started = time.time()
        try:
            await rate_limiters.acquire_google_limit()
            async with self._client() as client:
                response = await client.get(url, headers={"Authorization": f"Bearer {access_token}"}, params=params)
                response.raise_for_status()
                self._record_success(operation, started)
                return response.json()
        except httpx.HTTPStatusError as e:
            self._handle_http_error(e, operation)
        except httpx.RequestError as e:
            self._handle_transport_error(e, operation)

    async def get_userinfo(self, access_token: str) -> Dict[str, Any]:
        return await self._get(self.USERINFO_URL, access_token, "get_userinfo")

    async def list_calendars(self, access_token: str) -> List[Dict[str, Any]]:
        """Readable calendars of the account."""
        data = await self._get(
            f"{self.CALENDAR_API}/users/me/calendarList",
            access_token,
            "list_calendars",
            params={"maxResults": 250},
        )
        calendars = [c for c in as_list(safe_dict_get(data, "items")) if is_readable_calendar(c)]
        logger.debug("google_calendars_listed", count=len(calendars))
        return calendars

    async def list_events(
        self,
        account_id: str,
        access_token: str,
        time_min: datetime,
        time_max: datetime,
    ) -> List[CalendarEvent]:
        """
        Timed, non-noise events across all readable calendars in ``[time_min, time_max]``.

        Raises:
            GoogleAPIError: If the calendar list or any calendar's events cannot be read
        """
        events: List[CalendarEvent] = []
        for calendar in await self.list_calendars(access_token):
            data = await self._get(
                f"{self.CALENDAR_API}/calendars/{quote(calendar['id'], safe='')}/events",
                access_token,
                "list_events",
                params={
                    "timeMin": time_min.isoformat(),
                    "timeMax": time_max.isoformat(),
                    "maxResults": 100,
                    "singleEvents": "true",
                    "orderBy": "startTime",
                    "conferenceDataVersion": 1,
                },
            )
            for item in as_list(safe_dict_get(data, "items")):
                if is_all_day(item) or looks_like_noise(item.get("summary")):
                    continue
                events.append(normalize_event(account_id, calendar["id"], item))

        logger.info("google_events_fetched", account_id=account_id, count=len(events))
        return events

    async def revoke(self, token: str) -> None:
        """Revoke a token at Google. Failures are logged; the local unlink proceeds regardless."""
        operation = "revoke"
        started = time.time()
        try:
            async with self._client() as client:
                response = await client.post(self.REVOKE_URL, data={"token": token})
                response.raise_for_status()
                self._record_success(operation, started)
        except httpx.HTTPError as e:
            logger.warning("google_revoke_failed", error=str(e))
