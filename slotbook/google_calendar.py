"""
Google Calendar v3 client implementing the calendar provider contract.

Busy data can be read two ways:
- "freebusy": POST /freeBusy. Only busy windows, every one of them blocking.
- "events": GET /calendars/{id}/events. Full entries, so transparency and
  attendee counts are known (meeting-load rules need this).

Authentication uses an OAuth refresh token; the access token is cached until
shortly before it expires and refreshed once more on a 401.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any
from urllib.parse import quote

import httpx
import pytz
from dateutil import parser as dateutil_parser

from slotbook.config import Settings
from slotbook.domain import CalendarEvent, ProviderError
from slotbook.instants import civil_midnight, format_rfc3339, to_utc

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"

_EVENTS_PAGE_SIZE = 250


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            message = error.get("message")
            if isinstance(message, str) and message.strip():
                return " ".join(message.split())[:200]
        if isinstance(error, str) and error.strip():
            return " ".join(error.split())[:200]

    text = response.text.strip()
    if text:
        return " ".join(text.split())[:200]
    return "Request failed without an error payload"


def _parse_google_time(raw: Any, tz: dt.tzinfo) -> dt.datetime:
    """Parse an event ``start``/``end`` object: ``{"dateTime": ...}`` or all-day ``{"date": ...}``."""
    if not isinstance(raw, dict):
        raise ProviderError(f"Google Calendar event time has unexpected shape: {raw!r}")

    try:
        if raw.get("dateTime"):
            return to_utc(dateutil_parser.isoparse(raw["dateTime"]))
        if raw.get("date"):
            return civil_midnight(dt.date.fromisoformat(raw["date"]), tz)
    except ValueError as e:
        raise ProviderError(f"Google Calendar returned an unparseable event time: {raw!r}") from e

    raise ProviderError(f"Google Calendar event time has neither dateTime nor date: {raw!r}")


def _attendee_count(item: dict[str, Any]) -> int:
    attendees = item.get("attendees")
    if not isinstance(attendees, list):
        return 1
    accepted = [a for a in attendees if isinstance(a, dict) and a.get("responseStatus") != "declined"]
    return max(1, len(accepted))


def google_event_to_calendar_event(item: dict[str, Any], tz: dt.tzinfo) -> CalendarEvent | None:
    if item.get("status") == "cancelled":
        return None

    start = _parse_google_time(item.get("start"), tz)
    end = _parse_google_time(item.get("end"), tz)
    return CalendarEvent(
        start=start,
        end=end,
        is_blocking=item.get("transparency") != "transparent",
        attendee_count=_attendee_count(item),
    )


class GoogleCalendarProvider:
    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        tz: dt.tzinfo,
        query_style: str = "freebusy",
        http_client: httpx.Client | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        if query_style not in ("freebusy", "events"):
            raise ValueError(f"Unknown query style: {query_style!r}")

        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_token = refresh_token
        self._tz = tz
        self._query_style = query_style
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.Client(timeout=timeout_seconds)

        self._access_token: str | None = None
        self._access_token_expires_at: dt.datetime | None = None

    def close(self) -> None:
        if self._owns_http_client:
            self._http.close()

    def __enter__(self) -> GoogleCalendarProvider:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # --- auth ---

    def _token_is_fresh(self) -> bool:
        if self._access_token is None or self._access_token_expires_at is None:
            return False
        return dt.datetime.now(pytz.utc) < self._access_token_expires_at

    def _access_token_value(self, *, force_refresh: bool = False) -> str:
        if force_refresh or not self._token_is_fresh():
            self._refresh_access_token()
        assert self._access_token is not None
        return self._access_token

    def _refresh_access_token(self) -> None:
        try:
            response = self._http.post(
                GOOGLE_OAUTH_TOKEN_URL,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "refresh_token": self._refresh_token,
                    "grant_type": "refresh_token",
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"Google OAuth token refresh request failed: {e}") from e

        if not response.is_success:
            raise ProviderError(
                f"Google OAuth token refresh failed ({response.status_code}): {_error_message(response)}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError("Google OAuth token endpoint returned invalid JSON") from e

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token.strip():
            raise ProviderError("Google OAuth token response is missing access_token")

        expires_in = payload.get("expires_in")
        if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)) or expires_in <= 0:
            expires_in = 3600
        # Refresh a minute early.
        ttl = max(int(expires_in) - 60, 30)

        self._access_token = token.strip()
        self._access_token_expires_at = dt.datetime.now(pytz.utc) + dt.timedelta(seconds=ttl)

    # --- requests ---

    def _request_once(self, method: str, url: str, *, force_refresh: bool, **kwargs: Any) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._access_token_value(force_refresh=force_refresh)}"}
        try:
            return self._http.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise ProviderError(f"Google Calendar request failed: {e}") from e

    def _request_json(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{GOOGLE_CALENDAR_API_BASE_URL}{path}"

        response = self._request_once(method, url, force_refresh=False, **kwargs)
        if response.status_code == 401:
            logger.info("Google Calendar answered 401, refreshing access token")
            response = self._request_once(method, url, force_refresh=True, **kwargs)

        if not response.is_success:
            raise ProviderError(f"Google Calendar API error ({response.status_code}): {_error_message(response)}")

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError("Google Calendar API returned invalid JSON") from e

        if not isinstance(payload, dict):
            raise ProviderError("Google Calendar API returned an unexpected JSON payload shape")
        return payload

    # --- provider contract ---

    def list_busy_intervals(self, calendar_id: str, time_min: dt.datetime, time_max: dt.datetime) -> list[CalendarEvent]:
        if self._query_style == "events":
            return self._list_events(calendar_id, time_min, time_max)
        return self._query_freebusy(calendar_id, time_min, time_max)

    def _query_freebusy(self, calendar_id: str, time_min: dt.datetime, time_max: dt.datetime) -> list[CalendarEvent]:
        payload = self._request_json(
            "POST",
            "/freeBusy",
            json={
                "timeMin": format_rfc3339(time_min),
                "timeMax": format_rfc3339(time_max),
                "items": [{"id": calendar_id}],
            },
        )

        calendars = payload.get("calendars")
        if not isinstance(calendars, dict) or not isinstance(calendars.get(calendar_id), dict):
            raise ProviderError("Google Calendar freeBusy response is missing the requested calendar")

        entry = calendars[calendar_id]
        errors = entry.get("errors")
        if errors:
            reasons = ", ".join(str(e.get("reason", e)) if isinstance(e, dict) else str(e) for e in errors)
            raise ProviderError(f"Google Calendar freeBusy failed for {calendar_id}: {reasons}")

        busy = entry.get("busy")
        if not isinstance(busy, list):
            raise ProviderError("Google Calendar freeBusy response is missing the busy array")

        events: list[CalendarEvent] = []
        for window in busy:
            if not isinstance(window, dict) or not window.get("start") or not window.get("end"):
                raise ProviderError(f"Google Calendar freeBusy window must include start/end: {window!r}")
            try:
                start = to_utc(dateutil_parser.isoparse(window["start"]))
                end = to_utc(dateutil_parser.isoparse(window["end"]))
            except ValueError as e:
                raise ProviderError(f"Google Calendar returned an unparseable busy window: {window!r}") from e
            events.append(CalendarEvent(start=start, end=end))
        return events

    def _list_events(self, calendar_id: str, time_min: dt.datetime, time_max: dt.datetime) -> list[CalendarEvent]:
        path = f"/calendars/{quote(calendar_id, safe='')}/events"
        params: dict[str, Any] = {
            "timeMin": format_rfc3339(time_min),
            "timeMax": format_rfc3339(time_max),
            "singleEvents": "true",
            "showDeleted": "false",
            "orderBy": "startTime",
            "maxResults": _EVENTS_PAGE_SIZE,
        }

        events: list[CalendarEvent] = []
        while True:
            payload = self._request_json("GET", path, params=params)
            items = payload.get("items")
            if not isinstance(items, list):
                raise ProviderError("Google Calendar events response is missing the items array")

            for item in items:
                if not isinstance(item, dict):
                    continue
                event = google_event_to_calendar_event(item, self._tz)
                if event is not None:
                    events.append(event)

            page_token = payload.get("nextPageToken")
            if not page_token:
                return events
            params = {**params, "pageToken": page_token}

    def create_event(
        self,
        calendar_id: str,
        title: str,
        start: dt.datetime,
        end: dt.datetime,
        *,
        description: str,
        guest_email: str,
        send_invites: bool = True,
    ) -> str:
        body = {
            "summary": title,
            "description": description,
            "start": {"dateTime": format_rfc3339(start)},
            "end": {"dateTime": format_rfc3339(end)},
            "attendees": [{"email": guest_email}],
            "status": "confirmed",
        }
        payload = self._request_json(
            "POST",
            f"/calendars/{quote(calendar_id, safe='')}/events",
            params={"sendUpdates": "all" if send_invites else "none"},
            json=body,
        )

        event_id = payload.get("id")
        if not isinstance(event_id, str) or not event_id:
            raise ProviderError("Google Calendar create response is missing the event id")
        return event_id


def build_provider(settings: Settings, http_client: httpx.Client | None = None) -> GoogleCalendarProvider:
    return GoogleCalendarProvider(
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        refresh_token=settings.google_refresh_token,
        tz=settings.tz,
        query_style=settings.calendar_query_style,
        http_client=http_client,
        timeout_seconds=settings.http_timeout_seconds,
    )
