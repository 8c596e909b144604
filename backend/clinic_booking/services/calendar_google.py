"""
Google Calendar gateway.

Reads busy time and mirrors reservations as events in each doctor's calendar,
authenticating as a service account. Every API failure, auth problem or socket
timeout is re-raised as ExternalUnavailable so booking code can downgrade it to a
sync status.
"""
from __future__ import annotations

import json
import logging
from datetime import date, datetime, time, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..errors import ExternalUnavailable, InvalidArgument
from .calendar_base import CalendarGateway
from .intervals import BusyBlock, TimeInterval

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]

_TRANSPORT_ERRORS = (HttpError, GoogleAuthError, httplib2.HttpLib2Error, TimeoutError, OSError)


def _rfc3339(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_rfc3339(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _http_error_message(e: HttpError) -> str:
    try:
        details = json.loads(e.content.decode("utf-8")) if e.content else {}
    except (ValueError, UnicodeDecodeError):
        details = {}
    return details.get("error", {}).get("message", str(e))


def event_to_busy_block(event: Dict[str, Any], tz: ZoneInfo) -> Optional[BusyBlock]:
    """
    Project one events.list item to a busy interval.

    Cancelled events yield None. All-day events (``date`` instead of
    ``dateTime``) block whole days in clinic time; their end date is exclusive.
    """
    if event.get("status") == "cancelled":
        return None
    start = event.get("start") or {}
    end = event.get("end") or {}
    if start.get("date"):
        end_day = date.fromisoformat(end.get("date") or start["date"])
        start_day = date.fromisoformat(start["date"])
        if end_day <= start_day:
            end_day = date.fromordinal(start_day.toordinal() + 1)
        return TimeInterval(
            datetime.combine(start_day, time.min, tzinfo=tz),
            datetime.combine(end_day, time.min, tzinfo=tz),
        )
    if start.get("dateTime") and end.get("dateTime"):
        try:
            return TimeInterval(_parse_rfc3339(start["dateTime"]), _parse_rfc3339(end["dateTime"]))
        except InvalidArgument:
            logger.warning("Skipping calendar event %s with empty or inverted time range", event.get("id"))
            return None
    return None


class GoogleCalendarGateway(CalendarGateway):
    def __init__(self, service: Any, default_calendar_id: str, tz: ZoneInfo, num_retries: int = 1) -> None:
        self.service = service
        self.default_calendar_id = default_calendar_id
        self.tz = tz
        self.num_retries = num_retries

    @classmethod
    def from_service_account_file(
        cls,
        keyfile: str,
        default_calendar_id: str,
        tz: ZoneInfo,
        timeout: float = 10.0,
        num_retries: int = 1,
    ) -> "GoogleCalendarGateway":
        credentials = service_account.Credentials.from_service_account_file(keyfile, scopes=SCOPES)
        # the httplib2 timeout bounds every request issued through this client
        http = AuthorizedHttp(credentials, http=httplib2.Http(timeout=timeout))
        service = build("calendar", "v3", http=http, cache_discovery=False)
        logger.info("Google Calendar client ready (default calendar %s, timeout %.1fs)", default_calendar_id, timeout)
        return cls(service, default_calendar_id, tz, num_retries=num_retries)

    def _calendar(self, calendar_id: Optional[str]) -> str:
        return calendar_id or self.default_calendar_id

    def _event_times(self, interval: TimeInterval) -> Dict[str, Any]:
        return {
            "start": {"dateTime": _rfc3339(interval.start), "timeZone": self.tz.key},
            "end": {"dateTime": _rfc3339(interval.end), "timeZone": self.tz.key},
        }

    def list_busy(self, window_start: datetime, window_end: datetime, calendar_id: Optional[str] = None) -> List[BusyBlock]:
        cal = self._calendar(calendar_id)
        blocks: List[BusyBlock] = []
        page_token = None
        try:
            # events.list rather than freebusy so all-day events are visible
            while True:
                resp = self.service.events().list(
                    calendarId=cal,
                    timeMin=_rfc3339(window_start),
                    timeMax=_rfc3339(window_end),
                    singleEvents=True,
                    orderBy="startTime",
                    pageToken=page_token,
                ).execute(num_retries=self.num_retries)
                for event in resp.get("items", []):
                    block = event_to_busy_block(event, self.tz)
                    if block is not None:
                        blocks.append(block)
                page_token = resp.get("nextPageToken")
                if not page_token:
                    break
        except HttpError as e:
            logger.error("Listing events of calendar %s failed: %s (status %s)", cal, _http_error_message(e), e.resp.status)
            raise ExternalUnavailable(f"Failed to read calendar {cal}") from e
        except _TRANSPORT_ERRORS as e:
            logger.error("Listing events of calendar %s failed: %s", cal, e)
            raise ExternalUnavailable(f"Failed to read calendar {cal}") from e
        return blocks

    def insert_event(self, calendar_id: Optional[str], summary: str, description: str, interval: TimeInterval) -> str:
        cal = self._calendar(calendar_id)
        body = {"summary": summary or "", "description": description or "", **self._event_times(interval)}
        try:
            # service accounts cannot send invitations
            event = self.service.events().insert(
                calendarId=cal, body=body, sendUpdates="none"
            ).execute(num_retries=self.num_retries)
        except HttpError as e:
            logger.error("Creating event in calendar %s failed: %s (status %s)", cal, _http_error_message(e), e.resp.status)
            raise ExternalUnavailable(f"Failed to create calendar event: {_http_error_message(e)}") from e
        except _TRANSPORT_ERRORS as e:
            logger.error("Creating event in calendar %s failed: %s", cal, e)
            raise ExternalUnavailable(f"Failed to create calendar event: {e}") from e
        logger.info("Created calendar event %s in %s", event.get("id"), cal)
        return event["id"]

    def update_event(
        self,
        event_id: str,
        calendar_id: Optional[str],
        summary: Optional[str] = None,
        description: Optional[str] = None,
        interval: Optional[TimeInterval] = None,
    ) -> None:
        cal = self._calendar(calendar_id)
        patch: Dict[str, Any] = {}
        if summary is not None:
            patch["summary"] = summary
        if description is not None:
            patch["description"] = description
        if interval is not None:
            patch.update(self._event_times(interval))
        if not patch:
            return
        try:
            self.service.events().patch(
                calendarId=cal, eventId=event_id, body=patch, sendUpdates="none"
            ).execute(num_retries=self.num_retries)
        except HttpError as e:
            logger.error("Updating event %s in %s failed: %s (status %s)", event_id, cal, _http_error_message(e), e.resp.status)
            raise ExternalUnavailable(f"Failed to update calendar event {event_id}") from e
        except _TRANSPORT_ERRORS as e:
            logger.error("Updating event %s in %s failed: %s", event_id, cal, e)
            raise ExternalUnavailable(f"Failed to update calendar event {event_id}") from e
        logger.info("Updated calendar event %s in %s", event_id, cal)

    def delete_event(self, event_id: str, calendar_id: Optional[str]) -> None:
        cal = self._calendar(calendar_id)
        try:
            self.service.events().delete(
                calendarId=cal, eventId=event_id, sendUpdates="none"
            ).execute(num_retries=self.num_retries)
        except HttpError as e:
            if e.resp.status in (404, 410):
                logger.info("Calendar event %s already gone from %s", event_id, cal)
                return
            logger.error("Deleting event %s from %s failed: %s (status %s)", event_id, cal, _http_error_message(e), e.resp.status)
            raise ExternalUnavailable(f"Failed to delete calendar event {event_id}") from e
        except _TRANSPORT_ERRORS as e:
            logger.error("Deleting event %s from %s failed: %s", event_id, cal, e)
            raise ExternalUnavailable(f"Failed to delete calendar event {event_id}") from e
        logger.info("Deleted calendar event %s from %s", event_id, cal)
