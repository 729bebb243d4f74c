"""
Google Calendar API client integration.

Calendar API Reference: https://developers.google.com/calendar/api/v3/reference
"""
import asyncio
from dataclasses import dataclass, field
from typing import List, Optional

import httpx

from voicedesk.config import get_settings
from voicedesk.utils.logger import get_logger
from voicedesk.utils.errors import CalendarError, AuthError, UpstreamTimeoutError

logger = get_logger(__name__)

CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"


@dataclass
class CalendarEvent:
    """Represents a calendar event."""
    event_id: str
    title: str
    start: str
    end: str
    is_all_day: bool = False
    attendees: List[str] = field(default_factory=list)
    description: Optional[str] = None
    location: Optional[str] = None
    html_link: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.event_id,
            "title": self.title,
            "start": self.start,
            "end": self.end,
            "is_all_day": self.is_all_day,
            "attendees": self.attendees,
            "description": self.description or "",
            "location": self.location or "",
            "html_link": self.html_link or "",
        }


def parse_event(item: dict) -> CalendarEvent:
    """
    Parse a raw API event into CalendarEvent.

    All-day events carry `date`, timed events carry `dateTime`.
    """
    start = item.get("start", {})
    end = item.get("end", {})
    is_all_day = "date" in start and "dateTime" not in start

    return CalendarEvent(
        event_id=item.get("id", ""),
        title=item.get("summary", "No Title"),
        start=start.get("date") if is_all_day else start.get("dateTime", ""),
        end=end.get("date") if is_all_day else end.get("dateTime", ""),
        is_all_day=is_all_day,
        attendees=[a["email"] for a in item.get("attendees", []) if a.get("email")],
        description=item.get("description"),
        location=item.get("location"),
        html_link=item.get("htmlLink"),
    )


class CalendarClient:
    """
    Google Calendar client for one connected account.

    Usage:
        client = CalendarClient(access_token)
        events = await client.list_events(time_min, time_max)
        event = await client.create_event({"summary": ..., "start": ..., "end": ...})
    """

    def __init__(self, access_token: str, calendar_id: str = "primary"):
        settings = get_settings()
        self.calendar_id = calendar_id
        self.timeout = settings.upstream_timeout_seconds
        self.retries = settings.upstream_retries
        self.headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        json_data: dict = None,
        params: dict = None,
        per_calendar: bool = True,
    ) -> Optional[dict]:
        """
        Authenticated request. Returns None for 404, {} for empty bodies.

        Endpoints are relative to this client's calendar unless per_calendar
        is False, in which case they are relative to the API root.
        """
        if per_calendar:
            url = f"{CALENDAR_API_BASE}/calendars/{self.calendar_id}{endpoint}"
        else:
            url = f"{CALENDAR_API_BASE}{endpoint}"

        for attempt in range(self.retries + 1):
            async with httpx.AsyncClient() as client:
                try:
                    response = await client.request(
                        method=method,
                        url=url,
                        headers=self.headers,
                        json=json_data,
                        params=params,
                        timeout=self.timeout,
                    )
                except httpx.TimeoutException:
                    if attempt < self.retries:
                        logger.warning("Calendar API timeout, retrying...")
                        continue
                    raise UpstreamTimeoutError("Google Calendar")
                except httpx.RequestError as e:
                    if attempt < self.retries:
                        await asyncio.sleep(2 ** attempt)
                        continue
                    logger.error(f"Calendar API request failed: {e}")
                    raise CalendarError("Google Calendar unavailable. Please try again later.")

            if 200 <= response.status_code < 300:
                if response.status_code == 204 or not response.content:
                    return {}
                return response.json()

            if response.status_code == 429 or response.status_code >= 500:
                if attempt < self.retries:
                    wait_time = 2 ** attempt
                    logger.warning(f"Calendar API transient error {response.status_code}, retrying in {wait_time}s...")
                    await asyncio.sleep(wait_time)
                    continue

            if response.status_code in (404, 410):
                return None

            if response.status_code == 401:
                raise AuthError("Calendar access token expired")

            if response.status_code == 403:
                raise CalendarError("Calendar permission denied. Please re-authorize the account.")

            logger.error(f"Calendar API error: {response.status_code} - {response.text}")
            raise CalendarError(f"Calendar API error: {response.status_code}")

        raise CalendarError("Google Calendar unavailable. Please try again later.")

    async def list_events(
        self,
        time_min: str,
        time_max: str,
        query: Optional[str] = None,
        max_results: int = 10,
    ) -> List[CalendarEvent]:
        """List single (expanded) events in a time range, ordered by start."""
        params = {
            "timeMin": time_min,
            "timeMax": time_max,
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": max_results,
        }
        if query:
            params["q"] = query

        response = await self._make_request("GET", "/events", params=params) or {}
        events = [parse_event(item) for item in response.get("items", [])]
        logger.info(f"Fetched {len(events)} calendar events")
        return events

    async def create_event(self, body: dict) -> CalendarEvent:
        response = await self._make_request("POST", "/events", json_data=body, params={"sendUpdates": "all"})
        if not response:
            raise CalendarError("Google Calendar did not return the created event.")
        logger.info(f"Created calendar event {response.get('id')}")
        return parse_event(response)

    async def update_event(self, event_id: str, changes: dict) -> Optional[CalendarEvent]:
        """Patch an event. Returns None if it doesn't exist."""
        response = await self._make_request(
            "PATCH", f"/events/{event_id}", json_data=changes, params={"sendUpdates": "all"}
        )
        return parse_event(response) if response else None

    async def delete_event(self, event_id: str) -> bool:
        response = await self._make_request("DELETE", f"/events/{event_id}", params={"sendUpdates": "all"})
        return response is not None

    async def list_calendars(self) -> List[dict]:
        """Calendars on the account's calendar list: [{id, summary, primary}]."""
        response = await self._make_request("GET", "/users/me/calendarList", per_calendar=False) or {}
        return [
            {"id": item.get("id"), "summary": item.get("summary"), "primary": bool(item.get("primary"))}
            for item in response.get("items", [])
        ]
