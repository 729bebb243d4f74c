"""
Calendar service - handler behind the `calendar_actions` tool.

All arguments are validated before the first provider call, so an action
either reaches Google Calendar complete or not at all.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from voicedesk.integrations.calendar_client import CalendarClient
from voicedesk.models.account import Account
from voicedesk.utils.logger import get_logger
from voicedesk.utils.errors import EventNotFoundError, InvalidRequestError, UnknownActionError
from voicedesk.utils.validators import clamp_int, email_list, optional_str, parse_datetime, require_str

logger = get_logger(__name__)

TOOL_NAME = "calendar_actions"

DEFAULT_EVENT_MINUTES = 30


def _event_time(value: datetime) -> dict:
    return {"dateTime": value.isoformat()}


class CalendarService:
    """
    Calendar operations for one connected account.

    Usage:
        service = CalendarService(account)
        result = await service.handle("list", {"days": 3})
        result = await service.handle("create", {"title": "Standup", "start_time": "2025-01-06T09:00:00+01:00"})
    """

    def __init__(self, account: Account, calendar: Optional[CalendarClient] = None):
        self.account = account
        self.calendar = calendar or CalendarClient(account.access_token)
        self._actions = {
            "list": self.list_events,
            "create": self.create_event,
            "update": self.update_event,
            "delete": self.delete_event,
        }

    async def handle(self, action: Optional[str], args: dict) -> dict:
        handler = self._actions.get(action or "")
        if handler is None:
            raise UnknownActionError(TOOL_NAME, action, list(self._actions))
        return await handler(args)

    async def list_events(self, args: dict) -> dict:
        """Events in an explicit range, or from now over the next `days` days."""
        if args.get("start_time"):
            time_min = parse_datetime(args["start_time"], "start_time")
        else:
            time_min = datetime.now(timezone.utc)

        if args.get("end_time"):
            time_max = parse_datetime(args["end_time"], "end_time")
        else:
            days = clamp_int(args.get("days"), default=7, minimum=1, maximum=60)
            time_max = time_min + timedelta(days=days)

        if time_max <= time_min:
            raise InvalidRequestError("end_time must be after start_time")

        events = await self.calendar.list_events(
            time_min.isoformat(),
            time_max.isoformat(),
            query=optional_str(args, "query"),
            max_results=clamp_int(args.get("max_results"), default=10, minimum=1, maximum=50),
        )
        return {
            "account": self.account.email,
            "count": len(events),
            "events": [event.to_dict() for event in events],
        }

    async def create_event(self, args: dict) -> dict:
        title = require_str(args, "title")
        start = parse_datetime(require_str(args, "start_time"), "start_time")
        if args.get("end_time"):
            end = parse_datetime(args["end_time"], "end_time")
        else:
            end = start + timedelta(minutes=DEFAULT_EVENT_MINUTES)
        if end <= start:
            raise InvalidRequestError("end_time must be after start_time")

        body = {
            "summary": title,
            "start": _event_time(start),
            "end": _event_time(end),
        }
        if optional_str(args, "description"):
            body["description"] = optional_str(args, "description")
        if optional_str(args, "location"):
            body["location"] = optional_str(args, "location")
        attendees = email_list(args.get("attendees"), "attendees")
        if attendees:
            body["attendees"] = [{"email": address} for address in attendees]

        event = await self.calendar.create_event(body)
        logger.info(f"Created event '{title}' on {self.account.email}")
        return {"event": event.to_dict()}

    async def update_event(self, args: dict) -> dict:
        event_id = require_str(args, "event_id")

        changes = {}
        if optional_str(args, "title"):
            changes["summary"] = optional_str(args, "title")
        start = parse_datetime(args["start_time"], "start_time") if args.get("start_time") else None
        end = parse_datetime(args["end_time"], "end_time") if args.get("end_time") else None
        if start and end and end <= start:
            raise InvalidRequestError("end_time must be after start_time")
        if start:
            changes["start"] = _event_time(start)
        if end:
            changes["end"] = _event_time(end)
        for field in ("description", "location"):
            if field in args:
                changes[field] = optional_str(args, field) or ""
        if "attendees" in args:
            changes["attendees"] = [{"email": a} for a in email_list(args.get("attendees"), "attendees")]

        if not changes:
            raise InvalidRequestError("Nothing to update")

        event = await self.calendar.update_event(event_id, changes)
        if event is None:
            raise EventNotFoundError(event_id)
        return {"event": event.to_dict()}

    async def delete_event(self, args: dict) -> dict:
        event_id = require_str(args, "event_id")
        if not await self.calendar.delete_event(event_id):
            raise EventNotFoundError(event_id)
        logger.info(f"Deleted event {event_id} on {self.account.email}")
        return {"event_id": event_id, "deleted": True}
