"""
Conversion between local schedule items and Google Calendar events.

Both directions go through EventFields so that the detector only ever
compares normalised values.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from calendar_sync.errors import EventConversionError
from day_planner.models import MAX_TITLE_LENGTH, EventFields, RemoteEventSnapshot, ScheduleItem

MIN_EVENT_DURATION_MIN = 15
UNTITLED_EVENT = "Untitled Event"

# Google Calendar event colorIds closest to the planner palette
GOOGLE_COLOR_IDS = {
    "indigo": "9",
    "blue": "9",
    "purple": "3",
    "pink": "4",
    "red": "11",
    "orange": "6",
    "amber": "5",
    "yellow": "5",
    "lime": "2",
    "green": "10",
    "emerald": "10",
    "teal": "7",
    "cyan": "7",
    "sky": "7",
}


def parse_rfc3339(value: str) -> datetime:
    """Parse an RFC 3339 timestamp as returned by the Calendar API."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def day_bounds(plan_date: date, time_zone: str) -> Tuple[datetime, datetime]:
    tz = ZoneInfo(time_zone)
    start = datetime.combine(plan_date, time(0, 0), tzinfo=tz)
    return start, start + timedelta(days=1)


def fields_from_item(item: ScheduleItem, plan_date: date) -> EventFields:
    return EventFields(
        title=item.title,
        description=item.description,
        event_date=plan_date,
        start_time=item.start_time,
        duration_minutes=item.duration_minutes,
    )


def _event_bounds(event: dict, tz: ZoneInfo) -> Tuple[datetime, datetime]:
    start = event.get("start") or {}
    end = event.get("end") or {}

    start_raw = start.get("dateTime") or start.get("date")
    if not start_raw:
        raise EventConversionError(f"Event {event.get('id')} has no start time")
    end_raw = end.get("dateTime") or end.get("date")

    if "T" in start_raw:
        start_dt = parse_rfc3339(start_raw)
        start_dt = start_dt.astimezone(tz) if start_dt.tzinfo else start_dt.replace(tzinfo=tz)
    else:
        # all-day event: midnight in the plan's zone
        start_dt = datetime.combine(date.fromisoformat(start_raw), time(0, 0), tzinfo=tz)

    if not end_raw:
        end_dt = start_dt
    elif "T" in end_raw:
        end_dt = parse_rfc3339(end_raw)
        end_dt = end_dt.astimezone(tz) if end_dt.tzinfo else end_dt.replace(tzinfo=tz)
    else:
        # all-day end dates are exclusive
        end_dt = datetime.combine(date.fromisoformat(end_raw), time(0, 0), tzinfo=tz)

    return start_dt, end_dt


def fields_from_event(event: dict, time_zone: str) -> EventFields:
    tz = ZoneInfo(time_zone)
    start_dt, end_dt = _event_bounds(event, tz)

    duration = round((end_dt - start_dt).total_seconds() / 60)
    if duration <= 0:
        # zero-length events still need a visible slot
        duration = MIN_EVENT_DURATION_MIN

    # Google accepts longer summaries than a schedule item can hold
    title = (event.get("summary") or "").strip()[:MAX_TITLE_LENGTH].rstrip() or UNTITLED_EVENT

    return EventFields(
        title=title,
        description=event.get("description"),
        event_date=start_dt.date(),
        start_time=start_dt.time(),
        duration_minutes=duration,
    )


def remote_updated(event: dict) -> Optional[datetime]:
    raw = event.get("updated")
    if not raw:
        return None
    try:
        return parse_rfc3339(raw)
    except ValueError:
        return None


def snapshot_from_event(event: dict, time_zone: str) -> RemoteEventSnapshot:
    return RemoteEventSnapshot(
        event_id=event["id"],
        fields=fields_from_event(event, time_zone),
        remote_updated=remote_updated(event),
    )


def event_body(
    fields: EventFields,
    time_zone: str,
    include_description: bool = True,
    color: Optional[str] = None,
) -> dict:
    """Build a Calendar API event resource from local wall-clock fields."""
    fmt = "%Y-%m-%dT%H:%M:%S"
    body = {
        "summary": fields.title,
        "start": {
            "dateTime": fields.start_datetime.strftime(fmt),
            "timeZone": time_zone,
        },
        "end": {
            "dateTime": fields.end_datetime.strftime(fmt),
            "timeZone": time_zone,
        },
    }
    if include_description:
        # PATCH semantics: an explicit empty string clears a remote description
        body["description"] = fields.description or ""
    if color and color in GOOGLE_COLOR_IDS:
        body["colorId"] = GOOGLE_COLOR_IDS[color]
    return body
