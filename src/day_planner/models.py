from __future__ import annotations

import os
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

DEFAULT_TIME_ZONE = os.getenv("DEFAULT_TIME_ZONE", "America/Chicago")
DEFAULT_COLOR = "indigo"
MAX_TITLE_LENGTH = 255

COLORS = (
    "indigo", "blue", "purple", "pink", "red", "orange", "amber",
    "yellow", "lime", "green", "emerald", "teal", "cyan", "sky",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncStatus(str, Enum):
    SYNCED = "synced"
    PENDING = "pending"
    CONFLICT = "conflict"


class ConflictResolution(str, Enum):
    KEEP_LOCAL = "local-wins"
    KEEP_REMOTE = "remote-wins"
    MANUAL = "manual"


class SyncDirection(str, Enum):
    PULL_ONLY = "pull-only"
    PUSH_ONLY = "push-only"
    BIDIRECTIONAL = "bidirectional"

    @property
    def pulls(self) -> bool:
        return self in (SyncDirection.PULL_ONLY, SyncDirection.BIDIRECTIONAL)

    @property
    def pushes(self) -> bool:
        return self in (SyncDirection.PUSH_ONLY, SyncDirection.BIDIRECTIONAL)


class ChangeKind(str, Enum):
    NO_CHANGE = "no-change"
    LOCAL_AHEAD = "local-ahead"
    REMOTE_AHEAD = "remote-ahead"
    CONFLICT = "conflict"


def _minute(t: time) -> time:
    return t.replace(second=0, microsecond=0, tzinfo=None)


def _blank_to_none(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    return v if v.strip() else None


class DayPlan(BaseModel):
    id: str
    user_id: str
    plan_date: date
    time_zone: str = DEFAULT_TIME_ZONE
    view_start_time: time = Field(default_factory=lambda: time(6, 0))
    view_end_time: time = Field(default_factory=lambda: time(22, 0))
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ScheduleItem(BaseModel):
    id: str
    user_id: str
    plan_id: str
    title: str = Field(..., min_length=1, max_length=MAX_TITLE_LENGTH)
    description: Optional[str] = None
    start_time: time
    duration_minutes: int = Field(30, ge=1)
    color: str = DEFAULT_COLOR
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        v2 = v.strip()
        if not v2:
            raise ValueError("title must not be blank")
        return v2

    @field_validator("start_time")
    @classmethod
    def start_to_minute(cls, v: time) -> time:
        return _minute(v)

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None


SYNC_FIELDS: Tuple[str, ...] = (
    "title",
    "description",
    "event_date",
    "start_time",
    "duration_minutes",
)


class EventFields(BaseModel):
    """
    The comparable shape of a calendar entry.

    Local items, snapshots and remote events are all reduced to this
    before being diffed, so normalisation happens in exactly one place.
    """

    model_config = {"frozen": True}

    title: str
    description: Optional[str] = None
    event_date: date
    start_time: time
    duration_minutes: int = Field(..., ge=1)

    @field_validator("description")
    @classmethod
    def empty_description_is_none(cls, v: Optional[str]) -> Optional[str]:
        return _blank_to_none(v)

    @field_validator("start_time")
    @classmethod
    def start_to_minute(cls, v: time) -> time:
        return _minute(v)

    @property
    def start_datetime(self) -> datetime:
        return datetime.combine(self.event_date, self.start_time)

    @property
    def end_datetime(self) -> datetime:
        return self.start_datetime + timedelta(minutes=self.duration_minutes)

    def diff(self, other: "EventFields", fields: Iterable[str] = SYNC_FIELDS) -> List[str]:
        return [f for f in fields if getattr(self, f) != getattr(other, f)]


class RemoteEventSnapshot(BaseModel):
    event_id: str
    fields: EventFields
    remote_updated: Optional[datetime] = None
    fetched_at: datetime = Field(default_factory=utcnow)


class SyncMapping(BaseModel):
    id: str
    user_id: str
    item_id: str
    remote_event_id: str
    calendar_id: str
    sync_status: SyncStatus = SyncStatus.SYNCED
    conflict_resolution: Optional[ConflictResolution] = None
    snapshot: Optional[RemoteEventSnapshot] = None
    local_last_synced: Optional[datetime] = None
    remote_last_modified: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_blocked(self) -> bool:
        return self.sync_status == SyncStatus.CONFLICT


class CalendarPreferences(BaseModel):
    include_description: bool = True
    sync_calendar_colors: bool = False


class CalendarAccount(BaseModel):
    user_id: str
    account_email: Optional[str] = None
    calendar_id: str = "primary"
    time_zone: str = DEFAULT_TIME_ZONE
    sync_enabled: bool = True
    sync_direction: SyncDirection = SyncDirection.BIDIRECTIONAL
    preferences: CalendarPreferences = Field(default_factory=CalendarPreferences)
    token_expires_at: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None
    connected_at: datetime = Field(default_factory=utcnow)
    disconnected_at: Optional[datetime] = None

    @property
    def is_connected(self) -> bool:
        return self.sync_enabled and self.disconnected_at is None


class ItemEdit(BaseModel):
    """
    Fields a user typed in. Fields never passed keep their current value;
    an explicitly passed empty description clears it.
    """

    title: Optional[str] = None
    description: Optional[str] = None
    start_time: Optional[time] = None
    duration_minutes: Optional[int] = Field(None, ge=1)

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v2 = v.strip()
        if not v2:
            raise ValueError("title must not be blank")
        return v2

    def _changes(self) -> dict:
        return {
            name: value
            for name, value in self.model_dump(exclude_unset=True).items()
            if value is not None or name == "description"
        }

    @property
    def is_empty(self) -> bool:
        return not self._changes()

    def apply_to(self, fields: EventFields) -> EventFields:
        # rebuilt rather than model_copy'd so the edit goes through validation
        return EventFields(**{**fields.model_dump(), **self._changes()})
