import itertools
import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

import pytest

from calendar_sync.conversion import parse_rfc3339
from calendar_sync.errors import CalendarApiError
from day_planner.models import (
    DEFAULT_COLOR,
    CalendarAccount,
    DayPlan,
    ScheduleItem,
    SyncMapping,
    SyncStatus,
)
from storage.planner_store import ITEM_COLUMNS

TZ = "America/Chicago"
DAY = date(2026, 3, 2)


def _id() -> str:
    return str(uuid.uuid4())


class FakePlannerStore:
    """In-memory PlannerStore. Returns copies so callers cannot mutate stored rows."""

    def __init__(self):
        self.plans = {}
        self.items = {}
        self.mappings = {}
        self.accounts = {}

    # plans

    async def get_plan(self, user_id, plan_date):
        for p in self.plans.values():
            if p.user_id == user_id and p.plan_date == plan_date:
                return p.model_copy()
        return None

    async def get_plan_by_id(self, user_id, plan_id):
        p = self.plans.get(plan_id)
        return p.model_copy() if p and p.user_id == user_id else None

    async def get_or_create_plan(self, user_id, plan_date, time_zone):
        existing = await self.get_plan(user_id, plan_date)
        if existing:
            return existing
        plan = DayPlan(id=_id(), user_id=user_id, plan_date=plan_date, time_zone=time_zone)
        self.plans[plan.id] = plan
        return plan.model_copy()

    async def upsert_plan(self, user_id, plan_date, time_zone, view_start_time, view_end_time):
        plan = await self.get_or_create_plan(user_id, plan_date, time_zone)
        plan = plan.model_copy(update={
            "time_zone": time_zone,
            "view_start_time": view_start_time,
            "view_end_time": view_end_time,
        })
        self.plans[plan.id] = plan
        return plan.model_copy()

    async def delete_plan(self, user_id, plan_id):
        plan = self.plans.get(plan_id)
        if plan is None or plan.user_id != user_id:
            return False
        for item in [i for i in self.items.values() if i.plan_id == plan_id]:
            await self.delete_item(user_id, item.id)
        del self.plans[plan_id]
        return True

    # items

    async def list_items(self, plan_id):
        items = [i for i in self.items.values() if i.plan_id == plan_id]
        return [i.model_copy() for i in sorted(items, key=lambda i: (i.start_time, i.created_at))]

    async def get_item(self, user_id, item_id):
        i = self.items.get(item_id)
        return i.model_copy() if i and i.user_id == user_id else None

    async def create_item(self, user_id, plan_id, title, start_time, duration_minutes, description=None, color=DEFAULT_COLOR):
        item = ScheduleItem(
            id=_id(),
            user_id=user_id,
            plan_id=plan_id,
            title=title,
            description=description,
            start_time=start_time,
            duration_minutes=duration_minutes,
            color=color,
        )
        self.items[item.id] = item
        return item.model_copy()

    async def update_item(self, user_id, item_id, **changes):
        unknown = set(changes) - ITEM_COLUMNS
        if unknown:
            raise ValueError(f"Unknown schedule item columns: {sorted(unknown)}")
        item = self.items.get(item_id)
        if item is None or item.user_id != user_id:
            return None
        item = ScheduleItem(**{**item.model_dump(), **changes, "updated_at": datetime.now(timezone.utc)})
        self.items[item.id] = item
        return item.model_copy()

    async def delete_item(self, user_id, item_id):
        item = self.items.get(item_id)
        if item is None or item.user_id != user_id:
            return False
        for m in [m for m in self.mappings.values() if m.item_id == item_id]:
            del self.mappings[m.id]
        del self.items[item_id]
        return True

    # mappings

    async def get_mapping(self, user_id, mapping_id):
        m = self.mappings.get(mapping_id)
        return m.model_copy(deep=True) if m and m.user_id == user_id else None

    async def get_mapping_for_item(self, item_id):
        for m in self.mappings.values():
            if m.item_id == item_id:
                return m.model_copy(deep=True)
        return None

    async def get_mapping_by_event(self, user_id, remote_event_id):
        for m in self.mappings.values():
            if m.user_id == user_id and m.remote_event_id == remote_event_id:
                return m.model_copy(deep=True)
        return None

    async def list_mappings_for_plan(self, plan_id):
        item_ids = {i.id for i in self.items.values() if i.plan_id == plan_id}
        return [m.model_copy(deep=True) for m in self.mappings.values() if m.item_id in item_ids]

    async def create_mapping(self, user_id, item_id, remote_event_id, calendar_id, snapshot=None):
        mapping = SyncMapping(
            id=_id(),
            user_id=user_id,
            item_id=item_id,
            remote_event_id=remote_event_id,
            calendar_id=calendar_id,
            snapshot=snapshot,
            local_last_synced=datetime.now(timezone.utc),
            remote_last_modified=snapshot.remote_updated if snapshot else None,
        )
        self.mappings[mapping.id] = mapping
        return mapping.model_copy(deep=True)

    async def save_mapping(self, mapping):
        if mapping.id not in self.mappings:
            return mapping
        self.mappings[mapping.id] = mapping.model_copy(deep=True)
        return mapping.model_copy(deep=True)

    async def delete_mapping(self, mapping_id):
        return self.mappings.pop(mapping_id, None) is not None

    async def mark_pending(self, item_id):
        for m in self.mappings.values():
            if m.item_id == item_id and m.sync_status == SyncStatus.SYNCED:
                m.sync_status = SyncStatus.PENDING
                return True
        return False

    async def count_conflicts(self):
        return sum(1 for m in self.mappings.values() if m.sync_status == SyncStatus.CONFLICT)

    # accounts

    async def get_account(self, user_id):
        a = self.accounts.get(user_id)
        return a.model_copy(deep=True) if a else None

    async def list_sync_accounts(self):
        return [a.model_copy(deep=True) for a in sorted(self.accounts.values(), key=lambda a: a.user_id) if a.is_connected]

    async def save_account(self, account):
        self.accounts[account.user_id] = account.model_copy(deep=True)
        return account.model_copy(deep=True)

    # test helpers

    def mapping_for(self, item_id) -> Optional[SyncMapping]:
        for m in self.mappings.values():
            if m.item_id == item_id:
                return m
        return None


class FakeCalendar:
    """In-memory stand-in for CalendarIntegration with the same coroutine surface."""

    def __init__(self, time_zone: str = TZ):
        self.time_zone = time_zone
        self.events = {}
        self.calls = []
        self.fail = set()
        self._ids = itertools.count(1)
        self._clock = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def _tick(self) -> str:
        self._clock += timedelta(seconds=1)
        return self._clock.isoformat().replace("+00:00", "Z")

    def _check(self, action):
        self.calls.append(action)
        if action in self.fail:
            raise CalendarApiError(f"Failed to {action}", status=500)

    def _bounds(self, event):
        tz = ZoneInfo(event["start"].get("timeZone") or self.time_zone)

        def parse(part):
            raw = part.get("dateTime")
            if raw is None:
                return datetime.combine(date.fromisoformat(part["date"]), time(0, 0), tzinfo=tz)
            dt = parse_rfc3339(raw)
            return dt if dt.tzinfo else dt.replace(tzinfo=tz)

        return parse(event["start"]), parse(event["end"])

    def add_event(self, title, start: datetime, minutes: int = 30, description=None, event_id=None):
        event_id = event_id or f"evt{next(self._ids)}"
        end = start + timedelta(minutes=minutes)
        fmt = "%Y-%m-%dT%H:%M:%S"
        event = {
            "id": event_id,
            "status": "confirmed",
            "summary": title,
            "start": {"dateTime": start.strftime(fmt), "timeZone": self.time_zone},
            "end": {"dateTime": end.strftime(fmt), "timeZone": self.time_zone},
            "updated": self._tick(),
        }
        if description is not None:
            event["description"] = description
        self.events[event_id] = event
        return dict(event)

    def edit_event(self, event_id, **changes):
        self.events[event_id] = {**self.events[event_id], **changes, "updated": self._tick()}
        return dict(self.events[event_id])

    async def list_events(self, calendar_id, time_min, time_max):
        self._check("list")
        out = []
        for event in self.events.values():
            start, end = self._bounds(event)
            if start < time_max and end > time_min:
                out.append(dict(event))
        return out

    async def get_event(self, calendar_id, event_id):
        self._check("get")
        event = self.events.get(event_id)
        if event is None or event.get("status") == "cancelled":
            return None
        return dict(event)

    async def create_event(self, calendar_id, body):
        self._check("create")
        event = {**body, "id": f"evt{next(self._ids)}", "status": "confirmed", "updated": self._tick()}
        self.events[event["id"]] = event
        return dict(event)

    async def update_event(self, calendar_id, event_id, body):
        self._check("update")
        if event_id not in self.events:
            raise CalendarApiError("Failed to update Google Calendar event", status=404)
        self.events[event_id] = {**self.events[event_id], **body, "updated": self._tick()}
        return dict(self.events[event_id])

    async def delete_event(self, calendar_id, event_id):
        self._check("delete")
        return self.events.pop(event_id, None) is not None


@pytest.fixture
def store():
    return FakePlannerStore()


@pytest.fixture
def calendar():
    return FakeCalendar()


@pytest.fixture
def account(store):
    acct = CalendarAccount(user_id="alice", account_email="alice@example.com", time_zone=TZ)
    store.accounts[acct.user_id] = acct
    return acct


@pytest.fixture
def calendar_factory(calendar):
    async def _factory(user_id):
        return calendar
    return _factory


@pytest.fixture
def plan_with_item(store):
    """A plan for DAY with one local 09:00-09:30 item."""
    plan = DayPlan(id=_id(), user_id="alice", plan_date=DAY, time_zone=TZ)
    store.plans[plan.id] = plan
    item = ScheduleItem(
        id=_id(),
        user_id="alice",
        plan_id=plan.id,
        title="Standup",
        description="daily",
        start_time=time(9, 0),
        duration_minutes=30,
    )
    store.items[item.id] = item
    return plan, item
