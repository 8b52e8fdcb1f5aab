"""
Sync engine for the day planner.

Reconciles the schedule items of one user's plan date against the remote
calendar. Each mapped item is classified by the detector and the winning
side is applied; conflicting mappings are flagged and then left alone
until a resolution clears them.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

from calendar_sync import metrics
from calendar_sync.conversion import (
    day_bounds,
    event_body,
    fields_from_event,
    fields_from_item,
    snapshot_from_event,
)
from calendar_sync.detector import compared_fields, detect_change
from calendar_sync.errors import CalendarApiError, EventConversionError, NotConnectedError
from day_planner.models import (
    CalendarAccount,
    ChangeKind,
    DayPlan,
    EventFields,
    ScheduleItem,
    SyncDirection,
    SyncMapping,
    SyncStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

IMPORTED_ITEM_COLOR = "indigo"


@dataclass
class SyncReport:
    """Outcome of one sync run."""
    plan_date: Optional[date] = None
    direction: Optional[str] = None
    created_local: int = 0
    created_remote: int = 0
    pushed: int = 0
    pulled: int = 0
    deleted_local: int = 0
    conflicts: int = 0
    blocked: int = 0
    unchanged: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return (
            self.created_local + self.created_remote + self.pushed
            + self.pulled + self.deleted_local
        )

    def summary(self) -> str:
        parts = []
        for label, count in (
            ("imported", self.created_local),
            ("exported", self.created_remote),
            ("pushed", self.pushed),
            ("pulled", self.pulled),
            ("deleted locally", self.deleted_local),
            ("new conflicts", self.conflicts),
            ("blocked by conflict", self.blocked),
        ):
            if count:
                parts.append(f"{count} {label}")
        if self.errors:
            parts.append(f"{len(self.errors)} errors")
        return ", ".join(parts) if parts else "No changes"

    def to_dict(self) -> dict:
        return {
            "plan_date": self.plan_date.isoformat() if self.plan_date else None,
            "direction": self.direction,
            "created_local": self.created_local,
            "created_remote": self.created_remote,
            "pushed": self.pushed,
            "pulled": self.pulled,
            "deleted_local": self.deleted_local,
            "conflicts": self.conflicts,
            "blocked": self.blocked,
            "unchanged": self.unchanged,
            "errors": list(self.errors),
            "summary": self.summary(),
        }


async def write_local(
    store,
    item: ScheduleItem,
    plan: DayPlan,
    target: EventFields,
    fields: Sequence[str],
) -> Optional[ScheduleItem]:
    """Overwrite the compared fields of a local item; a new date moves it to that day's plan."""
    changes = {}
    for name in fields:
        if name == "event_date":
            continue
        changes[name] = getattr(target, name)

    if "event_date" in fields and target.event_date != plan.plan_date:
        new_plan = await store.get_or_create_plan(item.user_id, target.event_date, plan.time_zone)
        changes["plan_id"] = new_plan.id

    return await store.update_item(item.user_id, item.id, **changes)


def mark_synced(mapping: SyncMapping, event: dict, time_zone: str) -> SyncMapping:
    mapping.snapshot = snapshot_from_event(event, time_zone)
    mapping.remote_event_id = event["id"]
    mapping.sync_status = SyncStatus.SYNCED
    mapping.local_last_synced = utcnow()
    mapping.remote_last_modified = mapping.snapshot.remote_updated
    return mapping


class SyncEngine:
    """
    Reconciles local schedule items with a remote calendar.

    `store` is a PlannerStore (or anything with the same coroutine
    methods); `calendar` is a CalendarIntegration.
    """

    def __init__(self, store, calendar):
        self.store = store
        self.calendar = calendar

    async def load_account(self, user_id: str) -> CalendarAccount:
        account = await self.store.get_account(user_id)
        if account is None:
            raise NotConnectedError("Google Calendar not connected")
        if not account.is_connected:
            raise NotConnectedError("Google Calendar sync is disabled")
        return account

    async def sync(
        self,
        user_id: str,
        plan_date: date,
        direction: Optional[SyncDirection] = None,
    ) -> SyncReport:
        account = await self.load_account(user_id)
        direction = SyncDirection(direction) if direction else account.sync_direction
        report = SyncReport(plan_date=plan_date, direction=direction.value)

        started = time.perf_counter()
        try:
            await self._sync_plan(account, plan_date, direction, report)
        except Exception:
            metrics.SYNC_RUNS_TOTAL.labels(direction=direction.value, outcome="failed").inc()
            raise
        finally:
            metrics.SYNC_DURATION_SECONDS.observe(time.perf_counter() - started)

        account.last_sync_at = utcnow()
        await self.store.save_account(account)

        outcome = "partial" if report.errors else "ok"
        metrics.SYNC_RUNS_TOTAL.labels(direction=direction.value, outcome=outcome).inc()
        logger.info(f"Sync for user {user_id} on {plan_date} ({direction.value}): {report.summary()}")
        return report

    async def _sync_plan(
        self,
        account: CalendarAccount,
        plan_date: date,
        direction: SyncDirection,
        report: SyncReport,
    ) -> None:
        plan = await self.store.get_or_create_plan(account.user_id, plan_date, account.time_zone)

        time_min, time_max = day_bounds(plan_date, plan.time_zone)
        events = await self.calendar.list_events(account.calendar_id, time_min, time_max)
        remote_by_id: Dict[str, dict] = {
            e["id"]: e for e in events if e.get("id") and e.get("status") != "cancelled"
        }

        if direction.pulls:
            await self._import_new_events(account, plan, remote_by_id.values(), report)

        items = await self.store.list_items(plan.id)
        mappings = {m.item_id: m for m in await self.store.list_mappings_for_plan(plan.id)}

        for item in items:
            try:
                await self._sync_item(account, plan, direction, item, mappings.get(item.id), remote_by_id, report)
            except (CalendarApiError, EventConversionError) as e:
                logger.error(f"Failed to sync item {item.id}: {e}")
                report.errors.append(f"{item.id}: {e}")
            except Exception as e:
                logger.exception(f"Unexpected error syncing item {item.id}")
                report.errors.append(f"{item.id}: {e}")

    async def _import_new_events(
        self,
        account: CalendarAccount,
        plan: DayPlan,
        events: Iterable[dict],
        report: SyncReport,
    ) -> None:
        for event in events:
            try:
                await self._import_event(account, plan, event, report)
            except EventConversionError as e:
                report.errors.append(f"{event['id']}: {e}")
            except Exception as e:
                logger.exception(f"Failed to import remote event {event['id']}")
                report.errors.append(f"{event['id']}: {e}")

    async def _import_event(self, account: CalendarAccount, plan: DayPlan, event: dict, report: SyncReport) -> None:
        if await self.store.get_mapping_by_event(account.user_id, event["id"]):
            return
        fields = fields_from_event(event, plan.time_zone)
        if fields.event_date != plan.plan_date:
            # started on another day and only overlaps this one
            return

        item = await self.store.create_item(
            account.user_id,
            plan.id,
            title=fields.title,
            start_time=fields.start_time,
            duration_minutes=fields.duration_minutes,
            description=fields.description,
            color=IMPORTED_ITEM_COLOR,
        )
        await self.store.create_mapping(
            account.user_id,
            item.id,
            event["id"],
            account.calendar_id,
            snapshot_from_event(event, plan.time_zone),
        )
        report.created_local += 1
        metrics.SYNC_CHANGES_TOTAL.labels(action="created_local").inc()

    async def _sync_item(
        self,
        account: CalendarAccount,
        plan: DayPlan,
        direction: SyncDirection,
        item: ScheduleItem,
        mapping: Optional[SyncMapping],
        remote_by_id: Dict[str, dict],
        report: SyncReport,
    ) -> None:
        if mapping is None:
            if direction.pushes and not item.is_completed:
                await self._export_item(account, plan, item)
                report.created_remote += 1
                metrics.SYNC_CHANGES_TOTAL.labels(action="created_remote").inc()
            return

        if mapping.is_blocked:
            report.blocked += 1
            return

        event = remote_by_id.get(mapping.remote_event_id)
        if event is None:
            # moved to another day, or deleted
            event = await self.calendar.get_event(mapping.calendar_id, mapping.remote_event_id)
        if event is None:
            await self._handle_remote_deleted(account, plan, direction, item, mapping, report)
            return

        fields = compared_fields(account.preferences.include_description)
        local = fields_from_item(item, plan.plan_date)
        remote = fields_from_event(event, plan.time_zone)
        detection = detect_change(local, mapping.snapshot, remote, fields)

        if detection.kind == ChangeKind.NO_CHANGE:
            report.unchanged += 1
            if detection.converged or mapping.snapshot is None or mapping.sync_status != SyncStatus.SYNCED:
                await self.store.save_mapping(mark_synced(mapping, event, plan.time_zone))

        elif detection.kind == ChangeKind.LOCAL_AHEAD:
            if direction.pushes and not item.is_completed:
                body = self._body(account, plan, item, local)
                updated = await self.calendar.update_event(mapping.calendar_id, mapping.remote_event_id, body)
                await self.store.save_mapping(mark_synced(mapping, updated, plan.time_zone))
                report.pushed += 1
                metrics.SYNC_CHANGES_TOTAL.labels(action="pushed").inc()
            elif mapping.sync_status != SyncStatus.PENDING:
                mapping.sync_status = SyncStatus.PENDING
                await self.store.save_mapping(mapping)

        elif detection.kind == ChangeKind.REMOTE_AHEAD:
            if direction.pulls:
                await write_local(self.store, item, plan, remote, fields)
                await self.store.save_mapping(mark_synced(mapping, event, plan.time_zone))
                report.pulled += 1
                metrics.SYNC_CHANGES_TOTAL.labels(action="pulled").inc()

        else:
            mapping.sync_status = SyncStatus.CONFLICT
            mapping.conflict_resolution = None
            await self.store.save_mapping(mapping)
            report.conflicts += 1
            metrics.CONFLICTS_DETECTED_TOTAL.inc()
            logger.warning(
                f"Conflict on item {item.id}: local changed {detection.local_changes}, "
                f"remote changed {detection.remote_changes}"
            )

    async def _handle_remote_deleted(
        self,
        account: CalendarAccount,
        plan: DayPlan,
        direction: SyncDirection,
        item: ScheduleItem,
        mapping: SyncMapping,
        report: SyncReport,
    ) -> None:
        fields = compared_fields(account.preferences.include_description)
        local = fields_from_item(item, plan.plan_date)
        local_changed = mapping.snapshot is None or bool(mapping.snapshot.fields.diff(local, fields))

        await self.store.delete_mapping(mapping.id)

        if not local_changed and direction.pulls:
            await self.store.delete_item(account.user_id, item.id)
            report.deleted_local += 1
            metrics.SYNC_CHANGES_TOTAL.labels(action="deleted_local").inc()
            logger.info(f"Remote event {mapping.remote_event_id} gone, deleted item {item.id}")
            return

        # local edits outlive the remote deletion
        if direction.pushes and not item.is_completed:
            await self._export_item(account, plan, item)
            report.created_remote += 1
            metrics.SYNC_CHANGES_TOTAL.labels(action="created_remote").inc()
            logger.info(f"Remote event {mapping.remote_event_id} gone, re-created from item {item.id}")

    def _body(self, account: CalendarAccount, plan: DayPlan, item: ScheduleItem, fields: EventFields) -> dict:
        prefs = account.preferences
        return event_body(
            fields,
            plan.time_zone,
            include_description=prefs.include_description,
            color=item.color if prefs.sync_calendar_colors else None,
        )

    async def _export_item(self, account: CalendarAccount, plan: DayPlan, item: ScheduleItem) -> SyncMapping:
        body = self._body(account, plan, item, fields_from_item(item, plan.plan_date))
        event = await self.calendar.create_event(account.calendar_id, body)
        return await self.store.create_mapping(
            account.user_id,
            item.id,
            event["id"],
            account.calendar_id,
            snapshot_from_event(event, plan.time_zone),
        )

    async def remove_item(self, user_id: str, item_id: str) -> bool:
        """
        Unlink an item before it is deleted locally. The remote event is
        deleted too when the account pushes; a failure there is logged and
        the local delete proceeds.
        """
        mapping = await self.store.get_mapping_for_item(item_id)
        if mapping is None:
            return False

        account = await self.store.get_account(user_id)
        if account is not None and account.is_connected and account.sync_direction.pushes:
            try:
                await self.calendar.delete_event(mapping.calendar_id, mapping.remote_event_id)
                metrics.SYNC_CHANGES_TOTAL.labels(action="deleted_remote").inc()
            except CalendarApiError as e:
                logger.warning(f"Could not delete remote event {mapping.remote_event_id}: {e}")

        await self.store.delete_mapping(mapping.id)
        return True
