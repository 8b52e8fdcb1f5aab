import logging
from typing import Optional

from calendar_sync import metrics
from calendar_sync.conversion import event_body, fields_from_event, fields_from_item
from calendar_sync.detector import compared_fields
from calendar_sync.engine import mark_synced, write_local
from calendar_sync.errors import (
    ConflictStateError,
    ItemNotFoundError,
    MappingNotFoundError,
    PlanNotFoundError,
    ValidationError,
)
from day_planner.models import (
    CalendarPreferences,
    ConflictResolution,
    EventFields,
    ItemEdit,
    SyncMapping,
    SyncStatus,
)

logger = logging.getLogger(__name__)


def resolved_fields(
    resolution: ConflictResolution,
    local: EventFields,
    remote: Optional[EventFields],
    edit: Optional[ItemEdit] = None,
) -> Optional[EventFields]:
    """
    The state both sides end up in. None means "the item goes away"
    (keep-remote against a deleted remote event).
    """
    if resolution == ConflictResolution.KEEP_LOCAL:
        return local
    if resolution == ConflictResolution.KEEP_REMOTE:
        return remote
    if edit is None or edit.is_empty:
        raise ValidationError("Manual resolution requires the edited fields")
    return edit.apply_to(local)


class ConflictResolver:
    """Applies a user's choice to a mapping flagged as conflicting."""

    def __init__(self, store, calendar):
        self.store = store
        self.calendar = calendar

    async def resolve(
        self,
        user_id: str,
        mapping_id: str,
        resolution: ConflictResolution,
        edit: Optional[ItemEdit] = None,
    ) -> SyncMapping:
        resolution = ConflictResolution(resolution)

        mapping = await self.store.get_mapping(user_id, mapping_id)
        if mapping is None:
            raise MappingNotFoundError(f"Sync mapping {mapping_id} not found")
        if not mapping.is_blocked:
            raise ConflictStateError(f"Sync mapping {mapping_id} is not in conflict")

        item = await self.store.get_item(user_id, mapping.item_id)
        if item is None:
            raise ItemNotFoundError(f"Schedule item {mapping.item_id} not found")
        plan = await self.store.get_plan_by_id(user_id, item.plan_id)
        if plan is None:
            raise PlanNotFoundError(f"Day plan {item.plan_id} not found")

        account = await self.store.get_account(user_id)
        prefs = account.preferences if account else CalendarPreferences()
        fields = compared_fields(prefs.include_description)
        tz = plan.time_zone

        local = fields_from_item(item, plan.plan_date)
        event = await self.calendar.get_event(mapping.calendar_id, mapping.remote_event_id)
        remote = fields_from_event(event, tz) if event else None

        target = resolved_fields(resolution, local, remote, edit)

        if target is None:
            await self.store.delete_mapping(mapping.id)
            await self.store.delete_item(user_id, item.id)
            mapping.sync_status = SyncStatus.SYNCED
            mapping.conflict_resolution = resolution
            self._record(user_id, mapping, resolution)
            return mapping

        if target.diff(local, fields):
            await write_local(self.store, item, plan, target, fields)

        body = event_body(
            target,
            tz,
            include_description=prefs.include_description,
            color=item.color if prefs.sync_calendar_colors else None,
        )
        if event is None:
            event = await self.calendar.create_event(mapping.calendar_id, body)
        elif target.diff(remote, fields):
            event = await self.calendar.update_event(mapping.calendar_id, mapping.remote_event_id, body)

        mark_synced(mapping, event, tz)
        mapping.conflict_resolution = resolution
        mapping = await self.store.save_mapping(mapping)
        self._record(user_id, mapping, resolution)
        return mapping

    def _record(self, user_id: str, mapping: SyncMapping, resolution: ConflictResolution) -> None:
        metrics.CONFLICTS_RESOLVED_TOTAL.labels(resolution=resolution.value).inc()
        logger.info(f"Resolved conflict on mapping {mapping.id} for user {user_id}: {resolution.value}")
