"""
PostgreSQL persistence for day plans, schedule items, sync mappings and
calendar accounts.

Every query that touches user data is scoped by user_id.
"""

import logging
import uuid
from datetime import date, time
from typing import List, Optional

from day_planner.models import (
    DEFAULT_COLOR,
    CalendarAccount,
    CalendarPreferences,
    DayPlan,
    RemoteEventSnapshot,
    ScheduleItem,
    SyncMapping,
    utcnow,
)
from storage import db

logger = logging.getLogger(__name__)

ITEM_COLUMNS = {"title", "description", "start_time", "duration_minutes", "color", "completed_at", "plan_id"}


def _uuid(value) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def _plan_from_record(record) -> DayPlan:
    return DayPlan(
        id=str(record["id"]),
        user_id=record["user_id"],
        plan_date=record["plan_date"],
        time_zone=record["time_zone"],
        view_start_time=record["view_start_time"],
        view_end_time=record["view_end_time"],
        created_at=record["created_at"],
        updated_at=record["updated_at"],
    )


def _item_from_record(record) -> ScheduleItem:
    return ScheduleItem(
        id=str(record["id"]),
        user_id=record["user_id"],
        plan_id=str(record["plan_id"]),
        title=record["title"],
        description=record["description"],
        start_time=record["start_time"],
        duration_minutes=record["duration_minutes"],
        color=record["color"],
        completed_at=record["completed_at"],
        created_at=record["created_at"],
        updated_at=record["updated_at"],
    )


def _mapping_from_record(record) -> SyncMapping:
    snapshot = record["snapshot"]
    return SyncMapping(
        id=str(record["id"]),
        user_id=record["user_id"],
        item_id=str(record["item_id"]),
        remote_event_id=record["remote_event_id"],
        calendar_id=record["calendar_id"],
        sync_status=record["sync_status"],
        conflict_resolution=record["conflict_resolution"],
        snapshot=RemoteEventSnapshot.model_validate(snapshot) if snapshot else None,
        local_last_synced=record["local_last_synced"],
        remote_last_modified=record["remote_last_modified"],
        created_at=record["created_at"],
        updated_at=record["updated_at"],
    )


def _account_from_record(record) -> CalendarAccount:
    prefs = record["preferences"]
    return CalendarAccount(
        user_id=record["user_id"],
        account_email=record["account_email"],
        calendar_id=record["calendar_id"],
        time_zone=record["time_zone"],
        sync_enabled=record["sync_enabled"],
        sync_direction=record["sync_direction"],
        preferences=CalendarPreferences.model_validate(prefs) if prefs else CalendarPreferences(),
        token_expires_at=record["token_expires_at"],
        last_sync_at=record["last_sync_at"],
        connected_at=record["connected_at"],
        disconnected_at=record["disconnected_at"],
    )


def _snapshot_value(snapshot: Optional[RemoteEventSnapshot]) -> Optional[dict]:
    return snapshot.model_dump(mode="json") if snapshot is not None else None


class PlannerStore:
    """asyncpg-backed repository used by the planner service and sync engine."""

    # --- plans -----------------------------------------------------------

    async def get_plan(self, user_id: str, plan_date: date) -> Optional[DayPlan]:
        record = await db.fetchrow(
            "SELECT * FROM day_plans WHERE user_id = $1 AND plan_date = $2",
            user_id,
            plan_date,
        )
        return _plan_from_record(record) if record else None

    async def get_plan_by_id(self, user_id: str, plan_id: str) -> Optional[DayPlan]:
        pid = _uuid(plan_id)
        if pid is None:
            return None
        record = await db.fetchrow(
            "SELECT * FROM day_plans WHERE id = $1 AND user_id = $2", pid, user_id
        )
        return _plan_from_record(record) if record else None

    async def get_or_create_plan(self, user_id: str, plan_date: date, time_zone: str) -> DayPlan:
        record = await db.fetchrow(
            """
            INSERT INTO day_plans (user_id, plan_date, time_zone)
            VALUES ($1, $2, $3)
            ON CONFLICT (user_id, plan_date) DO UPDATE SET user_id = EXCLUDED.user_id
            RETURNING *
            """,
            user_id,
            plan_date,
            time_zone,
        )
        return _plan_from_record(record)

    async def upsert_plan(
        self,
        user_id: str,
        plan_date: date,
        time_zone: str,
        view_start_time: time,
        view_end_time: time,
    ) -> DayPlan:
        record = await db.fetchrow(
            """
            INSERT INTO day_plans (user_id, plan_date, time_zone, view_start_time, view_end_time)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (user_id, plan_date) DO UPDATE SET
                time_zone = EXCLUDED.time_zone,
                view_start_time = EXCLUDED.view_start_time,
                view_end_time = EXCLUDED.view_end_time,
                updated_at = NOW()
            RETURNING *
            """,
            user_id,
            plan_date,
            time_zone,
            view_start_time,
            view_end_time,
        )
        return _plan_from_record(record)

    async def delete_plan(self, user_id: str, plan_id: str) -> bool:
        pid = _uuid(plan_id)
        if pid is None:
            return False
        # items and their mappings go with the plan (ON DELETE CASCADE)
        result = await db.execute(
            "DELETE FROM day_plans WHERE id = $1 AND user_id = $2", pid, user_id
        )
        return result == "DELETE 1"

    # --- items -----------------------------------------------------------

    async def list_items(self, plan_id: str) -> List[ScheduleItem]:
        records = await db.fetch(
            "SELECT * FROM schedule_items WHERE plan_id = $1 ORDER BY start_time, created_at",
            _uuid(plan_id),
        )
        return [_item_from_record(r) for r in records]

    async def get_item(self, user_id: str, item_id: str) -> Optional[ScheduleItem]:
        iid = _uuid(item_id)
        if iid is None:
            return None
        record = await db.fetchrow(
            "SELECT * FROM schedule_items WHERE id = $1 AND user_id = $2", iid, user_id
        )
        return _item_from_record(record) if record else None

    async def create_item(
        self,
        user_id: str,
        plan_id: str,
        title: str,
        start_time: time,
        duration_minutes: int,
        description: Optional[str] = None,
        color: str = DEFAULT_COLOR,
    ) -> ScheduleItem:
        record = await db.fetchrow(
            """
            INSERT INTO schedule_items (user_id, plan_id, title, description, start_time, duration_minutes, color)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            RETURNING *
            """,
            user_id,
            _uuid(plan_id),
            title,
            description,
            start_time,
            duration_minutes,
            color,
        )
        return _item_from_record(record)

    async def update_item(self, user_id: str, item_id: str, **changes) -> Optional[ScheduleItem]:
        iid = _uuid(item_id)
        if iid is None:
            return None
        unknown = set(changes) - ITEM_COLUMNS
        if unknown:
            raise ValueError(f"Unknown schedule item columns: {sorted(unknown)}")

        assignments = []
        args = [iid, user_id]
        for column, value in changes.items():
            if column == "plan_id":
                value = _uuid(value)
            args.append(value)
            assignments.append(f"{column} = ${len(args)}")
        assignments.append("updated_at = NOW()")

        record = await db.fetchrow(
            f"UPDATE schedule_items SET {', '.join(assignments)} "
            "WHERE id = $1 AND user_id = $2 RETURNING *",
            *args,
        )
        return _item_from_record(record) if record else None

    async def delete_item(self, user_id: str, item_id: str) -> bool:
        iid = _uuid(item_id)
        if iid is None:
            return False
        result = await db.execute(
            "DELETE FROM schedule_items WHERE id = $1 AND user_id = $2", iid, user_id
        )
        return result == "DELETE 1"

    # --- mappings --------------------------------------------------------

    async def get_mapping(self, user_id: str, mapping_id: str) -> Optional[SyncMapping]:
        mid = _uuid(mapping_id)
        if mid is None:
            return None
        record = await db.fetchrow(
            "SELECT * FROM sync_mappings WHERE id = $1 AND user_id = $2", mid, user_id
        )
        return _mapping_from_record(record) if record else None

    async def get_mapping_for_item(self, item_id: str) -> Optional[SyncMapping]:
        record = await db.fetchrow(
            "SELECT * FROM sync_mappings WHERE item_id = $1", _uuid(item_id)
        )
        return _mapping_from_record(record) if record else None

    async def get_mapping_by_event(self, user_id: str, remote_event_id: str) -> Optional[SyncMapping]:
        record = await db.fetchrow(
            "SELECT * FROM sync_mappings WHERE user_id = $1 AND remote_event_id = $2",
            user_id,
            remote_event_id,
        )
        return _mapping_from_record(record) if record else None

    async def list_mappings_for_plan(self, plan_id: str) -> List[SyncMapping]:
        records = await db.fetch(
            """
            SELECT m.* FROM sync_mappings m
            JOIN schedule_items i ON i.id = m.item_id
            WHERE i.plan_id = $1
            """,
            _uuid(plan_id),
        )
        return [_mapping_from_record(r) for r in records]

    async def create_mapping(
        self,
        user_id: str,
        item_id: str,
        remote_event_id: str,
        calendar_id: str,
        snapshot: Optional[RemoteEventSnapshot] = None,
    ) -> SyncMapping:
        record = await db.fetchrow(
            """
            INSERT INTO sync_mappings (
                user_id, item_id, remote_event_id, calendar_id, sync_status,
                snapshot, local_last_synced, remote_last_modified
            ) VALUES ($1, $2, $3, $4, 'synced', $5::jsonb, NOW(), $6)
            RETURNING *
            """,
            user_id,
            _uuid(item_id),
            remote_event_id,
            calendar_id,
            _snapshot_value(snapshot),
            snapshot.remote_updated if snapshot else None,
        )
        logger.info(f"Mapped item {item_id} to remote event {remote_event_id}")
        return _mapping_from_record(record)

    async def save_mapping(self, mapping: SyncMapping) -> SyncMapping:
        record = await db.fetchrow(
            """
            UPDATE sync_mappings SET
                remote_event_id = $2,
                sync_status = $3::sync_status,
                conflict_resolution = $4::conflict_resolution,
                snapshot = $5::jsonb,
                local_last_synced = $6,
                remote_last_modified = $7,
                updated_at = NOW()
            WHERE id = $1
            RETURNING *
            """,
            _uuid(mapping.id),
            mapping.remote_event_id,
            mapping.sync_status.value,
            mapping.conflict_resolution.value if mapping.conflict_resolution else None,
            _snapshot_value(mapping.snapshot),
            mapping.local_last_synced,
            mapping.remote_last_modified,
        )
        return _mapping_from_record(record) if record else mapping

    async def delete_mapping(self, mapping_id: str) -> bool:
        result = await db.execute("DELETE FROM sync_mappings WHERE id = $1", _uuid(mapping_id))
        return result == "DELETE 1"

    async def mark_pending(self, item_id: str) -> bool:
        """Flag a synced mapping as carrying unpushed local edits; conflicts stay put."""
        result = await db.execute(
            """
            UPDATE sync_mappings SET sync_status = 'pending', updated_at = NOW()
            WHERE item_id = $1 AND sync_status = 'synced'
            """,
            _uuid(item_id),
        )
        return result == "UPDATE 1"

    async def count_conflicts(self) -> int:
        return await db.fetchval(
            "SELECT COUNT(*) FROM sync_mappings WHERE sync_status = 'conflict'"
        )

    # --- accounts --------------------------------------------------------

    async def get_account(self, user_id: str) -> Optional[CalendarAccount]:
        record = await db.fetchrow(
            "SELECT * FROM calendar_accounts WHERE user_id = $1", user_id
        )
        return _account_from_record(record) if record else None

    async def list_sync_accounts(self) -> List[CalendarAccount]:
        records = await db.fetch(
            """
            SELECT * FROM calendar_accounts
            WHERE sync_enabled AND disconnected_at IS NULL
            ORDER BY user_id
            """
        )
        return [_account_from_record(r) for r in records]

    async def save_account(self, account: CalendarAccount) -> CalendarAccount:
        record = await db.fetchrow(
            """
            INSERT INTO calendar_accounts (
                user_id, account_email, calendar_id, time_zone, sync_enabled,
                sync_direction, preferences, token_expires_at, last_sync_at,
                connected_at, disconnected_at
            ) VALUES ($1, $2, $3, $4, $5, $6::sync_direction, $7::jsonb, $8, $9, $10, $11)
            ON CONFLICT (user_id) DO UPDATE SET
                account_email = COALESCE(EXCLUDED.account_email, calendar_accounts.account_email),
                calendar_id = EXCLUDED.calendar_id,
                time_zone = EXCLUDED.time_zone,
                sync_enabled = EXCLUDED.sync_enabled,
                sync_direction = EXCLUDED.sync_direction,
                preferences = EXCLUDED.preferences,
                token_expires_at = EXCLUDED.token_expires_at,
                last_sync_at = EXCLUDED.last_sync_at,
                connected_at = EXCLUDED.connected_at,
                disconnected_at = EXCLUDED.disconnected_at,
                updated_at = NOW()
            RETURNING *
            """,
            account.user_id,
            account.account_email,
            account.calendar_id,
            account.time_zone,
            account.sync_enabled,
            account.sync_direction.value,
            account.preferences.model_dump(mode="json"),
            account.token_expires_at,
            account.last_sync_at,
            account.connected_at or utcnow(),
            account.disconnected_at,
        )
        return _account_from_record(record)
