"""
Calendar sync intents.

Form posts from the planner UI land here with an `intent` field, in the
same way the day-planner CRUD intents land in day_planner.service.
"""

import logging
from datetime import date, datetime
from typing import Awaitable, Callable, Dict, List, Mapping, Optional
from zoneinfo import ZoneInfo

from calendar_sync.conversion import fields_from_event, fields_from_item
from calendar_sync.detector import compared_fields, detect_change
from calendar_sync.engine import SyncEngine, SyncReport
from calendar_sync.errors import (
    CalendarApiError,
    InvalidIntentError,
    NotConnectedError,
    ValidationError,
)
from calendar_sync.resolver import ConflictResolver
from day_planner import forms
from day_planner.models import (
    DEFAULT_TIME_ZONE,
    CalendarAccount,
    CalendarPreferences,
    ConflictResolution,
    ItemEdit,
    SyncDirection,
    SyncStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

# user_id -> calendar client, or None when no usable credentials exist
CalendarFactory = Callable[[str], Awaitable[Optional[object]]]


def today_in(time_zone: str) -> date:
    return datetime.now(ZoneInfo(time_zone)).date()


class CalendarSyncService:
    def __init__(self, store, calendar_factory: CalendarFactory, auth_store=None):
        self.store = store
        self.calendar_factory = calendar_factory
        self.auth_store = auth_store

    async def handle_intent(self, user_id: str, form: Mapping) -> dict:
        intent = forms.get_str(form, "intent")

        if intent == "disconnectGoogleCalendar":
            return await self.disconnect(user_id)

        if intent == "updateSyncPreferences":
            return await self.update_preferences(
                user_id,
                sync_direction=forms.get_str(form, "syncDirection") or SyncDirection.BIDIRECTIONAL.value,
                include_description=forms.get_bool(form, "includeDescription"),
                sync_calendar_colors=forms.get_bool(form, "syncCalendarColors"),
            )

        if intent == "manualSyncGoogleCalendar":
            return await self.manual_sync(user_id, forms.get_date(form, "planDate"))

        if intent == "resolveSyncConflict":
            edited = {
                "title": forms.get_str(form, "title"),
                "start_time": forms.get_time(form, "startTime"),
                "duration_minutes": forms.get_minutes(form, "durationMinutes"),
            }
            # a present-but-empty description clears it
            if "description" in form:
                edited["description"] = forms.get_str(form, "description")
            edit = ItemEdit(**edited)
            return await self.resolve_conflict(
                user_id,
                forms.get_str(form, "mappingId"),
                forms.get_str(form, "resolution"),
                edit=None if edit.is_empty else edit,
            )

        raise InvalidIntentError(f"Invalid intent: {intent}")

    async def _engine(self, user_id: str) -> SyncEngine:
        calendar = await self.calendar_factory(user_id)
        if calendar is None:
            raise NotConnectedError("Could not authenticate with Google Calendar")
        return SyncEngine(self.store, calendar)

    async def connect(
        self,
        user_id: str,
        email: Optional[str],
        calendar_id: str = "primary",
        time_zone: Optional[str] = None,
    ) -> CalendarAccount:
        """Create or re-enable the account record after a successful OAuth consent."""
        account = await self.store.get_account(user_id)
        if account is None:
            account = CalendarAccount(user_id=user_id, time_zone=time_zone or DEFAULT_TIME_ZONE)
        elif time_zone:
            account.time_zone = time_zone
        account.account_email = email or account.account_email
        account.calendar_id = calendar_id
        account.sync_enabled = True
        account.connected_at = utcnow()
        account.disconnected_at = None
        account = await self.store.save_account(account)
        logger.info(f"Connected Google Calendar {calendar_id} for user {user_id}")
        return account

    async def disconnect(self, user_id: str) -> dict:
        account = await self.store.get_account(user_id)
        if account is None:
            raise NotConnectedError("No Google Calendar account found")

        account.sync_enabled = False
        account.disconnected_at = utcnow()
        await self.store.save_account(account)
        if self.auth_store is not None:
            await self.auth_store.delete_credentials(user_id)

        logger.info(f"Disconnected Google Calendar for user {user_id}")
        return {"status": "disconnected", "message": "Google Calendar disconnected successfully"}

    async def update_preferences(
        self,
        user_id: str,
        sync_direction: str,
        include_description: bool,
        sync_calendar_colors: bool,
    ) -> dict:
        try:
            direction = SyncDirection(sync_direction)
        except ValueError:
            raise ValidationError(f"Invalid sync direction: {sync_direction}")

        account = await self.store.get_account(user_id)
        if account is None:
            raise NotConnectedError("No Google Calendar account found")

        account.sync_direction = direction
        account.preferences = CalendarPreferences(
            include_description=include_description,
            sync_calendar_colors=sync_calendar_colors,
        )
        await self.store.save_account(account)
        return {
            "status": "updated",
            "message": "Sync preferences updated successfully",
            "sync_direction": direction.value,
            "preferences": account.preferences.model_dump(),
        }

    async def manual_sync(self, user_id: str, plan_date: Optional[date] = None) -> dict:
        account = await self.store.get_account(user_id)
        if account is None:
            raise NotConnectedError("Google Calendar not connected")
        if not account.is_connected:
            raise NotConnectedError("Google Calendar sync is disabled")

        plan_date = plan_date or today_in(account.time_zone)
        engine = await self._engine(user_id)
        report = await engine.sync(user_id, plan_date)
        return {
            "status": "synced",
            "message": "Google Calendar synced successfully",
            "report": report.to_dict(),
        }

    async def resolve_conflict(
        self,
        user_id: str,
        mapping_id: Optional[str],
        resolution: Optional[str],
        edit: Optional[ItemEdit] = None,
    ) -> dict:
        if not mapping_id or not resolution:
            raise ValidationError("Missing required fields")
        try:
            choice = ConflictResolution(resolution)
        except ValueError:
            raise ValidationError(f"Invalid resolution: {resolution}")

        calendar = await self.calendar_factory(user_id)
        if calendar is None:
            raise NotConnectedError("Could not authenticate with Google Calendar")

        mapping = await ConflictResolver(self.store, calendar).resolve(user_id, mapping_id, choice, edit)
        return {
            "status": "resolved",
            "message": "Conflict resolved successfully",
            "mapping_id": mapping.id,
            "resolution": choice.value,
        }

    async def trigger_auto_sync(self, user_id: str, plan_date: date) -> dict:
        """
        Best-effort sync after a local write or a page load.

        Never raises: a failed sync must not fail the operation that
        triggered it.
        """
        account = await self.store.get_account(user_id)
        if account is None or not account.is_connected:
            return {"success": True, "sync_attempted": False, "message": "Google Calendar sync not enabled"}

        try:
            calendar = await self.calendar_factory(user_id)
        except Exception:
            logger.exception(f"[auto-sync] Failed to build calendar client for user {user_id}")
            calendar = None
        if calendar is None:
            logger.warning(f"[auto-sync] Failed to get valid access token for user {user_id}")
            return {
                "success": True,
                "sync_attempted": False,
                "message": "Could not authenticate with Google Calendar",
            }

        try:
            report: SyncReport = await SyncEngine(self.store, calendar).sync(user_id, plan_date)
        except Exception:
            logger.exception(f"[auto-sync] Sync operation failed for user {user_id}")
            return {
                "success": True,
                "sync_attempted": True,
                "message": "Sync operation encountered an error but operation continued",
            }

        return {
            "success": True,
            "sync_attempted": True,
            "message": "Auto-sync completed successfully",
            "report": report.to_dict(),
        }

    async def get_sync_status(self, user_id: str, plan_date: date) -> Dict[str, dict]:
        plan = await self.store.get_plan(user_id, plan_date)
        if plan is None:
            return {}
        return {
            m.item_id: {
                "mapping_id": m.id,
                "sync_status": m.sync_status.value,
                "conflict_resolution": m.conflict_resolution.value if m.conflict_resolution else None,
                "remote_event_id": m.remote_event_id,
            }
            for m in await self.store.list_mappings_for_plan(plan.id)
        }

    async def get_conflicts(self, user_id: str, plan_date: date) -> List[dict]:
        """Both versions of every conflicting item on the date, for the resolution dialog."""
        plan = await self.store.get_plan(user_id, plan_date)
        if plan is None:
            return []

        conflicted = [
            m for m in await self.store.list_mappings_for_plan(plan.id)
            if m.sync_status == SyncStatus.CONFLICT
        ]
        if not conflicted:
            return []

        account = await self.store.get_account(user_id)
        prefs = account.preferences if account else CalendarPreferences()
        fields = compared_fields(prefs.include_description)
        calendar = await self.calendar_factory(user_id)

        out = []
        for mapping in conflicted:
            item = await self.store.get_item(user_id, mapping.item_id)
            if item is None:
                continue
            local = fields_from_item(item, plan.plan_date)

            remote = None
            if calendar is not None:
                try:
                    event = await calendar.get_event(mapping.calendar_id, mapping.remote_event_id)
                    remote = fields_from_event(event, plan.time_zone) if event else None
                except CalendarApiError as e:
                    logger.warning(f"Could not fetch remote version of {mapping.remote_event_id}: {e}")

            entry = {
                "mapping_id": mapping.id,
                "item_id": item.id,
                "local": local.model_dump(mode="json"),
                "remote": remote.model_dump(mode="json") if remote else None,
                "base": mapping.snapshot.fields.model_dump(mode="json") if mapping.snapshot else None,
                "remote_deleted": calendar is not None and remote is None,
                "local_changes": [],
                "remote_changes": [],
            }
            if remote is not None:
                detection = detect_change(local, mapping.snapshot, remote, fields)
                entry["local_changes"] = detection.local_changes
                entry["remote_changes"] = detection.remote_changes
            out.append(entry)
        return out

    async def forget_item(self, user_id: str, item_id: str) -> bool:
        """Unlink an item that is about to be deleted locally."""
        mapping = await self.store.get_mapping_for_item(item_id)
        if mapping is None:
            return False

        try:
            calendar = await self.calendar_factory(user_id)
        except Exception:
            logger.exception(f"Failed to build calendar client for user {user_id}")
            calendar = None

        if calendar is None:
            await self.store.delete_mapping(mapping.id)
            return True
        return await SyncEngine(self.store, calendar).remove_item(user_id, item_id)
