"""
Day planner intents.

CRUD over day plans and their schedule items, dispatched from form posts.
Writes to mapped items flag the mapping as pending so the next sync run
knows there is something to push.
"""

import logging
import os
from datetime import date, time
from typing import Mapping, Optional

from calendar_sync.errors import (
    InvalidIntentError,
    ItemNotFoundError,
    PlanNotFoundError,
    ValidationError,
)
from day_planner import forms
from day_planner.models import (
    COLORS,
    DEFAULT_COLOR,
    DEFAULT_TIME_ZONE,
    MAX_TITLE_LENGTH,
    DayPlan,
    ScheduleItem,
    utcnow,
)
from scheduling.time_conflict import calculate_end_time, find_conflicting_items

logger = logging.getLogger(__name__)

AUTO_SYNC_ON_WRITE = os.getenv("AUTO_SYNC_ON_WRITE", "true").lower() in {"1", "true", "yes"}


def _check_title(title: str) -> str:
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(f"Title must be at most {MAX_TITLE_LENGTH} characters")
    return title


def _check_color(color: str) -> str:
    if color not in COLORS:
        raise ValidationError(f"Invalid color: {color}")
    return color


def _overlap_payload(items) -> list:
    return [
        {
            "id": i.id,
            "title": i.title,
            "start_time": i.start_time.strftime("%H:%M"),
            "end_time": calculate_end_time(i.start_time, i.duration_minutes),
        }
        for i in items
    ]


def _item_payload(item: ScheduleItem) -> dict:
    data = item.model_dump(mode="json")
    data["end_time"] = calculate_end_time(item.start_time, item.duration_minutes)
    data["is_completed"] = item.is_completed
    return data


class DayPlannerService:
    def __init__(self, store, sync_service=None, auto_sync: bool = AUTO_SYNC_ON_WRITE):
        self.store = store
        self.sync_service = sync_service
        self.auto_sync = auto_sync

    async def handle_intent(self, user_id: str, form: Mapping) -> dict:
        intent = forms.get_str(form, "intent")

        if intent == "createOrUpdatePlan":
            return await self.create_or_update_plan(
                user_id,
                plan_date=forms.parse_date(forms.require_str(form, "planDate"), "planDate"),
                view_start_time=forms.get_time(form, "viewStartTime") or time(6, 0),
                view_end_time=forms.get_time(form, "viewEndTime") or time(22, 0),
                time_zone=forms.get_str(form, "timeZone"),
            )

        if intent == "createTask":
            return await self.create_task(
                user_id,
                plan_id=forms.require_str(form, "planId"),
                title=forms.require_str(form, "title"),
                start_time=forms.parse_time(forms.require_str(form, "startTime"), "startTime"),
                duration_minutes=forms.parse_minutes(forms.require_str(form, "durationMinutes")),
                description=forms.get_str(form, "description"),
                color=forms.get_str(form, "color") or DEFAULT_COLOR,
            )

        if intent == "updateTask":
            changes = {}
            title = forms.get_str(form, "title")
            if title is not None:
                changes["title"] = title
            # a present-but-empty description clears it
            if "description" in form:
                changes["description"] = forms.get_str(form, "description")
            start_time = forms.get_time(form, "startTime")
            if start_time is not None:
                changes["start_time"] = start_time
            duration = forms.get_minutes(form, "durationMinutes")
            if duration is not None:
                changes["duration_minutes"] = duration
            color = forms.get_str(form, "color")
            if color is not None:
                changes["color"] = color
            return await self.update_task(user_id, forms.require_str(form, "taskId"), **changes)

        if intent == "deleteTask":
            return await self.delete_task(user_id, forms.require_str(form, "taskId"))

        if intent == "toggleTaskComplete":
            return await self.toggle_task_complete(
                user_id,
                forms.require_str(form, "taskId"),
                completed=forms.get_bool(form, "completed"),
            )

        if intent == "moveTask":
            return await self.move_task(
                user_id,
                forms.require_str(form, "taskId"),
                forms.parse_time(forms.require_str(form, "newStartTime"), "newStartTime"),
            )

        if intent == "deletePlan":
            return await self.delete_plan(user_id, forms.require_str(form, "planId"))

        raise InvalidIntentError(f"Invalid intent: {intent}")

    async def _plan_for_item(self, user_id: str, item: ScheduleItem) -> DayPlan:
        plan = await self.store.get_plan_by_id(user_id, item.plan_id)
        if plan is None:
            raise PlanNotFoundError("Plan not found")
        return plan

    async def _get_item(self, user_id: str, item_id: str) -> ScheduleItem:
        item = await self.store.get_item(user_id, item_id)
        if item is None:
            raise ItemNotFoundError("Task not found")
        return item

    async def _after_write(self, user_id: str, plan_date: date) -> Optional[dict]:
        if not self.auto_sync or self.sync_service is None:
            return None
        return await self.sync_service.trigger_auto_sync(user_id, plan_date)

    async def create_or_update_plan(
        self,
        user_id: str,
        plan_date: date,
        view_start_time: time = time(6, 0),
        view_end_time: time = time(22, 0),
        time_zone: Optional[str] = None,
    ) -> dict:
        if view_end_time <= view_start_time:
            raise ValidationError("View end time must be after view start time")

        if time_zone is None:
            account = await self.store.get_account(user_id)
            time_zone = account.time_zone if account else DEFAULT_TIME_ZONE

        plan = await self.store.upsert_plan(user_id, plan_date, time_zone, view_start_time, view_end_time)
        logger.info(f"Saved day plan {plan.id} ({plan_date}) for user {user_id}")
        return {"success": True, "message": "Plan saved successfully", "plan_id": plan.id}

    async def create_task(
        self,
        user_id: str,
        plan_id: str,
        title: str,
        start_time: time,
        duration_minutes: int,
        description: Optional[str] = None,
        color: str = DEFAULT_COLOR,
    ) -> dict:
        plan = await self.store.get_plan_by_id(user_id, plan_id)
        if plan is None:
            raise PlanNotFoundError("Plan not found")

        item = await self.store.create_item(
            user_id,
            plan.id,
            title=_check_title(title),
            start_time=start_time,
            duration_minutes=duration_minutes,
            description=description,
            color=_check_color(color),
        )
        overlaps = find_conflicting_items(item, await self.store.list_items(plan.id), exclude_id=item.id)
        result = {
            "success": True,
            "message": "Task created",
            "task": _item_payload(item),
            "overlaps": _overlap_payload(overlaps),
        }
        sync = await self._after_write(user_id, plan.plan_date)
        if sync is not None:
            result["sync"] = sync
        return result

    async def update_task(self, user_id: str, task_id: str, **changes) -> dict:
        item = await self._get_item(user_id, task_id)
        plan = await self._plan_for_item(user_id, item)

        if "title" in changes:
            _check_title(changes["title"])
        if "color" in changes:
            _check_color(changes["color"])

        if changes:
            item = await self.store.update_item(user_id, item.id, **changes)
            await self.store.mark_pending(item.id)

        result = {"success": True, "message": "Task updated", "task": _item_payload(item)}
        sync = await self._after_write(user_id, plan.plan_date)
        if sync is not None:
            result["sync"] = sync
        return result

    async def delete_task(self, user_id: str, task_id: str) -> dict:
        item = await self._get_item(user_id, task_id)
        plan = await self._plan_for_item(user_id, item)

        if self.sync_service is not None:
            await self.sync_service.forget_item(user_id, item.id)
        await self.store.delete_item(user_id, item.id)
        logger.info(f"Deleted task {item.id} for user {user_id}")

        result = {"success": True, "message": "Task deleted"}
        sync = await self._after_write(user_id, plan.plan_date)
        if sync is not None:
            result["sync"] = sync
        return result

    async def toggle_task_complete(self, user_id: str, task_id: str, completed: bool) -> dict:
        item = await self._get_item(user_id, task_id)
        # completion is local-only state, so the mapping is left as it is
        item = await self.store.update_item(
            user_id, item.id, completed_at=utcnow() if completed else None
        )
        return {
            "success": True,
            "message": "Task completed" if completed else "Task marked incomplete",
            "task": _item_payload(item),
        }

    async def move_task(self, user_id: str, task_id: str, new_start_time: time) -> dict:
        item = await self._get_item(user_id, task_id)
        plan = await self._plan_for_item(user_id, item)

        item = await self.store.update_item(user_id, item.id, start_time=new_start_time)
        await self.store.mark_pending(item.id)

        overlaps = find_conflicting_items(item, await self.store.list_items(plan.id), exclude_id=item.id)
        result = {
            "success": True,
            "message": "Task moved",
            "task": _item_payload(item),
            "overlaps": _overlap_payload(overlaps),
        }
        sync = await self._after_write(user_id, plan.plan_date)
        if sync is not None:
            result["sync"] = sync
        return result

    async def delete_plan(self, user_id: str, plan_id: str) -> dict:
        plan = await self.store.get_plan_by_id(user_id, plan_id)
        if plan is None:
            raise PlanNotFoundError("Plan not found")

        if self.sync_service is not None:
            for item in await self.store.list_items(plan.id):
                await self.sync_service.forget_item(user_id, item.id)
        await self.store.delete_plan(user_id, plan.id)
        logger.info(f"Deleted day plan {plan.id} ({plan.plan_date}) for user {user_id}")
        return {"success": True, "message": "Plan deleted successfully"}

    async def get_day_plan(self, user_id: str, plan_date: date) -> dict:
        plan = await self.store.get_plan(user_id, plan_date)
        if plan is None:
            return {"plan": None, "tasks": [], "sync_status": {}}

        items = await self.store.list_items(plan.id)
        sync_status = {}
        if self.sync_service is not None:
            sync_status = await self.sync_service.get_sync_status(user_id, plan_date)
        return {
            "plan": plan.model_dump(mode="json"),
            "tasks": [_item_payload(i) for i in items],
            "sync_status": sync_status,
        }
