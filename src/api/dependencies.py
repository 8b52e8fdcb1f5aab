import os
from typing import Optional

from fastapi import Header, HTTPException

from api import state
from calendar_sync.service import CalendarSyncService
from day_planner.service import DayPlannerService
from storage.google_auth import GoogleAuthStore
from storage.planner_store import PlannerStore

DEFAULT_USER_ID = os.getenv("DEFAULT_USER_ID", "default")


def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Authentication lives in front of this service; it forwards the user as X-User-Id."""
    return (x_user_id or "").strip() or DEFAULT_USER_ID


def get_google_auth_store() -> Optional[GoogleAuthStore]:
    return state.google_auth_store


def get_planner_store() -> Optional[PlannerStore]:
    return state.planner_store


def get_calendar_sync_service() -> CalendarSyncService:
    if state.calendar_sync_service is None:
        raise HTTPException(status_code=503, detail="Calendar sync service not initialized")
    return state.calendar_sync_service


def get_day_planner_service() -> DayPlannerService:
    if state.day_planner_service is None:
        raise HTTPException(status_code=503, detail="Day planner service not initialized")
    return state.day_planner_service
