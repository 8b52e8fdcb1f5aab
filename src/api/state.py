from typing import Optional

from calendar_sync.service import CalendarSyncService
from day_planner.service import DayPlannerService
from storage.google_auth import GoogleAuthStore
from storage.planner_store import PlannerStore

# Global instances initialized at startup
planner_store: Optional[PlannerStore] = None
google_auth_store: Optional[GoogleAuthStore] = None
calendar_sync_service: Optional[CalendarSyncService] = None
day_planner_service: Optional[DayPlannerService] = None
