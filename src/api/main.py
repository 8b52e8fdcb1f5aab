import logging

from fastapi import FastAPI

from api import state
from api.routers import auth, calendar, ops, planner
from calendar_sync.service import CalendarSyncService
from day_planner.service import DayPlannerService
from integration.calendar_integration import calendar_factory
from storage import db
from storage.google_auth import GoogleAuthStore
from storage.planner_store import PlannerStore

# Logging configuration
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Day Planner Calendar Sync")

app.include_router(planner.router)
app.include_router(calendar.router)
app.include_router(auth.router)
app.include_router(ops.router)


@app.on_event("startup")
async def startup() -> None:
    await db.init_db_pool()
    await db.init_schema()

    state.planner_store = PlannerStore()
    state.google_auth_store = GoogleAuthStore()
    state.calendar_sync_service = CalendarSyncService(
        state.planner_store,
        calendar_factory(state.google_auth_store),
        auth_store=state.google_auth_store,
    )
    state.day_planner_service = DayPlannerService(
        state.planner_store, sync_service=state.calendar_sync_service
    )
    logger.info("Day planner services initialized")


@app.on_event("shutdown")
async def shutdown() -> None:
    await db.close_db_pool()
