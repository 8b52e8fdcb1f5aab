import logging
import time
from datetime import date

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError as ModelValidationError

from api.dependencies import get_calendar_sync_service, get_current_user_id
from api.errors import http_error
from calendar_sync.errors import SyncError
from calendar_sync.metrics import REQUEST_LATENCY_SECONDS, REQUESTS_TOTAL
from calendar_sync.service import CalendarSyncService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/calendar/actions")
async def calendar_action(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    service: CalendarSyncService = Depends(get_calendar_sync_service),
) -> dict:
    """Connect-side intents: disconnect, preferences, manual sync, conflict resolution."""
    start = time.time()
    form = await request.form()
    intent = form.get("intent")

    try:
        result = await service.handle_intent(user_id, form)
    except (SyncError, ModelValidationError) as e:
        err = http_error(e)
        logger.warning(f"Calendar intent {intent} failed for user {user_id}: {err.detail}")
        REQUESTS_TOTAL.labels(endpoint="/calendar/actions", status=str(err.status_code)).inc()
        raise err

    REQUESTS_TOTAL.labels(endpoint="/calendar/actions", status="200").inc()
    REQUEST_LATENCY_SECONDS.labels(endpoint="/calendar/actions").observe(time.time() - start)
    return result


@router.get("/calendar/sync-status/{plan_date}")
async def sync_status(
    plan_date: date,
    user_id: str = Depends(get_current_user_id),
    service: CalendarSyncService = Depends(get_calendar_sync_service),
) -> dict:
    return {"plan_date": plan_date.isoformat(), "items": await service.get_sync_status(user_id, plan_date)}


@router.get("/calendar/conflicts/{plan_date}")
async def conflicts(
    plan_date: date,
    user_id: str = Depends(get_current_user_id),
    service: CalendarSyncService = Depends(get_calendar_sync_service),
) -> dict:
    try:
        found = await service.get_conflicts(user_id, plan_date)
    except SyncError as e:
        raise http_error(e)
    return {"plan_date": plan_date.isoformat(), "conflicts": found}
