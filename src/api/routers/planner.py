import logging
import time
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError as ModelValidationError

from api.dependencies import get_current_user_id, get_day_planner_service
from api.errors import http_error
from calendar_sync.errors import SyncError
from calendar_sync.metrics import REQUEST_LATENCY_SECONDS, REQUESTS_TOTAL
from day_planner.service import DayPlannerService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/day-planner/actions")
async def day_planner_action(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    service: DayPlannerService = Depends(get_day_planner_service),
) -> dict:
    """Form post carrying an `intent` field (createTask, moveTask, ...)."""
    start = time.time()
    form = await request.form()
    intent = form.get("intent")

    try:
        result = await service.handle_intent(user_id, form)
    except (SyncError, ModelValidationError) as e:
        err = http_error(e)
        logger.warning(f"Day planner intent {intent} failed for user {user_id}: {err.detail}")
        REQUESTS_TOTAL.labels(endpoint="/day-planner/actions", status=str(err.status_code)).inc()
        raise err

    REQUESTS_TOTAL.labels(endpoint="/day-planner/actions", status="200").inc()
    REQUEST_LATENCY_SECONDS.labels(endpoint="/day-planner/actions").observe(time.time() - start)
    return result


@router.get("/day-planner/{plan_date}")
async def get_day_plan(
    plan_date: date,
    user_id: str = Depends(get_current_user_id),
    service: DayPlannerService = Depends(get_day_planner_service),
) -> dict:
    try:
        return await service.get_day_plan(user_id, plan_date)
    except SyncError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to load day plan {plan_date} for user {user_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to load day plan")
