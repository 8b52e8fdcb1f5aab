import os
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from api.dependencies import get_planner_store
from calendar_sync.metrics import OPEN_CONFLICTS
from storage import db
from storage.planner_store import PlannerStore

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check(
    planner_store: Optional[PlannerStore] = Depends(get_planner_store),
) -> dict:
    """Health check endpoint for container orchestration."""
    health = {
        "status": "healthy",
        "profile": os.getenv("DEPLOYMENT_PROFILE", "unknown"),
    }

    if planner_store is None:
        health["status"] = "degraded"
        health["database"] = {"status": "not_initialized"}
        return health

    db_health = await db.health_check()
    health["database"] = db_health
    if db_health["status"] != "healthy":
        health["status"] = "degraded"
    return health


@router.get("/metrics")
async def metrics(
    planner_store: Optional[PlannerStore] = Depends(get_planner_store),
) -> Response:
    """
    Prometheus scrape endpoint.
    """
    if planner_store is not None:
        try:
            OPEN_CONFLICTS.set(await planner_store.count_conflicts())
        except Exception as e:
            logger.warning(f"Could not count open conflicts: {e}")

    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
