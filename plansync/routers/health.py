"""Router exposing basic system endpoints."""
from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from plansync.database import get_db
from plansync.models.database_models import ExternalActivity, PlannedWorkout


logger = logging.getLogger(__name__)


router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("/status")
async def get_status() -> dict[str, str]:
    """Return a minimal status payload."""
    return {"status": "online"}


@router.get("/match-status")
async def get_match_status(db: Annotated[Session, Depends(get_db)]) -> dict:
    """
    Summarise how many imported activities are linked to planned workouts.

    Returns:
        dict: {
            "activities_total": int,
            "activities_matched": int,
            "activities_unmatched": int,
            "planned_workouts": int,
            "last_matched_at": ISO timestamp or None
        }
    """
    try:
        total = db.scalar(select(func.count(ExternalActivity.id))) or 0
        matched = db.scalar(
            select(func.count(ExternalActivity.id)).where(ExternalActivity.matched_workout_id.is_not(None))
        ) or 0
        workouts = db.scalar(select(func.count(PlannedWorkout.id))) or 0
        last_matched_at = db.scalar(select(func.max(ExternalActivity.matched_at)))
    except Exception:
        logger.exception("Match status check failed")
        raise HTTPException(status_code=500, detail="Failed to check match status")

    return {
        "activities_total": total,
        "activities_matched": matched,
        "activities_unmatched": total - matched,
        "planned_workouts": workouts,
        "last_matched_at": last_matched_at.isoformat() if last_matched_at else None,
    }
