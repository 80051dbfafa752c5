"""API endpoints for matching imported activities to planned workouts."""
from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from plansync.config import get_settings
from plansync.database import get_db
from plansync.models.database_models import ExternalActivity
from plansync.models.schemas import (
    BatchMatchResponse,
    CandidatePreviewResponse,
    CandidateScoreResponse,
    ExternalActivityCreate,
    ExternalActivityResponse,
    MatchResponse,
    ScoreBreakdown,
    UnmatchResponse,
)
from plansync.services.activity_matcher import ActivityMatcher
from plansync.services.errors import (
    CandidateAlreadyMatchedError,
    InvariantViolationError,
    MatchPersistenceError,
)
from plansync.services.match_repository import SqlAlchemyMatchStore


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/matching", tags=["matching"])


def get_matcher(db: Annotated[Session, Depends(get_db)]) -> ActivityMatcher:
    """FastAPI dependency returning a matcher bound to the request session."""
    config = get_settings().matcher_config()
    store = SqlAlchemyMatchStore(db, date_tolerance_days=config.date_tolerance_days)
    return ActivityMatcher(store, config=config)


def _load_activity(matcher: ActivityMatcher, activity_id: int) -> ExternalActivity:
    activity = matcher.store.get_activity(activity_id)
    if activity is None:
        raise HTTPException(status_code=404, detail=f"Activity {activity_id} not found")
    return activity


@router.get("/activities/unmatched", response_model=list[ExternalActivityResponse])
async def list_unmatched_activities(
    db: Annotated[Session, Depends(get_db)],
    limit: int = 100,
):
    """
    List external activities that are not linked to a planned workout.

    Args:
        limit: Maximum number of activities to return (1-1000)
    """
    if limit < 1 or limit > 1000:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 1000")

    query = (
        select(ExternalActivity)
        .where(ExternalActivity.matched_workout_id.is_(None))
        .order_by(ExternalActivity.start_date_local.desc(), ExternalActivity.id)
        .limit(limit)
    )
    return list(db.scalars(query).all())


@router.post("/activities", response_model=ExternalActivityResponse, status_code=201)
async def ingest_activity(
    payload: ExternalActivityCreate,
    matcher: Annotated[ActivityMatcher, Depends(get_matcher)],
):
    """
    Store an imported activity and try to match it straight away.

    Args:
        payload: Activity fields, distance already in the plan's unit

    Returns:
        ExternalActivityResponse: Stored activity including any match
    """
    activity = matcher.store.upsert_activity(payload.model_dump(exclude_unset=True))
    if not activity.matched:
        try:
            matcher.match(activity)
        except MatchPersistenceError:
            # The activity itself is stored; the match can be retried later.
            logger.warning("Activity %s stored but auto-match failed", activity.id, exc_info=True)
    return ExternalActivityResponse.model_validate(activity)


@router.get("/activities/{activity_id}/candidates", response_model=CandidatePreviewResponse)
async def preview_candidates(
    activity_id: int,
    matcher: Annotated[ActivityMatcher, Depends(get_matcher)],
    plan_id: int | None = None,
):
    """
    Rank the candidate workouts for an activity without saving anything.

    Args:
        activity_id: External activity ID
        plan_id: Optionally restrict candidates to one plan

    Returns:
        CandidatePreviewResponse: Candidates with component scores, best first.
            A matched activity's current workout is included and flagged.
    """
    activity = _load_activity(matcher, activity_id)
    threshold = matcher.config.min_confidence_threshold

    try:
        pool = matcher.store.load_candidate_pool(activity, plan_id=plan_id)
    except MatchPersistenceError as err:
        logger.exception("Failed to load candidates for activity %s", activity_id)
        raise HTTPException(status_code=500, detail=f"Failed to load candidates: {err}")

    current = activity.matched_workout
    if current is not None and (plan_id is None or current.plan_id == plan_id):
        pool = [current, *pool]
    ranked = matcher.rank_candidates(activity, pool)

    return {
        "activity_id": activity.id,
        "already_matched": activity.matched,
        "plan_id": plan_id,
        "min_confidence_threshold": threshold,
        "candidates": [
            CandidateScoreResponse(
                workout_id=scored.workout.id,
                plan_id=scored.workout.plan_id,
                start_date_local=scored.workout.start_date_local,
                distance=scored.workout.distance,
                activity_type=scored.workout.activity_type,
                description=scored.workout.description,
                confidence=round(scored.confidence, 4),
                scores=ScoreBreakdown(**scored.breakdown()),
                above_threshold=scored.confidence >= threshold,
                current_match=scored.workout.id == activity.matched_workout_id,
            )
            for scored in ranked
        ],
    }


@router.post("/activities/{activity_id}/match", response_model=MatchResponse)
async def match_activity(
    activity_id: int,
    matcher: Annotated[ActivityMatcher, Depends(get_matcher)],
    plan_id: int | None = None,
):
    """
    Match an activity to its best planned workout.

    Args:
        activity_id: External activity ID
        plan_id: Optionally restrict candidates to one plan

    Returns:
        MatchResponse: ``matched`` is False when nothing cleared the threshold
            or the activity was already matched
    """
    activity = _load_activity(matcher, activity_id)
    try:
        matched = matcher.match(activity, plan_id=plan_id)
    except CandidateAlreadyMatchedError as err:
        raise HTTPException(status_code=409, detail=str(err))
    except InvariantViolationError as err:
        raise HTTPException(status_code=422, detail=str(err))
    except MatchPersistenceError as err:
        logger.exception("Failed to save match for activity %s", activity_id)
        raise HTTPException(status_code=500, detail=f"Failed to save match: {err}")

    return {"matched": matched, "activity": ExternalActivityResponse.model_validate(activity)}


@router.delete("/activities/{activity_id}/match", response_model=UnmatchResponse)
async def unmatch_activity(
    activity_id: int,
    matcher: Annotated[ActivityMatcher, Depends(get_matcher)],
):
    """Clear an activity's match; ``unmatched`` is False when it had none."""
    activity = _load_activity(matcher, activity_id)
    try:
        unmatched = matcher.unmatch(activity)
    except MatchPersistenceError as err:
        logger.exception("Failed to clear match for activity %s", activity_id)
        raise HTTPException(status_code=500, detail=f"Failed to clear match: {err}")

    return {"unmatched": unmatched, "activity": ExternalActivityResponse.model_validate(activity)}


@router.post("/batch", response_model=BatchMatchResponse)
async def batch_match(
    matcher: Annotated[ActivityMatcher, Depends(get_matcher)],
    plan_id: int | None = None,
):
    """
    Match every unmatched activity in one sweep.

    Args:
        plan_id: Optionally restrict candidates to one plan

    Returns:
        BatchMatchResponse: matched / unmatched / failed counters
    """
    try:
        result = matcher.batch_match(plan_id=plan_id)
    except Exception as e:
        logger.exception("Batch match failed")
        raise HTTPException(status_code=500, detail=f"Batch match failed: {str(e)}")

    return {**result.as_dict(), "plan_id": plan_id}
