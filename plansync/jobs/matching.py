"""Background jobs wrapping the matching engine.

Each job opens its own database session so it can run from the scheduler
process, a CLI script or a FastAPI background task.
"""
from __future__ import annotations

import logging
from typing import Any

from plansync.config import get_settings
from plansync.database import SessionLocal
from plansync.services.activity_matcher import ActivityMatcher
from plansync.services.match_repository import SqlAlchemyMatchStore


logger = logging.getLogger(__name__)


def build_matcher(session) -> tuple[ActivityMatcher, SqlAlchemyMatchStore]:
    """Return a matcher and its store configured from application settings."""
    config = get_settings().matcher_config()
    store = SqlAlchemyMatchStore(session, date_tolerance_days=config.date_tolerance_days)
    return ActivityMatcher(store, config=config), store


def match_activity_job(activity_id: int) -> bool:
    """Attempt to match one external activity to a planned workout."""
    db = SessionLocal()
    try:
        matcher, store = build_matcher(db)
        activity = store.get_activity(activity_id)
        if activity is None:
            logger.error("Activity %s not found", activity_id)
            return False

        if activity.matched:
            logger.info("Activity %s already matched, skipping", activity_id)
            return False

        if matcher.match(activity):
            logger.info(
                "Successfully matched activity %s to workout %s (confidence: %s)",
                activity_id,
                activity.matched_workout_id,
                activity.match_confidence,
            )
            return True

        logger.info("No suitable match found for activity %s", activity_id)
        return False
    except Exception:
        db.rollback()
        logger.exception("Match job failed for activity %s", activity_id)
        raise
    finally:
        db.close()


def batch_match_activities_job(plan_id: int | None = None) -> dict[str, int]:
    """
    Match all unmatched external activities.

    Args:
        plan_id: Optionally restrict candidate workouts to a single plan

    Returns:
        dict: {"matched": int, "unmatched": int, "failed": int}
    """
    db = SessionLocal()
    try:
        matcher, _ = build_matcher(db)
        result = matcher.batch_match(plan_id=plan_id)
        logger.info(
            "Batch match job completed - %d matched, %d unmatched, %d failed (plan: %s)",
            result.matched,
            result.unmatched,
            result.failed,
            plan_id if plan_id is not None else "all",
        )
        return result.as_dict()
    except Exception:
        db.rollback()
        logger.exception("Batch match job failed")
        raise
    finally:
        db.close()


def process_activity_job(payload: dict[str, Any]) -> int:
    """
    Store an imported activity and try to match it if it is still unmatched.

    Args:
        payload: Normalised activity fields; ``source_id`` is required

    Returns:
        Database id of the stored activity
    """
    db = SessionLocal()
    try:
        matcher, store = build_matcher(db)
        activity = store.upsert_activity(payload)
        activity_id = activity.id
        if not activity.matched:
            matcher.match(activity)
        return activity_id
    except Exception:
        db.rollback()
        logger.exception("Processing failed for activity %s", payload.get("source_id"))
        raise
    finally:
        db.close()
