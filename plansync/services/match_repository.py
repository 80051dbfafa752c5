"""SQLAlchemy persistence for the matching engine."""
from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from plansync.models.database_models import ExternalActivity, PlannedWorkout
from plansync.services.errors import (
    CandidateAlreadyMatchedError,
    InvariantViolationError,
    MatchPersistenceError,
)


logger = logging.getLogger(__name__)

# Fields an ingestion payload may set on an external activity
ACTIVITY_FIELDS = (
    "distance",
    "activity_type",
    "start_date_local",
    "description",
    "elapsed_time",
    "average_heart_rate",
    "max_heart_rate",
)


def _day_of(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


class SqlAlchemyMatchStore:
    """
    Loads candidate pools and writes match decisions through a SQLAlchemy session.

    Each write commits its own transaction so that one activity's match is
    either fully stored or not stored at all.
    """

    def __init__(self, session: Session, date_tolerance_days: int = 1):
        """
        Initialize the store.

        Args:
            session: SQLAlchemy database session
            date_tolerance_days: Half-width in days of the candidate date window
        """
        self.session = session
        self.date_tolerance_days = date_tolerance_days

    # ------------------------------------------------------------------
    # MatchStore protocol
    # ------------------------------------------------------------------

    def load_candidate_pool(self, activity: ExternalActivity, plan_id: int | None = None) -> list[PlannedWorkout]:
        """
        Return unclaimed planned workouts inside the activity's date window.

        Args:
            activity: External activity being matched
            plan_id: Restrict the pool to this plan's workouts

        Returns:
            Workouts ordered by start_date_local then id (empty if the activity has no date)

        Raises:
            MatchPersistenceError: the query failed
        """
        if activity.start_date_local is None:
            return []

        day = _day_of(activity.start_date_local)
        window_start = datetime.combine(day - timedelta(days=self.date_tolerance_days), time.min)
        window_end = datetime.combine(day + timedelta(days=self.date_tolerance_days), time.max)

        query = (
            select(PlannedWorkout)
            .where(
                PlannedWorkout.start_date_local >= window_start,
                PlannedWorkout.start_date_local <= window_end,
                ~PlannedWorkout.matched_activities.any(),
            )
            .order_by(PlannedWorkout.start_date_local, PlannedWorkout.id)
        )
        if plan_id is not None:
            query = query.where(PlannedWorkout.plan_id == plan_id)

        activity_id = activity.id
        try:
            return list(self.session.scalars(query).all())
        except SQLAlchemyError as err:
            self.session.rollback()
            raise MatchPersistenceError(
                activity_id, f"Failed to load candidate workouts for activity {activity_id}", err
            ) from err

    def persist_match(
        self,
        activity: ExternalActivity,
        workout: PlannedWorkout,
        confidence: float,
        matched_at: datetime,
    ) -> None:
        """
        Link the activity to the workout, writing all three match fields at once.

        Raises:
            InvariantViolationError: activity already matched, workout is not a
                planned workout, or confidence outside [0, 1]
            CandidateAlreadyMatchedError: another activity holds the workout
            MatchPersistenceError: any other database failure
        """
        if activity.matched_workout_id is not None:
            raise InvariantViolationError(
                f"Activity {activity.id} is already matched to workout {activity.matched_workout_id}"
            )
        if not isinstance(workout, PlannedWorkout):
            raise InvariantViolationError(
                f"Cannot match activity {activity.id} to {type(workout).__name__} {getattr(workout, 'id', None)!r}"
            )
        if not 0.0 <= confidence <= 1.0:
            raise InvariantViolationError(f"Match confidence {confidence!r} outside [0.0, 1.0]")

        # Optimistic check; the unique index on matched_workout_id backs it up
        holder = self.session.scalar(
            select(ExternalActivity.id).where(ExternalActivity.matched_workout_id == workout.id)
        )
        if holder is not None:
            raise CandidateAlreadyMatchedError(activity.id, workout.id)

        activity.matched_workout_id = workout.id
        activity.match_confidence = confidence
        activity.matched_at = matched_at
        try:
            self.session.commit()
        except IntegrityError as err:
            self.session.rollback()
            logger.warning("Workout %s was claimed concurrently; activity %s left unmatched", workout.id, activity.id)
            raise CandidateAlreadyMatchedError(activity.id, workout.id, err) from err
        except SQLAlchemyError as err:
            self.session.rollback()
            raise MatchPersistenceError(activity.id, f"Failed to save match for activity {activity.id}", err) from err

        logger.info(
            "Matched activity %s to workout %s (confidence: %.3f)",
            activity.id,
            workout.id,
            confidence,
        )

    def persist_unmatch(self, activity: ExternalActivity) -> None:
        """Clear all three match fields of the activity in one commit."""
        previous = activity.matched_workout_id
        activity.matched_workout_id = None
        activity.match_confidence = None
        activity.matched_at = None
        try:
            self.session.commit()
        except SQLAlchemyError as err:
            self.session.rollback()
            raise MatchPersistenceError(activity.id, f"Failed to clear match for activity {activity.id}", err) from err

        logger.info("Unmatched activity %s from workout %s", activity.id, previous)

    def iterate_unmatched_activities(self) -> list[ExternalActivity]:
        """Return every unmatched external activity in primary-key order."""
        query = (
            select(ExternalActivity)
            .where(ExternalActivity.matched_workout_id.is_(None))
            .order_by(ExternalActivity.id)
        )
        try:
            return list(self.session.scalars(query).all())
        except SQLAlchemyError as err:
            self.session.rollback()
            raise MatchPersistenceError(None, "Failed to load unmatched activities", err) from err

    # ------------------------------------------------------------------
    # Helpers for the API and job layer
    # ------------------------------------------------------------------

    def get_activity(self, activity_id: int) -> ExternalActivity | None:
        return self.session.get(ExternalActivity, activity_id)

    def upsert_activity(self, payload: dict[str, Any]) -> ExternalActivity:
        """
        Create or update an external activity keyed by (source, source_id).

        Match fields are never touched here; they belong to the matcher.
        """
        source = payload.get("source") or "strava"
        source_id = str(payload["source_id"])

        activity = self.session.scalar(
            select(ExternalActivity).where(
                ExternalActivity.source == source,
                ExternalActivity.source_id == source_id,
            )
        )
        created = activity is None
        if created:
            activity = ExternalActivity(source=source, source_id=source_id)
            self.session.add(activity)

        for field in ACTIVITY_FIELDS:
            if field in payload:
                setattr(activity, field, payload[field])

        self.session.commit()
        self.session.refresh(activity)
        logger.info(
            "%s external activity %s (%s id: %s)",
            "Created" if created else "Updated",
            activity.id,
            source,
            source_id,
        )
        return activity

    def delete_workout(self, workout: PlannedWorkout) -> None:
        """Delete a planned workout; its linked activity, if any, becomes unmatched."""
        workout_id = workout.id
        linked = [activity.id for activity in workout.matched_activities]

        # clear_matches_of_deleted_workout resets the three match fields during the flush
        self.session.delete(workout)
        self.session.commit()

        for activity_id in linked:
            logger.info("Unmatched activity %s because workout %s was deleted", activity_id, workout_id)
        logger.info("Deleted planned workout %s", workout_id)
