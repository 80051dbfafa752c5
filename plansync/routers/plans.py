"""API endpoints for training plans and their planned workouts."""
from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session, selectinload

from plansync.database import get_db
from plansync.models.database_models import PlannedWorkout, TrainingPlan
from plansync.models.schemas import (
    PlannedWorkoutCreate,
    PlannedWorkoutResponse,
    TrainingPlanCreate,
    TrainingPlanWithWorkouts,
)
from plansync.services.match_repository import SqlAlchemyMatchStore


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/plans", tags=["plans"])


@router.post("", response_model=TrainingPlanWithWorkouts, status_code=201)
async def create_plan(
    plan_request: TrainingPlanCreate,
    db: Annotated[Session, Depends(get_db)],
):
    """
    Create a training plan together with its planned workouts.

    Args:
        plan_request: Plan fields and the list of workouts

    Returns:
        TrainingPlanWithWorkouts: Created plan with workouts sorted by date
    """
    try:
        plan = TrainingPlan(
            name=plan_request.name,
            race_date=plan_request.race_date,
            length_weeks=plan_request.length_weeks,
            notes=plan_request.notes,
            is_active=True,
        )
        plan.workouts = [
            PlannedWorkout(
                start_date_local=w.start_date_local,
                distance=w.distance,
                activity_type=w.activity_type,
                description=w.description,
            )
            for w in plan_request.workouts
        ]
        db.add(plan)
        db.commit()
        db.refresh(plan)

        logger.info("Created training plan: id=%s, workouts=%d", plan.id, len(plan.workouts))
        return TrainingPlanWithWorkouts.model_validate(plan)

    except Exception as e:
        db.rollback()
        logger.exception("Failed to create training plan")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to create training plan: {str(e)}"
        )


@router.get("/{plan_id}", response_model=TrainingPlanWithWorkouts)
async def get_plan(
    plan_id: int,
    db: Annotated[Session, Depends(get_db)],
):
    """
    Get a training plan with all workouts and their matched activity ids.

    Args:
        plan_id: Training plan ID
    """
    plan = (
        db.query(TrainingPlan)
        .filter(TrainingPlan.id == plan_id)
        .options(selectinload(TrainingPlan.workouts).selectinload(PlannedWorkout.matched_activities))
        .first()
    )
    if not plan:
        raise HTTPException(status_code=404, detail=f"Training plan {plan_id} not found")

    return TrainingPlanWithWorkouts.model_validate(plan)


@router.post("/{plan_id}/workouts", response_model=PlannedWorkoutResponse, status_code=201)
async def add_workout(
    plan_id: int,
    workout_request: PlannedWorkoutCreate,
    db: Annotated[Session, Depends(get_db)],
):
    """Add a planned workout to an existing plan."""
    plan = db.get(TrainingPlan, plan_id)
    if not plan:
        raise HTTPException(status_code=404, detail=f"Training plan {plan_id} not found")

    workout = PlannedWorkout(plan_id=plan.id, **workout_request.model_dump())
    db.add(workout)
    db.commit()
    db.refresh(workout)

    logger.info("Added workout %s to plan %s", workout.id, plan_id)
    return PlannedWorkoutResponse.model_validate(workout)


@router.delete("/workouts/{workout_id}", status_code=200)
async def delete_workout(
    workout_id: int,
    db: Annotated[Session, Depends(get_db)],
):
    """
    Delete a planned workout; an activity matched to it becomes unmatched.

    Returns:
        dict: Success message
    """
    workout = db.get(PlannedWorkout, workout_id)
    if not workout:
        raise HTTPException(status_code=404, detail=f"Workout {workout_id} not found")

    SqlAlchemyMatchStore(db).delete_workout(workout)
    return {"message": f"Workout {workout_id} deleted successfully"}
