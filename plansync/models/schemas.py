"""Pydantic models describing API payloads."""
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _strip_timezone(value: datetime | None) -> datetime | None:
    # Dates are local wall-clock times; the calendar day is what gets compared.
    if value is not None and value.tzinfo is not None:
        return value.replace(tzinfo=None)
    return value


class ExternalActivityCreate(BaseModel):
    """Schema for ingesting an activity that was already normalised by the importer."""

    source: str = Field(default="strava", max_length=20)
    source_id: str = Field(min_length=1, max_length=64)
    distance: float | None = Field(default=None, ge=0)
    activity_type: str | None = Field(default=None, max_length=50)
    start_date_local: datetime | None = None
    description: str | None = None
    elapsed_time: int | None = Field(default=None, ge=0)
    average_heart_rate: float | None = Field(default=None, ge=0)
    max_heart_rate: float | None = Field(default=None, ge=0)

    @field_validator("start_date_local")
    @classmethod
    def drop_timezone(cls, value: datetime | None) -> datetime | None:
        return _strip_timezone(value)


class ExternalActivityResponse(BaseModel):
    """Schema for external activity API response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    source: str
    source_id: str
    distance: float | None = None
    activity_type: str | None = None
    start_date_local: datetime | None = None
    description: str | None = None
    matched_workout_id: int | None = None
    match_confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    matched_at: datetime | None = None


class ScoreBreakdown(BaseModel):
    """Component scores behind a confidence value."""

    date: float
    distance: float
    activity_type: float
    description: float


class CandidateScoreResponse(BaseModel):
    """One ranked candidate workout for an activity."""

    workout_id: int
    plan_id: int
    start_date_local: datetime
    distance: float | None = None
    activity_type: str | None = None
    description: str | None = None
    confidence: float = Field(ge=0.0, le=1.0)
    scores: ScoreBreakdown
    above_threshold: bool
    current_match: bool = False


class CandidatePreviewResponse(BaseModel):
    """Ranked candidates for an activity, without persisting anything."""

    activity_id: int
    already_matched: bool
    plan_id: int | None = None
    min_confidence_threshold: float
    candidates: list[CandidateScoreResponse] = []


class MatchResponse(BaseModel):
    """Outcome of a match attempt."""

    matched: bool
    activity: ExternalActivityResponse


class UnmatchResponse(BaseModel):
    """Outcome of an unmatch request."""

    unmatched: bool
    activity: ExternalActivityResponse


class BatchMatchResponse(BaseModel):
    """Counters returned by a batch match sweep."""

    matched: int = Field(ge=0)
    unmatched: int = Field(ge=0)
    failed: int = Field(ge=0)
    plan_id: int | None = None


# Training Plan Schemas
class PlannedWorkoutBase(BaseModel):
    """Base schema for planned workouts."""

    start_date_local: datetime
    distance: float | None = Field(default=None, ge=0)
    activity_type: str | None = Field(default=None, max_length=50)
    description: str | None = None

    @field_validator("start_date_local")
    @classmethod
    def drop_timezone(cls, value: datetime) -> datetime:
        return _strip_timezone(value)


class PlannedWorkoutCreate(PlannedWorkoutBase):
    """Schema for adding a workout to a plan."""


class PlannedWorkoutResponse(PlannedWorkoutBase):
    """Schema for planned workout API response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    plan_id: int
    matched_activity_id: int | None = None


class TrainingPlanCreate(BaseModel):
    """Schema for creating a plan together with its workouts."""

    name: str = Field(min_length=1, max_length=200)
    race_date: date | None = None
    length_weeks: int | None = Field(default=None, gt=0)
    notes: str | None = None
    workouts: list[PlannedWorkoutCreate] = []


class TrainingPlanWithWorkouts(BaseModel):
    """Schema for training plan with associated workouts."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    race_date: date | None = None
    length_weeks: int | None = None
    notes: str | None = None
    is_active: bool
    created_at: datetime
    updated_at: datetime
    workouts: list[PlannedWorkoutResponse] = []
