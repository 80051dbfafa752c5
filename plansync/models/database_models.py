"""SQLAlchemy ORM models for training plans and imported activities."""
from datetime import date, datetime

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Boolean,
    UniqueConstraint,
    event,
    update,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from plansync.database import Base


class TrainingPlan(Base):
    """Training plan grouping planned workouts."""

    __tablename__ = "training_plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    race_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    length_weeks: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationship
    workouts: Mapped[list["PlannedWorkout"]] = relationship(
        "PlannedWorkout",
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="PlannedWorkout.start_date_local",
    )


class PlannedWorkout(Base):
    """Individual workout within a training plan (a match candidate)."""

    __tablename__ = "planned_workouts"

    is_external = False

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    plan_id: Mapped[int] = mapped_column(Integer, ForeignKey("training_plans.id"), nullable=False, index=True)
    start_date_local: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    # Workout details
    distance: Mapped[float | None] = mapped_column(Float, nullable=True)  # same unit as imported activities
    activity_type: Mapped[str | None] = mapped_column(String(50), nullable=True)  # Run, Long Run, Ride, ...
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    plan: Mapped["TrainingPlan"] = relationship("TrainingPlan", back_populates="workouts")
    matched_activities: Mapped[list["ExternalActivity"]] = relationship(
        "ExternalActivity",
        back_populates="matched_workout",
        # Linked activities are unmatched by clear_matches_of_deleted_workout
        passive_deletes="all",
    )

    @property
    def matched_activity_id(self) -> int | None:
        return self.matched_activities[0].id if self.matched_activities else None


class ExternalActivity(Base):
    """Activity imported from an outside system such as Strava."""

    __tablename__ = "external_activities"

    is_external = True

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source: Mapped[str] = mapped_column(String(20), nullable=False, default="strava")
    source_id: Mapped[str] = mapped_column(String(64), nullable=False)  # id in the source system

    # Activity details
    distance: Mapped[float | None] = mapped_column(Float, nullable=True)  # normalised by the importer
    activity_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    start_date_local: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    elapsed_time: Mapped[int | None] = mapped_column(Integer, nullable=True)  # seconds
    average_heart_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_heart_rate: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Match state (all three set or all three NULL)
    matched_workout_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("planned_workouts.id"),
        nullable=True,
    )
    match_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)  # 0.0 - 1.0
    matched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("source", "source_id", name="uq_external_activities_source"),
        CheckConstraint(
            "(matched_workout_id IS NULL AND match_confidence IS NULL AND matched_at IS NULL) OR "
            "(matched_workout_id IS NOT NULL AND match_confidence IS NOT NULL AND matched_at IS NOT NULL)",
            name="ck_external_activities_match_fields",
        ),
        CheckConstraint(
            "match_confidence IS NULL OR (match_confidence >= 0.0 AND match_confidence <= 1.0)",
            name="ck_external_activities_match_confidence",
        ),
        # One planned workout can be claimed by at most one activity
        Index("ix_external_activities_matched_workout_id", "matched_workout_id", unique=True),
    )

    # Relationship
    matched_workout: Mapped["PlannedWorkout | None"] = relationship(
        "PlannedWorkout",
        back_populates="matched_activities",
        foreign_keys=[matched_workout_id],
    )

    @property
    def matched(self) -> bool:
        return self.matched_workout_id is not None


@event.listens_for(PlannedWorkout, "before_delete")
def clear_matches_of_deleted_workout(mapper, connection, target: PlannedWorkout) -> None:
    """Unmatch the activity linked to a workout being deleted, clearing all three match fields."""
    connection.execute(
        update(ExternalActivity)
        .where(ExternalActivity.matched_workout_id == target.id)
        .values(matched_workout_id=None, match_confidence=None, matched_at=None)
    )
