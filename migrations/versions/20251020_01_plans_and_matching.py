"""Training plans, planned workouts and external activities with match fields."""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20251020_01"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "training_plans",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("race_date", sa.Date(), nullable=True),
        sa.Column("length_weeks", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )

    op.create_table(
        "planned_workouts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("plan_id", sa.Integer(), sa.ForeignKey("training_plans.id"), nullable=False),
        sa.Column("start_date_local", sa.DateTime(), nullable=False),
        sa.Column("distance", sa.Float(), nullable=True),
        sa.Column("activity_type", sa.String(length=50), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )
    op.create_index("ix_planned_workouts_plan_id", "planned_workouts", ["plan_id"], unique=False)
    op.create_index("ix_planned_workouts_start_date_local", "planned_workouts", ["start_date_local"], unique=False)

    op.create_table(
        "external_activities",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("source", sa.String(length=20), nullable=False, server_default="strava"),
        sa.Column("source_id", sa.String(length=64), nullable=False),
        sa.Column("distance", sa.Float(), nullable=True),
        sa.Column("activity_type", sa.String(length=50), nullable=True),
        sa.Column("start_date_local", sa.DateTime(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("elapsed_time", sa.Integer(), nullable=True),
        sa.Column("average_heart_rate", sa.Float(), nullable=True),
        sa.Column("max_heart_rate", sa.Float(), nullable=True),
        sa.Column(
            "matched_workout_id",
            sa.Integer(),
            sa.ForeignKey("planned_workouts.id"),
            nullable=True,
        ),
        sa.Column("match_confidence", sa.Float(), nullable=True),
        sa.Column("matched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.UniqueConstraint("source", "source_id", name="uq_external_activities_source"),
        sa.CheckConstraint(
            "(matched_workout_id IS NULL AND match_confidence IS NULL AND matched_at IS NULL) OR "
            "(matched_workout_id IS NOT NULL AND match_confidence IS NOT NULL AND matched_at IS NOT NULL)",
            name="ck_external_activities_match_fields",
        ),
        sa.CheckConstraint(
            "match_confidence IS NULL OR (match_confidence >= 0.0 AND match_confidence <= 1.0)",
            name="ck_external_activities_match_confidence",
        ),
    )
    op.create_index(
        "ix_external_activities_start_date_local",
        "external_activities",
        ["start_date_local"],
        unique=False,
    )
    op.create_index(
        "ix_external_activities_matched_workout_id",
        "external_activities",
        ["matched_workout_id"],
        unique=True,
    )


def downgrade() -> None:
    op.drop_index("ix_external_activities_matched_workout_id", table_name="external_activities")
    op.drop_index("ix_external_activities_start_date_local", table_name="external_activities")
    op.drop_table("external_activities")
    op.drop_index("ix_planned_workouts_start_date_local", table_name="planned_workouts")
    op.drop_index("ix_planned_workouts_plan_id", table_name="planned_workouts")
    op.drop_table("planned_workouts")
    op.drop_table("training_plans")
