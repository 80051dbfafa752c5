"""Pytest configuration for global fixtures and logging setup."""
from __future__ import annotations

import os
from datetime import datetime
from typing import Any, Callable, Iterator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ["DATABASE_URL"] = os.environ.get("DATABASE_URL") or "sqlite:///:memory:"

from plansync.logging_config import configure_logging

configure_logging()

from plansync.database import Base, get_db
from plansync.main import app
from plansync.models.database_models import ExternalActivity, PlannedWorkout, TrainingPlan


@pytest.fixture
def db_engine() -> Iterator[Engine]:
    """Create an in-memory SQLite database shared by every session of a test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine: Engine) -> sessionmaker:
    return sessionmaker(bind=db_engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def db_session(session_factory: sessionmaker) -> Iterator[Session]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def test_client(session_factory: sessionmaker) -> Iterator[TestClient]:
    """Provide a FastAPI test client bound to the in-memory database."""

    def override_get_db():
        db = session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_plan(db_session: Session) -> Callable[..., TrainingPlan]:
    def _make_plan(name: str = "Spring Marathon") -> TrainingPlan:
        plan = TrainingPlan(name=name, length_weeks=12)
        db_session.add(plan)
        db_session.commit()
        return plan

    return _make_plan


@pytest.fixture
def make_workout(db_session: Session, make_plan) -> Callable[..., PlannedWorkout]:
    default_plan: dict[str, TrainingPlan] = {}

    def _make_workout(
        start: datetime,
        distance: float | None = 5000.0,
        activity_type: str | None = "Run",
        description: str | None = "Workout",
        plan: TrainingPlan | None = None,
    ) -> PlannedWorkout:
        if plan is None:
            if "plan" not in default_plan:
                default_plan["plan"] = make_plan()
            plan = default_plan["plan"]
        workout = PlannedWorkout(
            plan_id=plan.id,
            start_date_local=start,
            distance=distance,
            activity_type=activity_type,
            description=description,
        )
        db_session.add(workout)
        db_session.commit()
        return workout

    return _make_workout


@pytest.fixture
def make_activity(db_session: Session) -> Callable[..., ExternalActivity]:
    counter = {"next": 1000}

    def _make_activity(
        start: datetime | None,
        distance: float | None = 5000.0,
        activity_type: str | None = "Run",
        description: str | None = "Activity",
        **extra: Any,
    ) -> ExternalActivity:
        counter["next"] += 1
        activity = ExternalActivity(
            source="strava",
            source_id=str(extra.pop("source_id", counter["next"])),
            start_date_local=start,
            distance=distance,
            activity_type=activity_type,
            description=description,
            **extra,
        )
        db_session.add(activity)
        db_session.commit()
        return activity

    return _make_activity
