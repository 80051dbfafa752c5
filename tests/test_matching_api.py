"""API tests for the plans, matching and health routers."""
from __future__ import annotations

from datetime import datetime
from typing import Annotated

import pytest
from fastapi import Depends
from sqlalchemy.orm import Session

from plansync.database import get_db
from plansync.main import app
from plansync.models.database_models import ExternalActivity
from plansync.routers.matching import get_matcher
from plansync.services.activity_matcher import ActivityMatcher
from plansync.services.errors import (
    CandidateAlreadyMatchedError,
    InvariantViolationError,
    MatchPersistenceError,
)
from plansync.services.match_repository import SqlAlchemyMatchStore


PLAN_PAYLOAD = {
    "name": "Spring 10K",
    "length_weeks": 8,
    "workouts": [
        {"start_date_local": "2025-03-10T07:00:00", "distance": 5000, "activity_type": "Run", "description": "Easy run"},
        {"start_date_local": "2025-03-11T07:00:00", "distance": 8000, "activity_type": "Run", "description": "Tempo run"},
    ],
}


def _create_plan(client, payload=None):
    response = client.post("/api/plans", json=payload or PLAN_PAYLOAD)
    assert response.status_code == 201
    return response.json()


def _ingest(client, source_id, start, distance, description="Morning run", activity_type="Run"):
    return client.post(
        "/api/matching/activities",
        json={
            "source_id": source_id,
            "start_date_local": start,
            "distance": distance,
            "activity_type": activity_type,
            "description": description,
        },
    )


def test_health_endpoints(test_client):
    assert test_client.get("/health").json() == {"status": "ok"}
    assert test_client.get("/api/health/status").json() == {"status": "online"}


def test_create_and_get_plan(test_client):
    plan = _create_plan(test_client)

    assert plan["name"] == "Spring 10K"
    assert plan["is_active"] is True
    assert [w["distance"] for w in plan["workouts"]] == [5000, 8000]
    assert all(w["matched_activity_id"] is None for w in plan["workouts"])

    fetched = test_client.get(f"/api/plans/{plan['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["id"] == plan["id"]


def test_get_missing_plan_returns_404(test_client):
    assert test_client.get("/api/plans/999").status_code == 404


def test_add_workout_to_plan(test_client):
    plan = _create_plan(test_client)

    response = test_client.post(
        f"/api/plans/{plan['id']}/workouts",
        json={"start_date_local": "2025-03-15T08:00:00", "distance": 16000, "activity_type": "Long Run"},
    )

    assert response.status_code == 201
    assert response.json()["plan_id"] == plan["id"]
    assert test_client.post("/api/plans/999/workouts", json={"start_date_local": "2025-03-15T08:00:00"}).status_code == 404


def test_ingest_matches_same_day_workout(test_client):
    plan = _create_plan(test_client)
    first_workout = plan["workouts"][0]

    response = _ingest(test_client, "9001", "2025-03-10T06:45:00", 5020, description="Easy run by the river")

    assert response.status_code == 201
    body = response.json()
    assert body["matched_workout_id"] == first_workout["id"]
    assert 0.3 <= body["match_confidence"] <= 1.0
    assert body["matched_at"] is not None

    refreshed = test_client.get(f"/api/plans/{plan['id']}").json()
    assert refreshed["workouts"][0]["matched_activity_id"] == body["id"]


def test_ingest_without_candidate_stays_unmatched(test_client):
    _create_plan(test_client)

    body = _ingest(test_client, "9002", "2025-03-20T06:45:00", 5000).json()

    assert body["matched_workout_id"] is None
    assert body["match_confidence"] is None

    unmatched = test_client.get("/api/matching/activities/unmatched").json()
    assert [a["id"] for a in unmatched] == [body["id"]]


def test_ingest_twice_updates_same_activity(test_client):
    first = _ingest(test_client, "9003", "2025-03-20T06:45:00", 5000).json()
    second = _ingest(test_client, "9003", "2025-03-20T06:45:00", 5100).json()

    assert second["id"] == first["id"]
    assert second["distance"] == 5100


def test_ingest_strips_timezone(test_client):
    body = _ingest(test_client, "9004", "2025-03-20T06:45:00+02:00", 5000).json()
    assert body["start_date_local"] == "2025-03-20T06:45:00"


def test_unmatched_limit_validation(test_client):
    assert test_client.get("/api/matching/activities/unmatched?limit=0").status_code == 400
    assert test_client.get("/api/matching/activities/unmatched?limit=1001").status_code == 400


def test_candidates_preview_ranks_without_saving(test_client):
    # Ingest before the plan exists so nothing is matched on arrival
    activity = _ingest(test_client, "9005", "2025-03-12T07:00:00", 8000, description="Tempo run").json()
    plan = _create_plan(test_client)

    preview = test_client.get(f"/api/matching/activities/{activity['id']}/candidates")

    assert preview.status_code == 200
    body = preview.json()
    assert body["already_matched"] is False
    assert body["min_confidence_threshold"] == 0.3
    assert [c["workout_id"] for c in body["candidates"]] == [plan["workouts"][1]["id"]]
    candidate = body["candidates"][0]
    assert candidate["scores"] == {"date": 0.5, "distance": 1.0, "activity_type": 1.0, "description": 1.0}
    assert candidate["confidence"] == 0.8
    assert candidate["above_threshold"] is True

    still_unmatched = test_client.get("/api/matching/activities/unmatched").json()
    assert [a["id"] for a in still_unmatched] == [activity["id"]]


def test_candidates_for_missing_activity(test_client):
    assert test_client.get("/api/matching/activities/404/candidates").status_code == 404


def test_match_and_unmatch_endpoints(test_client):
    activity = _ingest(test_client, "9006", "2025-03-12T07:00:00", 8000, description="Tempo run").json()
    plan = _create_plan(test_client)

    matched = test_client.post(f"/api/matching/activities/{activity['id']}/match")
    assert matched.status_code == 200
    assert matched.json()["matched"] is True
    assert matched.json()["activity"]["matched_workout_id"] == plan["workouts"][1]["id"]

    again = test_client.post(f"/api/matching/activities/{activity['id']}/match")
    assert again.json()["matched"] is False

    cleared = test_client.delete(f"/api/matching/activities/{activity['id']}/match")
    assert cleared.status_code == 200
    assert cleared.json()["unmatched"] is True
    assert cleared.json()["activity"]["matched_workout_id"] is None
    assert cleared.json()["activity"]["matched_at"] is None

    noop = test_client.delete(f"/api/matching/activities/{activity['id']}/match")
    assert noop.json()["unmatched"] is False


def test_match_missing_activity_returns_404(test_client):
    assert test_client.post("/api/matching/activities/404/match").status_code == 404
    assert test_client.delete("/api/matching/activities/404/match").status_code == 404


def test_match_scoped_to_other_plan(test_client):
    activity = _ingest(test_client, "9007", "2025-03-12T07:00:00", 8000).json()
    _create_plan(test_client)
    other = _create_plan(test_client, {"name": "Empty plan", "workouts": []})

    response = test_client.post(f"/api/matching/activities/{activity['id']}/match?plan_id={other['id']}")

    assert response.status_code == 200
    assert response.json()["matched"] is False


def test_batch_endpoint(test_client, session_factory):
    plan = _create_plan(test_client)
    # Insert directly so ingestion does not match them first
    with session_factory() as session:
        session.add_all(
            [
                ExternalActivity(source="strava", source_id="a1", start_date_local=datetime(2025, 3, 10, 7), distance=5000, activity_type="Run"),
                ExternalActivity(source="strava", source_id="a2", start_date_local=datetime(2025, 3, 11, 7), distance=8000, activity_type="Run"),
                ExternalActivity(source="strava", source_id="a3", start_date_local=datetime(2025, 3, 20, 7), distance=3000, activity_type="Run"),
            ]
        )
        session.commit()

    response = test_client.post(f"/api/matching/batch?plan_id={plan['id']}")

    assert response.status_code == 200
    assert response.json() == {"matched": 2, "unmatched": 1, "failed": 0, "plan_id": plan["id"]}

    status = test_client.get("/api/health/match-status").json()
    assert status["activities_total"] == 3
    assert status["activities_matched"] == 2
    assert status["activities_unmatched"] == 1
    assert status["planned_workouts"] == 2
    assert status["last_matched_at"] is not None


def test_delete_matched_workout_unmatches_activity(test_client):
    plan = _create_plan(test_client)
    workout_id = plan["workouts"][0]["id"]
    activity = _ingest(test_client, "9008", "2025-03-10T07:00:00", 5000, description="Easy run").json()
    assert activity["matched_workout_id"] == workout_id

    response = test_client.delete(f"/api/plans/workouts/{workout_id}")

    assert response.status_code == 200
    unmatched = test_client.get("/api/matching/activities/unmatched").json()
    assert [a["id"] for a in unmatched] == [activity["id"]]
    assert unmatched[0]["match_confidence"] is None
    assert test_client.delete(f"/api/plans/workouts/{workout_id}").status_code == 404


def test_match_status_on_empty_database(test_client):
    assert test_client.get("/api/health/match-status").json() == {
        "activities_total": 0,
        "activities_matched": 0,
        "activities_unmatched": 0,
        "planned_workouts": 0,
        "last_matched_at": None,
    }


def test_preview_includes_current_match(test_client):
    plan = _create_plan(test_client)
    workout_id = plan["workouts"][0]["id"]
    activity = _ingest(test_client, "9010", "2025-03-10T07:00:00", 5000, description="Easy run").json()
    assert activity["matched_workout_id"] == workout_id

    body = test_client.get(f"/api/matching/activities/{activity['id']}/candidates").json()

    assert body["already_matched"] is True
    current = [c for c in body["candidates"] if c["current_match"]]
    assert [c["workout_id"] for c in current] == [workout_id]
    assert body["candidates"][0]["workout_id"] == workout_id


def test_preview_scoped_to_plan(test_client):
    activity = _ingest(test_client, "9011", "2025-03-10T07:00:00", 5000).json()
    plan = _create_plan(test_client)
    other = _create_plan(test_client, {"name": "Empty plan", "workouts": []})

    scoped = test_client.get(f"/api/matching/activities/{activity['id']}/candidates?plan_id={other['id']}").json()
    in_plan = test_client.get(f"/api/matching/activities/{activity['id']}/candidates?plan_id={plan['id']}").json()

    assert scoped["plan_id"] == other["id"]
    assert scoped["candidates"] == []
    assert {c["plan_id"] for c in in_plan["candidates"]} == {plan["id"]}


# ============================================================================
# Error mapping with a failing store
# ============================================================================

class ConflictStore(SqlAlchemyMatchStore):
    def persist_match(self, activity, workout, confidence, matched_at):
        raise CandidateAlreadyMatchedError(activity.id, workout.id)


class MisuseStore(SqlAlchemyMatchStore):
    def persist_match(self, activity, workout, confidence, matched_at):
        raise InvariantViolationError(f"Activity {activity.id} is already matched")


class BrokenWriteStore(SqlAlchemyMatchStore):
    def persist_match(self, activity, workout, confidence, matched_at):
        raise MatchPersistenceError(activity.id, "disk full")


@pytest.fixture
def use_store(test_client):
    """Serve the matching router with the given store class."""

    def _use_store(store_cls):
        def matcher_with_store(db: Annotated[Session, Depends(get_db)]) -> ActivityMatcher:
            return ActivityMatcher(store_cls(db))

        app.dependency_overrides[get_matcher] = matcher_with_store

    return _use_store


def test_match_conflict_returns_409(test_client, use_store):
    activity = _ingest(test_client, "9020", "2025-03-10T07:00:00", 5000).json()
    workout_id = _create_plan(test_client)["workouts"][0]["id"]
    use_store(ConflictStore)

    response = test_client.post(f"/api/matching/activities/{activity['id']}/match")

    assert response.status_code == 409
    assert str(workout_id) in response.json()["detail"]
    unmatched = test_client.get("/api/matching/activities/unmatched").json()
    assert [a["id"] for a in unmatched] == [activity["id"]]


def test_match_misuse_returns_422(test_client, use_store):
    activity = _ingest(test_client, "9021", "2025-03-10T07:00:00", 5000).json()
    _create_plan(test_client)
    use_store(MisuseStore)

    response = test_client.post(f"/api/matching/activities/{activity['id']}/match")

    assert response.status_code == 422
    assert "already matched" in response.json()["detail"]


def test_match_write_failure_returns_500(test_client, use_store):
    activity = _ingest(test_client, "9022", "2025-03-10T07:00:00", 5000).json()
    _create_plan(test_client)
    use_store(BrokenWriteStore)

    response = test_client.post(f"/api/matching/activities/{activity['id']}/match")

    assert response.status_code == 500


def test_ingest_stores_activity_when_auto_match_fails(test_client, use_store):
    _create_plan(test_client)
    use_store(BrokenWriteStore)

    response = _ingest(test_client, "9023", "2025-03-10T07:00:00", 5000, description="Easy run")

    assert response.status_code == 201
    body = response.json()
    assert body["matched_workout_id"] is None
    assert body["match_confidence"] is None
    unmatched = test_client.get("/api/matching/activities/unmatched").json()
    assert [a["id"] for a in unmatched] == [body["id"]]
