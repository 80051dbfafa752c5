"""Matching engine linking imported activities to planned workouts.

An external activity (for example one imported from Strava) is compared with
every planned workout in its candidate pool and the candidate with the highest
confidence is linked to it, provided the confidence clears the threshold.

Confidence is a weighted blend of four component scores, each in [0.0, 1.0]:
- Date proximity (40%): 1.0 same day, 0.5 one day apart, else 0.0
- Distance (40%): linear 1.0 -> 0.5 inside the tolerance band, 0.5 -> 0.0
  out to the cut-off, 0.0 beyond
- Activity type (10%): exact, running-like or neutral
- Description (10%): share of the workout's keywords found in the activity

Usage:
    matcher = ActivityMatcher(store, config=MatcherConfig())
    best = matcher.find_best_match(activity, candidates)
    matcher.match(activity)      # True if a match was persisted
    matcher.unmatch(activity)    # True if an existing match was cleared
    matcher.batch_match()        # BatchMatchResult(matched=..., ...)
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Iterable, Protocol, Sequence

from pydantic import BaseModel, ConfigDict, Field, model_validator

from plansync.services.errors import InvariantViolationError, MatchingError


logger = logging.getLogger(__name__)

RUNNING_TYPES: tuple[str, ...] = ("run", "running", "long run", "easy run", "tempo run", "workout")
DESCRIPTION_KEYWORDS: tuple[str, ...] = (
    "easy",
    "tempo",
    "interval",
    "long",
    "recovery",
    "hill",
    "fartlek",
    "speed",
    "workout",
)


class MatchWeights(BaseModel):
    """Relative weight of each component score in the blended confidence."""

    model_config = ConfigDict(frozen=True)

    date: float = Field(default=0.4, ge=0.0, le=1.0)
    distance: float = Field(default=0.4, ge=0.0, le=1.0)
    activity_type: float = Field(default=0.1, ge=0.0, le=1.0)
    description: float = Field(default=0.1, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def check_total(self) -> "MatchWeights":
        total = self.date + self.distance + self.activity_type + self.description
        if not math.isclose(total, 1.0, abs_tol=1e-6):
            raise ValueError(f"Match weights must sum to 1.0 (got {total:.4f})")
        return self


class MatcherConfig(BaseModel):
    """Tolerances and vocabularies used by :class:`ActivityMatcher`."""

    model_config = ConfigDict(frozen=True)

    date_tolerance_days: int = Field(default=1, ge=0)
    distance_tolerance_percent: float = Field(default=0.10, gt=0.0, lt=1.0)
    distance_cutoff_percent: float = Field(default=0.5, gt=0.0, le=1.0)
    min_confidence_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    weights: MatchWeights = Field(default_factory=MatchWeights)
    running_types: tuple[str, ...] = RUNNING_TYPES
    description_keywords: tuple[str, ...] = DESCRIPTION_KEYWORDS

    @model_validator(mode="after")
    def check_distance_bands(self) -> "MatcherConfig":
        if self.distance_tolerance_percent >= self.distance_cutoff_percent:
            raise ValueError("distance_tolerance_percent must be smaller than distance_cutoff_percent")
        return self


class MatchStore(Protocol):
    """Persistence collaborator required by :class:`ActivityMatcher`."""

    def load_candidate_pool(self, activity: Any, plan_id: int | None = None) -> Sequence[Any]:
        ...

    def persist_match(self, activity: Any, workout: Any, confidence: float, matched_at: datetime) -> None:
        ...

    def persist_unmatch(self, activity: Any) -> None:
        ...

    def iterate_unmatched_activities(self) -> Iterable[Any]:
        ...


@dataclass(frozen=True)
class ScoredCandidate:
    """A planned workout together with its component scores and confidence."""

    workout: Any
    date_score: float
    distance_score: float
    activity_type_score: float
    description_score: float
    confidence: float

    def breakdown(self) -> dict[str, float]:
        return {
            "date": round(self.date_score, 4),
            "distance": round(self.distance_score, 4),
            "activity_type": round(self.activity_type_score, 4),
            "description": round(self.description_score, 4),
        }


@dataclass
class BatchMatchResult:
    """Counters accumulated by :meth:`ActivityMatcher.batch_match`."""

    matched: int = 0
    unmatched: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return {"matched": self.matched, "unmatched": self.unmatched, "failed": self.failed}


def _to_date(value: date | datetime | None) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    return value


def _present(text: str | None) -> bool:
    return bool(text and text.strip())


def date_score(
    activity_date: date | datetime | None,
    workout_date: date | datetime | None,
    tolerance_days: int = 1,
) -> float:
    """Score calendar-day proximity as a step function (1.0 / 0.5 / 0.0)."""
    activity_day = _to_date(activity_date)
    workout_day = _to_date(workout_date)
    if activity_day is None or workout_day is None:
        return 0.0

    days_diff = abs((activity_day - workout_day).days)
    if days_diff > tolerance_days:
        return 0.0
    if days_diff == 0:
        return 1.0
    if days_diff == 1:
        return 0.5
    return 0.0


def distance_score(
    activity_distance: float | None,
    workout_distance: float | None,
    tolerance_percent: float = 0.10,
    cutoff_percent: float = 0.5,
) -> float:
    """
    Score how close the actual distance is to the planned distance.

    Inside ``workout_distance * tolerance_percent`` the score falls linearly
    from 1.0 to 0.5; between the tolerance and ``workout_distance *
    cutoff_percent`` it falls linearly from 0.5 to 0.0. A zero distance on
    either side (rest day) is always compatible.
    """
    if activity_distance is None or workout_distance is None:
        return 0.0
    if activity_distance == 0 or workout_distance == 0:
        return 1.0

    tolerance = workout_distance * tolerance_percent
    diff = abs(activity_distance - workout_distance)

    if diff <= tolerance:
        return 1.0 - (diff / tolerance) * 0.5

    max_diff = workout_distance * cutoff_percent
    if diff <= max_diff:
        return 0.5 * (1.0 - (diff - tolerance) / (max_diff - tolerance))
    return 0.0


def activity_type_score(
    activity_type: str | None,
    workout_type: str | None,
    running_types: Iterable[str] = RUNNING_TYPES,
) -> float:
    """Score activity type agreement; unknown types are neutral (0.5)."""
    if not (_present(activity_type) and _present(workout_type)):
        return 0.5

    activity_norm = activity_type.strip().lower()
    workout_norm = workout_type.strip().lower()
    if activity_norm == workout_norm:
        return 1.0

    running_types = tuple(running_types)
    activity_running = any(term in activity_norm for term in running_types)
    workout_running = any(term in workout_norm for term in running_types)
    return 0.7 if activity_running and workout_running else 0.0


def extract_keywords(text: str | None, keywords: Iterable[str] = DESCRIPTION_KEYWORDS) -> list[str]:
    """Return vocabulary keywords found in ``text`` in first-seen order."""
    if not text:
        return []
    vocabulary = set(keywords)
    return list(dict.fromkeys(word for word in text.lower().split() if word in vocabulary))


def description_score(
    activity_description: str | None,
    workout_description: str | None,
    keywords: Iterable[str] = DESCRIPTION_KEYWORDS,
) -> float:
    """Score the share of the workout's keywords repeated in the activity description."""
    activity_present = _present(activity_description)
    workout_present = _present(workout_description)
    if not activity_present and not workout_present:
        return 0.0
    if not activity_present or not workout_present:
        return 0.5

    workout_keywords = extract_keywords(workout_description, keywords)
    if not workout_keywords:
        return 1.0

    activity_tokens = set(activity_description.lower().split())
    hits = sum(1 for keyword in workout_keywords if keyword in activity_tokens)
    return hits / len(workout_keywords)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_external(record: Any) -> bool:
    return bool(getattr(record, "is_external", False))


def _is_matched(activity: Any) -> bool:
    return getattr(activity, "matched_workout_id", None) is not None


class ActivityMatcher:
    """Scores candidate workouts for external activities and records the decision."""

    def __init__(
        self,
        store: MatchStore | None = None,
        config: MatcherConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize the matcher.

        Args:
            store: Persistence collaborator (only needed for match/unmatch/batch)
            config: Tolerances and weights (defaults to MatcherConfig())
            clock: Callable returning the timestamp written to ``matched_at``
        """
        self.store = store
        self.config = config or MatcherConfig()
        self._clock = clock or _utcnow

    def score_candidate(self, activity: Any, workout: Any) -> ScoredCandidate:
        """Compute the component scores and blended confidence for one workout."""
        if _is_external(workout):
            raise InvariantViolationError(
                f"Candidate {getattr(workout, 'id', None)!r} is an external activity, not a planned workout"
            )

        cfg = self.config
        weights = cfg.weights
        scores = (
            date_score(activity.start_date_local, workout.start_date_local, cfg.date_tolerance_days),
            distance_score(
                activity.distance,
                workout.distance,
                cfg.distance_tolerance_percent,
                cfg.distance_cutoff_percent,
            ),
            activity_type_score(activity.activity_type, workout.activity_type, cfg.running_types),
            description_score(activity.description, workout.description, cfg.description_keywords),
        )
        confidence = (
            scores[0] * weights.date
            + scores[1] * weights.distance
            + scores[2] * weights.activity_type
            + scores[3] * weights.description
        )
        return ScoredCandidate(
            workout=workout,
            date_score=scores[0],
            distance_score=scores[1],
            activity_type_score=scores[2],
            description_score=scores[3],
            confidence=min(1.0, max(0.0, confidence)),
        )

    def rank_candidates(self, activity: Any, candidate_pool: Iterable[Any]) -> list[ScoredCandidate]:
        """Score every candidate, best first; equal scores keep pool order."""
        self._check_activity(activity)
        scored = [self.score_candidate(activity, workout) for workout in candidate_pool]
        return sorted(scored, key=lambda s: s.confidence, reverse=True)

    def find_best_match(self, activity: Any, candidate_pool: Iterable[Any]) -> ScoredCandidate | None:
        """
        Find the best matching workout for an activity.

        Args:
            activity: External activity to match
            candidate_pool: Planned workouts, already narrowed to the date window

        Returns:
            The winning ScoredCandidate, or None when the activity is already
            matched, has no date, the pool is empty, or no candidate reaches
            ``min_confidence_threshold``. Ties go to the first candidate.

        Raises:
            InvariantViolationError: activity is not external, or a candidate is
        """
        self._check_activity(activity)
        if _is_matched(activity):
            logger.debug("Activity %s already matched, skipping", activity.id)
            return None
        if _to_date(activity.start_date_local) is None:
            return None

        candidates = list(candidate_pool)
        if not candidates:
            return None

        best: ScoredCandidate | None = None
        for workout in candidates:
            scored = self.score_candidate(activity, workout)
            if best is None or scored.confidence > best.confidence:
                best = scored

        if best.confidence < self.config.min_confidence_threshold:
            logger.debug(
                "Best candidate %s for activity %s below threshold (%.3f < %.3f)",
                getattr(best.workout, "id", None),
                activity.id,
                best.confidence,
                self.config.min_confidence_threshold,
            )
            return None
        return best

    def match(
        self,
        activity: Any,
        candidate_pool: Iterable[Any] | None = None,
        plan_id: int | None = None,
    ) -> bool:
        """
        Match the activity to its best workout and persist the decision.

        The pool is loaded from the store (optionally scoped to ``plan_id``)
        when not supplied. Exactly one ``persist_match`` call is made on
        success and none otherwise. Persistence errors propagate.
        """
        store = self._require_store()
        self._check_activity(activity)
        if _is_matched(activity):
            return False
        if candidate_pool is None:
            candidate_pool = store.load_candidate_pool(activity, plan_id=plan_id)

        best = self.find_best_match(activity, candidate_pool)
        if best is None:
            return False

        store.persist_match(activity, best.workout, best.confidence, self._clock())
        return True

    def unmatch(self, activity: Any) -> bool:
        """Clear the activity's match; returns False when it was not matched."""
        store = self._require_store()
        self._check_activity(activity)
        if not _is_matched(activity):
            return False

        store.persist_unmatch(activity)
        return True

    def batch_match(self, plan_id: int | None = None) -> BatchMatchResult:
        """
        Match every unmatched external activity, one at a time.

        Args:
            plan_id: When given, candidate pools are restricted to this plan's workouts

        Returns:
            BatchMatchResult; activities whose match raised a MatchingError are
            counted as ``failed`` and the sweep moves on.
        """
        store = self._require_store()
        result = BatchMatchResult()

        for activity in store.iterate_unmatched_activities():
            activity_id = activity.id
            try:
                matched = self.match(activity, plan_id=plan_id)
            except MatchingError:
                result.failed += 1
                logger.exception("Batch match failed for activity %s", activity_id)
                continue

            if matched:
                result.matched += 1
                logger.info(
                    "Matched activity %s to workout %s (confidence: %s)",
                    activity_id,
                    activity.matched_workout_id,
                    activity.match_confidence,
                )
            else:
                result.unmatched += 1
                logger.info("No match found for activity %s", activity_id)

        logger.info(
            "Batch match completed - %d matched, %d unmatched, %d failed",
            result.matched,
            result.unmatched,
            result.failed,
        )
        return result

    def _require_store(self) -> MatchStore:
        if self.store is None:
            raise RuntimeError("ActivityMatcher needs a MatchStore to persist match decisions")
        return self.store

    @staticmethod
    def _check_activity(activity: Any) -> None:
        if not _is_external(activity):
            raise InvariantViolationError(
                f"Record {getattr(activity, 'id', None)!r} is not an external activity and cannot be matched"
            )
