"""Error types raised by the matching engine and its persistence layer.

"No match found" is never an error: a missing activity date, an empty
candidate pool, a best score under the threshold or an activity that is
already matched all produce a plain ``None``/``False`` result.
"""


class MatchingError(Exception):
    """Base exception for matching errors."""

    pass


class InvariantViolationError(MatchingError):
    """Raised when the matcher or the store is used with the wrong records.

    Examples: scoring a planned workout as if it were an external activity,
    offering an external activity as a candidate, or asking the store to
    overwrite an existing match.
    """

    pass


class MatchPersistenceError(MatchingError):
    """Raised when the match fields of an activity could not be written.

    Attributes:
        activity_id: Activity whose match fields were being written
        original_error: Underlying exception, if any
    """

    def __init__(self, activity_id: int | None, message: str, original_error: Exception | None = None) -> None:
        self.activity_id = activity_id
        self.original_error = original_error
        super().__init__(message)


class CandidateAlreadyMatchedError(MatchPersistenceError):
    """Raised when the chosen workout was claimed by another activity first."""

    def __init__(self, activity_id: int | None, workout_id: int, original_error: Exception | None = None) -> None:
        self.workout_id = workout_id
        super().__init__(
            activity_id,
            f"Planned workout {workout_id} is already matched to another activity",
            original_error,
        )
