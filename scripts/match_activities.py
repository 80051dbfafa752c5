"""Match imported activities to planned workouts from the command line."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from plansync.config import get_settings
from plansync.database import SessionLocal, run_migrations
from plansync.jobs.matching import build_matcher
from plansync.logging_config import configure_logging
from plansync.services.errors import MatchingError


logger = logging.getLogger("scripts.match_activities")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Match imported activities to planned workouts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Match every unmatched activity
  python scripts/match_activities.py

  # Only consider workouts from plan 3
  python scripts/match_activities.py --plan-id 3

  # Show ranked candidates for one activity without saving
  python scripts/match_activities.py --activity-id 42 --dry-run

  # Undo the match of one activity
  python scripts/match_activities.py --activity-id 42 --unmatch
        """
    )
    parser.add_argument(
        "--plan-id",
        type=int,
        help="Restrict candidate workouts to this training plan"
    )
    parser.add_argument(
        "--activity-id",
        type=int,
        help="Process a single activity instead of all unmatched ones"
    )
    parser.add_argument(
        "--unmatch",
        action="store_true",
        help="Clear the match of --activity-id"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print ranked candidates for --activity-id without saving"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Show detailed output"
    )
    args = parser.parse_args(argv)
    if (args.unmatch or args.dry_run) and args.activity_id is None:
        parser.error("--unmatch and --dry-run require --activity-id")
    return args


def print_candidates(matcher, store, activity_id: int, plan_id: int | None) -> int:
    activity = store.get_activity(activity_id)
    if activity is None:
        logger.error("❌ Activity %s not found", activity_id)
        return 1

    pool = store.load_candidate_pool(activity, plan_id=plan_id)
    ranked = matcher.rank_candidates(activity, pool)
    if not ranked:
        logger.info("No candidate workouts within %d day(s) of activity %s", store.date_tolerance_days, activity_id)
        return 0

    threshold = matcher.config.min_confidence_threshold
    for scored in ranked:
        workout = scored.workout
        logger.info(
            "%s workout %s | %s | %s | confidence=%.3f | %s",
            "✅" if scored.confidence >= threshold else "  ",
            workout.id,
            workout.start_date_local.date().isoformat(),
            workout.activity_type or "-",
            scored.confidence,
            scored.breakdown(),
        )
    return 0


def run(args: argparse.Namespace) -> int:
    db = SessionLocal()
    try:
        matcher, store = build_matcher(db)

        if args.activity_id is None:
            result = matcher.batch_match(plan_id=args.plan_id)
            logger.info(
                "✅ Batch complete: %d matched, %d unmatched, %d failed",
                result.matched,
                result.unmatched,
                result.failed,
            )
            return 0 if result.failed == 0 else 2

        if args.dry_run:
            return print_candidates(matcher, store, args.activity_id, args.plan_id)

        activity = store.get_activity(args.activity_id)
        if activity is None:
            logger.error("❌ Activity %s not found", args.activity_id)
            return 1

        if args.unmatch:
            if matcher.unmatch(activity):
                logger.info("✅ Activity %s unmatched", args.activity_id)
            else:
                logger.info("⏭️  Activity %s was not matched", args.activity_id)
            return 0

        if matcher.match(activity, plan_id=args.plan_id):
            logger.info(
                "✅ Activity %s matched to workout %s (confidence: %.3f)",
                args.activity_id,
                activity.matched_workout_id,
                activity.match_confidence,
            )
        else:
            logger.info("⚠️  No match for activity %s", args.activity_id)
        return 0
    except MatchingError as e:
        logger.error("❌ Matching failed: %s", e)
        return 1
    finally:
        db.close()


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)

    configure_logging()
    settings = get_settings()
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.info("Using database %s", settings.database_url)

    # Ensure database schema is up to date
    run_migrations()

    sys.exit(run(args))


if __name__ == "__main__":
    main()
