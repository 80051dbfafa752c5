"""Create or upgrade the plan sync database schema."""
import logging

from plansync.config import get_settings
from plansync.database import current_revision, run_migrations
from plansync.logging_config import configure_logging


logger = logging.getLogger("scripts.initial_setup")


def main() -> None:
    configure_logging()
    settings = get_settings()

    before = current_revision()
    run_migrations()
    after = current_revision()

    if before == after:
        logger.info("Database at %s already at revision %s", settings.database_url, after)
    else:
        logger.info("Database at %s upgraded %s -> %s", settings.database_url, before or "empty", after)


if __name__ == "__main__":
    main()
