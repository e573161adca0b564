"""Entry point for the cardio-sched command."""

import logging
import sys

from cardio_sched.config import get_settings

NOISY_LOGGERS = ("aiosqlite", "sqlalchemy.engine", "httpx")


def setup_logging():
    """Configure root logging from settings; driver loggers stay at WARNING unless debugging."""
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    if not settings.debug_mode:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def main():
    """Run the scheduling CLI."""
    setup_logging()

    from cardio_sched.cli.commands import app

    app()


if __name__ == "__main__":
    main()
