"""Logging for notifier runs.

Every component logs through structlog with a snake_case event name and
key/value context, e.g.

  {"event": "notification_sent", "channel": "#deploys", "blocks": 3}

Output goes to stderr. stdout belongs to GitHub workflow commands such as
the ``::error::`` line the CLI prints on failure. Job logs get the plain
console renderer; ENVIRONMENT=production switches to one JSON object per
line for runners that ship logs elsewhere.

Usage:
    from deploy_notify.logging_config import setup_logging, get_logger

    setup_logging(log_level="DEBUG")
    logger = get_logger(__name__)
    logger.info("deployed_commit_fetched", commit="abc123")
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog

# Run context bound by the notifier (repo, environment, status) is merged in
# first so it appears on every event.
SHARED_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
]


def setup_logging(
    environment: str | None = None,
    log_level: str | None = None,
) -> None:
    """Route structlog and library logging to stderr for one CLI run.

    Args:
        environment: "production" selects JSON lines, anything else the
                     console renderer. Falls back to $ENVIRONMENT.
        log_level: Minimum level name, e.g. "DEBUG". Falls back to
                   $LOG_LEVEL, then INFO.
    """
    env = environment or os.environ.get("ENVIRONMENT", "development")
    level = getattr(logging, (log_level or os.environ.get("LOG_LEVEL", "INFO")).upper())

    if env == "production":
        renderer = structlog.processors.JSONRenderer()
    else:
        # CI log viewers show ANSI codes as noise
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            *SHARED_PROCESSORS,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)
    # httpx logs every request URL at INFO, including the Slack webhook URL
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


def get_logger(name: str) -> Any:
    """Return the structlog logger for a module (pass __name__)."""
    return structlog.get_logger(name)
