"""Logging setup for nl2query."""

from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def configure_logging(level: int = logging.WARNING) -> None:
    env_level = os.getenv("NL2QUERY_LOG_LEVEL")
    if env_level:
        resolved = getattr(logging, env_level.upper(), None)
        if isinstance(resolved, int):
            level = resolved
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)
    # psycopg logs connection chatter at INFO.
    logging.getLogger("psycopg").setLevel(max(level, logging.WARNING))
