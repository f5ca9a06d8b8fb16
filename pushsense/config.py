"""
Deployment settings read from the environment (.env is loaded by run.py / web_app.py).
Algorithm constants live next to the code that uses them.
"""
from __future__ import annotations

import logging
import os

DEFAULT_DATA_DIR = os.path.join("outputs", "data")
DEFAULT_MAX_SESSIONS = 50


def data_dir() -> str:
    return os.getenv("PUSHSENSE_DATA_DIR", DEFAULT_DATA_DIR)


def max_stored_sessions() -> int:
    raw = os.getenv("PUSHSENSE_MAX_SESSIONS")
    if not raw:
        return DEFAULT_MAX_SESSIONS
    try:
        value = int(raw)
    except ValueError:
        logging.getLogger(__name__).warning(
            "config: PUSHSENSE_MAX_SESSIONS=%r is not an integer, using %s", raw, DEFAULT_MAX_SESSIONS
        )
        return DEFAULT_MAX_SESSIONS
    return max(1, value)


def configure_logging(level: str | None = None) -> None:
    """Set up root logging once; level from argument or PUSHSENSE_LOG_LEVEL."""
    name = (level or os.getenv("PUSHSENSE_LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
