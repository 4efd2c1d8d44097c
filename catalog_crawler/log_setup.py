from __future__ import annotations

import logging
import os

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def resolve_level(level: str | int | None = None, verbose: bool = False) -> int:
    if verbose:
        return logging.DEBUG
    if level is None:
        level = os.getenv("CRAWLER_LOG_LEVEL", "INFO")
    if isinstance(level, str):
        return _LEVELS.get(level.upper(), logging.INFO)
    return level


def setup_logging(level: str | int | None = None, verbose: bool = False) -> None:
    """Configure root logging once for the CLI; -v wins over CRAWLER_LOG_LEVEL."""
    logging.basicConfig(level=resolve_level(level, verbose), format=LOG_FORMAT)
    # stem is chatty at INFO about controller events
    logging.getLogger("stem").setLevel(logging.WARNING)
