"""Logging configuration shared by the CLI commands."""

import logging
from typing import Optional

import structlog


def configure_logging(debug: bool = False, level: Optional[str] = None) -> int:
    """
    Configure stdlib logging and structlog filtering.

    ``--debug`` always wins; otherwise the profile's level applies, then WARNING.

    Returns:
        The numeric level in effect
    """
    if debug:
        numeric = logging.DEBUG
    else:
        numeric = logging.getLevelName((level or "WARNING").upper())
        if not isinstance(numeric, int):
            numeric = logging.WARNING

    logging.basicConfig(level=numeric, format="%(message)s")
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
    )
    return numeric
