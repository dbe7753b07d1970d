"""
Logging setup for the CLI.

Modules log through ``logging.getLogger(__name__)`` under the
``timetable_engine`` logger; the CLI renders those records with rich.
"""

from __future__ import annotations

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


LOGGER_NAME = "timetable_engine"


def setup_logging(verbose: bool = False, console: Optional[Console] = None) -> logging.Logger:
    """Configure engine logging for the CLI.

    - Default: WARNING and above.
    - Verbose: DEBUG, including per-subject placement decisions.

    Safe to call multiple times (won't double-add handlers).
    """
    logger = logging.getLogger(LOGGER_NAME)
    level = logging.DEBUG if verbose else logging.WARNING
    logger.setLevel(level)

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        logger.addHandler(handler)
        logger.propagate = False

    for handler in logger.handlers:
        handler.setLevel(level)

    return logger
