"""Tests for CLI logging setup."""

from __future__ import annotations

import io
import logging

import pytest
from rich.console import Console
from rich.logging import RichHandler

from timetable_engine.log import LOGGER_NAME, setup_logging


@pytest.fixture
def console() -> Console:
    return Console(file=io.StringIO(), width=120)


@pytest.fixture(autouse=True)
def restore_logger():
    """Undo handler and level changes made by setup_logging."""
    logger = logging.getLogger(LOGGER_NAME)
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    logger.handlers.clear()
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_default_level_is_warning(self, console):
        logger = setup_logging(console=console)
        assert logger.level == logging.WARNING

    def test_verbose_reaches_every_module(self, console):
        setup_logging(verbose=True, console=console)

        conflicts = logging.getLogger(f"{LOGGER_NAME}.conflicts")
        assert conflicts.getEffectiveLevel() == logging.DEBUG

        conflicts.debug("Capacity probe for Maths ended with FEASIBLE")
        assert "Capacity probe for Maths" in console.file.getvalue()

    def test_single_handler(self, console):
        setup_logging(console=console)
        logger = setup_logging(verbose=True, console=console)

        assert sum(isinstance(h, RichHandler) for h in logger.handlers) == 1
        assert not logger.propagate
