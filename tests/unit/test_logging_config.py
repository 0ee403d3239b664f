"""Tests for bannercraft.logging_config."""

from __future__ import annotations

import logging

import pytest

from bannercraft.logging_config import LOG_FORMAT, ROOT_LOGGER_NAME, configure_logging


@pytest.fixture
def clean_root_logger():
    """Restore the bannercraft logger's handlers and level after a test."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    handlers, level = list(root.handlers), root.level
    root.handlers = []
    yield root
    root.handlers = handlers
    root.setLevel(level)


class TestConfigureLogging:
    def test_attaches_single_handler(self, clean_root_logger):
        configure_logging("DEBUG")
        configure_logging("WARNING")
        assert len(clean_root_logger.handlers) == 1
        assert clean_root_logger.handlers[0].formatter._fmt == LOG_FORMAT

    def test_sets_level_from_name(self, clean_root_logger):
        configure_logging("warning")
        assert clean_root_logger.level == logging.WARNING

    def test_accepts_numeric_level(self, clean_root_logger):
        configure_logging(logging.ERROR)
        assert clean_root_logger.level == logging.ERROR

    def test_module_records_reach_root_handler(self, clean_root_logger):
        records: list[logging.LogRecord] = []

        class _Collect(logging.Handler):
            def emit(self, record):
                records.append(record)

        configure_logging("INFO")
        clean_root_logger.addHandler(_Collect())
        logging.getLogger("bannercraft.core.database").info("Initialized design database")
        assert [r.getMessage() for r in records] == ["Initialized design database"]
