"""Tests for logging configuration."""

import logging
from contextlib import contextmanager

from datacube.logging_config import configure_logging

TOUCHED_LOGGERS = ("datacube.core.registry", "duckdb")


@contextmanager
def bare_root_logger():
    """Detach root handlers (pytest's included) for the block, then restore them."""
    root = logging.getLogger()
    saved_handlers = root.handlers[:]
    saved_level = root.level
    root.handlers = []
    try:
        yield root
    finally:
        root.handlers = saved_handlers
        root.setLevel(saved_level)
        for name in TOUCHED_LOGGERS:
            logging.getLogger(name).setLevel(logging.NOTSET)


class TestConfigureLogging:
    """Test suite for configure_logging."""

    def test_configure_logging_applies_levels(self):
        config = {
            "root_level": "WARNING",
            "format": "%(levelname)s %(message)s",
            "module_levels": {"datacube.core.registry": "DEBUG"},
            "reduce_noise": {"duckdb": "ERROR"},
        }

        with bare_root_logger() as root:
            assert configure_logging(config=config) is True

            assert root.level == logging.WARNING
            assert logging.getLogger("datacube.core.registry").level == logging.DEBUG
            assert logging.getLogger("duckdb").level == logging.ERROR

    def test_configure_logging_is_idempotent(self):
        config = {"root_level": "INFO", "format": "%(message)s", "module_levels": {}, "reduce_noise": {}}

        with bare_root_logger() as root:
            configure_logging(config=config)
            handlers = root.handlers[:]

            assert configure_logging(config=config) is False
            assert root.handlers == handlers

    def test_configure_logging_explicit_level_wins(self):
        config = {"root_level": "INFO", "format": "%(message)s", "module_levels": {}, "reduce_noise": {}}

        with bare_root_logger() as root:
            configure_logging(level=logging.ERROR, config=config)

            assert root.level == logging.ERROR

    def test_configure_logging_already_configured_leaves_root_alone(self):
        """Test that an existing handler (e.g. pytest's) means no reconfiguration."""
        root = logging.getLogger()
        handler = logging.NullHandler()
        root.addHandler(handler)
        try:
            assert configure_logging(config={"root_level": "ERROR", "format": "%(message)s"}) is False
        finally:
            root.removeHandler(handler)
