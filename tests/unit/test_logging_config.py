"""Tests for jailrun.logging_config."""

import logging

import pytest

from jailrun.logging_config import NOISY_LOGGERS, configure_logging, get_logger


@pytest.fixture
def restore_jailrun_logger():
    app_logger = logging.getLogger("jailrun")
    saved = (app_logger.level, list(app_logger.handlers), app_logger.propagate)
    noisy = {name: logging.getLogger(name).level for name in NOISY_LOGGERS}
    yield app_logger
    app_logger.setLevel(saved[0])
    app_logger.handlers[:] = saved[1]
    app_logger.propagate = saved[2]
    for name, level in noisy.items():
        logging.getLogger(name).setLevel(level)


class TestConfigureLogging:
    def test_explicit_level(self, restore_jailrun_logger):
        configure_logging("DEBUG")
        assert restore_jailrun_logger.level == logging.DEBUG
        assert len(restore_jailrun_logger.handlers) == 1
        assert restore_jailrun_logger.propagate is False

    def test_level_from_settings(self, restore_jailrun_logger, monkeypatch):
        monkeypatch.setenv("JAILRUN_LOG_LEVEL", "ERROR")
        configure_logging()
        assert restore_jailrun_logger.level == logging.ERROR

    def test_idempotent(self, restore_jailrun_logger):
        configure_logging("INFO")
        configure_logging("INFO")
        assert len(restore_jailrun_logger.handlers) == 1

    def test_noisy_loggers_suppressed(self, restore_jailrun_logger):
        configure_logging("DEBUG")
        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING


def test_get_logger_by_name():
    assert get_logger("jailrun.launcher") is logging.getLogger("jailrun.launcher")
