"""Unit tests for the Logging Manager."""

import logging
import logging.handlers
import os
from unittest.mock import MagicMock

import pytest

from ort_artifact.core.logging_manager import LoggingManager
from ort_artifact.utils.exceptions import ManagerInitializationError


@pytest.fixture
def temp_log_dir(tmp_path):
    """Create a temporary logging directory."""
    log_dir = tmp_path / "logs"
    return str(log_dir)


@pytest.fixture
def logging_config(temp_log_dir):
    """Create a logging configuration for testing."""
    return {
        "level": "INFO",
        "format": "text",
        "file": {
            "enabled": True,
            "path": os.path.join(temp_log_dir, "test.log"),
            "rotation": "1 MB",
            "retention": "5 days",
        },
        "console": {"enabled": True, "level": "DEBUG"},
    }


@pytest.fixture
def config_manager_mock(logging_config):
    """Create a mock ConfigManager for the LoggingManager."""
    config_manager = MagicMock()
    config_manager.get.return_value = logging_config
    return config_manager


@pytest.fixture
def logging_manager(config_manager_mock):
    """An initialized LoggingManager that is shut down afterwards."""
    manager = LoggingManager(config_manager_mock)
    manager.initialize()
    yield manager
    manager.shutdown()


def test_logging_manager_initialization(logging_manager, config_manager_mock, temp_log_dir):
    """Test that the LoggingManager initializes correctly."""
    assert logging_manager.initialized
    assert logging_manager.healthy
    assert os.path.isdir(temp_log_dir)
    assert logging_manager._root_logger is logging.getLogger()
    config_manager_mock.register_listener.assert_called_once()


def test_file_handler_settings(logging_manager):
    """Test rotation and retention parsing."""
    handler = logging_manager._file_handler
    assert isinstance(handler, logging.handlers.RotatingFileHandler)
    assert handler.maxBytes == 1024 * 1024
    assert handler.backupCount == 5


def test_get_logger(logging_manager):
    """Test getting a logger from the LoggingManager."""
    logger = logging_manager.get_logger("test_logger")
    assert isinstance(logger, logging.Logger)
    assert logger.name == "test_logger"


def test_get_logger_before_initialize(config_manager_mock):
    """Test that a plain logger is returned before initialization."""
    manager = LoggingManager(config_manager_mock)
    assert isinstance(manager.get_logger("early"), logging.Logger)


def test_log_written_to_file(logging_manager, logging_config):
    """Test that records reach the log file."""
    logging_manager.get_logger("ort_artifact.test").info("packed artifact")
    logging_manager._file_handler.flush()

    with open(logging_config["file"]["path"]) as f:
        assert "packed artifact" in f.read()


def test_json_format_enables_structlog(config_manager_mock, logging_config):
    """Test the JSON format configuration."""
    logging_config["format"] = "json"
    logging_config["file"]["enabled"] = False

    manager = LoggingManager(config_manager_mock)
    manager.initialize()
    try:
        assert manager.status()["structured_logging"] is True
        logger = manager.get_logger("json_logger")
        assert not isinstance(logger, logging.Logger)
        assert hasattr(logger, "info")
    finally:
        manager.shutdown()


def test_level_change_listener(logging_manager):
    """Test that config changes update the root level."""
    logging_manager._on_config_changed("logging.level", "ERROR")
    assert logging.getLogger().level == logging.ERROR

    logging_manager._on_config_changed("logging.console.level", "WARNING")
    assert logging_manager._console_handler.level == logging.WARNING


def test_console_toggle(logging_manager):
    """Test enabling and disabling the console handler."""
    root = logging.getLogger()
    logging_manager._on_config_changed("logging.console.enabled", False)
    assert logging_manager._console_handler not in root.handlers
    logging_manager._on_config_changed("logging.console.enabled", True)
    assert logging_manager._console_handler in root.handlers


def test_shutdown_closes_handlers(config_manager_mock):
    """Test that shutdown removes handlers and unregisters the listener."""
    manager = LoggingManager(config_manager_mock)
    manager.initialize()
    file_handler = manager._file_handler

    manager.shutdown()

    assert not manager.initialized
    assert file_handler not in logging.getLogger().handlers
    config_manager_mock.unregister_listener.assert_called_once()


def test_initialization_failure():
    """Test that configuration errors surface as initialization errors."""
    config_manager = MagicMock()
    config_manager.get.side_effect = RuntimeError("boom")

    with pytest.raises(ManagerInitializationError):
        LoggingManager(config_manager).initialize()


def test_status(logging_manager):
    """Test the status report."""
    status = logging_manager.status()
    assert status["name"] == "logging_manager"
    assert status["handlers"]["console"] is True
    assert status["handlers"]["file"] is True
    assert status["structured_logging"] is False
