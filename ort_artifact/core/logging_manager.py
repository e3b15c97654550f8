from __future__ import annotations

import atexit
import logging
import logging.handlers
import os
import pathlib
import sys
from typing import Any, Dict, List, Optional, Union

import structlog
from pythonjsonlogger import jsonlogger

from ort_artifact.core.base import ArtifactManager
from ort_artifact.utils.exceptions import ManagerInitializationError, ManagerShutdownError


class LoggingManager(ArtifactManager):
    """Manages logging configuration and access.

    Configures Python's logging module with a console handler and an
    optional rotating file handler, and hands out loggers to the build
    steps and the archive pipeline. With ``format: json`` records are
    rendered by python-json-logger and loggers are structlog loggers.
    """

    # Mapping from string log levels to logging module constants
    LOG_LEVELS = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
        "critical": logging.CRITICAL,
    }

    def __init__(self, config_manager: Any) -> None:
        """Initialize the Logging Manager.

        Args:
            config_manager: The Configuration Manager to use for logging settings.
        """
        super().__init__(name="logging_manager")
        self._config_manager = config_manager
        self._root_logger: Optional[logging.Logger] = None
        self._file_handler: Optional[logging.Handler] = None
        self._console_handler: Optional[logging.Handler] = None
        self._log_directory: Optional[pathlib.Path] = None
        self._enable_structlog = False
        self._handlers: List[logging.Handler] = []

    def initialize(self) -> None:
        """Initialize the Logging Manager.

        Raises:
            ManagerInitializationError: If initialization fails.
        """
        try:
            logging_config = self._config_manager.get("logging", {})
            log_level = self._parse_level(logging_config.get("level", "INFO"))
            log_format = logging_config.get("format", "text").lower()

            self._root_logger = logging.getLogger()
            self._root_logger.setLevel(log_level)

            # Remove any existing handlers
            for handler in list(self._root_logger.handlers):
                self._root_logger.removeHandler(handler)

            if log_format == "json":
                self._enable_structlog = True
                formatter = self._create_json_formatter()
            else:
                formatter = logging.Formatter(
                    "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
                )

            console_config = logging_config.get("console", {})
            if console_config.get("enabled", True):
                self._console_handler = logging.StreamHandler(sys.stderr)
                self._console_handler.setLevel(self._parse_level(console_config.get("level", "INFO")))
                self._console_handler.setFormatter(formatter)
                self._root_logger.addHandler(self._console_handler)
                self._handlers.append(self._console_handler)

            file_config = logging_config.get("file", {})
            if file_config.get("enabled", False):
                file_path = file_config.get("path", "logs/ort-artifact.log")
                self._log_directory = pathlib.Path(file_path).parent
                os.makedirs(self._log_directory, exist_ok=True)

                self._file_handler = logging.handlers.RotatingFileHandler(
                    file_path,
                    maxBytes=self._parse_rotation(file_config.get("rotation", "10 MB")),
                    backupCount=self._parse_retention(file_config.get("retention", "30 days")),
                )
                self._file_handler.setLevel(log_level)
                self._file_handler.setFormatter(formatter)
                self._root_logger.addHandler(self._file_handler)
                self._handlers.append(self._file_handler)

            if self._enable_structlog:
                self._configure_structlog()

            self._config_manager.register_listener("logging", self._on_config_changed)

            # Make sure handlers are closed on exit
            atexit.register(self.shutdown)

            self._root_logger.debug(
                "Logging Manager initialized",
                extra={"manager": "LoggingManager", "event": "initialization"},
            )

            self._initialized = True
            self._healthy = True

        except Exception as e:
            raise ManagerInitializationError(
                f"Failed to initialize LoggingManager: {str(e)}",
                manager_name=self.name,
            ) from e

    @classmethod
    def _parse_level(cls, value: Any) -> int:
        level_str = value.lower() if isinstance(value, str) else "info"
        return cls.LOG_LEVELS.get(level_str, logging.INFO)

    @staticmethod
    def _parse_rotation(rotation: Any) -> int:
        """Parse a rotation size such as ``"10 MB"`` into bytes."""
        if isinstance(rotation, str) and "MB" in rotation:
            return int(rotation.split()[0]) * 1024 * 1024
        if isinstance(rotation, str) and "KB" in rotation:
            return int(rotation.split()[0]) * 1024
        return 10 * 1024 * 1024

    @staticmethod
    def _parse_retention(retention: Any) -> int:
        """Parse a retention such as ``"30 days"`` into a backup count."""
        if isinstance(retention, str) and "days" in retention:
            return int(retention.split()[0])
        if isinstance(retention, int):
            return retention
        return 30

    def _create_json_formatter(self) -> logging.Formatter:
        """Create a JSON formatter for log records."""
        return jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
            json_ensure_ascii=False,
        )

    def _configure_structlog(self) -> None:
        """Configure structlog for structured logging."""
        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.UnicodeDecoder(),
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    def get_logger(self, name: str) -> Union[logging.Logger, Any]:
        """Get a logger for a specific component.

        Args:
            name: The name of the component requesting a logger.

        Returns:
            A structlog logger when JSON logging is enabled, otherwise a
            standard library logger.
        """
        if not self._initialized:
            return logging.getLogger(name)

        if self._enable_structlog:
            return structlog.get_logger(name)
        return logging.getLogger(name)

    def _on_config_changed(self, key: str, value: Any) -> None:
        """Handle configuration changes for logging.

        Args:
            key: The configuration key that changed.
            value: The new value.
        """
        if not key.startswith("logging.") or self._root_logger is None:
            return

        sub_key = key.split(".", 1)[1]

        if sub_key == "level":
            log_level = self._parse_level(value)
            self._root_logger.setLevel(log_level)
            if self._file_handler:
                self._file_handler.setLevel(log_level)

        elif sub_key == "console.level" and self._console_handler:
            self._console_handler.setLevel(self._parse_level(value))

        elif sub_key == "console.enabled" and self._console_handler:
            if not value and self._console_handler in self._root_logger.handlers:
                self._root_logger.removeHandler(self._console_handler)
            elif value and self._console_handler not in self._root_logger.handlers:
                self._root_logger.addHandler(self._console_handler)

    def shutdown(self) -> None:
        """Shut down the Logging Manager.

        Raises:
            ManagerShutdownError: If shutdown fails.
        """
        if not self._initialized:
            return

        try:
            for handler in self._handlers:
                handler.flush()
                handler.close()
                if self._root_logger:
                    self._root_logger.removeHandler(handler)
            self._handlers.clear()

            self._config_manager.unregister_listener("logging", self._on_config_changed)
            atexit.unregister(self.shutdown)

            self._initialized = False
            self._healthy = False

        except Exception as e:
            raise ManagerShutdownError(
                f"Failed to shut down LoggingManager: {str(e)}",
                manager_name=self.name,
            ) from e

    def status(self) -> Dict[str, Any]:
        """Get the status of the Logging Manager."""
        status = super().status()

        if self._initialized and self._root_logger:
            status.update(
                {
                    "log_directory": str(self._log_directory) if self._log_directory else None,
                    "handlers": {
                        "console": self._console_handler is not None
                        and self._console_handler in self._root_logger.handlers,
                        "file": self._file_handler is not None
                        and self._file_handler in self._root_logger.handlers,
                    },
                    "structured_logging": self._enable_structlog,
                }
            )

        return status
