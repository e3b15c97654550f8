from __future__ import annotations

from typing import Any, Optional


class ArtifactError(Exception):
    """Base exception for all ort-artifact errors."""

    def __init__(self, message: str, *args: Any, **kwargs: Any) -> None:
        """
        Initialize exception.

        Args:
            message: Error message
            *args: Additional positional arguments to pass to the parent Exception
            **kwargs: Additional error information, merged into ``details``
        """
        self.message = message
        self.details = dict(kwargs.pop("details", None) or {})
        self.details.update(kwargs)
        super().__init__(message, *args)

    def __str__(self) -> str:
        """String representation."""
        return f"{self.message}"


class ManagerError(ArtifactError):
    """Base exception for manager-related errors."""

    def __init__(self, message: str, manager_name: Optional[str] = None, **kwargs: Any) -> None:
        """
        Initialize manager error.

        Args:
            message: Error message
            manager_name: Name of the affected manager
            **kwargs: Additional error information
        """
        details = kwargs.pop("details", {})
        if manager_name:
            details["manager_name"] = manager_name
        super().__init__(message, details=details, **kwargs)
        self.manager_name = manager_name

    def __str__(self) -> str:
        """String representation."""
        if self.manager_name:
            return f"{self.message} (Manager: {self.manager_name})"
        return super().__str__()


class ManagerInitializationError(ManagerError):
    """Exception raised when a manager fails to initialize."""

    pass


class ManagerShutdownError(ManagerError):
    """Exception raised when a manager fails to shut down cleanly."""

    pass


class ConfigurationError(ArtifactError):
    """Exception raised for configuration-related errors."""

    def __init__(
            self, message: str, *args: Any, config_key: Optional[str] = None, **kwargs: Any
    ) -> None:
        """Initialize a ConfigurationError.

        Args:
            message: A descriptive error message.
            *args: Additional positional arguments to pass to the parent Exception.
            config_key: The configuration key that caused the error.
            **kwargs: Additional keyword arguments to pass to the parent Exception.
        """
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        super().__init__(message, *args, details=details, **kwargs)


class CompressorStateError(ArtifactError):
    """Raised when a compressor session is used after it was flushed.

    This is a protocol violation by the caller and is never recovered from.
    """

    def __init__(self, message: str, *args: Any, operation: Optional[str] = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        super().__init__(message, *args, details=details, **kwargs)
        self.operation = operation


class ArchiveIntegrityError(ArtifactError):
    """Raised when an entry's live byte count differs from its declared size."""

    def __init__(
            self,
            message: str,
            *args: Any,
            entry_name: Optional[str] = None,
            declared_size: Optional[int] = None,
            actual_size: Optional[int] = None,
            **kwargs: Any
    ) -> None:
        """Initialize an ArchiveIntegrityError.

        Args:
            message: A descriptive error message.
            *args: Additional positional arguments to pass to the parent Exception.
            entry_name: Name of the archive entry being serialized.
            declared_size: Size announced in the entry header.
            actual_size: Number of bytes the source actually produced.
            **kwargs: Additional keyword arguments to pass to the parent Exception.
        """
        details = kwargs.pop("details", {})
        if entry_name is not None:
            details["entry_name"] = entry_name
        if declared_size is not None:
            details["declared_size"] = declared_size
        if actual_size is not None:
            details["actual_size"] = actual_size
        super().__init__(message, *args, details=details, **kwargs)
        self.entry_name = entry_name
        self.declared_size = declared_size
        self.actual_size = actual_size


class PipelineStateError(ArtifactError):
    """Raised when an archive pipeline is driven out of order or reused."""

    def __init__(self, message: str, *args: Any, state: Optional[str] = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        if state:
            details["state"] = state
        super().__init__(message, *args, details=details, **kwargs)


class CommandError(ArtifactError):
    """Exception raised when an external command exits with a non-zero status."""

    def __init__(
            self,
            message: str,
            *args: Any,
            command: Optional[str] = None,
            returncode: Optional[int] = None,
            **kwargs: Any
    ) -> None:
        """Initialize a CommandError.

        Args:
            message: A descriptive error message.
            *args: Additional positional arguments to pass to the parent Exception.
            command: The command line that failed.
            returncode: Exit status of the process.
            **kwargs: Additional keyword arguments to pass to the parent Exception.
        """
        details = kwargs.pop("details", {})
        if command:
            details["command"] = command
        if returncode is not None:
            details["returncode"] = returncode
        super().__init__(message, *args, details=details, **kwargs)
        self.command = command
        self.returncode = returncode


class DownloadError(ArtifactError):
    """Exception raised when an SDK archive cannot be fetched or unpacked."""

    def __init__(self, message: str, *args: Any, url: Optional[str] = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        if url:
            details["url"] = url
        super().__init__(message, *args, details=details, **kwargs)


class BuildError(ArtifactError):
    """Exception raised for errors during the build process."""

    pass
