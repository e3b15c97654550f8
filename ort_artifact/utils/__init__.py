"""Utility functions and classes for ort-artifact."""

from ort_artifact.utils.exceptions import (
    ArchiveIntegrityError,
    ArtifactError,
    BuildError,
    CommandError,
    CompressorStateError,
    ConfigurationError,
    DownloadError,
    ManagerError,
    ManagerInitializationError,
    ManagerShutdownError,
    PipelineStateError,
)
