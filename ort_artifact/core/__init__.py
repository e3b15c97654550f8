"""Core package containing the configuration and logging managers."""

from ort_artifact.core.base import ArtifactManager
from ort_artifact.core.config_manager import ConfigManager, ConfigSchema
from ort_artifact.core.logging_manager import LoggingManager
