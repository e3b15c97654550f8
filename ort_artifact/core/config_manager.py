from __future__ import annotations

import json
import os
import pathlib
from copy import deepcopy
from typing import Any, Callable, Dict, List, Optional, Set, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from ort_artifact.compression.compressor import CHECKS
from ort_artifact.core.base import ArtifactManager
from ort_artifact.utils.exceptions import ConfigurationError, ManagerInitializationError


class ConfigSchema(BaseModel):
    """Schema for validating configuration data.

    This model defines the expected structure and default values for the
    tool configuration.
    """
    logging: Dict[str, Any] = Field(
        default_factory=lambda: {
            'level': 'INFO',
            'format': 'text',
            'file': {
                'enabled': False,
                'path': 'logs/ort-artifact.log',
                'rotation': '10 MB',
                'retention': '30 days',
            },
            'console': {
                'enabled': True,
                'level': 'INFO',
            },
        },
        description='Logging settings',
    )
    compression: Dict[str, Any] = Field(
        default_factory=lambda: {
            'preset': 6,
            'check': 'crc64',
            'chunk_size': 65536,
            'emit_threshold': 0,
        },
        description='Archive compression settings',
    )
    build: Dict[str, Any] = Field(
        default_factory=lambda: {
            'repository_url': 'https://github.com/microsoft/onnxruntime',
            'patches_dir': 'src/patches/all',
            'jobs': 0,
            'environment': {},
        },
        description='Build settings',
    )

    @model_validator(mode='after')
    def validate_compression(self) -> 'ConfigSchema':
        """Validate the compression section."""
        preset = self.compression.get('preset')
        if not isinstance(preset, int) or isinstance(preset, bool) or not 0 <= preset <= 9:
            raise ValueError('Compression preset must be an integer between 0 and 9.')
        if self.compression.get('check') not in CHECKS:
            raise ValueError(f"Compression check must be one of: {', '.join(CHECKS)}.")
        chunk_size = self.compression.get('chunk_size')
        if not isinstance(chunk_size, int) or chunk_size <= 0:
            raise ValueError('Compression chunk_size must be a positive integer.')
        threshold = self.compression.get('emit_threshold', 0)
        if not isinstance(threshold, int) or threshold < 0:
            raise ValueError('Compression emit_threshold must be a non-negative integer.')
        return self

    @model_validator(mode='after')
    def validate_build(self) -> 'ConfigSchema':
        """Validate the build section."""
        jobs = self.build.get('jobs', 0)
        if not isinstance(jobs, int) or jobs < 0:
            raise ValueError('Build jobs must be a non-negative integer (0 = one per CPU).')
        if not isinstance(self.build.get('environment') or {}, dict):
            raise ValueError('Build environment must be a mapping of variable names to values.')
        return self


class ConfigManager(ArtifactManager):
    """Configuration manager for the build tool.

    This manager handles loading, validating, and providing access to
    configuration settings from files and environment variables.

    Attributes:
        _config_path: Path to the configuration file
        _env_prefix: Prefix for environment variables
        _config: The loaded configuration
        _loaded_from_file: Whether configuration was loaded from a file
        _env_vars_applied: Set of applied environment variables
        _listeners: Dictionary of config change listeners
    """

    def __init__(
            self,
            config_path: Optional[Union[str, pathlib.Path]] = None,
            env_prefix: str = 'ORT_ARTIFACT_'
    ) -> None:
        """Initialize the configuration manager.

        Args:
            config_path: Path to the configuration file
            env_prefix: Prefix for environment variables
        """
        super().__init__(name='config_manager')
        self._config_path = pathlib.Path(config_path) if config_path else pathlib.Path('ort-artifact.yaml')
        self._env_prefix = env_prefix
        self._config: Dict[str, Any] = {}
        self._loaded_from_file = False
        self._env_vars_applied: Set[str] = set()
        self._listeners: Dict[str, List[Callable[[str, Any], None]]] = {}

    def initialize(self) -> None:
        """Initialize the configuration manager.

        Loads configuration from default schema, file, and environment variables.

        Raises:
            ManagerInitializationError: If initialization fails
        """
        try:
            self._config = ConfigSchema().model_dump()
            self._load_from_file()
            self._apply_env_vars()
            self._validate_config()

            self._initialized = True
            self._healthy = True
        except Exception as e:
            raise ManagerInitializationError(
                f'Failed to initialize ConfigManager: {str(e)}',
                manager_name=self.name
            ) from e

    def _load_from_file(self) -> None:
        """Load configuration from a file.

        Raises:
            ConfigurationError: If the file cannot be parsed
        """
        if not self._config_path.exists():
            return

        try:
            content = self._config_path.read_text(encoding='utf-8')

            if self._config_path.suffix.lower() in ('.yaml', '.yml'):
                file_config = yaml.safe_load(content)
            elif self._config_path.suffix.lower() == '.json':
                file_config = json.loads(content)
            else:
                raise ConfigurationError(
                    f'Unsupported config file format: {self._config_path.suffix}',
                    config_key='config_path'
                )

            if file_config:
                self._merge_config(file_config)
                self._loaded_from_file = True
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f'Error parsing config file {self._config_path}: {str(e)}',
                config_key='config_path'
            ) from e

    def _merge_config(self, new_config: Dict[str, Any]) -> None:
        """Deep-merge a loaded configuration into the current one."""

        def merge(target: Dict[str, Any], source: Dict[str, Any]) -> None:
            for key, value in source.items():
                if isinstance(value, dict) and isinstance(target.get(key), dict):
                    merge(target[key], value)
                else:
                    target[key] = deepcopy(value)

        merge(self._config, new_config)

    def _apply_env_vars(self) -> None:
        """Apply environment variables to the configuration.

        ``ORT_ARTIFACT_COMPRESSION_CHUNK_SIZE`` overrides
        ``compression.chunk_size``: the first segment after the prefix names
        the section, the rest is matched against the keys already present so
        that ``ORT_ARTIFACT_LOGGING_CONSOLE_LEVEL`` reaches
        ``logging.console.level``.
        """
        for env_name, env_value in os.environ.items():
            if not env_name.startswith(self._env_prefix):
                continue

            remainder = env_name[len(self._env_prefix):].lower()
            section, _, key = remainder.partition('_')
            if not key:
                continue

            path = [section, *self._resolve_env_key(self._config.get(section), key.split('_'))]
            self._set_nested_value(self._config, path, self._parse_env_value(env_value))
            self._env_vars_applied.add(env_name)

    @classmethod
    def _resolve_env_key(cls, node: Any, parts: List[str]) -> List[str]:
        """Map underscore-separated name parts onto a nested key path.

        The longest run of parts naming an existing key wins; a dictionary
        value is descended into with the remaining parts. Names that match
        nothing become a single key.
        """
        if isinstance(node, dict):
            for end in range(len(parts), 0, -1):
                candidate = '_'.join(parts[:end])
                if candidate not in node:
                    continue
                if end == len(parts):
                    return [candidate]
                if isinstance(node[candidate], dict):
                    return [candidate, *cls._resolve_env_key(node[candidate], parts[end:])]
        return ['_'.join(parts)]

    @staticmethod
    def _parse_env_value(value: str) -> Any:
        """Parse environment variable values into appropriate types.

        Args:
            value: The string value from the environment

        Returns:
            The parsed value (bool, int, float, or string)
        """
        if value.lower() in ('true', 'yes', 'on'):
            return True
        if value.lower() in ('false', 'no', 'off'):
            return False

        try:
            if value.isdigit() or (value.startswith('-') and value[1:].isdigit()):
                return int(value)
            return float(value)
        except ValueError:
            return value

    def _set_nested_value(self, config: Dict[str, Any], path: List[str], value: Any) -> None:
        """Set a nested value in the configuration dictionary.

        Args:
            config: The configuration dictionary
            path: List of keys forming the path to the value
            value: The value to set
        """
        if not path:
            return

        if len(path) == 1:
            config[path[0]] = value
            return

        key = path[0]
        if key not in config:
            config[key] = {}
        if not isinstance(config[key], dict):
            config[key] = {}

        self._set_nested_value(config[key], path[1:], value)

    def _validate_config(self) -> None:
        """Validate the configuration against the schema.

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        try:
            self._config = ConfigSchema(**self._config).model_dump()
        except ValidationError as e:
            errors = e.errors()
            error_details = ', '.join((
                f"{'.'.join((str(loc) for loc in error['loc']))}: {error['msg']}"
                for error in errors
            ))
            raise ConfigurationError(
                f'Invalid configuration: {error_details}',
                details={'validation_errors': errors}
            ) from e

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by key.

        Args:
            key: The configuration key (dot-separated for nested values)
            default: Default value if the key doesn't exist

        Returns:
            The configuration value or default

        Raises:
            ConfigurationError: If the manager isn't initialized
        """
        if not self._initialized:
            raise ConfigurationError(
                'Cannot access configuration before initialization',
                config_key=key
            )

        result: Any = self._config
        try:
            for part in key.split('.'):
                result = result[part]
            return result
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value by key.

        The change is validated against the schema before it is kept, and
        listeners registered for the key's section are notified.

        Args:
            key: The configuration key (dot-separated for nested values)
            value: The value to set

        Raises:
            ConfigurationError: If the manager isn't initialized or the value is invalid
        """
        if not self._initialized:
            raise ConfigurationError(
                'Cannot set configuration before initialization',
                config_key=key
            )

        previous = deepcopy(self._config)
        self._set_nested_value(self._config, key.split('.'), value)
        try:
            self._validate_config()
        except ConfigurationError:
            self._config = previous
            raise

        section = key.split('.', 1)[0]
        for listener in self._listeners.get(section, []):
            listener(key, value)

    def register_listener(self, key: str, callback: Callable[[str, Any], None]) -> None:
        """Register a callback for changes under a top-level section."""
        self._listeners.setdefault(key, [])
        if callback not in self._listeners[key]:
            self._listeners[key].append(callback)

    def unregister_listener(self, key: str, callback: Callable[[str, Any], None]) -> None:
        """Remove a previously registered callback."""
        if key in self._listeners and callback in self._listeners[key]:
            self._listeners[key].remove(callback)

    def shutdown(self) -> None:
        """Shut down the configuration manager."""
        self._listeners.clear()
        self._initialized = False
        self._healthy = False

    def status(self) -> Dict[str, Any]:
        """Get the status of the configuration manager."""
        status = super().status()
        status.update({
            'config_path': str(self._config_path),
            'loaded_from_file': self._loaded_from_file,
            'env_vars_applied': sorted(self._env_vars_applied),
        })
        return status
