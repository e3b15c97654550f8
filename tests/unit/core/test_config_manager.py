"""Unit tests for the Configuration Manager."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import yaml

from ort_artifact.core.config_manager import ConfigManager, ConfigSchema
from ort_artifact.utils.exceptions import ConfigurationError, ManagerInitializationError


def test_config_schema_default_values() -> None:
    """Test that ConfigSchema provides correct default values."""
    schema = ConfigSchema()

    assert schema.logging["level"] == "INFO"
    assert schema.logging["file"]["enabled"] is False
    assert schema.compression["preset"] == 6
    assert schema.compression["check"] == "crc64"
    assert schema.compression["chunk_size"] == 65536
    assert schema.build["repository_url"] == "https://github.com/microsoft/onnxruntime"


@pytest.mark.parametrize(
    "compression",
    [
        {"preset": 10, "check": "crc64", "chunk_size": 1},
        {"preset": "6", "check": "crc64", "chunk_size": 1},
        {"preset": 6, "check": "md5", "chunk_size": 1},
        {"preset": 6, "check": "crc64", "chunk_size": 0},
        {"preset": 6, "check": "crc64", "chunk_size": 1, "emit_threshold": -1},
    ],
)
def test_config_schema_rejects_invalid_compression(compression) -> None:
    """Test validation of the compression section."""
    with pytest.raises(ValueError):
        ConfigSchema(compression=compression)


def test_config_schema_rejects_negative_jobs() -> None:
    """Test validation of the build section."""
    with pytest.raises(ValueError, match="jobs"):
        ConfigSchema(build={"jobs": -2})


def test_config_manager_yaml_file(temp_config_file: str) -> None:
    """Test loading configuration from a YAML file."""
    manager = ConfigManager(config_path=temp_config_file)
    manager.initialize()

    assert manager.initialized
    assert manager.healthy
    assert manager.get("compression.preset") == 9
    assert manager.get("logging.level") == "DEBUG"
    # untouched defaults survive the merge
    assert manager.get("compression.check") == "crc64"
    assert manager.get("logging.console.enabled") is True

    manager.shutdown()
    assert not manager.initialized


def test_config_manager_json_file(tmp_path: Path) -> None:
    """Test loading configuration from a JSON file."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps({"compression": {"chunk_size": 4096}}))

    manager = ConfigManager(config_path=config_file)
    manager.initialize()

    assert manager.get("compression.chunk_size") == 4096
    assert manager.status()["loaded_from_file"] is True


def test_config_manager_nonexistent_file() -> None:
    """Test initialization with a non-existent file path."""
    manager = ConfigManager(config_path="/path/that/does/not/exist.yaml")
    manager.initialize()

    assert manager.initialized
    assert not manager._loaded_from_file
    assert manager.get("compression.preset") == 6


def test_config_manager_empty_file(tmp_path: Path) -> None:
    """Test initialization with an empty configuration file."""
    config_file = tmp_path / "empty.yaml"
    config_file.touch()

    manager = ConfigManager(config_path=config_file)
    manager.initialize()

    assert manager.get("compression.preset") == 6


def test_config_manager_invalid_yaml_file(tmp_path: Path) -> None:
    """Test initialization with an invalid YAML file."""
    config_file = tmp_path / "invalid.yaml"
    config_file.write_text("compression: {preset: 'Incomplete YAML")

    manager = ConfigManager(config_path=config_file)

    with pytest.raises(ManagerInitializationError):
        manager.initialize()


def test_config_manager_unsupported_file_format(tmp_path: Path) -> None:
    """Test initialization with an unsupported file format."""
    config_file = tmp_path / "config.ini"
    config_file.write_text("[compression]\npreset = 6\n")

    manager = ConfigManager(config_path=config_file)

    with pytest.raises(ManagerInitializationError):
        manager.initialize()


def test_config_manager_invalid_values(tmp_path: Path) -> None:
    """Test that schema violations in the file fail initialization."""
    config_file = tmp_path / "config.yaml"
    config_file.write_text(yaml.dump({"compression": {"preset": 42}}))

    manager = ConfigManager(config_path=config_file)

    with pytest.raises(ManagerInitializationError, match="preset"):
        manager.initialize()


def test_env_var_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Test environment variables override file values."""
    monkeypatch.setenv("ORT_ARTIFACT_COMPRESSION_CHUNK_SIZE", "1024")
    monkeypatch.setenv("ORT_ARTIFACT_COMPRESSION_CHECK", "sha256")
    monkeypatch.setenv("ORT_ARTIFACT_LOGGING_LEVEL", "WARNING")

    manager = ConfigManager(config_path=tmp_path / "missing.yaml")
    manager.initialize()

    assert manager.get("compression.chunk_size") == 1024
    assert manager.get("compression.check") == "sha256"
    assert manager.get("logging.level") == "WARNING"
    assert "ORT_ARTIFACT_COMPRESSION_CHUNK_SIZE" in manager.status()["env_vars_applied"]


@pytest.mark.parametrize(
    "raw, parsed",
    [("true", True), ("off", False), ("42", 42), ("-3", -3), ("1.5", 1.5), ("crc32", "crc32")],
)
def test_parse_env_value(raw, parsed) -> None:
    """Test parsing of environment variable values."""
    assert ConfigManager._parse_env_value(raw) == parsed


def test_get_before_initialize_raises() -> None:
    """Test that access before initialization fails."""
    manager = ConfigManager()
    with pytest.raises(ConfigurationError):
        manager.get("compression.preset")


def test_get_missing_key_returns_default(config_manager: ConfigManager) -> None:
    """Test default values for unknown keys."""
    assert config_manager.get("compression.unknown", "fallback") == "fallback"
    assert config_manager.get("nope.nope") is None


def test_set_notifies_listeners(config_manager: ConfigManager) -> None:
    """Test listeners are called for changes in their section."""
    listener = MagicMock()
    config_manager.register_listener("compression", listener)

    config_manager.set("compression.preset", 1)

    assert config_manager.get("compression.preset") == 1
    listener.assert_called_once_with("compression.preset", 1)

    config_manager.unregister_listener("compression", listener)
    config_manager.set("compression.preset", 2)
    listener.assert_called_once()


def test_set_invalid_value_is_rolled_back(config_manager: ConfigManager) -> None:
    """Test that an invalid change leaves the configuration unchanged."""
    with pytest.raises(ConfigurationError):
        config_manager.set("compression.check", "md5")
    assert config_manager.get("compression.check") == "crc64"


def test_env_var_overrides_nested_keys(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Test environment variables reaching keys below a subsection."""
    monkeypatch.setenv("ORT_ARTIFACT_LOGGING_CONSOLE_LEVEL", "ERROR")
    monkeypatch.setenv("ORT_ARTIFACT_LOGGING_FILE_ENABLED", "true")
    monkeypatch.setenv("ORT_ARTIFACT_COMPRESSION_EMIT_THRESHOLD", "4096")

    manager = ConfigManager(config_path=tmp_path / "missing.yaml")
    manager.initialize()

    assert manager.get("logging.console.level") == "ERROR"
    assert manager.get("logging.file.enabled") is True
    assert manager.get("compression.emit_threshold") == 4096
    assert "console_level" not in manager.get("logging")


@pytest.mark.parametrize(
    "node, parts, path",
    [
        ({"chunk_size": 1}, ["chunk", "size"], ["chunk_size"]),
        ({"console": {"level": "INFO"}}, ["console", "level"], ["console", "level"]),
        ({"environment": {}}, ["environment", "cc"], ["environment", "cc"]),
        ({"level": "INFO"}, ["new", "key"], ["new_key"]),
        (None, ["anything"], ["anything"]),
    ],
)
def test_resolve_env_key(node, parts, path) -> None:
    """Test mapping environment variable name parts onto key paths."""
    assert ConfigManager._resolve_env_key(node, parts) == path


def test_build_environment_from_file(tmp_path: Path) -> None:
    """Test that build environment variables can be configured."""
    config_file = tmp_path / "config.yaml"
    config_file.write_text(yaml.dump({"build": {"environment": {"CC": "clang-18", "MAX_JOBS": 4}}}))

    manager = ConfigManager(config_path=config_file)
    manager.initialize()

    assert manager.get("build.environment") == {"CC": "clang-18", "MAX_JOBS": 4}
    assert manager.get("build.jobs") == 0


def test_config_schema_rejects_invalid_build_environment() -> None:
    """Test validation of the build environment mapping."""
    with pytest.raises(ValueError, match="environment"):
        ConfigSchema(build={"jobs": 0, "environment": ["CC=clang"]})
