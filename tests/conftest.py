"""Pytest configuration and fixtures for ort-artifact tests."""

import os
import tempfile
from typing import Generator

import pytest
import yaml

from ort_artifact.core.config_manager import ConfigManager


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep ambient ORT_ARTIFACT_ variables out of the tests."""
    for key in list(os.environ):
        if key.startswith("ORT_ARTIFACT_"):
            monkeypatch.delenv(key)


@pytest.fixture
def temp_config_file() -> Generator[str, None, None]:
    """Create a temporary configuration file for testing."""
    test_config = {
        "logging": {
            "level": "DEBUG",
            "file": {"enabled": False},
            "console": {"enabled": True, "level": "DEBUG"},
        },
        "compression": {"preset": 9},
    }

    with tempfile.NamedTemporaryFile(suffix=".yaml", delete=False, mode="w") as tmp:
        yaml.dump(test_config, tmp)
        tmp_path = tmp.name

    yield tmp_path

    try:
        os.unlink(tmp_path)
    except (IOError, OSError):
        pass


@pytest.fixture
def config_manager(temp_config_file: str) -> Generator[ConfigManager, None, None]:
    """Create a ConfigManager instance for testing."""
    manager = ConfigManager(config_path=temp_config_file)
    manager.initialize()
    yield manager
    manager.shutdown()
