"""Build system for ONNX Runtime artifacts.

This package checks out and patches the upstream sources, drives the CMake
configure/build/install cycle, and packs the installed libraries.

Modules:
    builder: Builder class running the build steps
    config: Build configuration classes and CMake argument assembly
    cli: Command-line interface
    utils: Process, git and SDK download helpers
"""

from __future__ import annotations

from ort_artifact.build.builder import Builder
from ort_artifact.build.config import Backend, BuildConfig, TargetArch, TargetPlatform

__all__ = [
    "Backend",
    "Builder",
    "BuildConfig",
    "TargetArch",
    "TargetPlatform",
]
