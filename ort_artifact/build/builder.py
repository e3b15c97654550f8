"""Builder for ONNX Runtime artifacts.

This module contains the Builder class that drives a complete build:
checking out and patching the upstream sources, fetching SDKs, running the
CMake configure/build/install cycle, and packing the installed libraries
into a compressed archive.
"""

from __future__ import annotations

import functools
import logging
import os
import pathlib
import shutil
import tempfile
from typing import Any, Dict, List, Optional

import httpx
import psutil

from ort_artifact.archive.pipeline import DEFAULT_CHUNK_SIZE, PackResult, pack_directory
from ort_artifact.build.config import BuildConfig
from ort_artifact.build.utils import apply_patches, checkout_source, fetch_sdk, run_command
from ort_artifact.compression.compressor import Compressor
from ort_artifact.utils.exceptions import BuildError


class Builder:
    """Builder for ONNX Runtime artifacts.

    Attributes:
        config: Build configuration
        compression: Compression settings (preset, check, chunk_size, emit_threshold)
        logger: Logger receiving build progress
        temp_dir: Temporary directory for downloaded archives
    """

    def __init__(
            self,
            config: BuildConfig,
            logger: Optional[Any] = None,
            compression: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Initialize the Builder with the given configuration.

        Args:
            config: Build configuration
            logger: Logger for build progress
            compression: Compression settings from the configuration manager
        """
        self.config = config
        self.compression = dict(compression or {})
        self.logger = logger or logging.getLogger(__name__)
        self.temp_dir: Optional[pathlib.Path] = None
        self.applied_patches: List[str] = []

    def log(self, message: str, level: str = "info") -> None:
        """Log a message with the specified level.

        Args:
            message: Message to log
            level: Log level (info, warning, error, debug)
        """
        getattr(self.logger, level, self.logger.info)(message)

    @property
    def jobs(self) -> int:
        """Number of parallel build jobs."""
        if self.config.jobs:
            return self.config.jobs
        return psutil.cpu_count(logical=True) or 1

    def prepare_source(self) -> pathlib.Path:
        """Check out the upstream release and apply the local patches.

        Returns:
            Path to the checkout
        """
        self.config.root.mkdir(parents=True, exist_ok=True)
        repo = checkout_source(
            self.config.root,
            self.config.branch,
            self.config.repository_url,
            directory_name=self.config.source_dir.name,
            log=self.log,
        )
        self.applied_patches = apply_patches(repo, self.config.resolved_patches_dir, log=self.log)
        return repo

    def fetch_sdks(self) -> Dict[str, str]:
        """Download and unpack the SDKs required by the selected backends.

        Returns:
            CMake definitions pointing at the unpacked SDKs
        """
        archives = self.config.sdk_archives()
        if not archives:
            return {}

        if self.temp_dir is None:
            self.temp_dir = pathlib.Path(tempfile.mkdtemp(prefix="ort_artifact_"))
            self.log(f"Created temporary download directory: {self.temp_dir}", "debug")

        homes: Dict[str, str] = {}
        with httpx.Client(timeout=60.0, follow_redirects=True) as client:
            for archive in archives:
                dest = self.config.root / archive.name
                fetch_sdk(archive.url, dest, self.temp_dir, client=client, log=self.log)
                homes[archive.define] = str(dest)
        return homes

    def configure(self, sdk_homes: Optional[Dict[str, str]] = None) -> None:
        """Run the CMake configure step."""
        env = {**os.environ, **self.config.environment_vars}
        args = self.config.cmake_configure_args(sdk_homes)
        run_command(["cmake", *args], cwd=self.config.source_dir, env=env, log=self.log)

    def compile(self) -> None:
        """Run the CMake build step."""
        run_command(
            ["cmake", "--build", str(self.config.build_dir), "--config", "Release",
             "--parallel", str(self.jobs)],
            cwd=self.config.source_dir,
            log=self.log,
        )

    def install(self) -> None:
        """Run the CMake install step."""
        run_command(
            ["cmake", "--install", str(self.config.build_dir)],
            cwd=self.config.source_dir,
            log=self.log,
        )

    def package(self) -> PackResult:
        """Pack the installed libraries into the compressed artifact.

        Returns:
            Summary of the pack run
        """
        lib_dir = self.config.install_dir / "lib"
        if not lib_dir.is_dir():
            raise BuildError(f"Install directory has no libraries: {lib_dir}")

        compressor_factory = functools.partial(
            Compressor,
            preset=self.compression.get("preset", 6),
            check=self.compression.get("check", "crc64"),
            emit_threshold=self.compression.get("emit_threshold", 0),
        )
        return pack_directory(
            lib_dir,
            self.config.artifact_path,
            chunk_size=self.compression.get("chunk_size", DEFAULT_CHUNK_SIZE),
            compressor_factory=compressor_factory,
            logger=self.logger,
        )

    def cleanup(self) -> None:
        """Remove the temporary download directory."""
        if self.temp_dir and self.temp_dir.exists():
            self.log(f"Cleaning up temporary directory: {self.temp_dir}", "debug")
            shutil.rmtree(self.temp_dir)
        self.temp_dir = None

    def build(self) -> pathlib.Path:
        """Build and package ONNX Runtime according to the configuration.

        Returns:
            Path to the compressed artifact

        Raises:
            BuildError: If any step fails
        """
        try:
            self.log(f"Starting build of onnxruntime {self.config.upstream_version}")
            self.log(f"Target platform: {self.config.resolved_platform().value}, arch: {self.config.arch.value}")
            if self.config.backends:
                self.log(f"Backends: {', '.join(b.value for b in self.config.backends)}")

            self.prepare_source()
            sdk_homes = self.fetch_sdks()
            self.configure(sdk_homes)
            self.compile()
            self.install()
            result = self.package()

            self.log(f"Build completed successfully: {result.output_path}")
            return result.output_path

        except Exception as e:
            self.log(f"Build failed: {str(e)}", "error")
            raise BuildError(f"Build failed: {str(e)}") from e

        finally:
            self.cleanup()
