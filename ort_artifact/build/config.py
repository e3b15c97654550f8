"""Build configuration for ONNX Runtime artifacts.

This module contains the configuration classes describing which upstream
release to build, for which target, with which execution providers, and
how the resulting CMake invocation is assembled.
"""

from __future__ import annotations

import enum
import json
import os
import pathlib
import platform as host_platform
from typing import Dict, List, Optional, Union

import pydantic
from pydantic import Field, field_validator, model_validator


class TargetPlatform(str, enum.Enum):
    """Target platforms for the native build."""

    LINUX = "linux"
    WINDOWS = "windows"
    MACOS = "macos"
    ANDROID = "android"
    IOS = "ios"
    IOS_SIMULATOR = "iossimulator"
    CURRENT = "current"  # Build for the host platform


class TargetArch(str, enum.Enum):
    """CPU architectures that can be targeted."""

    X86_64 = "x86_64"
    AARCH64 = "aarch64"


class Backend(str, enum.Enum):
    """Optional execution providers compiled into the runtime."""

    CUDA = "cuda"
    TENSORRT = "tensorrt"
    NVRTX = "nvrtx"
    DIRECTML = "directml"
    COREML = "coreml"
    DNNL = "dnnl"
    XNNPACK = "xnnpack"
    WEBGPU = "webgpu"
    OPENVINO = "openvino"
    NNAPI = "nnapi"


CUDA_BACKENDS = frozenset({Backend.CUDA, Backend.TENSORRT, Backend.NVRTX})
SUPPORTED_CUDA_VERSIONS = (12, 13)

# CMake cache definitions enabled by each execution provider
BACKEND_DEFINES: Dict[Backend, Dict[str, str]] = {
    Backend.CUDA: {
        "onnxruntime_USE_CUDA": "ON",
        "onnxruntime_NVCC_THREADS": "1",
    },
    Backend.TENSORRT: {
        "onnxruntime_USE_TENSORRT": "ON",
        "onnxruntime_USE_TENSORRT_BUILTIN_PARSER": "ON",
    },
    Backend.NVRTX: {
        "onnxruntime_USE_NV": "ON",
        "onnxruntime_USE_TENSORRT_BUILTIN_PARSER": "ON",
    },
    Backend.DIRECTML: {"onnxruntime_USE_DML": "ON"},
    Backend.COREML: {"onnxruntime_USE_COREML": "ON"},
    Backend.DNNL: {"onnxruntime_USE_DNNL": "ON"},
    Backend.XNNPACK: {"onnxruntime_USE_XNNPACK": "ON"},
    Backend.WEBGPU: {
        "onnxruntime_USE_WEBGPU": "ON",
        "onnxruntime_BUILD_WEBGPU_EP_STATIC_LIB": "ON",
        "onnxruntime_ENABLE_DELAY_LOADING_WIN_DLLS": "OFF",
        "onnxruntime_USE_EXTERNAL_DAWN": "OFF",
        "onnxruntime_BUILD_DAWN_SHARED_LIBRARY": "ON",
        "onnxruntime_WGSL_TEMPLATE": "static",
    },
    Backend.OPENVINO: {
        "onnxruntime_DISABLE_RTTI": "OFF",
        "onnxruntime_USE_OPENVINO": "ON",
        "onnxruntime_USE_OPENVINO_CPU": "ON",
        "onnxruntime_USE_OPENVINO_GPU": "ON",
        "onnxruntime_USE_OPENVINO_NPU": "ON",
    },
    Backend.NNAPI: {"onnxruntime_USE_NNAPI_BUILTIN": "ON"},
}

TRAINING_DEFINES: Dict[str, str] = {
    "onnxruntime_ENABLE_TRAINING": "ON",
    "onnxruntime_ENABLE_LAZY_TENSOR": "OFF",
    "onnxruntime_DISABLE_RTTI": "OFF",
}

# Third-party SDK archives, keyed by CUDA major version and host OS
CUDA_ARCHIVES: Dict[int, Dict[str, Dict[str, str]]] = {
    12: {
        "linux": {
            "cudnn": "https://developer.download.nvidia.com/compute/cudnn/redist/cudnn_jit/linux-x86_64/cudnn_jit-linux-x86_64-9.19.0.56_cuda12-archive.tar.xz",
            "tensorrt": "https://developer.nvidia.com/downloads/compute/machine-learning/tensorrt/10.15.1/tars/TensorRT-10.15.1.29.Linux.x86_64-gnu.cuda-12.9.tar.gz",
        },
        "windows": {
            "cudnn": "https://developer.download.nvidia.com/compute/cudnn/redist/cudnn/windows-x86_64/cudnn-windows-x86_64-9.19.0.56_cuda12-archive.zip",
            "tensorrt": "https://developer.nvidia.com/downloads/compute/machine-learning/tensorrt/10.15.1/zip/TensorRT-10.15.1.29.Windows.amd64.cuda-12.9.zip",
        },
    },
    13: {
        "linux": {
            "cudnn": "https://developer.download.nvidia.com/compute/cudnn/redist/cudnn_jit/linux-x86_64/cudnn_jit-linux-x86_64-9.19.0.56_cuda13-archive.tar.xz",
            "tensorrt": "https://developer.nvidia.com/downloads/compute/machine-learning/tensorrt/10.15.1/tars/TensorRT-10.15.1.29.Linux.x86_64-gnu.cuda-13.1.tar.gz",
        },
        "windows": {
            "cudnn": "https://developer.download.nvidia.com/compute/cudnn/redist/cudnn/windows-x86_64/cudnn-windows-x86_64-9.19.0.56_cuda13-archive.zip",
            "tensorrt": "https://developer.nvidia.com/downloads/compute/machine-learning/tensorrt/10.15.1/zip/TensorRT-10.15.1.29.Windows.amd64.cuda-13.1.zip",
        },
    },
}
NVRTX_ARCHIVES: Dict[int, Dict[str, str]] = {
    12: {
        "linux": "https://developer.nvidia.com/downloads/trt/rtx_sdk/secure/1.3/TensorRT-RTX-1.3.0.35-Linux-x86_64-cuda-12.9-Release-external.tar.gz",
        "windows": "https://developer.nvidia.com/downloads/trt/rtx_sdk/secure/1.3/TensorRT-RTX-1.3.0.35-win10-amd64-cuda-12.9-Release-external.zip",
    },
    13: {
        "linux": "https://developer.nvidia.com/downloads/trt/rtx_sdk/secure/1.3/TensorRT-RTX-1.3.0.35-Linux-x86_64-cuda-13.1-Release-external.tar.gz",
        "windows": "https://developer.nvidia.com/downloads/trt/rtx_sdk/secure/1.3/TensorRT-RTX-1.3.0.35-win10-amd64-cuda-13.1-Release-external.zip",
    },
}


class SdkArchive(pydantic.BaseModel):
    """A third-party SDK that must be unpacked before configuring.

    Attributes:
        name: Short name of the SDK, also the directory it is unpacked into
        url: Download location of the archive
        define: CMake cache variable receiving the unpacked location
    """

    name: str
    url: str
    define: str


def resolve_host_platform() -> TargetPlatform:
    """Map the running operating system onto a target platform."""
    system = host_platform.system().lower()
    if system == "windows":
        return TargetPlatform.WINDOWS
    if system == "darwin":
        return TargetPlatform.MACOS
    if system == "linux":
        return TargetPlatform.LINUX
    raise ValueError(f"Unsupported platform: {system}")


def host_is_arm64() -> bool:
    """Whether the build host itself is a 64-bit ARM machine."""
    return host_platform.machine().lower() in ("arm64", "aarch64")


class BuildConfig(pydantic.BaseModel):
    """Configuration for building and packaging ONNX Runtime.

    Attributes:
        upstream_version: Exact upstream release, checked out from ``rel-<version>``
        training: Whether to enable the training API
        static: Whether to build a static library instead of a shared one
        platform: Target platform for the build
        arch: Target CPU architecture
        backends: Execution providers to enable
        cuda_version: CUDA major version used by the CUDA-based providers
        ninja: Whether to use the Ninja generator
        vs2026: Whether to use the Visual Studio 2026 generator on Windows
        root: Working directory holding the checkout, SDKs and artifact
        repository_url: Upstream git repository
        patches_dir: Directory of patches applied to the checkout
        jobs: Parallel build jobs (0 uses one per CPU)
        cmake_defines: Extra CMake cache definitions, applied last
        environment_vars: Environment variables set for the CMake configure step
        artifact_name: File name of the compressed archive inside ``root``
    """

    upstream_version: str
    training: bool = False
    static: bool = False
    platform: TargetPlatform = TargetPlatform.CURRENT
    arch: TargetArch = TargetArch.X86_64
    backends: List[Backend] = Field(default_factory=list)
    cuda_version: Optional[int] = None
    ninja: bool = False
    vs2026: bool = False
    root: pathlib.Path = Field(default_factory=pathlib.Path.cwd)
    repository_url: str = "https://github.com/microsoft/onnxruntime"
    patches_dir: Optional[pathlib.Path] = None
    jobs: int = 0
    cmake_defines: Dict[str, str] = Field(default_factory=dict)
    environment_vars: Dict[str, str] = Field(default_factory=dict)
    artifact_name: str = "artifact.tar.lzma2"

    @field_validator("upstream_version")
    @classmethod
    def validate_upstream_version(cls, v: str) -> str:
        """Reject empty versions and versions containing whitespace."""
        v = v.strip()
        if not v or any(c.isspace() for c in v):
            raise ValueError(f"Invalid upstream version: {v!r}")
        return v

    @field_validator("cuda_version")
    @classmethod
    def validate_cuda_version(cls, v: Optional[int]) -> Optional[int]:
        """Only CUDA 12 and 13 toolkits are supported."""
        if v is not None and v not in SUPPORTED_CUDA_VERSIONS:
            raise ValueError("CUDA version must be either 12 or 13")
        return v

    @field_validator("backends")
    @classmethod
    def validate_backends(cls, v: List[Backend]) -> List[Backend]:
        """Drop duplicate backends while keeping their order."""
        return list(dict.fromkeys(v))

    @field_validator("jobs")
    @classmethod
    def validate_jobs(cls, v: int) -> int:
        if v < 0:
            raise ValueError("jobs must not be negative")
        return v

    @model_validator(mode="after")
    def validate_backend_requirements(self) -> "BuildConfig":
        """Check the dependencies between execution providers."""
        if Backend.TENSORRT in self.backends and Backend.CUDA not in self.backends:
            raise ValueError("The TensorRT backend requires the CUDA backend")
        if CUDA_BACKENDS.intersection(self.backends) and self.cuda_version is None:
            raise ValueError("CUDA-based backends require a CUDA version")
        return self

    @property
    def branch(self) -> str:
        """Upstream release branch."""
        return f"rel-{self.upstream_version}"

    @property
    def source_dir(self) -> pathlib.Path:
        """Location of the upstream checkout."""
        return self.root / "onnxruntime"

    @property
    def build_dir(self) -> pathlib.Path:
        """CMake binary directory."""
        return self.source_dir / "build"

    @property
    def cmake_source_dir(self) -> pathlib.Path:
        """CMake source directory; static builds use a wrapper project."""
        if self.static:
            return self.root / "src" / "static-build"
        return self.source_dir / "cmake"

    @property
    def install_dir(self) -> pathlib.Path:
        """CMake install prefix."""
        return self.root / "artifact" / "onnxruntime"

    @property
    def artifact_path(self) -> pathlib.Path:
        """Path of the compressed archive."""
        return self.root / self.artifact_name

    @property
    def resolved_patches_dir(self) -> pathlib.Path:
        """Directory of patches, relative paths taken from ``root``."""
        patches_dir = self.patches_dir or pathlib.Path("src/patches/all")
        if patches_dir.is_absolute():
            return patches_dir
        return self.root / patches_dir

    def resolved_platform(self) -> TargetPlatform:
        """Target platform with ``CURRENT`` replaced by the host platform."""
        if self.platform == TargetPlatform.CURRENT:
            return resolve_host_platform()
        return self.platform

    def sdk_archives(self) -> List[SdkArchive]:
        """SDK archives needed by the selected backends on the host OS."""
        if self.cuda_version is None:
            return []

        host = resolve_host_platform().value
        archives: List[SdkArchive] = []
        cuda = CUDA_ARCHIVES[self.cuda_version].get(host)

        if Backend.CUDA in self.backends and cuda:
            archives.append(SdkArchive(name="cudnn", url=cuda["cudnn"], define="onnxruntime_CUDNN_HOME"))
        if Backend.TENSORRT in self.backends and cuda:
            archives.append(SdkArchive(name="tensorrt", url=cuda["tensorrt"], define="onnxruntime_TENSORRT_HOME"))
        if Backend.NVRTX in self.backends and host in NVRTX_ARCHIVES[self.cuda_version]:
            archives.append(SdkArchive(
                name="nvrtx",
                url=NVRTX_ARCHIVES[self.cuda_version][host],
                define="onnxruntime_TENSORRT_RTX_HOME",
            ))
        return archives

    def cmake_definitions(self, sdk_homes: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """Collect the CMake cache definitions for the configure step.

        Args:
            sdk_homes: Definitions pointing at unpacked SDKs

        Returns:
            Ordered mapping of cache variable to value
        """
        target = self.resolved_platform()
        defines: Dict[str, str] = {
            "CMAKE_BUILD_TYPE": "Release",
            "CMAKE_CONFIGURATION_TYPES": "Release",
            "CMAKE_INSTALL_PREFIX": str(self.install_dir),
            "ONNXRUNTIME_SOURCE_DIR": str(self.source_dir),
        }

        if target in (TargetPlatform.IOS, TargetPlatform.IOS_SIMULATOR):
            defines["CMAKE_TOOLCHAIN_FILE"] = "../cmake/onnxruntime_ios.toolchain.cmake"
            defines["CMAKE_OSX_SYSROOT"] = "iphoneos" if target == TargetPlatform.IOS else "iphonesimulator"
            if os.environ.get("IPHONEOS_DEPLOYMENT_TARGET"):
                defines["CMAKE_OSX_DEPLOYMENT_TARGET"] = os.environ["IPHONEOS_DEPLOYMENT_TARGET"]
        elif target == TargetPlatform.ANDROID:
            defines["ANDROID_ABI"] = "arm64-v8a"
            defines["ANDROID_USE_LEGACY_TOOLCHAIN_FILE"] = "false"
            if os.environ.get("ANDROID_API"):
                defines["ANDROID_PLATFORM"] = f"android-{os.environ['ANDROID_API']}"
            if os.environ.get("ANDROID_NDK_HOME"):
                defines["CMAKE_TOOLCHAIN_FILE"] = str(
                    pathlib.Path(os.environ["ANDROID_NDK_HOME"]) / "build" / "cmake" / "android.toolchain.cmake"
                )

        for backend in self.backends:
            defines.update(BACKEND_DEFINES[backend])
        if CUDA_BACKENDS.intersection(self.backends):
            defines["onnxruntime_USE_FPA_INTB_GEMM"] = "OFF"
            defines["CMAKE_CUDA_ARCHITECTURES"] = "75;80;90"
        if self.training:
            defines.update(TRAINING_DEFINES)

        if target == TargetPlatform.MACOS:
            defines["CMAKE_OSX_ARCHITECTURES"] = "arm64" if self.arch == TargetArch.AARCH64 else "x86_64"
        elif self.arch == TargetArch.AARCH64 and not host_is_arm64():
            defines["onnxruntime_CROSS_COMPILING"] = "ON"

        defines["onnxruntime_BUILD_SHARED_LIB"] = "OFF" if self.static else "ON"
        defines["onnxruntime_BUILD_UNIT_TESTS"] = "OFF"
        defines["onnxruntime_USE_KLEIDIAI"] = "ON" if self.arch == TargetArch.AARCH64 else "OFF"
        defines["onnxruntime_CLIENT_PACKAGE_BUILD"] = "ON"

        defines.update(sdk_homes or {})
        defines.update(self.cmake_defines)
        return defines

    def generator_args(self) -> List[str]:
        """CMake generator selection."""
        if self.ninja and not (self.resolved_platform() == TargetPlatform.WINDOWS and self.arch == TargetArch.AARCH64):
            return ["-G", "Ninja"]
        if self.resolved_platform() == TargetPlatform.WINDOWS:
            generator = "Visual Studio 18 2026" if self.vs2026 else "Visual Studio 17 2022"
            return ["-G", generator, "-A", "ARM64" if self.arch == TargetArch.AARCH64 else "x64"]
        return []

    def cmake_configure_args(self, sdk_homes: Optional[Dict[str, str]] = None) -> List[str]:
        """Convert the build configuration to ``cmake`` configure arguments.

        Args:
            sdk_homes: Definitions pointing at unpacked SDKs

        Returns:
            List of command-line arguments, without the ``cmake`` executable.
        """
        args = ["-S", str(self.cmake_source_dir), "-B", str(self.build_dir)]
        args.extend(self.generator_args())
        args.extend(f"-D{name}={value}" for name, value in self.cmake_definitions(sdk_homes).items())
        args.append("--compile-no-warning-as-error")
        return args

    @classmethod
    def from_dict(cls, config_dict: Dict) -> BuildConfig:
        """Create a BuildConfig from a dictionary.

        Args:
            config_dict: Dictionary containing configuration values.

        Returns:
            BuildConfig instance.
        """
        return cls(**config_dict)

    @classmethod
    def from_json_file(cls, json_path: Union[str, pathlib.Path]) -> BuildConfig:
        """Load a BuildConfig from a JSON file.

        Args:
            json_path: Path to the JSON configuration file.

        Returns:
            BuildConfig instance.
        """
        with open(json_path, "r") as f:
            config_dict = json.load(f)
        return cls.from_dict(config_dict)

    def to_dict(self) -> Dict:
        """Convert the BuildConfig to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")

    def to_json_file(self, json_path: Union[str, pathlib.Path]) -> None:
        """Save the BuildConfig to a JSON file.

        Args:
            json_path: Path where the JSON configuration file will be saved.
        """
        with open(json_path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
