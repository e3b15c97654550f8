"""Command-line interface for ort-artifact.

This module provides the ``ort-artifact`` command with two subcommands:
``build`` runs a full ONNX Runtime build and packs the result, ``pack``
only compresses an existing directory of binaries.
"""

from __future__ import annotations

import argparse
import pathlib
import sys
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from ort_artifact.__version__ import __version__
from ort_artifact.archive.pipeline import pack_directory
from ort_artifact.build.builder import Builder
from ort_artifact.build.config import Backend, BuildConfig, TargetArch, TargetPlatform
from ort_artifact.compression.compressor import CHECKS, Compressor
from ort_artifact.core.config_manager import ConfigManager
from ort_artifact.core.logging_manager import LoggingManager
from ort_artifact.utils.exceptions import ArtifactError


def _cuda_version(value: str) -> int:
    try:
        version = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid CUDA version: {value}")
    if version not in (12, 13):
        raise argparse.ArgumentTypeError("must be either 12 or 13")
    return version


def _define(value: str) -> Tuple[str, str]:
    name, sep, define_value = value.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"expected NAME=VALUE, got: {value}")
    return name, define_value


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value}")
    if number <= 0:
        raise argparse.ArgumentTypeError("must be a positive integer")
    return number


def build_config_from_args(args: argparse.Namespace, build_settings: Dict[str, Any]) -> BuildConfig:
    """Translate parsed ``build`` options into a BuildConfig.

    Args:
        args: Parsed command-line arguments
        build_settings: The ``build`` section of the configuration

    Returns:
        Validated build configuration
    """
    backends: List[Backend] = []
    cuda_version: Optional[int] = None

    if args.cuda:
        backends.append(Backend.CUDA)
        cuda_version = args.cuda
    if args.trt:
        backends.append(Backend.TENSORRT)
    if args.nvrtx:
        if cuda_version is not None and cuda_version != args.nvrtx:
            raise ArtifactError("--cuda and --nvrtx must use the same CUDA version")
        backends.append(Backend.NVRTX)
        cuda_version = args.nvrtx
    for flag, backend in (
            ("directml", Backend.DIRECTML),
            ("coreml", Backend.COREML),
            ("dnnl", Backend.DNNL),
            ("xnnpack", Backend.XNNPACK),
            ("webgpu", Backend.WEBGPU),
            ("openvino", Backend.OPENVINO),
            ("nnapi", Backend.NNAPI),
    ):
        if getattr(args, flag):
            backends.append(backend)

    if args.iphoneos:
        target = TargetPlatform.IOS
    elif args.iphonesimulator:
        target = TargetPlatform.IOS_SIMULATOR
    elif args.android:
        target = TargetPlatform.ANDROID
    else:
        target = TargetPlatform.CURRENT

    config_dict: Dict[str, Any] = {
        "upstream_version": args.upstream_version,
        "training": args.training,
        "static": args.static,
        "platform": target,
        "arch": TargetArch(args.arch),
        "backends": backends,
        "cuda_version": cuda_version,
        "ninja": args.ninja,
        "vs2026": args.vs2026,
        "root": pathlib.Path(args.root).resolve(),
        "repository_url": build_settings.get("repository_url", "https://github.com/microsoft/onnxruntime"),
        "jobs": args.jobs if args.jobs is not None else build_settings.get("jobs", 0),
        "cmake_defines": dict(args.define or []),
        "environment_vars": {
            str(name): str(value) for name, value in (build_settings.get("environment") or {}).items()
        },
    }
    if build_settings.get("patches_dir"):
        config_dict["patches_dir"] = pathlib.Path(build_settings["patches_dir"])
    if args.output:
        config_dict["artifact_name"] = args.output

    return BuildConfig.from_dict(config_dict)


def build_command(args: argparse.Namespace, config_manager: ConfigManager, logging_manager: LoggingManager) -> int:
    """Handle the build command.

    Args:
        args: Command-line arguments
        config_manager: Loaded configuration
        logging_manager: Initialized logging manager

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    try:
        config = build_config_from_args(args, config_manager.get("build", {}))
    except (ValidationError, ArtifactError) as e:
        print(f"Invalid build options: {e}", file=sys.stderr)
        return 1

    builder = Builder(
        config,
        logger=logging_manager.get_logger("ort_artifact.build"),
        compression=config_manager.get("compression", {}),
    )
    try:
        artifact = builder.build()
    except ArtifactError as e:
        print(f"Error building artifact: {e}", file=sys.stderr)
        return 1

    print(f"Artifact written to: {artifact}")
    return 0


def pack_command(args: argparse.Namespace, config_manager: ConfigManager, logging_manager: LoggingManager) -> int:
    """Handle the pack command.

    Args:
        args: Command-line arguments
        config_manager: Loaded configuration
        logging_manager: Initialized logging manager

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    compression = config_manager.get("compression", {})
    preset = args.preset if args.preset is not None else compression.get("preset", 6)
    check = args.check or compression.get("check", "crc64")
    chunk_size = args.chunk_size or compression.get("chunk_size", 65536)
    emit_threshold = compression.get("emit_threshold", 0)

    try:
        result = pack_directory(
            args.directory,
            args.output,
            chunk_size=chunk_size,
            compressor_factory=lambda: Compressor(preset=preset, check=check, emit_threshold=emit_threshold),
            logger=logging_manager.get_logger("ort_artifact.archive"),
        )
    except (ArtifactError, OSError) as e:
        print(f"Error packing {args.directory}: {e}", file=sys.stderr)
        return 1

    print(f"Packed {len(result.entries)} files into {result.output_path} ({result.bytes_out} bytes)")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the command-line interface."""
    parser = argparse.ArgumentParser(
        prog="ort-artifact",
        description="Build ONNX Runtime and package the binaries",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", default="ort-artifact.yaml", help="Configuration file (YAML or JSON)")
    parser.add_argument("--log-level", choices=sorted(LoggingManager.LOG_LEVELS), help="Override the log level")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # Build command
    build_parser = subparsers.add_parser("build", help="Build ONNX Runtime and pack the libraries")
    build_parser.add_argument("-v", "--upstream-version", required=True, help="Exact version of upstream package")
    build_parser.add_argument("-t", "--training", action="store_true", help="Enable Training API")
    build_parser.add_argument("-s", "--static", action="store_true", help="Build static library")
    target_group = build_parser.add_mutually_exclusive_group()
    target_group.add_argument("--iphoneos", action="store_true", help="Target iOS / iPadOS")
    target_group.add_argument("--iphonesimulator", action="store_true", help="Target iOS / iPadOS simulator")
    target_group.add_argument("--android", action="store_true", help="Target Android")
    build_parser.add_argument("--cuda", type=_cuda_version, metavar="VERSION", help="Enable CUDA EP (12 or 13)")
    build_parser.add_argument("--trt", action="store_true", help="Enable TensorRT EP (requires --cuda)")
    build_parser.add_argument("--nvrtx", type=_cuda_version, metavar="CUDA_VERSION", help="Enable NV TensorRT RTX EP")
    build_parser.add_argument("--directml", action="store_true", help="Enable DirectML EP")
    build_parser.add_argument("--coreml", action="store_true", help="Enable CoreML EP")
    build_parser.add_argument("--dnnl", action="store_true", help="Enable DNNL EP")
    build_parser.add_argument("--xnnpack", action="store_true", help="Enable XNNPACK EP")
    build_parser.add_argument("--webgpu", action="store_true", help="Enable WebGPU EP")
    build_parser.add_argument("--openvino", action="store_true", help="Enable OpenVINO EP")
    build_parser.add_argument("--nnapi", action="store_true", help="Enable NNAPI EP")
    build_parser.add_argument("-N", "--ninja", action="store_true", help="Build with ninja")
    build_parser.add_argument("--vs2026", action="store_true", help="Use Visual Studio 2026 generator")
    build_parser.add_argument("-A", "--arch", choices=[a.value for a in TargetArch], default=TargetArch.X86_64.value,
                              help="Configure target architecture for cross-compile")
    build_parser.add_argument("-D", "--define", action="append", type=_define, metavar="NAME=VALUE",
                              help="Extra CMake cache definition (can be specified multiple times)")
    build_parser.add_argument("-j", "--jobs", type=_positive_int, help="Parallel build jobs (default: one per CPU)")
    build_parser.add_argument("--root", default=".", help="Working directory for sources, SDKs and the artifact")
    build_parser.add_argument("-o", "--output", help="Artifact file name (default: artifact.tar.lzma2)")

    # Pack command
    pack_parser = subparsers.add_parser("pack", help="Pack a directory into a compressed tar archive")
    pack_parser.add_argument("directory", help="Directory whose regular files are archived")
    pack_parser.add_argument("--output", "-o", required=True, help="Output archive path")
    pack_parser.add_argument("--chunk-size", type=_positive_int, help="Bytes pushed to the compressor per call")
    pack_parser.add_argument("--preset", type=int, choices=range(10), metavar="0-9", help="LZMA2 preset")
    pack_parser.add_argument("--check", choices=sorted(CHECKS), help="Integrity check stored in the stream")

    return parser


def main(args: Optional[List[str]] = None) -> int:
    """Main entry point for the command-line interface.

    Args:
        args: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    config_manager = ConfigManager(config_path=parsed_args.config)
    try:
        config_manager.initialize()
    except ArtifactError as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        return 1
    if parsed_args.log_level:
        config_manager.set("logging.level", parsed_args.log_level.upper())
        config_manager.set("logging.console.level", parsed_args.log_level.upper())

    logging_manager = LoggingManager(config_manager)
    logging_manager.initialize()

    try:
        if parsed_args.command == "build":
            return build_command(parsed_args, config_manager, logging_manager)
        if parsed_args.command == "pack":
            return pack_command(parsed_args, config_manager, logging_manager)
        parser.print_help()
        return 1
    finally:
        logging_manager.shutdown()
        config_manager.shutdown()


if __name__ == "__main__":
    sys.exit(main())
