"""ort-artifact: build ONNX Runtime and package the binaries as a compressed archive."""

from ort_artifact.__version__ import __version__

__all__ = ["__version__"]
