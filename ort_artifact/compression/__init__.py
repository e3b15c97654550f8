"""Streaming LZMA2 compression."""

from ort_artifact.compression.compressor import CHECKS, Compressor, CompressorState, compress

__all__ = ["CHECKS", "Compressor", "CompressorState", "compress"]
