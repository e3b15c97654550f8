"""Streaming tar archive creation and compression."""

from ort_artifact.archive.pipeline import (
    ArchivePipeline,
    PackResult,
    PipelineState,
    iter_directory_entries,
    pack_directory,
    rechunk,
    write_chunk,
)
from ort_artifact.archive.tar_stream import TarEntry, TarStream, serialize

__all__ = [
    "ArchivePipeline",
    "PackResult",
    "PipelineState",
    "TarEntry",
    "TarStream",
    "iter_directory_entries",
    "pack_directory",
    "rechunk",
    "serialize",
    "write_chunk",
]
