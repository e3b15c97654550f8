"""Directory -> tar -> LZMA2 -> file pipeline.

The pipeline enumerates the regular files of a directory, serializes them
as a tar stream, regroups that stream into fixed-size chunks, pushes each
chunk through a :class:`~ort_artifact.compression.Compressor` and appends
every non-empty compressed chunk to the output file. Memory use is bounded
by the chunk size, not by the size of the archive.
"""

from __future__ import annotations

import enum
import logging
import os
import pathlib
import stat
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Callable, Dict, Iterable, Iterator, List, Optional, Union

from ort_artifact.archive.tar_stream import DEFAULT_READ_SIZE, TarEntry, TarStream
from ort_artifact.compression.compressor import Compressor
from ort_artifact.utils.exceptions import PipelineStateError

DEFAULT_CHUNK_SIZE = 64 * 1024


class PipelineState(str, enum.Enum):
    """Stages of a pack run."""

    IDLE = "idle"
    ENUMERATING = "enumerating"
    STREAMING = "streaming"
    FLUSHING = "flushing"
    CLOSED = "closed"


_TRANSITIONS: Dict[PipelineState, PipelineState] = {
    PipelineState.IDLE: PipelineState.ENUMERATING,
    PipelineState.ENUMERATING: PipelineState.STREAMING,
    PipelineState.STREAMING: PipelineState.FLUSHING,
    PipelineState.FLUSHING: PipelineState.CLOSED,
}


@dataclass
class PackResult:
    """Summary of a completed pack run.

    Attributes:
        output_path: Compressed archive written by the run
        entries: Names of the archived files, in archive order
        bytes_in: Size of the uncompressed tar stream
        bytes_out: Size of the compressed output file
        chunks_written: Number of non-empty writes to the output file
    """

    output_path: pathlib.Path
    entries: List[str] = field(default_factory=list)
    bytes_in: int = 0
    bytes_out: int = 0
    chunks_written: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "output_path": str(self.output_path),
            "entries": list(self.entries),
            "bytes_in": self.bytes_in,
            "bytes_out": self.bytes_out,
            "chunks_written": self.chunks_written,
        }


def iter_directory_entries(directory: Union[str, pathlib.Path]) -> Iterator[TarEntry]:
    """Yield an archive entry for every regular file directly inside a directory.

    Subdirectories, symbolic links and special files are skipped. Files are
    yielded in name order. Each file is opened only when its entry is
    produced and closed when the consumer asks for the next one.

    Args:
        directory: Directory to enumerate

    Yields:
        One :class:`TarEntry` per regular file, named by its base name

    Raises:
        NotADirectoryError: If the path is not a directory
        FileNotFoundError: If the directory does not exist
    """
    directory = pathlib.Path(directory)
    with os.scandir(directory) as it:
        files = sorted(
            (entry for entry in it if entry.is_file(follow_symlinks=False)),
            key=lambda entry: entry.name,
        )

    for dir_entry in files:
        st = dir_entry.stat(follow_symlinks=False)
        with open(dir_entry.path, "rb") as source:
            yield TarEntry(
                name=dir_entry.name,
                size=st.st_size,
                source=source,
                mtime=int(st.st_mtime),
                mode=stat.S_IMODE(st.st_mode),
            )


def rechunk(chunks: Iterable[bytes], chunk_size: int) -> Iterator[bytes]:
    """Regroup a stream of byte chunks into chunks of exactly ``chunk_size``.

    Only the last chunk may be shorter. Empty input chunks are ignored.

    Args:
        chunks: Source chunks of arbitrary sizes
        chunk_size: Size of every emitted chunk except the last

    Yields:
        Non-empty chunks, in stream order
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")

    buffer = bytearray()
    for chunk in chunks:
        view = memoryview(chunk)
        while view:
            take = chunk_size - len(buffer)
            buffer += view[:take]
            view = view[take:]
            if len(buffer) == chunk_size:
                yield bytes(buffer)
                buffer.clear()

    if buffer:
        yield bytes(buffer)


def write_chunk(sink: BinaryIO, chunk: bytes) -> int:
    """Append a chunk to the sink; empty chunks are not written.

    Returns:
        Number of bytes written
    """
    if not chunk:
        return 0
    sink.write(chunk)
    return len(chunk)


class ArchivePipeline:
    """Single-use pack-and-compress run.

    The run moves through ``IDLE -> ENUMERATING -> STREAMING -> FLUSHING ->
    CLOSED``. The compressor is flushed exactly once, after the whole tar
    stream has been pushed. If anything fails the compressor is dropped
    without flushing and the error propagates; the output file is then
    truncated and must be treated as invalid.

    Attributes:
        output_path: File receiving the compressed archive
        chunk_size: Size of the chunks pushed to the compressor
        read_size: Maximum size of a single read from an entry source
    """

    def __init__(
            self,
            output_path: Union[str, pathlib.Path],
            chunk_size: int = DEFAULT_CHUNK_SIZE,
            compressor_factory: Callable[[], Compressor] = Compressor,
            read_size: int = DEFAULT_READ_SIZE,
            logger: Optional[Any] = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            output_path: File receiving the compressed archive; truncated on run
            chunk_size: Size of the chunks pushed to the compressor
            compressor_factory: Callable creating a fresh compression session
            read_size: Maximum size of a single read from an entry source
            logger: Logger used for progress messages
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.output_path = pathlib.Path(output_path)
        self.chunk_size = chunk_size
        self.read_size = read_size
        self._compressor_factory = compressor_factory
        self._logger = logger or logging.getLogger(__name__)
        self._state = PipelineState.IDLE

    @property
    def state(self) -> PipelineState:
        """Current stage of the run."""
        return self._state

    def _advance(self, target: PipelineState) -> None:
        if _TRANSITIONS.get(self._state) is not target:
            raise PipelineStateError(
                f"Invalid pipeline transition {self._state.value} -> {target.value}",
                state=self._state.value,
            )
        self._state = target

    def pack_directory(self, directory: Union[str, pathlib.Path]) -> PackResult:
        """Archive every regular file of a directory.

        Args:
            directory: Directory whose regular files are archived

        Returns:
            Summary of the run
        """
        directory = pathlib.Path(directory)
        if not directory.is_dir():
            raise NotADirectoryError(f"Not a directory: {directory}")

        self._logger.info(
            f"Packing {directory} into {self.output_path}",
            extra={"directory": str(directory), "output": str(self.output_path)},
        )
        return self.run(iter_directory_entries(directory))

    def run(self, entries: Iterable[TarEntry]) -> PackResult:
        """Serialize, compress and write the given entries.

        Args:
            entries: Archive entries, consumed lazily and in order

        Returns:
            Summary of the run

        Raises:
            PipelineStateError: If the pipeline has already been run
            ArchiveIntegrityError: If an entry's size does not match its data
            OSError: If reading a source or writing the output fails
        """
        if self._state is not PipelineState.IDLE:
            raise PipelineStateError(
                "Archive pipeline can only be run once",
                state=self._state.value,
            )
        self._advance(PipelineState.ENUMERATING)

        stream = TarStream(entries, read_size=self.read_size)
        compressor = self._compressor_factory()
        result = PackResult(output_path=self.output_path)

        try:
            with open(self.output_path, "wb") as sink:
                self._advance(PipelineState.STREAMING)
                for chunk in rechunk(stream, self.chunk_size):
                    result.bytes_in += len(chunk)
                    written = write_chunk(sink, compressor.push(chunk))
                    if written:
                        result.bytes_out += written
                        result.chunks_written += 1

                self._advance(PipelineState.FLUSHING)
                written = write_chunk(sink, compressor.flush())
                if written:
                    result.bytes_out += written
                    result.chunks_written += 1
        except Exception as e:
            self._logger.error(
                f"Packing {self.output_path} failed in state {self._state.value}: {e}",
                extra={"state": self._state.value, "output": str(self.output_path)},
            )
            raise

        self._advance(PipelineState.CLOSED)
        result.entries = list(stream.entry_names)

        self._logger.info(
            f"Packed {len(result.entries)} files into {self.output_path} "
            f"({result.bytes_in} -> {result.bytes_out} bytes)",
            extra=result.to_dict(),
        )
        return result


def pack_directory(
        directory: Union[str, pathlib.Path],
        output_path: Union[str, pathlib.Path],
        **kwargs: Any,
) -> PackResult:
    """Archive a directory's regular files into an LZMA2-compressed tar file.

    Args:
        directory: Directory whose regular files are archived
        output_path: File receiving the compressed archive
        **kwargs: Options forwarded to :class:`ArchivePipeline`

    Returns:
        Summary of the run
    """
    return ArchivePipeline(output_path, **kwargs).pack_directory(directory)
