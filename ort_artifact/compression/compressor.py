"""Incremental LZMA2 compression session.

The compressor turns a logical byte stream into a single ``.xz`` stream
whose only filter is LZMA2. Input is supplied piecewise with :meth:`push`
and the stream is terminated with exactly one :meth:`flush`. The object
performs no I/O; writing the returned bytes is the caller's job.
"""

from __future__ import annotations

import enum
import lzma
from typing import Dict, Optional, Union

from ort_artifact.utils.exceptions import CompressorStateError

BytesLike = Union[bytes, bytearray, memoryview]


class CompressorState(str, enum.Enum):
    """Lifecycle of a compression session."""

    OPEN = "open"
    CLOSED = "closed"


# Integrity check stored in the xz stream footer
CHECKS: Dict[str, int] = {
    "none": lzma.CHECK_NONE,
    "crc32": lzma.CHECK_CRC32,
    "crc64": lzma.CHECK_CRC64,
    "sha256": lzma.CHECK_SHA256,
}


class Compressor:
    """Single-use streaming compressor.

    Compressed output is staged in an internal buffer and handed back from
    :meth:`push` once at least ``emit_threshold`` bytes are pending. With the
    default threshold of 0 every push returns whatever the engine produced,
    which is frequently nothing: LZMA2 holds input until it has enough to
    encode a block. An empty return value is normal and must not be written.

    :meth:`flush` encodes the remaining input, appends the stream footer and
    moves the session to :attr:`CompressorState.CLOSED`. Any further call
    raises :class:`CompressorStateError`.

    Attributes:
        preset: LZMA2 preset level (0-9)
        check: Name of the integrity check written to the stream footer
        emit_threshold: Minimum number of staged bytes before push returns them
    """

    def __init__(
            self,
            preset: int = 6,
            check: str = "crc64",
            emit_threshold: int = 0,
    ) -> None:
        """Initialize a new compression session.

        Args:
            preset: LZMA2 preset level (0-9), optionally or-ed with lzma.PRESET_EXTREME
            check: Integrity check name (none, crc32, crc64, sha256)
            emit_threshold: Minimum number of pending bytes before push releases them

        Raises:
            ValueError: If the check name or threshold is invalid
        """
        if check not in CHECKS:
            raise ValueError(f"Unknown integrity check: {check}")
        if emit_threshold < 0:
            raise ValueError("emit_threshold must not be negative")

        self.preset = preset
        self.check = check
        self.emit_threshold = emit_threshold

        self._engine: Optional[lzma.LZMACompressor] = lzma.LZMACompressor(
            format=lzma.FORMAT_XZ,
            check=CHECKS[check],
            filters=[{"id": lzma.FILTER_LZMA2, "preset": preset}],
        )
        self._state = CompressorState.OPEN
        self._pending = bytearray()
        self._bytes_in = 0
        self._bytes_out = 0

    @property
    def state(self) -> CompressorState:
        """Current lifecycle state."""
        return self._state

    @property
    def closed(self) -> bool:
        """Whether flush has already been called."""
        return self._state is CompressorState.CLOSED

    @property
    def bytes_in(self) -> int:
        """Number of uncompressed bytes accepted so far."""
        return self._bytes_in

    @property
    def bytes_out(self) -> int:
        """Number of compressed bytes handed back so far."""
        return self._bytes_out

    def push(self, chunk: BytesLike) -> bytes:
        """Feed the next slice of uncompressed input.

        Args:
            chunk: Next bytes of the logical input stream

        Returns:
            Compressed bytes ready for output, possibly empty

        Raises:
            CompressorStateError: If the session was already flushed
        """
        engine = self._require_open("push")
        if not chunk:
            return b""

        self._bytes_in += len(chunk)
        self._pending += engine.compress(chunk)

        if not self._pending or len(self._pending) < self.emit_threshold:
            return b""
        return self._drain()

    def flush(self) -> bytes:
        """Finish the stream and close the session.

        Returns:
            All remaining compressed bytes including the stream footer

        Raises:
            CompressorStateError: If the session was already flushed
        """
        engine = self._require_open("flush")
        self._state = CompressorState.CLOSED
        self._engine = None

        self._pending += engine.flush()
        return self._drain()

    def _require_open(self, operation: str) -> lzma.LZMACompressor:
        if self._state is CompressorState.CLOSED or self._engine is None:
            raise CompressorStateError(
                f"Cannot {operation} a compressor session that has been flushed",
                operation=operation,
            )
        return self._engine

    def _drain(self) -> bytes:
        out = bytes(self._pending)
        self._pending.clear()
        self._bytes_out += len(out)
        return out

    def __repr__(self) -> str:
        return (
            f"Compressor(state={self._state.value}, preset={self.preset}, "
            f"bytes_in={self._bytes_in}, bytes_out={self._bytes_out})"
        )


def compress(data: BytesLike, **kwargs) -> bytes:
    """Compress a complete buffer with a one-shot session.

    Args:
        data: Uncompressed bytes
        **kwargs: Options forwarded to :class:`Compressor`

    Returns:
        A complete xz stream
    """
    compressor = Compressor(**kwargs)
    return compressor.push(data) + compressor.flush()
