"""Unit tests for the incremental LZMA2 compressor."""

from __future__ import annotations

import lzma
import os

import pytest

from ort_artifact.compression.compressor import Compressor, CompressorState, compress
from ort_artifact.utils.exceptions import CompressorStateError


def _feed(data: bytes, chunk_size: int, **kwargs) -> bytes:
    """Compress data through one session, chunk by chunk."""
    compressor = Compressor(**kwargs)
    out = bytearray()
    for i in range(0, len(data), chunk_size):
        out += compressor.push(data[i:i + chunk_size])
    out += compressor.flush()
    return bytes(out)


@pytest.fixture
def sample_data() -> bytes:
    """Mixed compressible and random data."""
    return b"onnxruntime " * 5000 + os.urandom(20000) + bytes(range(256)) * 40


def test_new_session_is_open() -> None:
    """Test the initial state of a session."""
    compressor = Compressor()
    assert compressor.state is CompressorState.OPEN
    assert not compressor.closed
    assert compressor.bytes_in == 0
    assert compressor.bytes_out == 0


def test_flush_without_push_produces_valid_empty_stream() -> None:
    """Test that a session without input still yields a decodable stream."""
    compressor = Compressor()
    out = compressor.flush()
    assert out
    assert lzma.decompress(out) == b""
    assert compressor.closed


def test_round_trip(sample_data: bytes) -> None:
    """Test that concatenated output decompresses to the input."""
    out = _feed(sample_data, 4096)
    assert lzma.decompress(out) == sample_data


def test_output_is_xz_with_lzma2() -> None:
    """Test the container format of the emitted stream."""
    out = compress(b"payload")
    assert out.startswith(b"\xfd7zXZ\x00")
    assert lzma.decompress(out, format=lzma.FORMAT_XZ) == b"payload"


@pytest.mark.parametrize("chunk_size", [1, 4096, None])
def test_chunk_size_invariance(sample_data: bytes, chunk_size) -> None:
    """Test that chunking does not change the decompressed content."""
    size = chunk_size or len(sample_data)
    data = sample_data[:50000] if size == 1 else sample_data
    assert lzma.decompress(_feed(data, size)) == data


def test_push_may_return_empty() -> None:
    """Test that small pushes are buffered and return nothing."""
    compressor = Compressor()
    results = [compressor.push(b"x") for _ in range(10)]
    assert all(isinstance(r, bytes) for r in results)
    # at most the stream header is released before the first block is full
    assert all(r == b"" for r in results[1:])
    out = b"".join(results) + compressor.flush()
    assert lzma.decompress(out) == b"x" * 10


def test_empty_push_is_noop() -> None:
    """Test that pushing an empty chunk is legal and changes nothing."""
    compressor = Compressor()
    assert compressor.push(b"") == b""
    assert compressor.bytes_in == 0
    assert lzma.decompress(compressor.flush()) == b""


def test_push_after_flush_raises() -> None:
    """Test single-use enforcement for push."""
    compressor = Compressor()
    compressor.push(b"data")
    compressor.flush()

    with pytest.raises(CompressorStateError) as exc_info:
        compressor.push(b"more")
    assert exc_info.value.operation == "push"


def test_double_flush_raises() -> None:
    """Test single-use enforcement for flush."""
    compressor = Compressor()
    compressor.flush()

    with pytest.raises(CompressorStateError) as exc_info:
        compressor.flush()
    assert exc_info.value.operation == "flush"


def test_empty_push_after_flush_still_raises() -> None:
    """Test that even an empty push is rejected on a closed session."""
    compressor = Compressor()
    compressor.flush()
    with pytest.raises(CompressorStateError):
        compressor.push(b"")


def test_byte_counters(sample_data: bytes) -> None:
    """Test the in/out byte accounting."""
    compressor = Compressor()
    total = b""
    for i in range(0, len(sample_data), 10000):
        total += compressor.push(sample_data[i:i + 10000])
    total += compressor.flush()

    assert compressor.bytes_in == len(sample_data)
    assert compressor.bytes_out == len(total)


def test_emit_threshold_holds_back_output(sample_data: bytes) -> None:
    """Test that output is released in pieces of at least the threshold."""
    threshold = 32 * 1024
    compressor = Compressor(emit_threshold=threshold)
    pieces = []
    for i in range(0, len(sample_data), 1024):
        out = compressor.push(sample_data[i:i + 1024])
        if out:
            pieces.append(out)
    final = compressor.flush()

    assert all(len(piece) >= threshold for piece in pieces)
    assert lzma.decompress(b"".join(pieces) + final) == sample_data


def test_accepts_bytearray_and_memoryview() -> None:
    """Test that bytes-like input is accepted."""
    compressor = Compressor()
    out = compressor.push(bytearray(b"abc")) + compressor.push(memoryview(b"def")) + compressor.flush()
    assert lzma.decompress(out) == b"abcdef"


@pytest.mark.parametrize("check", ["none", "crc32", "crc64", "sha256"])
def test_integrity_checks(check: str) -> None:
    """Test every supported stream check."""
    out = compress(b"checked data" * 100, check=check)
    assert lzma.decompress(out) == b"checked data" * 100


def test_invalid_options() -> None:
    """Test constructor validation."""
    with pytest.raises(ValueError):
        Compressor(check="md5")
    with pytest.raises(ValueError):
        Compressor(emit_threshold=-1)


def test_presets_round_trip() -> None:
    """Test the fastest and strongest presets."""
    data = b"abcdefghij" * 20000
    for preset in (0, 9, 6 | lzma.PRESET_EXTREME):
        assert lzma.decompress(compress(data, preset=preset)) == data
