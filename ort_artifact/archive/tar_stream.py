"""Streaming tar serialization.

Entries are lowered to standard tar records (header block(s), payload,
zero padding to the 512-byte block size) one piece at a time, so the
archive never has to exist in memory as a whole. Headers are produced by
:class:`tarfile.TarInfo` so any tar reader can consume the stream.
"""

from __future__ import annotations

import tarfile
from dataclasses import dataclass
from typing import BinaryIO, Iterable, Iterator, List, Set

from ort_artifact.utils.exceptions import ArchiveIntegrityError

BLOCK_SIZE = tarfile.BLOCKSIZE
END_OF_ARCHIVE = bytes(BLOCK_SIZE * 2)
DEFAULT_READ_SIZE = 64 * 1024


@dataclass
class TarEntry:
    """A regular file contributed to the archive.

    Attributes:
        name: Path of the member inside the archive
        size: Number of payload bytes announced in the header
        source: Readable binary handle producing exactly ``size`` bytes
        mtime: Modification time stored in the header
        mode: Permission bits stored in the header
    """

    name: str
    size: int
    source: BinaryIO
    mtime: int = 0
    mode: int = 0o644

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Archive entry name must not be empty")
        if self.size < 0:
            raise ValueError(f"Archive entry size must not be negative: {self.size}")


def entry_header(entry: TarEntry) -> bytes:
    """Build the header block(s) for an entry.

    Names that do not fit the ustar fields get a PAX extended header in
    front of the regular one.

    Args:
        entry: Archive entry

    Returns:
        Header bytes, a multiple of the block size
    """
    info = tarfile.TarInfo(name=entry.name)
    info.type = tarfile.REGTYPE
    info.size = entry.size
    info.mtime = entry.mtime
    info.mode = entry.mode
    info.uid = 0
    info.gid = 0
    info.uname = ""
    info.gname = ""
    return info.tobuf(format=tarfile.PAX_FORMAT)


def padding_for(size: int) -> bytes:
    """Zero padding that aligns a payload of ``size`` bytes to the block size."""
    remainder = size % BLOCK_SIZE
    if not remainder:
        return b""
    return bytes(BLOCK_SIZE - remainder)


def iter_entry_records(entry: TarEntry, read_size: int = DEFAULT_READ_SIZE) -> Iterator[bytes]:
    """Yield the serialized record of one entry piece by piece.

    The payload is read from ``entry.source`` in pieces of at most
    ``read_size`` bytes. The source must produce exactly ``entry.size``
    bytes.

    Args:
        entry: Archive entry
        read_size: Maximum number of bytes requested per read

    Yields:
        Header, payload pieces and padding, in order

    Raises:
        ArchiveIntegrityError: If the source is shorter or longer than declared
    """
    yield entry_header(entry)

    remaining = entry.size
    while remaining > 0:
        data = entry.source.read(min(read_size, remaining))
        if not data:
            actual = entry.size - remaining
            raise ArchiveIntegrityError(
                f"Entry {entry.name!r} ended after {actual} bytes, {entry.size} declared",
                entry_name=entry.name,
                declared_size=entry.size,
                actual_size=actual,
            )
        if len(data) > remaining:
            actual = entry.size - remaining + len(data)
            raise ArchiveIntegrityError(
                f"Entry {entry.name!r} produced at least {actual} bytes, {entry.size} declared",
                entry_name=entry.name,
                declared_size=entry.size,
                actual_size=actual,
            )
        remaining -= len(data)
        yield data

    if entry.source.read(1):
        raise ArchiveIntegrityError(
            f"Entry {entry.name!r} has more data than the {entry.size} bytes declared",
            entry_name=entry.name,
            declared_size=entry.size,
            actual_size=entry.size + 1,
        )

    pad = padding_for(entry.size)
    if pad:
        yield pad


class TarStream:
    """Iterable tar stream over a sequence of entries.

    Iterating yields the records of every entry in the order supplied,
    followed by the end-of-archive marker. Entries are consumed lazily, so
    a generator that opens files on demand keeps only one file open.

    A stream can only be iterated once.
    """

    def __init__(self, entries: Iterable[TarEntry], read_size: int = DEFAULT_READ_SIZE) -> None:
        if read_size <= 0:
            raise ValueError("read_size must be positive")
        self._entries = entries
        self.read_size = read_size
        self.entry_names: List[str] = []
        self.payload_bytes = 0

    def __iter__(self) -> Iterator[bytes]:
        seen: Set[str] = set()
        for entry in self._entries:
            if entry.name in seen:
                raise ArchiveIntegrityError(
                    f"Duplicate archive entry name: {entry.name!r}",
                    entry_name=entry.name,
                )
            seen.add(entry.name)

            yield from iter_entry_records(entry, self.read_size)
            self.entry_names.append(entry.name)
            self.payload_bytes += entry.size

        yield END_OF_ARCHIVE


def serialize(entries: Iterable[TarEntry], read_size: int = DEFAULT_READ_SIZE) -> bytes:
    """Serialize entries into a complete in-memory tar stream."""
    return b"".join(TarStream(entries, read_size=read_size))
