# archive.py
# SPDX-License-Identifier: MIT
"""Readers for WARC and ARC capture containers.

Both formats are read from plain streams or from gzip streams, whether they
hold one member per record or a single member for the whole file. Gzip input
is inflated incrementally, and records are yielded lazily together with the
offset of the record (or of the gzip member holding it) in the container.
"""

from __future__ import annotations

import zlib
from collections.abc import Iterator
from dataclasses import dataclass, replace
from typing import IO

from ..core.log import get_logger

log = get_logger(__name__)

__all__ = [
    "ArchiveFormatError",
    "ArchiveRecord",
    "FORMAT_ARC",
    "FORMAT_WARC",
    "detect_format",
    "iter_archive_records",
]

FORMAT_WARC = "WARC"
FORMAT_ARC = "ARC"

_GZIP_MAGIC = b"\x1f\x8b"
_CHUNK = 64 * 1024
_SNIFF_BYTES = 512
_MAX_HEADER_LINE = 64 * 1024
_BLANK_LINES = (b"\r\n", b"\n")


class ArchiveFormatError(ValueError):
    """Raised when a container cannot be decoded."""


@dataclass(frozen=True, slots=True)
class ArchiveRecord:
    """One decoded container record.

    Attributes:
        format (str): ``"WARC"`` or ``"ARC"``.
        headers (dict[str, str]): WARC named fields, or the ARC header
            line's fields keyed by their ARC names.
        content (bytes): Record block (HTTP message, warcinfo fields, ...).
        offset (int): Byte offset of the record, or of its gzip member, in
            the container.
        header_length (int): Bytes of the version/header lines.
        compressed (bool): True when the container is gzip-compressed.
        version (str): ``WARC/1.0``-style version line, or the ARC version.
    """

    format: str
    headers: dict[str, str]
    content: bytes
    offset: int
    header_length: int
    compressed: bool = False
    version: str = ""


def detect_format(name: str, head: bytes = b"") -> str:
    """Pick the container format from the file name, then from its bytes.

    Raises:
        ArchiveFormatError: If neither the name nor the bytes identify a
            WARC or ARC container.
    """
    lowered = name.lower()
    if lowered.endswith((".warc", ".warc.gz")):
        return FORMAT_WARC
    if lowered.endswith((".arc", ".arc.gz")):
        return FORMAT_ARC
    sample = head
    if sample.startswith(_GZIP_MAGIC):
        try:
            sample = zlib.decompressobj(31).decompress(head, _SNIFF_BYTES)
        except zlib.error:
            sample = b""
    sample = sample.lstrip(b"\r\n")
    if sample.startswith(b"WARC/"):
        return FORMAT_WARC
    if sample.startswith(b"filedesc://"):
        return FORMAT_ARC
    raise ArchiveFormatError(f"Cannot determine container format for {name}")


class _PeekableReader:
    """Wraps a binary stream so its first bytes can be inspected."""

    def __init__(self, stream: IO[bytes]) -> None:
        self._stream = stream
        self._buf = b""

    def peek(self, size: int) -> bytes:
        while len(self._buf) < size:
            chunk = self._stream.read(size - len(self._buf))
            if not chunk:
                break
            self._buf += chunk
        return self._buf[:size]

    def read(self, size: int = -1) -> bytes:
        if not self._buf:
            return self._stream.read(size)
        if size < 0:
            data, self._buf = self._buf + self._stream.read(), b""
            return data
        data, self._buf = self._buf[:size], self._buf[size:]
        if len(data) < size:
            data += self._stream.read(size - len(data))
        return data

    def readline(self, limit: int = -1) -> bytes:
        if not self._buf:
            return self._stream.readline(limit)
        idx = self._buf.find(b"\n")
        if idx >= 0 and (limit < 0 or idx < limit):
            line, self._buf = self._buf[: idx + 1], self._buf[idx + 1 :]
            return line
        if 0 <= limit <= len(self._buf):
            line, self._buf = self._buf[:limit], self._buf[limit:]
            return line
        prefix, self._buf = self._buf, b""
        return prefix + self._stream.readline(-1 if limit < 0 else limit - len(prefix))


class _CountingReader:
    """Reader over a binary stream that tracks the byte position."""

    def __init__(self, stream) -> None:
        self._stream = stream
        self.position = 0

    def readline(self) -> bytes:
        line = self._stream.readline(_MAX_HEADER_LINE)
        self.position += len(line)
        return line

    def read(self, size: int) -> bytes:
        chunks: list[bytes] = []
        remaining = size
        while remaining > 0:
            chunk = self._stream.read(remaining)
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        data = b"".join(chunks)
        self.position += len(data)
        return data


class _GzipMember:
    """Decompressed view of one gzip member, inflated on demand.

    Compressed bytes are pulled from the shared :class:`_GzipMembers` source
    one chunk at a time, so memory stays bounded however large the member is.
    """

    def __init__(self, source: _GzipMembers, start: int) -> None:
        self._source = source
        self.start = start
        self._inflater = zlib.decompressobj(31)
        self._out = b""

    def _inflate(self) -> bytes | None:
        """Return the next slice of output, or None at the end of the member."""
        src = self._source
        while not self._inflater.eof:
            data = src.pending or src.stream.read(_CHUNK)
            try:
                out = self._inflater.decompress(data, _CHUNK)
            except zlib.error as exc:
                raise ArchiveFormatError(f"Corrupt gzip member at offset {self.start}: {exc}") from exc
            if self._inflater.eof:
                leftover = self._inflater.unused_data
            else:
                leftover = self._inflater.unconsumed_tail
            src.offset += len(data) - len(leftover)
            src.pending = leftover
            if out:
                return out
            if not data and not self._inflater.eof:
                raise ArchiveFormatError(f"Truncated gzip member at offset {self.start}")
        return None

    def read(self, size: int = -1) -> bytes:
        chunks = [self._out] if self._out else []
        have = len(self._out)
        while size < 0 or have < size:
            out = self._inflate()
            if out is None:
                break
            chunks.append(out)
            have += len(out)
        data = b"".join(chunks)
        if size < 0:
            self._out = b""
            return data
        self._out = data[size:]
        return data[:size]

    def readline(self, limit: int = -1) -> bytes:
        while True:
            idx = self._out.find(b"\n")
            if idx >= 0 and (limit < 0 or idx < limit):
                cut = idx + 1
                break
            if 0 <= limit <= len(self._out):
                cut = limit
                break
            out = self._inflate()
            if out is None:
                cut = len(self._out)
                break
            self._out += out
        line, self._out = self._out[:cut], self._out[cut:]
        return line


class _GzipMembers:
    """Walks the members of a multi-member gzip stream in order."""

    def __init__(self, stream: IO[bytes]) -> None:
        self.stream = stream
        self.pending = b""
        self.offset = 0

    def __iter__(self) -> Iterator[_GzipMember]:
        while True:
            if not self.pending:
                self.pending = self.stream.read(_CHUNK)
                if not self.pending:
                    return
            member = _GzipMember(self, self.offset)
            yield member
            # Finish a member the caller stopped reading early.
            while member.read(_CHUNK):
                pass


def _skip_blank(reader: _CountingReader) -> tuple[bytes, int]:
    while True:
        start = reader.position
        line = reader.readline()
        if line not in _BLANK_LINES:
            return line, start


def _read_warc_record(reader: _CountingReader) -> ArchiveRecord | None:
    line, start = _skip_blank(reader)
    if not line:
        return None
    version = line.strip().decode("ascii", "replace")
    if not version.startswith("WARC/"):
        raise ArchiveFormatError(f"Expected WARC version line at offset {start}, got {version[:40]!r}")
    header_length = len(line)
    headers: dict[str, str] = {}
    last_name: str | None = None
    while True:
        line = reader.readline()
        header_length += len(line)
        if not line:
            raise ArchiveFormatError(f"Truncated WARC header at offset {start}")
        if line in _BLANK_LINES:
            break
        text = line.decode("utf-8", "replace").rstrip("\r\n")
        if text[:1] in (" ", "\t") and last_name is not None:
            headers[last_name] = f"{headers[last_name]} {text.strip()}"
            continue
        name, sep, value = text.partition(":")
        if not sep or not name.strip():
            raise ArchiveFormatError(f"Malformed WARC header line at offset {start}: {text[:60]!r}")
        last_name = name.strip()
        headers[last_name] = value.strip()
    raw_length = headers.get("Content-Length")
    try:
        length = int(raw_length) if raw_length is not None else -1
    except ValueError:
        length = -1
    if length < 0:
        raise ArchiveFormatError(
            f"Missing or invalid Content-Length at offset {start}: {raw_length!r}"
        )
    content = reader.read(length)
    if len(content) < length:
        raise ArchiveFormatError(
            f"Truncated WARC block at offset {start}: expected {length}, got {len(content)}"
        )
    return ArchiveRecord(
        format=FORMAT_WARC,
        headers=headers,
        content=content,
        offset=start,
        header_length=header_length,
        version=version,
    )


_ARC_V1_FIELDS = ("URL", "IP-address", "Archive-date", "Content-type", "Archive-length")
_ARC_V2_FIELDS = (
    "URL",
    "IP-address",
    "Archive-date",
    "Content-type",
    "Result-code",
    "Checksum",
    "Location",
    "Offset",
    "Filename",
    "Archive-length",
)


def _read_arc_record(reader: _CountingReader) -> ArchiveRecord | None:
    line, start = _skip_blank(reader)
    if not line:
        return None
    text = line.decode("utf-8", "replace").strip()
    parts = text.split(" ")
    if len(parts) == len(_ARC_V1_FIELDS):
        names = _ARC_V1_FIELDS
    elif len(parts) == len(_ARC_V2_FIELDS):
        names = _ARC_V2_FIELDS
    else:
        raise ArchiveFormatError(f"Malformed ARC header line at offset {start}: {text[:80]!r}")
    headers = dict(zip(names, parts))
    try:
        length = int(headers["Archive-length"])
    except ValueError as exc:
        raise ArchiveFormatError(f"Invalid ARC record length at offset {start}: {text[:80]!r}") from exc
    if length < 0:
        raise ArchiveFormatError(f"Negative ARC record length at offset {start}")
    content = reader.read(length)
    if len(content) < length:
        raise ArchiveFormatError(
            f"Truncated ARC record at offset {start}: expected {length}, got {len(content)}"
        )
    version = ""
    if headers["URL"].startswith("filedesc://"):
        first = content.split(b"\n", 1)[0].decode("ascii", "replace").split(" ")
        version = first[0] if first else ""
    return ArchiveRecord(
        format=FORMAT_ARC,
        headers=headers,
        content=content,
        offset=start,
        header_length=len(line),
        version=version,
    )


def _read_records(reader: _CountingReader, fmt: str) -> Iterator[ArchiveRecord]:
    read = _read_warc_record if fmt == FORMAT_WARC else _read_arc_record
    while True:
        record = read(reader)
        if record is None:
            return
        yield record


def iter_archive_records(stream: IO[bytes], name: str) -> Iterator[ArchiveRecord]:
    """Lazily decode every record of a container.

    Args:
        stream (IO[bytes]): Binary stream positioned at the start of the
            container. Only ``read``/``readline`` are used.
        name (str): File name, used for format detection and messages.

    Yields:
        ArchiveRecord: Records in container order.

    Raises:
        ArchiveFormatError: On the first record that cannot be decoded.
            Records before it have already been yielded.
    """
    reader = _PeekableReader(stream)
    head = reader.peek(_SNIFF_BYTES)
    if not head:
        log.debug("Empty container: %s", name)
        return
    fmt = detect_format(name, head)
    if not head.startswith(_GZIP_MAGIC):
        yield from _read_records(_CountingReader(reader), fmt)
        return
    for member in _GzipMembers(reader):
        for record in _read_records(_CountingReader(member), fmt):
            # Offsets point at the gzip member holding the record.
            yield replace(record, offset=member.start, compressed=True)
