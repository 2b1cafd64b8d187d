import gzip
import io
import random

import pytest

from watgen.extract.archive import (
    FORMAT_ARC,
    FORMAT_WARC,
    ArchiveFormatError,
    detect_format,
    iter_archive_records,
)


def test_detect_format_by_name_then_bytes():
    assert detect_format("a.warc.gz") == FORMAT_WARC
    assert detect_format("a.arc") == FORMAT_ARC
    assert detect_format("blob", b"WARC/1.0\r\n") == FORMAT_WARC
    assert detect_format("blob", gzip.compress(b"filedesc://x.arc ...")) == FORMAT_ARC
    with pytest.raises(ArchiveFormatError):
        detect_format("blob", b"<html>")


def test_gzip_warc_records_and_offsets(warc_bytes):
    data = warc_bytes(3)

    records = list(iter_archive_records(io.BytesIO(data), "x.warc.gz"))

    assert [r.headers["WARC-Type"] for r in records] == ["warcinfo", "response", "response"]
    assert all(r.compressed for r in records)
    assert records[0].offset == 0
    # Each offset points at a gzip member boundary.
    for rec in records:
        assert data[rec.offset : rec.offset + 2] == b"\x1f\x8b"
    assert records[1].content.startswith(b"HTTP/1.1 200 OK")
    assert records[0].version == "WARC/1.0"


def test_plain_warc_offsets_are_byte_positions(warc_bytes):
    data = warc_bytes(2, gz=False)

    records = list(iter_archive_records(io.BytesIO(data), "x.warc"))

    assert len(records) == 2
    assert records[0].offset == 0
    assert data[records[1].offset :].startswith(b"WARC/1.0")
    assert not records[1].compressed
    assert records[1].header_length == data[records[1].offset :].index(b"\r\n\r\n") + 4


def test_malformed_record_raises_after_earlier_records(warc_bytes):
    stream = io.BytesIO(warc_bytes(4, malformed_at=2))
    seen = []

    with pytest.raises(ArchiveFormatError, match="Content-Length"):
        for rec in iter_archive_records(stream, "x.warc.gz"):
            seen.append(rec)

    assert len(seen) == 2


def test_truncated_block_raises():
    data = b"WARC/1.0\r\nWARC-Type: resource\r\nContent-Length: 50\r\n\r\nshort"
    with pytest.raises(ArchiveFormatError, match="Truncated"):
        list(iter_archive_records(io.BytesIO(data), "x.warc"))


def test_corrupt_gzip_member_raises(warc_bytes):
    data = warc_bytes(2)
    with pytest.raises(ArchiveFormatError):
        list(iter_archive_records(io.BytesIO(data[:-10]), "x.warc.gz"))


def test_empty_stream_yields_nothing():
    assert list(iter_archive_records(io.BytesIO(b""), "x.warc.gz")) == []


def test_arc_records(arc_bytes):
    records = list(iter_archive_records(io.BytesIO(arc_bytes(3)), "x.arc.gz"))

    assert [r.format for r in records] == [FORMAT_ARC] * 3
    assert records[0].headers["URL"] == "filedesc://sample.arc"
    assert records[0].version == "1"
    assert records[1].headers["URL"] == "http://example.com/arc1"
    assert records[1].headers["IP-address"] == "93.184.216.34"
    assert records[1].content.startswith(b"HTTP/1.1 200 OK")


def test_malformed_arc_header_raises():
    data = b"http://example.com/ 1.2.3.4\nbody\n"
    with pytest.raises(ArchiveFormatError, match="ARC header"):
        list(iter_archive_records(io.BytesIO(data), "x.arc"))


class CountingStream(io.BytesIO):
    """BytesIO that remembers how many bytes callers have pulled."""

    def __init__(self, data: bytes) -> None:
        super().__init__(data)
        self.bytes_read = 0

    def read(self, size=-1):
        chunk = super().read(size)
        self.bytes_read += len(chunk)
        return chunk


def _resource(i: int, block: bytes) -> bytes:
    head = (
        "WARC/1.0\r\n"
        "WARC-Type: resource\r\n"
        f"WARC-Target-URI: http://example.com/blob{i}\r\n"
        f"Content-Length: {len(block)}\r\n"
        "\r\n"
    )
    return head.encode("ascii") + block + b"\r\n\r\n"


def test_single_member_gzip_is_read_lazily():
    rng = random.Random(7)
    # Random blocks keep the compressed size close to the raw size.
    raw = b"".join(_resource(i, rng.randbytes(4096)) for i in range(200))
    data = gzip.compress(raw, mtime=0)
    stream = CountingStream(data)

    records = iter_archive_records(stream, "big.warc.gz")
    first = next(records)

    assert first.headers["WARC-Target-URI"] == "http://example.com/blob0"
    assert len(first.content) == 4096
    assert stream.bytes_read < len(data) // 4

    rest = list(records)
    assert len(rest) == 199
    assert rest[-1].headers["WARC-Target-URI"] == "http://example.com/blob199"
    # Every record lives in the one member starting at byte 0.
    assert all(r.offset == 0 and r.compressed for r in [first, *rest])
    assert stream.bytes_read == len(data)
