import gzip
from pathlib import Path

import pytest

WARC_DATE = "2024-01-02T03:04:05Z"
ARC_DATE = "20240102030405"

PAGE = (
    b"<html><head><title>Example  Page</title>"
    b'<meta name="description" content="demo page">'
    b'<link rel="stylesheet" href="/style.css">'
    b"</head><body>"
    b'<a href="/next">Next <b>page</b></a>'
    b'<img src="/logo.png">'
    b"</body></html>"
)


def http_response(body: bytes = PAGE, *, content_type: str = "text/html; charset=utf-8") -> bytes:
    head = (
        "HTTP/1.1 200 OK\r\n"
        f"Content-Type: {content_type}\r\n"
        f"Content-Length: {len(body)}\r\n"
        "\r\n"
    )
    return head.encode("ascii") + body


def warc_record(headers: dict[str, str], block: bytes) -> bytes:
    lines = ["WARC/1.0", *(f"{k}: {v}" for k, v in headers.items())]
    if "Content-Length" not in headers:
        lines.append(f"Content-Length: {len(block)}")
    return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8") + block + b"\r\n\r\n"


MALFORMED_WARC_RECORD = b"WARC/1.0\r\nWARC-Type: response\r\nContent-Length: oops\r\n\r\nxxxx\r\n\r\n"


def warc_records(
    count: int = 3,
    *,
    malformed_at: int | None = None,
    page: bytes = PAGE,
) -> list[bytes]:
    """A warcinfo record followed by HTML responses; one may be malformed."""
    records = []
    for i in range(count):
        if i == malformed_at:
            records.append(MALFORMED_WARC_RECORD)
        elif i == 0:
            records.append(
                warc_record(
                    {
                        "WARC-Type": "warcinfo",
                        "WARC-Date": WARC_DATE,
                        "WARC-Record-ID": "<urn:uuid:00000000-0000-0000-0000-000000000000>",
                        "Content-Type": "application/warc-fields",
                    },
                    b"software: fixture\r\nformat: WARC File Format 1.0\r\n",
                )
            )
        else:
            records.append(
                warc_record(
                    {
                        "WARC-Type": "response",
                        "WARC-Target-URI": f"http://example.com/page{i}",
                        "WARC-Date": WARC_DATE,
                        "WARC-Record-ID": f"<urn:uuid:00000000-0000-0000-0000-{i:012d}>",
                        "Content-Type": "application/http; msgtype=response",
                    },
                    http_response(page),
                )
            )
    return records


def arc_records(count: int = 2) -> list[bytes]:
    """A filedesc header record followed by HTTP captures."""
    desc = b"1 0 Fixture\nURL IP-address Archive-date Content-type Archive-length\n"
    records = [
        f"filedesc://sample.arc 0.0.0.0 {ARC_DATE} text/plain {len(desc)}\n".encode("ascii")
        + desc
        + b"\n"
    ]
    for i in range(1, count):
        block = http_response()
        line = f"http://example.com/arc{i} 93.184.216.34 {ARC_DATE} text/html {len(block)}\n"
        records.append(line.encode("ascii") + block + b"\n")
    return records


def encode_container(records: list[bytes], *, gz: bool = True) -> bytes:
    if not gz:
        return b"".join(records)
    return b"".join(gzip.compress(record, mtime=0) for record in records)


@pytest.fixture
def warc_bytes():
    def _build(
        count: int = 3,
        *,
        malformed_at: int | None = None,
        gz: bool = True,
        page: bytes = PAGE,
    ) -> bytes:
        return encode_container(warc_records(count, malformed_at=malformed_at, page=page), gz=gz)

    return _build


@pytest.fixture
def arc_bytes():
    def _build(count: int = 2, *, gz: bool = True) -> bytes:
        return encode_container(arc_records(count), gz=gz)

    return _build


@pytest.fixture
def make_warc(tmp_path: Path):
    """Write a WARC container under ``tmp_path/input`` and return its path."""

    def _make(
        name: str = "sample.warc.gz",
        *,
        count: int = 3,
        malformed_at: int | None = None,
        directory: Path | None = None,
        page: bytes = PAGE,
    ) -> Path:
        target_dir = directory or tmp_path / "input"
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / name
        data = encode_container(
            warc_records(count, malformed_at=malformed_at, page=page),
            gz=name.endswith(".gz"),
        )
        path.write_bytes(data)
        return path

    return _make


@pytest.fixture
def make_arc(tmp_path: Path):
    def _make(name: str = "sample.arc.gz", *, count: int = 2) -> Path:
        target_dir = tmp_path / "input"
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / name
        path.write_bytes(encode_container(arc_records(count), gz=name.endswith(".gz")))
        return path

    return _make


def read_wat(path: Path) -> list[tuple[dict[str, str], bytes]]:
    """Decode a WAT file into (headers, block) pairs, warcinfo included."""
    from watgen.extract.archive import iter_archive_records

    with open(path, "rb") as fp:
        return [(rec.headers, rec.content) for rec in iter_archive_records(fp, path.name)]


@pytest.fixture
def wat_reader():
    return read_wat
