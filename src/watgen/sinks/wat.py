# wat.py
# SPDX-License-Identifier: MIT
"""WAT output encoder.

Writes a ``warcinfo`` record followed by one WARC ``metadata`` record per
envelope. Every record is compressed as its own gzip member so the output
can be read record by record like any ``.warc.gz``.
"""

from __future__ import annotations

import gzip
import json
import uuid
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import IO, Any

from ..core.interfaces import LogicalRecord
from ..core.log import get_logger

log = get_logger(__name__)

__all__ = ["WatEncoder", "WatWriter", "format_warc_record"]

_CRLF = "\r\n"
WARC_VERSION = "WARC/1.0"


def _warc_date(now: datetime | None = None) -> str:
    moment = now or datetime.now(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")


def _new_record_id() -> str:
    return f"<urn:uuid:{uuid.uuid4()}>"


def format_warc_record(headers: Mapping[str, str], block: bytes) -> bytes:
    """Serialize one WARC record; ``Content-Length`` is filled in here."""
    lines = [WARC_VERSION]
    for name, value in headers.items():
        if name.lower() == "content-length":
            continue
        lines.append(f"{name}: {value}")
    lines.append(f"Content-Length: {len(block)}")
    head = (_CRLF.join(lines) + _CRLF + _CRLF).encode("utf-8")
    return head + block + (_CRLF + _CRLF).encode("ascii")


def _source_headers(record: LogicalRecord) -> Mapping[str, Any]:
    envelope = record.get("Envelope") or {}
    return envelope.get("WARC-Header-Metadata") or envelope.get("ARC-Header-Metadata") or {}


class WatWriter:
    """Encoder handle bound to one output stream.

    ``close`` flushes but leaves the stream open; the task owns the stream.
    """

    def __init__(
        self,
        stream: IO[bytes],
        name: str,
        *,
        software: str,
        record_id: Callable[[], str],
        clock: Callable[[], datetime | None],
    ) -> None:
        self._stream = stream
        self.name = name
        self._software = software
        self._record_id = record_id
        self._clock = clock
        self._closed = False
        self.records_written = 0
        self._write_warcinfo()

    def _emit(self, headers: Mapping[str, str], block: bytes) -> None:
        self._stream.write(gzip.compress(format_warc_record(headers, block), mtime=0))

    def _write_warcinfo(self) -> None:
        fields = _CRLF.join(
            [
                f"software: {self._software}",
                "format: WARC File Format 1.0",
                "description: WAT metadata extracted from web archive records",
            ]
        ) + _CRLF
        self._emit(
            {
                "WARC-Type": "warcinfo",
                "WARC-Date": _warc_date(self._clock()),
                "WARC-Filename": self.name,
                "WARC-Record-ID": self._record_id(),
                "Content-Type": "application/warc-fields",
            },
            fields.encode("utf-8"),
        )

    def write(self, record: LogicalRecord) -> None:
        if self._closed:
            raise ValueError(f"Write to closed WAT writer: {self.name}")
        source = _source_headers(record)
        target = source.get("WARC-Target-URI") or source.get("Target-URI")
        if not target:
            container = record.get("Container") or {}
            target = container.get("Filename") or self.name
        headers = {
            "WARC-Type": "metadata",
            "WARC-Target-URI": str(target),
            "WARC-Date": _warc_date(self._clock()),
            "WARC-Record-ID": self._record_id(),
        }
        refers_to = source.get("WARC-Record-ID")
        if refers_to:
            headers["WARC-Refers-To"] = str(refers_to)
        headers["Content-Type"] = "application/json"
        block = json.dumps(record, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
        self._emit(headers, block)
        self.records_written += 1

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        flush = getattr(self._stream, "flush", None)
        if flush is not None:
            flush()
        log.debug("WAT writer %s closed after %d records", self.name, self.records_written)


class WatEncoder:
    """Default output encoder producing gzip-per-record WAT files."""

    def __init__(
        self,
        *,
        software: str | None = None,
        record_id: Callable[[], str] | None = None,
        clock: Callable[[], datetime | None] | None = None,
    ) -> None:
        self.software = software
        self.record_id = record_id
        self.clock = clock

    def open(self, stream: IO[bytes], name: str) -> WatWriter:
        software = self.software
        if software is None:
            from .. import __version__

            software = f"watgen/{__version__}"
        return WatWriter(
            stream,
            name,
            software=software,
            record_id=self.record_id or _new_record_id,
            clock=self.clock or (lambda: None),
        )
