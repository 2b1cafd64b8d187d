# metadata.py
# SPDX-License-Identifier: MIT
"""Build WAT metadata envelopes from WARC/ARC records.

Each container record becomes one JSON-ready mapping shaped like a WAT
payload: a ``Container`` section locating the record and an ``Envelope``
section holding header metadata plus whatever could be learned from the
payload (HTTP message headers, WARC fields, HTML title/metas/links).
"""

from __future__ import annotations

import base64
import hashlib
import re
from collections.abc import Iterator
from html.parser import HTMLParser
from typing import IO, Any

from ..core.interfaces import LogicalRecord
from ..core.log import get_logger
from .archive import FORMAT_ARC, ArchiveRecord, iter_archive_records

log = get_logger(__name__)

__all__ = [
    "WatExtractionPipeline",
    "build_envelope",
    "block_digest",
]

_HTTP_STATUS_RX = re.compile(r"^(HTTP/\d(?:\.\d)?)\s+(\d{3})(?:\s+(.*))?$")
_HTTP_REQUEST_RX = re.compile(r"^([A-Z]+)\s+(\S+)\s+(HTTP/\d(?:\.\d)?)$")
_CHARSET_RX = re.compile(r"charset\s*=\s*[\"']?([\w.:-]+)", re.IGNORECASE)
_HTML_TYPES = ("text/html", "application/xhtml+xml")
_DEFAULT_MAX_HTML_BYTES = 5 * 1024 * 1024
_MAX_LINKS = 10_000


def block_digest(data: bytes) -> str:
    """Return a ``sha1:<base32>`` digest, the form WARC files use."""
    return "sha1:" + base64.b32encode(hashlib.sha1(data).digest()).decode("ascii")


class _HtmlMetadataParser(HTMLParser):
    """Collect title, meta tags, head links and body links from a page."""

    def __init__(self, max_links: int = _MAX_LINKS) -> None:
        super().__init__(convert_charrefs=True)
        self.max_links = max_links
        self.title: str | None = None
        self.base: str | None = None
        self.metas: list[dict[str, str]] = []
        self.head_links: list[dict[str, str]] = []
        self.links: list[dict[str, str]] = []
        self._in_title = False
        self._title_parts: list[str] = []
        self._anchor: dict[str, str] | None = None
        self._anchor_text: list[str] = []

    def _add_link(self, entry: dict[str, str]) -> None:
        if len(self.links) < self.max_links:
            self.links.append(entry)

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        at = {k.lower(): v for k, v in attrs if v is not None}
        tag = tag.lower()
        if tag == "title":
            self._in_title = True
        elif tag == "base" and at.get("href"):
            self.base = at["href"]
        elif tag == "meta":
            meta = {k: v for k, v in at.items() if k in {"name", "property", "http-equiv", "content", "charset"}}
            if meta:
                self.metas.append(meta)
        elif tag == "link" and at.get("href"):
            entry = {"path": "LINK@/href", "url": at["href"]}
            if at.get("rel"):
                entry["rel"] = at["rel"]
            self.head_links.append(entry)
        elif tag in {"a", "area"} and at.get("href"):
            self._anchor = {"path": f"{tag.upper()}@/href", "url": at["href"]}
            self._anchor_text = []
            if tag == "area":
                self._add_link(self._anchor)
                self._anchor = None
        elif tag in {"img", "script", "iframe", "embed", "source"} and at.get("src"):
            self._add_link({"path": f"{tag.upper()}@/src", "url": at["src"]})
        elif tag == "form" and at.get("action"):
            self._add_link({"path": "FORM@/action", "url": at["action"]})

    def handle_endtag(self, tag: str) -> None:
        tag = tag.lower()
        if tag == "title" and self._in_title:
            self._in_title = False
            if self.title is None:
                self.title = " ".join("".join(self._title_parts).split())
        elif tag == "a" and self._anchor is not None:
            text = " ".join("".join(self._anchor_text).split())
            if text:
                self._anchor["text"] = text
            self._add_link(self._anchor)
            self._anchor = None

    def handle_data(self, data: str) -> None:
        if self._in_title:
            self._title_parts.append(data)
        if self._anchor is not None:
            self._anchor_text.append(data)

    def as_dict(self) -> dict[str, Any]:
        if self._anchor is not None:
            self._add_link(self._anchor)
            self._anchor = None
        head: dict[str, Any] = {}
        if self.title is not None:
            head["Title"] = self.title
        if self.base:
            head["Base"] = self.base
        if self.metas:
            head["Metas"] = self.metas
        if self.head_links:
            head["Link"] = self.head_links
        out: dict[str, Any] = {"Head": head}
        if self.links:
            out["Links"] = self.links
        return out


def _split_message(content: bytes) -> tuple[bytes, bytes] | None:
    for sep in (b"\r\n\r\n", b"\n\n"):
        idx = content.find(sep)
        if idx >= 0:
            return content[:idx], content[idx + len(sep) :]
    return None


def _parse_header_lines(lines: list[str]) -> dict[str, str]:
    headers: dict[str, str] = {}
    last: str | None = None
    for line in lines:
        if not line:
            continue
        if line[:1] in (" ", "\t") and last is not None:
            headers[last] = f"{headers[last]} {line.strip()}"
            continue
        name, sep, value = line.partition(":")
        if not sep:
            continue
        last = name.strip()
        if last in headers:
            headers[last] = f"{headers[last]}, {value.strip()}"
        else:
            headers[last] = value.strip()
    return headers


def _header_lookup(headers: dict[str, str], name: str) -> str | None:
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


def _html_metadata(body: bytes, content_type: str, max_bytes: int, target: str) -> dict[str, Any]:
    """Best-effort HTML summary; markup the parser rejects keeps what was read."""
    match = _CHARSET_RX.search(content_type or "")
    charset = match.group(1) if match else "utf-8"
    try:
        text = body[:max_bytes].decode(charset, "replace")
    except LookupError:
        text = body[:max_bytes].decode("utf-8", "replace")
    parser = _HtmlMetadataParser()
    try:
        parser.feed(text)
        parser.close()
    except Exception as exc:  # noqa: BLE001
        log.debug("HTML parse stopped early for %s: %s", target or "<unknown>", exc)
    return parser.as_dict()


def _http_metadata(
    content: bytes,
    *,
    parse_html: bool,
    max_html_bytes: int,
    target: str = "",
) -> tuple[str, dict[str, Any]] | None:
    """Parse an HTTP message; return ``(metadata key, metadata)`` or None."""
    split = _split_message(content)
    if split is None:
        return None
    head, body = split
    lines = head.decode("iso-8859-1").splitlines()
    if not lines:
        return None
    first = lines[0].strip()
    headers = _parse_header_lines(lines[1:])
    entity = {
        "Headers-Length": str(len(content) - len(body)),
        "Headers": headers,
        "Entity-Length": str(len(body)),
        "Entity-Digest": block_digest(body),
        "Entity-Trailing-Slop-Length": "0",
    }
    status = _HTTP_STATUS_RX.match(first)
    if status:
        meta: dict[str, Any] = {
            "Response-Message": {
                "Version": status.group(1),
                "Status": status.group(2),
                "Reason": (status.group(3) or "").strip(),
            },
            **entity,
        }
        ctype = _header_lookup(headers, "Content-Type") or ""
        if parse_html and ctype.split(";")[0].strip().lower() in _HTML_TYPES:
            meta["HTML-Metadata"] = _html_metadata(body, ctype, max_html_bytes, target)
        return "HTTP-Response-Metadata", meta
    request = _HTTP_REQUEST_RX.match(first)
    if request:
        meta = {
            "Request-Message": {
                "Method": request.group(1),
                "Path": request.group(2),
                "Version": request.group(3),
            },
            **entity,
        }
        return "HTTP-Request-Metadata", meta
    return None


def _warc_fields(content: bytes) -> dict[str, str]:
    return _parse_header_lines(content.decode("utf-8", "replace").splitlines())


def _payload_metadata(
    record: ArchiveRecord,
    *,
    parse_html: bool,
    max_html_bytes: int,
) -> dict[str, Any]:
    if record.format == FORMAT_ARC:
        url = record.headers.get("URL", "")
        if url.startswith("filedesc://"):
            return {
                "Actual-Content-Type": "application/arc-file-header",
                "ARC-Filedesc": {"Version": record.version} if record.version else {},
            }
        ctype = record.headers.get("Content-type", "")
        payload: dict[str, Any] = {"Actual-Content-Type": ctype}
        if url.startswith(("http:", "https:")):
            parsed = _http_metadata(
                record.content,
                parse_html=parse_html,
                max_html_bytes=max_html_bytes,
                target=url,
            )
            if parsed is not None:
                key, meta = parsed
                payload["Actual-Content-Type"] = "application/http; msgtype=response"
                payload[key] = meta
        return payload

    ctype = record.headers.get("Content-Type", "")
    base_type = ctype.split(";")[0].strip().lower()
    payload = {"Actual-Content-Type": ctype}
    if base_type == "application/http" and record.content:
        parsed = _http_metadata(
            record.content,
            parse_html=parse_html,
            max_html_bytes=max_html_bytes,
            target=record.headers.get("WARC-Target-URI", ""),
        )
        if parsed is not None:
            key, meta = parsed
            payload[key] = meta
        else:
            payload["Trailing-Slop-Length"] = "0"
    elif base_type == "application/warc-fields":
        payload["WARC-Fields"] = _warc_fields(record.content)
    return payload


def build_envelope(
    record: ArchiveRecord,
    filename: str,
    *,
    parse_html: bool = True,
    max_html_bytes: int = _DEFAULT_MAX_HTML_BYTES,
) -> LogicalRecord:
    """Summarize one container record as a WAT metadata envelope."""
    envelope: dict[str, Any] = {
        "Format": record.format,
        f"{record.format}-Header-Length": str(record.header_length),
        "Block-Digest": block_digest(record.content),
        "Actual-Content-Length": str(len(record.content)),
    }
    if record.format == FORMAT_ARC:
        envelope["ARC-Header-Metadata"] = {
            "Target-URI": record.headers.get("URL", ""),
            "IP-Address": record.headers.get("IP-address", ""),
            "Date": record.headers.get("Archive-date", ""),
            "Content-Type": record.headers.get("Content-type", ""),
            "Content-Length": record.headers.get("Archive-length", ""),
        }
    else:
        envelope["WARC-Header-Metadata"] = dict(record.headers)
    envelope["Payload-Metadata"] = _payload_metadata(
        record,
        parse_html=parse_html,
        max_html_bytes=max_html_bytes,
    )
    return {
        "Container": {
            "Filename": filename,
            "Compressed": record.compressed,
            "Offset": str(record.offset),
        },
        "Envelope": envelope,
    }


class WatExtractionPipeline:
    """Default extraction pipeline: WARC/ARC records to WAT envelopes.

    Holds only settings, so one instance can be shared by every task and
    pickled into process workers.
    """

    def __init__(
        self,
        *,
        parse_html: bool = True,
        max_html_bytes: int = _DEFAULT_MAX_HTML_BYTES,
    ) -> None:
        self.parse_html = parse_html
        self.max_html_bytes = max_html_bytes

    def open(self, stream: IO[bytes], name: str) -> Iterator[LogicalRecord]:
        count = 0
        for record in iter_archive_records(stream, name):
            yield build_envelope(
                record,
                name,
                parse_html=self.parse_html,
                max_html_bytes=self.max_html_bytes,
            )
            count += 1
        log.debug("Extracted %d envelope(s) from %s", count, name)
