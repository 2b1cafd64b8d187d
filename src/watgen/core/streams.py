# streams.py
# SPDX-License-Identifier: MIT
"""Local filesystem stream opener with create-only outputs."""

from __future__ import annotations

import os
from pathlib import Path
from typing import IO
from urllib.parse import unquote, urlparse

from .log import get_logger

log = get_logger(__name__)

__all__ = ["LocalStreamOpener", "to_local_path", "close_quietly"]

_BUFFER_SIZE = 1024 * 1024


def to_local_path(location: str | os.PathLike[str]) -> Path:
    """Resolve a plain path or ``file://`` URI to a local :class:`Path`.

    Raises:
        ValueError: If the URI uses a scheme other than ``file``.
    """
    raw = os.fspath(location)
    if "://" in raw:
        parsed = urlparse(raw)
        if parsed.scheme != "file":
            raise ValueError(f"Unsupported location scheme: {parsed.scheme!r} in {raw}")
        return Path(unquote(parsed.path))
    return Path(raw)


def close_quietly(stream: IO[bytes] | None, label: str = "") -> None:
    """Close a stream, logging rather than raising on failure."""
    if stream is None:
        return
    try:
        stream.close()
    except Exception as exc:  # noqa: BLE001
        log.debug("Closing %s failed: %s", label or stream, exc)


class LocalStreamOpener:
    """Open task streams on the local filesystem.

    Outputs are opened with ``O_EXCL`` semantics (mode ``xb``): when two
    attempts race for the same output path exactly one create succeeds and
    the other gets :class:`FileExistsError`. Nothing here ever truncates or
    removes an existing file.
    """

    def __init__(self, *, buffer_size: int = _BUFFER_SIZE, make_parents: bool = True) -> None:
        self.buffer_size = buffer_size
        self.make_parents = make_parents

    def open_input(self, location: str) -> IO[bytes]:
        return open(to_local_path(location), "rb", buffering=self.buffer_size)

    def open_output(self, location: str) -> IO[bytes]:
        path = to_local_path(location)
        if self.make_parents:
            path.parent.mkdir(parents=True, exist_ok=True)
        return open(path, "xb", buffering=self.buffer_size)
