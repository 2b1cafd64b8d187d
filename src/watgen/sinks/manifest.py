# manifest.py
# SPDX-License-Identifier: MIT
"""Sinks for the per-task outcome manifest written after a run."""
from __future__ import annotations

import gzip
import json
import os
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Self, TextIO

from ..core.log import get_logger
from ..core.task import TaskOutcome

log = get_logger(__name__)


class _BaseJSONLSink:
    """Shared JSONL sink logic: write to a temp file, then move into place."""

    def __init__(self, out_path: str | os.PathLike[str]):
        self._path = Path(out_path)
        self._fp: TextIO | None = None
        self._tmp_path: Path | None = None

    def open(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._tmp_path = self._path.parent / f"{self._path.name}.tmp"
        self._fp = self._open_handle(self._tmp_path)

    def write(self, record: Mapping[str, Any]) -> None:
        """Write a single JSON record as a compact line."""
        assert self._fp is not None
        self._fp.write(json.dumps(dict(record), ensure_ascii=False, separators=(",", ":")) + "\n")

    def close(self) -> None:
        """Close any open handle and move the temp file into place."""
        if not self._fp:
            return
        try:
            self._fp.close()
        finally:
            self._fp = None
        if self._tmp_path:
            os.replace(self._tmp_path, self._path)
            self._tmp_path = None

    def __enter__(self) -> Self:
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _open_handle(self, path: Path):
        raise NotImplementedError


class JSONLSink(_BaseJSONLSink):
    """One outcome per line, plain text."""

    def _open_handle(self, path: Path):
        return open(path, "w", encoding="utf-8", newline="")


class GzipJSONLSink(_BaseJSONLSink):
    """One outcome per line, gzip-compressed."""

    def _open_handle(self, path: Path):
        return gzip.open(path, "wt", encoding="utf-8", newline="")


def write_manifest(path: str | os.PathLike[str], outcomes: Iterable[TaskOutcome]) -> int:
    """Write one row per task outcome; the format follows the file suffix.

    ``.parquet`` needs the ``parquet`` extra (pyarrow). Anything else is
    written as JSON Lines, gzip-compressed when the name ends in ``.gz``.

    Returns:
        int: Number of rows written.
    """
    target = Path(path)
    rows = [outcome.as_dict() for outcome in outcomes]
    name = target.name.lower()
    if name.endswith(".parquet"):
        from .parquet import ParquetManifestSink

        sink: Any = ParquetManifestSink(target)
    elif name.endswith(".gz"):
        sink = GzipJSONLSink(target)
    else:
        sink = JSONLSink(target)
    with sink:
        for row in rows:
            sink.write(row)
    log.debug("Manifest %s: %d rows", target, len(rows))
    return len(rows)


__all__ = ["JSONLSink", "GzipJSONLSink", "write_manifest"]
