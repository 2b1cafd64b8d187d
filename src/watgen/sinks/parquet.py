# parquet.py
# SPDX-License-Identifier: MIT
"""Parquet sink for the task manifest."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional

import pyarrow as pa
import pyarrow.parquet as pq

from ..core.log import get_logger

log = get_logger(__name__)

MANIFEST_SCHEMA = pa.schema(
    [
        ("input", pa.string()),
        ("output", pa.string()),
        ("status", pa.string()),
        ("error_kind", pa.string()),
        ("error", pa.string()),
        ("records", pa.int64()),
        ("partial", pa.bool_()),
        ("attempt", pa.int32()),
        ("elapsed_s", pa.float64()),
    ]
)


class ParquetManifestSink:
    """Buffer outcome rows and write them as a single Parquet file.

    Rows are flushed in row groups of ``row_group_size`` when set, else all
    at once on close.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        compression: str = "snappy",
        row_group_size: Optional[int] = None,
    ) -> None:
        self._target = Path(path)
        self._compression = compression or "snappy"
        self._row_group_size = row_group_size
        self._buffer: list[dict[str, Any]] = []
        self._writer: Optional[pq.ParquetWriter] = None
        self._closed = False

    def open(self) -> None:
        self._target.parent.mkdir(parents=True, exist_ok=True)
        if self._target.exists():
            self._target.unlink()
        self._buffer.clear()
        self._writer = None
        self._closed = False

    def write(self, row: Mapping[str, Any]) -> None:
        if self._closed:
            log.warning("Write called on closed ParquetManifestSink; ignoring row.")
            return
        self._buffer.append({name: row.get(name) for name in MANIFEST_SCHEMA.names})
        if self._row_group_size and len(self._buffer) >= self._row_group_size:
            self._flush_buffer()

    def close(self) -> None:
        if self._closed:
            return
        try:
            if self._buffer or self._writer is None:
                self._flush_buffer(force=True)
        finally:
            if self._writer is not None:
                try:
                    self._writer.close()
                finally:
                    self._writer = None
            self._closed = True

    def __enter__(self) -> ParquetManifestSink:
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _flush_buffer(self, *, force: bool = False) -> None:
        if not self._buffer and not force:
            return
        table = pa.Table.from_pylist(self._buffer, schema=MANIFEST_SCHEMA)
        if self._writer is None:
            self._writer = pq.ParquetWriter(
                self._target,
                MANIFEST_SCHEMA,
                compression=self._compression,
            )
        self._writer.write_table(table, row_group_size=self._row_group_size)
        self._buffer.clear()


__all__ = ["ParquetManifestSink", "MANIFEST_SCHEMA"]
