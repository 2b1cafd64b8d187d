# interfaces.py
# SPDX-License-Identifier: MIT
"""Shared data types and collaborator protocols for the conversion core."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import IO, Any, Protocol, runtime_checkable

__all__ = [
    "InputFile",
    "LogicalRecord",
    "ExtractionPipeline",
    "EncoderHandle",
    "OutputEncoder",
    "StreamOpener",
]


# A logical record is a JSON-ready mapping; one per captured resource.
LogicalRecord = Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class InputFile:
    """One archive container selected for conversion.

    Attributes:
        location (str): Path or ``file://`` URI of the container.
        size (int | None): Size in bytes at enumeration time. Informational;
            the conversion core never reads it.
        pattern (str | None): Glob pattern that produced this entry.
    """

    location: str
    size: int | None = None
    pattern: str | None = None


@runtime_checkable
class ExtractionPipeline(Protocol):
    """Decodes an input stream into a lazy sequence of logical records.

    The returned iterator is consumed exactly once and is not restartable.
    Exhaustion is the end-of-input signal; any exception raised while
    iterating is a processing error for the owning task.
    """

    def open(self, stream: IO[bytes], name: str) -> Iterator[LogicalRecord]:
        ...


class EncoderHandle(Protocol):
    """Write side of an :class:`OutputEncoder` bound to one output stream."""

    def write(self, record: LogicalRecord) -> None:
        ...

    def close(self) -> None:
        """Flush and finalize the container; the stream stays open."""
        ...


@runtime_checkable
class OutputEncoder(Protocol):
    """Serializes logical records into the output container format."""

    def open(self, stream: IO[bytes], name: str) -> EncoderHandle:
        ...


@runtime_checkable
class StreamOpener(Protocol):
    """Acquires the byte streams a task reads from and writes to."""

    def open_input(self, location: str) -> IO[bytes]:
        ...

    def open_output(self, location: str) -> IO[bytes]:
        """Create ``location`` for writing; fail if it already exists."""
        ...
