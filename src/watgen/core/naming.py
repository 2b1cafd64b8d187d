# naming.py
# SPDX-License-Identifier: MIT
"""Output naming for WAT derivatives."""

from __future__ import annotations

import os
from pathlib import Path, PurePosixPath
from urllib.parse import unquote, urlparse

__all__ = [
    "ARCHIVE_SUFFIXES",
    "WAT_SUFFIX",
    "input_basename",
    "build_output_basename",
    "build_output_location",
]

# Checked in order; the first match is stripped.
ARCHIVE_SUFFIXES: tuple[str, ...] = (".warc.gz", ".arc.gz")
WAT_SUFFIX = ".wat.gz"


def input_basename(location: str | os.PathLike[str]) -> str:
    """Return the final path component of a local path or ``file://`` URI."""
    raw = os.fspath(location)
    if "://" in raw:
        raw = unquote(urlparse(raw).path)
    name = PurePosixPath(raw.replace("\\", "/").rstrip("/")).name
    return name or raw


def build_output_basename(location: str | os.PathLike[str]) -> str:
    """Map an input container name to its WAT file name.

    A recognized archive suffix is replaced by ``.wat.gz``; any other name
    keeps its full text and gains the suffix.

    Examples:
        >>> build_output_basename("crawl-0001.warc.gz")
        'crawl-0001.wat.gz'
        >>> build_output_basename("crawl-0002.arc")
        'crawl-0002.arc.wat.gz'
    """
    name = input_basename(location)
    for suffix in ARCHIVE_SUFFIXES:
        if name.endswith(suffix) and len(name) > len(suffix):
            return name[: -len(suffix)] + WAT_SUFFIX
    return name + WAT_SUFFIX


def build_output_location(
    output_dir: str | os.PathLike[str],
    location: str | os.PathLike[str],
) -> Path:
    """Return ``<output_dir>/<basename>`` for an input location."""
    return Path(output_dir) / build_output_basename(location)
