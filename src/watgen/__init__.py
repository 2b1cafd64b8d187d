# __init__.py
# SPDX-License-Identifier: MIT
"""
Top-level package exports for :mod:`watgen`.

watgen converts web-archive containers (``.warc.gz`` / ``.arc.gz``) into
WAT metadata files, one independent task per input file.

Public surface
--------------
Most callers need only:

- :class:`RunConfig` (or :func:`load_config_from_path`) to describe a run.
- :func:`run_batch` to resolve input patterns, convert every file, and get
  a :class:`RunResult` with the PASS/FAIL verdict.

Fault tolerance works on two levels. A single file either succeeds or fails
on its own (soft mode turns mid-file errors into partial successes), and the
batch fails only when the share of failed tasks exceeds ``fail_pct``.

The extraction pipeline, output encoder, and stream opener are pluggable;
see :mod:`watgen.core.interfaces`.

Examples:
    Convert a directory of crawl files::

        >>> from watgen import RunConfig, run_batch
        >>> cfg = RunConfig(output_dir="out/wat", soft=True, fail_pct=5)
        >>> result = run_batch(["crawl/*.warc.gz"], cfg)
        >>> result.verdict
        <Verdict.PASS: 'PASS'>
"""


from __future__ import annotations

# ---------------------------------------------------------------------------
# Package version
# ---------------------------------------------------------------------------
try:
    from importlib.metadata import version as _pkg_version

    __version__ = _pkg_version("watgen")
except Exception:  # PackageNotFoundError or runtime env oddities
    __version__ = "0.0.0+unknown"


from .core.config import ConfigError, RunConfig, load_config_from_path
from .core.driver import BatchDriver, RunResult, resolve_inputs, run_batch
from .core.fault import ErrorKind, FaultAction, Verdict, classify, evaluate
from .core.interfaces import InputFile
from .core.log import configure_logging, get_logger
from .core.task import TaskOutcome, TaskStatus, run_file_task

PRIMARY_API = [
    "RunConfig",
    "load_config_from_path",
    "run_batch",
    "RunResult",
    "Verdict",
]

__all__ = [
    *PRIMARY_API,
    "__version__",
    "BatchDriver",
    "ConfigError",
    "ErrorKind",
    "FaultAction",
    "InputFile",
    "TaskOutcome",
    "TaskStatus",
    "classify",
    "configure_logging",
    "evaluate",
    "get_logger",
    "resolve_inputs",
    "run_file_task",
]
