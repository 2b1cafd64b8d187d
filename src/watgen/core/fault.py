# fault.py
# SPDX-License-Identifier: MIT
"""Fault policies at task and job level.

``classify`` decides what a single task does with an error; ``evaluate``
turns the counts of a drained batch into the run's verdict.
"""

from __future__ import annotations

from enum import Enum

__all__ = [
    "ErrorKind",
    "FaultAction",
    "Verdict",
    "classify",
    "evaluate",
    "failure_percent",
]


class ErrorKind(str, Enum):
    """Where in a task's life an error happened."""

    INPUT_OPEN = "input_open"
    OUTPUT_OPEN = "output_open"
    PROCESSING = "processing"
    # Assigned by the driver, never by the task itself.
    TIMEOUT = "timeout"
    WORKER = "worker"


class FaultAction(str, Enum):
    ABORT_TASK = "abort_task"
    SWALLOW = "swallow"


class Verdict(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"


def classify(kind: ErrorKind, soft: bool) -> FaultAction:
    """Return the action a task takes for an error of ``kind``.

    Only processing errors can be swallowed, and only in soft mode. A task
    that cannot open its input or output never starts, whatever the mode.
    """
    if kind is ErrorKind.PROCESSING and soft:
        return FaultAction.SWALLOW
    return FaultAction.ABORT_TASK


def failure_percent(total: int, failed: int) -> float:
    if total <= 0:
        return 0.0
    return failed / total * 100.0


def evaluate(total: int, failed: int, threshold_pct: float = 0.0) -> Verdict:
    """Return the run verdict for ``failed`` out of ``total`` tasks.

    FAIL when at least one task ran and the failed share is strictly above
    ``threshold_pct``. An empty run always passes.
    """
    # Cross-multiplied so 1 of 10 against 10% stays exactly at the limit.
    if total > 0 and failed * 100 > threshold_pct * total:
        return Verdict.FAIL
    return Verdict.PASS
