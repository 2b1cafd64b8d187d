# task.py
# SPDX-License-Identifier: MIT
"""Single-file conversion task.

A task binds one input container to one output attempt. It walks
``OPENING_INPUT -> OPENING_OUTPUT -> PROCESSING`` and always ends in
``SUCCEEDED`` or ``FAILED``; errors are folded into the returned
:class:`TaskOutcome` instead of being raised. There is no retry here, a
retry is a new task.
"""

from __future__ import annotations

import time
from contextlib import ExitStack
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from .config import RunConfig
from .fault import ErrorKind, FaultAction, classify
from .interfaces import (
    EncoderHandle,
    ExtractionPipeline,
    InputFile,
    OutputEncoder,
    StreamOpener,
)
from .log import get_logger
from .naming import build_output_location, input_basename
from .streams import LocalStreamOpener, close_quietly

log = get_logger(__name__)

__all__ = ["TaskState", "TaskStatus", "TaskOutcome", "run_file_task"]


class TaskState(str, Enum):
    OPENING_INPUT = "opening_input"
    OPENING_OUTPUT = "opening_output"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class TaskStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class TaskOutcome:
    """Final result of one task attempt.

    ``partial`` is set when soft mode swallowed a processing error: the task
    counts as succeeded but its output holds only the records written before
    the error. Failed tasks may also leave a partial file behind.
    """

    input: str
    output: str | None
    status: TaskStatus
    error_kind: ErrorKind | None = None
    error: str | None = None
    records: int = 0
    partial: bool = False
    attempt: int = 0
    elapsed_s: float = 0.0

    @property
    def failed(self) -> bool:
        return self.status is TaskStatus.FAILED

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["error_kind"] = self.error_kind.value if self.error_kind else None
        return data

    @classmethod
    def failure(
        cls,
        input_file: InputFile,
        kind: ErrorKind,
        error: BaseException | str,
        *,
        output: str | None = None,
        attempt: int = 0,
        elapsed_s: float = 0.0,
    ) -> TaskOutcome:
        """Build a FAILED outcome for errors caught outside the task body."""
        return cls(
            input=input_file.location,
            output=output,
            status=TaskStatus.FAILED,
            error_kind=kind,
            error=_describe(error),
            attempt=attempt,
            elapsed_s=elapsed_s,
        )


def _describe(error: BaseException | str) -> str:
    if isinstance(error, BaseException):
        text = str(error)
        return f"{type(error).__name__}: {text}" if text else type(error).__name__
    return str(error)


def _default_pipeline() -> ExtractionPipeline:
    from ..extract.metadata import WatExtractionPipeline

    return WatExtractionPipeline()


def _default_encoder() -> OutputEncoder:
    from ..sinks.wat import WatEncoder

    return WatEncoder()


_ERROR_MESSAGES = {
    ErrorKind.INPUT_OPEN: "Error opening input file to process",
    ErrorKind.OUTPUT_OPEN: "Error opening output file",
    ErrorKind.PROCESSING: "Error processing file",
}


def run_file_task(
    input_file: InputFile,
    config: RunConfig,
    *,
    opener: StreamOpener | None = None,
    pipeline: ExtractionPipeline | None = None,
    encoder: OutputEncoder | None = None,
    attempt: int = 0,
) -> TaskOutcome:
    """Convert one input container into its WAT file.

    Args:
        input_file (InputFile): Container to convert.
        config (RunConfig): Read-only run settings (output directory and
            soft mode are used here).
        opener (StreamOpener | None): Stream source; local files by default.
        pipeline (ExtractionPipeline | None): Record extractor; the WAT
            metadata pipeline by default.
        encoder (OutputEncoder | None): Output writer; the WAT encoder by
            default.
        attempt (int): Attempt number, ``0`` for the first dispatch.

    Returns:
        TaskOutcome: Never raises for input, output, or processing errors.
    """
    opener = opener or LocalStreamOpener()
    pipeline = pipeline or _default_pipeline()
    encoder = encoder or _default_encoder()

    path = input_file.location
    started = time.monotonic()
    state = TaskState.OPENING_INPUT
    output_location: str | None = None
    handle: EncoderHandle | None = None
    records = 0

    def _finish(
        status: TaskStatus,
        kind: ErrorKind | None = None,
        exc: BaseException | None = None,
        *,
        partial: bool = False,
    ) -> TaskOutcome:
        final = TaskState.SUCCEEDED if status is TaskStatus.SUCCEEDED else TaskState.FAILED
        log.debug("Task %s: %s -> %s", path, state.value, final.value)
        return TaskOutcome(
            input=path,
            output=output_location,
            status=status,
            error_kind=kind,
            error=_describe(exc) if exc is not None else None,
            records=records,
            partial=partial,
            attempt=attempt,
            elapsed_s=time.monotonic() - started,
        )

    def _on_error(kind: ErrorKind, exc: BaseException) -> TaskOutcome:
        target = output_location if kind is ErrorKind.OUTPUT_OPEN else path
        if classify(kind, config.soft) is FaultAction.SWALLOW:
            log.warning(
                "%s (soft mode, keeping %d records): %s: %s",
                _ERROR_MESSAGES[kind],
                records,
                target,
                exc,
            )
            _flush_partial(handle, path)
            return _finish(TaskStatus.SUCCEEDED, kind, exc, partial=True)
        log.error("%s: %s: %s", _ERROR_MESSAGES[kind], target, exc)
        return _finish(TaskStatus.FAILED, kind, exc)

    log.info("Start: %s", path)
    try:
        with ExitStack() as stack:
            try:
                in_stream = opener.open_input(path)
            except Exception as exc:  # noqa: BLE001
                return _on_error(ErrorKind.INPUT_OPEN, exc)
            stack.callback(close_quietly, in_stream, path)

            state = TaskState.OPENING_OUTPUT
            try:
                output_location = str(build_output_location(config.output_dir, path))
                out_stream = opener.open_output(output_location)
            except Exception as exc:  # noqa: BLE001
                return _on_error(ErrorKind.OUTPUT_OPEN, exc)
            # Closed as-is on failure; a partial file stays on disk.
            stack.callback(close_quietly, out_stream, output_location)

            state = TaskState.PROCESSING
            try:
                handle = encoder.open(out_stream, input_basename(output_location))
                for record in pipeline.open(in_stream, input_basename(path)):
                    handle.write(record)
                    records += 1
                handle.close()
                handle = None
                out_stream.close()
            except Exception as exc:  # noqa: BLE001
                return _on_error(ErrorKind.PROCESSING, exc)

            log.debug("Task %s: %d records -> %s", path, records, output_location)
            return _finish(TaskStatus.SUCCEEDED)
    finally:
        log.info("Finish: %s", path)


def _flush_partial(handle: EncoderHandle | None, label: str) -> None:
    """Best-effort flush of an encoder after a swallowed processing error."""
    if handle is None:
        return
    try:
        handle.close()
    except Exception as exc:  # noqa: BLE001
        log.debug("Flushing partial output for %s failed: %s", label, exc)
