# driver.py
# SPDX-License-Identifier: MIT
"""Batch driver: enumerate inputs, dispatch one task per file, judge the run."""

from __future__ import annotations

import functools
import glob
import pickle
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .concurrency import Executor, resolve_executor_config
from .config import ConfigError, RunConfig
from .fault import ErrorKind, Verdict, evaluate, failure_percent
from .interfaces import ExtractionPipeline, InputFile, OutputEncoder, StreamOpener
from .log import configure_logging, get_logger
from .naming import build_output_location
from .streams import to_local_path
from .task import TaskOutcome, run_file_task

log = get_logger(__name__)

__all__ = [
    "RunResult",
    "BatchDriver",
    "resolve_inputs",
    "run_batch",
]


@dataclass(frozen=True, slots=True)
class _Dispatch:
    """One attempt at one input; backups carry a higher attempt number."""

    input_file: InputFile
    attempt: int = 0


def _execute_dispatch(
    work: _Dispatch,
    *,
    config: RunConfig,
    opener: StreamOpener | None,
    pipeline: ExtractionPipeline | None,
    encoder: OutputEncoder | None,
) -> TaskOutcome:
    """Top-level so process pool workers can pickle the task callable."""
    return run_file_task(
        work.input_file,
        config,
        opener=opener,
        pipeline=pipeline,
        encoder=encoder,
        attempt=work.attempt,
    )


def _next_attempt(work: _Dispatch) -> _Dispatch:
    return replace(work, attempt=work.attempt + 1)


def _init_worker_logging(level: str) -> None:
    configure_logging(level=level)


@dataclass(slots=True)
class RunResult:
    """Aggregate outcome of a batch.

    ``total_tasks`` counts every dispatched attempt, speculative duplicates
    included.
    """

    total_tasks: int = 0
    failed_tasks: int = 0
    partial_tasks: int = 0
    records: int = 0
    fail_pct_threshold: float = 0.0
    verdict: Verdict = Verdict.PASS
    outcomes: list[TaskOutcome] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.verdict is Verdict.PASS

    @property
    def failed_percent(self) -> float:
        return failure_percent(self.total_tasks, self.failed_tasks)

    def as_dict(self, *, include_outcomes: bool = False) -> dict[str, Any]:
        """Return a stable dict shape for reporting."""
        data: dict[str, Any] = {
            "verdict": self.verdict.value,
            "total_tasks": int(self.total_tasks),
            "failed_tasks": int(self.failed_tasks),
            "partial_tasks": int(self.partial_tasks),
            "records": int(self.records),
            "failed_percent": round(self.failed_percent, 3),
            "fail_pct_threshold": self.fail_pct_threshold,
        }
        if include_outcomes:
            data["outcomes"] = [outcome.as_dict() for outcome in self.outcomes]
        return data


def resolve_inputs(patterns: Iterable[str]) -> list[InputFile]:
    """Expand glob patterns into input files.

    Each pattern is expanded on its own and sorted. Matches are not
    de-duplicated across patterns: a file matched twice is dispatched twice,
    and the second attempt collides on its output. Directories are skipped.
    """
    inputs: list[InputFile] = []
    for pattern in patterns:
        local_pattern = str(to_local_path(pattern))
        matches = sorted(glob.glob(local_pattern, recursive=True))
        if not matches:
            log.info("No matches for input pattern: %s", pattern)
        for match in matches:
            path = Path(match)
            if not path.is_file():
                log.debug("Skipping non-file match %s", match)
                continue
            try:
                size: int | None = path.stat().st_size
            except OSError:
                size = None
            log.info("Add input path: %s", match)
            inputs.append(InputFile(location=match, size=size, pattern=pattern))
    return inputs


class BatchDriver:
    """Run one conversion task per input file and compute the run verdict.

    Tasks share nothing but the read-only :class:`RunConfig`. The only
    cross-task interaction is the output directory, where create-only
    opens make two attempts at the same file collide instead of clobbering
    each other.
    """

    def __init__(
        self,
        config: RunConfig,
        *,
        opener: StreamOpener | None = None,
        pipeline: ExtractionPipeline | None = None,
        encoder: OutputEncoder | None = None,
        executor: Executor | None = None,
    ) -> None:
        config.validate()
        self.config = config
        self.opener = opener
        self.pipeline = pipeline
        self.encoder = encoder
        self._executor = executor
        self.log = get_logger(__name__)

    def _build_executor(self) -> Executor:
        if self._executor is not None:
            return self._executor
        exec_cfg = resolve_executor_config(self.config)
        return Executor(
            exec_cfg,
            initializer=_init_worker_logging if exec_cfg.kind == "process" else None,
            initargs=(self.config.log_level,),
        )

    def _prepare_output_dir(self) -> None:
        out_dir = Path(self.config.output_dir)
        try:
            out_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ConfigError(f"Cannot create output directory {out_dir}: {exc}") from exc

    def run(self, patterns: Sequence[str] | Iterable[str]) -> RunResult:
        """Resolve ``patterns``, run every task, and return the run result.

        Raises:
            ConfigError: When the output directory cannot be prepared. No
                task has been dispatched at that point.
        """
        inputs = resolve_inputs(patterns)
        if not inputs:
            self.log.info("No input files to convert.")
            return RunResult(fail_pct_threshold=self.config.fail_pct)
        return self.run_inputs(inputs)

    def run_inputs(self, inputs: Sequence[InputFile]) -> RunResult:
        """Run tasks for an already resolved input list."""
        cfg = self.config
        result = RunResult(fail_pct_threshold=cfg.fail_pct)
        if not inputs:
            return result
        self._prepare_output_dir()

        executor = self._build_executor()
        task_fn = functools.partial(
            _execute_dispatch,
            config=cfg,
            opener=self.opener,
            pipeline=self.pipeline,
            encoder=self.encoder,
        )
        self.log.info(
            "Dispatching %d task(s): workers=%d kind=%s soft=%s timeout_ms=%d "
            "fail_pct=%s speculative=%s",
            len(inputs),
            executor.cfg.max_workers,
            executor.cfg.kind,
            cfg.soft,
            cfg.task_timeout_ms,
            cfg.fail_pct,
            cfg.speculative,
        )

        def _record(outcome: TaskOutcome) -> None:
            result.outcomes.append(outcome)

        def _on_worker_error(work: _Dispatch, exc: BaseException) -> None:
            self.log.error("Worker failed for %s: %s", work.input_file.location, exc)
            self._log_pickling_hint(executor, exc)
            _record(self._lost_outcome(work, ErrorKind.WORKER, exc))

        def _on_submit_error(work: _Dispatch, exc: BaseException) -> None:
            self.log.error("Failed to submit %s: %s", work.input_file.location, exc)
            self._log_pickling_hint(executor, exc)
            _record(self._lost_outcome(work, ErrorKind.WORKER, exc))

        def _on_timeout(work: _Dispatch, runtime: float) -> None:
            self.log.error(
                "Task timed out after %.1fs (limit %dms): %s",
                runtime,
                cfg.task_timeout_ms,
                work.input_file.location,
            )
            _record(
                self._lost_outcome(
                    work,
                    ErrorKind.TIMEOUT,
                    f"timed out after {runtime:.1f}s",
                    elapsed_s=runtime,
                )
            )

        executor.map_unordered(
            (_Dispatch(input_file=item) for item in inputs),
            task_fn,
            _record,
            fail_fast=False,
            on_error=_on_worker_error,
            on_submit_error=_on_submit_error,
            task_timeout=cfg.task_timeout_s,
            on_timeout=_on_timeout,
            speculate=_next_attempt if cfg.speculative else None,
            speculative_after=cfg.speculative_after_s,
        )

        self._finalize(result)
        if cfg.manifest_path:
            self._write_manifest(result)
        return result

    def _lost_outcome(
        self,
        work: _Dispatch,
        kind: ErrorKind,
        error: BaseException | str,
        *,
        elapsed_s: float = 0.0,
    ) -> TaskOutcome:
        output = str(build_output_location(self.config.output_dir, work.input_file.location))
        return TaskOutcome.failure(
            work.input_file,
            kind,
            error,
            output=output,
            attempt=work.attempt,
            elapsed_s=elapsed_s,
        )

    def _log_pickling_hint(self, executor: Executor, exc: BaseException) -> None:
        if executor.cfg.kind != "process":
            return
        if isinstance(exc, (pickle.PicklingError, TypeError, AttributeError)):
            self.log.warning(
                "Process executor failed to serialize task arguments; "
                "use executor_kind='thread' or make custom pipelines/encoders picklable."
            )

    def _finalize(self, result: RunResult) -> None:
        result.total_tasks = len(result.outcomes)
        result.failed_tasks = sum(1 for o in result.outcomes if o.failed)
        result.partial_tasks = sum(1 for o in result.outcomes if o.partial)
        result.records = sum(o.records for o in result.outcomes)
        result.verdict = evaluate(result.total_tasks, result.failed_tasks, self.config.fail_pct)
        self._log_summary(result)

    def _write_manifest(self, result: RunResult) -> None:
        from ..sinks.manifest import write_manifest

        path = self.config.manifest_path
        try:
            write_manifest(path, result.outcomes)
        except Exception as exc:  # noqa: BLE001
            self.log.error("Failed to write task manifest %s: %s", path, exc)
            return
        self.log.info("Wrote task manifest: %s", path)

    def _log_summary(self, result: RunResult) -> None:
        has_errors = bool(result.failed_tasks or result.partial_tasks)
        level = self.log.warning if has_errors else self.log.info
        level(
            "Run summary: verdict=%s tasks=%d failed=%d (%.2f%%, limit %s%%) "
            "partial=%d records=%d",
            result.verdict.value,
            result.total_tasks,
            result.failed_tasks,
            result.failed_percent,
            self.config.fail_pct,
            result.partial_tasks,
            result.records,
        )
        for outcome in result.outcomes:
            if outcome.failed:
                self.log.warning(
                    "FAILED %s [%s] %s",
                    outcome.input,
                    outcome.error_kind.value if outcome.error_kind else "unknown",
                    outcome.error or "",
                )


def run_batch(
    patterns: Sequence[str],
    config: RunConfig,
    *,
    opener: StreamOpener | None = None,
    pipeline: ExtractionPipeline | None = None,
    encoder: OutputEncoder | None = None,
    executor: Executor | None = None,
) -> RunResult:
    """Convenience wrapper: build a :class:`BatchDriver` and run it."""
    driver = BatchDriver(
        config,
        opener=opener,
        pipeline=pipeline,
        encoder=encoder,
        executor=executor,
    )
    return driver.run(patterns)
