# concurrency.py
# SPDX-License-Identifier: MIT
"""Worker pool used to schedule conversion tasks.

Wraps thread and process pool executors with a bounded submission window,
per-attempt wall-clock timeouts, and optional speculative (duplicate)
attempts for slow work.
"""
from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from concurrent.futures import (
    FIRST_COMPLETED,
    Future,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    wait,
)
from dataclasses import dataclass
from typing import Any, Literal, TypeVar

from .config import RunConfig
from .log import get_logger

log = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

_DEFAULT_POLL_INTERVAL = 0.05


@dataclass(frozen=True)
class ExecutorConfig:
    """Immutable executor settings used to construct worker pools.

    Attributes:
        max_workers (int): Maximum number of worker threads or
            processes.
        window (int): Maximum number of in-flight attempts allowed
            before backpressure is applied.
        kind (Literal["thread", "process"]): Executor implementation
            to use.
    """
    max_workers: int
    window: int
    kind: Literal["thread", "process"]


@dataclass(slots=True)
class _Attempt:
    item: Any
    serial: int
    backup: bool = False
    started: float | None = None


class Executor:
    """Run tasks in a thread or process pool with bounded submission.

    At most ``cfg.window`` attempts are in flight at once, and results are
    delivered to callbacks in completion order, not submission order.

    Attributes:
        cfg (ExecutorConfig): Executor configuration for this
            instance.
        initializer (Callable | None): Optional initializer called in
            each worker process when using a process pool.
        initargs (tuple[Any, ...]): Positional arguments passed to
            the initializer.
        poll_interval (float): Seconds between timeout and speculation
            checks while waiting on workers.
    """

    def __init__(
        self,
        cfg: ExecutorConfig,
        *,
        initializer: Callable[..., Any] | None = None,
        initargs: tuple[Any, ...] = (),
        poll_interval: float = _DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.cfg = cfg
        self.initializer = initializer
        self.initargs = tuple(initargs or ())
        self.poll_interval = poll_interval

    def _make_executor(self):
        if self.cfg.max_workers < 1:
            raise ValueError("Executor requires max_workers >= 1")
        init_kwargs: dict[str, Any] = {}
        if self.cfg.kind == "process":
            if self.initializer is not None:
                init_kwargs["initializer"] = self.initializer
                init_kwargs["initargs"] = self.initargs
            executor_cls = ProcessPoolExecutor
        else:
            executor_cls = ThreadPoolExecutor
            if self.initializer is not None:
                log.debug("Executor initializer ignored for thread executor.")
        return executor_cls(max_workers=self.cfg.max_workers, **init_kwargs)

    def _shutdown(self, pool, *, abandoned: int) -> None:
        if not abandoned:
            pool.shutdown(wait=True)
            return
        if self.cfg.kind == "process":
            processes = dict(getattr(pool, "_processes", None) or {})
            pool.shutdown(wait=False, cancel_futures=True)
            for proc in processes.values():
                if proc.is_alive():
                    proc.terminate()
            log.warning("Terminated worker processes after %d timed-out attempt(s).", abandoned)
        else:
            # Threads cannot be killed; they finish in the background.
            pool.shutdown(wait=False, cancel_futures=True)
            log.warning(
                "%d timed-out attempt(s) are still running in worker threads.",
                abandoned,
            )

    def map_unordered(
        self,
        items: Iterable[T],
        fn: Callable[[T], R],
        on_result: Callable[[R], None],
        *,
        fail_fast: bool = False,
        on_error: Callable[[T, BaseException], None] | None = None,
        on_submit_error: Callable[[T, BaseException], None] | None = None,
        task_timeout: float | None = None,
        on_timeout: Callable[[T, float], None] | None = None,
        speculate: Callable[[T], T] | None = None,
        speculative_after: float = 0.0,
    ) -> None:
        """Submit items to workers and consume results as they complete.

        Args:
            items (Iterable[T]): Items to process.
            fn (Callable[[T], R]): Worker function invoked for each
                item. Must be picklable for process pools.
            on_result (Callable[[R], None]): Callback invoked for each
                successful result.
            fail_fast (bool): Whether to re-raise the first worker,
                submission, or timeout error and abort further processing.
            on_error (Callable[[T, BaseException], None] | None): Called
                with the item when a worker raises.
            on_submit_error (Callable[[T, BaseException], None] | None):
                Called when submitting an item to the pool fails.
            task_timeout (float | None): Wall-clock seconds an attempt may
                run, measured from when a worker starts it. Process pools
                mark queued calls as running early, so for them at most
                ``max_workers`` attempts have a running clock at a time,
                assigned in submission order. Late attempts are abandoned
                and reported through ``on_timeout``.
            on_timeout (Callable[[T, float], None] | None): Called with the
                item and its runtime when an attempt times out.
            speculate (Callable[[T], T] | None): When given, enables
                speculative execution: after every item has been
                submitted, each attempt running longer than
                ``speculative_after`` seconds gets one duplicate built by
                this callable, as long as worker slots are idle. Both
                attempts report their results.
            speculative_after (float): Minimum runtime before an attempt
                is duplicated.

        Raises:
            Exception: The first worker or submission error when
                ``fail_fast`` is True, or :class:`TimeoutError` for a
                timed-out attempt.
        """
        window = max(self.cfg.window, self.cfg.max_workers)
        watch = task_timeout is not None or speculate is not None
        pending: dict[Future[R], _Attempt] = {}
        speculated: set[int] = set()
        abandoned = 0
        exhausted = False

        pool = self._make_executor()
        try:
            def _submit(item: T, serial: int, *, backup: bool = False) -> bool:
                try:
                    fut = pool.submit(fn, item)
                except Exception as exc:  # noqa: BLE001
                    if on_submit_error:
                        on_submit_error(item, exc)
                    if fail_fast:
                        raise
                    return False
                pending[fut] = _Attempt(item=item, serial=serial, backup=backup)
                return True

            def _mark_started(now: float) -> None:
                # Process pools report a call as running once it reaches the
                # call queue, ahead of any worker picking it up. Only start
                # as many clocks as there are workers not busy with
                # already-started or abandoned attempts.
                slots: int | None = None
                if self.cfg.kind == "process":
                    busy = sum(1 for f, a in pending.items() if a.started is not None and not f.done())
                    slots = self.cfg.max_workers - abandoned - busy
                for fut, attempt in pending.items():
                    if attempt.started is not None:
                        continue
                    if fut.done():
                        attempt.started = now
                    elif fut.running():
                        if slots is not None:
                            if slots <= 0:
                                continue
                            slots -= 1
                        attempt.started = now

            def _expire(now: float) -> None:
                nonlocal abandoned
                if task_timeout is None:
                    return
                for fut, attempt in list(pending.items()):
                    if attempt.started is None or fut.done():
                        continue
                    runtime = now - attempt.started
                    if runtime <= task_timeout:
                        continue
                    del pending[fut]
                    if not fut.cancel():
                        abandoned += 1
                    if on_timeout:
                        on_timeout(attempt.item, runtime)
                    if fail_fast:
                        raise TimeoutError(
                            f"Task attempt exceeded {task_timeout:.3f}s: {attempt.item!r}"
                        )

            def _speculate(now: float) -> None:
                if speculate is None or not exhausted:
                    return
                idle = self.cfg.max_workers - len(pending) - abandoned
                if idle <= 0:
                    return
                candidates = sorted(
                    (a for a in pending.values() if a.started is not None),
                    key=lambda a: a.started,
                )
                for attempt in candidates:
                    if idle <= 0:
                        break
                    if attempt.backup or attempt.serial in speculated:
                        continue
                    if now - attempt.started < speculative_after:
                        continue
                    speculated.add(attempt.serial)
                    log.debug("Launching speculative attempt for %r", attempt.item)
                    if _submit(speculate(attempt.item), attempt.serial, backup=True):
                        idle -= 1

            def _drain(block: bool = False) -> None:
                if not pending:
                    return
                if not block:
                    timeout: float | None = 0.0
                elif watch:
                    timeout = self.poll_interval
                else:
                    timeout = None
                done, _ = wait(list(pending), timeout=timeout, return_when=FIRST_COMPLETED)
                for fut in done:
                    attempt = pending.pop(fut, None)
                    if attempt is None:
                        continue
                    try:
                        result = fut.result()
                    except Exception as exc:  # noqa: BLE001
                        if on_error:
                            on_error(attempt.item, exc)
                        if fail_fast:
                            raise
                        continue
                    on_result(result)
                if watch:
                    now = time.monotonic()
                    _mark_started(now)
                    _expire(now)
                    _speculate(now)

            serial = 0
            for item in items:
                _submit(item, serial)
                serial += 1
                while len(pending) >= window:
                    _drain(block=True)

            exhausted = True
            while pending:
                _drain(block=True)
        finally:
            self._shutdown(pool, abandoned=abandoned)


def resolve_executor_config(cfg: RunConfig) -> ExecutorConfig:
    """Build pool settings for a batch run.

    The window equals the worker count so an attempt starts almost as soon
    as it is submitted and its timeout clock reflects real runtime.
    """
    max_workers = cfg.resolved_max_workers
    kind = cfg.executor_kind if cfg.executor_kind in {"thread", "process"} else "thread"
    return ExecutorConfig(max_workers=max_workers, window=max_workers, kind=kind)  # type: ignore[arg-type]


__all__ = [
    "Executor",
    "ExecutorConfig",
    "resolve_executor_config",
]
