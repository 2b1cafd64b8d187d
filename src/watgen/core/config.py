# config.py
# SPDX-License-Identifier: MIT
"""Run configuration for a watgen batch.

A :class:`RunConfig` is built once (from a config file, command-line flags,
or code), validated, and then handed to every task by value. Tasks never
mutate it.
"""
from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any

__all__ = [
    "ConfigError",
    "DEFAULT_TASK_TIMEOUT_MS",
    "EXECUTOR_KINDS",
    "RunConfig",
    "load_config_from_path",
]

# Twenty hours, matching the scheduler default the tool has always shipped with.
DEFAULT_TASK_TIMEOUT_MS = 72_000_000
EXECUTOR_KINDS = frozenset({"thread", "process"})


class ConfigError(ValueError):
    """Raised when run configuration is missing or invalid."""


@dataclass(frozen=True, slots=True)
class RunConfig:
    """Process-wide settings for one batch invocation.

    Attributes:
        output_dir (str): Directory receiving one ``.wat.gz`` per input.
        soft (bool): Tolerate mid-file processing errors; affected tasks
            keep their partial output and count as succeeded.
        task_timeout_ms (int): Wall-clock budget per task attempt. ``0``
            disables the timeout.
        fail_pct (float): Percentage of failed tasks the run tolerates
            before its verdict becomes FAIL.
        speculative (bool): Allow duplicate attempts of slow tasks. Off by
            default because a duplicate always collides with the original's
            create-only output.
        speculative_after_s (float): Runtime after which an attempt becomes
            eligible for a duplicate when ``speculative`` is on.
        max_workers (int | None): Worker pool size; CPU count when unset.
        executor_kind (str): ``"process"`` or ``"thread"``.
        manifest_path (str | None): Optional per-task outcome report
            (``.jsonl``, ``.jsonl.gz`` or ``.parquet``).
        log_level (str): Level for the package logger.
    """

    output_dir: str = ""
    soft: bool = False
    task_timeout_ms: int = DEFAULT_TASK_TIMEOUT_MS
    fail_pct: float = 0.0
    speculative: bool = False
    speculative_after_s: float = 60.0
    max_workers: int | None = None
    executor_kind: str = "process"
    manifest_path: str | None = None
    log_level: str = "INFO"

    @property
    def task_timeout_s(self) -> float | None:
        """Timeout in seconds, or ``None`` when disabled."""
        if self.task_timeout_ms <= 0:
            return None
        return self.task_timeout_ms / 1000.0

    @property
    def resolved_max_workers(self) -> int:
        return max(1, self.max_workers or (os.cpu_count() or 1))

    def validate(self) -> None:
        """Check field values before any task is dispatched.

        Raises:
            ConfigError: On the first invalid setting found.
        """
        if not str(self.output_dir or "").strip():
            raise ConfigError("output_dir is required")
        if self.task_timeout_ms < 0:
            raise ConfigError(f"task_timeout_ms must be >= 0, got {self.task_timeout_ms}")
        if not 0 <= self.fail_pct <= 100:
            raise ConfigError(f"fail_pct must be between 0 and 100, got {self.fail_pct}")
        if self.speculative_after_s < 0:
            raise ConfigError(
                f"speculative_after_s must be >= 0, got {self.speculative_after_s}"
            )
        if self.max_workers is not None and self.max_workers < 1:
            raise ConfigError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.executor_kind not in EXECUTOR_KINDS:
            raise ConfigError(
                f"executor_kind must be one of {sorted(EXECUTOR_KINDS)}, got {self.executor_kind!r}"
            )
        output = Path(self.output_dir)
        if output.exists() and not output.is_dir():
            raise ConfigError(f"output_dir {output} exists and is not a directory")

    def with_overrides(self, **changes: Any) -> RunConfig:
        """Return a copy with non-``None`` ``changes`` applied."""
        applied = {key: value for key, value in changes.items() if value is not None}
        return replace(self, **applied) if applied else self

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_json(self, path: Path | str, *, indent: int = 2) -> str:
        """Write the config as JSON and return the text."""
        text = json.dumps(self.to_dict(), indent=indent) + "\n"
        Path(path).write_text(text, encoding="utf-8")
        return text

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RunConfig:
        """Build a config from a mapping, rejecting unknown keys."""
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")
        values: dict[str, Any] = {}
        for key, raw in data.items():
            values[key] = _coerce_field(key, raw)
        return cls(**values)


_BOOL_FIELDS = {"soft", "speculative"}
_INT_FIELDS = {"task_timeout_ms", "max_workers"}
_FLOAT_FIELDS = {"fail_pct", "speculative_after_s"}


def _coerce_field(key: str, raw: Any) -> Any:
    if raw is None:
        return None
    try:
        if key in _BOOL_FIELDS:
            if isinstance(raw, str):
                return raw.strip().lower() in {"1", "true", "yes", "on"}
            return bool(raw)
        if key in _INT_FIELDS:
            return int(raw)
        if key in _FLOAT_FIELDS:
            return float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value for {key}: {raw!r}") from exc
    return str(raw)


def load_config_from_path(path: str | Path) -> RunConfig:
    """Load a :class:`RunConfig` from a TOML or JSON file.

    TOML files may keep settings at the top level or under a ``[run]``
    table.

    Raises:
        ConfigError: If the file type is unsupported or the content is
            invalid.
    """
    p = Path(path)
    suffix = p.suffix.lower()
    try:
        if suffix == ".json":
            data = json.loads(p.read_text(encoding="utf-8"))
        elif suffix == ".toml":
            with p.open("rb") as fp:
                data = tomllib.load(fp)
            data = data.get("run", data)
        else:
            raise ConfigError(f"Unsupported config file type: {p.suffix or '<none>'}")
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {p}: {exc}") from exc
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Cannot parse config file {p}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {p} must contain a table/object")
    return RunConfig.from_dict(data)
