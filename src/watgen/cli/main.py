# main.py
# SPDX-License-Identifier: MIT

from __future__ import annotations

import argparse
import json
import sys
from typing import NoReturn, Optional, Sequence

from ..core.config import EXECUTOR_KINDS, ConfigError, RunConfig, load_config_from_path
from ..core.driver import run_batch
from ..core.log import configure_logging, get_logger

log = get_logger(__name__)

EXIT_PASS = 0
EXIT_ERROR = 1
EXIT_FAIL = 2

USAGE = "watgen [OPTIONS] <output_dir> <input_pattern> [<input_pattern> ...]"


class UsageError(Exception):
    """Raised for malformed command lines."""


class _ArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that raises instead of exiting with status 2.

    Status 2 is reserved for a FAIL verdict.
    """

    def error(self, message: str) -> NoReturn:
        raise UsageError(message)


def _build_parser() -> argparse.ArgumentParser:
    """Build the watgen argument parser.

    The single-dash long flags keep the command lines of existing job
    scripts working; each also has a ``--`` spelling.

    Returns:
        argparse.ArgumentParser: Configured argument parser for the CLI.
    """
    parser = _ArgumentParser(
        prog="watgen",
        usage=USAGE,
        description="Convert WARC/ARC files into WAT metadata files, one task per input.",
    )
    parser.add_argument("output_dir", help="Directory receiving one .wat.gz per input.")
    parser.add_argument(
        "patterns",
        nargs="+",
        metavar="input_pattern",
        help="Glob pattern(s) selecting input .warc.gz / .arc.gz files.",
    )
    parser.add_argument(
        "-soft",
        "--soft",
        dest="soft",
        action="store_true",
        default=None,
        help="Keep partial output and count the task as succeeded on processing errors.",
    )
    parser.add_argument(
        "-timeout",
        "--timeout",
        dest="task_timeout_ms",
        type=int,
        metavar="MILLIS",
        help="Per-task wall-clock timeout in milliseconds (0 disables).",
    )
    parser.add_argument(
        "-failpct",
        "--failpct",
        dest="fail_pct",
        type=float,
        metavar="PCT",
        help="Tolerated percentage of failed tasks before the run fails.",
    )
    parser.add_argument(
        "-speculative",
        "--speculative",
        dest="speculative",
        action="store_true",
        default=None,
        help="Launch duplicate attempts for slow tasks.",
    )
    parser.add_argument("--workers", dest="max_workers", type=int, metavar="N", help="Worker pool size.")
    parser.add_argument(
        "--executor-kind",
        dest="executor_kind",
        choices=sorted(EXECUTOR_KINDS),
        help="Run tasks in worker processes or threads.",
    )
    parser.add_argument("--config", help="Base config file (TOML or JSON).")
    parser.add_argument(
        "--manifest",
        dest="manifest_path",
        metavar="PATH",
        help="Write per-task outcomes to PATH (.jsonl, .jsonl.gz or .parquet).",
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        help="Logging level (e.g., DEBUG, INFO, WARNING).",
    )
    return parser


def _build_config(args: argparse.Namespace) -> RunConfig:
    """Merge the optional config file with command-line overrides."""
    base = load_config_from_path(args.config) if args.config else RunConfig()
    cfg = base.with_overrides(
        output_dir=args.output_dir,
        soft=args.soft,
        task_timeout_ms=args.task_timeout_ms,
        fail_pct=args.fail_pct,
        speculative=args.speculative,
        max_workers=args.max_workers,
        executor_kind=args.executor_kind,
        manifest_path=args.manifest_path,
        log_level=args.log_level,
    )
    cfg.validate()
    return cfg


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for the watgen command-line interface.

    Args:
        argv (Sequence[str] | None): Optional list of argument strings to
            parse instead of ``sys.argv[1:]``. Primarily useful for tests.

    Returns:
        int: ``0`` when the run passes (or there is nothing to convert),
        ``2`` when the failure threshold is exceeded, ``1`` for usage or
        configuration errors.
    """
    parser = _build_parser()
    try:
        args = parser.parse_args(list(argv) if argv is not None else None)
        cfg = _build_config(args)
    except (UsageError, ConfigError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        print(f"usage: {USAGE}", file=sys.stderr)
        return EXIT_ERROR

    configure_logging(level=cfg.log_level)
    try:
        result = run_batch(args.patterns, cfg)
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_ERROR
    except Exception as exc:  # noqa: BLE001
        log.exception("Run aborted")
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_ERROR

    print(json.dumps(result.as_dict(), indent=2))
    return EXIT_PASS if result.passed else EXIT_FAIL


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
