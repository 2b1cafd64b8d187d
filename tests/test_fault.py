import pytest

from watgen.core.fault import (
    ErrorKind,
    FaultAction,
    Verdict,
    classify,
    evaluate,
    failure_percent,
)


@pytest.mark.parametrize("soft", [False, True])
@pytest.mark.parametrize("kind", [ErrorKind.INPUT_OPEN, ErrorKind.OUTPUT_OPEN])
def test_open_errors_always_abort(kind, soft):
    assert classify(kind, soft) is FaultAction.ABORT_TASK


def test_processing_errors_swallowed_only_in_soft_mode():
    assert classify(ErrorKind.PROCESSING, False) is FaultAction.ABORT_TASK
    assert classify(ErrorKind.PROCESSING, True) is FaultAction.SWALLOW


@pytest.mark.parametrize(
    ("total", "failed", "threshold", "expected"),
    [
        (0, 0, 0.0, Verdict.PASS),
        (10, 0, 0.0, Verdict.PASS),
        (10, 1, 0.0, Verdict.FAIL),
        (10, 1, 10.0, Verdict.PASS),
        (10, 2, 10.0, Verdict.FAIL),
        (3, 1, 33.3, Verdict.FAIL),
        (3, 1, 34.0, Verdict.PASS),
        (4, 4, 100.0, Verdict.PASS),
    ],
)
def test_evaluate_threshold(total, failed, threshold, expected):
    assert evaluate(total, failed, threshold) is expected


def test_failure_percent():
    assert failure_percent(0, 0) == 0.0
    assert failure_percent(8, 2) == 25.0
