import io
import logging
from pathlib import Path

import pytest

from watgen.core.config import RunConfig
from watgen.core.fault import ErrorKind
from watgen.core.interfaces import InputFile
from watgen.core.task import TaskStatus, run_file_task


class ListEncoder:
    """Collects records in memory and writes one line per record."""

    def __init__(self) -> None:
        self.records: list = []
        self.closed = False

    def open(self, stream, name):
        encoder = self

        class _Handle:
            def write(self, record):
                encoder.records.append(record)
                stream.write(b"rec\n")

            def close(self):
                encoder.closed = True
                stream.flush()

        return _Handle()


class FailingPipeline:
    def __init__(self, after: int) -> None:
        self.after = after

    def open(self, stream, name):
        for i in range(self.after):
            yield {"n": i}
        raise RuntimeError("decode failed")


class FailingOpener:
    def open_input(self, location):
        raise PermissionError("denied")

    def open_output(self, location):  # pragma: no cover - never reached
        raise AssertionError("output must not be opened")


def _cfg(tmp_path: Path, **kw) -> RunConfig:
    return RunConfig(output_dir=str(tmp_path / "out"), executor_kind="thread", **kw)


def test_successful_task_writes_one_output(tmp_path: Path, make_warc, wat_reader):
    src = make_warc("crawl-0001.warc.gz", count=3)

    outcome = run_file_task(InputFile(str(src)), _cfg(tmp_path))

    assert outcome.status is TaskStatus.SUCCEEDED
    assert outcome.records == 3
    assert not outcome.partial
    out = tmp_path / "out" / "crawl-0001.wat.gz"
    assert outcome.output == str(out)
    assert list((tmp_path / "out").iterdir()) == [out]
    # warcinfo plus one metadata record per input record
    assert len(wat_reader(out)) == 4


def test_missing_input_fails_without_output(tmp_path: Path, caplog):
    caplog.set_level(logging.INFO, logger="watgen")
    missing = tmp_path / "input" / "gone.warc.gz"

    outcome = run_file_task(InputFile(str(missing)), _cfg(tmp_path, soft=True))

    assert outcome.status is TaskStatus.FAILED
    assert outcome.error_kind is ErrorKind.INPUT_OPEN
    assert not (tmp_path / "out").exists() or not any((tmp_path / "out").iterdir())
    messages = [r.getMessage() for r in caplog.records]
    assert f"Start: {missing}" in messages
    assert f"Finish: {missing}" in messages
    assert any("Error opening input file" in m and str(missing) in m for m in messages)


def test_input_open_error_from_custom_opener(tmp_path: Path):
    outcome = run_file_task(InputFile("x.warc.gz"), _cfg(tmp_path), opener=FailingOpener())
    assert outcome.error_kind is ErrorKind.INPUT_OPEN
    assert "PermissionError" in outcome.error


@pytest.mark.parametrize("soft", [False, True])
def test_existing_output_collides_and_is_untouched(tmp_path: Path, make_warc, soft):
    src = make_warc("dup.warc.gz")
    out_dir = tmp_path / "out"
    out_dir.mkdir()
    existing = out_dir / "dup.wat.gz"
    existing.write_bytes(b"original")

    outcome = run_file_task(InputFile(str(src)), _cfg(tmp_path, soft=soft))

    assert outcome.status is TaskStatus.FAILED
    assert outcome.error_kind is ErrorKind.OUTPUT_OPEN
    assert existing.read_bytes() == b"original"


def test_processing_error_hard_mode_fails_and_keeps_partial(tmp_path: Path, make_warc):
    src = make_warc("bad.warc.gz", count=4, malformed_at=2)

    outcome = run_file_task(InputFile(str(src)), _cfg(tmp_path))

    assert outcome.status is TaskStatus.FAILED
    assert outcome.error_kind is ErrorKind.PROCESSING
    assert outcome.records == 2
    assert "ArchiveFormatError" in outcome.error
    assert (tmp_path / "out" / "bad.wat.gz").exists()


def test_processing_error_soft_mode_is_partial_success(tmp_path: Path, make_warc, wat_reader, caplog):
    caplog.set_level(logging.WARNING, logger="watgen")
    src = make_warc("bad.warc.gz", count=4, malformed_at=2)

    outcome = run_file_task(InputFile(str(src)), _cfg(tmp_path, soft=True))

    assert outcome.status is TaskStatus.SUCCEEDED
    assert outcome.partial
    assert outcome.error_kind is ErrorKind.PROCESSING
    assert outcome.records == 2
    assert len(wat_reader(tmp_path / "out" / "bad.wat.gz")) == 3
    assert any("soft mode" in r.getMessage() for r in caplog.records if r.levelno == logging.WARNING)


def test_custom_collaborators_soft_mode_flushes_encoder(tmp_path: Path, make_warc):
    src = make_warc("a.warc.gz")
    encoder = ListEncoder()

    outcome = run_file_task(
        InputFile(str(src)),
        _cfg(tmp_path, soft=True),
        pipeline=FailingPipeline(after=5),
        encoder=encoder,
        attempt=1,
    )

    assert outcome.partial
    assert outcome.attempt == 1
    assert len(encoder.records) == 5
    assert encoder.closed
    assert (tmp_path / "out" / "a.wat.gz").read_bytes() == b"rec\n" * 5


def test_empty_input_produces_header_only_output(tmp_path: Path, wat_reader):
    src = tmp_path / "input" / "empty.warc.gz"
    src.parent.mkdir()
    src.write_bytes(b"")

    outcome = run_file_task(InputFile(str(src)), _cfg(tmp_path))

    assert outcome.status is TaskStatus.SUCCEEDED
    assert outcome.records == 0
    assert len(wat_reader(tmp_path / "out" / "empty.wat.gz")) == 1


def test_outcome_as_dict_is_json_ready(tmp_path: Path):
    outcome = run_file_task(InputFile(str(tmp_path / "nope.warc.gz")), _cfg(tmp_path))
    data = outcome.as_dict()
    assert data["status"] == "failed"
    assert data["error_kind"] == "input_open"
    assert data["input"].endswith("nope.warc.gz")


class RecordingOpener:
    """In-memory opener that keeps every stream it hands out."""

    def __init__(self, data: bytes, *, output_exists: bool = False) -> None:
        self.data = data
        self.output_exists = output_exists
        self.streams: list[io.BytesIO] = []

    def open_input(self, location):
        stream = io.BytesIO(self.data)
        self.streams.append(stream)
        return stream

    def open_output(self, location):
        if self.output_exists:
            raise FileExistsError(location)
        stream = io.BytesIO()
        self.streams.append(stream)
        return stream


@pytest.mark.parametrize(
    ("output_exists", "malformed_at", "soft", "kind"),
    [
        (False, None, False, None),
        (True, None, False, ErrorKind.OUTPUT_OPEN),
        (False, 2, False, ErrorKind.PROCESSING),
        (False, 2, True, ErrorKind.PROCESSING),
    ],
    ids=["success", "output-collision", "processing-hard", "processing-soft"],
)
def test_streams_closed_on_every_exit(tmp_path: Path, warc_bytes, output_exists, malformed_at, soft, kind):
    opener = RecordingOpener(warc_bytes(4, malformed_at=malformed_at), output_exists=output_exists)

    outcome = run_file_task(InputFile("in/crawl.warc.gz"), _cfg(tmp_path, soft=soft), opener=opener)

    assert outcome.error_kind is kind
    assert len(opener.streams) == (1 if output_exists else 2)
    assert all(stream.closed for stream in opener.streams)


def test_markup_the_html_parser_rejects_does_not_fail_the_task(tmp_path: Path, make_warc, wat_reader):
    page = b"<html><head><title>Odd</title></head><body><![foo[ bar ]]></body></html>"
    src = make_warc("odd.warc.gz", count=3, page=page)

    outcome = run_file_task(InputFile(str(src)), _cfg(tmp_path))

    assert outcome.status is TaskStatus.SUCCEEDED
    assert not outcome.partial
    assert outcome.records == 3
    assert len(wat_reader(tmp_path / "out" / "odd.wat.gz")) == 4
