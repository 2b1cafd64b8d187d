import io
import logging
from pathlib import Path

import pytest

from watgen.core.log import configure_logging, get_logger, temp_level
from watgen.core.naming import (
    build_output_basename,
    build_output_location,
    input_basename,
)


def test_configure_logging_sets_logger_level():
    logger = logging.getLogger("watgen")
    logger.setLevel(logging.WARNING)

    configure_logging(level="DEBUG")

    assert logger.level == logging.DEBUG


def test_configure_logging_does_not_stack_handlers():
    logger = configure_logging(level="INFO", stream=io.StringIO())
    before = len(logger.handlers)

    configure_logging(level="INFO", stream=io.StringIO())

    assert len(logger.handlers) == before


def test_temp_level_changes_and_restores():
    logger = logging.getLogger("watgen.test.temp")
    logger.setLevel(logging.WARNING)
    original_level = logger.level

    with temp_level(logging.DEBUG, name=logger.name):
        assert logger.level == logging.DEBUG

    assert logger.level == original_level


def test_get_logger_defaults_to_package_logger():
    assert get_logger().name == "watgen"
    assert get_logger("watgen.core.task").name == "watgen.core.task"


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("crawl-0001.warc.gz", "crawl-0001.wat.gz"),
        ("crawl-0002.arc.gz", "crawl-0002.wat.gz"),
        ("crawl-0002.arc", "crawl-0002.arc.wat.gz"),
        ("crawl-0003.warc", "crawl-0003.warc.wat.gz"),
        ("notes.txt", "notes.txt.wat.gz"),
        (".warc.gz", ".warc.gz.wat.gz"),
    ],
)
def test_build_output_basename(name, expected):
    assert build_output_basename(name) == expected


def test_build_output_basename_is_deterministic():
    assert build_output_basename("a/b/c.warc.gz") == build_output_basename("a/b/c.warc.gz")


def test_input_basename_handles_uris_and_separators():
    assert input_basename("file:///data/crawl/x.warc.gz") == "x.warc.gz"
    assert input_basename("C:\\crawl\\y.arc.gz") == "y.arc.gz"
    assert input_basename("/data/z%20.warc.gz") == "z%20.warc.gz"


def test_build_output_location_joins_output_dir(tmp_path: Path):
    out = build_output_location(tmp_path / "wat", "/in/crawl-9.warc.gz")
    assert out == tmp_path / "wat" / "crawl-9.wat.gz"
