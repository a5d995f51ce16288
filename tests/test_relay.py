from __future__ import annotations

import logging
import sys
from typing import List, Tuple

import pytest

from testdaemon.schemas import EventType
from testdaemon.services.relay import OutputRelay


@pytest.fixture
def lines() -> List[Tuple[EventType, str]]:
    return []


@pytest.mark.unit
def test_each_write_becomes_one_line(lines: List[Tuple[EventType, str]]) -> None:
    relay = OutputRelay()
    with relay.intercept(lambda kind, text: lines.append((kind, text))):
        print("first")
        sys.stdout.write("two\nlines\n")
        sys.stderr.write("problem\n")
        sys.stdout.write("no newline")

    assert lines == [
        (EventType.log, "first"),
        (EventType.log, "two\nlines"),
        (EventType.error, "problem"),
        (EventType.log, "no newline"),
    ]


@pytest.mark.unit
def test_original_streams_still_receive_output(capsys: pytest.CaptureFixture[str]) -> None:
    relay = OutputRelay()
    with relay.intercept(lambda kind, text: None):
        print("visible")

    assert capsys.readouterr().out == "visible\n"


@pytest.mark.unit
def test_restores_exact_stream_objects(lines: List[Tuple[EventType, str]]) -> None:
    stdout, stderr = sys.stdout, sys.stderr
    relay = OutputRelay()

    with relay.intercept(lambda kind, text: lines.append((kind, text))):
        assert sys.stdout is not stdout
        assert relay.active

    assert sys.stdout is stdout
    assert sys.stderr is stderr
    assert not relay.active


@pytest.mark.unit
def test_restores_streams_when_block_raises() -> None:
    stdout = sys.stdout
    relay = OutputRelay()

    with pytest.raises(RuntimeError):
        with relay.intercept(lambda kind, text: None):
            raise RuntimeError("runner crashed")

    assert sys.stdout is stdout


@pytest.mark.unit
def test_console_logging_is_seen_once(lines: List[Tuple[EventType, str]]) -> None:
    logger = logging.getLogger("testdaemon.tests.relay")
    handler = logging.StreamHandler(sys.stderr)
    original_stream = handler.stream
    logger.addHandler(handler)
    logger.propagate = False
    try:
        with OutputRelay().intercept(lambda kind, text: lines.append((kind, text))):
            logger.warning("disk almost full")
        assert handler.stream is original_stream
    finally:
        logger.removeHandler(handler)
        logger.propagate = True

    assert lines == [(EventType.error, "disk almost full")]


@pytest.mark.unit
def test_second_install_is_rejected() -> None:
    relay = OutputRelay()
    with relay.intercept(lambda kind, text: None):
        with pytest.raises(RuntimeError):
            relay.install(lambda kind, text: None)
