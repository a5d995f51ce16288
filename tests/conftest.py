from __future__ import annotations

import json
import threading
import unittest
from typing import Callable, List, Optional

import pytest

from testdaemon.services.channels import EventChannel
from testdaemon.services.registry import SuiteNode
from testdaemon.services.runner import TestRunner


class StubRunner(TestRunner):
    """Engine double that records how the coordinator drives it."""

    def __init__(
        self,
        root: Optional[SuiteNode] = None,
        *,
        result: object = 0,
        output: Optional[List[str]] = None,
        block: bool = False,
        error: Optional[Exception] = None,
        on_run: Optional[Callable[[], None]] = None,
        reporter_error: Optional[Exception] = None,
    ) -> None:
        self.root = root or SuiteNode()
        self.result = result
        self.output = output or []
        self.error = error
        self.on_run = on_run
        self.reporter_error = reporter_error
        self.filters: List[str] = []
        self.inverts: List[bool] = []
        self.bails: List[bool] = []
        self.colors: List[bool] = []
        self.reporters: List[str] = []
        self.resets = 0
        self.run_calls = 0
        self.block = block
        self.started = threading.Event()
        self.release = threading.Event()

    def set_filter(self, pattern) -> None:
        self.filters.append(getattr(pattern, "pattern", pattern))

    def set_invert(self, invert: bool) -> None:
        self.inverts.append(invert)

    def set_bail(self, bail: bool) -> None:
        self.bails.append(bail)

    def set_color(self, color: bool) -> None:
        self.colors.append(color)

    def select_reporter(self, kind: str, output=None) -> None:
        if self.reporter_error is not None:
            raise self.reporter_error
        self.reporters.append(kind)

    def reset_transient_state(self) -> None:
        self.resets += 1

    def run(self, on_done) -> None:
        self.run_calls += 1
        self.started.set()
        if self.block:
            self.release.wait(5)
        if self.on_run is not None:
            self.on_run()
        for line in self.output:
            print(line)
        if self.error is not None:
            raise self.error
        on_done(self.result)


class MathTests(unittest.TestCase):
    def test_adds(self) -> None:
        self.assertEqual(1 + 1, 2)

    def test_subtracts(self) -> None:
        self.assertEqual(3 - 1, 2)


class NestedMathTests(unittest.TestCase):
    def test_multiplies(self) -> None:
        self.assertEqual(2 * 2, 4)


class StringTests(unittest.TestCase):
    def test_joins(self) -> None:
        self.assertEqual("-".join("ab"), "a-b")

    def test_fails_on_purpose(self) -> None:
        self.assertEqual("a", "b", "letters differ")


def suite_of(title: str, cls: type) -> SuiteNode:
    node = SuiteNode(title=title)
    for case in unittest.TestLoader().loadTestsFromTestCase(cls):
        node.add_test(case)
    return node


def sample_tree() -> SuiteNode:
    """Two files: ``math`` (with a ``nested`` child) and ``strings``."""
    root = SuiteNode()
    math_file = root.add_suite(SuiteNode(source_file="tests/test_math.py"))
    math_suite = math_file.add_suite(suite_of("math", MathTests))
    math_suite.add_suite(suite_of("nested", NestedMathTests))
    strings_file = root.add_suite(SuiteNode(source_file="tests/text/test_strings.py"))
    strings_file.add_suite(suite_of("strings", StringTests))
    return root


@pytest.fixture
def tree() -> SuiteNode:
    return sample_tree()


async def collect_events(channel: EventChannel) -> List[dict]:
    events = []
    async for chunk in channel.stream():
        assert chunk.startswith("data: ") and chunk.endswith("\n\n")
        events.append(json.loads(chunk[len("data: ") :]))
    return events
