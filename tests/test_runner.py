from __future__ import annotations

import asyncio
import io
import json
import unittest
from pathlib import Path
from typing import List

import pytest
from conftest import suite_of

from testdaemon.services.registry import SuiteNode
from testdaemon.services.runner import SuiteRunner


def _run(runner: SuiteRunner, kind: str = "spec", color: bool = False) -> tuple:
    output = io.StringIO()
    runner.set_color(color)
    runner.select_reporter(kind, output=output)
    reported: List[int] = []
    runner.run(reported.append)
    assert len(reported) == 1
    return reported[0], output.getvalue()


def _single_file_tree(title: str, cls: type, source_file: str = "tests/test_sample.py") -> SuiteNode:
    root = SuiteNode()
    module = root.add_suite(SuiteNode(source_file=source_file))
    module.add_suite(suite_of(title, cls))
    return root


@pytest.mark.unit
def test_spec_reporter_lists_each_test_and_counts_failures(tree: SuiteNode) -> None:
    failures, text = _run(SuiteRunner(tree))

    assert failures == 1
    assert "test_adds" in text
    assert " ... ok" in text
    assert "FAIL: test_fails_on_purpose" in text
    assert "letters differ" in text
    assert "Ran 5 tests" in text


@pytest.mark.unit
def test_filter_and_invert_select_by_full_title(tree: SuiteNode) -> None:
    runner = SuiteRunner(tree)
    runner.set_filter("^strings")

    failures, text = _run(runner)
    assert failures == 1
    assert "test_adds" not in text
    assert "Ran 2 tests" in text

    runner.set_invert(True)
    failures, text = _run(runner)
    assert failures == 0
    assert "Ran 3 tests" in text
    assert "test_joins" not in text


@pytest.mark.unit
def test_filter_sees_nested_suite_titles(tree: SuiteNode) -> None:
    runner = SuiteRunner(tree)
    runner.set_filter("^math nested ")

    assert runner.count_tests() == 1
    assert [title for _, title, _ in runner.selected_cases()] == ["math nested test_multiplies"]


@pytest.mark.unit
def test_bail_stops_after_first_failure() -> None:
    calls: List[str] = []

    class BailTests(unittest.TestCase):
        def test_1_first(self) -> None:
            calls.append("first")
            self.fail("stop here")

        def test_2_second(self) -> None:
            calls.append("second")

    runner = SuiteRunner(_single_file_tree("bail", BailTests))
    runner.set_bail(True)
    failures, _ = _run(runner)

    assert failures == 1
    assert calls == ["first"]


@pytest.mark.unit
def test_class_setup_failure_counts_once_and_skips_tests() -> None:
    calls: List[str] = []

    class BrokenSetup(unittest.TestCase):
        @classmethod
        def setUpClass(cls) -> None:
            raise RuntimeError("database unavailable")

        def test_never_runs(self) -> None:
            calls.append("ran")

    failures, text = _run(SuiteRunner(_single_file_tree("broken", BrokenSetup)))

    assert failures == 1
    assert calls == []
    assert "setUpClass" in text
    assert "database unavailable" in text


@pytest.mark.unit
def test_json_reporter_writes_single_document_with_pending() -> None:
    class LazyTests(unittest.TestCase):
        def test_passes(self) -> None:
            self.assertTrue(True)

        def test_pending(self) -> None:
            self.skipTest("not written yet")

        @unittest.skip("later")
        def test_skipped(self) -> None:
            raise AssertionError("never runs")

    failures, text = _run(SuiteRunner(_single_file_tree("lazy", LazyTests, "tests/test_lazy.py")), kind="json")
    document = json.loads(text)

    assert failures == 0
    assert document["stats"]["tests"] == 3
    assert document["stats"]["passes"] == 1
    assert document["stats"]["pending"] == 2
    assert [item["fullTitle"] for item in document["pending"]] == ["lazy test_pending", "lazy test_skipped"]
    assert document["passes"][0]["file"] == "tests/test_lazy.py"
    assert set(document) == {"stats", "tests", "pending", "failures", "passes"}


@pytest.mark.unit
def test_json_failure_records_carry_title_file_and_error(tree: SuiteNode) -> None:
    failures, text = _run(SuiteRunner(tree), kind="json")
    document = json.loads(text)

    assert failures == 1
    failure = document["failures"][0]
    assert failure["title"] == "test_fails_on_purpose"
    assert failure["fullTitle"] == "strings test_fails_on_purpose"
    assert failure["file"] == "tests/text/test_strings.py"
    assert failure["err"]["type"] == "AssertionError"
    assert "letters differ" in failure["err"]["message"]
    assert document["stats"]["suites"] == 3


@pytest.mark.unit
def test_failed_subtests_are_counted_individually() -> None:
    class ValueTests(unittest.TestCase):
        def test_values(self) -> None:
            for value in range(4):
                with self.subTest(value=value):
                    self.assertLess(value, 2)

    failures, text = _run(SuiteRunner(_single_file_tree("values", ValueTests)), kind="json")
    document = json.loads(text)

    assert failures == 2
    assert [item["fullTitle"] for item in document["failures"]] == [
        "values test_values (value=2)",
        "values test_values (value=3)",
    ]


@pytest.mark.unit
def test_async_test_cases_are_awaited() -> None:
    seen: List[str] = []

    class AsyncTests(unittest.IsolatedAsyncioTestCase):
        async def test_awaits(self) -> None:
            await asyncio.sleep(0)
            seen.append("awaited")

    failures, _ = _run(SuiteRunner(_single_file_tree("async", AsyncTests)))

    assert failures == 0
    assert seen == ["awaited"]


@pytest.mark.unit
def test_color_marks_statuses(tree: SuiteNode) -> None:
    _, text = _run(SuiteRunner(tree), color=True)

    assert "\x1b[32mok\x1b[0m" in text
    assert "\x1b[31mFAIL\x1b[0m" in text


@pytest.mark.unit
def test_runs_repeat_after_reset(tree: SuiteNode) -> None:
    runner = SuiteRunner(tree)

    first, first_text = _run(runner)
    runner.reset_transient_state()
    second, second_text = _run(runner)

    assert first == second == 1
    assert "Ran 5 tests" in first_text
    assert "Ran 5 tests" in second_text


@pytest.mark.unit
def test_unknown_reporter_is_rejected(tree: SuiteNode) -> None:
    with pytest.raises(ValueError, match="Unknown reporter"):
        SuiteRunner(tree).select_reporter("tap")


@pytest.mark.unit
def test_reporter_output_path_is_written(tmp_path: Path, tree: SuiteNode) -> None:
    target = tmp_path / "reports" / "server.json"
    runner = SuiteRunner(tree)
    runner.select_reporter("json", output=str(target))
    reported: List[int] = []

    runner.run(reported.append)

    assert reported == [1]
    assert json.loads(target.read_text(encoding="utf-8"))["stats"]["tests"] == 5
