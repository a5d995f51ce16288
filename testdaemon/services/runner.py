from __future__ import annotations

import logging
import re
import sys
import unittest
from pathlib import Path
from typing import Callable, Dict, Iterator, Optional, Pattern, TextIO, Tuple, Union

from testdaemon.schemas import ReporterKind
from testdaemon.services.registry import SuiteNode, case_title, join_title, walk_suites
from testdaemon.services.reporters import REPORTERS, create_reporter

LOGGER = logging.getLogger("testdaemon.runner")

ReporterOutput = Union[None, str, Path, TextIO]


class TestRunner:
    """Contract the run coordinator drives.

    ``run`` blocks until the run finishes and reports the failure count through
    ``on_done`` before returning.
    """

    __test__ = False

    root: SuiteNode

    def set_filter(self, pattern: Union[str, Pattern[str]]) -> None:  # pragma: no cover - interface stub
        raise NotImplementedError

    def set_invert(self, invert: bool) -> None:  # pragma: no cover - interface stub
        raise NotImplementedError

    def set_bail(self, bail: bool) -> None:  # pragma: no cover - interface stub
        raise NotImplementedError

    def set_color(self, color: bool) -> None:  # pragma: no cover - interface stub
        raise NotImplementedError

    def select_reporter(self, kind: str, output: ReporterOutput = None) -> None:  # pragma: no cover - interface stub
        raise NotImplementedError

    def reset_transient_state(self) -> None:  # pragma: no cover - interface stub
        raise NotImplementedError

    def run(self, on_done: Callable[[int], None]) -> None:  # pragma: no cover - interface stub
        raise NotImplementedError


class SuiteRunner(TestRunner):
    """Run the selected ``unittest`` cases of a :class:`SuiteNode` tree in the calling thread."""

    def __init__(self, root: SuiteNode) -> None:
        self.root = root
        self._filter: Pattern[str] = re.compile(".*")
        self._invert = False
        self._bail = False
        self._color = True
        self._reporter_kind = ReporterKind.spec.value
        self._reporter_output: ReporterOutput = None

    @property
    def filter(self) -> Pattern[str]:
        return self._filter

    @property
    def invert(self) -> bool:
        return self._invert

    @property
    def bail(self) -> bool:
        return self._bail

    @property
    def color(self) -> bool:
        return self._color

    @property
    def reporter_kind(self) -> str:
        return self._reporter_kind

    def set_filter(self, pattern: Union[str, Pattern[str]]) -> None:
        self._filter = pattern if isinstance(pattern, re.Pattern) else re.compile(pattern)

    def set_invert(self, invert: bool) -> None:
        self._invert = bool(invert)

    def set_bail(self, bail: bool) -> None:
        self._bail = bool(bail)

    def set_color(self, color: bool) -> None:
        self._color = bool(color)

    def select_reporter(self, kind: str, output: ReporterOutput = None) -> None:
        key = kind.value if isinstance(kind, ReporterKind) else str(kind)
        if key not in REPORTERS:
            raise ValueError(f"Unknown reporter '{key}'")
        self._reporter_kind = key
        self._reporter_output = output

    def reset_transient_state(self) -> None:
        self.root.reset_transient_state()

    def _selected(self, full_title: str) -> bool:
        matched = self._filter.search(full_title) is not None
        return matched != self._invert

    def selected_cases(self) -> Iterator[Tuple[unittest.TestCase, str, Optional[str]]]:
        """Yield ``(case, full_title, file)`` for every case the filter selects, in tree order."""
        for node, suite_title, resolved_file in walk_suites(self.root):
            for case in node.tests:
                full_title = join_title(suite_title, case_title(case))
                if self._selected(full_title):
                    yield case, full_title, resolved_file

    def count_tests(self) -> int:
        return sum(1 for _ in self.selected_cases())

    def run(self, on_done: Callable[[int], None]) -> None:
        selected = list(self.selected_cases())
        titles: Dict[int, Tuple[str, str, Optional[str]]] = {
            id(case): (case_title(case), full_title, file) for case, full_title, file in selected
        }

        def describe(test: unittest.TestCase) -> Tuple[str, str, Optional[str]]:
            return titles.get(id(test), (str(test), str(test), None))

        handle: Optional[TextIO] = None
        output = self._reporter_output
        if isinstance(output, (str, Path)):
            path = Path(output)
            path.parent.mkdir(parents=True, exist_ok=True)
            handle = path.open("w", encoding="utf-8")
            output = handle
        # Resolved now so an interception installed after selection still sees the output.
        stream = output if output is not None else sys.stdout
        try:
            reporter = create_reporter(
                self._reporter_kind,
                stream,
                color=self._color,
                failfast=self._bail,
                describe=describe,
            )
            # A fresh suite per run; unittest drops the cases from a suite it has run.
            result = reporter.run(unittest.TestSuite(case for case, _, _ in selected))
        finally:
            if handle is not None:
                handle.close()
        LOGGER.debug("Ran %d of %d selected tests", result.testsRun, len(selected))
        on_done(len(result.failures) + len(result.errors) + len(result.unexpectedSuccesses))
