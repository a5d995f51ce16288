from __future__ import annotations

import json
import time
import traceback
import unittest
from typing import Any, Callable, Dict, List, Optional, TextIO, Tuple

from testdaemon.schemas import ReporterKind

# (title, full title, file) of a loaded case.
Describe = Callable[[unittest.TestCase], Tuple[str, str, Optional[str]]]

_GREEN = "\x1b[32m"
_RED = "\x1b[31m"
_CYAN = "\x1b[36m"
_RESET = "\x1b[0m"


def _default_describe(test: unittest.TestCase) -> Tuple[str, str, Optional[str]]:
    return str(test), str(test), None


class PaintedStream:
    """Colors the per-test status words ``TextTestResult`` writes at verbosity 2."""

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream

    @staticmethod
    def _color_for(text: str) -> Optional[str]:
        if text == "ok":
            return _GREEN
        if text in ("FAIL", "ERROR", "unexpected success"):
            return _RED
        if text.startswith("skipped") or text == "expected failure":
            return _CYAN
        return None

    def write(self, text: str) -> int:
        color = self._color_for(text)
        if color is not None:
            text = f"{color}{text}{_RESET}"
        return self._stream.write(text)

    def flush(self) -> None:
        self._stream.flush()


class SpecTestRunner(unittest.TextTestRunner):
    """Verbose ``unittest`` output, one line per test followed by the failure details."""

    def __init__(self, stream: TextIO, *, color: bool = False, failfast: bool = False) -> None:
        super().__init__(stream=PaintedStream(stream) if color else stream, verbosity=2, failfast=failfast)


def _error_payload(err: Optional[Tuple[type, BaseException, Any]]) -> Dict[str, Any]:
    if err is None:
        return {}
    exc_type, exc, tb = err
    return {
        "message": str(exc),
        "type": exc_type.__name__,
        "stack": "".join(traceback.format_exception(exc_type, exc, tb)),
    }


class JSONTestResult(unittest.TestResult):
    """Collects one record per test outcome for a single JSON document."""

    def __init__(self, describe: Describe = _default_describe) -> None:
        super().__init__()
        self._describe = describe
        self._started: Dict[int, float] = {}
        self._classes = set()
        self.stats: Dict[str, Any] = {"suites": 0, "tests": 0, "passes": 0, "pending": 0, "failures": 0}
        self.tests: List[Dict[str, Any]] = []
        self.passes: List[Dict[str, Any]] = []
        self.failed: List[Dict[str, Any]] = []
        self.pending: List[Dict[str, Any]] = []

    def startTestRun(self) -> None:
        self.stats["start"] = time.time()

    def stopTestRun(self) -> None:
        self.stats["end"] = time.time()
        self.stats["duration"] = round((self.stats["end"] - self.stats["start"]) * 1000)
        self.stats["suites"] = len(self._classes)

    def startTest(self, test: unittest.TestCase) -> None:
        super().startTest(test)
        self._classes.add(type(test))
        self._started[id(test)] = time.perf_counter()

    def _record(self, test, bucket: str, err=None, suffix: str = "") -> None:
        title, full_title, file = self._describe(test)
        started = self._started.get(id(test))
        duration = round((time.perf_counter() - started) * 1000) if started is not None else None
        record = {
            "title": f"{title} {suffix}" if suffix else title,
            "fullTitle": f"{full_title} {suffix}" if suffix else full_title,
            "file": file,
            "duration": duration,
            "err": _error_payload(err),
        }
        self.tests.append(record)
        self.stats["tests"] += 1
        if bucket == "pending":
            self.pending.append(record)
            self.stats["pending"] += 1
        elif bucket == "failures":
            self.failed.append(record)
            self.stats["failures"] += 1
        else:
            self.passes.append(record)
            self.stats["passes"] += 1

    def addSuccess(self, test) -> None:
        super().addSuccess(test)
        self._record(test, "passes")

    def addFailure(self, test, err) -> None:
        super().addFailure(test, err)
        self._record(test, "failures", err)

    def addError(self, test, err) -> None:
        super().addError(test, err)
        self._record(test, "failures", err)

    def addSkip(self, test, reason) -> None:
        super().addSkip(test, reason)
        self._record(test, "pending")

    def addExpectedFailure(self, test, err) -> None:
        super().addExpectedFailure(test, err)
        self._record(test, "passes")

    def addUnexpectedSuccess(self, test) -> None:
        super().addUnexpectedSuccess(test)
        self._record(test, "failures", (AssertionError, AssertionError("unexpected success"), None))

    def addSubTest(self, test, subtest, err) -> None:
        super().addSubTest(test, subtest, err)
        if err is not None:
            suffix = subtest.id()[len(test.id()) :].strip()
            self._record(test, "failures", err, suffix=suffix)

    def document(self) -> Dict[str, Any]:
        stats = dict(self.stats)
        for key in ("start", "end"):
            if key in stats:
                stats[key] = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(stats[key]))
        return {
            "stats": stats,
            "tests": self.tests,
            "pending": self.pending,
            "failures": self.failed,
            "passes": self.passes,
        }


class JSONTestRunner:
    """Runs a suite silently and writes the collected document once the run ends."""

    def __init__(self, stream: TextIO, *, failfast: bool = False, describe: Describe = _default_describe) -> None:
        self.stream = stream
        self.failfast = failfast
        self._describe = describe

    def run(self, suite: unittest.TestSuite) -> JSONTestResult:
        result = JSONTestResult(self._describe)
        result.failfast = self.failfast
        result.startTestRun()
        try:
            suite(result)
        finally:
            result.stopTestRun()
        self.stream.write(json.dumps(result.document(), indent=2) + "\n")
        return result


REPORTERS = {
    ReporterKind.spec.value: SpecTestRunner,
    ReporterKind.json.value: JSONTestRunner,
}


def create_reporter(
    kind: str,
    stream: TextIO,
    *,
    color: bool = False,
    failfast: bool = False,
    describe: Optional[Describe] = None,
):
    key = kind.value if isinstance(kind, ReporterKind) else str(kind)
    if key not in REPORTERS:
        raise ValueError(f"Unknown reporter '{key}'")
    if key == ReporterKind.json.value:
        return JSONTestRunner(stream, failfast=failfast, describe=describe or _default_describe)
    return SpecTestRunner(stream, color=color, failfast=failfast)
