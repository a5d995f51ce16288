from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional

from testdaemon.services.browser import BrowserDriver
from testdaemon.services.coverage_report import CoverageSession
from testdaemon.services.runner import TestRunner
from testdaemon.services.storage import StorageCleaner
from testdaemon.settings import Settings

LOGGER = logging.getLogger("testdaemon.oneshot")

SERVER = "server"
CLIENT = "client"


def _default_writer(line: str) -> None:
    print(line, flush=True)


class OneShotSession:
    """Run server tests, then client tests, once; report the combined failures.

    Client output is held back until server tests finish so the two logs never
    interleave; after that it is written as it arrives.
    """

    def __init__(
        self,
        settings: Settings,
        runner: TestRunner,
        *,
        browser: Optional[BrowserDriver] = None,
        cleaner: Optional[StorageCleaner] = None,
        coverage: Optional[CoverageSession] = None,
        writer: Callable[[str], None] = _default_writer,
    ) -> None:
        self._settings = settings
        self._runner = runner
        self._browser = browser
        self._cleaner = cleaner
        self._coverage = coverage
        self._write = writer
        self._lock = threading.Lock()
        self._finished = threading.Event()
        self._server_done = False
        self._client_running = False
        self._client_lines: List[str] = []
        self._results: Dict[str, int] = {}

    @property
    def results(self) -> Dict[str, int]:
        return dict(self._results)

    @property
    def total_failures(self) -> int:
        return sum(self._results.values())

    def client_log(self, line: str) -> None:
        with self._lock:
            if not self._server_done:
                self._client_lines.append(line)
                return
        self._write(line)

    def print_header(self, kind: str) -> None:
        lines = [
            "\n--------------------------------",
            f"----- RUNNING {kind.upper()} TESTS -----",
            "--------------------------------\n",
        ]
        for line in lines:
            if kind == CLIENT:
                self.client_log(line)
            else:
                self._write(line)

    def _record(self, kind: str, failures: int) -> None:
        buffered: List[str] = []
        with self._lock:
            self._results[kind] = failures
            if kind == SERVER:
                self._server_done = True
                buffered, self._client_lines = self._client_lines, []
            complete = len(self._results) == 2
        for line in buffered:
            self._write(line)
        if not complete:
            return
        if self._settings.run_server and self._settings.run_client and self._settings.browser_driver:
            self._write("All tests finished!\n")
            self._write("--------------------------------")
            self._write(f"SERVER FAILURES: {self._results[SERVER]}")
            self._write(f"CLIENT FAILURES: {self._results[CLIENT]}")
            self._write("--------------------------------")
        self._finished.set()

    def run_server_tests(self) -> None:
        if not self._settings.run_server:
            self._write("SKIPPING SERVER TESTS BECAUSE TEST_SERVER=0")
            self._record(SERVER, 0)
            return
        self.print_header(SERVER)
        if self._settings.grep:
            self._runner.set_filter(self._settings.grep)
        self._runner.set_invert(self._settings.invert)
        self._runner.set_color(True)
        try:
            self._runner.select_reporter(self._settings.server_reporter, output=self._settings.server_output)
        except ValueError as exc:
            LOGGER.warning("%s; using the spec reporter", exc)
            self._runner.select_reporter("spec", output=self._settings.server_output)
        reported: List[object] = []
        try:
            self._runner.run(reported.append)
        finally:
            if self._cleaner is not None:
                try:
                    self._cleaner.clean()
                except Exception:
                    LOGGER.exception("Storage cleanup after server tests failed")
        count = reported[0] if reported else None
        if isinstance(count, bool) or not isinstance(count, int):
            self._write("Test runner did not return a failure count for server tests as expected")
            self._record(SERVER, 1)
        else:
            self._record(SERVER, count)

    def browser_output(self, line: str) -> None:
        output = self._settings.client_output
        if not output:
            self.client_log(line)
            return
        if self._settings.client_reporter != "xunit" or line.lstrip().startswith("<"):
            path = Path(output)
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as handle:
                handle.write(f"{line}\n")
        else:
            # Only XML belongs in an xunit output file.
            self.client_log(line)

    def run_client_tests(self) -> Optional[threading.Thread]:
        with self._lock:
            if self._client_running:
                self._write("CLIENT TESTS ALREADY RUNNING")
                return None
        if not self._settings.run_client:
            self._write("SKIPPING CLIENT TESTS BECAUSE TEST_CLIENT=0")
            self._record(CLIENT, 0)
            return None
        if self._browser is None:
            self._write(
                "Set the TEST_BROWSER_DRIVER environment variable to the command that "
                "runs client tests in a browser."
            )
            self._record(CLIENT, 0)
            return None
        self.print_header(CLIENT)
        with self._lock:
            self._client_running = True

        def done(failures: Optional[int]) -> None:
            with self._lock:
                self._client_running = False
            if failures is None:
                self._write("The browser driver did not return a failure count for client tests as expected")
                self._record(CLIENT, 1)
            else:
                self._record(CLIENT, failures)

        return self._browser.start(stdout=self.browser_output, stderr=self.browser_output, done=done)

    def run(self, timeout: Optional[float] = None) -> int:
        if self._settings.run_parallel:
            LOGGER.warning("Running in parallel can cause side-effects from state/storage sharing")
            client_thread = self.run_client_tests()
            self.run_server_tests()
        else:
            self.run_server_tests()
            client_thread = self.run_client_tests()
        if client_thread is not None:
            client_thread.join(timeout)
        self._finished.wait(timeout)
        if self._coverage is not None:
            self._coverage.finish()
        return self.total_failures

    def exit_code(self) -> int:
        return 1 if self.total_failures > 0 else 0
