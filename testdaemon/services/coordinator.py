from __future__ import annotations

import asyncio
import io
import json
import logging
import os
import re
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, List, Optional, Pattern, Set, Tuple

from fastapi import Depends
from fastapi.concurrency import run_in_threadpool

from testdaemon.constants import (
    ALREADY_RUNNING_MESSAGE,
    DEFAULT_HEARTBEAT_SECONDS,
    DEFAULT_SNAPSHOT_ENV,
    SHUTDOWN_REASON_DEFAULT,
)
from testdaemon.schemas import DaemonStatus, EventType, HealthReport, RunRequest, StreamEvent
from testdaemon.services.channels import ConnectionRegistry, EventChannel
from testdaemon.services.loader import load_test_files
from testdaemon.services.registry import (
    FileMap,
    build_file_map,
    compose_name_filter,
    count_top_level_suites,
    find_suites_for_file,
)
from testdaemon.services.relay import OutputRelay
from testdaemon.services.runner import SuiteRunner, TestRunner
from testdaemon.services.storage import StorageCleaner, get_storage
from testdaemon.settings import get_settings

LOGGER = logging.getLogger("testdaemon.coordinator")


class RunPhase(str, Enum):
    idle = "idle"
    running = "running"
    shutting_down = "shutting_down"


class FilterResolutionError(ValueError):
    pass


class RunState:
    """Process-wide run/shutdown state; only transition methods mutate it."""

    def __init__(self) -> None:
        self._phase = RunPhase.idle
        self._run_active = False
        self._shutdown_reason: Optional[str] = None

    @property
    def phase(self) -> RunPhase:
        return self._phase

    @property
    def running(self) -> bool:
        return self._run_active

    @property
    def shutting_down(self) -> bool:
        return self._phase == RunPhase.shutting_down

    @property
    def shutdown_reason(self) -> str:
        return self._shutdown_reason or SHUTDOWN_REASON_DEFAULT

    def begin_run(self) -> bool:
        if self._phase != RunPhase.idle:
            return False
        self._phase = RunPhase.running
        self._run_active = True
        return True

    def finish_run(self) -> None:
        self._run_active = False
        if self._phase == RunPhase.running:
            self._phase = RunPhase.idle

    def begin_shutdown(self, reason: Optional[str] = None) -> bool:
        """Latch into shutting_down; returns False when already latched."""
        if self._phase == RunPhase.shutting_down:
            return False
        self._phase = RunPhase.shutting_down
        self._shutdown_reason = reason
        return True


@contextmanager
def scoped_env(name: str, value: Optional[str]) -> Iterator[None]:
    """Set ``name`` to ``value`` for the block; ``None`` leaves the environment alone."""
    if value is None:
        yield
        return
    previous = os.environ.get(name)
    os.environ[name] = value
    try:
        yield
    finally:
        if previous is None:
            os.environ.pop(name, None)
        else:
            os.environ[name] = previous


class RunCoordinator:
    """Run at most one test run at a time and stream its progress to one channel."""

    def __init__(
        self,
        runner: TestRunner,
        *,
        cleaner: Optional[StorageCleaner] = None,
        relay: Optional[OutputRelay] = None,
        state: Optional[RunState] = None,
        connections: Optional[ConnectionRegistry] = None,
        heartbeat_seconds: float = DEFAULT_HEARTBEAT_SECONDS,
        snapshot_env: str = DEFAULT_SNAPSHOT_ENV,
    ) -> None:
        self._runner = runner
        self._cleaner = cleaner
        self._relay = relay or OutputRelay()
        self._state = state or RunState()
        self._connections = connections or ConnectionRegistry()
        self._heartbeat_seconds = heartbeat_seconds
        self._snapshot_env = snapshot_env
        self._tasks: Set["asyncio.Task[Optional[int]]"] = set()

    @property
    def runner(self) -> TestRunner:
        return self._runner

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def connections(self) -> ConnectionRegistry:
        return self._connections

    def health(self) -> HealthReport:
        status = DaemonStatus.shutting_down if self._state.shutting_down else DaemonStatus.ready
        return HealthReport(
            status=status,
            suites=count_top_level_suites(self._runner.root),
            running=self._state.running,
        )

    def file_map(self) -> FileMap:
        return build_file_map(self._runner.root)

    def resolve_filter(self, request: RunRequest) -> Pattern[str]:
        file_titles: Optional[List[str]] = None
        if request.file:
            file_titles = find_suites_for_file(self._runner.root, request.file)
            if not file_titles:
                raise FilterResolutionError(f"No tests found for file: {request.file}")
        source = compose_name_filter(request.grep, file_titles)
        try:
            return re.compile(source)
        except re.error as exc:
            raise FilterResolutionError(f"Invalid grep pattern {request.grep!r}: {exc}") from exc

    def start(self, request: RunRequest, channel: EventChannel) -> "asyncio.Task[Optional[int]]":
        """Schedule :meth:`handle` so it outlives the request that started it."""
        task = asyncio.get_running_loop().create_task(self.handle(request, channel))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def handle(self, request: RunRequest, channel: EventChannel) -> Optional[int]:
        if self._state.shutting_down:
            channel.emit(EventType.shutdown, reason=self._state.shutdown_reason)
            channel.close()
            return None
        if not self._state.begin_run():
            LOGGER.info("Rejected run request for %s: a run is in progress", request.description)
            channel.emit(EventType.error, data=ALREADY_RUNNING_MESSAGE)
            channel.close()
            return None

        self._connections.add(channel)
        heartbeat = asyncio.get_running_loop().create_task(self._heartbeat(channel))
        json_payload: Any = None
        LOGGER.info("Starting run for %s (invert=%s)", request.description, request.invert)
        try:
            channel.emit(EventType.start, grep=request.description, invert=request.invert)
            try:
                name_filter = self.resolve_filter(request)
            except FilterResolutionError as exc:
                LOGGER.warning("%s", exc)
                channel.emit(EventType.error, data=str(exc))
                failures = 1
            else:
                failures, json_payload = await self._execute(request, name_filter, channel)
        except Exception:
            LOGGER.exception("Run for %s aborted before completion", request.description)
            failures = 1
        finally:
            heartbeat.cancel()
            self._state.finish_run()
            self._connections.discard(channel)

        self._finalize(channel, failures, json_payload)
        return failures

    async def _execute(
        self,
        request: RunRequest,
        name_filter: Pattern[str],
        channel: EventChannel,
    ) -> Tuple[int, Any]:
        buffer = io.StringIO() if request.machine_readable else None

        def sink(event_type: EventType, line: str) -> None:
            channel.send_threadsafe(StreamEvent(type=event_type, data=line))

        snapshot_value = "1" if request.snapshot_update else None
        with self._relay.intercept(sink), scoped_env(self._snapshot_env, snapshot_value):
            try:
                self._runner.reset_transient_state()
                self._runner.set_filter(name_filter)
                self._runner.set_invert(request.invert)
                self._runner.set_bail(request.bail)
                self._runner.set_color(not request.machine_readable)
                self._runner.select_reporter(request.reporter.value, output=buffer)
                failures = await run_in_threadpool(self._invoke_runner)
            finally:
                await self._cleanup_storage()
        # Output drained on restore is queued behind this point; let it reach the channel first.
        await asyncio.sleep(0)
        return failures, self._reporter_payload(buffer)

    def _invoke_runner(self) -> int:
        reported: List[object] = []
        try:
            self._runner.run(reported.append)
        except Exception:
            LOGGER.exception("Test runner raised instead of reporting a failure count")
            return 1
        count = reported[0] if reported else None
        if isinstance(count, bool) or not isinstance(count, int):
            LOGGER.error("Test runner did not return a failure count as expected (got %r)", count)
            return 1
        return count

    async def _cleanup_storage(self) -> None:
        if self._cleaner is None:
            return
        try:
            await run_in_threadpool(self._cleaner.clean)
        except Exception:
            LOGGER.exception("Storage cleanup after run failed")

    @staticmethod
    def _reporter_payload(buffer: Optional[io.StringIO]) -> Any:
        if buffer is None:
            return None
        text = buffer.getvalue().strip()
        if not text:
            return None
        try:
            return json.loads(text)
        except ValueError:
            return text

    def _finalize(self, channel: EventChannel, failures: int, json_payload: Any) -> None:
        if channel.closed:
            LOGGER.info("Run finished with %d failure(s); stream already closed, result not sent", failures)
            return
        if json_payload is not None:
            channel.emit(EventType.json, data=json_payload)
        channel.emit(EventType.done, failures=failures)
        channel.close()
        LOGGER.info("Run finished with %d failure(s)", failures)

    async def _heartbeat(self, channel: EventChannel) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_seconds)
            if not channel.emit(EventType.heartbeat):
                LOGGER.debug("Heartbeat stopped: stream closed")
                return


def build_coordinator() -> RunCoordinator:
    settings = get_settings()
    root = load_test_files(settings.test_files, Path(settings.test_root))
    cleaner = StorageCleaner(get_storage()) if settings.cleanup else None
    return RunCoordinator(
        SuiteRunner(root),
        cleaner=cleaner,
        heartbeat_seconds=settings.heartbeat_seconds,
        snapshot_env=settings.snapshot_env,
    )


_coordinator: Optional[RunCoordinator] = None


def get_coordinator() -> RunCoordinator:
    """FastAPI dependency returning the process-wide coordinator."""
    global _coordinator
    if _coordinator is None:
        _coordinator = build_coordinator()
    return _coordinator


CoordinatorDep = Depends(get_coordinator)
