from __future__ import annotations

from typing import AsyncIterator, Dict, List, Optional

from fastapi import APIRouter, Query
from fastapi.responses import StreamingResponse

from testdaemon.schemas import HealthReport, ReporterKind, RunRequest
from testdaemon.services.channels import SSE_HEADERS, EventChannel
from testdaemon.services.coordinator import CoordinatorDep, RunCoordinator
from testdaemon.settings import get_settings

router = APIRouter(prefix=get_settings().route_prefix, tags=["daemon"])


@router.get("/health", response_model=HealthReport)
async def health(coordinator: RunCoordinator = CoordinatorDep) -> HealthReport:
    return coordinator.health()


@router.get("/files", response_model=Dict[str, List[str]])
async def list_files(coordinator: RunCoordinator = CoordinatorDep) -> Dict[str, List[str]]:
    return coordinator.file_map()


async def _run_stream(
    coordinator: RunCoordinator, request: RunRequest, channel: EventChannel
) -> AsyncIterator[str]:
    # The body iterator starts once headers are out; only then does the run begin.
    coordinator.start(request, channel)
    async for chunk in channel.stream():
        yield chunk


@router.get("/run")
async def run_tests(
    grep: Optional[str] = None,
    file: Optional[str] = None,
    invert: bool = False,
    reporter: ReporterKind = ReporterKind.spec,
    bail: bool = False,
    snapshot_update: bool = Query(default=False, alias="snapshotUpdate"),
    coordinator: RunCoordinator = CoordinatorDep,
) -> StreamingResponse:
    request = RunRequest(
        grep=grep,
        file=file,
        invert=invert,
        reporter=reporter,
        bail=bail,
        snapshot_update=snapshot_update,
    )
    channel = EventChannel()
    return StreamingResponse(
        _run_stream(coordinator, request, channel),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
