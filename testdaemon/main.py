from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from testdaemon.routes import daemon
from testdaemon.services.coordinator import get_coordinator
from testdaemon.services.shutdown import ShutdownCoordinator
from testdaemon.settings import get_settings

LOGGER = logging.getLogger("testdaemon.main")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Wire signal driven shutdown around the lifetime of the server."""
    provider = app.dependency_overrides.get(get_coordinator, get_coordinator)
    coordinator = provider()
    shutdown = ShutdownCoordinator(coordinator.state, coordinator.connections)
    shutdown.install_signal_handlers()
    app.state.shutdown = shutdown
    settings = get_settings()
    base = f"http://{settings.host}:{settings.port}{settings.route_prefix}"
    LOGGER.info("Test daemon ready: %d top-level suites", coordinator.health().suites)
    LOGGER.info("Health: %s/health", base)
    LOGGER.info("Run:    %s/run?grep=<pattern>&file=<path>", base)
    try:
        yield
    finally:
        shutdown.begin_shutdown("Server stopping")
        shutdown.remove_signal_handlers()


app = FastAPI(title="Test Daemon", lifespan=lifespan)
app.include_router(daemon.router)
