from __future__ import annotations

import asyncio
import logging
import signal
from typing import Dict, Iterable, Optional

from testdaemon.constants import SHUTDOWN_REASON_DEFAULT
from testdaemon.schemas import EventType
from testdaemon.services.channels import ConnectionRegistry
from testdaemon.services.coordinator import RunState

LOGGER = logging.getLogger("testdaemon.shutdown")

TERMINATION_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class ShutdownCoordinator:
    """Turn termination signals into a one-time broadcast to every open stream.

    After the broadcast the previously installed handler for the signal runs, so
    the hosting server still performs its own exit.
    """

    def __init__(self, state: RunState, connections: ConnectionRegistry) -> None:
        self._state = state
        self._connections = connections
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._previous_handlers: Dict[signal.Signals, object] = {}

    @property
    def shutting_down(self) -> bool:
        return self._state.shutting_down

    def begin_shutdown(self, reason: str = SHUTDOWN_REASON_DEFAULT) -> bool:
        """Latch the shutdown state and notify open streams; later calls are no-ops."""
        if not self._state.begin_shutdown(reason):
            return False
        channels = self._connections.snapshot()
        LOGGER.info("Shutting down (%s); notifying %d open stream(s)", reason, len(channels))
        for channel in channels:
            try:
                channel.emit(EventType.shutdown, reason=reason)
                channel.close()
            except Exception as exc:  # noqa: BLE001 - peer may already be gone
                LOGGER.debug("Failed to notify stream during shutdown: %s", exc)
        self._connections.clear()
        return True

    def install_signal_handlers(
        self,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        signals: Iterable[signal.Signals] = TERMINATION_SIGNALS,
    ) -> bool:
        self._loop = loop or asyncio.get_running_loop()
        installed = False
        for sig in signals:
            previous = signal.getsignal(sig)
            try:
                self._loop.add_signal_handler(sig, self._handle_signal, sig)
            except (NotImplementedError, RuntimeError, ValueError) as exc:
                LOGGER.debug("Cannot install handler for %s: %s", sig.name, exc)
                continue
            self._previous_handlers[sig] = previous
            installed = True
        if installed:
            LOGGER.debug("Shutdown signal handlers installed")
        return installed

    def remove_signal_handlers(self) -> None:
        if self._loop is None:
            return
        for sig, previous in list(self._previous_handlers.items()):
            try:
                self._loop.remove_signal_handler(sig)
                if previous is not None:
                    signal.signal(sig, previous)
            except (RuntimeError, ValueError) as exc:
                LOGGER.debug("Error restoring handler for %s: %s", sig.name, exc)
        self._previous_handlers.clear()

    def _handle_signal(self, sig: signal.Signals) -> None:
        LOGGER.info("%s received", sig.name)
        self.begin_shutdown(reason=f"Received {sig.name}")
        previous = self._previous_handlers.get(sig)
        if callable(previous):
            previous(sig, None)
        elif previous == signal.SIG_DFL:
            self.remove_signal_handlers()
            signal.raise_signal(sig)
