from __future__ import annotations

import logging
import sys
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional, TextIO, Tuple

from testdaemon.schemas import EventType

LOGGER = logging.getLogger("testdaemon.relay")

LineSink = Callable[[EventType, str], None]


class RelayStream:
    """Write-through wrapper around a text stream that reports complete writes.

    Text is buffered until it ends with a newline; the buffered text (trailing
    newline stripped, inner newlines kept) is then handed to ``sink`` as one line.
    """

    def __init__(self, original: TextIO, event_type: EventType, sink: LineSink) -> None:
        self._original = original
        self._event_type = event_type
        self._sink = sink
        self._buffer = ""
        self._lock = threading.Lock()

    @property
    def original(self) -> TextIO:
        return self._original

    def write(self, text: str) -> int:
        written = self._original.write(text)
        if not text:
            return written
        with self._lock:
            self._buffer += text
            if not self._buffer.endswith("\n"):
                return written
            line, self._buffer = self._buffer[:-1], ""
        self._sink(self._event_type, line)
        return written

    def writelines(self, lines) -> None:
        for line in lines:
            self.write(line)

    def flush(self) -> None:
        self._original.flush()

    def drain(self) -> None:
        """Forward whatever is left in the buffer without waiting for a newline."""
        with self._lock:
            line, self._buffer = self._buffer, ""
        if line:
            self._sink(self._event_type, line)

    def __getattr__(self, name: str):
        return getattr(self._original, name)


def _stream_handlers() -> List[logging.StreamHandler]:
    loggers: List[logging.Logger] = [logging.getLogger()]
    loggers.extend(
        item for item in logging.Logger.manager.loggerDict.values() if isinstance(item, logging.Logger)
    )
    handlers: List[logging.StreamHandler] = []
    for logger in loggers:
        for handler in logger.handlers:
            if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
                if handler not in handlers:
                    handlers.append(handler)
    return handlers


class OutputRelay:
    """Mirror ``sys.stdout``, ``sys.stderr`` and console logging into a line sink.

    Logging handlers that write to the real stdout/stderr are pointed at the relay
    streams for the duration of an interception, so each record is seen once.
    """

    def __init__(self) -> None:
        self._active = False
        self._streams: List[RelayStream] = []
        self._saved_stdout: Optional[TextIO] = None
        self._saved_stderr: Optional[TextIO] = None
        self._saved_handlers: List[Tuple[logging.StreamHandler, TextIO]] = []

    @property
    def active(self) -> bool:
        return self._active

    def install(self, sink: LineSink) -> None:
        if self._active:
            raise RuntimeError("Output relay already installed")
        self._saved_stdout = sys.stdout
        self._saved_stderr = sys.stderr
        stdout_relay = RelayStream(self._saved_stdout, EventType.log, sink)
        stderr_relay = RelayStream(self._saved_stderr, EventType.error, sink)
        self._streams = [stdout_relay, stderr_relay]
        replacements = {id(self._saved_stdout): stdout_relay, id(self._saved_stderr): stderr_relay}
        self._saved_handlers = []
        for handler in _stream_handlers():
            replacement = replacements.get(id(handler.stream))
            if replacement is None:
                continue
            self._saved_handlers.append((handler, handler.stream))
            handler.setStream(replacement)
        sys.stdout = stdout_relay
        sys.stderr = stderr_relay
        self._active = True

    def restore(self) -> None:
        if not self._active:
            return
        for stream in self._streams:
            stream.drain()
        for handler, original in self._saved_handlers:
            handler.setStream(original)
        sys.stdout = self._saved_stdout
        sys.stderr = self._saved_stderr
        self._saved_handlers = []
        self._streams = []
        self._saved_stdout = None
        self._saved_stderr = None
        self._active = False

    @contextmanager
    def intercept(self, sink: LineSink) -> Iterator["OutputRelay"]:
        self.install(sink)
        try:
            yield self
        finally:
            self.restore()
