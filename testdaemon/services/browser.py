from __future__ import annotations

import logging
import os
import shlex
import subprocess
import threading
from typing import IO, Callable, Dict, List, Optional

LOGGER = logging.getLogger("testdaemon.browser")

LineCallback = Callable[[str], None]
DoneCallback = Callable[[Optional[int]], None]


class BrowserDriver:
    """Run client-side tests through an external browser driver process.

    The driver's stdout and stderr are forwarded line by line; its exit status is
    the failure count. A driver that cannot start or dies from a signal reports
    ``None``.
    """

    def __init__(self, command: str, env: Optional[Dict[str, str]] = None) -> None:
        self._args: List[str] = shlex.split(command)
        self._env = env
        self._process: Optional[subprocess.Popen] = None

    @property
    def args(self) -> List[str]:
        return list(self._args)

    def start(self, *, stdout: LineCallback, stderr: LineCallback, done: DoneCallback) -> threading.Thread:
        thread = threading.Thread(
            target=self._drive,
            args=(stdout, stderr, done),
            name="testdaemon-browser",
            daemon=True,
        )
        thread.start()
        return thread

    def kill(self) -> None:
        if self._process is not None and self._process.poll() is None:
            self._process.kill()

    @staticmethod
    def _pump(stream: Optional[IO[str]], callback: LineCallback) -> None:
        if stream is None:
            return
        try:
            for line in iter(stream.readline, ""):
                callback(line.rstrip("\n"))
        finally:
            stream.close()

    def _drive(self, stdout: LineCallback, stderr: LineCallback, done: DoneCallback) -> None:
        env = dict(os.environ)
        if self._env:
            env.update(self._env)
        try:
            self._process = subprocess.Popen(
                self._args,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                env=env,
            )
        except OSError as exc:
            LOGGER.error("Failed to launch browser driver %s: %s", self._args[:1], exc)
            done(None)
            return
        readers = [
            threading.Thread(target=self._pump, args=(self._process.stdout, stdout), daemon=True),
            threading.Thread(target=self._pump, args=(self._process.stderr, stderr), daemon=True),
        ]
        for reader in readers:
            reader.start()
        code = self._process.wait()
        for reader in readers:
            reader.join(timeout=5)
        done(code if code >= 0 else None)
