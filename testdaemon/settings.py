"""Environment driven settings.

Environment variables:
    TEST_DAEMON: serve runs over HTTP instead of running once and exiting.
    TEST_DAEMON_HOST / TEST_DAEMON_PORT / TEST_DAEMON_PREFIX: where routes are served.
    TEST_DAEMON_HEARTBEAT_SECONDS: interval between heartbeat events of a run.
    TEST_SNAPSHOT_ENV: variable toggled while a run updates snapshots.
    TEST_FILES: comma separated glob patterns of test files, relative to TEST_ROOT.
    TEST_ROOT: project root used to resolve test files (default: working directory).
    MOCHA_GREP / MOCHA_INVERT: name filter for one-shot runs.
    SERVER_TEST_REPORTER / SERVER_MOCHA_OUTPUT: server reporter and optional output file.
    CLIENT_TEST_REPORTER / CLIENT_MOCHA_OUTPUT: client reporter and optional output file.
    TEST_SERVER / TEST_CLIENT: enable server and client phases (default on).
    TEST_BROWSER_DRIVER: command line of the browser driver for client tests.
    TEST_PARALLEL: run server and client phases concurrently.
    TEST_WATCH: keep the process alive after a one-shot run.
    TEST_STORAGE_PATH / TEST_CLEANUP: fixture store location and post-run cleanup.
    TEST_COVERAGE: measure coverage.py coverage during one-shot runs.
    TEST_COVERAGE_SOURCE: comma separated packages or paths to measure.
    TEST_COVERAGE_REPORTS: comma separated report kinds (text, html, xml, json, lcov).
    TEST_COVERAGE_DIR: where the coverage data file and reports are written.
    TEST_LOG_LEVEL: logging level of the process.
"""

from __future__ import annotations

import os
from typing import List, Mapping, Optional

from pydantic import BaseModel, Field, field_validator

from testdaemon.constants import (
    DEFAULT_COVERAGE_DIR,
    DEFAULT_COVERAGE_REPORTS,
    DEFAULT_HEARTBEAT_SECONDS,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_ROUTE_PREFIX,
    DEFAULT_SNAPSHOT_ENV,
    DEFAULT_STORAGE_PATH,
    DEFAULT_TEST_FILES,
)


def parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


def _parse_list(value: Optional[str], default: List[str]) -> List[str]:
    if not value or not value.strip():
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseModel):
    daemon: bool = False
    host: str = DEFAULT_HOST
    port: int = Field(default=DEFAULT_PORT, ge=0, le=65535)
    route_prefix: str = DEFAULT_ROUTE_PREFIX
    heartbeat_seconds: float = Field(default=DEFAULT_HEARTBEAT_SECONDS, gt=0)
    snapshot_env: str = DEFAULT_SNAPSHOT_ENV
    test_files: List[str] = Field(default_factory=lambda: list(DEFAULT_TEST_FILES))
    test_root: str = "."
    grep: Optional[str] = None
    invert: bool = False
    server_reporter: str = "spec"
    server_output: Optional[str] = None
    client_reporter: str = "spec"
    client_output: Optional[str] = None
    run_server: bool = True
    run_client: bool = True
    browser_driver: Optional[str] = None
    run_parallel: bool = False
    test_watch: bool = False
    storage_path: str = DEFAULT_STORAGE_PATH
    cleanup: bool = True
    coverage: bool = False
    coverage_source: List[str] = Field(default_factory=list)
    coverage_reports: List[str] = Field(default_factory=lambda: list(DEFAULT_COVERAGE_REPORTS))
    coverage_dir: str = DEFAULT_COVERAGE_DIR
    log_level: str = "INFO"

    @field_validator("route_prefix")
    @classmethod
    def normalize_prefix(cls, value: str) -> str:
        stripped = value.strip().strip("/")
        return f"/{stripped}" if stripped else ""

    @field_validator("log_level")
    @classmethod
    def normalize_level(cls, value: str) -> str:
        return value.strip().upper() or "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        values = {
            "daemon": parse_bool(env.get("TEST_DAEMON")),
            "host": env.get("TEST_DAEMON_HOST") or DEFAULT_HOST,
            "port": int(env.get("TEST_DAEMON_PORT") or DEFAULT_PORT),
            "route_prefix": env.get("TEST_DAEMON_PREFIX", DEFAULT_ROUTE_PREFIX),
            "heartbeat_seconds": float(env.get("TEST_DAEMON_HEARTBEAT_SECONDS") or DEFAULT_HEARTBEAT_SECONDS),
            "snapshot_env": env.get("TEST_SNAPSHOT_ENV") or DEFAULT_SNAPSHOT_ENV,
            "test_files": _parse_list(env.get("TEST_FILES"), DEFAULT_TEST_FILES),
            "test_root": env.get("TEST_ROOT") or ".",
            "grep": env.get("MOCHA_GREP") or None,
            "invert": parse_bool(env.get("MOCHA_INVERT")),
            "server_reporter": env.get("SERVER_TEST_REPORTER") or env.get("MOCHA_REPORTER") or "spec",
            "server_output": env.get("SERVER_MOCHA_OUTPUT") or None,
            "client_reporter": env.get("CLIENT_TEST_REPORTER") or env.get("MOCHA_REPORTER") or "spec",
            "client_output": env.get("CLIENT_MOCHA_OUTPUT") or None,
            "run_server": parse_bool(env.get("TEST_SERVER"), default=True),
            "run_client": parse_bool(env.get("TEST_CLIENT"), default=True),
            "browser_driver": env.get("TEST_BROWSER_DRIVER") or None,
            "run_parallel": parse_bool(env.get("TEST_PARALLEL")),
            "test_watch": parse_bool(env.get("TEST_WATCH")),
            "storage_path": env.get("TEST_STORAGE_PATH") or DEFAULT_STORAGE_PATH,
            "cleanup": parse_bool(env.get("TEST_CLEANUP"), default=True),
            "coverage": parse_bool(env.get("TEST_COVERAGE")),
            "coverage_source": _parse_list(env.get("TEST_COVERAGE_SOURCE"), []),
            "coverage_reports": _parse_list(env.get("TEST_COVERAGE_REPORTS"), DEFAULT_COVERAGE_REPORTS),
            "coverage_dir": env.get("TEST_COVERAGE_DIR") or DEFAULT_COVERAGE_DIR,
            "log_level": env.get("TEST_LOG_LEVEL") or "INFO",
        }
        return cls(**values)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reload_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    global _settings
    _settings = Settings.from_env(environ)
    return _settings
