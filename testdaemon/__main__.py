from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

import uvicorn

from testdaemon.services.browser import BrowserDriver
from testdaemon.services.coverage_report import CoverageSession
from testdaemon.services.loader import load_test_files
from testdaemon.services.oneshot import OneShotSession
from testdaemon.services.runner import SuiteRunner
from testdaemon.services.storage import StorageCleaner, get_storage
from testdaemon.settings import Settings, get_settings

LOGGER = logging.getLogger("testdaemon")


def run_once(settings: Settings) -> int:
    coverage: Optional[CoverageSession] = None
    if settings.coverage:
        coverage = CoverageSession(
            data_dir=settings.coverage_dir,
            source=settings.coverage_source,
            reports=settings.coverage_reports,
        )
        coverage.start()
    root = load_test_files(settings.test_files, Path(settings.test_root))
    browser: Optional[BrowserDriver] = None
    if settings.browser_driver:
        browser = BrowserDriver(settings.browser_driver)
    cleaner = StorageCleaner(get_storage()) if settings.cleanup else None
    session = OneShotSession(settings, SuiteRunner(root), browser=browser, cleaner=cleaner, coverage=coverage)
    session.run()
    return session.exit_code()


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    if settings.daemon:
        uvicorn.run("testdaemon.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())
        return
    status = run_once(settings)
    if settings.test_watch:
        LOGGER.info("TEST_WATCH is set; exiting with status 0 (failures: %s)", "yes" if status else "no")
        return
    sys.exit(status)


if __name__ == "__main__":
    main()
