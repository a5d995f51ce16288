from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Iterable, List, Optional

import coverage
from coverage.exceptions import NoDataError

LOGGER = logging.getLogger("testdaemon.coverage")

REPORT_KINDS = ("text", "html", "xml", "json", "lcov")


class CoverageSession:
    """Measure coverage of a one-shot run and write the configured reports.

    Measurement has to start before test files are imported, otherwise module
    level code of the code under test is missed.
    """

    def __init__(
        self,
        *,
        data_dir: str,
        source: Iterable[str] = (),
        reports: Iterable[str] = ("text",),
        cov: Optional[coverage.Coverage] = None,
    ) -> None:
        self._dir = Path(data_dir)
        self._reports: List[str] = [kind.strip().lower() for kind in reports]
        unknown = [kind for kind in self._reports if kind not in REPORT_KINDS]
        if unknown:
            raise ValueError(f"Unknown coverage report(s): {', '.join(unknown)}")
        sources = list(source)
        self._cov = cov or coverage.Coverage(
            data_file=str(self._dir / ".coverage"),
            source=sources or None,
        )

    @property
    def reports(self) -> List[str]:
        return list(self._reports)

    def start(self) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        self._cov.start()
        LOGGER.debug("Coverage measurement started; data goes to %s", self._dir)

    def finish(self) -> Optional[float]:
        """Stop measuring, save the data and write every report; returns the total percentage."""
        self._cov.stop()
        self._cov.save()
        total: Optional[float] = None
        try:
            for kind in self._reports:
                if kind == "text":
                    total = self._cov.report(file=sys.stdout)
                elif kind == "html":
                    total = self._cov.html_report(directory=str(self._dir / "html"))
                elif kind == "xml":
                    total = self._cov.xml_report(outfile=str(self._dir / "coverage.xml"))
                elif kind == "json":
                    total = self._cov.json_report(outfile=str(self._dir / "coverage.json"))
                else:
                    total = self._cov.lcov_report(outfile=str(self._dir / "coverage.lcov"))
        except NoDataError as exc:
            LOGGER.warning("No coverage data was collected: %s", exc)
            return None
        if total is not None:
            LOGGER.info("Coverage: %.1f%% (reports in %s)", total, self._dir)
        return total
