from __future__ import annotations

import logging
import time
from datetime import date
from threading import Lock
from typing import Callable, Dict, Hashable, Optional, Tuple

from src.schemas.performance import PerformanceReport
from src.services.performance_report_service import PerformanceReportService

logger = logging.getLogger(__name__)


class ReportCache:
    """In-process TTL store for complete reports. A TTL of zero disables it."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, PerformanceReport]] = {}
        self._lock = Lock()

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0

    def get(self, key: Hashable) -> Optional[PerformanceReport]:
        if not self.enabled:
            return None
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, report = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return report

    def put(self, key: Hashable, report: PerformanceReport) -> None:
        # Partial reports are never stored so a recovered source shows up on the next call.
        if not self.enabled or report.is_partial:
            return
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl_seconds, report)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class CachedPerformanceReportService:
    """Wraps `PerformanceReportService` with a `(reference_date, month, year)` keyed cache."""

    def __init__(self, service: PerformanceReportService, cache: ReportCache) -> None:
        self.service = service
        self.cache = cache

    def _cached(self, key: Hashable, build: Callable[[], PerformanceReport]) -> PerformanceReport:
        report = self.cache.get(key)
        if report is not None:
            logger.debug("Report cache hit for %s", key)
            return report
        report = build()
        self.cache.put(key, report)
        return report

    def build_report(
        self,
        reference_date: date,
        month: int,
        year: int,
        deadline_seconds: Optional[float] = None,
    ) -> PerformanceReport:
        return self._cached(
            ("departments", reference_date, month, year),
            lambda: self.service.build_report(reference_date, month, year, deadline_seconds),
        )

    def build_employee_scoreboard(
        self,
        reference_date: date,
        month: int,
        year: int,
        employee_id: Optional[int] = None,
        deadline_seconds: Optional[float] = None,
    ) -> PerformanceReport:
        return self._cached(
            ("employees", reference_date, month, year, employee_id),
            lambda: self.service.build_employee_scoreboard(
                reference_date, month, year, employee_id, deadline_seconds
            ),
        )

    def build_milestone_report(
        self,
        reference_date: date,
        month: int,
        year: int,
        deadline_seconds: Optional[float] = None,
    ) -> PerformanceReport:
        return self._cached(
            ("milestones", reference_date, month, year),
            lambda: self.service.build_milestone_report(reference_date, month, year, deadline_seconds),
        )
