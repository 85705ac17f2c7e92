from __future__ import annotations

from datetime import date
from typing import List

from src.schemas.performance import PartialFailure, PerformanceReport
from src.services.report_cache import CachedPerformanceReportService, ReportCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class CountingService:
    def __init__(self, partial: bool = False) -> None:
        self.partial = partial
        self.calls: List[tuple] = []

    def _report(self, reference_date: date, month: int, year: int, group_by: str) -> PerformanceReport:
        failures = (
            [PartialFailure(source="legacy", event_kind="payment_invoiced", reason="timeout")]
            if self.partial
            else []
        )
        return PerformanceReport(
            reference_date=reference_date,
            month=month,
            year=year,
            group_by=group_by,
            currency="NIS",
            is_partial=self.partial,
            partial_failures=failures,
        )

    def build_report(self, reference_date, month, year, deadline_seconds=None):
        self.calls.append(("departments", reference_date, month, year))
        return self._report(reference_date, month, year, "department")

    def build_employee_scoreboard(self, reference_date, month, year, employee_id=None, deadline_seconds=None):
        self.calls.append(("employees", reference_date, month, year, employee_id))
        return self._report(reference_date, month, year, "employee")

    def build_milestone_report(self, reference_date, month, year, deadline_seconds=None):
        self.calls.append(("milestones", reference_date, month, year))
        return self._report(reference_date, month, year, "department")


def test_complete_reports_are_reused_until_the_ttl_expires() -> None:
    clock = FakeClock()
    inner = CountingService()
    service = CachedPerformanceReportService(inner, ReportCache(ttl_seconds=60, clock=clock))

    first = service.build_report(date(2026, 3, 15), 3, 2026)
    second = service.build_report(date(2026, 3, 15), 3, 2026)
    clock.now += 61
    service.build_report(date(2026, 3, 15), 3, 2026)

    assert first is second
    assert len(inner.calls) == 2


def test_cache_key_includes_reference_parameters_and_report_type() -> None:
    inner = CountingService()
    service = CachedPerformanceReportService(inner, ReportCache(ttl_seconds=60, clock=FakeClock()))

    service.build_report(date(2026, 3, 15), 3, 2026)
    service.build_report(date(2026, 3, 16), 3, 2026)
    service.build_report(date(2026, 3, 15), 2, 2026)
    service.build_milestone_report(date(2026, 3, 15), 3, 2026)
    service.build_employee_scoreboard(date(2026, 3, 15), 3, 2026, employee_id=7)
    service.build_employee_scoreboard(date(2026, 3, 15), 3, 2026, employee_id=8)
    service.build_employee_scoreboard(date(2026, 3, 15), 3, 2026, employee_id=7)

    assert len(inner.calls) == 6


def test_partial_reports_are_not_cached() -> None:
    inner = CountingService(partial=True)
    service = CachedPerformanceReportService(inner, ReportCache(ttl_seconds=60, clock=FakeClock()))

    service.build_report(date(2026, 3, 15), 3, 2026)
    service.build_report(date(2026, 3, 15), 3, 2026)

    assert len(inner.calls) == 2


def test_zero_ttl_disables_the_cache() -> None:
    inner = CountingService()
    cache = ReportCache(ttl_seconds=0)
    service = CachedPerformanceReportService(inner, cache)

    service.build_report(date(2026, 3, 15), 3, 2026)
    service.build_report(date(2026, 3, 15), 3, 2026)

    assert not cache.enabled
    assert len(inner.calls) == 2
