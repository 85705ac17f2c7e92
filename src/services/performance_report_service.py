from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from src.analytics.aggregation import (
    GENERAL_ROW,
    TOTAL_ROW,
    AggregationCell,
    AggregationTable,
    GroupBy,
    aggregate,
)
from src.analytics.attribution import EmployeeIndex, collect_employee_references, resolve_attribution
from src.analytics.deduplication import dedupe_events
from src.analytics.targets import compare_to_target
from src.analytics.windows import WindowRange, bounding_range, build_windows
from src.core.config import get_settings
from src.models.performance import CanonicalEvent, Department, Employee, EventKind, RawEvent
from src.repositories.directory_repository import DirectoryRepository
from src.schemas.performance import (
    PartialFailure,
    PerformanceCell,
    PerformanceReport,
    PerformanceRow,
    ReportDiagnostics,
    ReportWindowRange,
)
from src.services.currency_service import CurrencyService
from src.services.source_adapters import (
    SOURCE_ERRORS,
    CurrentSourceAdapter,
    LegacySourceAdapter,
    SourceAdapter,
    describe_source_error,
)

logger = logging.getLogger(__name__)

DIRECTORY_SOURCE = "directory"
DEPARTMENTS_TASK = "departments"
EMPLOYEES_TASK = "employees"
DEADLINE_EXCEEDED = "deadline_exceeded"

SALES_EVENT_KINDS: Tuple[EventKind, ...] = (EventKind.AGREEMENT_SIGNED, EventKind.PAYMENT_INVOICED)
MILESTONE_EVENT_KINDS: Tuple[EventKind, ...] = (
    EventKind.SCHEDULING_MILESTONE,
    EventKind.HANDLING_MILESTONE,
)


class PerformanceReportService:
    """Entry point for department, employee and milestone performance reports.

    Each call fans out one fetch per (event kind, record system) plus the
    department lookup on a bounded thread pool, then dedupes, attributes,
    converts and aggregates single-threaded. Failed or late sources are
    reported on the result instead of failing the call.
    """

    def __init__(
        self,
        legacy_adapter: Optional[SourceAdapter] = None,
        current_adapter: Optional[SourceAdapter] = None,
        directory_repository: Optional[DirectoryRepository] = None,
        currency_service: Optional[CurrencyService] = None,
        max_workers: Optional[int] = None,
        deadline_seconds: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.adapters: List[SourceAdapter] = [
            legacy_adapter or LegacySourceAdapter(),
            current_adapter or CurrentSourceAdapter(),
        ]
        self.directory_repository = directory_repository or DirectoryRepository()
        self.currency_service = currency_service or CurrencyService()
        self.max_workers = max_workers or settings.source_max_concurrency
        self.deadline_seconds = (
            deadline_seconds if deadline_seconds is not None else settings.report_deadline_seconds
        )
        self.source_timeout = settings.source_timeout_seconds

    def build_report(
        self,
        reference_date: date,
        month: int,
        year: int,
        deadline_seconds: Optional[float] = None,
    ) -> PerformanceReport:
        """Signed agreements next to invoiced payments, per tracked department."""
        return self._build(
            SALES_EVENT_KINDS,
            GroupBy.DEPARTMENT,
            reference_date,
            month,
            year,
            deadline_seconds,
        )

    def build_employee_scoreboard(
        self,
        reference_date: date,
        month: int,
        year: int,
        employee_id: Optional[int] = None,
        deadline_seconds: Optional[float] = None,
    ) -> PerformanceReport:
        """Same figures per employee; `employee_id` narrows it to one person."""
        return self._build(
            SALES_EVENT_KINDS,
            GroupBy.EMPLOYEE,
            reference_date,
            month,
            year,
            deadline_seconds,
            employee_id=employee_id,
        )

    def build_milestone_report(
        self,
        reference_date: date,
        month: int,
        year: int,
        deadline_seconds: Optional[float] = None,
    ) -> PerformanceReport:
        return self._build(
            MILESTONE_EVENT_KINDS,
            GroupBy.DEPARTMENT,
            reference_date,
            month,
            year,
            deadline_seconds,
        )

    def _build(
        self,
        event_kinds: Sequence[EventKind],
        group_by: GroupBy,
        reference_date: date,
        month: int,
        year: int,
        deadline_seconds: Optional[float],
        employee_id: Optional[int] = None,
    ) -> PerformanceReport:
        windows = build_windows(reference_date, month, year)
        start_date, end_date = bounding_range(windows)
        allowed_seconds = deadline_seconds if deadline_seconds is not None else self.deadline_seconds
        deadline = time.monotonic() + allowed_seconds
        failures: List[PartialFailure] = []
        diagnostics = ReportDiagnostics()

        executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="performance-source")
        try:
            raw_events, departments = self._fetch_sources(
                executor, event_kinds, start_date, end_date, deadline, failures
            )
            unique_events: Dict[EventKind, List[RawEvent]] = {}
            for event_kind in event_kinds:
                fetched = raw_events[event_kind]
                unique_events[event_kind] = dedupe_events(fetched)
                diagnostics.fetched[event_kind.value] = len(fetched)
                diagnostics.duplicates_dropped[event_kind.value] = len(fetched) - len(
                    unique_events[event_kind]
                )
            employee_index = self._lookup_employees(
                executor,
                [event for events in unique_events.values() for event in events],
                deadline,
                failures,
            )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        tables: Dict[EventKind, AggregationTable] = {}
        for event_kind in event_kinds:
            canonical_events = self._canonicalize(unique_events[event_kind], employee_index, diagnostics)
            if employee_id is not None:
                canonical_events = [
                    event for event in canonical_events if event.attributed_employee_id == employee_id
                ]
            tables[event_kind] = aggregate(canonical_events, windows, departments, group_by)

        required_rows = [str(employee_id)] if employee_id is not None else []
        report = PerformanceReport(
            reference_date=reference_date,
            month=month,
            year=year,
            group_by=group_by.value,
            currency=self.currency_service.reporting_currency,
            window_ranges=[
                ReportWindowRange(window=window.window.value, start=window.start, end=window.end)
                for window in windows
            ],
            windows=self._zip_tables(tables, windows, departments, employee_index, group_by, required_rows),
            is_partial=bool(failures),
            partial_failures=failures,
            diagnostics=diagnostics,
        )
        logger.info(
            "Built %s performance report for %s (%02d/%d): %d events, %d partial failures",
            group_by.value,
            reference_date.isoformat(),
            month,
            year,
            sum(len(events) for events in unique_events.values()),
            len(failures),
        )
        return report

    def _fetch_sources(
        self,
        executor: ThreadPoolExecutor,
        event_kinds: Sequence[EventKind],
        start_date: date,
        end_date: date,
        deadline: float,
        failures: List[PartialFailure],
    ) -> Tuple[Dict[EventKind, List[RawEvent]], List[Department]]:
        source_futures: Dict[Future, Tuple[SourceAdapter, EventKind]] = {}
        for event_kind in event_kinds:
            for adapter in self.adapters:
                future = executor.submit(adapter.fetch_raw_events, event_kind, start_date, end_date)
                source_futures[future] = (adapter, event_kind)
        departments_future = executor.submit(
            self.directory_repository.list_tracked_departments, timeout=self.source_timeout
        )
        wait([*source_futures, departments_future], timeout=_remaining(deadline))

        # Collected in submission order so legacy events always precede current ones.
        raw_events: Dict[EventKind, List[RawEvent]] = {event_kind: [] for event_kind in event_kinds}
        for future, (adapter, event_kind) in source_futures.items():
            if not future.done():
                future.cancel()
                logger.warning(
                    "Source %s did not answer %s before the report deadline",
                    adapter.source_name,
                    event_kind.value,
                )
                failures.append(
                    PartialFailure(
                        source=adapter.source_name,
                        event_kind=event_kind.value,
                        reason=DEADLINE_EXCEEDED,
                    )
                )
                continue
            result = future.result()
            if result.failed:
                failures.append(
                    PartialFailure(
                        source=adapter.source_name,
                        event_kind=event_kind.value,
                        reason=result.error or "unknown",
                    )
                )
                continue
            raw_events[event_kind].extend(result.events)

        departments = self._collect_directory_result(departments_future, DEPARTMENTS_TASK, failures)
        return raw_events, [department for department in departments if department.is_tracked]

    def _lookup_employees(
        self,
        executor: ThreadPoolExecutor,
        events: Iterable[RawEvent],
        deadline: float,
        failures: List[PartialFailure],
    ) -> EmployeeIndex:
        employee_ids, display_names = collect_employee_references(events)
        timeout = max(min(self.source_timeout, _remaining(deadline)), 0.001)
        futures: List[Future] = []
        if employee_ids:
            futures.append(
                executor.submit(
                    self.directory_repository.list_employees_by_ids, sorted(employee_ids), timeout=timeout
                )
            )
        if display_names:
            futures.append(
                executor.submit(
                    self.directory_repository.list_employees_by_names,
                    sorted(display_names),
                    timeout=timeout,
                )
            )
        if futures:
            wait(futures, timeout=_remaining(deadline))

        index = EmployeeIndex()
        for future in futures:
            employees: List[Employee] = self._collect_directory_result(future, EMPLOYEES_TASK, failures)
            for employee in employees:
                index.add(employee)
        return index

    def _collect_directory_result(
        self, future: Future, task: str, failures: List[PartialFailure]
    ) -> list:
        if not future.done():
            future.cancel()
            logger.warning("Directory lookup for %s did not finish before the report deadline", task)
            failures.append(PartialFailure(source=DIRECTORY_SOURCE, event_kind=task, reason=DEADLINE_EXCEEDED))
            return []
        try:
            return list(future.result())
        except SOURCE_ERRORS as exc:
            reason = describe_source_error(exc)
            logger.warning("Directory lookup for %s failed: %s", task, reason)
            failures.append(PartialFailure(source=DIRECTORY_SOURCE, event_kind=task, reason=reason))
            return []

    def _canonicalize(
        self,
        events: Iterable[RawEvent],
        employee_index: EmployeeIndex,
        diagnostics: ReportDiagnostics,
    ) -> List[CanonicalEvent]:
        canonical: List[CanonicalEvent] = []
        for event in events:
            key = event.canonical_key
            if key is None:
                continue
            employee_id, department_id = resolve_attribution(event, employee_index)
            kind = event.event_kind.value
            if employee_id is None:
                diagnostics.unattributed[kind] = diagnostics.unattributed.get(kind, 0) + 1
            elif department_id is None:
                diagnostics.without_department[kind] = diagnostics.without_department.get(kind, 0) + 1
            canonical.append(
                CanonicalEvent(
                    canonical_key=key,
                    event_kind=event.event_kind,
                    occurred_on=event.occurred_on,
                    amount_in_reporting_currency=self.currency_service.to_reporting_currency(
                        event.amount, event.currency_code, event.vat_amount
                    ),
                    attributed_employee_id=employee_id,
                    attributed_department_id=department_id,
                )
            )
        return canonical

    def _zip_tables(
        self,
        tables: Dict[EventKind, AggregationTable],
        windows: Sequence[WindowRange],
        departments: Sequence[Department],
        employee_index: EmployeeIndex,
        group_by: GroupBy,
        required_rows: Sequence[str],
    ) -> Dict[str, Dict[str, PerformanceRow]]:
        departments_by_id = {department.id: department for department in departments}
        zipped: Dict[str, Dict[str, PerformanceRow]] = {}
        for window in windows:
            group_keys: List[str] = []
            has_general = False
            for table in tables.values():
                for row_key in table[window.window]:
                    if row_key == GENERAL_ROW:
                        has_general = True
                    elif row_key != TOTAL_ROW and row_key not in group_keys:
                        group_keys.append(row_key)
            for row_key in required_rows:
                if row_key not in group_keys:
                    group_keys.append(row_key)
            if group_by is GroupBy.EMPLOYEE:
                group_keys.sort(key=int)
            row_keys = group_keys + ([GENERAL_ROW] if has_general else []) + [TOTAL_ROW]

            rows: Dict[str, PerformanceRow] = {}
            for row_key in row_keys:
                row = self._describe_row(row_key, group_by, departments_by_id, employee_index)
                for event_kind, table in tables.items():
                    cell = table[window.window].get(row_key) or AggregationCell()
                    row.metrics[event_kind.value] = _to_performance_cell(cell)
                rows[row_key] = row
            zipped[window.window.value] = rows
        return zipped

    @staticmethod
    def _describe_row(
        row_key: str,
        group_by: GroupBy,
        departments_by_id: Dict[int, Department],
        employee_index: EmployeeIndex,
    ) -> PerformanceRow:
        if row_key in (GENERAL_ROW, TOTAL_ROW):
            return PerformanceRow(row_key=row_key, label=row_key)
        if group_by is GroupBy.EMPLOYEE:
            employee = employee_index.by_id(int(row_key))
            return PerformanceRow(
                row_key=row_key,
                label=employee.display_name if employee else row_key,
                employee_id=int(row_key),
                department_id=employee.department_id if employee else None,
            )
        department = departments_by_id.get(int(row_key))
        return PerformanceRow(
            row_key=row_key,
            label=department.name if department else row_key,
            department_id=int(row_key),
        )


def _to_performance_cell(cell: AggregationCell) -> PerformanceCell:
    comparison = compare_to_target(cell)
    return PerformanceCell(
        count=cell.count,
        amount=cell.amount,
        expected=cell.expected,
        percent_complete=comparison.percent_complete,
        is_above_target=comparison.is_above_target,
    )


def _remaining(deadline: float) -> float:
    return max(deadline - time.monotonic(), 0.0)
