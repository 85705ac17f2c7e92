from __future__ import annotations

import threading
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

import httpx
import pytest

from src.analytics.attribution import normalize_name
from src.core.errors import InvalidReferenceParametersError
from src.models.performance import (
    ContractRecord,
    Department,
    Employee,
    EmployeeReference,
    EventKind,
    LeadStageRecord,
    LegacyLeadRecord,
    RawEvent,
    SchemaOrigin,
    SourceFetchResult,
)
from src.schemas.performance import PartialFailure
from src.services.currency_service import CurrencyService
from src.services.performance_report_service import PerformanceReportService
from src.services.source_adapters import LegacySourceAdapter

REFERENCE_DATE = date(2026, 3, 15)

EMPLOYEES = [
    Employee(id=7, display_name="Dana Levi", department_id=3),
    Employee(id=8, display_name="Omer Katz", department_id=4),
    Employee(id=9, display_name="Noa Ben David", department_id=None),
]
DEPARTMENTS = [
    Department(id=3, name="Sales", target_amount=Decimal("10000"), is_tracked=True),
    Department(id=4, name="Handlers", target_amount=Decimal("0"), is_tracked=True),
]


def make_event(
    origin: SchemaOrigin,
    subject: str,
    kind: EventKind = EventKind.AGREEMENT_SIGNED,
    occurred_on: date = REFERENCE_DATE,
    amount: Optional[str] = "1000",
    currency: Optional[str] = "USD",
    explicit: Optional[int] = None,
    fields: Optional[Dict[str, Optional[EmployeeReference]]] = None,
) -> RawEvent:
    return RawEvent(
        schema_origin=origin,
        record_id=f"record:{subject}",
        subject_id=subject,
        event_kind=kind,
        occurred_on=occurred_on,
        amount=Decimal(amount) if amount is not None else None,
        currency_code=currency,
        explicit_attributee_id=explicit,
        subject_attribute_fields=fields or {},
    )


class StubAdapter:
    def __init__(
        self,
        origin: SchemaOrigin,
        events: Optional[List[RawEvent]] = None,
        errors: Optional[Dict[EventKind, str]] = None,
        blocked: Optional[Dict[EventKind, threading.Event]] = None,
    ) -> None:
        self.schema_origin = origin
        self.events = events or []
        self.errors = errors or {}
        self.blocked = blocked or {}
        self.calls: List[EventKind] = []

    @property
    def source_name(self) -> str:
        return self.schema_origin.value

    def fetch_raw_events(self, event_kind: EventKind, start_date: date, end_date: date) -> SourceFetchResult:
        self.calls.append(event_kind)
        if event_kind in self.blocked:
            self.blocked[event_kind].wait(5)
        if event_kind in self.errors:
            return SourceFetchResult(
                schema_origin=self.schema_origin,
                event_kind=event_kind,
                error=self.errors[event_kind],
            )
        return SourceFetchResult(
            schema_origin=self.schema_origin,
            event_kind=event_kind,
            events=[
                event
                for event in self.events
                if event.schema_origin is self.schema_origin
                and event.event_kind is event_kind
                and start_date <= event.occurred_on <= end_date
            ],
        )


class StubDirectoryRepository:
    def __init__(
        self,
        employees: Optional[List[Employee]] = None,
        departments: Optional[List[Department]] = None,
        departments_error: Optional[Exception] = None,
    ) -> None:
        self.employees = EMPLOYEES if employees is None else employees
        self.departments = DEPARTMENTS if departments is None else departments
        self.departments_error = departments_error
        self.id_calls: List[List[int]] = []
        self.name_calls: List[List[str]] = []

    def list_employees_by_ids(self, employee_ids, timeout=None):
        self.id_calls.append(list(employee_ids))
        return [employee for employee in self.employees if employee.id in employee_ids]

    def list_employees_by_names(self, display_names, timeout=None):
        self.name_calls.append(list(display_names))
        wanted = {normalize_name(name) for name in display_names}
        return [employee for employee in self.employees if normalize_name(employee.display_name) in wanted]

    def list_tracked_departments(self, timeout=None):
        if self.departments_error is not None:
            raise self.departments_error
        return self.departments


def make_service(
    legacy: StubAdapter,
    current: Optional[StubAdapter] = None,
    directory: Optional[StubDirectoryRepository] = None,
    deadline_seconds: float = 10.0,
) -> PerformanceReportService:
    return PerformanceReportService(
        legacy_adapter=legacy,
        current_adapter=current or StubAdapter(SchemaOrigin.CURRENT),
        directory_repository=directory or StubDirectoryRepository(),
        currency_service=CurrencyService(
            reporting_currency="NIS",
            rates={"USD": Decimal("3.7"), "EUR": Decimal("4.0"), "GBP": Decimal("4.7")},
        ),
        max_workers=8,
        deadline_seconds=deadline_seconds,
    )


def signed(report, window: str, row: str):
    return report.windows[window][row].metrics[EventKind.AGREEMENT_SIGNED.value]


def invoiced(report, window: str, row: str):
    return report.windows[window][row].metrics[EventKind.PAYMENT_INVOICED.value]


def test_l100_signed_agreement_is_counted_once_in_every_window() -> None:
    legacy = StubAdapter(
        SchemaOrigin.LEGACY,
        events=[make_event(SchemaOrigin.LEGACY, "L100", amount="1000", currency="USD", explicit=7)],
    )

    report = make_service(legacy).build_report(REFERENCE_DATE, 3, 2026)

    assert not report.is_partial
    for window in ("today", "last_30_days", "selected_month"):
        cell = signed(report, window, "3")
        assert cell.count == 1
        assert cell.amount == Decimal("3700")
        assert signed(report, window, "Total").amount == Decimal("3700")
        assert signed(report, window, "4").count == 0
    month_cell = signed(report, "selected_month", "3")
    assert month_cell.expected == Decimal("10000")
    assert month_cell.percent_complete == Decimal("0.3700")
    assert not month_cell.is_above_target
    assert report.windows["selected_month"]["3"].label == "Sales"
    assert "General" not in report.windows["selected_month"]
    assert report.currency == "NIS"


def test_contract_and_stage_records_for_one_legacy_lead_become_one_event() -> None:
    class LegacyRepository:
        def list_signed_contracts(self, start_date, end_date, timeout=None):
            return [ContractRecord(id=1, legacy_id=100, signed_at="2026-03-15", total_amount=Decimal("1000"))]

        def list_stage_records(self, stage_id, start_date, end_date, timeout=None):
            return [
                LeadStageRecord.model_validate(
                    {"id": 2, "lead_id": 100, "stage": 60, "date": "2026-03-14", "creator_id": 7}
                )
            ]

        def list_leads(self, lead_ids, timeout=None):
            return [LegacyLeadRecord(id=100, total=Decimal("1000"), currency_id=3)]

        def list_payment_rows(self, start_date, end_date, timeout=None):
            return []

    service = make_service(legacy=LegacySourceAdapter(repository=LegacyRepository()))

    report = service.build_report(REFERENCE_DATE, 3, 2026)

    assert report.diagnostics.fetched[EventKind.AGREEMENT_SIGNED.value] == 1
    assert signed(report, "today", "3").count == 1
    assert signed(report, "today", "3").amount == Decimal("3700")


def test_legacy_invoiced_failure_leaves_signed_numbers_intact() -> None:
    events = [
        make_event(SchemaOrigin.LEGACY, "100", explicit=7),
        make_event(SchemaOrigin.LEGACY, "row:5", kind=EventKind.PAYMENT_INVOICED, explicit=7),
        make_event(SchemaOrigin.CURRENT, "lead-a", amount="500", currency="NIS", fields={"closer": "omer katz"}),
    ]
    legacy = StubAdapter(SchemaOrigin.LEGACY, events=events, errors={EventKind.PAYMENT_INVOICED: "timeout"})
    current = StubAdapter(SchemaOrigin.CURRENT, events=events)

    report = make_service(legacy, current).build_report(REFERENCE_DATE, 3, 2026)

    assert report.is_partial
    assert report.partial_failures == [
        PartialFailure(source="legacy", event_kind="payment_invoiced", reason="timeout")
    ]
    assert signed(report, "today", "3").amount == Decimal("3700")
    assert signed(report, "today", "4").amount == Decimal("500")
    assert signed(report, "today", "Total").count == 2
    assert invoiced(report, "today", "Total").count == 0


def test_sources_past_the_deadline_are_reported_and_the_rest_is_returned() -> None:
    release = threading.Event()
    events = [make_event(SchemaOrigin.CURRENT, "lead-a"), make_event(SchemaOrigin.CURRENT, "lead-b")]
    current = StubAdapter(
        SchemaOrigin.CURRENT,
        events=events,
        blocked={EventKind.PAYMENT_INVOICED: release},
    )
    service = make_service(StubAdapter(SchemaOrigin.LEGACY), current, deadline_seconds=0.2)

    try:
        report = service.build_report(REFERENCE_DATE, 3, 2026)
    finally:
        release.set()

    assert report.is_partial
    assert PartialFailure(source="current", event_kind="payment_invoiced", reason="deadline_exceeded") in (
        report.partial_failures
    )
    assert signed(report, "today", "General").count == 2


def test_duplicate_subjects_are_dropped_before_aggregation() -> None:
    event = make_event(SchemaOrigin.LEGACY, "100", explicit=7)
    legacy = StubAdapter(SchemaOrigin.LEGACY, events=[event, event, event])

    report = make_service(legacy).build_report(REFERENCE_DATE, 3, 2026)

    assert report.diagnostics.duplicates_dropped[EventKind.AGREEMENT_SIGNED.value] == 2
    assert signed(report, "last_30_days", "3").count == 1


def test_employee_lookups_are_batched_per_call() -> None:
    events = [make_event(SchemaOrigin.LEGACY, str(index), explicit=7) for index in range(50)]
    events += [
        make_event(SchemaOrigin.CURRENT, f"lead-{index}", fields={"closer": "Omer Katz", "manager": 9})
        for index in range(50)
    ]
    directory = StubDirectoryRepository()
    service = make_service(
        StubAdapter(SchemaOrigin.LEGACY, events=events),
        StubAdapter(SchemaOrigin.CURRENT, events=events),
        directory,
    )

    report = service.build_report(REFERENCE_DATE, 3, 2026)

    assert directory.id_calls == [[7, 9]]
    assert directory.name_calls == [["Omer Katz"]]
    assert signed(report, "today", "Total").count == 100


def test_unattributed_events_count_in_general_and_diagnostics_only() -> None:
    events = [
        make_event(SchemaOrigin.LEGACY, "100", fields={"closer": "---"}),
        make_event(SchemaOrigin.LEGACY, "101", fields={"closer": "Noa Ben David"}),
    ]

    report = make_service(StubAdapter(SchemaOrigin.LEGACY, events=events)).build_report(
        REFERENCE_DATE, 3, 2026
    )

    assert report.diagnostics.unattributed == {"agreement_signed": 1}
    assert report.diagnostics.without_department == {"agreement_signed": 1}
    assert signed(report, "today", "General").count == 2
    assert signed(report, "today", "Total").count == 0


def test_department_lookup_failure_is_partial_not_fatal() -> None:
    directory = StubDirectoryRepository(departments_error=httpx.ReadTimeout("slow"))
    legacy = StubAdapter(SchemaOrigin.LEGACY, events=[make_event(SchemaOrigin.LEGACY, "100", explicit=7)])

    report = make_service(legacy, directory=directory).build_report(REFERENCE_DATE, 3, 2026)

    assert report.partial_failures == [
        PartialFailure(source="directory", event_kind="departments", reason="timeout")
    ]
    assert list(report.windows["today"]) == ["General", "Total"]
    assert signed(report, "today", "General").count == 1


def test_invalid_month_is_rejected_before_any_fetch() -> None:
    legacy = StubAdapter(SchemaOrigin.LEGACY)

    with pytest.raises(InvalidReferenceParametersError):
        make_service(legacy).build_report(REFERENCE_DATE, 13, 2026)

    assert legacy.calls == []


def test_employee_scoreboard_groups_by_employee() -> None:
    events = [
        make_event(SchemaOrigin.LEGACY, "100", explicit=7),
        make_event(SchemaOrigin.LEGACY, "101", explicit=8, amount="200"),
        make_event(SchemaOrigin.LEGACY, "102", explicit=9, amount="300", currency="NIS"),
    ]

    report = make_service(StubAdapter(SchemaOrigin.LEGACY, events=events)).build_employee_scoreboard(
        REFERENCE_DATE, 3, 2026
    )

    rows = report.windows["selected_month"]
    assert list(rows) == ["7", "8", "9", "Total"]
    assert rows["7"].label == "Dana Levi"
    assert rows["7"].department_id == 3
    assert rows["9"].metrics["agreement_signed"].amount == Decimal("300")
    assert rows["Total"].metrics["agreement_signed"].amount == Decimal("3700") + Decimal("740") + Decimal("300")
    assert report.group_by == "employee"


def test_my_performance_keeps_the_requested_employee_row_even_when_empty() -> None:
    events = [make_event(SchemaOrigin.LEGACY, "100", explicit=7)]
    service = make_service(StubAdapter(SchemaOrigin.LEGACY, events=events))

    mine = service.build_employee_scoreboard(REFERENCE_DATE, 3, 2026, employee_id=7)
    nobody = service.build_employee_scoreboard(REFERENCE_DATE, 3, 2026, employee_id=8)

    assert list(mine.windows["today"]) == ["7", "General", "Total"]
    assert mine.windows["today"]["7"].metrics["agreement_signed"].count == 1
    assert nobody.windows["today"]["8"].metrics["agreement_signed"].count == 0
    assert nobody.windows["today"]["Total"].metrics["agreement_signed"].count == 0


def test_milestone_report_counts_scheduling_and_handling_separately() -> None:
    events = [
        make_event(
            SchemaOrigin.CURRENT,
            "lead-a",
            kind=EventKind.SCHEDULING_MILESTONE,
            amount=None,
            currency=None,
            fields={"scheduler": "Dana Levi"},
        ),
        make_event(
            SchemaOrigin.CURRENT,
            "lead-a",
            kind=EventKind.HANDLING_MILESTONE,
            amount=None,
            currency=None,
            fields={"handler": 8},
        ),
    ]
    current = StubAdapter(SchemaOrigin.CURRENT, events=events)

    report = make_service(StubAdapter(SchemaOrigin.LEGACY), current).build_milestone_report(
        REFERENCE_DATE, 3, 2026
    )

    today = report.windows["today"]
    assert today["3"].metrics["scheduling_milestone"].count == 1
    assert today["3"].metrics["handling_milestone"].count == 0
    assert today["4"].metrics["handling_milestone"].count == 1
    assert today["Total"].metrics["scheduling_milestone"].amount == Decimal("0")
    assert set(current.calls) == {EventKind.SCHEDULING_MILESTONE, EventKind.HANDLING_MILESTONE}
