from __future__ import annotations

from collections import defaultdict
from decimal import ROUND_CEILING, Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from src.analytics.windows import ReportingWindow, WindowRange
from src.models.performance import CanonicalEvent, Department

GENERAL_ROW = "General"
TOTAL_ROW = "Total"


class GroupBy(str, Enum):
    DEPARTMENT = "department"
    EMPLOYEE = "employee"


class AggregationCell(BaseModel):
    model_config = ConfigDict(frozen=True)

    count: int = 0
    amount: Decimal = Decimal("0")
    expected: Decimal = Decimal("0")


AggregationTable = Dict[ReportingWindow, Dict[str, AggregationCell]]


class _Accumulator:
    __slots__ = ("count", "amount")

    def __init__(self) -> None:
        self.count = 0
        self.amount = Decimal("0")

    def add(self, amount: Decimal) -> None:
        self.count += 1
        self.amount += amount


def ceil_amount(amount: Decimal) -> Decimal:
    return amount.to_integral_value(rounding=ROUND_CEILING)


def department_row_key(department_id: int) -> str:
    return str(department_id)


def employee_row_key(employee_id: int) -> str:
    return str(employee_id)


def _row_key_for(event: CanonicalEvent, group_by: GroupBy, tracked_ids: Dict[int, Department]) -> Optional[str]:
    if group_by is GroupBy.EMPLOYEE:
        if event.attributed_employee_id is None:
            return None
        return employee_row_key(event.attributed_employee_id)
    if event.attributed_department_id not in tracked_ids:
        return None
    return department_row_key(event.attributed_department_id)


def aggregate(
    events: Iterable[CanonicalEvent],
    windows: Sequence[WindowRange],
    departments: Iterable[Department],
    group_by: GroupBy = GroupBy.DEPARTMENT,
) -> AggregationTable:
    """Bucket events into every window that contains them and roll up per row.

    Department mode keeps one row per tracked department, present even when
    empty. Employee mode keeps one row per attributed employee instead. Both
    add a `General` row (every event in the window, attributed or not) on
    windows that define one, and `Total`. `Total` is always the sum of the
    rounded group rows; `General` never feeds it.
    """
    tracked = {department.id: department for department in departments if department.is_tracked}
    event_list = list(events)

    accumulators: Dict[ReportingWindow, Dict[str, _Accumulator]] = {
        window.window: defaultdict(_Accumulator) for window in windows
    }
    general: Dict[ReportingWindow, _Accumulator] = {
        window.window: _Accumulator() for window in windows if window.window.has_general_row
    }

    for event in event_list:
        row_key = _row_key_for(event, group_by, tracked)
        for window in windows:
            if not window.contains(event.occurred_on):
                continue
            if window.window in general:
                general[window.window].add(event.amount_in_reporting_currency)
            if row_key is not None:
                accumulators[window.window][row_key].add(event.amount_in_reporting_currency)

    if group_by is GroupBy.DEPARTMENT:
        row_keys: List[str] = [department_row_key(department_id) for department_id in tracked]
    else:
        seen = {key for rows in accumulators.values() for key in rows}
        row_keys = sorted(seen, key=int)

    table: AggregationTable = {}
    for window in windows:
        rows: Dict[str, AggregationCell] = {}
        total_count = 0
        total_amount = Decimal("0")
        total_expected = Decimal("0")
        for row_key in row_keys:
            accumulator = accumulators[window.window].get(row_key) or _Accumulator()
            expected = Decimal("0")
            if group_by is GroupBy.DEPARTMENT and window.window is ReportingWindow.SELECTED_MONTH:
                expected = tracked[int(row_key)].target_amount
            cell = AggregationCell(
                count=accumulator.count,
                amount=ceil_amount(accumulator.amount),
                expected=expected,
            )
            rows[row_key] = cell
            total_count += cell.count
            total_amount += cell.amount
            total_expected += cell.expected
        if window.window in general:
            accumulator = general[window.window]
            rows[GENERAL_ROW] = AggregationCell(
                count=accumulator.count,
                amount=ceil_amount(accumulator.amount),
            )
        rows[TOTAL_ROW] = AggregationCell(
            count=total_count,
            amount=total_amount,
            expected=total_expected,
        )
        table[window.window] = rows
    return table
