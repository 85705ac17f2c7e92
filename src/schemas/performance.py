from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import ConfigDict, Field

from src.shared.base import BaseSchema


class PerformanceFilters(BaseSchema):
    # Keep query parameter names in snake_case for API contract consistency.
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    reference_date: date
    month: int = Field(ge=1, le=12)
    year: int = Field(ge=2000, le=2100)
    employee_id: Optional[int] = None


class PerformanceCell(BaseSchema):
    count: int = 0
    amount: Decimal = Decimal("0")
    expected: Decimal = Decimal("0")
    percent_complete: Decimal = Decimal("0")
    is_above_target: bool = False


class PerformanceRow(BaseSchema):
    row_key: str
    label: str
    department_id: Optional[int] = None
    employee_id: Optional[int] = None
    metrics: Dict[str, PerformanceCell] = Field(default_factory=dict)


class ReportWindowRange(BaseSchema):
    window: str
    start: date
    end: date


class PartialFailure(BaseSchema):
    source: str
    event_kind: str
    reason: str


class ReportDiagnostics(BaseSchema):
    fetched: Dict[str, int] = Field(default_factory=dict)
    duplicates_dropped: Dict[str, int] = Field(default_factory=dict)
    unattributed: Dict[str, int] = Field(default_factory=dict)
    without_department: Dict[str, int] = Field(default_factory=dict)


class PerformanceReport(BaseSchema):
    """Per window, per row, one cell per event kind.

    `windows` maps a window name to rows keyed by department id (or employee
    id on the scoreboard) plus `General` and `Total`.
    """

    reference_date: date
    month: int
    year: int
    group_by: str
    currency: str
    window_ranges: List[ReportWindowRange] = Field(default_factory=list)
    windows: Dict[str, Dict[str, PerformanceRow]] = Field(default_factory=dict)
    is_partial: bool = False
    partial_failures: List[PartialFailure] = Field(default_factory=list)
    diagnostics: ReportDiagnostics = Field(default_factory=ReportDiagnostics)
