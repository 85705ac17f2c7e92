from __future__ import annotations

import calendar
from datetime import date, timedelta
from enum import Enum
from typing import Iterable, List, Tuple

from pydantic import BaseModel, ConfigDict

from src.core.errors import InvalidReferenceParametersError

ROLLING_WINDOW_DAYS = 30
MIN_REPORT_YEAR = 2000
MAX_REPORT_YEAR = 2100


class ReportingWindow(str, Enum):
    TODAY = "today"
    LAST_30_DAYS = "last_30_days"
    SELECTED_MONTH = "selected_month"

    @property
    def has_general_row(self) -> bool:
        return self is not ReportingWindow.SELECTED_MONTH


class WindowRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    window: ReportingWindow
    start: date
    end: date

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end


def validate_reference_parameters(reference_date: object, month: object, year: object) -> None:
    if not isinstance(reference_date, date):
        raise InvalidReferenceParametersError("reference_date must be a date")
    if isinstance(month, bool) or not isinstance(month, int) or not 1 <= month <= 12:
        raise InvalidReferenceParametersError("month must be between 1 and 12")
    if isinstance(year, bool) or not isinstance(year, int) or not MIN_REPORT_YEAR <= year <= MAX_REPORT_YEAR:
        raise InvalidReferenceParametersError(
            f"year must be between {MIN_REPORT_YEAR} and {MAX_REPORT_YEAR}"
        )


def build_windows(reference_date: date, month: int, year: int) -> List[WindowRange]:
    validate_reference_parameters(reference_date, month, year)
    last_day = calendar.monthrange(year, month)[1]
    return [
        WindowRange(window=ReportingWindow.TODAY, start=reference_date, end=reference_date),
        WindowRange(
            window=ReportingWindow.LAST_30_DAYS,
            start=reference_date - timedelta(days=ROLLING_WINDOW_DAYS),
            end=reference_date,
        ),
        WindowRange(
            window=ReportingWindow.SELECTED_MONTH,
            start=date(year, month, 1),
            end=date(year, month, last_day),
        ),
    ]


def bounding_range(windows: Iterable[WindowRange]) -> Tuple[date, date]:
    ranges = list(windows)
    if not ranges:
        raise InvalidReferenceParametersError("At least one reporting window is required")
    return min(item.start for item in ranges), max(item.end for item in ranges)
