from __future__ import annotations

from datetime import date, datetime, timezone

from fastapi import APIRouter, Depends, Query

from src.analytics.windows import validate_reference_parameters
from src.api.dependencies import get_performance_report_service
from src.schemas.performance import PerformanceFilters, PerformanceReport
from src.services.performance_report_service import PerformanceReportService
from src.shared.response import Meta, ResponseEnvelope

router = APIRouter(prefix="/performance", tags=["performance"])

SALES_SOURCES = "contracts,leads_leadstage,leads,leads_lead,payment_plans,finances_paymentplanrow"
MILESTONE_SOURCES = "leads_leadstage,leads,leads_lead"


def get_performance_filters(
    reference_date: date | None = Query(default=None),
    month: int | None = Query(default=None),
    year: int | None = Query(default=None),
    employee_id: int | None = Query(default=None, ge=1),
) -> PerformanceFilters:
    resolved_date = reference_date or date.today()
    resolved_month = month if month is not None else resolved_date.month
    resolved_year = year if year is not None else resolved_date.year
    # Out-of-range values raise InvalidReferenceParametersError (400).
    validate_reference_parameters(resolved_date, resolved_month, resolved_year)
    return PerformanceFilters(
        reference_date=resolved_date,
        month=resolved_month,
        year=resolved_year,
        employee_id=employee_id,
    )


def build_report_meta(report: PerformanceReport, source: str) -> Meta:
    return Meta(
        as_of_date=report.reference_date.isoformat(),
        source=source,
        time_window=f"{report.year}-{report.month:02d}",
        calculation_version="v1",
        currency=report.currency,
        data_status="partial" if report.is_partial else "live",
        is_stale=False,
        degraded=report.is_partial,
        generated_at=datetime.now(timezone.utc).isoformat(),
    )


@router.get("/departments")
def department_performance(
    filters: PerformanceFilters = Depends(get_performance_filters),
    service: PerformanceReportService = Depends(get_performance_report_service),
) -> ResponseEnvelope[PerformanceReport]:
    data = service.build_report(filters.reference_date, filters.month, filters.year)
    return ResponseEnvelope(data=data, pagination=None, meta=build_report_meta(data, SALES_SOURCES))


@router.get("/employees")
def employee_scoreboard(
    filters: PerformanceFilters = Depends(get_performance_filters),
    service: PerformanceReportService = Depends(get_performance_report_service),
) -> ResponseEnvelope[PerformanceReport]:
    data = service.build_employee_scoreboard(
        filters.reference_date,
        filters.month,
        filters.year,
        employee_id=filters.employee_id,
    )
    return ResponseEnvelope(data=data, pagination=None, meta=build_report_meta(data, SALES_SOURCES))


@router.get("/milestones")
def milestone_performance(
    filters: PerformanceFilters = Depends(get_performance_filters),
    service: PerformanceReportService = Depends(get_performance_report_service),
) -> ResponseEnvelope[PerformanceReport]:
    data = service.build_milestone_report(filters.reference_date, filters.month, filters.year)
    return ResponseEnvelope(data=data, pagination=None, meta=build_report_meta(data, MILESTONE_SOURCES))
