from __future__ import annotations

from typing import List, Optional

from src.core.supabase import SupabaseClient
from src.models.performance import Department, Employee
from src.repositories.postgrest_filters import (
    chunked,
    ilike_name_pattern,
    in_filter,
    quote_value,
    select_all_pages,
)

EMPLOYEE_COLUMNS = "id,display_name,department_id"


class DirectoryRepository:
    """Employees and departments, shared by both record systems."""

    def __init__(self, client: Optional[SupabaseClient] = None) -> None:
        self.client = client or SupabaseClient()

    def list_employees_by_ids(
        self, employee_ids: List[int], timeout: Optional[float] = None
    ) -> List[Employee]:
        normalized_ids = sorted({employee_id for employee_id in employee_ids if employee_id is not None})
        employees: List[Employee] = []
        for chunk in chunked(normalized_ids):
            rows = self.client.select(
                table="tenants_employee",
                select=EMPLOYEE_COLUMNS,
                filters=[("id", in_filter(chunk))],
                limit=len(chunk),
                timeout=timeout,
            )
            employees.extend(Employee.model_validate(row) for row in rows)
        return employees

    def list_employees_by_names(
        self, display_names: List[str], timeout: Optional[float] = None
    ) -> List[Employee]:
        normalized_names = sorted({" ".join(name.split()) for name in display_names if name and name.strip()})
        employees: List[Employee] = []
        for chunk in chunked(normalized_names):
            # Case-insensitive match; extra rows are dropped by the name index.
            clauses = ",".join(
                f"display_name.ilike.{quote_value(ilike_name_pattern(name))}" for name in chunk
            )
            rows = select_all_pages(
                self.client,
                table="tenants_employee",
                select=EMPLOYEE_COLUMNS,
                filters=[("or", f"({clauses})")],
                order="id.asc",
                timeout=timeout,
            )
            employees.extend(Employee.model_validate(row) for row in rows)
        return employees

    def list_tracked_departments(self, timeout: Optional[float] = None) -> List[Department]:
        rows = select_all_pages(
            self.client,
            table="tenant_departement",
            select="id,name,min_income,important",
            filters=[("important", "eq.t")],
            order="id.asc",
            timeout=timeout,
        )
        return [
            Department(
                id=row["id"],
                name=row.get("name") or "",
                target_amount=row.get("min_income"),
                is_tracked=row.get("important", True),
            )
            for row in rows
        ]
