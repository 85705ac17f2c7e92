from __future__ import annotations

from datetime import date
from typing import List, Optional

from src.core.supabase import SupabaseClient
from src.models.performance import (
    ContractRecord,
    CurrentLeadRecord,
    LeadStageRecord,
    PaymentPlanRecord,
)
from src.repositories.postgrest_filters import (
    chunked,
    day_range_filters,
    in_filter,
    select_all_pages,
    stage_date_filter,
)

CURRENT_LEAD_COLUMNS = (
    "id,date_signed,currency_id,balance,balance_currency,proposal_total,proposal_currency,"
    "scheduler,manager,closer,expert,handler,case_handler_id"
)


class CurrentRecordsRepository:
    """Read access to the current `leads` family of tables."""

    def __init__(self, client: Optional[SupabaseClient] = None) -> None:
        self.client = client or SupabaseClient()

    def list_signed_contracts(
        self, start_date: date, end_date: date, timeout: Optional[float] = None
    ) -> List[ContractRecord]:
        filters = [
            ("client_id", "not.is.null"),
            ("signed_at", "not.is.null"),
            ("status", "eq.signed"),
            *day_range_filters("signed_at", start_date, end_date),
        ]
        rows = select_all_pages(
            self.client,
            table="contracts",
            select="id,client_id,signed_at,total_amount",
            filters=filters,
            order="signed_at.asc,id.asc",
            timeout=timeout,
        )
        return [ContractRecord.model_validate(row) for row in rows]

    def list_stage_records(
        self,
        stage_id: int,
        start_date: date,
        end_date: date,
        timeout: Optional[float] = None,
    ) -> List[LeadStageRecord]:
        rows = select_all_pages(
            self.client,
            table="leads_leadstage",
            select="id,newlead_id,stage,date,cdate,creator_id",
            filters=[
                ("newlead_id", "not.is.null"),
                ("stage", f"eq.{stage_id}"),
                stage_date_filter(start_date, end_date),
            ],
            order="id.asc",
            timeout=timeout,
        )
        return [LeadStageRecord.model_validate(row) for row in rows]

    def list_leads_signed_between(
        self, start_date: date, end_date: date, timeout: Optional[float] = None
    ) -> List[CurrentLeadRecord]:
        rows = select_all_pages(
            self.client,
            table="leads",
            select=CURRENT_LEAD_COLUMNS,
            filters=[
                ("date_signed", "not.is.null"),
                *day_range_filters("date_signed", start_date, end_date),
            ],
            order="date_signed.asc,id.asc",
            timeout=timeout,
        )
        return [CurrentLeadRecord.model_validate(row) for row in rows]

    def list_leads(
        self, lead_ids: List[str], timeout: Optional[float] = None
    ) -> List[CurrentLeadRecord]:
        normalized_ids = sorted({str(lead_id) for lead_id in lead_ids if lead_id})
        records: List[CurrentLeadRecord] = []
        for chunk in chunked(normalized_ids):
            rows = self.client.select(
                table="leads",
                select=CURRENT_LEAD_COLUMNS,
                filters=[("id", in_filter(chunk))],
                limit=len(chunk),
                timeout=timeout,
            )
            records.extend(CurrentLeadRecord.model_validate(row) for row in rows)
        return records

    def list_payment_plans(
        self, start_date: date, end_date: date, timeout: Optional[float] = None
    ) -> List[PaymentPlanRecord]:
        filters = [
            ("ready_to_pay", "eq.true"),
            ("due_date", "not.is.null"),
            ("cancel_date", "is.null"),
            *day_range_filters("due_date", start_date, end_date),
        ]
        rows = select_all_pages(
            self.client,
            table="payment_plans",
            select="id,lead_id,value,value_vat,currency,due_date,ready_to_pay_by",
            filters=filters,
            order="due_date.asc,id.asc",
            timeout=timeout,
        )
        return [PaymentPlanRecord.model_validate(row) for row in rows]
