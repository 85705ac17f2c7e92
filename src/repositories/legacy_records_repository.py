from __future__ import annotations

from datetime import date
from typing import List, Optional

from src.core.supabase import SupabaseClient
from src.models.performance import (
    ContractRecord,
    LeadStageRecord,
    LegacyLeadRecord,
    LegacyPaymentRowRecord,
)
from src.repositories.postgrest_filters import (
    chunked,
    day_range_filters,
    in_filter,
    select_all_pages,
    stage_date_filter,
)

LEGACY_LEAD_COLUMNS = (
    "id,cdate,total,currency_id,meeting_total_currency_id,meeting_scheduler_id,"
    "meeting_manager_id,closer_id,expert_id,case_handler_id,meeting_lawyer_id"
)


class LegacyRecordsRepository:
    """Read access to the legacy `leads_lead` family of tables."""

    def __init__(self, client: Optional[SupabaseClient] = None) -> None:
        self.client = client or SupabaseClient()

    def list_signed_contracts(
        self, start_date: date, end_date: date, timeout: Optional[float] = None
    ) -> List[ContractRecord]:
        filters = [
            ("legacy_id", "not.is.null"),
            ("signed_at", "not.is.null"),
            ("status", "eq.signed"),
            *day_range_filters("signed_at", start_date, end_date),
        ]
        rows = select_all_pages(
            self.client,
            table="contracts",
            select="id,legacy_id,signed_at,total_amount",
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
            select="id,lead_id,stage,date,cdate,creator_id",
            filters=[
                ("lead_id", "not.is.null"),
                ("stage", f"eq.{stage_id}"),
                stage_date_filter(start_date, end_date),
            ],
            order="id.asc",
            timeout=timeout,
        )
        return [LeadStageRecord.model_validate(row) for row in rows]

    def list_leads(
        self, lead_ids: List[int], timeout: Optional[float] = None
    ) -> List[LegacyLeadRecord]:
        normalized_ids = sorted({lead_id for lead_id in lead_ids if lead_id is not None})
        records: List[LegacyLeadRecord] = []
        for chunk in chunked(normalized_ids):
            rows = self.client.select(
                table="leads_lead",
                select=LEGACY_LEAD_COLUMNS,
                filters=[("id", in_filter(chunk))],
                limit=len(chunk),
                timeout=timeout,
            )
            records.extend(LegacyLeadRecord.model_validate(row) for row in rows)
        return records

    def list_payment_rows(
        self, start_date: date, end_date: date, timeout: Optional[float] = None
    ) -> List[LegacyPaymentRowRecord]:
        # Legacy rows are due once due_date is set; the ready_to_pay flag is unreliable there.
        filters = [
            ("due_date", "not.is.null"),
            ("cancel_date", "is.null"),
            *day_range_filters("due_date", start_date, end_date),
        ]
        rows = select_all_pages(
            self.client,
            table="finances_paymentplanrow",
            select=(
                "id,lead_id,value,vat_value,currency_id,due_date,due_by_id,"
                "accounting_currencies!finances_paymentplanrow_currency_id_fkey(name,iso_code)"
            ),
            filters=filters,
            order="due_date.asc,id.asc",
            timeout=timeout,
        )
        return [LegacyPaymentRowRecord.model_validate(row) for row in rows]
