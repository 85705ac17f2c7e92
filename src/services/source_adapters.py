from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Union

import httpx

from src.analytics.attribution import parse_employee_id
from src.core.config import get_settings
from src.core.errors import SourceUnavailableError
from src.models.performance import (
    ContractRecord,
    CurrentLeadRecord,
    EmployeeReference,
    EventKind,
    LeadStageRecord,
    LegacyLeadRecord,
    RawEvent,
    SchemaOrigin,
    SourceFetchResult,
    coerce_date,
)
from src.repositories.current_records_repository import CurrentRecordsRepository
from src.repositories.legacy_records_repository import LegacyRecordsRepository

logger = logging.getLogger(__name__)

# Lower rank wins when several records report the same signed agreement.
CONTRACT_RANK = 0
STAGE_RANK = 1
DATE_SIGNED_RANK = 2

SOURCE_ERRORS = (httpx.HTTPError, ValueError, SourceUnavailableError)


class _SignedCandidate:
    __slots__ = ("rank", "record_id", "occurred_on", "creator_id", "contract_amount")

    def __init__(
        self,
        rank: int,
        record_id: str,
        occurred_on: date,
        creator_id: Optional[int] = None,
        contract_amount: Optional[Decimal] = None,
    ) -> None:
        self.rank = rank
        self.record_id = record_id
        self.occurred_on = occurred_on
        self.creator_id = creator_id
        self.contract_amount = contract_amount


def merge_signed_candidates(
    candidates: Iterable[tuple[str, _SignedCandidate]],
) -> Dict[str, _SignedCandidate]:
    """Collapse per-lead candidates: date from the best ranked, creator from any stage row."""
    merged: Dict[str, _SignedCandidate] = {}
    for lead_id, candidate in candidates:
        current = merged.get(lead_id)
        if current is None:
            merged[lead_id] = candidate
            continue
        winner, other = (candidate, current) if candidate.rank < current.rank else (current, candidate)
        merged[lead_id] = _SignedCandidate(
            rank=winner.rank,
            record_id=winner.record_id,
            occurred_on=winner.occurred_on,
            creator_id=winner.creator_id if winner.creator_id is not None else other.creator_id,
            contract_amount=(
                winner.contract_amount if winner.contract_amount is not None else other.contract_amount
            ),
        )
    return merged


def _first_present(*values: Optional[EmployeeReference]) -> Optional[EmployeeReference]:
    for value in values:
        if value is not None:
            return value
    return None


class SourceAdapter:
    """Reads one record system and returns its facts as `RawEvent`s.

    Subclasses implement the per-kind fetchers. `fetch_raw_events` is the only
    public entry point and never raises for source failures: transport errors,
    HTTP errors, timeouts and malformed rows come back as a failed
    `SourceFetchResult`.
    """

    schema_origin: SchemaOrigin

    def __init__(
        self,
        signed_stage_id: Optional[int] = None,
        scheduling_stage_id: Optional[int] = None,
        handling_stage_id: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.signed_stage_id = signed_stage_id if signed_stage_id is not None else settings.signed_stage_id
        self.milestone_stage_ids: Dict[EventKind, int] = {
            EventKind.SCHEDULING_MILESTONE: (
                scheduling_stage_id if scheduling_stage_id is not None else settings.scheduling_stage_id
            ),
            EventKind.HANDLING_MILESTONE: (
                handling_stage_id if handling_stage_id is not None else settings.handling_stage_id
            ),
        }
        self.timeout = timeout if timeout is not None else settings.source_timeout_seconds

    @property
    def source_name(self) -> str:
        return self.schema_origin.value

    def fetch_raw_events(self, event_kind: EventKind, start_date: date, end_date: date) -> SourceFetchResult:
        fetchers: Dict[EventKind, Callable[[date, date], List[RawEvent]]] = {
            EventKind.AGREEMENT_SIGNED: self.fetch_signed_agreements,
            EventKind.PAYMENT_INVOICED: self.fetch_invoiced_payments,
            EventKind.SCHEDULING_MILESTONE: lambda start, end: self.fetch_milestones(
                EventKind.SCHEDULING_MILESTONE, start, end
            ),
            EventKind.HANDLING_MILESTONE: lambda start, end: self.fetch_milestones(
                EventKind.HANDLING_MILESTONE, start, end
            ),
        }
        try:
            events = fetchers[event_kind](start_date, end_date)
        except SOURCE_ERRORS as exc:
            reason = describe_source_error(exc)
            logger.warning(
                "Source %s failed for %s between %s and %s: %s",
                self.source_name,
                event_kind.value,
                start_date,
                end_date,
                reason,
            )
            return SourceFetchResult(
                schema_origin=self.schema_origin,
                event_kind=event_kind,
                events=[],
                error=reason,
            )
        logger.debug("Source %s returned %d %s events", self.source_name, len(events), event_kind.value)
        return SourceFetchResult(schema_origin=self.schema_origin, event_kind=event_kind, events=events)

    def fetch_signed_agreements(self, start_date: date, end_date: date) -> List[RawEvent]:
        raise NotImplementedError

    def fetch_invoiced_payments(self, start_date: date, end_date: date) -> List[RawEvent]:
        raise NotImplementedError

    def fetch_milestones(self, event_kind: EventKind, start_date: date, end_date: date) -> List[RawEvent]:
        raise NotImplementedError

    def _stage_candidates(self, records: Sequence[LeadStageRecord], lead_attr: str):
        for record in records:
            lead_id = getattr(record, lead_attr)
            occurred_on = record.occurred_on
            if lead_id is None or occurred_on is None:
                continue
            yield str(lead_id), _SignedCandidate(
                rank=STAGE_RANK,
                record_id=f"stage:{record.id}",
                occurred_on=occurred_on,
                creator_id=record.creator_id,
            )

    def _contract_candidates(self, records: Sequence[ContractRecord], lead_attr: str):
        for record in records:
            lead_id = getattr(record, lead_attr)
            occurred_on = coerce_date(record.signed_at)
            if lead_id is None or occurred_on is None:
                continue
            yield str(lead_id), _SignedCandidate(
                rank=CONTRACT_RANK,
                record_id=f"contract:{record.id}",
                occurred_on=occurred_on,
                contract_amount=record.total_amount,
            )


def describe_source_error(exc: Exception) -> str:
    if isinstance(exc, httpx.TimeoutException):
        return "timeout"
    if isinstance(exc, httpx.HTTPStatusError):
        return f"http_{exc.response.status_code}"
    if isinstance(exc, httpx.HTTPError):
        return f"transport_error: {exc.__class__.__name__}"
    if isinstance(exc, SourceUnavailableError):
        return exc.message
    return f"malformed_rows: {exc.__class__.__name__}"


class LegacySourceAdapter(SourceAdapter):
    """Legacy `leads_lead` records with integer ids."""

    schema_origin = SchemaOrigin.LEGACY

    def __init__(self, repository: Optional[LegacyRecordsRepository] = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.repository = repository or LegacyRecordsRepository()

    def _leads_by_id(self, lead_ids: Iterable[Union[int, str, None]]) -> Dict[str, LegacyLeadRecord]:
        ids = sorted({int(lead_id) for lead_id in lead_ids if lead_id is not None})
        if not ids:
            return {}
        return {str(lead.id): lead for lead in self.repository.list_leads(ids, timeout=self.timeout)}

    @staticmethod
    def _role_fields(lead: Optional[LegacyLeadRecord]) -> Dict[str, Optional[EmployeeReference]]:
        if lead is None:
            return {}
        return {
            "closer": lead.closer_id,
            "manager": lead.meeting_manager_id,
            "scheduler": lead.meeting_scheduler_id,
            "expert": lead.expert_id,
            "handler": _first_present(lead.case_handler_id, lead.meeting_lawyer_id),
        }

    @staticmethod
    def _lead_currency(lead: Optional[LegacyLeadRecord]) -> Optional[int]:
        if lead is None:
            return None
        return lead.currency_id if lead.currency_id is not None else lead.meeting_total_currency_id

    def fetch_signed_agreements(self, start_date: date, end_date: date) -> List[RawEvent]:
        contracts = self.repository.list_signed_contracts(start_date, end_date, timeout=self.timeout)
        stages = self.repository.list_stage_records(
            self.signed_stage_id, start_date, end_date, timeout=self.timeout
        )
        merged = merge_signed_candidates(
            [
                *self._contract_candidates(contracts, "legacy_id"),
                *self._stage_candidates(stages, "lead_id"),
            ]
        )
        leads = self._leads_by_id(merged.keys())

        events: List[RawEvent] = []
        for lead_id, candidate in merged.items():
            lead = leads.get(lead_id)
            amount = lead.total if lead is not None and lead.total is not None else candidate.contract_amount
            events.append(
                RawEvent(
                    schema_origin=self.schema_origin,
                    record_id=candidate.record_id,
                    subject_id=lead_id,
                    event_kind=EventKind.AGREEMENT_SIGNED,
                    occurred_on=candidate.occurred_on,
                    amount=amount,
                    currency_code=self._lead_currency(lead),
                    explicit_attributee_id=candidate.creator_id,
                    subject_attribute_fields=self._role_fields(lead),
                )
            )
        return events

    def fetch_invoiced_payments(self, start_date: date, end_date: date) -> List[RawEvent]:
        rows = self.repository.list_payment_rows(start_date, end_date, timeout=self.timeout)
        leads = self._leads_by_id(row.lead_id for row in rows)

        events: List[RawEvent] = []
        for row in rows:
            occurred_on = coerce_date(row.due_date)
            if occurred_on is None:
                continue
            lead = leads.get(str(row.lead_id)) if row.lead_id is not None else None
            events.append(
                RawEvent(
                    schema_origin=self.schema_origin,
                    record_id=f"payment_row:{row.id}",
                    subject_id=f"payment_row:{row.id}",
                    event_kind=EventKind.PAYMENT_INVOICED,
                    occurred_on=occurred_on,
                    amount=row.value,
                    vat_amount=row.vat_value,
                    currency_code=row.currency_iso_code or row.currency_id,
                    explicit_attributee_id=row.due_by_id,
                    subject_attribute_fields=self._role_fields(lead),
                )
            )
        return events

    def fetch_milestones(self, event_kind: EventKind, start_date: date, end_date: date) -> List[RawEvent]:
        stage_id = self.milestone_stage_ids[event_kind]
        stages = self.repository.list_stage_records(stage_id, start_date, end_date, timeout=self.timeout)
        leads = self._leads_by_id(stage.lead_id for stage in stages)

        events: List[RawEvent] = []
        for stage in stages:
            occurred_on = stage.occurred_on
            if stage.lead_id is None or occurred_on is None:
                continue
            events.append(
                RawEvent(
                    schema_origin=self.schema_origin,
                    record_id=f"stage:{stage.id}",
                    subject_id=str(stage.lead_id),
                    event_kind=event_kind,
                    occurred_on=occurred_on,
                    explicit_attributee_id=stage.creator_id,
                    subject_attribute_fields=self._role_fields(leads.get(str(stage.lead_id))),
                )
            )
        return events


class CurrentSourceAdapter(SourceAdapter):
    """Current `leads` records keyed by UUID strings."""

    schema_origin = SchemaOrigin.CURRENT

    def __init__(self, repository: Optional[CurrentRecordsRepository] = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.repository = repository or CurrentRecordsRepository()

    def _leads_by_id(
        self,
        lead_ids: Iterable[Union[int, str, None]],
        known: Optional[Dict[str, CurrentLeadRecord]] = None,
    ) -> Dict[str, CurrentLeadRecord]:
        leads: Dict[str, CurrentLeadRecord] = dict(known or {})
        missing = sorted({str(lead_id) for lead_id in lead_ids if lead_id is not None} - leads.keys())
        if missing:
            for lead in self.repository.list_leads(missing, timeout=self.timeout):
                leads[str(lead.id)] = lead
        return leads

    @staticmethod
    def _role_fields(lead: Optional[CurrentLeadRecord]) -> Dict[str, Optional[EmployeeReference]]:
        if lead is None:
            return {}
        return {
            "closer": lead.closer,
            "manager": lead.manager,
            "scheduler": lead.scheduler,
            "expert": lead.expert,
            "handler": _first_present(lead.handler, lead.case_handler_id),
        }

    @staticmethod
    def _signed_amount(lead: Optional[CurrentLeadRecord], contract_amount: Optional[Decimal]):
        if lead is not None:
            if lead.balance is not None:
                return lead.balance, _first_present(lead.balance_currency, lead.currency_id)
            if lead.proposal_total is not None:
                return lead.proposal_total, _first_present(lead.proposal_currency, lead.currency_id)
            return contract_amount, lead.currency_id
        return contract_amount, None

    def fetch_signed_agreements(self, start_date: date, end_date: date) -> List[RawEvent]:
        contracts = self.repository.list_signed_contracts(start_date, end_date, timeout=self.timeout)
        stages = self.repository.list_stage_records(
            self.signed_stage_id, start_date, end_date, timeout=self.timeout
        )
        signed_leads = self.repository.list_leads_signed_between(start_date, end_date, timeout=self.timeout)

        date_signed_candidates = []
        for lead in signed_leads:
            occurred_on = coerce_date(lead.date_signed)
            if occurred_on is None:
                continue
            date_signed_candidates.append(
                (
                    str(lead.id),
                    _SignedCandidate(rank=DATE_SIGNED_RANK, record_id=f"lead:{lead.id}", occurred_on=occurred_on),
                )
            )
        merged = merge_signed_candidates(
            [
                *self._contract_candidates(contracts, "client_id"),
                *self._stage_candidates(stages, "newlead_id"),
                *date_signed_candidates,
            ]
        )
        leads = self._leads_by_id(merged.keys(), known={str(lead.id): lead for lead in signed_leads})

        events: List[RawEvent] = []
        for lead_id, candidate in merged.items():
            lead = leads.get(lead_id)
            amount, currency = self._signed_amount(lead, candidate.contract_amount)
            events.append(
                RawEvent(
                    schema_origin=self.schema_origin,
                    record_id=candidate.record_id,
                    subject_id=lead_id,
                    event_kind=EventKind.AGREEMENT_SIGNED,
                    occurred_on=candidate.occurred_on,
                    amount=amount,
                    currency_code=currency,
                    explicit_attributee_id=candidate.creator_id,
                    subject_attribute_fields=self._role_fields(lead),
                )
            )
        return events

    def fetch_invoiced_payments(self, start_date: date, end_date: date) -> List[RawEvent]:
        plans = self.repository.list_payment_plans(start_date, end_date, timeout=self.timeout)
        leads = self._leads_by_id(plan.lead_id for plan in plans)

        events: List[RawEvent] = []
        for plan in plans:
            occurred_on = coerce_date(plan.due_date)
            if occurred_on is None:
                continue
            lead = leads.get(str(plan.lead_id)) if plan.lead_id is not None else None
            fields = self._role_fields(lead)
            sender_id = parse_employee_id(plan.ready_to_pay_by)
            if sender_id is None and plan.ready_to_pay_by is not None:
                fields["finance_sender"] = plan.ready_to_pay_by
            events.append(
                RawEvent(
                    schema_origin=self.schema_origin,
                    record_id=f"payment_plan:{plan.id}",
                    subject_id=f"payment_plan:{plan.id}",
                    event_kind=EventKind.PAYMENT_INVOICED,
                    occurred_on=occurred_on,
                    amount=plan.value,
                    vat_amount=plan.value_vat,
                    currency_code=plan.currency,
                    explicit_attributee_id=sender_id,
                    subject_attribute_fields=fields,
                )
            )
        return events

    def fetch_milestones(self, event_kind: EventKind, start_date: date, end_date: date) -> List[RawEvent]:
        stage_id = self.milestone_stage_ids[event_kind]
        stages = self.repository.list_stage_records(stage_id, start_date, end_date, timeout=self.timeout)
        leads = self._leads_by_id(stage.newlead_id for stage in stages)

        events: List[RawEvent] = []
        for stage in stages:
            occurred_on = stage.occurred_on
            if stage.newlead_id is None or occurred_on is None:
                continue
            events.append(
                RawEvent(
                    schema_origin=self.schema_origin,
                    record_id=f"stage:{stage.id}",
                    subject_id=str(stage.newlead_id),
                    event_kind=event_kind,
                    occurred_on=occurred_on,
                    explicit_attributee_id=stage.creator_id,
                    subject_attribute_fields=self._role_fields(leads.get(str(stage.newlead_id))),
                )
            )
        return events
