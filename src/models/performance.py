from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SchemaOrigin(str, Enum):
    LEGACY = "legacy"
    CURRENT = "current"


class EventKind(str, Enum):
    AGREEMENT_SIGNED = "agreement_signed"
    PAYMENT_INVOICED = "payment_invoiced"
    HANDLING_MILESTONE = "handling_milestone"
    SCHEDULING_MILESTONE = "scheduling_milestone"


EmployeeReference = Union[int, str]
CurrencyReference = Union[int, str]
CanonicalKey = Tuple[SchemaOrigin, str]


def coerce_date(value: Any) -> Optional[date]:
    """Accept PostgREST date or timestamp strings and keep the calendar day."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def coerce_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float, str)):
        text = str(value).strip().replace(",", "")
        if not text:
            return None
        try:
            parsed = Decimal(text)
        except InvalidOperation:
            return None
        return parsed if parsed.is_finite() else None
    return None


class RawEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    schema_origin: SchemaOrigin
    record_id: str
    subject_id: Optional[str] = None
    event_kind: EventKind
    occurred_on: date
    amount: Optional[Decimal] = None
    vat_amount: Optional[Decimal] = None
    currency_code: Optional[CurrencyReference] = None
    explicit_attributee_id: Optional[int] = None
    subject_attribute_fields: Dict[str, Optional[EmployeeReference]] = Field(default_factory=dict)

    @property
    def canonical_key(self) -> Optional[CanonicalKey]:
        if self.subject_id is None:
            return None
        return (self.schema_origin, self.subject_id)


class CanonicalEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    canonical_key: CanonicalKey
    event_kind: EventKind
    occurred_on: date
    amount_in_reporting_currency: Decimal
    attributed_employee_id: Optional[int] = None
    attributed_department_id: Optional[int] = None


class Employee(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    display_name: str = ""
    department_id: Optional[int] = None

    @field_validator("display_name", mode="before")
    @classmethod
    def _blank_name(cls, value: Any) -> str:
        return "" if value is None else str(value)


class Department(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str = ""
    target_amount: Decimal = Decimal("0")
    is_tracked: bool = False

    @field_validator("target_amount", mode="before")
    @classmethod
    def _parse_target(cls, value: Any) -> Decimal:
        return coerce_decimal(value) or Decimal("0")

    @field_validator("is_tracked", mode="before")
    @classmethod
    def _parse_flag(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in {"t", "true", "1", "yes"}
        return bool(value)


class SourceFetchResult(BaseModel):
    schema_origin: SchemaOrigin
    event_kind: EventKind
    events: List[RawEvent] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class _SourceRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    @field_validator("*", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class ContractRecord(_SourceRecord):
    id: Union[int, str]
    client_id: Optional[Union[int, str]] = None
    legacy_id: Optional[int] = None
    signed_at: Optional[str] = None
    total_amount: Optional[Decimal] = None


class LeadStageRecord(_SourceRecord):
    id: Union[int, str]
    lead_id: Optional[int] = None
    newlead_id: Optional[Union[int, str]] = None
    stage: Optional[Union[int, str]] = None
    stage_date: Optional[str] = Field(default=None, alias="date")
    cdate: Optional[str] = None
    creator_id: Optional[int] = None

    @property
    def occurred_on(self) -> Optional[date]:
        return coerce_date(self.stage_date) or coerce_date(self.cdate)


class CurrentLeadRecord(_SourceRecord):
    id: Union[int, str]
    date_signed: Optional[str] = None
    currency_id: Optional[CurrencyReference] = None
    balance: Optional[Decimal] = None
    balance_currency: Optional[str] = None
    proposal_total: Optional[Decimal] = None
    proposal_currency: Optional[str] = None
    scheduler: Optional[EmployeeReference] = None
    manager: Optional[EmployeeReference] = None
    closer: Optional[EmployeeReference] = None
    expert: Optional[EmployeeReference] = None
    handler: Optional[EmployeeReference] = None
    case_handler_id: Optional[int] = None


class LegacyLeadRecord(_SourceRecord):
    id: int
    cdate: Optional[str] = None
    total: Optional[Decimal] = None
    currency_id: Optional[int] = None
    meeting_total_currency_id: Optional[int] = None
    meeting_scheduler_id: Optional[int] = None
    meeting_manager_id: Optional[int] = None
    closer_id: Optional[int] = None
    expert_id: Optional[int] = None
    case_handler_id: Optional[int] = None
    meeting_lawyer_id: Optional[int] = None


class PaymentPlanRecord(_SourceRecord):
    id: Union[int, str]
    lead_id: Optional[Union[int, str]] = None
    value: Optional[Decimal] = None
    value_vat: Optional[Decimal] = None
    currency: Optional[str] = None
    due_date: Optional[str] = None
    ready_to_pay_by: Optional[EmployeeReference] = None


class LegacyPaymentRowRecord(_SourceRecord):
    id: int
    lead_id: Optional[int] = None
    value: Optional[Decimal] = None
    vat_value: Optional[Decimal] = None
    currency_id: Optional[int] = None
    due_date: Optional[str] = None
    due_by_id: Optional[int] = None
    accounting_currencies: Optional[Any] = None

    @property
    def currency_iso_code(self) -> Optional[str]:
        joined = self.accounting_currencies
        if isinstance(joined, list):
            joined = joined[0] if joined else None
        if not isinstance(joined, dict):
            return None
        iso_code = joined.get("iso_code")
        return str(iso_code) if iso_code else None
