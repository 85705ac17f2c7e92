from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from src.analytics.deduplication import dedupe_events
from src.models.performance import EventKind, RawEvent, SchemaOrigin


def make_event(
    record_id: str,
    subject_id: Optional[str],
    origin: SchemaOrigin = SchemaOrigin.LEGACY,
    amount: str = "100",
) -> RawEvent:
    return RawEvent(
        schema_origin=origin,
        record_id=record_id,
        subject_id=subject_id,
        event_kind=EventKind.AGREEMENT_SIGNED,
        occurred_on=date(2026, 3, 10),
        amount=Decimal(amount),
    )


def test_dedupe_keeps_first_seen_event_per_key() -> None:
    events = [
        make_event("contract:1", "100", amount="1000"),
        make_event("stage:9", "100", amount="5"),
        make_event("contract:2", "200"),
    ]

    unique = dedupe_events(events)

    assert [event.record_id for event in unique] == ["contract:1", "contract:2"]
    assert unique[0].amount == Decimal("1000")


def test_dedupe_is_idempotent_with_triplicated_input() -> None:
    event = make_event("contract:1", "100")
    other = make_event("contract:2", "200")

    once = dedupe_events([event, event, event, other])
    twice = dedupe_events(once)

    assert once == twice
    assert [item.canonical_key for item in once] == [
        (SchemaOrigin.LEGACY, "100"),
        (SchemaOrigin.LEGACY, "200"),
    ]


def test_same_subject_in_different_schemas_is_not_a_duplicate() -> None:
    unique = dedupe_events(
        [
            make_event("contract:1", "100", origin=SchemaOrigin.LEGACY),
            make_event("lead:100", "100", origin=SchemaOrigin.CURRENT),
        ]
    )

    assert len(unique) == 2


def test_events_without_subject_are_dropped() -> None:
    unique = dedupe_events([make_event("orphan:1", None), make_event("contract:1", "100")])

    assert [event.record_id for event in unique] == ["contract:1"]


def test_empty_input_returns_empty_list() -> None:
    assert dedupe_events([]) == []
