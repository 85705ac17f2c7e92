from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, TypeVar

from src.core.errors import SourceUnavailableError
from src.core.supabase import SupabaseClient

QUERY_PAGE_SIZE = 1000
MAX_QUERY_ROWS = 50000
IN_FILTER_CHUNK_SIZE = 100

T = TypeVar("T")


def day_range_filters(column: str, start_date: date, end_date: date) -> List[Tuple[str, str]]:
    # Timestamp columns: the upper bound is the start of the day after end_date.
    next_day = end_date + timedelta(days=1)
    return [
        (column, f"gte.{start_date.isoformat()}"),
        (column, f"lt.{next_day.isoformat()}"),
    ]


def stage_date_filter(start_date: date, end_date: date) -> Tuple[str, str]:
    """Stage rows carry `date`, falling back to `cdate` when `date` is empty."""
    start = start_date.isoformat()
    next_day = (end_date + timedelta(days=1)).isoformat()
    return (
        "or",
        f"(and(date.gte.{start},date.lt.{next_day}),"
        f"and(date.is.null,cdate.gte.{start},cdate.lt.{next_day}))",
    )


def in_filter(values: Iterable[object]) -> str:
    return "in.(" + ",".join(str(value) for value in values) + ")"


def quote_value(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def ilike_name_pattern(name: str) -> str:
    """Escape LIKE wildcards; inner whitespace runs become `*` so spacing drift still matches."""
    escaped = name
    for character in ("\\", "%", "_"):
        escaped = escaped.replace(character, "\\" + character)
    return "*".join(escaped.split())


def chunked(values: Sequence[T], size: int = IN_FILTER_CHUNK_SIZE) -> Iterator[Sequence[T]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


def select_all_pages(
    client: SupabaseClient,
    table: str,
    select: str,
    filters: List[Tuple[str, str]],
    order: str,
    timeout: Optional[float] = None,
    page_size: int = QUERY_PAGE_SIZE,
    max_rows: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """Read every matching row with offset paging.

    The server may cap a page below `page_size`, so only an empty page ends the
    scan. `order` must be a total order (end it with `id.asc`) for offsets to
    be stable. More than `max_rows` (default `MAX_QUERY_ROWS`) rows raises
    `SourceUnavailableError` instead of returning a cut-off result.
    """
    row_ceiling = max_rows if max_rows is not None else MAX_QUERY_ROWS
    rows: List[Dict[str, Any]] = []
    while True:
        page = client.select(
            table=table,
            select=select,
            filters=filters,
            limit=page_size,
            offset=len(rows),
            order=order,
            timeout=timeout,
        )
        if not page:
            return rows
        rows.extend(page)
        if len(rows) > row_ceiling:
            raise SourceUnavailableError(table, f"truncated: {table} matched more than {row_ceiling} rows")
