from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel, ConfigDict

from src.analytics.aggregation import AggregationCell

PERCENT_COMPLETE_PRECISION = Decimal("0.0001")


class TargetComparison(BaseModel):
    model_config = ConfigDict(frozen=True)

    percent_complete: Decimal = Decimal("0")
    is_above_target: bool = False


def compare_to_target(cell: AggregationCell) -> TargetComparison:
    """Fraction of the target reached; zero when no target is configured."""
    if cell.expected > 0:
        percent_complete = (cell.amount / cell.expected).quantize(
            PERCENT_COMPLETE_PRECISION, rounding=ROUND_HALF_UP
        )
    else:
        percent_complete = Decimal("0")
    return TargetComparison(
        percent_complete=percent_complete,
        is_above_target=cell.amount >= cell.expected,
    )
