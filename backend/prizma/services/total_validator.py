"""
Total Validator

Reconciles the summed item cost of a parsed receipt against the total
printed on it. A mismatch is reported, never acted upon: items are kept.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from prizma.schemas.receipt import ParsedItem, TotalValidation
from prizma.services.store_formats import CENT

DEFAULT_THRESHOLD_PERCENT = 2.0


def line_total(item: ParsedItem) -> Decimal:
    return (item.unit_price * item.quantity).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_total(items: Iterable[ParsedItem]) -> Decimal:
    total = sum((line_total(item) for item in items), Decimal("0"))
    return total.quantize(CENT, rounding=ROUND_HALF_UP)


def validate_total(
    items: Iterable[ParsedItem],
    declared_total: Optional[Decimal],
    threshold_percent: float = DEFAULT_THRESHOLD_PERCENT,
) -> TotalValidation:
    """
    Compare Σ(unit_price × quantity) with the declared total.

    A missing or zero declared total cannot be checked and is reported as
    invalid with no percentage.

    Example:
        Хляб 1.20 + Мляко 2.30 against 3.50 -> valid, percentage_diff 0.0
    """
    calculated = calculate_total(items)

    if declared_total is None or declared_total <= 0:
        return TotalValidation(
            calculated_total=calculated,
            declared_total=declared_total,
            threshold_percent=threshold_percent,
            valid=False,
        )

    difference = (calculated - declared_total).quantize(CENT, rounding=ROUND_HALF_UP)
    percentage_diff = round(float(abs(difference) / declared_total * 100), 2)

    return TotalValidation(
        calculated_total=calculated,
        declared_total=declared_total,
        difference=difference,
        percentage_diff=percentage_diff,
        threshold_percent=threshold_percent,
        valid=percentage_diff <= threshold_percent,
    )
