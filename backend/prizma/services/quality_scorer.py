"""
Quality/Confidence Scorer

Per-item confidence is the engine's base score minus a fixed penalty per
quality flag. Receipt confidence is the price-weighted mean of the items,
adjusted by the total validation outcome.
"""
from decimal import Decimal
from typing import Iterable, Sequence

from prizma.schemas.receipt import ParsedItem, QualityFlag, TotalValidation
from prizma.services.store_formats import format_amount

# Policy constant: receipts scoring below this need a human look
AUTO_ACCEPT_THRESHOLD = 0.75

VALID_TOTAL_BONUS = 0.1
INVALID_TOTAL_PENALTY = 0.2

FLAG_PENALTIES = {
    QualityFlag.OCR_UNCERTAIN: 0.1,
    QualityFlag.FUZZY_PRICE_MATCH: 0.15,
    QualityFlag.MERGED_LINES: 0.05,
    QualityFlag.NAME_INCOMPLETE: 0.3,
    QualityFlag.PRICE_SUSPICIOUS: 0.2,
    QualityFlag.DISCOUNT_APPLIED: 0.0,
    QualityFlag.FROM_OCR_GUESS: 0.1,
    QualityFlag.AI_ENHANCED: 0.1,
}


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def score_item(base_confidence: float, flags: Iterable[QualityFlag]) -> float:
    penalty = sum(FLAG_PENALTIES.get(flag, 0.0) for flag in set(flags))
    return round(_clamp(base_confidence - penalty), 4)


def score_receipt(items: Sequence[ParsedItem], validation: TotalValidation) -> float:
    """
    Weighted receipt confidence.

    Items are weighted by line total so a doubtful 0.10 bag does not sink a
    receipt; when every price is zero a plain mean is used. No items, no
    confidence.
    """
    if not items:
        return 0.0

    weights = [float(item.price) for item in items]
    total_weight = sum(weights)
    if total_weight > 0:
        mean = sum(w * item.confidence for w, item in zip(weights, items)) / total_weight
    else:
        mean = sum(item.confidence for item in items) / len(items)

    adjustment = VALID_TOTAL_BONUS if validation.valid else -INVALID_TOTAL_PENALTY
    return round(_clamp(mean + adjustment), 4)


def requires_review(overall_confidence: float) -> bool:
    return overall_confidence < AUTO_ACCEPT_THRESHOLD


def build_suggestions(items: Sequence[ParsedItem], validation: TotalValidation) -> list[str]:
    """Human readable hints shown next to a receipt that needs review."""
    suggestions = []

    if not items:
        suggestions.append("Не са разпознати продукти. Въведете ги ръчно или сканирайте отново.")

    if validation.declared_total is None or validation.declared_total <= Decimal("0"):
        suggestions.append("Липсва обща сума. Проверете последните редове на бележката.")
    elif not validation.valid:
        suggestions.append(
            f"Сумата на продуктите ({format_amount(validation.calculated_total)}) се различава от "
            f"общата сума ({format_amount(validation.declared_total)}) с {validation.percentage_diff}%."
        )

    flagged = {flag for item in items for flag in item.quality_flags}
    if QualityFlag.OCR_UNCERTAIN in flagged:
        suggestions.append("Някои цени са прочетени неясно. Проверете ги.")
    if QualityFlag.NAME_INCOMPLETE in flagged:
        suggestions.append("Някои имена на продукти са непълни.")
    if QualityFlag.PRICE_SUSPICIOUS in flagged:
        suggestions.append("Има необичайно ниски или високи цени.")
    if QualityFlag.FROM_OCR_GUESS in flagged:
        suggestions.append("Продуктите са взети от предположението на OCR, а не от текста.")

    return suggestions
