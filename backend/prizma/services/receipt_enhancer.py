"""
Receipt Enhancer

Optional AI pass over a parsed receipt: the provider gets the OCR text and
the items already found and returns a JSON array of the items it thinks
were missed. New items are appended with the ai_enhanced flag and the
receipt is re-validated. Provider or parsing failures leave the original
result untouched and are reported in the EnhancementResult.
"""
import logging
from decimal import ROUND_HALF_UP

from prizma.exceptions import ExternalServiceError
from prizma.schemas.ai import AIParseError, ItemsPayload
from prizma.schemas.receipt import EnhancementResult, ParsedItem, QualityFlag, ReceiptParseResult
from prizma.services.ai_response import parse_ai_response
from prizma.services.product_normalizer import normalize_name
from prizma.services.quality_scorer import build_suggestions, requires_review, score_item, score_receipt
from prizma.services.store_formats import CENT, format_amount
from prizma.services.total_validator import validate_total

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "Ти анализираш текст от български касови бележки. "
    "Отговаряй само с валиден JSON масив."
)


def build_enhancement_prompt(raw_text: str, result: ReceiptParseResult) -> str:
    existing = "\n".join(f"- {item.name}: {format_amount(item.price)}" for item in result.items) or "(няма)"
    total = format_amount(result.declared_total) if result.declared_total is not None else "неизвестна"
    return (
        "Сравни текста на касовата бележка с вече намерените продукти и открий пропуснатите.\n\n"
        f"Текст:\n{raw_text}\n\n"
        f"Намерени продукти:\n{existing}\n\n"
        f"Обща сума: {total}\n\n"
        "Игнорирай ДДС, общи суми и данни за магазина. "
        'Върни само пропуснатите продукти като JSON масив: '
        '[{"name": "<име>", "price": <цена за реда>, "quantity": <количество>, "confidence": <0..1>}]. '
        "Ако няма пропуснати, върни []."
    )


def _rebuild(result: ReceiptParseResult, items: list[ParsedItem]) -> ReceiptParseResult:
    validation = validate_total(items, result.declared_total, result.total_validation.threshold_percent)
    overall = score_receipt(items, validation)
    return result.model_copy(update={
        "items": items,
        "total_validation": validation,
        "overall_confidence": overall,
        "requires_review": requires_review(overall),
        "suggestions": build_suggestions(items, validation),
    })


async def enhance_receipt(result: ReceiptParseResult, raw_text: str, ai_client) -> EnhancementResult:
    if ai_client is None:
        return EnhancementResult(result=result, error="AI enhancement is disabled")

    try:
        content = await ai_client.complete(
            SYSTEM_PROMPT,
            build_enhancement_prompt(raw_text, result),
            temperature=0.05,
            max_tokens=2000,
        )
    except ExternalServiceError as e:
        logger.warning(f"Receipt enhancement unavailable: {e}")
        return EnhancementResult(result=result, error=str(e))

    payload = parse_ai_response(content)
    if isinstance(payload, AIParseError):
        return EnhancementResult(result=result, error=payload.error, raw_response=payload.raw)
    if not isinstance(payload, ItemsPayload):
        return EnhancementResult(result=result, error=f"expected an item list, got {payload.kind}", raw_response=content)

    known = {item.normalized_name for item in result.items}
    next_line = max((item.line_number for item in result.items), default=0) + 1
    added = []
    for candidate in payload.items:
        normalized = normalize_name(candidate.name).normalized_name
        if normalized in known:
            continue
        known.add(normalized)
        added.append(ParsedItem(
            name=candidate.name,
            normalized_name=normalized,
            price=candidate.price.quantize(CENT, rounding=ROUND_HALF_UP),
            quantity=candidate.quantity,
            confidence=score_item(candidate.confidence, [QualityFlag.AI_ENHANCED]),
            quality_flags=(QualityFlag.AI_ENHANCED,),
            line_number=next_line,
        ))
        next_line += 1

    if not added:
        return EnhancementResult(result=result)

    logger.info(f"AI enhancement added {len(added)} items to {result.retailer} receipt")
    return EnhancementResult(result=_rebuild(result, result.items + added), added_items=len(added))
