"""
Defensive parsing of AI provider responses.

Models are asked for strict JSON but often wrap it in markdown fences or
add prose around it. parse_ai_response strips fences, tries a direct
json.loads, then tries each balanced {...} / [...] substring in order.
The JSON shape is decided by schema validation. A final failure is
returned as an AIParseError value, never raised.
"""
import json
import logging
import re
from typing import Iterator, Union

from pydantic import TypeAdapter, ValidationError

from prizma.schemas.ai import AIParseError, CategoryPayload, ItemPayload, ItemsPayload

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```(?:json|JSON)?\s*(.*?)\s*```", re.DOTALL)
_PAYLOAD = TypeAdapter(Union[CategoryPayload, list[ItemPayload]])

# Cap on bracket candidates tried in one response
MAX_CANDIDATES = 20


def strip_code_fences(text: str) -> str:
    match = _FENCE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def iter_balanced_json(text: str) -> Iterator[str]:
    """
    Yield balanced {...} or [...] substrings in order of their start.

    Brackets inside JSON strings are ignored.
    """
    pairs = {"{": "}", "[": "]"}
    for start, opener in enumerate(text):
        if opener not in pairs:
            continue
        stack = []
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            ch = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch in pairs:
                stack.append(pairs[ch])
            elif ch in "}]":
                if not stack or stack.pop() != ch:
                    break
                if not stack:
                    yield text[start:index + 1]
                    break


def _validate(data) -> Union[CategoryPayload, ItemsPayload]:
    payload = _PAYLOAD.validate_python(data)
    if isinstance(payload, list):
        return ItemsPayload(items=payload)
    return payload


def parse_ai_response(text: str | None) -> Union[CategoryPayload, ItemsPayload, AIParseError]:
    """
    Parse a provider response into a category object or an item list.

    Examples:
        '```json\\n{"category": "bakery", "confidence": 0.9}\\n```' -> CategoryPayload
        'Ето резултата: [{"name": "Хляб", "price": 1.2}] Надявам се помага.' -> ItemsPayload
        'no json here' -> AIParseError
    """
    if not text or not text.strip():
        return AIParseError(raw=text or "", error="empty response")

    cleaned = strip_code_fences(text)
    candidates = [cleaned]
    for fragment in iter_balanced_json(cleaned):
        if fragment != cleaned:
            candidates.append(fragment)
        if len(candidates) > MAX_CANDIDATES:
            break

    last_error = "no JSON object or array found"
    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError as e:
            last_error = f"invalid JSON: {e}"
            continue
        try:
            return _validate(data)
        except ValidationError as e:
            last_error = f"unexpected shape: {e.error_count()} validation error(s)"
            continue

    logger.warning(f"Could not parse AI response: {last_error}")
    return AIParseError(raw=text, error=last_error)
