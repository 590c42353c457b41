"""
Receipt Line Parser

Line-scanning state machine over OCR text of a Bulgarian receipt:

    HEADER -> ITEMS -> TOTAL_SECTION -> END

HEADER ends on an item-section marker or the first price-shaped line.
TOTAL_SECTION starts on the first total marker; the declared total is read
from that line or the next one carrying an amount. Footer markers end
parsing from any state.

Within ITEMS:
- "NAME 2,40" is an item.
- Lines without a price are name fragments merged into the next priced line.
- "2 x 1,20" folds into one item with quantity 2 and price 2,40, wherever the
  name sits (line above, same line, line below) and whether or not the
  printed amount follows on its own line.
- "2 x NAME 2,40" is an inline quantity prefix.
- Discount lines reduce the previous item.

Unparseable lines are skipped; parsing never raises on bad input.
"""
import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional

from prizma.schemas.receipt import OcrGuess, ParsedItem, QualityFlag, ReceiptParseResult
from prizma.services.product_normalizer import normalize_name
from prizma.services.quality_scorer import build_suggestions, requires_review, score_item, score_receipt
from prizma.services.store_formats import (
    CENT,
    GENERIC_FORMAT,
    StoreFormat,
    detect_store_format,
    fold_ocr_text,
    parse_amount,
    repair_ocr_amounts,
    resolve_store_format,
)
from prizma.services.total_validator import DEFAULT_THRESHOLD_PERCENT, validate_total

logger = logging.getLogger(__name__)

DEFAULT_BASE_CONFIDENCE = 0.8
MAX_SANE_PRICE = Decimal("1000")
MAX_NAME_FRAGMENTS = 2
ONE = Decimal("1")

# Amount at the end of a line, optionally followed by currency and a VAT group letter
_PRICE_TAIL = re.compile(
    r"(?<![\d.,])(-?\s?(?:\d{1,3}(?: \d{3})+|\d+)[.,]\d{2})(?![\d%])"
    r"\s*(?:лв\.?|bgn)?\s*(?:\*?[АБВГABCDEFGH]\b)?\s*$",
    re.IGNORECASE,
)
_ANY_AMOUNT = re.compile(r"(?<![\w.,])-?(?:\d{1,3}(?: \d{3})+|\d+)[.,]\d{2}(?![\d%])")
_QTY_TIMES = re.compile(
    r"(?<![\w.,])(\d+(?:[.,]\d{1,3})?)\s*(?:бр\.?|кг\.?|pcs)?\s*[xх×*]\s*(\d+[.,]\d{2})(?![\d%])",
    re.IGNORECASE,
)
_QTY_PREFIX = re.compile(r"^(\d{1,3}(?:[.,]\d{1,3})?)\s*(?:бр\.?\s*)?[xх×*]\s*(?=[^\W\d_])", re.IGNORECASE)
_LETTER = re.compile(r"[^\W\d_]")

_SKIP_PATTERNS = [
    re.compile(r"^[=\-_*#.~\s]{3,}$"),
    re.compile(r"КАСОВА\s*БЕЛЕЖКА|СЛУЖЕБЕН\s*БОН", re.IGNORECASE),
    re.compile(r"(?<!\w)(?:ЕИК|ЗДДС|ДДС\s*№|УНП|БУЛСТАТ|ИН\s*ПО\s*ДДС)(?!\w)", re.IGNORECASE),
    re.compile(r"(?<!\w)(?:КАСИЕР|ОПЕРАТОР|КАСА\s*№?\s*\d+)(?!\w)", re.IGNORECASE),
    re.compile(r"(?<!\w)(?:ДАТА|ЧАС|DATE|TIME)(?!\w)", re.IGNORECASE),
    re.compile(r"(?<!\d)\d{1,2}[./-]\d{1,2}[./-]\d{2,4}(?!\d)"),
    re.compile(r"(?<!\d)\d{1,2}:\d{2}(?::\d{2})?(?!\d)"),
    re.compile(r"^(?:ул\.|гр\.|бул\.|ж\.к\.)", re.IGNORECASE),
    # Phone lines only; "Тел." alone also abbreviates телешко on item lines
    re.compile(r"^тел(?:ефон)?\.?\s*:?\s*[+(\d]", re.IGNORECASE),
    re.compile(r"(?<!\w)Е?ООД(?!\w)", re.IGNORECASE),
    re.compile(r"^\d{8,}$"),
    re.compile(r"(?<!\w)(?:WWW|HTTP)", re.IGNORECASE),
]


class ParserState(Enum):
    HEADER = "header"
    ITEMS = "items"
    TOTAL_SECTION = "total_section"
    END = "end"


@dataclass
class _DraftItem:
    name: str
    price: Decimal
    quantity: Decimal
    line_number: int
    unit_price: Optional[Decimal] = None
    flags: set = field(default_factory=set)


@dataclass
class _PendingQuantity:
    """A "qty x unit_price" line still waiting for its name or printed amount."""
    quantity: Decimal
    unit_price: Decimal
    computed: Decimal
    line_number: int
    name: str = ""
    printed: Optional[Decimal] = None
    flags: set = field(default_factory=set)


def _marker_pattern(markers) -> Optional[re.Pattern]:
    if not markers:
        return None
    folded = sorted({fold_ocr_text(m) for m in markers}, key=len, reverse=True)
    return re.compile("|".join(rf"(?<!\w){re.escape(m)}(?!\w)" for m in folded))


def _has_marker(pattern: Optional[re.Pattern], folded_line: str) -> bool:
    return bool(pattern and pattern.search(folded_line))


def parse_quantity(text: str) -> Optional[Decimal]:
    """Quantities print up to three decimals with either separator: "2", "0,535", "1.250"."""
    try:
        return Decimal(text.replace(",", "."))
    except ArithmeticError:
        return None


def should_skip_line(line: str) -> bool:
    return len(line) < 2 or any(p.search(line) for p in _SKIP_PATTERNS)


class ReceiptLineParser:
    """
    Single-use parser for one receipt text.

    Items are kept as mutable drafts while later lines may still amend
    them (quantity lines, discounts) and frozen into ParsedItem at the end.
    """

    def __init__(self, store_format: StoreFormat = GENERIC_FORMAT, base_confidence: float = DEFAULT_BASE_CONFIDENCE):
        self.store_format = store_format
        self.number_format = store_format.number_format
        self.base_confidence = base_confidence
        self._total = _marker_pattern(store_format.total_markers or GENERIC_FORMAT.total_markers)
        self._item_start = _marker_pattern(store_format.item_section_markers)
        self._discount = _marker_pattern(store_format.discount_markers)
        self._footer = _marker_pattern(store_format.footer_markers)

        self.state = ParserState.HEADER
        self.declared_total: Optional[Decimal] = None
        self._drafts: list[_DraftItem] = []
        self._fragments: list[str] = []
        self._header_candidate: Optional[str] = None
        self._pending: Optional[_PendingQuantity] = None

    def parse(self, raw_text: str) -> tuple[list[ParsedItem], Optional[Decimal]]:
        for line_number, raw_line in enumerate(raw_text.splitlines(), start=1):
            if self.state is ParserState.END:
                break
            line = " ".join(raw_line.split())
            if not line:
                continue
            try:
                self._feed(line, line_number)
            except (ValueError, ArithmeticError) as e:
                logger.debug(f"Line {line_number} skipped ({e}): {line!r}")

        self._flush_pending()
        return [self._freeze(draft) for draft in self._drafts], self.declared_total

    # State transitions

    def _feed(self, line: str, line_number: int):
        folded = fold_ocr_text(line)

        if _has_marker(self._footer, folded):
            self._flush_pending()
            self.state = ParserState.END
            return

        if self.state is ParserState.TOTAL_SECTION:
            self._read_total(line)
            return

        if _has_marker(self._total, folded):
            self._flush_pending()
            self.state = ParserState.TOTAL_SECTION
            self._read_total(line)
            return

        if should_skip_line(line):
            return

        if self.state is ParserState.HEADER:
            if _has_marker(self._item_start, folded):
                self.state = ParserState.ITEMS
                self._header_candidate = None
                return
            repaired, _ = repair_ocr_amounts(line)
            if not (_PRICE_TAIL.search(repaired) or _QTY_TIMES.search(repaired)):
                if _LETTER.search(line):
                    self._header_candidate = line
                return
            self.state = ParserState.ITEMS

        self._parse_item_line(line, line_number)

    def _read_total(self, line: str):
        amount = self._find_amount(repair_ocr_amounts(line)[0])
        if amount is not None and amount > 0:
            self.declared_total = amount.quantize(CENT, rounding=ROUND_HALF_UP)
            self.state = ParserState.END

    def _find_amount(self, line: str) -> Optional[Decimal]:
        tail = _PRICE_TAIL.search(line)
        if tail:
            return parse_amount(tail.group(1), self.number_format)
        amounts = _ANY_AMOUNT.findall(line)
        if amounts:
            return parse_amount(amounts[-1], self.number_format)
        return None

    # Item lines

    def _parse_item_line(self, line: str, line_number: int):
        repaired, changed = repair_ocr_amounts(line)
        flags = {QualityFlag.OCR_UNCERTAIN} if changed else set()

        if _has_marker(self._discount, fold_ocr_text(line)):
            amount = self._find_amount(repaired)
            if amount is not None:
                self._apply_discount(abs(amount), line_number)
            return

        qty_match = _QTY_TIMES.search(repaired)
        if qty_match:
            self._parse_quantity_line(repaired, qty_match, line_number, flags)
            return

        tail = _PRICE_TAIL.search(repaired)
        if tail is None:
            self._add_name_fragment(line)
            return

        price = parse_amount(tail.group(1), self.number_format)
        if price is None:
            raise ValueError(f"unreadable amount {tail.group(1)!r}")
        if price < 0:
            self._apply_discount(-price, line_number)
            return

        name_text = repaired[:tail.start()].strip(" .:=")
        if not _LETTER.search(name_text):
            name_text = ""

        if self._pending is not None:
            pending = self._pending
            if not name_text:
                pending.printed = price
                pending.flags |= flags
                if pending.name:
                    self._flush_pending()
                return
            if not pending.name:
                pending.name = name_text
                pending.printed = price
                pending.flags |= flags
                self._flush_pending()
                return
            self._flush_pending()

        name, merged = self._take_name(name_text)
        if not name:
            logger.debug(f"Line {line_number}: amount without a product name skipped")
            return
        if merged:
            flags.add(QualityFlag.MERGED_LINES)

        quantity = ONE
        prefix = _QTY_PREFIX.match(name)
        if prefix:
            prefix_qty = parse_quantity(prefix.group(1))
            if prefix_qty and prefix_qty > 0:
                quantity = prefix_qty
                name = name[prefix.end():].strip()

        self._emit(name, price, quantity, None, line_number, flags)

    def _parse_quantity_line(self, line: str, match: re.Match, line_number: int, flags: set):
        quantity = parse_quantity(match.group(1))
        unit_price = parse_amount(match.group(2), self.number_format)
        if quantity is None or unit_price is None or quantity <= 0:
            raise ValueError(f"unreadable quantity line {match.group(0)!r}")
        computed = (quantity * unit_price).quantize(CENT, rounding=ROUND_HALF_UP)

        rest = f"{line[:match.start()]} {line[match.end():]}".strip()
        printed = None
        tail = _PRICE_TAIL.search(rest)
        if tail:
            printed = parse_amount(tail.group(1), self.number_format)
            rest = rest[:tail.start()]
        name_text = rest.strip(" .:=")
        if not _LETTER.search(name_text):
            name_text = ""

        self._flush_pending()
        pending = _PendingQuantity(quantity, unit_price, computed, line_number, printed=printed, flags=set(flags))

        if name_text or self._fragments or self._header_candidate:
            name, merged = self._take_name(name_text)
            pending.name = name
            if merged:
                pending.flags.add(QualityFlag.MERGED_LINES)
            self._pending = pending
            if name_text or printed is not None:
                self._flush_pending()
            return

        # Name printed above with the line total: this line only explains it
        last = self._drafts[-1] if self._drafts else None
        if (
            last is not None
            and last.quantity == ONE
            and last.unit_price is None
            and QualityFlag.DISCOUNT_APPLIED not in last.flags
            and abs(last.price - computed) <= CENT
        ):
            last.quantity = quantity
            last.unit_price = unit_price
            last.flags |= flags
            return

        self._pending = pending

    def _add_name_fragment(self, line: str):
        if not _LETTER.search(line):
            return
        pending = self._pending
        if pending is not None:
            if pending.name:
                self._flush_pending()
            else:
                pending.name = line
                return
        self._fragments.append(line)
        if len(self._fragments) > MAX_NAME_FRAGMENTS:
            self._fragments.pop(0)

    def _take_name(self, name_text: str) -> tuple[str, bool]:
        parts = list(self._fragments)
        self._fragments = []
        if not parts and not name_text and self._header_candidate:
            parts = [self._header_candidate]
        self._header_candidate = None
        merged = bool(parts)
        if name_text:
            parts.append(name_text)
        return " ".join(parts).strip(), merged

    def _flush_pending(self):
        pending = self._pending
        if pending is None:
            return
        self._pending = None
        flags = set(pending.flags)
        if pending.printed is not None and abs(pending.printed - pending.computed) > CENT:
            flags.add(QualityFlag.FUZZY_PRICE_MATCH)
        self._emit(pending.name, pending.computed, pending.quantity, pending.unit_price, pending.line_number, flags)

    def _apply_discount(self, amount: Decimal, line_number: int):
        self._flush_pending()
        if not self._drafts:
            logger.debug(f"Line {line_number}: discount before any item ignored")
            return
        last = self._drafts[-1]
        last.price = max(Decimal("0"), last.price - amount)
        last.unit_price = None
        last.flags.add(QualityFlag.DISCOUNT_APPLIED)

    def _emit(self, name: str, price: Decimal, quantity: Decimal, unit_price: Optional[Decimal], line_number: int, flags: set):
        flags = set(flags)
        if len(_LETTER.findall(name)) < 3:
            flags.add(QualityFlag.NAME_INCOMPLETE)
        if price <= 0 or price > MAX_SANE_PRICE:
            flags.add(QualityFlag.PRICE_SUSPICIOUS)
        self._header_candidate = None
        self._drafts.append(_DraftItem(
            name=name,
            price=price.quantize(CENT, rounding=ROUND_HALF_UP),
            quantity=quantity,
            line_number=line_number,
            unit_price=unit_price,
            flags=flags,
        ))

    def _freeze(self, draft: _DraftItem) -> ParsedItem:
        return ParsedItem(
            name=draft.name,
            normalized_name=normalize_name(draft.name).normalized_name,
            price=draft.price,
            quantity=draft.quantity,
            unit_price=draft.unit_price,
            confidence=score_item(self.base_confidence, draft.flags),
            quality_flags=tuple(sorted(draft.flags, key=lambda f: f.value)),
            line_number=draft.line_number,
        )


def _items_from_guess(guess: OcrGuess, base_confidence: float) -> list[ParsedItem]:
    flags = {QualityFlag.FROM_OCR_GUESS}
    return [
        ParsedItem(
            name=item.name,
            normalized_name=normalize_name(item.name).normalized_name,
            price=item.price.quantize(CENT, rounding=ROUND_HALF_UP),
            quantity=item.quantity,
            confidence=score_item(base_confidence, flags),
            quality_flags=tuple(flags),
            line_number=index,
        )
        for index, item in enumerate(guess.items, start=1)
    ]


def parse_receipt(
    raw_text: Optional[str],
    store_hint: Optional[str] = None,
    ocr_guess: Optional[OcrGuess] = None,
    tolerance_percent: float = DEFAULT_THRESHOLD_PERCENT,
) -> ReceiptParseResult:
    """
    Parse OCR text into a ReceiptParseResult.

    The structured OCR guess, when given, only fills what the text lacks:
    the retailer when detection fell back to generic, the total when none
    was read, and the items when the text yielded none.
    """
    raw_text = raw_text or ""
    store_format = detect_store_format(raw_text, store_hint)
    retailer_name = store_format.display_name
    used_guess = False

    if ocr_guess and ocr_guess.store and store_format.is_generic:
        resolved = resolve_store_format(ocr_guess.store)
        if resolved:
            store_format = resolved
            retailer_name = resolved.display_name
        else:
            retailer_name = ocr_guess.store.strip()
        used_guess = True

    base_confidence = DEFAULT_BASE_CONFIDENCE
    if ocr_guess and ocr_guess.confidence is not None:
        base_confidence = ocr_guess.confidence

    items, declared_total = ReceiptLineParser(store_format, base_confidence).parse(raw_text)

    if declared_total is None and ocr_guess and ocr_guess.total:
        declared_total = ocr_guess.total.quantize(CENT, rounding=ROUND_HALF_UP)
        used_guess = True
    if not items and ocr_guess and ocr_guess.items:
        items = _items_from_guess(ocr_guess, base_confidence)
        used_guess = True

    validation = validate_total(items, declared_total, tolerance_percent)
    overall = score_receipt(items, validation)

    logger.info(
        f"Parsed receipt from {retailer_name}: {len(items)} items, "
        f"total {declared_total}, confidence {overall:.2f}"
    )

    return ReceiptParseResult(
        retailer=retailer_name,
        retailer_id=store_format.retailer_id.value,
        declared_total=declared_total,
        items=items,
        overall_confidence=overall,
        total_validation=validation,
        requires_review=requires_review(overall),
        suggestions=build_suggestions(items, validation),
        used_ocr_guess=used_guess,
    )
