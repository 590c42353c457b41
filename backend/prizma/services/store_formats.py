"""
Store Format Registry

Declarative descriptions of the receipt layouts printed by Bulgarian retailers.
Each format carries its header signatures, number format and total-line
markers. Detection is a pure lookup against this closed registry; receipts
that match nothing fall back to GENERIC_FORMAT so parsing can still proceed.

Also home to the amount helpers (parse_amount / format_amount) because the
number format is a property of the store format.
"""
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Optional

CENT = Decimal("0.01")

# Lines scanned for a retailer signature before falling back to the full text
HEADER_WINDOW = 10


class RetailerId(str, Enum):
    KAUFLAND = "kaufland"
    BILLA = "billa"
    LIDL = "lidl"
    FANTASTICO = "fantastico"
    T_MARKET = "t-market"
    GENERIC = "generic"


@dataclass(frozen=True)
class NumberFormat:
    decimal_separator: str = ","
    thousands_separator: str = " "
    currency_symbol: str = "лв"
    currency_position: str = "after"  # 'before' or 'after'


@dataclass(frozen=True)
class StoreFormat:
    retailer_id: RetailerId
    display_name: str
    signatures: tuple[str, ...]
    number_format: NumberFormat = field(default_factory=NumberFormat)
    total_markers: tuple[str, ...] = ()
    item_section_markers: tuple[str, ...] = ()
    discount_markers: tuple[str, ...] = ()
    footer_markers: tuple[str, ...] = ()

    @property
    def is_generic(self) -> bool:
        return self.retailer_id == RetailerId.GENERIC


BGN_FORMAT = NumberFormat(decimal_separator=",", thousands_separator=" ", currency_symbol="лв", currency_position="after")

# Longer markers first so "ОБЩА СУМА" is preferred over "СУМА"
TOTAL_MARKERS = ("ОБЩА СУМА", "ОБЩО СУМА", "К ПЛАЩАНЕ", "ЗА ПЛАЩАНЕ", "ОБЩО", "ВСИЧКО", "СУМА", "TOTAL")
ITEM_SECTION_MARKERS = ("ПРОДАЖБА", "НАЧАЛО", "СТОКИ")
DISCOUNT_MARKERS = ("ОТСТЪПКА", "ПРОМОЦИЯ", "НАМАЛЕНИЕ")
FOOTER_MARKERS = ("БЛАГОДАРИМ", "ЗАПАЗЕТЕ БЕЛЕЖКАТА", "ФИСКАЛЕН БОН")

STORE_FORMATS: dict[RetailerId, StoreFormat] = {
    RetailerId.KAUFLAND: StoreFormat(
        retailer_id=RetailerId.KAUFLAND,
        display_name="Кауфланд",
        signatures=("KAUFLAND", "КАУФЛАНД"),
        number_format=BGN_FORMAT,
        total_markers=TOTAL_MARKERS,
        item_section_markers=ITEM_SECTION_MARKERS,
        discount_markers=DISCOUNT_MARKERS,
        footer_markers=FOOTER_MARKERS,
    ),
    RetailerId.BILLA: StoreFormat(
        retailer_id=RetailerId.BILLA,
        display_name="Билла",
        signatures=("BILLA", "БИЛЛА"),
        number_format=BGN_FORMAT,
        total_markers=("ОБЩО", "СУМА", "К ПЛАЩАНЕ", "TOTAL"),
        discount_markers=DISCOUNT_MARKERS,
        footer_markers=FOOTER_MARKERS,
    ),
    RetailerId.LIDL: StoreFormat(
        retailer_id=RetailerId.LIDL,
        display_name="Лидл",
        signatures=("LIDL", "ЛИДЛ"),
        number_format=BGN_FORMAT,
        total_markers=("ЗА ПЛАЩАНЕ", "ОБЩО", "СУМА", "TOTAL"),
        discount_markers=("ОТСТЪПКА", "LIDL PLUS ОТСТЪПКА", "ПРОМОЦИЯ"),
        footer_markers=FOOTER_MARKERS,
    ),
    RetailerId.FANTASTICO: StoreFormat(
        retailer_id=RetailerId.FANTASTICO,
        display_name="Фантастико",
        signatures=("FANTASTICO", "ФАНТАСТИКО"),
        number_format=BGN_FORMAT,
        total_markers=("ОБЩА СУМА", "ОБЩО", "СУМА", "TOTAL"),
        discount_markers=DISCOUNT_MARKERS,
        footer_markers=FOOTER_MARKERS,
    ),
    RetailerId.T_MARKET: StoreFormat(
        retailer_id=RetailerId.T_MARKET,
        display_name="Т Маркет",
        signatures=("T MARKET", "ТМАРКЕТ", "Т МАРКЕТ", "TMARKET"),
        number_format=BGN_FORMAT,
        total_markers=("ОБЩО", "СУМА", "TOTAL"),
        discount_markers=DISCOUNT_MARKERS,
        footer_markers=FOOTER_MARKERS,
    ),
}

GENERIC_FORMAT = StoreFormat(
    retailer_id=RetailerId.GENERIC,
    display_name="Непознат магазин",
    signatures=(),
    number_format=BGN_FORMAT,
    total_markers=TOTAL_MARKERS,
    item_section_markers=ITEM_SECTION_MARKERS,
    discount_markers=DISCOUNT_MARKERS,
    footer_markers=FOOTER_MARKERS,
)

# Cyrillic letters that OCR confuses with Latin ones, folded to Latin
_HOMOGLYPHS = str.maketrans({
    "А": "A", "В": "B", "Е": "E", "К": "K", "М": "M", "Н": "H", "О": "O",
    "Р": "P", "С": "C", "Т": "T", "Х": "X", "У": "Y", "І": "I",
})
# Digits read in place of letters, folded to the letter
_DIGIT_CONFUSIONS = str.maketrans({
    "0": "O", "1": "I", "|": "I", "L": "I", "5": "S", "8": "B", "4": "A",
})

# Letters read in place of digits inside an amount
_AMOUNT_CONFUSIONS = str.maketrans({
    "O": "0", "o": "0", "О": "0", "о": "0",
    "l": "1", "I": "1", "|": "1", "і": "1",
})
_OCR_AMOUNT_TOKEN = re.compile(r"(?<![\w|])([0-9OoОоlI|і]+(?:[.,][0-9OoОоlI|і]+)+)(?![\w|])")


def fold_ocr_text(text: str) -> str:
    """
    Fold text for signature matching.

    Upper-cases, maps Cyrillic/Latin homoglyphs and OCR digit confusions to a
    single form and collapses whitespace and hyphens. Apply to both sides of a
    comparison.
    """
    folded = text.upper().translate(_HOMOGLYPHS).translate(_DIGIT_CONFUSIONS)
    return re.sub(r"[\s\-_]+", " ", folded).strip()


def _signature_matches(folded_text: str, store_format: StoreFormat) -> bool:
    for signature in store_format.signatures:
        pattern = rf"(?<!\w){re.escape(fold_ocr_text(signature))}(?!\w)"
        if re.search(pattern, folded_text):
            return True
    return False


def resolve_store_format(name: Optional[str]) -> Optional[StoreFormat]:
    """Look up a registered format by retailer id, slug or display name."""
    if not name:
        return None

    slug = name.strip().lower()
    for retailer_id, store_format in STORE_FORMATS.items():
        if slug == retailer_id.value:
            return store_format

    folded = fold_ocr_text(name)
    for store_format in STORE_FORMATS.values():
        if fold_ocr_text(store_format.display_name) == folded or _signature_matches(folded, store_format):
            return store_format
    return None


def detect_store_format(text: Optional[str], hint: Optional[str] = None) -> StoreFormat:
    """
    Identify the issuing retailer from header signatures.

    A hint naming a registered retailer wins. Otherwise the first
    HEADER_WINDOW non-empty lines are searched, then the whole text.
    Never raises: unknown receipts get GENERIC_FORMAT.
    """
    hinted = resolve_store_format(hint)
    if hinted:
        return hinted

    if not text:
        return GENERIC_FORMAT

    lines = [line for line in text.splitlines() if line.strip()]
    header = "\n".join(lines[:HEADER_WINDOW])

    for window in (header, text):
        folded = fold_ocr_text(window)
        for store_format in STORE_FORMATS.values():
            if _signature_matches(folded, store_format):
                return store_format

    return GENERIC_FORMAT


def repair_ocr_amounts(line: str) -> tuple[str, bool]:
    """
    Replace letter look-alikes inside amount tokens ("2,3O" -> "2,30").

    Only tokens made of digits, separators and confusable letters that
    contain at least one real digit are touched.
    Returns the repaired line and whether anything changed.
    """
    changed = False

    def _fix(match: re.Match) -> str:
        nonlocal changed
        token = match.group(1)
        if not any(ch.isdigit() for ch in token):
            return token
        fixed = token.translate(_AMOUNT_CONFUSIONS)
        if fixed != token:
            changed = True
        return fixed

    return _OCR_AMOUNT_TOKEN.sub(_fix, line), changed


def _strip_currency(text: str, number_format: NumberFormat) -> str:
    symbols = {number_format.currency_symbol, "лв", "лева", "bgn"}
    pattern = "|".join(re.escape(s) for s in sorted(symbols, key=len, reverse=True) if s)
    return re.sub(rf"(?:{pattern})\.?", " ", text, flags=re.IGNORECASE)


def parse_amount(text: Optional[str], number_format: NumberFormat = BGN_FORMAT) -> Optional[Decimal]:
    """
    Parse a money amount printed in any supported layout.

    Accepts comma or dot decimals, optional thousands separators (space,
    non-breaking space, dot, comma or apostrophe), a currency token on
    either side and OCR-confused digits. The decimal separator is inferred:
    with both '.' and ',' present the last one wins; a lone separator is
    decimal when it matches the format or is not followed by exactly three
    digits. Returns None when no amount can be read.

    Examples:
        "1 234,50 лв" -> Decimal("1234.50")
        "BGN 1,234.50" -> Decimal("1234.50")
        "2,3O" -> Decimal("2.30")
    """
    if text is None:
        return None

    cleaned = _strip_currency(str(text), number_format).replace("\u00a0", " ")
    cleaned, _ = repair_ocr_amounts(cleaned.strip())
    match = re.fullmatch(r"([+-]?)\s*(\d[\d .,']*)", cleaned.strip())
    if not match:
        return None

    sign, body = match.group(1), match.group(2).strip()
    separators = [(i, ch) for i, ch in enumerate(body) if ch in ".,' "]

    decimal_index = None
    if separators:
        last_index, last_char = separators[-1]
        digits_after = len(body) - last_index - 1
        if last_char in ".,":
            other = "," if last_char == "." else "."
            if other in body:
                decimal_index = last_index
            elif body.count(last_char) > 1:
                decimal_index = None  # repeated separator groups thousands: 1.234.567
            elif last_char == number_format.decimal_separator or digits_after != 3:
                decimal_index = last_index

    if decimal_index is None:
        integer_part, fraction = body, ""
    else:
        integer_part, fraction = body[:decimal_index], body[decimal_index + 1:]

    integer_digits = re.sub(r"\D", "", integer_part)
    if not fraction.isdigit() and fraction:
        return None
    if not integer_digits and not fraction:
        return None

    try:
        return Decimal(f"{sign}{integer_digits or '0'}.{fraction or '0'}")
    except InvalidOperation:
        return None


def format_amount(value, number_format: NumberFormat = BGN_FORMAT, with_currency: bool = True) -> str:
    """Render an amount the way the given format prints it, e.g. "1 234,50 лв"."""
    amount = Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)
    sign = "-" if amount < 0 else ""
    integer_part, fraction = f"{abs(amount):.2f}".split(".")

    groups = []
    while len(integer_part) > 3:
        groups.insert(0, integer_part[-3:])
        integer_part = integer_part[:-3]
    groups.insert(0, integer_part)

    number = f"{sign}{number_format.thousands_separator.join(groups)}{number_format.decimal_separator}{fraction}"
    if not with_currency:
        return number
    if number_format.currency_position == "before":
        return f"{number_format.currency_symbol} {number}"
    return f"{number} {number_format.currency_symbol}"
