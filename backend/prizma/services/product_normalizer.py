"""
Product Normalizer

Maps a raw, noisy product string from a receipt to a canonical key so the
same product bought at different retailers lands on one MasterProduct.

    "Мляко Верея 3.6% 1л"  -> "мляко верея 1л 3.6%"
    "мляко верея 1л 3.6%"  -> "мляко верея 1л 3.6%"
    "МЛЕКО VEREJA 1 Л 3,6 %" -> "мляко верея 1л 3.6%"

The key is a pure function of the token multiset: order, case and spacing
do not matter and normalizing a key returns the key unchanged.
"""
import hashlib
import logging
import re
import unicodedata
from decimal import Decimal
from typing import Optional

from prizma.schemas.product import NormalizationResult

logger = logging.getLogger(__name__)

MISC_PREFIX = "misc:"
_MISC_KEY = re.compile(r"^misc:[0-9a-f]{12}$")

# Alias -> canonical brand. Canonical names are aliases of themselves.
KNOWN_BRANDS = {
    # Dairy
    "верея": "верея", "vereja": "верея", "vereia": "верея", "vereya": "верея",
    "милковия": "милковия", "milkovia": "милковия",
    "бор чвор": "бор чвор", "bor cvor": "бор чвор", "bor chvor": "бор чвор",
    "валио": "валио", "valio": "валио",
    "родопско": "родопско", "rodopsko": "родопско",
    "загора": "загора", "zagora": "загора",
    "балканика": "балканика", "balkanika": "балканика",
    "олимпус": "олимпус", "olympus": "олимпус",
    # Meat
    "маджаров": "маджаров", "madjarov": "маджаров",
    "тандем": "тандем", "tandem": "тандем",
    "дунав": "дунав", "dunav": "дунав",
    "свиленград": "свиленград", "svilengrad": "свиленград",
    # Beverages
    "кока кола": "кока кола", "coca cola": "кока кола",
    "пепси": "пепси", "pepsi": "пепси",
    "фанта": "фанта", "fanta": "фанта",
    "спрайт": "спрайт", "sprite": "спрайт",
    "банкя": "банкя", "bankya": "банкя",
    "девин": "девин", "devin": "девин",
    "горна баня": "горна баня", "gorna banya": "горна баня",
    "каменица": "каменица", "kamenitsa": "каменица",
    "загорка": "загорка", "zagorka": "загорка",
    # Snacks
    "кириешки": "кириешки", "kirieshki": "кириешки",
    "чипита": "чипита", "chipita": "чипита",
    "нестле": "нестле", "nestle": "нестле",
    "милка": "милка", "milka": "милка",
    "ритер спорт": "ритер спорт", "ritter sport": "ритер спорт",
    "хайнц": "хайнц", "heinz": "хайнц",
    # Personal care
    "pantene": "pantene", "colgate": "colgate", "nivea": "nivea",
    # General
    "данон": "данон", "danone": "данон",
    "алпро": "алпро", "alpro": "алпро",
    "арла": "арла", "arla": "арла",
}

UNIT_MAPPINGS = {
    "л": "л", "литра": "л", "литър": "л", "l": "л", "lt": "л",
    "мл": "мл", "ml": "мл",
    "кг": "кг", "kg": "кг", "килограм": "кг", "килограма": "кг",
    "г": "г", "гр": "г", "gr": "г", "g": "г", "грам": "г", "грама": "г",
    "бр": "бр", "брой": "бр", "броя": "бр", "шт": "бр", "pcs": "бр",
}

# Receipt abbreviations and transliterations -> canonical word
SYNONYMS = {
    "млеко": "мляко", "mleko": "мляко", "mlyako": "мляко",
    "hleb": "хляб", "hlqb": "хляб", "хлеб": "хляб",
    "sirene": "сирене", "kashkaval": "кашкавал",
    "voda": "вода", "sok": "сок", "meso": "месо", "riba": "риба",
    "пил": "пилешко", "св": "свинско", "тел": "телешко",
    "кис": "кисело", "пр": "прясно", "прес": "пресен",
}

# Latin letters OCR puts inside Cyrillic words
_LATIN_TO_CYRILLIC = str.maketrans({
    "a": "а", "e": "е", "o": "о", "p": "р", "c": "с", "x": "х",
    "y": "у", "k": "к", "m": "м", "t": "т", "b": "в", "h": "н",
})

_UNIT_ALTERNATION = "|".join(sorted((re.escape(u) for u in UNIT_MAPPINGS), key=len, reverse=True))
_SIZE_TOKEN = re.compile(rf"^(\d+(?:\.\d+)?)({_UNIT_ALTERNATION})$")
_FAT_TOKEN = re.compile(r"^(\d+(?:\.\d+)?)%$")
_SPLIT_SIZE = re.compile(rf"(\d)\s+({_UNIT_ALTERNATION})(?![\w])")
_SPLIT_PERCENT = re.compile(r"(\d)\s+%")
_DECIMAL_COMMA = re.compile(r"(\d),(\d)")
_NOISE = re.compile(r"[^\w%.\s]")
_CYRILLIC = re.compile(r"[а-яёіѝ]")
_LETTER = re.compile(r"[^\W\d_]")

# Brand aliases as token tuples, ranked by canonical name (longest first) so
# a Latin spelling and its Cyrillic canonical win or lose together
_BRAND_ALIASES = sorted(
    ((tuple(alias.split()), canonical) for alias, canonical in KNOWN_BRANDS.items()),
    key=lambda pair: (-len(pair[1]), pair[1], -len(pair[0]), pair[0]),
)


def _strip_latin_diacritics(text: str) -> str:
    out = []
    for ch in text:
        if ord(ch) > 127 and "LATIN" in unicodedata.name(ch, ""):
            ch = "".join(c for c in unicodedata.normalize("NFKD", ch) if not unicodedata.combining(c))
        elif unicodedata.combining(ch):
            continue
        out.append(ch)
    return "".join(out)


def _fold_token(token: str) -> str:
    """Fold Latin look-alikes in a token that already contains Cyrillic."""
    if _CYRILLIC.search(token) and re.search(r"[a-z]", token):
        return token.translate(_LATIN_TO_CYRILLIC)
    return token


def _format_number(value: Decimal) -> str:
    return format(value.normalize(), "f")


def clean_text(raw: str) -> str:
    """
    Lowercase, strip Latin diacritics and punctuation noise, fold homoglyphs.

    Keeps the Cyrillic й and joins split size/percent spellings ("1 л" -> "1л").
    """
    text = unicodedata.normalize("NFKC", raw or "").lower()
    text = unicodedata.normalize("NFC", _strip_latin_diacritics(text))
    text = _DECIMAL_COMMA.sub(r"\1.\2", text)
    text = _NOISE.sub(" ", text)
    # Dots are only kept between digits
    text = re.sub(r"(?<!\d)\.|\.(?!\d)", " ", text)
    text = _SPLIT_SIZE.sub(r"\1\2", text)
    text = _SPLIT_PERCENT.sub(r"\1%", text)
    return " ".join(_fold_token(token) for token in text.split())


def tokenize(raw: str) -> list[str]:
    return clean_text(raw).split()


def _extract_size(tokens: list[str]) -> tuple[Optional[Decimal], Optional[str], list[str]]:
    """Pick one size+unit token; other size tokens stay in the base in canonical form."""
    candidates = {}
    for token in tokens:
        match = _SIZE_TOKEN.match(token)
        if match:
            size, unit = Decimal(match.group(1)), UNIT_MAPPINGS[match.group(2)]
            candidates[token] = (f"{_format_number(size)}{unit}", size, unit)
    if not candidates:
        return None, None, tokens

    # Smallest canonical spelling wins so the choice ignores input order
    chosen = min(candidates.values(), key=lambda c: c[0])
    remaining = []
    for token in tokens:
        if token in candidates:
            token = candidates[token][0]
            if token == chosen[0]:
                continue
        remaining.append(token)
    return chosen[1], chosen[2], remaining


def _extract_fat(tokens: list[str]) -> tuple[Optional[Decimal], list[str]]:
    candidates = {}
    for token in tokens:
        match = _FAT_TOKEN.match(token)
        if match:
            fat = Decimal(match.group(1))
            candidates[token] = (f"{_format_number(fat)}%", fat)
    if not candidates:
        return None, tokens

    chosen = min(candidates.values(), key=lambda c: c[0])
    remaining = []
    for token in tokens:
        if token in candidates:
            token = candidates[token][0]
            if token == chosen[0]:
                continue
        remaining.append(token)
    return chosen[1], remaining


def _take(tokens: list[str], wanted: tuple) -> Optional[list[str]]:
    """Tokens left after removing every token of `wanted`, or None if one is missing."""
    remaining = list(tokens)
    for token in wanted:
        if token not in remaining:
            return None
        remaining.remove(token)
    return remaining


def _canonicalize_brands(tokens: list[str]) -> list[str]:
    """Rewrite every brand alias to its canonical tokens, in place of the alias."""
    tokens = list(tokens)
    for alias_tokens, canonical in _BRAND_ALIASES:
        canonical_tokens = canonical.split()
        if list(alias_tokens) == canonical_tokens:
            continue
        remaining = _take(tokens, alias_tokens)
        while remaining is not None:
            position = tokens.index(alias_tokens[0])
            tokens = remaining[:position] + canonical_tokens + remaining[position:]
            remaining = _take(tokens, alias_tokens)
    return tokens


def _extract_brand(tokens: list[str]) -> tuple[Optional[str], list[str]]:
    """Longest canonical brand whose tokens are all present (any order)."""
    for alias_tokens, canonical in _BRAND_ALIASES:
        remaining = _take(tokens, alias_tokens)
        if remaining is not None:
            return canonical, remaining
    return None, tokens


def _canonical_base(tokens: list[str]) -> list[str]:
    base = []
    for token in tokens:
        if token in UNIT_MAPPINGS:
            continue  # stray unit word
        base.append(SYNONYMS.get(token, token))
    return base


def _misc_key(tokens: list[str]) -> str:
    digest = hashlib.sha1(" ".join(sorted(tokens)).encode("utf-8")).hexdigest()[:12]
    return f"{MISC_PREFIX}{digest}"


def _display_name(ordered_base: list[str], brand, size, unit, fat) -> str:
    parts = []
    if ordered_base:
        parts.append(" ".join(ordered_base).capitalize())
    if brand:
        parts.append(brand.title())
    if size is not None:
        parts.append(f"{_format_number(size)}{unit}")
    if fat is not None:
        parts.append(f"{_format_number(fat)}%")
    if not parts:
        raise ValueError("nothing to display")
    return " ".join(parts)


def normalize_name(raw_name: str) -> NormalizationResult:
    """
    Canonicalize a raw product name. Pure and never raises.

    Steps: clean and tokenize, extract size+unit, fat % and brand (each
    removes its tokens), canonicalize and sort the remaining base tokens,
    then compose "<base> <brand> <size+unit> <fat%>".
    Inputs with no letter-bearing token go to a hash-keyed misc bucket.
    """
    stripped = (raw_name or "").strip().lower()
    if _MISC_KEY.match(stripped):
        return NormalizationResult(normalized_name=stripped, display_name=stripped, is_miscellaneous=True)

    tokens = tokenize(raw_name)
    size, unit, rest = _extract_size(tokens)
    fat, rest = _extract_fat(rest)
    brand, rest = _extract_brand(_canonicalize_brands(rest))
    ordered_base = _canonical_base(rest)

    if not brand and not any(_LETTER.search(t) for t in ordered_base):
        key = _misc_key(tokens)
        return NormalizationResult(normalized_name=key, display_name=key, is_miscellaneous=True)

    # Dedupe keeping first occurrence for the display name
    unique_base = []
    for token in ordered_base:
        if token not in unique_base:
            unique_base.append(token)
    ordered_base = unique_base
    base = sorted(ordered_base)

    parts = list(base)
    if brand:
        parts.append(brand)
    if size is not None:
        parts.append(f"{_format_number(size)}{unit}")
    if fat is not None:
        parts.append(f"{_format_number(fat)}%")
    normalized_name = " ".join(parts)

    keywords = sorted(set(base) | set(brand.split() if brand else []))

    try:
        display_name = _display_name(ordered_base, brand, size, unit, fat)
    except Exception as e:
        logger.debug(f"Display name fallback for '{raw_name}': {e}")
        display_name = normalized_name

    return NormalizationResult(
        normalized_name=normalized_name,
        display_name=display_name,
        brand=brand,
        size=size,
        unit=unit,
        fat_content=fat,
        keywords=keywords,
    )


def normalize_product(raw_name: str, repository, category_id: Optional[int] = None) -> NormalizationResult:
    """
    Normalize and lookup-or-create the MasterProduct for raw_name.

    Concurrent creation of the same key is resolved by the repository
    (unique constraint plus re-fetch), so callers always get the one row.
    """
    result = normalize_name(raw_name)
    product = repository.get_or_create_master_product(result, category_id=category_id)
    return result.model_copy(update={"master_product_id": product.id})


def similarity(first: str, second: str) -> float:
    """
    Token overlap of two product names, relative to the smaller token set.

    "мляко прясно верея" vs "прясно мляко" -> 1.0
    """
    words1 = set(normalize_name(first).keywords)
    words2 = set(normalize_name(second).keywords)
    if not words1 or not words2:
        return 0.0
    overlap = len(words1 & words2)
    return overlap / min(len(words1), len(words2))
