"""
Auto-Categorizer Service

Assigns one of a fixed set of categories to a product name from a receipt.

Two tiers:
- Rule tier: keyword substrings per category, checked in priority order;
  first match wins. No match gives the default category at low confidence.
- AI tier: only when the rule tier fell back to the default. The product
  name goes to the AI provider together with the user's most recent
  corrections as context. The answer is re-validated against the category
  enum and unknown values are coerced to the default.

User corrections are stored and used as future AI context only. They never
rewrite items that were already categorized.
"""
import asyncio
import logging
from enum import Enum
from typing import Optional, Sequence

from prizma.exceptions import ExternalServiceError
from prizma.schemas.ai import AIParseError, CategoryPayload
from prizma.schemas.category import CategorizationResult, CorrectionExample
from prizma.services.ai_response import parse_ai_response
from prizma.services.product_normalizer import clean_text, normalize_name

logger = logging.getLogger(__name__)


class CategorySlug(str, Enum):
    ALCOHOL = "alcohol"
    PERSONAL_CARE = "personal-care"
    HOUSEHOLD = "household"
    READY_MEALS = "ready-meals"
    SNACKS = "snacks"
    BAKERY = "bakery"
    DAIRY_EGGS = "dairy-eggs"
    MEAT_FISH = "meat-fish"
    FRUIT_VEG = "fruit-veg"
    DRINKS = "drinks"
    PANTRY = "pantry"
    OTHER = "other"


DEFAULT_CATEGORY = CategorySlug.OTHER
RULE_CONFIDENCE = 0.9
DEFAULT_CONFIDENCE = 0.3
AI_MIN_CONFIDENCE = 0.6

CATEGORY_NAMES = {
    CategorySlug.ALCOHOL: "Алкохол",
    CategorySlug.PERSONAL_CARE: "Лична хигиена",
    CategorySlug.HOUSEHOLD: "Домакински",
    CategorySlug.READY_MEALS: "Готови храни",
    CategorySlug.SNACKS: "Снаксове и сладки",
    CategorySlug.BAKERY: "Хляб и тестени",
    CategorySlug.DAIRY_EGGS: "Млечни и яйца",
    CategorySlug.MEAT_FISH: "Месо и риба",
    CategorySlug.FRUIT_VEG: "Плодове и зеленчуци",
    CategorySlug.DRINKS: "Напитки",
    CategorySlug.PANTRY: "Основни продукти",
    CategorySlug.OTHER: "Други",
}

# Rule priority: earlier categories win when several match.
# Specific non-food and compound names come before the food words they contain
# ("паста за зъби" before "паста", "тоалетна вода" before "вода").
CATEGORY_ORDER = list(CategorySlug)

CATEGORY_KEYWORDS = {
    CategorySlug.ALCOHOL: {
        "keywords": [
            "бира", "вино", "ракия", "уиски", "водка", "джин", "коняк", "бренди",
            "мастика", "шампанско", "вермут", "ликьор", "алкохол",
        ],
        "exclude": ["безалкохол", "оцет"],
    },
    CategorySlug.PERSONAL_CARE: {
        "keywords": [
            "шампоан", "балсам за коса", "душ гел", "паста за зъби", "четка за зъби",
            "дезодорант", "антиперспирант", "парфюм", "лосион", "крем за", "пелени",
            "памперс", "превръзки", "тампони", "самобръсначк", "бръснене", "тоалетна вода",
            "одеколон", "мокри кърпи", "сапун", "боя за коса",
        ],
        "exclude": [],
    },
    CategorySlug.HOUSEHOLD: {
        "keywords": [
            "прах за пране", "перилен", "омекотител", "белина", "препарат", "почистващ",
            "за съдове", "за съдомиялна", "тоалетна хартия", "кухненска ролка", "салфетки",
            "торбичк", "торба", "фолио", "гъба за", "кърпа за", "свещ", "кибрит",
            "запалка", "ароматизатор", "освежител", "дезинфектант",
        ],
        "exclude": [],
    },
    CategorySlug.READY_MEALS: {
        "keywords": [
            "пица", "сандвич", "бургер", "баница", "мусака", "готов", "гьозлеме",
            "тутманик", "зелник", "палачинк", "дюнер", "руска салата",
        ],
        "exclude": [],
    },
    CategorySlug.SNACKS: {
        "keywords": [
            "чипс", "бисквит", "вафла", "шоколад", "бонбон", "желирани", "крекер",
            "солети", "пуканки", "снакс", "кроасан", "кекс", "мъфин", "торта",
            "сладкиш", "халва", "локум", "дъвк", "барче", "кириешки",
        ],
        "exclude": [],
    },
    CategorySlug.BAKERY: {
        "keywords": [
            "хляб", "питка", "кифла", "франзела", "багета", "симит", "козунак",
            "тост", "погача", "чиабата", "фокача", "геврек",
        ],
        "exclude": [],
    },
    CategorySlug.DAIRY_EGGS: {
        "keywords": [
            "мляко", "сирене", "кашкавал", "йогурт", "кисело", "масло", "извара",
            "сметана", "айран", "кефир", "яйца", "яйце", "моцарела", "крема",
        ],
        "exclude": ["слънчоглед", "зеле", "растително"],
    },
    CategorySlug.MEAT_FISH: {
        "keywords": [
            "месо", "пилешк", "пиле", "свинск", "телешк", "говежд", "агнешк", "кайма",
            "кебапче", "кюфте", "шунка", "салам", "луканка", "суджук", "наденица",
            "бекон", "пастърма", "филе", "кренвирш", "риба", "сьомга", "скумрия",
            "херинга", "скариди",
        ],
        "exclude": [],
    },
    CategorySlug.FRUIT_VEG: {
        "keywords": [
            "домат", "краставиц", "морков", "картоф", "лук", "чушк", "зеле", "спанак",
            "марул", "салата", "магданоз", "копър", "чесън", "тиквичк", "патладжан",
            "гъби", "ябълк", "банан", "портокал", "лимон", "мандарин", "грозде",
            "круша", "праскова", "ягоди", "киви", "диня", "пъпеш", "авокадо",
            "броколи", "карфиол",
        ],
        "exclude": ["лимонада", "сок", "нектар"],
    },
    CategorySlug.DRINKS: {
        "keywords": [
            "вода", "сок", "нектар", "кола", "пепси", "фанта", "спрайт", "лимонада",
            "чай", "кафе", "енергийна", "напитка", "айс ти", "боза", "компот",
            "минерална", "газирана",
        ],
        "exclude": [],
    },
    CategorySlug.PANTRY: {
        "keywords": [
            "олио", "слънчоглед", "зехтин", "захар", "брашно", "ориз", "макарони", "спагети", "паста",
            "сол", "оцет", "боб", "леща", "нахут", "кетчуп", "майонеза", "горчица",
            "лютеница", "консерва", "подправка", "черен пипер", "мед", "мая", "булгур",
            "грис", "овесени",
        ],
        "exclude": [],
    },
}


def coerce_category(value) -> CategorySlug:
    """Map any value onto the category enum; unknown values become the default."""
    if isinstance(value, CategorySlug):
        return value
    text = str(value or "").strip().lower().replace("_", "-")
    try:
        return CategorySlug(text)
    except ValueError:
        return DEFAULT_CATEGORY


def _matches(text: str, rules: dict) -> Optional[str]:
    if any(excl in text for excl in rules.get("exclude", [])):
        return None
    for keyword in rules["keywords"]:
        if keyword in text:
            return keyword
    return None


def categorize_by_rules(name: str) -> CategorizationResult:
    """
    Rule tier. Deterministic and offline.

    Examples:
        "Хляб бял" -> bakery
        "Паста за зъби Colgate" -> personal-care (not pantry)
        "Непознато нещо" -> other (confidence 0.3)
    """
    text = clean_text(name)
    for slug in CATEGORY_ORDER:
        rules = CATEGORY_KEYWORDS.get(slug)
        if not rules:
            continue
        keyword = _matches(text, rules)
        if keyword:
            return CategorizationResult(
                category=slug.value,
                confidence=RULE_CONFIDENCE,
                reasoning=f"keyword '{keyword}'",
                method="rule",
            )

    return CategorizationResult(
        category=DEFAULT_CATEGORY.value,
        confidence=DEFAULT_CONFIDENCE,
        reasoning="no keyword matched",
        method="default",
    )


def build_category_prompt(name: str, corrections: Sequence[CorrectionExample]) -> str:
    category_list = "\n".join(
        f"- {slug.value}: {CATEGORY_NAMES[slug]}" for slug in CATEGORY_ORDER if slug != DEFAULT_CATEGORY
    )
    prompt = (
        f'Категоризирай този български продукт от касова бележка: "{name}"\n\n'
        f"Налични категории:\n{category_list}\n\n"
    )
    if corrections:
        examples = "\n".join(f'- "{c.product_name}" -> {c.category_slug}' for c in corrections)
        prompt += f"Потребителят е коригирал тези продукти:\n{examples}\n\n"
    prompt += (
        'Върни само JSON: {"category": "<id>", "confidence": <0..1>, "reasoning": "<кратко>"}. '
        f'Ако не си сигурен, върни "{DEFAULT_CATEGORY.value}" с ниска confidence.'
    )
    return prompt


SYSTEM_PROMPT = (
    "Ти си експерт по категоризиране на български хранителни и домакински продукти. "
    "Отговаряй само с валиден JSON."
)


class Categorizer:
    """
    Rule-first categorizer with an optional AI fallback.

    All collaborators are optional: without an AI client the categorizer is
    rule-only, without a repository corrections must be passed explicitly.
    """

    def __init__(
        self,
        repository=None,
        ai_client=None,
        cache=None,
        correction_limit: int = 20,
        batch_size: int = 5,
        ai_min_confidence: float = AI_MIN_CONFIDENCE,
    ):
        self.repository = repository
        self.ai_client = ai_client
        self.cache = cache
        self.correction_limit = correction_limit
        self.batch_size = max(1, batch_size)
        self.ai_min_confidence = ai_min_confidence

    def _load_corrections(self, user_id: Optional[str]) -> list[CorrectionExample]:
        if not user_id or self.repository is None:
            return []
        rows = self.repository.get_recent_corrections(user_id, limit=self.correction_limit)
        return [CorrectionExample.model_validate(row) for row in rows]

    async def categorize(
        self,
        name: str,
        prior_corrections: Optional[Sequence[CorrectionExample]] = None,
        user_id: Optional[str] = None,
    ) -> CategorizationResult:
        """Categorize one product name. Never raises for bad input or AI failures."""
        rule_result = categorize_by_rules(name)
        if rule_result.method == "rule" or self.ai_client is None:
            return rule_result

        if prior_corrections is None:
            corrections = self._load_corrections(user_id)
        else:
            corrections = list(prior_corrections)[:self.correction_limit]

        cache_key = normalize_name(name).normalized_name
        if self.cache is not None and not corrections:
            cached = await self.cache.get_category(cache_key)
            if cached:
                return self._from_cache(cached)

        try:
            result = await self._categorize_with_ai(name, corrections)
        except ExternalServiceError as e:
            logger.warning(f"AI categorization unavailable for '{name}': {e}")
            return rule_result.model_copy(update={"reasoning": f"AI unavailable: {e}"})

        if result is None:
            return rule_result

        if self.cache is not None and not corrections:
            await self.cache.set_category(cache_key, result.model_dump(exclude={"method"}))
        return result

    @staticmethod
    def _from_cache(cached: dict) -> CategorizationResult:
        """Cached entries are shared and may predate the current category set."""
        category = coerce_category(cached.get("category"))
        try:
            confidence = min(max(float(cached.get("confidence")), 0.0), 1.0)
        except (TypeError, ValueError):
            confidence = DEFAULT_CONFIDENCE
        if category == DEFAULT_CATEGORY:
            confidence = min(confidence, DEFAULT_CONFIDENCE)
        reasoning = cached.get("reasoning")
        return CategorizationResult(
            category=category.value,
            confidence=confidence,
            reasoning=reasoning if isinstance(reasoning, str) else None,
            method="cache",
        )

    async def _categorize_with_ai(
        self, name: str, corrections: Sequence[CorrectionExample]
    ) -> Optional[CategorizationResult]:
        content = await self.ai_client.complete(SYSTEM_PROMPT, build_category_prompt(name, corrections), max_tokens=150)
        payload = parse_ai_response(content)

        if isinstance(payload, AIParseError):
            logger.warning(f"AI categorization for '{name}' unparseable: {payload.error}")
            return None
        if not isinstance(payload, CategoryPayload):
            logger.warning(f"AI categorization for '{name}' returned {payload.kind}, expected a category")
            return None

        category = coerce_category(payload.category)
        if category == DEFAULT_CATEGORY:
            return CategorizationResult(
                category=DEFAULT_CATEGORY.value,
                confidence=min(payload.confidence, DEFAULT_CONFIDENCE),
                reasoning=payload.reasoning or f"AI category '{payload.category}' not recognised",
                method="ai",
            )
        if payload.confidence < self.ai_min_confidence:
            logger.info(f"AI suggested {category.value} for '{name}' with low confidence {payload.confidence:.2f}")
            return None

        return CategorizationResult(
            category=category.value,
            confidence=payload.confidence,
            reasoning=payload.reasoning,
            method="ai",
        )

    async def categorize_batch(
        self,
        names: Sequence[str],
        user_id: Optional[str] = None,
        prior_corrections: Optional[Sequence[CorrectionExample]] = None,
    ) -> list[CategorizationResult]:
        """
        Categorize many names in groups of batch_size concurrent calls.

        A failure in one item is logged and defaulted; siblings are unaffected.
        Results are returned in input order.
        """
        if prior_corrections is None:
            prior_corrections = self._load_corrections(user_id)

        results: list[CategorizationResult] = []
        for start in range(0, len(names), self.batch_size):
            group = names[start:start + self.batch_size]
            outcomes = await asyncio.gather(
                *(self.categorize(name, prior_corrections=prior_corrections) for name in group),
                return_exceptions=True,
            )
            for name, outcome in zip(group, outcomes):
                if isinstance(outcome, Exception):
                    logger.error(f"Categorization failed for '{name}': {outcome}")
                    outcome = CategorizationResult(
                        category=DEFAULT_CATEGORY.value,
                        confidence=DEFAULT_CONFIDENCE,
                        reasoning=f"categorization error: {outcome}",
                        method="default",
                    )
                results.append(outcome)
        return results

    def save_correction(self, user_id: str, product_name: str, category):
        """
        Store a user-confirmed category.

        Raises ValueError for a category outside the fixed set. Stored
        corrections only bias future AI categorizations.
        """
        if self.repository is None:
            raise RuntimeError("save_correction needs a repository")
        text = str(category.value if isinstance(category, CategorySlug) else category).strip().lower()
        try:
            slug = CategorySlug(text)
        except ValueError:
            raise ValueError(f"Unknown category: {category}")

        row = self.repository.save_correction(
            user_id=user_id,
            product_name=product_name,
            product_name_normalized=normalize_name(product_name).normalized_name,
            category_slug=slug.value,
        )
        logger.info(f"Saved correction for user {user_id}: '{product_name}' -> {slug.value}")
        return row
