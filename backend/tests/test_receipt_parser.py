"""Tests for the receipt line parser and parse_receipt."""
from decimal import Decimal

from prizma.schemas.receipt import OcrGuess, OcrGuessItem, QualityFlag
from prizma.services.receipt_parser import parse_quantity, parse_receipt, should_skip_line


def names(result):
    return [item.name for item in result.items]


class TestSimpleReceipts:
    def test_two_items_matching_total(self):
        result = parse_receipt("Хляб 1.20\nМляко 2.30\nОБЩО 3.50")

        assert names(result) == ["Хляб", "Мляко"]
        assert [item.price for item in result.items] == [Decimal("1.20"), Decimal("2.30")]
        assert result.declared_total == Decimal("3.50")
        assert result.total_validation.valid
        assert result.total_validation.percentage_diff == 0.0
        assert result.retailer_id == "generic"

    def test_items_keep_line_numbers_and_order(self):
        result = parse_receipt("Магазин Иванов\n\nХляб 1,20\nМляко 2,30\nОБЩО 3,50")
        assert [item.line_number for item in result.items] == [3, 4]

    def test_total_on_following_line(self):
        result = parse_receipt("Хляб 1,20\nОБЩО\n1,20")
        assert result.declared_total == Decimal("1.20")
        assert len(result.items) == 1

    def test_mismatching_total_keeps_items(self):
        result = parse_receipt("Хляб 1,20\nМляко 2,30\nОБЩО 5,00")

        assert len(result.items) == 2
        assert not result.total_validation.valid
        assert result.requires_review
        assert any("се различава" in s for s in result.suggestions)

    def test_missing_total(self):
        result = parse_receipt("Хляб 1,20\nМляко 2,30")

        assert result.declared_total is None
        assert not result.total_validation.valid
        assert result.total_validation.percentage_diff is None

    def test_footer_ends_parsing(self):
        result = parse_receipt("Хляб 1,20\nБЛАГОДАРИМ ВИ!\nМляко 2,30")
        assert names(result) == ["Хляб"]

    def test_service_lines_are_skipped(self):
        text = "\n".join([
            "Хляб 1,20",
            "Касиер: Иван",
            "12.03.2024 14:22",
            "------",
            "ЕИК 123456789",
            "Мляко 2,30",
            "ОБЩО 3,50",
        ])
        assert names(parse_receipt(text)) == ["Хляб", "Мляко"]


class TestQuantityLines:
    def test_quantity_line_between_name_and_amount(self):
        text = "\n".join([
            "KAUFLAND БЪЛГАРИЯ ЕООД ЕНД КО КД",
            "ЕИК 131129282",
            "КАСОВА БЕЛЕЖКА",
            "МЛЯКО ВЕРЕЯ 3.6% 1Л",
            "2 x 2,49",
            "4,98 Б",
            "ХЛЯБ ДОБРУДЖА 1,39 Б",
            "ОБЩА СУМА 6,37",
            "БЛАГОДАРИМ ВИ!",
        ])
        result = parse_receipt(text)

        assert result.retailer == "Кауфланд"
        assert names(result) == ["МЛЯКО ВЕРЕЯ 3.6% 1Л", "ХЛЯБ ДОБРУДЖА"]
        milk = result.items[0]
        assert milk.quantity == Decimal("2")
        assert milk.unit_price == Decimal("2.49")
        assert milk.price == Decimal("4.98")
        assert QualityFlag.FUZZY_PRICE_MATCH not in milk.quality_flags
        assert result.total_validation.valid

    def test_quantity_line_below_amount_amends_previous_item(self):
        text = "\n".join([
            "LIDL",
            "Банани 2,98 Б",
            "2 x 1,49",
            "Кисело мляко 0,89 Б",
            "ОТСТЪПКА -0,20",
            "МЕЖДИННА СУМА 3,67",
        ])
        result = parse_receipt(text)

        assert result.retailer_id == "lidl"
        assert len(result.items) == 2
        bananas, yogurt = result.items
        assert bananas.quantity == Decimal("2")
        assert bananas.unit_price == Decimal("1.49")
        assert yogurt.price == Decimal("0.69")
        assert QualityFlag.DISCOUNT_APPLIED in yogurt.quality_flags
        assert result.total_validation.valid

    def test_weighed_item(self):
        text = "Хляб 1,20\nДомати\n0,535 x 3,99\n2,13\nОБЩО 3,33"
        result = parse_receipt(text)

        tomatoes = result.items[1]
        assert tomatoes.name == "Домати"
        assert tomatoes.quantity == Decimal("0.535")
        assert tomatoes.price == Decimal("2.13")
        assert QualityFlag.MERGED_LINES in tomatoes.quality_flags
        assert result.total_validation.valid

    def test_name_on_quantity_line_with_mismatched_amount(self):
        result = parse_receipt("Хляб 1,20\nЯйца М 10 бр x 0,35 3,60")

        eggs = result.items[1]
        assert eggs.name == "Яйца М"
        assert eggs.quantity == Decimal("10")
        assert eggs.price == Decimal("3.50")
        assert QualityFlag.FUZZY_PRICE_MATCH in eggs.quality_flags

    def test_inline_quantity_prefix(self):
        result = parse_receipt("2 x Кроасан 2,40\nОБЩО 2,40")

        croissant = result.items[0]
        assert croissant.name == "Кроасан"
        assert croissant.quantity == Decimal("2")
        assert croissant.unit_price == Decimal("1.2000")


class TestItemQuality:
    def test_name_fragments_are_merged(self):
        result = parse_receipt("Хляб 1,20\nСирене краве\nБДС 400г\n5,99\nОБЩО 7,19")

        cheese = result.items[1]
        assert cheese.name == "Сирене краве БДС 400г"
        assert QualityFlag.MERGED_LINES in cheese.quality_flags
        assert result.total_validation.valid

    def test_ocr_repaired_amount_is_flagged(self):
        result = parse_receipt("Мляко 2,3O\nОБЩО 2,30")

        milk = result.items[0]
        assert milk.price == Decimal("2.30")
        assert QualityFlag.OCR_UNCERTAIN in milk.quality_flags
        assert milk.confidence == 0.7

    def test_negative_amount_line_discounts_previous_item(self):
        result = parse_receipt("Хляб 1,20\n-0,20")

        assert result.items[0].price == Decimal("1.00")
        assert QualityFlag.DISCOUNT_APPLIED in result.items[0].quality_flags

    def test_short_name_and_large_price_are_flagged(self):
        result = parse_receipt("Хляб 1,20\nАБ 1,00\nТелевизор 1 299,00")

        assert QualityFlag.NAME_INCOMPLETE in result.items[1].quality_flags
        tv = result.items[2]
        assert tv.price == Decimal("1299.00")
        assert QualityFlag.PRICE_SUSPICIOUS in tv.quality_flags

    def test_items_starting_like_phone_prefix_are_kept(self):
        result = parse_receipt("КАУФЛАНД\nХляб 1,20\nТелешко месо 12,50\nтел. 0888 123 456\nОБЩО 13,70")

        assert names(result) == ["Хляб", "Телешко месо"]
        assert result.total_validation.valid
        assert result.total_validation.percentage_diff == 0.0

    def test_items_get_normalized_names(self):
        result = parse_receipt("Мляко Верея 3.6% 1л 2,49")
        assert result.items[0].normalized_name == "мляко верея 1л 3.6%"


class TestBadInput:
    def test_garbage_never_raises(self):
        result = parse_receipt("@@@\n\n###\n12:30\n")

        assert result.items == []
        assert result.overall_confidence == 0.0
        assert result.requires_review
        assert result.suggestions

    def test_none_text(self):
        result = parse_receipt(None)
        assert result.items == []
        assert result.declared_total is None


class TestOcrGuess:
    def test_guess_fills_missing_store_total_and_items(self):
        guess = OcrGuess(
            store="Billa",
            total=Decimal("3.50"),
            items=[OcrGuessItem(name="Хляб", price=Decimal("1.20")), OcrGuessItem(name="Мляко", price=Decimal("2.30"))],
            confidence=0.9,
        )
        result = parse_receipt("нечетим текст", ocr_guess=guess)

        assert result.retailer_id == "billa"
        assert result.declared_total == Decimal("3.50")
        assert names(result) == ["Хляб", "Мляко"]
        assert all(QualityFlag.FROM_OCR_GUESS in item.quality_flags for item in result.items)
        assert result.items[0].confidence == 0.8
        assert result.used_ocr_guess
        assert result.total_validation.valid

    def test_parsed_text_wins_over_guess(self):
        guess = OcrGuess(store="Lidl", total=Decimal("9.99"), items=[OcrGuessItem(name="Друго", price=Decimal("9.99"))])
        result = parse_receipt("BILLA\nХляб 1,20\nОБЩО 1,20", ocr_guess=guess)

        assert result.retailer_id == "billa"
        assert result.declared_total == Decimal("1.20")
        assert names(result) == ["Хляб"]
        assert not result.used_ocr_guess

    def test_unknown_guess_store_keeps_its_name(self):
        result = parse_receipt("Хляб 1,20", ocr_guess=OcrGuess(store="  Магазин Роза "))

        assert result.retailer == "Магазин Роза"
        assert result.retailer_id == "generic"


class TestHelpers:
    def test_parse_quantity(self):
        assert parse_quantity("2") == Decimal("2")
        assert parse_quantity("0,535") == Decimal("0.535")
        assert parse_quantity("1.250") == Decimal("1.250")
        assert parse_quantity("x") is None

    def test_should_skip_line(self):
        assert should_skip_line("=====")
        assert should_skip_line("ЗДДС BG123456789")
        assert should_skip_line("ул. Витоша 1")
        assert should_skip_line("тел.: 0888 123 456")
        assert should_skip_line("Телефон 02 987 6543")
        assert not should_skip_line("Телешко месо 12,50")
        assert not should_skip_line("Хляб 1,20")
