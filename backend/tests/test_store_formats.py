"""Tests for store detection and amount parsing/formatting."""
from decimal import Decimal

import pytest

from prizma.services.store_formats import (
    BGN_FORMAT,
    GENERIC_FORMAT,
    NumberFormat,
    RetailerId,
    detect_store_format,
    fold_ocr_text,
    format_amount,
    parse_amount,
    repair_ocr_amounts,
    resolve_store_format,
)


class TestDetectStoreFormat:
    def test_detects_latin_header(self):
        text = "KAUFLAND БЪЛГАРИЯ ЕООД\nгр. София\nХляб 1,20\nОБЩО 1,20"
        assert detect_store_format(text).retailer_id == RetailerId.KAUFLAND

    def test_detects_cyrillic_header(self):
        assert detect_store_format("ЛИДЛ БЪЛГАРИЯ\nМляко 2,30").retailer_id == RetailerId.LIDL

    def test_tolerates_ocr_confusions(self):
        # Zero for O and Cyrillic letters mixed into a Latin name
        assert detect_store_format("FANTAST1CO 2\nХляб 1,20").retailer_id == RetailerId.FANTASTICO
        assert detect_store_format("ВILLА\nХляб 1,20").retailer_id == RetailerId.BILLA

    def test_multi_word_signature(self):
        assert detect_store_format("Т-МАРКЕТ ЕООД\nХляб 1,20").retailer_id == RetailerId.T_MARKET

    def test_hint_wins(self):
        text = "KAUFLAND\nХляб 1,20"
        assert detect_store_format(text, hint="lidl").retailer_id == RetailerId.LIDL

    def test_unknown_hint_is_ignored(self):
        assert detect_store_format("BILLA\nХляб 1,20", hint="Магазин до блока").retailer_id == RetailerId.BILLA

    def test_signature_inside_word_does_not_match(self):
        assert detect_store_format("BILLABONG SURF\nШорти 20,00").is_generic

    def test_unknown_receipt_falls_back_to_generic(self):
        assert detect_store_format("Квартален магазин\nХляб 1,20") is GENERIC_FORMAT

    def test_empty_text(self):
        assert detect_store_format("") is GENERIC_FORMAT
        assert detect_store_format(None) is GENERIC_FORMAT

    def test_signature_found_outside_header_window(self):
        lines = ["ред"] * 15 + ["ЛИДЛ"]
        assert detect_store_format("\n".join(lines)).retailer_id == RetailerId.LIDL


class TestResolveStoreFormat:
    def test_by_slug_and_display_name(self):
        assert resolve_store_format("t-market").retailer_id == RetailerId.T_MARKET
        assert resolve_store_format("Кауфланд").retailer_id == RetailerId.KAUFLAND

    def test_unknown(self):
        assert resolve_store_format("Непознат") is None
        assert resolve_store_format(None) is None


class TestFoldOcrText:
    def test_folds_homoglyphs_and_digits(self):
        assert fold_ocr_text("Lidl") == fold_ocr_text("LIDL")
        assert fold_ocr_text("КАUFLАND") == fold_ocr_text("KAUFLAND")
        assert fold_ocr_text("T   -  MARKET") == "T MARKET"


class TestParseAmount:
    @pytest.mark.parametrize("text,expected", [
        ("2,30", "2.30"),
        ("2.30", "2.30"),
        ("1 234,50", "1234.50"),
        ("1 234,50 лв", "1234.50"),
        ("1.234,50", "1234.50"),
        ("1,234.50", "1234.50"),
        ("BGN 12.99", "12.99"),
        ("12,99 лв.", "12.99"),
        ("-0,50", "-0.50"),
        ("2,3O", "2.30"),
        ("l,2O", "1.20"),
        ("1.234.567", "1234567"),
        ("7", "7"),
    ])
    def test_supported_layouts(self, text, expected):
        assert parse_amount(text) == Decimal(expected)

    def test_lone_separator_with_three_digits_follows_format(self):
        # Comma is the decimal separator of the BGN format
        assert parse_amount("0,535") == Decimal("0.535")
        # A dot followed by three digits groups thousands
        assert parse_amount("1.250") == Decimal("1250")

    @pytest.mark.parametrize("text", ["", "лв", "абв", None, "1,2,a"])
    def test_unreadable(self, text):
        assert parse_amount(text) is None


class TestFormatAmount:
    def test_bgn_format(self):
        assert format_amount(Decimal("1234.5")) == "1 234,50 лв"
        assert format_amount(Decimal("0.5"), with_currency=False) == "0,50"

    def test_currency_before(self):
        fmt = NumberFormat(decimal_separator=".", thousands_separator=",", currency_symbol="BGN", currency_position="before")
        assert format_amount(Decimal("1234.5"), fmt) == "BGN 1,234.50"

    @pytest.mark.parametrize("fmt", [
        BGN_FORMAT,
        NumberFormat(decimal_separator=".", thousands_separator=","),
        NumberFormat(decimal_separator=",", thousands_separator="."),
        NumberFormat(decimal_separator=".", thousands_separator=""),
    ])
    @pytest.mark.parametrize("value", ["0.05", "12.30", "1234.56", "1234567.89"])
    def test_render_then_parse_keeps_magnitude(self, fmt, value):
        rendered = format_amount(Decimal(value), fmt)
        assert parse_amount(rendered, fmt) == Decimal(value)


class TestRepairOcrAmounts:
    def test_repairs_letters_in_amounts_only(self):
        line, changed = repair_ocr_amounts("МЛЯКО ОLIO 2,3O")
        assert changed
        assert line.endswith("2,30")
        assert "ОLIO" in line

    def test_clean_line_unchanged(self):
        assert repair_ocr_amounts("Хляб 1,20") == ("Хляб 1,20", False)
