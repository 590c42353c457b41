"""Tests for the end-to-end receipt pipeline and the AI enhancement pass."""
from decimal import Decimal
from unittest.mock import AsyncMock

from prizma.exceptions import ExternalServiceError
from prizma.models import CurrentPrice, MasterProduct, Receipt, ReceiptItem, Retailer
from prizma.schemas.receipt import OcrGuess, QualityFlag, ReceiptProcessRequest
from prizma.services.receipt_enhancer import build_enhancement_prompt, enhance_receipt
from prizma.services.receipt_parser import parse_receipt
from prizma.services.receipt_processor import ReceiptProcessor

BILLA_RECEIPT = "BILLA\nХляб Добруджа 1,20\nМляко Верея 1л 2,30\nОБЩО 3,50"


def ai_returning(content):
    client = AsyncMock()
    client.complete.return_value = content
    return client


class TestReceiptProcessor:
    async def test_stores_receipt_products_and_prices(self, db):
        processed = await ReceiptProcessor(db).process(
            ReceiptProcessRequest(raw_text=BILLA_RECEIPT, user_id="user-1")
        )

        assert processed.retailer == "Билла"
        assert [item.category for item in processed.items] == ["bakery", "dairy-eggs"]
        assert processed.parse_result.total_validation.valid

        receipt = db.query(Receipt).one()
        assert receipt.user_id == "user-1"
        assert receipt.total_valid
        assert db.query(ReceiptItem).count() == 2
        assert db.query(MasterProduct).count() == 2

        billa = db.query(Retailer).filter(Retailer.slug == "billa").one()
        prices = {p.master_product_id: Decimal(str(p.unit_price)) for p in db.query(CurrentPrice).all()}
        assert prices == {
            processed.items[0].master_product_id: Decimal("1.20"),
            processed.items[1].master_product_id: Decimal("2.30"),
        }
        assert all(p.retailer_id == billa.id for p in db.query(CurrentPrice).all())

    async def test_products_get_categories(self, db):
        processed = await ReceiptProcessor(db).process(
            ReceiptProcessRequest(raw_text=BILLA_RECEIPT, user_id="user-1")
        )

        bread = db.get(MasterProduct, processed.items[0].master_product_id)
        assert bread.category.slug == "bakery"
        item = db.query(ReceiptItem).filter(ReceiptItem.master_product_id == bread.id).one()
        assert item.category_method == "rule"

    async def test_resubmission_reuses_products_and_prices(self, db):
        processor = ReceiptProcessor(db)
        request = ReceiptProcessRequest(raw_text=BILLA_RECEIPT, user_id="user-1")

        first = await processor.process(request)
        second = await processor.process(request)

        assert first.receipt_id != second.receipt_id
        assert db.query(Receipt).count() == 2
        assert db.query(MasterProduct).count() == 2
        assert db.query(CurrentPrice).count() == 2

    async def test_unknown_store_stores_no_prices(self, db):
        processed = await ReceiptProcessor(db).process(
            ReceiptProcessRequest(raw_text="Хляб 1,20\nОБЩО 1,20", user_id="user-1")
        )

        assert processed.retailer_db_id is None
        assert db.query(ReceiptItem).count() == 1
        assert db.query(CurrentPrice).count() == 0

    async def test_store_named_by_ocr_guess_is_created(self, db):
        request = ReceiptProcessRequest(
            raw_text="Хляб 1,20\nОБЩО 1,20",
            user_id="user-1",
            ocr_guess=OcrGuess(store="Магазин Роза"),
        )
        processed = await ReceiptProcessor(db).process(request)

        retailer = db.get(Retailer, processed.retailer_db_id)
        assert retailer.slug == "магазин-роза"
        assert db.query(CurrentPrice).count() == 1


class TestEnhanceReceipt:
    def base_result(self):
        return parse_receipt("Хляб 1,20\nОБЩО 3,50")

    async def test_adds_missed_items_and_revalidates(self):
        result = self.base_result()
        assert not result.total_validation.valid
        ai = ai_returning('Ето: [{"name": "Хляб", "price": 1.2}, {"name": "Мляко", "price": 2.3, "confidence": 0.8}]')

        enhanced = await enhance_receipt(result, "Хляб 1,20\nОБЩО 3,50", ai)

        assert enhanced.error is None
        assert enhanced.added_items == 1
        milk = enhanced.result.items[-1]
        assert milk.name == "Мляко"
        assert milk.price == Decimal("2.30")
        assert milk.quality_flags == (QualityFlag.AI_ENHANCED,)
        assert milk.confidence == 0.7
        assert milk.line_number == 2
        assert enhanced.result.total_validation.valid

    async def test_nothing_missed(self):
        result = self.base_result()
        enhanced = await enhance_receipt(result, "", ai_returning("[]"))

        assert enhanced.added_items == 0
        assert enhanced.result == result

    async def test_disabled_without_client(self):
        enhanced = await enhance_receipt(self.base_result(), "", None)
        assert enhanced.error == "AI enhancement is disabled"

    async def test_provider_failure_keeps_result(self):
        ai = AsyncMock()
        ai.complete.side_effect = ExternalServiceError("AI provider error 503")
        result = self.base_result()

        enhanced = await enhance_receipt(result, "", ai)

        assert enhanced.result == result
        assert "503" in enhanced.error

    async def test_unparseable_answer_is_reported(self):
        enhanced = await enhance_receipt(self.base_result(), "", ai_returning("Съжалявам, не мога."))

        assert enhanced.error
        assert enhanced.raw_response == "Съжалявам, не мога."

    async def test_category_answer_is_rejected(self):
        enhanced = await enhance_receipt(self.base_result(), "", ai_returning('{"category": "bakery"}'))
        assert enhanced.error == "expected an item list, got category"

    def test_prompt_lists_found_items(self):
        prompt = build_enhancement_prompt("Хляб 1,20", self.base_result())

        assert "- Хляб: 1,20 лв" in prompt
        assert "Обща сума: 3,50 лв" in prompt
