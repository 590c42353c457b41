"""
Receipt Processor

End-to-end pipeline for one receipt:

1. Parse the OCR text (store detection, line parsing, validation, scoring).
2. Upsert the retailer.
3. Categorize the items in bounded concurrent groups.
4. Normalize every item to its MasterProduct (lookup-or-create).
5. Persist the receipt with its items.
6. Upsert the latest known price per (product, retailer).

Every write is an upsert or an insert of new receipt rows, so a retried
submission only adds another receipt and never duplicates products or prices.
"""
import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP
from typing import Optional

from sqlalchemy.orm import Session

from prizma.models import Receipt, ReceiptItem, Retailer
from prizma.schemas.receipt import ProcessedItem, ProcessedReceipt, ReceiptParseResult, ReceiptProcessRequest
from prizma.services.auto_categorizer import Categorizer
from prizma.services.product_normalizer import normalize_name
from prizma.services.product_repository import SqlAlchemyProductRepository, slugify
from prizma.services.receipt_parser import parse_receipt
from prizma.services.store_formats import CENT, GENERIC_FORMAT, RetailerId
from prizma.services.total_validator import DEFAULT_THRESHOLD_PERCENT

logger = logging.getLogger(__name__)


class ReceiptProcessor:
    def __init__(
        self,
        db: Session,
        categorizer: Optional[Categorizer] = None,
        tolerance_percent: float = DEFAULT_THRESHOLD_PERCENT,
    ):
        self.db = db
        self.repository = SqlAlchemyProductRepository(db)
        self.categorizer = categorizer or Categorizer(repository=self.repository)
        self.tolerance_percent = tolerance_percent

    def _resolve_retailer(self, result: ReceiptParseResult) -> Optional[Retailer]:
        if result.retailer_id != RetailerId.GENERIC.value:
            return self.repository.get_or_create_retailer(result.retailer, slug=result.retailer_id)
        if result.retailer and result.retailer != GENERIC_FORMAT.display_name:
            # Unregistered store named by the OCR guess
            return self.repository.get_or_create_retailer(result.retailer, slug=slugify(result.retailer))
        return None

    async def process(self, request: ReceiptProcessRequest) -> ProcessedReceipt:
        result = parse_receipt(
            request.raw_text,
            store_hint=request.store_hint,
            ocr_guess=request.ocr_guess,
            tolerance_percent=self.tolerance_percent,
        )
        retailer = self._resolve_retailer(result)

        categorizations = await self.categorizer.categorize_batch(
            [item.name for item in result.items], user_id=request.user_id
        )
        category_ids = self.repository.get_category_ids()

        receipt = Receipt(
            user_id=request.user_id,
            retailer_id=retailer.id if retailer else None,
            declared_total=result.declared_total,
            calculated_total=result.total_validation.calculated_total,
            total_valid=result.total_validation.valid,
            confidence=result.overall_confidence,
            requires_review=result.requires_review,
            raw_text=request.raw_text,
        )
        self.db.add(receipt)
        self.db.flush()

        seen_at = datetime.now(timezone.utc)
        processed_items = []
        for item, categorization in zip(result.items, categorizations):
            normalization = normalize_name(item.name)
            category_id = category_ids.get(categorization.category)
            product = self.repository.get_or_create_master_product(normalization, category_id=category_id)
            self.repository.set_product_category(product, category_id)

            self.db.add(ReceiptItem(
                receipt_id=receipt.id,
                line_number=item.line_number,
                raw_name=item.name[:255],
                master_product_id=product.id,
                category_id=category_id,
                category_confidence=categorization.confidence,
                category_method=categorization.method,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total_price=item.price,
                confidence=item.confidence,
                quality_flags=[flag.value for flag in item.quality_flags],
            ))

            if retailer and not normalization.is_miscellaneous and item.unit_price > 0:
                self.repository.upsert_current_price(
                    product.id,
                    retailer.id,
                    item.unit_price.quantize(CENT, rounding=ROUND_HALF_UP),
                    seen_at=seen_at,
                )

            processed_items.append(ProcessedItem(
                line_number=item.line_number,
                name=item.name,
                normalized_name=normalization.normalized_name,
                display_name=product.display_name,
                master_product_id=product.id,
                category=categorization.category,
                category_confidence=categorization.confidence,
                category_method=categorization.method,
                quantity=item.quantity,
                unit_price=item.unit_price,
                price=item.price,
                confidence=item.confidence,
                quality_flags=list(item.quality_flags),
            ))

        self.db.commit()
        logger.info(
            f"Stored receipt {receipt.id} for user {request.user_id}: "
            f"{len(processed_items)} items from {result.retailer}"
        )

        return ProcessedReceipt(
            receipt_id=receipt.id,
            retailer=result.retailer,
            retailer_db_id=retailer.id if retailer else None,
            parse_result=result,
            items=processed_items,
        )
