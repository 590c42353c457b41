"""
Product Repository

Storage contract used by the normalizer, categorizer and price aggregator.
Every write is an upsert guarded by a unique constraint, so duplicated or
out-of-order retries converge on the same rows without an in-process lock.
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Protocol

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from prizma.models import (
    CategorizationCorrection, Category, CurrentPrice, MasterProduct, Receipt, ReceiptItem, Retailer,
)
from prizma.schemas.product import NormalizationResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceRow:
    master_product_id: int
    product_name: str
    retailer_id: int
    retailer_name: str
    unit_price: Decimal
    seen_at: Optional[datetime] = None


class ProductRepository(Protocol):
    def get_master_product_by_name(self, normalized_name: str) -> Optional[MasterProduct]: ...

    def get_or_create_master_product(
        self, result: NormalizationResult, category_id: Optional[int] = None
    ) -> MasterProduct: ...

    def upsert_current_price(
        self, master_product_id: int, retailer_id: int, unit_price: Decimal, seen_at: Optional[datetime] = None
    ) -> None: ...

    def get_current_prices(self, product_ids: Optional[list[int]] = None) -> list[PriceRow]: ...

    def get_or_create_retailer(self, name: str, slug: Optional[str] = None) -> Retailer: ...

    def get_category_by_slug(self, slug: str) -> Optional[Category]: ...

    def save_correction(
        self, user_id: str, product_name: str, product_name_normalized: str, category_slug: str
    ) -> CategorizationCorrection: ...

    def get_recent_corrections(self, user_id: str, limit: int = 20) -> list[CategorizationCorrection]: ...

    def get_frequent_product_ids(self, user_id: str, min_purchases: int = 3, limit: int = 20) -> list[int]: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def slugify(name: str) -> str:
    slug = re.sub(r"[^\w]+", "-", name.strip().lower()).strip("-")
    return slug or "unknown"


class SqlAlchemyProductRepository:
    """ProductRepository backed by a SQLAlchemy session (PostgreSQL or SQLite)."""

    def __init__(self, db: Session):
        self.db = db

    def _dialect_insert(self):
        """INSERT construct supporting ON CONFLICT for the bound dialect, if any."""
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
            return insert
        if dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
            return insert
        return None

    # Master products

    def get_master_product_by_name(self, normalized_name: str) -> Optional[MasterProduct]:
        return self.db.query(MasterProduct).filter(
            MasterProduct.normalized_name == normalized_name
        ).first()

    def get_or_create_master_product(
        self, result: NormalizationResult, category_id: Optional[int] = None
    ) -> MasterProduct:
        """
        Lookup-or-create by exact normalized_name.

        A concurrent creator may win the race between the lookup and the
        insert; the unique constraint rejects the second row and the existing
        one is re-fetched. Safe to retry.
        """
        existing = self.get_master_product_by_name(result.normalized_name)
        if existing:
            return existing

        values = {
            "normalized_name": result.normalized_name,
            "display_name": result.display_name,
            "brand": result.brand,
            "size": result.size,
            "unit": result.unit,
            "fat_content": result.fat_content,
            "keywords": result.keywords,
            "category_id": category_id,
        }

        insert = self._dialect_insert()
        if insert is not None:
            stmt = insert(MasterProduct).values(**values).on_conflict_do_nothing(
                index_elements=["normalized_name"]
            )
            self.db.execute(stmt)
        else:
            try:
                with self.db.begin_nested():
                    self.db.add(MasterProduct(**values))
            except IntegrityError:
                logger.info(f"Master product '{result.normalized_name}' created concurrently, re-fetching")

        product = self.get_master_product_by_name(result.normalized_name)
        if product is None:
            raise RuntimeError(f"Master product '{result.normalized_name}' missing after upsert")
        return product

    def set_product_category(self, product: MasterProduct, category_id: Optional[int]) -> None:
        """Assign a category only to products that have none yet."""
        if category_id is not None and product.category_id is None:
            product.category_id = category_id

    def search_products(self, query: str, limit: int = 20) -> list[MasterProduct]:
        terms = [t for t in query.lower().split() if len(t) >= 2]
        q = self.db.query(MasterProduct)
        for term in terms:
            q = q.filter(MasterProduct.normalized_name.ilike(f"%{term}%"))
        return q.limit(limit * 5).all()

    # Prices

    def upsert_current_price(
        self, master_product_id: int, retailer_id: int, unit_price: Decimal, seen_at: Optional[datetime] = None
    ) -> None:
        """
        Record the latest known price for (product, retailer).

        An older observation arriving late does not overwrite a newer one.
        """
        seen_at = seen_at or _utcnow()
        insert = self._dialect_insert()
        if insert is not None:
            stmt = insert(CurrentPrice).values(
                master_product_id=master_product_id,
                retailer_id=retailer_id,
                unit_price=unit_price,
                seen_at=seen_at,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["master_product_id", "retailer_id"],
                set_={"unit_price": stmt.excluded.unit_price, "seen_at": stmt.excluded.seen_at},
                where=CurrentPrice.seen_at <= stmt.excluded.seen_at,
            )
            self.db.execute(stmt)
            return

        price = self.db.query(CurrentPrice).filter(
            CurrentPrice.master_product_id == master_product_id,
            CurrentPrice.retailer_id == retailer_id,
        ).first()
        if price is None:
            self.db.add(CurrentPrice(
                master_product_id=master_product_id,
                retailer_id=retailer_id,
                unit_price=unit_price,
                seen_at=seen_at,
            ))
        elif price.seen_at is None or price.seen_at <= seen_at:
            price.unit_price = unit_price
            price.seen_at = seen_at
        self.db.flush()

    def get_current_prices(self, product_ids: Optional[list[int]] = None) -> list[PriceRow]:
        """Current prices joined with product and retailer names. None means all products."""
        query = self.db.query(
            CurrentPrice.master_product_id,
            MasterProduct.display_name,
            CurrentPrice.retailer_id,
            Retailer.name,
            CurrentPrice.unit_price,
            CurrentPrice.seen_at,
        ).join(MasterProduct, MasterProduct.id == CurrentPrice.master_product_id
        ).join(Retailer, Retailer.id == CurrentPrice.retailer_id)

        if product_ids is not None:
            if not product_ids:
                return []
            query = query.filter(CurrentPrice.master_product_id.in_(product_ids))

        return [
            PriceRow(
                master_product_id=row[0],
                product_name=row[1],
                retailer_id=row[2],
                retailer_name=row[3],
                unit_price=Decimal(str(row[4])),
                seen_at=row[5],
            )
            for row in query.all()
        ]

    # Retailers and categories

    def get_or_create_retailer(self, name: str, slug: Optional[str] = None) -> Retailer:
        slug = slug or slugify(name)
        insert = self._dialect_insert()
        if insert is not None:
            stmt = insert(Retailer).values(slug=slug, name=name).on_conflict_do_nothing(index_elements=["slug"])
            self.db.execute(stmt)
        elif not self.db.query(Retailer).filter(Retailer.slug == slug).first():
            try:
                with self.db.begin_nested():
                    self.db.add(Retailer(slug=slug, name=name))
            except IntegrityError:
                logger.info(f"Retailer '{slug}' created concurrently, re-fetching")
        return self.db.query(Retailer).filter(Retailer.slug == slug).one()

    def get_category_by_slug(self, slug: str) -> Optional[Category]:
        return self.db.query(Category).filter(Category.slug == slug).first()

    def get_category_ids(self) -> dict[str, int]:
        return {c.slug: c.id for c in self.db.query(Category).all()}

    # Corrections

    def save_correction(
        self, user_id: str, product_name: str, product_name_normalized: str, category_slug: str
    ) -> CategorizationCorrection:
        correction = CategorizationCorrection(
            user_id=user_id,
            product_name=product_name,
            product_name_normalized=product_name_normalized,
            category_slug=category_slug,
            created_at=_utcnow(),
        )
        self.db.add(correction)
        self.db.flush()
        return correction

    def get_recent_corrections(self, user_id: str, limit: int = 20) -> list[CategorizationCorrection]:
        return self.db.query(CategorizationCorrection).filter(
            CategorizationCorrection.user_id == user_id
        ).order_by(
            CategorizationCorrection.created_at.desc(),
            CategorizationCorrection.id.desc(),
        ).limit(limit).all()

    # Purchase history

    def get_frequent_product_ids(self, user_id: str, min_purchases: int = 3, limit: int = 20) -> list[int]:
        """Master products the user bought at least min_purchases times, most frequent first."""
        purchases = func.count(ReceiptItem.id)
        rows = self.db.query(
            ReceiptItem.master_product_id, purchases
        ).join(Receipt, Receipt.id == ReceiptItem.receipt_id).filter(
            Receipt.user_id == user_id,
            ReceiptItem.master_product_id.isnot(None),
        ).group_by(ReceiptItem.master_product_id).having(
            purchases >= min_purchases
        ).order_by(purchases.desc(), ReceiptItem.master_product_id).limit(limit).all()
        return [row[0] for row in rows]
