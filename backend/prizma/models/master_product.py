"""
Master Product model - canonical, deduplicated product catalog.

Every receipt line is normalized to a MasterProduct shared across retailers.
Rows are created lazily on the first observation of a normalized name and
never deleted. CurrentPrice keeps only the latest known price per retailer.
"""
from sqlalchemy import Column, Integer, String, DateTime, Numeric, JSON, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from prizma.database import Base


class MasterProduct(Base):
    """
    Canonical product entry.

    Identified by normalized_name, e.g. "мляко верея 1л 3.6%".
    Receipts from any retailer that normalize to the same key share the row.
    """
    __tablename__ = "master_products"

    id = Column(Integer, primary_key=True, index=True)

    # Canonical key produced by the product normalizer
    normalized_name = Column(String(255), nullable=False)
    display_name = Column(String(255), nullable=False)

    # Extracted components
    brand = Column(String(100), index=True)
    size = Column(Numeric(10, 3))
    unit = Column(String(10))  # л, мл, кг, г, бр
    fat_content = Column(Numeric(5, 2))
    keywords = Column(JSON, default=list)  # search tokens (base name + brand)

    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    category = relationship("Category", back_populates="master_products")
    prices = relationship("CurrentPrice", back_populates="product", cascade="all, delete-orphan")

    # At most one row per canonical key
    __table_args__ = (
        UniqueConstraint('normalized_name', name='uq_master_products_normalized_name'),
        Index('ix_master_products_category', 'category_id'),
    )


class CurrentPrice(Base):
    """
    Latest known price of a product at a retailer.

    Upsert-only: a newer observation overwrites the previous one.
    This is not a price history.
    """
    __tablename__ = "current_prices"

    id = Column(Integer, primary_key=True, index=True)
    master_product_id = Column(Integer, ForeignKey("master_products.id", ondelete="CASCADE"), nullable=False)
    retailer_id = Column(Integer, ForeignKey("retailers.id"), nullable=False)

    unit_price = Column(Numeric(10, 2), nullable=False)
    seen_at = Column(DateTime(timezone=True), nullable=False)

    # Relationships
    product = relationship("MasterProduct", back_populates="prices")
    retailer = relationship("Retailer", back_populates="prices")

    # Exactly one row per (product, retailer)
    __table_args__ = (
        UniqueConstraint('master_product_id', 'retailer_id', name='uq_current_prices_product_retailer'),
        Index('ix_current_prices_retailer', 'retailer_id'),
    )
