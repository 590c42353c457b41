from sqlalchemy import Column, Integer, String, DateTime, Text, Numeric, Float, Boolean, JSON, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from prizma.database import Base


class Receipt(Base):
    __tablename__ = "receipts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)  # opaque id from the auth layer
    retailer_id = Column(Integer, ForeignKey("retailers.id"), nullable=True)

    declared_total = Column(Numeric(10, 2))
    calculated_total = Column(Numeric(10, 2), nullable=False)
    total_valid = Column(Boolean, default=False)
    confidence = Column(Float, nullable=False)
    requires_review = Column(Boolean, default=True)

    raw_text = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    retailer = relationship("Retailer", back_populates="receipts")
    items = relationship(
        "ReceiptItem",
        back_populates="receipt",
        cascade="all, delete-orphan",
        order_by="ReceiptItem.line_number",
    )


class ReceiptItem(Base):
    __tablename__ = "receipt_items"

    id = Column(Integer, primary_key=True, index=True)
    receipt_id = Column(Integer, ForeignKey("receipts.id", ondelete="CASCADE"), nullable=False)
    line_number = Column(Integer, nullable=False)

    raw_name = Column(String(255), nullable=False)
    master_product_id = Column(Integer, ForeignKey("master_products.id"), nullable=True, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True)
    category_confidence = Column(Float)
    category_method = Column(String(20))  # rule, ai, cache, default

    quantity = Column(Numeric(10, 3), nullable=False, default=1)
    unit_price = Column(Numeric(10, 4), nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)

    confidence = Column(Float, nullable=False)
    quality_flags = Column(JSON, default=list)

    # Relationships
    receipt = relationship("Receipt", back_populates="items")
    master_product = relationship("MasterProduct")
    category = relationship("Category")
