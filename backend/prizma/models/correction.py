from sqlalchemy import Column, Integer, String, DateTime, Index
from sqlalchemy.sql import func
from prizma.database import Base


class CategorizationCorrection(Base):
    """
    A user-confirmed category for a product name.

    Append-only. Recent corrections are sent to the AI tier as context;
    they never rewrite items that were already categorized.
    """
    __tablename__ = "categorization_corrections"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False)
    product_name = Column(String(255), nullable=False)
    product_name_normalized = Column(String(255), nullable=False, index=True)
    category_slug = Column(String(50), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index('ix_categorization_corrections_user_created', 'user_id', 'created_at'),
    )
