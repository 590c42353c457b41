from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from prizma.database import Base


class Retailer(Base):
    __tablename__ = "retailers"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(100), unique=True, nullable=False)  # 'kaufland', 'billa', 'lidl'
    name = Column(String(100), nullable=False)  # 'Kaufland', 'Billa', 'Т Маркет'
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    prices = relationship("CurrentPrice", back_populates="retailer")
    receipts = relationship("Receipt", back_populates="retailer")
