from sqlalchemy import Column, Integer, String
from sqlalchemy.orm import relationship
from prizma.database import Base


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(50), unique=True, nullable=False)  # 'bakery', 'dairy-eggs'
    name = Column(String(100), nullable=False)  # 'Хляб и тестени'
    display_order = Column(Integer, default=0)  # Also the rule-matching priority

    # Relationships
    master_products = relationship("MasterProduct", back_populates="category")
