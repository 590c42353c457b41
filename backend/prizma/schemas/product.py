from pydantic import BaseModel
from decimal import Decimal


class NormalizationResult(BaseModel):
    normalized_name: str
    display_name: str
    brand: str | None = None
    size: Decimal | None = None
    unit: str | None = None
    fat_content: Decimal | None = None
    keywords: list[str] = []
    is_miscellaneous: bool = False
    master_product_id: int | None = None


class NormalizeRequest(BaseModel):
    raw_name: str
    persist: bool = False


class MasterProductOut(BaseModel):
    id: int
    normalized_name: str
    display_name: str
    brand: str | None = None
    size: Decimal | None = None
    unit: str | None = None
    fat_content: Decimal | None = None
    keywords: list[str] = []
    category_id: int | None = None

    class Config:
        from_attributes = True


class ProductSearchResult(MasterProductOut):
    similarity: float
