from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal


class RetailerPrice(BaseModel):
    retailer_id: int
    retailer_name: str
    unit_price: Decimal
    rank: int  # 0 = cheapest
    savings_vs_cheapest: Decimal
    seen_at: datetime | None = None


class PerItemComparison(BaseModel):
    master_product_id: int
    product_name: str
    prices: list[RetailerPrice]

    @property
    def cheapest(self) -> RetailerPrice | None:
        return self.prices[0] if self.prices else None


class StoreTotal(BaseModel):
    retailer_id: int
    retailer_name: str
    total: Decimal
    items_found: int
    items_missing: list[int] = []
    coverage: float
    incomplete: bool


class BasketOptimization(BaseModel):
    per_item: list[PerItemComparison]
    single_store_recommendation: StoreTotal | None = None
    store_totals: list[StoreTotal] = []
    multi_store_total: Decimal
    total_savings: Decimal | None = None
    products_by_retailer: dict[str, list[int]] = {}
    unpriced_product_ids: list[int] = []


class BasketRequest(BaseModel):
    product_ids: list[int]
    min_coverage: float | None = Field(default=None, ge=0, le=1)


class Deal(BaseModel):
    master_product_id: int
    product_name: str
    retailer_id: int
    retailer_name: str
    unit_price: Decimal
    average_price: Decimal
    savings_percent: float
