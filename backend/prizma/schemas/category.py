from pydantic import BaseModel, Field


class CategoryOut(BaseModel):
    id: int
    slug: str
    name: str
    display_order: int

    class Config:
        from_attributes = True


class CategorizationResult(BaseModel):
    category: str
    confidence: float = Field(ge=0, le=1)
    reasoning: str | None = None
    method: str = "rule"  # rule, ai, cache, default


class CorrectionExample(BaseModel):
    """A user-confirmed (product name, category) pair used as AI context."""
    product_name: str
    category_slug: str

    class Config:
        from_attributes = True


class CategorizeRequest(BaseModel):
    name: str
    user_id: str | None = None


class CategorizeBatchRequest(BaseModel):
    names: list[str]
    user_id: str | None = None


class CorrectionCreate(BaseModel):
    user_id: str
    product_name: str
    category: str


class CorrectionOut(CorrectionExample):
    id: int
    user_id: str
    product_name_normalized: str
