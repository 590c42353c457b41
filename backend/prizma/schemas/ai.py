"""
Shapes returned by the AI provider.

The provider is asked for strict JSON: either one category object or an
array of receipt items. Which one arrived is decided by schema validation;
anything else becomes an AIParseError carrying the raw payload.
"""
from typing import Annotated, Literal, Union

from pydantic import AliasChoices, BaseModel, Field, field_validator
from decimal import Decimal


class CategoryPayload(BaseModel):
    kind: Literal["category"] = "category"
    category: str = Field(validation_alias=AliasChoices("category", "category_id"))
    confidence: float = 0.5
    reasoning: str | None = None

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, value: float) -> float:
        return min(max(value, 0.0), 1.0)


class ItemPayload(BaseModel):
    name: str = Field(min_length=1)
    price: Decimal = Field(ge=0)
    quantity: Decimal = Field(default=Decimal("1"), gt=0)
    confidence: float = 0.5

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, value: float) -> float:
        return min(max(value, 0.0), 1.0)


class ItemsPayload(BaseModel):
    kind: Literal["items"] = "items"
    items: list[ItemPayload]


class AIParseError(BaseModel):
    kind: Literal["error"] = "error"
    raw: str
    error: str


AIResponse = Annotated[Union[CategoryPayload, ItemsPayload, AIParseError], Field(discriminator="kind")]
