from pydantic import BaseModel, ConfigDict, Field, model_validator
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum

UNIT_PRICE_PLACES = Decimal("0.0001")


class QualityFlag(str, Enum):
    OCR_UNCERTAIN = "ocr_uncertain"
    FUZZY_PRICE_MATCH = "fuzzy_price_match"
    MERGED_LINES = "merged_lines"
    NAME_INCOMPLETE = "name_incomplete"
    PRICE_SUSPICIOUS = "price_suspicious"
    DISCOUNT_APPLIED = "discount_applied"
    FROM_OCR_GUESS = "from_ocr_guess"
    AI_ENHANCED = "ai_enhanced"


class ParsedItem(BaseModel):
    """One purchased line. `price` is the line total; `unit_price` is per unit."""
    model_config = ConfigDict(frozen=True)

    name: str
    normalized_name: str = ""
    price: Decimal = Field(ge=0)
    quantity: Decimal = Field(default=Decimal("1"), gt=0)
    unit_price: Decimal | None = None
    confidence: float = Field(ge=0, le=1)
    quality_flags: tuple[QualityFlag, ...] = ()
    line_number: int

    @model_validator(mode="after")
    def _fill_unit_price(self):
        if self.unit_price is None:
            unit = (self.price / self.quantity).quantize(UNIT_PRICE_PLACES, rounding=ROUND_HALF_UP)
            object.__setattr__(self, "unit_price", unit)
        return self


class TotalValidation(BaseModel):
    calculated_total: Decimal
    declared_total: Decimal | None = None
    difference: Decimal | None = None
    percentage_diff: float | None = None
    threshold_percent: float
    valid: bool


class OcrGuessItem(BaseModel):
    name: str
    price: Decimal = Field(ge=0)
    quantity: Decimal = Field(default=Decimal("1"), gt=0)


class OcrGuess(BaseModel):
    """Structured best guess some OCR engines return next to the raw text."""
    store: str | None = None
    total: Decimal | None = None
    items: list[OcrGuessItem] = []
    confidence: float | None = Field(default=None, ge=0, le=1)


class ReceiptParseResult(BaseModel):
    retailer: str
    retailer_id: str
    declared_total: Decimal | None = None
    items: list[ParsedItem]
    overall_confidence: float
    total_validation: TotalValidation
    requires_review: bool
    suggestions: list[str] = []
    used_ocr_guess: bool = False


class ReceiptParseRequest(BaseModel):
    raw_text: str
    store_hint: str | None = None
    ocr_guess: OcrGuess | None = None


class ReceiptProcessRequest(ReceiptParseRequest):
    user_id: str


class ProcessedItem(BaseModel):
    line_number: int
    name: str
    normalized_name: str
    display_name: str
    master_product_id: int
    category: str
    category_confidence: float
    category_method: str
    quantity: Decimal
    unit_price: Decimal
    price: Decimal
    confidence: float
    quality_flags: list[QualityFlag] = []


class ProcessedReceipt(BaseModel):
    receipt_id: int
    retailer: str
    retailer_db_id: int | None = None
    parse_result: ReceiptParseResult
    items: list[ProcessedItem]


class EnhancementResult(BaseModel):
    result: ReceiptParseResult
    added_items: int = 0
    error: str | None = None
    raw_response: str | None = None


class QueuedUploadOut(BaseModel):
    id: int
    kind: str
    status: str
    attempts: int
    last_error: str | None = None
    next_attempt_at: datetime | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True
