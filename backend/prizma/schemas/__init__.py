from prizma.schemas.receipt import (
    QualityFlag, ParsedItem, TotalValidation, OcrGuess, OcrGuessItem, ReceiptParseResult,
    ProcessedItem, ProcessedReceipt, EnhancementResult, QueuedUploadOut,
)
from prizma.schemas.product import NormalizationResult, MasterProductOut, ProductSearchResult
from prizma.schemas.category import CategoryOut, CategorizationResult, CorrectionExample, CorrectionCreate
from prizma.schemas.basket import RetailerPrice, PerItemComparison, StoreTotal, BasketOptimization, Deal
from prizma.schemas.ai import CategoryPayload, ItemPayload, ItemsPayload, AIParseError, AIResponse

__all__ = [
    "QualityFlag", "ParsedItem", "TotalValidation", "OcrGuess", "OcrGuessItem", "ReceiptParseResult",
    "ProcessedItem", "ProcessedReceipt", "EnhancementResult", "QueuedUploadOut",
    "NormalizationResult", "MasterProductOut", "ProductSearchResult",
    "CategoryOut", "CategorizationResult", "CorrectionExample", "CorrectionCreate",
    "RetailerPrice", "PerItemComparison", "StoreTotal", "BasketOptimization", "Deal",
    "CategoryPayload", "ItemPayload", "ItemsPayload", "AIParseError", "AIResponse",
]
