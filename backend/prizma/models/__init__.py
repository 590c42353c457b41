from prizma.models.retailer import Retailer
from prizma.models.category import Category
from prizma.models.master_product import MasterProduct, CurrentPrice
from prizma.models.receipt import Receipt, ReceiptItem
from prizma.models.correction import CategorizationCorrection
from prizma.models.upload import QueuedUpload

__all__ = [
    "Retailer",
    "Category",
    "MasterProduct",
    "CurrentPrice",
    "Receipt",
    "ReceiptItem",
    "CategorizationCorrection",
    "QueuedUpload",
]
