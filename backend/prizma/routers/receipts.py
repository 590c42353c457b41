from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from prizma.config import Settings, get_settings
from prizma.database import get_db
from prizma.dependencies import get_ai_client, get_categorizer, get_upload_queue
from prizma.schemas.receipt import (
    EnhancementResult,
    ProcessedReceipt,
    QueuedUploadOut,
    ReceiptParseRequest,
    ReceiptParseResult,
    ReceiptProcessRequest,
)
from prizma.services.auto_categorizer import Categorizer
from prizma.services.receipt_enhancer import enhance_receipt
from prizma.services.receipt_parser import parse_receipt
from prizma.services.receipt_processor import ReceiptProcessor
from prizma.services.upload_queue import UploadQueue

router = APIRouter(prefix="/receipts", tags=["receipts"])


@router.post("/parse", response_model=ReceiptParseResult)
def parse(request: ReceiptParseRequest, settings: Settings = Depends(get_settings)):
    """
    Parse OCR text without storing anything.

    Always answers with a best-effort result; uncertainty is reported through
    confidence, quality flags and suggestions.
    """
    return parse_receipt(
        request.raw_text,
        store_hint=request.store_hint,
        ocr_guess=request.ocr_guess,
        tolerance_percent=settings.total_tolerance_percent,
    )


@router.post("/process", response_model=ProcessedReceipt)
async def process(
    request: ReceiptProcessRequest,
    db: Session = Depends(get_db),
    categorizer: Categorizer = Depends(get_categorizer),
    settings: Settings = Depends(get_settings),
):
    """Parse, normalize, categorize and store a receipt, updating current prices."""
    processor = ReceiptProcessor(db, categorizer, tolerance_percent=settings.total_tolerance_percent)
    return await processor.process(request)


@router.post("/enhance", response_model=EnhancementResult)
async def enhance(
    request: ReceiptParseRequest,
    ai_client=Depends(get_ai_client),
    settings: Settings = Depends(get_settings),
):
    """Parse, then ask the AI provider for items the parser missed."""
    result = parse_receipt(
        request.raw_text,
        store_hint=request.store_hint,
        ocr_guess=request.ocr_guess,
        tolerance_percent=settings.total_tolerance_percent,
    )
    return await enhance_receipt(result, request.raw_text, ai_client)


@router.post("/queue", response_model=QueuedUploadOut, status_code=202)
def queue_receipt(request: ReceiptProcessRequest, queue: UploadQueue = Depends(get_upload_queue)):
    """Store a receipt for background processing by the upload queue job."""
    return queue.enqueue(request.model_dump(mode="json"))


@router.get("/queue", response_model=list[QueuedUploadOut])
def list_queue(
    status: list[str] | None = Query(None, description="pending, in_flight, failed, error"),
    queue: UploadQueue = Depends(get_upload_queue),
):
    """Queued uploads in FIFO order; errored entries stay visible until retried."""
    return queue.list_entries(status)


@router.post("/queue/{entry_id}/retry", response_model=QueuedUploadOut)
def retry_queued(entry_id: int, queue: UploadQueue = Depends(get_upload_queue)):
    entry = queue.retry(entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Queued upload not found")
    return entry
