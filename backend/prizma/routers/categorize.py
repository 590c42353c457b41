from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from prizma.database import get_db
from prizma.dependencies import get_categorizer
from prizma.schemas.category import (
    CategorizationResult,
    CategorizeBatchRequest,
    CategorizeRequest,
    CorrectionCreate,
    CorrectionOut,
)
from prizma.services.auto_categorizer import Categorizer

router = APIRouter(prefix="/categorize", tags=["categorize"])

MAX_BATCH_SIZE = 200


@router.post("", response_model=CategorizationResult)
async def categorize(request: CategorizeRequest, categorizer: Categorizer = Depends(get_categorizer)):
    """
    Categorize one product name.

    Keyword rules first; the AI provider is asked only when no rule matched,
    with the user's recent corrections as context.
    """
    return await categorizer.categorize(request.name, user_id=request.user_id)


@router.post("/batch", response_model=list[CategorizationResult])
async def categorize_batch(request: CategorizeBatchRequest, categorizer: Categorizer = Depends(get_categorizer)):
    """Categorize many names; results are returned in request order."""
    if len(request.names) > MAX_BATCH_SIZE:
        raise HTTPException(status_code=400, detail=f"At most {MAX_BATCH_SIZE} names per batch")
    return await categorizer.categorize_batch(request.names, user_id=request.user_id)


@router.post("/correct", response_model=CorrectionOut, status_code=201)
def save_correction(
    request: CorrectionCreate,
    db: Session = Depends(get_db),
    categorizer: Categorizer = Depends(get_categorizer),
):
    """
    Record the category a user chose for a product.

    Used as context for future AI categorizations of this user; items
    already stored keep their category.
    """
    try:
        correction = categorizer.save_correction(request.user_id, request.product_name, request.category)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    db.commit()
    return correction
