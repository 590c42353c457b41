"""FastAPI dependencies wiring services to the request's database session."""
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from prizma.config import Settings, get_settings
from prizma.database import SessionLocal, get_db
from prizma.services.auto_categorizer import Categorizer
from prizma.services.cache import cache
from prizma.services.product_repository import SqlAlchemyProductRepository
from prizma.services.upload_queue import UploadQueue


def get_repository(db: Session = Depends(get_db)) -> SqlAlchemyProductRepository:
    return SqlAlchemyProductRepository(db)


def get_ai_client(request: Request):
    """AI client created at startup; None when AI is disabled."""
    return getattr(request.app.state, "ai_client", None)


def get_categorizer(
    repository: SqlAlchemyProductRepository = Depends(get_repository),
    ai_client=Depends(get_ai_client),
    settings: Settings = Depends(get_settings),
) -> Categorizer:
    return Categorizer(
        repository=repository,
        ai_client=ai_client,
        cache=cache if cache.is_connected else None,
        correction_limit=settings.correction_context_limit,
        batch_size=settings.categorization_batch_size,
        ai_min_confidence=settings.ai_min_confidence,
    )


def get_upload_queue(settings: Settings = Depends(get_settings)) -> UploadQueue:
    return UploadQueue(
        SessionLocal,
        max_retries=settings.upload_max_retries,
        backoff_seconds=settings.upload_backoff_seconds,
        backoff_max_seconds=settings.upload_backoff_max_seconds,
    )
