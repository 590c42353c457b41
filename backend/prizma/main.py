import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from prizma import __version__
from prizma.config import get_settings
from prizma.database import get_db, init_db
from prizma.models import Category
from prizma.routers.categorize import router as categorize_router
from prizma.routers.compare import router as compare_router
from prizma.routers.products import router as products_router
from prizma.routers.receipts import router as receipts_router
from prizma.schemas.category import CategoryOut
from prizma.services.ai_client import create_ai_client
from prizma.services.cache import cache
from prizma.tasks.scheduler import get_scheduler_status, start_scheduler, stop_scheduler

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Raises ConfigurationError when AI is enabled without a key
    app.state.ai_client = create_ai_client(settings)
    init_db()
    await cache.connect(settings.redis_url)
    start_scheduler()
    logger.info(f"PRIZMA {__version__} ready ({settings.environment}, AI {'on' if settings.ai_enabled else 'off'})")
    try:
        yield
    finally:
        stop_scheduler()
        await cache.disconnect()
        if app.state.ai_client is not None:
            await app.state.ai_client.aclose()
        logger.info("PRIZMA shut down")


app = FastAPI(
    title="PRIZMA Receipts API",
    description="Bulgarian receipt parsing, product normalization and price comparison",
    version=__version__,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for router in (receipts_router, products_router, categorize_router, compare_router):
    app.include_router(router, prefix=settings.api_prefix)


@app.get("/")
def root():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": "PRIZMA Receipts API",
        "version": __version__,
        "ai_enabled": settings.ai_enabled,
        "cache_connected": cache.is_connected,
    }


@app.get(f"{settings.api_prefix}/categories", response_model=list[CategoryOut])
def list_categories(db: Session = Depends(get_db)):
    """The fixed category set in rule priority order."""
    return db.query(Category).order_by(Category.display_order).all()


@app.get(f"{settings.api_prefix}/scheduler/status")
def scheduler_status():
    """Upload queue job state and the result of its last run."""
    return get_scheduler_status()
