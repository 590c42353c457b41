import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from prizma.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

SQLITE_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


def create_db_engine(url: str):
    """
    Engine for PostgreSQL or SQLite.

    SQLite connections are shared with the scheduler thread and wait up to
    30s for a write lock. An in-memory database lives on one connection, or
    each session would see its own empty database.
    """
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True, pool_size=10, max_overflow=20)

    options = {"connect_args": {"check_same_thread": False, "timeout": 30}}
    if url in SQLITE_MEMORY_URLS:
        options["poolclass"] = StaticPool
    return create_engine(url, **options)


engine = create_db_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dependency for getting database sessions."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def seed_reference_data(db):
    """Seed the fixed category set and the known retailers when empty."""
    from prizma.models import Category, Retailer
    from prizma.services.auto_categorizer import CATEGORY_NAMES, CATEGORY_ORDER
    from prizma.services.store_formats import STORE_FORMATS

    if db.query(Category).count() == 0:
        logger.info("Seeding categories...")
        for order, slug in enumerate(CATEGORY_ORDER, start=1):
            db.add(Category(slug=slug.value, name=CATEGORY_NAMES[slug], display_order=order))
        db.commit()
        logger.info(f"Seeded {len(CATEGORY_ORDER)} categories")

    if db.query(Retailer).count() == 0:
        logger.info("Seeding retailers...")
        for store_format in STORE_FORMATS.values():
            db.add(Retailer(slug=store_format.retailer_id.value, name=store_format.display_name))
        db.commit()
        logger.info(f"Seeded {len(STORE_FORMATS)} retailers")


def init_db():
    """Initialize database tables and seed default data."""
    import prizma.models  # noqa: F401  (registers tables on Base.metadata)

    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        seed_reference_data(db)
    finally:
        db.close()
