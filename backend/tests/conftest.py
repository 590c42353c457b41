"""Shared fixtures: an in-memory SQLite database seeded with categories and retailers."""
import os

# Must be set before prizma.config / prizma.database are imported
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("AI_ENABLED", "false")

import pytest
from sqlalchemy.orm import sessionmaker

import prizma.models  # noqa: F401  (registers tables on Base.metadata)
from prizma.database import Base, create_db_engine, seed_reference_data
from prizma.services.product_repository import SqlAlchemyProductRepository


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    seed_reference_data(session)
    yield session
    session.close()


@pytest.fixture
def repository(db):
    return SqlAlchemyProductRepository(db)
