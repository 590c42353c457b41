"""
Categorize Existing Receipt Items Script

Backfills category_id for receipt items stored without one, in bounded
concurrent groups so the AI provider's rate limits are respected. Master
products that have no category yet get the same one.

Run with: python -m scripts.categorize_existing
"""
import asyncio
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy.orm import sessionmaker
from prizma.config import get_settings
from prizma.database import engine
from prizma.models import ReceiptItem
from prizma.services.ai_client import create_ai_client
from prizma.services.auto_categorizer import Categorizer
from prizma.services.product_repository import SqlAlchemyProductRepository


async def categorize_existing():
    """Categorize receipt items that have no category yet."""
    print("Categorizing existing receipt items...")

    settings = get_settings()
    Session = sessionmaker(bind=engine)
    db = Session()
    ai_client = create_ai_client(settings)

    try:
        repository = SqlAlchemyProductRepository(db)
        category_map = repository.get_category_ids()
        print(f"Loaded {len(category_map)} categories")

        items = db.query(ReceiptItem).filter(
            ReceiptItem.category_id.is_(None)
        ).order_by(ReceiptItem.id).all()

        print(f"Found {len(items)} items to categorize")

        if not items:
            print("All items already have categories!")
            return

        categorizer = Categorizer(
            repository=repository,
            ai_client=ai_client,
            correction_limit=settings.correction_context_limit,
            batch_size=settings.categorization_batch_size,
            ai_min_confidence=settings.ai_min_confidence,
        )

        by_category = {}
        step = settings.categorization_batch_size * 10
        for start in range(0, len(items), step):
            chunk = items[start:start + step]
            results = await categorizer.categorize_batch([item.raw_name for item in chunk], prior_corrections=[])

            for item, result in zip(chunk, results):
                category_id = category_map.get(result.category)
                item.category_id = category_id
                item.category_confidence = result.confidence
                item.category_method = result.method
                if item.master_product is not None:
                    repository.set_product_category(item.master_product, category_id)
                by_category[result.category] = by_category.get(result.category, 0) + 1

            db.commit()
            print(f"  Processed {min(start + step, len(items))}/{len(items)}...")

        # Print summary
        print(f"\nBy category:")
        for slug, count in sorted(by_category.items(), key=lambda x: -x[1]):
            print(f"  {slug}: {count}")

    except Exception as e:
        print(f"Error: {e}")
        db.rollback()
        raise
    finally:
        db.close()
        if ai_client is not None:
            await ai_client.aclose()


if __name__ == "__main__":
    asyncio.run(categorize_existing())
