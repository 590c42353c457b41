"""
Re-normalize Products Script

Re-runs the product normalizer over every stored receipt item and relinks
the item to the master product of its current normalized name. Useful after
brand, unit or synonym tables change. Old master products stay in place;
rows are never deleted.

Run with: python -m scripts.renormalize_products
"""
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy.orm import sessionmaker
from prizma.database import engine
from prizma.models import ReceiptItem
from prizma.services.product_normalizer import normalize_name
from prizma.services.product_repository import SqlAlchemyProductRepository


def renormalize_products():
    """Relink receipt items to the master products of their current normalized names."""
    print("Re-normalizing receipt items...")
    print("=" * 60)

    Session = sessionmaker(bind=engine)
    db = Session()

    try:
        repository = SqlAlchemyProductRepository(db)
        items = db.query(ReceiptItem).order_by(ReceiptItem.id).all()
        total = len(items)
        print(f"Found {total} items to process")

        relinked = 0
        created_keys = set()
        for i, item in enumerate(items, start=1):
            result = normalize_name(item.raw_name)
            existing = repository.get_master_product_by_name(result.normalized_name)
            product = existing or repository.get_or_create_master_product(result, category_id=item.category_id)
            if existing is None:
                created_keys.add(result.normalized_name)

            if item.master_product_id != product.id:
                item.master_product_id = product.id
                relinked += 1

            if i % 100 == 0:
                print(f"  Processed {i}/{total}...")
                db.commit()

        db.commit()

        print(f"\nResults:")
        print(f"  Items relinked: {relinked}")
        print(f"  New master products: {len(created_keys)}")

    except Exception as e:
        print(f"Error: {e}")
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    renormalize_products()
