"""Tests for the maintenance scripts against the in-memory database."""
from decimal import Decimal

import pytest

from prizma.models import Category, MasterProduct, Receipt, ReceiptItem
from scripts import categorize_existing as categorize_script
from scripts import renormalize_products as renormalize_script


def store_items(db, *names):
    receipt = Receipt(user_id="user-1", calculated_total=Decimal("0"), confidence=0.9)
    for line_number, name in enumerate(names, start=1):
        receipt.items.append(
            ReceiptItem(
                line_number=line_number,
                raw_name=name,
                unit_price=Decimal("1.00"),
                total_price=Decimal("1.00"),
                confidence=0.9,
            )
        )
    db.add(receipt)
    db.commit()
    return receipt


@pytest.fixture(autouse=True)
def script_engine(engine, monkeypatch):
    monkeypatch.setattr(categorize_script, "engine", engine)
    monkeypatch.setattr(renormalize_script, "engine", engine)


class TestCategorizeExisting:
    async def test_backfills_missing_categories(self, db, capsys):
        store_items(db, "Хляб Добруджа", "Зубрик")

        await categorize_script.categorize_existing()

        db.expire_all()
        slugs = {
            item.raw_name: db.get(Category, item.category_id).slug
            for item in db.query(ReceiptItem).all()
        }
        assert slugs == {"Хляб Добруджа": "bakery", "Зубрик": "other"}
        assert "Found 2 items to categorize" in capsys.readouterr().out

    async def test_nothing_to_do(self, db, capsys):
        await categorize_script.categorize_existing()
        assert "All items already have categories!" in capsys.readouterr().out


class TestRenormalizeProducts:
    def test_links_items_to_one_master_product(self, db, capsys):
        store_items(db, "Мляко Верея 3.6% 1л", "мляко верея 1л 3.6%")

        renormalize_script.renormalize_products()

        db.expire_all()
        items = db.query(ReceiptItem).all()
        assert db.query(MasterProduct).count() == 1
        assert {item.master_product_id for item in items} == {db.query(MasterProduct).one().id}
        out = capsys.readouterr().out
        assert "Items relinked: 2" in out
        assert "New master products: 1" in out

    def test_second_run_changes_nothing(self, db, capsys):
        store_items(db, "Хляб Добруджа")
        renormalize_script.renormalize_products()
        capsys.readouterr()

        renormalize_script.renormalize_products()

        assert "Items relinked: 0" in capsys.readouterr().out
