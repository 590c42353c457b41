"""
Price Aggregator / Basket Optimizer

Works on the latest known price of each (master product, retailer) pair.

- Per product: retailers ranked by price, rank 0 the cheapest.
- Single store: for every retailer stocking enough of the basket, the sum
  of the items it stocks. Lowest total wins, ties go to the retailer name.
- Multi store: each item bought where it is cheapest.

Savings are the single-store total minus the multi-store total. The travel
cost of visiting several stores is not modelled; both options are reported
and the caller decides.
"""
import logging
from collections import defaultdict
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Sequence

from prizma.schemas.basket import BasketOptimization, Deal, PerItemComparison, RetailerPrice, StoreTotal
from prizma.services.product_repository import PriceRow
from prizma.services.store_formats import CENT

logger = logging.getLogger(__name__)

DEFAULT_MIN_COVERAGE = 0.5
DEFAULT_DEAL_SAVINGS_PERCENT = 10.0


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def rank_prices(rows: Iterable[PriceRow]) -> list[RetailerPrice]:
    """Sort one product's prices ascending; equal prices keep retailer name order."""
    ordered = sorted(rows, key=lambda r: (r.unit_price, r.retailer_name))
    if not ordered:
        return []
    cheapest = ordered[0].unit_price
    return [
        RetailerPrice(
            retailer_id=row.retailer_id,
            retailer_name=row.retailer_name,
            unit_price=_money(row.unit_price),
            rank=rank,
            savings_vs_cheapest=_money(row.unit_price - cheapest),
            seen_at=row.seen_at,
        )
        for rank, row in enumerate(ordered)
    ]


def _group_by_product(rows: Iterable[PriceRow]) -> dict[int, list[PriceRow]]:
    grouped = defaultdict(list)
    for row in rows:
        grouped[row.master_product_id].append(row)
    return grouped


def compare_product_prices(repository, product_id: int) -> Optional[PerItemComparison]:
    rows = repository.get_current_prices([product_id])
    if not rows:
        return None
    return PerItemComparison(
        master_product_id=product_id,
        product_name=rows[0].product_name,
        prices=rank_prices(rows),
    )


def _unique(ids: Sequence[int]) -> list[int]:
    seen = set()
    result = []
    for product_id in ids:
        if product_id not in seen:
            seen.add(product_id)
            result.append(product_id)
    return result


def optimize_basket(
    repository,
    product_ids: Sequence[int],
    min_coverage: float = DEFAULT_MIN_COVERAGE,
) -> BasketOptimization:
    """
    Compare single-store and multi-store costs for a basket.

    Coverage is measured against the whole basket, including products no
    retailer has a price for.

    Example:
        A: X 2.50, Y 3.00; B: X 1.00, Y 1.20
        -> multi-store 3.50, single-store X at 3.50, savings 0.00
    """
    basket = _unique(product_ids)
    if not basket:
        return BasketOptimization(per_item=[], multi_store_total=Decimal("0.00"))

    by_product = _group_by_product(repository.get_current_prices(basket))

    per_item: list[PerItemComparison] = []
    unpriced: list[int] = []
    for product_id in basket:
        rows = by_product.get(product_id)
        if not rows:
            unpriced.append(product_id)
            continue
        per_item.append(PerItemComparison(
            master_product_id=product_id,
            product_name=rows[0].product_name,
            prices=rank_prices(rows),
        ))

    # Multi-store: every item at its cheapest retailer
    multi_store_total = Decimal("0")
    products_by_retailer: dict[str, list[int]] = defaultdict(list)
    for comparison in per_item:
        cheapest = comparison.cheapest
        multi_store_total += cheapest.unit_price
        products_by_retailer[cheapest.retailer_name].append(comparison.master_product_id)

    # Single-store: totals per retailer over the items it stocks
    retailer_names: dict[int, str] = {}
    retailer_prices: dict[int, dict[int, Decimal]] = defaultdict(dict)
    for comparison in per_item:
        for price in comparison.prices:
            retailer_names[price.retailer_id] = price.retailer_name
            retailer_prices[price.retailer_id][comparison.master_product_id] = price.unit_price

    store_totals: list[StoreTotal] = []
    for retailer_id, prices in retailer_prices.items():
        coverage = len(prices) / len(basket)
        if coverage < min_coverage:
            continue
        store_totals.append(StoreTotal(
            retailer_id=retailer_id,
            retailer_name=retailer_names[retailer_id],
            total=_money(sum(prices.values(), Decimal("0"))),
            items_found=len(prices),
            items_missing=[pid for pid in basket if pid not in prices],
            coverage=round(coverage, 4),
            incomplete=len(prices) < len(basket),
        ))
    store_totals.sort(key=lambda s: (s.total, s.retailer_name))

    recommendation = store_totals[0] if store_totals else None
    multi_store_total = _money(multi_store_total)
    total_savings = _money(recommendation.total - multi_store_total) if recommendation else None

    logger.info(
        f"Basket of {len(basket)}: multi-store {multi_store_total}, "
        f"single-store {recommendation.retailer_name + ' ' + str(recommendation.total) if recommendation else 'none'}"
    )

    return BasketOptimization(
        per_item=per_item,
        single_store_recommendation=recommendation,
        store_totals=store_totals,
        multi_store_total=multi_store_total,
        total_savings=total_savings,
        products_by_retailer=dict(products_by_retailer),
        unpriced_product_ids=unpriced,
    )


def optimize_user_basket(
    repository,
    user_id: str,
    min_purchases: int = 3,
    limit: int = 20,
    min_coverage: float = DEFAULT_MIN_COVERAGE,
) -> BasketOptimization:
    """Optimize the basket of products the user buys most often."""
    product_ids = repository.get_frequent_product_ids(user_id, min_purchases=min_purchases, limit=limit)
    return optimize_basket(repository, product_ids, min_coverage=min_coverage)


def get_best_deals(
    repository,
    limit: int = 20,
    min_savings_percent: float = DEFAULT_DEAL_SAVINGS_PERCENT,
) -> list[Deal]:
    """
    Current prices well under the product's average across retailers.

    Products sold by a single retailer have nothing to compare with and are
    skipped.
    """
    deals = []
    for product_id, rows in _group_by_product(repository.get_current_prices()).items():
        if len(rows) < 2:
            continue
        average = sum((r.unit_price for r in rows), Decimal("0")) / len(rows)
        if average <= 0:
            continue
        for row in rows:
            savings_percent = float((average - row.unit_price) / average * 100)
            if savings_percent >= min_savings_percent:
                deals.append(Deal(
                    master_product_id=product_id,
                    product_name=row.product_name,
                    retailer_id=row.retailer_id,
                    retailer_name=row.retailer_name,
                    unit_price=_money(row.unit_price),
                    average_price=_money(average),
                    savings_percent=round(savings_percent, 1),
                ))

    deals.sort(key=lambda d: (-d.savings_percent, d.product_name, d.retailer_name))
    return deals[:limit]
