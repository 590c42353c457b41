from fastapi import APIRouter, Depends, HTTPException, Query

from prizma.config import Settings, get_settings
from prizma.dependencies import get_repository
from prizma.schemas.basket import BasketOptimization, BasketRequest, Deal
from prizma.services.price_aggregation import get_best_deals, optimize_basket, optimize_user_basket
from prizma.services.product_repository import SqlAlchemyProductRepository

router = APIRouter(prefix="/compare", tags=["compare"])


@router.post("/basket", response_model=BasketOptimization)
def compare_basket(
    request: BasketRequest,
    repository: SqlAlchemyProductRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
):
    """
    Cheapest way to buy a basket of master products.

    Returns the per-item ranking, the best single store and the multi-store
    total. total_savings is what splitting the basket across stores saves
    over the best single store; the cost of extra trips is not included.
    """
    if not request.product_ids:
        raise HTTPException(status_code=400, detail="Basket is empty")

    min_coverage = request.min_coverage if request.min_coverage is not None else settings.basket_min_coverage
    return optimize_basket(repository, request.product_ids, min_coverage=min_coverage)


@router.get("/users/{user_id}/basket", response_model=BasketOptimization)
def compare_user_basket(
    user_id: str,
    repository: SqlAlchemyProductRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
):
    """Basket comparison over the products this user buys most often."""
    return optimize_user_basket(
        repository,
        user_id,
        min_purchases=settings.frequent_min_purchases,
        limit=settings.frequent_products_limit,
        min_coverage=settings.basket_min_coverage,
    )


@router.get("/deals", response_model=list[Deal])
def best_deals(
    limit: int = Query(20, le=100),
    repository: SqlAlchemyProductRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
):
    """Current prices well under the product's average across retailers."""
    return get_best_deals(repository, limit=limit, min_savings_percent=settings.deal_min_savings_percent)
