from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from prizma.database import get_db
from prizma.dependencies import get_repository
from prizma.schemas.basket import PerItemComparison
from prizma.schemas.product import MasterProductOut, NormalizationResult, NormalizeRequest, ProductSearchResult
from prizma.services.price_aggregation import compare_product_prices
from prizma.services.product_normalizer import normalize_name, normalize_product, similarity
from prizma.services.product_repository import SqlAlchemyProductRepository

router = APIRouter(prefix="/products", tags=["products"])


@router.post("/normalize", response_model=NormalizationResult)
def normalize(
    request: NormalizeRequest,
    db: Session = Depends(get_db),
    repository: SqlAlchemyProductRepository = Depends(get_repository),
):
    """Canonicalize a product name; with persist=true also lookup-or-create its master product."""
    if not request.persist:
        return normalize_name(request.raw_name)

    result = normalize_product(request.raw_name, repository)
    db.commit()
    return result


@router.get("/search", response_model=list[ProductSearchResult])
def search_products(
    q: str = Query(..., min_length=2),
    limit: int = Query(20, le=100),
    repository: SqlAlchemyProductRepository = Depends(get_repository),
):
    """Search master products by name, best keyword overlap first."""
    query = normalize_name(q).normalized_name
    candidates = repository.search_products(query, limit=limit)

    results = [
        ProductSearchResult(
            **MasterProductOut.model_validate(product).model_dump(),
            similarity=round(similarity(q, product.normalized_name), 3),
        )
        for product in candidates
    ]
    results.sort(key=lambda r: (-r.similarity, r.display_name))
    return results[:limit]


@router.get("/{product_id}/prices", response_model=PerItemComparison)
def get_product_prices(
    product_id: int,
    repository: SqlAlchemyProductRepository = Depends(get_repository),
):
    """Current prices of one product across retailers, cheapest first."""
    comparison = compare_product_prices(repository, product_id)
    if comparison is None:
        raise HTTPException(status_code=404, detail="No prices for this product")
    return comparison
