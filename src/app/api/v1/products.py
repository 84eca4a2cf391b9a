# src/app/api/v1/products.py
from fastapi import APIRouter, HTTPException, Query, status

from app.api.dependencies import ProductAggregatorDep
from app.domain.models import AggregateResult, ProviderResult
from app.domain.ports import ProviderError

router = APIRouter(prefix="/products", tags=["Products"])


@router.get("/search", response_model=AggregateResult)
async def search_products(
    aggregator: ProductAggregatorDep,
    providers: list[str] | None = Query(None, description="Provider-IDs; leer = alle"),
    category: str | None = None,
    q: str | None = None,
    limit: int = Query(20, ge=1, le=100),
) -> AggregateResult:
    """
    Sucht parallel bei allen angefragten Partnern.
    Ausgefallene Partner landen in `errors`, die Abfrage selbst schlägt nie fehl.
    """
    return await aggregator.query_products(
        providers, category=category, search_term=q, limit=limit
    )


@router.get("/providers", response_model=list[dict[str, str]])
async def list_providers(aggregator: ProductAggregatorDep) -> list[dict[str, str]]:
    return [{"id": p.provider_id, "name": p.name} for p in aggregator.providers()]


@router.get("/providers/{provider_id}", response_model=list[ProviderResult])
async def search_provider(
    aggregator: ProductAggregatorDep,
    provider_id: str,
    category: str | None = None,
    q: str | None = None,
    limit: int = Query(20, ge=1, le=100),
) -> list[ProviderResult]:
    """
    Sucht bei genau einem Partner.
    """
    if not aggregator.has_provider(provider_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown provider '{provider_id}'.",
        )
    try:
        return await aggregator.query_provider(
            provider_id, category=category, search_term=q, limit=limit
        )
    except ProviderError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
