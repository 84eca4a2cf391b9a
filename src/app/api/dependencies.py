# src/app/api/dependencies.py
from typing import Annotated

import httpx
from fastapi import Depends, Request

from app.core.config import Settings
from app.services.container import CacheContainer
from app.services.image_cache import ImageCacheService
from app.services.product_aggregator import ProductAggregator


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    # Shared HTTP Client (Connection Pooling); Timeout zusätzlich pro Fetch
    return httpx.AsyncClient(
        headers={"User-Agent": settings.user_agent},
        follow_redirects=True,
        timeout=settings.fetch_timeout_seconds,
    )


def get_cache_container(request: Request) -> CacheContainer:
    """Container wird im Lifespan gebaut und auf app.state abgelegt."""
    container: CacheContainer = request.app.state.cache
    return container


def get_image_cache(
    container: CacheContainer = Depends(get_cache_container),
) -> ImageCacheService:
    return container.images


def get_product_aggregator(
    container: CacheContainer = Depends(get_cache_container),
) -> ProductAggregator:
    return container.products


CacheContainerDep = Annotated[CacheContainer, Depends(get_cache_container)]
ImageCacheDep = Annotated[ImageCacheService, Depends(get_image_cache)]
ProductAggregatorDep = Annotated[ProductAggregator, Depends(get_product_aggregator)]
