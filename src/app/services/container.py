# src/app/services/container.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

import httpx

from app.adapters.pharmacy_catalog import PharmacyCatalogAdapter
from app.core.config import Settings
from app.domain.models import CacheStats, ResourceClass, SweepReport
from app.domain.ports import ProductProviderPort, StorageError
from app.repositories.index_store import IndexStore
from app.repositories.payload_store import PayloadStore
from app.services.eviction_sweeper import EvictionSweeper
from app.services.fallback_resolver import FallbackResolver
from app.services.fetch_pipeline import Clock, FetchPipeline, utc_now
from app.services.image_cache import ImageCacheService
from app.services.product_aggregator import ProductAggregator
from app.services.request_coordinator import RequestCoordinator

logger = logging.getLogger(__name__)


@dataclass
class CacheContainer:
    """
    Alle Cache-Services einer Prozess-Instanz.
    Wird einmal beim Start gebaut und per Referenz weitergereicht.
    """

    images: ImageCacheService
    products: ProductAggregator
    sweepers: dict[ResourceClass, EvictionSweeper]
    _sweep_tasks: list[asyncio.Task[None]] = field(default_factory=list)

    @property
    def coordinators(self) -> dict[ResourceClass, RequestCoordinator]:
        return {
            ResourceClass.IMAGES: self.images.coordinator,
            ResourceClass.PRODUCTS: self.products.coordinator,
        }

    async def start(self, sweep_interval_seconds: float | None = None) -> None:
        for resource_class, coordinator in self.coordinators.items():
            try:
                await coordinator.index.load()
            except StorageError:
                logger.warning(
                    "Starting %s cache with an empty index", resource_class, exc_info=True
                )
        await self.sweep_all()

        if sweep_interval_seconds is not None:
            self._sweep_tasks = [
                asyncio.create_task(sweeper.run_periodically(sweep_interval_seconds))
                for sweeper in self.sweepers.values()
            ]

    async def stop(self) -> None:
        for task in self._sweep_tasks:
            task.cancel()
        await asyncio.gather(*self._sweep_tasks, return_exceptions=True)
        self._sweep_tasks = []
        await self.images.aclose()

    async def sweep_all(self) -> list[SweepReport]:
        reports = []
        for resource_class, sweeper in self.sweepers.items():
            try:
                reports.append(await sweeper.sweep())
            except StorageError:
                logger.warning("Sweep of %s cache failed", resource_class, exc_info=True)
        return reports

    def stats(self) -> dict[ResourceClass, CacheStats]:
        return {
            resource_class: coordinator.index.stats()
            for resource_class, coordinator in self.coordinators.items()
        }


def build_providers(
    settings: Settings, http_client: httpx.AsyncClient
) -> dict[str, ProductProviderPort]:
    """Liefert die Registry aller konfigurierten Apotheken-Partner."""
    return {
        partner.id: PharmacyCatalogAdapter(http_client=http_client, partner=partner)
        for partner in settings.pharmacy_partners
    }


def _build_coordinator(
    settings: Settings,
    resource_class: ResourceClass,
    ttl_seconds: float,
    clock: Clock,
) -> RequestCoordinator:
    base_dir = settings.cache_dir / resource_class.value
    index = IndexStore(base_dir / "index.json", resource_class)
    payloads = PayloadStore(base_dir / "payloads")
    pipeline = FetchPipeline(
        index,
        payloads,
        ttl_seconds=ttl_seconds,
        timeout_seconds=settings.fetch_timeout_seconds,
        clock=clock,
    )
    return RequestCoordinator(index, payloads, pipeline, clock=clock)


def build_container(
    settings: Settings,
    http_client: httpx.AsyncClient,
    providers: dict[str, ProductProviderPort] | None = None,
    clock: Clock = utc_now,
) -> CacheContainer:
    image_coordinator = _build_coordinator(
        settings, ResourceClass.IMAGES, settings.image_ttl_seconds, clock
    )
    product_coordinator = _build_coordinator(
        settings, ResourceClass.PRODUCTS, settings.product_ttl_seconds, clock
    )

    fallback = FallbackResolver(
        image_coordinator.index,
        image_coordinator.payloads,
        placeholder=settings.placeholder_image,
        bundled_assets=settings.bundled_assets,
    )
    images = ImageCacheService(image_coordinator, fallback, http_client)
    products = ProductAggregator(
        providers if providers is not None else build_providers(settings, http_client),
        product_coordinator,
        page_size=settings.provider_page_size,
    )
    sweepers = {
        ResourceClass.IMAGES: EvictionSweeper(
            image_coordinator, settings.max_image_cache_bytes, clock=clock
        ),
        ResourceClass.PRODUCTS: EvictionSweeper(
            product_coordinator, settings.max_product_cache_bytes, clock=clock
        ),
    }
    return CacheContainer(images=images, products=products, sweepers=sweepers)
