import asyncio
from pathlib import Path

import httpx
import pytest

from app.adapters.pharmacy_catalog import PharmacyCatalogAdapter
from app.core.config import Settings
from app.domain.models import ResourceClass
from app.services.container import build_container, build_providers
from app.services.eviction_sweeper import EvictionSweeper


@pytest.mark.asyncio  # type: ignore[misc]
async def test_container_restores_index_across_restarts(
    tmp_path: Path, clock, provider_factory, result_factory
) -> None:
    settings = Settings(cache_dir=tmp_path)
    providers = {"clicks": provider_factory("clicks", results=[result_factory("Panado", "30")])}

    async with httpx.AsyncClient() as client:
        first = build_container(settings, client, providers=providers, clock=clock)
        await first.start()
        await first.products.query_products(search_term="panado")
        await first.stop()

        second = build_container(settings, client, providers=providers, clock=clock)
        await second.start()
        stats = second.stats()
        await second.stop()

    assert stats[ResourceClass.PRODUCTS].entry_count == 1
    assert stats[ResourceClass.IMAGES].entry_count == 0
    assert (tmp_path / "products" / "index.json").is_file()


@pytest.mark.asyncio  # type: ignore[misc]
async def test_container_start_sweeps_expired_entries(
    tmp_path: Path, clock, provider_factory, result_factory
) -> None:
    settings = Settings(cache_dir=tmp_path, product_ttl_seconds=60)
    providers = {"clicks": provider_factory("clicks", results=[result_factory("Panado", "30")])}

    async with httpx.AsyncClient() as client:
        first = build_container(settings, client, providers=providers, clock=clock)
        await first.start()
        await first.products.query_products(search_term="panado")
        await first.stop()

        clock.advance(120)
        second = build_container(settings, client, providers=providers, clock=clock)
        await second.start()
        stats = second.stats()
        await second.stop()

    assert stats[ResourceClass.PRODUCTS].entry_count == 0


@pytest.mark.asyncio  # type: ignore[misc]
async def test_container_periodic_sweep_tasks_are_cancelled_on_stop(tmp_path: Path) -> None:
    settings = Settings(cache_dir=tmp_path, pharmacy_partners=[])

    async with httpx.AsyncClient() as client:
        container = build_container(settings, client)
        await container.start(sweep_interval_seconds=3600)
        tasks = list(container._sweep_tasks)
        assert len(tasks) == 2

        await container.stop()

    assert all(task.done() for task in tasks)


@pytest.mark.asyncio  # type: ignore[misc]
async def test_run_periodically_keeps_sweeping(make_cache, clock) -> None:
    parts = make_cache()
    sweeper = EvictionSweeper(parts.coordinator, clock=clock)
    calls = 0
    original = sweeper.sweep

    async def counting_sweep():
        nonlocal calls
        calls += 1
        return await original()

    sweeper.sweep = counting_sweep  # type: ignore[method-assign]
    task = asyncio.create_task(sweeper.run_periodically(0.001))
    while calls < 3:
        await asyncio.sleep(0.001)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task


def test_build_providers_uses_configured_partners() -> None:
    settings = Settings()
    providers = build_providers(settings, httpx.AsyncClient())

    assert list(providers) == ["clicks", "dischem", "medirite", "mopani", "morningside"]
    assert all(isinstance(p, PharmacyCatalogAdapter) for p in providers.values())
