# src/app/api/v1/cache.py
from fastapi import APIRouter

from app.api.dependencies import CacheContainerDep
from app.domain.models import CacheStats, SweepReport

router = APIRouter(prefix="/cache", tags=["Cache"])


@router.get("/stats", response_model=dict[str, CacheStats])
async def get_cache_stats(container: CacheContainerDep) -> dict[str, CacheStats]:
    return {resource_class.value: stats for resource_class, stats in container.stats().items()}


@router.post("/sweep", response_model=list[SweepReport])
async def sweep_cache(container: CacheContainerDep) -> list[SweepReport]:
    """Stößt einen Sweep außerhalb des Zeitplans an."""
    return await container.sweep_all()
