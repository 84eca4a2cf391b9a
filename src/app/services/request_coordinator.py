# src/app/services/request_coordinator.py
from __future__ import annotations

import asyncio
import logging

from app.core.metrics import CACHE_COALESCED, CACHE_HITS, CACHE_MISSES
from app.domain.models import CacheEntry
from app.repositories.index_store import IndexStore
from app.repositories.payload_store import PayloadStore
from app.services.fetch_pipeline import Clock, FetchPipeline, PayloadLoader, utc_now

logger = logging.getLogger(__name__)


def _consume_exception(task: asyncio.Task[CacheEntry]) -> None:
    # Waiters may all have gone away; mark the failure as retrieved.
    if not task.cancelled():
        task.exception()


class RequestCoordinator:
    """
    Dedupliziert parallele Fetches pro Key.

    Pro Key läuft höchstens ein FetchTask; weitere Aufrufer warten auf dessen
    Ergebnis. Prüfen und Registrieren passieren ohne await dazwischen, im
    kooperativen asyncio-Modell ist das atomar.
    """

    def __init__(
        self,
        index: IndexStore,
        payloads: PayloadStore,
        pipeline: FetchPipeline,
        clock: Clock = utc_now,
    ) -> None:
        self._index = index
        self._payloads = payloads
        self._pipeline = pipeline
        self._clock = clock
        self._pending: dict[str, asyncio.Task[CacheEntry]] = {}

    @property
    def index(self) -> IndexStore:
        return self._index

    @property
    def payloads(self) -> PayloadStore:
        return self._payloads

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    def lookup(self, key: str) -> CacheEntry | None:
        """Valid, unexpired entry with its payload on disk, else None. Never fetches."""
        entry = self._index.get(key)
        if entry is None or entry.is_expired(self._clock()):
            return None
        if not self._payloads.exists(entry.local_ref):
            return None
        return entry

    async def resolve(
        self, key: str, source_ref: str, loader: PayloadLoader, suffix: str = ".bin"
    ) -> CacheEntry:
        """
        Liefert den Cache-Eintrag für key; lädt höchstens einmal gleichzeitig.

        Raises:
            InvalidSourceError, TransportError, StorageError: aus der FetchPipeline.
        """
        resource_class = self._index.resource_class.value
        entry = self._index.get(key)
        if entry is not None and not entry.is_expired(self._clock()):
            if self._payloads.exists(entry.local_ref):
                CACHE_HITS.labels(resource_class=resource_class).inc()
                return entry
            logger.info("Payload for %s vanished from disk, dropping index row", key)
            await self._index.remove(key)

        task = self._pending.get(key)
        if task is None:
            CACHE_MISSES.labels(resource_class=resource_class).inc()
            task = asyncio.ensure_future(self._run(key, source_ref, loader, suffix))
            task.add_done_callback(_consume_exception)
            self._pending[key] = task
        else:
            CACHE_COALESCED.labels(resource_class=resource_class).inc()

        # A cancelled caller must not cancel the fetch other waiters depend on
        return await asyncio.shield(task)

    async def _run(
        self, key: str, source_ref: str, loader: PayloadLoader, suffix: str
    ) -> CacheEntry:
        try:
            return await self._pipeline.fetch(key, source_ref, loader, suffix)
        finally:
            self._pending.pop(key, None)

    async def invalidate(self, key: str) -> bool:
        entry = await self._index.remove(key)
        if entry is None:
            return False
        self._payloads.delete(entry.local_ref)
        return True

    async def clear(self) -> None:
        await self._index.clear()
        removed = self._payloads.clear()
        logger.info("Cleared %s cache (%d payload files)", self._index.resource_class, removed)
