# src/app/services/eviction_sweeper.py
from __future__ import annotations

import asyncio
import logging

from app.core.metrics import CACHE_EVICTIONS
from app.domain.models import CacheEntry, SweepReport
from app.domain.ports import StorageError
from app.services.fetch_pipeline import Clock, utc_now
from app.services.request_coordinator import RequestCoordinator

logger = logging.getLogger(__name__)


class EvictionSweeper:
    """
    Entfernt abgelaufene und verwaiste Einträge und erzwingt ein optionales
    Größenbudget (älteste zuerst, nach created_at).

    Abgelaufene Einträge werden auch bei laufendem Refetch entfernt; der
    Refetch schreibt per Rename und legt danach eine neue Zeile an. Nur das
    Größenbudget überspringt Keys mit laufendem Fetch. Alle Entfernungen
    laufen ohne await; danach folgt genau ein Index-Snapshot.
    """

    def __init__(
        self,
        coordinator: RequestCoordinator,
        max_total_bytes: int | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._coordinator = coordinator
        self._index = coordinator.index
        self._payloads = coordinator.payloads
        self._max_total_bytes = max_total_bytes
        self._clock = clock

    async def sweep(self) -> SweepReport:
        now = self._clock()
        report = SweepReport(resource_class=self._index.resource_class)

        for entry in self._index.entries():
            if entry.expires_at < now:
                self._evict(entry, "expired")
                report.expired += 1
            elif not self._payloads.exists(entry.local_ref):
                # Payload already gone, only the row is dropped
                self._index.discard(entry.key)
                CACHE_EVICTIONS.labels(
                    resource_class=self._index.resource_class.value, reason="orphaned"
                ).inc()
                report.orphaned += 1

        if self._max_total_bytes is not None:
            report.evicted_for_size = self._enforce_budget(self._max_total_bytes)

        remaining = self._index.entries()
        report.remaining_entries = len(remaining)
        report.remaining_bytes = sum(entry.size_bytes for entry in remaining)

        if report.removed:
            await self._index.persist()
            logger.info(
                "Swept %s cache: %d expired, %d orphaned, %d over budget; %d entries left",
                self._index.resource_class,
                report.expired,
                report.orphaned,
                report.evicted_for_size,
                report.remaining_entries,
            )
        return report

    def _enforce_budget(self, budget: int) -> int:
        entries = self._index.entries()
        total = sum(entry.size_bytes for entry in entries)
        evicted = 0
        for entry in sorted(entries, key=lambda e: e.created_at):
            if total <= budget:
                break
            if self._coordinator.is_pending(entry.key):
                continue
            self._evict(entry, "size_budget")
            total -= entry.size_bytes
            evicted += 1
        return evicted

    def _evict(self, entry: CacheEntry, reason: str) -> None:
        self._index.discard(entry.key)
        self._payloads.delete(entry.local_ref)
        CACHE_EVICTIONS.labels(
            resource_class=self._index.resource_class.value, reason=reason
        ).inc()

    async def run_periodically(self, interval_seconds: float) -> None:
        """Sweep loop for the app lifespan; one failed pass does not stop it."""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.sweep()
            except StorageError:
                logger.warning(
                    "Scheduled sweep of %s cache failed",
                    self._index.resource_class,
                    exc_info=True,
                )
