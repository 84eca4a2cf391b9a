# src/app/services/product_aggregator.py
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable, Mapping
from typing import NamedTuple

from pydantic import TypeAdapter, ValidationError

from app.core.metrics import PROVIDER_FAILURES
from app.domain.keys import product_query_key
from app.domain.models import (
    AggregateResult,
    CacheEntry,
    ProviderFailure,
    ProviderResult,
)
from app.domain.ports import ProductProviderPort, ProviderError, StorageError
from app.services.fetch_pipeline import PayloadLoader
from app.services.request_coordinator import RequestCoordinator

logger = logging.getLogger(__name__)

_RESULT_LIST = TypeAdapter(list[ProviderResult])

# Relevanz-Stufen: exakter Name > Präfix > Teilstring > Wirkstoff (generic_name)
_SCORE_EXACT = 100
_SCORE_PREFIX = 50
_SCORE_SUBSTRING = 25
_SCORE_GENERIC = 10


def relevance_score(result: ProviderResult, search_term: str | None) -> int:
    term = (search_term or "").strip().casefold()
    if not term:
        return 0
    name = result.name.strip().casefold()
    if name == term:
        return _SCORE_EXACT
    if name.startswith(term):
        return _SCORE_PREFIX
    if term in name:
        return _SCORE_SUBSTRING
    if result.generic_name and term in result.generic_name.casefold():
        return _SCORE_GENERIC
    return 0


def rank_results(
    results: Iterable[ProviderResult], search_term: str | None = None
) -> list[ProviderResult]:
    """
    Globale Sortierung: Relevanz absteigend, Preis aufsteigend, lieferbar vor
    nicht lieferbar, Rating absteigend (ohne Rating zuletzt). Stabil.
    """

    def sort_key(result: ProviderResult) -> tuple[object, ...]:
        rating_key = (0, -result.rating) if result.rating is not None else (1, 0.0)
        return (
            -relevance_score(result, search_term),
            result.price,
            not result.in_stock,
            rating_key,
        )

    return sorted(results, key=sort_key)


def provider_loader(
    provider: ProductProviderPort,
    category: str | None,
    search_term: str | None,
    page_size: int,
) -> PayloadLoader:
    async def _load() -> AsyncIterator[bytes]:
        results = await provider.search(category, search_term, page_size)
        yield _RESULT_LIST.dump_json(results)

    return _load


def _check_limit(limit: int) -> None:
    if limit < 1:
        raise ValueError(f"limit must be at least 1, got {limit}")


class _ProviderOutcome(NamedTuple):
    results: list[ProviderResult]
    stale: bool


class ProductAggregator:
    """
    Fan-out einer Katalogabfrage an N Provider, jeweils über den Produkt-Cache.
    Der Ausfall eines Providers bricht die Gesamtabfrage nie ab.
    """

    def __init__(
        self,
        providers: Mapping[str, ProductProviderPort],
        coordinator: RequestCoordinator,
        page_size: int = 20,
    ) -> None:
        self._providers = dict(providers)
        self._coordinator = coordinator
        self._page_size = page_size

    @property
    def coordinator(self) -> RequestCoordinator:
        return self._coordinator

    def providers(self) -> list[ProductProviderPort]:
        return list(self._providers.values())

    def has_provider(self, provider_id: str) -> bool:
        return provider_id in self._providers

    async def query_provider(
        self,
        provider_id: str,
        category: str | None = None,
        search_term: str | None = None,
        limit: int = 20,
    ) -> list[ProviderResult]:
        """
        Raises:
            ValueError: limit kleiner als 1.
            ProviderError: Provider unbekannt oder ausgefallen ohne Stale-Daten.
        """
        _check_limit(limit)
        outcome = await self._fetch_provider(provider_id, category, search_term)
        return rank_results(outcome.results, search_term)[:limit]

    async def query_products(
        self,
        provider_ids: Iterable[str] | None = None,
        category: str | None = None,
        search_term: str | None = None,
        limit: int = 20,
    ) -> AggregateResult:
        _check_limit(limit)
        ids = list(dict.fromkeys(provider_ids or self._providers))
        outcomes = await asyncio.gather(
            *(self._fetch_provider(pid, category, search_term) for pid in ids),
            return_exceptions=True,
        )

        aggregate = AggregateResult()
        merged: list[ProviderResult] = []
        for provider_id, outcome in zip(ids, outcomes, strict=True):
            if isinstance(outcome, ProviderError):
                cause = outcome.__cause__ or outcome
                aggregate.errors.append(
                    ProviderFailure(
                        provider_id=provider_id,
                        error_type=type(cause).__name__,
                        detail=outcome.detail,
                    )
                )
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                merged.extend(outcome.results)
                aggregate.succeeded.append(provider_id)
                if outcome.stale:
                    aggregate.stale.append(provider_id)

        if ids and not aggregate.succeeded:
            logger.warning("All %d providers failed for query %r", len(ids), search_term)

        # Truncation only after the global sort
        aggregate.results = rank_results(merged, search_term)[:limit]
        return aggregate

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _fetch_provider(
        self, provider_id: str, category: str | None, search_term: str | None
    ) -> _ProviderOutcome:
        provider = self._providers.get(provider_id)
        if provider is None:
            PROVIDER_FAILURES.labels(provider_id=provider_id).inc()
            raise ProviderError(provider_id, "unknown provider")

        key = product_query_key(provider_id, category, search_term)
        try:
            entry = await self._coordinator.resolve(
                key,
                provider.search_url(category, search_term, self._page_size),
                provider_loader(provider, category, search_term, self._page_size),
                suffix=".json",
            )
            return _ProviderOutcome(await self._read_results(entry), stale=False)
        except Exception as e:
            logger.warning("Provider %s failed: %s", provider_id, e)
            stale = await self._read_stale(key)
            if stale is not None:
                logger.info("Serving stale results for provider %s", provider_id)
                return _ProviderOutcome(stale, stale=True)
            PROVIDER_FAILURES.labels(provider_id=provider_id).inc()
            raise ProviderError(provider_id, str(e)) from e

    async def _read_results(self, entry: CacheEntry) -> list[ProviderResult]:
        raw = await self._coordinator.payloads.read(entry.local_ref)
        return _RESULT_LIST.validate_json(raw)

    async def _read_stale(self, key: str) -> list[ProviderResult] | None:
        entry = self._coordinator.index.get(key)
        if entry is None or not self._coordinator.payloads.exists(entry.local_ref):
            return None
        try:
            return await self._read_results(entry)
        except (StorageError, ValidationError):
            logger.warning("Stale payload for %s is unreadable", key, exc_info=True)
            return None
