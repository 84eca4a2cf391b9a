# src/app/domain/ports.py
from __future__ import annotations

from abc import ABC, abstractmethod

from app.domain.models import ProviderResult


class ProductProviderPort(ABC):
    """
    Abstrakte Schnittstelle für einen Apotheken-Partner (Provider).
    Jeder Adapter MUSS dieses Interface implementieren.
    Der Aggregator kennt ausschließlich dieses Interface.
    """

    provider_id: str
    name: str

    @abstractmethod
    def search_url(
        self, category: str | None, search_term: str | None, limit: int
    ) -> str:
        """Locator der Upstream-Suche; dient dem Cache als source_ref."""
        ...

    @abstractmethod
    async def search(
        self, category: str | None, search_term: str | None, limit: int
    ) -> list[ProviderResult]:
        """
        Sucht Produkte beim Partner und gibt normalisierte ProviderResults zurück.

        Raises:
            TransportError: Bei Kommunikationsproblemen mit der Partner-API.
        """
        ...


# ---------------------------------------------------------------------------
# Custom Domain Exceptions
# ---------------------------------------------------------------------------


class CacheLayerError(Exception):
    """Base class for every failure raised inside the caching layer."""


class InvalidSourceError(CacheLayerError):
    def __init__(self, source_ref: str, reason: str):
        super().__init__(f"Invalid source '{source_ref}': {reason}")
        self.source_ref = source_ref
        self.reason = reason


class TransportError(CacheLayerError):
    def __init__(self, source_ref: str, detail: str, status_code: int | None = None):
        super().__init__(f"Transport error for '{source_ref}': {detail}")
        self.source_ref = source_ref
        self.detail = detail
        self.status_code = status_code


class StorageError(CacheLayerError):
    def __init__(self, path: str, detail: str):
        super().__init__(f"Storage error at '{path}': {detail}")
        self.path = path
        self.detail = detail


class ProviderError(CacheLayerError):
    def __init__(self, provider_id: str, detail: str):
        super().__init__(f"Provider '{provider_id}' failed: {detail}")
        self.provider_id = provider_id
        self.detail = detail


# Failures a fetch may end with; everything here is routed to a fallback.
FETCH_ERRORS = (InvalidSourceError, TransportError, StorageError)
