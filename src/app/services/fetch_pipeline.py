# src/app/services/fetch_pipeline.py
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable, Mapping
from datetime import UTC, datetime, timedelta
from urllib.parse import urlsplit

import httpx

from app.core.metrics import EXTERNAL_API_COUNT, EXTERNAL_API_DURATION
from app.domain.models import CacheEntry
from app.domain.ports import InvalidSourceError, StorageError, TransportError
from app.repositories.index_store import IndexStore
from app.repositories.payload_store import PayloadStore

logger = logging.getLogger(__name__)

PayloadLoader = Callable[[], AsyncIterator[bytes]]
Clock = Callable[[], datetime]

_DEFAULT_SCHEMES = frozenset({"http", "https"})


def utc_now() -> datetime:
    return datetime.now(UTC)


def validate_source_ref(
    source_ref: str, allowed_schemes: frozenset[str] = _DEFAULT_SCHEMES
) -> str:
    """
    Prüft den Locator ohne Netzwerkzugriff und gibt ihn bereinigt zurück.

    Raises:
        InvalidSourceError: Leerer, fehlerhafter oder nicht unterstützter Locator.
    """
    if not isinstance(source_ref, str) or not source_ref.strip():
        raise InvalidSourceError(str(source_ref), "empty locator")

    cleaned = source_ref.strip()
    if any(ch.isspace() for ch in cleaned):
        raise InvalidSourceError(source_ref, "locator contains whitespace")
    try:
        parts = urlsplit(cleaned)
    except ValueError as e:
        raise InvalidSourceError(source_ref, f"malformed locator: {e}") from e

    if parts.scheme.lower() not in allowed_schemes:
        raise InvalidSourceError(source_ref, f"unsupported scheme '{parts.scheme}'")
    if not parts.hostname:
        raise InvalidSourceError(source_ref, "missing host")
    return cleaned


def http_loader(
    client: httpx.AsyncClient,
    url: str,
    params: Mapping[str, str | int] | None = None,
) -> PayloadLoader:
    """Loader that streams a GET response body; any non-2xx outcome is a TransportError."""

    async def _load() -> AsyncIterator[bytes]:
        try:
            async with client.stream("GET", url, params=params) as response:
                if not response.is_success:
                    raise TransportError(
                        url, f"HTTP {response.status_code}", status_code=response.status_code
                    )
                async for chunk in response.aiter_bytes():
                    yield chunk
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TransportError(url, f"Connection error: {e}") from e

    return _load


class FetchPipeline:
    """
    Validiert, lädt, persistiert und indexiert genau eine Ressource.
    Kein internes Retry: der nächste resolve()-Aufruf ist das Retry.
    """

    def __init__(
        self,
        index: IndexStore,
        payloads: PayloadStore,
        ttl_seconds: float,
        timeout_seconds: float,
        allowed_schemes: frozenset[str] = _DEFAULT_SCHEMES,
        clock: Clock = utc_now,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._index = index
        self._payloads = payloads
        self._ttl = timedelta(seconds=ttl_seconds)
        self._timeout = timeout_seconds
        self._allowed_schemes = allowed_schemes
        self._clock = clock

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    async def fetch(
        self, key: str, source_ref: str, loader: PayloadLoader, suffix: str = ".bin"
    ) -> CacheEntry:
        """
        Raises:
            InvalidSourceError: Locator ungültig (kein Netzwerkzugriff erfolgt).
            TransportError: Non-2xx, Verbindungsfehler oder Timeout.
            StorageError: Payload oder Index konnte nicht geschrieben werden.
        """
        source_ref = validate_source_ref(source_ref, self._allowed_schemes)
        resource_class = self._index.resource_class
        started = time.perf_counter()
        try:
            async with asyncio.timeout(self._timeout):
                path, size = await self._payloads.write(key, suffix, loader())
        except TimeoutError as e:
            self._record(started, "timeout")
            raise TransportError(source_ref, f"Timed out after {self._timeout}s") from e
        except TransportError:
            self._record(started, "error")
            raise
        except StorageError:
            self._record(started, "storage_error")
            raise
        except Exception:
            self._record(started, "error")
            raise
        self._record(started, "success")

        now = self._clock()
        entry = CacheEntry(
            key=key,
            source_ref=source_ref,
            local_ref=str(path),
            size_bytes=size,
            created_at=now,
            expires_at=now + self._ttl,
            resource_class=resource_class,
        )
        previous = await self._index.put(entry)
        if previous is not None and previous.local_ref != entry.local_ref:
            self._payloads.delete(previous.local_ref)

        logger.debug("Cached %s (%d bytes) as %s", source_ref, size, key)
        return entry

    def _record(self, started: float, status: str) -> None:
        resource_class = self._index.resource_class.value
        EXTERNAL_API_COUNT.labels(resource_class=resource_class, status=status).inc()
        EXTERNAL_API_DURATION.labels(resource_class=resource_class).observe(
            time.perf_counter() - started
        )
