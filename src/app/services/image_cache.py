# src/app/services/image_cache.py
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Coroutine, Iterable
from typing import Any

import httpx
from pydantic import ValidationError

from app.domain.keys import image_cache_key, image_suffix
from app.domain.models import (
    CacheStats,
    FallbackRef,
    ImageResult,
    ImageTransform,
    to_fallback_ref,
)
from app.domain.ports import FETCH_ERRORS
from app.services.fallback_resolver import FallbackResolver
from app.services.fetch_pipeline import http_loader, validate_source_ref
from app.services.request_coordinator import RequestCoordinator

logger = logging.getLogger(__name__)


class ImageCacheService:
    """
    Fassade für Produktbilder: Cache, Deduplizierung und Fallback.
    get_image() wirft nie; Fehler werden zu Fallback-Referenzen.
    """

    def __init__(
        self,
        coordinator: RequestCoordinator,
        fallback_resolver: FallbackResolver,
        http_client: httpx.AsyncClient,
    ) -> None:
        self._coordinator = coordinator
        self._fallback = fallback_resolver
        self._client = http_client
        self._background: set[asyncio.Task[object]] = set()

    @property
    def coordinator(self) -> RequestCoordinator:
        return self._coordinator

    async def get_image(
        self,
        url: str | None,
        fallback: object = None,
        width: int | None = None,
        height: int | None = None,
        quality: int | None = None,
        wait: bool = True,
    ) -> ImageResult:
        """
        Liefert eine lokale Referenz auf das Bild oder einen Fallback.

        Mit wait=False wird ein Cache-Miss im Hintergrund geladen und sofort der
        Fallback mit is_loading=True zurückgegeben.
        """
        started = time.perf_counter()
        fallback_ref = to_fallback_ref(fallback)
        key: str | None = None
        try:
            transform = ImageTransform(width=width, height=height, quality=quality)
            source_ref = validate_source_ref(url or "")
            key = image_cache_key(source_ref, transform)
            loader = http_loader(self._client, source_ref, transform.as_params() or None)
            suffix = image_suffix(source_ref)

            if not wait:
                hit = self._coordinator.lookup(key)
                if hit is None:
                    self._spawn(self._coordinator.resolve(key, source_ref, loader, suffix))
                    return self._degraded(key, fallback_ref, started, is_loading=True)
                return self._live(hit.local_ref, started)

            entry = await self._coordinator.resolve(key, source_ref, loader, suffix)
        except FETCH_ERRORS as e:
            logger.warning("Image %r unavailable, serving fallback: %s", url, e)
            return self._degraded(key, fallback_ref, started)
        except ValidationError as e:
            logger.warning("Invalid image options for %r: %s", url, e)
            return self._degraded(key, fallback_ref, started)
        except Exception:
            logger.exception("Unexpected error while resolving image %r", url)
            return self._degraded(key, fallback_ref, started)

        return self._live(entry.local_ref, started)

    async def preload(self, urls: Iterable[str]) -> int:
        """Best-effort warm-up; returns how many URLs resolved live."""
        unique_urls = list(dict.fromkeys(urls))
        results = await asyncio.gather(
            *(self.get_image(url) for url in unique_urls), return_exceptions=True
        )
        warmed = 0
        for url, result in zip(unique_urls, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning("Failed to preload image %s", url, exc_info=result)
            elif result.is_fallback:
                logger.debug("Preload of %s fell back to %s", url, result.fallback_kind)
            else:
                warmed += 1
        return warmed

    async def invalidate(
        self,
        url: str,
        width: int | None = None,
        height: int | None = None,
        quality: int | None = None,
    ) -> bool:
        transform = ImageTransform(width=width, height=height, quality=quality)
        return await self._coordinator.invalidate(image_cache_key(url.strip(), transform))

    def get_cache_stats(self) -> CacheStats:
        return self._coordinator.index.stats()

    async def clear_cache(self) -> None:
        await self._coordinator.clear()

    async def aclose(self) -> None:
        """Wartet auf laufende Hintergrund-Fetches (Shutdown)."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, object]) -> None:
        task: asyncio.Task[object] = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task[object]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.info("Background image fetch failed: %s", error)

    @staticmethod
    def _live(reference: str, started: float) -> ImageResult:
        return ImageResult(
            reference=reference,
            is_fallback=False,
            load_time_ms=(time.perf_counter() - started) * 1000,
        )

    def _degraded(
        self,
        key: str | None,
        fallback_ref: FallbackRef,
        started: float,
        is_loading: bool = False,
    ) -> ImageResult:
        resolved = self._fallback.resolve_with_fallback(key, fallback_ref)
        return ImageResult(
            reference=resolved.reference,
            is_fallback=True,
            is_loading=is_loading,
            fallback_kind=resolved.fallback_kind,
            load_time_ms=(time.perf_counter() - started) * 1000,
        )
