# src/app/services/fallback_resolver.py
from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path

from app.core.metrics import FALLBACK_RESOLUTIONS
from app.domain.models import (
    CacheEntry,
    FallbackKind,
    FallbackRef,
    LocalPath,
    OpaqueHandle,
    ResolutionStatus,
    ResolvedReference,
)
from app.repositories.index_store import IndexStore
from app.repositories.payload_store import PayloadStore

logger = logging.getLogger(__name__)


def live_reference(entry: CacheEntry) -> ResolvedReference:
    return ResolvedReference(reference=entry.local_ref, status=ResolutionStatus.LIVE)


class FallbackResolver:
    """
    Liefert immer eine nutzbare Referenz, auch bei totalem Fehlschlag.

    Reihenfolge: Caller-Fallback (lokal auflösbar) -> letzter bekannter guter
    Eintrag (auch abgelaufen) -> statischer Platzhalter.
    """

    def __init__(
        self,
        index: IndexStore,
        payloads: PayloadStore,
        placeholder: str,
        bundled_assets: Mapping[str, str] | None = None,
    ) -> None:
        if not placeholder:
            raise ValueError("placeholder must not be empty")
        self._index = index
        self._payloads = payloads
        self._placeholder = placeholder
        self._bundled_assets = dict(bundled_assets or {})

    @property
    def placeholder(self) -> str:
        return self._placeholder

    def resolve_with_fallback(
        self, key: str | None, fallback: FallbackRef = None
    ) -> ResolvedReference:
        try:
            caller_ref = self._resolve_caller_fallback(fallback)
            if caller_ref is not None:
                return self._degraded(caller_ref, FallbackKind.CALLER)

            stale = self.last_known_good(key)
            if stale is not None:
                return self._degraded(stale.local_ref, FallbackKind.STALE)
        except Exception:
            logger.exception("Fallback resolution failed for %s, using placeholder", key)

        return self._degraded(self._placeholder, FallbackKind.PLACEHOLDER)

    def last_known_good(self, key: str | None) -> CacheEntry | None:
        """Entry for key regardless of expiry, as long as its payload is still on disk."""
        if not key:
            return None
        entry = self._index.get(key)
        if entry is None or not self._payloads.exists(entry.local_ref):
            return None
        return entry

    def _resolve_caller_fallback(self, fallback: FallbackRef) -> str | None:
        match fallback:
            case LocalPath(path=path):
                return path if Path(path).is_file() else None
            case OpaqueHandle(id=handle):
                asset = self._bundled_assets.get(handle)
                if asset is None:
                    logger.debug("Unknown asset handle %s", handle)
                    return None
                return asset if Path(asset).is_file() else None
            case _:
                return None

    @staticmethod
    def _degraded(reference: str, kind: FallbackKind) -> ResolvedReference:
        FALLBACK_RESOLUTIONS.labels(kind=kind.value).inc()
        return ResolvedReference(
            reference=reference, status=ResolutionStatus.FALLBACK, fallback_kind=kind
        )
