# src/app/repositories/index_store.py
from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import uuid
from collections.abc import Iterator
from pathlib import Path

import aiofiles
from pydantic import TypeAdapter, ValidationError

from app.domain.models import CacheEntry, CacheStats, ResourceClass
from app.domain.ports import StorageError

logger = logging.getLogger(__name__)

_ENTRY_LIST = TypeAdapter(list[CacheEntry])


class IndexStore:
    """
    Durable key -> CacheEntry map for one resource class.

    Reads are served from memory and never suspend. Every persist writes a
    full JSON snapshot to a temp file and renames it onto the index path, so a
    crash leaves either the previous or the new snapshot, never a torn one.
    """

    def __init__(self, path: Path, resource_class: ResourceClass) -> None:
        self._path = path
        self._resource_class = resource_class
        self._entries: dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def resource_class(self) -> ResourceClass:
        return self._resource_class

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    def entries(self) -> list[CacheEntry]:
        """Snapshot in insertion order (oldest write first)."""
        return list(self._entries.values())

    def __iter__(self) -> Iterator[CacheEntry]:
        return iter(self.entries())

    def stats(self) -> CacheStats:
        entries = self.entries()
        if not entries:
            return CacheStats(entry_count=0, total_bytes=0)
        return CacheStats(
            entry_count=len(entries),
            total_bytes=sum(entry.size_bytes for entry in entries),
            oldest_entry=min(entry.created_at for entry in entries),
            newest_entry=max(entry.created_at for entry in entries),
        )

    async def load(self) -> None:
        try:
            async with aiofiles.open(self._path, "rb") as f:
                raw = await f.read()
        except FileNotFoundError:
            self._entries = {}
            return
        except OSError as e:
            raise StorageError(str(self._path), f"Cannot read index: {e}") from e

        try:
            loaded = _ENTRY_LIST.validate_json(raw)
        except ValidationError:
            logger.warning("Discarding unreadable cache index %s", self._path, exc_info=True)
            loaded = []

        self._entries = {
            entry.key: entry for entry in loaded if entry.resource_class == self._resource_class
        }
        logger.info(
            "Loaded %d %s cache entries from %s",
            len(self._entries),
            self._resource_class,
            self._path,
        )

    # ------------------------------------------------------------------
    # In-memory mutation (caller persists)
    # ------------------------------------------------------------------

    def set(self, entry: CacheEntry) -> CacheEntry | None:
        """Replaces the entry for entry.key; returns the superseded one."""
        previous = self._entries.pop(entry.key, None)
        self._entries[entry.key] = entry
        return previous

    def discard(self, key: str) -> CacheEntry | None:
        return self._entries.pop(key, None)

    # ------------------------------------------------------------------
    # Mutation + snapshot
    # ------------------------------------------------------------------

    async def put(self, entry: CacheEntry) -> CacheEntry | None:
        previous = self.set(entry)
        await self.persist()
        return previous

    async def remove(self, key: str) -> CacheEntry | None:
        removed = self.discard(key)
        if removed is not None:
            await self.persist()
        return removed

    async def clear(self) -> None:
        self._entries.clear()
        await self.persist()

    async def persist(self) -> None:
        async with self._lock:
            # Snapshot under the lock so a later writer never persists older state
            snapshot = _ENTRY_LIST.dump_json(list(self._entries.values()))
            tmp_path = self._path.with_name(f".{self._path.name}.tmp-{uuid.uuid4().hex}")
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                async with aiofiles.open(tmp_path, "wb") as f:
                    await f.write(snapshot)
                    await f.flush()
                    await asyncio.to_thread(os.fsync, f.fileno())
                os.replace(tmp_path, self._path)
            except OSError as e:
                with contextlib.suppress(OSError):
                    tmp_path.unlink(missing_ok=True)
                raise StorageError(str(self._path), f"Cannot write index: {e}") from e
