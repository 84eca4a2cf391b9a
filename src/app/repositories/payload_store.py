# src/app/repositories/payload_store.py
from __future__ import annotations

import contextlib
import logging
import os
import uuid
from collections.abc import AsyncIterator
from pathlib import Path

import aiofiles

from app.domain.ports import StorageError

logger = logging.getLogger(__name__)

_TMP_PREFIX = ".tmp-"


class PayloadStore:
    """
    Content-addressable Ablage heruntergeladener Bytes, eine Datei pro Eintrag.
    Dateiname = Cache-Key + Suffix; Schreiben erfolgt über Temp-Datei + Rename.
    """

    def __init__(self, directory: Path) -> None:
        self._directory = directory.resolve()

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, key: str, suffix: str) -> Path:
        return self._directory / f"{key}{suffix}"

    def owns(self, ref: str) -> bool:
        """True if ref points inside the payload directory."""
        try:
            Path(ref).resolve().relative_to(self._directory)
        except ValueError:
            return False
        return True

    def exists(self, ref: str) -> bool:
        return Path(ref).is_file()

    def size(self, ref: str) -> int | None:
        try:
            return Path(ref).stat().st_size
        except OSError:
            return None

    async def write(
        self, key: str, suffix: str, chunks: AsyncIterator[bytes]
    ) -> tuple[Path, int]:
        """Streams chunks into a unique temp file and renames it onto the final path."""
        target = self.path_for(key, suffix)
        tmp_path = self._directory / f"{_TMP_PREFIX}{uuid.uuid4().hex}{suffix}"
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(tmp_path, "wb") as f:
                async for chunk in chunks:
                    await f.write(chunk)
            os.replace(tmp_path, target)
            size = target.stat().st_size
        except OSError as e:
            raise StorageError(str(target), str(e)) from e
        finally:
            with contextlib.suppress(OSError):
                tmp_path.unlink(missing_ok=True)
        return target, size

    async def read(self, ref: str) -> bytes:
        try:
            async with aiofiles.open(ref, "rb") as f:
                return await f.read()
        except OSError as e:
            raise StorageError(ref, str(e)) from e

    def delete(self, ref: str) -> bool:
        """Best-effort delete. A missing file is not an error."""
        if not self.owns(ref):
            logger.warning("Refusing to delete payload outside cache directory: %s", ref)
            return False
        try:
            Path(ref).unlink()
        except FileNotFoundError:
            return False
        except OSError:
            logger.warning("Could not delete cached payload %s", ref, exc_info=True)
            return False
        return True

    def clear(self) -> int:
        if not self._directory.is_dir():
            return 0
        removed = 0
        for path in self._directory.iterdir():
            # in-flight downloads keep their temp files
            if path.name.startswith(_TMP_PREFIX) or not path.is_file():
                continue
            if self.delete(str(path)):
                removed += 1
        return removed
