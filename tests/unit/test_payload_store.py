from collections.abc import AsyncIterator
from pathlib import Path

import pytest

from app.domain.ports import StorageError
from app.repositories.payload_store import PayloadStore


async def _chunks(*parts: bytes) -> AsyncIterator[bytes]:
    for part in parts:
        yield part


@pytest.mark.asyncio  # type: ignore[misc]
async def test_write_and_read(tmp_path: Path) -> None:
    store = PayloadStore(tmp_path / "payloads")

    path, size = await store.write("abc", ".png", _chunks(b"12", b"345"))

    assert path == store.path_for("abc", ".png")
    assert size == 5
    assert store.size(str(path)) == 5
    assert store.size(str(tmp_path / "nope.png")) is None
    assert await store.read(str(path)) == b"12345"
    assert [p.name for p in store.directory.iterdir()] == ["abc.png"]


@pytest.mark.asyncio  # type: ignore[misc]
async def test_failed_stream_keeps_previous_payload(tmp_path: Path) -> None:
    store = PayloadStore(tmp_path / "payloads")
    path, _ = await store.write("abc", ".png", _chunks(b"old"))

    async def broken() -> AsyncIterator[bytes]:
        yield b"partial"
        raise RuntimeError("stream died")

    with pytest.raises(RuntimeError):
        await store.write("abc", ".png", broken())

    assert path.read_bytes() == b"old"
    assert [p.name for p in store.directory.iterdir()] == ["abc.png"]


@pytest.mark.asyncio  # type: ignore[misc]
async def test_read_missing_raises_storage_error(tmp_path: Path) -> None:
    store = PayloadStore(tmp_path)
    with pytest.raises(StorageError):
        await store.read(str(tmp_path / "missing.png"))


def test_delete_is_best_effort(tmp_path: Path) -> None:
    store = PayloadStore(tmp_path / "payloads")
    store.directory.mkdir()
    target = store.path_for("abc", ".png")
    target.write_bytes(b"x")

    assert store.delete(str(target)) is True
    assert store.delete(str(target)) is False


def test_delete_refuses_paths_outside_directory(tmp_path: Path) -> None:
    store = PayloadStore(tmp_path / "payloads")
    outside = tmp_path / "precious.txt"
    outside.write_text("keep me", encoding="utf-8")

    assert store.delete(str(outside)) is False
    assert store.delete(str(store.directory / ".." / "precious.txt")) is False
    assert outside.exists()


def test_clear_skips_in_flight_temp_files(tmp_path: Path) -> None:
    store = PayloadStore(tmp_path / "payloads")
    assert store.clear() == 0

    store.directory.mkdir()
    store.path_for("a", ".png").write_bytes(b"a")
    store.path_for("b", ".json").write_bytes(b"b")
    (store.directory / ".tmp-123.png").write_bytes(b"partial")

    assert store.clear() == 2
    assert [p.name for p in store.directory.iterdir()] == [".tmp-123.png"]
