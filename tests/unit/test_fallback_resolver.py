from pathlib import Path

import pytest

from app.domain.models import FallbackKind, LocalPath, OpaqueHandle, ResolutionStatus
from app.services.fallback_resolver import FallbackResolver, live_reference

URL = "https://cdn.example.com/img/panado.png"
PLACEHOLDER = "https://via.placeholder.com/150?text=No+Image"


@pytest.fixture
def bundled_asset(tmp_path: Path) -> Path:
    asset = tmp_path / "assets" / "pill.png"
    asset.parent.mkdir()
    asset.write_bytes(b"pill")
    return asset


@pytest.fixture
def parts(make_cache):
    return make_cache()


@pytest.fixture
def resolver(parts, bundled_asset: Path) -> FallbackResolver:
    return FallbackResolver(
        parts.index,
        parts.payloads,
        placeholder=PLACEHOLDER,
        bundled_assets={"7": str(bundled_asset), "ghost": "/does/not/exist.png"},
    )


def test_placeholder_when_nothing_else_is_available(resolver: FallbackResolver) -> None:
    resolved = resolver.resolve_with_fallback("unknown-key")

    assert resolved.reference == PLACEHOLDER
    assert resolved.status is ResolutionStatus.FALLBACK
    assert resolved.fallback_kind is FallbackKind.PLACEHOLDER
    assert resolved.is_fallback


def test_caller_local_path_wins(resolver: FallbackResolver, tmp_path: Path) -> None:
    local = tmp_path / "mine.png"
    local.write_bytes(b"mine")

    resolved = resolver.resolve_with_fallback("k", LocalPath(path=str(local)))

    assert resolved.reference == str(local)
    assert resolved.fallback_kind is FallbackKind.CALLER


def test_missing_caller_path_falls_through(resolver: FallbackResolver) -> None:
    resolved = resolver.resolve_with_fallback("k", LocalPath(path="/nowhere/x.png"))
    assert resolved.fallback_kind is FallbackKind.PLACEHOLDER


def test_opaque_handle_resolves_bundled_asset(
    resolver: FallbackResolver, bundled_asset: Path
) -> None:
    resolved = resolver.resolve_with_fallback(None, OpaqueHandle(id="7"))

    assert resolved.reference == str(bundled_asset)
    assert resolved.fallback_kind is FallbackKind.CALLER


@pytest.mark.parametrize("handle", ["unknown", "ghost"])
def test_unusable_handle_falls_through(resolver: FallbackResolver, handle: str) -> None:
    resolved = resolver.resolve_with_fallback(None, OpaqueHandle(id=handle))
    assert resolved.fallback_kind is FallbackKind.PLACEHOLDER


@pytest.mark.asyncio  # type: ignore[misc]
async def test_stale_entry_served_after_expiry(
    resolver: FallbackResolver, parts, clock, loader_factory
) -> None:
    entry = await parts.coordinator.resolve("k", URL, loader_factory())
    clock.advance(3600)
    assert parts.coordinator.lookup("k") is None

    resolved = resolver.resolve_with_fallback("k")

    assert resolved.reference == entry.local_ref
    assert resolved.fallback_kind is FallbackKind.STALE


@pytest.mark.asyncio  # type: ignore[misc]
async def test_caller_fallback_preferred_over_stale(
    resolver: FallbackResolver, parts, bundled_asset: Path, loader_factory
) -> None:
    await parts.coordinator.resolve("k", URL, loader_factory())

    resolved = resolver.resolve_with_fallback("k", OpaqueHandle(id="7"))

    assert resolved.reference == str(bundled_asset)


@pytest.mark.asyncio  # type: ignore[misc]
async def test_stale_without_payload_is_skipped(
    resolver: FallbackResolver, parts, loader_factory
) -> None:
    entry = await parts.coordinator.resolve("k", URL, loader_factory())
    Path(entry.local_ref).unlink()

    assert resolver.last_known_good("k") is None
    assert resolver.resolve_with_fallback("k").fallback_kind is FallbackKind.PLACEHOLDER


def test_unexpected_error_still_yields_placeholder(resolver: FallbackResolver, parts) -> None:
    def explode(key: str) -> None:
        raise RuntimeError("index broken")

    parts.index.get = explode

    resolved = resolver.resolve_with_fallback("k")

    assert resolved.reference == PLACEHOLDER


def test_empty_placeholder_rejected(parts) -> None:
    with pytest.raises(ValueError):
        FallbackResolver(parts.index, parts.payloads, placeholder="")


@pytest.mark.asyncio  # type: ignore[misc]
async def test_live_reference(parts, loader_factory) -> None:
    entry = await parts.coordinator.resolve("k", URL, loader_factory())

    resolved = live_reference(entry)

    assert resolved.reference == entry.local_ref
    assert resolved.status is ResolutionStatus.LIVE
    assert not resolved.is_fallback
