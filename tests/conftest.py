# tests/conftest.py
import asyncio
from collections.abc import AsyncIterator, Callable, Generator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient

from app.core.config import Settings
from app.domain.models import ProviderResult, ResourceClass
from app.domain.ports import ProductProviderPort
from app.main import create_app
from app.repositories.index_store import IndexStore
from app.repositories.payload_store import PayloadStore
from app.services.fetch_pipeline import FetchPipeline
from app.services.request_coordinator import RequestCoordinator

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


class FakeClock:
    def __init__(self, start: datetime = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class CountingLoader:
    """Payload loader that counts invocations and can be held open by a gate."""

    def __init__(
        self,
        payload: bytes = PNG_BYTES,
        gate: asyncio.Event | None = None,
        error: Exception | None = None,
    ) -> None:
        self.payload = payload
        self.gate = gate
        self.error = error
        self.calls = 0

    def __call__(self) -> AsyncIterator[bytes]:
        self.calls += 1
        return self._stream()

    async def _stream(self) -> AsyncIterator[bytes]:
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        yield self.payload


class FakeProvider(ProductProviderPort):
    def __init__(
        self,
        provider_id: str,
        results: list[ProviderResult] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.provider_id = provider_id
        self.name = provider_id.title()
        self.results = results or []
        self.error = error
        self.calls = 0

    def search_url(self, category: str | None, search_term: str | None, limit: int) -> str:
        params = {"q": search_term or "", "category": category or "", "limit": limit}
        return str(httpx.URL(f"https://{self.provider_id}.example.com/search", params=params))

    async def search(
        self, category: str | None, search_term: str | None, limit: int
    ) -> list[ProviderResult]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.results)


@dataclass
class CacheParts:
    index: IndexStore
    payloads: PayloadStore
    pipeline: FetchPipeline
    coordinator: RequestCoordinator


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_cache(tmp_path: Path, clock: FakeClock) -> Callable[..., CacheParts]:
    def _make(
        resource_class: ResourceClass = ResourceClass.IMAGES,
        ttl_seconds: float = 60,
        timeout_seconds: float = 5.0,
    ) -> CacheParts:
        base = tmp_path / resource_class.value
        index = IndexStore(base / "index.json", resource_class)
        payloads = PayloadStore(base / "payloads")
        pipeline = FetchPipeline(
            index,
            payloads,
            ttl_seconds=ttl_seconds,
            timeout_seconds=timeout_seconds,
            clock=clock,
        )
        coordinator = RequestCoordinator(index, payloads, pipeline, clock=clock)
        return CacheParts(index, payloads, pipeline, coordinator)

    return _make


@pytest.fixture
def provider_factory() -> type[FakeProvider]:
    return FakeProvider


@pytest.fixture
def loader_factory() -> type[CountingLoader]:
    return CountingLoader


def make_result(
    name: str, price: str, provider_id: str = "clicks", **extra: object
) -> ProviderResult:
    return ProviderResult(
        id=f"{provider_id}-{name}",
        name=name,
        price=price,
        provider_id=provider_id,
        **extra,
    )


@pytest.fixture
def result_factory() -> Callable[..., ProviderResult]:
    return make_result


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------


def _image_handler(request: httpx.Request) -> httpx.Response:
    if "missing" in request.url.path:
        return httpx.Response(404)
    return httpx.Response(200, content=PNG_BYTES, headers={"Content-Type": "image/png"})


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    return Settings(
        cache_dir=tmp_path / "cache",
        sweep_interval_seconds=3600,
        rate_limit_requests=1000,
        pharmacy_partners=[],
    )


@pytest.fixture
def api_providers() -> dict[str, ProductProviderPort]:
    return {
        "clicks": FakeProvider(
            "clicks",
            results=[
                make_result("Panado", "30", "clicks", generic_name="Paracetamol"),
                make_result("Allergex", "45", "clicks"),
            ],
        ),
        "dischem": FakeProvider(
            "dischem", results=[make_result("Panado Extra", "25", "dischem")]
        ),
        "medirite": FakeProvider("medirite", error=RuntimeError("upstream down")),
    }


@pytest.fixture
def client(
    test_settings: Settings, api_providers: dict[str, ProductProviderPort]
) -> Generator[TestClient, None, None]:
    app = create_app(test_settings, providers=api_providers)
    mock_client = httpx.AsyncClient(transport=httpx.MockTransport(_image_handler))
    with patch("app.main.build_http_client", return_value=mock_client), TestClient(app) as c:
        yield c
