# src/app/domain/models.py
from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Literal, Self

from pydantic import BaseModel, Field, model_validator

# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------


class ResourceClass(StrEnum):
    IMAGES = "images"
    PRODUCTS = "products"


class ResolutionStatus(StrEnum):
    LIVE = "live"
    FALLBACK = "fallback"


class FallbackKind(StrEnum):
    CALLER = "caller"
    STALE = "stale"
    PLACEHOLDER = "placeholder"


class ImageTransform(BaseModel):
    width: int | None = Field(default=None, gt=0)
    height: int | None = Field(default=None, gt=0)
    quality: int | None = Field(default=None, ge=1, le=100)

    model_config = {"frozen": True}

    def as_params(self) -> dict[str, int]:
        """Gesetzte Optionen als Upstream-Query-Parameter (w/h/q)."""
        params = {"w": self.width, "h": self.height, "q": self.quality}
        return {name: value for name, value in params.items() if value is not None}


# ---------------------------------------------------------------------------
# Aggregate: CacheEntry
# Kernkonzept: Metadaten eines lokal gespeicherten Payloads.
# ---------------------------------------------------------------------------


class CacheEntry(BaseModel):
    """
    Index-Eintrag für genau einen Cache-Key.
    local_ref zeigt auf die Payload-Datei im PayloadStore.
    """

    key: str = Field(min_length=1)
    source_ref: str
    local_ref: str
    size_bytes: int = Field(ge=0)
    created_at: datetime
    expires_at: datetime
    resource_class: ResourceClass

    @model_validator(mode="after")
    def expiry_after_creation(self) -> Self:
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at muss nach created_at liegen")
        return self

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# FallbackRef: LocalPath | OpaqueHandle | None
# ---------------------------------------------------------------------------


class LocalPath(BaseModel):
    kind: Literal["local_path"] = "local_path"
    path: str = Field(min_length=1)

    model_config = {"frozen": True}


class OpaqueHandle(BaseModel):
    """Bundled asset referenced by id rather than by path."""

    kind: Literal["handle"] = "handle"
    id: str = Field(min_length=1)

    model_config = {"frozen": True}


FallbackRef = LocalPath | OpaqueHandle | None


def to_fallback_ref(value: object) -> FallbackRef:
    """
    Normalisiert lose Fallback-Angaben in den getaggten FallbackRef.

    Akzeptiert: bestehende Varianten, Pfad-Strings, numerische Asset-Handles
    und Mappings mit "uri" bzw. "handle". Alles andere ergibt None.
    """
    if value is None or isinstance(value, LocalPath | OpaqueHandle):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return OpaqueHandle(id=str(value))
    if isinstance(value, str):
        return LocalPath(path=value.strip()) if value.strip() else None
    if isinstance(value, Mapping):
        uri = value.get("uri")
        if isinstance(uri, str) and uri.strip():
            return LocalPath(path=uri.strip())
        handle = value.get("handle")
        if isinstance(handle, str | int) and not isinstance(handle, bool) and str(handle):
            return OpaqueHandle(id=str(handle))
    return None


# ---------------------------------------------------------------------------
# Resolution results
# ---------------------------------------------------------------------------


class ResolvedReference(BaseModel):
    reference: str = Field(min_length=1)
    status: ResolutionStatus
    fallback_kind: FallbackKind | None = None

    @property
    def is_fallback(self) -> bool:
        return self.status is ResolutionStatus.FALLBACK

    model_config = {"frozen": True}


class ImageResult(BaseModel):
    reference: str
    is_fallback: bool
    is_loading: bool = False
    fallback_kind: FallbackKind | None = None
    load_time_ms: float = Field(default=0.0, ge=0)


class CacheStats(BaseModel):
    entry_count: int
    total_bytes: int
    oldest_entry: datetime | None = None
    newest_entry: datetime | None = None


class SweepReport(BaseModel):
    resource_class: ResourceClass
    expired: int = 0
    orphaned: int = 0
    evicted_for_size: int = 0
    remaining_entries: int = 0
    remaining_bytes: int = 0

    @property
    def removed(self) -> int:
        return self.expired + self.orphaned + self.evicted_for_size


# ---------------------------------------------------------------------------
# Aggregate: ProviderResult
# Source-agnostisches, normalisiertes Produktmodell eines Apotheken-Partners.
# ---------------------------------------------------------------------------


class ProviderResult(BaseModel):
    id: str = Field(description="Nur innerhalb eines Providers eindeutig")
    name: str = Field(min_length=1, max_length=512)
    price: Decimal = Field(ge=0)
    currency: str = Field(default="ZAR", min_length=3, max_length=3)
    in_stock: bool = True
    provider_id: str
    rating: float | None = Field(default=None, ge=0, le=5)
    generic_name: str | None = None
    category: str | None = None
    image_url: str | None = None
    quantity: str = "1 unit"
    prescription: bool = False
    deep_link: str | None = Field(default=None, description="Produktseite beim Partner")

    model_config = {"frozen": True}


class PharmacyPartner(BaseModel):
    id: str = Field(min_length=1)
    name: str
    domain: str
    search_endpoint: str
    logo_url: str | None = None

    model_config = {"frozen": True}


class ProviderFailure(BaseModel):
    provider_id: str
    error_type: str
    detail: str


class AggregateResult(BaseModel):
    results: list[ProviderResult] = Field(default_factory=list)
    errors: list[ProviderFailure] = Field(default_factory=list)
    succeeded: list[str] = Field(default_factory=list)
    stale: list[str] = Field(default_factory=list, description="Provider mit abgelaufenen Daten")


# ---------------------------------------------------------------------------
# API Request/Response Schemas
# ---------------------------------------------------------------------------


class PreloadRequest(BaseModel):
    urls: list[str] = Field(max_length=200)


class PreloadResponse(BaseModel):
    requested: int
    warmed: int
