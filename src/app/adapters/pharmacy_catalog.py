# src/app/adapters/pharmacy_catalog.py
from __future__ import annotations

import logging
import re
from decimal import Decimal, InvalidOperation

import httpx
from pydantic import BaseModel, Field, ValidationError

from app.domain.models import PharmacyPartner, ProviderResult
from app.domain.ports import ProductProviderPort, TransportError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Interne Rohdaten-Schemas (für typisiertes Parsing der Partner-Response)
# ---------------------------------------------------------------------------


class _CatalogItem(BaseModel):
    """Direkte Abbildung der Partner-Felder. Fast alles optional, die Daten sind inkonsistent."""

    sku: str | None = None
    name: str | None = None
    generic_name: str | None = Field(default=None, alias="genericName")
    price: str | float | None = None
    currency: str | None = None
    image: str | None = None
    link: str | None = None
    in_stock: bool | None = Field(default=None, alias="inStock")
    rating: float | None = None

    model_config = {"populate_by_name": True}


class _CatalogResponse(BaseModel):
    products: list[dict[str, object]] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Normalisierung
# ---------------------------------------------------------------------------

_PRICE_PATTERN = re.compile(r"\d[\d,]*(?:\.\d+)?")
_WHITESPACE = re.compile(r"\s+")
_QUANTITY_PATTERN = re.compile(r"\d+\s*(?:ml|mg|g|tablets?|capsules?|sachets?)\b", re.IGNORECASE)
_PRESCRIPTION_PATTERN = re.compile(r"\b(?:prescription|rx|schedule)\b", re.IGNORECASE)
_DEFAULT_QUANTITY = "1 unit"

_CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "Pain Relief": ("panado", "ibuprofen", "aspirin", "pain", "headache"),
    "Vitamins & Supplements": ("vitamin", "supplement", "multivitamin", "calcium"),
    "Skincare": ("cream", "lotion", "sunscreen", "moisturizer"),
    "Cold & Flu": ("flu", "cold", "cough", "throat"),
    "Baby Care": ("baby", "infant", "nappy", "diaper"),
    "Antiseptics": ("betadine", "antiseptic", "disinfectant"),
}
_DEFAULT_CATEGORY = "General Health"


def clean_product_name(name: str | None) -> str:
    cleaned = _WHITESPACE.sub(" ", name or "").strip()
    return cleaned or "Unknown Product"


def parse_price(raw: str | float | None) -> Decimal:
    """'R 1,299.99' -> Decimal('1299.99'); unlesbare Preise werden 0."""
    if raw is None:
        return Decimal("0")
    if isinstance(raw, int | float):
        return Decimal(str(raw)) if raw >= 0 else Decimal("0")
    match = _PRICE_PATTERN.search(raw)
    if not match:
        return Decimal("0")
    try:
        return Decimal(match.group(0).replace(",", ""))
    except InvalidOperation:
        return Decimal("0")


def normalize_image_url(image_url: str | None, domain: str) -> str | None:
    if not image_url:
        return None
    if image_url.startswith(("http://", "https://")):
        return image_url
    if image_url.startswith("//"):
        return f"https:{image_url}"
    if image_url.startswith("/"):
        return f"https://{domain}{image_url}"
    return f"https://{domain}/{image_url}"


def normalize_url(url: str | None, domain: str) -> str | None:
    if not url:
        return None
    if url.startswith(("http://", "https://")):
        return url
    if url.startswith("/"):
        return f"https://{domain}{url}"
    return f"https://{domain}/{url}"


def extract_quantity(name: str) -> str:
    """'Panado 500mg 24 Tablets' -> '500mg' (erste Mengenangabe im Namen)."""
    match = _QUANTITY_PATTERN.search(name)
    return match.group(0) if match else _DEFAULT_QUANTITY


def is_prescription_medicine(name: str) -> bool:
    return _PRESCRIPTION_PATTERN.search(name) is not None


def categorize_product(name: str) -> str:
    lower_name = name.lower()
    for category, keywords in _CATEGORY_KEYWORDS.items():
        if any(keyword in lower_name for keyword in keywords):
            return category
    return _DEFAULT_CATEGORY


# ---------------------------------------------------------------------------
# Adapter-Implementierung
# ---------------------------------------------------------------------------


class PharmacyCatalogAdapter(ProductProviderPort):
    """
    Adapter für die JSON-Suche eines Apotheken-Partners.
    Normalisiert Partner-Rohdaten in das einheitliche ProviderResult-Schema.
    """

    def __init__(self, http_client: httpx.AsyncClient, partner: PharmacyPartner) -> None:
        self._client = http_client
        self._partner = partner
        self.provider_id = partner.id
        self.name = partner.name

    @property
    def partner(self) -> PharmacyPartner:
        return self._partner

    def search_url(self, category: str | None, search_term: str | None, limit: int) -> str:
        params = self._params(category, search_term, limit)
        return str(httpx.URL(self._partner.search_endpoint, params=params))

    async def search(
        self, category: str | None, search_term: str | None, limit: int
    ) -> list[ProviderResult]:
        url = self._partner.search_endpoint
        try:
            response = await self._client.get(
                url,
                params=self._params(category, search_term, limit),
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(url, str(e), status_code=e.response.status_code) from e
        except httpx.RequestError as e:
            raise TransportError(url, f"Connection error: {e}") from e

        try:
            data = _CatalogResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise TransportError(url, f"Unexpected response body: {e}") from e

        results = []
        for index, raw_item in enumerate(data.products):
            try:
                item = _CatalogItem.model_validate(raw_item)
                results.append(self._normalize(item, index))
            except ValidationError:
                logger.warning(
                    "Skipping malformed product in %s search results",
                    self.provider_id,
                    exc_info=True,
                )
        return results[:limit]

    # ------------------------------------------------------------------
    # Private Normalisierungslogik
    # ------------------------------------------------------------------

    @staticmethod
    def _params(
        category: str | None, search_term: str | None, limit: int
    ) -> dict[str, str | int]:
        params: dict[str, str | int] = {"limit": limit}
        if search_term:
            params["q"] = search_term
        if category:
            params["category"] = category
        return params

    def _normalize(self, raw: _CatalogItem, index: int) -> ProviderResult:
        name = clean_product_name(raw.name)
        return ProviderResult(
            id=raw.sku or f"{self.provider_id}-{index}",
            name=name,
            generic_name=raw.generic_name,
            price=parse_price(raw.price),
            currency=(raw.currency or "ZAR").upper(),
            in_stock=True if raw.in_stock is None else raw.in_stock,
            provider_id=self.provider_id,
            rating=raw.rating,
            category=categorize_product(name),
            image_url=normalize_image_url(raw.image, self._partner.domain),
            quantity=extract_quantity(name),
            prescription=is_prescription_medicine(name),
            deep_link=normalize_url(raw.link, self._partner.domain),
        )
