# src/app/core/config.py
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.domain.models import PharmacyPartner

_DEFAULT_PARTNERS = [
    PharmacyPartner(
        id="clicks",
        name="Clicks",
        domain="clicks.co.za",
        search_endpoint="https://clicks.co.za/search",
        logo_url="https://www.clicks.co.za/assets/images/clicks-logo.svg",
    ),
    PharmacyPartner(
        id="dischem",
        name="Dis-Chem",
        domain="dischem.co.za",
        search_endpoint="https://www.dischem.co.za/catalogsearch/result",
        logo_url="https://www.dischem.co.za/media/wysiwyg/dischem-logo.png",
    ),
    PharmacyPartner(
        id="medirite",
        name="Medirite",
        domain="medirite.co.za",
        search_endpoint="https://www.medirite.co.za/catalogsearch/result",
    ),
    PharmacyPartner(
        id="mopani",
        name="Mopani Pharmacy",
        domain="mopani.co.za",
        search_endpoint="https://mopani.co.za/shop",
    ),
    PharmacyPartner(
        id="morningside",
        name="Morningside Dispensary",
        domain="morningsidedispensary.co.za",
        search_endpoint="https://morningsidedispensary.co.za/products",
    ),
]


class Settings(BaseSettings):
    # App
    app_name: str = "Pharmacy Resource Cache"
    app_version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"

    # Cache storage
    cache_dir: Path = Path(".cache/pharmacy")

    # TTL pro Resource-Klasse (Policy, unabhängig konfigurierbar)
    image_ttl_seconds: int = Field(default=7 * 24 * 60 * 60, gt=0)
    product_ttl_seconds: int = Field(default=6 * 60 * 60, gt=0)

    fetch_timeout_seconds: float = Field(default=15.0, gt=0)

    # Size budgets; None = unbegrenzt
    max_image_cache_bytes: int | None = Field(default=100 * 1024 * 1024, gt=0)
    max_product_cache_bytes: int | None = Field(default=None, gt=0)

    sweep_interval_seconds: float = Field(default=30 * 60, gt=0)

    # Fallbacks
    placeholder_image: str = (
        "https://via.placeholder.com/300x300/CCCCCC/666666?text=Product+Image"
    )
    # Mapping von Asset-Handle zu lokalem Pfad (JSON-String als Env-Var)
    # Format: '{"1": "assets/product-placeholder.png"}'
    bundled_assets: dict[str, str] = Field(default_factory=dict)

    # Providers
    provider_page_size: int = Field(default=20, ge=1, le=100)
    pharmacy_partners: list[PharmacyPartner] = Field(
        default_factory=lambda: list(_DEFAULT_PARTNERS)
    )
    user_agent: str = "PharmacyResourceCache/1.0"

    # CORS
    cors_origins: list[str] = Field(default=["*"])

    # Rate Limiting
    rate_limit_requests: int = 100
    rate_limit_window_seconds: int = 60

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def rate_limit(self) -> str:
        return f"{self.rate_limit_requests}/{self.rate_limit_window_seconds} seconds"


@lru_cache
def get_settings() -> Settings:
    return Settings()
