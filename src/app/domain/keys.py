# src/app/domain/keys.py
from __future__ import annotations

import hashlib
import json
from urllib.parse import urlsplit

from app.domain.models import ImageTransform

_KEY_LENGTH = 32

_IMAGE_SUFFIXES = frozenset({".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp"})
_DEFAULT_IMAGE_SUFFIX = ".img"


def _digest(*parts: str) -> str:
    # NUL als Trenner, damit ("ab", "c") und ("a", "bc") verschiedene Keys ergeben
    payload = "\x00".join(parts).encode("utf-8")
    return hashlib.sha256(payload).hexdigest()[:_KEY_LENGTH]


def image_cache_key(url: str, transform: ImageTransform | None = None) -> str:
    """Deterministischer Key aus URL und Transform-Optionen."""
    options = (transform or ImageTransform()).model_dump(exclude_none=True)
    return _digest(url.strip(), json.dumps(options, sort_keys=True, separators=(",", ":")))


def product_query_key(provider_id: str, category: str | None, search_term: str | None) -> str:
    term = (search_term or "").strip().casefold()
    return _digest(provider_id, category or "all", term)


def image_suffix(url: str) -> str:
    try:
        path = urlsplit(url.strip()).path.lower()
    except ValueError:
        return _DEFAULT_IMAGE_SUFFIX
    for suffix in _IMAGE_SUFFIXES:
        if path.endswith(suffix):
            return suffix
    return _DEFAULT_IMAGE_SUFFIX
