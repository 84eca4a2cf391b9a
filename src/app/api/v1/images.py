# src/app/api/v1/images.py
from fastapi import APIRouter, Query, status

from app.api.dependencies import ImageCacheDep
from app.domain.models import CacheStats, ImageResult, PreloadRequest, PreloadResponse

router = APIRouter(prefix="/images", tags=["Images"])


@router.get("", response_model=ImageResult)
async def get_image(
    service: ImageCacheDep,
    url: str = "",
    fallback: str | None = Query(None, description="Lokaler Pfad eines Fallback-Bildes"),
    fallback_handle: str | None = Query(None, description="Id eines gebündelten Assets"),
    width: int | None = Query(None, ge=1, le=4096),
    height: int | None = Query(None, ge=1, le=4096),
    quality: int | None = Query(None, ge=1, le=100),
    wait: bool = True,
) -> ImageResult:
    """
    Liefert eine lokale Referenz auf das Bild, oder einen Fallback.
    Antwortet nie mit einem Fehler, wenn das Bild nicht geladen werden kann.
    """
    fallback_ref: object = {"handle": fallback_handle} if fallback_handle else fallback
    return await service.get_image(
        url, fallback=fallback_ref, width=width, height=height, quality=quality, wait=wait
    )


@router.post("/preload", response_model=PreloadResponse)
async def preload_images(service: ImageCacheDep, payload: PreloadRequest) -> PreloadResponse:
    warmed = await service.preload(payload.urls)
    return PreloadResponse(requested=len(payload.urls), warmed=warmed)


@router.get("/stats", response_model=CacheStats)
async def get_image_cache_stats(service: ImageCacheDep) -> CacheStats:
    return service.get_cache_stats()


@router.delete("/cache", status_code=status.HTTP_204_NO_CONTENT)
async def clear_image_cache(service: ImageCacheDep) -> None:
    await service.clear_cache()
