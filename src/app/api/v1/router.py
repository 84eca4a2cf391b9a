# src/app/api/v1/router.py
from fastapi import APIRouter

from app.api.v1 import cache, images, products

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(images.router)
api_router.include_router(products.router)
api_router.include_router(cache.router)
