# src/app/main.py
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from app.api.dependencies import build_http_client
from app.api.v1.router import api_router
from app.core.config import Settings, get_settings
from app.core.metrics import REQUEST_COUNT
from app.domain.ports import ProductProviderPort
from app.services.container import build_container

logger = logging.getLogger(__name__)


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        REQUEST_COUNT.labels(
            method=request.method,
            path=request.url.path,
            status_code=str(response.status_code),
        ).inc()
        return response


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings: Settings = app.state.settings
    logging.basicConfig(level=settings.log_level.upper())

    # Startup: HTTP Client und Cache-Container genau einmal bauen
    client = build_http_client(settings)
    container = build_container(settings, client, providers=app.state.providers)
    await container.start(sweep_interval_seconds=settings.sweep_interval_seconds)
    app.state.cache = container
    logger.info("Cache ready in %s", settings.cache_dir)
    try:
        yield
    finally:
        # Shutdown: Gracefully schließen
        await container.stop()
        await client.aclose()


def create_app(
    settings: Settings | None = None,
    providers: dict[str, ProductProviderPort] | None = None,
) -> FastAPI:
    settings = settings or get_settings()

    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    application.state.settings = settings
    application.state.providers = providers

    # Rate Limiting
    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    application.state.limiter = limiter
    application.add_exception_handler(
        RateLimitExceeded, _rate_limit_exceeded_handler  # type: ignore[arg-type]
    )
    application.add_middleware(SlowAPIMiddleware)

    # Metrics Middleware
    application.add_middleware(MetricsMiddleware)

    # CORS
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type"],
    )

    application.include_router(api_router)

    @application.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {"status": "ok", "version": settings.app_version}

    @application.get("/readyz", tags=["Health"])
    async def readiness_check(request: Request) -> dict[str, str]:
        ready = getattr(request.app.state, "cache", None) is not None
        return {"status": "ready" if ready else "starting"}

    @application.get("/metrics", tags=["Monitoring"])
    async def metrics_endpoint() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return application


app = create_app()
