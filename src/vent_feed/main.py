# src/vent_feed/main.py
"""Main entry point for the vent feed API."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from vent_feed.api.v1 import (
    blobs_router,
    feed_router,
    likes_router,
    notifications_router,
    posts_router,
    users_router,
)
from vent_feed.api.v1.dependencies import EngineRegistry
from vent_feed.backend import Backend, build_backend
from vent_feed.core.errors import (
    ActionForbidden,
    FeedError,
    NotFound,
    TransientIOFailure,
    ValidationFailure,
)
from vent_feed.core.settings import settings

# Configure logger for this module
logger = logging.getLogger(__name__)

HTTP_UNPROCESSABLE_CONTENT = 422

_STATUS_BY_ERROR: tuple[tuple[type[FeedError], int], ...] = (
    (ActionForbidden, status.HTTP_403_FORBIDDEN),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (ValidationFailure, HTTP_UNPROCESSABLE_CONTENT),
    (TransientIOFailure, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def status_for(error: FeedError) -> int:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def feed_error_handler(request: Request, exc: FeedError) -> JSONResponse:
    code = status_for(exc)
    if code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=code, content={"detail": str(exc)})


def create_app(backend: Backend | None = None) -> FastAPI:
    """Build the API around ``backend``, or the one selected by settings."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.backend = backend or build_backend()
        app.state.engines = EngineRegistry(app.state.backend)
        try:
            yield
        finally:
            await app.state.engines.close()
            await app.state.backend.close()

    app = FastAPI(
        title=settings.app_name,
        description="Live feed of anonymous thoughts",
        version=settings.app_version,
        lifespan=lifespan,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add GZip middleware for compression
    app.add_middleware(GZipMiddleware)

    app.add_exception_handler(FeedError, feed_error_handler)

    # Include API routers
    app.include_router(feed_router, prefix="/api/v1")
    app.include_router(posts_router, prefix="/api/v1")
    app.include_router(likes_router, prefix="/api/v1")
    app.include_router(notifications_router, prefix="/api/v1")
    app.include_router(users_router, prefix="/api/v1")
    app.include_router(blobs_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint to verify the service is running."""
        return {"status": "ok"}

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint with basic information about the API."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "docs": "/docs",
        }

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("vent_feed.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
