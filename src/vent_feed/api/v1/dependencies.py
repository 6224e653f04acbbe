"""Shared API dependencies: viewer sessions, backend and per-viewer engines."""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from vent_feed.backend.base import Backend
from vent_feed.core.session import ViewerSession
from vent_feed.services.feed_engine import FeedEngine
from vent_feed.services.posts import PostService

# Configure logger for this module
logger = logging.getLogger(__name__)

# Bearer token is optional; signed-out viewers can still read the feed.
bearer_scheme = HTTPBearer(auto_error=False)


class EngineRegistry:
    """Keeps one running FeedEngine per viewer."""

    def __init__(self, backend: Backend) -> None:
        self.backend = backend
        self._engines: dict[str | None, FeedEngine] = {}
        self._lock = asyncio.Lock()

    async def engine_for(self, session: ViewerSession) -> FeedEngine:
        async with self._lock:
            engine = self._engines.get(session.viewer_id)
            if engine is None:
                engine = FeedEngine(session, self.backend)
                await engine.start()
                self._engines[session.viewer_id] = engine
                logger.info("Started feed engine for %s", session.viewer_id or "anonymous")
            return engine

    async def close(self) -> None:
        async with self._lock:
            engines = list(self._engines.values())
            self._engines.clear()
        for engine in engines:
            await engine.close()


def get_backend(request: Request) -> Backend:
    """Return the backend shared by the application."""
    return request.app.state.backend


def get_registry(request: Request) -> EngineRegistry:
    return request.app.state.engines


def get_viewer_session(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    x_viewer_id: Annotated[str | None, Header()] = None,
) -> ViewerSession:
    """Build the viewer session from request headers.

    Args:
        credentials: Optional bearer token, forwarded to backends that need it.
        x_viewer_id: Identifier of the signed-in viewer, if any.

    Returns:
        ViewerSession, anonymous when no viewer id was sent.
    """
    token = credentials.credentials if credentials is not None else None
    return ViewerSession(viewer_id=x_viewer_id or None, access_token=token)


BackendDep = Annotated[Backend, Depends(get_backend)]
RegistryDep = Annotated[EngineRegistry, Depends(get_registry)]
SessionDep = Annotated[ViewerSession, Depends(get_viewer_session)]


async def get_engine(session: SessionDep, registry: RegistryDep) -> FeedEngine:
    return await registry.engine_for(session)


def get_post_service(session: SessionDep, backend: BackendDep) -> PostService:
    return PostService(session, backend)


EngineDep = Annotated[FeedEngine, Depends(get_engine)]
PostServiceDep = Annotated[PostService, Depends(get_post_service)]
