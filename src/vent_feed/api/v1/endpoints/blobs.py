"""Serves blobs stored by the embedded backend."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Response, status

from vent_feed.backend.sql import SqlBackend

from ..dependencies import BackendDep

router = APIRouter(prefix="/blobs", tags=["blobs"])


@router.get("/{key:path}")
async def get_blob(key: str, backend: BackendDep) -> Response:
    if not isinstance(backend, SqlBackend):
        # Hosted backends serve their own public URLs.
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Blob not found")
    return Response(content=backend.get_blob(key), media_type="image/jpeg")
