"""Post and reply endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Response, status
from pydantic import BaseModel

from vent_feed.backend.base import REPLIES, Ordering, SortOrder
from vent_feed.schemas import Post, PostCreate, ReplyCreate, ReplyNode

from ..dependencies import BackendDep, PostServiceDep

router = APIRouter(prefix="/posts", tags=["posts"])


class ReplyIn(BaseModel):
    body: str
    parent_reply_id: str | None = None


@router.post("", response_model=Post, status_code=status.HTTP_201_CREATED)
async def create_post(payload: PostCreate, service: PostServiceDep) -> Post:
    """Share a new thought."""
    return await service.create_post(payload)


@router.delete("/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_post(post_id: str, service: PostServiceDep) -> Response:
    await service.delete_post(post_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{post_id}/replies", response_model=list[ReplyNode])
async def list_replies(post_id: str, backend: BackendDep) -> list[ReplyNode]:
    """Return every reply of the post, oldest first, tombstones included."""
    rows = await backend.query(
        REPLIES, {"post_id": post_id}, Ordering("created_at", SortOrder.ASC)
    )
    return [ReplyNode.model_validate(row) for row in rows]


@router.post(
    "/{post_id}/replies", response_model=ReplyNode, status_code=status.HTTP_201_CREATED
)
async def create_reply(post_id: str, payload: ReplyIn, service: PostServiceDep) -> ReplyNode:
    return await service.create_reply(
        ReplyCreate(post_id=post_id, body=payload.body, parent_reply_id=payload.parent_reply_id)
    )


@router.delete("/{post_id}/replies/{reply_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_reply(post_id: str, reply_id: str, service: PostServiceDep) -> Response:
    await service.delete_reply(reply_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
