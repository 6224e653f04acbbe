"""Like endpoints backed by the optimistic mutation coordinator."""

from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from vent_feed.services.feed_engine import FeedEngine

from ..dependencies import EngineDep

router = APIRouter(prefix="/posts", tags=["likes"])


class LikeOut(BaseModel):
    post_id: str
    liked: bool
    like_count: int
    changed: bool


def _like_state(engine: FeedEngine, post_id: str, changed: bool) -> LikeOut:
    record = engine.get(post_id)
    return LikeOut(
        post_id=post_id,
        liked=record.is_liked_by_viewer if record is not None else False,
        like_count=record.like_count if record is not None else 0,
        changed=changed,
    )


@router.put("/{post_id}/like", response_model=LikeOut)
async def like_post(post_id: str, engine: EngineDep) -> LikeOut:
    """Like a post. Repeating the request while it is pending is a no-op."""
    changed = await engine.like(post_id)
    return _like_state(engine, post_id, changed)


@router.delete("/{post_id}/like", response_model=LikeOut)
async def unlike_post(post_id: str, engine: EngineDep) -> LikeOut:
    changed = await engine.unlike(post_id)
    return _like_state(engine, post_id, changed)
