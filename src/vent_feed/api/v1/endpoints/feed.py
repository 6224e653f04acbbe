"""Feed endpoints: the live, filtered list of thoughts."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from vent_feed.core.errors import ValidationFailure
from vent_feed.schemas import CATEGORY_ALL, FeedItemOut, LinkPreviewOut
from vent_feed.services.projection import project

from ..dependencies import EngineDep

router = APIRouter(prefix="/feed", tags=["feed"])


@router.get("", response_model=list[FeedItemOut])
async def list_feed(
    engine: EngineDep,
    category: str = CATEGORY_ALL,
    search: str = "",
) -> list[FeedItemOut]:
    """Return the feed newest first, filtered by category and search text."""
    records = engine.all_records()
    try:
        visible = set(project(records, category, search))
    except ValueError as err:
        raise ValidationFailure(f"Unknown category: {category}") from err
    return [FeedItemOut.from_record(record) for record in records if record.post.id in visible]


@router.get("/{post_id}", response_model=FeedItemOut)
async def get_feed_item(post_id: str, engine: EngineDep) -> FeedItemOut:
    record = engine.get(post_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    return FeedItemOut.from_record(record)


@router.get("/{post_id}/preview", response_model=LinkPreviewOut | None)
async def get_link_preview(post_id: str, engine: EngineDep) -> LinkPreviewOut | None:
    """Return a preview card for the first link in the post, if any."""
    record = engine.get(post_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    preview = await engine.link_previews.preview_for(record.post.body)
    if preview is None:
        return None
    return LinkPreviewOut(
        type=preview.type,
        title=preview.title,
        thumbnail=preview.thumbnail,
        brand_color=preview.brand_color,
        url=preview.url,
    )
