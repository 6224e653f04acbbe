"""Notification inbox endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Response, status
from pydantic import BaseModel

from vent_feed.core.errors import ActionForbidden
from vent_feed.schemas import Notification
from vent_feed.services.feed_engine import FeedEngine
from vent_feed.services.notifications import NotificationFeed

from ..dependencies import EngineDep

router = APIRouter(prefix="/notifications", tags=["notifications"])


class InboxOut(BaseModel):
    unread: int
    items: list[Notification]


def _inbox(engine: FeedEngine) -> NotificationFeed:
    if engine.notifications is None:
        raise ActionForbidden("You must be logged in to see notifications")
    return engine.notifications


@router.get("", response_model=InboxOut)
async def list_notifications(engine: EngineDep) -> InboxOut:
    inbox = _inbox(engine)
    return InboxOut(unread=inbox.unread_count, items=inbox.items())


@router.post("/{notification_id}/read", status_code=status.HTTP_204_NO_CONTENT)
async def mark_read(notification_id: str, engine: EngineDep) -> Response:
    await _inbox(engine).mark_read(notification_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/read", response_model=InboxOut)
async def mark_all_read(engine: EngineDep) -> InboxOut:
    inbox = _inbox(engine)
    await inbox.mark_all_read()
    return InboxOut(unread=inbox.unread_count, items=inbox.items())
