"""Profile endpoints: sign-up, lookup, per-author posts, avatar and visibility."""

from __future__ import annotations

from fastapi import APIRouter, Request, Response, status
from pydantic import BaseModel

from vent_feed.schemas import FeedItemOut, PublicProfile, UserCreate
from vent_feed.services.posts import get_visible_profile, register_user

from ..dependencies import BackendDep, EngineDep, PostServiceDep, SessionDep

router = APIRouter(prefix="/users", tags=["users"])


class AvatarOut(BaseModel):
    avatar_url: str


class VisibilityIn(BaseModel):
    public_profile: bool


@router.post("", response_model=PublicProfile, status_code=status.HTTP_201_CREATED)
async def create_user(payload: UserCreate, backend: BackendDep) -> PublicProfile:
    """Create the public profile of a newly signed-up user."""
    profile = await register_user(backend, payload.id, payload.username, emoji=payload.emoji)
    return PublicProfile.model_validate(profile)


@router.get("/{user_id}", response_model=PublicProfile)
async def get_user(user_id: str, backend: BackendDep, session: SessionDep) -> PublicProfile:
    """Return a profile; private profiles are only visible to their owner."""
    profile = await get_visible_profile(backend, session, user_id)
    return PublicProfile.model_validate(profile)


@router.get("/{user_id}/posts", response_model=list[FeedItemOut])
async def list_user_posts(
    user_id: str,
    backend: BackendDep,
    session: SessionDep,
    engine: EngineDep,
) -> list[FeedItemOut]:
    """Return the author's thoughts newest first, with the viewer's like state."""
    await get_visible_profile(backend, session, user_id)
    return [FeedItemOut.from_record(record) for record in engine.records_by(user_id)]


@router.put("/me/avatar", response_model=AvatarOut)
async def upload_avatar(request: Request, service: PostServiceDep) -> AvatarOut:
    """Upload a JPEG profile picture sent as the raw request body."""
    url = await service.upload_avatar(await request.body())
    return AvatarOut(avatar_url=url)


@router.patch("/me/visibility", status_code=status.HTTP_204_NO_CONTENT)
async def set_visibility(payload: VisibilityIn, service: PostServiceDep) -> Response:
    await service.set_public_profile(payload.public_profile)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
