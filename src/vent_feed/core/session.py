"""Viewer session passed explicitly into the engine."""

from __future__ import annotations

from dataclasses import dataclass

from vent_feed.core.errors import ActionForbidden


@dataclass(frozen=True)
class ViewerSession:
    """Identity of the person looking at the feed.

    ``viewer_id`` is None for signed-out sessions, which may read the feed
    but not mutate it. ``access_token`` is forwarded to backends that
    authenticate requests on behalf of the viewer.
    """

    viewer_id: str | None = None
    username: str | None = None
    access_token: str | None = None

    @property
    def authenticated(self) -> bool:
        return self.viewer_id is not None

    def require_viewer(self, action: str = "perform this action") -> str:
        """Return the viewer id or raise ``ActionForbidden`` when signed out."""
        if self.viewer_id is None:
            raise ActionForbidden(f"You must be logged in to {action}")
        return self.viewer_id


ANONYMOUS_SESSION = ViewerSession()
