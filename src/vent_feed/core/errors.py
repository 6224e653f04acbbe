"""Error taxonomy shared by the engine, its backends and the API.

``ActionForbidden`` and ``ValidationFailure`` are raised synchronously and are
never retried. ``TransientIOFailure`` wraps backend or network failures and
triggers rollback of optimistic state. ``NotFound`` signals an entity that
disappeared concurrently; the view builder treats it as an implicit delete.
"""

from __future__ import annotations


class FeedError(RuntimeError):
    """Base exception for all feed engine failures."""


class ActionForbidden(FeedError):
    """Raised when the viewer may not perform an action.

    Examples are liking one's own post, mutating without a session, or
    deleting content owned by someone else.
    """


class TransientIOFailure(FeedError):
    """Raised when a read, write, upload or live stream fails in transit."""


class NotFound(FeedError):
    """Raised when an entity no longer exists in the backend."""


class ValidationFailure(FeedError):
    """Raised for malformed user input such as an empty or oversize body."""
