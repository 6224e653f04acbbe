# src/vent_feed/services/__init__.py
"""Feed engine services: live sync, aggregation, mutations and projection."""

from .aggregator import AggregateViewBuilder
from .feed_engine import FeedEngine, OperationStatus
from .link_preview import LinkPreview, LinkPreviewResolver, extract_first_url, get_link_preview
from .multiplexer import MuxEvent, ResubscribePolicy, StreamHandle, SubscriptionMultiplexer
from .notifications import NotificationFeed
from .optimistic import OptimisticMutationCoordinator
from .posts import PostService, get_visible_profile, register_user
from .projection import project
from .reply_counter import ReplyCounter, ReplyRoot, backend_children_fetcher

__all__ = [
    "AggregateViewBuilder",
    "FeedEngine",
    "OperationStatus",
    "LinkPreview",
    "LinkPreviewResolver",
    "extract_first_url",
    "get_link_preview",
    "MuxEvent",
    "ResubscribePolicy",
    "StreamHandle",
    "SubscriptionMultiplexer",
    "NotificationFeed",
    "OptimisticMutationCoordinator",
    "PostService",
    "get_visible_profile",
    "register_user",
    "project",
    "ReplyCounter",
    "ReplyRoot",
    "backend_children_fetcher",
]
