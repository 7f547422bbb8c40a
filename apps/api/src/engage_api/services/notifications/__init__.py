"""Notification service package."""

from .backend import InMemoryPushBackend, LinePushBackend, PushBackend, build_push_backend
from .service import (
    EngagementEvent,
    NotificationCategory,
    NotificationDispatcher,
    NotificationEvent,
    NotificationService,
)

__all__ = [
    "EngagementEvent",
    "InMemoryPushBackend",
    "LinePushBackend",
    "NotificationCategory",
    "NotificationDispatcher",
    "NotificationEvent",
    "NotificationService",
    "PushBackend",
    "build_push_backend",
]
