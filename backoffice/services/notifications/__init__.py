"""
Real-Time Notifications

Registry, dispatcher and connection types for topic-based push.
The application owns one registry and one dispatcher (see main.create_app).

Usage:
    from backoffice.services.notifications import NotificationDispatcher, SubscriptionRegistry

    dispatcher = NotificationDispatcher(SubscriptionRegistry())
    dispatcher.submit(events.order_created(order))
"""

from backoffice.services.notifications.base import (
    ALL_TOPICS,
    PRIVATE_SCOPE,
    ROLE_TOPICS,
    BaseConnection,
    Topic,
)
from backoffice.services.notifications.dispatcher import NotificationDispatcher
from backoffice.services.notifications.events import EventType, NotificationEvent
from backoffice.services.notifications.mock import RecordingConnection
from backoffice.services.notifications.registry import SubscriptionRegistry
from backoffice.services.notifications.websocket import WebSocketConnection

__all__ = [
    "ALL_TOPICS",
    "PRIVATE_SCOPE",
    "ROLE_TOPICS",
    "BaseConnection",
    "Topic",
    "EventType",
    "NotificationEvent",
    "NotificationDispatcher",
    "SubscriptionRegistry",
    "RecordingConnection",
    "WebSocketConnection",
]
