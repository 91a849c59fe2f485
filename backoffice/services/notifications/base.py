"""
Notification Connection Abstract Base Class

Defines the interface a live subscriber must implement to receive pushed
frames, plus the topic names and the role -> topic visibility matrix.

Implementations:
    - WebSocketConnection (websocket.py): a FastAPI WebSocket with an outbox
    - RecordingConnection (mock.py): keeps frames in memory
"""

from abc import ABC, abstractmethod
from typing import Optional

from backoffice.models import UserRole


class Topic:
    """Broadcast topic names as clients spell them."""
    ORDERS = "orders"
    KITCHEN = "kitchen"
    DELIVERIES = "deliveries"
    DELIVERY_STAFF = "delivery-staff"
    NOTIFICATIONS = "notifications"
    SYSTEM = "system"


PRIVATE_SCOPE = "private"

ALL_TOPICS = frozenset({
    Topic.ORDERS,
    Topic.KITCHEN,
    Topic.DELIVERIES,
    Topic.DELIVERY_STAFF,
    Topic.NOTIFICATIONS,
    Topic.SYSTEM,
})

ROLE_TOPICS: dict[UserRole, frozenset[str]] = {
    UserRole.ADMIN: ALL_TOPICS,
    UserRole.MANAGER: ALL_TOPICS,
    UserRole.KITCHEN_STAFF: frozenset({
        Topic.ORDERS,
        Topic.KITCHEN,
        Topic.NOTIFICATIONS,
        Topic.SYSTEM,
    }),
    UserRole.DELIVERY_STAFF: frozenset({
        Topic.ORDERS,
        Topic.DELIVERIES,
        Topic.DELIVERY_STAFF,
        Topic.NOTIFICATIONS,
        Topic.SYSTEM,
    }),
}


class BaseConnection(ABC):
    """
    A live subscriber.

    push() must not block: it hands the frame to the connection's own
    delivery mechanism and returns. A connection that can no longer accept
    frames raises DispatchFailure.
    """

    def __init__(self, connection_id: str, role: UserRole, user_id: Optional[str] = None):
        self.connection_id = connection_id
        self.role = role
        self.user_id = user_id

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the transport name."""
        pass

    @property
    @abstractmethod
    def is_open(self) -> bool:
        pass

    @abstractmethod
    def push(self, frame: str) -> None:
        """Hand one serialized frame to the transport."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__}(id={self.connection_id}, "
            f"role={self.role.value}, user={self.user_id})>"
        )
