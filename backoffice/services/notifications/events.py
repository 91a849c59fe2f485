"""
Domain events and their routing.

A NotificationEvent is built by a coordinator after its change has been
persisted. It already knows where it goes: a set of broadcast topics, or
one target user for private delivery. The builders below are the only
place event wording and routing are decided.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from backoffice.domain import Order, Delivery, utcnow
from backoffice.models import OrderStatus
from backoffice.schemas import NotificationFrame, OrderResponse, DeliveryResponse
from backoffice.services.notifications.base import Topic


class EventType(str, Enum):
    ORDER_CREATED = "ORDER_CREATED"
    ORDER_STATUS_CHANGED = "ORDER_STATUS_CHANGED"
    DELIVERY_ASSIGNED = "DELIVERY_ASSIGNED"
    DELIVERY_STATUS_UPDATED = "DELIVERY_STATUS_UPDATED"
    SYSTEM_ALERT = "SYSTEM_ALERT"
    USER_NOTIFICATION = "USER_NOTIFICATION"


@dataclass(frozen=True)
class NotificationEvent:
    """
    Immutable notification ready for fan-out.

    Attributes:
        event_type: What happened
        message: Human-readable summary
        payload: JSON-compatible data attached to the frame
        topics: Broadcast topics (empty for private events)
        target_user_id: Recipient of a private event
        created_at: Emission time (UTC)
    """
    event_type: EventType
    message: str
    payload: Any = None
    topics: tuple[str, ...] = ()
    target_user_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_private(self) -> bool:
        return self.target_user_id is not None

    def to_frame(self) -> str:
        """Serialize to the JSON text pushed to clients."""
        frame = NotificationFrame(
            type=self.event_type.value,
            message=self.message,
            data=self.payload,
            user_id=self.target_user_id,
            timestamp=self.created_at,
        )
        return frame.model_dump_json(by_alias=True)


def order_snapshot(order: Order) -> dict[str, Any]:
    return OrderResponse.model_validate(order).model_dump(mode="json", by_alias=True)


def delivery_snapshot(delivery: Delivery) -> dict[str, Any]:
    return DeliveryResponse.model_validate(delivery).model_dump(mode="json", by_alias=True)


# =============================================================================
# ORDER EVENTS
# =============================================================================

def order_created(order: Order) -> NotificationEvent:
    return NotificationEvent(
        event_type=EventType.ORDER_CREATED,
        message=f"New order #{order.id} has been created",
        payload=order_snapshot(order),
        topics=(Topic.ORDERS, Topic.NOTIFICATIONS),
    )


def kitchen_order_created(order: Order) -> NotificationEvent:
    return NotificationEvent(
        event_type=EventType.ORDER_CREATED,
        message=f"New order #{order.id} for kitchen preparation",
        payload=order_snapshot(order),
        topics=(Topic.KITCHEN,),
    )


def order_status_changed(order: Order, old_status: OrderStatus) -> NotificationEvent:
    """
    Route a status change to orders and kitchen; READY_FOR_DELIVERY
    is also announced to the drivers' topic.
    """
    topics = [Topic.ORDERS, Topic.KITCHEN]
    if order.status == OrderStatus.READY_FOR_DELIVERY:
        topics.append(Topic.DELIVERY_STAFF)

    return NotificationEvent(
        event_type=EventType.ORDER_STATUS_CHANGED,
        message=f"Order #{order.id} status changed to {order.status.value}",
        payload={
            "orderId": order.id,
            "oldStatus": old_status.value,
            "newStatus": order.status.value,
            "order": order_snapshot(order),
        },
        topics=tuple(topics),
    )


# =============================================================================
# DELIVERY EVENTS
# =============================================================================

def delivery_assigned(delivery: Delivery) -> NotificationEvent:
    return NotificationEvent(
        event_type=EventType.DELIVERY_ASSIGNED,
        message=f"Delivery #{delivery.id} has been assigned to driver",
        payload=delivery_snapshot(delivery),
        topics=(Topic.DELIVERIES, Topic.DELIVERY_STAFF, Topic.NOTIFICATIONS),
    )


def driver_assignment(delivery: Delivery) -> NotificationEvent:
    """Private copy of an assignment for the driver who got it."""
    return NotificationEvent(
        event_type=EventType.DELIVERY_ASSIGNED,
        message=f"New delivery assignment #{delivery.id}",
        payload=delivery_snapshot(delivery),
        target_user_id=str(delivery.driver_id),
    )


def delivery_status_updated(delivery: Delivery, old_status) -> NotificationEvent:
    return NotificationEvent(
        event_type=EventType.DELIVERY_STATUS_UPDATED,
        message=f"Delivery #{delivery.id} status changed to {delivery.status.value}",
        payload={
            "deliveryId": delivery.id,
            "orderId": delivery.order_id,
            "oldStatus": old_status.value,
            "newStatus": delivery.status.value,
            "delivery": delivery_snapshot(delivery),
        },
        topics=(Topic.DELIVERIES, Topic.NOTIFICATIONS),
    )


# =============================================================================
# OPERATOR MESSAGES
# =============================================================================

def system_alert(message: str, data: Any = None) -> NotificationEvent:
    return NotificationEvent(
        event_type=EventType.SYSTEM_ALERT,
        message=message,
        payload=data,
        topics=(Topic.SYSTEM, Topic.NOTIFICATIONS),
    )


def user_notification(user_id: str, message: str, data: Any = None) -> NotificationEvent:
    return NotificationEvent(
        event_type=EventType.USER_NOTIFICATION,
        message=message,
        payload=data,
        target_user_id=str(user_id),
    )
