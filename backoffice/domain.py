"""
Domain Entities

Immutable values exchanged between the coordinators and the persistence
gateway. A coordinator never mutates an entity in place: it builds the
next version with dataclasses.replace() and hands it to the gateway, so a
failed save leaves nothing half-applied.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from backoffice.models import OrderStatus, OrderType, DeliveryStatus, UserRole

CENTS = Decimal("0.01")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_money(value) -> Decimal:
    """Quantize to two decimal places. Floats go through str() first."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Product:
    id: int
    name: str
    price: Decimal
    is_available: bool = True


@dataclass(frozen=True)
class StaffMember:
    id: int
    username: str
    full_name: str
    role: UserRole
    enabled: bool = True

    @property
    def can_drive(self) -> bool:
        return self.enabled and self.role == UserRole.DELIVERY_STAFF


@dataclass(frozen=True)
class OrderItem:
    """A line item; unit_price is the catalog price at order time."""
    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return to_money(self.unit_price * self.quantity)


@dataclass(frozen=True)
class Order:
    id: Optional[int]
    customer_details: str
    order_type: OrderType
    status: OrderStatus
    items: tuple[OrderItem, ...]
    total_price: Decimal
    created_at: datetime = field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


@dataclass(frozen=True)
class Delivery:
    id: Optional[int]
    order_id: int
    driver_id: Optional[int]
    status: DeliveryStatus
    delivery_address: Optional[str] = None
    delivery_notes: Optional[str] = None
    dispatched_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in (DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED)

    @property
    def is_active(self) -> bool:
        return self.status != DeliveryStatus.CANCELLED
