"""
In-Memory Persistence Gateway

Dictionary-backed store used in development mode (ENV_MODE=development)
and by the test-suite. Entities are frozen dataclasses, so storing the
instance itself is already a snapshot.

Behavior:
    - Sequential integer ids per entity kind
    - Version-checked saves, same contract as the SQL gateway
    - Catalog and staff are seeded through add_product / add_staff_member
"""

import itertools
import logging
from dataclasses import replace
from typing import Optional

from backoffice.core.exceptions import ConflictError, NotFoundError
from backoffice.domain import Order, Delivery, StaffMember, Product
from backoffice.models import OrderStatus, DeliveryStatus, UserRole
from backoffice.services.persistence.base import BasePersistenceGateway

logger = logging.getLogger(__name__)


class InMemoryGateway(BasePersistenceGateway):
    """
    Process-local implementation of the persistence gateway.

    Example:
        >>> gateway = InMemoryGateway()
        >>> gateway.add_product(Product(id=1, name="Garlic Bread", price=Decimal("6.99")))
        >>> await gateway.load_product(1)
        Product(id=1, name='Garlic Bread', ...)
    """

    def __init__(self):
        self._orders: dict[int, Order] = {}
        self._deliveries: dict[int, Delivery] = {}
        self._staff: dict[int, StaffMember] = {}
        self._products: dict[int, Product] = {}
        self._order_ids = itertools.count(1)
        self._delivery_ids = itertools.count(1)
        logger.info("InMemoryGateway initialized")

    @property
    def provider_name(self) -> str:
        return "memory"

    # =========================================================================
    # SEEDING
    # =========================================================================

    def add_product(self, product: Product) -> Product:
        self._products[product.id] = product
        return product

    def add_staff_member(self, member: StaffMember) -> StaffMember:
        self._staff[member.id] = member
        return member

    # =========================================================================
    # ORDERS
    # =========================================================================

    async def load_order(self, order_id: int) -> Optional[Order]:
        return self._orders.get(order_id)

    async def save_order(self, order: Order) -> Order:
        if order.id is None:
            stored = replace(order, id=next(self._order_ids), version=0)
        else:
            current = self._orders.get(order.id)
            if current is None:
                raise NotFoundError("Order", order.id)
            if current.version != order.version:
                raise ConflictError(
                    f"Order #{order.id} was modified concurrently "
                    f"(expected version {order.version}, found {current.version})"
                )
            stored = replace(order, version=order.version + 1)

        self._orders[stored.id] = stored
        return stored

    async def list_orders(self, status: Optional[OrderStatus] = None) -> list[Order]:
        orders = [o for o in self._orders.values() if status is None or o.status == status]
        return sorted(orders, key=lambda o: (o.created_at, o.id), reverse=True)

    # =========================================================================
    # DELIVERIES
    # =========================================================================

    async def load_delivery(self, delivery_id: int) -> Optional[Delivery]:
        return self._deliveries.get(delivery_id)

    async def save_delivery(self, delivery: Delivery) -> Delivery:
        if delivery.id is None:
            stored = replace(delivery, id=next(self._delivery_ids), version=0)
        else:
            current = self._deliveries.get(delivery.id)
            if current is None:
                raise NotFoundError("Delivery", delivery.id)
            if current.version != delivery.version:
                raise ConflictError(
                    f"Delivery #{delivery.id} was modified concurrently "
                    f"(expected version {delivery.version}, found {current.version})"
                )
            stored = replace(delivery, version=delivery.version + 1)

        self._deliveries[stored.id] = stored
        return stored

    async def load_delivery_by_order(self, order_id: int) -> Optional[Delivery]:
        matches = sorted(
            (d for d in self._deliveries.values() if d.order_id == order_id),
            key=lambda d: d.id,
            reverse=True,
        )
        for delivery in matches:
            if delivery.is_active:
                return delivery
        return matches[0] if matches else None

    async def list_deliveries(
        self,
        status: Optional[DeliveryStatus] = None,
        driver_id: Optional[int] = None,
    ) -> list[Delivery]:
        deliveries = [
            d for d in self._deliveries.values()
            if (status is None or d.status == status)
            and (driver_id is None or d.driver_id == driver_id)
        ]
        return sorted(deliveries, key=lambda d: d.id, reverse=True)

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def load_staff_member(self, user_id: int) -> Optional[StaffMember]:
        return self._staff.get(user_id)

    async def list_staff(self, role: Optional[UserRole] = None) -> list[StaffMember]:
        return sorted(
            (m for m in self._staff.values() if role is None or m.role == role),
            key=lambda m: m.id,
        )

    async def load_product(self, product_id: int) -> Optional[Product]:
        return self._products.get(product_id)

    async def health_check(self) -> bool:
        """Memory is always reachable."""
        return True
