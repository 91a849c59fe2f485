"""
Pytest configuration and fixtures.

Everything runs against the seeded in-memory gateway unless a test asks
for the SQLite-backed one. The dispatcher worker is not started for
coordinator tests; they call `await dispatcher.drain()` to fan out
whatever was submitted.
"""

import asyncio
import os

os.environ.setdefault("ENV_MODE", "development")
os.environ.setdefault("EXPORT_CLOSED_ORDERS", "false")
os.environ.setdefault("REDIS_URL", "redis://localhost:6399/0")

import pytest

from backoffice.models import OrderStatus, OrderType, DeliveryStatus, UserRole
from backoffice.seed import seed_gateway
from backoffice.services import OrderCoordinator, DeliveryCoordinator
from backoffice.services.notifications import (
    NotificationDispatcher,
    RecordingConnection,
    SubscriptionRegistry,
)
from backoffice.services.persistence import InMemoryGateway

# Garlic Bread (5.99) x2 + Pasta Carbonara (13.99) x1 = 25.97
SCENARIO_ITEMS = [(3, 2), (6, 1)]

DRIVER_ID = 4
SECOND_DRIVER_ID = 5
DISABLED_DRIVER_ID = 6
CHEF_ID = 3

KITCHEN_PATH = [OrderStatus.CONFIRMED, OrderStatus.PREPARING]


class YieldingGateway(InMemoryGateway):
    """
    In-memory gateway that gives up the event loop inside every call, so
    concurrent coordinator calls interleave the way they do over a real
    database. Every delivery write records the owning order's stored
    status at the instant of the write.
    """

    def __init__(self):
        super().__init__()
        self.delivery_writes: list[tuple[DeliveryStatus, OrderStatus]] = []

    async def load_order(self, order_id):
        await _pause()
        return await super().load_order(order_id)

    async def save_order(self, order):
        await _pause()
        return await super().save_order(order)

    async def load_delivery(self, delivery_id):
        await _pause()
        return await super().load_delivery(delivery_id)

    async def save_delivery(self, delivery):
        await _pause()
        self.delivery_writes.append((delivery.status, self._orders[delivery.order_id].status))
        return await super().save_delivery(delivery)

    async def load_delivery_by_order(self, order_id):
        await _pause()
        return await super().load_delivery_by_order(order_id)

    async def load_staff_member(self, user_id):
        await _pause()
        return await super().load_staff_member(user_id)


async def _pause():
    for _ in range(3):
        await asyncio.sleep(0)


@pytest.fixture
def gateway():
    gw = InMemoryGateway()
    seed_gateway(gw)
    return gw


@pytest.fixture
def registry():
    return SubscriptionRegistry()


@pytest.fixture
def dispatcher(registry):
    return NotificationDispatcher(registry, queue_size=1000)


@pytest.fixture
def orders(gateway, dispatcher):
    return OrderCoordinator(gateway, dispatcher)


@pytest.fixture
def deliveries(gateway, orders, dispatcher):
    return DeliveryCoordinator(gateway, orders, dispatcher)


@pytest.fixture
def slow_gateway():
    gw = YieldingGateway()
    seed_gateway(gw)
    return gw


@pytest.fixture
def slow_orders(slow_gateway, dispatcher):
    return OrderCoordinator(slow_gateway, dispatcher)


@pytest.fixture
def slow_deliveries(slow_gateway, slow_orders, dispatcher):
    return DeliveryCoordinator(slow_gateway, slow_orders, dispatcher)


@pytest.fixture
def kitchen(registry):
    conn = RecordingConnection("kitchen-1", UserRole.KITCHEN_STAFF, user_id=str(CHEF_ID))
    registry.subscribe(conn, "kitchen")
    return conn


@pytest.fixture
def driver_feed(registry):
    conn = RecordingConnection("driver-1", UserRole.DELIVERY_STAFF, user_id=str(DRIVER_ID))
    registry.subscribe(conn, "deliveries")
    return conn


async def create_scenario_order(orders, order_type=OrderType.DELIVERY):
    return await orders.create_order(
        "Name: John Doe | Phone: 555-1234 | Address: 123 Main Street",
        order_type,
        SCENARIO_ITEMS,
    )


async def ready_for_delivery(orders):
    """A DELIVERY order walked to READY_FOR_DELIVERY."""
    order = await create_scenario_order(orders)
    for status in KITCHEN_PATH + [OrderStatus.READY_FOR_DELIVERY]:
        order = await orders.update_status(order.id, status)
    return order
