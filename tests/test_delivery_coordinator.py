"""
DeliveryCoordinator tests
"""

import asyncio

import pytest

from backoffice.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    OrderNotReadyError,
    TerminalStateError,
    ValidationError,
)
from backoffice.models import OrderStatus, DeliveryStatus, UserRole
from backoffice.services.notifications import RecordingConnection

from tests.conftest import (
    CHEF_ID,
    DISABLED_DRIVER_ID,
    DRIVER_ID,
    KITCHEN_PATH,
    SECOND_DRIVER_ID,
    create_scenario_order,
    ready_for_delivery,
)

ADDRESS = "123 Main Street"


class TestAssign:
    """Driver assignment"""

    @pytest.mark.asyncio
    async def test_assigns_ready_order(self, orders, deliveries):
        order = await ready_for_delivery(orders)
        delivery = await deliveries.assign(order.id, DRIVER_ID, ADDRESS, "Ring twice")

        assert delivery.status == DeliveryStatus.ASSIGNED
        assert delivery.driver_id == DRIVER_ID
        assert delivery.order_id == order.id
        assert delivery.dispatched_at is not None
        assert delivery.delivery_notes == "Ring twice"

    @pytest.mark.asyncio
    async def test_order_must_be_ready(self, orders, deliveries, gateway):
        order = await create_scenario_order(orders)
        with pytest.raises(ValidationError):
            await deliveries.assign(order.id, DRIVER_ID, ADDRESS)
        assert await gateway.list_deliveries() == []

    @pytest.mark.asyncio
    async def test_unknown_order_and_driver(self, orders, deliveries):
        with pytest.raises(NotFoundError):
            await deliveries.assign(999, DRIVER_ID, ADDRESS)

        order = await ready_for_delivery(orders)
        with pytest.raises(NotFoundError):
            await deliveries.assign(order.id, 999, ADDRESS)

    @pytest.mark.asyncio
    async def test_disabled_driver_rejected_before_persistence(self, orders, deliveries, gateway):
        order = await ready_for_delivery(orders)
        with pytest.raises(ValidationError):
            await deliveries.assign(order.id, DISABLED_DRIVER_ID, ADDRESS)
        assert await gateway.list_deliveries() == []

    @pytest.mark.asyncio
    async def test_non_driver_rejected(self, orders, deliveries):
        order = await ready_for_delivery(orders)
        with pytest.raises(ValidationError) as exc_info:
            await deliveries.assign(order.id, CHEF_ID, ADDRESS)
        assert "DELIVERY_STAFF" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_second_assignment_conflicts(self, orders, deliveries, gateway):
        order = await ready_for_delivery(orders)
        await deliveries.assign(order.id, DRIVER_ID, ADDRESS)

        with pytest.raises(ConflictError):
            await deliveries.assign(order.id, SECOND_DRIVER_ID, ADDRESS)
        assert len(await gateway.list_deliveries()) == 1

    @pytest.mark.asyncio
    async def test_cancelled_delivery_can_be_replaced(self, orders, deliveries):
        order = await ready_for_delivery(orders)
        first = await deliveries.assign(order.id, DRIVER_ID, ADDRESS)
        await deliveries.update_status(first.id, DeliveryStatus.CANCELLED)

        second = await deliveries.assign(order.id, SECOND_DRIVER_ID, ADDRESS)
        assert second.id != first.id
        assert (await deliveries.get_delivery_for_order(order.id)).id == second.id

    @pytest.mark.asyncio
    async def test_assignment_events(self, orders, deliveries, dispatcher, registry, driver_feed, kitchen):
        private = RecordingConnection("drv-private", UserRole.DELIVERY_STAFF, user_id=str(DRIVER_ID))
        registry.subscribe(private, "private")
        other = RecordingConnection("drv-2", UserRole.DELIVERY_STAFF, user_id=str(SECOND_DRIVER_ID))
        registry.subscribe(other, "private")

        order = await ready_for_delivery(orders)
        await dispatcher.drain()
        kitchen.frames.clear()

        delivery = await deliveries.assign(order.id, DRIVER_ID, ADDRESS)
        await dispatcher.drain()

        assert driver_feed.types == ["DELIVERY_ASSIGNED"]
        assert private.types == ["DELIVERY_ASSIGNED"]
        assert private.messages[0]["userId"] == str(DRIVER_ID)
        assert private.messages[0]["message"] == f"New delivery assignment #{delivery.id}"
        assert other.frames == []
        assert kitchen.frames == []


class TestUpdateStatus:
    """Delivery status changes coupled to the order"""

    @pytest.mark.asyncio
    async def test_out_for_delivery_advances_ready_order(self, orders, deliveries, dispatcher, kitchen):
        order = await ready_for_delivery(orders)
        delivery = await deliveries.assign(order.id, DRIVER_ID, ADDRESS)
        await dispatcher.drain()
        kitchen.frames.clear()

        delivery = await deliveries.update_status(delivery.id, DeliveryStatus.OUT_FOR_DELIVERY)

        assert delivery.status == DeliveryStatus.OUT_FOR_DELIVERY
        assert (await orders.get_order(order.id)).status == OrderStatus.OUT_FOR_DELIVERY
        await dispatcher.drain()
        assert [m["data"]["newStatus"] for m in kitchen.messages] == ["OUT_FOR_DELIVERY"]

    @pytest.mark.asyncio
    async def test_out_for_delivery_blocked_by_cancelled_order(self, orders, deliveries):
        order = await ready_for_delivery(orders)
        delivery = await deliveries.assign(order.id, DRIVER_ID, ADDRESS)
        await orders.update_status(order.id, OrderStatus.CANCELLED)

        with pytest.raises(OrderNotReadyError):
            await deliveries.update_status(delivery.id, DeliveryStatus.OUT_FOR_DELIVERY)
        assert (await deliveries.get_delivery(delivery.id)).status == DeliveryStatus.ASSIGNED

    @pytest.mark.asyncio
    async def test_delivered_completes_order(self, orders, deliveries, dispatcher, driver_feed, kitchen):
        order = await ready_for_delivery(orders)
        delivery = await deliveries.assign(order.id, DRIVER_ID, ADDRESS)
        await deliveries.update_status(delivery.id, DeliveryStatus.OUT_FOR_DELIVERY)
        await dispatcher.drain()
        driver_feed.frames.clear()
        kitchen.frames.clear()

        delivered = await deliveries.update_status(delivery.id, DeliveryStatus.DELIVERED)

        assert delivered.delivered_at is not None
        assert (await orders.get_order(order.id)).status == OrderStatus.COMPLETED
        await dispatcher.drain()
        assert driver_feed.types == ["DELIVERY_STATUS_UPDATED"]
        assert driver_feed.messages[0]["message"] == f"Delivery #{delivery.id} status changed to DELIVERED"
        assert [m["data"]["newStatus"] for m in kitchen.messages] == ["COMPLETED"]

    @pytest.mark.asyncio
    async def test_repeated_delivered_is_a_no_op(self, orders, deliveries, dispatcher, driver_feed):
        order = await ready_for_delivery(orders)
        delivery = await deliveries.assign(order.id, DRIVER_ID, ADDRESS)
        await deliveries.update_status(delivery.id, DeliveryStatus.OUT_FOR_DELIVERY)
        first = await deliveries.update_status(delivery.id, DeliveryStatus.DELIVERED)
        await dispatcher.drain()
        driver_feed.frames.clear()

        again = await deliveries.update_status(delivery.id, DeliveryStatus.DELIVERED)

        assert again == first
        assert (await orders.get_order(order.id)).status == OrderStatus.COMPLETED
        await dispatcher.drain()
        assert driver_feed.frames == []

    @pytest.mark.asyncio
    async def test_delivered_is_terminal_for_other_targets(self, orders, deliveries):
        order = await ready_for_delivery(orders)
        delivery = await deliveries.assign(order.id, DRIVER_ID, ADDRESS)
        await deliveries.update_status(delivery.id, DeliveryStatus.OUT_FOR_DELIVERY)
        await deliveries.update_status(delivery.id, DeliveryStatus.DELIVERED)

        with pytest.raises(TerminalStateError):
            await deliveries.update_status(delivery.id, DeliveryStatus.CANCELLED)

    @pytest.mark.asyncio
    async def test_skipping_out_for_delivery_is_invalid(self, orders, deliveries):
        order = await ready_for_delivery(orders)
        delivery = await deliveries.assign(order.id, DRIVER_ID, ADDRESS)

        with pytest.raises(InvalidTransitionError):
            await deliveries.update_status(delivery.id, DeliveryStatus.DELIVERED)
        assert (await orders.get_order(order.id)).status == OrderStatus.READY_FOR_DELIVERY

    @pytest.mark.asyncio
    async def test_delivered_with_cancelled_order_keeps_order_cancelled(self, orders, deliveries):
        order = await ready_for_delivery(orders)
        delivery = await deliveries.assign(order.id, DRIVER_ID, ADDRESS)
        await deliveries.update_status(delivery.id, DeliveryStatus.OUT_FOR_DELIVERY)
        await orders.update_status(order.id, OrderStatus.CANCELLED)

        delivered = await deliveries.update_status(delivery.id, DeliveryStatus.DELIVERED)

        assert delivered.status == DeliveryStatus.DELIVERED
        assert (await orders.get_order(order.id)).status == OrderStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_unknown_delivery(self, deliveries):
        with pytest.raises(NotFoundError):
            await deliveries.update_status(42, DeliveryStatus.CANCELLED)


class TestReassignAndDetails:
    """Supplementary delivery operations"""

    @pytest.mark.asyncio
    async def test_reassign_while_assigned(self, orders, deliveries, dispatcher, registry):
        new_driver = RecordingConnection("drv-2", UserRole.DELIVERY_STAFF, user_id=str(SECOND_DRIVER_ID))
        registry.subscribe(new_driver, "private")

        order = await ready_for_delivery(orders)
        delivery = await deliveries.assign(order.id, DRIVER_ID, ADDRESS)
        reassigned = await deliveries.reassign_driver(delivery.id, SECOND_DRIVER_ID)
        await dispatcher.drain()

        assert reassigned.driver_id == SECOND_DRIVER_ID
        assert new_driver.types == ["DELIVERY_ASSIGNED"]

    @pytest.mark.asyncio
    async def test_reassign_rejected_once_on_the_road(self, orders, deliveries):
        order = await ready_for_delivery(orders)
        delivery = await deliveries.assign(order.id, DRIVER_ID, ADDRESS)
        await deliveries.update_status(delivery.id, DeliveryStatus.OUT_FOR_DELIVERY)

        with pytest.raises(ValidationError):
            await deliveries.reassign_driver(delivery.id, SECOND_DRIVER_ID)

    @pytest.mark.asyncio
    async def test_reassign_to_disabled_driver(self, orders, deliveries):
        order = await ready_for_delivery(orders)
        delivery = await deliveries.assign(order.id, DRIVER_ID, ADDRESS)

        with pytest.raises(ValidationError):
            await deliveries.reassign_driver(delivery.id, DISABLED_DRIVER_ID)
        assert (await deliveries.get_delivery(delivery.id)).driver_id == DRIVER_ID

    @pytest.mark.asyncio
    async def test_update_details(self, orders, deliveries):
        order = await ready_for_delivery(orders)
        delivery = await deliveries.assign(order.id, DRIVER_ID, ADDRESS)

        updated = await deliveries.update_details(delivery.id, "9 Side Road", "Back door")
        assert updated.delivery_address == "9 Side Road"
        assert updated.delivery_notes == "Back door"

        await deliveries.update_status(delivery.id, DeliveryStatus.CANCELLED)
        with pytest.raises(ValidationError):
            await deliveries.update_details(delivery.id, "1 Elsewhere")

    @pytest.mark.asyncio
    async def test_stats_and_filters(self, orders, deliveries):
        first = await ready_for_delivery(orders)
        second = await ready_for_delivery(orders)
        d1 = await deliveries.assign(first.id, DRIVER_ID, ADDRESS)
        await deliveries.assign(second.id, SECOND_DRIVER_ID, ADDRESS)
        await deliveries.update_status(d1.id, DeliveryStatus.OUT_FOR_DELIVERY)
        await deliveries.update_status(d1.id, DeliveryStatus.DELIVERED)

        stats = await deliveries.stats()
        assert stats.active_deliveries == 1
        assert stats.completed_deliveries == 1
        assert [d.id for d in await deliveries.list_deliveries(driver_id=DRIVER_ID)] == [d1.id]
        assert len(await deliveries.list_deliveries(status=DeliveryStatus.ASSIGNED)) == 1

    @pytest.mark.asyncio
    async def test_no_delivery_for_order(self, orders, deliveries):
        order = await create_scenario_order(orders)
        with pytest.raises(NotFoundError):
            await deliveries.get_delivery_for_order(order.id)


class TestKitchenOnlyPath:
    """A pickup order never touches delivery topics"""

    @pytest.mark.asyncio
    async def test_pickup_order_is_silent_on_deliveries(self, orders, dispatcher, driver_feed, kitchen):
        order = await create_scenario_order(orders)
        for status in KITCHEN_PATH + [OrderStatus.READY_FOR_PICKUP, OrderStatus.COMPLETED]:
            await orders.update_status(order.id, status)
        await dispatcher.drain()

        assert kitchen.types == ["ORDER_CREATED"] + ["ORDER_STATUS_CHANGED"] * 4
        assert driver_feed.frames == []


class TestAvailableDrivers:
    """Drivers free to take a delivery"""

    @pytest.mark.asyncio
    async def test_enabled_drivers_without_active_delivery(self, orders, deliveries):
        assert [d.id for d in await deliveries.available_drivers()] == [DRIVER_ID, SECOND_DRIVER_ID]

        order = await ready_for_delivery(orders)
        delivery = await deliveries.assign(order.id, DRIVER_ID, ADDRESS)
        assert [d.id for d in await deliveries.available_drivers()] == [SECOND_DRIVER_ID]

        await deliveries.update_status(delivery.id, DeliveryStatus.OUT_FOR_DELIVERY)
        assert [d.id for d in await deliveries.available_drivers()] == [SECOND_DRIVER_ID]

        await deliveries.update_status(delivery.id, DeliveryStatus.DELIVERED)
        drivers = await deliveries.available_drivers()
        assert [d.id for d in drivers] == [DRIVER_ID, SECOND_DRIVER_ID]
        assert all(d.role == UserRole.DELIVERY_STAFF and d.enabled for d in drivers)


class TestOrderChangesDuringDeliveryWork:
    """Order status changes cannot slip between a delivery's check and its write"""

    @pytest.mark.asyncio
    async def test_cancel_while_assigning(self, slow_orders, slow_deliveries, slow_gateway):
        order = await ready_for_delivery(slow_orders)

        assigned, cancelled = await asyncio.gather(
            slow_deliveries.assign(order.id, DRIVER_ID, ADDRESS),
            slow_orders.update_status(order.id, OrderStatus.CANCELLED),
            return_exceptions=True,
        )

        assert assigned.status == DeliveryStatus.ASSIGNED
        assert cancelled.status == OrderStatus.CANCELLED
        assert slow_gateway.delivery_writes == [
            (DeliveryStatus.ASSIGNED, OrderStatus.READY_FOR_DELIVERY)
        ]

    @pytest.mark.asyncio
    async def test_assign_after_cancel_is_rejected(self, slow_orders, slow_deliveries, slow_gateway):
        order = await ready_for_delivery(slow_orders)

        cancelled, assigned = await asyncio.gather(
            slow_orders.update_status(order.id, OrderStatus.CANCELLED),
            slow_deliveries.assign(order.id, DRIVER_ID, ADDRESS),
            return_exceptions=True,
        )

        assert cancelled.status == OrderStatus.CANCELLED
        assert isinstance(assigned, ValidationError)
        assert slow_gateway.delivery_writes == []

    @pytest.mark.asyncio
    async def test_cancel_while_leaving(self, slow_orders, slow_deliveries, slow_gateway):
        order = await ready_for_delivery(slow_orders)
        delivery = await slow_deliveries.assign(order.id, DRIVER_ID, ADDRESS)
        await slow_orders.update_status(order.id, OrderStatus.OUT_FOR_DELIVERY)
        slow_gateway.delivery_writes.clear()

        departed, cancelled = await asyncio.gather(
            slow_deliveries.update_status(delivery.id, DeliveryStatus.OUT_FOR_DELIVERY),
            slow_orders.update_status(order.id, OrderStatus.CANCELLED),
            return_exceptions=True,
        )

        assert cancelled.status == OrderStatus.CANCELLED
        assert all(
            order_status == OrderStatus.OUT_FOR_DELIVERY
            for status, order_status in slow_gateway.delivery_writes
            if status == DeliveryStatus.OUT_FOR_DELIVERY
        )
        stored = await slow_deliveries.get_delivery(delivery.id)
        if isinstance(departed, Exception):
            assert isinstance(departed, OrderNotReadyError)
            assert stored.status == DeliveryStatus.ASSIGNED
        else:
            assert stored.status == DeliveryStatus.OUT_FOR_DELIVERY

    @pytest.mark.asyncio
    async def test_cancel_while_advancing_ready_order(self, slow_orders, slow_deliveries, slow_gateway):
        order = await ready_for_delivery(slow_orders)
        delivery = await slow_deliveries.assign(order.id, DRIVER_ID, ADDRESS)
        slow_gateway.delivery_writes.clear()

        departed, cancelled = await asyncio.gather(
            slow_deliveries.update_status(delivery.id, DeliveryStatus.OUT_FOR_DELIVERY),
            slow_orders.update_status(order.id, OrderStatus.CANCELLED),
            return_exceptions=True,
        )

        assert cancelled.status == OrderStatus.CANCELLED
        assert all(
            order_status == OrderStatus.OUT_FOR_DELIVERY
            for status, order_status in slow_gateway.delivery_writes
            if status == DeliveryStatus.OUT_FOR_DELIVERY
        )
        if isinstance(departed, Exception):
            assert isinstance(departed, OrderNotReadyError)
            assert (await slow_deliveries.get_delivery(delivery.id)).status == DeliveryStatus.ASSIGNED

    @pytest.mark.asyncio
    async def test_delivered_completes_order_under_held_locks(self, slow_orders, slow_deliveries):
        order = await ready_for_delivery(slow_orders)
        delivery = await slow_deliveries.assign(order.id, DRIVER_ID, ADDRESS)

        await slow_deliveries.update_status(delivery.id, DeliveryStatus.OUT_FOR_DELIVERY)
        await slow_deliveries.update_status(delivery.id, DeliveryStatus.DELIVERED)

        assert (await slow_orders.get_order(order.id)).status == OrderStatus.COMPLETED
        assert not slow_orders.locks.is_locked(order.id)
        assert not slow_deliveries.locks.is_locked(delivery.id)
