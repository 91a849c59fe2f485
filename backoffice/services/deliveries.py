"""
Delivery Coordinator

Assigns drivers and moves deliveries through their lifecycle, keeping the
owning order in step:

    - a delivery leaves for the road only once its order is OUT_FOR_DELIVERY;
      an order still READY_FOR_DELIVERY is advanced first
    - a DELIVERED delivery completes its order

Order-side steps go through OrderCoordinator so they get the same
validation and events as a direct request. A status change holds the
delivery lock and then the order's lock from OrderCoordinator.locks, so
the order cannot move between the coupling check and the write. Locks
are taken delivery first, then order, never the other way round.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional

from backoffice.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from backoffice.domain import Delivery, StaffMember, utcnow
from backoffice.models import OrderStatus, DeliveryStatus, UserRole
from backoffice.services.lifecycle import (
    RejectionReason,
    TransitionContext,
    next_status,
)
from backoffice.services.locking import KeyedLocks
from backoffice.services.notifications import NotificationDispatcher
from backoffice.services.notifications import events
from backoffice.services.orders import OrderCoordinator
from backoffice.services.persistence import BasePersistenceGateway

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = frozenset({DeliveryStatus.ASSIGNED, DeliveryStatus.OUT_FOR_DELIVERY})


@dataclass(frozen=True)
class DeliveryStats:
    active_deliveries: int
    completed_deliveries: int


class DeliveryCoordinator:
    """
    Delivery assignment and status changes.

    Attributes:
        gateway: Persistence gateway
        orders: Coordinator used for every order-side change
        dispatcher: Receives events after each committed change
    """

    def __init__(
        self,
        gateway: BasePersistenceGateway,
        orders: OrderCoordinator,
        dispatcher: NotificationDispatcher,
    ):
        self.gateway = gateway
        self.orders = orders
        self.dispatcher = dispatcher
        self.locks = KeyedLocks("delivery")

    # =========================================================================
    # ASSIGNMENT
    # =========================================================================

    async def assign(
        self,
        order_id: int,
        driver_id: int,
        delivery_address: str,
        delivery_notes: Optional[str] = None,
    ) -> Delivery:
        """
        Create an ASSIGNED delivery for a READY_FOR_DELIVERY order.

        Every check runs before anything is stored.

        Raises:
            NotFoundError: Unknown order or driver
            ValidationError: Order not ready, driver not an enabled DELIVERY_STAFF
            ConflictError: The order already has a non-cancelled delivery
        """
        delivery_address = (delivery_address or "").strip()
        if not delivery_address:
            raise ValidationError("Delivery address is required")

        # The order lock also keeps the order from leaving READY_FOR_DELIVERY
        # until the new delivery is stored.
        async with self.orders.locks.hold(order_id):
            order = await self.orders.get_order(order_id)
            if order.status != OrderStatus.READY_FOR_DELIVERY:
                raise ValidationError(
                    f"Order must be READY_FOR_DELIVERY to assign delivery "
                    f"(order #{order_id} is {order.status.value})"
                )

            driver = await self._eligible_driver(driver_id)

            existing = await self.gateway.load_delivery_by_order(order_id)
            if existing is not None and existing.is_active:
                raise ConflictError(
                    f"Delivery already exists for order #{order_id}",
                    detail={"deliveryId": existing.id},
                )

            delivery = await self.gateway.save_delivery(
                Delivery(
                    id=None,
                    order_id=order_id,
                    driver_id=driver.id,
                    status=DeliveryStatus.ASSIGNED,
                    delivery_address=delivery_address,
                    delivery_notes=delivery_notes,
                    dispatched_at=utcnow(),
                )
            )

        logger.info(f"🚚 Delivery #{delivery.id} for order #{order_id} assigned to {driver.username}")
        self.dispatcher.submit(events.delivery_assigned(delivery))
        self.dispatcher.submit(events.driver_assignment(delivery))
        return delivery

    async def reassign_driver(self, delivery_id: int, new_driver_id: int) -> Delivery:
        """Hand an ASSIGNED delivery to another driver."""
        async with self.locks.hold(delivery_id):
            delivery = await self.get_delivery(delivery_id)
            if delivery.status != DeliveryStatus.ASSIGNED:
                raise ValidationError(
                    f"Can only reassign driver for ASSIGNED deliveries "
                    f"(delivery #{delivery_id} is {delivery.status.value})"
                )
            driver = await self._eligible_driver(new_driver_id)
            saved = await self.gateway.save_delivery(replace(delivery, driver_id=driver.id))

            logger.info(f"Delivery #{delivery_id} reassigned to {driver.username}")
            self.dispatcher.submit(events.delivery_assigned(saved))
            self.dispatcher.submit(events.driver_assignment(saved))

        return saved

    # =========================================================================
    # STATUS
    # =========================================================================

    async def update_status(self, delivery_id: int, requested_status: DeliveryStatus) -> Delivery:
        """
        Move a delivery to `requested_status`, coupling the order.

        DELIVERED on an already DELIVERED delivery returns it unchanged.

        Raises:
            NotFoundError: Unknown delivery id
            InvalidTransitionError: Edge not allowed (TerminalStateError from a final status)
            OrderNotReadyError: OUT_FOR_DELIVERY while the order cannot follow
            ConflictError: Lost concurrent write
        """
        async with self.locks.hold(delivery_id):
            delivery = await self.get_delivery(delivery_id)

            if (
                delivery.status == DeliveryStatus.DELIVERED
                and requested_status == DeliveryStatus.DELIVERED
            ):
                logger.debug(f"Delivery #{delivery_id} already DELIVERED")
                return delivery

            async with self.orders.locks.hold(delivery.order_id):
                saved = await self._update_status_locked(delivery, requested_status)

        return saved

    async def update_details(
        self,
        delivery_id: int,
        delivery_address: str,
        delivery_notes: Optional[str] = None,
    ) -> Delivery:
        delivery_address = (delivery_address or "").strip()
        if not delivery_address:
            raise ValidationError("Delivery address is required")

        async with self.locks.hold(delivery_id):
            delivery = await self.get_delivery(delivery_id)
            if delivery.is_terminal:
                raise ValidationError(
                    f"Cannot update delivery #{delivery_id} once it is {delivery.status.value}"
                )
            return await self.gateway.save_delivery(
                replace(delivery, delivery_address=delivery_address, delivery_notes=delivery_notes)
            )

    # =========================================================================
    # READS
    # =========================================================================

    async def get_delivery(self, delivery_id: int) -> Delivery:
        delivery = await self.gateway.load_delivery(delivery_id)
        if delivery is None:
            raise NotFoundError("Delivery", delivery_id)
        return delivery

    async def get_delivery_for_order(self, order_id: int) -> Delivery:
        delivery = await self.gateway.load_delivery_by_order(order_id)
        if delivery is None:
            raise NotFoundError("Delivery for order", order_id)
        return delivery

    async def list_deliveries(
        self,
        status: Optional[DeliveryStatus] = None,
        driver_id: Optional[int] = None,
    ) -> list[Delivery]:
        return await self.gateway.list_deliveries(status=status, driver_id=driver_id)

    async def available_drivers(self) -> list[StaffMember]:
        """Enabled DELIVERY_STAFF members with no ASSIGNED or OUT_FOR_DELIVERY delivery."""
        busy = {
            d.driver_id
            for d in await self.gateway.list_deliveries()
            if d.status in ACTIVE_STATUSES
        }
        drivers = await self.gateway.list_staff(role=UserRole.DELIVERY_STAFF)
        return [d for d in drivers if d.can_drive and d.id not in busy]

    async def stats(self) -> DeliveryStats:
        deliveries = await self.gateway.list_deliveries()
        return DeliveryStats(
            active_deliveries=sum(1 for d in deliveries if d.status in ACTIVE_STATUSES),
            completed_deliveries=sum(1 for d in deliveries if d.status == DeliveryStatus.DELIVERED),
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _update_status_locked(
        self, delivery: Delivery, requested_status: DeliveryStatus
    ) -> Delivery:
        # Caller holds the delivery lock and the owning order's lock.
        order = await self.orders.get_order(delivery.order_id)
        decision = next_status(
            delivery.status,
            requested_status,
            TransitionContext(order_id=order.id, order_status=order.status),
        )

        if (
            decision.reason is RejectionReason.ORDER_NOT_READY
            and order.status == OrderStatus.READY_FOR_DELIVERY
        ):
            order = await self.orders._update_status_locked(
                order.id,
                OrderStatus.OUT_FOR_DELIVERY,
                expected_status=OrderStatus.READY_FOR_DELIVERY,
            )
            decision = next_status(
                delivery.status,
                requested_status,
                TransitionContext(order_id=order.id, order_status=order.status),
            )

        decision.raise_for_rejection()

        updated = replace(delivery, status=requested_status)
        if requested_status == DeliveryStatus.DELIVERED:
            updated = replace(updated, delivered_at=utcnow())
        saved = await self.gateway.save_delivery(updated)

        logger.info(f"Delivery #{delivery.id}: {delivery.status.value} -> {saved.status.value}")
        self.dispatcher.submit(events.delivery_status_updated(saved, delivery.status))

        if saved.status == DeliveryStatus.DELIVERED:
            await self._complete_order(saved)
        return saved

    async def _eligible_driver(self, driver_id: int) -> StaffMember:
        driver = await self.gateway.load_staff_member(driver_id)
        if driver is None:
            raise NotFoundError("Driver", driver_id)
        if driver.role != UserRole.DELIVERY_STAFF:
            raise ValidationError("User must have DELIVERY_STAFF role to be assigned as driver")
        if not driver.enabled:
            raise ValidationError(f"Driver {driver.username} is disabled")
        return driver

    async def _complete_order(self, delivery: Delivery) -> None:
        # Caller holds the order lock. The delivery is already stored; a
        # failure here leaves the order for a manual COMPLETED and must not
        # undo the delivery.
        order = await self.orders.get_order(delivery.order_id)
        if order.is_terminal:
            return
        try:
            await self.orders._update_status_locked(order.id, OrderStatus.COMPLETED)
        except (InvalidTransitionError, ConflictError) as e:
            logger.warning(
                f"Delivery #{delivery.id} delivered but order #{order.id} "
                f"could not be completed: {e}"
            )
