"""
Order Coordinator

Owns every change to an order. Each status change runs as one critical
section per order id:

    load -> validate (lifecycle engine) -> persist (version-checked) -> emit

A rejected request never reaches the gateway, and an event is submitted
only after the change it describes has been stored.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional

from backoffice.core.exceptions import ConflictError, NotFoundError, ValidationError
from backoffice.domain import Order, OrderItem, to_money, utcnow
from backoffice.models import OrderStatus, OrderType
from backoffice.services.lifecycle import TransitionContext, next_status
from backoffice.services.locking import KeyedLocks
from backoffice.services.notifications import NotificationDispatcher
from backoffice.services.notifications import events
from backoffice.services.persistence import BasePersistenceGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderStats:
    order_count: int
    revenue: Decimal


class OrderCoordinator:
    """
    Creates orders and moves them through their lifecycle.

    Attributes:
        gateway: Persistence gateway
        dispatcher: Receives events after each committed change
        locks: Per-order critical sections
    """

    def __init__(
        self,
        gateway: BasePersistenceGateway,
        dispatcher: NotificationDispatcher,
        locks: Optional[KeyedLocks] = None,
    ):
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.locks = locks or KeyedLocks("order")

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_order(
        self,
        customer_details: str,
        order_type: OrderType,
        items: Iterable[tuple[int, int]],
    ) -> Order:
        """
        Create a PENDING order from (product_id, quantity) pairs.

        Each product's current catalog price is frozen on its line item and
        the total is the exact decimal sum of the lines.

        Raises:
            NotFoundError: Unknown product id
            ValidationError: Empty order, bad quantity or unavailable product
        """
        customer_details = (customer_details or "").strip()
        if not customer_details:
            raise ValidationError("Customer details are required")

        line_items = []
        for product_id, quantity in items:
            if quantity < 1:
                raise ValidationError(f"Quantity must be at least 1 (product {product_id})")
            product = await self.gateway.load_product(product_id)
            if product is None:
                raise NotFoundError("Product", product_id)
            if not product.is_available:
                raise ValidationError(f"Product '{product.name}' is not available")
            line_items.append(
                OrderItem(
                    product_id=product.id,
                    product_name=product.name,
                    quantity=quantity,
                    unit_price=product.price,
                )
            )

        if not line_items:
            raise ValidationError("Order must contain at least one item")

        total = to_money(sum((item.line_total for item in line_items), Decimal("0")))
        order = await self.gateway.save_order(
            Order(
                id=None,
                customer_details=customer_details,
                order_type=order_type,
                status=OrderStatus.PENDING,
                items=tuple(line_items),
                total_price=total,
            )
        )
        logger.info(f"📝 Order #{order.id} created ({order.order_type.value}, total {order.total_price})")

        self.dispatcher.submit(events.order_created(order))
        self.dispatcher.submit(events.kitchen_order_created(order))
        return order

    # =========================================================================
    # STATUS
    # =========================================================================

    async def update_status(
        self,
        order_id: int,
        requested_status: OrderStatus,
        expected_status: Optional[OrderStatus] = None,
    ) -> Order:
        """
        Move an order to `requested_status`.

        When `expected_status` is given the change only applies if the
        order is still in that status; otherwise ConflictError.

        Raises:
            NotFoundError: Unknown order id
            InvalidTransitionError: Edge not allowed (TerminalStateError from a final status)
            ConflictError: Stale expected_status or lost concurrent write
        """
        async with self.locks.hold(order_id):
            return await self._update_status_locked(order_id, requested_status, expected_status)

    async def _update_status_locked(
        self,
        order_id: int,
        requested_status: OrderStatus,
        expected_status: Optional[OrderStatus] = None,
    ) -> Order:
        # Caller holds self.locks for order_id.
        order = await self.get_order(order_id)

        if expected_status is not None and order.status != expected_status:
            raise ConflictError(
                f"Order #{order_id} is {order.status.value}, expected {expected_status.value}",
                detail={"currentStatus": order.status.value},
            )

        decision = next_status(
            order.status,
            requested_status,
            TransitionContext(order_type=order.order_type),
        )
        if not decision.allowed:
            logger.info(
                f"Order #{order_id}: rejected {order.status.value} -> "
                f"{getattr(requested_status, 'value', requested_status)} ({decision.reason.value})"
            )
        decision.raise_for_rejection()

        saved = await self.gateway.save_order(
            replace(order, status=requested_status, updated_at=utcnow())
        )
        logger.info(f"Order #{order_id}: {order.status.value} -> {saved.status.value}")
        self.dispatcher.submit(events.order_status_changed(saved, order.status))
        return saved

    # =========================================================================
    # READS
    # =========================================================================

    async def get_order(self, order_id: int) -> Order:
        order = await self.gateway.load_order(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    async def list_orders(self, status: Optional[OrderStatus] = None) -> list[Order]:
        return await self.gateway.list_orders(status)

    async def todays_stats(self) -> OrderStats:
        """Orders created today (UTC) and the revenue of those completed."""
        today = utcnow().date()
        todays = [o for o in await self.gateway.list_orders() if _as_utc(o.created_at).date() == today]
        revenue = sum(
            (o.total_price for o in todays if o.status == OrderStatus.COMPLETED),
            Decimal("0"),
        )
        return OrderStats(order_count=len(todays), revenue=to_money(revenue))


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
