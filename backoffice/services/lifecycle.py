"""
Lifecycle Engine

Pure transition rules for orders and deliveries. No I/O, no clocks:
given the current status, the requested one and the surrounding context,
next_status() answers allowed or rejected-with-reason.

Rules are evaluated in a fixed order:
    1. terminal states have no outgoing edges       -> terminal-state
    2. the edge must be present in the table        -> invalid-transition
    3. context rules
       - a non-DELIVERY order never enters a delivery-only state
                                                    -> invalid-transition
       - a delivery enters OUT_FOR_DELIVERY only once its order is
         OUT_FOR_DELIVERY                           -> order-not-ready

Usage:
    decision = next_status(order.status, requested, TransitionContext(order_type=order.order_type))
    decision.raise_for_rejection()
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from backoffice.core.exceptions import (
    InvalidTransitionError,
    TerminalStateError,
    OrderNotReadyError,
)
from backoffice.models import OrderStatus, OrderType, DeliveryStatus

Status = Union[OrderStatus, DeliveryStatus]


ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({
        OrderStatus.READY_FOR_PICKUP,
        OrderStatus.READY_FOR_DELIVERY,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.READY_FOR_PICKUP: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.READY_FOR_DELIVERY: frozenset({OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED}),
    OrderStatus.OUT_FOR_DELIVERY: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

DELIVERY_TRANSITIONS: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.PENDING: frozenset({DeliveryStatus.ASSIGNED, DeliveryStatus.CANCELLED}),
    DeliveryStatus.ASSIGNED: frozenset({DeliveryStatus.OUT_FOR_DELIVERY, DeliveryStatus.CANCELLED}),
    DeliveryStatus.OUT_FOR_DELIVERY: frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED}),
    DeliveryStatus.DELIVERED: frozenset(),
    DeliveryStatus.CANCELLED: frozenset(),
}

DELIVERY_ONLY_ORDER_STATES = frozenset({
    OrderStatus.READY_FOR_DELIVERY,
    OrderStatus.OUT_FOR_DELIVERY,
})


class RejectionReason(str, Enum):
    INVALID_TRANSITION = "invalid-transition"
    TERMINAL_STATE = "terminal-state"
    ORDER_NOT_READY = "order-not-ready"


@dataclass(frozen=True)
class TransitionContext:
    """
    What the engine may know besides the two statuses.

    Attributes:
        order_type: Type of the order being moved (order transitions)
        order_id: Owning order (delivery transitions, for error messages)
        order_status: Current status of the owning order (delivery transitions)
    """
    order_type: Optional[OrderType] = None
    order_id: Optional[int] = None
    order_status: Optional[OrderStatus] = None


@dataclass(frozen=True)
class TransitionDecision:
    current: Status
    requested: Status
    reason: Optional[RejectionReason] = None
    order_id: Optional[int] = None
    order_status: Optional[OrderStatus] = None

    @property
    def allowed(self) -> bool:
        return self.reason is None

    def raise_for_rejection(self) -> None:
        """Raise the exception matching the rejection reason, if any."""
        if self.reason is None:
            return
        if self.reason is RejectionReason.TERMINAL_STATE:
            raise TerminalStateError(self.current, self.requested)
        if self.reason is RejectionReason.ORDER_NOT_READY:
            raise OrderNotReadyError(self.order_id, self.order_status, self.requested)
        raise InvalidTransitionError(self.current, self.requested)


def is_terminal(status: Status) -> bool:
    return not _table_for(status)[status]


def allowed_targets(status: Status) -> frozenset:
    return _table_for(status)[status]


def next_status(
    current: Status,
    requested: Status,
    context: Optional[TransitionContext] = None,
) -> TransitionDecision:
    """
    Decide whether `current` may move to `requested`.

    Both statuses must belong to the same lifecycle; mixing an order
    status with a delivery status is rejected as an invalid transition.
    """
    context = context or TransitionContext()

    def reject(reason: RejectionReason) -> TransitionDecision:
        return TransitionDecision(
            current=current,
            requested=requested,
            reason=reason,
            order_id=context.order_id,
            order_status=context.order_status,
        )

    if type(current) is not type(requested):
        return reject(RejectionReason.INVALID_TRANSITION)

    table = _table_for(current)
    if not table[current]:
        return reject(RejectionReason.TERMINAL_STATE)
    if requested not in table[current]:
        return reject(RejectionReason.INVALID_TRANSITION)

    if isinstance(requested, OrderStatus):
        if (
            requested in DELIVERY_ONLY_ORDER_STATES
            and context.order_type is not None
            and context.order_type != OrderType.DELIVERY
        ):
            return reject(RejectionReason.INVALID_TRANSITION)
    elif requested == DeliveryStatus.OUT_FOR_DELIVERY:
        if context.order_status != OrderStatus.OUT_FOR_DELIVERY:
            return reject(RejectionReason.ORDER_NOT_READY)

    return TransitionDecision(current=current, requested=requested)


def _table_for(status: Status) -> dict:
    if isinstance(status, OrderStatus):
        return ORDER_TRANSITIONS
    if isinstance(status, DeliveryStatus):
        return DELIVERY_TRANSITIONS
    raise TypeError(f"Not a lifecycle status: {status!r}")
