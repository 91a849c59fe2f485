"""
Error Taxonomy

Every rule violation the coordinators can report is a BackofficeError
subclass carrying the HTTP status the API layer answers with and a
stable machine-readable reason code.

    NotFoundError            404  not-found
    ValidationError          400  validation-failed
    InvalidTransitionError   400  invalid-transition
    TerminalStateError       400  terminal-state
    OrderNotReadyError       409  order-not-ready
    ConflictError            409  conflict
    SubscriptionDeniedError  403  subscription-denied

DispatchFailure is raised by a live connection that cannot accept a frame.
The dispatcher swallows it; it never reaches a coordinator or a caller.
"""

from typing import Any, Optional


class BackofficeError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    reason: str = "internal-error"

    def __init__(self, message: str, detail: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class NotFoundError(BackofficeError):
    """Unknown order, delivery, driver or product id."""

    status_code = 404
    reason = "not-found"

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} not found with id: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(BackofficeError):
    """A request that is well-formed but breaks a business precondition."""

    status_code = 400
    reason = "validation-failed"


class InvalidTransitionError(BackofficeError):
    """Requested status is not reachable from the current one."""

    status_code = 400
    reason = "invalid-transition"

    def __init__(self, current: Any, requested: Any, message: Optional[str] = None):
        super().__init__(
            message or f"Invalid status transition from {_name(current)} to {_name(requested)}"
        )
        self.current = current
        self.requested = requested


class TerminalStateError(InvalidTransitionError):
    """Current status has no outgoing transitions."""

    reason = "terminal-state"

    def __init__(self, current: Any, requested: Any):
        super().__init__(
            current,
            requested,
            f"Cannot change status from {_name(current)}",
        )


class OrderNotReadyError(BackofficeError):
    """A delivery tried to get ahead of its owning order."""

    status_code = 409
    reason = "order-not-ready"

    def __init__(self, order_id: Any, order_status: Any, requested: Any):
        super().__init__(
            f"Delivery cannot move to {_name(requested)} while order #{order_id} "
            f"is {_name(order_status)}"
        )
        self.order_id = order_id
        self.order_status = order_status
        self.requested = requested


class ConflictError(BackofficeError):
    """Duplicate active delivery or a lost concurrent write."""

    status_code = 409
    reason = "conflict"


class SubscriptionDeniedError(BackofficeError):
    """The connection's role may not listen on the requested topic."""

    status_code = 403
    reason = "subscription-denied"


class DispatchFailure(Exception):
    """A connection is gone or refused a frame."""

    def __init__(self, connection_id: str, message: str):
        super().__init__(f"{connection_id}: {message}")
        self.connection_id = connection_id


def _name(status: Any) -> str:
    return getattr(status, "value", str(status))
