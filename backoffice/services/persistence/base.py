"""
Persistence Gateway Abstract Base Class

Defines the load/save contract the coordinators rely on. Every method is
atomic for a single entity; nothing here spans two entities, which is why
the delivery coordinator performs the order-side step as a separate,
individually validated transition.

Saves are version-checked: an entity whose version no longer matches the
stored row is refused with ConflictError, and a successful save returns
the stored copy with the incremented version. An entity with id None is
inserted and returned with its new id.

Implementations:
    - InMemoryGateway: development and tests
    - SqlAlchemyGateway: staging and production
"""

from abc import ABC, abstractmethod
from typing import Optional

from backoffice.domain import Order, Delivery, StaffMember, Product
from backoffice.models import OrderStatus, DeliveryStatus, UserRole


class BasePersistenceGateway(ABC):
    """Abstract base class for persistence gateways."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name (e.g. "memory", "sqlalchemy")."""
        pass

    # =========================================================================
    # ORDERS
    # =========================================================================

    @abstractmethod
    async def load_order(self, order_id: int) -> Optional[Order]:
        """Return the stored order or None."""
        pass

    @abstractmethod
    async def save_order(self, order: Order) -> Order:
        """
        Insert or update an order.

        Raises:
            ConflictError: The stored version differs from order.version
            NotFoundError: Updating an order that does not exist
        """
        pass

    @abstractmethod
    async def list_orders(self, status: Optional[OrderStatus] = None) -> list[Order]:
        """Orders newest first, optionally filtered by status."""
        pass

    # =========================================================================
    # DELIVERIES
    # =========================================================================

    @abstractmethod
    async def load_delivery(self, delivery_id: int) -> Optional[Delivery]:
        pass

    @abstractmethod
    async def save_delivery(self, delivery: Delivery) -> Delivery:
        """Insert or update a delivery; same version rules as save_order."""
        pass

    @abstractmethod
    async def load_delivery_by_order(self, order_id: int) -> Optional[Delivery]:
        """
        The delivery attached to an order.

        Prefers the latest non-cancelled delivery; falls back to the
        latest cancelled one; None if the order never had a delivery.
        """
        pass

    @abstractmethod
    async def list_deliveries(
        self,
        status: Optional[DeliveryStatus] = None,
        driver_id: Optional[int] = None,
    ) -> list[Delivery]:
        """Deliveries newest first, optionally filtered."""
        pass

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    @abstractmethod
    async def load_staff_member(self, user_id: int) -> Optional[StaffMember]:
        pass

    @abstractmethod
    async def list_staff(self, role: Optional[UserRole] = None) -> list[StaffMember]:
        """Staff members by id, optionally only those with `role`."""
        pass

    @abstractmethod
    async def load_product(self, product_id: int) -> Optional[Product]:
        pass

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @abstractmethod
    async def health_check(self) -> bool:
        """Verify the store is reachable."""
        pass

    async def close(self) -> None:
        """Release connections. No-op by default."""
        return None
