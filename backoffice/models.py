"""
SQLAlchemy Database Models

Status enums shared by the whole package, plus the tables behind the
SQLAlchemy persistence gateway:
- users / products (read-only lookups, managed elsewhere)
- orders / order_items
- deliveries

Orders and deliveries carry a version column; the gateway refuses a
save whose version no longer matches the stored row.

Version: 1.0.0
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    Text,
    Enum,
    Boolean,
    ForeignKey,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base
import enum


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PREPARING = "PREPARING"
    READY_FOR_PICKUP = "READY_FOR_PICKUP"
    READY_FOR_DELIVERY = "READY_FOR_DELIVERY"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class OrderType(str, enum.Enum):
    """How the order leaves the kitchen."""
    DINE_IN = "DINE_IN"
    TAKEOUT = "TAKEOUT"
    DELIVERY = "DELIVERY"
    PICKUP = "PICKUP"


class DeliveryStatus(str, enum.Enum):
    """Delivery status workflow."""
    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class UserRole(str, enum.Enum):
    """Staff roles."""
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    KITCHEN_STAFF = "KITCHEN_STAFF"
    DELIVERY_STAFF = "DELIVERY_STAFF"


class UserRecord(Base):
    """Staff accounts. Only read here, for driver eligibility."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    username = Column(String(50), nullable=False, unique=True)
    full_name = Column(String(100), nullable=False)
    role = Column(Enum(UserRole), nullable=False, index=True)
    enabled = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<User #{self.id} - {self.username} - {self.role.value}>"


class ProductRecord(Base):
    """Catalog entries. Only read here, to capture prices on new orders."""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True)
    price = Column(Numeric(10, 2), nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<Product #{self.id} - {self.name} - {self.price}>"


class OrderRecord(Base):
    """
    Main Order table.

    Tracks the lifecycle from PENDING through COMPLETED or CANCELLED.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # =========================================================================
    # ORDER DETAILS
    # =========================================================================
    customer_details = Column(String(500), nullable=False)
    order_type = Column(Enum(OrderType), nullable=False, index=True)
    total_price = Column(Numeric(10, 2), nullable=False)

    # =========================================================================
    # ORDER STATUS
    # =========================================================================
    status = Column(
        Enum(OrderStatus),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True
    )
    version = Column(Integer, nullable=False, default=0)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "OrderItemRecord",
        back_populates="order",
        order_by="OrderItemRecord.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<Order #{self.id} - {self.order_type.value} - {self.status.value}>"


class OrderItemRecord(Base):
    """Line items with the unit price frozen at order time."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    product_name = Column(String(100), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)

    order = relationship("OrderRecord", back_populates="items")


class DeliveryRecord(Base):
    """
    Deliveries for DELIVERY-type orders.

    A cancelled delivery stays on file; the one-active-delivery-per-order
    rule is enforced by the coordinator, not by a unique index.
    """
    __tablename__ = "deliveries"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    status = Column(
        Enum(DeliveryStatus),
        default=DeliveryStatus.PENDING,
        nullable=False,
        index=True
    )
    version = Column(Integer, nullable=False, default=0)

    delivery_address = Column(String(500), nullable=True)
    delivery_notes = Column(Text, nullable=True)

    dispatched_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Delivery #{self.id} - order #{self.order_id} - {self.status.value}>"
