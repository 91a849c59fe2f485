"""
Pydantic Schemas for Request/Response Validation

Wire format is camelCase (customerDetails, orderId, ...); Python code
uses snake_case field names. Money is Decimal end to end and serialized
as a string so no float rounding leaks into totals.

Version: 1.0.0
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from backoffice.models import OrderStatus, OrderType, DeliveryStatus, UserRole


class CamelModel(BaseModel):
    """Base schema: camelCase on the wire, attribute access from dataclasses."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class OrderItemCreate(CamelModel):
    """Single item in an order; the price comes from the catalog."""
    product_id: int = Field(..., ge=1, examples=[4])
    quantity: int = Field(..., ge=1, le=99, examples=[2])


class OrderCreate(CamelModel):
    """Request schema for creating a new order."""
    customer_details: str = Field(
        ...,
        min_length=1,
        max_length=500,
        examples=["Name: John Doe | Phone: 555-1234 | Address: 123 Main Street"],
    )
    order_type: OrderType = Field(..., examples=["DELIVERY"])
    items: List[OrderItemCreate] = Field(..., min_length=1)

    @field_validator("customer_details")
    @classmethod
    def strip_details(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Customer details are required")
        return v


class OrderStatusUpdate(CamelModel):
    """
    PATCH /api/orders/{id}/status body.

    expectedStatus is optional; when given, the update only applies if the
    order is still in that status.
    """
    status: OrderStatus
    expected_status: Optional[OrderStatus] = None


class DeliveryStatusUpdate(CamelModel):
    status: DeliveryStatus


class AssignDeliveryRequest(CamelModel):
    order_id: int = Field(..., ge=1)
    driver_id: int = Field(..., ge=1)
    delivery_address: str = Field(..., min_length=1, max_length=500)
    delivery_notes: Optional[str] = Field(None, max_length=1000)


class ReassignDriverRequest(CamelModel):
    new_driver_id: int = Field(..., ge=1)


class DeliveryUpdate(CamelModel):
    delivery_address: str = Field(..., min_length=1, max_length=500)
    delivery_notes: Optional[str] = Field(None, max_length=1000)


class BroadcastRequest(CamelModel):
    """Body for system alerts and direct user notifications."""
    message: str = Field(..., min_length=1, max_length=500)
    data: Optional[Any] = None


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class OrderItemResponse(CamelModel):
    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class OrderResponse(CamelModel):
    """Response schema for a single order."""
    id: int
    customer_details: str
    order_type: OrderType
    status: OrderStatus
    items: List[OrderItemResponse]
    total_price: Decimal
    created_at: datetime
    updated_at: Optional[datetime] = None


class DeliveryResponse(CamelModel):
    """Response schema for a single delivery."""
    id: int
    order_id: int
    driver_id: Optional[int] = None
    status: DeliveryStatus
    delivery_address: Optional[str] = None
    delivery_notes: Optional[str] = None
    dispatched_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None


class OrderStatsResponse(CamelModel):
    order_count: int
    revenue: Decimal


class DeliveryStatsResponse(CamelModel):
    active_deliveries: int
    completed_deliveries: int


class DriverResponse(CamelModel):
    id: int
    username: str
    full_name: str
    role: UserRole
    enabled: bool


class NotificationFrame(CamelModel):
    """
    One pushed frame, exactly as clients receive it.

    {type, message, data, userId, timestamp}
    """
    type: str
    message: str
    data: Optional[Any] = None
    user_id: Optional[str] = None
    timestamp: datetime


class NotificationResponse(BaseModel):
    """Response after queueing a notification."""
    success: bool
    message: str


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    reason: Optional[str] = None
    detail: Optional[Any] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    persistence: str
    broker: str
    dispatcher: str
    connections: int
    timestamp: datetime
