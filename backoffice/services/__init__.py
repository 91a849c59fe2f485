"""
                        Services Module

Business logic for the back-office.

Services:
    - lifecycle: Pure order/delivery transition rules
    - orders: OrderCoordinator
    - deliveries: DeliveryCoordinator
    - persistence: Gateway over memory or SQLAlchemy
    - notifications: Subscription registry and dispatcher
    - excel_manager: Thread-safe closed-order ledger
"""

from backoffice.services.orders import OrderCoordinator
from backoffice.services.deliveries import DeliveryCoordinator

__all__ = ["OrderCoordinator", "DeliveryCoordinator"]
