"""
Demo catalog and staff.

Loaded into the in-memory gateway in development mode so the API can be
exercised without a database, and into empty SQL tables at startup when
SEED_DEMO_DATA is on. Prices and accounts mirror the sample data
shipped with the SQL schema.
"""

import logging
from decimal import Decimal

from sqlalchemy import func, select

from backoffice.database import create_session_maker
from backoffice.domain import Product, StaffMember
from backoffice.models import UserRole, ProductRecord, UserRecord

logger = logging.getLogger(__name__)

DEMO_PRODUCTS = [
    Product(id=1, name="Chicken Wings", price=Decimal("12.99")),
    Product(id=2, name="Mozzarella Sticks", price=Decimal("8.99")),
    Product(id=3, name="Garlic Bread", price=Decimal("5.99")),
    Product(id=4, name="Margherita Pizza", price=Decimal("16.99")),
    Product(id=5, name="Pepperoni Pizza", price=Decimal("18.99")),
    Product(id=6, name="Pasta Carbonara", price=Decimal("13.99")),
    Product(id=7, name="Tiramisu", price=Decimal("8.99")),
    Product(id=8, name="Coca Cola", price=Decimal("2.99")),
    Product(id=9, name="Caesar Salad", price=Decimal("11.99")),
    Product(id=10, name="Seasonal Soup", price=Decimal("7.49"), is_available=False),
]

DEMO_STAFF = [
    StaffMember(id=1, username="admin", full_name="System Administrator", role=UserRole.ADMIN),
    StaffMember(id=2, username="manager1", full_name="Restaurant Manager", role=UserRole.MANAGER),
    StaffMember(id=3, username="chef1", full_name="Head Chef", role=UserRole.KITCHEN_STAFF),
    StaffMember(id=4, username="driver1", full_name="John Delivery", role=UserRole.DELIVERY_STAFF),
    StaffMember(id=5, username="driver2", full_name="Jane Express", role=UserRole.DELIVERY_STAFF),
    StaffMember(
        id=6,
        username="driver3",
        full_name="Former Courier",
        role=UserRole.DELIVERY_STAFF,
        enabled=False,
    ),
]


def seed_gateway(gateway) -> None:
    """Load the demo catalog and staff into an InMemoryGateway."""
    for product in DEMO_PRODUCTS:
        gateway.add_product(product)
    for member in DEMO_STAFF:
        gateway.add_staff_member(member)


async def seed_database(engine) -> bool:
    """
    Insert the demo catalog and staff into empty SQL tables.

    Returns:
        True when rows were inserted, False when data already existed
    """
    async with create_session_maker(engine)() as session:
        existing = await session.execute(select(func.count(ProductRecord.id)))
        if existing.scalar():
            return False

        session.add_all(
            ProductRecord(
                id=p.id,
                name=p.name,
                price=p.price,
                is_available=p.is_available,
            )
            for p in DEMO_PRODUCTS
        )
        session.add_all(
            UserRecord(
                id=m.id,
                username=m.username,
                full_name=m.full_name,
                role=m.role,
                enabled=m.enabled,
            )
            for m in DEMO_STAFF
        )
        await session.commit()

    logger.info(f"Seeded {len(DEMO_PRODUCTS)} products and {len(DEMO_STAFF)} staff accounts")
    return True
