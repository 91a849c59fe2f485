"""
SQLAlchemy Persistence Gateway

Production implementation backed by the async SQLAlchemy engine
(PostgreSQL via psycopg in deployment, SQLite via aiosqlite in tests).

Each call runs in its own short session. Updates are issued as
    UPDATE ... SET version = version + 1 WHERE id = :id AND version = :version
so a writer holding a stale copy gets zero affected rows and a
ConflictError instead of silently overwriting the winner.
"""

import logging
from dataclasses import replace
from typing import Optional

from sqlalchemy import select, update, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from backoffice.core.exceptions import ConflictError, NotFoundError
from backoffice.database import create_session_maker
from backoffice.domain import Order, OrderItem, Delivery, StaffMember, Product, to_money
from backoffice.models import (
    OrderStatus,
    DeliveryStatus,
    UserRole,
    OrderRecord,
    OrderItemRecord,
    DeliveryRecord,
    UserRecord,
    ProductRecord,
)
from backoffice.services.persistence.base import BasePersistenceGateway

logger = logging.getLogger(__name__)


class SqlAlchemyGateway(BasePersistenceGateway):
    """
    Persistence gateway over SQLAlchemy async sessions.

    Attributes:
        engine: The async engine (owned by the caller)
        session_maker: Session factory bound to the engine
    """

    def __init__(self, engine: AsyncEngine, dispose_on_close: bool = True):
        self.engine = engine
        self.session_maker: async_sessionmaker[AsyncSession] = create_session_maker(engine)
        self._dispose_on_close = dispose_on_close
        logger.info("SqlAlchemyGateway initialized")

    @property
    def provider_name(self) -> str:
        return "sqlalchemy"

    # =========================================================================
    # ORDERS
    # =========================================================================

    async def load_order(self, order_id: int) -> Optional[Order]:
        async with self.session_maker() as session:
            record = await session.get(OrderRecord, order_id)
            return _order_from_record(record) if record else None

    async def save_order(self, order: Order) -> Order:
        async with self.session_maker() as session:
            if order.id is None:
                record = OrderRecord(
                    customer_details=order.customer_details,
                    order_type=order.order_type,
                    status=order.status,
                    total_price=order.total_price,
                    created_at=order.created_at,
                    updated_at=order.updated_at,
                    version=0,
                    items=[
                        OrderItemRecord(
                            product_id=item.product_id,
                            position=position,
                            product_name=item.product_name,
                            quantity=item.quantity,
                            unit_price=item.unit_price,
                        )
                        for position, item in enumerate(order.items)
                    ],
                )
                session.add(record)
                await session.commit()
                return _order_from_record(record)

            result = await session.execute(
                update(OrderRecord)
                .where(OrderRecord.id == order.id, OrderRecord.version == order.version)
                .values(
                    status=order.status,
                    customer_details=order.customer_details,
                    updated_at=order.updated_at,
                    version=OrderRecord.version + 1,
                )
            )
            if result.rowcount == 0:
                await session.rollback()
                await self._raise_stale(session, OrderRecord, "Order", order.id, order.version)
            await session.commit()

        logger.debug(f"Order #{order.id} saved at version {order.version + 1}")
        return replace(order, version=order.version + 1)

    async def list_orders(self, status: Optional[OrderStatus] = None) -> list[Order]:
        query = select(OrderRecord).order_by(OrderRecord.created_at.desc(), OrderRecord.id.desc())
        if status is not None:
            query = query.where(OrderRecord.status == status)

        async with self.session_maker() as session:
            result = await session.execute(query)
            return [_order_from_record(r) for r in result.scalars().all()]

    # =========================================================================
    # DELIVERIES
    # =========================================================================

    async def load_delivery(self, delivery_id: int) -> Optional[Delivery]:
        async with self.session_maker() as session:
            record = await session.get(DeliveryRecord, delivery_id)
            return _delivery_from_record(record) if record else None

    async def save_delivery(self, delivery: Delivery) -> Delivery:
        async with self.session_maker() as session:
            if delivery.id is None:
                record = DeliveryRecord(
                    order_id=delivery.order_id,
                    driver_id=delivery.driver_id,
                    status=delivery.status,
                    delivery_address=delivery.delivery_address,
                    delivery_notes=delivery.delivery_notes,
                    dispatched_at=delivery.dispatched_at,
                    delivered_at=delivery.delivered_at,
                    version=0,
                )
                session.add(record)
                await session.commit()
                return _delivery_from_record(record)

            result = await session.execute(
                update(DeliveryRecord)
                .where(DeliveryRecord.id == delivery.id, DeliveryRecord.version == delivery.version)
                .values(
                    driver_id=delivery.driver_id,
                    status=delivery.status,
                    delivery_address=delivery.delivery_address,
                    delivery_notes=delivery.delivery_notes,
                    delivered_at=delivery.delivered_at,
                    version=DeliveryRecord.version + 1,
                )
            )
            if result.rowcount == 0:
                await session.rollback()
                await self._raise_stale(session, DeliveryRecord, "Delivery", delivery.id, delivery.version)
            await session.commit()

        return replace(delivery, version=delivery.version + 1)

    async def load_delivery_by_order(self, order_id: int) -> Optional[Delivery]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(DeliveryRecord)
                .where(DeliveryRecord.order_id == order_id)
                .order_by(DeliveryRecord.id.desc())
            )
            records = result.scalars().all()

        for record in records:
            if record.status != DeliveryStatus.CANCELLED:
                return _delivery_from_record(record)
        return _delivery_from_record(records[0]) if records else None

    async def list_deliveries(
        self,
        status: Optional[DeliveryStatus] = None,
        driver_id: Optional[int] = None,
    ) -> list[Delivery]:
        query = select(DeliveryRecord).order_by(DeliveryRecord.id.desc())
        if status is not None:
            query = query.where(DeliveryRecord.status == status)
        if driver_id is not None:
            query = query.where(DeliveryRecord.driver_id == driver_id)

        async with self.session_maker() as session:
            result = await session.execute(query)
            return [_delivery_from_record(r) for r in result.scalars().all()]

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def load_staff_member(self, user_id: int) -> Optional[StaffMember]:
        async with self.session_maker() as session:
            record = await session.get(UserRecord, user_id)
            if record is None:
                return None
            return _staff_from_record(record)

    async def list_staff(self, role: Optional[UserRole] = None) -> list[StaffMember]:
        query = select(UserRecord).order_by(UserRecord.id)
        if role is not None:
            query = query.where(UserRecord.role == role)
        async with self.session_maker() as session:
            result = await session.execute(query)
            return [_staff_from_record(r) for r in result.scalars().all()]

    async def load_product(self, product_id: int) -> Optional[Product]:
        async with self.session_maker() as session:
            record = await session.get(ProductRecord, product_id)
            if record is None:
                return None
            return Product(
                id=record.id,
                name=record.name,
                price=to_money(record.price),
                is_available=bool(record.is_available),
            )

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def health_check(self) -> bool:
        try:
            async with self.session_maker() as session:
                await session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False

    async def close(self) -> None:
        if self._dispose_on_close:
            await self.engine.dispose()

    async def _raise_stale(self, session: AsyncSession, model, entity: str, entity_id: int, version: int):
        exists = await session.get(model, entity_id)
        if exists is None:
            raise NotFoundError(entity, entity_id)
        raise ConflictError(
            f"{entity} #{entity_id} was modified concurrently "
            f"(expected version {version}, found {exists.version})"
        )


# =============================================================================
# RECORD MAPPING
# =============================================================================

def _order_from_record(record: OrderRecord) -> Order:
    return Order(
        id=record.id,
        customer_details=record.customer_details,
        order_type=record.order_type,
        status=record.status,
        items=tuple(
            OrderItem(
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                unit_price=to_money(item.unit_price),
            )
            for item in record.items
        ),
        total_price=to_money(record.total_price),
        created_at=record.created_at,
        updated_at=record.updated_at,
        version=record.version,
    )


def _staff_from_record(record: UserRecord) -> StaffMember:
    return StaffMember(
        id=record.id,
        username=record.username,
        full_name=record.full_name,
        role=record.role,
        enabled=bool(record.enabled),
    )


def _delivery_from_record(record: DeliveryRecord) -> Delivery:
    return Delivery(
        id=record.id,
        order_id=record.order_id,
        driver_id=record.driver_id,
        status=record.status,
        delivery_address=record.delivery_address,
        delivery_notes=record.delivery_notes,
        dispatched_at=record.dispatched_at,
        delivered_at=record.delivered_at,
        version=record.version,
    )
