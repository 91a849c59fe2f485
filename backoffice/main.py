"""
FastAPI Application Entry Point

Restaurant Back-Office: order and delivery lifecycle with real-time
notifications over WebSocket.

Endpoints:
    - POST /api/orders: Create an order from catalog items
    - PATCH /api/orders/{id}/status: Move an order through its lifecycle
    - POST /api/deliveries/assign: Assign a driver to a ready order
    - GET /api/deliveries/drivers/available: Drivers free to take a delivery
    - PATCH /api/deliveries/{id}/status: Move a delivery (and its order)
    - POST /api/notifications/alerts: Broadcast a system alert
    - WS /ws: Topic and private notification subscriptions
    - GET /health: System health check

Run with:
    uvicorn backoffice.main:app --port 8001
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.websockets import WebSocketState
import redis

from backoffice.core.config import get_settings, setup_logging
from backoffice.core.exceptions import BackofficeError
from backoffice.database import init_db
from backoffice.models import OrderStatus, DeliveryStatus, UserRole
from backoffice.schemas import (
    OrderCreate,
    OrderResponse,
    OrderStatusUpdate,
    OrderStatsResponse,
    AssignDeliveryRequest,
    DeliveryResponse,
    DeliveryStatusUpdate,
    DeliveryStatsResponse,
    DeliveryUpdate,
    DriverResponse,
    ReassignDriverRequest,
    BroadcastRequest,
    NotificationResponse,
    ErrorResponse,
    HealthResponse,
)
from backoffice.seed import seed_database
from backoffice.services import OrderCoordinator, DeliveryCoordinator
from backoffice.services.notifications import (
    NotificationDispatcher,
    SubscriptionRegistry,
    WebSocketConnection,
)
from backoffice.services.notifications import events
from backoffice.services.persistence import (
    BasePersistenceGateway,
    SqlAlchemyGateway,
    get_persistence_gateway,
)
from backoffice.tasks import closed_order_listener

settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_order_coordinator(request: Request) -> OrderCoordinator:
    return request.app.state.orders


def get_delivery_coordinator(request: Request) -> DeliveryCoordinator:
    return request.app.state.deliveries


def get_notification_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.dispatcher


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

router = APIRouter()


@router.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍕 Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
        "notifications": "/ws",
    }


def _ping_redis() -> str:
    try:
        r = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
        r.ping()
        r.close()
        return "healthy"
    except redis.RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        return f"unhealthy: {e}"


@router.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(request: Request) -> HealthResponse:
    """Verify persistence, broker and dispatcher."""
    gateway: BasePersistenceGateway = request.app.state.gateway
    dispatcher: NotificationDispatcher = request.app.state.dispatcher

    persistence_ok = await gateway.health_check()
    persistence_status = f"{gateway.provider_name}: {'healthy' if persistence_ok else 'unhealthy'}"
    broker_status = await run_in_threadpool(_ping_redis)
    dispatcher_status = "running" if dispatcher.is_running else "stopped"

    if not persistence_ok or not dispatcher.is_running:
        overall = "unhealthy"
    elif broker_status != "healthy":
        overall = "degraded"
    else:
        overall = "healthy"

    return HealthResponse(
        status=overall,
        persistence=persistence_status,
        broker=broker_status,
        dispatcher=dispatcher_status,
        connections=len(dispatcher.registry),
        timestamp=datetime.now(timezone.utc),
    )


# =============================================================================
# ORDER ENDPOINTS
# =============================================================================

@router.post(
    "/api/orders",
    response_model=OrderResponse,
    status_code=201,
    tags=["Orders"],
    summary="Create Order",
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def create_order(
    body: OrderCreate,
    orders: OrderCoordinator = Depends(get_order_coordinator),
) -> OrderResponse:
    """Create a PENDING order; prices come from the catalog."""
    order = await orders.create_order(
        body.customer_details,
        body.order_type,
        [(item.product_id, item.quantity) for item in body.items],
    )
    return OrderResponse.model_validate(order)


@router.get(
    "/api/orders",
    response_model=list[OrderResponse],
    tags=["Orders"],
    summary="List Orders",
)
async def list_orders(
    status: Optional[OrderStatus] = Query(None),
    orders: OrderCoordinator = Depends(get_order_coordinator),
) -> list[OrderResponse]:
    """Newest first, optionally filtered by status."""
    return [OrderResponse.model_validate(o) for o in await orders.list_orders(status)]


@router.get(
    "/api/orders/stats/today",
    response_model=OrderStatsResponse,
    tags=["Orders"],
)
async def todays_order_stats(
    orders: OrderCoordinator = Depends(get_order_coordinator),
) -> OrderStatsResponse:
    return OrderStatsResponse.model_validate(await orders.todays_stats())


@router.get(
    "/api/orders/{order_id}",
    response_model=OrderResponse,
    tags=["Orders"],
    responses={404: {"model": ErrorResponse}},
)
async def get_order(
    order_id: int,
    orders: OrderCoordinator = Depends(get_order_coordinator),
) -> OrderResponse:
    """Get a specific order by ID."""
    return OrderResponse.model_validate(await orders.get_order(order_id))


@router.patch(
    "/api/orders/{order_id}/status",
    response_model=OrderResponse,
    tags=["Orders"],
    summary="Update Order Status",
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def update_order_status(
    order_id: int,
    body: OrderStatusUpdate,
    orders: OrderCoordinator = Depends(get_order_coordinator),
) -> OrderResponse:
    order = await orders.update_status(order_id, body.status, body.expected_status)
    return OrderResponse.model_validate(order)


# =============================================================================
# DELIVERY ENDPOINTS
# =============================================================================

@router.post(
    "/api/deliveries/assign",
    response_model=DeliveryResponse,
    status_code=201,
    tags=["Deliveries"],
    summary="Assign Delivery",
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def assign_delivery(
    body: AssignDeliveryRequest,
    deliveries: DeliveryCoordinator = Depends(get_delivery_coordinator),
) -> DeliveryResponse:
    delivery = await deliveries.assign(
        body.order_id,
        body.driver_id,
        body.delivery_address,
        body.delivery_notes,
    )
    return DeliveryResponse.model_validate(delivery)


@router.get(
    "/api/deliveries",
    response_model=list[DeliveryResponse],
    tags=["Deliveries"],
)
async def list_deliveries(
    status: Optional[DeliveryStatus] = Query(None),
    driver_id: Optional[int] = Query(None, alias="driverId"),
    deliveries: DeliveryCoordinator = Depends(get_delivery_coordinator),
) -> list[DeliveryResponse]:
    found = await deliveries.list_deliveries(status=status, driver_id=driver_id)
    return [DeliveryResponse.model_validate(d) for d in found]


@router.get(
    "/api/deliveries/stats",
    response_model=DeliveryStatsResponse,
    tags=["Deliveries"],
)
async def delivery_stats(
    deliveries: DeliveryCoordinator = Depends(get_delivery_coordinator),
) -> DeliveryStatsResponse:
    return DeliveryStatsResponse.model_validate(await deliveries.stats())


@router.get(
    "/api/deliveries/drivers/available",
    response_model=list[DriverResponse],
    tags=["Deliveries"],
)
async def available_drivers(
    deliveries: DeliveryCoordinator = Depends(get_delivery_coordinator),
) -> list[DriverResponse]:
    """Enabled drivers not currently on an active delivery."""
    return [DriverResponse.model_validate(d) for d in await deliveries.available_drivers()]


@router.get(
    "/api/deliveries/order/{order_id}",
    response_model=DeliveryResponse,
    tags=["Deliveries"],
    responses={404: {"model": ErrorResponse}},
)
async def get_delivery_for_order(
    order_id: int,
    deliveries: DeliveryCoordinator = Depends(get_delivery_coordinator),
) -> DeliveryResponse:
    return DeliveryResponse.model_validate(await deliveries.get_delivery_for_order(order_id))


@router.get(
    "/api/deliveries/{delivery_id}",
    response_model=DeliveryResponse,
    tags=["Deliveries"],
    responses={404: {"model": ErrorResponse}},
)
async def get_delivery(
    delivery_id: int,
    deliveries: DeliveryCoordinator = Depends(get_delivery_coordinator),
) -> DeliveryResponse:
    return DeliveryResponse.model_validate(await deliveries.get_delivery(delivery_id))


@router.patch(
    "/api/deliveries/{delivery_id}/status",
    response_model=DeliveryResponse,
    tags=["Deliveries"],
    summary="Update Delivery Status",
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def update_delivery_status(
    delivery_id: int,
    body: DeliveryStatusUpdate,
    deliveries: DeliveryCoordinator = Depends(get_delivery_coordinator),
) -> DeliveryResponse:
    delivery = await deliveries.update_status(delivery_id, body.status)
    return DeliveryResponse.model_validate(delivery)


@router.patch(
    "/api/deliveries/{delivery_id}/reassign",
    response_model=DeliveryResponse,
    tags=["Deliveries"],
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def reassign_driver(
    delivery_id: int,
    body: ReassignDriverRequest,
    deliveries: DeliveryCoordinator = Depends(get_delivery_coordinator),
) -> DeliveryResponse:
    delivery = await deliveries.reassign_driver(delivery_id, body.new_driver_id)
    return DeliveryResponse.model_validate(delivery)


@router.put(
    "/api/deliveries/{delivery_id}",
    response_model=DeliveryResponse,
    tags=["Deliveries"],
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def update_delivery(
    delivery_id: int,
    body: DeliveryUpdate,
    deliveries: DeliveryCoordinator = Depends(get_delivery_coordinator),
) -> DeliveryResponse:
    delivery = await deliveries.update_details(
        delivery_id, body.delivery_address, body.delivery_notes
    )
    return DeliveryResponse.model_validate(delivery)


# =============================================================================
# NOTIFICATION ENDPOINTS
# =============================================================================

@router.post(
    "/api/notifications/alerts",
    response_model=NotificationResponse,
    status_code=202,
    tags=["Notifications"],
)
async def send_system_alert(
    body: BroadcastRequest,
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> NotificationResponse:
    dispatcher.submit(events.system_alert(body.message, body.data))
    return NotificationResponse(success=True, message="System alert queued")


@router.post(
    "/api/notifications/users/{user_id}",
    response_model=NotificationResponse,
    status_code=202,
    tags=["Notifications"],
)
async def send_user_notification(
    user_id: str,
    body: BroadcastRequest,
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> NotificationResponse:
    dispatcher.submit(events.user_notification(user_id, body.message, body.data))
    return NotificationResponse(success=True, message=f"Notification queued for user {user_id}")


@router.websocket("/ws")
async def notifications_socket(
    websocket: WebSocket,
    role: str = Query(...),
    user_id: Optional[str] = Query(None, alias="userId"),
) -> None:
    """
    Subscription socket.

    Client frames: {"action": "subscribe" | "unsubscribe", "scope": "<topic>" | "private"}
    """
    try:
        user_role = UserRole(role)
    except ValueError:
        await websocket.close(code=1008, reason=f"Unknown role: {role}")
        return

    dispatcher: NotificationDispatcher = websocket.app.state.dispatcher
    registry = dispatcher.registry

    await websocket.accept()
    connection = WebSocketConnection(
        websocket,
        user_role,
        user_id=user_id,
        outbox_size=settings.connection_outbox_size,
        send_timeout=settings.websocket_send_timeout,
    )
    connection.start()
    registry.register(connection)
    logger.info(f"🔌 {connection!r} connected")

    try:
        while True:
            raw = await websocket.receive_text()
            if not connection.reply(_handle_client_frame(registry, connection, raw)):
                logger.info(f"{connection!r} stopped draining replies, closing")
                if websocket.client_state == WebSocketState.CONNECTED:
                    try:
                        await websocket.close(code=1011)
                    except (RuntimeError, OSError) as e:
                        logger.debug(f"{connection!r} close failed: {e}")
                break
    except WebSocketDisconnect:
        logger.info(f"{connection!r} disconnected")
    finally:
        registry.disconnect(connection)
        await connection.close()


def _handle_client_frame(registry: SubscriptionRegistry, connection: WebSocketConnection, raw: str) -> dict:
    """Apply one subscribe/unsubscribe frame and build the reply."""
    try:
        message = json.loads(raw)
        action = message["action"]
        scope = message["scope"]
    except (ValueError, KeyError, TypeError):
        return {"action": "error", "detail": 'Expected {"action": ..., "scope": ...}'}

    try:
        if action == "subscribe":
            registry.subscribe(connection, scope)
            return {"action": "subscribed", "scope": scope}
        if action == "unsubscribe":
            registry.unsubscribe(connection, scope)
            return {"action": "unsubscribed", "scope": scope}
        return {"action": "error", "detail": f"Unknown action: {action}"}
    except BackofficeError as e:
        return {"action": "error", "reason": e.reason, "detail": e.message, "scope": scope}


# =============================================================================
# ERROR HANDLERS
# =============================================================================

async def backoffice_exception_handler(request: Request, exc: BackofficeError) -> JSONResponse:
    """Render domain errors with their status and reason code."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.message, reason=exc.reason, detail=exc.detail).model_dump(),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies are a 400, like any other rejected input."""
    detail = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
        for e in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error="Request validation failed",
            reason="validation-failed",
            detail=detail,
        ).model_dump(),
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

def create_app(
    gateway: Optional[BasePersistenceGateway] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> FastAPI:
    """
    Build the application around a gateway and a dispatcher.

    Both default to the configured process-wide instances; tests pass
    their own.
    """
    gateway = gateway or get_persistence_gateway()
    dispatcher = dispatcher or NotificationDispatcher(
        SubscriptionRegistry(),
        queue_size=settings.dispatch_queue_size,
    )
    orders = OrderCoordinator(gateway, dispatcher)
    deliveries = DeliveryCoordinator(gateway, orders, dispatcher)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=" * 60)
        logger.info(f"🚀 Starting {settings.app_name}")
        logger.info(f"   Version: {settings.app_version}")
        logger.info(f"   Environment: {settings.env_mode.value}")
        logger.info(f"   Persistence: {gateway.provider_name}")
        logger.info(f"   Debug: {settings.debug}")
        logger.info("=" * 60)

        if isinstance(gateway, SqlAlchemyGateway):
            await init_db(gateway.engine)
            logger.info("✅ Database initialized")
            if settings.seed_demo_data and await seed_database(gateway.engine):
                logger.info("✅ Demo data loaded")

        if settings.is_production:
            missing = settings.validate_production_config()
            if missing:
                logger.warning(f"⚠️ Missing production config: {missing}")

        if settings.export_closed_orders:
            dispatcher.add_listener(closed_order_listener)
            logger.info("✅ Closed-order export enabled")

        dispatcher.start()

        logger.info("=" * 60)
        logger.info("✅ Application ready!")
        logger.info("=" * 60)

        yield

        logger.info("Shutting down...")
        await dispatcher.stop()
        await gateway.close()
        logger.info("✅ Cleanup complete")

    app = FastAPI(
        title=settings.app_name,
        description=(
            "Order and delivery lifecycle for restaurant staff, with "
            "topic-based real-time notifications over WebSocket."
        ),
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.gateway = gateway
    app.state.dispatcher = dispatcher
    app.state.orders = orders
    app.state.deliveries = deliveries

    app.include_router(router)
    app.add_exception_handler(BackofficeError, backoffice_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, global_exception_handler)
    return app


app = create_app()
