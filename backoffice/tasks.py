"""
Celery Tasks
Background export of closed orders to the Excel ledger.

The API process never writes the ledger itself: a dispatcher listener
queues export_closed_order for every order that reaches COMPLETED or
CANCELLED, and a Celery worker does the file work.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone

from backoffice.celery_worker import celery_app
from backoffice.models import OrderStatus
from backoffice.services.excel_manager import ExcelManager
from backoffice.services.notifications.events import EventType, NotificationEvent

logger = logging.getLogger(__name__)

CLOSED_STATUSES = frozenset({OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value})


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(OSError,),
    retry_backoff=True,
)
def export_closed_order(self, order: dict) -> dict:
    """
    Export a closed order snapshot to the ledger.

    Args:
        order: Order snapshot as published in ORDER_STATUS_CHANGED

    Returns:
        dict: Result of the export operation
    """
    task_id = self.request.id
    order_id = order.get("id", "unknown")

    logger.info(f"📋 Task {task_id}: exporting order #{order_id}")
    start_time = time.time()

    result = ExcelManager.export_order(order)

    elapsed = round(time.time() - start_time, 3)
    result["task_id"] = task_id
    result["processing_time_seconds"] = elapsed

    if result["success"]:
        logger.info(f"✅ Task {task_id}: order #{order_id} exported in {elapsed}s")
    else:
        logger.warning(f"⚠️ Task {task_id}: order #{order_id} failed - {result['message']}")

    return result


@celery_app.task
def health_check() -> dict:
    """Verify a worker is consuming."""
    return {
        "status": "healthy",
        "worker": "celery",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# =============================================================================
# DISPATCHER HOOK
# =============================================================================

def closed_order_listener(event: NotificationEvent) -> None:
    """
    Dispatcher listener: queue an export when an order closes.

    Enqueueing talks to the broker, so it runs in the default executor
    rather than on the dispatcher's event loop.
    """
    if event.event_type is not EventType.ORDER_STATUS_CHANGED:
        return
    if event.payload.get("newStatus") not in CLOSED_STATUSES:
        return

    snapshot = event.payload["order"]
    future = asyncio.get_running_loop().run_in_executor(
        None, export_closed_order.delay, snapshot
    )
    future.add_done_callback(_log_enqueue_failure(snapshot.get("id")))


def _log_enqueue_failure(order_id):
    def _callback(future: asyncio.Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Could not queue export for order #{order_id}: {error}")
    return _callback
