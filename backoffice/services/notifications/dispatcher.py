"""
Notification Dispatcher

Decouples coordinators from fan-out. submit() never blocks and never
raises towards the caller; a background worker drains the queue and
publishes each event to the connections the registry resolves.

Delivery is at-most-once: a frame a connection cannot take is logged and
dropped, never retried. Clients reconcile through the REST read endpoints.
"""

import asyncio
import logging
from typing import Callable, Optional

from backoffice.core.exceptions import DispatchFailure
from backoffice.services.notifications.events import NotificationEvent
from backoffice.services.notifications.registry import SubscriptionRegistry

logger = logging.getLogger(__name__)

Listener = Callable[[NotificationEvent], None]


class NotificationDispatcher:
    """
    Queue + worker in front of the subscription registry.

    Attributes:
        registry: Resolves events to live connections
        published: Events fanned out so far
        dropped: Events lost to a full queue
        failed_pushes: Per-connection push failures swallowed so far
    """

    def __init__(self, registry: SubscriptionRegistry, queue_size: int = 10_000):
        self.registry = registry
        self._queue: asyncio.Queue[NotificationEvent] = asyncio.Queue(maxsize=queue_size)
        self._worker: Optional[asyncio.Task] = None
        self._listeners: list[Listener] = []
        self.published = 0
        self.dropped = 0
        self.failed_pushes = 0

    # =========================================================================
    # PRODUCER SIDE
    # =========================================================================

    def submit(self, event: NotificationEvent) -> None:
        """Enqueue an event for fan-out. Fire-and-forget."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                f"Dispatch queue full, dropping {event.event_type.value}: {event.message}"
            )

    def add_listener(self, listener: Listener) -> None:
        """Register a callback invoked after each event has been fanned out."""
        self._listeners.append(listener)

    # =========================================================================
    # FAN-OUT
    # =========================================================================

    def publish(self, event: NotificationEvent) -> int:
        """
        Push one event to every resolved connection.

        The frame is serialized once and the same text goes to every
        recipient. Returns the number of connections that accepted it.
        """
        recipients = self.registry.resolve(event)
        delivered = 0

        if recipients:
            frame = event.to_frame()
            for connection in recipients:
                try:
                    connection.push(frame)
                    delivered += 1
                except DispatchFailure as e:
                    self.failed_pushes += 1
                    logger.warning(f"Dropped {event.event_type.value} for {e}")
                except Exception:
                    self.failed_pushes += 1
                    logger.exception(
                        f"Unexpected error pushing {event.event_type.value} "
                        f"to {connection.connection_id}"
                    )

        self.published += 1
        logger.debug(
            f"Published {event.event_type.value} to {delivered}/{len(recipients)} connection(s)"
        )

        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(f"Dispatch listener failed for {event.event_type.value}")

        return delivered

    # =========================================================================
    # WORKER LIFECYCLE
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self.is_running:
            return
        self._worker = asyncio.get_running_loop().create_task(
            self._run(), name="notification-dispatcher"
        )
        logger.info("Notification dispatcher started")

    async def join(self) -> None:
        """Wait until every submitted event has been published."""
        if self.is_running:
            await self._queue.join()
        else:
            await self.drain()

    async def drain(self) -> int:
        """Publish everything queued, inline. Used when no worker runs."""
        count = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return count
            try:
                self.publish(event)
                count += 1
            finally:
                self._queue.task_done()

    async def stop(self, timeout: float = 5.0) -> None:
        if not self.is_running:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Dispatcher stopped with {self.pending} event(s) undelivered")

        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("Notification dispatcher stopped")

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                self.publish(event)
            except Exception:
                logger.exception(f"Failed to publish {event.event_type.value}")
            finally:
                self._queue.task_done()

    def stats(self) -> dict:
        return {
            "running": self.is_running,
            "pending": self.pending,
            "published": self.published,
            "dropped": self.dropped,
            "failedPushes": self.failed_pushes,
        }
