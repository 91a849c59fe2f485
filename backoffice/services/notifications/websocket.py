"""
WebSocket Connection

Production subscriber backed by a FastAPI/Starlette WebSocket.

push() only appends to a bounded per-connection outbox; a writer task
owned by the connection sends frames in order. A subscriber that stops
reading fills its own outbox and starts losing frames without ever
slowing the dispatcher or any other connection.
"""

import asyncio
import json
import logging
import uuid
from typing import Optional

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect, WebSocketState

from backoffice.core.exceptions import DispatchFailure
from backoffice.models import UserRole
from backoffice.services.notifications.base import BaseConnection

logger = logging.getLogger(__name__)


class WebSocketConnection(BaseConnection):
    """
    A WebSocket client subscribed to notifications.

    Usage:
        connection = WebSocketConnection(websocket, role, user_id)
        connection.start()
        ...
        await connection.close()
    """

    def __init__(
        self,
        websocket: WebSocket,
        role: UserRole,
        user_id: Optional[str] = None,
        outbox_size: int = 256,
        send_timeout: float = 5.0,
    ):
        super().__init__(f"ws-{uuid.uuid4().hex[:12]}", role, user_id)
        self.websocket = websocket
        self.send_timeout = send_timeout
        self._outbox: asyncio.Queue[str] = asyncio.Queue(maxsize=outbox_size)
        self._writer: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def provider_name(self) -> str:
        return "websocket"

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    def start(self) -> None:
        self._writer = asyncio.get_running_loop().create_task(
            self._write_loop(), name=f"{self.connection_id}-writer"
        )

    def push(self, frame: str) -> None:
        if not self.is_open:
            raise DispatchFailure(self.connection_id, "connection closed")
        try:
            self._outbox.put_nowait(frame)
        except asyncio.QueueFull:
            raise DispatchFailure(self.connection_id, "outbox full, subscriber too slow")

    def reply(self, payload: dict) -> bool:
        """
        Queue a control reply (ack or error) behind any pending frames.

        Returns False, dropping the reply, when the connection is closed or
        its outbox is full; the caller should then stop serving the client.
        """
        if self._closed:
            return False
        try:
            self._outbox.put_nowait(json.dumps(payload))
        except asyncio.QueueFull:
            logger.warning(f"{self.connection_id}: outbox full, reply dropped")
            return False
        return True

    async def close(self) -> None:
        self._closed = True
        if self._writer is not None:
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug(f"{self.connection_id}: writer ended with {e!r}")
            self._writer = None

    async def _write_loop(self) -> None:
        while True:
            frame = await self._outbox.get()
            try:
                await asyncio.wait_for(
                    self.websocket.send_text(frame), timeout=self.send_timeout
                )
            except asyncio.TimeoutError:
                logger.warning(f"{self.connection_id}: send timed out, closing")
                self._closed = True
                return
            except WebSocketDisconnect as e:
                logger.info(f"{self.connection_id}: peer gone (code {e.code}), closing")
                self._closed = True
                return
            except (RuntimeError, ConnectionError) as e:
                logger.info(f"{self.connection_id}: send failed ({e}), closing")
                self._closed = True
                return
            except Exception:
                logger.exception(f"{self.connection_id}: unexpected send error, closing")
                self._closed = True
                return
