"""
WebSocketConnection tests against a stand-in socket
"""

import asyncio
import json

import pytest
from starlette.websockets import WebSocketDisconnect, WebSocketState

from backoffice.core.exceptions import DispatchFailure
from backoffice.models import UserRole
from backoffice.services.notifications import WebSocketConnection


class StubSocket:
    """Just enough of a Starlette WebSocket for the writer task."""

    def __init__(self, error=None):
        self.application_state = WebSocketState.CONNECTED
        self.error = error
        self.sent = []

    async def send_text(self, frame):
        if self.error is not None:
            raise self.error
        self.sent.append(frame)


async def _settle(connection, open_expected):
    for _ in range(50):
        if connection.is_open == open_expected:
            return
        await asyncio.sleep(0)


class TestWriter:
    """Writer task"""

    @pytest.mark.asyncio
    async def test_frames_and_replies_share_one_ordered_outbox(self):
        socket = StubSocket()
        connection = WebSocketConnection(socket, UserRole.ADMIN, user_id="1")
        connection.start()

        connection.push('{"type": "SYSTEM_ALERT"}')
        assert connection.reply({"action": "subscribed", "scope": "system"}) is True
        for _ in range(50):
            if len(socket.sent) == 2:
                break
            await asyncio.sleep(0)
        await connection.close()

        assert json.loads(socket.sent[0]) == {"type": "SYSTEM_ALERT"}
        assert json.loads(socket.sent[1]) == {"action": "subscribed", "scope": "system"}

    @pytest.mark.asyncio
    async def test_peer_disconnect_closes_quietly(self):
        connection = WebSocketConnection(StubSocket(WebSocketDisconnect(1006)), UserRole.ADMIN)
        connection.start()

        connection.push("{}")
        await _settle(connection, open_expected=False)

        assert not connection.is_open
        await connection.close()
        with pytest.raises(DispatchFailure):
            connection.push("{}")

    @pytest.mark.asyncio
    async def test_unexpected_send_error_closes_quietly(self):
        connection = WebSocketConnection(StubSocket(ValueError("bad frame")), UserRole.ADMIN)
        connection.start()

        connection.push("{}")
        await _settle(connection, open_expected=False)

        assert not connection.is_open
        await connection.close()


class TestReply:
    """Control replies never block the receive loop"""

    @pytest.mark.asyncio
    async def test_reply_after_writer_exit_is_dropped(self):
        connection = WebSocketConnection(StubSocket(WebSocketDisconnect(1006)), UserRole.ADMIN)
        connection.start()
        connection.push("{}")
        await _settle(connection, open_expected=False)

        assert connection.reply({"action": "subscribed", "scope": "system"}) is False
        await connection.close()

    @pytest.mark.asyncio
    async def test_reply_on_full_outbox_is_dropped(self):
        connection = WebSocketConnection(StubSocket(), UserRole.ADMIN, outbox_size=1)

        assert connection.reply({"action": "subscribed", "scope": "system"}) is True
        assert connection.reply({"action": "subscribed", "scope": "orders"}) is False
        await connection.close()
