"""
Recording Connection

In-memory subscriber used by the test-suite and by development tooling.
Every pushed frame is kept, decoded, so assertions can look at what a
given role would have seen.

Features:
    - Records raw frames and parsed payloads
    - Can be closed to simulate a client that went away
    - Optional failure flag to simulate a broken transport
"""

import json
import logging
from typing import Any, Optional

from backoffice.core.exceptions import DispatchFailure
from backoffice.models import UserRole
from backoffice.services.notifications.base import BaseConnection

logger = logging.getLogger(__name__)


class RecordingConnection(BaseConnection):
    """
    Connection that stores frames instead of sending them.

    Example:
        >>> conn = RecordingConnection("c1", UserRole.KITCHEN_STAFF, user_id="3")
        >>> conn.push('{"type": "ORDER_CREATED"}')
        >>> conn.types
        ['ORDER_CREATED']
    """

    def __init__(
        self,
        connection_id: str,
        role: UserRole,
        user_id: Optional[str] = None,
        fail_on_push: bool = False,
    ):
        super().__init__(connection_id, role, user_id)
        self.frames: list[str] = []
        self.fail_on_push = fail_on_push
        self._open = True

    @property
    def provider_name(self) -> str:
        return "recording"

    @property
    def is_open(self) -> bool:
        return self._open

    def push(self, frame: str) -> None:
        if not self._open:
            raise DispatchFailure(self.connection_id, "connection closed")
        if self.fail_on_push:
            raise DispatchFailure(self.connection_id, "simulated transport failure")
        self.frames.append(frame)
        logger.debug(f"[RECORD] {self.connection_id} <- {frame[:80]}")

    async def close(self) -> None:
        self._open = False

    @property
    def messages(self) -> list[dict[str, Any]]:
        return [json.loads(f) for f in self.frames]

    @property
    def types(self) -> list[str]:
        return [m["type"] for m in self.messages]
