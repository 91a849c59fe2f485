"""
Subscription Registry

Tracks which live connection listens on which topic, and which
connections belong to which user for private delivery.

Membership maps are copy-on-write: a writer builds new maps under the
writer lock and swaps the references, so resolve() reads a consistent
point-in-time snapshot without taking any lock. Connections are held by
weak reference; one that went away between snapshot and push is skipped.
A collected connection that was never disconnected is queued by its
weakref callback and pruned on the next registry call.
"""

import logging
import threading
from collections import deque
import weakref
from typing import Optional

from backoffice.core.exceptions import SubscriptionDeniedError, ValidationError
from backoffice.services.notifications.base import (
    ALL_TOPICS,
    PRIVATE_SCOPE,
    ROLE_TOPICS,
    BaseConnection,
)
from backoffice.services.notifications.events import NotificationEvent

logger = logging.getLogger(__name__)


class SubscriptionRegistry:
    """
    Topic and user membership for live connections.

    Example:
        >>> registry = SubscriptionRegistry()
        >>> registry.subscribe(conn, "kitchen")
        >>> registry.resolve(kitchen_order_created(order))
        [<RecordingConnection(id=c1, role=KITCHEN_STAFF, user=3)>]
    """

    def __init__(self):
        self._write_lock = threading.Lock()
        self._connections: dict[str, weakref.ref] = {}
        self._topics: dict[str, frozenset[str]] = {}
        self._users: dict[str, frozenset[str]] = {}
        self._scopes: dict[str, frozenset[str]] = {}
        self._collected: deque = deque()

    # =========================================================================
    # WRITERS
    # =========================================================================

    def register(self, connection: BaseConnection) -> None:
        with self._write_lock:
            self._sweep_locked()
            self._register_locked(connection)
        logger.debug(f"Registered {connection!r}")

    def subscribe(self, connection: BaseConnection, scope: str) -> None:
        """
        Add a connection to a topic or to its user's private queue.

        Raises:
            ValidationError: Unknown scope, or private scope without a user id
            SubscriptionDeniedError: The role may not see this topic
        """
        self._check_scope(connection, scope)

        with self._write_lock:
            self._sweep_locked()
            self._register_locked(connection)
            cid = connection.connection_id
            if scope == PRIVATE_SCOPE:
                self._users = _with_member(self._users, connection.user_id, cid)
            else:
                self._topics = _with_member(self._topics, scope, cid)
            self._scopes = _with_member(self._scopes, cid, scope)

        logger.info(f"{connection.connection_id} subscribed to {scope}")

    def unsubscribe(self, connection: BaseConnection, scope: str) -> None:
        if scope != PRIVATE_SCOPE and scope not in ALL_TOPICS:
            raise ValidationError(f"Unknown subscription scope: {scope}")

        with self._write_lock:
            self._sweep_locked()
            cid = connection.connection_id
            if scope == PRIVATE_SCOPE:
                if connection.user_id is not None:
                    self._users = _without_member(self._users, connection.user_id, cid)
            else:
                self._topics = _without_member(self._topics, scope, cid)
            self._scopes = _without_member(self._scopes, cid, scope)

        logger.info(f"{connection.connection_id} unsubscribed from {scope}")

    def disconnect(self, connection: BaseConnection) -> None:
        """Drop a connection and every membership it holds."""
        with self._write_lock:
            self._sweep_locked()
            self._drop_locked(connection.connection_id, connection.user_id)
        logger.debug(f"Disconnected {connection!r}")

    # =========================================================================
    # READERS
    # =========================================================================

    def resolve(self, event: NotificationEvent) -> list[BaseConnection]:
        """
        Live connections that should receive `event`, each listed once.

        Private events go to the target user's private subscribers only;
        broadcast events go to the union of their topics' members.
        """
        self._sweep()
        connections = self._connections
        if event.is_private:
            ids = sorted(self._users.get(event.target_user_id, ()))
        else:
            topics = self._topics
            ids = dict.fromkeys(
                cid
                for topic in event.topics
                for cid in sorted(topics.get(topic, ()))
            )

        recipients = []
        for cid in ids:
            ref = connections.get(cid)
            connection = ref() if ref is not None else None
            if connection is None or not connection.is_open:
                continue
            recipients.append(connection)
        return recipients

    def subscriber_count(self, scope: str, user_id: Optional[str] = None) -> int:
        self._sweep()
        if scope == PRIVATE_SCOPE:
            return len(self._users.get(str(user_id), ()))
        return len(self._topics.get(scope, ()))

    def scopes_of(self, connection: BaseConnection) -> frozenset[str]:
        return self._scopes.get(connection.connection_id, frozenset())

    def __len__(self) -> int:
        return sum(1 for ref in self._connections.values() if ref() is not None)

    def stats(self) -> dict:
        self._sweep()
        topics = self._topics
        return {
            "connections": len(self),
            "topics": {topic: len(topics.get(topic, ())) for topic in sorted(ALL_TOPICS)},
            "privateUsers": len(self._users),
        }

    # =========================================================================
    # INTERNALS (writer lock held)
    # =========================================================================

    def _check_scope(self, connection: BaseConnection, scope: str) -> None:
        if scope == PRIVATE_SCOPE:
            if not connection.user_id:
                raise ValidationError("Private subscription requires a user identity")
            return
        if scope not in ALL_TOPICS:
            raise ValidationError(f"Unknown subscription scope: {scope}")
        if scope not in ROLE_TOPICS.get(connection.role, frozenset()):
            raise SubscriptionDeniedError(
                f"Role {connection.role.value} may not subscribe to {scope}"
            )

    def _register_locked(self, connection: BaseConnection) -> None:
        cid = connection.connection_id
        ref = self._connections.get(cid)
        if ref is not None and ref() is connection:
            return
        connections = dict(self._connections)
        connections[cid] = weakref.ref(connection, _collector(self._collected, cid, connection.user_id))
        self._connections = connections

    def _sweep(self) -> None:
        if self._collected:
            with self._write_lock:
                self._sweep_locked()

    def _sweep_locked(self) -> None:
        while self._collected:
            cid, user_id, ref = self._collected.popleft()
            # The id may already belong to a newer connection.
            if self._connections.get(cid) is ref:
                self._drop_locked(cid, user_id)

    def _drop_locked(self, cid: str, user_id: Optional[str]) -> None:
        if cid not in self._connections:
            return
        connections = dict(self._connections)
        del connections[cid]

        topics = self._topics
        for topic in self._scopes.get(cid, ()):
            if topic != PRIVATE_SCOPE:
                topics = _without_member(topics, topic, cid)
        users = self._users
        if user_id is not None:
            users = _without_member(users, user_id, cid)
        scopes = dict(self._scopes)
        scopes.pop(cid, None)

        self._topics = topics
        self._users = users
        self._scopes = scopes
        self._connections = connections


def _collector(collected: deque, cid: str, user_id: Optional[str]):
    # Runs inside the garbage collector, possibly while this thread holds
    # the writer lock, so it only queues.
    def on_collected(ref):
        collected.append((cid, user_id, ref))
    return on_collected


def _with_member(mapping: dict, key, member) -> dict:
    current = mapping.get(key, frozenset())
    if member in current:
        return mapping
    updated = dict(mapping)
    updated[key] = current | {member}
    return updated


def _without_member(mapping: dict, key, member) -> dict:
    current = mapping.get(key)
    if not current or member not in current:
        return mapping
    updated = dict(mapping)
    remaining = current - {member}
    if remaining:
        updated[key] = remaining
    else:
        del updated[key]
    return updated
