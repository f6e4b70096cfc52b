from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from pydantic_core import PydanticSerializationError

from ..domain.sinks import EventSink
from ..schemas import (
    ChatEvent,
    ConnectionInfo,
    DeliveryStatus,
    DeliveryStatusData,
    DeliveryStatusEvent,
    MessageEvent,
    PingEvent,
    SystemEvent,
    SystemNotice,
    TypingData,
    TypingEvent,
)
from .sse import format_sse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Connection:
    """One live client stream, subscribed to a single booking for its lifetime."""

    connection_id: str
    user_id: str
    booking_id: str
    sink: EventSink
    connected_at: float


class BroadcastHub:
    """
    In-process registry of live booking chat streams with fan-out.

    Delivery is best effort: a sink that raises on write is evicted rather
    than retried, and the client is expected to reconnect under a new
    connection id. Registry mutations are guarded by a single lock; sink
    writes happen outside it on a snapshot of the matching connections, and
    evictions are applied once the pass has finished.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._connections: dict[str, Connection] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def register(
        self,
        connection_id: str,
        sink: EventSink,
        user_id: str,
        booking_id: str,
    ) -> Connection:
        """Add a connection. A reused id overwrites the previous entry."""
        connection = Connection(
            connection_id=connection_id,
            user_id=user_id,
            booking_id=booking_id,
            sink=sink,
            connected_at=self._clock(),
        )
        with self._lock:
            previous = self._connections.get(connection_id)
            self._connections[connection_id] = connection
        if previous is not None:
            logger.warning("Connection id %s re-registered; replacing previous entry", connection_id)
        logger.debug(
            "Registered connection %s (user=%s, booking=%s)", connection_id, user_id, booking_id
        )
        return connection

    def unregister(self, connection_id: str) -> bool:
        """Remove a connection. Unknown ids are ignored; returns whether anything was removed."""
        with self._lock:
            removed = self._connections.pop(connection_id, None)
        if removed is not None:
            logger.debug("Unregistered connection %s", connection_id)
        return removed is not None

    # --- Fan-out ---

    def broadcast_message(
        self,
        booking_id: str,
        message: Any,
        exclude_user_id: str | None = None,
    ) -> int:
        """Deliver a chat message to every viewer of the booking except ``exclude_user_id``."""
        return self._fan_out(
            MessageEvent(data=message),
            lambda c: c.booking_id == booking_id and c.user_id != exclude_user_id,
        )

    def broadcast_typing(
        self,
        booking_id: str,
        user_id: str,
        is_typing: bool,
        user_name: str | None = None,
    ) -> int:
        """Deliver a typing indicator to everyone on the booking except all of the typist's streams."""
        event = TypingEvent(data=TypingData(user_id=user_id, user_name=user_name, is_typing=is_typing))
        return self._fan_out(
            event,
            lambda c: c.booking_id == booking_id and c.user_id != user_id,
        )

    def broadcast_delivery_status(
        self,
        booking_id: str,
        message_id: str,
        status: DeliveryStatus,
        target_user_id: str | None = None,
    ) -> int:
        event = DeliveryStatusEvent(data=DeliveryStatusData(message_id=message_id, status=status))
        return self._fan_out(event, self._targeting(booking_id, target_user_id))

    def broadcast_system_message(
        self,
        booking_id: str,
        notice: SystemNotice,
        target_user_id: str | None = None,
    ) -> int:
        return self._fan_out(SystemEvent(data=notice), self._targeting(booking_id, target_user_id))

    def send_ping(self, connection_id: str) -> bool:
        """
        Write a keep-alive ping to a single connection.

        Returns:
            False if the connection is unknown or the write failed (it is then evicted)
        """
        with self._lock:
            connection = self._connections.get(connection_id)
        if connection is None:
            return False
        return self._write_all(PingEvent(), [connection]) == 1

    # --- Maintenance / diagnostics ---

    def active_connection_count(self, booking_id: str | None = None) -> int:
        with self._lock:
            if booking_id is None:
                return len(self._connections)
            return sum(1 for c in self._connections.values() if c.booking_id == booking_id)

    def reap_stale(self, max_age: float) -> int:
        """
        Remove every connection registered more than ``max_age`` seconds ago.

        Returns:
            Number of connections removed
        """
        now = self._clock()
        with self._lock:
            stale = [c for c in self._connections.values() if now - c.connected_at > max_age]
            for connection in stale:
                del self._connections[connection.connection_id]
        for connection in stale:
            logger.info("Cleaning up stale connection: %s", connection.connection_id)
            self._close_sink(connection)
        return len(stale)

    def connection_info(self, booking_id: str | None = None) -> ConnectionInfo:
        with self._lock:
            connections = list(self._connections.values())
        by_booking = Counter(c.booking_id for c in connections)
        return ConnectionInfo(
            total_connections=len(connections),
            connections_by_booking=dict(by_booking),
            connections_by_user=dict(Counter(c.user_id for c in connections)),
            active_connections=by_booking.get(booking_id, 0) if booking_id is not None else None,
        )

    # --- Internals ---

    @staticmethod
    def _targeting(booking_id: str, target_user_id: str | None) -> Callable[[Connection], bool]:
        def matches(connection: Connection) -> bool:
            if connection.booking_id != booking_id:
                return False
            return target_user_id is None or connection.user_id == target_user_id

        return matches

    def _fan_out(self, event: ChatEvent, predicate: Callable[[Connection], bool]) -> int:
        with self._lock:
            targets = [c for c in self._connections.values() if predicate(c)]
        return self._write_all(event, targets)

    def _write_all(self, event: ChatEvent, targets: Iterable[Connection]) -> int:
        try:
            frame = format_sse(event)
        except PydanticSerializationError:
            logger.warning("Dropping %s event that cannot be serialized", event.type, exc_info=True)
            return 0
        delivered = 0
        failed: list[Connection] = []
        for connection in targets:
            try:
                connection.sink.send(frame)
            except Exception:
                logger.warning(
                    "Error broadcasting %s to connection %s",
                    event.type,
                    connection.connection_id,
                    exc_info=True,
                )
                failed.append(connection)
            else:
                delivered += 1

        if failed:
            self._evict(failed)
        return delivered

    def _evict(self, connections: list[Connection]) -> None:
        evicted: list[Connection] = []
        with self._lock:
            for connection in connections:
                # Skip entries that were replaced or removed while we were writing
                if self._connections.get(connection.connection_id) is connection:
                    del self._connections[connection.connection_id]
                    evicted.append(connection)
        for connection in evicted:
            self._close_sink(connection)

    @staticmethod
    def _close_sink(connection: Connection) -> None:
        try:
            connection.sink.close()
        except Exception:
            logger.warning("Error closing sink for connection %s", connection.connection_id, exc_info=True)
