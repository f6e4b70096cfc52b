from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

from .broadcast_hub import BroadcastHub
from .sinks import QueueSink

logger = logging.getLogger(__name__)


async def stream_connection(
    hub: BroadcastHub,
    connection_id: str,
    user_id: str,
    booking_id: str,
    *,
    keepalive_interval: float = 30.0,
    queue_size: int = 100,
    is_disconnected: Callable[[], Awaitable[bool]] | None = None,
) -> AsyncIterator[str]:
    """
    Register a connection and yield its frames until it goes away.

    The stream ends when the client disconnects, when the hub closes the sink
    (eviction or staleness), or when a keep-alive ping can no longer be
    delivered. The connection is always unregistered on exit.
    """
    sink = QueueSink(maxsize=queue_size)
    hub.register(connection_id, sink, user_id, booking_id)
    try:
        while True:
            if is_disconnected is not None and await is_disconnected():
                break

            try:
                frame = await asyncio.wait_for(sink.receive(), timeout=keepalive_interval)
            except TimeoutError:
                if not hub.send_ping(connection_id):
                    break
                continue

            if frame is None:
                break
            yield frame
    finally:
        hub.unregister(connection_id)
        sink.close()
        logger.debug("Stream %s for booking %s closed", connection_id, booking_id)
