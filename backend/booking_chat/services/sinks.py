from __future__ import annotations

import asyncio

from ..errors import SinkClosedError


class QueueSink:
    """
    EventSink backed by a bounded asyncio queue.

    The streaming response drains the queue; ``send`` never waits, so a
    consumer that falls ``maxsize`` frames behind makes the write raise
    ``asyncio.QueueFull`` and the hub evicts it.

    ``send`` and ``close`` may be called from any thread. Off the owning
    loop's thread the frame is handed over with ``call_soon_threadsafe`` so
    a waiting ``receive()`` is woken immediately.
    """

    def __init__(self, maxsize: int = 100, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop or asyncio.get_running_loop()
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, frame: str) -> None:
        if self._closed:
            raise SinkClosedError("sink is closed")
        if self._on_loop_thread():
            self._queue.put_nowait(frame)
            return
        if self._queue.full():
            raise asyncio.QueueFull
        self._loop.call_soon_threadsafe(self._deliver, frame)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._on_loop_thread():
            self._push_sentinel()
        else:
            self._loop.call_soon_threadsafe(self._push_sentinel)

    async def receive(self) -> str | None:
        """Next frame, or None once the sink has been closed."""
        return await self._queue.get()

    def _on_loop_thread(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    def _deliver(self, frame: str) -> None:
        if self._closed:
            return
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            # Filled up between the cross-thread check and delivery
            self.close()

    def _push_sentinel(self) -> None:
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            # Backlog of a consumer that is already too slow; the sentinel must fit
            while not self._queue.empty():
                self._queue.get_nowait()
            self._queue.put_nowait(None)
