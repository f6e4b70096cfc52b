from __future__ import annotations

import asyncio
from collections.abc import Callable


class _TimerHandle:
    def __init__(self, handle: asyncio.TimerHandle) -> None:
        self._handle = handle

    def cancel(self) -> None:
        self._handle.cancel()


class AsyncioScheduler:
    """Scheduler backed by the running event loop's ``call_later``."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def now(self) -> float:
        return self._get_loop().time()

    def after(self, delay: float, callback: Callable[[], None]) -> _TimerHandle:
        return _TimerHandle(self._get_loop().call_later(max(delay, 0.0), callback))
