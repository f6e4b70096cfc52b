from __future__ import annotations

from collections.abc import Callable
from typing import Protocol


class Cancellable(Protocol):
    """Token returned by a scheduler; cancelling a fired or cancelled timer is a no-op."""

    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """
    Protocol for timer-driven scheduling.

    Backoff retries and stale-connection reaping depend on this instead of
    the event loop directly, so tests can drive them with a virtual clock.
    """

    def now(self) -> float:
        """Current monotonic time in seconds."""
        ...

    def after(self, delay: float, callback: Callable[[], None]) -> Cancellable:
        """
        Run ``callback`` once, ``delay`` seconds from now.

        Args:
            delay: Seconds to wait (values <= 0 fire on the next tick)
            callback: Synchronous, argument-less function

        Returns:
            A token whose ``cancel()`` prevents the callback from firing
        """
        ...
