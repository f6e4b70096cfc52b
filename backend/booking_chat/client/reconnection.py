from __future__ import annotations

import asyncio
import logging
import math
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..domain.scheduling import Cancellable, Scheduler
from ..services.scheduling import AsyncioScheduler

logger = logging.getLogger(__name__)


class ReconnectionConfig(BaseModel):
    """Backoff policy. Delays are in seconds."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=10, ge=1)
    initial_delay: float = Field(default=1.0, gt=0)
    max_delay: float = Field(default=30.0, gt=0)
    backoff_factor: float = Field(default=1.5, ge=1)
    # Fraction of the computed delay, applied as +/- jitter
    jitter_range: float = Field(default=0.3, ge=0, lt=1)
    min_delay: float = Field(default=0.1, gt=0)


class ReconnectionPhase(StrEnum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    WAITING = "waiting"
    EXHAUSTED = "exhausted"
    CONNECTED = "connected"


@dataclass
class ReconnectionState:
    is_reconnecting: bool = False
    attempt_count: int = 0
    # Whole seconds until the next scheduled attempt, for display
    next_retry_in: int = 0
    last_attempt_at: datetime | None = None
    last_success_at: datetime | None = None


def backoff_delay(retry_index: int, config: ReconnectionConfig) -> float:
    """Unjittered delay before retry number ``retry_index`` (0-based), clamped at ``max_delay``."""
    return min(config.initial_delay * config.backoff_factor**retry_index, config.max_delay)


def jittered_delay(
    retry_index: int,
    config: ReconnectionConfig,
    rng: Callable[[], float] = random.random,
) -> float:
    base = backoff_delay(retry_index, config)
    jitter = (rng() - 0.5) * 2 * config.jitter_range * base
    return max(base + jitter, config.min_delay)


class ReconnectionManager:
    """
    Drives a caller-supplied reconnect operation with bounded exponential backoff.

    The first attempt after ``start()`` runs immediately. Each failure
    schedules the next attempt after a jittered, exponentially growing
    delay until the operation succeeds, ``max_attempts`` is reached, or the
    manager is stopped. Attempts are strictly sequential and at most one
    retry timer is outstanding.

    Failures of the reconnect operation (``False`` or an exception) never
    propagate; they are reported through ``on_reconnection_failed``.

    ``stop()`` pauses (the attempt count is kept), ``reset()`` clears
    everything, and ``close()`` tears the manager down for good: no callback
    fires afterwards, even for an attempt that was already in flight.
    """

    def __init__(
        self,
        on_reconnect: Callable[[], Awaitable[bool]],
        config: ReconnectionConfig | None = None,
        *,
        enabled: bool = True,
        scheduler: Scheduler | None = None,
        rng: Callable[[], float] = random.random,
        on_reconnection_success: Callable[[], Any] | None = None,
        on_reconnection_failed: Callable[[int], Any] | None = None,
        on_max_attempts_reached: Callable[[], Any] | None = None,
    ) -> None:
        self._on_reconnect = on_reconnect
        self._config = config or ReconnectionConfig()
        self._enabled = enabled
        self._scheduler: Scheduler = scheduler or AsyncioScheduler()
        self._rng = rng
        self._on_success = on_reconnection_success
        self._on_failed = on_reconnection_failed
        self._on_exhausted = on_max_attempts_reached

        self._state = ReconnectionState()
        self._phase = ReconnectionPhase.IDLE
        self._retry_timer: Cancellable | None = None
        self._countdown_timer: Cancellable | None = None
        self._task: asyncio.Task[None] | None = None
        # Set while _on_reconnect is being awaited, whatever epoch started it
        self._in_flight = False
        # Bumped by stop/reset/close; attempts started under an older epoch are discarded
        self._epoch = 0
        self._closed = False

    @property
    def config(self) -> ReconnectionConfig:
        return self._config

    @property
    def state(self) -> ReconnectionState:
        return replace(self._state)

    @property
    def phase(self) -> ReconnectionPhase:
        return self._phase

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self._enabled = value
        if not value:
            self.stop()

    def get_next_delay(self) -> float:
        """Jittered delay (seconds) that the next scheduled retry would use."""
        return jittered_delay(max(self._state.attempt_count - 1, 0), self._config, self._rng)

    def can_reconnect(self) -> bool:
        return (
            self._enabled
            and not self._closed
            and not self._state.is_reconnecting
            and self._state.attempt_count < self._config.max_attempts
        )

    def start(self) -> None:
        """
        Begin (or resume after ``stop()``) a reconnection cycle.

        No-op while a cycle is already running or once the attempt ceiling
        has been reached.
        """
        if not self.can_reconnect():
            return
        if self._retry_timer is not None or (self._task is not None and not self._task.done()):
            return

        if self._state.attempt_count == 0:
            self._spawn_cycle()
        else:
            self._schedule_next_attempt()

    async def attempt_reconnection(self) -> bool:
        """
        Run a single reconnect attempt now.

        Returns:
            True if the operation reported a working connection. False if it
            failed, raised, was not allowed to run, or the manager was
            stopped while it was in flight.
        """
        if not self.can_reconnect() or self._in_flight:
            return False

        self._cancel_timers()
        epoch = self._epoch
        self._state.is_reconnecting = True
        self._state.attempt_count += 1
        self._state.next_retry_in = 0
        self._state.last_attempt_at = datetime.now(UTC)
        self._phase = ReconnectionPhase.ATTEMPTING
        attempt = self._state.attempt_count

        self._in_flight = True
        try:
            success = bool(await self._on_reconnect())
        except Exception:
            logger.exception("Reconnection attempt %d failed", attempt)
            success = False
        finally:
            self._in_flight = False

        if self._closed or epoch != self._epoch:
            return False

        self._state.is_reconnecting = False
        if success:
            self._state.last_success_at = datetime.now(UTC)
            self._phase = ReconnectionPhase.CONNECTED
            logger.info("Reconnected after %d attempt(s)", attempt)
            self._notify(self._on_success)
            return True

        self._notify(self._on_failed, attempt)
        if attempt >= self._config.max_attempts:
            self._phase = ReconnectionPhase.EXHAUSTED
            logger.warning("Giving up after %d reconnection attempts", attempt)
            self._notify(self._on_exhausted)
        else:
            self._phase = ReconnectionPhase.IDLE
        return False

    def stop(self) -> None:
        """Cancel pending timers and discard any in-flight attempt. The attempt count is kept."""
        self._epoch += 1
        self._cancel_timers()
        self._state.is_reconnecting = False
        self._state.next_retry_in = 0
        if self._phase is not ReconnectionPhase.EXHAUSTED:
            self._phase = ReconnectionPhase.IDLE

    def reset(self) -> None:
        """Stop and clear all state, re-arming the manager after exhaustion."""
        self.stop()
        self._state = ReconnectionState()
        self._phase = ReconnectionPhase.IDLE

    def close(self) -> None:
        self.stop()
        self._closed = True

    async def wait(self) -> None:
        """Wait for the attempt currently in flight, if any."""
        if self._task is not None and not self._task.done():
            await asyncio.shield(self._task)

    # --- Internals ---

    def _spawn_cycle(self) -> None:
        self._task = asyncio.get_running_loop().create_task(self._run_cycle())

    async def _run_cycle(self) -> None:
        epoch = self._epoch
        success = await self.attempt_reconnection()
        if success or self._closed or epoch != self._epoch:
            return
        if self.can_reconnect():
            self._schedule_next_attempt()

    def _schedule_next_attempt(self) -> None:
        delay = self.get_next_delay()
        self._phase = ReconnectionPhase.WAITING
        self._state.next_retry_in = math.ceil(delay)
        logger.debug(
            "Next reconnection attempt (%d/%d) in %.2fs",
            self._state.attempt_count + 1,
            self._config.max_attempts,
            delay,
        )
        self._retry_timer = self._scheduler.after(delay, self._on_retry_due)
        if self._state.next_retry_in > 0:
            self._countdown_timer = self._scheduler.after(1.0, self._on_countdown_tick)

    def _on_countdown_tick(self) -> None:
        self._countdown_timer = None
        if self._closed or self._retry_timer is None:
            return
        self._state.next_retry_in = max(0, self._state.next_retry_in - 1)
        if self._state.next_retry_in > 0:
            self._countdown_timer = self._scheduler.after(1.0, self._on_countdown_tick)

    def _on_retry_due(self) -> None:
        self._retry_timer = None
        self._cancel_timers()
        self._state.next_retry_in = 0
        if self._closed:
            return
        self._spawn_cycle()

    def _cancel_timers(self) -> None:
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None
        if self._countdown_timer is not None:
            self._countdown_timer.cancel()
            self._countdown_timer = None

    @staticmethod
    def _notify(callback: Callable[..., Any] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Reconnection callback %r raised", callback)
