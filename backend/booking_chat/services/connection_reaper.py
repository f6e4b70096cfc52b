from __future__ import annotations

import logging

from ..domain.scheduling import Cancellable, Scheduler
from .broadcast_hub import BroadcastHub

logger = logging.getLogger(__name__)


class StaleConnectionReaper:
    """Periodically drops hub connections older than ``max_age`` seconds."""

    def __init__(
        self,
        hub: BroadcastHub,
        scheduler: Scheduler,
        max_age: float = 300.0,
        interval: float = 60.0,
    ) -> None:
        self._hub = hub
        self._scheduler = scheduler
        self._max_age = max_age
        self._interval = interval
        self._timer: Cancellable | None = None

    @property
    def running(self) -> bool:
        return self._timer is not None

    def start(self) -> None:
        if self._timer is not None:
            return
        self._timer = self._scheduler.after(self._interval, self._tick)

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def run_once(self) -> int:
        removed = self._hub.reap_stale(self._max_age)
        if removed:
            logger.info("Reaped %d stale connection(s)", removed)
        return removed

    def _tick(self) -> None:
        if self._timer is None:
            return
        try:
            self.run_once()
        except Exception:
            logger.exception("Stale connection reaping failed")
        finally:
            if self._timer is not None:
                self._timer = self._scheduler.after(self._interval, self._tick)
