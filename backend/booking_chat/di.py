from __future__ import annotations

from fastapi import Request

from .config import Settings
from .domain.scheduling import Scheduler
from .services.broadcast_hub import BroadcastHub
from .services.connection_reaper import StaleConnectionReaper
from .services.scheduling import AsyncioScheduler


class DependencyContainer:
    """
    Dependency injection container.

    Owns the process-wide hub and the reaper that maintains it. One container
    is created per application instance, so tests get isolated registries.
    """

    def __init__(self, settings: Settings, scheduler: Scheduler | None = None) -> None:
        """
        Initialize the container.

        Args:
            settings: Runtime settings
            scheduler: Timer source for the reaper (event loop by default)
        """
        self.settings = settings
        self.scheduler = scheduler or AsyncioScheduler()

        self.hub = BroadcastHub()
        self.reaper = StaleConnectionReaper(
            hub=self.hub,
            scheduler=self.scheduler,
            max_age=settings.stale_connection_max_age,
            interval=settings.stale_reap_interval,
        )


def get_container(request: Request) -> DependencyContainer:
    return request.app.state.container


def get_hub(request: Request) -> BroadcastHub:
    return get_container(request).hub
