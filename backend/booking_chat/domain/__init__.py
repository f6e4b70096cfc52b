"""Domain layer - protocols the transport services depend on."""

from .scheduling import Cancellable, Scheduler
from .sinks import EventSink

__all__ = ["Cancellable", "EventSink", "Scheduler"]
