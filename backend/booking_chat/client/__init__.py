"""Client side of the booking chat transport - stream consumer and reconnection policy."""

from .reconnection import (
    ReconnectionConfig,
    ReconnectionManager,
    ReconnectionPhase,
    ReconnectionState,
)
from .stream_client import ChatStreamClient, ConnectionStatus

__all__ = [
    "ChatStreamClient",
    "ConnectionStatus",
    "ReconnectionConfig",
    "ReconnectionManager",
    "ReconnectionPhase",
    "ReconnectionState",
]
