from __future__ import annotations

from typing import Protocol


class EventSink(Protocol):
    """
    Protocol for the per-connection write side of a stream.

    The hub hands a sink one pre-framed event string at a time. A sink must
    either accept the frame immediately or raise; it must never wait on flow
    control, so a slow consumer surfaces as a failed write.
    """

    def send(self, frame: str) -> None:
        """
        Write one framed event.

        Raises:
            Exception: any error means the peer is gone and the connection
                should be evicted.
        """
        ...

    def close(self) -> None:
        """
        Signal the transport that no further frames will be written.

        Must be idempotent.
        """
        ...
