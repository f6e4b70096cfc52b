class ChatRealtimeError(Exception):
    """Base class for errors raised by the booking chat transport."""


class SinkClosedError(ChatRealtimeError):
    """Raised when a frame is written to a sink that has already been closed."""


class StreamConnectError(ChatRealtimeError):
    """Raised by the stream client when the server refuses to open an event stream."""

    def __init__(self, status_code: int, reason: str = "") -> None:
        self.status_code = status_code
        self.reason = reason
        super().__init__(f"Event stream rejected with HTTP {status_code} {reason}".strip())
