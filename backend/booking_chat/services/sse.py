from __future__ import annotations

from ..schemas import ChatEvent, parse_event

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
    "Connection": "keep-alive",
}

_DATA_PREFIX = "data:"


def format_sse(event: ChatEvent) -> str:
    """Serialize an event into a single ``text/event-stream`` frame."""
    return f"data: {event.model_dump_json(by_alias=True)}\n\n"


def parse_sse_data(line: str) -> ChatEvent | None:
    """
    Decode one line of an event stream.

    Returns None for blank separators, comments and non-``data`` fields.
    """
    if not line.startswith(_DATA_PREFIX):
        return None
    payload = line[len(_DATA_PREFIX) :].strip()
    if not payload:
        return None
    return parse_event(payload)
