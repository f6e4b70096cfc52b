from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class EventType(StrEnum):
    MESSAGE = "message"
    TYPING = "typing"
    DELIVERY_STATUS = "delivery_status"
    SYSTEM = "system"
    PING = "ping"


class DeliveryStatus(StrEnum):
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    READ = "READ"
    FAILED = "FAILED"


class CamelModel(BaseModel):
    """Wire models use camelCase keys; Python code uses snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


def _utcnow() -> datetime:
    return datetime.now(UTC)


# --- Event payloads ---


class TypingData(CamelModel):
    user_id: str
    user_name: str | None = None
    is_typing: bool


class DeliveryStatusData(CamelModel):
    message_id: str
    status: DeliveryStatus


class SystemNotice(CamelModel):
    """Out-of-band notice such as "payment verified"."""

    type: str
    title: str
    content: str
    data: dict[str, Any] | None = None


# --- Events (one per fan-out unit, immutable once built) ---


class _Event(CamelModel):
    timestamp: datetime = Field(default_factory=_utcnow)


class MessageEvent(_Event):
    type: Literal["message"] = "message"
    data: Any


class TypingEvent(_Event):
    type: Literal["typing"] = "typing"
    data: TypingData


class DeliveryStatusEvent(_Event):
    type: Literal["delivery_status"] = "delivery_status"
    data: DeliveryStatusData


class SystemEvent(_Event):
    type: Literal["system"] = "system"
    data: SystemNotice


class PingEvent(_Event):
    type: Literal["ping"] = "ping"


ChatEvent = Annotated[
    MessageEvent | TypingEvent | DeliveryStatusEvent | SystemEvent | PingEvent,
    Field(discriminator="type"),
]

_chat_event_adapter: TypeAdapter[ChatEvent] = TypeAdapter(ChatEvent)


def parse_event(raw: str | bytes) -> ChatEvent:
    """Decode one serialized event (the JSON body of an SSE ``data:`` line)."""
    return _chat_event_adapter.validate_json(raw)


# --- Request schemas ---


class MessageBroadcastRequest(CamelModel):
    # Already persisted by the caller; forwarded to viewers as-is
    message: dict[str, Any]


class TypingRequest(CamelModel):
    is_typing: bool
    user_name: str | None = None


class DeliveryStatusRequest(CamelModel):
    message_id: str
    status: DeliveryStatus
    target_user_id: str | None = None


class SystemMessageRequest(CamelModel):
    notice: SystemNotice
    target_user_id: str | None = None


# --- Response schemas ---


class BroadcastResponse(CamelModel):
    delivered: int


class TypingResponse(CamelModel):
    success: bool = True
    is_typing: bool
    user_id: str
    user_name: str | None


class ConnectionInfo(CamelModel):
    total_connections: int
    connections_by_booking: dict[str, int]
    connections_by_user: dict[str, int]
    active_connections: int | None = None
