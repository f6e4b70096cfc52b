from fastapi import APIRouter, Depends

from ..auth import CurrentUser, get_current_user
from ..di import get_hub
from ..schemas import (
    BroadcastResponse,
    DeliveryStatusRequest,
    MessageBroadcastRequest,
    SystemMessageRequest,
    TypingRequest,
    TypingResponse,
)
from ..services.broadcast_hub import BroadcastHub

router = APIRouter()


@router.post("/bookings/{booking_id}/messages/broadcast", response_model=BroadcastResponse)
async def broadcast_message(
    booking_id: str,
    body: MessageBroadcastRequest,
    user: CurrentUser = Depends(get_current_user),
    hub: BroadcastHub = Depends(get_hub),
):
    """
    Fan out a message that has already been stored.
    The sender is excluded; it has the message from its own request.
    """
    delivered = hub.broadcast_message(booking_id, body.message, exclude_user_id=user.user_id)
    return BroadcastResponse(delivered=delivered)


@router.post("/messages/typing/{booking_id}", response_model=TypingResponse)
async def update_typing(
    booking_id: str,
    body: TypingRequest,
    user: CurrentUser = Depends(get_current_user),
    hub: BroadcastHub = Depends(get_hub),
):
    user_name = body.user_name or user.user_name
    hub.broadcast_typing(booking_id, user.user_id, body.is_typing, user_name)
    return TypingResponse(is_typing=body.is_typing, user_id=user.user_id, user_name=user_name)


@router.post("/bookings/{booking_id}/delivery-status", response_model=BroadcastResponse)
async def broadcast_delivery_status(
    booking_id: str,
    body: DeliveryStatusRequest,
    user: CurrentUser = Depends(get_current_user),
    hub: BroadcastHub = Depends(get_hub),
):
    delivered = hub.broadcast_delivery_status(
        booking_id, body.message_id, body.status, target_user_id=body.target_user_id
    )
    return BroadcastResponse(delivered=delivered)


@router.post("/bookings/{booking_id}/system-messages", response_model=BroadcastResponse)
async def broadcast_system_message(
    booking_id: str,
    body: SystemMessageRequest,
    user: CurrentUser = Depends(get_current_user),
    hub: BroadcastHub = Depends(get_hub),
):
    delivered = hub.broadcast_system_message(
        booking_id, body.notice, target_user_id=body.target_user_id
    )
    return BroadcastResponse(delivered=delivered)
