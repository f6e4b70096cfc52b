import uuid as uuid_mod

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from ..auth import CurrentUser, get_current_user
from ..di import DependencyContainer, get_container
from ..services.event_stream import stream_connection
from ..services.sse import SSE_HEADERS

router = APIRouter(prefix="/bookings")


@router.get("/{booking_id}/events")
async def booking_events(
    booking_id: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    container: DependencyContainer = Depends(get_container),
):
    """
    SSE endpoint for a booking's chat events.
    Each call opens a new connection with its own id; a client that drops
    reconnects by calling this endpoint again.
    """
    settings = container.settings
    events = stream_connection(
        container.hub,
        connection_id=str(uuid_mod.uuid4()),
        user_id=user.user_id,
        booking_id=booking_id,
        keepalive_interval=settings.keepalive_interval,
        queue_size=settings.stream_queue_size,
        is_disconnected=request.is_disconnected,
    )
    return StreamingResponse(events, media_type="text/event-stream", headers=SSE_HEADERS)
