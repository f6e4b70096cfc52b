from fastapi import APIRouter, Depends

from ..di import get_hub
from ..schemas import ConnectionInfo
from ..services.broadcast_hub import BroadcastHub

router = APIRouter(prefix="/realtime")


@router.get("/connections", response_model=ConnectionInfo)
async def connection_info(booking_id: str | None = None, hub: BroadcastHub = Depends(get_hub)):
    """Registry snapshot for debugging; counts are not used for delivery decisions."""
    return hub.connection_info(booking_id)
