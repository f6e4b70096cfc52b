from __future__ import annotations

import asyncio
import contextlib
import logging
import random
from collections.abc import Callable
from datetime import datetime
from enum import StrEnum
from typing import Any

import httpx
from pydantic import ValidationError

from ..domain.scheduling import Scheduler
from ..errors import StreamConnectError
from ..schemas import ChatEvent, EventType
from ..services.sse import parse_sse_data
from .reconnection import ReconnectionConfig, ReconnectionManager, ReconnectionPhase

logger = logging.getLogger(__name__)


class ConnectionStatus(StrEnum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class ChatStreamClient:
    """
    Consumes a booking's event stream and keeps it alive.

    Every non-ping event is handed to ``on_event``. When the stream drops
    for any reason other than ``close()``, a ReconnectionManager re-opens it
    with backoff; each new stream registers on the server under a fresh
    connection id.
    """

    def __init__(
        self,
        base_url: str,
        booking_id: str,
        user_id: str,
        *,
        on_event: Callable[[ChatEvent], Any],
        http_client: httpx.AsyncClient | None = None,
        reconnect_config: ReconnectionConfig | None = None,
        auto_reconnect: bool = True,
        scheduler: Scheduler | None = None,
        rng: Callable[[], float] = random.random,
        on_status_change: Callable[[ConnectionStatus, str | None], Any] | None = None,
        on_max_attempts_reached: Callable[[], Any] | None = None,
    ) -> None:
        self._booking_id = booking_id
        self._user_id = user_id
        self._on_event = on_event
        self._on_status_change = on_status_change
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=base_url, timeout=httpx.Timeout(10.0, read=None)
        )
        self._reconnection = ReconnectionManager(
            self._open_stream,
            reconnect_config,
            enabled=auto_reconnect,
            scheduler=scheduler,
            rng=rng,
            on_max_attempts_reached=on_max_attempts_reached,
        )

        self._status = ConnectionStatus.DISCONNECTED
        self._error: str | None = None
        self._last_ping_at: datetime | None = None
        self._reader: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def last_ping_at(self) -> datetime | None:
        return self._last_ping_at

    @property
    def reconnection(self) -> ReconnectionManager:
        return self._reconnection

    async def connect(self) -> bool:
        """
        Open the stream as the first attempt of a reconnection cycle.

        A failed first attempt counts towards ``max_attempts`` and the next
        one waits for the initial backoff delay.
        """
        self._closed = False
        manager = self._reconnection
        if not manager.enabled:
            return await self._open_stream()
        if manager.phase in (ReconnectionPhase.CONNECTED, ReconnectionPhase.EXHAUSTED):
            manager.reset()
        if await manager.attempt_reconnection():
            return True
        manager.start()
        return False

    async def close(self) -> None:
        """Manual disconnect: stops reading and suppresses reconnection."""
        self._closed = True
        self._reconnection.close()
        if self._reader is not None:
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader
            self._reader = None
        if self._owns_http:
            await self._http.aclose()
        self._set_status(ConnectionStatus.DISCONNECTED)

    async def __aenter__(self) -> ChatStreamClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # --- Internals ---

    async def _open_stream(self) -> bool:
        if self._closed:
            return False
        self._set_status(ConnectionStatus.CONNECTING)
        request = self._http.build_request(
            "GET",
            f"/bookings/{self._booking_id}/events",
            headers={"Accept": "text/event-stream", "X-User-Id": self._user_id},
        )
        try:
            response = await self._http.send(request, stream=True)
        except httpx.HTTPError as exc:
            logger.warning("Could not open event stream for booking %s: %s", self._booking_id, exc)
            self._set_status(ConnectionStatus.ERROR, str(exc))
            return False

        if self._closed:
            await response.aclose()
            return False

        if response.status_code != 200:
            await response.aclose()
            error = StreamConnectError(response.status_code, response.reason_phrase)
            logger.warning("%s (booking %s)", error, self._booking_id)
            self._set_status(ConnectionStatus.ERROR, str(error))
            return False

        self._set_status(ConnectionStatus.CONNECTED)
        self._reader = asyncio.get_running_loop().create_task(self._read(response))
        return True

    async def _read(self, response: httpx.Response) -> None:
        try:
            async for line in response.aiter_lines():
                try:
                    event = parse_sse_data(line)
                except ValidationError:
                    logger.warning("Discarding malformed event frame: %r", line)
                    continue
                if event is None:
                    continue
                if event.type == EventType.PING:
                    self._last_ping_at = event.timestamp
                    continue
                self._dispatch(event)
        except httpx.HTTPError as exc:
            logger.warning("Event stream for booking %s dropped: %s", self._booking_id, exc)
        finally:
            await response.aclose()

        if self._closed:
            return
        self._set_status(ConnectionStatus.DISCONNECTED)
        self._handle_drop()

    def _handle_drop(self) -> None:
        # A stream that was up counts as a fresh outage, not a continuation
        if self._reconnection.phase is ReconnectionPhase.CONNECTED:
            self._reconnection.reset()
        self._reconnection.start()

    def _dispatch(self, event: ChatEvent) -> None:
        try:
            self._on_event(event)
        except Exception:
            logger.exception("Event handler failed for %s event", event.type)

    def _set_status(self, status: ConnectionStatus, error: str | None = None) -> None:
        self._status = status
        self._error = error
        if self._on_status_change is not None:
            try:
                self._on_status_change(status, error)
            except Exception:
                logger.exception("Status change handler failed")
