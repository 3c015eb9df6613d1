"""Channel abstraction over the caller's WebSocket."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from voice_relay.errors import ChannelError
from voice_relay.schemas.messages import ServerMessage

logger = logging.getLogger(__name__)


class Channel(Protocol):
    """Anything that can carry JSON control frames and binary audio frames."""

    @property
    def is_open(self) -> bool: ...

    async def send_event(self, event_type: str, content: str = "") -> None: ...

    async def send_bytes(self, data: bytes) -> None: ...

    async def ping(self) -> None: ...

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None: ...


class WebSocketChannel:
    """Wrap an accepted Starlette WebSocket and normalise transport failures."""

    def __init__(self, websocket: WebSocket):
        self._websocket = websocket
        self._closed = False

    @property
    def websocket(self) -> WebSocket:
        return self._websocket

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self._websocket.client_state == WebSocketState.CONNECTED
            and self._websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_event(self, event_type: str, content: str = "") -> None:
        message = ServerMessage(type=event_type, content=content)  # type: ignore[arg-type]
        try:
            await self._websocket.send_text(message.model_dump_json())
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            self._closed = True
            raise ChannelError(f"Failed to send {event_type} event: {exc}") from exc

    async def send_bytes(self, data: bytes) -> None:
        try:
            await self._websocket.send_bytes(data)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            self._closed = True
            raise ChannelError(f"Failed to send audio frame: {exc}") from exc

    async def ping(self) -> None:
        # ASGI has no ping message; uvicorn sends protocol pings on its own
        # schedule, this control frame keeps intermediaries and clients aware.
        await self.send_event("ping")

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        if not self.is_open:
            self._closed = True
            return
        self._closed = True
        try:
            await self._websocket.close(code=code, reason=reason)
        except (RuntimeError, OSError) as exc:
            raise ChannelError(f"Failed to close channel: {exc}") from exc


__all__ = ["Channel", "WebSocketChannel"]
