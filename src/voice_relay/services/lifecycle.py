"""Session lifecycle: creation, channel attachment, teardown and idle eviction."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import TYPE_CHECKING, Callable, List, Optional

from fastapi import WebSocket, status

from voice_relay.config import Settings, validate_api_keys
from voice_relay.errors import AuthConfigError, ChannelError, ValidationError
from voice_relay.services.channel import WebSocketChannel

if TYPE_CHECKING:
    from voice_relay.services.voice_session import SessionRegistry

logger = logging.getLogger(__name__)

CONNECTED_MESSAGE = "WebSocket connection established"


class SessionLifecycle:
    """Create sessions over HTTP and bind them to WebSocket channels."""

    def __init__(
        self,
        registry: "SessionRegistry",
        settings: Settings,
        *,
        credential_check: Callable[[Settings], List[str]] = validate_api_keys,
    ):
        self.registry = registry
        self._settings = settings
        self._credential_check = credential_check

    def start_conversation(self, prompt: Optional[str]) -> str:
        """Validate the request and register a new session.

        Raises:
            ValidationError: If the prompt is missing or blank
            AuthConfigError: If provider credentials are missing or malformed
        """
        if prompt is None or not prompt.strip():
            raise ValidationError("Prompt is required")

        errors = self._credential_check(self._settings)
        if errors:
            logger.error("Refusing to start conversation: %s", "; ".join(errors))
            raise AuthConfigError(errors)

        return self.registry.create(prompt)

    async def attach(
        self, session_id: Optional[str], websocket: WebSocket
    ) -> Optional[WebSocketChannel]:
        """Accept ``websocket`` for a known session, or reject it before the handshake."""
        if self.registry.get(session_id) is None:
            logger.warning("Rejecting WebSocket for unknown session %r", session_id)
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return None

        await websocket.accept()
        channel = WebSocketChannel(websocket)
        try:
            self.registry.attach_channel(session_id, channel)
        except KeyError:
            # Evicted between the lookup and the accept.
            await channel.close(code=status.WS_1008_POLICY_VIOLATION)
            return None

        await channel.send_event("connected", CONNECTED_MESSAGE)
        logger.info("Client connected for session %s", session_id)
        return channel

    async def detach(self, session_id: str) -> None:
        """Mark the session disconnected and forget it."""
        session = self.registry.get(session_id)
        if session is None:
            return
        async with session.lock:
            self.registry.remove(session_id)
        logger.info("Client disconnected for session %s", session_id)


class IdleSweeper:
    """Background task evicting idle sessions every ``interval`` seconds."""

    def __init__(self, registry: "SessionRegistry", interval: float = 60.0):
        self.registry = registry
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="idle-sweeper")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                raise
            try:
                evicted = await self.registry.sweep_idle()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("Idle session sweep failed: %s", exc)
                continue
            if evicted:
                logger.info("Evicted %d idle session(s)", len(evicted))


async def close_all_sessions(registry: "SessionRegistry") -> None:
    """Close every attached channel and empty the registry. Used on shutdown."""
    for session in registry:
        channel = session.channel
        if channel is not None and channel.is_open:
            try:
                await channel.close(code=status.WS_1001_GOING_AWAY, reason="server shutdown")
            except ChannelError as exc:
                logger.warning("Failed to close channel for %s: %s", session.session_id, exc)
        registry.remove(session.session_id)


__all__ = ["CONNECTED_MESSAGE", "IdleSweeper", "SessionLifecycle", "close_all_sessions"]
