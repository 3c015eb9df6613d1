"""Conversation HTTP and WebSocket routes."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Optional

from fastapi import APIRouter, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from ..errors import AuthConfigError, ChannelError, ValidationError
from ..schemas.messages import (
    ChannelClosedEvent,
    ClientMessage,
    ErrorResponse,
    InboundEvent,
    StartConversationRequest,
    StartConversationResponse,
    TranscriptEvent,
)
from ..services.channel import WebSocketChannel
from ..services.relay import RelayServices

router = APIRouter(tags=["conversation"])
logger = logging.getLogger(__name__)

INVALID_MESSAGE = "Invalid message"


@router.post(
    "/start-conversation",
    response_model=StartConversationResponse,
    responses={400: {"model": ErrorResponse}},
)
async def start_conversation(payload: StartConversationRequest, request: Request):
    """Register a new conversation and return the id to attach with."""

    relay: RelayServices = request.app.state.relay
    try:
        session_id = relay.lifecycle.start_conversation(payload.prompt)
    except (ValidationError, AuthConfigError) as exc:
        logger.warning("Start conversation rejected: %s", exc)
        return JSONResponse(status_code=400, content={"error": str(exc)})

    return StartConversationResponse(connection_id=session_id)


@router.websocket("/ws")
async def conversation_socket(
    websocket: WebSocket,
    connection_id: Optional[str] = Query(default=None, alias="connectionId"),
):
    relay: RelayServices = websocket.app.state.relay

    try:
        channel = await relay.lifecycle.attach(connection_id, websocket)
    except ChannelError as exc:
        logger.warning("Failed to greet %s: %s", connection_id, exc)
        if connection_id:
            await relay.lifecycle.detach(connection_id)
        return
    if channel is None or connection_id is None:
        return

    await handle_connection(websocket, connection_id, channel, relay)


async def _parse_frame(
    text: str, channel: WebSocketChannel, session_id: str
) -> Optional[InboundEvent]:
    try:
        message = ClientMessage.model_validate_json(text)
    except PydanticValidationError as exc:
        logger.warning("Malformed frame from %s: %s", session_id, exc.errors()[:1])
        await channel.send_event("error", INVALID_MESSAGE)
        return None

    if message.type == "transcript":
        return TranscriptEvent(content=message.content or "")

    logger.debug("Ignoring %r frame from %s", message.type, session_id)
    return None


async def handle_connection(
    websocket: WebSocket,
    session_id: str,
    channel: WebSocketChannel,
    relay: RelayServices,
):
    """
    Main loop for one attached client.

    Inbound frames become typed events on a bounded queue drained in order by
    the session's StreamCoordinator. The heartbeat runs alongside. Whatever
    ends the loop, the coordinator is stopped and the session is removed.
    """
    events: asyncio.Queue[InboundEvent] = asyncio.Queue(
        maxsize=relay.settings.event_queue_size
    )
    coordinator = relay.new_coordinator(session_id, channel)
    heartbeat = relay.new_heartbeat(session_id, channel)
    heartbeat.start()
    consumer = asyncio.create_task(
        coordinator.run(events), name=f"coordinator-{session_id}"
    )
    reason = "closed"

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                reason = f"client disconnected ({message.get('code', 1000)})"
                break

            relay.registry.touch(session_id)

            text = message.get("text")
            if text is None:
                logger.debug("Ignoring binary frame from %s", session_id)
                continue

            event = await _parse_frame(text, channel, session_id)
            if event is not None:
                await events.put(event)

    except WebSocketDisconnect:
        reason = "client disconnected"
    except (ChannelError, RuntimeError) as exc:
        logger.warning("Connection error for %s: %s", session_id, exc)
        reason = "channel error"
    finally:
        logger.info("Client %s disconnected: %s", session_id, reason)
        try:
            events.put_nowait(ChannelClosedEvent(reason))
        except asyncio.QueueFull:
            consumer.cancel()
        await heartbeat.stop()
        with suppress(asyncio.CancelledError):
            await consumer
        await relay.lifecycle.detach(session_id)
