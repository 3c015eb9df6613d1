"""Pydantic models for the conversation HTTP and WebSocket protocol."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class StartConversationRequest(BaseModel):
    """Body of ``POST /start-conversation``."""

    # Missing prompts are reported as a validation error by the lifecycle,
    # not rejected by FastAPI with a 422.
    prompt: Optional[str] = None


class StartConversationResponse(BaseModel):
    """Successful start-conversation payload."""

    connection_id: str = Field(alias="connectionId")
    message: str = "Conversation started. Connect to WebSocket to continue."

    model_config = ConfigDict(populate_by_name=True)


class ErrorResponse(BaseModel):
    error: str


class ClientMessage(BaseModel):
    """Inbound JSON text frame sent by the caller."""

    type: str
    content: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class ServerMessage(BaseModel):
    """Outbound JSON text frame. Audio travels as raw binary frames instead."""

    type: Literal["connected", "text", "error", "ping"]
    content: str = ""


@dataclass(frozen=True)
class TranscriptEvent:
    """A finished utterance from the speech-to-text side."""

    content: str


@dataclass(frozen=True)
class ChannelClosedEvent:
    """The transport went away; the coordinator should stop draining."""

    reason: str = "closed"


InboundEvent = Union[TranscriptEvent, ChannelClosedEvent]


__all__ = [
    "ChannelClosedEvent",
    "ClientMessage",
    "ErrorResponse",
    "InboundEvent",
    "ServerMessage",
    "StartConversationRequest",
    "StartConversationResponse",
    "TranscriptEvent",
]
