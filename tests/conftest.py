import asyncio
import pathlib
import sys
from typing import Optional

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from voice_relay.errors import ChannelError, UpstreamGenerationError, UpstreamSynthesisError  # noqa: E402
from voice_relay.services.voice_session import SessionRegistry  # noqa: E402


class FakeChannel:
    """In-memory channel recording every frame in order."""

    def __init__(self) -> None:
        self.log: list[tuple] = []
        self.open = True
        self.close_code: Optional[int] = None
        self.fail_on_send = False
        self.fail_on_ping = False
        self.fail_on_close = False
        self.pings = 0

    @property
    def is_open(self) -> bool:
        return self.open

    @property
    def events(self) -> list[tuple[str, str]]:
        return [(entry[1], entry[2]) for entry in self.log if entry[0] == "event"]

    @property
    def frames(self) -> list[bytes]:
        return [entry[1] for entry in self.log if entry[0] == "bytes"]

    def texts(self) -> list[str]:
        return [content for kind, content in self.events if kind == "text"]

    async def send_event(self, event_type: str, content: str = "") -> None:
        if self.fail_on_send:
            raise ChannelError("send failed")
        self.log.append(("event", event_type, content))

    async def send_bytes(self, data: bytes) -> None:
        if self.fail_on_send:
            raise ChannelError("send failed")
        self.log.append(("bytes", data))

    async def ping(self) -> None:
        if self.fail_on_ping:
            raise ChannelError("ping failed")
        self.pings += 1

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.open = False
        self.close_code = code
        if self.fail_on_close:
            raise ChannelError("close failed")


class ScriptedGenerator:
    """Yield canned deltas per transcript, optionally pausing between them."""

    def __init__(
        self,
        replies: Optional[dict[str, list[str]]] = None,
        *,
        delay: float = 0.0,
        fail_on: Optional[set[str]] = None,
        hang_on: Optional[set[str]] = None,
    ) -> None:
        self.replies = replies or {}
        self.delay = delay
        self.fail_on = fail_on or set()
        self.hang_on = hang_on or set()
        self.calls: list[tuple[str, str]] = []
        self.model = "test/model"

    async def stream(self, prompt: str, transcript: str):
        self.calls.append((prompt, transcript))
        if transcript in self.hang_on:
            await asyncio.Event().wait()
        for delta in self.replies.get(transcript, []):
            if self.delay:
                await asyncio.sleep(self.delay)
            else:
                await asyncio.sleep(0)
            yield delta
        if transcript in self.fail_on:
            raise UpstreamGenerationError(500, "model exploded")


class FakeSynthesizer:
    """Return the sentence bytes as audio; fail for selected sentences."""

    def __init__(self, fail_on: Optional[set[str]] = None) -> None:
        self.fail_on = fail_on or set()
        self.calls: list[str] = []

    async def synthesize(self, text: str) -> Optional[bytes]:
        self.calls.append(text)
        await asyncio.sleep(0)
        if text in self.fail_on:
            raise UpstreamSynthesisError("tts down", status_code=503)
        return text.encode("utf-8")


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry(idle_timeout=300.0)


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()
