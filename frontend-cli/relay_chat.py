#!/usr/bin/env python3
"""Relay Chat CLI - Terminal client for the voice relay.

Starts a conversation over HTTP, attaches over WebSocket and sends each
typed line as a transcript. Text deltas are printed as they stream in and
audio frames are counted or appended to a file.
"""

import argparse
import asyncio
import json
import os
import signal
import sys
from contextlib import suppress
from pathlib import Path
from typing import Optional

import httpx
import websockets
from rich.console import Console
from rich.prompt import Prompt
from rich.style import Style
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from voice_relay.services.retry import RetryPolicy, RetryState

# Styles
ASSISTANT_STYLE = Style(color="bright_green")
ERROR_STYLE = Style(color="red", bold=True)
INFO_STYLE = Style(color="cyan")


class RelayChat:
    """Terminal client for one voice relay conversation."""

    def __init__(
        self,
        server_url: str,
        prompt: str,
        audio_out: Optional[Path] = None,
        policy: Optional[RetryPolicy] = None,
    ):
        self.server_url = server_url.rstrip("/")
        self.prompt = prompt
        self.audio_out = audio_out
        self.policy = policy or RetryPolicy()
        self.connection_id: Optional[str] = None
        self.console = Console()
        self.running = True
        self.audio_frames = 0
        self.audio_bytes = 0

    @property
    def ws_url(self) -> str:
        base = self.server_url
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return f"{base}/ws?connectionId={self.connection_id}"

    async def _check_health(self) -> bool:
        """Check if the relay is reachable."""
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                resp = await client.get(f"{self.server_url}/health")
                if resp.status_code == 200:
                    model = resp.json().get("model", "unknown")
                    self.console.print(f"[dim]Connected to relay. Model: {model}[/dim]")
                    return True
        except Exception as e:
            self.console.print(
                f"[error]Cannot connect to relay: {e}[/error]", style=ERROR_STYLE
            )
        return False

    async def _start_conversation(self) -> bool:
        """Create a new conversation and remember its connection id."""
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                resp = await client.post(
                    f"{self.server_url}/start-conversation",
                    json={"prompt": self.prompt},
                )
        except httpx.HTTPError as e:
            self.console.print(f"[error]Start failed: {e}[/error]", style=ERROR_STYLE)
            return False

        if resp.status_code != 200:
            try:
                detail = resp.json().get("error", resp.text)
            except ValueError:
                detail = resp.text
            self.console.print(f"[error]Start failed: {detail}[/error]", style=ERROR_STYLE)
            return False

        self.connection_id = resp.json()["connectionId"]
        self.console.print(f"[dim]Conversation: {self.connection_id[:8]}...[/dim]")
        return True

    async def _connect(self):
        """Attach to the current conversation, retrying with backoff."""
        state = RetryState(self.policy)
        while True:
            try:
                ws = await websockets.connect(self.ws_url)
                state.record_success()
                return ws
            except InvalidHandshake as e:
                # The session was evicted or never existed; start over.
                error: Exception = e
                self.console.print("[dim]Session rejected, starting a new conversation[/dim]")
                if not await self._start_conversation():
                    return None
            except (OSError, asyncio.TimeoutError) as e:
                error = e

            delay = state.record_failure(error)
            if delay is None:
                self.console.print(
                    f"[error]Giving up after {state.attempts} attempt(s): {error}[/error]",
                    style=ERROR_STYLE,
                )
                return None
            self.console.print(f"[dim]Reconnecting in {delay:.0f}s...[/dim]")
            await asyncio.sleep(delay)

    def _handle_audio(self, frame: bytes) -> None:
        self.audio_frames += 1
        self.audio_bytes += len(frame)
        if self.audio_out is not None:
            with self.audio_out.open("ab") as fh:
                fh.write(frame)

    def _handle_event(self, raw: str) -> None:
        try:
            event = json.loads(raw)
        except json.JSONDecodeError:
            self.console.print(f"[dim]Unparseable frame: {raw[:60]}[/dim]")
            return

        event_type = event.get("type")
        content = event.get("content", "")
        if event_type == "text":
            self.console.print(content, style=ASSISTANT_STYLE, end="")
        elif event_type == "error":
            self.console.print(f"\n[error]{content}[/error]", style=ERROR_STYLE)
        elif event_type == "connected":
            self.console.print(f"[dim]{content}[/dim]")
        # ping frames only keep the connection warm

    async def _receive(self, ws) -> None:
        try:
            async for message in ws:
                if isinstance(message, bytes):
                    self._handle_audio(message)
                else:
                    self._handle_event(message)
        except ConnectionClosed as e:
            self.console.print(f"\n[dim]Connection closed: {e}[/dim]")

    async def _send_transcript(self, ws, text: str) -> bool:
        try:
            await ws.send(json.dumps({"type": "transcript", "content": text}))
        except ConnectionClosed:
            return False
        return True

    def _show_audio_summary(self) -> None:
        if self.audio_frames:
            target = f" -> {self.audio_out}" if self.audio_out else ""
            self.console.print(
                f"[dim]Audio: {self.audio_frames} frame(s), {self.audio_bytes} bytes{target}[/dim]"
            )

    async def run(self) -> None:
        """Main chat loop."""
        if not await self._check_health():
            return
        if not await self._start_conversation():
            return

        self.console.print()
        self.console.print(
            "[bold]Relay Chat[/bold] - Type to talk, an empty line interrupts, Ctrl+D to exit",
            style=INFO_STYLE,
        )
        self.console.print()

        pending: Optional[str] = None
        while self.running:
            ws = await self._connect()
            if ws is None:
                return
            receiver = asyncio.create_task(self._receive(ws))
            try:
                if pending is not None:
                    if not await self._send_transcript(ws, pending):
                        continue
                    pending = None

                while self.running and not receiver.done():
                    try:
                        user_input = await asyncio.to_thread(
                            Prompt.ask, "[bold blue]You[/bold blue]", default=""
                        )
                    except EOFError:
                        self.console.print("\n[dim]Goodbye![/dim]")
                        self.running = False
                        break

                    if receiver.done():
                        # Dropped while we were waiting for input; resend after reconnecting.
                        pending = user_input
                        break
                    if not await self._send_transcript(ws, user_input):
                        pending = user_input
                        break
                    self._show_audio_summary()
            finally:
                receiver.cancel()
                with suppress(asyncio.CancelledError):
                    await receiver
                await ws.close()


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Relay Chat - Terminal client for the voice relay",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  relay_chat.py --prompt "You are a helpful assistant."
  relay_chat.py --server http://pi:8080 --prompt "..." --audio-out reply.pcm

Environment Variables:
  RELAY_SERVER    Default server URL
""",
    )
    parser.add_argument(
        "--server",
        "-s",
        default=os.environ.get("RELAY_SERVER", "http://localhost:8080"),
        help="Relay server URL (default: http://localhost:8080)",
    )
    parser.add_argument(
        "--prompt",
        "-p",
        required=True,
        help="System prompt for the conversation",
    )
    parser.add_argument(
        "--audio-out",
        type=Path,
        default=None,
        help="Append received audio frames to this file",
    )

    args = parser.parse_args()

    # Handle signals
    def signal_handler(sig, frame):
        print("\nExiting...")
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    chat = RelayChat(server_url=args.server, prompt=args.prompt, audio_out=args.audio_out)
    try:
        asyncio.run(chat.run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
