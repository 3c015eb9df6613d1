"""OpenRouter streaming client utilities."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Iterable, Optional, Protocol

import httpx
from fastapi import status

from .config import Settings
from .errors import UpstreamGenerationError

logger = logging.getLogger(__name__)


class Generator(Protocol):
    """Streams a reply to ``transcript`` conditioned on the session ``prompt``."""

    def stream(self, prompt: str, transcript: str) -> AsyncGenerator[str, None]: ...


@dataclass
class ServerSentEvent:
    """Represents a parsed Server-Sent Event."""

    data: str
    event: str = "message"
    event_id: Optional[str] = None


class OpenRouterGenerator:
    """Client responsible for streaming chat completions from OpenRouter."""

    _client_lock: asyncio.Lock = asyncio.Lock()
    _client_pool: dict[tuple[str, float], httpx.AsyncClient] = {}

    def __init__(
        self,
        settings: Settings,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._settings = settings
        self._http_client = http_client

    @property
    def model(self) -> str:
        return self._settings.default_model

    def _client_key(self) -> tuple[str, float]:
        return (self._base_url, float(self._settings.request_timeout))

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is not None:
            return self._http_client

        key = self._client_key()
        client = self.__class__._client_pool.get(key)
        if client is not None:
            return client

        async with self.__class__._client_lock:
            client = self.__class__._client_pool.get(key)
            if client is None:
                timeout = httpx.Timeout(self._settings.request_timeout, connect=10.0)
                limits = httpx.Limits(
                    max_connections=50,
                    max_keepalive_connections=20,
                )
                client = httpx.AsyncClient(
                    timeout=timeout,
                    limits=limits,
                    http2=True,
                )
                self.__class__._client_pool[key] = client
        return client

    @property
    def _headers(self) -> dict[str, str]:
        api_key = (
            self._settings.openrouter_api_key.get_secret_value()
            if self._settings.openrouter_api_key
            else ""
        )
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if self._settings.openrouter_app_name:
            headers["X-Title"] = self._settings.openrouter_app_name
        return headers

    @property
    def _base_url(self) -> str:
        """Return the OpenRouter API base URL without a trailing slash."""

        return str(self._settings.openrouter_base_url).rstrip("/")

    def build_payload(self, prompt: str, transcript: str) -> dict[str, Any]:
        return {
            "model": self._settings.default_model,
            "stream": True,
            "messages": [
                {"role": "system", "content": prompt},
                {"role": "user", "content": transcript},
            ],
            "max_tokens": self._settings.max_output_tokens,
            "temperature": self._settings.generation_temperature,
            "top_p": self._settings.generation_top_p,
            "top_k": self._settings.generation_top_k,
        }

    async def stream(self, prompt: str, transcript: str) -> AsyncGenerator[str, None]:
        """Yield the text deltas of one streamed reply."""

        payload = self.build_payload(prompt, transcript)
        async with contextlib.aclosing(self.stream_chat_raw(payload)) as events:
            async for event in events:
                if event.data == "[DONE]":
                    return
                delta = self._extract_delta(event.data)
                if delta:
                    yield delta

    async def stream_chat_raw(
        self, payload: dict[str, Any]
    ) -> AsyncGenerator[ServerSentEvent, None]:
        """Low-level streaming helper accepting a prebuilt payload."""

        url = f"{self._base_url}/chat/completions"

        client = await self._get_http_client()
        try:
            async with client.stream(
                "POST",
                url,
                headers=self._headers,
                json=payload,
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    detail = self._extract_error_detail(body)
                    raise UpstreamGenerationError(response.status_code, detail)

                async for event in self._iter_events(response):
                    yield event
        except httpx.HTTPError as exc:
            raise UpstreamGenerationError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

    @staticmethod
    def _extract_delta(data: str) -> Optional[str]:
        if not data:
            return None
        try:
            chunk = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("Skipping non-JSON SSE payload: %s", data[:80])
            return None
        if not isinstance(chunk, dict):
            return None

        error = chunk.get("error")
        if error:
            code = status.HTTP_502_BAD_GATEWAY
            if isinstance(error, dict) and isinstance(error.get("code"), int):
                code = error["code"]
            detail = error.get("message", error) if isinstance(error, dict) else error
            raise UpstreamGenerationError(code, detail)

        choices = chunk.get("choices")
        if not isinstance(choices, list) or not choices:
            return None
        choice = choices[0]
        if not isinstance(choice, dict):
            return None
        delta = choice.get("delta")
        if not isinstance(delta, dict):
            return None
        content = delta.get("content")
        if isinstance(content, str):
            return content
        return None

    async def aclose(self) -> None:
        await self.__class__.aclose_shared()

    @classmethod
    async def aclose_shared(cls) -> None:
        async with cls._client_lock:
            clients = list(cls._client_pool.values())
            cls._client_pool.clear()
        for client in clients:
            try:
                await client.aclose()
            except Exception:  # pragma: no cover - best effort cleanup
                pass

    async def _iter_events(
        self, response: httpx.Response
    ) -> AsyncGenerator[ServerSentEvent, None]:
        buffer: list[str] = []
        async for line in response.aiter_lines():
            if not line:
                if buffer:
                    yield self._parse_event(buffer)
                    buffer.clear()
                continue
            if line.startswith(":"):
                continue
            buffer.append(line)
        if buffer:
            yield self._parse_event(buffer)

    def _parse_event(self, lines: Iterable[str]) -> ServerSentEvent:
        event_name: Optional[str] = None
        event_id: Optional[str] = None
        data_lines: list[str] = []

        for line in lines:
            field, _, value = line.partition(":")
            value = value.lstrip(" ")
            if field == "event":
                event_name = value or None
            elif field == "data":
                data_lines.append(value)
            elif field == "id":
                event_id = value or None

        data = "\n".join(data_lines)
        return ServerSentEvent(
            data=data, event=event_name or "message", event_id=event_id
        )

    @staticmethod
    def _extract_error_detail(raw: bytes) -> Any:
        if not raw:
            return "OpenRouter returned an empty error response."
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            text = raw.decode("utf-8", errors="ignore")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return text
        if isinstance(payload, dict):
            return payload.get("error") or payload
        return payload


__all__ = ["Generator", "OpenRouterGenerator", "ServerSentEvent"]
