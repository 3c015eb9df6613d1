import json

import httpx
import pytest
from pydantic import AnyHttpUrl, SecretStr

from voice_relay.config import Settings
from voice_relay.errors import UpstreamGenerationError
from voice_relay.openrouter import OpenRouterGenerator


def make_settings() -> Settings:
    return Settings(
        openrouter_api_key=SecretStr("test"),
        openrouter_base_url=AnyHttpUrl("https://example.com/api/v1"),
        openrouter_app_name="Voice Relay Tests",
    )


def make_generator(handler) -> OpenRouterGenerator:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenRouterGenerator(make_settings(), http_client=client)


def sse(*payloads: object) -> bytes:
    lines = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        lines.append(f"data: {data}\n\n")
    return "".join(lines).encode()


def delta(text: str) -> dict:
    return {"choices": [{"delta": {"content": text}}]}


async def collect(generator: OpenRouterGenerator) -> list[str]:
    return [chunk async for chunk in generator.stream("Be brief.", "Olá")]


def test_parse_event_supports_multiple_data_lines() -> None:
    generator = OpenRouterGenerator(make_settings())

    headers = generator._headers  # type: ignore[attr-defined]
    assert headers["Authorization"] == "Bearer test"
    assert headers["X-Title"] == "Voice Relay Tests"

    event = generator._parse_event(  # type: ignore[attr-defined]
        [
            "event: completion",
            "id: test-id",
            "data: part one",
            "data: part two",
        ]
    )

    assert event.event == "completion"
    assert event.event_id == "test-id"
    assert event.data == "part one\npart two"


def test_build_payload_uses_generation_parameters() -> None:
    payload = OpenRouterGenerator(make_settings()).build_payload("Be brief.", "Olá")

    assert payload["stream"] is True
    assert payload["messages"] == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "Olá"},
    ]
    assert payload["max_tokens"] == 200
    assert payload["temperature"] == pytest.approx(0.7)
    assert payload["top_p"] == pytest.approx(0.8)
    assert payload["top_k"] == 40


@pytest.mark.asyncio
async def test_stream_yields_content_deltas_until_done() -> None:
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["body"] = json.loads(request.content)
        body = sse(
            delta("Olá"),
            {"choices": [{"delta": {"role": "assistant"}}]},
            delta(", tudo bem?"),
            "[DONE]",
            delta("ignored after done"),
        )
        return httpx.Response(
            200, content=body, headers={"content-type": "text/event-stream"}
        )

    generator = make_generator(handler)

    assert await collect(generator) == ["Olá", ", tudo bem?"]
    assert captured["url"] == "https://example.com/api/v1/chat/completions"
    assert captured["body"]["model"] == "google/gemini-2.0-flash-001"


@pytest.mark.asyncio
async def test_stream_skips_comments_and_non_json() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = b": keep-alive\n\n" + sse("not json", delta("ok.")) + sse("[DONE]")
        return httpx.Response(200, content=body)

    assert await collect(make_generator(handler)) == ["ok."]


@pytest.mark.asyncio
async def test_stream_raises_on_http_error_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": {"message": "No auth"}})

    with pytest.raises(UpstreamGenerationError) as excinfo:
        await collect(make_generator(handler))

    assert excinfo.value.status_code == 401
    assert excinfo.value.detail == {"message": "No auth"}


@pytest.mark.asyncio
async def test_stream_raises_on_in_stream_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = sse(delta("Half"), {"error": {"code": 429, "message": "Rate limited"}})
        return httpx.Response(200, content=body)

    generator = make_generator(handler)
    received: list[str] = []

    with pytest.raises(UpstreamGenerationError) as excinfo:
        async for chunk in generator.stream("p", "t"):
            received.append(chunk)

    assert received == ["Half"]
    assert excinfo.value.status_code == 429
    assert str(excinfo.value) == "Rate limited"


@pytest.mark.asyncio
async def test_stream_wraps_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    with pytest.raises(UpstreamGenerationError) as excinfo:
        await collect(make_generator(handler))

    assert excinfo.value.status_code == 502
