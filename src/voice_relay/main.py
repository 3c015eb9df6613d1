"""CLI entrypoint for running the FastAPI app with uvicorn."""

from __future__ import annotations

import uvicorn

from .config import get_settings


def main() -> None:
    """Run the ASGI server."""

    settings = get_settings()
    uvicorn.run(
        "voice_relay.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=False,
        # Protocol-level pings on the same schedule as the heartbeat frames.
        ws_ping_interval=settings.heartbeat_interval_seconds,
        ws_ping_timeout=settings.heartbeat_interval_seconds,
    )


if __name__ == "__main__":  # pragma: no cover - manual invocation
    main()
