"""Application factory for the FastAPI service."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .config import PROJECT_ROOT, Settings, get_settings
from .logging_handlers import DateStampedFileHandler, cleanup_old_logs
from .logging_settings import parse_logging_settings
from .openrouter import Generator, OpenRouterGenerator
from .routers.conversation import router as conversation_router
from .services.lifecycle import IdleSweeper, close_all_sessions
from .services.relay import RelayServices
from .services.tts_service import Synthesizer, TTSService

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _resolve_path(p: Path) -> Path:
    # Allow absolute paths as-is (useful for tests and external mounts).
    if p.is_absolute():
        return p
    return (PROJECT_ROOT / p).resolve()


def _configure_logging(settings: Settings) -> None:
    """Configure logging from LOG_LEVEL / LOG_FILE and the logging settings file."""
    # Load .env file first to ensure LOG_FILE is available
    load_dotenv()

    file_settings = parse_logging_settings(_resolve_path(settings.logging_settings_path))

    log_level_str = os.getenv("LOG_LEVEL")
    if log_level_str:
        log_level = getattr(logging, log_level_str.upper(), logging.INFO)
    else:
        log_level = file_settings.terminal_level or logging.INFO

    formatter = logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATEFMT)
    handlers: list[logging.Handler] = []

    # Always add console handler unless the settings file switched it off
    if log_level_str or file_settings.terminal_level is not None:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    app_log_dir = _resolve_path(settings.app_log_dir)
    if file_settings.file_level is not None:
        dated_handler = DateStampedFileHandler(app_log_dir, prefix="relay")
        dated_handler.setLevel(file_settings.file_level)
        dated_handler.setFormatter(formatter)
        handlers.append(dated_handler)

    log_file = os.getenv("LOG_FILE")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    levels = [handler.level or log_level for handler in handlers] or [log_level]
    root_level = min(levels)

    logging.basicConfig(
        level=root_level,
        handlers=handlers or [logging.NullHandler()],
        force=True,  # Override any existing configuration
    )

    logging.getLogger("voice_relay").setLevel(root_level)

    # Also capture uvicorn logs
    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)

    # Optionally quiet down noisy third-party libraries
    if root_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    cleanup_old_logs(
        [app_log_dir],
        file_settings.retention_hours,
        logger=logging.getLogger(__name__),
    )


def create_app(
    settings: Optional[Settings] = None,
    *,
    generator: Optional[Generator] = None,
    synthesizer: Optional[Synthesizer] = None,
    configure_logging: bool = True,
) -> FastAPI:
    settings = settings or get_settings()

    # Configure logging first thing
    if configure_logging:
        _configure_logging(settings)

    logger = logging.getLogger(__name__)

    relay = RelayServices.build(
        settings,
        generator or OpenRouterGenerator(settings),
        synthesizer or TTSService(settings),
    )
    sweeper = IdleSweeper(relay.registry, interval=settings.sweep_interval_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper.start()
        logger.info(
            "Voice relay ready (model %s, idle timeout %.0fs)",
            settings.default_model,
            settings.idle_timeout_seconds,
        )
        try:
            yield
        finally:
            await sweeper.stop()
            await close_all_sessions(relay.registry)
            await relay.aclose()

    app = FastAPI(
        title="Voice Relay",
        version="0.1.0",
        description="Streams language-model replies as text and synthesized speech over WebSocket.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.relay = relay
    app.state.idle_sweeper = sweeper

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(conversation_router)

    @app.get("/health", tags=["health"])
    async def healthcheck(request: Request) -> dict[str, object]:
        state_relay: RelayServices = request.app.state.relay
        model = getattr(state_relay.generator, "model", settings.default_model)
        return {"status": "ok", "sessions": len(state_relay.registry), "model": model}

    return app


__all__ = ["create_app"]
