"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware and logging
- Initialize shared resources (Whisper engine, live gateway registry)
- Register routes
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from adapters.recognition.whisper_engine import WhisperBackendError, WhisperEngine
from config import AppConfig
from observability import logger
from observability.logger import log_event
from observability.metrics import timed

from server.routes import register_routes


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    warm_up: asyncio.Task[None] | None = None
    if app.state.config.whisper_preload:
        # Loads in the background; requests are served meanwhile
        warm_up = asyncio.create_task(_warm_up_whisper(app.state.whisper_engine))

    yield

    if warm_up is not None and not warm_up.done():
        warm_up.cancel()
        await asyncio.gather(warm_up, return_exceptions=True)


async def _warm_up_whisper(engine: WhisperEngine) -> None:
    loop = asyncio.get_running_loop()
    try:
        with timed("whisper_warm_up"):
            await loop.run_in_executor(None, engine.warm_up)
    except WhisperBackendError as exc:
        # Loading is retried lazily by the first recognition
        log_event({
            "level": "ERROR",
            "event_type": "WHISPER_WARM_UP_FAILED",
            "error": str(exc),
        })
        return

    log_event({"event_type": "WHISPER_READY"})


def create_app(config: AppConfig | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    This is the app factory pattern that allows:
    - Testing with different configurations
    - Environment-specific setup
    - ASGI server compatibility
    """
    if config is None:
        config = AppConfig.load_from_env()

    logger.configure(level=config.log_level, enabled=config.enable_json_logs)

    app = FastAPI(title="Avatar Speaker API", lifespan=_lifespan)

    app.state.config = config

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten later
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # One Whisper model per process; preloaded at startup when WHISPER_PRELOAD=1
    app.state.whisper_engine = build_whisper_engine(config)

    # session_id -> SessionGateway for every open view
    app.state.gateways = {}

    # Routes
    register_routes(app)

    return app


def build_whisper_engine(config: AppConfig) -> WhisperEngine:
    """Build the shared recognizer engine from config."""
    return WhisperEngine(
        model=config.whisper_model,
        device=config.whisper_device,
        compute_type=config.whisper_compute_type,
    )
