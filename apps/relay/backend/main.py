"""
relay.main
==========
Entrypoint that stitches everything together:

• config / CORS
• shared objects on `app.state` (upstream config, session registry)
• health, status and the relay websocket route
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from apps.relay.backend.settings import (
    ALLOWED_ORIGINS,
    RELAY_RECORDINGS_DIR,
    RELAY_SESSION_CONFIG,
    RELAY_STATUS_PATH,
    RELAY_WEBSOCKET_PATH,
)
from src.pools.session_manager import ThreadSafeSessionManager
from src.realtime_relay.api import Connector
from src.realtime_relay.config import UpstreamConfig
from src.realtime_relay.playback import AudioPlayer, NullAudioPlayer, WavFileRecorder
from src.realtime_relay.schemas import RelayStatusResponse
from src.realtime_relay.session import RelaySession
from utils.ml_logging import get_logger

logger = get_logger("relay.main")


def load_upstream_config() -> UpstreamConfig:
    config = UpstreamConfig.from_env(RELAY_SESSION_CONFIG or None)
    if not config.api_key:
        logger.warning("OPENAI_API_KEY is not set; upstream connections will be rejected.")
    return config


def _player_for(session_id: str, recordings_dir: str) -> AudioPlayer:
    if recordings_dir:
        return WavFileRecorder(recordings_dir, prefix=session_id)
    return NullAudioPlayer()


def create_app(
    upstream_config: Optional[UpstreamConfig] = None,
    connector: Optional[Connector] = None,
    recordings_dir: str = RELAY_RECORDINGS_DIR,
) -> FastAPI:
    """
    Build the relay application.

    :param upstream_config: Upstream settings; read from the environment when omitted.
    :param connector: Replacement for ``websockets.connect`` (tests).
    :param recordings_dir: Directory for assembled assistant WAVs, empty to disable.
    :return: The configured FastAPI app.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("🚀 startup…")
        app.state.upstream_config = upstream_config or load_upstream_config()
        app.state.session_manager = ThreadSafeSessionManager()
        logger.info(f"Relay ready; upstream model {app.state.upstream_config.model}")
        yield
        closed = await app.state.session_manager.close_all()
        logger.info(f"🛑 shutdown complete ({closed} session(s) closed)")

    app = FastAPI(
        title="Realtime Audio Relay",
        description="Relays browser microphone audio to the OpenAI Realtime API",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get(RELAY_STATUS_PATH, response_model=RelayStatusResponse)
    async def relay_status() -> RelayStatusResponse:
        return RelayStatusResponse(
            status="available",
            active_sessions=await app.state.session_manager.get_session_count(),
            websocket_endpoint=RELAY_WEBSOCKET_PATH,
            upstream_model=app.state.upstream_config.model,
        )

    @app.websocket(RELAY_WEBSOCKET_PATH)
    async def relay_endpoint(websocket: WebSocket) -> None:
        await websocket.accept()
        session_id = uuid.uuid4().hex[:12]
        logger.info(f"New client connected: {session_id}")

        session = RelaySession.create(
            session_id,
            app.state.upstream_config,
            websocket.send_text,
            player=_player_for(session_id, recordings_dir),
            logger=logger,
            connector=connector,
        )
        result = await session.start()
        if not result.ok:
            await session.close(drain_client=True)
            await websocket.close(code=1011)
            return

        manager: ThreadSafeSessionManager = app.state.session_manager
        await manager.add_session(session)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                if message.get("text") is not None:
                    await session.handle_client_message(message["text"])
                elif message.get("bytes") is not None:
                    await session.handle_client_audio_frame(message["bytes"])
        except WebSocketDisconnect:
            pass
        finally:
            logger.info(f"Client disconnected: {session_id}")
            await manager.remove_session(session_id)
            await session.close()

    return app


app = create_app()
