"""
apps/relay/backend/settings.py
==============================
Central place for every environment variable and constant path used by
the relay service.
"""

from __future__ import annotations

import os
from typing import List

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(override=True)

# ------------------------------------------------------------------------------
# OpenAI Realtime
# ------------------------------------------------------------------------------
# OPENAI_API_KEY, OPENAI_REALTIME_URL, OPENAI_REALTIME_MODEL and the RELAY_*
# session overrides are read by UpstreamConfig.from_env.

# Optional YAML overlay for the session.update payload
RELAY_SESSION_CONFIG: str = os.getenv("RELAY_SESSION_CONFIG", "")

# ------------------------------------------------------------------------------
# Server
# ------------------------------------------------------------------------------
HOST: str = os.getenv("RELAY_HOST", "0.0.0.0")
PORT: int = int(os.getenv("RELAY_PORT", "8080"))
ALLOWED_ORIGINS: List[str] = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", "http://localhost:3001").split(",")
    if origin.strip()
]

# When set, every assembled assistant response is written here as a WAV file
RELAY_RECORDINGS_DIR: str = os.getenv("RELAY_RECORDINGS_DIR", "")

# V1 routes
RELAY_WEBSOCKET_PATH: str = "/api/v1/realtime/relay"
RELAY_STATUS_PATH: str = "/api/v1/realtime/status"
