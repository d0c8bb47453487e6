"""
Upstream connection and realtime session configuration.

Defaults mirror what the relay sends in its ``session.update``; a YAML file
can overlay any of them (``turn_detection`` is merged key by key).
"""

import copy
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

DEFAULT_REALTIME_URL = "wss://api.openai.com/v1/realtime"
DEFAULT_REALTIME_MODEL = "gpt-4o-realtime-preview-2024-10-01"
DEFAULT_INSTRUCTIONS = (
    "You are a helpful assistant that responds in English, "
    "unless the user asks you directly."
)
DEFAULT_VOICE = "coral"
DEFAULT_TRANSCRIPTION_MODEL = "whisper-1"


@dataclass
class RealtimeSessionConfig:
    instructions: str = DEFAULT_INSTRUCTIONS
    voice: str = DEFAULT_VOICE
    output_audio_format: str = "pcm16"
    turn_detection: Dict[str, Any] = field(default_factory=lambda: {"type": "server_vad"})
    transcription_model: str = DEFAULT_TRANSCRIPTION_MODEL
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_session_update(self) -> Dict[str, Any]:
        """Body of the ``session`` field sent with ``session.update``."""
        session = {
            "instructions": self.instructions,
            "voice": self.voice,
            "output_audio_format": self.output_audio_format,
            "turn_detection": copy.deepcopy(self.turn_detection),
            "input_audio_transcription": {"model": self.transcription_model},
        }
        session.update(copy.deepcopy(self.extra))
        return session

    @classmethod
    def from_yaml(cls, path: str, base: Optional["RealtimeSessionConfig"] = None) -> "RealtimeSessionConfig":
        """
        Overlay a YAML mapping on top of ``base`` (or the defaults).

        Unknown keys are kept in ``extra`` and passed through to the upstream
        session. A file that is not a mapping is ignored with a warning.
        """
        config = copy.deepcopy(base) if base else cls()
        with open(path, "r", encoding="utf-8") as f:
            config_from_yaml = yaml.safe_load(f)

        if not isinstance(config_from_yaml, dict):
            logger.warning(f"Session config YAML is not a dict, ignoring: {path}")
            return config

        logger.info(f"Loading session config from {path}")
        for key, value in config_from_yaml.items():
            if key == "turn_detection" and isinstance(value, dict):
                config.turn_detection = {**config.turn_detection, **value}
            elif key == "input_audio_transcription" and isinstance(value, dict):
                config.transcription_model = value.get("model", config.transcription_model)
            elif key in ("instructions", "voice", "output_audio_format", "transcription_model"):
                setattr(config, key, value)
            else:
                config.extra[key] = value
        return config


@dataclass
class UpstreamConfig:
    api_key: str
    url: str = DEFAULT_REALTIME_URL
    model: str = DEFAULT_REALTIME_MODEL
    session: RealtimeSessionConfig = field(default_factory=RealtimeSessionConfig)
    max_message_size: int = 2**24

    @property
    def connection_url(self) -> str:
        return f"{self.url}?model={self.model}"

    def headers(self) -> List[Tuple[str, str]]:
        return [
            ("Authorization", f"Bearer {self.api_key}"),
            ("OpenAI-Beta", "realtime=v1"),
        ]

    @classmethod
    def from_env(cls, session_config_path: Optional[str] = None) -> "UpstreamConfig":
        session = RealtimeSessionConfig(
            instructions=os.getenv("RELAY_INSTRUCTIONS", DEFAULT_INSTRUCTIONS),
            voice=os.getenv("RELAY_VOICE", DEFAULT_VOICE),
            transcription_model=os.getenv("RELAY_TRANSCRIPTION_MODEL", DEFAULT_TRANSCRIPTION_MODEL),
        )
        session_config_path = session_config_path or os.getenv("RELAY_SESSION_CONFIG")
        if session_config_path:
            session = RealtimeSessionConfig.from_yaml(session_config_path, base=session)

        return cls(
            api_key=os.getenv("OPENAI_API_KEY", ""),
            url=os.getenv("OPENAI_REALTIME_URL", DEFAULT_REALTIME_URL),
            model=os.getenv("OPENAI_REALTIME_MODEL", DEFAULT_REALTIME_MODEL),
            session=session,
        )
