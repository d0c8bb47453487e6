"""
Pydantic schemas for the client-facing relay websocket.

Every frame is a JSON envelope ``{"event": <name>, "data": {...}}``.
"""

import json
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class RelayEnvelope(BaseModel):
    event: str = Field(..., description="Client event name", examples=["input_audio"])
    data: Optional[Dict[str, Any]] = Field(
        default=None, description="Event payload; omitted for signal-only events"
    )

    def to_json(self) -> str:
        body: Dict[str, Any] = {"event": self.event}
        if self.data is not None:
            body["data"] = self.data
        return json.dumps(body)


class InputAudioPayload(BaseModel):
    audio: str = Field(default="", description="Base64 PCM16 mono 24 kHz chunk")


class InputTextPayload(BaseModel):
    text: str = Field(default="", description="User text turn")


class RelayStatusResponse(BaseModel):
    status: str = Field(..., examples=["available"])
    active_sessions: int = Field(..., examples=[0])
    websocket_endpoint: str = Field(..., examples=["/api/v1/realtime/relay"])
    upstream_model: str = Field(..., examples=["gpt-4o-realtime-preview-2024-10-01"])
