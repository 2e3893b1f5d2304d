"""Wire format for the analysis WebSocket: message envelope and payload shapes.

Every frame is a JSON object ``{type, sessionId?, timestamp, payload?}``.
Consumers ignore unknown fields, drop unknown ``type`` values and treat a
missing ``payload`` as an empty object.
"""

import json
import logging
import time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .ws_constants import MESSAGE_TYPES

logger = logging.getLogger(__name__)


class ProtocolError(ValueError):
    """Raised when an inbound frame is not a JSON object."""


class WSMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str
    sessionId: str | None = None
    timestamp: int = 0
    payload: Any = Field(default_factory=dict)


# ── Payload shapes ────────────────────────────────────────────────────

class ProgressPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    stage: str
    progress: float = Field(..., ge=0, le=100)
    message: str | None = None


class ConversationTurn(BaseModel):
    role: str
    content: str


class ResultsPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    insights: list[str] = Field(default_factory=list)
    conversationHistory: list[ConversationTurn] = Field(default_factory=list)
    visitedUrls: list[str] | None = None
    flowChart: str | None = None


class ErrorPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: str
    message: str
    recoverable: bool | None = None
    details: Any = None


# ── Encode / decode ───────────────────────────────────────────────────

def now_ms() -> int:
    return int(time.time() * 1000)


def encode_message(msg_type: str, session_id: str | None = None, payload: dict | None = None) -> str:
    """Serialize an outbound frame, stamping the current epoch-ms timestamp."""
    frame: dict[str, Any] = {"type": msg_type, "timestamp": now_ms()}
    if session_id:
        frame["sessionId"] = session_id
    if payload is not None:
        frame["payload"] = payload
    return json.dumps(frame)


def decode_message(raw: str | bytes) -> WSMessage | None:
    """Parse an inbound frame.

    Returns None for frames whose ``type`` is not part of the protocol.
    Raises ProtocolError when the frame is not a JSON object.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, ValueError) as e:
        raise ProtocolError(f"Malformed JSON frame: {e}") from e
    if not isinstance(data, dict):
        raise ProtocolError("Frame is not a JSON object")

    msg_type = data.get("type")
    if msg_type not in MESSAGE_TYPES:
        logger.debug("Dropping frame with unknown type %r", msg_type)
        return None

    payload = data.get("payload")
    session_id = data.get("sessionId")
    timestamp = data.get("timestamp")
    return WSMessage(
        type=msg_type,
        sessionId=session_id if isinstance(session_id, str) else None,
        timestamp=timestamp if isinstance(timestamp, int) else 0,
        payload=payload if payload is not None else {},
    )


def decode_question(payload: Any) -> str:
    """Resolve a clarifying-question payload to its text.

    Precedence: a bare string, then ``value``, then ``response``, then the
    whole payload JSON-encoded.
    """
    if isinstance(payload, str):
        return payload
    if isinstance(payload, dict):
        for key in ("value", "response"):
            value = payload.get(key)
            if value is not None:
                return value if isinstance(value, str) else str(value)
    return json.dumps(payload)
