"""Analysis WebSocket client: owns one duplex connection, the session id and
the reconnection policy.

Inbound frames are translated into ``ClientEvent`` objects and pushed onto
``AnalysisWSClient.events`` in arrival order. The consumer (normally
``AnalysisSession``) is the only reader of that queue.
"""

import asyncio
import enum
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .config import WS_MAX_RECONNECT_ATTEMPTS, WS_URL
from .protocol import ProtocolError, decode_message, decode_question, encode_message
from .ws_constants import (
    MSG_CONNECT,
    MSG_DISCONNECT,
    MSG_ERROR,
    MSG_PROGRESS_UPDATE,
    MSG_RESULTS,
    MSG_START_ANALYSIS,
    MSG_USER_ANSWER,
    MSG_USER_INPUT,
    ERR_RECONNECT_EXHAUSTED,
)

logger = logging.getLogger(__name__)

RECONNECT_BASE_MS = 1000
RECONNECT_MIN_MS = 200
RECONNECT_MAX_MS = 30_000
RECONNECT_JITTER = 0.1  # fraction of the base delay, applied symmetrically


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"  # transport open, no session acknowledged yet
    SESSIONED = "sessioned"
    CLOSING = "closing"


class SendStatus(str, enum.Enum):
    SENT = "sent"
    QUEUED = "queued"
    NOT_CONNECTED = "not_connected"
    NO_SESSION = "no_session"


class EventKind(str, enum.Enum):
    OPEN = "open"
    CONNECT_ACK = "connect_ack"
    PROGRESS = "progress"
    QUESTION = "question"
    RESULTS = "results"
    ERROR = "error"
    CLOSE = "close"


@dataclass
class ClientEvent:
    kind: EventKind
    payload: Any = field(default_factory=dict)
    session_id: str | None = None


Connector = Callable[[str], Awaitable[Any]]


def base_reconnect_delay_ms(attempt: int) -> int:
    return RECONNECT_BASE_MS * 2 ** attempt


def reconnect_delay_ms(attempt: int, rng: Callable[[], float] = random.random) -> float:
    """Backoff before reconnect number ``attempt`` (0-based), jittered and clamped."""
    base = base_reconnect_delay_ms(attempt)
    jitter = base * RECONNECT_JITTER * (rng() * 2 - 1)
    return max(RECONNECT_MIN_MS, min(base + jitter, RECONNECT_MAX_MS))


class AnalysisWSClient:
    """Holds all mutable state for one logical connection to the analysis server.

    ``connector`` opens a transport for a URL; the returned object must support
    ``await send(str)``, ``await close()`` and ``async for`` over inbound text
    frames. It defaults to ``websockets.connect``.
    """

    def __init__(
        self,
        url: str = WS_URL,
        *,
        max_reconnect_attempts: int = WS_MAX_RECONNECT_ATTEMPTS,
        connector: Connector | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        self.url = url
        self.max_reconnect_attempts = max_reconnect_attempts
        self.events: asyncio.Queue[ClientEvent] = asyncio.Queue()

        self.state = ConnectionState.DISCONNECTED
        self.session_id: str | None = None
        self.reconnect_attempts = 0

        self._connector = connector or websockets.connect
        self._sleep = sleep
        self._rng = rng
        self._transport: Any = None
        self._reader_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._connect_generation = 0
        self._closed_by_user = False

    @property
    def is_open(self) -> bool:
        return self._transport is not None and self.state in (
            ConnectionState.OPEN,
            ConnectionState.SESSIONED,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _emit(self, kind: EventKind, payload: Any = None) -> None:
        self.events.put_nowait(ClientEvent(
            kind=kind,
            payload=payload if payload is not None else {},
            session_id=self.session_id,
        ))

    async def _send_raw(self, data: str) -> bool:
        """Send a frame, return False if the transport is gone."""
        transport = self._transport
        if transport is None:
            return False
        try:
            await transport.send(data)
            return True
        except (ConnectionClosed, OSError, RuntimeError) as e:
            logger.debug("WS send failed: %s", e)
            return False

    def _send_precondition(self) -> SendStatus:
        if not self.is_open:
            return SendStatus.NOT_CONNECTED
        if not self.session_id:
            return SendStatus.NO_SESSION
        return SendStatus.SENT

    async def _send_sessioned(self, msg_type: str, payload: dict) -> SendStatus:
        status = self._send_precondition()
        if status is not SendStatus.SENT:
            logger.debug("Not sending %s: %s", msg_type, status.value)
            return status
        if not await self._send_raw(encode_message(msg_type, self.session_id, payload)):
            return SendStatus.NOT_CONNECTED
        return SendStatus.SENT

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        if self.state in (
            ConnectionState.CONNECTING,
            ConnectionState.OPEN,
            ConnectionState.SESSIONED,
        ):
            return
        self._cancel_reconnect()
        self.state = ConnectionState.CONNECTING
        # A (re)connect attempt implies future reconnects are allowed
        self._closed_by_user = False
        self._connect_generation += 1
        generation = self._connect_generation

        try:
            transport = await self._connector(self.url)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            if generation != self._connect_generation:
                return
            logger.warning("WS connect to %s failed: %s", self.url, e)
            self.state = ConnectionState.DISCONNECTED
            self._emit(EventKind.CLOSE, {"code": None, "reason": str(e)})
            self._schedule_reconnect()
            return

        if generation != self._connect_generation:
            # disconnect() or a newer connect() ran while the transport was opening
            logger.debug("Discarding superseded WS connect attempt")
            await transport.close()
            return

        self._transport = transport
        self.state = ConnectionState.OPEN
        payload = {"sessionId": self.session_id} if self.session_id else {}
        await self._send_raw(encode_message(MSG_CONNECT, payload=payload))
        self._emit(EventKind.OPEN, {"sessionId": self.session_id})
        self._reader_task = asyncio.create_task(self._read_loop(transport))

    async def disconnect(self, reason: str | None = None) -> None:
        """Close the connection for good: no automatic reconnect follows."""
        self._closed_by_user = True
        self._connect_generation += 1
        self._cancel_reconnect()

        transport = self._transport
        if transport is not None:
            self.state = ConnectionState.CLOSING
            payload = {"reason": reason} if reason is not None else {}
            await self._send_raw(encode_message(MSG_DISCONNECT, self.session_id, payload))
            try:
                await transport.close()
            except (ConnectionClosed, OSError, RuntimeError) as e:
                logger.debug("WS close failed: %s", e)

            reader = self._reader_task
            if reader is not None and reader is not asyncio.current_task():
                await asyncio.gather(reader, return_exceptions=True)

        self._transport = None
        self.state = ConnectionState.DISCONNECTED
        self.session_id = None

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._reconnect_task = None

    def _schedule_reconnect(self) -> bool:
        # At most one reconnect may be pending
        self._cancel_reconnect()
        if self._closed_by_user:
            return False
        if self.reconnect_attempts >= self.max_reconnect_attempts:
            logger.warning(
                "Giving up on %s after %d reconnect attempts", self.url, self.reconnect_attempts
            )
            self._emit(EventKind.ERROR, {
                "code": ERR_RECONNECT_EXHAUSTED,
                "message": f"Connection lost after {self.reconnect_attempts} reconnect attempts.",
                "recoverable": False,
            })
            return False

        delay = reconnect_delay_ms(self.reconnect_attempts, self._rng)
        self.reconnect_attempts += 1
        logger.info(
            "Reconnecting to %s in %.0fms (attempt %d/%d)",
            self.url, delay, self.reconnect_attempts, self.max_reconnect_attempts,
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))
        return True

    async def _reconnect_after(self, delay_ms: float) -> None:
        await self._sleep(delay_ms / 1000)
        if self._closed_by_user:
            return
        await self.connect()

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def _read_loop(self, transport: Any) -> None:
        try:
            async for raw in transport:
                self._handle_frame(raw)
        except ConnectionClosed:
            pass
        except OSError as e:
            logger.warning("WS transport error: %s", e)
        self._on_transport_closed(transport)

    def _on_transport_closed(self, transport: Any) -> None:
        if transport is not self._transport:
            return  # superseded by a newer connection
        self._transport = None
        self.state = ConnectionState.DISCONNECTED
        self._emit(EventKind.CLOSE, {
            "code": getattr(transport, "close_code", None),
            "reason": getattr(transport, "close_reason", None),
        })
        if not self._closed_by_user:
            self._schedule_reconnect()

    def _handle_frame(self, raw: str | bytes) -> None:
        try:
            msg = decode_message(raw)
        except ProtocolError as e:
            logger.warning("WS parse error: %s", e)
            return
        if msg is None:
            return

        payload = msg.payload
        if msg.type == MSG_CONNECT:
            nested = payload.get("sessionId") if isinstance(payload, dict) else None
            if not isinstance(nested, str):
                nested = None
            self.session_id = nested or msg.sessionId or self.session_id
            self.reconnect_attempts = 0
            if self.state == ConnectionState.OPEN:
                self.state = ConnectionState.SESSIONED
            self._emit(EventKind.CONNECT_ACK, payload)
        elif msg.type == MSG_PROGRESS_UPDATE:
            self._emit(EventKind.PROGRESS, payload)
        elif msg.type == MSG_USER_INPUT:
            question: dict[str, Any] = {"value": decode_question(payload)}
            if isinstance(payload, dict) and "runId" in payload:
                question["runId"] = payload["runId"]
            self._emit(EventKind.QUESTION, question)
        elif msg.type == MSG_RESULTS:
            self._emit(EventKind.RESULTS, payload)
        elif msg.type == MSG_ERROR:
            self._emit(EventKind.ERROR, payload)

    # ------------------------------------------------------------------
    # Outbound actions
    # ------------------------------------------------------------------

    async def start_analysis(self, requirement: str, run_id: int | None = None) -> SendStatus:
        payload: dict[str, Any] = {"requirement": requirement}
        if run_id is not None:
            payload["runId"] = run_id
        return await self._send_sessioned(MSG_START_ANALYSIS, payload)

    async def answer_question(self, response: str, run_id: int | None = None) -> SendStatus:
        payload: dict[str, Any] = {"response": response}
        if run_id is not None:
            payload["runId"] = run_id
        return await self._send_sessioned(MSG_USER_ANSWER, payload)
