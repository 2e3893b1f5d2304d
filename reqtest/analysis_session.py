"""Consumer-facing analysis session: turns client events into readable state.

``AnalysisSession`` drains ``AnalysisWSClient.events`` in order and keeps the
latest connection status, progress snapshot, pending question, results and
error. It also covers the race where ``start_analysis`` is called before the
server has acknowledged the session: the requirement is held in a one-slot
buffer and sent as soon as the acknowledgement arrives.
"""

import asyncio
import logging
from typing import Any

from .ws_client import AnalysisWSClient, ClientEvent, EventKind, SendStatus

logger = logging.getLogger(__name__)

# Event kinds that belong to a specific analysis run
_RUN_SCOPED = (EventKind.PROGRESS, EventKind.QUESTION, EventKind.RESULTS, EventKind.ERROR)


class AnalysisSession:
    """Readable state for one analysis conversation, fed by an AnalysisWSClient.

    ``start()`` connects and launches a pump task that applies client events
    in order; ``close()`` disconnects and stops it. Each ``start_analysis``
    begins a new run: ``run_id`` is incremented and sent with the request,
    and progress/question/results/error payloads tagged with an older run
    are ignored. A request made before the session is acknowledged is held
    (latest one wins) and sent once when the CONNECT ack arrives.
    """

    def __init__(self, client: AnalysisWSClient | None = None):
        self.client = client or AnalysisWSClient()

        self.connected = False
        self.session_id: str | None = None
        self.progress: dict | None = None
        self.results: dict | None = None
        self.error: str | None = None
        self.question: str | None = None

        self.run_id = 0
        self._pending_requirement: str | None = None
        self._pump_task: asyncio.Task | None = None

    @property
    def pending_requirement(self) -> str | None:
        return self._pending_requirement

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Connect and begin applying client events."""
        if self._pump_task is None or self._pump_task.done():
            self._pump_task = asyncio.create_task(self._pump())
        await self.client.connect()

    async def close(self, reason: str = "unmount") -> None:
        await self.client.disconnect(reason)
        # Apply whatever the disconnect produced before stopping the pump
        self.drain()
        if self._pump_task is not None:
            self._pump_task.cancel()
            await asyncio.gather(self._pump_task, return_exceptions=True)
            self._pump_task = None
        self.connected = False
        self.session_id = None
        self._pending_requirement = None

    async def _pump(self) -> None:
        while True:
            event = await self.client.events.get()
            try:
                await self.apply_event(event)
            except Exception:
                logger.exception("Failed to apply %s event", event.kind.value)

    def drain(self) -> None:
        """Apply every queued event that needs no I/O.

        CONNECT_ACK with a pending requirement needs a send, so it is left to
        ``apply_event`` via the pump.
        """
        queue = self.client.events
        while not queue.empty():
            event = queue.get_nowait()
            if event.kind is EventKind.CONNECT_ACK:
                self.session_id = event.session_id
                continue
            self._apply_state(event)

    # ------------------------------------------------------------------
    # Event application
    # ------------------------------------------------------------------

    def _is_stale(self, event: ClientEvent) -> bool:
        if event.kind not in _RUN_SCOPED or not isinstance(event.payload, dict):
            return False
        run_id = event.payload.get("runId")
        return run_id is not None and run_id != self.run_id

    async def apply_event(self, event: ClientEvent) -> None:
        if event.kind is EventKind.CONNECT_ACK:
            self.session_id = event.session_id
            if self._pending_requirement is not None:
                requirement = self._pending_requirement
                self._pending_requirement = None
                status = await self.client.start_analysis(requirement, run_id=self.run_id)
                logger.info("Sent queued requirement for run %d: %s", self.run_id, status.value)
            return
        self._apply_state(event)

    def _apply_state(self, event: ClientEvent) -> None:
        if self._is_stale(event):
            logger.debug(
                "Ignoring %s for run %s (current run %d)",
                event.kind.value, event.payload.get("runId"), self.run_id,
            )
            return

        payload: Any = event.payload
        if event.kind is EventKind.OPEN:
            self.connected = True
        elif event.kind is EventKind.CLOSE:
            self.connected = False
        elif event.kind is EventKind.PROGRESS:
            self.progress = payload
        elif event.kind is EventKind.QUESTION:
            self.question = payload.get("value") if isinstance(payload, dict) else str(payload)
        elif event.kind is EventKind.RESULTS:
            self.results = payload
            self.question = None
        elif event.kind is EventKind.ERROR:
            message = payload.get("message") if isinstance(payload, dict) else None
            self.error = message or "Unknown error"

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def start_analysis(self, requirement: str) -> SendStatus:
        """Begin a fresh run, queuing it if the session is not acknowledged yet."""
        self.run_id += 1
        self.progress = None
        self.results = None
        self.error = None

        if self.client.is_open and self.session_id:
            self._pending_requirement = None
            return await self.client.start_analysis(requirement, run_id=self.run_id)

        self._pending_requirement = requirement
        logger.debug("Queued requirement for run %d until the session is acknowledged", self.run_id)
        return SendStatus.QUEUED

    async def answer_question(self, response: str) -> SendStatus:
        return await self.client.answer_question(response, run_id=self.run_id)

    async def disconnect(self, reason: str | None = None) -> None:
        await self.client.disconnect(reason)
