"""WebSocket analysis handler: the server side of the session protocol.

The main entry point is ``websocket_analysis()``, which server.py mounts at
``/ws``. Each connection gets an ``AnalysisSocketSession``; a start_analysis
request runs the pipeline in a background task so the message loop stays
free to receive the answer to a clarifying question.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable
from uuid import uuid4

from fastapi import WebSocket, WebSocketDisconnect

from . import flows
from .flowchart import DIAGNOSTIC_PREFIX
from .protocol import ErrorPayload, ProgressPayload, ResultsPayload, now_ms
from .ws_constants import (
    MSG_CONNECT,
    MSG_START_ANALYSIS,
    MSG_USER_ANSWER,
    MSG_USER_INPUT,
    MSG_DISCONNECT,
    MSG_PROGRESS_UPDATE,
    MSG_RESULTS,
    MSG_ERROR,
    STAGE_INITIALIZATION,
    STAGE_UNDERSTANDING,
    STAGE_COMPLETION,
    ERR_INVALID_MESSAGE,
    ERR_UNKNOWN_TYPE,
    ERR_NO_ACTIVE_SESSION,
    ERR_INVALID_REQUEST,
    ERR_NO_PENDING_QUESTION,
    ERR_ANALYSIS_FAILED,
    ERR_INTERNAL,
)

logger = logging.getLogger(__name__)

_SESSION_ID_RE = re.compile(r"^[0-9a-f]{8,}$")


def _is_valid_session_id(session_id: Any) -> bool:
    return isinstance(session_id, str) and bool(_SESSION_ID_RE.match(session_id))


@dataclass
class AnalysisSteps:
    """The LLM-backed collaborators one analysis run calls, in order."""
    summarize: Callable[[str], Awaitable[str]] = flows.summarize_requirements
    flowchart: Callable[[str], Awaitable[dict]] = flows.generate_interactive_flowchart
    test_cases: Callable[[str], Awaitable[list]] = flows.generate_test_cases
    standards: Callable[[list[str], str], Awaitable[dict]] = flows.map_test_cases_to_standards


def _first_open_question(flowchart: dict) -> str | None:
    """First clarifying question the flowchart raised, skipping retry diagnostics."""
    questions = flowchart.get("openQuestions") if isinstance(flowchart, dict) else None
    if not isinstance(questions, list):
        return None
    for q in questions:
        if isinstance(q, str) and q.strip() and not q.startswith(DIAGNOSTIC_PREFIX):
            return q.strip()
    return None


def _format_insight(test_case, standards: list[str]) -> str:
    line = f"{test_case.id}: {test_case.description}"
    if standards:
        line += f" [{', '.join(standards)}]"
    return line


def _with_run(payload: dict, run_id: Any) -> dict:
    if run_id is not None:
        payload["runId"] = run_id
    return payload


class AnalysisSocketSession:
    """Holds all mutable state for a single analysis WebSocket connection.

    Each message type is handled by a ``handle_<type>`` method, keeping the
    main loop thin and each handler focused on one concern.
    """

    def __init__(self, websocket: WebSocket, *, steps: AnalysisSteps | None = None):
        self.ws = websocket
        self.steps = steps or AnalysisSteps()

        # Per-connection mutable state
        self.session_id: str | None = None
        self.run_id: Any = None
        self._ws_alive = True
        self._closing = False
        self._run_task: asyncio.Task | None = None
        self._pending_answer: asyncio.Future | None = None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def safe_send(self, msg_type: str, payload: dict | None = None) -> bool:
        """Send a protocol frame, return False if disconnected."""
        if not self._ws_alive:
            return False
        frame: dict[str, Any] = {"type": msg_type, "timestamp": now_ms(), "payload": payload or {}}
        if self.session_id:
            frame["sessionId"] = self.session_id
        try:
            await self.ws.send_json(frame)
            return True
        except (WebSocketDisconnect, RuntimeError):
            self._ws_alive = False
            return False

    async def send_error(self, code: str, message: str, *, recoverable: bool = True, run_id: Any = None) -> bool:
        err = ErrorPayload(code=code, message=message, recoverable=recoverable)
        return await self.safe_send(MSG_ERROR, _with_run(err.model_dump(exclude_none=True), run_id))

    async def _progress(self, stage: str, progress: int, message: str, run_id: Any) -> None:
        update = ProgressPayload(stage=stage, progress=progress, message=message)
        await self.safe_send(MSG_PROGRESS_UPDATE, _with_run(update.model_dump(exclude_none=True), run_id))

    async def _cancel_run(self) -> None:
        task = self._run_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._run_task = None

    async def _ask(self, question: str, run_id: Any) -> str:
        """Send a clarifying question and wait for the user's answer."""
        answer = asyncio.get_running_loop().create_future()
        self._pending_answer = answer
        try:
            await self.safe_send(MSG_USER_INPUT, _with_run({"value": question}, run_id))
            return await answer
        finally:
            if self._pending_answer is answer:
                self._pending_answer = None

    # ------------------------------------------------------------------
    # Analysis run
    # ------------------------------------------------------------------

    async def _run_analysis(self, requirement: str, run_id: Any) -> None:
        history = [{"role": "user", "content": requirement}]
        try:
            await self._progress(STAGE_INITIALIZATION, 0, "Starting analysis", run_id)

            summary = await self.steps.summarize(requirement)
            history.append({"role": "assistant", "content": summary})
            await self._progress(STAGE_UNDERSTANDING, 30, "Requirements summarized", run_id)

            flowchart = await self.steps.flowchart(summary)
            await self._progress(STAGE_UNDERSTANDING, 60, "Flowchart generated", run_id)

            understanding = summary
            question = _first_open_question(flowchart)
            if question:
                history.append({"role": "assistant", "content": question})
                answer = await self._ask(question, run_id)
                history.append({"role": "user", "content": answer})
                understanding = f"{summary}\n\nClarification:\nQ: {question}\nA: {answer}"
                await self._progress(STAGE_UNDERSTANDING, 75, "Clarification received", run_id)

            test_cases = await self.steps.test_cases(understanding)
            standards = await self.steps.standards([tc.description for tc in test_cases], requirement)
            await self._progress(STAGE_COMPLETION, 100, "Analysis complete", run_id)

            results = ResultsPayload(
                insights=[_format_insight(tc, standards.get(tc.description, [])) for tc in test_cases],
                conversationHistory=history,
                flowChart=json.dumps(flowchart),
            )
            await self.safe_send(MSG_RESULTS, _with_run(results.model_dump(exclude_none=True), run_id))
            logger.info("Analysis run %s finished for session %s", run_id, self.session_id)
        except asyncio.CancelledError:
            logger.info("Analysis run %s cancelled for session %s", run_id, self.session_id)
            raise
        except Exception:
            logger.exception("Analysis run %s failed for session %s", run_id, self.session_id)
            await self.send_error(ERR_ANALYSIS_FAILED, "Analysis failed. Please try again.", run_id=run_id)

    # ------------------------------------------------------------------
    # Message handlers
    # ------------------------------------------------------------------

    async def handle_connect(self, msg: dict) -> None:
        payload = msg.get("payload") or {}
        requested = payload.get("sessionId") or msg.get("sessionId")
        if _is_valid_session_id(requested):
            self.session_id = requested
            logger.info("Resumed session %s", requested)
        else:
            self.session_id = uuid4().hex
            logger.info("Started session %s", self.session_id)
        await self.safe_send(MSG_CONNECT, {"sessionId": self.session_id})

    async def handle_start_analysis(self, msg: dict) -> None:
        if not self.session_id:
            await self.send_error(ERR_NO_ACTIVE_SESSION, "Send connect before start_analysis.")
            return
        payload = msg.get("payload") or {}
        requirement = payload.get("requirement")
        if not isinstance(requirement, str) or not requirement.strip():
            await self.send_error(ERR_INVALID_REQUEST, "Requirement cannot be empty.")
            return

        await self._cancel_run()
        self.run_id = payload.get("runId")
        self._run_task = asyncio.create_task(self._run_analysis(requirement, self.run_id))

    async def handle_user_answer(self, msg: dict) -> None:
        payload = msg.get("payload") or {}
        answer = self._pending_answer
        if answer is None or answer.done():
            await self.send_error(ERR_NO_PENDING_QUESTION, "There is no question awaiting an answer.")
            return
        run_id = payload.get("runId")
        if run_id is not None and run_id != self.run_id:
            await self.send_error(ERR_INVALID_REQUEST, "Answer does not belong to the current analysis.", run_id=run_id)
            return
        response = payload.get("response")
        answer.set_result(response if isinstance(response, str) else "")

    async def handle_disconnect(self, msg: dict) -> None:
        payload = msg.get("payload") or {}
        logger.info("Session %s disconnecting: %s", self.session_id, payload.get("reason"))
        await self._cancel_run()
        self._closing = True

    # ------------------------------------------------------------------
    # Main loop & cleanup
    # ------------------------------------------------------------------

    # Dispatch table: message type -> handler method name
    _HANDLERS = {
        MSG_CONNECT: "handle_connect",
        MSG_START_ANALYSIS: "handle_start_analysis",
        MSG_USER_ANSWER: "handle_user_answer",
        MSG_USER_INPUT: "handle_user_answer",
        MSG_DISCONNECT: "handle_disconnect",
    }

    async def run(self) -> None:
        """Main message loop: dispatches to handler methods."""
        try:
            while not self._closing:
                data = await self.ws.receive_text()

                try:
                    msg = json.loads(data)
                except (json.JSONDecodeError, ValueError) as e:
                    logger.warning("Malformed JSON from client: %s", e)
                    await self.send_error(ERR_INVALID_MESSAGE, "Invalid message format.")
                    continue
                if not isinstance(msg, dict):
                    await self.send_error(ERR_INVALID_MESSAGE, "Message must be a JSON object.")
                    continue

                msg_type = msg.get("type")
                if not msg_type:
                    await self.send_error(ERR_INVALID_MESSAGE, "Missing message type.")
                    continue

                handler_name = self._HANDLERS.get(msg_type)
                if not handler_name:
                    await self.send_error(ERR_UNKNOWN_TYPE, f"Unknown message type: {msg_type}")
                    continue

                try:
                    await getattr(self, handler_name)(msg)
                except Exception:
                    logger.exception("Unexpected error handling message type=%s", msg_type)
                    await self.send_error(ERR_INTERNAL, "An internal error occurred.")
        except (WebSocketDisconnect, RuntimeError):
            pass

    async def cleanup(self) -> None:
        """Cancel any in-flight analysis when the socket goes away."""
        try:
            await self._cancel_run()
        except Exception:
            logger.exception("Failed to cancel analysis run during cleanup")


# ------------------------------------------------------------------
# FastAPI endpoint mounted by server.py at /ws
# ------------------------------------------------------------------

async def websocket_analysis(websocket: WebSocket, *, steps: AnalysisSteps | None = None) -> None:
    """WebSocket endpoint handler for /ws."""
    await websocket.accept()
    session = AnalysisSocketSession(websocket, steps=steps)
    try:
        await session.run()
    finally:
        await session.cleanup()
        if session._closing:
            try:
                await websocket.close()
            except RuntimeError:
                pass
