"""Shared fixtures for the requirements analysis test suite."""

import asyncio
import json
import sys
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

# Ensure the project root is on sys.path so the 'reqtest' package resolves
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


# ---------------------------------------------------------------------------
# In-memory transport for AnalysisWSClient
# ---------------------------------------------------------------------------

_CLOSED = object()


class FakeTransport:
    """Stands in for a websockets connection.

    Frames the client sends are recorded (decoded) in ``sent``; frames for the
    client to receive are queued with ``feed()``. ``drop()`` simulates the
    server going away.
    """

    def __init__(self):
        self.sent: list[dict] = []
        self.closed = False
        self.close_code: int | None = None
        self.close_reason: str | None = None
        self.fail_sends = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str) -> None:
        if self.closed or self.fail_sends:
            raise RuntimeError("transport closed")
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.close_code = 1000
            self._inbox.put_nowait(_CLOSED)

    def feed(self, frame) -> None:
        self._inbox.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def drop(self, code: int = 1006, reason: str = "") -> None:
        self.closed = True
        self.close_code = code
        self.close_reason = reason
        self._inbox.put_nowait(_CLOSED)

    def sent_of_type(self, msg_type: str) -> list[dict]:
        return [m for m in self.sent if m.get("type") == msg_type]

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


class FakeConnector:
    """Callable connector handing out FakeTransports; can be told to fail."""

    def __init__(self, failures: int = 0, always_fail: bool = False):
        self.failures = failures
        self.always_fail = always_fail
        self.urls: list[str] = []
        self.transports: list[FakeTransport] = []

    @property
    def calls(self) -> int:
        return len(self.urls)

    @property
    def latest(self) -> FakeTransport:
        return self.transports[-1]

    async def __call__(self, url: str) -> FakeTransport:
        self.urls.append(url)
        if self.always_fail or self.failures > 0:
            self.failures -= 1
            raise OSError("connection refused")
        transport = FakeTransport()
        self.transports.append(transport)
        return transport


async def settle(rounds: int = 10) -> None:
    """Let reader/pump tasks run until they block again."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def drain_reconnects(client) -> None:
    """Run scheduled reconnects to completion, including ones they schedule."""
    while client._reconnect_task is not None and not client._reconnect_task.done():
        await client._reconnect_task


def drain_events(client) -> list:
    events = []
    while not client.events.empty():
        events.append(client.events.get_nowait())
    return events


def ack(session_id: str = "S1", *, top_level: bool = False) -> dict:
    if top_level:
        return {"type": "connect", "sessionId": session_id, "timestamp": 1}
    return {"type": "connect", "timestamp": 1, "payload": {"sessionId": session_id}}


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def backoff_sleep():
    return AsyncMock()


@pytest.fixture
def ws_client(connector, backoff_sleep):
    """Client wired to the fake connector; rng=0.5 makes jitter zero."""
    from reqtest.ws_client import AnalysisWSClient

    return AnalysisWSClient(
        "ws://testserver/ws",
        connector=connector,
        sleep=backoff_sleep,
        rng=lambda: 0.5,
    )


# ---------------------------------------------------------------------------
# Server fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_flowchart():
    return {
        "nodes": [
            {"id": "node1", "label": "Start", "description": ["Patient record opened"]},
            {"id": "node2", "label": "Validate dosage", "description": ["Dose within range"]},
            {"id": "node3", "label": "End", "description": ["Record saved"]},
        ],
        "edges": [
            {"source": "node1", "target": "node2"},
            {"source": "node2", "target": "node3"},
        ],
    }


@pytest.fixture
def fake_steps(sample_flowchart):
    """AnalysisSteps with every LLM collaborator replaced by an AsyncMock."""
    from reqtest.flows import TestCaseDraft
    from reqtest.ws_handler import AnalysisSteps

    return AnalysisSteps(
        summarize=AsyncMock(return_value="Dosage must be validated before saving."),
        flowchart=AsyncMock(return_value=sample_flowchart),
        test_cases=AsyncMock(return_value=[
            TestCaseDraft(id="TC1", description="Reject a dose above the maximum."),
            TestCaseDraft(id="TC2", description="Accept a dose within range."),
        ]),
        standards=AsyncMock(return_value={
            "Reject a dose above the maximum.": ["IEC 62304", "FDA"],
        }),
    )


@pytest.fixture
def app(fake_steps):
    """The FastAPI app with LLM collaborators mocked out."""
    from unittest.mock import patch

    with patch("reqtest.server.analysis_steps", fake_steps):
        from reqtest.server import app as fastapi_app
        yield fastapi_app


@pytest.fixture
async def client(app):
    """Async HTTP client for testing REST endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
