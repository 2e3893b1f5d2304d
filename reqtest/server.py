"""FastAPI application: REST analysis actions and the /ws analysis endpoint.

The REST routes wrap the request/response actions in ``actions.py`` and
always answer 200 with either a result or an ``error`` field; only request
validation failures produce 422. WebSocket connections are handed to
``ws_handler.websocket_analysis`` with the module-level ``analysis_steps``.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .actions import generate_tests, generate_understanding
from .config import get_cors_origins
from .llm_client import llm_pool
from .ws_handler import AnalysisSteps, websocket_analysis

logger = logging.getLogger(__name__)

MAX_REQUIREMENTS_CHARS = 100_000


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await llm_pool.shutdown()


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Collaborators used by every WebSocket analysis run
analysis_steps = AnalysisSteps()


class UnderstandingRequest(BaseModel):
    requirements: str = Field(..., max_length=MAX_REQUIREMENTS_CHARS)


class TestCasesRequest(BaseModel):
    __test__ = False  # not a pytest class

    confirmedUnderstanding: str = Field(..., min_length=1, max_length=MAX_REQUIREMENTS_CHARS)
    originalRequirements: str = Field("", max_length=MAX_REQUIREMENTS_CHARS)


@app.get("/api/health")
async def health():
    return {"status": "ok"}


@app.post("/api/understanding")
async def api_understanding(req: UnderstandingRequest):
    result = await generate_understanding(req.requirements)
    return result.model_dump(exclude_none=True)


@app.post("/api/test-cases")
async def api_test_cases(req: TestCasesRequest):
    result = await generate_tests(req.confirmedUnderstanding, req.originalRequirements)
    return result.model_dump(exclude_none=True)


@app.websocket("/ws")
async def ws_analysis(websocket: WebSocket):
    await websocket_analysis(websocket, steps=analysis_steps)
