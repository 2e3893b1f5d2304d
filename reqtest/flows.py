"""LLM-backed analysis steps: summarize, flowchart, test cases, standards mapping.

Each step formats a prompt, sends it through ``llm_pool`` and coerces the
reply into the shape the rest of the pipeline expects.
"""

import json
import logging

from pydantic import BaseModel, Field, ValidationError

from .flowchart import generate_flowchart
from .json_utils import extract_json
from .llm_client import llm_pool

logger = logging.getLogger(__name__)


class LLMReplyError(ValueError):
    """The model replied, but not in the requested shape."""


class TestCaseDraft(BaseModel):
    __test__ = False  # not a pytest class

    id: str
    description: str


class TestCase(TestCaseDraft):
    standards: list[str] = Field(default_factory=list)


SUMMARIZE_PROMPT = """Summarize the key requirements, constraints, and objectives from the following document or problem statement:

{document}"""

FLOWCHART_PROMPT = """Convert the following problem statement summary into a flowchart of its interpreted logic.

Problem Statement Summary:
{summary}

Rules:
- Return a single JSON object: {{"nodes": [...], "edges": [...]}}
- Each node is {{"id": "node1", "label": "Start", "description": ["point", "point"]}} with a unique id (node1, node2, ...)
- Each edge is {{"source": "<node id>", "target": "<node id>"}} and must reference existing node ids
- If you make assumptions, list them in "assumptions"
- If the input is ambiguous, list clarifying questions in "openQuestions"
- Do not include markdown or code blocks"""

REFINE_FLOWCHART_PROMPT = """The last attempt produced invalid or incomplete flowchart JSON.

Original Problem: {original}
Last Output: {last_output}
Issues:
{issues}

Fix the JSON so it:
1. Has a "nodes" array with unique ids and an "edges" array whose source/target reference existing nodes
2. Covers all steps in the problem
3. Includes "assumptions" for inferred logic
4. Adds "openQuestions" if the problem is ambiguous
Return only the corrected JSON object."""

TEST_CASES_PROMPT = """Based on the confirmed understanding of the requirements and specifications below, generate a comprehensive set of test cases covering normal scenarios and edge cases.

Confirmed Understanding:
{understanding}

Return a JSON array of objects, each with an "id" (e.g. "TC1") and a "description". Example:
[
  {{"id": "TC1", "description": "Verify user can log in with valid credentials."}},
  {{"id": "TC2", "description": "Verify user cannot log in with invalid credentials."}}
]"""

STANDARDS_PROMPT = """You are an expert in healthcare regulatory compliance.
For each test case description below, identify the compliance standards that apply (e.g. FDA, IEC 62304, ISO 9001, ISO 13485, ISO 27001) based on the requirements document. Use an empty list when none apply.

Test Case Descriptions:
{test_cases}

Requirements Document:
{requirements}

Return a JSON object whose keys are the test case descriptions exactly as given and whose values are lists of standard names."""


async def summarize_requirements(document: str) -> str:
    summary = await llm_pool.query(SUMMARIZE_PROMPT.format(document=document))
    summary = summary.strip()
    if not summary:
        raise LLMReplyError("Empty summary")
    return summary


async def draft_flowchart(summary: str) -> str:
    return await llm_pool.query(FLOWCHART_PROMPT.format(summary=summary))


async def refine_flowchart(last_output: str, issues: list[str], original: str) -> str:
    return await llm_pool.query(REFINE_FLOWCHART_PROMPT.format(
        original=original,
        last_output=last_output,
        issues="\n".join(f"- {issue}" for issue in issues),
    ))


def _json_or_raw(reply: str):
    """Parsed JSON when the reply contains some, else the raw reply for refinement."""
    data = extract_json(reply)
    return reply if data is None else data


async def _draft_flowchart_json(summary: str):
    return _json_or_raw(await draft_flowchart(summary))


async def _refine_flowchart_json(last_output: str, issues: list[str], original: str):
    return _json_or_raw(await refine_flowchart(last_output, issues, original))


async def generate_interactive_flowchart(summary: str) -> dict:
    """Flowchart for a summary, refined until valid or attempts run out."""
    return await generate_flowchart(
        summary,
        generate=_draft_flowchart_json,
        refine=_refine_flowchart_json,
    )


async def generate_test_cases(understanding: str) -> list[TestCaseDraft]:
    reply = await llm_pool.query(TEST_CASES_PROMPT.format(understanding=understanding))
    data = extract_json(reply)
    if isinstance(data, dict):
        # Tolerate {"testCases": [...]} wrappers
        data = data.get("testCases")
    if not isinstance(data, list):
        raise LLMReplyError("Test case reply is not a JSON array")
    try:
        return [TestCaseDraft.model_validate(item) for item in data]
    except ValidationError as e:
        raise LLMReplyError(f"Malformed test case: {e}") from e


async def map_test_cases_to_standards(descriptions: list[str], requirements: str) -> dict[str, list[str]]:
    if not descriptions:
        return {}
    reply = await llm_pool.query(STANDARDS_PROMPT.format(
        test_cases="\n".join(f"- {d}" for d in descriptions),
        requirements=requirements,
    ))
    data = extract_json(reply)
    if isinstance(data, dict) and isinstance(data.get("testCaseToStandardsMap"), dict):
        data = data["testCaseToStandardsMap"]
    if not isinstance(data, dict):
        raise LLMReplyError("Standards reply is not a JSON object")

    mapping: dict[str, list[str]] = {}
    for description, standards in data.items():
        if isinstance(standards, list):
            mapping[description] = [str(s) for s in standards]
        else:
            logger.debug("Ignoring non-list standards for %r: %s", description, json.dumps(standards))
    return mapping
