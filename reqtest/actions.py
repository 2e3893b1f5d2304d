"""Request/response actions behind the REST endpoints.

Both actions report failures in the ``error`` field of their result instead
of raising, so the UI can show a notification and return to the input stage.
"""

import logging

from pydantic import BaseModel

from . import flows
from .flows import TestCase

logger = logging.getLogger(__name__)


class UnderstandingResult(BaseModel):
    summary: str | None = None
    flowchartData: dict | None = None
    error: str | None = None


class TestsResult(BaseModel):
    __test__ = False  # not a pytest class

    testCases: list[TestCase] | None = None
    error: str | None = None


async def generate_understanding(requirements: str) -> UnderstandingResult:
    """Summarize requirements and build the flowchart of interpreted logic."""
    if not requirements.strip():
        return UnderstandingResult(error="Requirements cannot be empty.")

    try:
        summary = await flows.summarize_requirements(requirements)
        flowchart = await flows.generate_interactive_flowchart(summary)
    except Exception:
        logger.exception("Error in generate_understanding")
        return UnderstandingResult(error="Failed to process requirements. Please try again later.")

    if not isinstance(flowchart.get("nodes"), list) or not isinstance(flowchart.get("edges"), list):
        logger.warning("Flowchart without nodes/edges: %s", flowchart.get("openQuestions"))
        return UnderstandingResult(
            summary=summary,
            error="Failed to parse the flowchart data. The AI model may have returned an invalid format.",
        )
    return UnderstandingResult(summary=summary, flowchartData=flowchart)


async def generate_tests(confirmed_understanding: str, original_requirements: str) -> TestsResult:
    """Generate test cases and attach the compliance standards each maps to."""
    try:
        drafts = await flows.generate_test_cases(confirmed_understanding)
        if not drafts:
            return TestsResult(error="No test cases were generated.")

        standards = await flows.map_test_cases_to_standards(
            [tc.description for tc in drafts], original_requirements
        )
    except Exception:
        logger.exception("Error in generate_tests")
        return TestsResult(
            error="Failed to generate test cases. The AI model may have returned an unexpected format."
        )

    return TestsResult(testCases=[
        TestCase(id=tc.id, description=tc.description, standards=standards.get(tc.description, []))
        for tc in drafts
    ])
