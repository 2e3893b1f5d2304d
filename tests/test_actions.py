"""Tests for the REST-side actions: error mapping and result assembly."""

from unittest.mock import AsyncMock, patch

import pytest

from reqtest import flows
from reqtest.actions import generate_tests, generate_understanding
from reqtest.flows import LLMReplyError, TestCaseDraft


@pytest.fixture
def patched_flows(fake_steps, sample_flowchart):
    with patch.object(flows, "summarize_requirements", fake_steps.summarize), \
         patch.object(flows, "generate_interactive_flowchart", fake_steps.flowchart), \
         patch.object(flows, "generate_test_cases", fake_steps.test_cases), \
         patch.object(flows, "map_test_cases_to_standards", fake_steps.standards):
        yield fake_steps


class TestGenerateUnderstanding:

    async def test_success(self, patched_flows, sample_flowchart):
        result = await generate_understanding("The pump must validate doses.")
        assert result.error is None
        assert result.summary == "Dosage must be validated before saving."
        assert result.flowchartData == sample_flowchart
        patched_flows.flowchart.assert_awaited_once_with("Dosage must be validated before saving.")

    @pytest.mark.parametrize("text", ["", "   \n\t"])
    async def test_empty_requirements(self, patched_flows, text):
        result = await generate_understanding(text)
        assert result.error == "Requirements cannot be empty."
        patched_flows.summarize.assert_not_awaited()

    async def test_llm_failure(self, patched_flows):
        patched_flows.summarize.side_effect = RuntimeError("sdk down")
        result = await generate_understanding("reqs")
        assert result.error == "Failed to process requirements. Please try again later."
        assert result.summary is None

    async def test_flowchart_without_graph(self, patched_flows):
        patched_flows.flowchart.return_value = {"openQuestions": ["Flowchart generation stopped after 5 attempts"]}
        result = await generate_understanding("reqs")
        assert result.error.startswith("Failed to parse the flowchart data.")
        assert result.summary == "Dosage must be validated before saving."
        assert result.flowchartData is None


class TestGenerateTests:

    async def test_success_attaches_standards(self, patched_flows):
        result = await generate_tests("confirmed", "original")
        assert result.error is None
        assert [(tc.id, tc.standards) for tc in result.testCases] == [
            ("TC1", ["IEC 62304", "FDA"]),
            ("TC2", []),
        ]
        patched_flows.standards.assert_awaited_once_with(
            ["Reject a dose above the maximum.", "Accept a dose within range."], "original"
        )

    async def test_no_drafts(self, patched_flows):
        patched_flows.test_cases.return_value = []
        result = await generate_tests("confirmed", "original")
        assert result.error == "No test cases were generated."
        patched_flows.standards.assert_not_awaited()

    async def test_unexpected_format(self, patched_flows):
        patched_flows.test_cases.side_effect = LLMReplyError("not an array")
        result = await generate_tests("confirmed", "original")
        assert result.error == (
            "Failed to generate test cases. The AI model may have returned an unexpected format."
        )
        assert result.testCases is None

    async def test_standards_failure(self, patched_flows):
        patched_flows.standards.side_effect = LLMReplyError("bad map")
        result = await generate_tests("confirmed", "original")
        assert result.testCases is None
        assert result.error is not None

    async def test_serialized_shape(self):
        drafts = [TestCaseDraft(id="TC1", description="d")]
        with patch.object(flows, "generate_test_cases", AsyncMock(return_value=drafts)), \
             patch.object(flows, "map_test_cases_to_standards", AsyncMock(return_value={})):
            result = await generate_tests("c", "o")
        assert result.model_dump(exclude_none=True) == {
            "testCases": [{"id": "TC1", "description": "d", "standards": []}]
        }
