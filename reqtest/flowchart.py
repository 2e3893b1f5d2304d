"""Flowchart generation with bounded generate -> validate -> refine retries.

The generator is asked for ``{"nodes": [...], "edges": [...]}``. Each reply is
validated; problems are collected as human-readable issue strings and fed
back to a refinement call. After ``MAX_ATTEMPTS`` the last reply is returned
as-is with a diagnostic appended to ``openQuestions``.
"""

import json
import logging
from typing import Any, Awaitable, Callable

from .json_utils import clean_json_text

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5
INVALID_JSON_ISSUE = "Invalid JSON parse error"
DIAGNOSTIC_PREFIX = "Flowchart generation stopped after"

GenerateFn = Callable[[str], Awaitable[Any]]
RefineFn = Callable[[str, list[str], str], Awaitable[Any]]


def _is_id(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float))


def validate_flowchart(data: Any) -> list[str]:
    """Return the list of structural issues in a parsed flowchart (empty if valid).

    Never raises: ids of the wrong type become issues like any other defect.
    """
    if not isinstance(data, dict):
        return ["Flowchart must be a JSON object"]

    issues = []
    nodes = data.get("nodes")
    edges = data.get("edges")
    if not isinstance(nodes, list):
        issues.append("Missing or invalid nodes array")
        nodes = []
    if not isinstance(edges, list):
        issues.append("Missing or invalid edges array")
        edges = []

    node_ids = set()
    for node in nodes:
        node_id = node.get("id") if isinstance(node, dict) else None
        if not _is_id(node_id):
            issues.append(f"Invalid node id: {json.dumps(node_id, default=str)}")
            continue
        if node_id in node_ids:
            issues.append(f"Duplicate node id: {node_id}")
        node_ids.add(node_id)

    for edge in edges:
        if not isinstance(edge, dict):
            issues.append(f"Invalid edge: {edge!r}")
            continue
        for end in ("source", "target"):
            ref = edge.get(end)
            if not _is_id(ref):
                issues.append(f"Invalid edge {end}: {json.dumps(ref, default=str)}")
            elif ref not in node_ids:
                issues.append(f"Edge {end} missing: {ref}")

    return issues


def parse_flowchart(output: Any) -> Any:
    """Parse a generator reply. Strings are cleaned of control characters first."""
    if isinstance(output, str):
        return json.loads(clean_json_text(output))
    return output


def _as_text(output: Any) -> str:
    return output if isinstance(output, str) else json.dumps(output)


async def generate_flowchart(
    summary: str,
    *,
    generate: GenerateFn,
    refine: RefineFn,
    max_attempts: int = MAX_ATTEMPTS,
) -> dict:
    output: Any = None
    parsed: Any = None
    issues: list[str] = []

    for attempt in range(1, max_attempts + 1):
        if attempt == 1:
            output = await generate(summary)
        else:
            output = await refine(_as_text(output), issues, summary)

        try:
            parsed = parse_flowchart(output)
        except (json.JSONDecodeError, TypeError):
            parsed = None
            issues = [INVALID_JSON_ISSUE]
            logger.info("Flowchart attempt %d/%d: invalid JSON", attempt, max_attempts)
            continue

        issues = validate_flowchart(parsed)
        if not issues:
            logger.info("Flowchart valid after %d attempt(s)", attempt)
            return parsed
        logger.info("Flowchart attempt %d/%d: %d issue(s)", attempt, max_attempts, len(issues))

    # Best effort: hand back the last reply with the unresolved issues attached
    result = dict(parsed) if isinstance(parsed, dict) else {}
    open_questions = result.get("openQuestions")
    result["openQuestions"] = [
        *(open_questions if isinstance(open_questions, list) else []),
        f"{DIAGNOSTIC_PREFIX} {max_attempts} attempts with unresolved issues: {', '.join(issues)}",
    ]
    logger.warning("Flowchart still invalid after %d attempts: %s", max_attempts, issues)
    return result
