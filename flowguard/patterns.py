# flowguard/patterns.py
"""Workflow-level heuristics: error handling coverage, chain length, credentials, agent tooling."""
from __future__ import annotations

from typing import Any, Dict

from flowguard.model import AI_TOOL, MAIN, Profile, ValidationResult
from flowguard.nodes.properties import check_node_properties
from flowguard.utils.graph import is_non_executable, iter_connections, longest_linear_chain

MAX_LINEAR_CHAIN = 10
MIN_NODES_FOR_ERROR_HANDLING_HINT = 3
MIN_UNHANDLED_FOR_SUGGESTION = 5

COMMUNITY_TOOL_SUGGESTION = (
    "For community nodes used as AI tools, ensure N8N_COMMUNITY_PACKAGES_ALLOW_TOOL_USAGE=true is set"
)


def has_error_output(connections: Dict[str, Any]) -> bool:
    """True if any node routes into its main[1] (error) bucket."""
    for outputs in (connections or {}).values():
        main = outputs.get(MAIN) if isinstance(outputs, dict) else None
        if isinstance(main, list) and len(main) > 1 and isinstance(main[1], list) and main[1]:
            return True
    return False


def check_workflow_patterns(
    workflow: Dict[str, Any],
    result: ValidationResult,
    profile: Profile = Profile.RUNTIME,
) -> None:
    nodes = [n for n in workflow.get("nodes") or [] if isinstance(n, dict)]
    connections = workflow.get("connections") or {}

    if not has_error_output(connections) and len(nodes) > MIN_NODES_FOR_ERROR_HANDLING_HINT and profile is not Profile.MINIMAL:
        result.warning("Consider adding error handling to your workflow")

    for node in nodes:
        if not is_non_executable(node.get("type")):
            check_node_properties(node, result)

    chain = longest_linear_chain(workflow)
    if chain > MAX_LINEAR_CHAIN:
        result.warning(f"Long linear chain detected ({chain} nodes). Consider breaking into sub-workflows.")

    _suggest_error_handling(workflow, result)
    _check_credentials(workflow, result)
    _check_agent_tools(workflow, result)


def _suggest_error_handling(workflow: Dict[str, Any], result: ValidationResult) -> None:
    nodes = [n for n in workflow.get("nodes") or [] if isinstance(n, dict)]
    unhandled = [
        n for n in nodes
        if not n.get("disabled") and not n.get("onError") and not n.get("continueOnFail") and not n.get("retryOnFail")
    ]
    if len(unhandled) > MIN_UNHANDLED_FOR_SUGGESTION and len(nodes) > MIN_UNHANDLED_FOR_SUGGESTION:
        result.suggestions.append(
            'Most nodes lack error handling. Use "onError" property for modern error handling: '
            '"continueRegularOutput" (continue on error), "continueErrorOutput" (use error output), '
            'or "stopWorkflow" (stop execution).'
        )
    if any(not n.get("disabled") and n.get("continueOnFail") is True for n in nodes):
        result.suggestions.append(
            "Replace \"continueOnFail: true\" with \"onError: 'continueRegularOutput'\" for better UI "
            "compatibility and control."
        )


def _check_credentials(workflow: Dict[str, Any], result: ValidationResult) -> None:
    for node in workflow.get("nodes") or []:
        credentials = node.get("credentials")
        if not isinstance(credentials, dict):
            continue
        for cred_type, cred in credentials.items():
            if not cred or (isinstance(cred, dict) and "id" not in cred):
                result.warning(f"Missing credentials configuration for {cred_type}", node)


def _check_agent_tools(workflow: Dict[str, Any], result: ValidationResult) -> None:
    agents = [n for n in workflow.get("nodes") or [] if "agent" in str(n.get("type") or "").lower()]
    if not agents:
        return
    connections = workflow.get("connections") or {}
    tool_targets = {conn.get("node") for _s, _p, _i, conn in iter_connections(connections, (AI_TOOL,))}
    for agent in agents:
        if agent.get("name") not in tool_targets:
            result.warning(
                "AI Agent has no tools connected. Consider adding tools to enhance agent capabilities.", agent
            )
    if any(isinstance(o, dict) and o.get(AI_TOOL) for o in connections.values()):
        result.suggestions.append(COMMUNITY_TOOL_SUGGESTION)
