# flowguard/validator.py
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from flowguard.ai.nodes import has_ai_nodes, validate_ai_nodes
from flowguard.connections.analyzer import check_connections
from flowguard.context import EngineContext
from flowguard.expressions.format import format_error_message, validate_node_parameters
from flowguard.expressions.validator import (
    ExpressionContext,
    count_expressions,
    validate_node_expressions,
)
from flowguard.model import ValidationOptions, ValidationResult
from flowguard.nodes.rules import check_nodes
from flowguard.patterns import check_workflow_patterns
from flowguard.structural.checker import check_structure
from flowguard.utils.graph import is_langchain_node, is_non_executable, node_has_input
from flowguard.utils.logger import get_logger

log = get_logger("validator")

MAX_NODES_BEFORE_SPLIT_HINT = 20
MAX_EXPRESSIONS_PER_NODE = 5
MANY_ERRORS = 3

# (category, substrings matched against error messages, recovery lines)
RECOVERY_CATEGORIES = (
    (
        "nodeType",
        ("node type", "Node type"),
        [
            "🔧 RECOVERY: Invalid node types detected. Use these patterns:",
            '   • For core nodes: "n8n-nodes-base.nodeName" (e.g., "n8n-nodes-base.webhook")',
            '   • For AI nodes: "@n8n/n8n-nodes-langchain.nodeName"',
            "   • Never use just the node name without package prefix",
        ],
    ),
    (
        "connection",
        ("connection", "Connection"),
        [
            "🔧 RECOVERY: Connection errors detected. Fix with:",
            "   • Use node NAMES in connections, not IDs or types",
            '   • Structure: { "Source Node Name": { "main": [[{ "node": "Target Node Name", "type": "main", '
            '"index": 0 }]] } }',
            "   • Ensure all referenced nodes exist in the workflow",
        ],
    ),
    (
        "structure",
        ("structure", "nodes must be"),
        [
            "🔧 RECOVERY: Workflow structure errors. Fix with:",
            '   • Ensure "nodes" is an array: "nodes": [...]',
            '   • Ensure "connections" is an object: "connections": {...}',
            "   • Add at least one node to create a valid workflow",
        ],
    ),
    (
        "configuration",
        ("property", "field"),
        [
            "🔧 RECOVERY: Node configuration errors. Fix with:",
            "   • Check required fields against the node type's property list",
            "   • Make sure every required property has a value or a default",
            "   • Ensure operation-specific fields match the node's requirements",
        ],
    ),
    (
        "typeVersion",
        ("typeVersion",),
        [
            "🔧 RECOVERY: TypeVersion errors. Fix with:",
            '   • Add "typeVersion": 1 (or latest version) to each node',
            "   • Check the node catalog for the latest version of each node type",
        ],
    ),
)

SUGGESTED_WORKFLOW = [
    "📋 SUGGESTED WORKFLOW: Too many errors detected. Try this approach:",
    "   1. Fix structural issues first (nodes array, connections object)",
    "   2. Validate node types and fix invalid ones",
    "   3. Add required typeVersion to all nodes",
    "   4. Test connections step by step",
    "   5. Re-validate after each change to confirm the fix",
]


class WorkflowValidator:
    """
    Single pass, fixed order:
    structure -> nodes -> connections -> expressions -> patterns -> AI rules,
    then generic and recovery suggestions.
    """

    def __init__(self, context: Optional[EngineContext] = None):
        self.context = context or EngineContext()

    def validate(self, workflow: Any, options: Optional[ValidationOptions] = None) -> ValidationResult:
        options = options or ValidationOptions(profile=self.context.profile)
        result = ValidationResult()

        if workflow is None:
            result.error("Invalid workflow structure: workflow is null or undefined")
            return result

        try:
            self._run(workflow, options, result)
        except Exception as e:
            log.error("unexpected failure while validating workflow", exc_info=True)
            result.error(f"Workflow validation failed: {e}")

        log.info(
            "validation %s: %d error(s), %d warning(s), %d info(s)",
            "passed" if result.valid else "failed",
            len(result.errors),
            len(result.warnings),
            len(result.infos),
        )
        return result

    def _run(self, workflow: Dict[str, Any], options: ValidationOptions, result: ValidationResult) -> None:
        if not check_structure(workflow, result):
            return

        nodes = workflow["nodes"]
        profile = options.profile

        if options.validate_nodes and nodes:
            check_nodes(workflow, result, self.context.catalog, self.context.config_validator, profile)
        if options.validate_connections:
            check_connections(workflow, result, self.context.catalog, profile)
        if options.validate_expressions and nodes:
            validate_expressions(workflow, result)
        if nodes:
            check_workflow_patterns(workflow, result, profile)
        if nodes and has_ai_nodes(workflow):
            result.extend(validate_ai_nodes(workflow))

        if not result.suggestions:
            result.suggestions.extend(generic_suggestions(workflow, result))
        if result.errors:
            add_recovery_suggestions(result)


# ---------- Expressions ----------

def validate_expressions(workflow: Dict[str, Any], result: ValidationResult) -> None:
    """Expression syntax, node references and format issues for every enabled non-AI node."""
    nodes = workflow.get("nodes") or []
    names = [n.get("name") for n in nodes]
    for node in nodes:
        if node.get("disabled") or is_non_executable(node.get("type")) or is_langchain_node(node.get("type")):
            continue
        name = node.get("name")
        parameters = node.get("parameters") or {}
        context = ExpressionContext(
            available_nodes=[n for n in names if n != name],
            current_node_name=name,
            has_input_data=node_has_input(workflow, name),
        )

        check = validate_node_expressions(parameters, context)
        result.statistics.expressions_validated += count_expressions(parameters)
        for e in check.errors:
            result.error(f"Expression error: {e}", node)
        for w in check.warnings:
            result.warning(f"Expression warning: {w}", node)

        for issue in validate_node_parameters(parameters, str(node.get("type") or ""), name):
            message = format_error_message(issue, name)
            if issue.severity == "error":
                result.error(message, node, code=issue.issue_type)
            else:
                result.warning(message, node, code=issue.issue_type)


# ---------- Suggestions ----------

def _mentions(result: ValidationResult, needles) -> bool:
    return any(any(n in e.message for n in needles) for e in result.errors)


def generic_suggestions(workflow: Dict[str, Any], result: ValidationResult) -> List[str]:
    nodes = workflow.get("nodes") or []
    connections = workflow.get("connections") or {}
    out: List[str] = []

    if result.statistics.trigger_nodes == 0:
        out.append("Add a trigger node (e.g., Webhook, Schedule Trigger) to automate workflow execution")

    if _mentions(result, ("connection", "Connection", "Multi-node workflow has no connections")):
        out.append(
            'Example connection structure: connections: { "Manual Trigger": { "main": [[{ "node": "Set", '
            '"type": "main", "index": 0 }]] } }'
        )
        out.append(
            "Remember: Use node NAMES (not IDs) in connections. The name is what you see in the UI, "
            "not the node type."
        )

    if not any(isinstance(o, dict) and o.get("error") for o in connections.values()):
        out.append("Add error handling using the error output of nodes or an Error Trigger node")

    if len(nodes) > MAX_NODES_BEFORE_SPLIT_HINT:
        out.append("Consider breaking this workflow into smaller sub-workflows for better maintainability")

    if any(json.dumps(n.get("parameters"), default=str).count("{{") > MAX_EXPRESSIONS_PER_NODE for n in nodes):
        out.append("Consider using a Code node for complex data transformations instead of multiple expressions")

    if len(nodes) == 1 and not connections:
        out.append(
            "A minimal workflow needs: 1) A trigger node (e.g., Manual Trigger), 2) An action node "
            "(e.g., Set, HTTP Request), 3) A connection between them"
        )
    return out


def add_recovery_suggestions(result: ValidationResult) -> None:
    """Prepend categorized recovery guidance; typeVersion guidance ends up first."""
    for _category, needles, lines in RECOVERY_CATEGORIES:
        if _mentions(result, needles):
            result.suggestions[0:0] = lines
    if len(result.errors) > MANY_ERRORS:
        result.suggestions.extend(SUGGESTED_WORKFLOW)
