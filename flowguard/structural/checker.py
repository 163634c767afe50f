# flowguard/structural/checker.py
from typing import Any, Dict, List, Optional
import uuid

from jsonschema import Draft7Validator

from flowguard.model import ValidationResult
from flowguard.structural.schema import SHAPE_MESSAGES, WORKFLOW_SHAPE_SCHEMA
from flowguard.utils.graph import (
    executable_nodes,
    is_langchain_node,
    is_trigger_node,
    normalize_node_type,
)

_SHAPE_VALIDATOR = Draft7Validator(WORKFLOW_SHAPE_SCHEMA)

_STANDALONE_TYPES = {"nodes-base.webhook", "nodes-base.webhookTrigger"}

NO_CONNECTIONS_MESSAGE = (
    "Multi-node workflow has no connections. Nodes must be connected to create a workflow. "
    'Use connections: { "Source Node Name": { "main": [[{ "node": "Target Node Name", '
    '"type": "main", "index": 0 }]] } }'
)


def shape_violation(workflow: Any) -> Optional[str]:
    """
    First top-level shape problem, or None.
    nodes is checked before connections so the caller sees the most basic defect.
    """
    if not isinstance(workflow, dict):
        return "Invalid workflow structure: workflow must be an object"

    errors = list(_SHAPE_VALIDATOR.iter_errors(workflow))
    for field, (missing_msg, type_msg) in SHAPE_MESSAGES.items():
        if field not in workflow:
            return missing_msg
        for e in errors:
            path = list(e.absolute_path)
            if path == [field]:
                return type_msg
            if field == "nodes" and len(path) == 2 and path[0] == "nodes":
                return f"Node at index {path[1]} must be an object"
    return None


def check_structure(workflow: Dict[str, Any], result: ValidationResult) -> bool:
    """
    Shape invariants, independent of node semantics.

    Returns True when the workflow is well-formed enough (nodes list of objects,
    connections object) for the per-node and connection passes to run.
    Statistics totalNodes / enabledNodes / triggerNodes are filled in here.
    """
    violation = shape_violation(workflow)
    if violation:
        result.error(violation)
        return False

    nodes: List[Dict[str, Any]] = workflow["nodes"]
    connections: Dict[str, Any] = workflow["connections"]

    executable = executable_nodes(nodes)
    result.statistics.total_nodes = len(executable)
    result.statistics.enabled_nodes = sum(1 for n in executable if not n.get("disabled"))

    if not nodes:
        result.warning("Workflow is empty - no nodes defined")
        return True

    if len(nodes) == 1:
        _check_single_node(nodes[0], connections, result)
    elif any(not n.get("disabled") for n in nodes) and not connections:
        result.error(NO_CONNECTIONS_MESSAGE)

    _check_duplicates(nodes, result)

    triggers = [n for n in nodes if is_trigger_node(n.get("type"))]
    result.statistics.trigger_nodes = len(triggers)
    if not triggers and any(not n.get("disabled") for n in nodes):
        result.warning("Workflow has no trigger nodes. It can only be executed manually.")
    return True


def _check_single_node(node: Dict[str, Any], connections: Dict[str, Any], result: ValidationResult) -> None:
    normalized = normalize_node_type(node.get("type"))
    is_webhook = normalized in _STANDALONE_TYPES
    if not is_webhook and not is_langchain_node(normalized):
        result.error(
            "Single-node workflows are only valid for webhook endpoints. "
            "Add at least one more connected node to create a functional workflow."
        )
    elif is_webhook and not connections:
        result.warning(
            "Webhook node has no connections. Consider adding nodes to process the webhook data."
        )


def _check_duplicates(nodes: List[Dict[str, Any]], result: ValidationResult) -> None:
    seen_names = set()
    first_index_by_id: Dict[Any, int] = {}

    for i, node in enumerate(nodes):
        name = node.get("name")
        if name in seen_names:
            result.error(f'Duplicate node name: "{name}"', node)
        seen_names.add(name)

        nid = node.get("id")
        if not _hashable(nid):
            continue
        if nid in first_index_by_id:
            j = first_index_by_id[nid]
            first = nodes[j]
            result.error(
                f'Duplicate node ID: "{nid}". Node at index {i} (name: "{name}", type: "{node.get("type")}") '
                f'conflicts with node at index {j} (name: "{first.get("name") or "unknown"}", '
                f'type: "{first.get("type") or "unknown"}"). Each node must have a unique ID. '
                f"Generate a new UUID - Example: "
                f'{{id: "{uuid.uuid4()}", name: "{name}", type: "{node.get("type")}", ...}}',
                node_id=nid,
            )
        else:
            first_index_by_id[nid] = i


def _hashable(value: Any) -> bool:
    try:
        hash(value)
    except TypeError:
        return False
    return True
