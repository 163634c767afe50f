# flowguard/connections/analyzer.py
from __future__ import annotations

from typing import Any, Dict, List

from flowguard.ai.tools import is_ai_tool_sub_node
from flowguard.catalog import NodeCatalog
from flowguard.connections.batches import check_batch_connection
from flowguard.connections.cycles import find_cycle
from flowguard.model import AI_TOOL, MAIN, Profile, ValidationResult
from flowguard.utils.graph import (
    FLOW_PORTS,
    is_non_executable,
    is_tool_variant_type,
    is_trigger_node,
    iter_connections,
    normalize_node_type,
    to_workflow_format,
)
from flowguard.utils.logger import get_logger

log = get_logger("connections")

FIRST_PARTY_PACKAGES = ("n8n-nodes-base", "@n8n/n8n-nodes-langchain")

_ERROR_HANDLER_NAME_HINTS = ("error", "fail", "catch", "exception")
_ERROR_HANDLER_TYPE_HINTS = ("respondtowebhook", "emailsend")


class _Index:
    """Name and id lookups for one validation pass."""

    def __init__(self, nodes: List[Dict[str, Any]]):
        self.by_name: Dict[Any, Dict[str, Any]] = {}
        self.by_id: Dict[Any, Dict[str, Any]] = {}
        for n in nodes:
            name, nid = n.get("name"), n.get("id")
            if isinstance(name, str):
                self.by_name.setdefault(name, n)
            if isinstance(nid, (str, int)):
                self.by_id.setdefault(nid, n)


# ---------- Public API ----------

def check_connections(
    workflow: Dict[str, Any],
    result: ValidationResult,
    catalog: NodeCatalog,
    profile: Profile = Profile.RUNTIME,
) -> None:
    nodes = workflow.get("nodes") or []
    connections = workflow.get("connections") or {}
    index = _Index(nodes)

    for source_name, outputs in connections.items():
        source = index.by_name.get(source_name)
        if source is None:
            by_id = index.by_id.get(source_name)
            if by_id is not None:
                result.error(
                    f"Connection uses node ID '{source_name}' instead of node name '{by_id.get('name')}'. "
                    "In n8n, connections must use node names, not IDs.",
                    by_id,
                )
            else:
                result.error(f'Connection from non-existent node: "{source_name}"')
            result.statistics.invalid_connections += 1
            continue

        if not isinstance(outputs, dict):
            result.error(f'Connections of "{source_name}" must be an object keyed by connection type', source)
            result.statistics.invalid_connections += 1
            continue

        for port in FLOW_PORTS:
            buckets = outputs.get(port)
            if not buckets:
                continue
            if not isinstance(buckets, list):
                result.error(f'Connection type "{port}" of "{source_name}" must be an array of outputs', source)
                result.statistics.invalid_connections += 1
                continue
            if port == AI_TOOL:
                check_ai_tool_source(source, result, catalog)
            _check_outputs(source, port, buckets, index, connections, result, catalog)

    _check_unconnected(nodes, connections, result)

    if profile is not Profile.MINIMAL:
        cycle = find_cycle(workflow)
        if cycle:
            log.debug("cycle detected: %s", " -> ".join(map(str, cycle)))
            result.error("Workflow contains a cycle (infinite loop)")


# ---------- Per-output checks ----------

def _check_outputs(
    source: Dict[str, Any],
    port: str,
    buckets: List[Any],
    index: _Index,
    connections: Dict[str, Any],
    result: ValidationResult,
    catalog: NodeCatalog,
) -> None:
    source_name = source.get("name")
    if port == MAIN:
        check_error_output_configuration(source, buckets, index, result)

    is_batches = normalize_node_type(source.get("type")) == "nodes-base.splitInBatches"

    for slot, bucket in enumerate(buckets):
        if not bucket:
            continue
        if not isinstance(bucket, list):
            result.error(f'Output {slot} of "{source_name}" ({port}) must be an array of connections', source)
            result.statistics.invalid_connections += 1
            continue
        for conn in bucket:
            if not isinstance(conn, dict):
                result.error(f'Malformed connection in output {slot} of "{source_name}" ({port})', source)
                result.statistics.invalid_connections += 1
                continue

            target_name = conn.get("node")
            conn_index = conn.get("index", 0)
            if isinstance(conn_index, (int, float)) and not isinstance(conn_index, bool) and conn_index < 0:
                result.error(
                    f'Invalid connection index {conn_index} from "{source_name}". '
                    "Connection indices must be non-negative."
                )
                result.statistics.invalid_connections += 1
                continue

            target = index.by_name.get(target_name) if isinstance(target_name, str) else None

            if is_batches:
                check_batch_connection(source, slot, target, connections, result)
            elif target_name == source_name:
                result.warning(
                    f'Node "{source_name}" has a self-referencing connection. This can cause infinite loops.'
                )

            if target is None:
                by_id = index.by_id.get(target_name) if isinstance(target_name, (str, int)) else None
                if by_id is not None:
                    result.error(
                        f"Connection target uses node ID '{target_name}' instead of node name "
                        f"'{by_id.get('name')}' (from {source_name}). "
                        "In n8n, connections must use node names, not IDs.",
                        by_id,
                    )
                else:
                    result.error(f'Connection to non-existent node: "{target_name}" from "{source_name}"')
                result.statistics.invalid_connections += 1
            elif target.get("disabled"):
                result.warning(f'Connection to disabled node: "{target_name}" from "{source_name}"')
            else:
                result.statistics.valid_connections += 1
                if port == AI_TOOL:
                    check_ai_tool_target(target, result, catalog)


def _conn_json(conn: Dict[str, Any]) -> str:
    return f'      {{"node": "{conn.get("node")}", "type": "{conn.get("type")}", "index": {conn.get("index")}}}'


def check_error_output_configuration(
    source: Dict[str, Any],
    buckets: List[Any],
    index: _Index,
    result: ValidationResult,
) -> None:
    """onError routing and main[1] population must agree; error handlers belong in main[1]."""
    source_name = source.get("name")
    routes_errors = source.get("onError") == "continueErrorOutput"
    has_error_bucket = len(buckets) > 1 and isinstance(buckets[1], list) and len(buckets[1]) > 0

    if routes_errors and not has_error_bucket:
        result.error(
            "Node has onError: 'continueErrorOutput' but no error output connections in main[1]. "
            "Add error handler connections to main[1] or change onError to 'continueRegularOutput' "
            "or 'stopWorkflow'.",
            source,
        )
    if not routes_errors and has_error_bucket:
        result.warning(
            "Node has error output connections in main[1] but missing onError: 'continueErrorOutput'. "
            "Add this property to properly handle errors.",
            source,
        )

    success = buckets[0] if buckets and isinstance(buckets[0], list) else []
    success = [c for c in success if isinstance(c, dict)]
    if len(success) <= 1:
        return

    handlers = []
    for conn in success:
        target = index.by_name.get(conn.get("node")) if isinstance(conn.get("node"), str) else None
        if target is None:
            continue
        lower_name = str(target.get("name") or "").lower()
        lower_type = str(target.get("type") or "").lower()
        if any(h in lower_name for h in _ERROR_HANDLER_NAME_HINTS) or any(
            h in lower_type for h in _ERROR_HANDLER_TYPE_HINTS
        ):
            handlers.append(conn)
    if not handlers:
        return

    handler_names = ", ".join(f'"{c.get("node")}"' for c in handlers)
    regular = [c for c in success if all(c is not h for h in handlers)]
    message = (
        f"Incorrect error output configuration. Nodes {handler_names} appear to be error handlers "
        "but are in main[0] (success output) along with other nodes.\n\n"
        "INCORRECT (current):\n"
        f'"{source_name}": {{\n'
        '  "main": [\n'
        "    [  // main[0] has multiple nodes mixed together\n"
        + ",\n".join(_conn_json(c) for c in success) + "\n"
        "    ]\n"
        "  ]\n"
        "}\n\n"
        "CORRECT (should be):\n"
        f'"{source_name}": {{\n'
        '  "main": [\n'
        "    [  // main[0] = success output\n"
        + ",\n".join(_conn_json(c) for c in regular) + "\n"
        "    ],\n"
        "    [  // main[1] = error output\n"
        + ",\n".join(_conn_json(c) for c in handlers) + "\n"
        "    ]\n"
        "  ]\n"
        "}\n\n"
        f'Also add: "onError": "continueErrorOutput" to the "{source_name}" node.'
    )
    result.error(message, source)


# ---------- ai_tool ends ----------

def check_ai_tool_source(source: Dict[str, Any], result: ValidationResult, catalog: NodeCatalog) -> None:
    """Only intrinsic AI tools and tool variants may emit ai_tool connections."""
    node_type = source.get("type")
    normalized = normalize_node_type(node_type)
    if is_ai_tool_sub_node(normalized):
        return

    info = catalog.resolve(normalized)
    if is_tool_variant_type(normalized) and info is not None and info.is_tool_variant:
        return
    if info is None:
        # unknown types are already reported by the node pass
        return

    if info.has_tool_variant:
        suggested = to_workflow_format(f"{normalized}Tool")
        result.error(
            f'Node "{source.get("name")}" uses "{node_type}" which cannot output ai_tool connections. '
            f'Use the Tool variant "{suggested}" instead for AI Agent integration.',
            source,
            code="WRONG_NODE_TYPE_FOR_AI_TOOL",
            fix={
                "type": "tool-variant-correction",
                "currentType": node_type,
                "suggestedType": suggested,
                "description": f'Change node type from "{node_type}" to "{suggested}"',
            },
        )
        return
    if info.is_ai_tool:
        return

    result.error(
        f'Node "{source.get("name")}" of type "{node_type}" cannot output ai_tool connections. '
        "Only AI tool nodes (e.g., Calculator, HTTP Request Tool) or Tool variants "
        "(e.g., *Tool suffix nodes) can be connected to AI Agents as tools.",
        source,
        code="INVALID_AI_TOOL_SOURCE",
    )


def check_ai_tool_target(target: Dict[str, Any], result: ValidationResult, catalog: NodeCatalog) -> None:
    info = catalog.resolve(target.get("type"))
    if info is not None and not info.is_ai_tool and info.package not in FIRST_PARTY_PACKAGES:
        result.warning(
            f'Community node "{target.get("name")}" is being used as an AI tool. '
            "Ensure N8N_COMMUNITY_PACKAGES_ALLOW_TOOL_USAGE=true is set.",
            target,
        )


# ---------- Reachability ----------

def _check_unconnected(nodes: List[Dict[str, Any]], connections: Dict[str, Any], result: ValidationResult) -> None:
    connected = set(k for k in connections)
    for _src, _port, _slot, conn in iter_connections(connections, FLOW_PORTS):
        connected.add(conn.get("node"))

    for node in nodes:
        if node.get("disabled") or is_non_executable(node.get("type")):
            continue
        if node.get("name") not in connected and not is_trigger_node(node.get("type")):
            result.warning("Node is not connected to any other nodes", node)
