# flowguard/nodes/rules.py
from __future__ import annotations

import math
from typing import Any, Dict

from flowguard.catalog import ConfigValidator, NodeCatalog, NodeTypeInfo
from flowguard.model import Profile, ValidationResult
from flowguard.utils.graph import is_langchain_node, is_non_executable, normalize_node_type
from flowguard.utils.logger import get_logger

log = get_logger("nodes")

MAX_NODE_NAME_LENGTH = 255
MAX_SIMILAR_SUGGESTIONS = 3
AUTO_FIX_CONFIDENCE = 0.9


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# ---------- Public API ----------

def check_nodes(
    workflow: Dict[str, Any],
    result: ValidationResult,
    catalog: NodeCatalog,
    config_validator: ConfigValidator,
    profile: Profile = Profile.RUNTIME,
) -> None:
    """Per-node checks for every enabled, executable node."""
    for node in workflow.get("nodes") or []:
        if node.get("disabled") or is_non_executable(node.get("type")):
            continue
        try:
            check_node(node, result, catalog, config_validator, profile)
        except Exception as e:
            # catalog / config validator are external; one bad node must not hide the rest
            log.warning("node check failed for %r: %s", node.get("name"), e, exc_info=True)
            result.error(f"Failed to validate node: {e}", node)


def check_node(
    node: Dict[str, Any],
    result: ValidationResult,
    catalog: NodeCatalog,
    config_validator: ConfigValidator,
    profile: Profile = Profile.RUNTIME,
) -> None:
    name = node.get("name")
    if isinstance(name, str) and len(name) > MAX_NODE_NAME_LENGTH:
        result.warning(
            f"Node name is very long ({len(name)} characters). "
            "Consider using a shorter name for better readability.",
            node,
        )

    _check_position(node, result)

    node_type = node.get("type")
    normalized = normalize_node_type(node_type)
    info = catalog.resolve(normalized)
    if info is None:
        _report_unknown_type(node, catalog, result)
        return

    if info.is_versioned:
        _check_type_version(node, info, result)

    # langchain schemas are intentionally permissive; the AI rule packs cover them
    if is_langchain_node(normalized):
        return

    merged = {"@version": node.get("typeVersion") or 1, **(node.get("parameters") or {})}
    report = config_validator.validate(normalized, merged, info.properties or [], "operation", profile)
    for err in report.errors:
        result.error(_issue_message(err), node)
    for warn in report.warnings:
        result.warning(_issue_message(warn), node)


# ---------- Helpers ----------

def _issue_message(issue: Any) -> str:
    if isinstance(issue, str):
        return issue
    if isinstance(issue, dict):
        return str(issue.get("message") or issue)
    return str(issue)


def _check_position(node: Dict[str, Any], result: ValidationResult) -> None:
    position = node.get("position")
    if not isinstance(position, (list, tuple)) or len(position) != 2:
        result.error("Node position must be an array with exactly 2 numbers [x, y]", node)
        return
    if not all(_is_number(v) and math.isfinite(v) for v in position):
        result.error("Node position values must be finite numbers", node)


def _report_unknown_type(node: Dict[str, Any], catalog: NodeCatalog, result: ValidationResult) -> None:
    node_type = node.get("type")
    suggestions = catalog.find_similar(node_type, MAX_SIMILAR_SUGGESTIONS) if isinstance(node_type, str) else []

    message = f'Unknown node type: "{node_type}".'
    if suggestions:
        message += "\n\nDid you mean one of these?"
        for s in suggestions:
            message += f"\n• {s.node_type} ({round(s.confidence * 100)}% match)"
            if s.display_name:
                message += f" - {s.display_name}"
            message += f"\n  → {s.reason}"
            if s.confidence >= AUTO_FIX_CONFIDENCE:
                message += " (can be auto-fixed)"
    else:
        message += (
            " No similar nodes found. Node types must include the package prefix "
            '(e.g., "n8n-nodes-base.webhook").'
        )
    result.error(message, node, suggestions=list(suggestions))


def _check_type_version(node: Dict[str, Any], info: NodeTypeInfo, result: ValidationResult) -> None:
    tv = node.get("typeVersion")
    latest = info.version
    if not tv:
        result.error(f"Missing required property 'typeVersion'. Add typeVersion: {latest or 1}", node)
    elif not _is_number(tv) or tv < 0:
        result.error(f"Invalid typeVersion: {tv}. Must be a non-negative number", node)
    elif latest and tv < latest:
        result.warning(f"Outdated typeVersion: {tv}. Latest is {latest}", node)
    elif latest and tv > latest:
        result.error(f"typeVersion {tv} exceeds maximum supported version {latest}", node)
