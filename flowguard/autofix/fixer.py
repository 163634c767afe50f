# flowguard/autofix/fixer.py
"""
Confidence-scored automatic repair.

Each fix category reads the diagnostics it knows how to repair and proposes a
FixOperation: bookkeeping (node, field, before/after, confidence) plus the
diff operation that performs it. Candidates are filtered by fix type, then by
confidence threshold, then truncated to `max_fixes`; when fixes are applied the
resulting operations go through the diff engine under its atomic policy.
"""
from __future__ import annotations

import copy
import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

from flowguard.context import EngineContext
from flowguard.diff.engine import DiffIssue, WorkflowDiffEngine, find_node, set_nested
from flowguard.diff.operations import Operation, UpdateNode
from flowguard.expressions.format import MISSING_PREFIX, NEEDS_RESOURCE_LOCATOR, ExpressionFormatIssue, validate_node_parameters
from flowguard.model import Diagnostic, FixConfidence, ValidationResult
from flowguard.nodes.rules import AUTO_FIX_CONFIDENCE
from flowguard.utils.graph import normalize_node_type, to_workflow_format
from flowguard.utils.logger import get_logger

log = get_logger("autofix")

DEFAULT_MAX_FIXES = 50
WEBHOOK_MIN_TYPE_VERSION = 2.1

_EXCEEDS_RE = re.compile(r"typeVersion (\d+(?:\.\d+)?) exceeds maximum supported version (\d+(?:\.\d+)?)")


class FixType(str, Enum):
    EXPRESSION_FORMAT = "expression-format"
    TYPEVERSION_CORRECTION = "typeversion-correction"
    ERROR_OUTPUT_CONFIG = "error-output-config"
    NODE_TYPE_CORRECTION = "node-type-correction"
    WEBHOOK_MISSING_PATH = "webhook-missing-path"
    TOOL_VARIANT_CORRECTION = "tool-variant-correction"
    TYPEVERSION_UPGRADE = "typeversion-upgrade"


# (fix type, singular, plural) in summary order
_SUMMARY_LABELS = (
    (FixType.EXPRESSION_FORMAT, "expression format error", "expression format errors"),
    (FixType.TYPEVERSION_CORRECTION, "version issue", "version issues"),
    (FixType.ERROR_OUTPUT_CONFIG, "error output configuration", "error output configurations"),
    (FixType.NODE_TYPE_CORRECTION, "node type correction", "node type corrections"),
    (FixType.WEBHOOK_MISSING_PATH, "webhook path", "webhook paths"),
    (FixType.TYPEVERSION_UPGRADE, "version upgrade", "version upgrades"),
    (FixType.TOOL_VARIANT_CORRECTION, "tool variant correction", "tool variant corrections"),
)


@dataclass
class FixOperation:
    node: str
    field: str
    fix_type: FixType
    before: Any
    after: Any
    confidence: FixConfidence
    description: str
    operation: Operation

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node": self.node,
            "field": self.field,
            "type": self.fix_type.value,
            "before": self.before,
            "after": self.after,
            "confidence": self.confidence.value,
            "description": self.description,
        }


@dataclass
class AutoFixConfig:
    apply_fixes: bool = False
    fix_types: Optional[List[Union[FixType, str]]] = None
    confidence_threshold: Union[FixConfidence, str] = FixConfidence.MEDIUM
    max_fixes: int = DEFAULT_MAX_FIXES

    def __post_init__(self):
        self.confidence_threshold = FixConfidence(self.confidence_threshold)
        if self.fix_types is not None:
            self.fix_types = [FixType(t) for t in self.fix_types]
        if self.max_fixes < 0:
            raise ValueError("max_fixes must be non-negative")

    def wants(self, fix_type: FixType) -> bool:
        return self.fix_types is None or fix_type in self.fix_types


@dataclass
class AutoFixResult:
    fixes: List[FixOperation] = field(default_factory=list)
    operations: List[Operation] = field(default_factory=list)
    workflow: Optional[Dict[str, Any]] = None
    applied: bool = False
    errors: List[DiffIssue] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)
    summary: str = ""

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "applied": self.applied,
            "summary": self.summary,
            "stats": self.stats,
            "fixes": [f.to_dict() for f in self.fixes],
            "operations": [op.to_dict() for op in self.operations],
            "workflow": self.workflow,
            "errors": [e.to_dict() for e in self.errors],
        }


class WorkflowAutoFixer:
    def __init__(self, context: Optional[EngineContext] = None, engine: Optional[WorkflowDiffEngine] = None):
        self.context = context or EngineContext()
        self.engine = engine or WorkflowDiffEngine()

    def generate_fixes(
        self,
        workflow: Dict[str, Any],
        validation_result: ValidationResult,
        expression_issues: Optional[Iterable[ExpressionFormatIssue]] = None,
        config: Optional[AutoFixConfig] = None,
    ) -> AutoFixResult:
        config = config or AutoFixConfig()
        nodes = [n for n in workflow.get("nodes") or [] if isinstance(n, dict)]
        if expression_issues is None:
            expression_issues = collect_expression_issues(nodes)

        candidates: List[FixOperation] = []
        if config.wants(FixType.EXPRESSION_FORMAT):
            candidates += expression_format_fixes(nodes, expression_issues)
        if config.wants(FixType.TYPEVERSION_CORRECTION):
            candidates += typeversion_correction_fixes(nodes, validation_result.errors)
        if config.wants(FixType.ERROR_OUTPUT_CONFIG):
            candidates += error_output_fixes(nodes, validation_result.errors)
        if config.wants(FixType.NODE_TYPE_CORRECTION):
            candidates += node_type_fixes(nodes, validation_result.errors)
        if config.wants(FixType.WEBHOOK_MISSING_PATH):
            candidates += webhook_path_fixes(nodes, validation_result.errors)
        if config.wants(FixType.TOOL_VARIANT_CORRECTION):
            candidates += tool_variant_fixes(nodes, validation_result.errors)
        if config.wants(FixType.TYPEVERSION_UPGRADE):
            candidates += self.typeversion_upgrade_fixes(nodes)

        fixes = [f for f in candidates if f.confidence.at_least(config.confidence_threshold)]
        fixes = fixes[: config.max_fixes]
        operations = build_operations(fixes, nodes)
        stats = calculate_stats(fixes)
        result = AutoFixResult(fixes=fixes, operations=operations, stats=stats, summary=summarize(stats))
        log.debug("%d fix candidate(s), %d kept", len(candidates), len(fixes))

        if not config.apply_fixes:
            return result

        diff = self.engine.apply_diff(workflow, operations)
        if not diff.success:
            log.warning("auto-fix aborted: %s", diff.errors[0].message if diff.errors else diff.message)
            result.errors = list(diff.errors)
            return result
        result.workflow = diff.workflow
        result.applied = True
        log.info("applied %d fix(es): %s", len(fixes), result.summary)
        return result

    def typeversion_upgrade_fixes(self, nodes: List[Dict[str, Any]]) -> List[FixOperation]:
        """Outdated typeVersions, upgraded to the catalog's latest version."""
        out = []
        for node in nodes:
            tv = node.get("typeVersion")
            if not isinstance(tv, (int, float)) or isinstance(tv, bool) or not tv:
                continue
            info = self.context.catalog.resolve(normalize_node_type(node.get("type")))
            if info is None or not info.is_versioned or not info.version or tv >= info.version:
                continue
            same_major = int(tv) == int(info.version)
            out.append(
                FixOperation(
                    node=node.get("name"),
                    field="typeVersion",
                    fix_type=FixType.TYPEVERSION_UPGRADE,
                    before=tv,
                    after=info.version,
                    confidence=FixConfidence.HIGH if same_major else FixConfidence.MEDIUM,
                    description=f"Upgrade {node.get('name')} from v{tv} to v{info.version}"
                    + ("" if same_major else ". Crosses a major version; review parameters after upgrading"),
                    operation=_update(node, {"typeVersion": info.version}),
                )
            )
        return out


# ---------- Fix categories ----------

def _update(node: Dict[str, Any], updates: Dict[str, Any]) -> UpdateNode:
    if node.get("id"):
        return UpdateNode(node_id=node["id"], updates=updates)
    return UpdateNode(node_name=node.get("name"), updates=updates)


def _node_for(nodes: List[Dict[str, Any]], diagnostic: Diagnostic) -> Optional[Dict[str, Any]]:
    if not diagnostic.node_id and not diagnostic.node_name:
        return None
    return find_node(nodes, diagnostic.node_id, diagnostic.node_name)


def collect_expression_issues(nodes: List[Dict[str, Any]]) -> List[ExpressionFormatIssue]:
    issues: List[ExpressionFormatIssue] = []
    for node in nodes:
        if node.get("disabled"):
            continue
        issues += validate_node_parameters(node.get("parameters") or {}, str(node.get("type") or ""), node.get("name"))
    return issues


def expression_format_fixes(
    nodes: List[Dict[str, Any]], issues: Iterable[ExpressionFormatIssue]
) -> List[FixOperation]:
    out = []
    for issue in issues:
        if issue.issue_type not in (MISSING_PREFIX, NEEDS_RESOURCE_LOCATOR) or issue.severity != "error":
            continue
        node = find_node(nodes, None, issue.node_name) if issue.node_name else None
        if node is None:
            log.warning("expression format issue at %s has no matching node", issue.field_path)
            continue
        out.append(
            FixOperation(
                node=node.get("name"),
                field=issue.field_path,
                fix_type=FixType.EXPRESSION_FORMAT,
                before=issue.current_value,
                after=issue.corrected_value,
                confidence=FixConfidence.HIGH if issue.issue_type == MISSING_PREFIX else FixConfidence.MEDIUM,
                description=issue.explanation,
                operation=_update(node, {f"parameters.{issue.field_path}": issue.corrected_value}),
            )
        )
    return out


def typeversion_correction_fixes(nodes: List[Dict[str, Any]], errors: List[Diagnostic]) -> List[FixOperation]:
    out = []
    for error in errors:
        m = _EXCEEDS_RE.search(error.message)
        node = _node_for(nodes, error) if m else None
        if node is None:
            continue
        current, maximum = float(m.group(1)), float(m.group(2))
        maximum = int(maximum) if maximum.is_integer() else maximum
        out.append(
            FixOperation(
                node=node.get("name"),
                field="typeVersion",
                fix_type=FixType.TYPEVERSION_CORRECTION,
                before=node.get("typeVersion", current),
                after=maximum,
                confidence=FixConfidence.MEDIUM,
                description=f"Corrected typeVersion from {m.group(1)} to maximum supported {m.group(2)}",
                operation=_update(node, {"typeVersion": maximum}),
            )
        )
    return out


def error_output_fixes(nodes: List[Dict[str, Any]], errors: List[Diagnostic]) -> List[FixOperation]:
    out = []
    for error in errors:
        if "onError: 'continueErrorOutput'" not in error.message or "no error output connections" not in error.message:
            continue
        node = _node_for(nodes, error)
        if node is None:
            continue
        out.append(
            FixOperation(
                node=node.get("name"),
                field="onError",
                fix_type=FixType.ERROR_OUTPUT_CONFIG,
                before="continueErrorOutput",
                after=None,
                confidence=FixConfidence.MEDIUM,
                description="Removed onError setting due to missing error output connections",
                operation=_update(node, {"onError": None}),
            )
        )
    return out


def node_type_fixes(nodes: List[Dict[str, Any]], errors: List[Diagnostic]) -> List[FixOperation]:
    out = []
    for error in errors:
        if not error.message.startswith("Unknown node type:") or not error.suggestions:
            continue
        best = next((s for s in error.suggestions if s.confidence >= AUTO_FIX_CONFIDENCE), None)
        node = _node_for(nodes, error) if best else None
        if node is None:
            continue
        suggested = to_workflow_format(best.node_type)
        out.append(
            FixOperation(
                node=node.get("name"),
                field="type",
                fix_type=FixType.NODE_TYPE_CORRECTION,
                before=node.get("type"),
                after=suggested,
                confidence=FixConfidence.HIGH,
                description=f'Fix node type: "{node.get("type")}" -> "{suggested}" ({best.reason})',
                operation=_update(node, {"type": suggested}),
            )
        )
    return out


def webhook_path_fixes(nodes: List[Dict[str, Any]], errors: List[Diagnostic]) -> List[FixOperation]:
    out = []
    for error in errors:
        if error.message != "Webhook path is required":
            continue
        node = _node_for(nodes, error)
        if node is None or "webhook" not in str(node.get("type") or "").lower():
            continue
        webhook_id = str(uuid.uuid4())
        updates: Dict[str, Any] = {"parameters.path": webhook_id, "webhookId": webhook_id}
        description = f"Generated webhook path and ID: {webhook_id}"
        if (node.get("typeVersion") or 1) < WEBHOOK_MIN_TYPE_VERSION:
            updates["typeVersion"] = WEBHOOK_MIN_TYPE_VERSION
            description += f" (also updating typeVersion to {WEBHOOK_MIN_TYPE_VERSION})"
        out.append(
            FixOperation(
                node=node.get("name"),
                field="path",
                fix_type=FixType.WEBHOOK_MISSING_PATH,
                before=None,
                after=webhook_id,
                confidence=FixConfidence.HIGH,
                description=description,
                operation=_update(node, updates),
            )
        )
    return out


def tool_variant_fixes(nodes: List[Dict[str, Any]], errors: List[Diagnostic]) -> List[FixOperation]:
    out = []
    for error in errors:
        fix = error.fix or {}
        if error.code != "WRONG_NODE_TYPE_FOR_AI_TOOL" or fix.get("type") != "tool-variant-correction":
            continue
        node = _node_for(nodes, error)
        if node is None:
            continue
        out.append(
            FixOperation(
                node=node.get("name"),
                field="type",
                fix_type=FixType.TOOL_VARIANT_CORRECTION,
                before=fix.get("currentType"),
                after=fix.get("suggestedType"),
                confidence=FixConfidence.HIGH,
                description=fix.get("description")
                or f'Replace "{fix.get("currentType")}" with Tool variant "{fix.get("suggestedType")}"',
                operation=_update(node, {"type": fix.get("suggestedType")}),
            )
        )
        log.info("tool variant correction for %s: %s -> %s", node.get("name"), fix.get("currentType"),
                 fix.get("suggestedType"))
    return out


# ---------- Assembly ----------

def build_operations(fixes: List[FixOperation], nodes: List[Dict[str, Any]]) -> List[Operation]:
    """
    One operation per fix, except expression-format fixes: those collapse into a
    single updateNode per node that replaces the whole corrected `parameters`.
    """
    operations: List[Operation] = []
    grouped: Dict[str, UpdateNode] = {}
    for fix in fixes:
        if fix.fix_type is not FixType.EXPRESSION_FORMAT:
            operations.append(fix.operation)
            continue
        op = grouped.get(fix.node)
        if op is None:
            node = find_node(nodes, None, fix.node)
            op = grouped[fix.node] = _update(node, {"parameters": copy.deepcopy(node.get("parameters") or {})})
            operations.append(op)
        set_nested(op.updates["parameters"], fix.field, copy.deepcopy(fix.after))
    return operations


def calculate_stats(fixes: List[FixOperation]) -> Dict[str, Any]:
    by_type = {t.value: 0 for t in FixType}
    by_confidence = {c.value: 0 for c in FixConfidence}
    for fix in fixes:
        by_type[fix.fix_type.value] += 1
        by_confidence[fix.confidence.value] += 1
    return {"total": len(fixes), "byType": by_type, "byConfidence": by_confidence}


def summarize(stats: Dict[str, Any]) -> str:
    if not stats["total"]:
        return "No fixes available"
    parts = []
    for fix_type, singular, plural in _SUMMARY_LABELS:
        n = stats["byType"][fix_type.value]
        if n:
            parts.append(f"{n} {singular if n == 1 else plural}")
    if len(parts) > 1:
        return f"Fixed {', '.join(parts[:-1])} and {parts[-1]}"
    return f"Fixed {parts[0]}"
