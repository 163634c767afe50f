# flowguard/expressions/format.py
"""
Expression *format* checks: the `=` prefix, bracket syntax and the
resource-locator convention ({"__rl": true, "mode": ..., "value": ...}).

Every issue carries the exact corrected value so it can be applied mechanically.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from flowguard.expressions.visitor import ValueKind, walk

EXPRESSION_PREFIX = "="
MAX_RECURSION_DEPTH = 100
VALID_RL_MODES = ("id", "url", "expression", "name", "list")

_FRAGMENT_RE = re.compile(r"\{\{[\s\S]+?\}\}")

MISSING_PREFIX = "missing-prefix"
NEEDS_RESOURCE_LOCATOR = "needs-resource-locator"
MIXED_FORMAT = "mixed-format"

RESOURCE_LOCATOR_FIELDS: Dict[str, List[str]] = {
    "github": ["owner", "repository", "user", "organization"],
    "googlesheets": ["sheetId", "documentId", "spreadsheetId", "rangeDefinition"],
    "googledrive": ["fileId", "folderId", "driveId"],
    "slack": ["channel", "user", "channelId", "userId", "teamId"],
    "notion": ["databaseId", "pageId", "blockId"],
    "airtable": ["baseId", "tableId", "viewId"],
    "monday": ["boardId", "itemId", "groupId"],
    "hubspot": ["contactId", "companyId", "dealId"],
    "salesforce": ["recordId", "objectName"],
    "jira": ["projectKey", "issueKey", "boardId"],
    "gitlab": ["projectId", "mergeRequestId", "issueId"],
    "mysql": ["table", "database", "schema"],
    "postgres": ["table", "database", "schema"],
    "mongodb": ["collection", "database"],
    "s3": ["bucketName", "key", "fileName"],
    "ftp": ["path", "fileName"],
    "ssh": ["path", "fileName"],
    "redis": ["key"],
}


# ---------- Universal checks ----------

@dataclass
class FormatCheck:
    valid: bool
    has_expression: bool
    explanation: str
    needs_prefix: bool = False
    mixed_content: bool = False


def has_expression(value: Any) -> bool:
    return isinstance(value, str) and bool(_FRAGMENT_RE.search(value))


def has_mixed_content(value: str) -> bool:
    content = value[1:] if value.startswith(EXPRESSION_PREFIX) else value
    return bool(_FRAGMENT_RE.sub("", content).strip())


def check_prefix(value: Any) -> FormatCheck:
    if not has_expression(value):
        return FormatCheck(True, False, "No n8n expression found")
    mixed = has_mixed_content(value)
    if not value.startswith(EXPRESSION_PREFIX):
        return FormatCheck(
            False,
            True,
            "Mixed literal text and expression requires = prefix for expression evaluation"
            if mixed
            else "Expression requires = prefix to be evaluated",
            needs_prefix=True,
            mixed_content=mixed,
        )
    return FormatCheck(True, True, "Expression is properly formatted with = prefix", mixed_content=mixed)


def check_bracket_syntax(value: str) -> FormatCheck:
    if "{{" not in value and "}}" not in value:
        return FormatCheck(True, False, "No expression to validate")
    opening, closing = value.count("{{"), value.count("}}")
    if opening != closing:
        return FormatCheck(False, True, f"Unmatched expression brackets: {opening} opening, {closing} closing")
    fragments = _FRAGMENT_RE.findall(value)
    for frag in fragments:
        if not frag[2:-2].strip():
            return FormatCheck(False, True, "Empty expression {{ }} is not valid")
    return FormatCheck(True, bool(fragments), "Expression syntax is valid", mixed_content=has_mixed_content(value))


def check_common_patterns(value: str) -> FormatCheck:
    fragments = _FRAGMENT_RE.findall(value)
    if not fragments:
        return FormatCheck(True, False, "No expression to validate")
    problems = []
    for frag in fragments:
        content = frag[2:-2].strip()
        if "${" in content and "}" in content:
            problems.append(f"Template literal syntax ${{}} found - use n8n syntax instead: {frag}")
        if content.startswith("="):
            problems.append(f"Double prefix detected in expression: {frag}")
        if "{{" in content or "}}" in content:
            problems.append(f"Nested brackets detected: {frag}")
    if problems:
        return FormatCheck(False, True, "; ".join(problems))
    return FormatCheck(True, True, "Expression patterns are valid", mixed_content=has_mixed_content(value))


def universal_checks(value: Any) -> List[FormatCheck]:
    """Failed checks in order prefix, syntax, patterns; a single passing check when all succeed."""
    prefix = check_prefix(value)
    failed = [] if prefix.valid else [prefix]
    if isinstance(value, str):
        for check in (check_bracket_syntax(value), check_common_patterns(value)):
            if not check.valid:
                failed.append(check)
    if failed:
        return failed
    return [
        FormatCheck(
            True,
            prefix.has_expression,
            "Expression is valid" if prefix.has_expression else "No expression found",
            mixed_content=prefix.mixed_content,
        )
    ]


def corrected_value(value: str) -> str:
    if has_expression(value) and not value.startswith(EXPRESSION_PREFIX):
        return EXPRESSION_PREFIX + value
    return value


# ---------- Resource-locator confidence ----------

EXACT_FIELD_MAPPINGS: Dict[str, List[str]] = {
    "github": ["owner", "repository", "user", "organization"],
    "googlesheets": ["sheetId", "documentId", "spreadsheetId"],
    "googledrive": ["fileId", "folderId", "driveId"],
    "slack": ["channel", "user", "channelId", "userId"],
    "notion": ["databaseId", "pageId", "blockId"],
    "airtable": ["baseId", "tableId", "viewId"],
}

FIELD_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^.*Id$",
        r"^.*Ids$",
        r"^.*Key$",
        r"^.*Name$",
        r"^.*Path$",
        r"^.*Url$",
        r"^.*Uri$",
        r"^(table|database|collection|bucket|folder|file|document|sheet|board|project|issue|user|channel"
        r"|team|organization|repository|owner)$",
    )
]

RESOURCE_HEAVY_NODES = (
    "github", "gitlab", "bitbucket",
    "googlesheets", "googledrive", "dropbox",
    "slack", "discord", "telegram",
    "notion", "airtable", "baserow",
    "jira", "asana", "trello", "monday",
    "salesforce", "hubspot", "pipedrive",
    "stripe", "paypal", "square",
    "aws", "gcp", "azure",
    "mysql", "postgres", "mongodb", "redis",
)

_IDENTIFIER_VALUE_RE = re.compile(r"\{\{.*(id|key|name|path|url|uri).*\}\}", re.IGNORECASE)

# (factor, weight)
CONFIDENCE_WEIGHTS = (
    ("exact-field-match", 0.5),
    ("field-pattern", 0.3),
    ("value-pattern", 0.1),
    ("node-category", 0.1),
)


def _node_base(node_type: str) -> str:
    return (node_type or "").split(".")[-1].lower()


def _matches_family(node_base: str, family: str) -> bool:
    return node_base == family or node_base.startswith(f"{family}-")


def _exact_field_match(field_name: str, node_type: str) -> bool:
    base = _node_base(node_type)
    for family, fields in EXACT_FIELD_MAPPINGS.items():
        if _matches_family(base, family):
            return field_name in fields
    return False


def _value_pattern(value: str) -> bool:
    content = value[1:] if value.startswith("=") else value
    if "{{" not in content or "}}" not in content:
        return False
    return bool(_IDENTIFIER_VALUE_RE.search(content))


def score_resource_locator(field_name: str, node_type: str, value: str) -> float:
    """Weighted share of matched indicators, in [0, 1]."""
    matched = {
        "exact-field-match": _exact_field_match(field_name, node_type),
        "field-pattern": any(p.match(field_name) for p in FIELD_PATTERNS),
        "value-pattern": _value_pattern(value),
        "node-category": any(c in _node_base(node_type) for c in RESOURCE_HEAVY_NODES),
    }
    total = sum(w for _n, w in CONFIDENCE_WEIGHTS)
    hit = sum(w for n, w in CONFIDENCE_WEIGHTS if matched[n])
    return round(hit / total, 4) if total else 0.0


def confidence_level(score: float) -> str:
    if score >= 0.8:
        return "high"
    if score >= 0.5:
        return "medium"
    if score >= 0.3:
        return "low"
    return "very-low"


def should_use_resource_locator(field_name: str, node_type: str) -> bool:
    base = _node_base(node_type)
    return any(
        _matches_family(base, family) and field_name in fields for family, fields in RESOURCE_LOCATOR_FIELDS.items()
    )


# ---------- Issues ----------

@dataclass
class ExpressionFormatIssue:
    field_path: str
    current_value: Any
    corrected_value: Any
    issue_type: str
    explanation: str
    severity: str = "error"
    confidence: Optional[float] = None
    node_name: Optional[str] = field(default=None, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "fieldPath": self.field_path,
            "currentValue": self.current_value,
            "correctedValue": self.corrected_value,
            "issueType": self.issue_type,
            "explanation": self.explanation,
            "severity": self.severity,
        }
        if self.confidence is not None:
            out["confidence"] = self.confidence
        if self.node_name is not None:
            out["nodeName"] = self.node_name
        return out


def is_resource_locator(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and value.get("__rl") is True
        and "value" in value
        and "mode" in value
        and value.get("mode") in VALID_RL_MODES
    )


def _resource_locator(value: str) -> Dict[str, Any]:
    return {"__rl": True, "value": corrected_value(value), "mode": "expression"}


def check_value(value: Any, field_path: str, node_type: str) -> Optional[ExpressionFormatIssue]:
    """Format issue for a single parameter value, or None."""
    if is_resource_locator(value):
        inner = value.get("value")
        failed = [c for c in universal_checks(inner) if not c.valid and c.needs_prefix]
        if not failed:
            return None
        return ExpressionFormatIssue(
            field_path,
            value,
            {**value, "value": corrected_value(inner)},
            MISSING_PREFIX,
            f"Resource locator value: {failed[0].explanation}",
        )

    if not isinstance(value, str):
        return None

    field_name = field_path.split(".")[-1]
    checks = universal_checks(value)
    failed = [c for c in checks if not c.valid]
    if failed:
        prefix_issue = next((c for c in failed if c.needs_prefix), None)
        if prefix_issue is not None:
            score = score_resource_locator(field_name, node_type, value)
            if score >= 0.8:
                return ExpressionFormatIssue(
                    field_path,
                    value,
                    _resource_locator(value),
                    NEEDS_RESOURCE_LOCATOR,
                    f"Field '{field_name}' contains expression but needs resource locator format with "
                    f"'{EXPRESSION_PREFIX}' prefix for evaluation.",
                    confidence=score,
                )
            return ExpressionFormatIssue(
                field_path, value, corrected_value(value), MISSING_PREFIX, prefix_issue.explanation
            )
        return ExpressionFormatIssue(field_path, value, value, MIXED_FORMAT, failed[0].explanation)

    if any(c.has_expression for c in checks):
        score = score_resource_locator(field_name, node_type, value)
        if score >= 0.5:
            return ExpressionFormatIssue(
                field_path,
                value,
                _resource_locator(value),
                NEEDS_RESOURCE_LOCATOR,
                f"Field '{field_name}' should use resource locator format for better compatibility. "
                f"(Confidence: {round(score * 100)}%)",
                severity="warning",
                confidence=score,
            )
    return None


def validate_node_parameters(
    parameters: Any,
    node_type: str,
    node_name: Optional[str] = None,
) -> List[ExpressionFormatIssue]:
    issues: List[ExpressionFormatIssue] = []
    skip_below = None
    for visit in walk(parameters, max_depth=MAX_RECURSION_DEPTH):
        # resource locators are checked as a unit, never descended into
        if skip_below is not None:
            if skip_below == "" or visit.path.startswith((skip_below + ".", skip_below + "[")):
                continue
            skip_below = None
        if visit.kind is ValueKind.TOO_DEEP:
            issues.append(
                ExpressionFormatIssue(
                    visit.path,
                    visit.value,
                    visit.value,
                    MIXED_FORMAT,
                    f"Maximum recursion depth ({MAX_RECURSION_DEPTH}) exceeded. Object may have circular "
                    "references or be too deeply nested.",
                    severity="warning",
                    node_name=node_name,
                )
            )
            continue
        issue = check_value(visit.value, visit.path, node_type)
        if issue is not None:
            issue.node_name = node_name
            issues.append(issue)
        if is_resource_locator(visit.value):
            skip_below = visit.path
    return issues


def _render(value: Any) -> str:
    if isinstance(value, str):
        return f'"{value}"'
    return json.dumps(value, indent=2)


def format_error_message(issue: ExpressionFormatIssue, node_name: str) -> str:
    return (
        f"Expression format {issue.severity} in node '{node_name}':\n"
        f"Field '{issue.field_path}' {issue.explanation}\n\n"
        "Current (incorrect):\n"
        f'"{issue.field_path}": {_render(issue.current_value)}\n\n'
        "Fixed (correct):\n"
        f'"{issue.field_path}": {_render(issue.corrected_value)}'
    )
