# flowguard/expressions/validator.py
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Set

from flowguard.expressions.visitor import iter_strings

EXPRESSION_RE = re.compile(r"\{\{([\s\S]+?)\}\}")

_ACCESSOR = r"(?:\.[a-zA-Z_]\w*|\[\"[^\"]+\"\]|\['[^']+'\]|\[\d+\])*"

VARIABLE_PATTERNS: Dict[str, re.Pattern] = {
    "json": re.compile(r"\$json" + _ACCESSOR),
    "node": re.compile(r"\$node\[\"([^\"]+)\"\]\.json"),
    "input": re.compile(r"\$input\.item" + _ACCESSOR),
    "items": re.compile(r"\$items\(\"([^\"]+)\"(?:,\s*(-?\d+))?\)"),
    "parameter": re.compile(r"\$parameter\[\"([^\"]+)\"\]"),
    "env": re.compile(r"\$env\.([a-zA-Z_]\w*)"),
    "workflow": re.compile(r"\$workflow\.(id|name|active)"),
    "execution": re.compile(r"\$execution\.(id|mode|resumeUrl)"),
    "prevNode": re.compile(r"\$prevNode\.(name|outputIndex|runIndex)"),
    "itemIndex": re.compile(r"\$itemIndex"),
    "runIndex": re.compile(r"\$runIndex"),
    "now": re.compile(r"\$now"),
    "today": re.compile(r"\$today"),
}

_SUSPICIOUS_ACCESS = (".invalid", ".undefined", ".null", ".test")
_MISSING_PREFIX_RE = re.compile(r"(?<![.$\w\['])\b(json|node|input|items|workflow|execution)\b(?!\s*[:'])")


@dataclass
class ExpressionContext:
    available_nodes: List[str] = field(default_factory=list)
    current_node_name: str = ""
    has_input_data: bool = True
    is_in_loop: bool = False


@dataclass
class ExpressionCheck:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    used_variables: Set[str] = field(default_factory=set)
    used_nodes: Set[str] = field(default_factory=set)

    @property
    def valid(self) -> bool:
        return not self.errors

    def merge(self, other: "ExpressionCheck", prefix: str = "") -> None:
        lead = f"{prefix}: " if prefix else ""
        self.errors.extend(lead + e for e in other.errors)
        self.warnings.extend(lead + w for w in other.warnings)
        self.used_variables |= other.used_variables
        self.used_nodes |= other.used_nodes


def count_expressions(value: Any) -> int:
    """Number of `{{ ... }}` fragments in every string of a parameter tree."""
    return sum(len(EXPRESSION_RE.findall(v.value)) for v in iter_strings(value))


def check_syntax(expression: str) -> List[str]:
    errors = []
    if expression.count("{{") != expression.count("}}"):
        errors.append("Unmatched expression brackets {{ }}")
    if re.search(r"\{\{[^}]*\{\{", expression):
        errors.append("Nested expressions are not supported (expression inside another expression)")
    if re.search(r"\{\{\s*\}\}", expression):
        errors.append("Empty expression found")
    return errors


def _check_fragment(expr: str, context: ExpressionContext, out: ExpressionCheck) -> None:
    for m in VARIABLE_PATTERNS["json"].finditer(expr):
        out.used_variables.add("$json")
        if not context.has_input_data and not context.is_in_loop:
            out.warnings.append("Using $json but node might not have input data")
        if any(s in m.group(0) for s in _SUSPICIOUS_ACCESS):
            out.warnings.append(
                f"Property access '{m.group(0)}' looks suspicious - verify this property exists in your data"
            )

    for m in VARIABLE_PATTERNS["node"].finditer(expr):
        out.used_nodes.add(m.group(1))
        out.used_variables.add("$node")

    for _m in VARIABLE_PATTERNS["input"].finditer(expr):
        out.used_variables.add("$input")
        if not context.has_input_data:
            out.warnings.append("$input is only available when the node has input data")

    for m in VARIABLE_PATTERNS["items"].finditer(expr):
        out.used_nodes.add(m.group(1))
        out.used_variables.add("$items")

    for name, pattern in VARIABLE_PATTERNS.items():
        if name in ("json", "node", "input", "items"):
            continue
        if pattern.search(expr):
            out.used_variables.add(f"${name}")

    _check_common_mistakes(expr, out)


def _check_common_mistakes(expr: str, out: ExpressionCheck) -> None:
    if _MISSING_PREFIX_RE.search(expr):
        out.warnings.append("Possible missing $ prefix for variable (e.g., use $json instead of json)")
    if "$json[" in expr and not re.search(r"\$json\[\d+\]", expr):
        out.warnings.append("Array access should use numeric index: $json[0] or property access: $json.property")
    if re.search(r"\$json\['[^']+'\]", expr):
        out.warnings.append("Consider using dot notation: $json.property instead of $json['property']")
    if "?." in expr:
        out.warnings.append("Optional chaining (?.) is not supported in n8n expressions")
    if "${" in expr:
        out.errors.append("Template literals ${} are not supported. Use string concatenation instead")


def validate_expression(expression: str, context: ExpressionContext) -> ExpressionCheck:
    out = ExpressionCheck()
    if not expression:
        return out
    out.errors.extend(check_syntax(expression))
    for m in EXPRESSION_RE.finditer(expression):
        _check_fragment(m.group(1).strip(), context, out)
    for name in sorted(out.used_nodes):
        if name not in context.available_nodes:
            out.errors.append(f'Referenced node "{name}" not found in workflow')
    return out


def validate_node_expressions(parameters: Any, context: ExpressionContext) -> ExpressionCheck:
    """Validate every templated string in a parameter tree; messages are prefixed with the field path."""
    combined = ExpressionCheck()
    for visit in iter_strings(parameters):
        if "{{" not in visit.value:
            continue
        combined.merge(validate_expression(visit.value, context), visit.path)
    return combined
