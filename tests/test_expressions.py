import pytest

from flowguard.expressions.format import (
    MISSING_PREFIX,
    MIXED_FORMAT,
    NEEDS_RESOURCE_LOCATOR,
    check_value,
    format_error_message,
    score_resource_locator,
    validate_node_parameters,
)
from flowguard.expressions.validator import ExpressionContext, count_expressions, validate_expression
from flowguard.expressions.visitor import ValueKind, iter_strings, walk


# ---------- visitor ----------

def test_walk_paths_and_kinds():
    params = {
        "url": "https://x",
        "options": {"headers": [{"name": "a", "value": 1}], "retry": True},
        "sheet": {"__rl": True, "mode": "id", "value": "abc"},
    }
    visits = {v.path: v.kind for v in walk(params)}
    assert visits["options.headers[0].value"] is ValueKind.NUMBER
    assert visits["options.retry"] is ValueKind.BOOLEAN
    assert visits["sheet.value"] is ValueKind.STRING
    assert "sheet.__rl" not in visits
    assert [v.path for v in iter_strings(params)] == ["url", "options.headers[0].name", "sheet.mode", "sheet.value"]


def test_walk_stops_on_self_reference():
    loop = []
    loop.append(loop)
    visits = list(walk(loop))
    assert [v.path for v in visits] == ["", "[0]"]


def test_walk_marks_too_deep():
    deep = {"a": {"b": {"c": "x"}}}
    visits = list(walk(deep, max_depth=1))
    assert visits[-1].kind is ValueKind.TOO_DEEP
    assert visits[-1].path == "a.b"


# ---------- syntax & references ----------

def _ctx(**kw):
    kw.setdefault("available_nodes", ["Webhook"])
    return ExpressionContext(**kw)


@pytest.mark.parametrize(
    "expression, fragment",
    [
        ("={{ $json.a", "Unmatched expression brackets"),
        ("={{ }}", "Empty expression found"),
        ("={{ `${a}` }}", "Template literals"),
        ('={{ $node["Ghost"].json.id }}', 'Referenced node "Ghost" not found in workflow'),
    ],
)
def test_expression_errors(expression, fragment):
    check = validate_expression(expression, _ctx())
    assert not check.valid
    assert any(fragment in e for e in check.errors), check.errors


def test_known_node_reference_is_fine():
    check = validate_expression('={{ $node["Webhook"].json.body }}', _ctx())
    assert check.valid
    assert check.used_nodes == {"Webhook"}


def test_json_without_input_warns():
    check = validate_expression("={{ $json.a }}", _ctx(has_input_data=False))
    assert check.valid
    assert "Using $json but node might not have input data" in check.warnings


def test_count_expressions():
    assert count_expressions({"a": "={{ 1 }} and {{ 2 }}", "b": ["{{ 3 }}"], "c": 4}) == 3


# ---------- format ----------

def test_missing_prefix():
    issue = check_value("{{ $json.text }}", "text", "n8n-nodes-base.set")
    assert issue.issue_type == MISSING_PREFIX
    assert issue.corrected_value == "={{ $json.text }}"
    assert issue.severity == "error"


def test_prefixed_plain_field_is_clean():
    assert check_value("={{ $json.text }}", "text", "n8n-nodes-base.set") is None
    assert check_value("plain text", "text", "n8n-nodes-base.set") is None


def test_resource_locator_field_without_prefix():
    issue = check_value("{{ $json.docId }}", "documentId", "n8n-nodes-base.googleSheets")
    assert issue.issue_type == NEEDS_RESOURCE_LOCATOR
    assert issue.corrected_value == {"__rl": True, "value": "={{ $json.docId }}", "mode": "expression"}
    assert issue.confidence == 1.0


def test_resource_locator_suggestion_is_a_warning():
    issue = check_value("={{ $json.docId }}", "documentId", "n8n-nodes-base.googleSheets")
    assert issue.severity == "warning"
    assert issue.explanation.endswith("(Confidence: 100%)")


def test_score_weights():
    assert score_resource_locator("text", "n8n-nodes-base.set", "{{ $json.body }}") == 0.0
    assert score_resource_locator("channelId", "n8n-nodes-base.slack", "x") == 0.9


def test_resource_locator_value_is_checked_once():
    params = {"sheet": {"__rl": True, "mode": "expression", "value": "{{ $json.id }}"}}
    issues = validate_node_parameters(params, "n8n-nodes-base.googleSheets", "Sheets")
    assert len(issues) == 1
    assert issues[0].field_path == "sheet"
    assert issues[0].corrected_value["value"] == "={{ $json.id }}"
    assert issues[0].node_name == "Sheets"


def test_template_literal_is_mixed_format():
    issue = check_value("={{ ${x} }}", "text", "n8n-nodes-base.set")
    assert issue.issue_type == MIXED_FORMAT


def test_error_message_layout():
    issue = check_value("{{ $json.text }}", "text", "n8n-nodes-base.set")
    message = format_error_message(issue, "Set")
    assert message.startswith("Expression format error in node 'Set':\n")
    assert 'Current (incorrect):\n"text": "{{ $json.text }}"' in message
    assert message.endswith('Fixed (correct):\n"text": "={{ $json.text }}"')
