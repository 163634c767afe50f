import re

import pytest

from conftest import main_link, node
from flowguard.model import ValidationOptions
from flowguard.validator import SUGGESTED_WORKFLOW, WorkflowValidator

UUID_RE = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}")


def _messages(diagnostics):
    return [d.message for d in diagnostics]


def test_two_node_workflow_is_valid(two_node):
    result = WorkflowValidator().validate(two_node)
    assert result.valid, _messages(result.errors)
    stats = result.statistics
    assert (stats.total_nodes, stats.enabled_nodes, stats.trigger_nodes) == (2, 2, 1)
    assert stats.valid_connections == 1
    assert stats.invalid_connections == 0


def test_validation_is_deterministic(two_node):
    two_node["nodes"][1]["parameters"] = {"value": "={{ $json.missing.deep }}"}
    first = WorkflowValidator().validate(two_node).to_dict()
    second = WorkflowValidator().validate(two_node).to_dict()
    assert first == second


def test_input_is_not_mutated(two_node):
    before = repr(two_node)
    WorkflowValidator().validate(two_node)
    assert repr(two_node) == before


def test_null_workflow():
    result = WorkflowValidator().validate(None)
    assert _messages(result.errors) == ["Invalid workflow structure: workflow is null or undefined"]


def _error_output_workflow(on_error, with_handler):
    fetch = node("Fetch", "n8n-nodes-base.httpRequest", "h1", type_version=4.2,
                 parameters={"method": "GET", "url": "https://example.com"})
    if on_error:
        fetch["onError"] = on_error
    buckets = [[main_link("Next")]]
    if with_handler:
        buckets.append([main_link("Handle Failure")])
    return {
        "nodes": [
            node("Start", "n8n-nodes-base.manualTrigger", "t1"),
            fetch,
            node("Next", "n8n-nodes-base.set", "s1", type_version=3.4),
            node("Handle Failure", "n8n-nodes-base.noOp", "e1"),
        ],
        "connections": {"Start": {"main": [[main_link("Fetch")]]}, "Fetch": {"main": buckets}},
    }


@pytest.mark.parametrize(
    "on_error, with_handler, expect_error, expect_warning",
    [
        ("continueErrorOutput", False, True, False),
        (None, True, False, True),
        ("continueErrorOutput", True, False, False),
    ],
)
def test_error_output_pairing(on_error, with_handler, expect_error, expect_warning):
    result = WorkflowValidator().validate(_error_output_workflow(on_error, with_handler))
    has_error = any("no error output connections in main[1]" in m for m in _messages(result.errors))
    has_warning = any("missing onError: 'continueErrorOutput'" in m for m in _messages(result.warnings))
    assert has_error is expect_error, _messages(result.errors)
    assert has_warning is expect_warning, _messages(result.warnings)


def test_error_handler_in_success_output():
    wf = _error_output_workflow(None, False)
    wf["connections"]["Fetch"] = {"main": [[main_link("Next"), main_link("Handle Failure")]]}
    result = WorkflowValidator().validate(wf)
    [message] = [m for m in _messages(result.errors) if m.startswith("Incorrect error output configuration")]
    assert '"Handle Failure"' in message
    assert 'Also add: "onError": "continueErrorOutput" to the "Fetch" node.' in message


def test_duplicate_id_suggests_fresh_uuid(two_node):
    two_node["nodes"][1]["id"] = "t1"
    first = [m for m in _messages(WorkflowValidator().validate(two_node).errors) if "Duplicate node ID" in m]
    second = [m for m in _messages(WorkflowValidator().validate(two_node).errors) if "Duplicate node ID" in m]
    assert len(first) == 1
    assert 'Node at index 1 (name: "Set"' in first[0]
    assert UUID_RE.search(first[0]) and UUID_RE.search(second[0])
    assert UUID_RE.search(first[0]).group() != UUID_RE.search(second[0]).group()


def test_options_skip_node_checks():
    wf = {
        "nodes": [
            node("Start", "n8n-nodes-base.manualTrigger"),
            node("Mystery", "n8n-nodes-base.doesNotExist"),
        ],
        "connections": {"Start": {"main": [[main_link("Mystery")]]}},
    }
    assert not WorkflowValidator().validate(wf).valid
    assert WorkflowValidator().validate(wf, ValidationOptions(validate_nodes=False)).valid


def test_trigger_and_error_handling_suggestions():
    wf = {
        "nodes": [node("A", "n8n-nodes-base.set", type_version=3.4), node("B", "n8n-nodes-base.noOp")],
        "connections": {"A": {"main": [[main_link("B")]]}},
    }
    result = WorkflowValidator().validate(wf)
    assert any(s.startswith("Add a trigger node") for s in result.suggestions)
    assert any(s.startswith("Add error handling") for s in result.suggestions)


def test_recovery_guidance_is_prepended():
    wf = {
        "nodes": [
            node("Start", "n8n-nodes-base.manualTrigger"),
            node("Fetch", "n8n-nodes-base.httpRequest", type_version=9, parameters={"url": "https://example.com"}),
            node("Bad", "n8n-nodes-base.notARealNode"),
        ],
        "connections": {"Start": {"main": [[main_link("Fetch")]]}, "Fetch": {"main": [[main_link("Bad")]]}},
    }
    suggestions = WorkflowValidator().validate(wf).suggestions
    assert suggestions[0] == "🔧 RECOVERY: TypeVersion errors. Fix with:"
    assert suggestions.index("🔧 RECOVERY: Invalid node types detected. Use these patterns:") > 0
    assert SUGGESTED_WORKFLOW[0] not in suggestions


def test_many_errors_add_suggested_workflow():
    wf = {
        "nodes": [node("Start", "n8n-nodes-base.manualTrigger")]
        + [node(f"Bad {i}", f"n8n-nodes-base.bogus{i}") for i in range(4)],
        "connections": {"Start": {"main": [[main_link(f"Bad {i}") for i in range(4)]]}},
    }
    result = WorkflowValidator().validate(wf)
    assert len(result.errors) > 3
    assert result.suggestions[-len(SUGGESTED_WORKFLOW):] == SUGGESTED_WORKFLOW


def test_expression_errors_are_reported(two_node):
    two_node["nodes"][1]["parameters"] = {"value": '={{ $node["Nowhere"].json.x }}'}
    result = WorkflowValidator().validate(two_node)
    assert result.statistics.expressions_validated == 1
    assert any(m.startswith("Expression error:") and "Nowhere" in m for m in _messages(result.errors))


def test_very_long_chain_validates():
    names = ["Start"] + [f"Set {i}" for i in range(1, 1500)]
    nodes = [node("Start", "n8n-nodes-base.manualTrigger", "n0")]
    nodes += [node(name, "n8n-nodes-base.set", f"n{i}", type_version=3.4) for i, name in enumerate(names[1:], 1)]
    connections = {src: {"main": [[main_link(tgt)]]} for src, tgt in zip(names, names[1:])}

    result = WorkflowValidator().validate({"nodes": nodes, "connections": connections})

    assert result.valid, _messages(result.errors)[:3]
    assert "Long linear chain detected (1500 nodes). Consider breaking into sub-workflows." in _messages(result.warnings)
