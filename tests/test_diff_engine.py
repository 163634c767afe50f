import copy

import pytest

from conftest import TWO_NODE, main_link, node
from flowguard.diff.engine import WorkflowDiffEngine, normalize_node_name, parse_path, set_nested
from flowguard.diff.operations import AddConnection, UpdateNode, parse_operation
from flowguard.errors import OperationError
from flowguard.validator import WorkflowValidator


@pytest.fixture
def engine():
    return WorkflowDiffEngine()


def _add_node(name, node_type="n8n-nodes-base.set"):
    return {"type": "addNode", "node": {"name": name, "type": node_type, "position": [0, 0], "typeVersion": 3.4}}


def test_input_workflow_is_never_mutated(engine, two_node):
    before = copy.deepcopy(two_node)
    result = engine.apply_diff(two_node, [_add_node("Extra"), {"type": "addConnection", "source": "Set", "target": "Extra"}])
    assert result.success, result.errors
    assert two_node == before
    assert [n["name"] for n in result.workflow["nodes"]] == ["Manual Trigger", "Set", "Extra"]


def test_add_node_fills_defaults(engine, two_node):
    result = engine.apply_diff(two_node, [{"type": "addNode", "node": {"name": "Wait", "type": "n8n-nodes-base.wait"}}])
    added = result.workflow["nodes"][-1]
    assert added["id"], "addNode must generate an id"
    assert added["typeVersion"] == 1
    assert added["parameters"] == {}


@pytest.mark.parametrize(
    "node_type, fragment",
    [
        ("webhook", "Must include package prefix"),
        ("nodes-base.webhook", 'Use "n8n-nodes-base.webhook" instead'),
    ],
)
def test_add_node_rejects_bad_type(engine, two_node, node_type, fragment):
    result = engine.apply_diff(two_node, [_add_node("Hook", node_type)])
    assert not result.success
    assert fragment in result.errors[0].message


def test_add_node_rejects_normalized_duplicate_name(engine, two_node):
    result = engine.apply_diff(two_node, [_add_node("  Set ")])
    assert not result.success
    assert 'already exists (normalized name matches existing node "Set")' in result.errors[0].message


def test_diff_atomicity_stops_at_first_failure(engine, two_node):
    ops = [_add_node("A"), {"type": "removeNode", "nodeName": "Missing"}, _add_node("B")]
    result = engine.apply_diff(two_node, ops)
    assert not result.success
    assert result.workflow is None
    assert result.applied == [0]
    assert result.failed == [1]
    assert result.operations_applied == 1
    assert "Node not found for removeNode" in result.errors[0].message


def test_continue_on_error_applies_the_rest(engine, two_node):
    ops = [_add_node("A"), {"type": "removeNode", "nodeName": "Missing"}, _add_node("B")]
    result = engine.apply_diff(two_node, ops, continue_on_error=True)
    assert result.success
    assert result.applied == [0, 2]
    assert result.failed == [1]
    assert result.message == "Applied 2 operations, 1 failed (continueOnError mode)"
    assert {"A", "B"} <= {n["name"] for n in result.workflow["nodes"]}


def test_validate_only_returns_no_workflow(engine, two_node):
    result = engine.apply_diff(two_node, [_add_node("A")], validate_only=True)
    assert result.success
    assert result.workflow is None
    assert result.message == "Validation successful. Operations are valid but not applied."


def test_operations_apply_in_input_order(engine, two_node):
    # the connection refers to a node added by the previous operation
    ops = [_add_node("Later"), {"type": "addConnection", "source": "Set", "target": "Later"}]
    result = engine.apply_diff(two_node, ops)
    assert result.success, result.errors
    assert result.workflow["connections"]["Set"]["main"] == [[main_link("Later")]]


def test_remove_node_drops_its_connections(engine, two_node):
    result = engine.apply_diff(two_node, [{"type": "removeNode", "nodeName": "Set"}])
    assert result.success
    assert result.workflow["connections"] == {}


def test_rename_rewrites_connections(engine, two_node):
    ops = [{"type": "updateNode", "nodeId": "s1", "updates": {"name": "Fields"}}]
    result = engine.apply_diff(two_node, ops)
    assert result.success
    assert result.workflow["connections"]["Manual Trigger"]["main"][0][0]["node"] == "Fields"


def test_rename_then_connect_by_new_name(engine, two_node):
    ops = [
        {"type": "updateNode", "nodeName": "Set", "updates": {"name": "Fields"}},
        _add_node("After"),
        {"type": "addConnection", "source": "Fields", "target": "After"},
    ]
    result = engine.apply_diff(two_node, ops)
    assert result.success, result.errors
    assert "Fields" in result.workflow["connections"]


def test_rename_collision_is_rejected(engine, two_node):
    ops = [{"type": "updateNode", "nodeName": "Set", "updates": {"name": "Manual Trigger"}}]
    result = engine.apply_diff(two_node, ops)
    assert not result.success
    assert 'Cannot rename node "Set" to "Manual Trigger"' in result.errors[0].message


def test_update_node_dotted_paths(engine, two_node):
    ops = [{"type": "updateNode", "nodeName": "Set", "updates": {"parameters.options.keep": True, "notes": "x"}}]
    result = engine.apply_diff(two_node, ops)
    updated = result.workflow["nodes"][1]
    assert updated["parameters"] == {"options": {"keep": True}}
    assert updated["notes"] == "x"


def test_update_node_none_removes_key(engine, two_node):
    two_node["nodes"][1]["onError"] = "continueErrorOutput"
    result = engine.apply_diff(two_node, [{"type": "updateNode", "nodeName": "Set", "updates": {"onError": None}}])
    assert "onError" not in result.workflow["nodes"][1]


def test_update_node_requires_updates(engine, two_node):
    result = engine.apply_diff(two_node, [{"type": "updateNode", "nodeName": "Set"}])
    assert "Missing required parameter 'updates'" in result.errors[0].message


def test_changes_instead_of_updates_is_rejected(engine, two_node):
    result = engine.apply_diff(two_node, [{"type": "updateNode", "nodeName": "Set", "changes": {"name": "x"}}])
    assert "Invalid parameter 'changes'" in result.errors[0].message


def test_unknown_operation_type(engine, two_node):
    result = engine.apply_diff(two_node, [{"type": "explode"}])
    assert result.errors[0].message == "Unknown operation type: explode"


@pytest.mark.parametrize("branch, slot", [("true", 0), ("false", 1)])
def test_if_branch_selects_output(engine, if_workflow, branch, slot):
    ops = [{"type": "addConnection", "source": "Check", "target": "Yes", "branch": branch}]
    result = engine.apply_diff(if_workflow, ops)
    buckets = result.workflow["connections"]["Check"]["main"]
    assert len(buckets) == slot + 1
    assert buckets[slot] == [main_link("Yes")]


def test_raw_source_index_on_if_warns(engine, if_workflow):
    ops = [{"type": "addConnection", "source": "Check", "target": "No", "sourceIndex": 1}]
    result = engine.apply_diff(if_workflow, ops)
    assert result.success
    assert len(result.warnings) == 1
    assert 'branch="true" or branch="false"' in result.warnings[0].message


def test_duplicate_connection_is_rejected(engine, two_node):
    result = engine.apply_diff(two_node, [{"type": "addConnection", "source": "Manual Trigger", "target": "Set"}])
    assert result.errors[0].message == 'Connection already exists from "Manual Trigger" to "Set"'


def test_source_node_id_parameter_is_rejected(engine, two_node):
    result = engine.apply_diff(two_node, [{"type": "addConnection", "sourceNodeId": "t1", "targetNodeId": "s1"}])
    assert "Use 'source' and 'target' instead" in result.errors[0].message


def test_remove_connection(engine, two_node):
    result = engine.apply_diff(two_node, [{"type": "removeConnection", "source": "Manual Trigger", "target": "Set"}])
    assert result.success
    assert result.workflow["connections"] == {}


def test_remove_missing_connection_can_be_ignored(engine, two_node):
    op = {"type": "removeConnection", "source": "Set", "target": "Manual Trigger"}
    assert not engine.apply_diff(two_node, [op]).success
    assert engine.apply_diff(two_node, [dict(op, ignoreErrors=True)]).success


def test_rewire_connection(engine, if_workflow):
    if_workflow["connections"]["Check"] = {"main": [[main_link("Yes")]]}
    ops = [{"type": "rewireConnection", "source": "Check", "from": "Yes", "to": "No"}]
    result = engine.apply_diff(if_workflow, ops)
    assert result.success, result.errors
    assert result.workflow["connections"]["Check"]["main"] == [[main_link("No")]]


def test_clean_stale_connections(engine, two_node):
    two_node["connections"]["Set"] = {"main": [[main_link("Ghost")]]}
    dry = engine.apply_diff(two_node, [{"type": "cleanStaleConnections", "dryRun": True}])
    assert dry.stale_connections_removed == [{"from": "Set", "to": "Ghost"}]
    assert "Set" in dry.workflow["connections"]

    real = engine.apply_diff(two_node, [{"type": "cleanStaleConnections"}])
    assert "Set" not in real.workflow["connections"]


def test_replace_connections_checks_node_names(engine, two_node):
    bad = {"Set": {"main": [[main_link("Nowhere")]]}}
    result = engine.apply_diff(two_node, [{"type": "replaceConnections", "connections": bad}])
    assert result.errors[0].message == "Target node not found in connections: Nowhere"


def test_workflow_level_operations(engine, two_node):
    ops = [
        {"type": "updateName", "name": "Renamed"},
        {"type": "updateSettings", "settings": {"timezone": "UTC"}},
        {"type": "addTag", "tag": "prod"},
        {"type": "addTag", "tag": "prod"},
        {"type": "activateWorkflow"},
    ]
    result = engine.apply_diff(two_node, ops)
    assert result.success, result.errors
    assert result.workflow["name"] == "Renamed"
    assert result.workflow["settings"] == {"timezone": "UTC"}
    assert result.workflow["tags"] == ["prod"]
    assert result.should_activate


def test_activate_requires_trigger(engine, two_node):
    two_node["nodes"][0]["disabled"] = True
    result = engine.apply_diff(two_node, [{"type": "activateWorkflow"}])
    assert "No activatable trigger nodes found" in result.errors[0].message


def test_typed_operations_are_accepted(engine, two_node):
    ops = [UpdateNode(node_name="Set", updates={"name": "Typed"}), AddConnection(source="Typed", target="Manual Trigger")]
    result = engine.apply_diff(two_node, ops)
    assert result.success, result.errors


def test_validating_a_patched_workflow_is_idempotent(engine, two_node):
    patched = engine.apply_diff(two_node, [_add_node("Extra"), {"type": "addConnection", "source": "Set", "target": "Extra"}])
    validator = WorkflowValidator()
    first = validator.validate(patched.workflow)
    second = validator.validate(patched.workflow)
    assert [d.key() for d in first.diagnostics] == [d.key() for d in second.diagnostics]
    assert first.valid


def test_parse_operation_aliases_round_trip():
    op = parse_operation({"type": "rewireConnection", "source": "A", "from": "B", "to": "C"})
    assert (op.from_node, op.to_node) == ("B", "C")
    assert op.to_dict() == {"type": "rewireConnection", "source": "A", "from": "B", "to": "C"}


def test_parse_operation_rejects_non_dict():
    with pytest.raises(OperationError):
        parse_operation(["addNode"])


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("  Set  ", "Set"),
        ("Bob\\'s  Node", "Bob's Node"),
        ('say \\"hi\\"', 'say "hi"'),
    ],
)
def test_normalize_node_name(raw, expected):
    assert normalize_node_name(raw) == expected


def test_set_nested_list_segments():
    obj = {"parameters": {"values": [{"name": "a"}]}}
    set_nested(obj, "parameters.values[0].name", "b")
    assert obj["parameters"]["values"][0]["name"] == "b"
    assert parse_path("a.b[2].c") == ["a", "b", 2, "c"]


def test_set_nested_rejects_key_on_list():
    obj = {"parameters": {"values": [{"a": 1}]}}
    with pytest.raises(OperationError, match="Cannot read key 'a' from a list"):
        set_nested(obj, "parameters.values.a.b", 1)


def test_bad_update_path_is_skipped_in_continue_mode(engine, two_node):
    two_node["nodes"][1]["parameters"] = {"values": [{"a": 1}]}
    ops = [
        {"type": "updateName", "name": "First"},
        {"type": "updateNode", "nodeName": "Set", "updates": {"parameters.values.a.b": 1}},
        {"type": "updateName", "name": "Second"},
    ]
    result = engine.apply_diff(two_node, ops, continue_on_error=True)
    assert result.success
    assert result.applied == [0, 2]
    assert result.failed == [1]
    assert "Cannot read key 'a' from a list" in result.errors[0].message
    assert result.workflow["name"] == "Second"
    assert result.workflow["nodes"][1]["parameters"] == {"values": [{"a": 1}]}


def test_bad_update_path_aborts_atomic_batch(engine, two_node):
    two_node["nodes"][1]["parameters"] = {"values": [1]}
    ops = [{"type": "updateNode", "nodeName": "Set", "updates": {"parameters.values.x": 1}}]
    result = engine.apply_diff(two_node, ops)
    assert not result.success
    assert result.failed == [0]
    assert result.errors[0].message.startswith("Failed to apply operation: Cannot set key 'x' on a list")


class _FlakyEngine(WorkflowDiffEngine):
    def _apply_add_node(self, run, op):
        raise RuntimeError("disk full")


def test_unexpected_error_fails_only_its_operation():
    ops = [_add_node("A"), {"type": "updateName", "name": "Renamed"}]
    result = _FlakyEngine().apply_diff(copy.deepcopy(TWO_NODE), ops, continue_on_error=True)
    assert result.applied == [1]
    assert result.failed == [0]
    assert result.errors[0].message == "Failed to apply operation: disk full"
    assert result.workflow["name"] == "Renamed"


@pytest.mark.parametrize(
    "op, fragment",
    [
        ({"type": "addConnection", "source": "Check", "target": "Yes", "case": -1}, "Invalid case -1"),
        ({"type": "addConnection", "source": "Check", "target": "Yes", "sourceIndex": -2}, "Invalid sourceIndex -2"),
        ({"type": "addConnection", "source": "Check", "target": "Yes", "targetIndex": -1}, "Invalid targetIndex -1"),
        ({"type": "rewireConnection", "source": "Start", "from": "Check", "to": "Yes", "sourceIndex": -1},
         "Invalid sourceIndex -1"),
        ({"type": "rewireConnection", "source": "Start", "from": "Check", "to": "Yes", "case": -3}, "Invalid case -3"),
    ],
)
def test_negative_indices_are_rejected(engine, if_workflow, op, fragment):
    result = engine.apply_diff(if_workflow, [op, {"type": "updateName", "name": "After"}], continue_on_error=True)
    assert result.failed == [0]
    assert result.applied == [1]
    assert fragment in result.errors[0].message


def test_non_dict_connection_entries_are_ignored(engine, if_workflow):
    if_workflow["connections"]["Check"] = {"main": [["junk", main_link("Yes")]]}
    dup = engine.apply_diff(if_workflow, [{"type": "addConnection", "source": "Check", "target": "Yes"}])
    assert dup.errors[0].message == 'Connection already exists from "Check" to "Yes"'

    ops = [{"type": "rewireConnection", "source": "Check", "from": "Yes", "to": "No"}]
    result = engine.apply_diff(if_workflow, ops)
    assert result.success, result.errors
    assert result.workflow["connections"]["Check"]["main"] == [["junk", main_link("No")]]
