from conftest import main_link, node
from flowguard.model import Profile, ValidationResult
from flowguard.nodes.properties import check_node_properties
from flowguard.patterns import COMMUNITY_TOOL_SUGGESTION, check_workflow_patterns, has_error_output


def _chain(n, **extra):
    nodes = [node(f"Step {i}", "n8n-nodes-base.noOp", **extra) for i in range(n)]
    connections = {f"Step {i}": {"main": [[main_link(f"Step {i + 1}")]]} for i in range(n - 1)}
    return {"nodes": nodes, "connections": connections}


def _run(workflow, profile=Profile.RUNTIME):
    result = ValidationResult()
    check_workflow_patterns(workflow, result, profile)
    return result


def _warnings(result):
    return [w.message for w in result.warnings]


def test_error_handling_hint_depends_on_profile():
    wf = _chain(4)
    assert "Consider adding error handling to your workflow" in _warnings(_run(wf))
    assert "Consider adding error handling to your workflow" not in _warnings(_run(wf, Profile.MINIMAL))


def test_error_output_silences_hint():
    wf = _chain(4)
    wf["connections"]["Step 0"]["main"].append([main_link("Step 3")])
    assert has_error_output(wf["connections"])
    assert "Consider adding error handling to your workflow" not in _warnings(_run(wf))


def test_long_linear_chain():
    warnings = _warnings(_run(_chain(11)))
    assert "Long linear chain detected (11 nodes). Consider breaking into sub-workflows." in warnings
    assert not any(w.startswith("Long linear chain") for w in _warnings(_run(_chain(10))))


def test_error_handling_suggestions():
    result = _run(_chain(6, continueOnFail=True))
    assert any(s.startswith("Replace \"continueOnFail: true\"") for s in result.suggestions)
    assert not any(s.startswith("Most nodes lack error handling") for s in result.suggestions)

    result = _run(_chain(6))
    assert any(s.startswith("Most nodes lack error handling") for s in result.suggestions)


def test_missing_credentials():
    wf = _chain(2)
    wf["nodes"][0]["credentials"] = {"slackApi": {"name": "Slack"}}
    assert "Missing credentials configuration for slackApi" in _warnings(_run(wf))


def test_agent_without_tools():
    wf = {"nodes": [node("Agent", "@n8n/n8n-nodes-langchain.agent")], "connections": {}}
    result = _run(wf)
    assert any(w.startswith("AI Agent has no tools connected") for w in _warnings(result))
    assert COMMUNITY_TOOL_SUGGESTION not in result.suggestions

    wf["nodes"].append(node("Calc", "@n8n/n8n-nodes-langchain.toolCalculator"))
    wf["connections"] = {"Calc": {"ai_tool": [[{"node": "Agent", "type": "ai_tool", "index": 0}]]}}
    result = _run(wf)
    assert not any(w.startswith("AI Agent has no tools connected") for w in _warnings(result))
    assert COMMUNITY_TOOL_SUGGESTION in result.suggestions


def test_misplaced_node_level_properties():
    result = ValidationResult()
    check_node_properties(node("Fetch", "n8n-nodes-base.noOp", parameters={"onError": "stopWorkflow"}), result)
    [error] = result.errors
    assert "are in the wrong location" in error.message
    assert '"name": "Fetch"' in error.details["fix"]


def test_conflicting_error_settings():
    result = ValidationResult()
    check_node_properties(
        node("Fetch", "n8n-nodes-base.noOp", continueOnFail=True, onError="continueRegularOutput"), result
    )
    assert any("Cannot use both" in e.message for e in result.errors)
    assert any("deprecated" in w.message for w in result.warnings)


def test_invalid_on_error_value():
    result = ValidationResult()
    check_node_properties(node("Fetch", "n8n-nodes-base.noOp", onError="ignore"), result)
    assert result.errors[0].message.startswith('Invalid onError value: "ignore"')


def test_disabled_node_is_skipped():
    result = ValidationResult()
    check_node_properties(node("Fetch", "n8n-nodes-base.noOp", onError="ignore", disabled=True), result)
    assert not result.errors
