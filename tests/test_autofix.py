import pytest

from conftest import main_link, node
from flowguard.autofix.fixer import AutoFixConfig, FixType, WorkflowAutoFixer, summarize, calculate_stats
from flowguard.diff.engine import WorkflowDiffEngine
from flowguard.model import FixConfidence
from flowguard.validator import WorkflowValidator


@pytest.fixture
def broken():
    """One problem per fix category the default catalog can trigger."""
    return {
        "name": "Broken",
        "nodes": [
            node("Webhook", "n8n-nodes-base.webhook", "w1", type_version=2),
            node("Fetch", "n8n-nodes-base.httpRequest", "h1", type_version=9,
                 parameters={"method": "GET", "url": "https://example.com"}, onError="continueErrorOutput"),
            node("Set", "n8n-nodes-base.set", "s1", type_version=3.4, parameters={"text": "{{ $json.body }}"}),
            node("Sheets", "n8n-nodes-base.googleSheets", "g1", type_version=3),
        ],
        "connections": {
            "Webhook": {"main": [[main_link("Fetch")]]},
            "Fetch": {"main": [[main_link("Set")]]},
            "Set": {"main": [[main_link("Sheets")]]},
        },
    }


def _fix(broken, **config):
    validation = WorkflowValidator().validate(broken)
    return WorkflowAutoFixer().generate_fixes(broken, validation, config=AutoFixConfig(**config))


def _types(result):
    return [f.fix_type for f in result.fixes]


def test_preview_does_not_apply(broken):
    result = _fix(broken, confidence_threshold="low")
    assert not result.applied
    assert result.workflow is None
    assert set(_types(result)) == {
        FixType.EXPRESSION_FORMAT,
        FixType.TYPEVERSION_CORRECTION,
        FixType.ERROR_OUTPUT_CONFIG,
        FixType.WEBHOOK_MISSING_PATH,
        FixType.TYPEVERSION_UPGRADE,
    }


def test_confidence_filtering_is_a_subset(broken):
    low = _fix(broken, confidence_threshold="low")
    high = _fix(broken, confidence_threshold="high")
    low_keys = {(f.node, f.field, f.fix_type) for f in low.fixes}
    high_keys = {(f.node, f.field, f.fix_type) for f in high.fixes}
    assert high_keys <= low_keys
    assert all(f.confidence is FixConfidence.HIGH for f in high.fixes)
    assert len(high.fixes) < len(low.fixes)


def test_fix_type_filter(broken):
    result = _fix(broken, fix_types=["webhook-missing-path"], confidence_threshold="low")
    assert _types(result) == [FixType.WEBHOOK_MISSING_PATH]
    updates = result.operations[0].updates
    assert updates["parameters.path"] == updates["webhookId"]
    assert updates["typeVersion"] == 2.1


def test_max_fixes_truncates(broken):
    result = _fix(broken, confidence_threshold="low", max_fixes=2)
    assert len(result.fixes) == 2
    assert result.stats["total"] == 2


def test_expression_fixes_group_per_node(broken):
    broken["nodes"][2]["parameters"]["other"] = "{{ $json.id }}"
    result = _fix(broken, fix_types=["expression-format"], confidence_threshold="low")
    assert len(result.fixes) == 2
    assert len(result.operations) == 1
    params = result.operations[0].updates["parameters"]
    assert params["text"] == "={{ $json.body }}"
    assert params["other"] == "={{ $json.id }}"


def test_apply_fixes_produces_valid_workflow(broken):
    result = _fix(broken, apply_fixes=True, confidence_threshold="low")
    assert result.applied, result.errors
    fixed = {n["name"]: n for n in result.workflow["nodes"]}
    assert fixed["Fetch"]["typeVersion"] == 4.2
    assert "onError" not in fixed["Fetch"]
    assert fixed["Webhook"]["parameters"]["path"]
    assert fixed["Set"]["parameters"]["text"] == "={{ $json.body }}"
    assert WorkflowValidator().validate(result.workflow).valid


def test_typeversion_upgrade_confidence():
    workflow = {
        "nodes": [
            node("Start", "n8n-nodes-base.manualTrigger"),
            node("Sheets", "n8n-nodes-base.googleSheets", type_version=4.1),
            node("Slack", "n8n-nodes-base.slack", type_version=1),
        ],
        "connections": {},
    }
    fixes = WorkflowAutoFixer().typeversion_upgrade_fixes(workflow["nodes"])
    by_node = {f.node: f.confidence for f in fixes}
    assert by_node == {"Sheets": FixConfidence.HIGH, "Slack": FixConfidence.MEDIUM}


def test_node_type_correction_uses_workflow_format():
    workflow = {
        "nodes": [
            node("Start", "n8n-nodes-base.manualTrigger"),
            node("Fetch", "httpRequest", type_version=4.2, parameters={"url": "https://example.com"}),
        ],
        "connections": {"Start": {"main": [[main_link("Fetch")]]}},
    }
    result = _fix(workflow, fix_types=["node-type-correction"])
    assert [(f.before, f.after) for f in result.fixes] == [("httpRequest", "n8n-nodes-base.httpRequest")]


def test_tool_variant_correction():
    workflow = {
        "nodes": [
            node("Chat", "@n8n/n8n-nodes-langchain.chatTrigger", type_version=1.1),
            node("Agent", "@n8n/n8n-nodes-langchain.agent", type_version=2),
            node("Model", "@n8n/n8n-nodes-langchain.lmChatOpenAi", type_version=1.2),
            node("Sheets", "n8n-nodes-base.googleSheets", type_version=4.5),
        ],
        "connections": {
            "Chat": {"main": [[main_link("Agent")]]},
            "Model": {"ai_languageModel": [[{"node": "Agent", "type": "ai_languageModel", "index": 0}]]},
            "Sheets": {"ai_tool": [[{"node": "Agent", "type": "ai_tool", "index": 0}]]},
        },
    }
    result = _fix(workflow, fix_types=["tool-variant-correction"], apply_fixes=True)
    assert [f.after for f in result.fixes] == ["n8n-nodes-base.googleSheetsTool"]
    assert result.workflow["nodes"][3]["type"] == "n8n-nodes-base.googleSheetsTool"


class _TrailingRemoveEngine(WorkflowDiffEngine):
    """Appends an operation that cannot succeed, so the whole batch must roll back."""

    def apply_diff(self, workflow, operations, **kwargs):
        return super().apply_diff(workflow, list(operations) + [{"type": "removeNode", "nodeName": "Gone"}], **kwargs)


def test_failed_apply_invalidates_the_pass(broken):
    validation = WorkflowValidator().validate(broken)
    fixer = WorkflowAutoFixer(engine=_TrailingRemoveEngine())
    result = fixer.generate_fixes(broken, validation, config=AutoFixConfig(apply_fixes=True))

    assert result.fixes, "fixes are still reported"
    assert not result.applied
    assert not result.success
    assert result.workflow is None
    assert result.errors and "Gone" in result.errors[0].message
    assert broken["nodes"][1]["typeVersion"] == 9, "input workflow must stay untouched"


def test_summary_wording():
    assert summarize(calculate_stats([])) == "No fixes available"
