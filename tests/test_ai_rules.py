import pytest

from conftest import main_link, node
from flowguard.ai.nodes import has_ai_nodes, validate_ai_nodes
from flowguard.ai.tools import validate_ai_tool_sub_node
from flowguard.model import Severity

LC = "@n8n/n8n-nodes-langchain."


def _link(target, port):
    return {"node": target, "type": port, "index": 0}


def _agent_workflow(agent_params=None, models=1, chat_mode=None, agent_out=False):
    chat_params = {"options": {"responseMode": chat_mode}} if chat_mode else {}
    nodes = [
        node("Chat", LC + "chatTrigger", type_version=1.1, parameters=chat_params),
        node("Agent", LC + "agent", type_version=2, parameters=agent_params or {}),
        node("Reply", "n8n-nodes-base.set", type_version=3.4),
    ]
    connections = {"Chat": {"main": [[main_link("Agent")]]}}
    for i in range(models):
        nodes.append(node(f"Model {i}", LC + "lmChatOpenAi", type_version=1.2))
        connections[f"Model {i}"] = {"ai_languageModel": [[_link("Agent", "ai_languageModel")]]}
    if agent_out:
        connections["Agent"] = {"main": [[main_link("Reply")]]}
    return {"nodes": nodes, "connections": connections}


def _codes(issues, severity=Severity.ERROR):
    return [i.code for i in issues if i.severity is severity]


def test_agent_without_model():
    issues = validate_ai_nodes(_agent_workflow(models=0))
    assert "MISSING_LANGUAGE_MODEL" in _codes(issues)


@pytest.mark.parametrize(
    "params, models, expected",
    [
        ({"needsFallback": True}, 1, "FALLBACK_MISSING_SECOND_MODEL"),
        ({}, 3, "TOO_MANY_LANGUAGE_MODELS"),
        ({"hasOutputParser": True}, 1, "MISSING_OUTPUT_PARSER"),
        ({"promptType": "define", "text": "  "}, 1, "MISSING_PROMPT_TEXT"),
        ({"maxIterations": 0}, 1, "MAX_ITERATIONS_TOO_LOW"),
        ({"maxIterations": "ten"}, 1, "INVALID_MAX_ITERATIONS_TYPE"),
    ],
)
def test_agent_errors(params, models, expected):
    issues = validate_ai_nodes(_agent_workflow(params, models=models))
    assert expected in _codes(issues), [i.message for i in issues]


def test_two_models_without_fallback_warns():
    issues = validate_ai_nodes(_agent_workflow(models=2))
    assert not _codes(issues)
    assert any("needsFallback is not enabled" in i.message for i in issues if i.severity is Severity.WARNING)


def test_agent_infos_are_not_errors():
    issues = validate_ai_nodes(_agent_workflow())
    infos = [i.message for i in issues if i.severity is Severity.INFO]
    assert any("has no systemMessage" in m for m in infos)
    assert any("has no ai_tool connections" in m for m in infos)
    assert not _codes(issues)


def test_streaming_agent_must_not_have_main_output():
    issues = validate_ai_nodes(_agent_workflow(chat_mode="streaming", agent_out=True))
    assert "STREAMING_AGENT_HAS_OUTPUT" in _codes(issues)
    assert "STREAMING_WITH_MAIN_OUTPUT" in _codes(issues)


def test_streaming_chat_needs_agent_target():
    wf = {
        "nodes": [
            node("Chat", LC + "chatTrigger", parameters={"options": {"responseMode": "streaming"}}),
            node("Reply", "n8n-nodes-base.set"),
        ],
        "connections": {"Chat": {"main": [[main_link("Reply")]]}},
    }
    assert _codes(validate_ai_nodes(wf)) == ["STREAMING_WRONG_TARGET"]


def test_chat_trigger_without_outputs():
    wf = {"nodes": [node("Chat", LC + "chatTrigger")], "connections": {}}
    assert _codes(validate_ai_nodes(wf)) == ["MISSING_CONNECTIONS"]


def test_chain_rejects_tools():
    wf = {
        "nodes": [
            node("Chain", LC + "chainLlm"),
            node("Model", LC + "lmChatOpenAi"),
            node("Calc", LC + "toolCalculator"),
        ],
        "connections": {
            "Model": {"ai_languageModel": [[_link("Chain", "ai_languageModel")]]},
            "Calc": {"ai_tool": [[_link("Chain", "ai_tool")]]},
        },
    }
    assert _codes(validate_ai_nodes(wf)) == ["TOOLS_NOT_SUPPORTED"]


def test_disabled_nodes_are_skipped():
    wf = _agent_workflow(models=0)
    wf["nodes"][1]["disabled"] = True
    assert "MISSING_LANGUAGE_MODEL" not in _codes(validate_ai_nodes(wf))


def test_http_request_tool():
    tool = node(
        "Lookup",
        LC + "toolHttpRequest",
        parameters={"url": "ftp://example.com/{id}", "method": "FETCH", "toolDescription": "short"},
    )
    issues = validate_ai_tool_sub_node(tool)
    codes = _codes(issues)
    assert "INVALID_URL_PROTOCOL" in codes
    assert "INVALID_HTTP_METHOD" in codes
    assert "MISSING_TOOL_DESCRIPTION" not in codes
    assert any("too short" in i.message for i in issues if i.severity is Severity.WARNING)


def test_http_request_tool_missing_basics():
    codes = _codes(validate_ai_tool_sub_node(node("Lookup", LC + "toolHttpRequest")))
    assert {"MISSING_TOOL_DESCRIPTION", "MISSING_URL"} <= set(codes)


def test_calculator_needs_no_config():
    assert validate_ai_tool_sub_node(node("Calc", LC + "toolCalculator")) == []


def test_ai_detection():
    assert has_ai_nodes(_agent_workflow())
    assert not has_ai_nodes({"nodes": [node("Reply", "n8n-nodes-base.set")]})
