# flowguard/ai/nodes.py
"""
Rule packs for AI root nodes: agent, chat trigger and basic LLM chain.

Language models, memory, parsers and tools are attached to a root node through
ai_* connections that point *into* it, so every rule here works off the reverse
connection index (target name -> incoming edges).
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from flowguard.ai.tools import is_ai_tool_sub_node, validate_ai_tool_sub_node
from flowguard.model import (
    AI_CONNECTION_TYPES,
    AI_LANGUAGE_MODEL,
    AI_MEMORY,
    AI_OUTPUT_PARSER,
    AI_TOOL,
    MAIN,
    Diagnostic,
    Severity,
)
from flowguard.utils.graph import build_reverse_index, normalize_node_type

AGENT_TYPE = "nodes-langchain.agent"
CHAT_TRIGGER_TYPE = "nodes-langchain.chatTrigger"
CHAIN_LLM_TYPE = "nodes-langchain.chainLlm"
AI_ROOT_TYPES = (AGENT_TYPE, CHAT_TRIGGER_TYPE, CHAIN_LLM_TYPE)

MIN_SYSTEM_MESSAGE_LENGTH = 20
MAX_ITERATIONS_WARNING_THRESHOLD = 50
MAX_LANGUAGE_MODELS = 2

ReverseIndex = Dict[str, List[Dict[str, Any]]]


def _issue(node: Dict[str, Any], severity: Severity, message: str, code: Optional[str] = None) -> Diagnostic:
    return Diagnostic(severity, message, node_id=node.get("id"), node_name=node.get("name"), code=code)


def _params(node: Dict[str, Any]) -> Dict[str, Any]:
    params = node.get("parameters")
    return params if isinstance(params, dict) else {}


def _options(node: Dict[str, Any]) -> Dict[str, Any]:
    options = _params(node).get("options")
    return options if isinstance(options, dict) else {}


def incoming(reverse: ReverseIndex, name: Any, port_type: Optional[str] = None) -> List[Dict[str, Any]]:
    """Incoming edges of `name`; all ai_* edges when no port type is given."""
    edges = reverse.get(name, []) if isinstance(name, str) else []
    if port_type:
        return [e for e in edges if e["port_type"] == port_type]
    return [e for e in edges if e["port_type"] in AI_CONNECTION_TYPES]


def _has_main_output(workflow: Dict[str, Any], name: Any) -> bool:
    outputs = (workflow.get("connections") or {}).get(name)
    main = outputs.get(MAIN) if isinstance(outputs, dict) else None
    if not isinstance(main, list):
        return False
    return any(isinstance(bucket, list) and any(bucket) for bucket in main)


def _find_node(workflow: Dict[str, Any], name: Any) -> Optional[Dict[str, Any]]:
    for n in workflow.get("nodes") or []:
        if n.get("name") == name:
            return n
    return None


def _response_mode(node: Dict[str, Any]) -> str:
    return _options(node).get("responseMode") or "lastNode"


def _is_streaming_target(node: Dict[str, Any], workflow: Dict[str, Any], reverse: ReverseIndex) -> bool:
    for edge in incoming(reverse, node.get("name"), MAIN):
        source = _find_node(workflow, edge["source_name"])
        if source is None:
            continue
        if normalize_node_type(source.get("type")) == CHAT_TRIGGER_TYPE and _response_mode(source) == "streaming":
            return True
    return False


# ---------- AI Agent ----------

def validate_agent(node: Dict[str, Any], reverse: ReverseIndex, workflow: Dict[str, Any]) -> List[Diagnostic]:
    issues: List[Diagnostic] = []
    name = node.get("name")
    params = _params(node)
    label = f'AI Agent "{name}"'

    models = len(incoming(reverse, name, AI_LANGUAGE_MODEL))
    if models == 0:
        issues.append(
            _issue(
                node,
                Severity.ERROR,
                f"{label} requires an ai_languageModel connection. Connect a language model node "
                "(e.g., OpenAI Chat Model, Anthropic Chat Model).",
                "MISSING_LANGUAGE_MODEL",
            )
        )
    elif models > MAX_LANGUAGE_MODELS:
        issues.append(
            _issue(
                node,
                Severity.ERROR,
                f"{label} has {models} ai_languageModel connections. Maximum is 2 (for fallback model support).",
                "TOO_MANY_LANGUAGE_MODELS",
            )
        )
    elif models == 2 and not params.get("needsFallback"):
        issues.append(
            _issue(
                node,
                Severity.WARNING,
                f"{label} has 2 language models but needsFallback is not enabled. "
                "Set needsFallback=true or remove the second model.",
            )
        )
    elif models == 1 and params.get("needsFallback") is True:
        issues.append(
            _issue(
                node,
                Severity.ERROR,
                f"{label} has needsFallback=true but only 1 language model connected. "
                "Connect a second model for fallback or disable needsFallback.",
                "FALLBACK_MISSING_SECOND_MODEL",
            )
        )

    parsers = len(incoming(reverse, name, AI_OUTPUT_PARSER))
    if params.get("hasOutputParser") is True:
        if parsers == 0:
            issues.append(
                _issue(
                    node,
                    Severity.ERROR,
                    f"{label} has hasOutputParser=true but no ai_outputParser connection. "
                    "Connect an output parser or set hasOutputParser=false.",
                    "MISSING_OUTPUT_PARSER",
                )
            )
    elif parsers > 0:
        issues.append(
            _issue(
                node,
                Severity.WARNING,
                f"{label} has an output parser connected but hasOutputParser is not true. "
                "Set hasOutputParser=true to enable output parsing.",
            )
        )
    if parsers > 1:
        issues.append(
            _issue(
                node,
                Severity.ERROR,
                f"{label} has {parsers} output parsers. Only 1 is allowed.",
                "MULTIPLE_OUTPUT_PARSERS",
            )
        )

    if params.get("promptType") == "define" and not str(params.get("text") or "").strip():
        issues.append(
            _issue(
                node,
                Severity.ERROR,
                f'{label} has promptType="define" but the text field is empty. '
                'Provide a custom prompt or switch to promptType="auto".',
                "MISSING_PROMPT_TEXT",
            )
        )

    system_message = params.get("systemMessage")
    if not system_message:
        issues.append(
            _issue(
                node,
                Severity.INFO,
                f"{label} has no systemMessage. Consider adding one to define the agent's role, "
                "capabilities, and constraints.",
            )
        )
    elif len(str(system_message).strip()) < MIN_SYSTEM_MESSAGE_LENGTH:
        issues.append(
            _issue(
                node,
                Severity.INFO,
                f"{label} systemMessage is very short (minimum {MIN_SYSTEM_MESSAGE_LENGTH} characters "
                "recommended). Provide more detail about the agent's role and capabilities.",
            )
        )

    streaming_target = _is_streaming_target(node, workflow, reverse)
    if (streaming_target or _options(node).get("streamResponse") is True) and _has_main_output(workflow, name):
        source = (
            'connected from Chat Trigger with responseMode="streaming"'
            if streaming_target
            else "has streamResponse=true in options"
        )
        issues.append(
            _issue(
                node,
                Severity.ERROR,
                f"{label} is in streaming mode ({source}) but has outgoing main connections. "
                "Remove all main output connections - streaming responses flow back through the Chat Trigger.",
                "STREAMING_WITH_MAIN_OUTPUT",
            )
        )

    memories = len(incoming(reverse, name, AI_MEMORY))
    if memories > 1:
        issues.append(
            _issue(
                node,
                Severity.ERROR,
                f"{label} has {memories} ai_memory connections. Only 1 memory is allowed.",
                "MULTIPLE_MEMORY_CONNECTIONS",
            )
        )

    if not incoming(reverse, name, AI_TOOL):
        issues.append(
            _issue(
                node,
                Severity.INFO,
                f"{label} has no ai_tool connections. Consider adding tools to enhance the agent's capabilities.",
            )
        )

    if "maxIterations" in params:
        value = params["maxIterations"]
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            issues.append(
                _issue(
                    node,
                    Severity.ERROR,
                    f"{label} has invalid maxIterations type. Must be a number.",
                    "INVALID_MAX_ITERATIONS_TYPE",
                )
            )
        elif value < 1:
            issues.append(
                _issue(
                    node,
                    Severity.ERROR,
                    f"{label} has maxIterations={value}. Must be at least 1.",
                    "MAX_ITERATIONS_TOO_LOW",
                )
            )
        elif value > MAX_ITERATIONS_WARNING_THRESHOLD:
            issues.append(
                _issue(
                    node,
                    Severity.WARNING,
                    f"{label} has maxIterations={value}. Very high iteration counts "
                    f"(>{MAX_ITERATIONS_WARNING_THRESHOLD}) may cause long execution times and high costs.",
                )
            )
    return issues


# ---------- Chat Trigger ----------

def validate_chat_trigger(node: Dict[str, Any], workflow: Dict[str, Any], reverse: ReverseIndex) -> List[Diagnostic]:
    name = node.get("name")
    label = f'Chat Trigger "{name}"'
    mode = _response_mode(node)

    outputs = (workflow.get("connections") or {}).get(name)
    main = outputs.get(MAIN) if isinstance(outputs, dict) else None
    first_bucket = main[0] if isinstance(main, list) and main else None
    if not isinstance(first_bucket, list) or not first_bucket:
        return [
            _issue(
                node,
                Severity.ERROR,
                f"{label} has no outgoing connections. Connect it to an AI Agent or workflow.",
                "MISSING_CONNECTIONS",
            )
        ]

    first = first_bucket[0]
    if not isinstance(first, dict):
        return []
    target = _find_node(workflow, first.get("node"))
    if target is None:
        return [
            _issue(
                node,
                Severity.ERROR,
                f'{label} connects to non-existent node "{first.get("node")}".',
                "INVALID_TARGET_NODE",
            )
        ]

    issues: List[Diagnostic] = []
    target_type = normalize_node_type(target.get("type"))
    if mode == "streaming":
        if target_type != AGENT_TYPE:
            issues.append(
                _issue(
                    node,
                    Severity.ERROR,
                    f'{label} has responseMode="streaming" but connects to "{target.get("name")}" ({target_type}). '
                    'Streaming mode only works with AI Agent. Change responseMode to "lastNode" or connect '
                    "to an AI Agent.",
                    "STREAMING_WRONG_TARGET",
                )
            )
        elif _has_main_output(workflow, target.get("name")):
            issues.append(
                _issue(
                    node,
                    Severity.ERROR,
                    f'AI Agent "{target.get("name")}" is in streaming mode but has outgoing main connections. '
                    "In streaming mode, the AI Agent must NOT have main output connections - responses stream "
                    "back through the Chat Trigger.",
                    "STREAMING_AGENT_HAS_OUTPUT",
                )
            )
    elif mode == "lastNode" and target_type == AGENT_TYPE:
        issues.append(
            _issue(
                node,
                Severity.INFO,
                f'{label} uses responseMode="lastNode" with AI Agent. Consider using responseMode="streaming" '
                "for better user experience with real-time responses.",
            )
        )
    return issues


# ---------- Basic LLM Chain ----------

def validate_chain_llm(node: Dict[str, Any], reverse: ReverseIndex) -> List[Diagnostic]:
    issues: List[Diagnostic] = []
    name = node.get("name")
    label = f'Basic LLM Chain "{name}"'

    models = len(incoming(reverse, name, AI_LANGUAGE_MODEL))
    if models == 0:
        issues.append(
            _issue(
                node,
                Severity.ERROR,
                f"{label} requires an ai_languageModel connection. Connect a language model node.",
                "MISSING_LANGUAGE_MODEL",
            )
        )
    elif models > 1:
        issues.append(
            _issue(
                node,
                Severity.ERROR,
                f"{label} has {models} ai_languageModel connections. "
                "Basic LLM Chain only supports 1 language model (no fallback).",
                "MULTIPLE_LANGUAGE_MODELS",
            )
        )

    memories = len(incoming(reverse, name, AI_MEMORY))
    if memories > 1:
        issues.append(
            _issue(
                node,
                Severity.ERROR,
                f"{label} has {memories} ai_memory connections. Only 1 memory is allowed.",
                "MULTIPLE_MEMORY_CONNECTIONS",
            )
        )

    if incoming(reverse, name, AI_TOOL):
        issues.append(
            _issue(
                node,
                Severity.ERROR,
                f"{label} has ai_tool connections. Basic LLM Chain does not support tools. "
                "Use AI Agent if you need tool support.",
                "TOOLS_NOT_SUPPORTED",
            )
        )

    params = _params(node)
    if params.get("promptType") == "define" and not str(params.get("text") or "").strip():
        issues.append(
            _issue(
                node,
                Severity.ERROR,
                f'{label} has promptType="define" but the text field is empty.',
                "MISSING_PROMPT_TEXT",
            )
        )
    return issues


# ---------- Entry points ----------

def has_ai_nodes(workflow: Dict[str, Any]) -> bool:
    for node in workflow.get("nodes") or []:
        normalized = normalize_node_type(node.get("type"))
        if normalized in AI_ROOT_TYPES or is_ai_tool_sub_node(normalized):
            return True
    return False


def validate_ai_nodes(workflow: Dict[str, Any]) -> List[Diagnostic]:
    """Run every AI rule pack over the enabled nodes of `workflow`."""
    issues: List[Diagnostic] = []
    reverse = build_reverse_index(workflow.get("connections") or {})
    for node in workflow.get("nodes") or []:
        if not isinstance(node, dict) or node.get("disabled"):
            continue
        normalized = normalize_node_type(node.get("type"))
        if normalized == AGENT_TYPE:
            issues.extend(validate_agent(node, reverse, workflow))
        elif normalized == CHAT_TRIGGER_TYPE:
            issues.extend(validate_chat_trigger(node, workflow, reverse))
        elif normalized == CHAIN_LLM_TYPE:
            issues.extend(validate_chain_llm(node, reverse))
        elif is_ai_tool_sub_node(normalized):
            issues.extend(validate_ai_tool_sub_node(node))
    return issues
