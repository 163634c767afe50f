# flowguard/ai/tools.py
"""Rule packs for the intrinsic AI tool sub-nodes (nodes that connect to an agent via ai_tool)."""
from __future__ import annotations

import json
import re
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

from flowguard.model import Diagnostic, Severity
from flowguard.utils.graph import normalize_node_type

MIN_DESCRIPTION_LENGTH_MEDIUM = 15
MAX_ITERATIONS_WARNING_THRESHOLD = 50
MAX_TOPK_WARNING_THRESHOLD = 20

VALID_HTTP_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS")

_PLACEHOLDER_RE = re.compile(r"\{([^}]+)\}")
_LANGUAGE_CODE_RE = re.compile(r"^[a-z]{2,3}$")


def _issue(node: Dict[str, Any], severity: Severity, message: str, code: Optional[str] = None) -> Diagnostic:
    return Diagnostic(severity, message, node_id=node.get("id"), node_name=node.get("name"), code=code)


def _params(node: Dict[str, Any]) -> Dict[str, Any]:
    params = node.get("parameters")
    return params if isinstance(params, dict) else {}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _missing_description(node: Dict[str, Any], label: str, hint: str) -> List[Diagnostic]:
    if _params(node).get("toolDescription"):
        return []
    return [
        _issue(
            node,
            Severity.ERROR,
            f'{label} "{node.get("name")}" has no toolDescription. {hint}',
            "MISSING_TOOL_DESCRIPTION",
        )
    ]


# ---------- Per-tool validators ----------

def validate_http_request_tool(node: Dict[str, Any]) -> List[Diagnostic]:
    params = _params(node)
    name = node.get("name")
    label = f'HTTP Request Tool "{name}"'
    issues = _missing_description(
        node, "HTTP Request Tool", "Add a clear description to help the LLM know when to use this API."
    )
    description = params.get("toolDescription")
    if isinstance(description, str) and description and len(description.strip()) < MIN_DESCRIPTION_LENGTH_MEDIUM:
        issues.append(
            _issue(
                node,
                Severity.WARNING,
                f"{label} toolDescription is too short (minimum {MIN_DESCRIPTION_LENGTH_MEDIUM} characters). "
                "Explain what API this calls and when to use it.",
            )
        )

    url = params.get("url")
    if not url:
        issues.append(_issue(node, Severity.ERROR, f"{label} has no URL. Add the API endpoint URL.", "MISSING_URL"))
    elif isinstance(url, str):
        parsed = urlparse(url)
        if parsed.scheme and parsed.netloc:
            if parsed.scheme not in ("http", "https"):
                issues.append(
                    _issue(
                        node,
                        Severity.ERROR,
                        f'{label} has invalid URL protocol "{parsed.scheme}:". Use http:// or https:// only.',
                        "INVALID_URL_PROTOCOL",
                    )
                )
        elif "{{" not in url:
            issues.append(
                _issue(
                    node,
                    Severity.WARNING,
                    f"{label} has potentially invalid URL format. Ensure it's a valid URL or n8n expression.",
                )
            )

    issues.extend(_check_placeholders(node, params, label))

    if params.get("authentication") == "predefinedCredentialType" and not node.get("credentials"):
        issues.append(
            _issue(
                node,
                Severity.ERROR,
                f"{label} requires credentials but none are configured.",
                "MISSING_CREDENTIALS",
            )
        )

    method = params.get("method")
    if isinstance(method, str) and method:
        if method.upper() not in VALID_HTTP_METHODS:
            issues.append(
                _issue(
                    node,
                    Severity.ERROR,
                    f'{label} has invalid HTTP method "{method}". Use one of: {", ".join(VALID_HTTP_METHODS)}.',
                    "INVALID_HTTP_METHOD",
                )
            )
        elif method.upper() in ("POST", "PUT", "PATCH") and not params.get("body") and not params.get("jsonBody"):
            issues.append(
                _issue(
                    node,
                    Severity.WARNING,
                    f"{label} uses {method} but has no body. Consider adding a body or using GET instead.",
                )
            )
    return issues


def _check_placeholders(node: Dict[str, Any], params: Dict[str, Any], label: str) -> List[Diagnostic]:
    texts = [params.get("url"), params.get("body"), json.dumps(params.get("headers") or {})]
    placeholders = []
    for text in texts:
        if isinstance(text, str):
            for m in _PLACEHOLDER_RE.finditer(text):
                if m.group(1) not in placeholders:
                    placeholders.append(m.group(1))
    if not placeholders:
        return []

    definitions = params.get("placeholderDefinitions")
    if not definitions:
        return [
            _issue(
                node,
                Severity.WARNING,
                f"{label} uses placeholders but has no placeholderDefinitions. "
                "Add definitions to describe the expected inputs.",
            )
        ]

    values = definitions.get("values") if isinstance(definitions, dict) else None
    defined = [d.get("name") for d in (values or []) if isinstance(d, dict)]
    issues = []
    for p in placeholders:
        if p not in defined:
            issues.append(
                _issue(
                    node,
                    Severity.ERROR,
                    f'{label} Placeholder "{p}" in URL but it\'s not defined in placeholderDefinitions.',
                    "UNDEFINED_PLACEHOLDER",
                )
            )
    for d in defined:
        if d not in placeholders:
            issues.append(_issue(node, Severity.WARNING, f'{label} defines placeholder "{d}" but doesn\'t use it.'))
    return issues


def validate_code_tool(node: Dict[str, Any]) -> List[Diagnostic]:
    params = _params(node)
    label = f'Code Tool "{node.get("name")}"'
    issues = _missing_description(node, "Code Tool", "Add one to help the LLM understand the tool's purpose.")
    code = params.get("jsCode")
    if not isinstance(code, str) or not code.strip():
        issues.append(
            _issue(node, Severity.ERROR, f"{label} code is empty. Add the JavaScript code to execute.", "MISSING_CODE")
        )
    if not params.get("inputSchema") and not params.get("specifyInputSchema"):
        issues.append(
            _issue(node, Severity.WARNING, f"{label} has no input schema. Consider adding one to validate LLM inputs.")
        )
    return issues


def validate_vector_store_tool(node: Dict[str, Any]) -> List[Diagnostic]:
    params = _params(node)
    label = f'Vector Store Tool "{node.get("name")}"'
    issues = _missing_description(node, "Vector Store Tool", "Add one to explain what data it searches.")
    if "topK" in params:
        top_k = params["topK"]
        if not _is_number(top_k) or top_k < 1:
            issues.append(
                _issue(node, Severity.ERROR, f"{label} has invalid topK value. Must be a positive number.", "INVALID_TOPK")
            )
        elif top_k > MAX_TOPK_WARNING_THRESHOLD:
            issues.append(
                _issue(
                    node,
                    Severity.WARNING,
                    f"{label} has topK={top_k}. Large values (>{MAX_TOPK_WARNING_THRESHOLD}) may overwhelm "
                    "the LLM context. Consider reducing to 10 or less.",
                )
            )
    return issues


def validate_workflow_tool(node: Dict[str, Any]) -> List[Diagnostic]:
    issues = _missing_description(node, "Workflow Tool", "Add one to help the LLM know when to use this tool.")
    if not _params(node).get("workflowId"):
        issues.append(
            _issue(
                node,
                Severity.ERROR,
                f'Workflow Tool "{node.get("name")}" has no workflowId. Select a workflow to execute.',
                "MISSING_WORKFLOW_ID",
            )
        )
    return issues


def validate_agent_tool(node: Dict[str, Any]) -> List[Diagnostic]:
    params = _params(node)
    label = f'AI Agent Tool "{node.get("name")}"'
    issues = _missing_description(node, "AI Agent Tool", "Add one to help the LLM know when to use this tool.")
    if "maxIterations" in params:
        value = params["maxIterations"]
        if not _is_number(value) or value < 1:
            issues.append(
                _issue(
                    node,
                    Severity.ERROR,
                    f"{label} has invalid maxIterations. Must be a positive number.",
                    "INVALID_MAX_ITERATIONS",
                )
            )
        elif value > MAX_ITERATIONS_WARNING_THRESHOLD:
            issues.append(
                _issue(
                    node,
                    Severity.WARNING,
                    f"{label} has maxIterations={value}. Large values (>{MAX_ITERATIONS_WARNING_THRESHOLD}) "
                    "may lead to long execution times.",
                )
            )
    return issues


def validate_mcp_client_tool(node: Dict[str, Any]) -> List[Diagnostic]:
    issues = _missing_description(node, "MCP Client Tool", "Add one to help the LLM know when to use this tool.")
    if not _params(node).get("serverUrl"):
        issues.append(
            _issue(
                node,
                Severity.ERROR,
                f'MCP Client Tool "{node.get("name")}" has no serverUrl. Configure the MCP server URL.',
                "MISSING_SERVER_URL",
            )
        )
    return issues


def validate_no_config_tool(node: Dict[str, Any]) -> List[Diagnostic]:
    # calculator / think: nothing to configure
    return []


def validate_serpapi_tool(node: Dict[str, Any]) -> List[Diagnostic]:
    issues = _missing_description(node, "SerpApi Tool", "Add one to explain when to use Google search.")
    if not (node.get("credentials") or {}).get("serpApiApi"):
        issues.append(
            _issue(
                node,
                Severity.WARNING,
                f'SerpApi Tool "{node.get("name")}" requires SerpApi credentials. Configure your API key.',
            )
        )
    return issues


def validate_wikipedia_tool(node: Dict[str, Any]) -> List[Diagnostic]:
    issues = _missing_description(node, "Wikipedia Tool", "Add one to explain when to use Wikipedia.")
    language = _params(node).get("language")
    if language and not (isinstance(language, str) and _LANGUAGE_CODE_RE.match(language)):
        issues.append(
            _issue(
                node,
                Severity.WARNING,
                f'Wikipedia Tool "{node.get("name")}" has potentially invalid language code "{language}". '
                'Use ISO 639 codes (e.g., "en", "es", "fr").',
            )
        )
    return issues


def validate_searxng_tool(node: Dict[str, Any]) -> List[Diagnostic]:
    issues = _missing_description(node, "SearXNG Tool", "Add one to explain when to use SearXNG.")
    if not _params(node).get("baseUrl"):
        issues.append(
            _issue(
                node,
                Severity.ERROR,
                f'SearXNG Tool "{node.get("name")}" has no baseUrl. Configure your SearXNG instance URL.',
                "MISSING_BASE_URL",
            )
        )
    return issues


def validate_wolfram_alpha_tool(node: Dict[str, Any]) -> List[Diagnostic]:
    issues = []
    creds = node.get("credentials") or {}
    if not creds.get("wolframAlpha") and not creds.get("wolframAlphaApi"):
        issues.append(
            _issue(
                node,
                Severity.ERROR,
                f'WolframAlpha Tool "{node.get("name")}" requires Wolfram|Alpha API credentials. Configure your App ID.',
                "MISSING_CREDENTIALS",
            )
        )
    params = _params(node)
    if not params.get("description") and not params.get("toolDescription"):
        issues.append(
            _issue(
                node,
                Severity.INFO,
                f'WolframAlpha Tool "{node.get("name")}" has no custom description. Add one to explain when '
                "to use Wolfram|Alpha for computational queries.",
            )
        )
    return issues


AI_TOOL_VALIDATORS: Dict[str, Callable[[Dict[str, Any]], List[Diagnostic]]] = {
    "nodes-langchain.toolHttpRequest": validate_http_request_tool,
    "nodes-langchain.toolCode": validate_code_tool,
    "nodes-langchain.toolVectorStore": validate_vector_store_tool,
    "nodes-langchain.toolWorkflow": validate_workflow_tool,
    "nodes-langchain.agentTool": validate_agent_tool,
    "nodes-langchain.mcpClientTool": validate_mcp_client_tool,
    "nodes-langchain.toolCalculator": validate_no_config_tool,
    "nodes-langchain.toolThink": validate_no_config_tool,
    "nodes-langchain.toolSerpApi": validate_serpapi_tool,
    "nodes-langchain.toolWikipedia": validate_wikipedia_tool,
    "nodes-langchain.toolSearXng": validate_searxng_tool,
    "nodes-langchain.toolWolframAlpha": validate_wolfram_alpha_tool,
}


def is_ai_tool_sub_node(node_type: Any) -> bool:
    return normalize_node_type(node_type) in AI_TOOL_VALIDATORS


def validate_ai_tool_sub_node(node: Dict[str, Any]) -> List[Diagnostic]:
    validator = AI_TOOL_VALIDATORS.get(normalize_node_type(node.get("type")))
    return validator(node) if validator else []
