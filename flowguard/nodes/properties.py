# flowguard/nodes/properties.py
from typing import Any, Dict

from flowguard.model import NODE_LEVEL_PROPERTIES, ValidationResult

VALID_ON_ERROR = ("continueRegularOutput", "continueErrorOutput", "stopWorkflow")

ERROR_PRONE_TYPES = (
    "httprequest", "webhook", "emailsend", "slack", "discord", "telegram",
    "postgres", "mysql", "mongodb", "redis", "github", "gitlab", "jira",
    "salesforce", "hubspot", "airtable", "googlesheets", "googledrive",
    "dropbox", "s3", "ftp", "ssh", "mqtt", "kafka", "rabbitmq", "graphql",
    "openai", "anthropic",
)
_DATABASE_TYPES = ("postgres", "mysql", "mongodb")

MAX_TRIES_WARNING = 10
MAX_WAIT_BETWEEN_TRIES_MS = 300000

_MISPLACED_FIX_EXAMPLE = """Move these properties from node.parameters to the node level. Example:
{{
  "name": "{name}",
  "type": "{type}",
  "parameters": {{ /* operation-specific params */ }},
  "onError": "continueErrorOutput",
  "retryOnFail": true,
  "executeOnce": true,
  "disabled": false,
  "credentials": {{ /* ... */ }}
}}"""


def _is_bool(value: Any) -> bool:
    return isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def check_node_properties(node: Dict[str, Any], result: ValidationResult) -> None:
    """Execution-control fields: location, types, ranges, and missing error handling."""
    if node.get("disabled") is True:
        return

    lower_type = str(node.get("type") or "").lower()
    parameters = node.get("parameters")

    misplaced = [p for p in NODE_LEVEL_PROPERTIES if isinstance(parameters, dict) and p in parameters]
    if misplaced:
        result.error(
            f"Node-level properties {', '.join(misplaced)} are in the wrong location. "
            "They must be at the node level, not inside parameters.",
            node,
            details={"fix": _MISPLACED_FIX_EXAMPLE.format(name=node.get("name"), type=node.get("type"))},
        )

    on_error = node.get("onError")
    if "onError" in node and on_error not in VALID_ON_ERROR:
        result.error(f'Invalid onError value: "{on_error}". Must be one of: {", ".join(VALID_ON_ERROR)}', node)

    if "continueOnFail" in node:
        if not _is_bool(node["continueOnFail"]):
            result.error("continueOnFail must be a boolean value", node)
        elif node["continueOnFail"]:
            result.warning(
                'Using deprecated "continueOnFail: true". Use "onError: \'continueRegularOutput\'" '
                "instead for better control and UI compatibility.",
                node,
            )
        if "onError" in node:
            result.error(
                'Cannot use both "continueOnFail" and "onError" properties. Use only "onError" for modern workflows.',
                node,
            )

    if "retryOnFail" in node:
        if not _is_bool(node["retryOnFail"]):
            result.error("retryOnFail must be a boolean value", node)
        if node["retryOnFail"] is True:
            _check_retry_settings(node, result)

    for prop in ("alwaysOutputData", "executeOnce", "disabled", "notesInFlow"):
        if prop in node and not _is_bool(node[prop]):
            result.error(f"{prop} must be a boolean value", node)
    if "notes" in node and not isinstance(node["notes"], str):
        result.error("notes must be a string value", node)

    has_handling = bool(node.get("onError") or node.get("continueOnFail") or node.get("retryOnFail"))
    if not has_handling and any(t in lower_type for t in ERROR_PRONE_TYPES):
        _warn_missing_error_handling(node, lower_type, result)

    if node.get("continueOnFail") and node.get("retryOnFail"):
        result.warning(
            "Both continueOnFail and retryOnFail are enabled. The node will retry first, then continue on failure.",
            node,
        )

    if node.get("executeOnce") is True:
        result.warning(
            "executeOnce is enabled. This node will execute only once regardless of input items.", node
        )

    if (node.get("continueOnFail") or node.get("retryOnFail")) and not node.get("alwaysOutputData"):
        if "httprequest" in lower_type or "webhook" in lower_type:
            result.suggestions.append(
                f'Consider enabling alwaysOutputData on "{node.get("name")}" to capture error responses for debugging'
            )


def _check_retry_settings(node: Dict[str, Any], result: ValidationResult) -> None:
    if "maxTries" in node:
        max_tries = node["maxTries"]
        if not _is_number(max_tries) or max_tries < 1:
            result.error("maxTries must be a positive number when retryOnFail is enabled", node)
        elif max_tries > MAX_TRIES_WARNING:
            result.warning(f"maxTries is set to {max_tries}. Consider if this many retries is necessary.", node)
    else:
        result.warning("retryOnFail is enabled but maxTries is not specified. Default is 3 attempts.", node)

    if "waitBetweenTries" in node:
        wait = node["waitBetweenTries"]
        if not _is_number(wait) or wait < 0:
            result.error("waitBetweenTries must be a non-negative number (milliseconds)", node)
        elif wait > MAX_WAIT_BETWEEN_TRIES_MS:
            result.warning(
                f"waitBetweenTries is set to {wait}ms ({wait / 1000:.1f}s). This seems excessive.", node
            )


def _warn_missing_error_handling(node: Dict[str, Any], lower_type: str, result: ValidationResult) -> None:
    if "httprequest" in lower_type:
        result.warning(
            "HTTP Request node without error handling. Consider adding \"onError: 'continueRegularOutput'\" "
            'for non-critical requests or "retryOnFail: true" for transient failures.',
            node,
        )
    elif "webhook" in lower_type:
        _check_webhook_error_handling(node, lower_type, result)
    elif any(db in lower_type for db in _DATABASE_TYPES):
        result.warning(
            'Database operation without error handling. Consider adding "retryOnFail: true" for connection '
            "issues or \"onError: 'continueRegularOutput'\" for non-critical queries.",
            node,
        )
    else:
        simple = lower_type.split(".")[-1] or lower_type
        result.warning(
            f'{simple} node without error handling. Consider using "onError" property for better error management.',
            node,
        )


def _check_webhook_error_handling(node: Dict[str, Any], lower_type: str, result: ValidationResult) -> None:
    if "respondtowebhook" in lower_type:
        return
    if (node.get("parameters") or {}).get("responseMode") == "responseNode":
        if not node.get("onError") and not node.get("continueOnFail"):
            result.error('responseNode mode requires onError: "continueRegularOutput"', node)
        return
    result.warning(
        "Webhook node without error handling. Consider adding \"onError: 'continueRegularOutput'\" "
        "to prevent workflow failures from blocking webhook responses.",
        node,
    )
