# flowguard/catalog.py
"""
Node-type metadata collaborators.

The validators only talk to the two protocols below. The static implementations
exist so the engine is usable offline (CLI, tests); a production deployment can
plug in anything that honors the same surface.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from difflib import SequenceMatcher
from typing import Any, Dict, Iterable, List, Optional, Protocol, Union

from flowguard.model import NodeSuggestion, Profile
from flowguard.utils.graph import normalize_node_type, short_type_name
from flowguard.utils.io import PathLike, load_any


@dataclass
class NodeTypeInfo:
    node_type: str                      # short form, e.g. nodes-base.webhook
    display_name: str = ""
    package: str = "n8n-nodes-base"
    version: float = 1
    is_versioned: bool = False
    properties: List[Dict[str, Any]] = field(default_factory=list)
    is_trigger: bool = False
    is_webhook: bool = False
    is_ai_tool: bool = False
    is_tool_variant: bool = False
    has_tool_variant: bool = False
    tool_variant_of: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodeTypeInfo":
        return cls(
            node_type=normalize_node_type(data.get("nodeType") or data.get("node_type") or ""),
            display_name=data.get("displayName") or data.get("display_name") or "",
            package=data.get("package") or "n8n-nodes-base",
            version=data.get("version", 1),
            is_versioned=bool(data.get("isVersioned", data.get("is_versioned", False))),
            properties=list(data.get("properties") or []),
            is_trigger=bool(data.get("isTrigger", False)),
            is_webhook=bool(data.get("isWebhook", False)),
            is_ai_tool=bool(data.get("isAITool", False)),
            is_tool_variant=bool(data.get("isToolVariant", False)),
            has_tool_variant=bool(data.get("hasToolVariant", False)),
            tool_variant_of=data.get("toolVariantOf"),
        )


@dataclass
class ConfigReport:
    errors: List[Dict[str, str]] = field(default_factory=list)
    warnings: List[Dict[str, str]] = field(default_factory=list)


class NodeCatalog(Protocol):
    def resolve(self, node_type: str) -> Optional[NodeTypeInfo]:
        ...

    def find_similar(self, node_type: str, max_results: int = 3) -> List[NodeSuggestion]:
        ...


class ConfigValidator(Protocol):
    def validate(
        self,
        node_type: str,
        parameters: Dict[str, Any],
        properties: List[Dict[str, Any]],
        mode: str = "operation",
        profile: Profile = Profile.RUNTIME,
    ) -> ConfigReport:
        ...


# ---------- Static catalog ----------

def _tool_placeholder(display_name: str) -> str:
    lower = display_name.lower()
    if "database" in lower or "sql" in lower:
        return "query and manage data in the database"
    if "email" in lower or "mail" in lower:
        return "send and manage emails"
    if "sheet" in lower:
        return "read and write spreadsheet data"
    if "message" in lower or "chat" in lower or "slack" in lower:
        return "send messages and communicate"
    if "http" in lower or "api" in lower or "request" in lower:
        return "make API requests and fetch data"
    return f"interact with {display_name}"


def make_tool_variant(base: NodeTypeInfo) -> NodeTypeInfo:
    """Tool form of a regular node: `<type>Tool`, ai_tool output, extra toolDescription field."""
    description_prop = {
        "displayName": "Tool Description",
        "name": "toolDescription",
        "type": "string",
        "default": "",
        "placeholder": f"e.g., Use this tool to {_tool_placeholder(base.display_name)}",
    }
    return replace(
        base,
        node_type=f"{base.node_type}Tool",
        display_name=f"{base.display_name} Tool",
        properties=[description_prop, *base.properties],
        is_trigger=False,
        is_ai_tool=True,
        is_tool_variant=True,
        has_tool_variant=False,
        tool_variant_of=base.node_type,
    )


class StaticNodeCatalog:
    """In-memory catalog keyed by short node type."""

    def __init__(self, node_types: Iterable[Union[NodeTypeInfo, Dict[str, Any]]] = ()):
        self._types: Dict[str, NodeTypeInfo] = {}
        for t in node_types:
            self.register(t)

    @classmethod
    def from_file(cls, path: PathLike) -> "StaticNodeCatalog":
        data = load_any(path)
        if isinstance(data, dict):
            data = data.get("nodes") or []
        return cls(data)

    def register(self, info: Union[NodeTypeInfo, Dict[str, Any]]) -> NodeTypeInfo:
        if isinstance(info, dict):
            info = NodeTypeInfo.from_dict(info)
        info.node_type = normalize_node_type(info.node_type)
        self._types[info.node_type] = info
        if info.has_tool_variant and not info.is_tool_variant:
            variant = make_tool_variant(info)
            self._types.setdefault(variant.node_type, variant)
        return info

    def __len__(self) -> int:
        return len(self._types)

    def __contains__(self, node_type: str) -> bool:
        return self.resolve(node_type) is not None

    def resolve(self, node_type: str) -> Optional[NodeTypeInfo]:
        if not isinstance(node_type, str):
            return None
        return self._types.get(normalize_node_type(node_type)) or self._types.get(node_type)

    def find_similar(self, node_type: str, max_results: int = 3) -> List[NodeSuggestion]:
        if not isinstance(node_type, str) or not node_type.strip():
            return []
        query_norm = normalize_node_type(node_type.strip())
        query_short = short_type_name(query_norm).lower()
        has_package = "." in node_type

        scored: List[NodeSuggestion] = []
        for key, info in self._types.items():
            if key == query_norm:
                continue
            cand_short = short_type_name(key).lower()
            if cand_short == query_short:
                if not has_package:
                    reason = "Missing package prefix"
                elif query_norm.lower() == key.lower():
                    reason = "Incorrect capitalization"
                else:
                    reason = "Wrong package"
                scored.append(NodeSuggestion(key, 0.95, reason, info.display_name))
                continue

            ratio = SequenceMatcher(None, query_short, cand_short).ratio()
            if info.display_name:
                label = info.display_name.lower().replace(" ", "")
                ratio = max(ratio, SequenceMatcher(None, query_short, label).ratio())
            if ratio < 0.6:
                continue
            reason = "Likely typo" if ratio >= 0.8 else "Similar node name"
            scored.append(NodeSuggestion(key, round(ratio * 0.85, 2), reason, info.display_name))

        scored.sort(key=lambda s: (-s.confidence, s.node_type))
        return scored[:max_results]


# ---------- Config validator ----------

def _is_visible(prop: Dict[str, Any], parameters: Dict[str, Any], defaults: Dict[str, Any]) -> bool:
    show = (prop.get("displayOptions") or {}).get("show") or {}
    for key, allowed in show.items():
        value = parameters.get(key, defaults.get(key))
        if value not in (allowed or []):
            return False
    hide = (prop.get("displayOptions") or {}).get("hide") or {}
    for key, blocked in hide.items():
        value = parameters.get(key, defaults.get(key))
        if value in (blocked or []):
            return False
    return True


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


class SchemaConfigValidator:
    """
    Checks a node's parameters against the property list of its catalog entry:
    required-and-visible properties must be set, `options` values must be legal.
    `strict` additionally warns on parameters the schema does not know.
    """

    def validate(
        self,
        node_type: str,
        parameters: Dict[str, Any],
        properties: List[Dict[str, Any]],
        mode: str = "operation",
        profile: Profile = Profile.RUNTIME,
    ) -> ConfigReport:
        report = ConfigReport()
        profile = Profile(profile)
        parameters = parameters or {}
        defaults = {p.get("name"): p.get("default") for p in properties if p.get("name")}

        for prop in properties:
            name = prop.get("name")
            if not name or not _is_visible(prop, parameters, defaults):
                continue
            label = prop.get("displayName") or name
            value = parameters.get(name)

            if prop.get("required") and _is_empty(value) and _is_empty(prop.get("default")):
                report.errors.append(
                    {"property": name, "message": f"Required property '{label}' cannot be empty"}
                )
                continue

            if profile is Profile.MINIMAL or value is None:
                continue

            if prop.get("type") == "options" and prop.get("options"):
                if isinstance(value, str) and value.startswith("="):
                    continue
                allowed = [o.get("value") for o in prop["options"] if isinstance(o, dict)]
                if value not in allowed:
                    report.errors.append(
                        {
                            "property": name,
                            "message": f"Invalid value for '{label}'. Must be one of: "
                            + ", ".join(str(a) for a in allowed),
                        }
                    )

        self._check_node_specific(node_type, parameters, report)

        if profile is Profile.STRICT:
            known = set(defaults) | {"@version"}
            for key in parameters:
                if key not in known:
                    report.warnings.append(
                        {"property": key, "message": f"Unknown property '{key}' for this node type"}
                    )
        return report

    def _check_node_specific(self, node_type: str, parameters: Dict[str, Any], report: ConfigReport) -> None:
        short = short_type_name(node_type)
        if short == "webhook":
            path = parameters.get("path")
            if not isinstance(path, str) or not path.strip():
                report.errors.append({"property": "path", "message": "Webhook path is required"})
            elif path.startswith("/"):
                report.warnings.append(
                    {"property": "path", "message": "Webhook path should not start with '/'"}
                )
        elif short == "httpRequest":
            url = parameters.get("url")
            if isinstance(url, str) and url and not url.startswith("=") \
                    and not url.startswith(("http://", "https://")) and "{{" not in url:
                report.warnings.append(
                    {"property": "url", "message": "URL should start with http:// or https://"}
                )
