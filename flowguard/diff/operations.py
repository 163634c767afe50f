# flowguard/diff/operations.py
"""
Typed diff operations.

Every operation kind is its own dataclass; `parse_operation` maps the wire form
({"type": "addConnection", "source": ..., "sourceOutput": ...}) onto them.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, Dict, List, Optional, Type, Union

from flowguard.errors import OperationError

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(name: str) -> str:
    return _CAMEL_RE.sub("_", name).lower()


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(p.title() for p in rest)


@dataclass
class Operation:
    kind: ClassVar[str] = ""
    # wire key -> field name, for keys that are not plain camelCase of the field
    aliases: ClassVar[Dict[str, str]] = {}

    description: Optional[str] = field(default=None, kw_only=True)

    def to_dict(self) -> Dict[str, Any]:
        reverse = {v: k for k, v in self.aliases.items()}
        out: Dict[str, Any] = {"type": self.kind}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            out[reverse.get(f.name, _camel(f.name))] = value
        return out


# ---------- Node operations ----------

@dataclass
class NodeRef(Operation):
    node_id: Optional[str] = None
    node_name: Optional[str] = None

    @property
    def ref(self) -> str:
        return str(self.node_id or self.node_name or "")


@dataclass
class AddNode(Operation):
    kind: ClassVar[str] = "addNode"
    node: Optional[Dict[str, Any]] = None


@dataclass
class RemoveNode(NodeRef):
    kind: ClassVar[str] = "removeNode"


@dataclass
class UpdateNode(NodeRef):
    kind: ClassVar[str] = "updateNode"
    updates: Optional[Dict[str, Any]] = None


@dataclass
class MoveNode(NodeRef):
    kind: ClassVar[str] = "moveNode"
    position: Optional[List[float]] = None


@dataclass
class EnableNode(NodeRef):
    kind: ClassVar[str] = "enableNode"


@dataclass
class DisableNode(NodeRef):
    kind: ClassVar[str] = "disableNode"


# ---------- Connection operations ----------

@dataclass
class AddConnection(Operation):
    kind: ClassVar[str] = "addConnection"
    source: Optional[str] = None
    target: Optional[str] = None
    source_output: Optional[str] = None
    target_input: Optional[str] = None
    source_index: Optional[int] = None
    target_index: Optional[int] = None
    branch: Optional[str] = None
    case: Optional[int] = None


@dataclass
class RemoveConnection(Operation):
    kind: ClassVar[str] = "removeConnection"
    source: Optional[str] = None
    target: Optional[str] = None
    source_output: Optional[str] = None
    target_input: Optional[str] = None
    ignore_errors: bool = False


@dataclass
class RewireConnection(Operation):
    kind: ClassVar[str] = "rewireConnection"
    aliases: ClassVar[Dict[str, str]] = {"from": "from_node", "to": "to_node"}
    source: Optional[str] = None
    from_node: Optional[str] = None
    to_node: Optional[str] = None
    source_output: Optional[str] = None
    target_input: Optional[str] = None
    source_index: Optional[int] = None
    branch: Optional[str] = None
    case: Optional[int] = None


@dataclass
class CleanStaleConnections(Operation):
    kind: ClassVar[str] = "cleanStaleConnections"
    dry_run: bool = False


@dataclass
class ReplaceConnections(Operation):
    kind: ClassVar[str] = "replaceConnections"
    connections: Optional[Dict[str, Any]] = None


# ---------- Workflow operations ----------

@dataclass
class UpdateSettings(Operation):
    kind: ClassVar[str] = "updateSettings"
    settings: Optional[Dict[str, Any]] = None


@dataclass
class UpdateName(Operation):
    kind: ClassVar[str] = "updateName"
    name: Optional[str] = None


@dataclass
class AddTag(Operation):
    kind: ClassVar[str] = "addTag"
    tag: Optional[str] = None


@dataclass
class RemoveTag(Operation):
    kind: ClassVar[str] = "removeTag"
    tag: Optional[str] = None


@dataclass
class ActivateWorkflow(Operation):
    kind: ClassVar[str] = "activateWorkflow"


@dataclass
class DeactivateWorkflow(Operation):
    kind: ClassVar[str] = "deactivateWorkflow"


OPERATION_TYPES: Dict[str, Type[Operation]] = {
    cls.kind: cls
    for cls in (
        AddNode, RemoveNode, UpdateNode, MoveNode, EnableNode, DisableNode,
        AddConnection, RemoveConnection, RewireConnection, CleanStaleConnections, ReplaceConnections,
        UpdateSettings, UpdateName, AddTag, RemoveTag, ActivateWorkflow, DeactivateWorkflow,
    )
}

NODE_OPERATION_TYPES = ("addNode", "removeNode", "updateNode", "moveNode", "enableNode", "disableNode")

OperationLike = Union[Operation, Dict[str, Any]]


def parse_operation(raw: OperationLike) -> Operation:
    """Build the typed operation for a wire dict. Raises OperationError for unusable input."""
    if isinstance(raw, Operation):
        return raw
    if not isinstance(raw, dict):
        raise OperationError(f"Operation must be an object, got {type(raw).__name__}", raw)

    kind = raw.get("type")
    cls = OPERATION_TYPES.get(kind)
    if cls is None:
        raise OperationError(f"Unknown operation type: {kind}", raw)

    if cls is UpdateNode and "changes" in raw and "updates" not in raw:
        raise OperationError(
            "Invalid parameter 'changes'. The updateNode operation requires 'updates' (not 'changes'). "
            'Example: {type: "updateNode", nodeId: "abc", updates: {name: "New Name", '
            '"parameters.url": "https://example.com"}}',
            raw,
        )
    if cls is AddConnection and (raw.get("sourceNodeId") or raw.get("targetNodeId")):
        wrong = [k for k in ("sourceNodeId", "targetNodeId") if raw.get(k)]
        raise OperationError(
            f"Invalid parameter(s): {', '.join(wrong)}. Use 'source' and 'target' instead. "
            'Example: {type: "addConnection", source: "Node Name", target: "Target Name"}',
            raw,
        )

    names = {f.name for f in fields(cls)}
    kwargs: Dict[str, Any] = {}
    for key, value in raw.items():
        if key == "type":
            continue
        name = cls.aliases.get(key, _snake(key))
        if name in names:
            kwargs[name] = value
    return cls(**kwargs)
