# flowguard/diff/engine.py
from __future__ import annotations

import copy
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from flowguard.diff.operations import (
    ActivateWorkflow,
    AddConnection,
    AddNode,
    AddTag,
    CleanStaleConnections,
    DeactivateWorkflow,
    DisableNode,
    EnableNode,
    MoveNode,
    NodeRef,
    Operation,
    OperationLike,
    RemoveConnection,
    RemoveNode,
    RemoveTag,
    ReplaceConnections,
    RewireConnection,
    UpdateName,
    UpdateNode,
    UpdateSettings,
    parse_operation,
)
from flowguard.errors import OperationError
from flowguard.model import MAIN
from flowguard.utils.graph import is_activatable_trigger, normalize_node_type
from flowguard.utils.logger import get_logger

log = get_logger("diff")

IF_TYPE = "nodes-base.if"
SWITCH_TYPE = "nodes-base.switch"

_PATH_SEGMENT_RE = re.compile(r"([^\[\]]+)|\[(\d+)\]")


@dataclass
class DiffIssue:
    operation: int
    message: str
    details: Any = None

    def to_dict(self) -> Dict[str, Any]:
        out = {"operation": self.operation, "message": self.message}
        if self.details is not None:
            out["details"] = self.details
        return out


@dataclass
class DiffResult:
    success: bool
    workflow: Optional[Dict[str, Any]] = None
    message: str = ""
    operations_applied: int = 0
    applied: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    errors: List[DiffIssue] = field(default_factory=list)
    warnings: List[DiffIssue] = field(default_factory=list)
    stale_connections_removed: List[Dict[str, Any]] = field(default_factory=list)
    should_activate: bool = False
    should_deactivate: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "workflow": self.workflow,
            "message": self.message,
            "operationsApplied": self.operations_applied,
            "applied": list(self.applied),
            "failed": list(self.failed),
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "staleConnectionsRemoved": list(self.stale_connections_removed),
            "shouldActivate": self.should_activate,
            "shouldDeactivate": self.should_deactivate,
        }


class _Run:
    """Mutable state of one apply_diff call."""

    def __init__(self, workflow: Dict[str, Any]):
        self.workflow = workflow
        self.warnings: List[DiffIssue] = []
        self.stale: List[Dict[str, Any]] = []
        self.should_activate = False
        self.should_deactivate = False

    @property
    def nodes(self) -> List[Dict[str, Any]]:
        return self.workflow["nodes"]

    @property
    def connections(self) -> Dict[str, Any]:
        return self.workflow["connections"]


# ---------- Helpers ----------

def normalize_node_name(name: Any) -> str:
    """Names compare after unescaping quotes/backslashes and collapsing whitespace."""
    if not isinstance(name, str):
        return ""
    s = name.strip().replace("\\\\", "\\").replace("\\'", "'").replace('\\"', '"')
    return re.sub(r"\s+", " ", s)


def _short_id(node: Dict[str, Any]) -> str:
    return str(node.get("id") or "")[:8]


def _available(nodes: Iterable[Dict[str, Any]]) -> str:
    return ", ".join(f'"{n.get("name")}" (id: {_short_id(n)}...)' for n in nodes)


def find_node(nodes: List[Dict[str, Any]], node_id: Any = None, node_name: Any = None) -> Optional[Dict[str, Any]]:
    """Id first, then normalized name; a bare id that matches no id is tried as a name."""
    if node_id:
        for n in nodes:
            if n.get("id") == node_id:
                return n
    for candidate in (node_name, node_id if not node_name else None):
        if candidate:
            wanted = normalize_node_name(candidate)
            for n in nodes:
                if normalize_node_name(n.get("name")) == wanted:
                    return n
    return None


def parse_path(path: str) -> List[Any]:
    """'parameters.values[0].name' -> ['parameters', 'values', 0, 'name']"""
    keys: List[Any] = []
    for part in path.split("."):
        for m in _PATH_SEGMENT_RE.finditer(part):
            keys.append(m.group(1) if m.group(1) is not None else int(m.group(2)))
    return keys


def set_nested(obj: Dict[str, Any], path: str, value: Any) -> None:
    """Set a dotted path, creating dicts on the way; None deletes the final key."""
    keys = parse_path(path)
    if not keys:
        raise OperationError(f"Invalid update path: {path!r}")
    current: Any = obj
    for key, nxt in zip(keys, keys[1:]):
        if isinstance(key, int):
            if not isinstance(current, list) or key >= len(current):
                raise OperationError(f"Index {key} out of range in update path {path!r}")
            if not isinstance(current[key], (dict, list)):
                current[key] = [] if isinstance(nxt, int) else {}
            current = current[key]
        else:
            if not isinstance(current, dict):
                raise OperationError(f"Cannot read key {key!r} from a list in update path {path!r}")
            if not isinstance(current.get(key), (dict, list)):
                current[key] = [] if isinstance(nxt, int) else {}
            current = current[key]

    last = keys[-1]
    if isinstance(last, int):
        if not isinstance(current, list):
            raise OperationError(f"Cannot index non-list with [{last}] in update path {path!r}")
        if value is None:
            if last < len(current):
                current.pop(last)
        elif last < len(current):
            current[last] = value
        elif last == len(current):
            current.append(value)
        else:
            raise OperationError(f"Index {last} out of range in update path {path!r}")
    elif not isinstance(current, dict):
        raise OperationError(f"Cannot set key {last!r} on a list in update path {path!r}")
    elif value is None:
        current.pop(last, None)
    else:
        current[last] = value


def _prune_empty(outputs: Dict[str, Any], port: str) -> None:
    buckets = outputs.get(port)
    if not isinstance(buckets, list):
        return
    while buckets and isinstance(buckets[-1], list) and not buckets[-1]:
        buckets.pop()
    if not buckets:
        del outputs[port]


# ---------- Engine ----------

class WorkflowDiffEngine:
    """
    Applies typed operations to a copy of a workflow, strictly in input order.

    Atomic (default): the first failing operation aborts the batch and no workflow
    is returned. continue_on_error: failures are skipped and reported in `failed`.
    No semantic validation of the result happens here.
    """

    def apply_diff(
        self,
        workflow: Dict[str, Any],
        operations: Iterable[OperationLike],
        continue_on_error: bool = False,
        validate_only: bool = False,
    ) -> DiffResult:
        operations = list(operations)
        try:
            return self._apply_all(workflow, operations, continue_on_error, validate_only)
        except Exception as e:
            log.error("diff engine failure", exc_info=True)
            return DiffResult(success=False, errors=[DiffIssue(-1, f"Diff engine error: {e}")])

    def _apply_all(self, workflow, operations, continue_on_error, validate_only) -> DiffResult:
        work = copy.deepcopy(workflow)
        if not isinstance(work.get("nodes"), list):
            work["nodes"] = []
        if not isinstance(work.get("connections"), dict):
            work["connections"] = {}
        run = _Run(work)

        applied: List[int] = []
        failed: List[int] = []
        errors: List[DiffIssue] = []

        for index, raw in enumerate(operations):
            try:
                op = parse_operation(raw)
                self._validate(run, op)
            except OperationError as e:
                issue = DiffIssue(index, e.message, e.details if e.details is not None else _wire(raw))
            except Exception as e:
                log.debug("operation %d raised during validation", index, exc_info=True)
                issue = DiffIssue(index, f"Invalid operation: {e}", _wire(raw))
            else:
                try:
                    self._apply(run, op)
                    applied.append(index)
                    log.debug("applied operation %d (%s)", index, op.kind)
                    continue
                except OperationError as e:
                    issue = DiffIssue(index, f"Failed to apply operation: {e.message}", _wire(raw))
                except Exception as e:
                    log.debug("operation %d raised while applying", index, exc_info=True)
                    issue = DiffIssue(index, f"Failed to apply operation: {e}", _wire(raw))

            log.warning("operation %d rejected: %s", index, issue.message.splitlines()[0])
            errors.append(issue)
            failed.append(index)
            if not continue_on_error:
                return DiffResult(
                    success=False,
                    message=f"Operation {index} failed; no changes were applied",
                    operations_applied=len(applied),
                    applied=applied,
                    failed=failed,
                    errors=errors,
                    warnings=run.warnings,
                )

        if validate_only:
            return DiffResult(
                success=not errors,
                message="Validation successful. Operations are valid but not applied."
                if not errors
                else f"Validation completed with {len(errors)} errors.",
                applied=applied,
                failed=failed,
                errors=errors,
                warnings=run.warnings,
            )

        if continue_on_error:
            success = bool(applied) or not operations
            message = f"Applied {len(applied)} operations, {len(failed)} failed (continueOnError mode)"
        else:
            success = True
            message = f"Successfully applied {len(applied)} operations"
        log.info(message)
        return DiffResult(
            success=success,
            workflow=work,
            message=message,
            operations_applied=len(applied),
            applied=applied,
            failed=failed,
            errors=errors,
            warnings=run.warnings,
            stale_connections_removed=run.stale,
            should_activate=run.should_activate,
            should_deactivate=run.should_deactivate,
        )

    # ---------- Validation ----------

    def _validate(self, run: _Run, op: Operation) -> None:
        if isinstance(op, AddNode):
            self._validate_add_node(run, op)
        elif isinstance(op, UpdateNode):
            self._validate_update_node(run, op)
        elif isinstance(op, MoveNode):
            self._require_node(run, op)
            if not isinstance(op.position, (list, tuple)) or len(op.position) != 2:
                raise OperationError("moveNode requires 'position' as [x, y]", op.to_dict())
        elif isinstance(op, NodeRef):
            self._require_node(run, op)
        elif isinstance(op, AddConnection):
            self._validate_add_connection(run, op)
        elif isinstance(op, RemoveConnection):
            self._validate_remove_connection(run, op)
        elif isinstance(op, RewireConnection):
            self._validate_rewire(run, op)
        elif isinstance(op, ReplaceConnections):
            self._validate_replace_connections(run, op)
        elif isinstance(op, ActivateWorkflow):
            if not any(not n.get("disabled") and is_activatable_trigger(n.get("type")) for n in run.nodes):
                raise OperationError(
                    "Cannot activate workflow: No activatable trigger nodes found. Workflows must have at least "
                    "one enabled trigger node (webhook, schedule, executeWorkflowTrigger, etc.).",
                    op.to_dict(),
                )
        elif isinstance(op, UpdateName):
            if not isinstance(op.name, str) or not op.name.strip():
                raise OperationError("updateName requires a non-empty 'name'", op.to_dict())
        elif isinstance(op, (AddTag, RemoveTag)):
            if not isinstance(op.tag, str) or not op.tag:
                raise OperationError(f"{op.kind} requires a non-empty 'tag'", op.to_dict())
        elif isinstance(op, UpdateSettings):
            if op.settings is not None and not isinstance(op.settings, dict):
                raise OperationError("updateSettings requires 'settings' to be an object", op.to_dict())
        # deactivateWorkflow / cleanStaleConnections have no preconditions

    def _require_node(self, run: _Run, op: NodeRef) -> Dict[str, Any]:
        node = find_node(run.nodes, op.node_id, op.node_name)
        if node is None:
            raise OperationError(
                f'Node not found for {op.kind}: "{op.ref}". Available nodes: {_available(run.nodes)}. '
                "Tip: Use node ID for names with special characters (apostrophes, quotes).",
                op.to_dict(),
            )
        return node

    def _validate_add_node(self, run: _Run, op: AddNode) -> None:
        node = op.node
        if not isinstance(node, dict):
            raise OperationError("Missing required parameter 'node' for addNode", op.to_dict())
        name, node_type = node.get("name"), node.get("type")
        if not isinstance(name, str) or not name.strip():
            raise OperationError("addNode requires node.name", op.to_dict())
        wanted = normalize_node_name(name)
        duplicate = next((n for n in run.nodes if normalize_node_name(n.get("name")) == wanted), None)
        if duplicate is not None:
            raise OperationError(
                f'Node with name "{name}" already exists (normalized name matches existing node '
                f'"{duplicate.get("name")}")',
                op.to_dict(),
            )
        if not isinstance(node_type, str) or "." not in node_type:
            raise OperationError(
                f'Invalid node type "{node_type}". Must include package prefix (e.g., "n8n-nodes-base.webhook")',
                op.to_dict(),
            )
        if node_type.startswith("nodes-base."):
            raise OperationError(
                f'Invalid node type "{node_type}". Use "n8n-nodes-base.{node_type[len("nodes-base."):]}" instead',
                op.to_dict(),
            )

    def _validate_update_node(self, run: _Run, op: UpdateNode) -> None:
        if not isinstance(op.updates, dict):
            raise OperationError(
                "Missing required parameter 'updates'. The updateNode operation requires an 'updates' object "
                'containing properties to modify. Example: {type: "updateNode", nodeId: "abc", '
                'updates: {name: "New Name"}}',
                op.to_dict(),
            )
        node = self._require_node(run, op)
        new_name = op.updates.get("name")
        if new_name and new_name != node.get("name"):
            wanted = normalize_node_name(new_name)
            if wanted != normalize_node_name(node.get("name")):
                collision = next(
                    (n for n in run.nodes if n is not node and normalize_node_name(n.get("name")) == wanted), None
                )
                if collision is not None:
                    raise OperationError(
                        f'Cannot rename node "{node.get("name")}" to "{new_name}": A node with that name already '
                        f"exists (id: {_short_id(collision)}...). Please choose a different name.",
                        op.to_dict(),
                    )

    def _endpoint(self, run: _Run, ref: Optional[str], label: str, op: Operation) -> Dict[str, Any]:
        node = find_node(run.nodes, ref, ref)
        if node is None:
            raise OperationError(
                f'{label} not found: "{ref}". Available nodes: {_available(run.nodes)}. '
                "Tip: Use node ID for names with special characters (apostrophes, quotes).",
                op.to_dict(),
            )
        return node

    def _validate_add_connection(self, run: _Run, op: AddConnection) -> None:
        if not op.source:
            raise OperationError(
                "Missing required parameter 'source'. The addConnection operation requires both 'source' and "
                "'target' parameters. Check that you're using 'source' (not 'sourceNodeId').",
                op.to_dict(),
            )
        if not op.target:
            raise OperationError(
                "Missing required parameter 'target'. The addConnection operation requires both 'source' and "
                "'target' parameters. Check that you're using 'target' (not 'targetNodeId').",
                op.to_dict(),
            )
        source = self._endpoint(run, op.source, "Source node", op)
        target = self._endpoint(run, op.target, "Target node", op)
        _check_index(op, "sourceIndex", op.source_index)
        _check_index(op, "targetIndex", op.target_index)
        _check_index(op, "case", op.case)
        output, _index = self._resolve_output(run, source, op.source_output, op.source_index, op.branch, op.case)
        existing = _buckets(run, source, output)
        if any(isinstance(b, list) and any(_target_of(c) == target.get("name") for c in b) for b in existing):
            raise OperationError(
                f'Connection already exists from "{source.get("name")}" to "{target.get("name")}"', op.to_dict()
            )

    def _validate_remove_connection(self, run: _Run, op: RemoveConnection) -> None:
        if op.ignore_errors:
            return
        source = self._endpoint(run, op.source, "Source node", op)
        target = self._endpoint(run, op.target, "Target node", op)
        output = op.source_output or MAIN
        buckets = _buckets(run, source, output)
        if not buckets:
            raise OperationError(f'No connections found from "{source.get("name")}"', op.to_dict())
        if not any(isinstance(b, list) and any(_target_of(c) == target.get("name") for c in b) for b in buckets):
            raise OperationError(
                f'No connection exists from "{source.get("name")}" to "{target.get("name")}"', op.to_dict()
            )

    def _validate_rewire(self, run: _Run, op: RewireConnection) -> None:
        source = self._endpoint(run, op.source, "Source node", op)
        from_node = self._endpoint(run, op.from_node, '"From" node', op)
        self._endpoint(run, op.to_node, '"To" node', op)
        _check_index(op, "sourceIndex", op.source_index)
        _check_index(op, "case", op.case)
        output, index = self._resolve_output(run, source, op.source_output, op.source_index, op.branch, op.case)
        buckets = _buckets(run, source, output)
        if not buckets:
            raise OperationError(
                f'No connections found from "{source.get("name")}" on output "{output}"', op.to_dict()
            )
        if index >= len(buckets) or not isinstance(buckets[index], list) or not buckets[index]:
            raise OperationError(
                f'No connections found from "{source.get("name")}" on output "{output}" at index {index}',
                op.to_dict(),
            )
        if not any(_target_of(c) == from_node.get("name") for c in buckets[index]):
            raise OperationError(
                f'No connection exists from "{source.get("name")}" to "{from_node.get("name")}" '
                f'on output "{output}" at index {index}',
                op.to_dict(),
            )

    def _validate_replace_connections(self, run: _Run, op: ReplaceConnections) -> None:
        if not isinstance(op.connections, dict):
            raise OperationError("replaceConnections requires 'connections' to be an object", op.to_dict())
        names = {n.get("name") for n in run.nodes}
        for source_name, outputs in op.connections.items():
            if source_name not in names:
                raise OperationError(f"Source node not found in connections: {source_name}", op.to_dict())
            if not isinstance(outputs, dict):
                raise OperationError(f"Connections of {source_name} must be an object", op.to_dict())
            for buckets in outputs.values():
                for bucket in buckets if isinstance(buckets, list) else []:
                    for conn in bucket if isinstance(bucket, list) else []:
                        if _target_of(conn) not in names:
                            raise OperationError(
                                f"Target node not found in connections: {_target_of(conn)}", op.to_dict()
                            )

    def _resolve_output(
        self,
        run: _Run,
        source: Dict[str, Any],
        source_output: Optional[str],
        source_index: Optional[int],
        branch: Optional[str],
        case: Optional[int],
    ) -> Tuple[str, int]:
        """
        Smart parameters: branch="true"/"false" picks an IF output, case=N a Switch output.
        An explicit source_index always wins.
        """
        output = source_output or MAIN
        index = source_index if source_index is not None else 0
        source_type = normalize_node_type(source.get("type"))
        if source_index is None:
            if branch is not None and source_type == IF_TYPE:
                index = 0 if str(branch).lower() == "true" else 1
            if case is not None:
                index = int(case)
        elif branch is None and case is None:
            if source_type == IF_TYPE:
                run.warnings.append(
                    DiffIssue(
                        -1,
                        f'Connection to If node "{source.get("name")}" uses sourceIndex={source_index}. '
                        'Consider using branch="true" or branch="false" for better clarity. '
                        "If node outputs: main[0]=TRUE branch, main[1]=FALSE branch.",
                    )
                )
            elif source_type == SWITCH_TYPE:
                run.warnings.append(
                    DiffIssue(
                        -1,
                        f'Connection to Switch node "{source.get("name")}" uses sourceIndex={source_index}. '
                        "Consider using case=N for better clarity (case=0 for first output, case=1 for second, etc.).",
                    )
                )
        return output, index

    # ---------- Application ----------

    def _apply(self, run: _Run, op: Operation) -> None:
        if isinstance(op, AddNode):
            self._apply_add_node(run, op)
        elif isinstance(op, RemoveNode):
            self._apply_remove_node(run, op)
        elif isinstance(op, UpdateNode):
            self._apply_update_node(run, op)
        elif isinstance(op, MoveNode):
            self._require_node(run, op)["position"] = list(op.position)
        elif isinstance(op, EnableNode):
            self._require_node(run, op)["disabled"] = False
        elif isinstance(op, DisableNode):
            self._require_node(run, op)["disabled"] = True
        elif isinstance(op, AddConnection):
            source = find_node(run.nodes, op.source, op.source)
            target = find_node(run.nodes, op.target, op.target)
            # the index was resolved (and warned about) during validation
            output, index = self._resolve_output(_Run(run.workflow), source, op.source_output, op.source_index,
                                                 op.branch, op.case)
            _connect(run.connections, source.get("name"), target.get("name"), output, index,
                     op.target_input or output, op.target_index or 0)
        elif isinstance(op, RemoveConnection):
            self._apply_remove_connection(run, op.source, op.target, op.source_output or MAIN)
        elif isinstance(op, RewireConnection):
            self._apply_rewire(run, op)
        elif isinstance(op, CleanStaleConnections):
            self._apply_clean_stale(run, op)
        elif isinstance(op, ReplaceConnections):
            run.workflow["connections"] = copy.deepcopy(op.connections)
        elif isinstance(op, UpdateSettings):
            if op.settings:
                settings = run.workflow.get("settings")
                if not isinstance(settings, dict):
                    settings = run.workflow["settings"] = {}
                settings.update(op.settings)
        elif isinstance(op, UpdateName):
            run.workflow["name"] = op.name
        elif isinstance(op, AddTag):
            tags = run.workflow.setdefault("tags", [])
            if op.tag not in tags:
                tags.append(op.tag)
        elif isinstance(op, RemoveTag):
            tags = run.workflow.get("tags") or []
            if op.tag in tags:
                tags.remove(op.tag)
        elif isinstance(op, ActivateWorkflow):
            run.should_activate = True
        elif isinstance(op, DeactivateWorkflow):
            run.should_deactivate = True
        else:
            raise OperationError(f"Unknown operation type: {op.kind}")

    def _apply_add_node(self, run: _Run, op: AddNode) -> None:
        node = copy.deepcopy(op.node)
        node.setdefault("id", str(uuid.uuid4()))
        node.setdefault("typeVersion", 1)
        node.setdefault("parameters", {})
        if "position" not in node:
            node["position"] = [0, 0]
        run.nodes.append(node)

    def _apply_remove_node(self, run: _Run, op: RemoveNode) -> None:
        node = self._require_node(run, op)
        name = node.get("name")
        run.nodes.remove(node)
        run.connections.pop(name, None)
        for source_name in list(run.connections):
            outputs = run.connections[source_name]
            if not isinstance(outputs, dict):
                continue
            for port in list(outputs):
                buckets = outputs[port]
                if not isinstance(buckets, list):
                    continue
                outputs[port] = [
                    [c for c in b if _target_of(c) != name] if isinstance(b, list) else b for b in buckets
                ]
                _prune_empty(outputs, port)
            if not outputs:
                del run.connections[source_name]

    def _apply_update_node(self, run: _Run, op: UpdateNode) -> None:
        node = self._require_node(run, op)
        old_name = node.get("name")
        # a failing path leaves the node untouched
        staged = copy.deepcopy(node)
        for path, value in op.updates.items():
            set_nested(staged, path, value)
        node.clear()
        node.update(staged)
        new_name = node.get("name")
        if new_name != old_name:
            _rename_references(run.connections, old_name, new_name)
            log.debug('renamed node "%s" -> "%s"', old_name, new_name)

    def _apply_remove_connection(self, run: _Run, source_ref, target_ref, output: str) -> None:
        source = find_node(run.nodes, source_ref, source_ref)
        target = find_node(run.nodes, target_ref, target_ref)
        if source is None or target is None:
            return
        outputs = run.connections.get(source.get("name"))
        if not isinstance(outputs, dict) or not isinstance(outputs.get(output), list):
            return
        outputs[output] = [
            [c for c in b if _target_of(c) != target.get("name")] if isinstance(b, list) else b
            for b in outputs[output]
        ]
        _prune_empty(outputs, output)
        if not outputs:
            del run.connections[source.get("name")]

    def _apply_rewire(self, run: _Run, op: RewireConnection) -> None:
        source = find_node(run.nodes, op.source, op.source)
        to_node = find_node(run.nodes, op.to_node, op.to_node)
        output, index = self._resolve_output(_Run(run.workflow), source, op.source_output, op.source_index,
                                             op.branch, op.case)
        self._apply_remove_connection(run, op.source, op.from_node, output)
        _connect(run.connections, source.get("name"), to_node.get("name"), output, index,
                 op.target_input or output, 0)

    def _apply_clean_stale(self, run: _Run, op: CleanStaleConnections) -> None:
        names = {n.get("name") for n in run.nodes}
        stale: List[Dict[str, Any]] = []
        for source_name in list(run.connections):
            outputs = run.connections[source_name]
            if not isinstance(outputs, dict):
                continue
            source_missing = source_name not in names
            for port in list(outputs):
                buckets = outputs[port]
                if not isinstance(buckets, list):
                    continue
                kept_buckets = []
                for bucket in buckets:
                    kept = []
                    for conn in bucket if isinstance(bucket, list) else []:
                        if source_missing or _target_of(conn) not in names:
                            stale.append({"from": source_name, "to": _target_of(conn)})
                        else:
                            kept.append(conn)
                    kept_buckets.append(kept)
                if not op.dry_run:
                    outputs[port] = kept_buckets
                    _prune_empty(outputs, port)
            if not op.dry_run and (source_missing or not outputs):
                del run.connections[source_name]
        run.stale.extend(stale)
        if op.dry_run:
            log.info("[dry run] would remove %d stale connection(s)", len(stale))
        else:
            log.info("removed %d stale connection(s)", len(stale))


def _target_of(conn: Any) -> Any:
    return conn.get("node") if isinstance(conn, dict) else None


def _buckets(run: _Run, source: Dict[str, Any], output: str) -> List[Any]:
    outputs = run.connections.get(source.get("name"))
    buckets = outputs.get(output) if isinstance(outputs, dict) else None
    return buckets if isinstance(buckets, list) else []


def _check_index(op: Operation, label: str, value: Any) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise OperationError(f"Invalid {label} {value!r}. Must be a non-negative integer", op.to_dict())


def _wire(raw: Any) -> Any:
    return raw.to_dict() if isinstance(raw, Operation) else raw


def _connect(
    connections: Dict[str, Any],
    source: str,
    target: str,
    output: str,
    index: int,
    target_input: str,
    target_index: int,
) -> None:
    buckets = connections.setdefault(source, {}).setdefault(output, [])
    while len(buckets) <= index:
        buckets.append([])
    if not isinstance(buckets[index], list):
        buckets[index] = []
    buckets[index].append({"node": target, "type": target_input, "index": target_index})


def _rename_references(connections: Dict[str, Any], old: str, new: str) -> None:
    if old in connections:
        # keep the source key where it was
        connections_items = list(connections.items())
        connections.clear()
        for k, v in connections_items:
            connections[new if k == old else k] = v
    for outputs in connections.values():
        if not isinstance(outputs, dict):
            continue
        for buckets in outputs.values():
            for bucket in buckets if isinstance(buckets, list) else []:
                for conn in bucket if isinstance(bucket, list) else []:
                    if isinstance(conn, dict) and conn.get("node") == old:
                        conn["node"] = new
