# flowguard/utils/graph.py
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

import networkx as nx

from flowguard.model import AI_TOOL, ERROR, MAIN

BASE_PREFIX = "nodes-base."
LANGCHAIN_PREFIX = "nodes-langchain."

_WORKFLOW_PREFIXES = (
    ("n8n-nodes-base.", BASE_PREFIX),
    ("@n8n/n8n-nodes-langchain.", LANGCHAIN_PREFIX),
    ("n8n-nodes-langchain.", LANGCHAIN_PREFIX),
)

STICKY_NOTE_TYPES = {
    "n8n-nodes-base.stickyNote",
    "nodes-base.stickyNote",
    "@n8n/n8n-nodes-base.stickyNote",
}

LOOP_NODE_TYPES = {
    "nodes-base.splitInBatches",
    "nodes-base.itemLists",
    "nodes-base.loop",
}

_SPECIFIC_TRIGGERS = {"nodes-base.start", "nodes-base.manualTrigger", "nodes-base.formTrigger"}

# ports followed for reachability and cycle detection
FLOW_PORTS = (MAIN, ERROR, AI_TOOL)


# ---------- Type names ----------

def normalize_node_type(node_type: Any) -> str:
    """Collapse the package aliases into the short catalog form (nodes-base.x / nodes-langchain.x)."""
    if not isinstance(node_type, str):
        return ""
    for prefix, short in _WORKFLOW_PREFIXES:
        if node_type.startswith(prefix):
            return short + node_type[len(prefix):]
    return node_type


def to_workflow_format(node_type: str) -> str:
    """Inverse of normalize_node_type: the form stored inside workflow JSON."""
    if node_type.startswith(BASE_PREFIX):
        return "n8n-nodes-base." + node_type[len(BASE_PREFIX):]
    if node_type.startswith(LANGCHAIN_PREFIX):
        return "@n8n/n8n-nodes-langchain." + node_type[len(LANGCHAIN_PREFIX):]
    return node_type


def short_type_name(node_type: Any) -> str:
    return normalize_node_type(node_type).split(".")[-1]


def is_langchain_node(node_type: Any) -> bool:
    return normalize_node_type(node_type).startswith(LANGCHAIN_PREFIX)


def is_sticky_note(node_type: Any) -> bool:
    return node_type in STICKY_NOTE_TYPES


def is_non_executable(node_type: Any) -> bool:
    return is_sticky_note(node_type)


def is_trigger_node(node_type: Any) -> bool:
    normalized = normalize_node_type(node_type)
    lower = normalized.lower()
    if "trigger" in lower:
        return True
    if "webhook" in lower and "respond" not in lower:
        return True
    return normalized in _SPECIFIC_TRIGGERS


def is_activatable_trigger(node_type: Any) -> bool:
    return is_trigger_node(node_type)


def is_loop_node(node_type: Any) -> bool:
    return normalize_node_type(node_type) in LOOP_NODE_TYPES


def is_tool_variant_type(node_type: str) -> bool:
    """`package.nameTool` but never `...ToolTool`."""
    if not node_type or not node_type.endswith("Tool") or node_type.endswith("ToolTool"):
        return False
    base = node_type[:-4]
    return "." in base and len(base.split(".")[-1]) > 0


def executable_nodes(nodes: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [n for n in nodes if isinstance(n, dict) and not is_non_executable(n.get("type"))]


# ---------- Connections ----------

def iter_connections(
    connections: Dict[str, Any],
    ports: Optional[Iterable[str]] = None,
) -> Iterator[Tuple[str, str, int, Dict[str, Any]]]:
    """
    Yield (source_name, port_type, output_slot, connection) for every declared edge.

    connections[source][port] is a list of output-slot buckets; each bucket is a
    list of {"node": target_name, "type": port, "index": input_index}.
    Malformed buckets are skipped.
    """
    wanted = set(ports) if ports is not None else None
    for src_name, outputs in (connections or {}).items():
        if not isinstance(outputs, dict):
            continue
        for port, buckets in outputs.items():
            if wanted is not None and port not in wanted:
                continue
            if not isinstance(buckets, list):
                continue
            for slot, bucket in enumerate(buckets):
                if not isinstance(bucket, list):
                    continue
                for conn in bucket:
                    if isinstance(conn, dict):
                        yield src_name, port, slot, conn


def outgoing_targets(connections: Dict[str, Any], source: str, ports: Iterable[str] = FLOW_PORTS) -> List[str]:
    """Target names reachable in one hop from `source`, in declaration order."""
    return [
        c.get("node")
        for _src, _port, _slot, c in iter_connections({source: (connections or {}).get(source) or {}}, ports)
    ]


def build_graph(workflow: Dict[str, Any], ports: Iterable[str] = FLOW_PORTS) -> nx.DiGraph:
    """
    Directed graph keyed by node *name* (connections reference names, not ids).
    Executable nodes are added first in list order; dangling targets become bare nodes.
    """
    G = nx.DiGraph()
    for n in executable_nodes(workflow.get("nodes") or []):
        name = n.get("name")
        if name is not None:
            G.add_node(name, type=n.get("type"))

    for src, port, slot, conn in iter_connections(workflow.get("connections") or {}, ports):
        tgt = conn.get("node")
        if tgt is None:
            continue
        G.add_edge(src, tgt, port=port, slot=slot)
    return G


def build_reverse_index(connections: Dict[str, Any]) -> Dict[str, List[Dict[str, Any]]]:
    """target name -> [{source_name, port_type, slot, index}] over every port type."""
    reverse: Dict[str, List[Dict[str, Any]]] = {}
    for src, port, slot, conn in iter_connections(connections):
        tgt = conn.get("node")
        if tgt is None:
            continue
        reverse.setdefault(tgt, []).append(
            {
                "source_name": src,
                "port_type": port,
                "slot": slot,
                "index": conn.get("index", 0),
            }
        )
    return reverse


def node_has_input(workflow: Dict[str, Any], name: str) -> bool:
    for _src, _port, _slot, conn in iter_connections(workflow.get("connections") or {}, (MAIN,)):
        if conn.get("node") == name:
            return True
    return False


def longest_linear_chain(workflow: Dict[str, Any]) -> int:
    """Length (in nodes) of the longest main-port chain starting at a node without main input."""
    connections = workflow.get("connections") or {}
    memo: Dict[str, int] = {}

    def chain_length(root: str) -> int:
        # explicit stack; a back edge into the current path counts as 0
        if root in memo:
            return memo[root]
        best = {root: 0}
        stack = [(root, iter(outgoing_targets(connections, root, (MAIN,))))]
        while stack:
            name, targets = stack[-1]
            for tgt in targets:
                if tgt in best:
                    continue
                if tgt in memo:
                    best[name] = max(best[name], memo[tgt])
                    continue
                best[tgt] = 0
                stack.append((tgt, iter(outgoing_targets(connections, tgt, (MAIN,)))))
                break
            else:
                stack.pop()
                memo[name] = best.pop(name) + 1
                if stack:
                    parent = stack[-1][0]
                    best[parent] = max(best[parent], memo[name])
        return memo[root]

    longest = 0
    for n in workflow.get("nodes") or []:
        name = n.get("name")
        if name is not None and not node_has_input(workflow, name):
            longest = max(longest, chain_length(name))
    return longest
