# flowguard/connections/cycles.py
from typing import Any, Dict, List, Optional

from flowguard.utils.graph import FLOW_PORTS, build_graph, executable_nodes, is_loop_node


def find_cycle(workflow: Dict[str, Any]) -> Optional[List[str]]:
    """
    Depth-first search over main + error + ai_tool edges.

    A back-edge only counts when none of these hold:
      - the back-edge target is a loop-control node,
      - the current node is a loop-control node,
      - the current node was reached through a loop-control node.
    The last rule makes everything downstream of a loop node immune, including
    unrelated cycles nested in its subgraph.

    Returns the offending path (first node repeated at the end) or None.
    """
    G = build_graph(workflow, FLOW_PORTS)
    loop_names = {n for n, attrs in G.nodes(data=True) if is_loop_node(attrs.get("type"))}

    visited = set()
    on_path: List[str] = []
    on_path_set = set()

    for start in [n.get("name") for n in executable_nodes(workflow.get("nodes") or [])]:
        if start is None or start in visited or start not in G:
            continue
        visited.add(start)
        on_path.append(start)
        on_path_set.add(start)
        frames = [(start, False, iter(list(G.successors(start))))]

        while frames:
            name, from_loop, targets = frames[-1]
            is_loop = name in loop_names
            descended = False
            for tgt in targets:
                if tgt not in visited:
                    visited.add(tgt)
                    on_path.append(tgt)
                    on_path_set.add(tgt)
                    frames.append((tgt, from_loop or is_loop, iter(list(G.successors(tgt)))))
                    descended = True
                    break
                if tgt in on_path_set:
                    if tgt in loop_names or from_loop or is_loop:
                        continue
                    return on_path[on_path.index(tgt):] + [tgt]
            if not descended:
                frames.pop()
                on_path.pop()
                on_path_set.discard(name)
    return None


def has_cycle(workflow: Dict[str, Any]) -> bool:
    return find_cycle(workflow) is not None
