# flowguard/connections/batches.py
# splitInBatches: output 0 = "done" (after the loop), output 1 = "loop" (each batch)
from typing import Any, Dict, Optional, Set

from flowguard.model import ValidationResult
from flowguard.utils.graph import outgoing_targets

LOOP_BACK_MAX_DEPTH = 50

_PROCESSING_TYPE_HINTS = ("function", "code", "item")
_PROCESSING_NAME_HINTS = ("process", "transform", "handle")
_POST_TYPE_HINTS = ("aggregate", "merge", "email", "slack")
_POST_NAME_HINTS = ("final", "complete", "summary", "report")


def loops_back(
    connections: Dict[str, Any],
    start: str,
    target: str,
    visited: Optional[Set[str]] = None,
    max_depth: int = LOOP_BACK_MAX_DEPTH,
) -> bool:
    """True if any path of every port type leads from `start` back to `target`."""
    if max_depth <= 0:
        return False
    visited = visited if visited is not None else set()
    if start in visited:
        return False
    visited.add(start)
    for nxt in outgoing_targets(connections, start, ports=_all_ports(connections, start)):
        if nxt == target:
            return True
        if loops_back(connections, nxt, target, visited, max_depth - 1):
            return True
    return False


def _all_ports(connections: Dict[str, Any], name: str):
    outputs = connections.get(name)
    return list(outputs) if isinstance(outputs, dict) else []


def check_batch_connection(
    source: Dict[str, Any],
    slot: int,
    target: Optional[Dict[str, Any]],
    connections: Dict[str, Any],
    result: ValidationResult,
) -> None:
    if target is None:
        return
    target_type = str(target.get("type") or "").lower()
    target_name = str(target.get("name") or "")
    lower_name = target_name.lower()
    source_name = source.get("name")

    if slot == 0:
        looks_processing = any(h in target_type for h in _PROCESSING_TYPE_HINTS) or any(
            h in lower_name for h in _PROCESSING_NAME_HINTS
        )
        if not looks_processing:
            return
        if loops_back(connections, target_name, source_name):
            result.error(
                f'SplitInBatches outputs appear reversed! Node "{target_name}" is connected to output 0 ("done") '
                "but connects back to the loop. It should be connected to output 1 (\"loop\") instead. "
                'Remember: Output 0 = "done" (post-loop), Output 1 = "loop" (inside loop).',
                source,
            )
        else:
            result.warning(
                f'Node "{target_name}" is connected to the "done" output (index 0) but appears to be a '
                'processing node. Consider connecting it to the "loop" output (index 1) if it should '
                "process items inside the loop.",
                source,
            )
    elif slot == 1:
        looks_post = any(h in target_type for h in _POST_TYPE_HINTS) or any(
            h in lower_name for h in _POST_NAME_HINTS
        )
        if looks_post:
            result.warning(
                f'Node "{target_name}" is connected to the "loop" output (index 1) but appears to be a '
                'post-processing node. Consider connecting it to the "done" output (index 0) if it should '
                "run after all iterations complete.",
                source,
            )
        if not loops_back(connections, target_name, source_name):
            result.warning(
                f'The "loop" output connects to "{target_name}" but doesn\'t connect back to the '
                "SplitInBatches node. The last node in the loop should connect back to complete the iteration.",
                source,
            )
