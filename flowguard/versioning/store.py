# flowguard/versioning/store.py
from __future__ import annotations

import copy
import itertools
import json
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from flowguard.errors import VersionStoreError, WorkflowClientError
from flowguard.utils.io import PathLike, read_json, to_path, write_json

TRIGGERS = ("partial_update", "full_update", "autofix")


@dataclass(frozen=True)
class WorkflowVersion:
    id: int
    workflow_id: str
    version_number: int
    workflow_name: str
    snapshot: Dict[str, Any]
    trigger: str
    operations: Optional[List[Dict[str, Any]]] = None
    fix_types: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def size(self) -> int:
        """JSON byte length of the snapshot."""
        return len(json.dumps(self.snapshot, separators=(",", ":")).encode("utf-8"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "workflowId": self.workflow_id,
            "versionNumber": self.version_number,
            "workflowName": self.workflow_name,
            "workflowSnapshot": self.snapshot,
            "trigger": self.trigger,
            "operations": self.operations,
            "fixTypes": self.fix_types,
            "metadata": self.metadata,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowVersion":
        return cls(
            id=int(data["id"]),
            workflow_id=data["workflowId"],
            version_number=int(data["versionNumber"]),
            workflow_name=data.get("workflowName") or "Unnamed Workflow",
            snapshot=data.get("workflowSnapshot") or {},
            trigger=data["trigger"],
            operations=data.get("operations"),
            fix_types=data.get("fixTypes"),
            metadata=data.get("metadata"),
            created_at=data.get("createdAt") or datetime.now(timezone.utc).isoformat(),
        )


class VersionStore(Protocol):
    def create(
        self,
        workflow_id: str,
        version_number: int,
        workflow_name: str,
        snapshot: Dict[str, Any],
        trigger: str,
        operations: Optional[List[Dict[str, Any]]] = None,
        fix_types: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int: ...

    def list(self, workflow_id: str, limit: Optional[int] = None) -> List[WorkflowVersion]:
        """Newest first."""
        ...

    def get(self, version_id: int) -> Optional[WorkflowVersion]: ...

    def latest(self, workflow_id: str) -> Optional[WorkflowVersion]: ...

    def delete(self, version_id: int) -> bool: ...

    def delete_workflow(self, workflow_id: str) -> int: ...

    def prune(self, workflow_id: str, keep: int) -> int: ...

    def truncate(self) -> int: ...

    def count(self, workflow_id: str) -> int: ...

    def all(self) -> List[WorkflowVersion]: ...


class WorkflowClient(Protocol):
    """Remote workflow store: the live copy of each workflow."""

    def get_workflow(self, workflow_id: str) -> Dict[str, Any]: ...

    def update_workflow(self, workflow_id: str, workflow: Dict[str, Any]) -> Dict[str, Any]: ...


class InMemoryVersionStore:
    """Thread-safe reference store. Snapshots are deep-copied on the way in."""

    def __init__(self):
        self._rows: Dict[int, WorkflowVersion] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def create(
        self,
        workflow_id: str,
        version_number: int,
        workflow_name: str,
        snapshot: Dict[str, Any],
        trigger: str,
        operations: Optional[List[Dict[str, Any]]] = None,
        fix_types: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        if trigger not in TRIGGERS:
            raise VersionStoreError(f"Unknown backup trigger: {trigger!r}")
        with self._lock:
            if any(
                v.workflow_id == workflow_id and v.version_number == version_number for v in self._rows.values()
            ):
                raise VersionStoreError(f"Version {version_number} already exists for workflow {workflow_id}")
            version_id = next(self._ids)
            self._rows[version_id] = WorkflowVersion(
                id=version_id,
                workflow_id=workflow_id,
                version_number=version_number,
                workflow_name=workflow_name,
                snapshot=copy.deepcopy(snapshot),
                trigger=trigger,
                operations=copy.deepcopy(operations),
                fix_types=list(fix_types) if fix_types is not None else None,
                metadata=copy.deepcopy(metadata),
            )
            return version_id

    def list(self, workflow_id: str, limit: Optional[int] = None) -> List[WorkflowVersion]:
        with self._lock:
            rows = sorted(
                (v for v in self._rows.values() if v.workflow_id == workflow_id),
                key=lambda v: v.version_number,
                reverse=True,
            )
        return rows[:limit] if limit is not None else rows

    def get(self, version_id: int) -> Optional[WorkflowVersion]:
        with self._lock:
            return self._rows.get(version_id)

    def latest(self, workflow_id: str) -> Optional[WorkflowVersion]:
        rows = self.list(workflow_id, 1)
        return rows[0] if rows else None

    def delete(self, version_id: int) -> bool:
        with self._lock:
            return self._rows.pop(version_id, None) is not None

    def delete_workflow(self, workflow_id: str) -> int:
        with self._lock:
            doomed = [k for k, v in self._rows.items() if v.workflow_id == workflow_id]
            for k in doomed:
                del self._rows[k]
            return len(doomed)

    def prune(self, workflow_id: str, keep: int) -> int:
        doomed = self.list(workflow_id)[max(keep, 0):]
        with self._lock:
            for v in doomed:
                self._rows.pop(v.id, None)
        return len(doomed)

    def truncate(self) -> int:
        with self._lock:
            n = len(self._rows)
            self._rows.clear()
            return n

    def count(self, workflow_id: str) -> int:
        with self._lock:
            return sum(1 for v in self._rows.values() if v.workflow_id == workflow_id)

    def all(self) -> List[WorkflowVersion]:
        with self._lock:
            return list(self._rows.values())


class InMemoryWorkflowClient:
    def __init__(self, workflows: Optional[Dict[str, Dict[str, Any]]] = None):
        self.workflows: Dict[str, Dict[str, Any]] = copy.deepcopy(workflows or {})

    def get_workflow(self, workflow_id: str) -> Dict[str, Any]:
        if workflow_id not in self.workflows:
            raise WorkflowClientError(f"Workflow {workflow_id} not found")
        return copy.deepcopy(self.workflows[workflow_id])

    def update_workflow(self, workflow_id: str, workflow: Dict[str, Any]) -> Dict[str, Any]:
        if workflow_id not in self.workflows:
            raise WorkflowClientError(f"Workflow {workflow_id} not found")
        self.workflows[workflow_id] = copy.deepcopy(workflow)
        return copy.deepcopy(workflow)


class JsonFileVersionStore(InMemoryVersionStore):
    """
    InMemoryVersionStore persisted to one JSON file, rewritten atomically after
    every mutation. Meant for the CLI and single-process use.
    """

    def __init__(self, path: PathLike):
        super().__init__()
        self.path = to_path(path)
        if self.path.exists():
            data = read_json(self.path)
            for row in data.get("versions") or []:
                v = WorkflowVersion.from_dict(row)
                self._rows[v.id] = v
            self._ids = itertools.count(max(self._rows, default=0) + 1)

    def _save(self) -> None:
        with self._lock:
            rows = [v.to_dict() for v in sorted(self._rows.values(), key=lambda v: v.id)]
        write_json(self.path, {"versions": rows})

    def create(self, *args, **kwargs) -> int:
        version_id = super().create(*args, **kwargs)
        self._save()
        return version_id

    def delete(self, version_id: int) -> bool:
        deleted = super().delete(version_id)
        if deleted:
            self._save()
        return deleted

    def delete_workflow(self, workflow_id: str) -> int:
        n = super().delete_workflow(workflow_id)
        self._save()
        return n

    def prune(self, workflow_id: str, keep: int) -> int:
        n = super().prune(workflow_id, keep)
        if n:
            self._save()
        return n

    def truncate(self) -> int:
        n = super().truncate()
        self._save()
        return n
