# flowguard/versioning/service.py
from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from flowguard.context import EngineContext
from flowguard.errors import VersionStoreError
from flowguard.model import Profile, ValidationOptions
from flowguard.utils.logger import get_logger
from flowguard.validator import WorkflowValidator
from flowguard.versioning.store import WorkflowVersion

log = get_logger("versioning")

DEFAULT_HISTORY_LIMIT = 10
_SIZE_UNITS = ("Bytes", "KB", "MB", "GB")


@dataclass
class BackupResult:
    version_id: int
    version_number: int
    pruned: int
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "versionId": self.version_id,
            "versionNumber": self.version_number,
            "pruned": self.pruned,
            "message": self.message,
        }


@dataclass
class RestoreResult:
    success: bool
    message: str
    workflow_id: str
    to_version_id: int = 0
    to_version: Optional[int] = None
    from_version: Optional[int] = None
    backup_created: bool = False
    backup_version_id: Optional[int] = None
    validation_errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "success": self.success,
            "message": self.message,
            "workflowId": self.workflow_id,
            "toVersionId": self.to_version_id,
            "toVersion": self.to_version,
            "fromVersion": self.from_version,
            "backupCreated": self.backup_created,
            "backupVersionId": self.backup_version_id,
        }
        if self.validation_errors:
            out["validationErrors"] = list(self.validation_errors)
        return {k: v for k, v in out.items() if v is not None}


def format_bytes(n: int) -> str:
    if n <= 0:
        return "0 Bytes"
    i = min(int(math.floor(math.log(n, 1024))), len(_SIZE_UNITS) - 1)
    value = round(n / 1024 ** i, 2)
    if value == int(value):
        value = int(value)
    return f"{value} {_SIZE_UNITS[i]}"


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


class WorkflowVersioningService:
    """
    Snapshot store front end: backups before mutations, retention, rollback.

    Snapshots are immutable once stored. Version numbers per workflow grow by one
    from the latest surviving version; retention keeps the newest `max_versions`.
    """

    def __init__(self, context: Optional[EngineContext] = None):
        self.context = context or EngineContext()

    @property
    def store(self):
        return self.context.version_store

    def create_backup(
        self,
        workflow_id: str,
        workflow: Dict[str, Any],
        trigger: str,
        operations: Optional[List[Dict[str, Any]]] = None,
        fix_types: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> BackupResult:
        latest = self.store.latest(workflow_id)
        number = latest.version_number + 1 if latest else 1
        version_id = self.store.create(
            workflow_id,
            number,
            workflow.get("name") or "Unnamed Workflow",
            workflow,
            trigger,
            operations=operations,
            fix_types=fix_types,
            metadata=metadata,
        )
        pruned = self.store.prune(workflow_id, self.context.max_versions)
        message = f"Backup created (version {number})"
        if pruned:
            message += f", pruned {pruned} old version(s)"
        log.info("%s for workflow %s", message, workflow_id)
        return BackupResult(version_id, number, pruned, message)

    def get_version_history(self, workflow_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[Dict[str, Any]]:
        history = []
        for v in self.store.list(workflow_id, limit):
            history.append(
                {
                    "id": v.id,
                    "workflowId": v.workflow_id,
                    "versionNumber": v.version_number,
                    "workflowName": v.workflow_name,
                    "trigger": v.trigger,
                    "operationCount": len(v.operations) if v.operations is not None else None,
                    "fixTypesApplied": v.fix_types,
                    "createdAt": v.created_at,
                    "size": v.size,
                }
            )
        return history

    def get_version(self, version_id: int) -> Optional[WorkflowVersion]:
        return self.store.get(version_id)

    def restore_version(
        self, workflow_id: str, version_id: Optional[int] = None, validate_before: bool = True
    ) -> RestoreResult:
        """
        Push a stored snapshot back to the live workflow.

        Without `version_id` the latest backup is restored. The current live
        workflow is always backed up first; if that backup fails nothing is pushed.
        """
        client = self.context.workflow_client
        if client is None:
            return RestoreResult(False, "API client not configured - cannot restore workflow", workflow_id,
                                 version_id or 0)

        target = self.store.get(version_id) if version_id else self.store.latest(workflow_id)
        if target is None:
            message = f"Version {version_id} not found" if version_id else \
                f"No backup versions found for workflow {workflow_id}"
            return RestoreResult(False, message, workflow_id, version_id or 0)

        if validate_before:
            report = WorkflowValidator(self.context).validate(
                target.snapshot, ValidationOptions(validate_expressions=False, profile=Profile.RUNTIME)
            )
            if report.errors:
                log.warning("refusing restore of version %d: %d validation error(s)",
                            target.version_number, len(report.errors))
                return RestoreResult(
                    False,
                    f"Cannot restore - version {target.version_number} has validation errors",
                    workflow_id,
                    target.id,
                    to_version=target.version_number,
                    validation_errors=[e.message or "Unknown error" for e in report.errors],
                )

        try:
            current = client.get_workflow(workflow_id)
            backup = self.create_backup(
                workflow_id,
                current,
                "partial_update",
                metadata={"reason": "Backup before rollback", "restoringToVersion": target.version_number},
            )
        except Exception as e:
            log.warning("backup before restore failed for workflow %s: %s", workflow_id, e)
            return RestoreResult(False, f"Failed to create backup before restore: {e}", workflow_id, target.id,
                                 to_version=target.version_number)

        try:
            client.update_workflow(workflow_id, target.snapshot)
        except Exception as e:
            log.warning("restore of workflow %s failed: %s", workflow_id, e)
            return RestoreResult(
                False,
                f"Failed to restore workflow: {e}",
                workflow_id,
                target.id,
                to_version=target.version_number,
                backup_created=True,
                backup_version_id=backup.version_id,
            )

        log.info("restored workflow %s to version %d", workflow_id, target.version_number)
        return RestoreResult(
            True,
            f"Successfully restored workflow to version {target.version_number}",
            workflow_id,
            target.id,
            to_version=target.version_number,
            from_version=backup.version_number,
            backup_created=True,
            backup_version_id=backup.version_id,
        )

    def delete_version(self, version_id: int) -> Dict[str, Any]:
        version = self.store.get(version_id)
        if version is None:
            return {"success": False, "message": f"Version {version_id} not found"}
        self.store.delete(version_id)
        return {
            "success": True,
            "message": f"Deleted version {version.version_number} for workflow {version.workflow_id}",
        }

    def delete_all_versions(self, workflow_id: str) -> Dict[str, Any]:
        if not self.store.count(workflow_id):
            return {"deleted": 0, "message": f"No versions found for workflow {workflow_id}"}
        deleted = self.store.delete_workflow(workflow_id)
        log.info("deleted %d version(s) for workflow %s", deleted, workflow_id)
        return {"deleted": deleted, "message": f"Deleted {deleted} version(s) for workflow {workflow_id}"}

    def prune_versions(self, workflow_id: str, max_versions: Optional[int] = None) -> Dict[str, int]:
        keep = self.context.max_versions if max_versions is None else max_versions
        pruned = self.store.prune(workflow_id, keep)
        return {"pruned": pruned, "remaining": self.store.count(workflow_id)}

    def truncate_all_versions(self, confirm: bool = False) -> Dict[str, Any]:
        if not confirm:
            return {"deleted": 0, "message": "Truncate operation not confirmed - no action taken"}
        deleted = self.store.truncate()
        log.warning("truncated version store: %d version(s) deleted", deleted)
        return {"deleted": deleted, "message": f"Truncated workflow_versions table - deleted {deleted} version(s)"}

    def get_storage_stats(self) -> Dict[str, Any]:
        per_workflow: Dict[str, Dict[str, Any]] = {}
        total = 0
        versions = sorted(self.store.all(), key=lambda v: (v.workflow_id, v.version_number))
        for v in versions:
            size = v.size
            total += size
            entry = per_workflow.setdefault(
                v.workflow_id,
                {"workflowId": v.workflow_id, "workflowName": v.workflow_name, "versionCount": 0, "totalSize": 0,
                 "lastBackup": None},
            )
            entry["versionCount"] += 1
            entry["totalSize"] += size
            entry["workflowName"] = v.workflow_name
            if entry["lastBackup"] is None or v.created_at > entry["lastBackup"]:
                entry["lastBackup"] = v.created_at
        by_workflow = sorted(per_workflow.values(), key=lambda w: w["totalSize"], reverse=True)
        for w in by_workflow:
            w["totalSizeFormatted"] = format_bytes(w["totalSize"])
        return {
            "totalVersions": len(versions),
            "totalSize": total,
            "totalSizeFormatted": format_bytes(total),
            "byWorkflow": by_workflow,
        }

    def compare_versions(self, version_id1: int, version_id2: int) -> Dict[str, Any]:
        v1, v2 = self.store.get(version_id1), self.store.get(version_id2)
        if v1 is None or v2 is None:
            raise VersionStoreError(f"One or both versions not found: {version_id1}, {version_id2}")

        nodes1 = {n.get("id"): n for n in v1.snapshot.get("nodes") or [] if isinstance(n, dict)}
        nodes2 = {n.get("id"): n for n in v2.snapshot.get("nodes") or [] if isinstance(n, dict)}
        settings1 = v1.snapshot.get("settings") or {}
        settings2 = v2.snapshot.get("settings") or {}

        setting_changes = {}
        for key in list(settings1) + [k for k in settings2 if k not in settings1]:
            if _canonical(settings1.get(key)) != _canonical(settings2.get(key)):
                setting_changes[key] = {"before": settings1.get(key), "after": settings2.get(key)}

        return {
            "versionId1": version_id1,
            "versionId2": version_id2,
            "version1Number": v1.version_number,
            "version2Number": v2.version_number,
            "addedNodes": [i for i in nodes2 if i not in nodes1],
            "removedNodes": [i for i in nodes1 if i not in nodes2],
            "modifiedNodes": [i for i in nodes1 if i in nodes2 and _canonical(nodes1[i]) != _canonical(nodes2[i])],
            "connectionChanges": int(
                _canonical(v1.snapshot.get("connections") or {}) != _canonical(v2.snapshot.get("connections") or {})
            ),
            "settingChanges": setting_changes,
        }
