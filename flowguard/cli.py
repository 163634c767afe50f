#!/usr/bin/env python3
# flowguard/cli.py

import json
from pathlib import Path
from typing import Any, List, Optional

import typer

from flowguard.autofix.fixer import AutoFixConfig, FixType, WorkflowAutoFixer
from flowguard.context import EngineContext
from flowguard.diff.engine import WorkflowDiffEngine
from flowguard.errors import VersionStoreError
from flowguard.model import FixConfidence, Profile, ValidationOptions
from flowguard.utils.io import load_any, write_json
from flowguard.utils.logger import configure_logging
from flowguard.validator import WorkflowValidator
from flowguard.versioning.service import WorkflowVersioningService
from flowguard.versioning.store import TRIGGERS, JsonFileVersionStore

app = typer.Typer(help="flowguard CLI - validate, patch and repair n8n workflows")
versions_app = typer.Typer(help="Workflow snapshots: backup, history, compare, prune")
app.add_typer(versions_app, name="versions")

DEFAULT_STORE = Path(".flowguard") / "versions.json"


def _emit(payload: Any, out: Optional[Path] = None) -> None:
    typer.echo(json.dumps(payload, ensure_ascii=False, indent=2, default=str))
    if out is not None:
        write_json(out, payload)
        typer.echo(f"[ok] wrote {out}", err=True)


def _load_workflow(path: Path) -> Any:
    wf = load_any(path)
    if not isinstance(wf, dict):
        raise typer.BadParameter(f"{path} does not contain a workflow object")
    return wf


def _load_operations(path: Path) -> List[Any]:
    data = load_any(path)
    if isinstance(data, dict):
        data = data.get("operations")
    if not isinstance(data, list):
        raise typer.BadParameter(f"{path} must hold a list of operations or an object with 'operations'")
    return data


def _profile(value: Optional[str]) -> Optional[Profile]:
    if value is None:
        return None
    try:
        return Profile(value.lower())
    except ValueError:
        raise typer.BadParameter(
            f"Invalid profile '{value}'. Choose one of: {', '.join(p.value for p in Profile)}"
        )


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING or ERROR"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Also write logs to this rotating file"),
):
    if log_level or log_file:
        configure_logging(log_level, log_file)


@app.command()
def validate(
    input: Path = typer.Option(..., "--input", "-i", exists=True, readable=True, help="Path to n8n workflow JSON/YAML"),
    profile: Optional[str] = typer.Option(None, "--profile", help="minimal | runtime | ai-friendly | strict"),
    no_nodes: bool = typer.Option(False, "--no-nodes", help="Skip per-node checks"),
    no_connections: bool = typer.Option(False, "--no-connections", help="Skip connection checks"),
    no_expressions: bool = typer.Option(False, "--no-expressions", help="Skip expression checks"),
    report: Optional[Path] = typer.Option(None, "--report", help="Write the JSON report to this path"),
):
    """
    Validate a workflow and print the diagnostics as JSON. Exits 1 when the workflow has errors.
    """
    overrides = {"profile": _profile(profile)} if profile else {}
    context = EngineContext.from_env(**overrides)
    options = ValidationOptions(
        validate_nodes=not no_nodes,
        validate_connections=not no_connections,
        validate_expressions=not no_expressions,
        profile=context.profile,
    )
    result = WorkflowValidator(context).validate(_load_workflow(input), options)
    _emit(result.to_dict(), report)
    if not result.valid:
        raise typer.Exit(code=1)


@app.command()
def diff(
    input: Path = typer.Option(..., "--input", "-i", exists=True, readable=True, help="Path to n8n workflow JSON/YAML"),
    ops: Path = typer.Option(..., "--ops", exists=True, readable=True, help="JSON/YAML list of diff operations"),
    continue_on_error: bool = typer.Option(False, "--continue-on-error", help="Skip failing operations"),
    validate_only: bool = typer.Option(False, "--validate-only", help="Check operations without applying them"),
    out: Optional[Path] = typer.Option(None, "--out", help="Write the patched workflow to this path"),
):
    """
    Apply diff operations to a workflow. Exits 1 when the diff does not succeed.
    """
    result = WorkflowDiffEngine().apply_diff(
        _load_workflow(input),
        _load_operations(ops),
        continue_on_error=continue_on_error,
        validate_only=validate_only,
    )
    payload = result.to_dict()
    payload.pop("workflow", None)
    _emit(payload)
    if out is not None and result.workflow is not None:
        write_json(out, result.workflow)
        typer.echo(f"[ok] wrote {out}", err=True)
    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def autofix(
    input: Path = typer.Option(..., "--input", "-i", exists=True, readable=True, help="Path to n8n workflow JSON/YAML"),
    apply: bool = typer.Option(False, "--apply", help="Apply the fixes (default: preview only)"),
    fix_type: Optional[List[str]] = typer.Option(None, "--fix-type", help="Restrict to these fix types (repeatable)"),
    confidence: str = typer.Option("medium", "--confidence", help="Minimum confidence: high | medium | low"),
    max_fixes: int = typer.Option(50, "--max-fixes", help="Maximum number of fixes"),
    profile: Optional[str] = typer.Option(None, "--profile", help="Validation profile used to find problems"),
    out: Optional[Path] = typer.Option(None, "--out", help="Write the fixed workflow to this path"),
):
    """
    Validate, then propose (or apply) confidence-scored fixes.
    """
    try:
        config = AutoFixConfig(
            apply_fixes=apply,
            fix_types=[FixType(t) for t in fix_type] if fix_type else None,
            confidence_threshold=FixConfidence(confidence.lower()),
            max_fixes=max_fixes,
        )
    except ValueError as e:
        raise typer.BadParameter(str(e))

    overrides = {"profile": _profile(profile)} if profile else {}
    context = EngineContext.from_env(**overrides)
    workflow = _load_workflow(input)
    validation = WorkflowValidator(context).validate(workflow)
    result = WorkflowAutoFixer(context).generate_fixes(workflow, validation, config=config)

    payload = result.to_dict()
    payload.pop("workflow", None)
    _emit(payload)
    if out is not None and result.workflow is not None:
        write_json(out, result.workflow)
        typer.echo(f"[ok] wrote {out}", err=True)
    if not result.success:
        raise typer.Exit(code=1)


# ---------- versions ----------

def _service(store: Path, max_versions: Optional[int] = None) -> WorkflowVersioningService:
    overrides = {"version_store": JsonFileVersionStore(store)}
    if max_versions is not None:
        overrides["max_versions"] = max_versions
    return WorkflowVersioningService(EngineContext.from_env(**overrides))


_STORE_OPTION = typer.Option(DEFAULT_STORE, "--store", envvar="FLOWGUARD_VERSION_STORE", help="Version store file")


@versions_app.command("backup")
def versions_backup(
    workflow_id: str = typer.Argument(..., help="Workflow id"),
    input: Path = typer.Option(..., "--input", "-i", exists=True, readable=True, help="Workflow snapshot to store"),
    trigger: str = typer.Option("full_update", "--trigger", help=" | ".join(TRIGGERS)),
    max_versions: Optional[int] = typer.Option(None, "--max-versions", help="Retention count"),
    store: Path = _STORE_OPTION,
):
    """Store a snapshot and apply the retention policy."""
    if trigger not in TRIGGERS:
        raise typer.BadParameter(f"Invalid trigger '{trigger}'. Choose one of: {', '.join(TRIGGERS)}")
    result = _service(store, max_versions).create_backup(workflow_id, _load_workflow(input), trigger)
    _emit(result.to_dict())


@versions_app.command("history")
def versions_history(
    workflow_id: str = typer.Argument(..., help="Workflow id"),
    limit: int = typer.Option(10, "--limit", help="Newest N versions"),
    store: Path = _STORE_OPTION,
):
    """List stored versions, newest first."""
    _emit(_service(store).get_version_history(workflow_id, limit))


@versions_app.command("show")
def versions_show(
    version_id: int = typer.Argument(..., help="Version id"),
    out: Optional[Path] = typer.Option(None, "--out", help="Write the snapshot to this path"),
    store: Path = _STORE_OPTION,
):
    """Print one stored version."""
    version = _service(store).get_version(version_id)
    if version is None:
        typer.echo(f"Version {version_id} not found", err=True)
        raise typer.Exit(code=1)
    _emit(version.to_dict())
    if out is not None:
        write_json(out, version.snapshot)


@versions_app.command("compare")
def versions_compare(
    version_id1: int = typer.Argument(...),
    version_id2: int = typer.Argument(...),
    store: Path = _STORE_OPTION,
):
    """Node, connection and settings differences between two versions."""
    try:
        _emit(_service(store).compare_versions(version_id1, version_id2))
    except VersionStoreError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=1)


@versions_app.command("prune")
def versions_prune(
    workflow_id: str = typer.Argument(..., help="Workflow id"),
    keep: int = typer.Option(10, "--keep", help="Versions to keep"),
    store: Path = _STORE_OPTION,
):
    """Delete all but the newest versions of a workflow."""
    _emit(_service(store).prune_versions(workflow_id, keep))


@versions_app.command("delete")
def versions_delete(
    workflow_id: Optional[str] = typer.Option(None, "--workflow", help="Delete every version of this workflow"),
    version_id: Optional[int] = typer.Option(None, "--version", help="Delete one version"),
    store: Path = _STORE_OPTION,
):
    """Delete one version, or all versions of a workflow."""
    if (workflow_id is None) == (version_id is None):
        raise typer.BadParameter("Pass exactly one of --workflow or --version")
    service = _service(store)
    if version_id is not None:
        result = service.delete_version(version_id)
        _emit(result)
        if not result["success"]:
            raise typer.Exit(code=1)
    else:
        _emit(service.delete_all_versions(workflow_id))


@versions_app.command("stats")
def versions_stats(store: Path = _STORE_OPTION):
    """Storage totals per workflow."""
    _emit(_service(store).get_storage_stats())


if __name__ == "__main__":
    app()
