import json
from pathlib import Path

import pytest

from flowguard.validator import WorkflowValidator

BENCH = Path(__file__).resolve().parent.parent / "bench" / "validation"


def _messages(diagnostics):
    return [d["message"] for d in diagnostics]


@pytest.mark.parametrize("case_dir", sorted(BENCH.glob("V*")), ids=lambda p: p.name)
def test_validation_bench(case_dir: Path):
    """
    Validation benchmark:
    - load workflow.json
    - load expect.json
    - run WorkflowValidator.validate
    - check coarse-grained properties (validity, counts, message fragments, statistics)
    """
    wf_file = case_dir / "workflow.json"
    exp_file = case_dir / "expect.json"

    assert wf_file.exists(), f"Missing workflow.json in {case_dir}"
    assert exp_file.exists(), f"Missing expect.json in {case_dir}"

    with wf_file.open("r", encoding="utf-8") as f:
        workflow = json.load(f)

    with exp_file.open("r", encoding="utf-8") as f:
        expect = json.load(f)

    report = WorkflowValidator().validate(workflow).to_dict()
    asserts = (expect.get("assert") or {})
    errors = _messages(report["errors"])
    warnings = _messages(report["warnings"])

    # ---- valid ----
    if "valid" in asserts:
        got = report["valid"]
        assert got == asserts["valid"], f"{case_dir.name}: valid={got}, expected={asserts['valid']}; errors={errors}"

    # ---- errors (exact count) ----
    if "errors" in asserts:
        assert len(errors) == asserts["errors"], f"{case_dir.name}: errors={errors}"

    # ---- message fragments ----
    for fragment in asserts.get("error_contains", []):
        assert any(fragment in m for m in errors), f"{case_dir.name}: no error contains {fragment!r}; got {errors}"

    for fragment in asserts.get("no_error_contains", []):
        assert not any(fragment in m for m in errors), f"{case_dir.name}: unexpected error {fragment!r}; got {errors}"

    for fragment in asserts.get("warning_contains", []):
        assert any(fragment in m for m in warnings), f"{case_dir.name}: no warning contains {fragment!r}"

    for fragment in asserts.get("suggestion_contains", []):
        assert any(fragment in s for s in report["suggestions"]), f"{case_dir.name}: no suggestion {fragment!r}"

    # ---- statistics ----
    for key, expected in (asserts.get("statistics") or {}).items():
        got = report["statistics"][key]
        assert got == expected, f"{case_dir.name}: statistics.{key}={got}, expected={expected}"
