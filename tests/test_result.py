# tests/test_result.py
import json

from pipegate.dsl import job, matrix, sh
from pipegate.errors import StepFailure, VersionMismatch
from pipegate.matrix import expand_matrix
from pipegate.model import ExecutionStatus, InstanceRecord, SkipReason, StepResult
from pipegate.result import EXIT_CANCELLED, EXIT_FAILED, EXIT_OK, aggregate, not_triggered

S = ExecutionStatus


def rec(spec, status, *, reason=None, index=0):
    r = InstanceRecord(expand_matrix(spec)[index])
    r.status = status
    r.skip_reason = reason
    return r


CHECK = job("check", sh("Build", "b"), matrix=matrix(os=["a", "b"]))
PUBLISH = job("publish", sh("Publish", "p"), needs=["check"], gate=True)
DOCS = job("docs", sh("Docs", "d"), needs=["check"])


def test_all_succeeded_is_success():
    result = aggregate([rec(CHECK, S.SUCCEEDED), rec(CHECK, S.SUCCEEDED, index=1), rec(PUBLISH, S.SUCCEEDED)])
    assert result.success
    assert result.exit_code == EXIT_OK
    assert result.counts() == {"succeeded": 3, "failed": 0, "skipped": 0}


def test_any_failure_fails_the_pipeline():
    failed = rec(CHECK, S.FAILED, index=1)
    failed.failed_step = "Build"
    failed.steps = [StepResult("Build", 2, error=StepFailure("check (os=b)", "Build", "b", 2))]
    failed.error = failed.steps[0].error

    result = aggregate([rec(CHECK, S.SUCCEEDED), failed, rec(PUBLISH, S.SKIPPED, reason=SkipReason.UPSTREAM_FAILED)])

    assert not result.success
    assert result.exit_code == EXIT_FAILED
    row = result.by_status(S.FAILED)[0]
    assert (row.job, row.matrix, row.failed_step, row.exit_code) == ("check", (("os", "b"),), "Build", 2)
    assert row.error["kind"] == "StepFailure"


def test_version_mismatch_reports_no_exit_code():
    version = rec(job("version", sh("Check version", "v")), S.FAILED)
    version.failed_step = "Check version"
    version.error = VersionMismatch("version", "Check version", "v1.3.0", "v1.2.0")
    version.steps = [StepResult("Check version", 0, output="1.2.0\n", error=version.error)]

    row = aggregate([version]).instances[0]

    assert row.failed_step == "Check version"
    assert row.exit_code is None
    assert row.error["kind"] == "VersionMismatch"


def test_gated_instance_skipped_by_upstream_is_a_failure_on_its_own():
    result = aggregate([rec(PUBLISH, S.SKIPPED, reason=SkipReason.UPSTREAM_FAILED)])
    assert not result.success


def test_gate_denial_is_a_failure():
    assert not aggregate([rec(PUBLISH, S.SKIPPED, reason=SkipReason.GATE_DENIED)]).success


def test_cancelled_run_is_not_success_but_skips_are_not_failures():
    result = aggregate([rec(DOCS, S.SKIPPED, reason=SkipReason.CANCELLED_UPSTREAM)], cancelled=True)
    assert not result.success
    assert result.exit_code == EXIT_CANCELLED
    assert result.by_status(S.FAILED) == []


def test_unfinished_instances_are_not_success():
    assert not aggregate([rec(CHECK, S.RUNNING)]).success


def test_aggregation_is_idempotent():
    records = [
        rec(CHECK, S.SUCCEEDED),
        rec(CHECK, S.FAILED, index=1),
        rec(DOCS, S.SKIPPED, reason=SkipReason.UPSTREAM_FAILED),
        rec(PUBLISH, S.SKIPPED, reason=SkipReason.UPSTREAM_FAILED),
    ]
    first = aggregate(records, pipeline="publish")
    second = aggregate(records, pipeline="publish")
    assert first == second
    assert first.to_dict() == second.to_dict()


def test_report_is_json_serializable():
    result = aggregate([rec(CHECK, S.SUCCEEDED), rec(DOCS, S.SKIPPED, reason=SkipReason.UPSTREAM_FAILED)], pipeline="ci")
    data = json.loads(result.to_json())

    assert data["pipeline"] == "ci"
    assert data["instances"][0] == {
        "job": "check",
        "matrix": {"os": "a"},
        "status": "succeeded",
        "gate_required": False,
        "skip_reason": None,
        "failed_step": None,
        "exit_code": None,
        "error": None,
        "duration": None,
    }
    assert data["instances"][1]["skip_reason"] == "upstream_failed"


def test_not_triggered_result_succeeds_with_no_instances():
    result = not_triggered("publish")
    assert result.success and not result.triggered
    assert result.instances == ()
    assert result.exit_code == EXIT_OK
