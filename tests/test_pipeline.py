# tests/test_pipeline.py
import textwrap

import pytest

from pipegate.credentials import SecretStore
from pipegate.dsl import job, matrix, pipeline, sh, version_step
from pipegate.errors import CredentialScopeError, WorkflowLoadError
from pipegate.model import ExecutionStatus, JobSpec, SkipReason
from pipegate.pipeline import Pipeline, load_workflow, run_pipeline
from pipegate.trigger import on_push


def release(tag_filter=("v*",)):
    return pipeline(
        "publish",
        job("version", version_step("Check version", "cargo metadata")),
        job("check", sh("Build", "b"), sh("Test", "t"), matrix=matrix(os=["ubuntu", "macos", "windows"])),
        job("publish", sh("Publish", "p"), needs=["version", "check"], gate=True, secret="TOKEN"),
        on=on_push(tags=list(tag_filter)),
    )


def test_release_publishes_once_when_version_and_checks_pass(make_scheduler, fake, tag_push, console):
    fake.results[("version", "Check version")] = (0, "1.2.0\n")
    result = run_pipeline(
        release(), tag_push, scheduler=make_scheduler(fake), secrets=SecretStore({"TOKEN": "t"}), console=console
    )

    assert result.success
    assert fake.ran("publish") == ["publish"]
    assert len(result.instances) == 5
    assert [d.admitted for d in result.gate_decisions] == [True]


def test_version_mismatch_blocks_publish(make_scheduler, fake, tag_push, console):
    fake.results[("version", "Check version")] = (0, "1.1.9\n")
    result = run_pipeline(
        release(), tag_push, scheduler=make_scheduler(fake), secrets=SecretStore({"TOKEN": "t"}), console=console
    )

    assert not result.success
    version = next(r for r in result.instances if r.job == "version")
    publish = next(r for r in result.instances if r.job == "publish")
    assert version.status is ExecutionStatus.FAILED
    assert version.error["kind"] == "VersionMismatch"
    assert publish.status is ExecutionStatus.SKIPPED
    assert publish.skip_reason is SkipReason.UPSTREAM_FAILED
    # checks are unrelated to the version job and still ran
    assert len(fake.ran("check")) == 3


def test_not_triggered_pipeline_runs_nothing(make_scheduler, fake, branch_push, console):
    result = run_pipeline(release(), branch_push, scheduler=make_scheduler(fake), console=console)

    assert result.success
    assert not result.triggered
    assert fake.calls == []


def test_trigger_is_checked_before_structure(make_scheduler, fake, branch_push, console):
    broken = pipeline("p", job("a", sh("s", "x"), needs=["ghost"]), on=on_push(tags=["v*"]))
    assert not run_pipeline(broken, branch_push, scheduler=make_scheduler(fake), console=console).triggered


def test_secret_on_ungated_job_is_rejected():
    with pytest.raises(CredentialScopeError):
        job("check", sh("s", "x"), secret="TOKEN")

    hand_built = Pipeline("p", (JobSpec("check", (sh("s", "x"),), secret="TOKEN"),))
    with pytest.raises(CredentialScopeError):
        hand_built.validate()


def test_secret_names_are_collected_from_jobs():
    assert release().secret_names() == ["TOKEN"]


def write(tmp_path, body):
    path = tmp_path / "my_workflow.py"
    path.write_text(textwrap.dedent(body))
    return path


def test_load_pipeline_variable(tmp_path):
    path = write(tmp_path, """
        from pipegate import job, pipeline, sh, on_push
        PIPELINE = pipeline("rel", job("a", sh("s", "true")), on=on_push(tags=["v*"]))
    """)
    pipe = load_workflow(path)
    assert pipe.name == "rel"
    assert [j.name for j in pipe.jobs] == ["a"]


def test_load_workflow_function_returning_jobs(tmp_path):
    path = write(tmp_path, """
        from pipegate import job, sh, wf
        def workflow():
            return wf(job("a", sh("s", "true")), job("b", sh("s", "true"), needs=["a"]))
    """)
    pipe = load_workflow(path)
    assert pipe.name == "my_workflow"
    assert [j.name for j in pipe.jobs] == ["a", "b"]


def test_load_jobs_list(tmp_path):
    path = write(tmp_path, """
        from pipegate import job, sh
        JOBS = [job("a", sh("s", "true"))]
    """)
    assert len(load_workflow(path).jobs) == 1


def test_load_rejects_files_without_jobs(tmp_path):
    path = write(tmp_path, "X = 1\n")
    with pytest.raises(WorkflowLoadError):
        load_workflow(path)


def test_load_missing_file(tmp_path):
    with pytest.raises(WorkflowLoadError):
        load_workflow(tmp_path / "nope.py")


def test_default_workflow_file_loads():
    from pathlib import Path

    root = Path(__file__).resolve().parents[1]
    pipe = load_workflow(root / "pipegate_workflow.py")
    dag = pipe.validate()
    assert dag.levels() == [["check", "version"], ["publish"]]
    assert pipe.secret_names() == ["CARGO_REGISTRY_TOKEN"]
