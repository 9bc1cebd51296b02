# tests/test_runner.py
import sys
import threading

import pytest

from pipegate.credentials import Credential
from pipegate.dsl import job, matrix, sh, version_step
from pipegate.errors import CredentialScopeError, MissingCredential, StepCancelled, StepFailure, VersionMismatch
from pipegate.matrix import expand_matrix
from pipegate.model import ExecutionStatus
from pipegate.runner import Runner, ShellExecutor


def one(spec):
    return expand_matrix(spec)[0]


def test_steps_run_in_order_and_all_succeed(make_runner, fake, branch_push):
    spec = job("check", sh("Build", "b"), sh("Format", "f"), sh("Test", "t"))
    outcome = make_runner(fake).run(one(spec), trigger=branch_push)

    assert outcome.status is ExecutionStatus.SUCCEEDED
    assert fake.steps_of("check") == ["Build", "Format", "Test"]
    assert [s.step for s in outcome.steps] == ["Build", "Format", "Test"]
    assert outcome.failed_step is None


def test_first_failing_step_stops_the_instance(make_runner, fake, branch_push):
    fake.results[("check", "Format")] = (1, "diff in src/main.rs")
    spec = job("check", sh("Build", "b"), sh("Format", "f"), sh("Test", "t"))

    outcome = make_runner(fake).run(one(spec), trigger=branch_push)

    assert outcome.status is ExecutionStatus.FAILED
    assert outcome.failed_step == "Format"
    assert fake.steps_of("check") == ["Build", "Format"]
    assert isinstance(outcome.error, StepFailure)
    assert outcome.error.exit_code == 1
    assert outcome.steps[-1].output == "diff in src/main.rs"


def test_matrix_assignment_reaches_the_step_env(make_runner, fake, branch_push):
    spec = job("check", sh("Build", "b"), matrix=matrix(os=["macos-latest"], toolchain=["stable"]))
    make_runner(fake).run(one(spec), trigger=branch_push)

    env = fake.calls[0].env
    assert env["MATRIX_OS"] == "macos-latest"
    assert env["MATRIX_TOOLCHAIN"] == "stable"
    assert env["PIPEGATE_JOB"] == "check"
    assert env["PIPEGATE_REF_NAME"] == "master"


def test_os_axis_selects_the_executor(make_runner, fake, branch_push):
    windows = type(fake)()
    spec = job("check", sh("Build", "b"), matrix=matrix(os=["ubuntu-latest", "windows-latest"]))
    runner = make_runner(fake, executors={"windows-latest": windows})

    for inst in expand_matrix(spec):
        runner.run(inst, trigger=branch_push)

    assert fake.ran("check") == ["check (os=ubuntu-latest)"]
    assert windows.ran("check") == ["check (os=windows-latest)"]


def test_credential_is_injected_only_under_declared_name(make_runner, fake, tag_push):
    fake.results[("publish", "Publish")] = lambda ctx: (0, "uploading with " + ctx.env["REGISTRY_TOKEN"])
    spec = job("publish", sh("Publish", "p"), gate=True, secret="REGISTRY_TOKEN")

    outcome = make_runner(fake).run(one(spec), trigger=tag_push, credential=Credential("REGISTRY_TOKEN", "s3cr3t"))

    assert outcome.status is ExecutionStatus.SUCCEEDED
    assert fake.calls[0].env["REGISTRY_TOKEN"] == "s3cr3t"
    assert outcome.steps[0].output == "uploading with ***"


def test_declared_secrets_are_scrubbed_from_inherited_env(make_runner, fake, branch_push):
    runner = make_runner(fake, base_env={"REGISTRY_TOKEN": "leaked", "HOME": "/home/ci"}, scrub=["REGISTRY_TOKEN"])
    runner.run(one(job("check", sh("Build", "b"))), trigger=branch_push)

    env = fake.calls[0].env
    assert "REGISTRY_TOKEN" not in env
    assert env["HOME"] == "/home/ci"


def test_non_gated_instance_refuses_a_credential(make_runner, fake, branch_push):
    with pytest.raises(CredentialScopeError):
        make_runner(fake).run(
            one(job("check", sh("Build", "b"))),
            trigger=branch_push,
            credential=Credential("REGISTRY_TOKEN", "x"),
        )
    assert fake.calls == []


def test_gated_instance_without_its_credential_fails_before_any_step(make_runner, fake, tag_push):
    spec = job("publish", sh("Publish", "p"), gate=True, secret="REGISTRY_TOKEN")
    outcome = make_runner(fake).run(one(spec), trigger=tag_push)

    assert outcome.status is ExecutionStatus.FAILED
    assert isinstance(outcome.error, MissingCredential)
    assert fake.calls == []


def test_version_step_matching_tag_succeeds(make_runner, fake, tag_push):
    fake.results[("version", "Check version")] = (0, "1.2.0\n")
    spec = job("version", version_step("Check version", "cargo metadata"))

    outcome = make_runner(fake).run(one(spec), trigger=tag_push)
    assert outcome.status is ExecutionStatus.SUCCEEDED


def test_version_step_mismatch_fails_the_instance(make_runner, fake, tag_push):
    fake.results[("version", "Check version")] = (0, "1.3.0\n")
    spec = job("version", version_step("Check version", "cargo metadata"), sh("After", "a"))

    outcome = make_runner(fake).run(one(spec), trigger=tag_push)

    assert outcome.status is ExecutionStatus.FAILED
    assert outcome.failed_step == "Check version"
    assert isinstance(outcome.error, VersionMismatch)
    assert outcome.error.actual == "v1.3.0"
    assert fake.steps_of("version") == ["Check version"]


def test_missing_cwd_is_a_step_failure(make_runner, tmp_path, branch_push):
    runner = make_runner(ShellExecutor(), repo_root=tmp_path)
    outcome = runner.run(one(job("check", sh("Build", "true", cwd="nope"))), trigger=branch_push)

    assert outcome.status is ExecutionStatus.FAILED
    assert outcome.steps[0].exit_code == 127


def test_shell_executor_captures_output_and_exit_code(make_runner, tmp_path, branch_push):
    py = sys.executable
    spec = job(
        "check",
        sh("Echo", f'"{py}" -c "import os; print(os.environ[\'MATRIX_OS\'])"'),
        sh("Fail", f'"{py}" -c "import sys; sys.exit(3)"'),
        matrix=matrix(os=["linux"]),
    )
    runner = make_runner(ShellExecutor(), repo_root=tmp_path, base_env={"PATH": ""})

    outcome = runner.run(one(spec), trigger=branch_push)

    assert outcome.steps[0].output.strip() == "linux"
    assert outcome.status is ExecutionStatus.FAILED
    assert outcome.failed_step == "Fail"
    assert outcome.steps[1].exit_code == 3


def test_version_step_ignores_stderr_noise(make_runner, tmp_path, tag_push):
    spec = job("version", version_step("Check version", "echo 1.2.0; echo 'warning: something' >&2"))
    runner = make_runner(ShellExecutor(), repo_root=tmp_path)

    outcome = runner.run(one(spec), trigger=tag_push)

    assert outcome.status is ExecutionStatus.SUCCEEDED
    assert outcome.steps[0].output.strip() == "1.2.0"


def test_shell_executor_keeps_stderr_for_failures(make_runner, tmp_path, branch_push):
    runner = make_runner(ShellExecutor(), repo_root=tmp_path)
    outcome = runner.run(one(job("check", sh("Build", "echo building; echo 'error: boom' >&2; exit 2"))), trigger=branch_push)

    assert outcome.status is ExecutionStatus.FAILED
    assert "building" in outcome.steps[0].output
    assert "error: boom" in outcome.steps[0].output


def test_cancelled_before_a_step_stops_the_instance(make_runner, fake, branch_push):
    cancel = threading.Event()
    cancel.set()
    outcome = make_runner(fake).run(one(job("check", sh("Build", "b"))), trigger=branch_push, cancel=cancel)

    assert outcome.status is ExecutionStatus.FAILED
    assert isinstance(outcome.error, StepCancelled)
    assert fake.calls == []


def test_runner_defaults_to_shell_executor():
    runner = Runner(base_env={})
    assert isinstance(runner.default, ShellExecutor)
