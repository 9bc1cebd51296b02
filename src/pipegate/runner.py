# runner.py
from __future__ import annotations

import os
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, Optional, Tuple

from .credentials import Credential
from .errors import CIError, CredentialScopeError, MissingCredential, StepCancelled, StepFailure
from .gate import check_version
from .model import ExecutionStatus, InstanceOutcome, JobInstance, Step, StepResult
from .trigger import Trigger
from .ui.console import Console, get_console

OUTPUT_TAIL = 4000  # keep the end of the output; that's where failures are


@dataclass(frozen=True)
class StepContext:
    """Everything an executor may look at for one step."""
    instance: JobInstance
    step: Step
    env: Dict[str, str]
    cwd: Path
    cancel: threading.Event


# An executor runs one step and returns (exit_code, captured_output).
StepExecutor = Callable[[StepContext], Tuple[int, str]]


class ShellExecutor:
    """
    Runs `step.run` through the local shell.

    Output is stdout; stderr is appended only when the step fails.
    """

    def __init__(self, poll_interval: float = 0.1, kill_after: float = 5.0):
        self.poll_interval = poll_interval
        self.kill_after = kill_after

    def __call__(self, ctx: StepContext) -> Tuple[int, str]:
        if not ctx.cwd.exists():
            raise FileNotFoundError(f"[{ctx.instance.label}] step '{ctx.step.name}' cwd not found: {ctx.cwd}")

        proc = subprocess.Popen(
            ctx.step.run,
            shell=True,
            cwd=str(ctx.cwd),
            env=ctx.env,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )

        while True:
            try:
                out, err = proc.communicate(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                if ctx.cancel.is_set():
                    self._stop(proc)
                    raise StepCancelled(job=ctx.instance.label, step=ctx.step.name)

        output = out or ""
        if proc.returncode != 0 and err:
            output += err
        return proc.returncode, output[-OUTPUT_TAIL:]

    def _stop(self, proc: subprocess.Popen) -> None:
        proc.terminate()
        try:
            proc.communicate(timeout=self.kill_after)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.communicate()


def matrix_env(instance: JobInstance) -> Dict[str, str]:
    """os=ubuntu-latest -> MATRIX_OS=ubuntu-latest"""
    return {f"MATRIX_{axis.upper().replace('-', '_')}": str(value) for axis, value in instance.assignment}


class Runner:
    """
    Executes one JobInstance's steps in order, stopping at the first
    failing step. The only component that touches the outside world.

    The value of `target_axis` in the instance's matrix assignment picks
    the executor (e.g. os=windows-latest -> executors["windows-latest"]);
    anything unmapped runs on `default`.
    """

    def __init__(
        self,
        executors: Optional[Mapping[str, StepExecutor]] = None,
        *,
        default: Optional[StepExecutor] = None,
        target_axis: str = "os",
        repo_root: str | Path = ".",
        base_env: Optional[Mapping[str, str]] = None,
        scrub: Iterable[str] = (),
        console: Optional[Console] = None,
    ):
        self.executors = dict(executors or {})
        self.default = default or ShellExecutor()
        self.target_axis = target_axis
        self.repo_root = Path(repo_root).resolve()
        self.scrub = set(scrub)
        self.console = console

        # Declared secret names never leak in from the coordinator's environment.
        env = dict(os.environ if base_env is None else base_env)
        for name in self.scrub:
            env.pop(name, None)
        self.base_env = env

    def executor_for(self, instance: JobInstance) -> StepExecutor:
        target = instance.matrix.get(self.target_axis)
        if target is not None and str(target) in self.executors:
            return self.executors[str(target)]
        return self.default

    def build_env(
        self,
        instance: JobInstance,
        step: Step,
        trigger: Trigger,
        credential: Optional[Credential],
    ) -> Dict[str, str]:
        env = dict(self.base_env)
        env.update(instance.spec.env)
        env.update(step.env)
        env.update(matrix_env(instance))
        env.update({
            "PIPEGATE_JOB": instance.name,
            "PIPEGATE_INSTANCE": instance.label,
            "PIPEGATE_EVENT": trigger.event,
            "PIPEGATE_REF_TYPE": trigger.ref_type,
            "PIPEGATE_REF_NAME": trigger.ref_name,
        })
        if credential is not None and instance.spec.secret:
            env[instance.spec.secret] = credential.reveal()
        return env

    def run(
        self,
        instance: JobInstance,
        *,
        trigger: Trigger,
        credential: Optional[Credential] = None,
        cancel: Optional[threading.Event] = None,
    ) -> InstanceOutcome:
        spec = instance.spec
        console = self.console or get_console()
        cancel = cancel or threading.Event()

        if credential is not None and not spec.gate_required:
            raise CredentialScopeError(spec.name, credential.name)

        outcome = InstanceOutcome(instance=instance, status=ExecutionStatus.RUNNING)

        if spec.gate_required and spec.secret and credential is None:
            return self._fail(outcome, MissingCredential(instance.label, spec.secret), step=None)

        executor = self.executor_for(instance)

        for step in spec.steps:
            if cancel.is_set():
                return self._fail(outcome, StepCancelled(instance.label, step.name), step=step.name)

            console.print_step(instance.label, step.name)
            result = self._run_step(executor, instance, step, trigger, credential, cancel)
            outcome.steps.append(result)

            if not result.ok:
                return self._fail(outcome, result.error, step=step.name)

        outcome.status = ExecutionStatus.SUCCEEDED
        return outcome

    # ------------------------------------------------------------------

    def _run_step(
        self,
        executor: StepExecutor,
        instance: JobInstance,
        step: Step,
        trigger: Trigger,
        credential: Optional[Credential],
        cancel: threading.Event,
    ) -> StepResult:
        ctx = StepContext(
            instance=instance,
            step=step,
            env=self.build_env(instance, step, trigger, credential),
            cwd=(self.repo_root / (step.cwd or ".")).resolve(),
            cancel=cancel,
        )

        started = time.monotonic()
        try:
            exit_code, output = executor(ctx)
        except StepCancelled as e:
            return StepResult(step.name, exit_code=-1, duration=time.monotonic() - started, error=e)
        except FileNotFoundError as e:
            exit_code, output = 127, str(e)
        except PermissionError as e:
            exit_code, output = 126, str(e)
        duration = time.monotonic() - started

        if credential is not None:
            output = credential.mask(output)

        error: CIError | None = None
        if exit_code != 0:
            error = StepFailure(instance.label, step.name, step.run, exit_code, output)
        elif step.is_version_check:
            try:
                check_version(
                    output,
                    trigger.ref_name,
                    prefix=step.version_prefix or "",
                    job=instance.label,
                    step=step.name,
                )
            except CIError as e:
                error = e

        return StepResult(step.name, exit_code=exit_code, output=output, duration=duration, error=error)

    def _fail(self, outcome: InstanceOutcome, error: CIError | None, step: str | None) -> InstanceOutcome:
        outcome.status = ExecutionStatus.FAILED
        outcome.failed_step = step
        outcome.error = error
        return outcome
