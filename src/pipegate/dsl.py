# src/pipegate/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional

from .errors import CredentialScopeError
from .model import JobSpec, Step
from .pipeline import Pipeline
from .trigger import ALWAYS, TriggerFilter


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None, env: Optional[Dict[str, str]] = None) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd, env=dict(env or {}))


def version_step(name: str, cmd: str, *, prefix: str = "v", cwd: str | None = None) -> Step:
    """
    Create a version-check step. `cmd` prints the project version; the run
    fails unless prefix + version equals the trigger ref (e.g. tag v1.2.0).
    """
    return Step(name=name, run=cmd, cwd=cwd, version_prefix=prefix)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

def matrix(**axes: Iterable[Any]) -> Dict[str, tuple]:
    """
    Ordered matrix axes:

        matrix(os=["ubuntu-latest", "macos-latest"], toolchain=["stable"])
    """
    return {k: tuple(v) for k, v in axes.items()}


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    needs: Optional[List[str]] = None,
    matrix: Optional[Dict[str, Iterable[Any]]] = None,
    gate: bool = False,
    secret: str | None = None,
    env: Optional[Dict[str, str]] = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> JobSpec:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    if secret and not gate:
        raise CredentialScopeError(name, secret)

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return JobSpec(
        name=name,
        steps=tuple(steps_final),
        needs=tuple(needs or ()),
        matrix={k: tuple(v) for k, v in (matrix or {}).items()},
        env={k: str(v) for k, v in (env or {}).items()},
        gate_required=gate,
        secret=secret,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._env: dict[str, str] = {}
        self._matrix: dict[str, tuple] = {}
        self._gate: bool = False
        self._secret: str | None = None

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None):
        self._steps.append(Step(name=name, run=run, cwd=cwd))
        return self

    def check_version(self, name: str, run: str, *, prefix: str = "v"):
        self._steps.append(version_step(name, run, prefix=prefix))
        return self

    def with_env(self, **env):
        # force values to str for env compatibility
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def with_matrix(self, axis: str, values: Iterable[Any]):
        self._matrix[axis] = tuple(values)
        return self

    def gated(self, *, secret: str | None = None):
        self._gate = True
        self._secret = secret
        return self

    def build(self) -> JobSpec:
        if not self._steps:
            raise ValueError(f"Job '{self.name}' has no steps")
        return job(
            self.name,
            steps_list=self._steps,
            needs=self._needs,
            matrix=self._matrix,
            gate=self._gate,
            secret=self._secret,
            env=self._env,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Workflow helpers (single-file story)
# ---------------------------------------------------------------------

def wf(*jobs: JobSpec) -> List[JobSpec]:
    """
    Workflow definition helper:

        from pipegate import wf, job, sh

        def workflow():
            return wf(
                job(...),
                job(...),
            )

    Or use JOBS directly:
        JOBS = wf(job(...), job(...))
    """
    return list(jobs)


def pipeline(
    name: str,
    *jobs: JobSpec,
    on: TriggerFilter | None = None,
    env: Optional[Dict[str, str]] = None,
) -> Pipeline:
    """
    A named pipeline with a trigger filter:

        PIPELINE = pipeline("publish", job(...), on=on_push(tags=["v*"]))
    """
    return Pipeline(
        name=name,
        jobs=tuple(jobs),
        on=on or ALWAYS,
        env={k: str(v) for k, v in (env or {}).items()},
    )
