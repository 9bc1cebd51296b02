# pipeline.py
from __future__ import annotations

import os
import runpy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from .config import RunConfig
from .credentials import SecretStore
from .dag import Dag, build_dag
from .errors import CredentialScopeError, WorkflowLoadError
from .matrix import expand_all
from .model import JobInstance, JobSpec
from .result import PipelineResult, aggregate, not_triggered
from .runner import Runner, StepExecutor
from .scheduler import Scheduler
from .trigger import ALWAYS, Trigger, TriggerFilter
from .ui.console import Console, get_console


@dataclass(frozen=True)
class Pipeline:
    """A named set of jobs plus the trigger filter deciding whether it runs."""
    name: str
    jobs: Tuple[JobSpec, ...]
    on: TriggerFilter = ALWAYS
    env: Dict[str, str] = field(default_factory=dict, hash=False)

    def validate(self) -> Dag:
        """Structural checks only; raises a StructuralError subclass."""
        for j in self.jobs:
            if j.secret and not j.gate_required:
                raise CredentialScopeError(j.name, j.secret)
        return build_dag(self.jobs)

    def secret_names(self) -> List[str]:
        return sorted({j.secret for j in self.jobs if j.secret})

    def instances(self) -> Dict[str, List[JobInstance]]:
        return expand_all(self.jobs)


# ----------------------------------------------------------------------
# Workflow loading (local file)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> Pipeline:
    """
    Load a pipeline from a python file path.

    The file must define one of:
      - PIPELINE = pipeline(...)
      - workflow() -> Pipeline | List[JobSpec]
      - JOBS = [JobSpec, ...]

    A bare job list becomes a pipeline named after the file that runs on
    every trigger.
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise WorkflowLoadError(f"Workflow file not found: {wf_path}", str(wf_path))
    if wf_path.suffix != ".py":
        raise WorkflowLoadError(f"Workflow must be a .py file, got: {wf_path.name}", str(wf_path))

    module_name = f"pipegate_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    found = None
    if "PIPELINE" in globals_dict:
        found = globals_dict["PIPELINE"]
    elif "workflow" in globals_dict and callable(globals_dict["workflow"]):
        found = globals_dict["workflow"]()
    elif "JOBS" in globals_dict:
        found = globals_dict["JOBS"]

    if isinstance(found, Pipeline):
        return found
    if isinstance(found, list) and all(isinstance(j, JobSpec) for j in found):
        return Pipeline(name=wf_path.stem, jobs=tuple(found))

    raise WorkflowLoadError(
        "Workflow must define PIPELINE = pipeline(...), workflow() -> Pipeline | List[JobSpec], "
        "or JOBS = [JobSpec, ...].",
        str(wf_path),
    )


# ----------------------------------------------------------------------
# Running
# ----------------------------------------------------------------------

def make_scheduler(
    pipeline: Pipeline,
    config: RunConfig,
    *,
    executors: Optional[Mapping[str, StepExecutor]] = None,
    default_executor: Optional[StepExecutor] = None,
    console: Optional[Console] = None,
) -> Scheduler:
    base_env = dict(os.environ)
    base_env.update(pipeline.env)
    runner = Runner(
        executors,
        default=default_executor,
        target_axis=config.target_axis,
        repo_root=config.repo_root,
        base_env=base_env,
        scrub=pipeline.secret_names(),
        console=console,
    )
    return Scheduler(runner, max_workers=config.max_workers, fail_fast=config.fail_fast, console=console)


def run_pipeline(
    pipeline: Pipeline,
    trigger: Trigger,
    *,
    config: Optional[RunConfig] = None,
    secrets: Optional[SecretStore] = None,
    scheduler: Optional[Scheduler] = None,
    console: Optional[Console] = None,
    workflow: str = "-",
) -> PipelineResult:
    """
    One pipeline run:
      1. trigger filter (pure predicate, before anything else)
      2. structural validation (raises; nothing has been dispatched)
      3. scheduling + execution
      4. aggregation
    """
    console = console or get_console()
    config = config or RunConfig()

    if not pipeline.on.matches(trigger):
        console.print_not_triggered(pipeline.name, trigger, pipeline.on.describe())
        return not_triggered(pipeline.name)

    dag = pipeline.validate()
    console.print_run_started(
        pipeline=pipeline.name,
        workflow=workflow,
        trigger=trigger,
        job_count=len(dag.jobs),
        instance_count=sum(len(v) for v in pipeline.instances().values()),
    )

    if secrets is None:
        secrets = SecretStore.from_env(pipeline.secret_names())
    scheduler = scheduler or make_scheduler(pipeline, config, console=console)

    state = scheduler.run(dag, trigger=trigger, secrets=secrets)

    return aggregate(
        state.records.values(),
        pipeline=pipeline.name,
        cancelled=state.cancelled,
        empty_jobs=state.empty_jobs,
        gate_decisions=state.gate.decisions,
    )
