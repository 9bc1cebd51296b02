from .dsl import job, sh, version_step, matrix, wf, pipeline, JobBuilder, build
from .trigger import Trigger, on_push, on_pull_request
from .pipeline import Pipeline, load_workflow, run_pipeline
from .model import JobSpec, JobInstance, Step, ExecutionStatus, SkipReason
from .result import PipelineResult

__all__ = [
    "job", "sh", "version_step", "matrix", "wf", "pipeline", "JobBuilder", "build",
    "Trigger", "on_push", "on_pull_request",
    "Pipeline", "load_workflow", "run_pipeline",
    "JobSpec", "JobInstance", "Step", "ExecutionStatus", "SkipReason",
    "PipelineResult",
]
