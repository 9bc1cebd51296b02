# result.py
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import StepFailure
from .gate import GateDecision
from .model import ExecutionStatus, InstanceRecord, SkipReason

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_STRUCTURAL = 2
EXIT_CANCELLED = 130


@dataclass(frozen=True)
class InstanceReport:
    """Audit-trail row for one instance."""
    job: str
    matrix: Tuple[Tuple[str, Any], ...]
    status: ExecutionStatus
    gate_required: bool = False
    skip_reason: Optional[SkipReason] = None
    failed_step: Optional[str] = None
    exit_code: Optional[int] = None
    error: Optional[Dict[str, Any]] = None
    duration: Optional[float] = None

    @property
    def label(self) -> str:
        if not self.matrix:
            return self.job
        return f"{self.job} (" + ", ".join(f"{k}={v}" for k, v in self.matrix) + ")"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job": self.job,
            "matrix": {k: v for k, v in self.matrix},
            "status": self.status.value,
            "gate_required": self.gate_required,
            "skip_reason": self.skip_reason.value if self.skip_reason else None,
            "failed_step": self.failed_step,
            "exit_code": self.exit_code,
            "error": self.error,
            "duration": round(self.duration, 3) if self.duration is not None else None,
        }


@dataclass(frozen=True)
class PipelineResult:
    pipeline: str
    success: bool
    instances: Tuple[InstanceReport, ...] = ()
    triggered: bool = True
    cancelled: bool = False
    empty_jobs: Tuple[str, ...] = ()
    gate_decisions: Tuple[GateDecision, ...] = ()

    @property
    def exit_code(self) -> int:
        if self.success:
            return EXIT_OK
        if self.cancelled:
            return EXIT_CANCELLED
        return EXIT_FAILED

    def counts(self) -> Dict[str, int]:
        out = {s.value: 0 for s in (ExecutionStatus.SUCCEEDED, ExecutionStatus.FAILED, ExecutionStatus.SKIPPED)}
        for r in self.instances:
            out[r.status.value] = out.get(r.status.value, 0) + 1
        return out

    def by_status(self, status: ExecutionStatus) -> List[InstanceReport]:
        return [r for r in self.instances if r.status is status]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pipeline": self.pipeline,
            "triggered": self.triggered,
            "success": self.success,
            "cancelled": self.cancelled,
            "counts": self.counts(),
            "empty_jobs": list(self.empty_jobs),
            "instances": [r.to_dict() for r in self.instances],
            "gates": [d.to_dict() for d in self.gate_decisions],
        }

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, default=str)


def report_for(rec: InstanceRecord) -> InstanceReport:
    # only a failed command has a meaningful exit code; a version mismatch exits 0
    exit_code = None
    if isinstance(rec.error, StepFailure):
        exit_code = rec.error.exit_code
    return InstanceReport(
        job=rec.instance.name,
        matrix=rec.instance.assignment,
        status=rec.status,
        gate_required=rec.instance.spec.gate_required,
        skip_reason=rec.skip_reason,
        failed_step=rec.failed_step,
        exit_code=exit_code,
        error=rec.error.to_dict() if rec.error is not None else None,
        duration=rec.duration,
    )


def aggregate(
    records: Iterable[InstanceRecord],
    *,
    pipeline: str = "pipeline",
    cancelled: bool = False,
    empty_jobs: Iterable[str] = (),
    gate_decisions: Iterable[GateDecision] = (),
) -> PipelineResult:
    """
    Fold final instance statuses into a PipelineResult. Pure: the same
    records always give the same result.

    success iff nothing Failed, no gate-required instance was skipped
    because something upstream broke, and the run was not cancelled.
    """
    reports = tuple(report_for(r) for r in records)

    failed = any(r.status is ExecutionStatus.FAILED for r in reports)
    gate_blocked = any(
        r.gate_required
        and r.status is ExecutionStatus.SKIPPED
        and r.skip_reason in (SkipReason.UPSTREAM_FAILED, SkipReason.GATE_DENIED)
        for r in reports
    )
    unfinished = any(not r.status.is_terminal for r in reports)

    return PipelineResult(
        pipeline=pipeline,
        success=not (failed or gate_blocked or cancelled or unfinished),
        instances=reports,
        cancelled=cancelled,
        empty_jobs=tuple(empty_jobs),
        gate_decisions=tuple(gate_decisions),
    )


def not_triggered(pipeline: str) -> PipelineResult:
    return PipelineResult(pipeline=pipeline, success=True, triggered=False)
