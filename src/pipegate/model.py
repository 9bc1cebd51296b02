# model.py
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import CIError


@dataclass(frozen=True)
class Step:
    """A single command (step) inside a CI job."""
    name: str
    run: str
    cwd: str | None = None
    env: Dict[str, str] = field(default_factory=dict, hash=False)

    # Set only on version-check steps: captured stdout is the extracted
    # version, compared against the trigger ref after prefixing.
    version_prefix: str | None = None

    @property
    def is_version_check(self) -> bool:
        return self.version_prefix is not None


@dataclass(frozen=True)
class JobSpec:
    """
    Static description of one job: ordered steps, dependencies, matrix axes
    and whether it is gated (credential-bearing).

    Canonical dependency field: `needs`
    """
    name: str
    steps: Tuple[Step, ...]
    needs: Tuple[str, ...] = ()

    # axis name -> ordered values; empty mapping means a single instance
    matrix: Dict[str, Tuple[Any, ...]] = field(default_factory=dict, hash=False)
    env: Dict[str, str] = field(default_factory=dict, hash=False)

    gate_required: bool = False
    secret: Optional[str] = None

    @property
    def axes(self) -> List[str]:
        return list(self.matrix)


Assignment = Tuple[Tuple[str, Any], ...]


@dataclass(frozen=True)
class JobInstance:
    """One concrete execution unit: a job plus one value per matrix axis."""
    spec: JobSpec = field(compare=False, hash=False)
    assignment: Assignment = ()

    # identity is (job name, assignment); spec is excluded from eq/hash
    name: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            object.__setattr__(self, "name", self.spec.name)

    @property
    def key(self) -> Tuple[str, Assignment]:
        return self.name, self.assignment

    @property
    def matrix(self) -> Dict[str, Any]:
        return dict(self.assignment)

    @property
    def label(self) -> str:
        if not self.assignment:
            return self.name
        axes = ", ".join(f"{k}={v}" for k, v in self.assignment)
        return f"{self.name} ({axes})"

    def __str__(self) -> str:
        return self.label


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL


TERMINAL = frozenset({ExecutionStatus.SUCCEEDED, ExecutionStatus.FAILED, ExecutionStatus.SKIPPED})

# Allowed forward transitions; anything else breaks monotonicity.
TRANSITIONS: Dict[ExecutionStatus, frozenset] = {
    ExecutionStatus.PENDING: frozenset({ExecutionStatus.READY, ExecutionStatus.SKIPPED}),
    ExecutionStatus.READY: frozenset({ExecutionStatus.RUNNING, ExecutionStatus.SKIPPED}),
    ExecutionStatus.RUNNING: frozenset({ExecutionStatus.SUCCEEDED, ExecutionStatus.FAILED}),
    ExecutionStatus.SUCCEEDED: frozenset(),
    ExecutionStatus.FAILED: frozenset(),
    ExecutionStatus.SKIPPED: frozenset(),
}


class SkipReason(str, Enum):
    UPSTREAM_FAILED = "upstream_failed"
    CANCELLED_UPSTREAM = "cancelled_upstream"
    GATE_DENIED = "gate_denied"


@dataclass(frozen=True)
class StepResult:
    """Outcome of one step: exit status plus captured (masked) output."""
    step: str
    exit_code: int
    output: str = ""
    duration: float = 0.0
    error: CIError | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and self.error is None


@dataclass
class InstanceOutcome:
    """What a Runner reports back to the Scheduler for one instance."""
    instance: JobInstance
    status: ExecutionStatus
    steps: List[StepResult] = field(default_factory=list)
    failed_step: str | None = None
    error: CIError | None = None


@dataclass
class InstanceRecord:
    """
    Per-instance bookkeeping owned by the Scheduler for one run.
    Only the scheduler thread mutates these.
    """
    instance: JobInstance
    status: ExecutionStatus = ExecutionStatus.PENDING
    skip_reason: SkipReason | None = None
    steps: List[StepResult] = field(default_factory=list)
    failed_step: str | None = None
    error: CIError | None = None
    started_at: float | None = None
    finished_at: float | None = None

    @property
    def duration(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    def mark_started(self) -> None:
        self.started_at = time.monotonic()

    def mark_finished(self) -> None:
        self.finished_at = time.monotonic()
