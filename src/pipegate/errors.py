# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(eq=False)
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - the machine-readable run report
      - debugging without full tracebacks
    """
    kind: str
    message: str
    job: Optional[str] = None
    step: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "job": self.job,
            "step": self.step,
            "details": {k: str(v) for k, v in self.details.items()},
        }


# ----------------------------------------------------------------------
# Structural errors: raised before anything is dispatched
# ----------------------------------------------------------------------

class StructuralError(CIError):
    """Pipeline shape is invalid; the run aborts before scheduling."""


class DuplicateJob(StructuralError):
    def __init__(self, names: List[str]):
        super().__init__(
            kind="DuplicateJob",
            message=f"Duplicate job names found: {names}",
            details={"names": names},
        )


class UnknownDependency(StructuralError):
    def __init__(self, job: str, missing: str, known: List[str]):
        super().__init__(
            kind="UnknownDependency",
            message=f"Job '{job}' needs missing job '{missing}'",
            job=job,
            details={"missing": missing, "known": known},
        )


class CyclicDependency(StructuralError):
    def __init__(self, cycle: List[str]):
        super().__init__(
            kind="CyclicDependency",
            message="Dependency cycle: " + " -> ".join(cycle),
            job=cycle[0] if cycle else None,
            details={"cycle": cycle},
        )

    @property
    def cycle(self) -> List[str]:
        return list(self.details["cycle"])


class CredentialScopeError(StructuralError):
    def __init__(self, job: str, secret: str):
        super().__init__(
            kind="CredentialScopeError",
            message=f"Job '{job}' declares secret '{secret}' but is not gate-required",
            job=job,
            details={"secret": secret},
        )


class WorkflowLoadError(CIError):
    def __init__(self, message: str, path: str | None = None):
        super().__init__(
            kind="WorkflowLoadError",
            message=message,
            details={"path": path} if path else {},
        )


# ----------------------------------------------------------------------
# Runtime errors: contained in the failing instance's record
# ----------------------------------------------------------------------

class StepFailure(CIError):
    def __init__(self, job: str, step: str, cmd: str, exit_code: int, output: str = ""):
        super().__init__(
            kind="StepFailure",
            message=f"step '{step}' failed (exit={exit_code}): {cmd}",
            job=job,
            step=step,
            details={"exit_code": exit_code},
        )
        self.exit_code = exit_code
        self.output = output


class VersionMismatch(CIError):
    def __init__(self, job: str, step: str, expected: str | None, actual: str):
        super().__init__(
            kind="VersionMismatch",
            message=f"extracted version {actual!r} does not match reference {expected!r}",
            job=job,
            step=step,
            details={"expected": expected, "actual": actual},
        )
        self.expected = expected
        self.actual = actual


class MissingCredential(CIError):
    def __init__(self, job: str, secret: str):
        super().__init__(
            kind="MissingCredential",
            message=f"secret '{secret}' is not available",
            job=job,
            details={"secret": secret},
        )


class StepCancelled(CIError):
    def __init__(self, job: str, step: str | None):
        super().__init__(
            kind="StepCancelled",
            message="run was cancelled while the instance was running",
            job=job,
            step=step,
        )


class InvalidTransition(CIError):
    def __init__(self, instance: str, current: str, requested: str):
        super().__init__(
            kind="InvalidTransition",
            message=f"{instance}: cannot move from {current} to {requested}",
            job=instance,
            details={"current": current, "requested": requested},
        )
