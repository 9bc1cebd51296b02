# gate.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import VersionMismatch
from .model import ExecutionStatus, InstanceRecord, JobInstance


@dataclass(frozen=True)
class GateDecision:
    """Audit entry: why a gated instance was (or was not) let through."""
    instance: str
    admitted: bool
    checked: Tuple[Tuple[str, str], ...] = ()   # (dependency instance, status)
    reasons: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "instance": self.instance,
            "admitted": self.admitted,
            "checked": [{"instance": i, "status": s} for i, s in self.checked],
            "reasons": list(self.reasons),
        }


@dataclass
class GateEvaluator:
    """
    Admission control for gate-required instances.

    Ordinary readiness only needs dependencies to be terminal. A gated
    instance additionally needs every instance of every dependency job to
    be Succeeded, re-checked here right before dispatch.
    """
    decisions: List[GateDecision] = field(default_factory=list)

    def admit(
        self,
        instance: JobInstance,
        dependencies: Mapping[str, Sequence[InstanceRecord]],
    ) -> GateDecision:
        checked: List[Tuple[str, str]] = []
        reasons: List[str] = []

        for dep in instance.spec.needs:
            records = dependencies.get(dep, ())
            if not records:
                reasons.append(f"dependency '{dep}' has no instances to prove success")
                continue
            for rec in records:
                checked.append((rec.instance.label, rec.status.value))
                if rec.status is not ExecutionStatus.SUCCEEDED:
                    reasons.append(f"{rec.instance.label} is {rec.status.value}")

        decision = GateDecision(
            instance=instance.label,
            admitted=not reasons,
            checked=tuple(checked),
            reasons=tuple(reasons),
        )
        self.decisions.append(decision)
        return decision


def normalize_version(extracted: str, prefix: str) -> str:
    """Strip surrounding whitespace, then prepend the prefix ("1.2.0" -> "v1.2.0")."""
    value = extracted.strip()
    return f"{prefix}{value}" if value else ""


def check_version(
    extracted: str,
    reference: Optional[str],
    *,
    prefix: str = "v",
    job: str = "",
    step: str = "",
) -> str:
    """
    Compare an extracted project version with the trigger's reference
    (usually the pushed tag). Byte-exact after normalize_version().

    Returns the normalized version; raises VersionMismatch otherwise.
    """
    actual = normalize_version(extracted, prefix)
    if not actual or not reference or actual.encode() != reference.encode():
        raise VersionMismatch(job=job, step=step, expected=reference, actual=actual)
    return actual


def dependency_records(
    instance: JobInstance,
    records_by_job: Dict[str, List[InstanceRecord]],
) -> Dict[str, List[InstanceRecord]]:
    return {dep: records_by_job.get(dep, []) for dep in instance.spec.needs}
