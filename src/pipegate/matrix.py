# matrix.py
from __future__ import annotations

from itertools import product
from typing import Dict, Iterable, List

from .model import JobInstance, JobSpec


def expand_matrix(spec: JobSpec) -> List[JobInstance]:
    """
    Fan one JobSpec out into its JobInstances.

    Instances follow the Cartesian product of the axes in declaration
    order, values in declared order, so the sequence is reproducible:

        {os: [a, b, c], toolchain: [x]}
          -> (os=a, toolchain=x), (os=b, toolchain=x), (os=c, toolchain=x)

    No axes -> exactly one instance with an empty assignment.
    Any axis with no values -> zero instances (a no-op job).
    """
    if not spec.matrix:
        return [JobInstance(spec=spec)]

    axes = list(spec.matrix.items())
    if any(len(values) == 0 for _, values in axes):
        return []

    names = [name for name, _ in axes]
    return [
        JobInstance(spec=spec, assignment=tuple(zip(names, combo)))
        for combo in product(*(values for _, values in axes))
    ]


def expand_all(specs: Iterable[JobSpec]) -> Dict[str, List[JobInstance]]:
    """Expand every job; keyed by job name, preserving input order."""
    return {spec.name: expand_matrix(spec) for spec in specs}
