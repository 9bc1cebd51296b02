# dag.py
from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Dict, Iterable, List, Set

from .errors import CyclicDependency, DuplicateJob, UnknownDependency
from .model import JobSpec


@dataclass(frozen=True)
class Dag:
    """Validated job graph. `adj` maps a job to its direct dependents."""
    jobs: Dict[str, JobSpec]
    adj: Dict[str, Set[str]]
    indeg: Dict[str, int]

    def needs(self, name: str) -> List[str]:
        return list(dict.fromkeys(self.jobs[name].needs))

    def levels(self) -> List[List[str]]:
        return topo_levels(self.adj, self.indeg)

    def order(self) -> List[str]:
        return [name for level in self.levels() for name in level]


def build_dag(jobs: Iterable[JobSpec]) -> Dag:
    """
    Build a DAG from JobSpecs.

    Requires:
      - job.name: str (unique)
      - job.needs: names of jobs that must run BEFORE this job

    Raises DuplicateJob, UnknownDependency or CyclicDependency. Pure: the
    specs are not touched.
    """
    jobs = list(jobs)
    names = [j.name for j in jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise DuplicateJob(dupes)

    by_name = {j.name: j for j in jobs}
    adj: Dict[str, Set[str]] = {n: set() for n in names}
    indeg: Dict[str, int] = {n: 0 for n in names}

    for job in jobs:
        for dep in job.needs:
            if dep not in by_name:
                raise UnknownDependency(job.name, dep, sorted(by_name))
            # Edge dep -> job.name (dep must run before job)
            if job.name not in adj[dep]:
                adj[dep].add(job.name)
                indeg[job.name] += 1

    cycle = find_cycle(by_name)
    if cycle:
        raise CyclicDependency(cycle)

    return Dag(jobs=by_name, adj=adj, indeg=indeg)


def find_cycle(jobs: Dict[str, JobSpec]) -> List[str]:
    """
    Depth-first search over `needs` edges with a recursion stack.
    Returns the cycle as a closed path (first == last), or [] if acyclic.
    """
    done: Set[str] = set()
    on_stack: Set[str] = set()
    path: List[str] = []

    def visit(name: str) -> List[str]:
        on_stack.add(name)
        path.append(name)
        for dep in jobs[name].needs:
            if dep in on_stack:
                return path[path.index(dep):] + [dep]
            if dep not in done:
                found = visit(dep)
                if found:
                    return found
        on_stack.discard(name)
        path.pop()
        done.add(name)
        return []

    for name in jobs:
        if name not in done:
            found = visit(name)
            if found:
                return found
    return []


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Convert DAG into topological "levels" (stages).
    Jobs within one stage have no edges between them.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted([n for n, d in indeg.items() if d == 0]))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level_size = len(q)
        level: List[str] = []

        for _ in range(level_size):
            node = q.popleft()
            level.append(node)
            processed += 1

            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)

        levels.append(level)

    if processed != len(indeg):
        remaining = sorted([n for n, d in indeg.items() if d > 0])
        raise CyclicDependency(remaining)

    return levels
