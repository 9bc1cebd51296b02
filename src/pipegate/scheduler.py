# scheduler.py
from __future__ import annotations

import threading
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Deque, Dict, Iterable, List, Optional, Tuple, Union

from .config import default_workers
from .credentials import SecretStore
from .dag import Dag, build_dag
from .errors import CIError, InvalidTransition
from .gate import GateEvaluator, dependency_records
from .matrix import expand_matrix
from .model import (
    TRANSITIONS,
    ExecutionStatus,
    InstanceOutcome,
    InstanceRecord,
    JobInstance,
    JobSpec,
    SkipReason,
)
from .runner import Runner
from .trigger import Trigger
from .ui.console import Console, get_console

Key = Tuple[str, tuple]


@dataclass
class RunState:
    """
    Status map for one pipeline run. Records are kept in dependency order
    (jobs in topological order, instances in matrix order).
    """
    dag: Dag
    records: Dict[Key, InstanceRecord] = field(default_factory=dict)
    by_job: Dict[str, List[InstanceRecord]] = field(default_factory=dict)
    gate: GateEvaluator = field(default_factory=GateEvaluator)
    cancelled: bool = False
    halted: bool = False

    @property
    def empty_jobs(self) -> List[str]:
        return [name for name, recs in self.by_job.items() if not recs]

    def with_status(self, *statuses: ExecutionStatus) -> List[InstanceRecord]:
        return [r for r in self.records.values() if r.status in statuses]


def transition(record: InstanceRecord, new: ExecutionStatus) -> None:
    if new not in TRANSITIONS[record.status]:
        raise InvalidTransition(record.instance.label, record.status.value, new.value)
    record.status = new


class Scheduler:
    """
    Drives the DAG to completion.

    - Instances become Ready once every instance of every dependency job is
      terminal; any Failed dependency turns them Skipped instead.
    - Up to `max_workers` Ready instances run at once on a thread pool.
    - Gate-required instances are re-checked by the GateEvaluator right
      before dispatch and are the only ones handed a credential.
    - All bookkeeping happens on the calling thread; workers only run the
      Runner and return an InstanceOutcome.
    """

    def __init__(
        self,
        runner: Runner,
        *,
        max_workers: int | None = None,
        fail_fast: bool = False,
        poll_interval: float = 0.2,
        console: Optional[Console] = None,
    ):
        self.runner = runner
        self.max_workers = max_workers or default_workers()
        self.fail_fast = fail_fast
        self.poll_interval = poll_interval
        self.console = console
        self._cancel = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        """
        Stop the current run (or the next one, if none is running): running
        instances are signalled and nothing new starts.
        """
        self._cancel.set()

    # ------------------------------------------------------------------

    def prepare(self, jobs: Union[Dag, Iterable[JobSpec]]) -> RunState:
        dag = jobs if isinstance(jobs, Dag) else build_dag(jobs)
        state = RunState(dag=dag)
        for name in dag.order():
            recs = [InstanceRecord(inst) for inst in expand_matrix(dag.jobs[name])]
            state.by_job[name] = recs
            for rec in recs:
                state.records[rec.instance.key] = rec
        return state

    def run(
        self,
        jobs: Union[Dag, Iterable[JobSpec]],
        *,
        trigger: Trigger,
        secrets: Optional[SecretStore] = None,
    ) -> RunState:
        # Structural errors surface here, before any dispatch.
        state = self.prepare(jobs)
        secrets = secrets or SecretStore()
        console = self.console or get_console()

        ready: Deque[InstanceRecord] = deque()
        in_flight: Dict[Future, InstanceRecord] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            try:
                while True:
                    if self._cancel.is_set() or state.halted:
                        self._skip_remaining(state, ready, console)
                    self._promote(state, ready, console)
                    self._dispatch(state, ready, in_flight, pool, trigger, secrets, console)

                    if not in_flight:
                        # A gate denial can leave dependents Pending; go round again.
                        if ready or state.with_status(ExecutionStatus.PENDING):
                            continue
                        break

                    done, _ = wait(list(in_flight), timeout=self.poll_interval, return_when=FIRST_COMPLETED)
                    for fut in done:
                        self._complete(state, in_flight.pop(fut), fut, console)
            except KeyboardInterrupt:
                console.print_info("\nCancelling run...")
                self.cancel()
                self._skip_remaining(state, ready, console)
                # Runners see the cancel event; collect what they report.
                wait(list(in_flight))
                for fut, rec in in_flight.items():
                    self._complete(state, rec, fut, console)
                in_flight.clear()

        state.cancelled = self._cancel.is_set()
        # a cancel applies to one run; the scheduler can be reused afterwards
        self._cancel.clear()
        return state

    # ------------------------------------------------------------------

    def _promote(self, state: RunState, ready: Deque[InstanceRecord], console: Console) -> None:
        # Records are in topological order, so one pass lets skips cascade.
        for rec in state.records.values():
            if rec.status is not ExecutionStatus.PENDING:
                continue

            deps = [d for name in rec.instance.spec.needs for d in state.by_job[name]]
            if not all(d.status.is_terminal for d in deps):
                continue

            reason = self._upstream_skip_reason(deps)
            if reason is not None:
                self._skip(rec, reason, console)
            else:
                transition(rec, ExecutionStatus.READY)
                ready.append(rec)

    @staticmethod
    def _upstream_skip_reason(deps: List[InstanceRecord]) -> SkipReason | None:
        if any(d.status is ExecutionStatus.FAILED for d in deps):
            return SkipReason.UPSTREAM_FAILED
        skipped = [d for d in deps if d.status is ExecutionStatus.SKIPPED]
        if not skipped:
            return None
        if all(d.skip_reason is SkipReason.CANCELLED_UPSTREAM for d in skipped):
            return SkipReason.CANCELLED_UPSTREAM
        return SkipReason.UPSTREAM_FAILED

    def _dispatch(
        self,
        state: RunState,
        ready: Deque[InstanceRecord],
        in_flight: Dict[Future, InstanceRecord],
        pool: ThreadPoolExecutor,
        trigger: Trigger,
        secrets: SecretStore,
        console: Console,
    ) -> None:
        while ready and len(in_flight) < self.max_workers:
            rec = ready.popleft()
            inst: JobInstance = rec.instance
            credential = None

            if inst.spec.gate_required:
                decision = state.gate.admit(inst, dependency_records(inst, state.by_job))
                console.print_gate(decision)
                if not decision.admitted:
                    self._skip(rec, SkipReason.GATE_DENIED, console)
                    continue
                credential = secrets.get(inst.spec.secret)

            transition(rec, ExecutionStatus.RUNNING)
            rec.mark_started()
            console.print_job_start(inst.label)
            fut = pool.submit(
                self.runner.run,
                inst,
                trigger=trigger,
                credential=credential,
                cancel=self._cancel,
            )
            in_flight[fut] = rec

    def _complete(self, state: RunState, rec: InstanceRecord, fut: Future, console: Console) -> None:
        try:
            outcome: InstanceOutcome = fut.result()
        except CIError as e:
            outcome = InstanceOutcome(rec.instance, ExecutionStatus.FAILED, error=e)
        except Exception as e:
            outcome = InstanceOutcome(
                rec.instance,
                ExecutionStatus.FAILED,
                error=CIError(kind="RunnerError", message=str(e), job=rec.instance.label),
            )

        rec.mark_finished()
        transition(rec, outcome.status)
        rec.steps = list(outcome.steps)
        rec.failed_step = outcome.failed_step
        rec.error = outcome.error
        console.print_job_finished(rec)

        if rec.status is ExecutionStatus.FAILED and self.fail_fast:
            state.halted = True

    def _skip_remaining(self, state: RunState, ready: Deque[InstanceRecord], console: Console) -> None:
        ready.clear()
        for rec in state.with_status(ExecutionStatus.PENDING, ExecutionStatus.READY):
            self._skip(rec, SkipReason.CANCELLED_UPSTREAM, console)

    @staticmethod
    def _skip(rec: InstanceRecord, reason: SkipReason, console: Console) -> None:
        transition(rec, ExecutionStatus.SKIPPED)
        rec.skip_reason = reason
        console.print_job_skipped(rec.instance.label, reason.value)
