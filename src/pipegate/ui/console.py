"""Console output formatting utilities for pipegate."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Dict, List, Optional

if TYPE_CHECKING:
    from ..gate import GateDecision
    from ..model import InstanceRecord, JobInstance
    from ..result import PipelineResult
    from ..trigger import Trigger


SKIP_LABELS = {
    "upstream_failed": "upstream failure",
    "cancelled_upstream": "cancelled",
    "gate_denied": "gate denied",
}


class Console:
    """
    Centralized console output formatting.

    Runners report steps from worker threads, so every write goes through
    one lock to keep lines whole.
    """

    def __init__(self, debug: bool = False, quiet: bool = False, out=None, err=None):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            quiet: If True, suppress progress lines (results and errors still print)
            out: stream for normal output (defaults to sys.stdout at write time)
            err: stream for errors (defaults to sys.stderr at write time)
        """
        self.debug = debug
        self.quiet = quiet
        self._out = out
        self._err = err
        self._lock = threading.Lock()

    def _write(self, *lines: str, err: bool = False) -> None:
        stream = (self._err or sys.stderr) if err else (self._out or sys.stdout)
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def _progress(self, *lines: str) -> None:
        if not self.quiet:
            self._write(*lines)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._write(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        pipeline: str,
        workflow: str,
        trigger: "Trigger",
        job_count: int,
        instance_count: int,
    ) -> None:
        """Print run start information."""
        self._progress(
            "\nRUN STARTED",
            f"Pipeline: {pipeline}",
            f"Workflow: {workflow}",
            f"Trigger: {trigger.event} {trigger.ref_type} {trigger.ref_name or '-'}",
            f"Jobs: {job_count} ({instance_count} instances)",
            "",
        )

    def print_not_triggered(self, pipeline: str, trigger: "Trigger", filters: List[str]) -> None:
        self._write(
            f"\nNOT TRIGGERED: {pipeline}",
            f"Trigger: {trigger.event} {trigger.ref_type} {trigger.ref_name or '-'}",
            *[f"  on: {f}" for f in filters],
        )

    def print_plan(self, levels: List[List[str]], instances: Dict[str, List["JobInstance"]]) -> None:
        """Print stages with the expanded instances of each job."""
        for idx, level in enumerate(levels):
            self._write(f"=== Stage {idx + 1}: {level} ===")
            for name in level:
                insts = instances.get(name, [])
                if not insts:
                    self._write(f"  {name}: no instances (empty matrix axis)")
                for inst in insts:
                    gate = " [gated]" if inst.spec.gate_required else ""
                    self._write(f"  {inst.label}{gate}")

    def print_job_start(self, name: str) -> None:
        """Print job start message."""
        self._progress(f"\nJOB STARTED: {name}")

    def print_step(self, job: str, name: str) -> None:
        """Print step start message."""
        self._progress(f"[{job}] STEP: {name}")

    def print_job_finished(self, rec: "InstanceRecord") -> None:
        label = rec.instance.label
        if rec.status.value == "succeeded":
            self._progress(f"[{label}] STATUS: success")
            return
        self.print_failure(label, rec.failed_step, rec.error)

    def print_failure(self, job: str, step: Optional[str], error) -> None:
        """
        Print failure message for an instance.

        Shows the first line of the error unless debug is on, and the tail
        of the failing step's output in debug mode.
        """
        lines = [f"[{job}] JOB FAILED" + (f" at step: {step}" if step else "")]
        if error is not None:
            exit_code = error.details.get("exit_code")
            if exit_code is not None:
                lines.append(f"Exit code: {exit_code}")
            if self.debug:
                lines.append(f"Error details: {error}")
                output = getattr(error, "output", "")
                if output:
                    lines.append(output.rstrip())
            else:
                lines.append(f"Error: {str(error).splitlines()[0]}")
        self._write(*lines)

    def print_job_skipped(self, name: str, reason: str) -> None:
        """Print job skipped message."""
        self._progress(f"[{name}] STATUS: skipped ({SKIP_LABELS.get(reason, reason)})")

    def print_gate(self, decision: "GateDecision") -> None:
        verdict = "admitted" if decision.admitted else "denied"
        self._progress(f"[{decision.instance}] GATE: {verdict}")
        for reason in decision.reasons:
            self._progress(f"  - {reason}")
        if self.debug:
            for inst, status in decision.checked:
                self.print_debug(f"gate {decision.instance}: {inst} -> {status}")

    def print_results(self, result: "PipelineResult") -> None:
        """Print final results summary."""
        self._write("\n" + "=" * 40, "RESULTS", "=" * 40)
        for r in result.instances:
            status = r.status.value.upper()
            if r.failed_step:
                status += f" (step: {r.failed_step})"
            if r.skip_reason is not None:
                status += f" ({SKIP_LABELS.get(r.skip_reason.value, r.skip_reason.value)})"
            self._write(f"  {r.label}: {status}")
        for name in result.empty_jobs:
            self._write(f"  {name}: NO INSTANCES")
        counts = ", ".join(f"{k}={v}" for k, v in result.counts().items())
        verdict = "SUCCESS" if result.success else ("CANCELLED" if result.cancelled else "FAILED")
        self._write("-" * 40, f"PIPELINE: {verdict} ({counts})")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {d}" for d in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._write(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            self._write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)), err=True)
        else:
            self._write(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._write(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._write(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
