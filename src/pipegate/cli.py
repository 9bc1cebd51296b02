# cli.py
from __future__ import annotations

import signal
import sys
from pathlib import Path

import click

from pipegate.config import DEFAULT_TARGET_AXIS, DEFAULT_WORKFLOW, RunConfig
from pipegate.errors import CIError, StructuralError, WorkflowLoadError
from pipegate.git_facts.git import detect_trigger
from pipegate.pipeline import Pipeline, load_workflow, make_scheduler, run_pipeline
from pipegate.result import EXIT_CANCELLED, EXIT_FAILED, EXIT_STRUCTURAL
from pipegate.trigger import BRANCH, PULL_REQUEST, PUSH, TAG, Trigger
from pipegate.ui.console import Console, get_console, set_console


def find_workflow_files() -> list[Path]:
    """
    Find all workflow files in the current directory.

    Returns:
        List of Path objects for workflow files
    """
    workflow_files = []
    current_dir = Path(".")

    default_workflow = current_dir / DEFAULT_WORKFLOW
    if default_workflow.exists():
        workflow_files.append(default_workflow)

    for path in current_dir.glob("*_workflow.py"):
        if path != default_workflow:
            workflow_files.append(path)

    return sorted(workflow_files)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix != ".py":
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  pipegate run --workflow my_workflow.py",
            )
            sys.exit(EXIT_STRUCTURAL)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=["Looked for:", f"  {DEFAULT_WORKFLOW}", "  *_workflow.py"],
            suggestion=f"Create a workflow file:\n  {DEFAULT_WORKFLOW}\n\nOr specify a workflow explicitly:\n  pipegate run --workflow my_workflow.py",
        )
        sys.exit(EXIT_STRUCTURAL)

    if len(workflow_files) > 1:
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[str(f) for f in workflow_files],
            suggestion=f"Specify a workflow explicitly:\n  pipegate run --workflow {DEFAULT_WORKFLOW}",
        )
        sys.exit(EXIT_STRUCTURAL)

    return workflow_files[0]


def load_or_exit(workflow: str | None) -> tuple[Path, Pipeline]:
    console = get_console()
    workflow_path = discover_workflow(workflow)
    try:
        return workflow_path, load_workflow(workflow_path)
    except (WorkflowLoadError, StructuralError) as e:
        console.print_error("Failed to load workflow", f"Could not load workflow from {workflow_path}", details=[str(e)])
        sys.exit(EXIT_STRUCTURAL)


def resolve_trigger(event: str | None, ref_type: str | None, ref_name: str | None) -> Trigger:
    """Explicit flags win; otherwise describe the local git checkout."""
    if ref_type is not None and ref_name is None:
        raise click.UsageError("--ref-type needs --ref-name")
    if ref_name is None:
        detected = detect_trigger()
        return Trigger(
            event=event or detected.event,
            ref_type=detected.ref_type,
            ref_name=detected.ref_name,
            sha=detected.sha,
        )
    return Trigger(event=event or PUSH, ref_type=ref_type or BRANCH, ref_name=ref_name)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    envvar="PIPEGATE_DEBUG",
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """pipegate: DAG pipeline runner with matrix jobs and gated publish."""
    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, envvar="PIPEGATE_WORKFLOW", help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
@click.option("--workers", default=None, type=int, envvar="PIPEGATE_WORKERS", help="Maximum instances running at once")
@click.option("--fail-fast/--no-fail-fast", default=False, envvar="PIPEGATE_FAIL_FAST", help="Stop starting new instances after the first failure")
@click.option("--target-axis", default=DEFAULT_TARGET_AXIS, show_default=True, envvar="PIPEGATE_TARGET_AXIS", help="Matrix axis that selects the execution target")
@click.option("--event", type=click.Choice([PUSH, PULL_REQUEST]), default=None, help="Trigger event (defaults to push)")
@click.option("--ref-type", type=click.Choice([BRANCH, TAG]), default=None, help="Trigger ref type")
@click.option("--ref-name", default=None, envvar="PIPEGATE_REF_NAME", help="Trigger ref name, e.g. v1.2.0 (defaults to git HEAD)")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the run report as JSON on stdout")
@click.pass_context
def run(ctx, workflow, workers, fail_fast, target_axis, event, ref_type, ref_name, as_json):
    """Run a pipeline."""
    debug = ctx.obj.get("debug", False)
    if as_json:
        # keep stdout clean for the report
        set_console(Console(debug=debug, out=sys.stderr))
    console = get_console()

    workflow_path, pipe = load_or_exit(workflow)
    trigger = resolve_trigger(event, ref_type, ref_name)
    config = RunConfig(max_workers=workers, fail_fast=fail_fast, target_axis=target_axis, debug=debug)

    scheduler = make_scheduler(pipe, config, console=console)
    previous = signal.signal(signal.SIGTERM, lambda signum, frame: scheduler.cancel())
    try:
        result = run_pipeline(
            pipe, trigger, config=config, scheduler=scheduler, console=console, workflow=workflow_path.name
        )
    except StructuralError as e:
        console.print_error("Invalid pipeline", str(e).splitlines()[0], details=str(e).splitlines()[1:])
        sys.exit(EXIT_STRUCTURAL)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(EXIT_CANCELLED)
    except CIError as e:
        console.print_exception(e)
        sys.exit(EXIT_FAILED)
    finally:
        if previous is not None:
            signal.signal(signal.SIGTERM, previous)

    if as_json:
        click.echo(result.to_json())
    elif result.triggered:
        console.print_results(result)

    sys.exit(result.exit_code)


@cli.command()
@click.option("--workflow", default=None, envvar="PIPEGATE_WORKFLOW", help="Workflow file path")
def plan(workflow):
    """Show stages and the expanded matrix instances of each job."""
    console = get_console()
    _, pipe = load_or_exit(workflow)
    try:
        dag = pipe.validate()
    except StructuralError as e:
        console.print_error("Invalid pipeline", str(e).splitlines()[0], details=str(e).splitlines()[1:])
        sys.exit(EXIT_STRUCTURAL)

    console.print_header(f"Pipeline: {pipe.name}")
    for clause in pipe.on.describe() or ["always"]:
        console.print_info(f"on: {clause}")
    console.print_plan(dag.levels(), pipe.instances())


@cli.command()
@click.option("--workflow", default=None, envvar="PIPEGATE_WORKFLOW", help="Workflow file path")
def validate(workflow):
    """Check the pipeline structure without running anything."""
    console = get_console()
    _, pipe = load_or_exit(workflow)
    try:
        dag = pipe.validate()
    except StructuralError as e:
        console.print_error("Invalid pipeline", str(e).splitlines()[0], details=str(e).splitlines()[1:])
        sys.exit(EXIT_STRUCTURAL)

    count = sum(len(v) for v in pipe.instances().values())
    console.print_info(f"OK: {pipe.name}: {len(dag.jobs)} job(s), {count} instance(s)")


if __name__ == "__main__":
    cli()
