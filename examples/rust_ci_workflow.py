# rust_ci_workflow.py
# Build and test on every OS for pushes to master and pull requests into it.
#
#   pipegate run --workflow examples/rust_ci_workflow.py --ref-name master
from __future__ import annotations

from pipegate import job, matrix, pipeline, on_push, on_pull_request
from pipegate.step_workflows.cargo import cargo_checks

PIPELINE = pipeline(
    "rust-ci",
    job(
        "build-and-test",
        steps_list=cargo_checks(),
        matrix=matrix(
            os=["ubuntu-latest", "macos-latest", "windows-latest"],
            toolchain=["stable"],
        ),
        env={"CARGO_TERM_COLOR": "always"},
    ),
    on=on_push(branches=["master"]) | on_pull_request(branches=["master"]),
)
