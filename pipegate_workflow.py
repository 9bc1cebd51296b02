# pipegate_workflow.py
# Tag-triggered release: the crate is published only when the tag matches
# the crate version and the full check suite passed.
from __future__ import annotations

from pipegate import job, pipeline, on_push
from pipegate.step_workflows.cargo import cargo_checks, cargo_publish, cargo_version

CRATE_NAME = "tree"

PIPELINE = pipeline(
    "publish",
    job(
        "version",
        cargo_version(CRATE_NAME),
    ),
    job(
        "check",
        steps_list=cargo_checks(),
    ),
    job(
        "publish",
        cargo_publish(token_env="CARGO_REGISTRY_TOKEN"),
        needs=["version", "check"],
        gate=True,
        secret="CARGO_REGISTRY_TOKEN",
    ),
    on=on_push(tags=["v*"]),
)
