# config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_WORKFLOW = "pipegate_workflow.py"
DEFAULT_TARGET_AXIS = "os"


def default_workers() -> int:
    c = os.cpu_count() or 2
    return max(1, c - 1)


@dataclass(frozen=True)
class RunConfig:
    """Resolved settings for one `pipegate run` (CLI flags > env vars > defaults)."""
    max_workers: int | None = None
    fail_fast: bool = False
    target_axis: str = DEFAULT_TARGET_AXIS
    repo_root: Path = Path(".")
    debug: bool = False

