# step_workflows/cargo.py
from __future__ import annotations

from typing import List

from ..dsl import sh, version_step
from ..model import Step


# ---------------------------------------------------------------------
# Step helpers for a Rust crate
# ---------------------------------------------------------------------

def cargo_version(crate: str, *, prefix: str = "v", cwd: str | None = None) -> Step:
    """
    Print the crate's version from `cargo metadata`; checked against the
    pushed tag (prefix + version == tag).
    """
    query = f'.packages[] | select(.name == "{crate}") | .version'
    cmd = f"cargo metadata --format-version 1 --no-deps | jq -r '{query}'"
    return version_step("Check version", cmd, prefix=prefix, cwd=cwd)


def cargo_checks(*, verbose: bool = True, cwd: str | None = None) -> List[Step]:
    """Build, format check, clippy and tests, in that order."""
    v = " --verbose" if verbose else ""
    return [
        sh("Build", f"cargo build{v}", cwd=cwd),
        sh("Format", "cargo fmt --all -- --check", cwd=cwd),
        sh("Clippy", "cargo clippy", cwd=cwd),
        sh("Run tests", f"cargo test{v}", cwd=cwd),
    ]


def cargo_publish(*, token_env: str = "CARGO_REGISTRY_TOKEN", cwd: str | None = None) -> Step:
    """
    Publish the crate. The token is read from `token_env`, which only a
    gated job declaring that secret receives.
    """
    return sh("Publish", f'cargo publish --token "${token_env}"', cwd=cwd)
