# git.py
# Small, focused wrapper around the Git CLI.
# Used only to work out a default Trigger when none is given on the
# command line; the engine itself never calls git.

from __future__ import annotations

import subprocess
from typing import Optional

from ..trigger import BRANCH, PUSH, TAG, Trigger


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Raises subprocess.CalledProcessError on a non-zero exit and
    FileNotFoundError when git is not installed.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def head_sha(cwd: Optional[str] = None) -> str:
    """Full SHA of the current HEAD commit."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str] = None) -> str:
    """
    Name of the checked-out branch, or "HEAD" when detached.
    """
    return _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)


def exact_tag(cwd: Optional[str] = None) -> Optional[str]:
    """The tag pointing exactly at HEAD, if any."""
    try:
        return _git(["describe", "--tags", "--exact-match", "HEAD"], cwd=cwd) or None
    except subprocess.CalledProcessError:
        return None


def detect_trigger(cwd: Optional[str] = None) -> Trigger:
    """
    Describe the local checkout as a push event:
      - HEAD exactly at a tag -> tag push (ref_name = tag)
      - otherwise             -> branch push (ref_name = branch)
    Outside a git repository this is an empty branch push.
    """
    try:
        sha = head_sha(cwd)
    except (subprocess.CalledProcessError, FileNotFoundError):
        return Trigger(event=PUSH, ref_type=BRANCH, ref_name="")

    tag = exact_tag(cwd)
    if tag:
        return Trigger(event=PUSH, ref_type=TAG, ref_name=tag, sha=sha)
    return Trigger(event=PUSH, ref_type=BRANCH, ref_name=current_branch(cwd), sha=sha)
