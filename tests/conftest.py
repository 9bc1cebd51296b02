# tests/conftest.py
from __future__ import annotations

import io
import threading

import pytest

from pipegate.runner import Runner
from pipegate.scheduler import Scheduler
from pipegate.trigger import BRANCH, PUSH, TAG, Trigger
from pipegate.ui.console import Console, set_console


class FakeExecutor:
    """
    In-memory step executor.

    `results` maps (instance label or job name, step name) to either an
    (exit_code, output) tuple or a callable taking the StepContext.
    Unlisted steps succeed with empty output.
    """

    def __init__(self, results=None, default=(0, "")):
        self.results = dict(results or {})
        self.default = default
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, ctx):
        with self._lock:
            self.calls.append(ctx)
        for key in ((ctx.instance.label, ctx.step.name), (ctx.instance.name, ctx.step.name)):
            if key in self.results:
                r = self.results[key]
                return r(ctx) if callable(r) else r
        return self.default

    def ran(self, job: str) -> list[str]:
        with self._lock:
            return [c.instance.label for c in self.calls if c.instance.name == job]

    def steps_of(self, label: str) -> list[str]:
        with self._lock:
            return [c.step.name for c in self.calls if c.instance.label == label]


@pytest.fixture
def console():
    c = Console(quiet=True, out=io.StringIO(), err=io.StringIO())
    set_console(c)
    return c


@pytest.fixture
def fake():
    return FakeExecutor()


@pytest.fixture
def make_runner(console):
    def _make(executor, **kwargs):
        kwargs.setdefault("base_env", {})
        return Runner(default=executor, console=console, **kwargs)
    return _make


@pytest.fixture
def make_scheduler(make_runner, console):
    def _make(executor, *, max_workers=4, fail_fast=False, **runner_kwargs):
        runner = make_runner(executor, **runner_kwargs)
        return Scheduler(runner, max_workers=max_workers, fail_fast=fail_fast, poll_interval=0.01, console=console)
    return _make


@pytest.fixture
def branch_push():
    return Trigger(event=PUSH, ref_type=BRANCH, ref_name="master")


@pytest.fixture
def tag_push():
    return Trigger(event=PUSH, ref_type=TAG, ref_name="v1.2.0")
