"""
Shared pytest fixtures for the automate test suite.

Module-level defaults; individual test classes may override
with their own class-level fixtures (pytest priority: class > conftest).
"""
import asyncio
import os

import pytest

from automate.config.logging import get_logger
from automate.executor import (
    Builtins,
    ExecutionContext,
    ExpressionResolver,
    RunMetadata,
    StepContext,
    StepExecutor,
    StepRegistry,
    StepResult,
)
from automate.presets import PresetStep
from automate.steps import register_combinators
from automate.storage import Database


@pytest.fixture
def db(tmp_path):
    """Fresh database for each test."""
    return Database(tmp_path / "test.sqlite3")


class Calls:
    """Records which test handlers ran, in order."""

    def __init__(self):
        self.events = []

    def ids(self, kind="run"):
        return [step_id for k, step_id in self.events if k == kind]


@pytest.fixture
def calls():
    return Calls()


@pytest.fixture
def registry(calls):
    """
    Registry with the combinators plus test handlers:

        ok     -> success, output = resolved params.value
        fail   -> error "boom"
        raise  -> raises RuntimeError("kaboom")
        sleep  -> sleeps params.delay seconds, then succeeds with params.value
    """
    reg = StepRegistry()
    register_combinators(reg)

    async def ok(step, ctx):
        calls.events.append(("run", step.id))
        params = ctx.resolve_params(step.params)
        return StepResult.success(output=params.get("value"))

    async def fail(step, ctx):
        calls.events.append(("run", step.id))
        return StepResult.failure("boom")

    async def explode(step, ctx):
        calls.events.append(("run", step.id))
        raise RuntimeError("kaboom")

    async def sleep(step, ctx):
        params = ctx.resolve_params(step.params)
        calls.events.append(("start", step.id))
        await asyncio.sleep(float(params.get("delay") or 0))
        calls.events.append(("end", step.id))
        return StepResult.success(output=params.get("value"))

    reg.register("ok", ok)
    reg.register("fail", fail)
    reg.register("raise", explode)
    reg.register("sleep", sleep)
    return reg


@pytest.fixture
def make_context(registry):
    """Factory for a StepContext over a list of step dicts (combinator tests)."""

    def factory(steps=(), variables=None, dry_run=False, step_registry=None):
        parsed = [s if isinstance(s, PresetStep) else PresetStep.model_validate(s) for s in steps]
        env = {"HOME": "/home/test", "PATH": os.environ.get("PATH", os.defpath)}
        context = ExecutionContext.create(variables or {}, env=env)
        metadata = RunMetadata.build(parsed, dry_run=dry_run)
        executor = StepExecutor(step_registry or registry, Builtins())
        return StepContext(context, metadata, ExpressionResolver(), executor, get_logger("test"))

    return factory
