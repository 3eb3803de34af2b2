"""
Tests for the parallel / forEach / while combinators

Run with: pytest -q
"""
import pytest

from automate.executor import StepResult, StepStatus
from automate.presets import PresetStep
from automate.steps import for_each_handler, parallel_handler, while_handler


def step(**data):
    return PresetStep.model_validate(data)


class TestParallel:
    """Tests for parallel_handler."""

    CHILDREN = [
        {"id": "a", "action": "ok", "params": {"value": "A"}},
        {"id": "b", "action": "fail"},
        {"id": "c", "action": "ok", "params": {"value": "C"}},
    ]

    @pytest.mark.asyncio
    async def test_continue_reports_failures(self, make_context):
        """One failing child out of three: error status, every child in the output."""
        group = step(id="group", action="parallel", params={"steps": ["a", "b", "c"], "onError": "continue"})
        ctx = make_context(self.CHILDREN)

        result = await parallel_handler(group, ctx)

        assert result.status == StepStatus.ERROR
        assert result.error == "1/3 parallel steps failed"
        assert set(result.output) == {"a", "b", "c"}
        assert result.output["a"]["output"] == "A"
        assert result.output["b"]["status"] == "error"
        assert result.output["b"]["error"] == "boom"

    @pytest.mark.asyncio
    async def test_children_recorded_in_context(self, make_context):
        group = step(id="group", action="parallel", params={"steps": ["a", "b", "c"], "onError": "continue"})
        ctx = make_context(self.CHILDREN)

        await parallel_handler(group, ctx)

        assert ctx.steps["a"].output == "A"
        assert ctx.steps["b"].status == StepStatus.ERROR
        assert ctx.steps["c"].output == "C"

    @pytest.mark.asyncio
    async def test_continue_captures_exceptions(self, make_context):
        group = step(id="group", action="parallel", params={"steps": ["a", "x"], "onError": "continue"})
        ctx = make_context(self.CHILDREN + [{"id": "x", "action": "raise"}])

        result = await parallel_handler(group, ctx)

        assert result.error == "1/2 parallel steps failed"
        assert result.output["x"]["error"] == "kaboom"

    @pytest.mark.asyncio
    async def test_stop_fails_on_first_exception(self, make_context, calls):
        group = step(id="group", action="parallel", params={"steps": ["slow", "x"]})
        ctx = make_context([
            {"id": "slow", "action": "sleep", "params": {"delay": 5}},
            {"id": "x", "action": "raise"},
        ])

        result = await parallel_handler(group, ctx)

        assert result.status == StepStatus.ERROR
        assert result.error == 'Parallel step "x" failed: kaboom'
        # The slow sibling was cancelled, not awaited to completion
        assert ("end", "slow") not in calls.events

    @pytest.mark.asyncio
    async def test_all_succeed(self, make_context):
        group = step(id="group", action="parallel", params={"steps": ["a", "c"]})
        ctx = make_context(self.CHILDREN)

        result = await parallel_handler(group, ctx)

        assert result.status == StepStatus.SUCCESS
        assert result.error is None
        assert list(result.output) == ["a", "c"]

    @pytest.mark.asyncio
    async def test_children_run_concurrently(self, make_context, calls):
        group = step(id="group", action="parallel", params={"steps": ["s1", "s2"]})
        ctx = make_context([
            {"id": "s1", "action": "sleep", "params": {"delay": 0.05}},
            {"id": "s2", "action": "sleep", "params": {"delay": 0.05}},
        ])

        await parallel_handler(group, ctx)

        kinds = [kind for kind, _ in calls.events]
        assert kinds == ["start", "start", "end", "end"]

    @pytest.mark.asyncio
    async def test_missing_child(self, make_context):
        group = step(id="group", action="parallel", params={"steps": ["ghost"]})
        result = await parallel_handler(group, make_context(self.CHILDREN))
        assert result.status == StepStatus.ERROR
        assert "ghost" in result.error


class TestForEach:
    """Tests for for_each_handler."""

    @pytest.mark.asyncio
    async def test_sequential_with_bindings(self, make_context):
        each = step(id="each", action="forEach", params={
            "items": "{{ vars.files }}",
            "step": {"id": "work", "action": "ok", "params": {"value": "{{ index }}:{{ item.name }}"}},
        })
        ctx = make_context(variables={"files": [{"name": "a"}, {"name": "b"}]})

        result = await for_each_handler(each, ctx)

        assert result.status == StepStatus.SUCCESS
        assert result.output == {"results": ["0:a", "1:b"], "count": 2, "failures": 0}
        assert ctx.steps["each[0]"].output == "0:a"
        assert ctx.steps["each[1]"].output == "1:b"

    @pytest.mark.asyncio
    async def test_custom_binding_names(self, make_context):
        each = step(id="each", action="forEach", params={
            "items": [10, 20],
            "as": "n",
            "indexAs": "i",
            "step": {"id": "work", "action": "ok", "params": {"value": "{{ n + i }}"}},
        })
        result = await for_each_handler(each, make_context())
        assert result.output["results"] == [10, 21]

    @pytest.mark.asyncio
    async def test_bindings_do_not_leak(self, make_context):
        """Iteration bindings never become context variables."""
        each = step(id="each", action="forEach", params={
            "items": [1],
            "step": {"id": "work", "action": "ok", "params": {"value": "{{ item }}"}},
        })
        ctx = make_context(variables={"keep": True})
        await for_each_handler(each, ctx)
        assert ctx.variables == {"keep": True}
        assert ctx.bindings == {}

    @pytest.mark.asyncio
    async def test_batches_preserve_order(self, make_context, calls):
        """concurrency=2 over [1,2,3]: batch [1,2] finishes before 3 starts; output keeps item order."""
        each = step(id="each", action="forEach", params={
            "items": [1, 2, 3],
            "concurrency": 2,
            "step": {"id": "work", "action": "sleep",
                     "params": {"delay": "{{ item == 1 ? 0.05 : 0 }}", "value": "{{ item * 10 }}"}},
        })

        result = await for_each_handler(each, make_context())

        assert result.output["results"] == [10, 20, 30]
        position = {event: i for i, event in enumerate(calls.events)}
        third_start = position[("start", "each[2]")]
        assert position[("end", "each[0]")] < third_start
        assert position[("end", "each[1]")] < third_start
        assert position[("start", "each[1]")] < position[("end", "each[0]")]

    @pytest.mark.asyncio
    async def test_failures_counted(self, registry, make_context):
        """Failing and raising iterations become error results; siblings still run."""
        async def pick(step, ctx):
            item = ctx.bindings["item"]
            if item == "raise":
                raise RuntimeError("kaboom")
            if item == "fail":
                return StepResult.failure("boom")
            return StepResult.success(item)

        registry.register("pick", pick)
        each = step(id="each", action="forEach", params={
            "items": ["ok", "raise", "fail"],
            "concurrency": 3,
            "step": {"id": "work", "action": "pick"},
        })
        ctx = make_context()

        result = await for_each_handler(each, ctx)

        assert result.status == StepStatus.ERROR
        assert result.error == "2/3 iterations failed"
        assert result.output == {"results": ["ok", None, None], "count": 3, "failures": 2}
        assert ctx.steps["each[1]"].error == "kaboom"

    @pytest.mark.asyncio
    async def test_non_array_items(self, make_context):
        each = step(id="each", action="forEach", params={
            "items": "{{ vars.name }}",
            "step": {"id": "work", "action": "ok"},
        })
        result = await for_each_handler(each, make_context(variables={"name": "abc"}))
        assert result.status == StepStatus.ERROR
        assert result.error.startswith("forEach items did not resolve to an array")

    @pytest.mark.asyncio
    async def test_empty_items(self, make_context, calls):
        each = step(id="each", action="forEach", params={"items": [], "step": {"id": "w", "action": "ok"}})
        result = await for_each_handler(each, make_context())
        assert result.status == StepStatus.SUCCESS
        assert result.output == {"results": [], "count": 0, "failures": 0}
        assert calls.events == []


class TestWhile:
    """Tests for while_handler."""

    @pytest.mark.asyncio
    async def test_runs_until_condition_false(self, make_context):
        loop = step(id="loop", action="while", params={
            "condition": "vars.n < 3",
            "step": {"id": "inc", "action": "set", "params": {"n": "{{ vars.n + 1 }}"}},
        })
        ctx = make_context(variables={"n": 0})

        result = await while_handler(loop, ctx)

        assert result.status == StepStatus.SUCCESS
        assert result.error is None
        assert result.output["iterations"] == 3
        assert ctx.variables["n"] == 3
        assert set(ctx.steps) == {"loop[0]", "loop[1]", "loop[2]"}

    @pytest.mark.asyncio
    async def test_hits_max_iterations(self, make_context, calls):
        """A condition that never turns false stops at the default limit of 100."""
        loop = step(id="loop", action="while", params={
            "condition": "true",
            "step": {"id": "tick", "action": "ok"},
        })

        result = await while_handler(loop, make_context())

        assert result.status == StepStatus.SUCCESS
        assert result.error == "Hit max iterations (100)"
        assert result.output["iterations"] == 100
        assert len(calls.ids()) == 100

    @pytest.mark.asyncio
    async def test_condition_false_initially(self, make_context, calls):
        loop = step(id="loop", action="while", params={"condition": "false", "step": {"id": "t", "action": "ok"}})
        result = await while_handler(loop, make_context())
        assert result.output["iterations"] == 0
        assert calls.events == []

    @pytest.mark.asyncio
    async def test_stops_on_error(self, make_context, calls):
        loop = step(id="loop", action="while", params={
            "condition": "true",
            "maxIterations": 5,
            "step": {"id": "t", "action": "fail"},
        })
        result = await while_handler(loop, make_context())
        assert result.status == StepStatus.ERROR
        assert result.output["iterations"] == 1
        assert result.error == "1 iterations failed"

    @pytest.mark.asyncio
    async def test_continue_keeps_looping(self, make_context, calls):
        loop = step(id="loop", action="while", onError="continue", params={
            "condition": "true",
            "maxIterations": 4,
            "step": {"id": "t", "action": "fail"},
        })
        result = await while_handler(loop, make_context())
        assert result.status == StepStatus.ERROR
        assert result.output["failures"] == 4
        assert len(calls.ids()) == 4

    @pytest.mark.asyncio
    async def test_body_by_step_id(self, make_context):
        loop = step(id="loop", action="while", params={"condition": "vars.n < 2", "step": "inc"})
        ctx = make_context(
            [{"id": "inc", "action": "set", "params": {"n": "{{ vars.n + 1 }}"}}],
            variables={"n": 0},
        )
        result = await while_handler(loop, ctx)
        assert result.output["iterations"] == 2
        assert ctx.variables["n"] == 2

    @pytest.mark.asyncio
    async def test_nested_combinators(self, make_context):
        """A forEach body may itself be a while loop."""
        each = step(id="outer", action="forEach", params={
            "items": [2, 5],
            "step": {"id": "inner", "action": "while", "params": {
                "condition": "vars.total < item * 10",
                "step": {"id": "add", "action": "set", "params": {"total": "{{ vars.total + item }}"}},
            }},
        })
        ctx = make_context(variables={"total": 0})

        result = await for_each_handler(each, ctx)

        assert result.status == StepStatus.SUCCESS
        assert ctx.variables["total"] == 50
