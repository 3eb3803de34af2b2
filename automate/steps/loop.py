"""
Automate - forEach / while combinators

    {"id": "each", "action": "forEach",
     "params": {"items": "{{ steps.list.output }}", "as": "file", "concurrency": 4,
                "step": {"id": "rm", "action": "shell", "params": {"command": "rm {{ file }}"}}}}

    {"id": "poll", "action": "while",
     "params": {"condition": "vars.tries < 5", "maxIterations": 10,
                "step": {"id": "inc", "action": "set", "params": {"tries": "{{ vars.tries + 1 }}"}}}}

Iteration results are stored as "<id>[<index>]".
"""
import asyncio
from typing import Any, List, TYPE_CHECKING

from ..config.settings import settings
from ..executor.evaluator import truthy
from ..executor.models import StepResult, StepStatus
from ..executor.step_executor import error_message
from ..presets.models import OnError, PresetStep
from .helpers import body_step, int_param, make_result, now

if TYPE_CHECKING:
    from ..executor.context import StepContext


# ==================== forEach ====================

async def for_each_handler(step: PresetStep, ctx: "StepContext") -> StepResult:
    start = now()
    params = step.params

    items = ctx.evaluate(params.get("items"))
    if isinstance(items, tuple):
        items = list(items)
    if not isinstance(items, list):
        return make_result(
            StepStatus.ERROR, None, start,
            f"forEach items did not resolve to an array: {params.get('items')}",
        )

    item_var = str(params.get("as") or "item")
    index_var = str(params.get("indexAs") or "index")
    concurrency = int_param(params.get("concurrency"), 1, "concurrency")
    body = body_step(step, ctx)

    async def process(item: Any, index: int) -> StepResult:
        iteration = body.with_id(f"{step.id}[{index}]")
        return await ctx.child({item_var: item, index_var: index}).run_step(iteration)

    results: List[StepResult] = []
    if concurrency <= 1:
        for index, item in enumerate(items):
            result = await process(item, index)
            await ctx.record(f"{step.id}[{index}]", result)
            results.append(result)
    else:
        for offset in range(0, len(items), concurrency):
            batch = items[offset:offset + concurrency]
            settled = await asyncio.gather(
                *(process(item, offset + i) for i, item in enumerate(batch)),
                return_exceptions=True,
            )
            for i, entry in enumerate(settled):
                if isinstance(entry, BaseException):
                    if not isinstance(entry, Exception):
                        raise entry
                    entry = make_result(StepStatus.ERROR, None, start, error_message(entry))
                await ctx.record(f"{step.id}[{offset + i}]", entry)
                results.append(entry)

    failures = sum(1 for r in results if r.status == StepStatus.ERROR)
    return make_result(
        StepStatus.ERROR if failures else StepStatus.SUCCESS,
        {"results": [r.output for r in results], "count": len(items), "failures": failures},
        start,
        f"{failures}/{len(items)} iterations failed" if failures else None,
    )


# ==================== while ====================

async def while_handler(step: PresetStep, ctx: "StepContext") -> StepResult:
    start = now()
    params = step.params
    max_iterations = int_param(
        params.get("maxIterations"), settings.engine.while_max_iterations, "maxIterations"
    )
    condition = params.get("condition")
    if not condition:
        return make_result(StepStatus.ERROR, None, start, 'while requires "params.condition"')
    body = body_step(step, ctx)

    results: List[StepResult] = []
    iteration = 0
    while iteration < max_iterations:
        if not truthy(ctx.evaluate(condition)):
            break

        step_id = f"{step.id}[{iteration}]"
        result = await ctx.run_step(body.with_id(step_id))
        await ctx.record(step_id, result)
        results.append(result)

        if result.status == StepStatus.ERROR and step.on_error != OnError.CONTINUE:
            break
        iteration += 1

    failures = sum(1 for r in results if r.status == StepStatus.ERROR)
    if iteration >= max_iterations:
        message = f"Hit max iterations ({max_iterations})"
        ctx.log("warning", f'while "{step.id}": {message}')
    elif failures:
        message = f"{failures} iterations failed"
    else:
        message = None

    return make_result(
        StepStatus.ERROR if failures else StepStatus.SUCCESS,
        {"results": [r.output for r in results], "iterations": len(results), "failures": failures},
        start,
        message,
    )
