"""
Automate - parallel combinator

    {"id": "fetch", "action": "parallel",
     "params": {"steps": ["a", "b", "c"], "onError": "continue"}}

Children are listed steps of the same preset; the main loop skips them.
"""
import asyncio
from typing import List, TYPE_CHECKING

from ..executor.models import StepResult, StepStatus
from ..executor.step_executor import error_message
from ..presets.models import PresetStep
from .helpers import make_result, now

if TYPE_CHECKING:
    from ..executor.context import StepContext


async def parallel_handler(step: PresetStep, ctx: "StepContext") -> StepResult:
    start = now()
    child_ids = step.params.get("steps") or []
    mode = str(step.params.get("onError") or "stop")

    children: List[PresetStep] = []
    for child_id in child_ids:
        child = ctx.metadata.steps_by_id.get(child_id)
        if child is None:
            return make_result(StepStatus.ERROR, None, start, f'Parallel child step "{child_id}" not found')
        children.append(child)

    if mode == "continue":
        async def run_captured(child: PresetStep) -> StepResult:
            result = await ctx.run_step(child)
            await ctx.record(child.id, result)
            return result

        results = await asyncio.gather(*(run_captured(c) for c in children))
    else:
        async def run_raising(child: PresetStep) -> StepResult:
            result = await ctx.execute_step(child)
            await ctx.record(child.id, result)
            return result

        tasks = [asyncio.ensure_future(run_raising(c)) for c in children]
        if not tasks:
            return make_result(StepStatus.SUCCESS, {}, start)
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        failed = [(c, t) for c, t in zip(children, tasks) if t in done and t.exception() is not None]
        if failed:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            child, task = failed[0]
            return make_result(
                StepStatus.ERROR, None, start,
                f'Parallel step "{child.id}" failed: {error_message(task.exception())}',
            )
        results = [t.result() for t in tasks]

    failures = sum(1 for r in results if r.status == StepStatus.ERROR)
    output = {child.id: result.to_dict() for child, result in zip(children, results)}
    return make_result(
        StepStatus.ERROR if failures else StepStatus.SUCCESS,
        output,
        start,
        f"{failures}/{len(children)} parallel steps failed" if failures else None,
    )
