"""
Automate - Combinator helpers
"""
import time
from typing import Any, Optional, TYPE_CHECKING

import pydantic

from ..executor.models import StepResult, StepStatus, elapsed_ms
from ..presets.models import PresetStep

if TYPE_CHECKING:
    from ..executor.context import StepContext


def make_result(status: StepStatus, output: Any, start: float, error: Optional[str] = None) -> StepResult:
    """StepResult with the duration measured from a perf_counter() start."""
    return StepResult(status=status, output=output, duration=elapsed_ms(start), error=error)


def body_step(step: PresetStep, ctx: "StepContext") -> PresetStep:
    """
    The step a forEach/while runs on each iteration.

    params.step is an inline step object or the id of a step in the preset.
    """
    raw = step.params.get("step")
    if isinstance(raw, PresetStep):
        return raw
    if isinstance(raw, str):
        body = ctx.metadata.steps_by_id.get(raw)
        if body is None:
            raise ValueError(f'{step.action} body step "{raw}" not found')
        return body
    if isinstance(raw, dict):
        try:
            return PresetStep.model_validate(raw)
        except pydantic.ValidationError as e:
            raise ValueError(f"Invalid {step.action} body step: {e.errors()[0].get('msg')}") from e
    raise ValueError(f'{step.action} requires "params.step"')


def int_param(value: Any, default: int, name: str) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f'"{name}" must be an integer, got {value!r}')


def now() -> float:
    return time.perf_counter()
