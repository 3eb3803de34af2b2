"""
Automate - Executor

Runs presets: expression resolution, handler dispatch, the main loop and
the run log.
"""
from .models import (
    StepStatus,
    RunStatus,
    TriggerType,
    StepResult,
    StepOutcome,
    ExecutionContext,
    RunMetadata,
    RunOptions,
    StepRecord,
    EngineResult,
)
from .evaluator import ExpressionEvaluator, EvaluationError, truthy
from .expressions import ExpressionResolver, ExpressionError, resolve_expression, resolve_params
from .registry import StepRegistry, HandlerSpec, registry
from .context import StepContext
from .builtins import Builtins, BUILTIN_ACTIONS, PromptCancelled, console_prompt
from .step_executor import StepExecutor, DispatchError
from .run_logger import RunLogger, BoundRunLogger
from .executor import Executor, JumpTargetMissing, run_preset, get_default_registry

__all__ = [
    # Models
    "StepStatus",
    "RunStatus",
    "TriggerType",
    "StepResult",
    "StepOutcome",
    "ExecutionContext",
    "RunMetadata",
    "RunOptions",
    "StepRecord",
    "EngineResult",
    # Expressions
    "ExpressionEvaluator",
    "EvaluationError",
    "truthy",
    "ExpressionResolver",
    "ExpressionError",
    "resolve_expression",
    "resolve_params",
    # Dispatch
    "StepRegistry",
    "HandlerSpec",
    "registry",
    "StepContext",
    "Builtins",
    "BUILTIN_ACTIONS",
    "PromptCancelled",
    "console_prompt",
    "StepExecutor",
    "DispatchError",
    # Runs
    "RunLogger",
    "BoundRunLogger",
    "Executor",
    "JumpTargetMissing",
    "run_preset",
    "get_default_registry",
]
