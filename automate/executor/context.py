"""
Automate - Step Context

The view of a run handed to every step handler: read access to vars, step
results and env, plus capabilities (evaluate, interpolate, log, record,
run_step). Loop bindings (forEach item/index) live in the view, never in
the shared ExecutionContext.
"""
import json
import logging
from typing import Any, Dict, Mapping, Optional, TYPE_CHECKING

from .expressions import EXPR_RE, ExpressionResolver
from .models import ExecutionContext, RunMetadata, StepResult

if TYPE_CHECKING:
    from ..presets.models import PresetStep
    from .registry import StepRegistry
    from .step_executor import StepExecutor


_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class StepContext:
    """Handler-facing view of one run (or of one forEach iteration)."""

    def __init__(
        self,
        context: ExecutionContext,
        metadata: RunMetadata,
        resolver: ExpressionResolver,
        step_executor: "StepExecutor",
        logger: logging.LoggerAdapter,
        bindings: Optional[Mapping[str, Any]] = None,
    ):
        self._context = context
        self._metadata = metadata
        self._resolver = resolver
        self._step_executor = step_executor
        self._logger = logger
        self._bindings: Dict[str, Any] = dict(bindings or {})

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def steps(self) -> Mapping[str, StepResult]:
        return self._context.steps

    @property
    def variables(self) -> Dict[str, Any]:
        return self._context.vars

    @property
    def env(self) -> Mapping[str, str]:
        return self._context.env

    @property
    def bindings(self) -> Mapping[str, Any]:
        return dict(self._bindings)

    @property
    def metadata(self) -> RunMetadata:
        return self._metadata

    @property
    def registry(self) -> "StepRegistry":
        return self._step_executor.registry

    @property
    def logger(self) -> logging.LoggerAdapter:
        return self._logger

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    def evaluate(self, expr: Any) -> Any:
        """
        Evaluate an expression.

        Accepts a bare expression ("vars.n > 2") or a template
        ("{{ vars.n > 2 }}"). Non-strings are returned unchanged.
        """
        if not isinstance(expr, str):
            return expr
        if EXPR_RE.search(expr):
            return self._resolver.resolve(expr, self._context, self._bindings)
        return self._resolver.evaluate(expr, self._context, self._bindings)

    def resolve(self, template: Any) -> Any:
        """Resolve a template; a single {{ block }} keeps its raw value."""
        if not isinstance(template, str):
            return template
        return self._resolver.resolve(template, self._context, self._bindings)

    def resolve_params(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        return self._resolver.resolve_params(params, self._context, self._bindings)

    def interpolate(self, template: str) -> str:
        """Resolve a template to a string; non-string values are JSON-encoded."""
        value = self._resolver.resolve(template, self._context, self._bindings)
        if isinstance(value, str):
            return value
        return json.dumps(value, ensure_ascii=False, default=str)

    def log(self, level: str, message: str) -> None:
        self._logger.log(_LEVELS.get(level.lower(), logging.INFO), message)

    async def record(self, step_id: str, result: StepResult) -> None:
        """Store a result in the shared context."""
        await self._context.record(step_id, result)

    def child(self, bindings: Mapping[str, Any]) -> "StepContext":
        """Derived view with extra bindings shadowing the parent's."""
        merged = dict(self._bindings)
        merged.update(bindings)
        return StepContext(
            self._context,
            self._metadata,
            self._resolver,
            self._step_executor,
            self._logger,
            merged,
        )

    async def run_step(self, step: "PresetStep") -> StepResult:
        """Dispatch a child step; exceptions become error results."""
        return await self._step_executor.run_child(step, self)

    async def execute_step(self, step: "PresetStep") -> StepResult:
        """Dispatch a child step; exceptions propagate."""
        outcome = await self._step_executor.execute(step, self)
        return outcome.result
