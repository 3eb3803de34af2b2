"""
Automate - Step Executor

Dispatches one step: built-in actions by name, everything else through the
step registry. Used by the main loop and, via StepContext.run_step, by the
combinators.
"""
import inspect
import time
from typing import Optional, TYPE_CHECKING

from .builtins import Builtins, is_builtin_action
from .models import StepOutcome, StepResult, elapsed_ms
from .registry import StepRegistry

if TYPE_CHECKING:
    from ..presets.models import PresetStep
    from .context import StepContext


class DispatchError(Exception):
    """No handler is registered for an action."""

    def __init__(self, action: str):
        self.action = action
        super().__init__(f'No handler registered for action "{action}"')


def error_message(error: BaseException) -> str:
    """Message stored in an error StepResult."""
    return str(error) or type(error).__name__


class StepExecutor:
    """
    Executes individual steps.

    Routes step actions to handlers:
    - if / log / prompt / shell / set -> Builtins
    - anything else -> StepRegistry (exact name, then prefix)
    """

    def __init__(self, registry: StepRegistry, builtins: Optional[Builtins] = None):
        self._registry = registry
        self._builtins = builtins

    @property
    def registry(self) -> StepRegistry:
        return self._registry

    @property
    def builtins(self) -> Builtins:
        """Get builtins (lazy init)."""
        if self._builtins is None:
            self._builtins = Builtins()
        return self._builtins

    async def execute(self, step: "PresetStep", ctx: "StepContext") -> StepOutcome:
        """
        Execute a single step.

        Raises:
            DispatchError: No handler for the action
            Exception: Anything the handler raises
        """
        dry_run = ctx.metadata.dry_run

        if is_builtin_action(step.action):
            if dry_run and step.action != "if":
                return StepOutcome(StepResult.skipped(output=f"[dry-run] built-in: {step.action}"))
            outcome = await self.builtins.execute(step, ctx)
            if dry_run:
                # Dry runs still follow branches
                target = outcome.jump_to or "next step"
                outcome.result = StepResult.skipped(
                    output=f"[dry-run] if: condition is {'true' if outcome.result.output else 'false'} -> {target}",
                    duration=outcome.result.duration,
                )
            return outcome

        handler = self._registry.resolve(step.action)
        if handler is None:
            raise DispatchError(step.action)

        if dry_run:
            return StepOutcome(StepResult.skipped(output=f"[dry-run] registry handler: {step.action}"))

        if ctx.metadata.verbose:
            ctx.logger.info(f'Dispatching "{step.id}" to handler for "{step.action}"')

        start = time.perf_counter()
        result = handler(step, ctx)
        if inspect.isawaitable(result):
            result = await result
        if not isinstance(result, StepResult):
            raise TypeError(
                f'Handler for "{step.action}" returned {type(result).__name__}, expected StepResult'
            )
        if result.duration <= 0:
            result.duration = elapsed_ms(start)
        return StepOutcome(result)

    async def run_child(self, step: "PresetStep", ctx: "StepContext") -> StepResult:
        """Execute a combinator child; failures become error results, jumps are ignored."""
        start = time.perf_counter()
        try:
            outcome = await self.execute(step, ctx)
        except Exception as e:
            ctx.logger.debug(f'Child step "{step.id}" raised {type(e).__name__}: {e}')
            return StepResult.failure(error_message(e), duration=elapsed_ms(start))
        if outcome.jump_to:
            ctx.logger.debug(f'Ignoring jump to "{outcome.jump_to}" from child step "{step.id}"')
        return outcome.result
