"""
Automate - Executor (main loop)

Runs a preset end-to-end:
    - validate the step graph
    - build the context (defaults, overrides, prompts)
    - walk the steps with a program counter (if-jumps, onError policy)
    - record results and finish the run log
"""
import logging
import time
from typing import Any, Dict, List, Optional

from ..config.logging import get_logger, log_step_result
from ..presets.loader import ensure_valid
from ..presets.models import OnError, Preset, PresetVariable, VariableType
from .builtins import Builtins, Prompter, PromptCancelled, console_prompt
from .context import StepContext
from .expressions import ExpressionResolver
from .models import (
    EngineResult,
    ExecutionContext,
    RunMetadata,
    RunOptions,
    RunStatus,
    StepRecord,
    StepResult,
    StepStatus,
    elapsed_ms,
)
from .registry import StepRegistry, registry as global_registry
from .run_logger import BoundRunLogger
from .step_executor import StepExecutor, error_message


class JumpTargetMissing(Exception):
    """An "if" step jumped to an id that is not in the step list."""

    def __init__(self, step_id: str, target: str):
        self.step_id = step_id
        self.target = target
        super().__init__(f'Jump target "{target}" not found (from step "{step_id}")')


def get_default_registry() -> StepRegistry:
    """The global registry with the combinators registered."""
    from ..steps import register_combinators
    if not global_registry.exists("parallel"):
        register_combinators(global_registry)
    return global_registry


# ==================== VARIABLES ====================

_TRUE_STRINGS = ("true", "1", "yes", "y", "on")


def coerce_value(raw: Any, definition: Optional[PresetVariable]) -> Any:
    """Convert a string value to the variable's declared type."""
    if definition is None or not isinstance(raw, str):
        return raw
    if definition.type == VariableType.NUMBER:
        try:
            return int(raw)
        except ValueError:
            return float(raw)
    if definition.type == VariableType.BOOLEAN:
        return raw.strip().lower() in _TRUE_STRINGS
    return raw


def parse_var_overrides(pairs: List[str], logger=None) -> Dict[str, str]:
    """["key=value", ...] -> {key: value}. Malformed entries are skipped."""
    result: Dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            if logger is not None:
                logger.warning(f'Invalid var format: "{pair}" (expected key=value)')
            continue
        result[key] = value
    return result


class Executor:
    """
    Preset executor.

    Args:
        registry: Step registry for non built-in actions (default: global
                  registry with combinators)
        resolver: Expression resolver (default: restricted evaluator)
        prompter: Async callable(message, default) for interactive input.
                  Defaults to the terminal; None means non-interactive
                  (scheduled runs).
        shell_timeout: Default timeout for "shell" steps, seconds
    """

    def __init__(
        self,
        registry: Optional[StepRegistry] = None,
        resolver: Optional[ExpressionResolver] = None,
        prompter: Optional[Prompter] = console_prompt,
        shell_timeout: Optional[float] = None,
    ):
        self._registry = registry
        self._resolver = resolver
        self._prompter = prompter
        if shell_timeout is None:
            from ..config.settings import settings
            shell_timeout = settings.engine.shell_timeout_seconds
        self._shell_timeout = shell_timeout
        self._step_executor: Optional[StepExecutor] = None

    @property
    def registry(self) -> StepRegistry:
        """Get registry (lazy init)."""
        if self._registry is None:
            self._registry = get_default_registry()
        return self._registry

    @property
    def resolver(self) -> ExpressionResolver:
        """Get resolver (lazy init)."""
        if self._resolver is None:
            self._resolver = ExpressionResolver()
        return self._resolver

    @property
    def step_executor(self) -> StepExecutor:
        """Get step executor (lazy init)."""
        if self._step_executor is None:
            self._step_executor = StepExecutor(
                self.registry,
                Builtins(prompter=self._prompter, shell_timeout=self._shell_timeout),
            )
        return self._step_executor

    # ==================== CONTEXT ====================

    async def build_context(self, preset: Preset, options: RunOptions, logger=None) -> ExecutionContext:
        """
        Initial context: defaults, then key=value overrides, then prompts
        for required variables that are still missing.
        """
        logger = logger or get_logger("executor", preset=preset.name)
        variables: Dict[str, Any] = {}

        for key, definition in preset.vars.items():
            if definition.default is not None:
                variables[key] = definition.default

        for key, raw in parse_var_overrides(options.vars, logger).items():
            try:
                variables[key] = coerce_value(raw, preset.vars.get(key))
            except ValueError:
                logger.warning(f'Variable "{key}" expects a number, keeping "{raw}" as text')
                variables[key] = raw

        for key, definition in preset.vars.items():
            if key in variables or not definition.required:
                continue
            if self._prompter is None:
                logger.warning(f'Required variable "{key}" has no value')
                continue
            # PromptCancelled aborts the run before any step executes
            answer = await self._prompter(definition.description or f'Enter value for "{key}":', None)
            try:
                variables[key] = coerce_value(answer, definition)
            except ValueError:
                logger.warning(f'Variable "{key}" expects a number, keeping "{answer}" as text')
                variables[key] = answer

        return ExecutionContext.create(variables)

    # ==================== MAIN LOOP ====================

    async def run(
        self,
        preset: Preset,
        options: Optional[RunOptions] = None,
        run_logger: Optional[BoundRunLogger] = None,
    ) -> EngineResult:
        """
        Execute a preset.

        Args:
            preset: Preset to run
            options: Dry run, key=value overrides, verbose
            run_logger: Optional persistent run log (skipped for dry runs)

        Returns:
            EngineResult

        Raises:
            ValidationError: Broken step graph (before any step runs)
            PromptCancelled: User aborted a variable prompt
        """
        options = options or RunOptions()
        total_start = time.perf_counter()
        logger = get_logger("executor", preset=preset.name)

        ensure_valid(preset)
        context = await self.build_context(preset, options, logger)
        metadata = RunMetadata.build(preset.steps, dry_run=options.dry_run, verbose=options.verbose)
        # Verbose runs surface per-step detail at INFO
        detail_level = logging.INFO if options.verbose else logging.DEBUG

        if options.dry_run:
            logger.warning("DRY RUN - no commands will be executed")
            run_logger = None
        if run_logger is not None and run_logger.start() is not None:
            logger = logger.bind(run_id=run_logger.run_id)

        step_ctx = StepContext(context, metadata, self.resolver, self.step_executor, logger)
        records: List[StepRecord] = []
        failure: Optional[str] = None
        steps = preset.steps
        total = len(steps)

        i = 0
        while i < total:
            step = steps[i]

            # Reached only through the owning combinator
            if step.id in metadata.combinator_child_ids:
                i += 1
                continue

            logger.log(detail_level, f"[{i + 1}/{total}] {step.label}")
            start = time.perf_counter()
            jump_to = None
            try:
                outcome = await self.step_executor.execute(step, step_ctx)
                result, jump_to = outcome.result, outcome.jump_to
            except PromptCancelled:
                result = StepResult.failure("User cancelled", duration=elapsed_ms(start))
            except Exception as e:
                logger.debug(f'Step "{step.id}" raised {type(e).__name__}', exc_info=True)
                result = StepResult.failure(error_message(e), duration=elapsed_ms(start))

            await context.record(step.id, result)
            records.append(StepRecord(i, step.id, step.label, step.action, result))
            log_step_result(logger, i, total, step.id, step.action, result.status.value, result.duration, result.error)
            if run_logger is not None:
                run_logger.log_step(i, step.id, step.label, step.action, result)

            if result.status == StepStatus.ERROR:
                if step.on_error == OnError.STOP:
                    logger.error(f'Stopping: step "{step.id}" failed (onError: stop)')
                    break
                i += 1
                continue

            if jump_to:
                target = metadata.index_by_id.get(jump_to)
                if target is None:
                    missing = JumpTargetMissing(step.id, jump_to)
                    logger.error(str(missing))
                    failure = str(missing)
                    break
                i = target
                continue

            i += 1

        total_ms = elapsed_ms(total_start)
        first_error = next((r.result.error for r in records if r.result.status == StepStatus.ERROR), None)
        success = failure is None and first_error is None and all(r.result.ok for r in records)
        error = failure or first_error
        if not success and error is None:
            error = "Step failed"

        notes = [
            f"{r.step_id}: {r.result.error}"
            for r in records
            if r.result.status != StepStatus.ERROR and r.result.error
        ]

        if run_logger is not None:
            run_logger.finish(
                RunStatus.SUCCESS if success else RunStatus.ERROR,
                len(records),
                total_ms,
                None if success else error,
            )

        if success:
            logger.info(f"Preset '{preset.name}' finished: {len(records)} steps in {total_ms:.0f}ms")
        else:
            logger.error(f"Preset '{preset.name}' failed: {error}")

        return EngineResult(
            preset=preset.name,
            success=success,
            steps=records,
            total_duration_ms=total_ms,
            error=None if success else error,
            notes=notes,
            run_id=run_logger.run_id if run_logger is not None else None,
        )


async def run_preset(
    preset: Preset,
    options: Optional[RunOptions] = None,
    run_logger: Optional[BoundRunLogger] = None,
    registry: Optional[StepRegistry] = None,
    prompter: Optional[Prompter] = console_prompt,
) -> EngineResult:
    """Run a preset with a fresh Executor."""
    return await Executor(registry=registry, prompter=prompter).run(preset, options, run_logger)
