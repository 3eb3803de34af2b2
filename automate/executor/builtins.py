"""
Automate - Built-in Actions

Actions handled by the engine itself: if, log, prompt, shell, set.
"""
import asyncio
import json
import time
from typing import Any, Awaitable, Callable, Optional, TYPE_CHECKING

from .evaluator import truthy, to_display_string
from .models import StepOutcome, StepResult, elapsed_ms

if TYPE_CHECKING:
    from ..presets.models import PresetStep
    from .context import StepContext


BUILTIN_ACTIONS = frozenset({"if", "log", "prompt", "shell", "set"})

Prompter = Callable[[str, Optional[str]], Awaitable[str]]


class PromptCancelled(Exception):
    """The user aborted an interactive prompt."""


def is_builtin_action(action: str) -> bool:
    return action in BUILTIN_ACTIONS


async def console_prompt(message: str, default: Optional[str] = None) -> str:
    """Ask on the terminal. Empty answer returns the default."""
    suffix = f" [{default}]" if default is not None else ""
    try:
        answer = await asyncio.to_thread(input, f"{message}{suffix} ")
    except (EOFError, KeyboardInterrupt):
        raise PromptCancelled()
    if not answer and default is not None:
        return default
    return answer


def parse_output(stdout: str) -> Any:
    """JSON when stdout parses as JSON, otherwise the trimmed text."""
    try:
        return json.loads(stdout)
    except ValueError:
        return stdout.strip()


class Builtins:
    """
    Built-in action handlers.

    Args:
        prompter: Async callable(message, default) for "prompt" steps and
                  missing variables. None disables interactive input.
        shell_timeout: Default "shell" timeout in seconds
    """

    def __init__(self, prompter: Optional[Prompter] = None, shell_timeout: float = 300):
        self.prompter = prompter
        self.shell_timeout = shell_timeout
        self._handlers = {
            "if": self._handle_if,
            "log": self._handle_log,
            "prompt": self._handle_prompt,
            "shell": self._handle_shell,
            "set": self._handle_set,
        }

    async def execute(self, step: "PresetStep", ctx: "StepContext") -> StepOutcome:
        handler = self._handlers.get(step.action)
        if handler is None:
            raise ValueError(f'Unknown built-in action: "{step.action}"')
        return await handler(step, ctx, time.perf_counter())

    # ==================== if ====================

    async def _handle_if(self, step, ctx, start) -> StepOutcome:
        if not step.condition:
            raise ValueError(f'Step "{step.id}": "if" action requires a "condition" field')
        is_true = truthy(ctx.evaluate(step.condition))
        return StepOutcome(
            StepResult.success(output=is_true, duration=elapsed_ms(start)),
            jump_to=step.then if is_true else step.else_,
        )

    # ==================== log ====================

    async def _handle_log(self, step, ctx, start) -> StepOutcome:
        params = ctx.resolve_params(step.params)
        message = to_display_string(params.get("message"))
        ctx.log(str(params.get("level") or "info"), message)
        return StepOutcome(StepResult.success(output=message, duration=elapsed_ms(start)))

    # ==================== prompt ====================

    async def _handle_prompt(self, step, ctx, start) -> StepOutcome:
        params = ctx.resolve_params(step.params)
        message = to_display_string(params.get("message") or "Enter value:")
        default = to_display_string(params["default"]) if params.get("default") is not None else None

        if self.prompter is None:
            return StepOutcome(StepResult.failure(
                "Interactive input is not available", duration=elapsed_ms(start)
            ))
        try:
            answer = await self.prompter(message, default)
        except PromptCancelled:
            return StepOutcome(StepResult.failure("User cancelled", duration=elapsed_ms(start)))
        return StepOutcome(StepResult.success(output=answer, duration=elapsed_ms(start)))

    # ==================== shell ====================

    async def _handle_shell(self, step, ctx, start) -> StepOutcome:
        params = ctx.resolve_params(step.params)
        command = params.get("command") or params.get("cmd")
        if not command:
            raise ValueError(f'Step "{step.id}": "shell" action requires a "command" param')

        cwd = str(params["cwd"]) if params.get("cwd") else None
        timeout = float(params.get("timeout") or self.shell_timeout)

        proc = await asyncio.create_subprocess_exec(
            "bash", "-c", to_display_string(command),
            cwd=cwd,
            stdin=None if step.interactive else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=dict(ctx.env),
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return StepOutcome(StepResult.failure(
                f"Shell command timed out after {timeout:g}s", duration=elapsed_ms(start)
            ))

        exit_code = proc.returncode
        output = parse_output(stdout.decode("utf-8", errors="replace"))
        if exit_code == 0:
            return StepOutcome(StepResult.success(
                output=output, exit_code=exit_code, duration=elapsed_ms(start)
            ))
        error = stderr.decode("utf-8", errors="replace").strip() or f"Exit code: {exit_code}"
        return StepOutcome(StepResult.failure(
            error, output=output, exit_code=exit_code, duration=elapsed_ms(start)
        ))

    # ==================== set ====================

    async def _handle_set(self, step, ctx, start) -> StepOutcome:
        params = ctx.resolve_params(step.params)
        for key, value in params.items():
            if isinstance(value, (str, int, float, bool)):
                ctx.variables[key] = value
        return StepOutcome(StepResult.success(output=params, duration=elapsed_ms(start)))
