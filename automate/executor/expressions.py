"""
Automate - Expression Resolver

Resolves {{ expr }} templates against an ExecutionContext.

    "{{ vars.count }}"            -> raw value (int, list, dict, ...)
    "total: {{ vars.count }}"     -> "total: 3"
    "no templates here"           -> unchanged
"""
import re
from typing import Any, Dict, Mapping, Optional

from .evaluator import EvaluationError, ExpressionEvaluator, get_member, to_display_string
from .models import ExecutionContext

# A {{ ... }} block whose body never crosses a closing "}}"
EXPR_RE = re.compile(r"\{\{\s*((?:(?!\}\}).)+?)\s*\}\}", re.DOTALL)

# vars.x / steps.my-step.output.count / env.HOME
SIMPLE_PATH_RE = re.compile(r"^(vars|steps|env)(\.[A-Za-z0-9_-]+)+$")


class ExpressionError(Exception):
    """A template expression failed to parse or evaluate."""

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f'Expression evaluation failed: "{{{{ {expression} }}}}" - {reason}')


def build_scope(ctx: ExecutionContext, bindings: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """Names visible to expressions. Step results appear as plain dicts."""
    scope: Dict[str, Any] = {
        "vars": ctx.vars,
        "steps": {step_id: result.to_dict() for step_id, result in ctx.steps.items()},
        "env": ctx.env,
    }
    if bindings:
        scope.update(bindings)
    return scope


def _resolve_path(path: str, scope: Mapping[str, Any]) -> Any:
    current: Any = scope
    for part in path.split("."):
        current = get_member(current, part)
        if current is None:
            return None
    return current


class ExpressionResolver:
    """
    Template resolution over a pluggable evaluator.

    Args:
        evaluator: Object with evaluate(expr, scope). Defaults to the
                   restricted ExpressionEvaluator.
    """

    def __init__(self, evaluator: Optional[Any] = None):
        self._evaluator = evaluator or ExpressionEvaluator()

    @property
    def evaluator(self) -> Any:
        return self._evaluator

    def evaluate(
        self,
        expr: str,
        ctx: ExecutionContext,
        bindings: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """Evaluate a bare expression (no braces)."""
        expr = expr.strip()
        root = expr.split(".", 1)[0]
        if SIMPLE_PATH_RE.match(expr) and not (bindings and root in bindings):
            if root == "steps":
                return self._step_path(expr, ctx)
            return _resolve_path(expr, {"vars": ctx.vars, "env": ctx.env})

        try:
            return self._evaluator.evaluate(expr, build_scope(ctx, bindings))
        except (EvaluationError, ArithmeticError, TypeError, ValueError) as e:
            raise ExpressionError(expr, str(e)) from e

    @staticmethod
    def _step_path(path: str, ctx: ExecutionContext) -> Any:
        parts = path.split(".")
        result = ctx.steps.get(parts[1])
        if result is None:
            return None
        if len(parts) == 2:
            return result.to_dict()
        return _resolve_path(".".join(parts[2:]), result.to_dict())

    def resolve(
        self,
        template: str,
        ctx: ExecutionContext,
        bindings: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """
        Resolve every {{ expr }} block in a template.

        A template that is exactly one block returns the raw value;
        otherwise the blocks are stringified (None -> "") and spliced in.
        """
        full = EXPR_RE.fullmatch(template)
        if full:
            return self.evaluate(full.group(1), ctx, bindings)
        if "{{" not in template:
            return template
        return EXPR_RE.sub(
            lambda m: to_display_string(self.evaluate(m.group(1), ctx, bindings)),
            template,
        )

    def resolve_params(
        self,
        params: Mapping[str, Any],
        ctx: ExecutionContext,
        bindings: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Resolve all templates in a params dict.

        Strings are resolved, string elements of lists are resolved,
        nested dicts are resolved recursively, everything else passes through.
        """
        resolved: Dict[str, Any] = {}
        for key, value in params.items():
            if isinstance(value, str):
                resolved[key] = self.resolve(value, ctx, bindings)
            elif isinstance(value, list):
                resolved[key] = [
                    self.resolve(v, ctx, bindings) if isinstance(v, str) else v
                    for v in value
                ]
            elif isinstance(value, Mapping):
                resolved[key] = self.resolve_params(value, ctx, bindings)
            else:
                resolved[key] = value
        return resolved


_default_resolver = ExpressionResolver()


def resolve_expression(template: str, ctx: ExecutionContext) -> Any:
    """Resolve a template with the default resolver."""
    return _default_resolver.resolve(template, ctx)


def resolve_params(params: Mapping[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
    """Resolve a params dict with the default resolver."""
    return _default_resolver.resolve_params(params, ctx)
