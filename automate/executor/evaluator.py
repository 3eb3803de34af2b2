"""
Automate - Expression Evaluator

Restricted evaluator for the expressions inside {{ ... }} templates.
No eval(), no exec(). Hand-written tokenizer + recursive descent parser
producing a small tuple AST, evaluated against a scope of names
(vars, steps, env and any loop bindings).

Supported grammar:
    expression  := ternary
    ternary     := or_expr ("?" expression ":" expression)?
    or_expr     := and_expr (("||" | "or") and_expr)*
    and_expr    := not_expr (("&&" | "and") not_expr)*
    not_expr    := "not" not_expr | equality
    equality    := comparison (("==" | "!=" | "===" | "!==") comparison)*
    comparison  := additive (("<" | "<=" | ">" | ">=" | "in") additive)*
    additive    := term (("+" | "-") term)*
    term        := unary (("*" | "/" | "%") unary)*
    unary       := ("!" | "-" | "+") unary | postfix
    postfix     := primary ("." NAME | "[" expression "]" | "(" args ")")*
    primary     := NUMBER | STRING | NAME | "(" expression ")" | "[" args "]"

Examples:
    steps.search.output.count > 0
    vars.env == "prod" && !vars.dryRun
    len(steps.list.output) >= 3 ? "many" : "few"
    item.name.startsWith("tmp-")
    steps.my-step.output.ok
"""

import json
import math
import re
from functools import lru_cache
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple


class EvaluationError(ValueError):
    """Expression could not be parsed or evaluated."""


# ---------------------------------------------------------------------------
# Value helpers (JavaScript-flavoured, since presets are written that way)
# ---------------------------------------------------------------------------

def truthy(value: Any) -> bool:
    """Truthiness used by if/while and the boolean operators.

    Empty lists and objects are truthy; None, False, 0, NaN and "" are not.
    """
    if value is None or value is False:
        return False
    if isinstance(value, (int, float)):
        return value != 0 and not (isinstance(value, float) and math.isnan(value))
    if isinstance(value, str):
        return value != ""
    return True


def to_display_string(value: Any) -> str:
    """Render a value for string interpolation."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, dict, tuple)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _to_number(value: Any) -> Any:
    if _is_number(value):
        return value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            try:
                return float(value)
            except ValueError:
                pass
    raise EvaluationError(f"Expected a number, got {type(value).__name__}: {value!r}")


def get_member(obj: Any, name: Any) -> Any:
    """Property / index lookup. Missing members are None."""
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        if name in obj:
            return obj[name]
        if name == "length":
            return len(obj)
        return obj.get(str(name))
    if isinstance(obj, (list, tuple, str)):
        if name == "length":
            return len(obj)
        if isinstance(name, bool):
            return None
        if isinstance(name, str) and name.isdigit():
            name = int(name)
        if isinstance(name, float) and name.is_integer():
            name = int(name)
        if isinstance(name, int):
            return obj[name] if 0 <= name < len(obj) else None
        return None
    if isinstance(name, str) and not name.startswith("_"):
        return getattr(obj, name, None)
    return None


def _equals(left: Any, right: Any) -> bool:
    if _is_number(left) and _is_number(right):
        return left == right
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    return left == right


def _order(op: str, left: Any, right: Any) -> bool:
    if left is None or right is None:
        return False
    if _is_number(left) and isinstance(right, str) or isinstance(left, str) and _is_number(right):
        try:
            left, right = _to_number(left), _to_number(right)
        except EvaluationError:
            return False
    try:
        if op == "<":
            return left < right
        if op == "<=":
            return left <= right
        if op == ">":
            return left > right
        return left >= right
    except TypeError:
        raise EvaluationError(f"Cannot compare {type(left).__name__} {op} {type(right).__name__}")


def _contains(container: Any, item: Any) -> bool:
    if container is None:
        return False
    if isinstance(container, str):
        return to_display_string(item) in container
    try:
        return item in container
    except TypeError:
        return False


# ---------------------------------------------------------------------------
# Functions and methods callable from expressions
# ---------------------------------------------------------------------------

def _fn_len(value: Any) -> int:
    if value is None:
        return 0
    try:
        return len(value)
    except TypeError:
        raise EvaluationError(f"len() applied to non-sized value: {type(value).__name__}")


def _fn_int(value: Any) -> int:
    try:
        return int(float(value)) if isinstance(value, str) else int(value)
    except (TypeError, ValueError):
        raise EvaluationError(f"int() cannot convert {value!r}")


def _fn_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise EvaluationError(f"float() cannot convert {value!r}")


def _fn_keys(value: Any) -> List[Any]:
    if isinstance(value, Mapping):
        return list(value.keys())
    raise EvaluationError(f"keys() expects an object, got {type(value).__name__}")


FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "len": _fn_len,
    "str": to_display_string,
    "int": _fn_int,
    "float": _fn_float,
    "bool": truthy,
    "lower": lambda v: to_display_string(v).lower(),
    "upper": lambda v: to_display_string(v).upper(),
    "trim": lambda v: to_display_string(v).strip(),
    "contains": _contains,
    "keys": _fn_keys,
    "json": lambda v: json.dumps(v, ensure_ascii=False, default=str),
    "abs": lambda v: abs(_to_number(v)),
    "round": lambda v, n=0: round(_to_number(v), int(n)) if n else round(_to_number(v)),
    "min": lambda *vs: min(_to_number(v) for v in vs),
    "max": lambda *vs: max(_to_number(v) for v in vs),
}


def _first_arg(name: str, args: List[Any]) -> Any:
    if not args:
        raise EvaluationError(f"Method '{name}' expects an argument")
    return args[0]


def _method(obj: Any, name: str, args: List[Any]) -> Any:
    if isinstance(obj, str):
        if name == "includes":
            return to_display_string(_first_arg(name, args)) in obj
        if name == "startsWith":
            return obj.startswith(to_display_string(_first_arg(name, args)))
        if name == "endsWith":
            return obj.endswith(to_display_string(_first_arg(name, args)))
        if name == "toLowerCase":
            return obj.lower()
        if name == "toUpperCase":
            return obj.upper()
        if name == "trim":
            return obj.strip()
        if name == "split":
            return obj.split(to_display_string(args[0])) if args else [obj]
        if name == "indexOf":
            return obj.find(to_display_string(_first_arg(name, args)))
    if isinstance(obj, (list, tuple)):
        if name == "includes":
            target = _first_arg(name, args)
            return any(_equals(v, target) for v in obj)
        if name == "join":
            sep = to_display_string(args[0]) if args else ","
            return sep.join(to_display_string(v) for v in obj)
        if name == "indexOf":
            target = _first_arg(name, args)
            for i, v in enumerate(obj):
                if _equals(v, target):
                    return i
            return -1
    raise EvaluationError(f"Unknown method '{name}' for {type(obj).__name__}")


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------

_TOKEN_PATTERNS = [
    ("NUMBER",    r'\d+(?:\.\d+)?'),
    ("STRING",    r'"(?:[^"\\]|\\.)*"|\'(?:[^\'\\]|\\.)*\''),
    ("OP",        r'===|!==|==|!=|>=|<=|&&|\|\||[<>!+\-*/%?:,.()\[\]]'),
    ("IDENT",     r'[A-Za-z_$][A-Za-z0-9_$]*'),
    ("WS",        r'\s+'),
]

_TOKEN_RE = re.compile("|".join(f"(?P<{name}>{pat})" for name, pat in _TOKEN_PATTERNS))

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", '"': '"', "'": "'"}

_CONSTANTS = {
    "true": True, "True": True,
    "false": False, "False": False,
    "null": None, "None": None, "undefined": None,
}

# Strict and loose equality behave the same
_STRICT_EQUALITY = {"===": "==", "!==": "!="}

# steps.my-step.output -> steps["my-step"].output
_HYPHEN_PATH_RE = re.compile(r'(?<![\w$.])(vars|steps|env)((?:\.[A-Za-z0-9_-]+)+)')


def _rewrite_hyphenated_paths(expr: str) -> str:
    def repl(m: "re.Match[str]") -> str:
        segments = m.group(2)[1:].split(".")
        return m.group(1) + "".join(f'["{s}"]' if "-" in s else f".{s}" for s in segments)
    return _HYPHEN_PATH_RE.sub(repl, expr)


def _tokenize(expr: str) -> List[Tuple[str, str]]:
    """Tokenize expression string. Returns [(type, value), ...]."""
    tokens: List[Tuple[str, str]] = []
    pos = 0
    for m in _TOKEN_RE.finditer(expr):
        if m.start() != pos:
            break
        pos = m.end()
        if m.lastgroup != "WS":
            tokens.append((m.lastgroup, m.group()))
    if pos != len(expr):
        raise EvaluationError(f"Unexpected character at position {pos}: '{expr[pos:]}'")
    return tokens


# ---------------------------------------------------------------------------
# Parser (recursive descent) -> tuple AST
# ---------------------------------------------------------------------------

class _Parser:

    def __init__(self, tokens: List[Tuple[str, str]]):
        self.tokens = tokens
        self.pos = 0

    def _peek(self) -> Optional[Tuple[str, str]]:
        if self.pos < len(self.tokens):
            return self.tokens[self.pos]
        return None

    def _advance(self) -> Tuple[str, str]:
        tok = self.tokens[self.pos]
        self.pos += 1
        return tok

    def _at(self, *values: str) -> bool:
        tok = self._peek()
        return tok is not None and tok[0] in ("OP", "IDENT") and tok[1] in values

    def _expect(self, value: str) -> None:
        tok = self._peek()
        if tok is None:
            raise EvaluationError(f"Expected '{value}' but got end of expression")
        if tok[1] != value:
            raise EvaluationError(f"Expected '{value}' but got '{tok[1]}'")
        self._advance()

    def parse(self) -> tuple:
        node = self.parse_expression()
        if self.pos != len(self.tokens):
            raise EvaluationError(f"Unexpected token '{self.tokens[self.pos][1]}'")
        return node

    def parse_expression(self) -> tuple:
        cond = self.parse_or()
        if self._at("?"):
            self._advance()
            then = self.parse_expression()
            self._expect(":")
            otherwise = self.parse_expression()
            return ("cond", cond, then, otherwise)
        return cond

    def parse_or(self) -> tuple:
        left = self.parse_and()
        while self._at("||", "or"):
            self._advance()
            left = ("or", left, self.parse_and())
        return left

    def parse_and(self) -> tuple:
        left = self.parse_not()
        while self._at("&&", "and"):
            self._advance()
            left = ("and", left, self.parse_not())
        return left

    def parse_not(self) -> tuple:
        if self._at("not"):
            self._advance()
            return ("unary", "!", self.parse_not())
        return self.parse_equality()

    def parse_equality(self) -> tuple:
        left = self.parse_comparison()
        while self._at("==", "!=", "===", "!=="):
            op = self._advance()[1]
            left = ("binary", _STRICT_EQUALITY.get(op, op), left, self.parse_comparison())
        return left

    def parse_comparison(self) -> tuple:
        left = self.parse_additive()
        while self._at("<", "<=", ">", ">=", "in"):
            op = self._advance()[1]
            left = ("binary", op, left, self.parse_additive())
        return left

    def parse_additive(self) -> tuple:
        left = self.parse_term()
        while self._at("+", "-"):
            op = self._advance()[1]
            left = ("binary", op, left, self.parse_term())
        return left

    def parse_term(self) -> tuple:
        left = self.parse_unary()
        while self._at("*", "/", "%"):
            op = self._advance()[1]
            left = ("binary", op, left, self.parse_unary())
        return left

    def parse_unary(self) -> tuple:
        if self._at("!", "-", "+"):
            op = self._advance()[1]
            return ("unary", op, self.parse_unary())
        return self.parse_postfix()

    def parse_postfix(self) -> tuple:
        node = self.parse_primary()
        while True:
            if self._at("."):
                self._advance()
                tok = self._peek()
                if tok is None or tok[0] not in ("IDENT", "NUMBER"):
                    raise EvaluationError("Expected property name after '.'")
                self._advance()
                # "items.0.1" lexes the path tail as the number 0.1
                for part in tok[1].split("."):
                    node = ("member", node, ("lit", part))
            elif self._at("["):
                self._advance()
                index = self.parse_expression()
                self._expect("]")
                node = ("member", node, index)
            elif self._at("("):
                self._advance()
                args = self._parse_args(")")
                if node[0] == "name":
                    if node[1] not in FUNCTIONS:
                        raise EvaluationError(f"Unknown function '{node[1]}'")
                    node = ("call", node[1], args)
                elif node[0] == "member" and node[2][0] == "lit":
                    node = ("method", node[1], node[2][1], args)
                else:
                    raise EvaluationError("Expression is not callable")
            else:
                return node

    def _parse_args(self, closing: str) -> tuple:
        args = []
        if self._at(closing):
            self._advance()
            return tuple(args)
        while True:
            args.append(self.parse_expression())
            if self._at(","):
                self._advance()
                continue
            self._expect(closing)
            return tuple(args)

    def parse_primary(self) -> tuple:
        tok = self._peek()
        if tok is None:
            raise EvaluationError("Unexpected end of expression")
        kind, value = tok

        if kind == "NUMBER":
            self._advance()
            return ("lit", float(value) if "." in value else int(value))

        if kind == "STRING":
            self._advance()
            body = value[1:-1]
            return ("lit", re.sub(r"\\(.)", lambda m: _ESCAPES.get(m.group(1), m.group(1)), body))

        if kind == "IDENT":
            self._advance()
            if value in _CONSTANTS:
                return ("lit", _CONSTANTS[value])
            return ("name", value)

        if value == "(":
            self._advance()
            node = self.parse_expression()
            self._expect(")")
            return node

        if value == "[":
            self._advance()
            return ("array", self._parse_args("]"))

        raise EvaluationError(f"Unexpected token '{value}'")


@lru_cache(maxsize=512)
def parse_expression(expr: str) -> tuple:
    """Parse an expression into an AST (cached; the AST is immutable)."""
    tokens = _tokenize(_rewrite_hyphenated_paths(expr.strip()))
    if not tokens:
        raise EvaluationError("Empty expression")
    return _Parser(tokens).parse()


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------

class ExpressionEvaluator:
    """
    Stateless evaluator; one instance can be shared by every run.

    Any object with the same evaluate(expr, scope) method can be injected
    into ExpressionResolver instead.
    """

    def evaluate(self, expr: str, scope: Mapping[str, Any]) -> Any:
        """
        Evaluate an expression.

        Args:
            expr: Expression source, e.g. "steps.check.output.count > 0"
            scope: Visible names (vars, steps, env, loop bindings)

        Raises:
            EvaluationError: If the expression is malformed or fails.
        """
        return self._eval(parse_expression(expr), scope)

    def _eval(self, node: tuple, scope: Mapping[str, Any]) -> Any:
        kind = node[0]

        if kind == "lit":
            return node[1]

        if kind == "name":
            if node[1] not in scope:
                raise EvaluationError(f"Unknown name '{node[1]}'")
            return scope[node[1]]

        if kind == "member":
            return get_member(self._eval(node[1], scope), self._eval(node[2], scope))

        if kind == "array":
            return [self._eval(n, scope) for n in node[1]]

        if kind == "call":
            args = [self._eval(n, scope) for n in node[2]]
            try:
                return FUNCTIONS[node[1]](*args)
            except TypeError as e:
                raise EvaluationError(f"{node[1]}(): {e}")

        if kind == "method":
            obj = self._eval(node[1], scope)
            args = [self._eval(n, scope) for n in node[3]]
            return _method(obj, node[2], args)

        if kind == "and":
            left = self._eval(node[1], scope)
            return self._eval(node[2], scope) if truthy(left) else left

        if kind == "or":
            left = self._eval(node[1], scope)
            return left if truthy(left) else self._eval(node[2], scope)

        if kind == "cond":
            branch = node[2] if truthy(self._eval(node[1], scope)) else node[3]
            return self._eval(branch, scope)

        if kind == "unary":
            value = self._eval(node[2], scope)
            if node[1] == "!":
                return not truthy(value)
            number = _to_number(value)
            return -number if node[1] == "-" else number

        if kind == "binary":
            return self._binary(node[1], self._eval(node[2], scope), self._eval(node[3], scope))

        raise EvaluationError(f"Unknown node type: {kind}")

    @staticmethod
    def _binary(op: str, left: Any, right: Any) -> Any:
        if op == "==":
            return _equals(left, right)
        if op == "!=":
            return not _equals(left, right)
        if op in ("<", "<=", ">", ">="):
            return _order(op, left, right)
        if op == "in":
            return _contains(right, left)

        if op == "+":
            if isinstance(left, str) or isinstance(right, str):
                return to_display_string(left) + to_display_string(right)
            if isinstance(left, list) and isinstance(right, list):
                return left + right
            return _to_number(left) + _to_number(right)

        a, b = _to_number(left), _to_number(right)
        if op == "-":
            return a - b
        if op == "*":
            return a * b
        if b == 0:
            raise EvaluationError("Division by zero")
        if op == "/":
            return a / b
        return math.fmod(a, b) if isinstance(a, float) or isinstance(b, float) else int(math.fmod(a, b))
