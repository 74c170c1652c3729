"""When-condition evaluation.

Branch and tag conditions read ``BRANCH_NAME`` (or ``GIT_BRANCH``) and
``TAG_NAME`` from the context variables and match them as shell-style
globs. Expression conditions use a small boolean language:

- literals: ``'text'``, ``"text"``, numbers, ``true``, ``false``
- variables: ``NAME``, ``env.NAME``, ``params.NAME``, ``${NAME}``
- comparisons: ``==``, ``!=``, ``<``, ``<=``, ``>``, ``>=``, ``=~`` (glob)
- logic: ``&&``, ``||``, ``!``, ``and``, ``or``, ``not`` and parentheses

Anything else raises ``ConditionError``.

Examples:
    >>> evaluate_expression("DEPLOY == 'true' && REGION =~ 'eu-*'", {"DEPLOY": "true", "REGION": "eu-west"}.get)
    True
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from fnmatch import fnmatchcase
from typing import TYPE_CHECKING

from pipeliner.exceptions import ConditionError
from pipeliner.pipeline.conditions import WhenCondition, WhenKind

if TYPE_CHECKING:
    from pipeliner.executor.context import ExecutionContext

logger = logging.getLogger(__name__)

Resolver = Callable[[str], "str | None"]

_FALSY = frozenset({"", "false", "0", "no", "off"})

_TOKEN_PATTERN = re.compile(
    r"""
    \s*(?:
        (?P<string>'[^']*'|"[^"]*")
      | (?P<number>-?\d+(?:\.\d+)?)
      | (?P<var>\$\{[A-Za-z_][A-Za-z0-9_]*\})
      | (?P<op>==|!=|<=|>=|=~|&&|\|\||[<>!()])
      | (?P<ident>[A-Za-z_][A-Za-z0-9_.]*)
    )
    """,
    re.VERBOSE,
)

_KEYWORDS = {"and": "&&", "or": "||", "not": "!"}
_COMPARISONS = frozenset({"==", "!=", "<", "<=", ">", ">=", "=~"})


# ============================================================================
# Tokenizer
# ============================================================================


def _tokenize(text: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    pos = 0
    stripped = text.rstrip()
    while pos < len(stripped):
        match = _TOKEN_PATTERN.match(stripped, pos)
        if match is None or match.end() == pos:
            raise ConditionError(text, f"unexpected character at position {pos}: {stripped[pos]!r}")
        pos = match.end()
        kind = match.lastgroup or ""
        value = match.group(kind)
        if kind == "ident" and value.lower() in _KEYWORDS:
            tokens.append(("op", _KEYWORDS[value.lower()]))
        elif kind == "ident" and value.lower() in ("true", "false"):
            tokens.append(("bool", value.lower()))
        else:
            tokens.append((kind, value))
    return tokens


# ============================================================================
# Parser / evaluator
# ============================================================================


class _Parser:
    """Recursive-descent evaluator over a token list.

    Grammar::

        or_expr   := and_expr ('||' and_expr)*
        and_expr  := unary ('&&' unary)*
        unary     := '!' unary | comparison
        comparison:= operand (CMP operand)?
        operand   := '(' or_expr ')' | literal | variable
    """

    def __init__(self, text: str, tokens: list[tuple[str, str]], resolve: Resolver) -> None:
        self._text = text
        self._tokens = tokens
        self._pos = 0
        self._resolve = resolve

    def _peek(self) -> tuple[str, str] | None:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _take(self) -> tuple[str, str]:
        token = self._peek()
        if token is None:
            raise ConditionError(self._text, "unexpected end of expression")
        self._pos += 1
        return token

    def _accept(self, op: str) -> bool:
        token = self._peek()
        if token is not None and token == ("op", op):
            self._pos += 1
            return True
        return False

    def parse(self) -> bool:
        if not self._tokens:
            raise ConditionError(self._text, "empty expression")
        value = self._or()
        leftover = self._peek()
        if leftover is not None:
            raise ConditionError(self._text, f"unexpected token {leftover[1]!r}")
        return _truthy(value)

    def _or(self) -> str | bool | None:
        left = self._and()
        while self._accept("||"):
            right = self._and()
            left = _truthy(left) or _truthy(right)
        return left

    def _and(self) -> str | bool | None:
        left = self._unary()
        while self._accept("&&"):
            right = self._unary()
            left = _truthy(left) and _truthy(right)
        return left

    def _unary(self) -> str | bool | None:
        if self._accept("!"):
            return not _truthy(self._unary())
        return self._comparison()

    def _comparison(self) -> str | bool | None:
        left = self._operand()
        token = self._peek()
        if token is not None and token[0] == "op" and token[1] in _COMPARISONS:
            self._pos += 1
            right = self._operand()
            return _compare(token[1], left, right)
        return left

    def _operand(self) -> str | bool | None:
        kind, value = self._take()
        if kind == "op" and value == "(":
            inner = self._or()
            if not self._accept(")"):
                raise ConditionError(self._text, "missing closing parenthesis")
            return inner
        if kind == "string":
            return value[1:-1]
        if kind == "number":
            return value
        if kind == "bool":
            return value == "true"
        if kind == "var":
            return self._resolve(value[2:-1])
        if kind == "ident":
            name = value
            for prefix in ("env.", "params."):
                if name.startswith(prefix):
                    name = name[len(prefix) :]
                    break
            if not name or "." in name:
                raise ConditionError(self._text, f"unsupported reference {value!r}")
            return self._resolve(name)
        raise ConditionError(self._text, f"unexpected token {value!r}")


def _truthy(value: str | bool | None) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return value.strip().lower() not in _FALSY


def _as_text(value: str | bool | None) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return value or ""


def _as_number(value: str) -> float | None:
    try:
        return float(value)
    except ValueError:
        return None


def _compare(op: str, left: str | bool | None, right: str | bool | None) -> bool:
    lhs, rhs = _as_text(left), _as_text(right)
    if op == "=~":
        return fnmatchcase(lhs, rhs)
    lnum, rnum = _as_number(lhs), _as_number(rhs)
    if lnum is not None and rnum is not None:
        a: float | str = lnum
        b: float | str = rnum
    else:
        a, b = lhs, rhs
    match op:
        case "==":
            return a == b
        case "!=":
            return a != b
        case "<":
            return a < b  # type: ignore[operator]
        case "<=":
            return a <= b  # type: ignore[operator]
        case ">":
            return a > b  # type: ignore[operator]
        case _:
            return a >= b  # type: ignore[operator]


def evaluate_expression(expression: str, resolve: Resolver) -> bool:
    """Evaluate ``expression`` with variables looked up through ``resolve``.

    Args:
        expression: Expression text.
        resolve: Returns the value of a variable, or None when unset.

    Returns:
        The boolean value of the expression.

    Raises:
        ConditionError: If the expression is malformed.
    """
    return _Parser(expression, _tokenize(expression), resolve).parse()


# ============================================================================
# When-conditions
# ============================================================================


def current_branch(resolve: Resolver) -> str | None:
    """Return the branch of the run from ``BRANCH_NAME`` or ``GIT_BRANCH``."""
    branch = resolve("BRANCH_NAME") or resolve("GIT_BRANCH")
    if branch and branch.startswith("origin/"):
        branch = branch[len("origin/") :]
    return branch or None


def evaluate_when(condition: WhenCondition, context: ExecutionContext) -> bool:
    """Decide whether a stage guarded by ``condition`` runs in ``context``.

    Raises:
        ConditionError: If an expression condition is malformed.
    """
    resolve = context.resolve
    match condition.kind:
        case WhenKind.BRANCH:
            branch = current_branch(resolve)
            return branch is not None and fnmatchcase(branch, condition.pattern or "")
        case WhenKind.TAG:
            tag = resolve("TAG_NAME")
            return bool(tag) and fnmatchcase(tag or "", condition.pattern or "")
        case WhenKind.ENVIRONMENT:
            actual = resolve(condition.name or "")
            if actual is None:
                return False
            if condition.value is not None:
                return actual == condition.value
            return fnmatchcase(actual, condition.pattern or "")
        case WhenKind.EXPRESSION:
            return evaluate_expression(condition.expression or "", resolve)
        case WhenKind.ALL_OF:
            return all(evaluate_when(child, context) for child in condition.conditions)
        case WhenKind.ANY_OF:
            return any(evaluate_when(child, context) for child in condition.conditions)
        case WhenKind.NOT:
            return not evaluate_when(condition.conditions[0], context)
    raise ConditionError(str(condition.kind), "unknown condition kind")


__all__ = [
    "current_branch",
    "evaluate_expression",
    "evaluate_when",
]
