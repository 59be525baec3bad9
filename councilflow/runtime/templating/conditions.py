"""Condition expressions for ``{{#if}}`` / ``{{#unless}}`` blocks.

Grammar, evaluated left-to-right without operator precedence:

1. ``&&`` is split first (every clause must hold), then ``||`` (any clause
   may hold).  Splitting is a plain string split and is not
   parenthesis-aware, so ``a && b || c`` means ``a && (b || c)``.
   Mixed-operator expressions are unsupported.
2. Comparisons ``== != < > <= >=`` with loose equality: numeric strings
   compare as numbers, ``null`` and ``undefined`` equal each other and a
   missing token.
3. Unary ``!``.
4. Plain truthiness of a literal (quoted string, number, ``true``,
   ``false``, ``null``, ``undefined``) or a resolved token path.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping, Sized
from typing import Any


class _Missing:
    """Marker for a token path that does not resolve."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()

_COMPARISON = re.compile(r"^(.+?)\s*(==|!=|<=|>=|<|>)\s*(.+)$", re.DOTALL)
_NUMBER = re.compile(r"^-?\d+(\.\d+)?$")

_LITERALS: dict[str, Any] = {
    "true": True,
    "false": False,
    "null": None,
    "undefined": MISSING,
}

Lookup = Callable[[str], Any]


def evaluate_condition(expression: str, lookup: Lookup) -> bool:
    """Evaluate *expression*; *lookup* resolves token paths (MISSING if absent)."""
    expr = expression.strip()
    if not expr:
        return False

    if "&&" in expr:
        return all(evaluate_condition(part, lookup) for part in expr.split("&&"))
    if "||" in expr:
        return any(evaluate_condition(part, lookup) for part in expr.split("||"))

    match = _COMPARISON.match(expr)
    if match:
        left = _operand(match.group(1), lookup)
        right = _operand(match.group(3), lookup)
        return _compare(left, match.group(2), right)

    if expr.startswith("!"):
        return not evaluate_condition(expr[1:], lookup)

    return is_truthy(_operand(expr, lookup))


def is_truthy(value: Any) -> bool:
    """Template truthiness: empty strings, zero, null and empty containers are false."""
    if value is MISSING or value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0 and value == value
    if isinstance(value, (str, Sized)):
        return len(value) > 0
    return bool(value)


def _operand(token: str, lookup: Lookup) -> Any:
    token = token.strip()
    if len(token) >= 2 and token[0] == token[-1] and token[0] in "\"'":
        return token[1:-1]
    if _NUMBER.match(token):
        return float(token) if "." in token else int(token)
    if token in _LITERALS:
        return _LITERALS[token]
    return lookup(token)


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and _NUMBER.match(value.strip()):
        return float(value.strip())
    return None


def loose_equals(left: Any, right: Any) -> bool:
    nullish_left = left is None or left is MISSING
    nullish_right = right is None or right is MISSING
    if nullish_left or nullish_right:
        return nullish_left and nullish_right
    if type(left) is type(right):
        return left == right
    left_num, right_num = _to_number(left), _to_number(right)
    if left_num is not None and right_num is not None:
        return left_num == right_num
    if isinstance(left, Mapping) or isinstance(right, Mapping):
        return False
    return str(left) == str(right)


def _compare(left: Any, operator: str, right: Any) -> bool:
    if operator == "==":
        return loose_equals(left, right)
    if operator == "!=":
        return not loose_equals(left, right)

    if left is MISSING or right is MISSING:
        return False
    left_num, right_num = _to_number(left), _to_number(right)
    if left_num is not None and right_num is not None:
        a, b = left_num, right_num
    else:
        a, b = str(left), str(right)
    if operator == "<":
        return a < b
    if operator == ">":
        return a > b
    if operator == "<=":
        return a <= b
    return a >= b
