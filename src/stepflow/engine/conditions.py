"""
Condition operators used to gate steps, actions and controls and to drive loops.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Mapping, Optional

from ..errors import ConditionEvaluationError, ConfigurationError

__all__ = ["ConditionEvaluator", "OPERATORS", "canonical_operator", "operands_for"]


@dataclass(frozen=True)
class Operator:
    name: str
    operands: tuple[int, ...]
    fn: Callable[..., bool]


def _case_sensitive(value3: str, options: Mapping[str, Any]) -> bool:
    if "caseSensitive" in options:
        raw = options["caseSensitive"]
        if isinstance(raw, bool):
            return raw
        return str(raw).strip().upper() not in {"N", "NO", "FALSE", "0"}
    return str(value3 or "").strip().upper() != "N"


def _fold(value: str, sensitive: bool) -> str:
    return value if sensitive else value.casefold()


def _number(raw: str, operator: str) -> Decimal:
    text = str(raw).strip().replace(",", ".")
    try:
        return Decimal(text)
    except (InvalidOperation, ValueError):
        raise ConditionEvaluationError(
            f"'{raw}' is not a number, so it can't be compared with {operator}.", operator=operator
        ) from None


def _string_op(compare: Callable[[str, str], bool]) -> Callable[..., bool]:
    def _run(v1: str, v2: str, v3: str, options: Mapping[str, Any], context: Any) -> bool:
        sensitive = _case_sensitive(v3, options)
        return compare(_fold(v1, sensitive), _fold(v2, sensitive))

    return _run


def _numeric_op(name: str, compare: Callable[[Decimal, Decimal], bool]) -> Callable[..., bool]:
    def _run(v1: str, v2: str, v3: str, options: Mapping[str, Any], context: Any) -> bool:
        return compare(_number(v1, name), _number(v2, name))

    return _run


def _regex_op(expected: bool) -> Callable[..., bool]:
    def _run(v1: str, v2: str, v3: str, options: Mapping[str, Any], context: Any) -> bool:
        try:
            found = re.search(v2, v1) is not None
        except re.error as exc:
            raise ConditionEvaluationError(f"'{v2}' is not a valid regular expression: {exc}") from exc
        return found is expected

    return _run


def _property_exists(expected: bool) -> Callable[..., bool]:
    def _run(v1: str, v2: str, v3: str, options: Mapping[str, Any], context: Any) -> bool:
        has_property = getattr(context, "has_property", None)
        exists = bool(has_property and has_property(v1))
        return exists is expected

    return _run


OPERATORS: Dict[str, Operator] = {
    op.name: op
    for op in [
        Operator("always", (), lambda *_: True),
        Operator("never", (), lambda *_: False),
        Operator("ifPropertyExist", (1,), _property_exists(True)),
        Operator("ifPropertyNotExist", (1,), _property_exists(False)),
        Operator("ifStringEqual", (1, 2, 3), _string_op(lambda a, b: a == b)),
        Operator("ifStringDifferent", (1, 2, 3), _string_op(lambda a, b: a != b)),
        Operator("ifStringGreater", (1, 2, 3), _string_op(lambda a, b: a > b)),
        Operator("ifStringMinor", (1, 2, 3), _string_op(lambda a, b: a < b)),
        Operator("ifStringContains", (1, 2, 3), _string_op(lambda a, b: b in a)),
        Operator("ifStringNotContains", (1, 2, 3), _string_op(lambda a, b: b not in a)),
        Operator("ifStringMatchRegex", (1, 2), _regex_op(True)),
        Operator("ifStringNotMatchRegex", (1, 2), _regex_op(False)),
        Operator("ifStringEmpty", (1,), lambda v1, *_: str(v1 or "") == ""),
        Operator("ifStringNotEmpty", (1,), lambda v1, *_: str(v1 or "") != ""),
        Operator("ifNumericEqual", (1, 2), _numeric_op("ifNumericEqual", lambda a, b: a == b)),
        Operator("ifNumericDifferent", (1, 2), _numeric_op("ifNumericDifferent", lambda a, b: a != b)),
        Operator("ifNumericGreater", (1, 2), _numeric_op("ifNumericGreater", lambda a, b: a > b)),
        Operator("ifNumericGreaterOrEqual", (1, 2), _numeric_op("ifNumericGreaterOrEqual", lambda a, b: a >= b)),
        Operator("ifNumericMinor", (1, 2), _numeric_op("ifNumericMinor", lambda a, b: a < b)),
        Operator("ifNumericMinorOrEqual", (1, 2), _numeric_op("ifNumericMinorOrEqual", lambda a, b: a <= b)),
    ]
}

_ALIASES = {
    "": "always",
    "ALWAYS": "always",
    "NEVER": "never",
    "EQUALS": "ifStringEqual",
    "NOT_EQUALS": "ifStringDifferent",
    "CONTAINS": "ifStringContains",
    "NOT_CONTAINS": "ifStringNotContains",
    "MATCHES": "ifStringMatchRegex",
    "NOT_MATCHES": "ifStringNotMatchRegex",
    "IS_EMPTY": "ifStringEmpty",
    "IS_NOT_EMPTY": "ifStringNotEmpty",
    "GT": "ifNumericGreater",
    "GE": "ifNumericGreaterOrEqual",
    "LT": "ifNumericMinor",
    "LE": "ifNumericMinorOrEqual",
}


def canonical_operator(operator: Optional[str]) -> str:
    raw = (operator or "").strip()
    if raw in OPERATORS:
        return raw
    alias = _ALIASES.get(raw.upper())
    if alias:
        return alias
    raise ConfigurationError(f"Unknown condition operator '{operator}'.")


def operands_for(operator: Optional[str]) -> tuple[int, ...]:
    """Positions (1-based) of the values the operator reads."""
    return OPERATORS[canonical_operator(operator)].operands


class ConditionEvaluator:
    """
    Pure evaluation of ``operator(value1, value2, value3, options)``.

    Values must already be substituted. Operands the operator does not read
    are ignored. ``context`` is only consulted by the property-existence
    operators and is never mutated.
    """

    def evaluate(
        self,
        operator: Optional[str],
        value1: Any = "",
        value2: Any = "",
        value3: Any = "",
        options: Optional[Mapping[str, Any]] = None,
        context: Any = None,
    ) -> bool:
        op = OPERATORS[canonical_operator(operator)]
        supplied = {1: value1, 2: value2, 3: value3}
        values = [_text(supplied[pos]) if pos in op.operands else "" for pos in (1, 2, 3)]
        return bool(op.fn(values[0], values[1], values[2], dict(options or {}), context))


def _text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)
