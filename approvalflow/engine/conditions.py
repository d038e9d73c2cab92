"""Condition evaluation for gateway edges.

Conditions fail closed: an operand that cannot be resolved, an unknown
operator, or a value that cannot be coerced all evaluate to ``False``.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Mapping, Optional, Tuple, Union

from ..contracts import ConditionExpression, ConditionOp

logger = logging.getLogger(__name__)

FORM_PREFIX = "form."

_NUMERIC_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")


class _Missing:
    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return "<missing>"


MISSING = _Missing()


def _form_mapping(context: Any) -> Mapping[str, Any]:
    if not isinstance(context, Mapping):
        return {}
    form = context.get("form")
    if isinstance(form, Mapping):
        return form
    return context


def _walk(obj: Any, parts: list[str]) -> Any:
    current = obj
    for part in parts:
        if not isinstance(current, Mapping) or part not in current:
            return MISSING
        current = current[part]
    return current


def resolve_operand(left: str, context: Any) -> Any:
    """Resolve a dotted field path against the form values.

    Tries an exact key first, then the key without a ``form.`` prefix, then
    walks nested mappings segment by segment. Returns ``MISSING`` when
    nothing matches.
    """
    form = _form_mapping(context)
    if left in form:
        return form[left]

    stripped = left[len(FORM_PREFIX):] if left.startswith(FORM_PREFIX) else left
    if stripped in form:
        return form[stripped]

    parts = [part for part in stripped.split(".") if part]
    if not parts:
        return MISSING
    return _walk(form, parts)


def to_number(value: Any) -> float:
    """Numeric projection used by the ordering operators."""
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and _NUMERIC_RE.match(value.strip()):
        return float(value.strip())
    return math.nan


def to_comparable(value: Any) -> Tuple[str, Any]:
    """Project a value onto a ``(kind, value)`` pair for equality checks.

    Numeric-looking strings become numbers and ``"true"``/``"false"`` become
    booleans. Values of different kinds never compare equal.
    """
    if value is None:
        return ("null", None)
    if isinstance(value, bool):
        return ("boolean", value)
    if isinstance(value, (int, float)):
        return ("number", float(value))
    text = value.strip() if isinstance(value, str) else str(value)
    if _NUMERIC_RE.match(text):
        return ("number", float(text))
    if text == "true":
        return ("boolean", True)
    if text == "false":
        return ("boolean", False)
    return ("string", text)


def _coerce_expression(
    expr: Union[ConditionExpression, Mapping[str, Any], None]
) -> Optional[ConditionExpression]:
    if expr is None or isinstance(expr, ConditionExpression):
        return expr
    if isinstance(expr, Mapping) and isinstance(expr.get("left"), str):
        return ConditionExpression(
            left=expr["left"], op=str(expr.get("op", "")), right=expr.get("right")
        )
    return None


def evaluate(
    expr: Union[ConditionExpression, Mapping[str, Any], None], context: Any
) -> bool:
    """Evaluate ``expr`` against ``context`` (``{"form": {...}}``)."""
    condition = _coerce_expression(expr)
    if condition is None:
        logger.warning(f"Malformed condition expression ignored: {expr!r}")
        return False

    left_value = resolve_operand(condition.left, context)
    if left_value is MISSING:
        logger.warning(
            f"Condition operand '{condition.left}' not found in form; evaluating to false"
        )
        return False

    op = condition.op
    if op == ConditionOp.EQ.value:
        return to_comparable(left_value) == to_comparable(condition.right)
    if op == ConditionOp.NEQ.value:
        return to_comparable(left_value) != to_comparable(condition.right)

    left_number = to_number(left_value)
    right_number = to_number(condition.right)
    if op == ConditionOp.GT.value:
        return left_number > right_number
    if op == ConditionOp.GTE.value:
        return left_number >= right_number
    if op == ConditionOp.LT.value:
        return left_number < right_number
    if op == ConditionOp.LTE.value:
        return left_number <= right_number

    logger.warning(f"Unknown condition operator '{op}'; evaluating to false")
    return False
