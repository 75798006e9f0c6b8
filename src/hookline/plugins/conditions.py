"""Evaluation of declarative :class:`~hookline.models.PluginCondition` lists.

All conditions in a list must hold for a plugin to run. Condition types:

* ``env`` -- compares an environment variable (``field``) with ``value``.
* ``context`` -- compares a context attribute with ``value``. ``field`` may
  be a dotted path such as ``tool_input.command``.
* ``tool`` -- like ``context`` but defaults to ``tool_name`` and never
  matches tool-less events.
* ``custom`` -- calls the ``condition`` predicate with the context.
"""

from __future__ import annotations

import inspect
import logging
import os
import re
from typing import Any, Awaitable, Callable, Optional, Sequence

from hookline.models import ExecutionContext, PluginCondition

logger = logging.getLogger(__name__)

_MISSING = object()


def resolve_field(context: ExecutionContext, path: str) -> Any:
    """Look up a dotted attribute/key *path* on *context*. Missing gives ``None``."""
    value: Any = context
    for part in path.split("."):
        if isinstance(value, dict):
            value = value.get(part, _MISSING)
        else:
            value = getattr(value, part, _MISSING)
        if value is _MISSING:
            return None
    return value


def compare_values(actual: Any, operator: str, expected: Any) -> bool:
    """Apply a condition *operator* to *actual* and *expected*."""
    if operator == "equals":
        return actual == expected
    if operator == "not_equals":
        return actual != expected
    if operator in ("contains", "not_contains"):
        if not isinstance(actual, str) or not isinstance(expected, str):
            return False
        return (expected in actual) == (operator == "contains")
    if operator == "matches":
        if not isinstance(actual, str) or not isinstance(expected, str):
            return False
        try:
            return re.search(expected, actual) is not None
        except re.error as exc:
            logger.warning("Invalid condition pattern %r: %s", expected, exc)
            return False
    # "custom" is only meaningful together with a predicate.
    return False


async def evaluate_condition(context: ExecutionContext, condition: PluginCondition) -> bool:
    if condition.type == "custom" or condition.operator == "custom":
        if condition.condition is None:
            return condition.type == "custom"
        outcome = condition.condition(context)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return bool(outcome)

    if condition.type == "env":
        return compare_values(
            os.environ.get(condition.field or ""), condition.operator, condition.value
        )
    if condition.type == "context":
        return compare_values(
            resolve_field(context, condition.field or ""), condition.operator, condition.value
        )
    if condition.type == "tool":
        if not context.is_tool_event:
            return False
        actual = resolve_field(context, condition.field) if condition.field else context.tool_name
        return compare_values(actual, condition.operator, condition.value)
    return True


async def evaluate_conditions(
    context: ExecutionContext, conditions: Sequence[PluginCondition]
) -> bool:
    """Return ``True`` if every condition holds for *context*."""
    for condition in conditions:
        if not await evaluate_condition(context, condition):
            logger.debug("Condition not met: %s %s", condition.type, condition.field)
            return False
    return True


def build_condition(
    conditions: Sequence[PluginCondition],
) -> Optional[Callable[[ExecutionContext], Awaitable[bool]]]:
    """Wrap *conditions* into a hook condition, or ``None`` when there are none."""
    if not conditions:
        return None
    frozen = tuple(conditions)

    async def condition(context: ExecutionContext) -> bool:
        return await evaluate_conditions(context, frozen)

    return condition
