"""The keyed hook registry and dispatch engine.

Hooks are stored under a registry key: ``"PreToolUse"`` for hooks that apply
to every tool (or to a tool-less event), ``"PreToolUse:Bash"`` for hooks
scoped to one tool. Within a key entries are kept in non-increasing priority
order; ties keep their insertion order.

For one event :meth:`HookRegistry.execute` runs the universal entries plus
the entries scoped to the event's tool, strictly one after another:

1. Disabled entries, and entries whose ``applies`` check is false, are
   skipped without producing a result.
2. Each entry runs through :func:`~hookline.execution.execute_hook`, so
   handler exceptions and timeouts come back as failure results.
3. A ``PreToolUse`` result with ``success=False`` and ``block=True`` stops
   the chain. With ``stop_on_failure`` any failure stops it; with
   ``stop_on_error`` a failure stops it only when the handler raised or
   timed out.

There is no process-wide registry: create one with :func:`create_registry`
and pass it where it is needed.
"""

from __future__ import annotations

import inspect
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional, Union

from hookline.builder import HookEntry
from hookline.exceptions import ValidationError
from hookline.execution import (
    default_timeout,
    execute_hook,
    is_execution_error,
    validate_context,
)
from hookline.models import ExecutionContext, ExecutionStats, HookEvent, HookResult

logger = logging.getLogger(__name__)

NO_HOOKS_MESSAGE = "No hooks executed"

ResultCallback = Callable[[HookEntry, ExecutionContext, HookResult], Any]


def registry_key(event: Union[HookEvent, str], tool: Optional[str] = None) -> str:
    """Return the storage key for *event*, optionally scoped to *tool*.

    Example::

        >>> registry_key(HookEvent.PRE_TOOL_USE, "Bash")
        'PreToolUse:Bash'
    """
    name = HookEvent(event).value
    return f"{name}:{tool}" if tool else name


class HookRegistry:
    """Priority-ordered store of :class:`HookEntry` objects.

    Args:
        stop_on_failure: Stop a chain at the first failed result, not only
            at a blocking ``PreToolUse`` failure.
        stop_on_error: Stop a chain at the first handler exception or
            timeout. Failure results returned by a handler do not stop it.
        collect_stats: Record per-key execution statistics.
        on_result: Called with ``(entry, context, result)`` after every
            entry runs. Errors raised by the callback are logged.
    """

    def __init__(
        self,
        *,
        stop_on_failure: bool = False,
        stop_on_error: bool = False,
        collect_stats: bool = True,
        on_result: Optional[ResultCallback] = None,
    ) -> None:
        self.stop_on_failure = stop_on_failure
        self.stop_on_error = stop_on_error
        self.on_result = on_result
        self.collect_stats = collect_stats
        self._hooks: dict[str, list[HookEntry]] = {}
        self._stats: dict[str, ExecutionStats] = {}
        self._stats_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, entry: HookEntry) -> None:
        """Insert *entry* before the first entry of lower priority.

        Raises:
            ValidationError: If *entry* is not a :class:`HookEntry`.
        """
        if not isinstance(entry, HookEntry):
            raise ValidationError(
                f"Expected a HookEntry, got {type(entry).__name__}", field="entry"
            )
        key = registry_key(entry.event, entry.tool)
        entries = self._hooks.setdefault(key, [])
        index = len(entries)
        for i, existing in enumerate(entries):
            if existing.priority < entry.priority:
                index = i
                break
        entries.insert(index, entry)
        logger.debug(
            "Registered hook %s at %s (priority=%d)", entry.name or "<anonymous>", key, entry.priority
        )

    def register_all(self, entries: Iterable[HookEntry]) -> None:
        for entry in entries:
            self.register(entry)

    def unregister(self, event: Union[HookEvent, str], tool: Optional[str] = None) -> None:
        """Drop every entry stored under the key for *event* / *tool*."""
        self._hooks.pop(registry_key(event, tool), None)

    def remove(self, name: str) -> int:
        """Remove every entry named *name* across all keys.

        Returns:
            The number of entries removed.
        """
        removed = 0
        for key in list(self._hooks):
            kept = [e for e in self._hooks[key] if e.name != name]
            removed += len(self._hooks[key]) - len(kept)
            if kept:
                self._hooks[key] = kept
            else:
                del self._hooks[key]
        return removed

    def clear(self) -> None:
        """Remove all entries and reset statistics."""
        self._hooks.clear()
        with self._stats_lock:
            self._stats.clear()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_hooks(
        self, event: Union[HookEvent, str], tool: Optional[str] = None
    ) -> tuple[HookEntry, ...]:
        """Return the entries that apply to *event* (and *tool*), highest priority first.

        The result is a snapshot: registering or removing entries afterwards
        does not change it.
        """
        combined = list(self._hooks.get(registry_key(event), ()))
        if tool:
            combined.extend(self._hooks.get(registry_key(event, tool), ()))
        combined.sort(key=lambda entry: entry.priority, reverse=True)
        return tuple(combined)

    def has_hooks(self, event: Union[HookEvent, str]) -> bool:
        """Return ``True`` if any entry, universal or scoped, listens to *event*."""
        name = HookEvent(event).value
        return any(
            entries and (key == name or key.startswith(name + ":"))
            for key, entries in self._hooks.items()
        )

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._hooks.values())

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, context: ExecutionContext) -> list[HookResult]:
        """Run every applicable entry for *context* and collect the results.

        Raises:
            ValidationError: If *context* is missing required fields.
        """
        validate_context(context)
        results: list[HookResult] = []

        for entry in self.get_hooks(context.event, context.tool_name):
            if not entry.enabled:
                continue
            if entry.applies is not None and not await self._applies(entry, context):
                continue

            timeout = entry.timeout if entry.timeout is not None else default_timeout(context.event)
            result = await execute_hook(entry.invoke, context, timeout=timeout)
            results.append(result)
            self._record(context, result)
            self._notify(entry, context, result)

            if result.is_blocking(context.event):
                logger.info(
                    "Hook %s blocked %s: %s",
                    entry.name or "<anonymous>",
                    context.tool_name,
                    result.message,
                )
                break
            if not result.success and (
                self.stop_on_failure or (self.stop_on_error and is_execution_error(result))
            ):
                logger.info("Stopping hook chain after failure: %s", result.message)
                break

        return results

    async def _applies(self, entry: HookEntry, context: ExecutionContext) -> bool:
        try:
            outcome = entry.applies(context)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception as exc:
            logger.warning(
                "Skipping hook %s, applicability check failed: %s", entry.name or "<anonymous>", exc
            )
            return False
        return bool(outcome)

    def _notify(self, entry: HookEntry, context: ExecutionContext, result: HookResult) -> None:
        if self.on_result is None:
            return
        try:
            self.on_result(entry, context, result)
        except Exception as exc:
            logger.warning(
                "Result callback failed for hook %s: %s", entry.name or "<anonymous>", exc
            )

    async def execute_and_combine(self, context: ExecutionContext) -> HookResult:
        """Run the chain and fold its results into one verdict.

        * No results: success with ``"No hooks executed"``.
        * A blocking ``PreToolUse`` failure: that result.
        * Otherwise the first failure, if any.
        * Otherwise a success joining all messages with ``"; "``.
        """
        results = await self.execute(context)
        return combine_results(results, context.event)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_stats(
        self, event: Union[HookEvent, str, None] = None, tool: Optional[str] = None
    ) -> list[ExecutionStats]:
        """Return copies of the recorded statistics, optionally filtered."""
        event_name = HookEvent(event).value if event is not None else None
        with self._stats_lock:
            rows = [stats.model_copy() for stats in self._stats.values()]

        def matches(key: str) -> bool:
            key_event, _, key_tool = key.partition(":")
            if event_name is not None and key_event != event_name:
                return False
            if tool is not None and key_tool != tool:
                return False
            return True

        return [row for row in rows if matches(row.key)]

    def _record(self, context: ExecutionContext, result: HookResult) -> None:
        if not self.collect_stats:
            return
        key = registry_key(context.event, context.tool_name)
        duration = float(result.metadata.get("duration", 0.0))
        with self._stats_lock:
            stats = self._stats.get(key)
            if stats is None:
                stats = self._stats[key] = ExecutionStats(key=key)
            stats.total_executions += 1
            if result.success:
                stats.successful_executions += 1
            else:
                stats.failed_executions += 1
                if result.is_blocking(context.event):
                    stats.blocked_executions += 1
            stats.average_duration += (duration - stats.average_duration) / stats.total_executions
            stats.last_execution = datetime.now(timezone.utc).isoformat()


def combine_results(results: list[HookResult], event: HookEvent) -> HookResult:
    """Fold the results of one chain into a single verdict."""
    if not results:
        return HookResult(success=True, message=NO_HOOKS_MESSAGE)

    for result in results:
        if result.is_blocking(event):
            return result
    for result in results:
        if not result.success:
            return result

    messages = [r.message for r in results if r.message]
    return HookResult(
        success=True,
        message="; ".join(messages) if messages else None,
        data={
            "hook_count": len(results),
            "results": [r.model_dump() for r in results],
        },
    )


def create_registry(**options) -> HookRegistry:
    """Create a new, empty :class:`HookRegistry`."""
    return HookRegistry(**options)
