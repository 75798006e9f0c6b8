"""Timeout-bounded execution of a single hook handler.

:func:`execute_hook` is the only place where user code is invoked. It
normalises whatever the handler does -- return a :class:`HookResult`, return
a plain dict, raise, or hang -- into one :class:`HookResult` stamped with
execution metadata.

Timeouts stop the *caller* from waiting; the handler task itself is left
running. Its late outcome is consumed and logged so that it never surfaces
as an "exception was never retrieved" warning.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from hookline import __version__
from hookline.exceptions import ExecutionError, TimeoutError_, ValidationError
from hookline.models import ExecutionContext, HookEvent, HookResult

logger = logging.getLogger(__name__)

HookHandler = Callable[
    [ExecutionContext],
    Union[HookResult, dict[str, Any], Awaitable[Union[HookResult, dict[str, Any]]]],
]
"""A hook handler: sync or async, returning a result or a result-shaped dict."""

MIN_TIMEOUT = 1.0
MAX_TIMEOUT = 300.0
SLOW_HOOK_THRESHOLD_MS = 10_000

ERROR_TYPE_KEY = "error_type"
"""Metadata key set on failures produced by a handler exception or timeout."""

_DEFAULT_TIMEOUTS = {
    HookEvent.PRE_TOOL_USE: 15.0,
    HookEvent.POST_TOOL_USE: 30.0,
    HookEvent.USER_PROMPT_SUBMIT: 10.0,
    HookEvent.SESSION_START: 60.0,
}


def default_timeout(event: HookEvent) -> float:
    """Return the default timeout for *event*, in seconds."""
    return _DEFAULT_TIMEOUTS.get(event, 30.0)


def normalize_timeout(timeout: Optional[float], event: HookEvent) -> float:
    """Clamp *timeout* into ``[1s, 300s]``, using the event default when ``None``."""
    if timeout is None:
        return default_timeout(event)
    return min(max(float(timeout), MIN_TIMEOUT), MAX_TIMEOUT)


def validate_context(context: ExecutionContext) -> None:
    """Check that *context* carries the fields every hook relies on.

    Raises:
        ValidationError: If the event, session id or working directory is
            missing.
    """
    if not getattr(context, "event", None):
        raise ValidationError("Invalid hook context: missing event", field="event")
    if not getattr(context, "session_id", None):
        raise ValidationError("Invalid hook context: missing session ID", field="session_id")
    if not getattr(context, "cwd", None):
        raise ValidationError(
            "Invalid hook context: missing current working directory", field="cwd"
        )


def coerce_result(value: Any) -> HookResult:
    """Turn a handler's return value into a :class:`HookResult`.

    Raises:
        TypeError: If *value* is neither a result nor a result-shaped dict.
    """
    if isinstance(value, HookResult):
        return value
    if isinstance(value, dict):
        try:
            return HookResult.model_validate(value)
        except PydanticValidationError as exc:
            raise TypeError(f"Hook returned an invalid result: {exc}") from exc
    raise TypeError(
        f"Hook must return a HookResult or dict, got {type(value).__name__}"
    )


def execution_metadata(duration_ms: float) -> dict[str, Any]:
    """Build the metadata block stamped onto every result."""
    return {
        "duration": duration_ms,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
    }


def is_execution_error(result: HookResult) -> bool:
    """Return ``True`` if *result* stands in for a handler that raised or timed out."""
    return result.metadata.get(ERROR_TYPE_KEY) is not None


async def call_handler(func: Callable[..., Any], *args: Any) -> Any:
    """Call *func* with *args* without blocking the event loop.

    Coroutine functions are awaited directly. Anything else runs in a worker
    thread, so a synchronous handler that sleeps or does blocking I/O cannot
    stall the loop or starve the timeout. An awaitable returned from the
    thread is awaited on the loop.
    """
    if inspect.iscoroutinefunction(func):
        return await func(*args)
    value = await asyncio.to_thread(func, *args)
    if inspect.isawaitable(value):
        value = await value
    return value


async def _invoke(handler: HookHandler, context: ExecutionContext) -> HookResult:
    return coerce_result(await call_handler(handler, context))


def _consume_late_outcome(task: asyncio.Future) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Timed-out hook failed after its deadline: %s", exc)
    else:
        logger.debug("Timed-out hook finished after its deadline")


async def execute_hook(
    handler: HookHandler,
    context: ExecutionContext,
    *,
    timeout: float = 30.0,
    throw_on_error: bool = False,
) -> HookResult:
    """Run *handler* against *context* under a timeout.

    Args:
        handler: The hook callable, sync or async.
        context: The execution context for this event.
        timeout: Seconds to wait before giving up on the handler.
        throw_on_error: Raise instead of returning a failure result.

    Returns:
        The handler's result with ``metadata`` stamped, or a failure result
        whose ``block`` flag is set when the event is ``PreToolUse``.

    Raises:
        ValidationError: If *context* is missing required fields. Raised
            before the handler is invoked, regardless of *throw_on_error*.
        TimeoutError_: On timeout, only when *throw_on_error* is set.
        ExecutionError: On handler failure, only when *throw_on_error* is set.
    """
    validate_context(context)
    start = time.perf_counter()
    task = asyncio.ensure_future(_invoke(handler, context))

    try:
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if task not in done:
            task.add_done_callback(_consume_late_outcome)
            raise TimeoutError_(timeout)
        result = task.result()
    except Exception as exc:
        duration = (time.perf_counter() - start) * 1000
        if isinstance(exc, TimeoutError_):
            logger.error("Hook execution timed out: %s", exc)
        else:
            logger.error("Hook execution failed: %s", exc)

        if throw_on_error:
            if isinstance(exc, ExecutionError):
                raise
            raise ExecutionError(str(exc) or type(exc).__name__, original=exc) from exc

        return HookResult(
            success=False,
            message=str(exc) or type(exc).__name__,
            block=context.event == HookEvent.PRE_TOOL_USE,
            metadata={
                **execution_metadata(duration),
                ERROR_TYPE_KEY: "timeout" if isinstance(exc, TimeoutError_) else "exception",
            },
        )

    duration = (time.perf_counter() - start) * 1000
    if duration > SLOW_HOOK_THRESHOLD_MS:
        logger.warning("Slow hook execution: %.0fms", duration)
    else:
        logger.debug("Hook execution completed in %.1fms", duration)

    return result.model_copy(
        update={"metadata": {**result.metadata, **execution_metadata(duration)}}
    )
