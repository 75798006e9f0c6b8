"""Hook contract, fluent builder, and middleware.

A hook is described by a :class:`HookEntry`: the event it listens to, an
optional tool scope, a handler, and scheduling options. Entries are usually
produced by the immutable :class:`HookBuilder` or by :func:`define_hook`::

    entry = (
        HookBuilder.pre_tool_use()
        .for_tool("Bash")
        .with_priority(10)
        .with_middleware(timing())
        .with_handler(check_command)
        .build()
    )

The handler, its condition and its middleware are composed exactly once when
the entry is created. The resulting :attr:`HookEntry.invoke` callable is what
the registry runs; calling it evaluates the condition first, then the
middleware chain (first-attached outermost), then the handler.
"""

from __future__ import annotations

import inspect
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Optional, Sequence, Union

from hookline.exceptions import ValidationError
from hookline.execution import HookHandler, call_handler, coerce_result
from hookline.models import ExecutionContext, HookEvent, HookResult, TOOL_EVENTS

logger = logging.getLogger(__name__)

SKIPPED_MESSAGE = "Hook skipped due to condition"

NextHandler = Callable[[ExecutionContext], Awaitable[HookResult]]
HookMiddleware = Callable[[ExecutionContext, NextHandler], Awaitable[HookResult]]
HookCondition = Callable[[ExecutionContext], Union[bool, Awaitable[bool]]]


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def compose_handler(
    handler: HookHandler,
    condition: Optional[HookCondition] = None,
    middleware: Sequence[HookMiddleware] = (),
) -> NextHandler:
    """Compose *condition*, *middleware* and *handler* into one async callable.

    The condition is checked outermost. A false condition short-circuits
    with a successful "skipped" result without entering the middleware.
    Middleware is folded from the right so the first element runs first.
    """

    async def base(context: ExecutionContext) -> HookResult:
        return coerce_result(await call_handler(handler, context))

    chain: NextHandler = base
    for mw in reversed(tuple(middleware)):
        chain = _wrap_middleware(mw, chain)

    if condition is None:
        return chain

    inner = chain

    async def conditional(context: ExecutionContext) -> HookResult:
        if not await _resolve(condition(context)):
            return HookResult(success=True, message=SKIPPED_MESSAGE)
        return await inner(context)

    return conditional


def _wrap_middleware(mw: HookMiddleware, next_handler: NextHandler) -> NextHandler:
    async def wrapped(context: ExecutionContext) -> HookResult:
        return coerce_result(await _resolve(mw(context, next_handler)))

    return wrapped


@dataclass(frozen=True)
class HookEntry:
    """A registered hook.

    Attributes:
        event: The lifecycle event this hook listens to.
        handler: The user handler (sync or async).
        tool: Tool scope. ``None`` means the hook runs for every tool.
        priority: Higher values run earlier.
        enabled: Disabled entries stay registered but are skipped.
        timeout: Per-hook timeout in seconds. ``None`` uses the event default.
        condition: Optional predicate evaluated before the handler.
        middleware: Middleware wrapped around the handler.
        name: Optional identifier, used by :meth:`HookRegistry.remove`.
        applies: Optional predicate checked by the registry before the hook
            runs. Unlike *condition*, a false outcome produces no result.
        invoke: The composed callable, built once at construction.
    """

    event: HookEvent
    handler: HookHandler
    tool: Optional[str] = None
    priority: int = 0
    enabled: bool = True
    timeout: Optional[float] = None
    condition: Optional[HookCondition] = None
    middleware: tuple[HookMiddleware, ...] = ()
    name: Optional[str] = None
    applies: Optional[HookCondition] = None
    invoke: NextHandler = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        try:
            event = HookEvent(self.event)
        except ValueError:
            raise ValidationError(f"Unknown hook event: {self.event}", field="event") from None
        if not callable(self.handler):
            raise ValidationError("Hook handler must be callable", field="handler")
        if self.applies is not None and not callable(self.applies):
            raise ValidationError("Hook applicability check must be callable", field="applies")
        if self.tool is not None and event not in TOOL_EVENTS:
            raise ValidationError(
                f"Tool scope '{self.tool}' is only valid for tool events, not {event.value}",
                field="tool",
            )
        if self.timeout is not None and self.timeout <= 0:
            raise ValidationError("Hook timeout must be positive", field="timeout")

        object.__setattr__(self, "event", event)
        object.__setattr__(self, "middleware", tuple(self.middleware))
        object.__setattr__(
            self, "invoke", compose_handler(self.handler, self.condition, self.middleware)
        )


@dataclass(frozen=True)
class HookBuilder:
    """Immutable fluent builder for :class:`HookEntry`.

    Every ``with_*`` / ``for_*`` method returns a new builder, so a partially
    configured builder can be shared as a template.
    """

    event: Optional[HookEvent] = None
    tool: Optional[str] = None
    handler: Optional[HookHandler] = None
    priority: int = 0
    is_enabled: bool = True
    timeout: Optional[float] = None
    condition: Optional[HookCondition] = None
    middleware: tuple[HookMiddleware, ...] = ()
    name: Optional[str] = None

    @classmethod
    def pre_tool_use(cls) -> "HookBuilder":
        return cls(event=HookEvent.PRE_TOOL_USE)

    @classmethod
    def post_tool_use(cls) -> "HookBuilder":
        return cls(event=HookEvent.POST_TOOL_USE)

    @classmethod
    def session_start(cls) -> "HookBuilder":
        return cls(event=HookEvent.SESSION_START)

    @classmethod
    def user_prompt_submit(cls) -> "HookBuilder":
        return cls(event=HookEvent.USER_PROMPT_SUBMIT)

    def for_event(self, event: Union[HookEvent, str]) -> "HookBuilder":
        return replace(self, event=HookEvent(event))

    def for_tool(self, tool: str) -> "HookBuilder":
        return replace(self, tool=tool)

    def with_handler(self, handler: HookHandler) -> "HookBuilder":
        return replace(self, handler=handler)

    def with_timeout(self, timeout: float) -> "HookBuilder":
        return replace(self, timeout=timeout)

    def with_priority(self, priority: int) -> "HookBuilder":
        return replace(self, priority=priority)

    def enabled(self, value: bool = True) -> "HookBuilder":
        return replace(self, is_enabled=value)

    def with_middleware(self, middleware: HookMiddleware) -> "HookBuilder":
        return replace(self, middleware=self.middleware + (middleware,))

    def with_condition(self, condition: HookCondition) -> "HookBuilder":
        return replace(self, condition=condition)

    def named(self, name: str) -> "HookBuilder":
        return replace(self, name=name)

    def build(self) -> HookEntry:
        """Produce the :class:`HookEntry`.

        Raises:
            ValidationError: If the event or handler has not been set.
        """
        if self.event is None:
            raise ValidationError("Hook event is required", field="event")
        if self.handler is None:
            raise ValidationError("Hook handler is required", field="handler")
        return HookEntry(
            event=self.event,
            handler=self.handler,
            tool=self.tool,
            priority=self.priority,
            enabled=self.is_enabled,
            timeout=self.timeout,
            condition=self.condition,
            middleware=self.middleware,
            name=self.name,
        )


def define_hook(
    event: Union[HookEvent, str],
    handler: HookHandler,
    *,
    tool: Optional[str] = None,
    condition: Optional[HookCondition] = None,
    timeout: Optional[float] = None,
    priority: int = 0,
    enabled: bool = True,
    middleware: Sequence[HookMiddleware] = (),
    name: Optional[str] = None,
) -> HookEntry:
    """Declarative equivalent of the builder chain."""
    builder = HookBuilder(
        event=HookEvent(event),
        tool=tool,
        handler=handler,
        priority=priority,
        is_enabled=enabled,
        timeout=timeout,
        condition=condition,
        middleware=tuple(middleware),
        name=name,
    )
    return builder.build()


# --- Middleware ---


def timing() -> HookMiddleware:
    """Record the time spent inside the wrapped chain as ``handler_duration`` (ms)."""

    async def middleware(context: ExecutionContext, call_next: NextHandler) -> HookResult:
        start = time.perf_counter()
        result = await call_next(context)
        elapsed = (time.perf_counter() - start) * 1000
        return result.model_copy(
            update={"metadata": {**result.metadata, "handler_duration": elapsed}}
        )

    return middleware


def error_handling(
    on_error: Optional[Callable[[Exception, ExecutionContext], HookResult]] = None,
) -> HookMiddleware:
    """Turn exceptions raised further down the chain into failure results.

    Args:
        on_error: Optional callback producing the result for a caught
            exception. By default a failure is returned that blocks on
            ``PreToolUse``.
    """

    async def middleware(context: ExecutionContext, call_next: NextHandler) -> HookResult:
        try:
            return await call_next(context)
        except Exception as exc:
            if on_error is not None:
                return on_error(exc, context)
            return HookResult(
                success=False,
                message=str(exc) or type(exc).__name__,
                block=context.event == HookEvent.PRE_TOOL_USE,
            )

    return middleware


def validation(
    predicate: HookCondition,
    message: str = "Hook validation failed",
) -> HookMiddleware:
    """Fail (blocking on ``PreToolUse``) unless *predicate* holds for the context."""

    async def middleware(context: ExecutionContext, call_next: NextHandler) -> HookResult:
        if not await _resolve(predicate(context)):
            return HookResult(
                success=False,
                message=message,
                block=context.event == HookEvent.PRE_TOOL_USE,
            )
        return await call_next(context)

    return middleware


def logging_middleware(level: Union[int, str] = logging.INFO) -> HookMiddleware:
    """Log entry to and exit from the wrapped chain at *level*."""
    levelno = logging.getLevelName(level.upper()) if isinstance(level, str) else level

    async def middleware(context: ExecutionContext, call_next: NextHandler) -> HookResult:
        logger.log(levelno, "Running %s hook (tool=%s)", context.event.value, context.tool_name)
        try:
            result = await call_next(context)
        except Exception:
            logger.log(levelno, "%s hook raised", context.event.value, exc_info=True)
            raise
        logger.log(
            levelno,
            "%s hook finished: success=%s message=%s",
            context.event.value,
            result.success,
            result.message,
        )
        return result

    return middleware


# --- Result helpers ---


class HookResults:
    """Shortcuts for the result shapes hooks return most often."""

    @staticmethod
    def success(message: Optional[str] = None, data: Any = None) -> HookResult:
        return HookResult(success=True, message=message, data=data)

    @staticmethod
    def failure(message: str, block: bool = False, data: Any = None) -> HookResult:
        return HookResult(success=False, message=message, block=block, data=data)

    @staticmethod
    def block(message: str) -> HookResult:
        return HookResult(success=False, message=message, block=True)

    @staticmethod
    def skip(message: Optional[str] = None) -> HookResult:
        return HookResult(success=True, message=message or "Hook skipped")

    @staticmethod
    def warn(message: str, data: Any = None) -> HookResult:
        return HookResult(success=True, message=message, data=data)
