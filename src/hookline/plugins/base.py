"""Abstract base class and structural check for hookline plugins.

A plugin is a named, versioned unit of hook behaviour. It declares the
events it listens to and implements :meth:`HookPlugin.apply`; the
:class:`~hookline.plugins.registry.PluginRegistry` compiles it into hook
entries. Every other member is optional, with defaults that make sense for a
stateless plugin.

Plugins do not have to subclass :class:`HookPlugin`. Any object with a
string ``name`` and ``version``, a sequence of ``events`` and a callable
``apply`` is accepted; :func:`is_hook_plugin` is the single place where that
shape is checked.

Example:
    Minimal plugin implementation::

        class NoForcePush(HookPlugin):
            name = "no-force-push"
            version = "1.0.0"
            events = [HookEvent.PRE_TOOL_USE]
            tools = ["Bash"]

            def apply(self, context, config):
                if "--force" in context.tool_input.command:
                    return HookResult(success=False, block=True,
                                      message="Force push is not allowed")
                return HookResult(success=True)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any, Awaitable, Optional, Union

from pydantic import BaseModel

from hookline.models import ExecutionContext, HookEvent, HookResult

PluginReturn = Union[HookResult, dict[str, Any]]


class HookPlugin(ABC):
    """Base class for hookline plugins.

    Subclasses must provide :attr:`name`, :attr:`version`, :attr:`events`
    and :meth:`apply`. Class attributes are fine for the first three.

    The plugin lifecycle is:

    1. Registration -- :meth:`PluginRegistry.register` validates the plugin
       and its configuration.
    2. :meth:`init` -- called once by :meth:`PluginRegistry.initialize`.
    3. :meth:`apply` -- called for every matching host event.
    4. :meth:`shutdown` -- called once by :meth:`PluginRegistry.shutdown`.

    :meth:`init`, :meth:`shutdown`, :meth:`health_check` and :meth:`apply`
    may be plain or ``async`` methods.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique kebab-case plugin name (e.g. ``"git-safety"``)."""
        ...

    @property
    @abstractmethod
    def version(self) -> str:
        """Semantic version string (e.g. ``"1.0.0"``)."""
        ...

    @property
    @abstractmethod
    def events(self) -> Sequence[HookEvent]:
        """Events this plugin handles. Must not be empty."""
        ...

    @abstractmethod
    def apply(
        self, context: ExecutionContext, config: dict[str, Any]
    ) -> Union[PluginReturn, Awaitable[PluginReturn]]:
        """Process one host event.

        Args:
            context: The immutable execution context.
            config: The plugin's resolved configuration (defaults merged
                with the ``config`` block and ``rules`` entry).

        Returns:
            A :class:`HookResult` or a dict of the same shape.
        """
        ...

    description: str = ""
    tools: Optional[Sequence[str]] = None
    priority: int = 0
    enabled: bool = True
    config_schema: Optional[type[BaseModel]] = None
    default_config: dict[str, Any] = {}

    def init(self) -> Any:
        """Called once before the first event. Override to acquire resources."""

    def shutdown(self) -> Any:
        """Called once on registry shutdown. Override to release resources."""

    def health_check(self) -> Union[bool, Awaitable[bool]]:
        return True

    def validate_config(self, config: dict[str, Any]) -> Union[bool, list[str]]:
        """Extra configuration checks beyond :attr:`config_schema`.

        Returns:
            ``True`` when valid. ``False`` or a list of problem
            descriptions otherwise.
        """
        return True


def is_hook_plugin(obj: Any) -> bool:
    """Return ``True`` if *obj* has the shape of a hook plugin.

    Checks for a string ``name`` and ``version``, a non-string sequence of
    ``events`` and a callable ``apply``. Classes are rejected; pass an
    instance.
    """
    if isinstance(obj, type):
        return False
    events = getattr(obj, "events", None)
    return (
        isinstance(getattr(obj, "name", None), str)
        and isinstance(getattr(obj, "version", None), str)
        and isinstance(events, Sequence)
        and not isinstance(events, str)
        and callable(getattr(obj, "apply", None))
    )
