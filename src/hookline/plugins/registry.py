"""By-name plugin registry.

:class:`PluginRegistry` is the plugin-level counterpart of
:class:`~hookline.registry.HookRegistry`. It owns one plugin per name,
validates plugins and their configuration at registration time, and compiles
each plugin into named :class:`~hookline.builder.HookEntry` objects on an
internal hook registry:

* one universal entry per event, or
* one tool-scoped entry per (event, tool) pair when the plugin (or its
  configuration) restricts it to specific tools.

Declarative :class:`~hookline.models.PluginCondition` lists become the entry's
applicability check, so a plugin whose conditions fail produces no result.
The plugin's priority, enabled flag and the engine-wide ``default_timeout``
are carried over. Executing the registry therefore goes
through exactly the same ordering, blocking and timeout machinery as plain
hooks.

Registry events are delivered to listeners added with
:meth:`PluginRegistry.add_listener`:

* ``plugin-registered`` and ``plugin-unregistered`` with the plugin name,
* ``registry-cleared``,
* ``plugin-executed`` with ``name``, ``result`` and ``context`` after a
  plugin returns a result (successful or not),
* ``plugin-failed`` with ``name``, ``error``, ``result`` and ``context``
  after a plugin raises or times out.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from hookline.builder import HookEntry
from hookline.exceptions import PluginError, ValidationError
from hookline.execution import call_handler, coerce_result, is_execution_error
from hookline.models import (
    ExecutionContext,
    HookConfig,
    HookEvent,
    HookResult,
    PluginConfig,
    RegistryStats,
    Settings,
    TOOL_EVENTS,
)
from hookline.plugins.base import is_hook_plugin
from hookline.plugins.conditions import build_condition
from hookline.plugins.loader import PluginLoader, PluginLoadResult, plugin_name_from_path
from hookline.registry import HookRegistry

if TYPE_CHECKING:
    from hookline.plugins.loader import HotReloadEvent

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
_VERSION_RE = re.compile(r"^\d+\.\d+\.\d+")

RegistryListener = Callable[[str, dict[str, Any]], Any]


class PluginRegistry:
    """Registers plugins by name and runs them for host events.

    Args:
        settings: Engine settings. ``continue_on_failure=False`` (the
            default) stops a chain at the first plugin that raises or times
            out; failure results a plugin returns only stop the chain when
            they block;
            ``max_concurrency`` bounds concurrent :meth:`execute` calls.

    Example:
        Typical usage::

            registry = PluginRegistry(config.settings)
            registry.register(GitSafetyPlugin(), {"priority": 100})
            await registry.initialize()
            verdict = await registry.execute_and_combine(context)
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or Settings()
        self._plugins: dict[str, Any] = {}
        self._configs: dict[str, PluginConfig] = {}
        self._options: dict[str, dict[str, Any]] = {}
        self._hooks = HookRegistry(
            stop_on_error=not self.settings.continue_on_failure,
            collect_stats=self.settings.collect_metrics,
            on_result=self._on_result,
        )
        self._semaphore = asyncio.Semaphore(self.settings.max_concurrency)
        self._listeners: list[RegistryListener] = []
        self._initialized = False

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        plugin: Any,
        config: Union[PluginConfig, dict[str, Any], None] = None,
    ) -> None:
        """Validate *plugin* and compile it into hook entries.

        Args:
            plugin: A plugin object (see :func:`is_hook_plugin`).
            config: Optional :class:`PluginConfig` (or dict of the same
                shape) overriding the plugin's own priority, enabled flag,
                events, tools and configuration.

        Raises:
            ValidationError: If the plugin's shape, name, version or events
                are invalid.
            PluginError: If the name is taken or the configuration fails
                the plugin's schema.
        """
        if not is_hook_plugin(plugin):
            raise ValidationError(
                "Invalid plugin: expected name, version, events and apply()", field="plugin"
            )
        name = plugin.name
        if not _NAME_RE.match(name):
            raise ValidationError(
                f"Plugin name '{name}' must be kebab-case (e.g. 'git-safety')", field="name"
            )
        if not _VERSION_RE.match(plugin.version):
            raise ValidationError(
                f"Plugin '{name}' version '{plugin.version}' is not a semantic version",
                field="version",
            )
        if not plugin.events:
            raise ValidationError(f"Plugin '{name}' must declare at least one event", field="events")
        for event in plugin.events:
            try:
                HookEvent(event)
            except ValueError:
                raise ValidationError(
                    f"Plugin '{name}' declares unknown event '{event}'", field="events"
                ) from None
        if name in self._plugins:
            raise PluginError(f"Plugin '{name}' is already registered")

        plugin_config = self._build_config(plugin, config)
        options = self._resolve_options(plugin, plugin_config.config)

        self._plugins[name] = plugin
        self._configs[name] = plugin_config
        self._options[name] = options
        self._compile(name)

        logger.info("Registered plugin '%s' v%s", name, plugin.version)
        self._emit("plugin-registered", name=name, version=plugin.version)

    def unregister(self, name: str) -> bool:
        """Remove plugin *name* and its hook entries. Returns ``False`` if unknown."""
        if name not in self._plugins:
            return False
        self._hooks.remove(name)
        self._plugins.pop(name)
        self._configs.pop(name, None)
        self._options.pop(name, None)
        logger.info("Unregistered plugin '%s'", name)
        self._emit("plugin-unregistered", name=name)
        return True

    def clear(self) -> None:
        """Remove every plugin and reset execution statistics."""
        self._plugins.clear()
        self._configs.clear()
        self._options.clear()
        self._hooks.clear()
        self._emit("registry-cleared")

    def update_plugin_config(self, name: str, **changes: Any) -> bool:
        """Apply *changes* to the configuration of plugin *name* and recompile it.

        Returns:
            ``False`` if no plugin named *name* is registered.

        Raises:
            PluginError: If the updated configuration is invalid.
        """
        current = self._configs.get(name)
        if current is None:
            return False
        try:
            updated = PluginConfig.model_validate(
                {**current.model_dump(), **changes, "name": name}
            )
        except PydanticValidationError as exc:
            raise PluginError(f"Invalid configuration for plugin '{name}': {exc}") from exc

        plugin = self._plugins[name]
        if "config" in changes:
            self._options[name] = self._resolve_options(plugin, updated.config)
        self._configs[name] = updated
        self._compile(name)
        return True

    def _build_config(
        self, plugin: Any, config: Union[PluginConfig, dict[str, Any], None]
    ) -> PluginConfig:
        data: dict[str, Any] = {
            "name": plugin.name,
            "enabled": getattr(plugin, "enabled", True),
            "priority": getattr(plugin, "priority", 0),
        }
        if isinstance(config, PluginConfig):
            data.update(config.model_dump(exclude_unset=True))
        elif config:
            data.update(config)
        data["name"] = plugin.name
        try:
            return PluginConfig.model_validate(data)
        except PydanticValidationError as exc:
            raise PluginError(f"Invalid configuration for plugin '{plugin.name}': {exc}") from exc

    def _resolve_options(self, plugin: Any, overrides: Optional[dict[str, Any]]) -> dict[str, Any]:
        options = {**(getattr(plugin, "default_config", None) or {}), **(overrides or {})}

        schema = getattr(plugin, "config_schema", None)
        if schema is not None:
            try:
                options = schema.model_validate(options).model_dump()
            except PydanticValidationError as exc:
                raise PluginError(
                    f"Invalid configuration for plugin '{plugin.name}': {exc}"
                ) from exc

        validate = getattr(plugin, "validate_config", None)
        if callable(validate):
            outcome = validate(options)
            if outcome is False or (isinstance(outcome, list) and outcome):
                problems = "; ".join(outcome) if isinstance(outcome, list) else "rejected"
                raise PluginError(f"Invalid configuration for plugin '{plugin.name}': {problems}")
        return options

    def _compile(self, name: str) -> None:
        plugin = self._plugins[name]
        config = self._configs[name]
        self._hooks.remove(name)

        events = [HookEvent(e) for e in (config.events or plugin.events)]
        tools = config.tools or getattr(plugin, "tools", None) or []
        condition = build_condition(config.conditions)
        handler = self._make_handler(name)

        for event in events:
            if tools and event not in TOOL_EVENTS:
                # Tool-restricted plugins never see tool-less events.
                continue
            for tool in tools if tools else [None]:
                self._hooks.register(
                    HookEntry(
                        event=event,
                        handler=handler,
                        tool=tool,
                        priority=config.priority,
                        enabled=config.enabled,
                        timeout=self.settings.default_timeout,
                        name=name,
                        applies=condition,
                    )
                )

    def _make_handler(self, name: str) -> Callable[[ExecutionContext], Any]:
        plugin = self._plugins[name]

        async def handler(context: ExecutionContext) -> HookResult:
            value = await call_handler(
                plugin.apply, context, dict(self._options.get(name, {}))
            )
            result = coerce_result(value)
            return result.model_copy(
                update={
                    "metadata": {
                        **result.metadata,
                        "plugin": name,
                        "plugin_version": plugin.version,
                    }
                }
            )

        return handler

    def _on_result(self, entry: HookEntry, context: ExecutionContext, result: HookResult) -> None:
        if is_execution_error(result):
            self._emit(
                "plugin-failed",
                name=entry.name,
                error=result.message,
                result=result,
                context=context,
            )
        else:
            self._emit("plugin-executed", name=entry.name, result=result, context=context)

    def configure(self, hook_config: HookConfig, plugins: Iterable[Any]) -> list[str]:
        """Register discovered *plugins* using the matching entries of *hook_config*.

        Each plugin is paired with its ``plugins[]`` entry (by name) and its
        ``rules[name]`` payload, which becomes the base of the plugin's
        configuration. Plugins that fail to register are logged and skipped.

        Returns:
            Names of the plugins that were registered.
        """
        registered: list[str] = []
        for plugin in plugins:
            name = getattr(plugin, "name", None)
            entry = hook_config.plugin_config(name) if isinstance(name, str) else None
            rules = hook_config.rules.get(name, {}) if isinstance(name, str) else {}

            config: Optional[PluginConfig] = entry
            if rules:
                merged = {**rules, **((entry.config if entry else None) or {})}
                base = entry.model_dump(exclude_unset=True) if entry else {"name": name}
                config = PluginConfig.model_validate({**base, "config": merged})

            try:
                self.register(plugin, config)
            except (ValidationError, PluginError) as exc:
                logger.warning("Skipping plugin '%s': %s", name, exc)
                continue
            registered.append(name)
        return registered

    # ------------------------------------------------------------------
    # Querying
    # ------------------------------------------------------------------

    def get_plugin(self, name: str) -> Optional[Any]:
        return self._plugins.get(name)

    def has_plugin(self, name: str) -> bool:
        return name in self._plugins

    def get_plugins(self) -> list[Any]:
        return list(self._plugins.values())

    def get_plugin_config(self, name: str) -> Optional[PluginConfig]:
        return self._configs.get(name)

    def get_plugin_options(self, name: str) -> dict[str, Any]:
        """Return the resolved configuration passed to ``apply`` for *name*."""
        return dict(self._options.get(name, {}))

    def list_plugins(self) -> list[dict[str, Any]]:
        """List registered plugins with their effective settings, highest priority first."""
        rows = [
            {
                "name": name,
                "version": plugin.version,
                "description": getattr(plugin, "description", "") or "",
                "enabled": self._configs[name].enabled,
                "priority": self._configs[name].priority,
                "events": [HookEvent(e).value for e in (self._configs[name].events or plugin.events)],
                "tools": list(self._configs[name].tools or getattr(plugin, "tools", None) or []),
            }
            for name, plugin in self._plugins.items()
        ]
        return sorted(rows, key=lambda row: row["priority"], reverse=True)

    def __len__(self) -> int:
        return len(self._plugins)

    def __contains__(self, name: object) -> bool:
        return name in self._plugins

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, context: ExecutionContext) -> list[HookResult]:
        """Run every applicable plugin for *context*, in priority order."""
        async with self._semaphore:
            return await self._hooks.execute(context)

    async def execute_and_combine(self, context: ExecutionContext) -> HookResult:
        """Run the plugins for *context* and fold their results into one verdict."""
        async with self._semaphore:
            return await self._hooks.execute_and_combine(context)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Call ``init()`` on every plugin. Failures are logged, not raised."""
        for name, plugin in list(self._plugins.items()):
            await self._call_lifecycle(name, plugin, "init")
        self._initialized = True

    async def shutdown(self) -> None:
        """Call ``shutdown()`` on every plugin. Failures are logged, not raised."""
        for name, plugin in list(self._plugins.items()):
            await self._call_lifecycle(name, plugin, "shutdown")
        self._initialized = False

    async def health_check(self) -> dict[str, bool]:
        """Return ``{name: healthy}`` for every plugin.

        Plugins without a ``health_check`` are reported healthy; a check
        that raises counts as unhealthy.
        """
        report: dict[str, bool] = {}
        for name, plugin in list(self._plugins.items()):
            check = getattr(plugin, "health_check", None)
            if not callable(check):
                report[name] = True
                continue
            try:
                outcome = check()
                if inspect.isawaitable(outcome):
                    outcome = await outcome
                report[name] = bool(outcome)
            except Exception as exc:
                logger.warning("Health check failed for plugin '%s': %s", name, exc)
                report[name] = False
        return report

    async def _call_lifecycle(self, name: str, plugin: Any, method: str) -> None:
        func = getattr(plugin, method, None)
        if not callable(func):
            return
        try:
            outcome = func()
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            logger.error("Plugin '%s' %s failed: %s", name, method, exc)

    # ------------------------------------------------------------------
    # Hot reload
    # ------------------------------------------------------------------

    def apply_hot_reload(self, event: "HotReloadEvent") -> bool:
        """Bring the registry in line with a plugin file change.

        ``added``/``changed`` replace the plugin (keeping its current
        configuration); ``removed`` unregisters it. When a changed file now
        defines a plugin under another name, the old name is unregistered.

        Returns:
            ``True`` if the registry changed.
        """
        if event.type == "removed":
            name = event.name or plugin_name_from_path(Path(event.path))
            return self.unregister(name)

        if event.error is not None or event.plugin is None:
            logger.warning("Ignoring failed reload of %s: %s", event.path, event.error)
            return False

        name = event.plugin.name
        previous = self._configs.get(name)
        if event.previous_name and event.previous_name != name:
            if previous is None:
                previous = self._configs.get(event.previous_name)
            self.unregister(event.previous_name)
        self.unregister(name)
        try:
            self.register(event.plugin, previous)
        except (ValidationError, PluginError) as exc:
            logger.error("Reloaded plugin from %s rejected: %s", event.path, exc)
            return False
        return True

    # ------------------------------------------------------------------
    # Listeners & stats
    # ------------------------------------------------------------------

    def add_listener(self, listener: RegistryListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: RegistryListener) -> bool:
        try:
            self._listeners.remove(listener)
        except ValueError:
            return False
        return True

    def _emit(self, event: str, **payload: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, payload)
            except Exception as exc:
                logger.warning("Registry listener failed on %s: %s", event, exc)

    def get_stats(self) -> RegistryStats:
        rows = self._hooks.get_stats()
        total = sum(row.total_executions for row in rows)
        successes = sum(row.successful_executions for row in rows)
        enabled = sum(1 for config in self._configs.values() if config.enabled)
        return RegistryStats(
            total_plugins=len(self._plugins),
            enabled_plugins=enabled,
            disabled_plugins=len(self._plugins) - enabled,
            total_executions=total,
            success_rate=successes / total if total else 1.0,
            hooks=rows,
        )


def load_registry(
    config: HookConfig,
    *,
    base_dir: Optional[Union[str, Path]] = None,
    entry_points: bool = True,
) -> tuple[PluginRegistry, PluginLoadResult]:
    """Discover plugins for *config* and register them on a new registry.

    Plugin files are found through ``config.loader``; when *entry_points*
    is set, plugins from installed packages are added after them.

    Returns:
        The configured registry and the combined discovery result, whose
        ``errors`` list the files that failed to load.
    """
    loader = PluginLoader(config.loader, base_dir=base_dir)
    result = loader.load_plugins()
    if entry_points:
        installed = loader.load_entry_points()
        result.plugins.extend(installed.plugins)
        result.errors.extend(installed.errors)
        result.scanned += installed.scanned

    registry = PluginRegistry(config.settings)
    registry.configure(config, result.plugins)
    return registry, result
