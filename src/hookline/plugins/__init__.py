"""Plugin system for hookline -- contract, registry, discovery, and hot reload.

Plugins are named, versioned bundles of hook behaviour. They are discovered
from plugin files under the configured search paths (or from the
``hookline.plugins`` entry-point group), registered by name in a
:class:`PluginRegistry`, and compiled into ordinary hook entries.

Key classes:

* :class:`HookPlugin` -- Abstract base class for plugins (subclassing is
  optional; see :func:`is_hook_plugin`).
* :class:`PluginRegistry` -- Registers plugins by name and runs them.
* :class:`PluginLoader` -- Finds and imports plugin files.
* :class:`PluginWatcher` -- Watches plugin files and emits
  :class:`HotReloadEvent` objects.

Example:
    Typical usage from the ``run`` command::

        from hookline.plugins import PluginLoader, PluginRegistry

        loader = PluginLoader(config.loader, base_dir=project_dir)
        registry = PluginRegistry(config.settings)
        registry.configure(config, loader.load_plugins().plugins)
        verdict = await registry.execute_and_combine(context)
"""

from hookline.plugins.base import HookPlugin, is_hook_plugin
from hookline.plugins.conditions import evaluate_conditions
from hookline.plugins.loader import (
    ENTRY_POINT_GROUP,
    HotReloadEvent,
    PluginLoader,
    PluginLoadResult,
    plugin_name_from_path,
)
from hookline.plugins.registry import PluginRegistry, load_registry
from hookline.plugins.watcher import DebouncedFileWatcher, PluginWatcher

__all__ = [
    "ENTRY_POINT_GROUP",
    "DebouncedFileWatcher",
    "HookPlugin",
    "HotReloadEvent",
    "PluginLoadResult",
    "PluginLoader",
    "PluginRegistry",
    "PluginWatcher",
    "evaluate_conditions",
    "is_hook_plugin",
    "load_registry",
    "plugin_name_from_path",
]
