"""Plugin discovery and loading.

:class:`PluginLoader` finds plugin files under the configured search paths,
imports them and extracts one plugin object per file. Discovery uses
gitignore-style include/exclude patterns (via :mod:`pathspec`) matched
against paths relative to each search path; directories such as
``__pycache__`` and ``.git`` are always pruned.

A plugin module exposes its plugin in one of these ways, tried in order:

1. A ``plugin`` attribute -- an instance, a class, or a factory function.
2. A ``create_plugin`` factory function.
3. Any other public attribute whose name contains ``plugin`` and which is,
   or produces, a plugin-shaped object.

Plugins can also be shipped in installed packages through the
``hookline.plugins`` entry-point group::

    [project.entry-points."hookline.plugins"]
    git-safety = "my_package.plugins:GitSafetyPlugin"

A file that fails to import or yields an invalid plugin is recorded as a
:class:`~hookline.exceptions.DiscoveryError`; it never stops the others from
loading.
"""

from __future__ import annotations

import asyncio
import hashlib
import importlib.machinery
import importlib.metadata
import importlib.util
import inspect
import logging
import os
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any, Literal, Optional, Union

import pathspec

from hookline.exceptions import DiscoveryError, PluginError
from hookline.models import LoaderSettings
from hookline.plugins.base import is_hook_plugin

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "hookline.plugins"
"""The entry-point group name used for installed-package plugin discovery."""

ALWAYS_SKIP = frozenset(
    {"__pycache__", ".git", ".tox", ".mypy_cache", ".ruff_cache", ".venv", "node_modules"}
)


@dataclass
class PluginLoadResult:
    """Outcome of one :meth:`PluginLoader.load_plugins` pass.

    Attributes:
        plugins: Successfully loaded plugin objects.
        errors: One entry per file that failed to load.
        scanned: Number of candidate files found.
        duration: Wall time of the pass, in milliseconds.
    """

    plugins: list[Any] = field(default_factory=list)
    errors: list[DiscoveryError] = field(default_factory=list)
    scanned: int = 0
    duration: float = 0.0


@dataclass
class HotReloadEvent:
    """A classified change to one plugin file.

    ``previous_name`` is the name the file registered before a ``changed``
    reload, which differs from ``name`` when the plugin was renamed.
    """

    type: Literal["added", "changed", "removed"]
    path: Path
    name: Optional[str] = None
    previous_name: Optional[str] = None
    plugin: Any = None
    error: Optional[BaseException] = None


def plugin_name_from_path(path: Union[str, Path]) -> str:
    """Derive a kebab-case plugin name from a file name.

    Example::

        >>> plugin_name_from_path("plugins/git_safety_plugin.py")
        'git-safety'
    """
    stem = Path(path).stem
    for suffix in ("_plugin", "_hook"):
        if stem.endswith(suffix) and len(stem) > len(suffix):
            stem = stem[: -len(suffix)]
            break
    return stem.replace("_", "-").lower()


class _SourceLoader(importlib.machinery.SourceFileLoader):
    """File loader that always compiles the current source, never ``__pycache__``."""

    def get_code(self, fullname: str) -> Any:
        return self.source_to_code(self.get_data(self.path), self.path)


def import_source_file(module_name: str, path: Union[str, Path]) -> ModuleType:
    """Import the Python file at *path* as *module_name*.

    The module is registered in :data:`sys.modules` while it executes and
    removed again if execution fails. Edits are picked up on every call,
    even when they land within the same mtime tick.

    Raises:
        ImportError: If no module spec can be built for *path*.
    """
    path = str(path)
    spec = importlib.util.spec_from_file_location(
        module_name, path, loader=_SourceLoader(module_name, path)
    )
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot import module from {path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except BaseException:
        sys.modules.pop(module_name, None)
        raise
    return module


def _call_factory(factory: Any) -> Any:
    result = factory()
    if inspect.isawaitable(result):
        if inspect.iscoroutine(result):
            result.close()
        raise PluginError("Async plugin factories are not supported")
    return result


def _resolve_export(value: Any) -> Any:
    """Turn a module export into a plugin object (instance, class or factory)."""
    if is_hook_plugin(value):
        return value
    if callable(value):
        return _call_factory(value)
    return value


def extract_plugin(module: ModuleType) -> Any:
    """Return the plugin object exported by *module*, or ``None``."""
    for attr in ("plugin", "create_plugin"):
        value = getattr(module, attr, None)
        if value is not None:
            return _resolve_export(value)

    for attr, value in vars(module).items():
        if attr.startswith("_") or "plugin" not in attr.lower():
            continue
        if is_hook_plugin(value):
            return value
        # Only consider classes and factories defined in the plugin module itself.
        if getattr(value, "__module__", None) != module.__name__:
            continue
        if isinstance(value, type) and inspect.isabstract(value):
            continue
        if not callable(value):
            continue
        try:
            candidate = _call_factory(value)
        except Exception as exc:
            logger.debug("Skipping %s.%s: %s", module.__name__, attr, exc)
            continue
        if is_hook_plugin(candidate):
            return candidate
    return None


class PluginLoader:
    """Discovers and imports plugin files.

    Args:
        settings: Discovery settings (the ``loader`` config block).
        base_dir: Directory that relative search paths are resolved
            against. Defaults to the current working directory.
    """

    def __init__(
        self,
        settings: Optional[LoaderSettings] = None,
        base_dir: Optional[Union[str, Path]] = None,
    ) -> None:
        self.settings = settings or LoaderSettings()
        self.base_dir = Path(base_dir) if base_dir is not None else Path.cwd()
        self._include_spec = pathspec.PathSpec.from_lines(
            "gitwildmatch", self.settings.include_patterns
        )
        self._exclude_spec = pathspec.PathSpec.from_lines(
            "gitwildmatch", self.settings.exclude_patterns
        )
        self._cache: dict[Path, tuple[int, Any]] = {}
        self._loaded: dict[Path, str] = {}

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    @property
    def search_roots(self) -> list[Path]:
        roots = []
        for entry in self.settings.search_paths:
            root = Path(entry).expanduser()
            if not root.is_absolute():
                root = self.base_dir / root
            roots.append(root.resolve())
        return roots

    def _matches(self, rel_path: str) -> bool:
        if self.settings.include_patterns and not self._include_spec.match_file(rel_path):
            return False
        return not self._exclude_spec.match_file(rel_path)

    def is_plugin_file(self, path: Union[str, Path]) -> bool:
        """Return ``True`` if *path* is a ``.py`` file the patterns select."""
        path = Path(path).resolve()
        if path.suffix != ".py":
            return False
        for root in self.search_roots:
            try:
                rel = path.relative_to(root)
            except ValueError:
                continue
            if any(part in ALWAYS_SKIP for part in rel.parts[:-1]):
                return False
            if len(rel.parts) - 1 > (self.settings.max_depth if self.settings.recursive else 0):
                return False
            return self._matches(rel.as_posix())
        return False

    def discover(self) -> list[Path]:
        """Walk the search paths and return matching plugin files, sorted.

        Missing search paths are skipped.
        """
        found: list[Path] = []
        for root in self.search_roots:
            if not root.is_dir():
                logger.debug("Plugin search path %s does not exist, skipping", root)
                continue

            for dirpath, dirnames, filenames in os.walk(root):
                rel_dir = os.path.relpath(dirpath, root)
                depth = 0 if rel_dir == "." else rel_dir.count(os.sep) + 1

                if not self.settings.recursive or depth >= self.settings.max_depth:
                    dirnames[:] = []
                else:
                    dirnames[:] = sorted(
                        d
                        for d in dirnames
                        if d not in ALWAYS_SKIP
                        and not self._exclude_spec.match_file(
                            (os.path.join(rel_dir, d) if rel_dir != "." else d) + "/"
                        )
                    )

                for fname in sorted(filenames):
                    if not fname.endswith(".py"):
                        continue
                    rel_path = os.path.join(rel_dir, fname) if rel_dir != "." else fname
                    if self._matches(Path(rel_path).as_posix()):
                        found.append(Path(dirpath) / fname)

        return sorted(dict.fromkeys(found))

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load_plugins(self) -> PluginLoadResult:
        """Discover and load every plugin file.

        Returns:
            The loaded plugins together with the per-file errors.
        """
        start = time.perf_counter()
        paths = self.discover()
        result = PluginLoadResult(scanned=len(paths))

        for path in paths:
            try:
                plugin = self.load_plugin(path)
            except Exception as exc:
                logger.warning("Failed to load plugin from %s: %s", path, exc)
                result.errors.append(DiscoveryError(path=path, error=exc))
                continue
            if plugin is not None:
                result.plugins.append(plugin)

        result.duration = (time.perf_counter() - start) * 1000
        logger.info(
            "Loaded %d plugin(s) from %d file(s) (%d error(s))",
            len(result.plugins),
            result.scanned,
            len(result.errors),
        )
        return result

    def load_plugin(self, path: Union[str, Path]) -> Any:
        """Import *path* and return the plugin it exports.

        Returns:
            The plugin object, or ``None`` if the module exports none.

        Raises:
            PluginError: If the module cannot be imported or its plugin
                fails validation.
        """
        path = Path(path).resolve()
        try:
            mtime = path.stat().st_mtime_ns
        except OSError as exc:
            raise PluginError(f"Failed to load plugin from {path}: {exc}") from exc

        if self.settings.enable_cache:
            cached = self._cache.get(path)
            if cached is not None and cached[0] == mtime:
                return cached[1]

        try:
            module = self._import_module(path)
            plugin = extract_plugin(module)
        except PluginError:
            raise
        except Exception as exc:
            raise PluginError(f"Failed to load plugin from {path}: {exc}") from exc

        if plugin is None:
            logger.debug("No plugin exported by %s", path)
            return None
        if self.settings.validate_on_load and not is_hook_plugin(plugin):
            raise PluginError(f"Invalid plugin structure in {path}")

        if self.settings.enable_cache:
            self._cache[path] = (mtime, plugin)
        self._loaded[path] = getattr(plugin, "name", plugin_name_from_path(path))
        logger.debug("Loaded plugin %s from %s", self._loaded[path], path)
        return plugin

    def _import_module(self, path: Path) -> ModuleType:
        digest = hashlib.sha1(str(path).encode("utf-8")).hexdigest()[:12]
        module_name = f"hookline_plugin_{path.stem}_{digest}"
        return import_source_file(module_name, path)

    def load_entry_points(self) -> PluginLoadResult:
        """Load plugins registered under the ``hookline.plugins`` entry-point group."""
        start = time.perf_counter()
        eps = importlib.metadata.entry_points(group=ENTRY_POINT_GROUP)
        result = PluginLoadResult(scanned=len(eps))

        for ep in eps:
            try:
                plugin = _resolve_export(ep.load())
                if not is_hook_plugin(plugin):
                    raise PluginError(f"Entry point '{ep.name}' does not provide a valid plugin")
            except Exception as exc:
                logger.warning("Failed to load plugin entry point '%s': %s", ep.name, exc)
                result.errors.append(DiscoveryError(path=Path(ep.value), error=exc))
                continue
            result.plugins.append(plugin)

        result.duration = (time.perf_counter() - start) * 1000
        return result

    # ------------------------------------------------------------------
    # Hot reload
    # ------------------------------------------------------------------

    async def handle_change(self, path: Union[str, Path]) -> Optional[HotReloadEvent]:
        """Classify a file-system change to *path* and (re)load it.

        Returns:
            ``None`` when the change does not concern a plugin file,
            otherwise an ``added``, ``changed`` or ``removed`` event. Load
            failures are reported on the event's ``error`` field.
        """
        path = Path(path).resolve()

        if not path.exists():
            if path not in self._loaded:
                return None
            name = self._loaded.pop(path)
            self._cache.pop(path, None)
            return HotReloadEvent(type="removed", path=path, name=name)

        if not self.is_plugin_file(path):
            return None

        previous_name = self._loaded.get(path)
        kind = "changed" if previous_name is not None else "added"
        try:
            plugin = await asyncio.to_thread(self.load_plugin, path)
        except Exception as exc:
            logger.warning("Hot reload of %s failed: %s", path, exc)
            return HotReloadEvent(
                type=kind, path=path, name=previous_name, previous_name=previous_name, error=exc
            )
        if plugin is None:
            return None
        return HotReloadEvent(
            type=kind, path=path, name=plugin.name, previous_name=previous_name, plugin=plugin
        )

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        self._cache.clear()
        self._loaded.clear()

    def cache_stats(self) -> dict[str, Any]:
        return {"size": len(self._cache), "paths": [str(p) for p in self._cache]}
