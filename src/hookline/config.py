"""Configuration loading with environment overrides, atomic writes, and hot reload.

This module handles the declarative hook configuration file:

* **Discovery** -- With no explicit path, :meth:`ConfigLoader.load` tries
  :data:`CONFIG_FILENAMES` in order inside the base directory.
* **Formats** -- JSON and YAML files are data; a ``.py`` file is executed and
  may expose a ``config`` mapping (or a function returning one), or plain
  module-level ``plugins`` / ``rules`` / ``settings`` variables.
* **Merging** -- The file is deep-merged over the loader's ``defaults`` and
  validated into a :class:`~hookline.models.HookConfig`; missing keys take
  the model defaults (see :func:`default_config`).
* **Environments** -- The ``environments[<name>]`` block for the active
  environment (``HOOKLINE_ENV``, default ``development``) is applied last:
  its ``plugins`` list replaces the top-level one, ``rules`` are deep-merged
  per plugin and ``settings`` are merged key by key.
* **Hot reload** -- :meth:`ConfigLoader.watch` reloads the file when it
  changes and notifies :meth:`ConfigLoader.on_change` listeners.

All file writes use an atomic temp-file-then-rename strategy
(:func:`_atomic_write`).
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Literal, Mapping, Optional, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from hookline.exceptions import ConfigurationError
from hookline.models import HookConfig
from hookline.plugins.loader import import_source_file
from hookline.plugins.watcher import DebouncedFileWatcher

logger = logging.getLogger(__name__)

ENV_VAR = "HOOKLINE_ENV"
DEFAULT_ENVIRONMENT = "development"

CONFIG_FILENAMES = (
    "hooks.config.json",
    "hooks.config.yaml",
    "hooks.config.yml",
    "hooks.config.py",
    ".hooksrc.json",
    ".hooksrc.yaml",
    ".hooksrc.yml",
)
"""File names tried, in order, when no explicit path is given."""

_CONFIG_KEYS = ("plugins", "rules", "settings", "loader", "environments")


# --- Results and events ---


@dataclass
class ConfigLoadResult:
    """Outcome of :meth:`ConfigLoader.load`.

    Attributes:
        config: The validated configuration with environment overrides applied.
        source: The file it was loaded from.
        duration: Load time in milliseconds.
        environment: The environment whose overrides were considered.
    """

    config: HookConfig
    source: Path
    duration: float
    environment: str


@dataclass
class ConfigChangeEvent:
    """Notification delivered to :meth:`ConfigLoader.on_change` listeners."""

    type: Literal["loaded", "changed", "error"]
    source: Path
    config: Optional[HookConfig] = None
    error: Optional[BaseException] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


ConfigChangeListener = Callable[[ConfigChangeEvent], Any]


# --- Helpers ---


def default_config() -> HookConfig:
    """Return the configuration used when a file sets nothing."""
    return HookConfig()


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge *override* into a copy of *base*.

    Nested mappings are merged; every other value (lists included) in
    *override* replaces the one in *base*.
    """
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(result.get(key), Mapping):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _json_default(obj: Any) -> Any:
    if callable(obj):
        return f"<{getattr(obj, '__name__', 'callable')}>"
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def config_to_dict(config: HookConfig) -> dict[str, Any]:
    """Return *config* as plain JSON-compatible data with camelCase keys."""
    data = config.model_dump(by_alias=True, exclude_none=True)
    return json.loads(json.dumps(data, default=_json_default))


def dump_config(config: HookConfig, fmt: str = "json") -> str:
    """Serialise *config* as ``json`` or ``yaml`` text."""
    data = config_to_dict(config)
    if fmt == "yaml":
        return yaml.safe_dump(data, sort_keys=False)
    return json.dumps(data, indent=2) + "\n"


def _atomic_write(path: Path, data: str) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. On any failure the
    temp file is cleaned up.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


def save_config(config: HookConfig, path: Path) -> None:
    """Write *config* to *path*, choosing YAML for ``.yaml``/``.yml`` files."""
    fmt = "yaml" if path.suffix in (".yaml", ".yml") else "json"
    _atomic_write(path, dump_config(config, fmt))


def find_config_file(base_dir: Union[str, Path]) -> Optional[Path]:
    """Return the first of :data:`CONFIG_FILENAMES` present in *base_dir*."""
    base = Path(base_dir)
    for name in CONFIG_FILENAMES:
        candidate = base / name
        if candidate.is_file():
            return candidate
    return None


# --- Loader ---


class ConfigLoader:
    """Loads, validates and watches the hook configuration file.

    Args:
        base_dir: Directory searched for configuration files and against
            which relative paths resolve. Defaults to the working directory.
        environment: Environment whose override block is applied. Defaults
            to ``$HOOKLINE_ENV`` or ``"development"``.
        defaults: Partial configuration the file is merged over.
        validate: When ``False``, a file that fails validation is logged and
            replaced by the defaults instead of raising.

    Example:
        Typical usage::

            loader = ConfigLoader(base_dir=project_dir)
            result = loader.load()
            print(result.config.settings.default_timeout)
    """

    def __init__(
        self,
        base_dir: Optional[Union[str, Path]] = None,
        environment: Optional[str] = None,
        defaults: Optional[Mapping[str, Any]] = None,
        validate: bool = True,
    ) -> None:
        self.base_dir = Path(base_dir) if base_dir is not None else Path.cwd()
        self.environment = environment or os.environ.get(ENV_VAR) or DEFAULT_ENVIRONMENT
        self.defaults = dict(defaults or {})
        self.validate = validate
        self._current: Optional[HookConfig] = None
        self._source: Optional[Path] = None
        self._listeners: list[ConfigChangeListener] = []
        self._watcher: Optional[DebouncedFileWatcher] = None

    @property
    def current_config(self) -> Optional[HookConfig]:
        return self._current

    @property
    def source(self) -> Optional[Path]:
        return self._source

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def resolve_path(self, path: Optional[Union[str, Path]] = None) -> Path:
        """Resolve the file to load.

        Raises:
            ConfigurationError: If the file (or any default candidate)
                does not exist.
        """
        if path is not None:
            candidate = Path(path).expanduser()
            if not candidate.is_absolute():
                candidate = self.base_dir / candidate
            if not candidate.is_file():
                raise ConfigurationError(f"Configuration file not found: {candidate}")
            return candidate

        found = find_config_file(self.base_dir)
        if found is None:
            raise ConfigurationError(
                f"Configuration file not found in {self.base_dir}. "
                f"Tried: {', '.join(CONFIG_FILENAMES)}"
            )
        return found

    def load(self, path: Optional[Union[str, Path]] = None) -> ConfigLoadResult:
        """Load, merge and validate the configuration file.

        Args:
            path: Explicit file to load. When omitted the default file
                names are tried in the base directory.

        Returns:
            The loaded configuration and where it came from.

        Raises:
            ConfigurationError: If the file is missing, malformed, has an
                unsupported extension, or fails validation.
        """
        start = time.perf_counter()
        source = self.resolve_path(path)
        try:
            raw = self._read(source)
            config = self.process(raw)
        except ConfigurationError as exc:
            self._emit(ConfigChangeEvent(type="error", source=source, error=exc))
            raise

        self._current = config
        self._source = source
        duration = (time.perf_counter() - start) * 1000
        logger.info("Loaded configuration from %s (env=%s)", source, self.environment)
        self._emit(ConfigChangeEvent(type="loaded", source=source, config=config))
        return ConfigLoadResult(
            config=config, source=source, duration=duration, environment=self.environment
        )

    def reload(self) -> ConfigLoadResult:
        """Load the most recently loaded file again.

        Raises:
            ConfigurationError: If nothing has been loaded yet.
        """
        if self._source is None:
            raise ConfigurationError("No configuration file is currently loaded")
        return self.load(self._source)

    def process(self, raw: Any) -> HookConfig:
        """Merge *raw* file data over the defaults, validate, and apply the environment."""
        if not isinstance(raw, Mapping):
            raise ConfigurationError(
                f"Configuration must be a mapping, got {type(raw).__name__}"
            )
        try:
            merged = deep_merge(self._normalize(self.defaults), self._normalize(raw))
            config = HookConfig.model_validate(merged)
            return self._apply_environment(config)
        except PydanticValidationError as exc:
            if not self.validate:
                logger.warning("Ignoring invalid configuration: %s", exc)
                return default_config()
            raise ConfigurationError(f"Configuration validation failed: {exc}") from exc

    @staticmethod
    def _normalize(data: Mapping[str, Any]) -> dict[str, Any]:
        # Canonicalise to camelCase and drop keys the source did not set, so
        # that snake_case and camelCase spellings merge onto the same keys.
        if not data:
            return {}
        partial = HookConfig.model_validate(dict(data))
        return partial.model_dump(by_alias=True, exclude_unset=True)

    def _apply_environment(self, config: HookConfig) -> HookConfig:
        override = config.environments.get(self.environment)
        if override is None:
            return config

        data = config.model_dump(by_alias=True)
        if override.plugins is not None:
            data["plugins"] = [p.model_dump(by_alias=True) for p in override.plugins]
        if override.rules:
            data["rules"] = deep_merge(data["rules"], override.rules)
        if override.settings is not None:
            data["settings"] = {
                **data["settings"],
                **override.settings.model_dump(by_alias=True, exclude_none=True),
            }
        logger.debug("Applied '%s' environment overrides", self.environment)
        return HookConfig.model_validate(data)

    def _read(self, path: Path) -> Any:
        suffix = path.suffix.lower()
        if suffix == ".json":
            try:
                return json.loads(path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as exc:
                raise ConfigurationError(f"Invalid JSON in configuration file {path}: {exc}") from exc
        if suffix in (".yaml", ".yml"):
            try:
                data = yaml.safe_load(path.read_text(encoding="utf-8"))
            except yaml.YAMLError as exc:
                raise ConfigurationError(f"Invalid YAML in configuration file {path}: {exc}") from exc
            return {} if data is None else data
        if suffix == ".py":
            return self._read_module(path)
        raise ConfigurationError(f"Unsupported configuration file extension: {suffix or path.name}")

    def _read_module(self, path: Path) -> dict[str, Any]:
        try:
            module = self._exec_module(path)
        except Exception as exc:
            raise ConfigurationError(f"Failed to load configuration module {path}: {exc}") from exc

        value = getattr(module, "config", None)
        if value is not None:
            if callable(value):
                try:
                    value = value()
                except Exception as exc:
                    raise ConfigurationError(
                        f"Configuration factory in {path} failed: {exc}"
                    ) from exc
            if isinstance(value, HookConfig):
                return value.model_dump(by_alias=True, exclude_unset=True)
            if isinstance(value, Mapping):
                return dict(value)
            raise ConfigurationError(f"'config' in {path} must be a mapping")

        data = {key: getattr(module, key) for key in _CONFIG_KEYS if hasattr(module, key)}
        if not data:
            raise ConfigurationError(f"No valid configuration found in module {path}")
        return data

    @staticmethod
    def _exec_module(path: Path) -> ModuleType:
        return import_source_file(f"hookline_config_{path.stem}", path)

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    def on_change(self, listener: ConfigChangeListener) -> None:
        self._listeners.append(listener)

    def off_change(self, listener: ConfigChangeListener) -> bool:
        try:
            self._listeners.remove(listener)
        except ValueError:
            return False
        return True

    def _emit(self, event: ConfigChangeEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:
                logger.warning("Configuration listener failed: %s", exc)

    # ------------------------------------------------------------------
    # Hot reload
    # ------------------------------------------------------------------

    @property
    def watching(self) -> bool:
        return self._watcher is not None and self._watcher.is_running

    async def watch(self, debounce: Optional[float] = None) -> None:
        """Reload the configuration whenever its file changes.

        Listeners receive a ``changed`` event after each successful reload
        and an ``error`` event when the new content is invalid; the previous
        configuration then stays current.

        Raises:
            ConfigurationError: If no file has been loaded yet.
        """
        if self._source is None:
            raise ConfigurationError("Load a configuration file before watching it")
        if self.watching:
            return
        if debounce is None:
            debounce = (self._current or default_config()).loader.hot_reload_debounce

        source = self._source.resolve()
        self._watcher = DebouncedFileWatcher(
            [source.parent],
            self._handle_file_change,
            debounce=debounce,
            recursive=False,
            path_filter=lambda path: path.resolve() == source,
        )
        await self._watcher.start()

    async def stop_watching(self) -> None:
        if self._watcher is not None:
            await self._watcher.stop()
            self._watcher = None

    def notify(self, path: Optional[Union[str, Path]] = None) -> None:
        """Feed a change to the watched file as if the observer had reported it."""
        if self._watcher is None or self._source is None:
            raise RuntimeError("Configuration is not being watched")
        self._watcher.notify(path or self._source.resolve())

    async def wait_idle(self) -> None:
        if self._watcher is not None:
            await self._watcher.wait_idle()

    async def _handle_file_change(self, path: Path) -> None:
        if not path.exists():
            logger.warning("Configuration file %s was removed; keeping current config", path)
            return
        try:
            result = self.load(self._source)
        except ConfigurationError as exc:
            logger.error("Configuration reload failed: %s", exc)
            return
        self._emit(ConfigChangeEvent(type="changed", source=result.source, config=result.config))


def load_config(
    path: Optional[Union[str, Path]] = None,
    *,
    base_dir: Optional[Union[str, Path]] = None,
    environment: Optional[str] = None,
) -> HookConfig:
    """Convenience wrapper returning just the loaded :class:`HookConfig`."""
    return ConfigLoader(base_dir=base_dir, environment=environment).load(path).config
