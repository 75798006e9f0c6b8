"""Tests for plugin discovery, loading and change classification."""

from __future__ import annotations

import importlib.metadata
import os
from pathlib import Path
from typing import Any, Callable

import pytest

from hookline.exceptions import DiscoveryError, PluginError
from hookline.models import LoaderSettings
from hookline.plugins.loader import ENTRY_POINT_GROUP, PluginLoader, plugin_name_from_path


def bump_mtime(path: Path) -> None:
    """Move *path*'s mtime forward so the loader cache sees a new version."""
    stat = path.stat()
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000_000))


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


class TestDiscover:
    def test_include_and_exclude_patterns(
        self, tmp_path: Path, write_plugin: Callable[..., Path]
    ) -> None:
        plugins = tmp_path / "plugins"
        write_plugin(plugins, "alpha_plugin.py", "alpha")
        write_plugin(plugins, "beta_hook.py", "beta")
        write_plugin(plugins, "helpers.py", "helpers")
        write_plugin(plugins, "test_alpha_plugin.py", "ignored")
        (plugins / "notes_plugin.txt").write_text("not python", encoding="utf-8")

        found = PluginLoader(base_dir=tmp_path).discover()
        assert [p.name for p in found] == ["alpha_plugin.py", "beta_hook.py"]

    def test_missing_search_path_is_skipped(self, tmp_path: Path) -> None:
        settings = LoaderSettings(search_paths=["./missing", "./plugins"])
        assert PluginLoader(settings, base_dir=tmp_path).discover() == []

    def test_always_skips_cache_directories(
        self, tmp_path: Path, write_plugin: Callable[..., Path]
    ) -> None:
        write_plugin(tmp_path / "plugins" / "__pycache__", "stale_plugin.py", "stale")
        write_plugin(tmp_path / "plugins" / ".git", "hidden_plugin.py", "hidden")
        assert PluginLoader(base_dir=tmp_path).discover() == []

    def test_max_depth(self, tmp_path: Path, write_plugin: Callable[..., Path]) -> None:
        plugins = tmp_path / "plugins"
        write_plugin(plugins, "top_plugin.py", "top")
        write_plugin(plugins / "one", "one_plugin.py", "one")
        write_plugin(plugins / "one" / "two", "two_plugin.py", "two")

        loader = PluginLoader(LoaderSettings(max_depth=1), base_dir=tmp_path)
        assert [p.name for p in loader.discover()] == ["one_plugin.py", "top_plugin.py"]
        assert loader.is_plugin_file(plugins / "one" / "one_plugin.py")
        assert not loader.is_plugin_file(plugins / "one" / "two" / "two_plugin.py")

    def test_non_recursive(self, tmp_path: Path, write_plugin: Callable[..., Path]) -> None:
        plugins = tmp_path / "plugins"
        write_plugin(plugins, "top_plugin.py", "top")
        write_plugin(plugins / "nested", "nested_plugin.py", "nested")

        loader = PluginLoader(LoaderSettings(recursive=False), base_dir=tmp_path)
        assert [p.name for p in loader.discover()] == ["top_plugin.py"]

    def test_excluded_directory(self, tmp_path: Path, write_plugin: Callable[..., Path]) -> None:
        plugins = tmp_path / "plugins"
        write_plugin(plugins / "vendor", "vendored_plugin.py", "vendored")
        write_plugin(plugins, "own_plugin.py", "own")

        settings = LoaderSettings(exclude_patterns=["vendor/"])
        found = PluginLoader(settings, base_dir=tmp_path).discover()
        assert [p.name for p in found] == ["own_plugin.py"]

    def test_absolute_search_path(self, tmp_path: Path, write_plugin: Callable[..., Path]) -> None:
        elsewhere = tmp_path / "elsewhere"
        write_plugin(elsewhere, "far_plugin.py", "far")
        settings = LoaderSettings(search_paths=[str(elsewhere)])
        loader = PluginLoader(settings, base_dir=tmp_path / "unused")
        assert loader.search_roots == [elsewhere.resolve()]
        assert len(loader.discover()) == 1

    def test_is_plugin_file_outside_roots(self, tmp_path: Path) -> None:
        loader = PluginLoader(base_dir=tmp_path)
        assert not loader.is_plugin_file(tmp_path / "other" / "x_plugin.py")
        assert not loader.is_plugin_file(tmp_path / "plugins" / "x_plugin.txt")


class TestPluginNameFromPath:
    @pytest.mark.parametrize(
        "path, expected",
        [
            ("plugins/git_safety_plugin.py", "git-safety"),
            ("audit_hook.py", "audit"),
            ("Plain_Name.py", "plain-name"),
            ("_plugin.py", "-plugin"),
        ],
    )
    def test_names(self, path: str, expected: str) -> None:
        assert plugin_name_from_path(path) == expected


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class TestLoadPlugins:
    def test_good_and_bad_files(self, tmp_path: Path, write_plugin: Callable[..., Path]) -> None:
        plugins = tmp_path / "plugins"
        write_plugin(plugins, "good_plugin.py", "good")
        write_plugin(plugins, "bad_plugin.py", source="def broken(:\n")

        result = PluginLoader(base_dir=tmp_path).load_plugins()

        assert [p.name for p in result.plugins] == ["good"]
        assert len(result.errors) == 1
        error = result.errors[0]
        assert isinstance(error, DiscoveryError)
        assert error.path.name == "bad_plugin.py"
        assert error.to_dict()["path"].endswith("bad_plugin.py")
        assert result.scanned == 2
        assert result.duration >= 0

    def test_module_without_plugin_is_not_an_error(
        self, tmp_path: Path, write_plugin: Callable[..., Path]
    ) -> None:
        write_plugin(tmp_path / "plugins", "empty_plugin.py", source="VALUE = 1\n")
        result = PluginLoader(base_dir=tmp_path).load_plugins()
        assert result.plugins == []
        assert result.errors == []

    def test_plugin_class_export(self, tmp_path: Path, write_plugin: Callable[..., Path]) -> None:
        path = write_plugin(
            tmp_path,
            "class_plugin.py",
            source="""
            from hookline.models import HookResult


            class Exported:
                name = "exported"
                version = "1.0.0"
                events = ["Stop"]

                def apply(self, context, config):
                    return HookResult(success=True)


            plugin = Exported
            """,
        )
        assert PluginLoader(base_dir=tmp_path).load_plugin(path).name == "exported"

    def test_create_plugin_factory(self, tmp_path: Path, write_plugin: Callable[..., Path]) -> None:
        path = write_plugin(
            tmp_path,
            "factory_plugin.py",
            source="""
            from types import SimpleNamespace


            def create_plugin():
                return SimpleNamespace(
                    name="from-factory",
                    version="1.0.0",
                    events=["Stop"],
                    apply=lambda context, config: {"success": True},
                )
            """,
        )
        assert PluginLoader(base_dir=tmp_path).load_plugin(path).name == "from-factory"

    def test_named_class_fallback(self, tmp_path: Path, write_plugin: Callable[..., Path]) -> None:
        path = write_plugin(
            tmp_path,
            "audit_plugin.py",
            source="""
            from hookline.models import HookEvent, HookResult
            from hookline.plugins import HookPlugin


            class AuditPlugin(HookPlugin):
                name = "audit"
                version = "0.2.0"
                events = [HookEvent.POST_TOOL_USE]

                def apply(self, context, config):
                    return HookResult(success=True)
            """,
        )
        assert PluginLoader(base_dir=tmp_path).load_plugin(path).name == "audit"

    def test_async_factory_is_rejected(
        self, tmp_path: Path, write_plugin: Callable[..., Path]
    ) -> None:
        path = write_plugin(
            tmp_path,
            "async_plugin.py",
            source="""
            async def create_plugin():
                return None
            """,
        )
        with pytest.raises(PluginError, match="Async plugin factories"):
            PluginLoader(base_dir=tmp_path).load_plugin(path)

    def test_invalid_structure(self, tmp_path: Path, write_plugin: Callable[..., Path]) -> None:
        path = write_plugin(tmp_path, "shapeless_plugin.py", source="plugin = 42\n")
        with pytest.raises(PluginError, match="Invalid plugin structure"):
            PluginLoader(base_dir=tmp_path).load_plugin(path)

    def test_import_error_is_wrapped(
        self, tmp_path: Path, write_plugin: Callable[..., Path]
    ) -> None:
        path = write_plugin(tmp_path, "boom_plugin.py", source="raise RuntimeError('boom')\n")
        with pytest.raises(PluginError, match="Failed to load plugin") as exc_info:
            PluginLoader(base_dir=tmp_path).load_plugin(path)
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(PluginError):
            PluginLoader(base_dir=tmp_path).load_plugin(tmp_path / "nope_plugin.py")


class TestCache:
    def test_cache_hit_until_mtime_changes(
        self, tmp_path: Path, write_plugin: Callable[..., Path]
    ) -> None:
        path = write_plugin(tmp_path / "plugins", "cached_plugin.py", "cached")
        loader = PluginLoader(base_dir=tmp_path)

        first = loader.load_plugin(path)
        assert loader.load_plugin(path) is first
        assert loader.cache_stats()["size"] == 1

        bump_mtime(path)
        assert loader.load_plugin(path) is not first

    def test_clear_cache(self, tmp_path: Path, write_plugin: Callable[..., Path]) -> None:
        path = write_plugin(tmp_path / "plugins", "cached_plugin.py", "cached")
        loader = PluginLoader(base_dir=tmp_path)
        first = loader.load_plugin(path)
        loader.clear_cache()
        assert loader.cache_stats() == {"size": 0, "paths": []}
        assert loader.load_plugin(path) is not first

    def test_cache_disabled(self, tmp_path: Path, write_plugin: Callable[..., Path]) -> None:
        path = write_plugin(tmp_path / "plugins", "cached_plugin.py", "cached")
        loader = PluginLoader(LoaderSettings(enable_cache=False), base_dir=tmp_path)
        assert loader.load_plugin(path) is not loader.load_plugin(path)
        assert loader.cache_stats()["size"] == 0

    def test_edit_within_same_mtime_is_loaded(
        self, tmp_path: Path, write_plugin: Callable[..., Path]
    ) -> None:
        plugins = tmp_path / "plugins"
        path = write_plugin(plugins, "edited_plugin.py", "edited", version="1.0.0")
        stat = path.stat()
        loader = PluginLoader(LoaderSettings(enable_cache=False), base_dir=tmp_path)
        assert loader.load_plugin(path).version == "1.0.0"

        write_plugin(plugins, "edited_plugin.py", "edited", version="2.0.0")
        os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns))
        assert loader.load_plugin(path).version == "2.0.0"
        assert not (plugins / "__pycache__").exists()


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


class _FakeEntryPoint:
    def __init__(self, name: str, value: str, target: Any) -> None:
        self.name = name
        self.value = value
        self._target = target

    def load(self) -> Any:
        if isinstance(self._target, Exception):
            raise self._target
        return self._target


class TestEntryPoints:
    def test_load_entry_points(self, monkeypatch: pytest.MonkeyPatch) -> None:
        from types import SimpleNamespace

        good = SimpleNamespace(
            name="installed", version="1.0.0", events=["Stop"], apply=lambda c, o: {"success": True}
        )
        requested: list[str] = []

        def fake_entry_points(*, group: str) -> list[_FakeEntryPoint]:
            requested.append(group)
            return [
                _FakeEntryPoint("installed", "pkg.plugins:installed", good),
                _FakeEntryPoint("broken", "pkg.plugins:broken", ImportError("missing dep")),
                _FakeEntryPoint("shapeless", "pkg.plugins:shapeless", 42),
            ]

        monkeypatch.setattr(importlib.metadata, "entry_points", fake_entry_points)
        result = PluginLoader().load_entry_points()

        assert requested == [ENTRY_POINT_GROUP]
        assert result.plugins == [good]
        assert result.scanned == 3
        assert [str(e.path) for e in result.errors] == [
            "pkg.plugins:broken",
            "pkg.plugins:shapeless",
        ]


# ---------------------------------------------------------------------------
# Change classification
# ---------------------------------------------------------------------------


class TestHandleChange:
    @pytest.mark.asyncio
    async def test_added_changed_removed(
        self, tmp_path: Path, write_plugin: Callable[..., Path]
    ) -> None:
        plugins = tmp_path / "plugins"
        loader = PluginLoader(base_dir=tmp_path)

        path = write_plugin(plugins, "live_plugin.py", "live", message="v1")
        added = await loader.handle_change(path)
        assert added is not None
        assert added.type == "added"
        assert added.name == "live"
        assert added.plugin is not None

        write_plugin(plugins, "live_plugin.py", "live", version="1.1.0", message="v2")
        bump_mtime(path)
        changed = await loader.handle_change(path)
        assert changed is not None
        assert changed.type == "changed"
        assert changed.plugin.version == "1.1.0"

        path.unlink()
        removed = await loader.handle_change(path)
        assert removed is not None
        assert removed.type == "removed"
        assert removed.name == "live"

    @pytest.mark.asyncio
    async def test_ignores_unrelated_files(self, tmp_path: Path) -> None:
        loader = PluginLoader(base_dir=tmp_path)
        (tmp_path / "plugins").mkdir()
        notes = tmp_path / "plugins" / "notes.py"
        notes.write_text("x = 1\n", encoding="utf-8")

        assert await loader.handle_change(notes) is None
        assert await loader.handle_change(tmp_path / "plugins" / "never_plugin.py") is None

    @pytest.mark.asyncio
    async def test_failed_reload_reports_error(
        self, tmp_path: Path, write_plugin: Callable[..., Path]
    ) -> None:
        path = write_plugin(tmp_path / "plugins", "typo_plugin.py", source="def oops(:\n")
        event = await PluginLoader(base_dir=tmp_path).handle_change(path)
        assert event is not None
        assert event.type == "added"
        assert isinstance(event.error, PluginError)
        assert event.plugin is None

    @pytest.mark.asyncio
    async def test_changed_event_carries_previous_name(
        self, tmp_path: Path, write_plugin: Callable[..., Path]
    ) -> None:
        plugins = tmp_path / "plugins"
        loader = PluginLoader(base_dir=tmp_path)
        path = write_plugin(plugins, "x_plugin.py", "old-name")
        added = await loader.handle_change(path)
        assert added is not None
        assert added.previous_name is None

        write_plugin(plugins, "x_plugin.py", "new-name")
        bump_mtime(path)
        changed = await loader.handle_change(path)
        assert changed is not None
        assert changed.type == "changed"
        assert changed.name == "new-name"
        assert changed.previous_name == "old-name"
