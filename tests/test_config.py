"""Tests for configuration loading, environment overrides, persistence and hot reload."""

from __future__ import annotations

import json
import textwrap
from pathlib import Path
from typing import Any

import pytest
import yaml

from hookline.config import (
    CONFIG_FILENAMES,
    ConfigChangeEvent,
    ConfigLoader,
    config_to_dict,
    deep_merge,
    default_config,
    dump_config,
    find_config_file,
    load_config,
    save_config,
)
from hookline.exceptions import ConfigurationError
from hookline.models import HookConfig, Settings


def write_json(path: Path, data: Any) -> Path:
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def write_text(path: Path, text: str) -> Path:
    path.write_text(textwrap.dedent(text).lstrip(), encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestDeepMerge:
    def test_nested_mappings_merge(self) -> None:
        base = {"settings": {"a": 1, "b": 2}, "keep": True}
        merged = deep_merge(base, {"settings": {"b": 3}})
        assert merged == {"settings": {"a": 1, "b": 3}, "keep": True}
        assert base["settings"]["b"] == 2

    def test_lists_are_replaced(self) -> None:
        assert deep_merge({"plugins": [1, 2]}, {"plugins": [3]}) == {"plugins": [3]}

    def test_scalar_replaces_mapping(self) -> None:
        assert deep_merge({"x": {"y": 1}}, {"x": None}) == {"x": None}


class TestDefaults:
    def test_default_config(self) -> None:
        config = default_config()
        assert config.plugins == []
        assert config.rules == {}
        assert config.settings.default_timeout == 5.0
        assert config.settings.continue_on_failure is False
        assert config.loader.search_paths == ["./plugins"]

    def test_find_config_file_order(self, tmp_path: Path) -> None:
        assert find_config_file(tmp_path) is None
        write_text(tmp_path / ".hooksrc.yaml", "rules: {}\n")
        write_json(tmp_path / "hooks.config.json", {})
        assert find_config_file(tmp_path) == tmp_path / "hooks.config.json"
        assert CONFIG_FILENAMES[0] == "hooks.config.json"


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class TestLoadFormats:
    def test_json(self, tmp_path: Path) -> None:
        write_json(
            tmp_path / "hooks.config.json",
            {
                "plugins": [{"name": "git-safety", "priority": 100, "tools": ["Bash"]}],
                "settings": {"defaultTimeout": 2.5, "continueOnFailure": True},
            },
        )
        result = ConfigLoader(base_dir=tmp_path, environment="development").load()

        assert result.source == tmp_path / "hooks.config.json"
        assert result.environment == "development"
        assert result.duration >= 0
        assert result.config.plugins[0].name == "git-safety"
        assert result.config.plugins[0].tools == ["Bash"]
        assert result.config.settings.default_timeout == 2.5
        assert result.config.settings.continue_on_failure is True
        assert result.config.settings.max_concurrency == 10

    def test_yaml(self, tmp_path: Path) -> None:
        write_text(
            tmp_path / "hooks.config.yaml",
            """
            rules:
              git-safety:
                protectedBranches: [main]
            settings:
              logLevel: debug
            """,
        )
        config = ConfigLoader(base_dir=tmp_path).load().config
        assert config.rules == {"git-safety": {"protectedBranches": ["main"]}}
        assert config.settings.log_level == "debug"

    def test_empty_yaml_gives_defaults(self, tmp_path: Path) -> None:
        (tmp_path / "hooks.config.yml").write_text("", encoding="utf-8")
        config = ConfigLoader(base_dir=tmp_path).load().config
        assert config == default_config()

    def test_snake_case_keys(self, tmp_path: Path) -> None:
        write_json(tmp_path / "hooks.config.json", {"settings": {"default_timeout": 7}})
        assert ConfigLoader(base_dir=tmp_path).load().config.settings.default_timeout == 7

    def test_python_config_mapping(self, tmp_path: Path) -> None:
        write_text(
            tmp_path / "hooks.config.py",
            """
            config = {
                "plugins": [{"name": "audit", "events": ["PostToolUse"]}],
                "settings": {"collectMetrics": False},
            }
            """,
        )
        config = ConfigLoader(base_dir=tmp_path).load().config
        assert config.plugins[0].name == "audit"
        assert config.settings.collect_metrics is False

    def test_python_config_factory(self, tmp_path: Path) -> None:
        write_text(
            tmp_path / "hooks.config.py",
            """
            from hookline.models import HookConfig, Settings


            def config():
                return HookConfig(settings=Settings(default_timeout=4))
            """,
        )
        config = ConfigLoader(base_dir=tmp_path).load().config
        assert config.settings.default_timeout == 4
        assert config.settings.log_level == "info"

    def test_python_module_variables(self, tmp_path: Path) -> None:
        write_text(
            tmp_path / "hooks.config.py",
            """
            rules = {"git-safety": {"blockHardReset": True}}
            settings = {"maxConcurrency": 2}
            """,
        )
        config = ConfigLoader(base_dir=tmp_path).load().config
        assert config.rules["git-safety"] == {"blockHardReset": True}
        assert config.settings.max_concurrency == 2

    def test_python_custom_condition(self, tmp_path: Path) -> None:
        write_text(
            tmp_path / "hooks.config.py",
            """
            def only_ci(context):
                return True


            plugins = [
                {"name": "ci-only", "conditions": [{"type": "custom", "condition": only_ci}]}
            ]
            """,
        )
        config = ConfigLoader(base_dir=tmp_path).load().config
        assert callable(config.plugins[0].conditions[0].condition)

    def test_explicit_relative_path(self, tmp_path: Path) -> None:
        (tmp_path / "conf").mkdir()
        write_json(tmp_path / "conf" / "custom.json", {"rules": {"x": {}}})
        result = ConfigLoader(base_dir=tmp_path).load("conf/custom.json")
        assert result.source == tmp_path / "conf" / "custom.json"
        assert result.config.rules == {"x": {}}

    def test_load_config_wrapper(self, tmp_path: Path) -> None:
        write_json(tmp_path / "hooks.config.json", {"settings": {"defaultTimeout": 9}})
        assert load_config(base_dir=tmp_path).settings.default_timeout == 9


class TestLoadErrors:
    def test_missing_default_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="Configuration file not found"):
            ConfigLoader(base_dir=tmp_path).load()

    def test_missing_explicit_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="Configuration file not found"):
            ConfigLoader(base_dir=tmp_path).load("nope.json")

    def test_invalid_json(self, tmp_path: Path) -> None:
        (tmp_path / "hooks.config.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Invalid JSON"):
            ConfigLoader(base_dir=tmp_path).load()

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        (tmp_path / "hooks.config.yaml").write_text("rules: [unclosed", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            ConfigLoader(base_dir=tmp_path).load()

    def test_unsupported_extension(self, tmp_path: Path) -> None:
        (tmp_path / "hooks.toml").write_text("x = 1", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Unsupported configuration file extension"):
            ConfigLoader(base_dir=tmp_path).load("hooks.toml")

    def test_non_mapping(self, tmp_path: Path) -> None:
        write_json(tmp_path / "hooks.config.json", [1, 2, 3])
        with pytest.raises(ConfigurationError, match="must be a mapping"):
            ConfigLoader(base_dir=tmp_path).load()

    def test_validation_failure(self, tmp_path: Path) -> None:
        write_json(tmp_path / "hooks.config.json", {"settings": {"defaultTimeout": "slow"}})
        with pytest.raises(ConfigurationError, match="Configuration validation failed"):
            ConfigLoader(base_dir=tmp_path).load()

    def test_out_of_range_setting(self, tmp_path: Path) -> None:
        write_json(tmp_path / "hooks.config.json", {"settings": {"maxConcurrency": 0}})
        with pytest.raises(ConfigurationError):
            ConfigLoader(base_dir=tmp_path).load()

    def test_python_module_without_config(self, tmp_path: Path) -> None:
        write_text(tmp_path / "hooks.config.py", "VALUE = 1\n")
        with pytest.raises(ConfigurationError, match="No valid configuration found"):
            ConfigLoader(base_dir=tmp_path).load()

    def test_python_module_that_raises(self, tmp_path: Path) -> None:
        write_text(tmp_path / "hooks.config.py", "raise RuntimeError('broken config')\n")
        with pytest.raises(ConfigurationError, match="broken config"):
            ConfigLoader(base_dir=tmp_path).load()

    def test_validate_false_falls_back_to_defaults(self, tmp_path: Path) -> None:
        write_json(tmp_path / "hooks.config.json", {"settings": {"defaultTimeout": "slow"}})
        config = ConfigLoader(base_dir=tmp_path, validate=False).load().config
        assert config == default_config()

    def test_error_exit_code(self) -> None:
        assert ConfigurationError("x").exit_code == 3


# ---------------------------------------------------------------------------
# Merging and environments
# ---------------------------------------------------------------------------


class TestEnvironments:
    @pytest.fixture
    def env_config(self, tmp_path: Path) -> Path:
        return write_json(
            tmp_path / "hooks.config.json",
            {
                "plugins": [{"name": "git-safety", "priority": 100}],
                "rules": {"git-safety": {"protectedBranches": ["main"]}},
                "settings": {"defaultTimeout": 8, "logLevel": "warn"},
                "environments": {
                    "test": {
                        "plugins": [{"name": "audit"}],
                        "rules": {"audit": {"verbose": True}},
                        "settings": {"defaultTimeout": 2.0},
                    }
                },
            },
        )

    def test_override_applies(self, env_config: Path) -> None:
        config = ConfigLoader(base_dir=env_config.parent, environment="test").load().config

        assert config.settings.default_timeout == 2.0
        assert config.settings.log_level == "warn"
        assert [p.name for p in config.plugins] == ["audit"]
        assert set(config.rules) == {"git-safety", "audit"}

    def test_rules_are_deep_merged(self, tmp_path: Path) -> None:
        write_json(
            tmp_path / "hooks.config.json",
            {
                "rules": {"git-safety": {"protectedBranches": ["main"], "blockForcePush": True}},
                "environments": {
                    "ci": {"rules": {"git-safety": {"blockForcePush": False}}},
                },
            },
        )
        config = ConfigLoader(base_dir=tmp_path, environment="ci").load().config
        assert config.rules["git-safety"] == {
            "protectedBranches": ["main"],
            "blockForcePush": False,
        }

    def test_other_environment_untouched(self, env_config: Path) -> None:
        config = ConfigLoader(base_dir=env_config.parent, environment="production").load().config
        assert config.settings.default_timeout == 8
        assert [p.name for p in config.plugins] == ["git-safety"]

    def test_environment_from_variable(
        self, env_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("HOOKLINE_ENV", "test")
        loader = ConfigLoader(base_dir=env_config.parent)
        assert loader.environment == "test"
        assert loader.load().config.settings.default_timeout == 2.0

    def test_default_environment(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.delenv("HOOKLINE_ENV", raising=False)
        assert ConfigLoader(base_dir=tmp_path).environment == "development"

    def test_defaults_are_merged_under_file(self, tmp_path: Path) -> None:
        write_json(tmp_path / "hooks.config.json", {"settings": {"defaultTimeout": 3}})
        loader = ConfigLoader(
            base_dir=tmp_path,
            defaults={"settings": {"log_level": "debug", "defaultTimeout": 1}},
        )
        settings = loader.load().config.settings
        assert settings.default_timeout == 3
        assert settings.log_level == "debug"


# ---------------------------------------------------------------------------
# Listeners and reload
# ---------------------------------------------------------------------------


class TestListeners:
    def test_loaded_and_error_events(self, tmp_path: Path) -> None:
        events: list[ConfigChangeEvent] = []
        path = write_json(tmp_path / "hooks.config.json", {})
        loader = ConfigLoader(base_dir=tmp_path)
        loader.on_change(events.append)

        loader.load()
        path.write_text("{broken", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            loader.load()

        assert [e.type for e in events] == ["loaded", "error"]
        assert events[0].config is not None
        assert isinstance(events[1].error, ConfigurationError)

    def test_off_change(self, tmp_path: Path) -> None:
        events: list[ConfigChangeEvent] = []
        write_json(tmp_path / "hooks.config.json", {})
        loader = ConfigLoader(base_dir=tmp_path)
        loader.on_change(events.append)
        assert loader.off_change(events.append) is True
        assert loader.off_change(events.append) is False
        loader.load()
        assert events == []

    def test_failing_listener_is_contained(self, tmp_path: Path) -> None:
        def broken(event: ConfigChangeEvent) -> None:
            raise RuntimeError("listener bug")

        write_json(tmp_path / "hooks.config.json", {})
        loader = ConfigLoader(base_dir=tmp_path)
        loader.on_change(broken)
        assert loader.load().config == default_config()

    def test_reload(self, tmp_path: Path) -> None:
        path = write_json(tmp_path / "hooks.config.json", {"settings": {"defaultTimeout": 1}})
        loader = ConfigLoader(base_dir=tmp_path)
        loader.load()
        write_json(path, {"settings": {"defaultTimeout": 6}})
        assert loader.reload().config.settings.default_timeout == 6
        assert loader.current_config.settings.default_timeout == 6
        assert loader.source == path

    def test_reload_before_load(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="No configuration file"):
            ConfigLoader(base_dir=tmp_path).reload()


class TestWatch:
    @pytest.mark.asyncio
    async def test_change_is_reloaded(self, tmp_path: Path) -> None:
        path = write_json(tmp_path / "hooks.config.json", {"settings": {"defaultTimeout": 1}})
        loader = ConfigLoader(base_dir=tmp_path)
        loader.load()
        events: list[ConfigChangeEvent] = []
        loader.on_change(events.append)

        await loader.watch(debounce=0.01)
        try:
            assert loader.watching
            write_json(path, {"settings": {"defaultTimeout": 4}})
            loader.notify()
            await loader.wait_idle()
        finally:
            await loader.stop_watching()

        assert not loader.watching
        assert "changed" in [e.type for e in events]
        assert loader.current_config.settings.default_timeout == 4

    @pytest.mark.asyncio
    async def test_invalid_change_keeps_current(self, tmp_path: Path) -> None:
        path = write_json(tmp_path / "hooks.config.json", {"settings": {"defaultTimeout": 1}})
        loader = ConfigLoader(base_dir=tmp_path)
        loader.load()
        events: list[ConfigChangeEvent] = []
        loader.on_change(events.append)

        await loader.watch(debounce=0.01)
        try:
            path.write_text("{oops", encoding="utf-8")
            loader.notify()
            await loader.wait_idle()
        finally:
            await loader.stop_watching()

        assert "error" in [e.type for e in events]
        assert "changed" not in [e.type for e in events]
        assert loader.current_config.settings.default_timeout == 1

    @pytest.mark.asyncio
    async def test_watch_requires_loaded_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError):
            await ConfigLoader(base_dir=tmp_path).watch()

    def test_notify_requires_watch(self, tmp_path: Path) -> None:
        with pytest.raises(RuntimeError):
            ConfigLoader(base_dir=tmp_path).notify()


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------


class TestPersistence:
    def test_config_to_dict_uses_camel_case(self) -> None:
        data = config_to_dict(HookConfig(settings=Settings(default_timeout=2)))
        assert data["settings"]["defaultTimeout"] == 2
        assert "searchPaths" in data["loader"]

    def test_dump_yaml(self) -> None:
        text = dump_config(default_config(), "yaml")
        assert yaml.safe_load(text)["settings"]["logLevel"] == "info"

    def test_dump_json(self) -> None:
        text = dump_config(default_config())
        assert json.loads(text)["loader"]["maxDepth"] == 5
        assert text.endswith("\n")

    @pytest.mark.parametrize("name", ["hooks.config.json", "hooks.config.yaml"])
    def test_save_and_load(self, tmp_path: Path, name: str) -> None:
        config = HookConfig.model_validate(
            {
                "plugins": [{"name": "git-safety", "priority": 100}],
                "rules": {"git-safety": {"protectedBranches": ["main"]}},
                "settings": {"defaultTimeout": 2.0},
            }
        )
        path = tmp_path / "nested" / name
        save_config(config, path)

        assert path.exists()
        assert [p.name for p in path.parent.iterdir()] == [name]
        loaded = ConfigLoader(base_dir=path.parent).load().config
        assert loaded.plugins[0].priority == 100
        assert loaded.rules == config.rules
        assert loaded.settings.default_timeout == 2.0

    def test_callables_are_rendered(self) -> None:
        config = HookConfig.model_validate(
            {"plugins": [{"name": "x", "conditions": [{"type": "custom", "condition": len}]}]}
        )
        data = config_to_dict(config)
        assert data["plugins"][0]["conditions"][0]["condition"] == "<len>"
