"""Init command -- write a starter hook configuration.

Implements the ``hookline init`` top-level command. It writes a
``hooks.config.json`` (or ``.yaml``) into the project directory with the
default settings, one example plugin entry and a ``test`` environment
block, and creates the default ``plugins/`` search directory.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from hookline.output import error, info, success, suggest


def starter_config():
    """Return the configuration written by ``hookline init``."""
    from hookline.models import (
        EnvironmentOverride,
        HookConfig,
        HookEvent,
        PluginConfig,
        SettingsOverride,
    )

    return HookConfig(
        plugins=[
            PluginConfig(
                name="git-safety",
                priority=100,
                events=[HookEvent.PRE_TOOL_USE],
                tools=["Bash"],
            )
        ],
        rules={"git-safety": {"protectedBranches": ["main", "master"]}},
        environments={
            "test": EnvironmentOverride(
                settings=SettingsOverride(default_timeout=2.0, log_level="debug")
            ),
        },
    )


def init_command(
    fmt: str = typer.Option(
        "json", "--format", "-f", help="Config file format: json or yaml."
    ),
    force: bool = typer.Option(
        False, "--force", help="Overwrite an existing configuration file."
    ),
    directory: Optional[Path] = typer.Option(
        None, "--dir", "-d", help="Target directory (default: the project directory)."
    ),
) -> None:
    """Write a starter configuration file.

    Raises:
        typer.Exit: With code 2 for an unknown format, or 1 when the file
            already exists and ``--force`` was not given.

    Example::

        hookline init
        hookline init --format yaml --force
    """
    from hookline.commands.config import project_dir
    from hookline.config import save_config

    if fmt not in ("json", "yaml"):
        error(f"Unsupported format: {fmt} (expected json or yaml)")
        raise typer.Exit(code=2)

    target_dir = directory if directory is not None else project_dir()
    path = target_dir / f"hooks.config.{fmt}"

    if path.exists() and not force:
        error(f"{path} already exists. Use --force to overwrite.")
        raise typer.Exit(code=1)

    config = starter_config()
    save_config(config, path)

    plugin_dir = target_dir / config.loader.search_paths[0]
    if not plugin_dir.exists():
        plugin_dir.mkdir(parents=True)
        info(f"Created plugin directory: {plugin_dir}")

    success(f"Wrote {path}")
    suggest("Add plugins as *_plugin.py files under the plugin directory")
    suggest("Check them with: hookline plugins list")
