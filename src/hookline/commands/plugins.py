"""Plugin commands -- list discovered plugins and run their health checks.

Provides the ``hookline plugins`` sub-command group. Plugins are discovered
and registered the same way ``hookline run`` does it, so the listing shows
the effective priority, events and tools after configuration is applied.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer

from hookline.output import debug, error, info, print_table, success, warning


plugins_app = typer.Typer(no_args_is_help=True)


def _load(config_path: Optional[Path]):
    """Return ``(registry, discovery)`` or exit with the configuration error code."""
    from hookline.commands.config import project_dir, resolve_config
    from hookline.exceptions import ConfigurationError
    from hookline.plugins.registry import load_registry

    try:
        config, _ = resolve_config(config_path)
    except ConfigurationError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    return load_registry(config, base_dir=project_dir())


@plugins_app.command("list")
def plugins_list(
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Configuration file."
    ),
) -> None:
    """List registered plugins, highest priority first.

    Example::

        hookline plugins list
        hookline plugins list --config ./hooks.config.yaml
    """
    registry, discovery = _load(config_path)
    debug(f"Scanned {discovery.scanned} plugin file(s)")

    for failed in discovery.errors:
        warning(f"{failed.path}: {failed.message}")

    rows = registry.list_plugins()
    if not rows:
        info("No plugins found.")
        return

    print_table(
        ["Name", "Version", "Priority", "Enabled", "Events", "Tools", "Description"],
        [
            [
                row["name"],
                row["version"],
                str(row["priority"]),
                "yes" if row["enabled"] else "no",
                ", ".join(row["events"]),
                ", ".join(row["tools"]) or "*",
                row["description"],
            ]
            for row in rows
        ],
        title="Plugins",
    )


@plugins_app.command("check")
def plugins_check(
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Configuration file."
    ),
) -> None:
    """Initialise every plugin and run its health check.

    Exits with code 10 when a plugin file failed to load or a health check
    reported a problem.

    Example::

        hookline plugins check
    """
    from hookline.exit_codes import EXIT_PLUGIN_ERROR

    registry, discovery = _load(config_path)
    debug(f"Scanned {discovery.scanned} plugin file(s)")

    async def _check() -> dict[str, bool]:
        await registry.initialize()
        try:
            return await registry.health_check()
        finally:
            await registry.shutdown()

    report = asyncio.run(_check())

    for failed in discovery.errors:
        error(f"Failed to load {failed.path}: {failed.message}")

    if report:
        print_table(
            ["Name", "Healthy"],
            [[name, "yes" if healthy else "no"] for name, healthy in sorted(report.items())],
            title="Health",
        )

    unhealthy = [name for name, healthy in report.items() if not healthy]
    if unhealthy or discovery.errors:
        if unhealthy:
            error(f"Unhealthy plugin(s): {', '.join(sorted(unhealthy))}")
        raise typer.Exit(code=EXIT_PLUGIN_ERROR)

    success(f"{len(report)} plugin(s) healthy.")
