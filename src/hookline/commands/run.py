"""Run command -- the entry point the host invokes for every hook event.

``hookline run`` reads one JSON event from stdin, runs the configured
plugins over it and reports the verdict through the exit status (default) or
as one JSON line (``--json``). Nothing but the verdict is written to stdout;
logging goes to stderr.

Every failure, including an unreadable configuration or a plugin directory
that cannot be loaded, becomes a blocking verdict so the host never proceeds
on an event nobody checked.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer

logger = logging.getLogger(__name__)


def run_command(
    ctx: typer.Context,
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Configuration file (default: search the project directory)."
    ),
    json_mode: bool = typer.Option(
        False, "--json", help="Report the verdict as JSON on stdout (always exits 0)."
    ),
) -> None:
    """Handle one host event read from stdin.

    Exit codes (exit-code mode): 0 success, 1 non-blocking failure,
    2 blocking failure.

    Example::

        echo '{"session_id": "abc", "cwd": ".", "hook_event_name": "Stop"}' | hookline run
        hookline run --json --config ./hooks.config.yaml < event.json
    """
    verbose = bool((ctx.obj or {}).get("verbose", False))
    mode = "json" if json_mode else "exit-code"
    code = asyncio.run(_run(config_path, mode, verbose))
    raise typer.Exit(code=code)


async def _run(config_path: Optional[Path], mode: str, verbose: bool) -> int:
    from hookline.commands.config import project_dir, resolve_config
    from hookline.exceptions import HooklineError
    from hookline.models import HookResult
    from hookline.output import configure_logging
    from hookline.plugins.registry import load_registry
    from hookline.protocol import output_result, run_hook

    configure_logging(verbose=verbose)
    try:
        config, source = resolve_config(config_path)
        configure_logging(config.settings.log_level, verbose)
        registry, discovery = load_registry(config, base_dir=project_dir())
    except HooklineError as exc:
        logger.error("Hook setup failed: %s", exc)
        failure = HookResult(success=False, message=str(exc), block=True)
        return output_result(failure, mode=mode)

    for failed in discovery.errors:
        logger.warning("Plugin %s failed to load: %s", failed.path, failed.message)
    logger.debug(
        "Running with %d plugin(s) from %s", len(registry), source or "built-in defaults"
    )

    await registry.initialize()
    try:
        return await run_hook(registry, output_mode=mode)
    finally:
        await registry.shutdown()
