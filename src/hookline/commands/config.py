"""Config commands -- inspect and validate the hook configuration.

Provides the ``hookline config`` sub-command group. Both commands load the
configuration exactly as ``hookline run`` does (defaults, file, then the
active environment block), so what they print is what the hooks will see.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from hookline.output import error, info, print_json, print_text, success


config_app = typer.Typer(no_args_is_help=True)


def project_dir() -> Path:
    """Return the host's project directory, or the working directory."""
    from hookline.context import read_environment

    return Path(read_environment().project_dir or Path.cwd())


def resolve_config(
    path: Optional[Path] = None,
    environment: Optional[str] = None,
    required: bool = False,
):
    """Load the configuration the commands operate on.

    Args:
        path: Explicit configuration file. Relative paths resolve against
            the working directory.
        environment: Environment block to apply (defaults to
            ``$HOOKLINE_ENV``).
        required: Raise when no configuration file exists instead of
            falling back to the built-in defaults.

    Returns:
        A ``(config, source)`` tuple; ``source`` is ``None`` when the
        defaults were used.

    Raises:
        ConfigurationError: If the file is missing (and *required* or
            explicit) or invalid.
    """
    from hookline.config import ConfigLoader, default_config, find_config_file

    base_dir = project_dir()
    loader = ConfigLoader(base_dir=base_dir, environment=environment)
    if path is None and not required and find_config_file(base_dir) is None:
        return default_config(), None

    result = loader.load(path.resolve() if path is not None else None)
    return result.config, result.source


@config_app.command("show")
def config_show(
    path: Optional[Path] = typer.Argument(
        None, help="Configuration file (default: search the project directory)."
    ),
    fmt: str = typer.Option(
        "json", "--format", "-f", help="Output format: json or yaml."
    ),
    env: Optional[str] = typer.Option(
        None, "--env", "-e", help="Environment block to apply."
    ),
) -> None:
    """Show the effective configuration.

    Example::

        hookline config show
        hookline config show hooks.config.yaml --format yaml --env test
    """
    from hookline.config import dump_config
    from hookline.exceptions import ConfigurationError

    if fmt not in ("json", "yaml"):
        error(f"Unsupported format: {fmt} (expected json or yaml)")
        raise typer.Exit(code=2)

    try:
        config, source = resolve_config(path, env)
    except ConfigurationError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    info(f"Source: {source or '(built-in defaults)'}")
    print_text(dump_config(config, fmt), lexer=fmt)


@config_app.command("validate")
def config_validate(
    path: Optional[Path] = typer.Argument(
        None, help="Configuration file (default: search the project directory)."
    ),
    env: Optional[str] = typer.Option(
        None, "--env", "-e", help="Environment block to apply."
    ),
    json_output: bool = typer.Option(
        False, "--json", help="Print the validation report as JSON."
    ),
) -> None:
    """Validate a configuration file.

    Exits with code 3 when the file is missing, malformed or invalid.

    Example::

        hookline config validate
        hookline config validate ./hooks.config.json --env production
    """
    from hookline.exceptions import ConfigurationError

    try:
        config, source = resolve_config(path, env, required=True)
    except ConfigurationError as exc:
        if json_output:
            print_json({"valid": False, "error": str(exc)})
        else:
            error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    if json_output:
        print_json(
            {
                "valid": True,
                "source": str(source),
                "plugins": [entry.name for entry in config.plugins],
            }
        )
        return

    success(f"Configuration is valid: {source}")
    info(f"{len(config.plugins)} plugin entr{'y' if len(config.plugins) == 1 else 'ies'} configured")
