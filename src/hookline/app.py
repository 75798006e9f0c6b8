"""Typer application and CLI entry point for hookline.

This module wires together the top-level Typer application and registers the
built-in sub-commands:

* ``run`` -- read one host event from stdin and report the verdict.
* ``config`` -- show or validate the hook configuration.
* ``plugins`` -- list discovered plugins and run their health checks.
* ``init`` -- write a starter configuration file.

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. Unhandled :class:`~hookline.exceptions.HooklineError`
instances end the process with the error's ``exit_code``; ``run`` never lets
one escape and reports it to the host as a blocking verdict instead.

See Also:
    :mod:`hookline.protocol`: The host-facing adapter behind ``run``.
    :mod:`hookline.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import signal
import sys
from typing import Any

import typer

from hookline import __version__
from hookline.exit_codes import EXIT_NON_BLOCKING


app = typer.Typer(
    name="hookline",
    help="Run tool-execution hooks and plugins for an agent host.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"hookline {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output and logging."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Initialises the global :class:`~hookline.output.OutputManager` from the
    CLI flags and stores ``verbose`` in the Typer context so that
    sub-commands can read it via ``ctx.obj``.
    """
    from hookline.output import OutputManager, set_output

    set_output(OutputManager(no_color=no_color, quiet=quiet, verbose=verbose))

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


# ------------------------------------------------------------------ #
# Sub-commands
# ------------------------------------------------------------------ #

from hookline.commands.config import config_app  # noqa: E402
from hookline.commands.init import init_command  # noqa: E402
from hookline.commands.plugins import plugins_app  # noqa: E402
from hookline.commands.run import run_command  # noqa: E402

app.command("run")(run_command)
app.command("init")(init_command)
app.add_typer(config_app, name="config", help="Inspect and validate the hook configuration.")
app.add_typer(plugins_app, name="plugins", help="List and check plugins.")


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def main() -> None:
    """CLI entry point invoked by the ``hookline`` console script.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from hookline.exceptions import HooklineError
        from hookline.output import error

        if isinstance(exc, HooklineError):
            error(str(exc))
            sys.exit(exc.exit_code)
        error(f"Unexpected error: {exc}")
        sys.exit(EXIT_NON_BLOCKING)
