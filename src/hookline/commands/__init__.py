"""Built-in CLI sub-commands for hookline.

This package groups the Typer sub-command modules that form the CLI's
top-level command tree:

* :mod:`~hookline.commands.run` -- handle one host event (the hook entry
  point the host invokes).
* :mod:`~hookline.commands.config` -- show and validate the configuration.
* :mod:`~hookline.commands.plugins` -- list plugins and run health checks.
* :mod:`~hookline.commands.init` -- write a starter configuration file.

Each module either exports a :class:`typer.Typer` sub-application (for
multi-command groups like ``config`` and ``plugins``) or a plain callback
function registered directly on the root app (for single commands like
``run`` and ``init``).
"""
