"""Exception hierarchy for hookline.

All raised exceptions inherit from :class:`HooklineError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`hookline.exit_codes`.
Administrative CLI commands exit with that code; ``hookline run`` instead
converts every error into a blocking verdict for the host.

Subclass hierarchy::

    HooklineError (exit 1)
    +-- InputError          (exit 2)
    +-- ValidationError     (exit 2)
    +-- ExecutionError      (exit 1)
    |   +-- TimeoutError_   (exit 1)
    +-- ConfigurationError  (exit 3)
    +-- PluginError         (exit 10)

:class:`DiscoveryError` is deliberately *not* an exception: a plugin file
that fails to load is recorded and reported, never raised.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from hookline.exit_codes import (
    EXIT_BLOCKING,
    EXIT_CONFIG_ERROR,
    EXIT_NON_BLOCKING,
    EXIT_PLUGIN_ERROR,
)


class HooklineError(Exception):
    """Base exception for all hookline errors.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_NON_BLOCKING

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InputError(HooklineError):
    """Raised when the host's JSON event is missing, malformed, or incomplete.

    Attributes:
        raw_input: The offending input (possibly truncated or redacted).
    """

    exit_code = EXIT_BLOCKING

    def __init__(self, message: str, raw_input: Optional[str] = None):
        super().__init__(message)
        self.raw_input = raw_input


class ValidationError(HooklineError):
    """Raised for context, hook-entry, or plugin shape violations.

    Not to be confused with :class:`pydantic.ValidationError`; modules that
    need both import the pydantic one under an alias.
    """

    exit_code = EXIT_BLOCKING

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class ExecutionError(HooklineError):
    """Raised (only in ``throw_on_error`` mode) when a hook handler fails.

    Attributes:
        original: The exception raised by the handler, if any.
    """

    def __init__(self, message: str, original: Optional[BaseException] = None):
        super().__init__(message)
        self.original = original


class TimeoutError_(ExecutionError):
    """Raised when a handler exceeds its time budget.

    Named with a trailing underscore to avoid shadowing the built-in
    ``TimeoutError``.
    """

    def __init__(self, timeout: float):
        super().__init__(f"Hook execution timed out after {timeout:g}s")
        self.timeout = timeout


class ConfigurationError(HooklineError):
    """Raised when a configuration file cannot be found, parsed, or validated."""

    exit_code = EXIT_CONFIG_ERROR


class PluginError(HooklineError):
    """Raised when a plugin cannot be registered (duplicate, bad config, unknown name)."""

    exit_code = EXIT_PLUGIN_ERROR


@dataclass
class DiscoveryError:
    """One plugin file that failed to load during discovery.

    Collected into :attr:`~hookline.plugins.loader.PluginLoadResult.errors` so that a
    single broken file never blocks startup of the others.
    """

    path: Path
    error: BaseException

    @property
    def message(self) -> str:
        return str(self.error)

    def to_dict(self) -> dict[str, Any]:
        return {"path": str(self.path), "error": self.message}
