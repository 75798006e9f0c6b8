"""Shared test fixtures for hookline.

Provides factories for host events and execution contexts, an isolated
working directory with the hookline environment variables cleared, helpers
for writing plugin files, and output/CLI fixtures. These fixtures are
automatically discovered by pytest and available to all test modules
without explicit imports.
"""

from __future__ import annotations

import logging
import textwrap
from pathlib import Path
from typing import Any, Callable, Optional

import pytest

from hookline.context import create_context
from hookline.models import ExecutionContext, HookEnvironment, HookEvent
from hookline.output import OutputFormat, OutputManager, reset_output, set_output
from hookline.registry import HookRegistry, create_registry


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale
    ("I/O operation on closed file"). Resetting forces a fresh manager
    to be created on next use.
    """
    yield
    reset_output()


@pytest.fixture(autouse=True)
def _reset_logging_between_tests() -> None:
    """Undo ``configure_logging`` so ``caplog`` sees hookline records again."""
    yield
    logger = logging.getLogger("hookline")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


# ---------------------------------------------------------------------------
# Environment isolation
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run the test inside ``tmp_path`` with hookline env vars cleared.

    ``CLAUDE_PROJECT_DIR`` points at ``tmp_path`` so that commands resolve
    configuration and plugins there.
    """
    monkeypatch.delenv("HOOKLINE_ENV", raising=False)
    monkeypatch.setenv("CLAUDE_PROJECT_DIR", str(tmp_path))
    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Host events and contexts
# ---------------------------------------------------------------------------


@pytest.fixture
def make_input() -> Callable[..., dict[str, Any]]:
    """Factory for raw host event objects.

    Example::

        make_input("PreToolUse", tool_name="Bash", tool_input={"command": "ls"})
    """

    def _make(event: str = "PreToolUse", **fields: Any) -> dict[str, Any]:
        data: dict[str, Any] = {
            "session_id": "session-123",
            "transcript_path": "/tmp/transcript.jsonl",
            "cwd": "/work/project",
            "hook_event_name": event,
        }
        if event in ("PreToolUse", "PostToolUse"):
            data.setdefault("tool_name", "Bash")
            data.setdefault("tool_input", {"command": "ls -la"})
        data.update(fields)
        return data

    return _make


@pytest.fixture
def make_context(make_input: Callable[..., dict[str, Any]]) -> Callable[..., ExecutionContext]:
    """Factory for :class:`ExecutionContext` objects built through ``create_context``."""

    def _make(
        event: HookEvent = HookEvent.PRE_TOOL_USE,
        tool: Optional[str] = "Bash",
        **fields: Any,
    ) -> ExecutionContext:
        event = HookEvent(event)
        if event in (HookEvent.PRE_TOOL_USE, HookEvent.POST_TOOL_USE):
            fields.setdefault("tool_name", tool)
        return create_context(
            make_input(event.value, **fields),
            environment=HookEnvironment(project_dir="/work/project"),
        )

    return _make


@pytest.fixture
def registry() -> HookRegistry:
    return create_registry()


# ---------------------------------------------------------------------------
# Plugin files
# ---------------------------------------------------------------------------


PLUGIN_TEMPLATE = '''
from hookline.models import HookEvent, HookResult
from hookline.plugins import HookPlugin


class GeneratedPlugin(HookPlugin):
    name = {name!r}
    version = {version!r}
    events = [HookEvent.PRE_TOOL_USE]
    tools = {tools!r}
    priority = {priority!r}

    def apply(self, context, config):
        return HookResult(success=True, message={message!r})


plugin = GeneratedPlugin()
'''


@pytest.fixture
def write_plugin() -> Callable[..., Path]:
    """Write a minimal plugin file and return its path.

    Pass ``source`` to write arbitrary module text instead of the template.
    """

    def _write(
        directory: Path,
        filename: str,
        name: str = "sample",
        *,
        version: str = "1.0.0",
        tools: Optional[list[str]] = None,
        priority: int = 0,
        message: str = "ok",
        source: Optional[str] = None,
    ) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / filename
        if source is None:
            source = PLUGIN_TEMPLATE.format(
                name=name, version=version, tools=tools, priority=priority, message=message
            )
        path.write_text(textwrap.dedent(source).lstrip(), encoding="utf-8")
        return path

    return _write


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a PLAIN-format, quiet OutputManager for the test."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
