"""Execution-context factory and session-id constructor.

Every host event is turned into exactly one immutable
:class:`~hookline.models.ExecutionContext` by :func:`create_context`. The
context is then shared, by reference, by every hook in the chain.

The factory picks the right shape for the event:

* ``PreToolUse`` / ``PostToolUse`` -- ``tool_name`` and a typed
  ``tool_input`` (``tool_response`` on ``PostToolUse`` only).
* ``UserPromptSubmit`` -- ``user_prompt``.
* ``SessionStart`` / ``Stop`` / ``SubagentStop`` -- ``message``.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from hookline.exceptions import InputError, ValidationError
from hookline.models import (
    ExecutionContext,
    HookEnvironment,
    HookEvent,
    HookInput,
    TOOL_EVENTS,
    parse_tool_input,
)

logger = logging.getLogger(__name__)

PROJECT_DIR_VAR = "CLAUDE_PROJECT_DIR"

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
SESSION_ID_MIN_LENGTH = 3
SESSION_ID_MAX_LENGTH = 100


def create_session_id(value: Any) -> str:
    """Validate and return a session identifier.

    A session id is 3 to 100 characters of ``[A-Za-z0-9_-]``.

    Args:
        value: Candidate session id.

    Returns:
        The same string, once validated.

    Raises:
        ValidationError: If *value* is not a valid session id.
    """
    if not value or not isinstance(value, str):
        raise ValidationError("Session id must be a non-empty string", field="session_id")
    if len(value) < SESSION_ID_MIN_LENGTH:
        raise ValidationError(
            f"Session id must be at least {SESSION_ID_MIN_LENGTH} characters",
            field="session_id",
        )
    if len(value) > SESSION_ID_MAX_LENGTH:
        raise ValidationError(
            f"Session id must be at most {SESSION_ID_MAX_LENGTH} characters",
            field="session_id",
        )
    if not _SESSION_ID_RE.fullmatch(value):
        raise ValidationError(
            "Session id may only contain letters, digits, dashes and underscores",
            field="session_id",
        )
    return value


def is_session_id(value: Any) -> bool:
    """Return ``True`` if *value* would be accepted by :func:`create_session_id`."""
    try:
        create_session_id(value)
    except ValidationError:
        return False
    return True


def read_environment(environ: Optional[Mapping[str, str]] = None) -> HookEnvironment:
    """Snapshot the host-provided environment variables.

    Args:
        environ: Mapping to read from. Defaults to :data:`os.environ`.
    """
    environ = os.environ if environ is None else environ
    project_dir = environ.get(PROJECT_DIR_VAR) or None
    if project_dir:
        project_dir = os.path.normpath(project_dir)
    return HookEnvironment(project_dir=project_dir)


def create_context(
    hook_input: Union[HookInput, Mapping[str, Any]],
    *,
    environment: Optional[HookEnvironment] = None,
    **overrides: Any,
) -> ExecutionContext:
    """Build the :class:`ExecutionContext` for one host event.

    Args:
        hook_input: The validated :class:`HookInput`, or the raw decoded
            JSON object from the host.
        environment: Environment snapshot. Read from the process
            environment when omitted.
        **overrides: Context fields that replace the derived values. Mostly
            useful in tests.

    Returns:
        A frozen execution context.

    Raises:
        InputError: If the input is incomplete, names an unknown event, or
            carries an invalid session id.
    """
    if not isinstance(hook_input, HookInput):
        try:
            hook_input = HookInput.model_validate(dict(hook_input))
        except PydanticValidationError as exc:
            raise InputError(
                "Invalid hook input: missing required fields "
                "(session_id, hook_event_name, cwd)",
                raw_input=str(hook_input)[:500],
            ) from exc

    try:
        event = HookEvent(hook_input.hook_event_name)
    except ValueError:
        raise InputError(
            f"Unknown hook event: {hook_input.hook_event_name}"
        ) from None

    try:
        session_id = create_session_id(hook_input.session_id)
    except ValidationError as exc:
        raise InputError(f"Invalid session id: {exc}") from exc

    data: dict[str, Any] = {
        "event": event,
        "session_id": session_id,
        "transcript_path": hook_input.transcript_path,
        "cwd": hook_input.cwd,
        "matcher": hook_input.matcher,
        "environment": environment if environment is not None else read_environment(),
        "raw_input": hook_input.model_dump(exclude_none=True),
    }

    if event in TOOL_EVENTS:
        if not hook_input.tool_name:
            raise InputError(f"{event.value} event is missing tool_name")
        data["tool_name"] = hook_input.tool_name
        data["tool_input"] = parse_tool_input(hook_input.tool_name, hook_input.tool_input)
        if event == HookEvent.POST_TOOL_USE:
            data["tool_response"] = hook_input.tool_response
    elif event == HookEvent.USER_PROMPT_SUBMIT:
        data["user_prompt"] = hook_input.prompt
    else:
        data["message"] = hook_input.message

    data.update(overrides)
    try:
        context = ExecutionContext(**data)
    except PydanticValidationError as exc:
        raise InputError(f"Invalid execution context: {exc}") from exc

    logger.debug(
        "Created %s context for session %s (tool=%s)",
        event.value,
        session_id,
        context.tool_name,
    )
    return context
