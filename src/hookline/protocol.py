"""Host protocol adapter: one JSON event in, one verdict out.

The host starts a hook process per tool operation, writes a single JSON
object to its stdin and reads the verdict back in one of two forms:

* **exit-code mode** (default) -- the process status is the verdict:
  ``0`` success, ``1`` non-blocking failure, ``2`` blocking failure. A
  success message goes to stdout, a failure message to stderr.
* **json mode** -- one line ``{"action": "continue"|"block", "message"?,
  "data"?}`` on stdout; the exit status is always ``0``.

:func:`run_hook` ties the two ends together around a registry. Anything that
goes wrong before a verdict exists (unreadable input, unknown event, a
registry crash) is reported as a *blocking* failure, so the host never
proceeds on input it could not check.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from typing import IO, Any, Literal, Optional, Protocol, Union

from pydantic import ValidationError as PydanticValidationError

from hookline.context import create_context
from hookline.exceptions import InputError
from hookline.exit_codes import EXIT_BLOCKING, EXIT_NON_BLOCKING, EXIT_SUCCESS
from hookline.models import ExecutionContext, HookEnvironment, HookEvent, HookInput, HookResult

logger = logging.getLogger(__name__)

MAX_INPUT_BYTES = 1024 * 1024

OutputMode = Literal["exit-code", "json"]

# Raw control characters are never valid JSON outside string escapes;
# tab, newline and carriage return are allowed as whitespace.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


class SupportsCombine(Protocol):
    """Anything that can turn a context into one combined verdict."""

    async def execute_and_combine(self, context: ExecutionContext) -> HookResult: ...


# ------------------------------------------------------------------ #
# Input
# ------------------------------------------------------------------ #


def read_input(stream: Optional[IO[Any]] = None) -> bytes:
    """Read at most ``MAX_INPUT_BYTES + 1`` bytes from *stream* (default stdin).

    One extra byte is read so that :func:`parse_input` can tell an input of
    exactly the limit from one that exceeds it.
    """
    stream = stream if stream is not None else sys.stdin
    source = getattr(stream, "buffer", stream)
    raw = source.read(MAX_INPUT_BYTES + 1)
    if isinstance(raw, str):
        raw = raw.encode("utf-8")
    return raw or b""


def parse_input(raw: Union[str, bytes]) -> HookInput:
    """Validate and decode one host event.

    Args:
        raw: The bytes (or text) read from stdin.

    Returns:
        The decoded :class:`HookInput`.

    Raises:
        InputError: If the input is too large, empty, contains raw control
            characters, is not a JSON object, lacks ``session_id``,
            ``hook_event_name`` or ``cwd``, or names an unknown event.
    """
    if isinstance(raw, str):
        raw = raw.encode("utf-8")

    if len(raw) > MAX_INPUT_BYTES:
        raise InputError(
            f"Input exceeds maximum size limit ({MAX_INPUT_BYTES} bytes)",
            raw_input="[INPUT TOO LARGE]",
        )

    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise InputError(f"Input is not valid UTF-8: {exc}") from exc

    if not text.strip():
        raise InputError("No input received from stdin", raw_input=text)

    if _CONTROL_CHARS.search(text):
        raise InputError("Input contains invalid control characters", raw_input="[SANITIZED]")

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise InputError(f"Invalid JSON input: {exc}", raw_input=text[:500]) from exc

    if not isinstance(data, dict):
        raise InputError("Hook input must be a JSON object", raw_input=text[:500])

    try:
        hook_input = HookInput.model_validate(data)
    except PydanticValidationError as exc:
        raise InputError(
            "Invalid input: missing required fields (session_id, hook_event_name, cwd)",
            raw_input=text[:500],
        ) from exc

    try:
        HookEvent(hook_input.hook_event_name)
    except ValueError:
        raise InputError(f"Unknown hook event: {hook_input.hook_event_name}") from None

    return hook_input


# ------------------------------------------------------------------ #
# Output
# ------------------------------------------------------------------ #


def _is_blocking(result: HookResult, event: Optional[HookEvent]) -> bool:
    # Without an event (the input never parsed) a block flag is always honoured.
    if event is None:
        return not result.success and result.block
    return result.is_blocking(event)


def to_verdict(result: HookResult, event: Optional[HookEvent] = None) -> dict[str, Any]:
    """Build the JSON-mode verdict object for *result*."""
    verdict: dict[str, Any] = {
        "action": "block" if _is_blocking(result, event) else "continue",
    }
    if result.message is not None:
        verdict["message"] = result.message
    if result.data is not None:
        verdict["data"] = result.data
    return verdict


def output_result(
    result: HookResult,
    event: Optional[HookEvent] = None,
    *,
    mode: OutputMode = "exit-code",
    stdout: Optional[IO[str]] = None,
    stderr: Optional[IO[str]] = None,
) -> int:
    """Write *result* for the host and return the process exit code.

    Args:
        result: The combined verdict.
        event: The event the verdict belongs to. ``block`` only vetoes
            ``PreToolUse``; when *event* is ``None`` the flag is taken as is.
        mode: ``"exit-code"`` or ``"json"``.
        stdout: Stream for data (defaults to ``sys.stdout``).
        stderr: Stream for failure messages (defaults to ``sys.stderr``).

    Returns:
        The exit code the process should terminate with.
    """
    out = stdout if stdout is not None else sys.stdout
    err = stderr if stderr is not None else sys.stderr

    if mode == "json":
        print(json.dumps(to_verdict(result, event), default=str), file=out, flush=True)
        return EXIT_SUCCESS

    if result.success:
        if result.message:
            print(result.message, file=out, flush=True)
        return EXIT_SUCCESS

    if result.message:
        print(result.message, file=err, flush=True)
    return EXIT_BLOCKING if _is_blocking(result, event) else EXIT_NON_BLOCKING


# ------------------------------------------------------------------ #
# Adapter
# ------------------------------------------------------------------ #


async def run_hook(
    registry: SupportsCombine,
    *,
    output_mode: OutputMode = "exit-code",
    stdin: Optional[IO[Any]] = None,
    stdout: Optional[IO[str]] = None,
    stderr: Optional[IO[str]] = None,
    environment: Optional[HookEnvironment] = None,
) -> int:
    """Read one event, run the registry over it and report the verdict.

    Never raises for errors inside the run: they become a blocking failure.

    Returns:
        The exit code for the host.
    """
    event: Optional[HookEvent] = None
    try:
        hook_input = parse_input(read_input(stdin))
        context = create_context(hook_input, environment=environment)
        event = context.event
        result = await registry.execute_and_combine(context)
    except Exception as exc:
        logger.error("Hook run failed: %s", exc)
        logger.debug("Hook run failure details", exc_info=True)
        event = None
        result = HookResult(
            success=False,
            message=str(exc) or "Unknown error during hook execution",
            block=True,
        )
    return output_result(result, event, mode=output_mode, stdout=stdout, stderr=stderr)
