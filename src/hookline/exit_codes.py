"""Numeric process exit codes understood by the tool-execution host.

The first three values are the host protocol itself: the host reads the exit
status of a hook process to decide whether the tool call proceeds. The
remaining codes are only used by the administrative CLI commands
(``hookline config``, ``hookline plugins``) and never by ``hookline run``,
which always maps errors onto a protocol verdict instead.

Example::

    $ echo '{"session_id": "abc", ...}' | hookline run
    $ echo $?
    2   # EXIT_BLOCKING -- a PreToolUse hook vetoed the operation
"""

EXIT_SUCCESS = 0
"""All applicable hooks succeeded; the operation proceeds."""

EXIT_NON_BLOCKING = 1
"""A hook failed but did not veto the operation."""

EXIT_BLOCKING = 2
"""A hook vetoed the operation (or input could not be trusted)."""

EXIT_CONFIG_ERROR = 3
"""The configuration file is missing, malformed, or fails validation."""

EXIT_PLUGIN_ERROR = 10
"""A plugin failed to register, initialise, or pass its health check."""
