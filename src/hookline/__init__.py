"""hookline -- Priority-ordered hook and plugin engine for tool-execution hosts.

A tool-execution host (an AI coding agent, for instance) emits one JSON event
on stdin before and after every tool it runs. hookline decides which
registered hooks and plugins apply, runs them in a deterministic priority
order under per-hook timeouts, and reports a single verdict back to the host
as an exit code or a JSON line. A ``PreToolUse`` hook can veto the tool call.

Typical workflow::

    hookline init                     # write a starter hooks.config.json
    hookline plugins list             # show discovered plugins
    echo '{...}' | hookline run       # evaluate one host event

Modules:
    app: Typer application factory and CLI entry point.
    models: Pydantic models shared across the entire package.
    context: Execution-context factory and session-id constructor.
    execution: Timeout-bounded hook execution wrapper.
    builder: Fluent hook builder and middleware.
    registry: The keyed hook registry and dispatch engine.
    plugins: Plugin contract, by-name registry, discovery, hot reload.
    config: Configuration file loader with environment overrides.
    protocol: Host stdin/stdout protocol adapter.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes understood by the host.
    output: stdout/stderr formatting and logging setup.
"""

__version__ = "0.1.0"
