"""Canonical Pydantic models shared across all hookline modules.

This is the single source of truth for data shapes in the project. The
models fall into three groups:

**Host protocol models** -- what the tool-execution host sends us:
    :class:`HookEvent`, :class:`HookInput`, the per-tool input models
    (:class:`BashInput`, :class:`WriteInput`, ...) with the
    :class:`UnknownToolInput` fallback arm, :class:`HookEnvironment` and the
    immutable :class:`ExecutionContext` built from them.

**Execution models** -- what hooks hand back and what the registry tracks:
    :class:`HookResult` and :class:`ExecutionStats`.

**Configuration models** -- the declarative ``hooks.config.*`` file:
    :class:`PluginCondition`, :class:`PluginConfig`, :class:`Settings`,
    :class:`LoaderSettings`, :class:`EnvironmentOverride` and
    :class:`HookConfig`.

Configuration models accept both the camelCase keys of the file format
(``defaultTimeout``) and snake_case attribute names, and dump back to
camelCase with ``model_dump(by_alias=True)``.
"""

from __future__ import annotations

import enum
from typing import Any, Callable, Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    model_validator,
)
from pydantic.alias_generators import to_camel


# --- Events and tools ---


class HookEvent(str, enum.Enum):
    """Lifecycle events emitted by the tool-execution host."""

    PRE_TOOL_USE = "PreToolUse"
    POST_TOOL_USE = "PostToolUse"
    USER_PROMPT_SUBMIT = "UserPromptSubmit"
    SESSION_START = "SessionStart"
    STOP = "Stop"
    SUBAGENT_STOP = "SubagentStop"


TOOL_EVENTS = frozenset({HookEvent.PRE_TOOL_USE, HookEvent.POST_TOOL_USE})
"""Events that carry a tool name and tool input."""

KNOWN_TOOLS = (
    "Bash",
    "Write",
    "Edit",
    "MultiEdit",
    "Read",
    "Glob",
    "Grep",
    "LS",
    "TodoWrite",
    "WebFetch",
    "WebSearch",
    "NotebookEdit",
)
"""Tool names with a typed input model. Any other name is still accepted."""


# --- Tool inputs (tagged by tool name) ---


class ToolInput(BaseModel):
    """Base class for every tool-input arm; extra keys are preserved."""

    model_config = ConfigDict(extra="allow", frozen=True)


class BashInput(ToolInput):
    command: str
    description: Optional[str] = None
    timeout: Optional[int] = None


class WriteInput(ToolInput):
    file_path: str
    content: str


class EditInput(ToolInput):
    file_path: str
    old_string: str
    new_string: str
    replace_all: bool = False


class EditOperation(BaseModel):
    """One replacement inside a :class:`MultiEditInput`."""

    model_config = ConfigDict(frozen=True)

    old_string: str
    new_string: str
    replace_all: bool = False


class MultiEditInput(ToolInput):
    file_path: str
    edits: list[EditOperation]


class ReadInput(ToolInput):
    file_path: str
    offset: Optional[int] = None
    limit: Optional[int] = None


class GlobInput(ToolInput):
    pattern: str
    path: Optional[str] = None


class GrepInput(ToolInput):
    pattern: str
    path: Optional[str] = None
    glob: Optional[str] = None
    output_mode: Optional[Literal["content", "files_with_matches", "count"]] = None
    head_limit: Optional[int] = None
    multiline: Optional[bool] = None


class LSInput(ToolInput):
    path: str
    ignore: list[str] = Field(default_factory=list)


class TodoItem(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    id: str
    content: str
    status: Literal["pending", "in_progress", "completed"]


class TodoWriteInput(ToolInput):
    todos: list[TodoItem]


class WebFetchInput(ToolInput):
    url: str
    prompt: str


class WebSearchInput(ToolInput):
    query: str
    allowed_domains: list[str] = Field(default_factory=list)
    blocked_domains: list[str] = Field(default_factory=list)


class NotebookEditInput(ToolInput):
    notebook_path: str
    new_source: str
    cell_id: Optional[str] = None
    cell_type: Optional[Literal["code", "markdown"]] = None
    edit_mode: Optional[Literal["replace", "insert", "delete"]] = None


class UnknownToolInput(ToolInput):
    """Opaque fallback arm for tools without a typed model.

    Also used when a known tool's payload does not match its model, so that
    a schema drift on the host side never prevents hooks from running.
    """

    tool_name: str
    payload: dict[str, Any] = Field(default_factory=dict)


TOOL_INPUT_MODELS: dict[str, type[ToolInput]] = {
    "Bash": BashInput,
    "Write": WriteInput,
    "Edit": EditInput,
    "MultiEdit": MultiEditInput,
    "Read": ReadInput,
    "Glob": GlobInput,
    "Grep": GrepInput,
    "LS": LSInput,
    "TodoWrite": TodoWriteInput,
    "WebFetch": WebFetchInput,
    "WebSearch": WebSearchInput,
    "NotebookEdit": NotebookEditInput,
}


def parse_tool_input(tool_name: str, payload: Optional[dict[str, Any]]) -> ToolInput:
    """Resolve *payload* into the typed arm for *tool_name*.

    Args:
        tool_name: The tool the host is about to run (or just ran).
        payload: The raw ``tool_input`` object from the host event.

    Returns:
        An instance of the matching :class:`ToolInput` subclass, or an
        :class:`UnknownToolInput` when the tool is unrecognised or the
        payload does not fit the known model.
    """
    payload = dict(payload or {})
    model = TOOL_INPUT_MODELS.get(tool_name)
    if model is not None:
        try:
            return model.model_validate(payload)
        except PydanticValidationError:
            pass
    return UnknownToolInput(tool_name=tool_name, payload=payload)


# --- Host input and execution context ---


class HookEnvironment(BaseModel):
    """Snapshot of the environment variables the host provides to hooks."""

    model_config = ConfigDict(frozen=True)

    project_dir: Optional[str] = Field(
        default=None, description="Value of CLAUDE_PROJECT_DIR, normalised"
    )


class HookInput(BaseModel):
    """One raw event object as read from the host's stdin.

    Only ``session_id``, ``cwd`` and ``hook_event_name`` are mandatory; the
    remaining fields depend on the event. Unknown keys are preserved.
    """

    model_config = ConfigDict(extra="allow")

    session_id: str = Field(min_length=1)
    transcript_path: str = ""
    cwd: str = Field(min_length=1)
    hook_event_name: str = Field(min_length=1)
    matcher: Optional[str] = None
    tool_name: Optional[str] = None
    tool_input: Optional[dict[str, Any]] = None
    tool_response: Any = None
    prompt: Optional[str] = None
    message: Optional[str] = None


class ExecutionContext(BaseModel):
    """Immutable snapshot of one event occurrence, shared by every hook.

    Built once per host event by :func:`hookline.context.create_context`
    and passed by reference through the whole chain. ``tool_name`` and
    ``tool_input`` are present exactly when :attr:`event` is a tool event;
    ``tool_response`` only ever appears on ``PostToolUse``.
    """

    model_config = ConfigDict(frozen=True)

    event: HookEvent
    session_id: str
    transcript_path: str = ""
    cwd: str
    matcher: Optional[str] = None
    tool_name: Optional[str] = None
    tool_input: Optional[ToolInput] = None
    tool_response: Any = None
    user_prompt: Optional[str] = None
    message: Optional[str] = None
    environment: HookEnvironment = Field(default_factory=HookEnvironment)
    raw_input: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _coerce_tool_input(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("tool_input"), dict):
            data = dict(data)
            data["tool_input"] = parse_tool_input(
                data.get("tool_name") or "", data["tool_input"]
            )
        return data

    @model_validator(mode="after")
    def _check_tool_fields(self) -> "ExecutionContext":
        if self.event in TOOL_EVENTS:
            if not self.tool_name:
                raise ValueError(f"{self.event.value} context requires a tool_name")
            if self.tool_input is None:
                object.__setattr__(
                    self, "tool_input", UnknownToolInput(tool_name=self.tool_name)
                )
        elif self.tool_name is not None or self.tool_input is not None:
            raise ValueError(f"{self.event.value} context cannot carry tool fields")
        if self.tool_response is not None and self.event != HookEvent.POST_TOOL_USE:
            raise ValueError("tool_response is only valid for PostToolUse")
        return self

    @property
    def is_tool_event(self) -> bool:
        return self.event in TOOL_EVENTS


# --- Execution results ---


class HookResult(BaseModel):
    """Normalised outcome of one hook invocation.

    ``block`` is only meaningful for ``PreToolUse``: a result with
    ``success=False`` and ``block=True`` vetoes the tool call and stops the
    rest of the chain. ``metadata`` always receives ``duration`` (ms),
    ``timestamp`` and ``version`` from the execution wrapper.
    """

    model_config = ConfigDict(extra="allow")

    success: bool
    message: Optional[str] = None
    block: bool = False
    data: Any = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def is_blocking(self, event: HookEvent) -> bool:
        """Return ``True`` if this result vetoes a tool call under *event*."""
        return event == HookEvent.PRE_TOOL_USE and not self.success and self.block


class ExecutionStats(BaseModel):
    """Aggregate execution counters for one registry key.

    Counters only ever grow within a process; ``average_duration`` is a
    running mean updated incrementally after every execution.
    """

    key: str
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    blocked_executions: int = 0
    average_duration: float = Field(default=0.0, description="Milliseconds")
    last_execution: Optional[str] = None


class RegistryStats(BaseModel):
    """Summary returned by :meth:`hookline.plugins.PluginRegistry.get_stats`."""

    total_plugins: int = 0
    enabled_plugins: int = 0
    disabled_plugins: int = 0
    total_executions: int = 0
    success_rate: float = 1.0
    hooks: list[ExecutionStats] = Field(default_factory=list)


# --- Configuration ---


class _ConfigModel(BaseModel):
    """Base for config-file models: camelCase on disk, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


ConditionType = Literal["env", "context", "tool", "custom"]
ConditionOperator = Literal[
    "equals", "not_equals", "contains", "not_contains", "matches", "custom"
]
LogLevel = Literal["debug", "info", "warn", "warning", "error", "silent"]


class PluginCondition(_ConfigModel):
    """Declarative precondition that must hold for a plugin to run.

    Example::

        PluginCondition(type="env", field="CI", operator="equals", value="true")
    """

    type: ConditionType
    field: Optional[str] = None
    operator: ConditionOperator = "equals"
    value: Any = None
    condition: Optional[Callable[..., Any]] = Field(
        default=None, description="Predicate for custom conditions (Python config only)"
    )

    @model_validator(mode="after")
    def _check_field(self) -> "PluginCondition":
        if self.type in ("env", "context") and not self.field:
            raise ValueError(f"'{self.type}' conditions require a field")
        return self


class PluginConfig(_ConfigModel):
    """Per-plugin registration settings; mutable after registration."""

    name: str
    enabled: bool = True
    priority: int = 0
    events: Optional[list[HookEvent]] = None
    tools: Optional[list[str]] = None
    config: Optional[dict[str, Any]] = None
    conditions: list[PluginCondition] = Field(default_factory=list)


class Settings(_ConfigModel):
    """Engine-wide settings (the ``settings`` block)."""

    default_timeout: float = Field(
        default=5.0, ge=0.1, le=300.0, description="Per-plugin timeout in seconds"
    )
    continue_on_failure: bool = False
    collect_metrics: bool = True
    enable_hot_reload: bool = False
    log_level: LogLevel = "info"
    max_concurrency: int = Field(default=10, ge=1, le=100)


class SettingsOverride(_ConfigModel):
    """Partial :class:`Settings` used inside an ``environments`` block."""

    default_timeout: Optional[float] = None
    continue_on_failure: Optional[bool] = None
    collect_metrics: Optional[bool] = None
    enable_hot_reload: Optional[bool] = None
    log_level: Optional[LogLevel] = None
    max_concurrency: Optional[int] = None


class LoaderSettings(_ConfigModel):
    """Plugin discovery settings (the ``loader`` block).

    Include and exclude patterns use gitignore syntax and are matched
    against paths relative to each search path.
    """

    search_paths: list[str] = Field(default_factory=lambda: ["./plugins"])
    include_patterns: list[str] = Field(
        default_factory=lambda: ["*_plugin.py", "*_hook.py"]
    )
    exclude_patterns: list[str] = Field(
        default_factory=lambda: ["test_*.py", "*_test.py", "__pycache__/"]
    )
    recursive: bool = True
    max_depth: int = Field(default=5, ge=1, le=10)
    enable_cache: bool = True
    validate_on_load: bool = True
    hot_reload_debounce: float = Field(default=0.3, ge=0.0, description="Seconds")


class EnvironmentOverride(_ConfigModel):
    """Partial configuration applied when its environment is active."""

    plugins: Optional[list[PluginConfig]] = None
    rules: Optional[dict[str, dict[str, Any]]] = None
    settings: Optional[SettingsOverride] = None


class HookConfig(_ConfigModel):
    """Complete declarative configuration, as produced by ``ConfigLoader.load``."""

    plugins: list[PluginConfig] = Field(default_factory=list)
    rules: dict[str, dict[str, Any]] = Field(default_factory=dict)
    settings: Settings = Field(default_factory=Settings)
    loader: LoaderSettings = Field(default_factory=LoaderSettings)
    environments: dict[str, EnvironmentOverride] = Field(default_factory=dict)

    def plugin_config(self, name: str) -> Optional[PluginConfig]:
        """Return the :class:`PluginConfig` entry for *name*, if any."""
        for entry in self.plugins:
            if entry.name == name:
                return entry
        return None
