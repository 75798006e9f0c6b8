"""Example plugin that vetoes destructive git commands run through Bash."""

from __future__ import annotations

import re
import shlex
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from hookline.models import BashInput, ExecutionContext, HookEvent, HookResult
from hookline.plugins import HookPlugin

_FORCE_FLAGS = {"--force", "-f", "--force-with-lease"}


class GitSafetyOptions(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    protected_branches: list[str] = Field(default_factory=lambda: ["main", "master"])
    block_force_push: bool = True
    block_hard_reset: bool = False


class GitSafetyPlugin(HookPlugin):
    """Blocks force pushes and deletion of protected branches."""

    name = "git-safety"
    version = "1.0.0"
    description = "Blocks force pushes and protected-branch deletion"
    events = [HookEvent.PRE_TOOL_USE]
    tools = ["Bash"]
    priority = 100
    config_schema = GitSafetyOptions

    def apply(self, context: ExecutionContext, config: dict[str, Any]) -> HookResult:
        if not isinstance(context.tool_input, BashInput):
            return HookResult(success=True)
        options = GitSafetyOptions.model_validate(config)

        for command in re.split(r"&&|\|\||;", context.tool_input.command):
            try:
                argv = shlex.split(command)
            except ValueError:
                continue
            if len(argv) < 2 or argv[0] != "git":
                continue
            args = set(argv[2:])

            if argv[1] == "push" and options.block_force_push and args & _FORCE_FLAGS:
                return HookResult(success=False, block=True, message="Force push is not allowed")
            if argv[1] == "branch" and args & {"-D", "-d", "--delete"}:
                protected = args & set(options.protected_branches)
                if protected:
                    return HookResult(
                        success=False,
                        block=True,
                        message=f"Deleting protected branch {sorted(protected)[0]} is not allowed",
                    )
            if argv[1] == "reset" and options.block_hard_reset and "--hard" in args:
                return HookResult(success=False, block=True, message="git reset --hard is not allowed")

        return HookResult(success=True)


plugin = GitSafetyPlugin()
