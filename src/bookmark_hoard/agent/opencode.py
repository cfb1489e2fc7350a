"""OpenCode CLI backend speaking ``run --format json``."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from bookmark_hoard.agent.base import (
    AgentInvocation,
    AgentWork,
    BinaryLocator,
    build_environment,
    command_prefix,
    render_prompt,
)
from bookmark_hoard.agent.events import (
    AgentEvent,
    AssistantText,
    FileAction,
    FileTouched,
    ResultReported,
    SubtaskFinished,
    SubtaskStarted,
    TokenCounts,
    UsageReported,
)

DEFAULT_MODEL = "openrouter/minimax/minimax-m2.1"

_FILE_TOOLS = {"write": FileAction.WRITE, "edit": FileAction.EDIT, "read": FileAction.READ}


class OpenCodeBackend:
    """Runs ``opencode run`` and normalizes its JSON event stream."""

    name = "opencode"

    def __init__(
        self,
        *,
        model: str = DEFAULT_MODEL,
        command: Sequence[str] | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.model = model
        self.command = list(command) if command else None
        self._environ = environ

    def resolve_binary(self) -> str:
        if self.command:
            return self.command[0]
        return BinaryLocator("opencode").resolve()

    def instructions_path(self, project_root: Path, instruction_name: str) -> Path:
        return project_root / ".opencode" / "commands" / f"{instruction_name}.md"

    def build_invocation(self, work: AgentWork, binary: str) -> AgentInvocation:
        prompt = render_prompt(
            work,
            self.instructions_path(work.project_root, work.instruction_name),
        )
        argv = [
            *command_prefix(self.command, binary),
            "run",
            "--format",
            "json",
            "--model",
            self.model,
            prompt,
        ]
        # OpenCode authenticates through its own provider config.
        return AgentInvocation(
            argv=argv,
            cwd=work.project_root,
            env=build_environment(work, environ=self._environ),
        )

    def parse_event(self, payload: dict[str, Any]) -> list[AgentEvent]:
        part = payload.get("part")
        if not isinstance(part, dict):
            return []
        event_type = payload.get("type")
        if event_type == "tool_use" and part.get("type") == "tool":
            return _parse_tool(part)
        if event_type == "step_finish":
            events: list[AgentEvent] = []
            tokens = part.get("tokens")
            if isinstance(tokens, dict):
                events.append(UsageReported(tokens=_token_counts(tokens)))
            if part.get("reason") == "stop":
                events.append(ResultReported())
            return events
        if event_type == "text" and isinstance(part.get("text"), str):
            return [AssistantText(text=part["text"])]
        return []


def _parse_tool(part: dict[str, Any]) -> list[AgentEvent]:
    tool = str(part.get("tool") or "").lower()
    state = part.get("state") if isinstance(part.get("state"), dict) else {}
    tool_input = state.get("input") if isinstance(state.get("input"), dict) else {}

    file_path = tool_input.get("filePath")
    if tool in _FILE_TOOLS and isinstance(file_path, str):
        return [FileTouched(action=_FILE_TOOLS[tool], path=file_path)]
    if tool != "task":
        return []

    description = str(tool_input.get("description") or "subtask")
    task_id = str(part.get("callID") or part.get("id") or description)
    events: list[AgentEvent] = [SubtaskStarted(task_id=task_id, description=description)]
    if state.get("status") == "completed":
        events.append(SubtaskFinished(task_id=task_id))
    return events


def _token_counts(tokens: dict[str, Any]) -> TokenCounts:
    cache = tokens.get("cache") if isinstance(tokens.get("cache"), dict) else {}
    return TokenCounts(
        input=_as_int(tokens.get("input")),
        output=_as_int(tokens.get("output")),
        reasoning=_as_int(tokens.get("reasoning")),
        cache_read=_as_int(cache.get("read")),
        cache_write=_as_int(cache.get("write")),
    )


def _as_int(value: Any) -> int:
    return value if isinstance(value, int) and value >= 0 else 0
