"""Claude Code CLI backend speaking ``--output-format stream-json``."""

from __future__ import annotations

import re
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
    SubagentUsage,
    SubtaskFinished,
    SubtaskStarted,
    TokenCounts,
)

DEFAULT_ALLOWED_TOOLS = "Read,Write,Edit,Glob,Grep,Bash,Task,TodoWrite"

_FILE_TOOLS = {"Write": FileAction.WRITE, "Edit": FileAction.EDIT, "Read": FileAction.READ}
_SUBAGENT_USAGE = re.compile(r"usage.*?input.*?(\d+).*?output.*?(\d+)", re.IGNORECASE | re.DOTALL)
_SUBTASK_DONE_MARKERS = ("Processed", "completed")
_MODEL_FAMILIES = ("haiku", "sonnet", "opus")


class ClaudeBackend:
    """Runs ``claude --print`` and normalizes its stream-json events."""

    name = "claude"

    def __init__(
        self,
        *,
        model: str = "sonnet",
        allowed_tools: str = DEFAULT_ALLOWED_TOOLS,
        api_key: str | None = None,
        command: Sequence[str] | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.model = model
        self.allowed_tools = allowed_tools
        self.api_key = api_key
        self.command = list(command) if command else None
        self._environ = environ

    def resolve_binary(self) -> str:
        if self.command:
            return self.command[0]
        local_install = Path.home() / ".claude" / "local" / "claude"
        return BinaryLocator("claude", extra_candidates=(local_install,)).resolve()

    def instructions_path(self, project_root: Path, instruction_name: str) -> Path:
        return project_root / ".claude" / "commands" / f"{instruction_name}.md"

    def build_invocation(self, work: AgentWork, binary: str) -> AgentInvocation:
        prompt = render_prompt(
            work,
            self.instructions_path(work.project_root, work.instruction_name),
        )
        argv = [
            *command_prefix(self.command, binary),
            "--print",
            "--verbose",
            "--output-format",
            "stream-json",
            "--model",
            self.model,
            "--allowedTools",
            self.allowed_tools,
            "--",
            prompt,
        ]
        return AgentInvocation(
            argv=argv,
            cwd=work.project_root,
            env=build_environment(work, api_key=self.api_key, environ=self._environ),
        )

    def parse_event(self, payload: dict[str, Any]) -> list[AgentEvent]:
        event_type = payload.get("type")
        if event_type == "assistant":
            return _parse_assistant(_content_blocks(payload))
        if event_type == "user":
            return _parse_tool_results(_content_blocks(payload))
        if event_type == "result":
            usage = payload.get("usage")
            tokens = None
            if isinstance(usage, dict):
                tokens = TokenCounts(
                    input=_as_int(usage.get("input_tokens")),
                    output=_as_int(usage.get("output_tokens")),
                    cache_read=_as_int(usage.get("cache_read_input_tokens")),
                    cache_write=_as_int(usage.get("cache_creation_input_tokens")),
                )
            summary = payload.get("result")
            return [
                ResultReported(
                    tokens=tokens,
                    is_error=bool(payload.get("is_error")),
                    summary=summary if isinstance(summary, str) else None,
                ),
            ]
        return []


def _content_blocks(payload: dict[str, Any]) -> list[dict[str, Any]]:
    message = payload.get("message")
    if not isinstance(message, dict):
        return []
    content = message.get("content")
    if not isinstance(content, list):
        return []
    return [block for block in content if isinstance(block, dict)]


def _parse_assistant(blocks: list[dict[str, Any]]) -> list[AgentEvent]:
    events: list[AgentEvent] = []
    for block in blocks:
        block_type = block.get("type")
        if block_type == "text" and isinstance(block.get("text"), str):
            events.append(AssistantText(text=block["text"]))
            continue
        if block_type != "tool_use":
            continue
        tool = block.get("name")
        tool_input = block.get("input") if isinstance(block.get("input"), dict) else {}
        file_path = tool_input.get("file_path")
        if tool in _FILE_TOOLS and isinstance(file_path, str):
            events.append(FileTouched(action=_FILE_TOOLS[tool], path=file_path))
        elif tool == "Task":
            description = str(tool_input.get("description") or "subtask")
            task_id = str(block.get("id") or description)
            events.append(SubtaskStarted(task_id=task_id, description=description))
    return events


def _parse_tool_results(blocks: list[dict[str, Any]]) -> list[AgentEvent]:
    events: list[AgentEvent] = []
    for block in blocks:
        if block.get("type") != "tool_result":
            continue
        content = _result_text(block.get("content"))
        tool_use_id = block.get("tool_use_id")
        if (
            not block.get("is_error")
            and tool_use_id
            and any(marker in content for marker in _SUBTASK_DONE_MARKERS)
        ):
            events.append(SubtaskFinished(task_id=str(tool_use_id)))
        usage = _SUBAGENT_USAGE.search(content)
        if usage:
            events.append(
                SubagentUsage(
                    input_tokens=int(usage.group(1)),
                    output_tokens=int(usage.group(2)),
                    model=next((name for name in _MODEL_FAMILIES if name in content), None),
                ),
            )
    return events


def _result_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            item.get("text", "")
            for item in content
            if isinstance(item, dict) and isinstance(item.get("text"), str)
        ]
        return "\n".join(parts)
    return ""


def _as_int(value: Any) -> int:
    return value if isinstance(value, int) and value >= 0 else 0
