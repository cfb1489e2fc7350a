"""Normalized agent telemetry events and the fold that summarizes them.

Backends translate their own stream formats into the event types below.
``fold_event`` is the only place that turns events into progress state: it
takes the previous ``TelemetrySnapshot`` and returns a new one, never
mutating either input.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import PurePath


@dataclass(slots=True, frozen=True)
class TokenCounts:
    """Token usage split by token class."""

    input: int = 0
    output: int = 0
    cache_read: int = 0
    cache_write: int = 0
    reasoning: int = 0

    @property
    def total(self) -> int:
        return self.input + self.output + self.cache_read + self.cache_write + self.reasoning

    def __add__(self, other: TokenCounts) -> TokenCounts:
        return TokenCounts(
            input=self.input + other.input,
            output=self.output + other.output,
            cache_read=self.cache_read + other.cache_read,
            cache_write=self.cache_write + other.cache_write,
            reasoning=self.reasoning + other.reasoning,
        )


class FileAction(str, Enum):
    WRITE = "write"
    EDIT = "edit"
    READ = "read"


@dataclass(slots=True, frozen=True)
class UsageReported:
    """Running usage total for the main agent; replaces earlier reports."""

    tokens: TokenCounts


@dataclass(slots=True, frozen=True)
class SubagentUsage:
    """Usage reported back by one finished sub-task; accumulates."""

    input_tokens: int
    output_tokens: int
    model: str | None = None


@dataclass(slots=True, frozen=True)
class FileTouched:
    action: FileAction
    path: str


@dataclass(slots=True, frozen=True)
class SubtaskStarted:
    task_id: str
    description: str


@dataclass(slots=True, frozen=True)
class SubtaskFinished:
    task_id: str


@dataclass(slots=True, frozen=True)
class AssistantText:
    text: str


@dataclass(slots=True, frozen=True)
class ResultReported:
    """Terminal event of an agent session."""

    tokens: TokenCounts | None = None
    is_error: bool = False
    summary: str | None = None


AgentEvent = (
    UsageReported
    | SubagentUsage
    | FileTouched
    | SubtaskStarted
    | SubtaskFinished
    | AssistantText
    | ResultReported
)


@dataclass(slots=True, frozen=True)
class TelemetrySnapshot:
    """Immutable progress summary after some prefix of the event stream."""

    events: int = 0
    tokens: TokenCounts = field(default_factory=TokenCounts)
    subagent_tokens: TokenCounts = field(default_factory=TokenCounts)
    subagent_model: str | None = None
    files_written: tuple[str, ...] = ()
    files_read: int = 0
    archive_edits: int = 0
    subtasks_started: int = 0
    subtasks_completed: int = 0
    running_subtasks: frozenset[str] = frozenset()
    last_text: str | None = None
    finished: bool = False
    is_error: bool = False

    @property
    def total_tokens(self) -> TokenCounts:
        return self.tokens + self.subagent_tokens


def fold_event(
    snapshot: TelemetrySnapshot,
    event: AgentEvent,
    *,
    archive_name: str = "bookmarks.md",
) -> TelemetrySnapshot:
    """Return the snapshot that results from applying ``event``."""

    current = replace(snapshot, events=snapshot.events + 1)
    if isinstance(event, UsageReported):
        return replace(current, tokens=event.tokens)
    if isinstance(event, SubagentUsage):
        return replace(
            current,
            subagent_tokens=current.subagent_tokens
            + TokenCounts(input=event.input_tokens, output=event.output_tokens),
            subagent_model=current.subagent_model or event.model,
        )
    if isinstance(event, FileTouched):
        return _fold_file(current, event, archive_name)
    if isinstance(event, SubtaskStarted):
        if event.task_id in current.running_subtasks:
            return current
        return replace(
            current,
            subtasks_started=current.subtasks_started + 1,
            running_subtasks=current.running_subtasks | {event.task_id},
        )
    if isinstance(event, SubtaskFinished):
        if event.task_id not in current.running_subtasks:
            return current
        return replace(
            current,
            subtasks_completed=current.subtasks_completed + 1,
            running_subtasks=current.running_subtasks - {event.task_id},
        )
    if isinstance(event, AssistantText):
        return replace(current, last_text=event.text)
    if isinstance(event, ResultReported):
        return replace(
            current,
            tokens=event.tokens if event.tokens is not None else current.tokens,
            finished=True,
            is_error=event.is_error,
            last_text=event.summary or current.last_text,
        )
    return current


def _fold_file(
    current: TelemetrySnapshot,
    event: FileTouched,
    archive_name: str,
) -> TelemetrySnapshot:
    if event.action == FileAction.READ:
        return replace(current, files_read=current.files_read + 1)
    if PurePath(event.path).name == archive_name:
        return replace(current, archive_edits=current.archive_edits + 1)
    if event.action == FileAction.WRITE:
        return replace(current, files_written=(*current.files_written, event.path))
    return current
