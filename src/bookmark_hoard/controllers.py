"""Controllers for bookmark-hoard CLI commands."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import PurePath

from bookmark_hoard.agent.events import (
    AgentEvent,
    FileAction,
    FileTouched,
    ResultReported,
    SubtaskFinished,
    SubtaskStarted,
    TelemetrySnapshot,
)
from bookmark_hoard.agent.pricing import format_usage_lines
from bookmark_hoard.config import Settings
from bookmark_hoard.job import BookmarkJob, JobOptions, JobResult, ReprocessOptions
from bookmark_hoard.lock import RunLock
from bookmark_hoard.pending import PendingStore
from bookmark_hoard.reprocess.report import format_reprocess_status
from bookmark_hoard.reprocess.store import ReprocessStore

LineSink = Callable[[str], None]


@dataclass(slots=True)
class RunCommand:
    """CLI input for one scheduled run."""

    limit: int | None = None
    force_fetch: bool = False
    track_tokens: bool = False


@dataclass(slots=True)
class ReprocessCommand:
    """CLI input for knowledge-file reprocessing."""

    limit: int | None = None
    force: bool = False
    track_tokens: bool = False


@dataclass(slots=True)
class CommandResult:
    """Summary lines plus success flag used for the exit code."""

    success: bool
    lines: list[str]


class BookmarkCliController:
    """CLI controller for job, reprocess and inspection commands."""

    def __init__(self, settings_loader: Callable[[], Settings] | None = None) -> None:
        self._settings_loader = settings_loader or Settings.from_env

    def run(self, command: RunCommand, emit: LineSink) -> CommandResult:
        settings = self._load_settings()
        job = BookmarkJob(settings, on_progress=_progress_printer(emit))
        result = job.run(
            JobOptions(
                limit=command.limit,
                force_fetch=command.force_fetch,
            ),
        )
        lines = _format_job_result(result, noun="bookmark")
        if command.track_tokens:
            lines.extend(_usage_lines(result, settings))
        return CommandResult(success=result.success, lines=lines)

    def reprocess(self, command: ReprocessCommand, emit: LineSink) -> CommandResult:
        settings = self._load_settings()
        job = BookmarkJob(settings, on_progress=_progress_printer(emit))
        result = job.reprocess(
            ReprocessOptions(
                limit=command.limit,
                force=command.force,
            ),
        )
        lines = _format_job_result(result, noun="knowledge file")
        if command.track_tokens:
            lines.extend(_usage_lines(result, settings))
        return CommandResult(success=result.success, lines=lines)

    def status(self) -> list[str]:
        """Pending queue, lock and reprocess summary; reads state without writing it."""

        settings = self._load_settings()
        pending = PendingStore(settings.paths.pending_path)
        lines = [f"Pending bookmarks: {pending.load().count} ({pending.path})"]
        if pending.has_truncation_backup():
            lines.append(
                f"Truncation backup present: {pending.full_path} (restored on next run)",
            )

        record = RunLock(settings.lock.path).read()
        if record is not None:
            lines.append(f"Lock held by pid {record.pid} ({settings.lock.path})")

        store = ReprocessStore(
            settings.paths.reprocess_state_path,
            knowledge_dir=settings.paths.knowledge_path,
            max_retries=settings.reprocess.max_retries,
        )
        archive_path = settings.paths.archive_path
        archive = archive_path.read_text("utf-8") if archive_path.exists() else ""
        state = store.sync(store.load(), archive)
        lines.append("")
        lines.extend(format_reprocess_status(state, max_retries=settings.reprocess.max_retries))
        return lines

    def pending(self) -> list[str]:
        settings = self._load_settings()
        entries = PendingStore(settings.paths.pending_path).load().entries()
        if not entries:
            return ["No pending bookmarks."]
        lines = [f"{len(entries)} pending bookmark(s):"]
        for entry in entries:
            text = entry.text.replace("\n", " ")
            lines.append(f"  {entry.id}  @{entry.author}  {entry.url}")
            if text:
                lines.append(f"      {text[:80]}")
        return lines

    def _load_settings(self) -> Settings:
        settings = self._settings_loader()
        settings.validate()
        return settings


def describe_progress(snapshot: TelemetrySnapshot, event: AgentEvent) -> str | None:
    """One human-readable line for events worth showing live, else None."""

    if isinstance(event, FileTouched):
        if event.action == FileAction.READ:
            return None
        path = PurePath(event.path)
        if path.parent.name in {"tools", "articles"}:
            return f"  filed {path.parent.name}/{path.name}"
        verb = "wrote" if event.action == FileAction.WRITE else "updated"
        return f"  {verb} {path.name}"
    if isinstance(event, SubtaskStarted):
        return (
            f"  subtask started: {event.description} "
            f"({len(snapshot.running_subtasks)} running)"
        )
    if isinstance(event, SubtaskFinished):
        return f"  subtask finished ({snapshot.subtasks_completed}/{snapshot.subtasks_started})"
    if isinstance(event, ResultReported):
        return "  agent reported an error" if event.is_error else "  agent finished"
    return None


def _progress_printer(emit: LineSink) -> Callable[[TelemetrySnapshot, AgentEvent], None]:
    def _on_progress(snapshot: TelemetrySnapshot, event: AgentEvent) -> None:
        line = describe_progress(snapshot, event)
        if line is not None:
            emit(line)

    return _on_progress


def _format_job_result(result: JobResult, *, noun: str) -> list[str]:
    if result.skipped:
        return ["Previous run still in progress, skipped."]

    lines: list[str] = []
    if result.success:
        if result.count == 0 and result.agent_result is None and result.pending_file is None:
            lines.append(f"Nothing to do: no {noun}s to process.")
        elif result.pending_file is not None:
            lines.append(f"{result.count} {noun}(s) pending in {result.pending_file}")
        else:
            lines.append(f"Processed {result.count} {noun}(s).")
    elif result.timed_out:
        lines.append(f"Agent timed out: {result.error}")
    else:
        lines.append(f"Failed: {result.error}")

    if result.remaining is not None and (result.remaining or not result.success):
        lines.append(f"Remaining: {result.remaining}")
    if result.hint:
        lines.append(result.hint)
    lines.append(f"Duration: {result.duration_seconds:.1f}s")
    return lines


def _usage_lines(result: JobResult, settings: Settings) -> list[str]:
    if result.agent_result is None:
        return []
    return format_usage_lines(
        result.agent_result.telemetry,
        provider=settings.agent.provider,
        model=settings.agent.model,
    )
