"""Scheduled job: fetch, batch, hand off to the agent and reconcile the queue."""

from __future__ import annotations

import logging
import shlex
import time
from dataclasses import dataclass
from pathlib import Path

from bookmark_hoard.agent.base import AgentBackend, AgentResult, AgentWork
from bookmark_hoard.agent.channel import AgentChannel, ProgressCallback
from bookmark_hoard.agent.claude import ClaudeBackend
from bookmark_hoard.agent.opencode import OpenCodeBackend
from bookmark_hoard.archive.backup import backup_archive
from bookmark_hoard.config import AgentSettings, Settings
from bookmark_hoard.fetcher import BookmarkFetcher, CommandBookmarkFetcher
from bookmark_hoard.lock import RunLock
from bookmark_hoard.notify import Notification, Notifier, WebhookNotifier
from bookmark_hoard.pending import PendingStore
from bookmark_hoard.reprocess.models import ReprocessEntry, ReprocessStatus
from bookmark_hoard.reprocess.store import ReprocessStore
from bookmark_hoard.storage import to_iso, utc_now, write_json

logger = logging.getLogger(__name__)

TIMEOUT_HINT = "Try running with a smaller batch size (--limit) to avoid timeouts."
AUTO_INVOKE_HINT = "Agent auto-invoke is disabled; process the pending file manually."

_PROCESS_TASK = (
    "Process the {count} bookmark(s) in {pending} following the instructions in "
    "{{instructions}}. Read that file first, then process each bookmark."
)
_REPROCESS_TASK = (
    "Create knowledge files for the {count} bookmark(s) in {batch}.\n\n"
    "Read the JSON file first. For each entry:\n"
    "1. Read the entry url.\n"
    "2. For a code-repository entry create {knowledge}/tools/<repo-name>.md.\n"
    "3. For an article entry create {knowledge}/articles/<slug>.md.\n"
    '4. Put the exact entry url in the front matter as source: "<url>".\n'
    "5. Add a '- **Filed:** [<file>](<path>)' line to the matching entry in {archive}.\n\n"
    "Follow the instructions in {{instructions}} for templates. "
    "Do not commit or push these files."
)


@dataclass(slots=True)
class JobOptions:
    """Inputs of one scheduled run."""

    limit: int | None = None
    force_fetch: bool = False


@dataclass(slots=True)
class ReprocessOptions:
    """Inputs of one knowledge-file reprocessing run."""

    limit: int | None = None
    force: bool = False


@dataclass(slots=True)
class JobResult:
    """Structured outcome; failures are reported here instead of raised."""

    success: bool
    skipped: bool = False
    count: int = 0
    remaining: int | None = None
    timed_out: bool = False
    error: str | None = None
    hint: str | None = None
    duration_seconds: float = 0.0
    agent_result: AgentResult | None = None
    pending_file: Path | None = None


def build_backend(settings: AgentSettings) -> AgentBackend:
    command = shlex.split(settings.command) if settings.command else None
    if settings.provider == "opencode":
        return OpenCodeBackend(model=settings.opencode_model, command=command)
    return ClaudeBackend(
        model=settings.claude_model,
        allowed_tools=settings.allowed_tools,
        api_key=settings.api_key,
        command=command,
    )


class BookmarkJob:
    """Orchestrates one run under the single-instance lock.

    Every path releases the lock. A limited batch keeps the full queue in the
    truncation backup until the run settles: success removes exactly the
    handed-off ids from it, any failure puts it back untouched.
    """

    def __init__(  # noqa: PLR0913
        self,
        settings: Settings,
        *,
        lock: RunLock | None = None,
        fetcher: BookmarkFetcher | None = None,
        notifier: Notifier | None = None,
        channel: AgentChannel | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.settings = settings
        self.pending = PendingStore(settings.paths.pending_path)
        self.lock = lock or RunLock(
            settings.lock.path,
            stale_after_seconds=settings.lock.stale_after_seconds,
        )
        self.fetcher = fetcher or CommandBookmarkFetcher(
            settings.fetch.command,
            self.pending,
            cwd=settings.paths.project_root,
            timeout_seconds=settings.fetch.timeout_seconds,
        )
        self.notifier = notifier or WebhookNotifier(
            settings.notify.webhook_url,
            webhook_type=settings.notify.webhook_type,
            timeout_seconds=settings.notify.timeout_seconds,
        )
        self.channel = channel or AgentChannel(
            build_backend(settings.agent),
            timeout_seconds=settings.agent.timeout_seconds,
            on_progress=on_progress,
        )
        self.reprocess_store = ReprocessStore(
            settings.paths.reprocess_state_path,
            knowledge_dir=settings.paths.knowledge_path,
            max_retries=settings.reprocess.max_retries,
        )

    def run(self, options: JobOptions | None = None) -> JobResult:
        options = options or JobOptions()
        started = time.monotonic()
        logger.info("Starting bookmark job")
        if not self.lock.acquire():
            return JobResult(success=True, skipped=True)
        try:
            result = self._run_locked(options)
        except Exception as error:  # noqa: BLE001
            logger.exception("Bookmark job failed")
            self.pending.restore_superset()
            self._notify("Job Failed", f"Error: {error}", success=False)
            result = JobResult(success=False, error=str(error))
        finally:
            self.lock.release()
        result.duration_seconds = time.monotonic() - started
        return result

    def reprocess(self, options: ReprocessOptions | None = None) -> JobResult:
        options = options or ReprocessOptions()
        started = time.monotonic()
        logger.info("Starting knowledge-file reprocessing")
        if not self.lock.acquire():
            return JobResult(success=True, skipped=True)
        try:
            result = self._reprocess_locked(options)
        except Exception as error:  # noqa: BLE001
            logger.exception("Reprocess failed")
            self._notify("Reprocess Failed", f"Error: {error}", success=False)
            result = JobResult(success=False, error=str(error))
        finally:
            self.lock.release()
        result.duration_seconds = time.monotonic() - started
        return result

    def _run_locked(self, options: JobOptions) -> JobResult:
        if self.pending.restore_superset():
            logger.warning("Recovered full pending queue left by an interrupted limited run")

        queue = self.pending.load()
        if queue.count == 0 or options.force_fetch:
            self.fetcher.fetch()
            queue = self.pending.load()
        else:
            logger.info("Found %d pending bookmarks, skipping fetch", queue.count)

        if queue.count == 0:
            logger.info("No bookmarks to process")
            return JobResult(success=True, remaining=0)

        if not self.settings.agent.auto_invoke:
            logger.info("Auto-invoke disabled, leaving %d bookmarks pending", queue.count)
            return JobResult(
                success=True,
                count=queue.count,
                remaining=queue.count,
                hint=AUTO_INVOKE_HINT,
                pending_file=self.pending.path,
            )

        batch = self.pending.truncate(options.limit) or queue
        processed_ids = {item_id for item_id in batch.ids() if item_id}
        missing_ids = sum(1 for item_id in batch.ids() if not item_id)
        if missing_ids:
            logger.warning(
                "%d bookmark(s) in the batch have no id and will stay pending",
                missing_ids,
            )
        paths = self.settings.paths
        backup_archive(paths.archive_path, paths.backup_dir)

        agent_result = self.channel.invoke(
            AgentWork(
                task=_PROCESS_TASK.format(count=batch.count, pending=self.pending.path),
                batch_file=self.pending.path,
                archive_file=paths.archive_path,
                project_root=paths.project_root,
                count=batch.count,
            ),
        )

        if agent_result.succeeded:
            remaining = self.pending.consume(processed_ids)
            self._sync_reprocess_state()
            self._notify(
                "Bookmarks Processed",
                f"**New:** {batch.count} bookmarks archived",
                success=True,
            )
            return JobResult(
                success=True,
                count=batch.count,
                remaining=remaining.count,
                agent_result=agent_result,
            )

        self.pending.restore_superset()
        remaining_count = self.pending.load().count
        if agent_result.timed_out:
            minutes = round(agent_result.elapsed_seconds / 60)
            logger.error(
                "Agent timed out after %d min, %d bookmarks remain pending",
                minutes,
                remaining_count,
            )
            self._notify(
                "Bookmark Processing Timed Out",
                f"{self.channel.backend.name} timed out after {minutes} minutes. "
                f"{remaining_count} bookmarks remain pending. Try a smaller batch size.",
                success=False,
            )
            return JobResult(
                success=False,
                remaining=remaining_count,
                timed_out=True,
                error=agent_result.error,
                hint=TIMEOUT_HINT,
                agent_result=agent_result,
            )

        logger.error("Agent failed: %s", agent_result.error)
        self._notify(
            "Bookmark Processing Failed",
            f"Prepared {batch.count} bookmarks but analysis failed:\n{agent_result.error}",
            success=False,
        )
        return JobResult(
            success=False,
            count=batch.count,
            remaining=remaining_count,
            error=agent_result.error,
            agent_result=agent_result,
        )

    def _reprocess_locked(self, options: ReprocessOptions) -> JobResult:
        store = self.reprocess_store
        state = store.sync(store.load(), self._read_archive())
        selected = store.get_entries_to_process(state, force=options.force, limit=options.limit)
        if not selected:
            store.save(state)
            logger.info("No entries need knowledge files")
            return JobResult(success=True, remaining=0)

        paths = self.settings.paths
        batch_path = paths.reprocess_batch_path
        write_json(
            batch_path,
            {
                "generatedAt": to_iso(utc_now()),
                "count": len(selected),
                "entries": [_batch_item(entry) for entry in selected],
            },
        )
        store.mark_in_progress(state, selected)
        store.save(state)
        backup_archive(paths.archive_path, paths.backup_dir)

        agent_result = self.channel.invoke(
            AgentWork(
                task=_REPROCESS_TASK.format(
                    count=len(selected),
                    batch=batch_path,
                    knowledge=paths.knowledge_path,
                    archive=paths.archive_path,
                ),
                batch_file=batch_path,
                archive_file=paths.archive_path,
                project_root=paths.project_root,
                count=len(selected),
            ),
        )

        state = store.verify_and_update(state, self._read_archive())
        store.save(state)
        completed = sum(
            1
            for entry in selected
            if state.entries[entry.url].status == ReprocessStatus.COMPLETED
        )
        remaining = len(store.get_entries_to_process(state))

        if agent_result.succeeded:
            batch_path.unlink(missing_ok=True)
            self._notify(
                "Knowledge Files Reprocessed",
                f"{completed} of {len(selected)} entries filed, {remaining} remaining",
                success=True,
            )
            return JobResult(
                success=True,
                count=completed,
                remaining=remaining,
                agent_result=agent_result,
            )

        self._notify(
            "Reprocess Failed",
            f"{completed} of {len(selected)} entries filed:\n{agent_result.error}",
            success=False,
        )
        return JobResult(
            success=False,
            count=completed,
            remaining=remaining,
            timed_out=agent_result.timed_out,
            error=agent_result.error,
            hint=TIMEOUT_HINT if agent_result.timed_out else None,
            agent_result=agent_result,
        )

    def _sync_reprocess_state(self) -> None:
        archive_path = self.settings.paths.archive_path
        if not archive_path.exists():
            return
        try:
            state = self.reprocess_store.sync(self.reprocess_store.load(), self._read_archive())
            self.reprocess_store.save(state)
        except OSError as error:
            logger.warning("Could not update reprocess state: %s", error)

    def _read_archive(self) -> str:
        archive_path = self.settings.paths.archive_path
        return archive_path.read_text("utf-8") if archive_path.exists() else ""

    def _notify(self, title: str, description: str, *, success: bool) -> None:
        self.notifier.notify(Notification(title=title, description=description, success=success))


def _batch_item(entry: ReprocessEntry) -> dict[str, str | None]:
    return {
        "url": entry.url,
        "author": entry.author,
        "type": entry.type.value,
        "tweetUrl": entry.tweet_url,
        "text": entry.text,
    }
