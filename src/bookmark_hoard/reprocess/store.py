"""Load, reconcile and persist the reprocess state file."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from pathlib import Path

from bookmark_hoard.archive.scanner import has_completion_evidence, parse_entries
from bookmark_hoard.reprocess.models import (
    CurrentJob,
    ReprocessEntry,
    ReprocessState,
    ReprocessStatus,
)
from bookmark_hoard.storage import load_json, to_iso, utc_now, write_json

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 5
MISSING_EVIDENCE_ERROR = "Knowledge file or Filed line not created"

_PROCESS_ORDER = {
    ReprocessStatus.IN_PROGRESS: 0,
    ReprocessStatus.FAILED: 1,
    ReprocessStatus.PENDING: 2,
}


class ReprocessStore:
    """State machine over archive links.

    Entries move ``pending -> in_progress -> completed | failed``; failed
    entries are retried until ``max_retries`` attempts, then ``skipped``.
    Links that vanish from the archive become ``removed`` but are never
    deleted from the state.
    """

    def __init__(
        self,
        path: Path,
        *,
        knowledge_dir: Path,
        max_retries: int = DEFAULT_MAX_RETRIES,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.path = path
        self.knowledge_dir = knowledge_dir
        self.max_retries = max_retries
        self._clock = clock

    def load(self) -> ReprocessState:
        """Return persisted state, or a fresh one if missing or corrupt."""

        if not self.path.exists():
            return ReprocessState()
        try:
            return ReprocessState.from_dict(load_json(self.path))
        except (OSError, ValueError, TypeError) as error:
            logger.warning("Reprocess state %s is unreadable, starting fresh: %s", self.path, error)
            return ReprocessState()

    def save(self, state: ReprocessState) -> None:
        state.recompute_stats()
        write_json(self.path, state.to_dict())

    def sync(self, state: ReprocessState, archive_content: str) -> ReprocessState:
        """Reconcile tracked links with the links currently found in the archive."""

        now = self._now()
        found: set[str] = set()
        for archive_entry in parse_entries(archive_content):
            for link in archive_entry.links:
                found.add(link.url)
                existing = state.entries.get(link.url)
                if existing is None:
                    state.entries[link.url] = ReprocessEntry(
                        url=link.url,
                        author=archive_entry.author,
                        type=link.source_type,
                        status=(
                            ReprocessStatus.COMPLETED
                            if archive_entry.filed
                            else ReprocessStatus.PENDING
                        ),
                        added_at=now,
                        tweet_url=archive_entry.tweet_url,
                        text=archive_entry.text,
                        origin=link.origin,
                    )
                elif archive_entry.filed and existing.status != ReprocessStatus.COMPLETED:
                    existing.status = ReprocessStatus.COMPLETED
                    existing.processed_at = now

        for url, entry in state.entries.items():
            if url not in found and entry.status not in (
                ReprocessStatus.COMPLETED,
                ReprocessStatus.REMOVED,
            ):
                logger.info("Link %s is no longer in the archive, marking removed", url)
                entry.status = ReprocessStatus.REMOVED

        self._settle_exhausted(state, archive_content, now)
        state.recompute_stats()
        return state

    def get_entries_to_process(
        self,
        state: ReprocessState,
        *,
        force: bool = False,
        limit: int | None = None,
    ) -> list[ReprocessEntry]:
        """Select entries for the next run, resumable ones first."""

        selected: list[ReprocessEntry] = []
        for entry in state.entries.values():
            if entry.status == ReprocessStatus.REMOVED:
                continue
            if force or entry.status == ReprocessStatus.PENDING:
                selected.append(entry)
            elif (
                entry.status in (ReprocessStatus.IN_PROGRESS, ReprocessStatus.FAILED)
                and entry.attempts < self.max_retries
            ):
                selected.append(entry)

        selected.sort(key=lambda entry: _PROCESS_ORDER.get(entry.status, len(_PROCESS_ORDER)))
        if limit is not None and limit > 0:
            return selected[:limit]
        return selected

    def mark_in_progress(
        self,
        state: ReprocessState,
        entries: Iterable[ReprocessEntry],
    ) -> ReprocessState:
        now = self._now()
        urls: list[str] = []
        for selected in entries:
            entry = state.entries.get(selected.url)
            if entry is None:
                continue
            entry.status = ReprocessStatus.IN_PROGRESS
            entry.started_at = now
            entry.attempts += 1
            urls.append(entry.url)
        state.current_job = CurrentJob(started_at=now, entries=urls)
        state.recompute_stats()
        return state

    def verify_and_update(self, state: ReprocessState, archive_content: str) -> ReprocessState:
        """Settle every in-progress entry from the evidence the agent left behind."""

        now = self._now()
        for entry in state.by_status(ReprocessStatus.IN_PROGRESS):
            entry.started_at = None
            if self._has_evidence(entry, archive_content):
                entry.status = ReprocessStatus.COMPLETED
                entry.processed_at = now
                entry.error = None
                continue

            entry.last_attempt_at = now
            if entry.attempts >= self.max_retries:
                entry.status = ReprocessStatus.SKIPPED
                entry.error = f"Max attempts ({self.max_retries}) reached"
                logger.warning("Giving up on %s after %d attempts", entry.url, entry.attempts)
            else:
                entry.status = ReprocessStatus.FAILED
                entry.error = MISSING_EVIDENCE_ERROR

        state.current_job = None
        state.last_run = now
        state.recompute_stats()
        return state

    def _settle_exhausted(self, state: ReprocessState, archive_content: str, now: str) -> None:
        """Close out entries interrupted during their last allowed attempt."""

        for entry in state.by_status(ReprocessStatus.IN_PROGRESS):
            if entry.attempts < self.max_retries:
                continue
            entry.started_at = None
            entry.last_attempt_at = now
            if self._has_evidence(entry, archive_content):
                entry.status = ReprocessStatus.COMPLETED
                entry.processed_at = now
                entry.error = None
                continue
            entry.status = ReprocessStatus.SKIPPED
            entry.error = f"Max attempts ({self.max_retries}) reached"
            logger.warning(
                "Giving up on interrupted %s after %d attempts",
                entry.url,
                entry.attempts,
            )

    def _has_evidence(self, entry: ReprocessEntry, archive_content: str) -> bool:
        return has_completion_evidence(
            url=entry.url,
            source_type=entry.type,
            archive_content=archive_content,
            knowledge_dir=self.knowledge_dir,
        )

    def _now(self) -> str:
        return to_iso(self._clock())
