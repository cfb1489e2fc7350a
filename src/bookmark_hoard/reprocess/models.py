"""Persisted models for knowledge-file reprocessing."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from bookmark_hoard.archive.scanner import SourceType

STATE_VERSION = 1


class ReprocessStatus(str, Enum):
    """Lifecycle status of one tracked link."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    REMOVED = "removed"


@dataclass(slots=True)
class ReprocessEntry:
    """One tracked link keyed by URL."""

    url: str
    author: str
    type: SourceType
    status: ReprocessStatus = ReprocessStatus.PENDING
    attempts: int = 0
    added_at: str | None = None
    processed_at: str | None = None
    last_attempt_at: str | None = None
    started_at: str | None = None
    error: str | None = None
    tweet_url: str | None = None
    text: str | None = None
    origin: str = "text"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "author": self.author,
            "type": self.type.value,
            "status": self.status.value,
            "attempts": self.attempts,
            "addedAt": self.added_at,
            "origin": self.origin,
        }
        optional = {
            "processedAt": self.processed_at,
            "lastAttemptAt": self.last_attempt_at,
            "startedAt": self.started_at,
            "error": self.error,
            "tweetUrl": self.tweet_url,
            "text": self.text,
        }
        payload.update({key: value for key, value in optional.items() if value is not None})
        return payload

    @classmethod
    def from_dict(cls, url: str, payload: dict[str, Any]) -> ReprocessEntry:
        """Build an entry from persisted JSON; unknown enum values fall back to defaults."""

        try:
            source_type = SourceType(payload.get("type"))
        except ValueError:
            source_type = SourceType.ARTICLE
        try:
            status = ReprocessStatus(payload.get("status"))
        except ValueError:
            status = ReprocessStatus.PENDING
        attempts = payload.get("attempts")
        return cls(
            url=url,
            author=str(payload.get("author") or "unknown"),
            type=source_type,
            status=status,
            attempts=attempts if isinstance(attempts, int) and attempts >= 0 else 0,
            added_at=_optional_str(payload.get("addedAt")),
            processed_at=_optional_str(payload.get("processedAt")),
            last_attempt_at=_optional_str(payload.get("lastAttemptAt")),
            started_at=_optional_str(payload.get("startedAt")),
            error=_optional_str(payload.get("error")),
            tweet_url=_optional_str(payload.get("tweetUrl")),
            text=_optional_str(payload.get("text")),
            origin=str(payload.get("origin") or "text"),
        )


@dataclass(slots=True)
class CurrentJob:
    """Links claimed by the run that is (or was, if interrupted) in flight."""

    started_at: str
    entries: list[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.entries)

    def to_dict(self) -> dict[str, Any]:
        return {"startedAt": self.started_at, "entries": list(self.entries), "count": self.count}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> CurrentJob | None:
        started_at = payload.get("startedAt")
        entries = payload.get("entries")
        if not isinstance(started_at, str) or not isinstance(entries, list):
            return None
        return cls(started_at=started_at, entries=[str(url) for url in entries])


@dataclass(slots=True)
class ReprocessStats:
    """Entry counts per status."""

    total: int = 0
    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    removed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "pending": self.pending,
            "in_progress": self.in_progress,
            "completed": self.completed,
            "failed": self.failed,
            "skipped": self.skipped,
            "removed": self.removed,
        }


@dataclass(slots=True)
class ReprocessState:
    """Whole reprocess state document."""

    version: int = STATE_VERSION
    last_run: str | None = None
    current_job: CurrentJob | None = None
    entries: dict[str, ReprocessEntry] = field(default_factory=dict)
    stats: ReprocessStats = field(default_factory=ReprocessStats)

    def recompute_stats(self) -> ReprocessStats:
        stats = ReprocessStats(total=len(self.entries))
        for entry in self.entries.values():
            name = entry.status.value
            setattr(stats, name, getattr(stats, name) + 1)
        self.stats = stats
        return stats

    def by_status(self, status: ReprocessStatus) -> list[ReprocessEntry]:
        return [entry for entry in self.entries.values() if entry.status == status]

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "lastRun": self.last_run,
            "currentJob": self.current_job.to_dict() if self.current_job else None,
            "entries": {url: entry.to_dict() for url, entry in self.entries.items()},
            "stats": self.stats.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ReprocessState:
        raw_entries = payload.get("entries")
        entries: dict[str, ReprocessEntry] = {}
        if isinstance(raw_entries, dict):
            for url, raw in raw_entries.items():
                if isinstance(raw, dict):
                    entries[str(url)] = ReprocessEntry.from_dict(str(url), raw)
        raw_job = payload.get("currentJob")
        version = payload.get("version")
        state = cls(
            version=version if isinstance(version, int) else STATE_VERSION,
            last_run=_optional_str(payload.get("lastRun")),
            current_job=CurrentJob.from_dict(raw_job) if isinstance(raw_job, dict) else None,
            entries=entries,
        )
        state.recompute_stats()
        return state


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None
