"""Pending bookmark queue shared between the fetcher, the job and the agent."""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from bookmark_hoard.storage import load_json, to_iso, utc_now, write_json

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PendingEntry:
    """Typed view over one bookmark object in the pending queue."""

    id: str
    author: str
    url: str
    text: str
    added_at: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> PendingEntry:
        return cls(
            id=bookmark_id(payload),
            author=str(payload.get("author") or "unknown"),
            url=str(payload.get("tweetUrl") or payload.get("url") or ""),
            text=str(payload.get("text") or ""),
            added_at=payload.get("addedAt") or payload.get("createdAt"),
        )


@dataclass(slots=True)
class PendingQueue:
    """Pending queue document. Bookmarks stay raw so unknown fields survive."""

    bookmarks: list[dict[str, Any]] = field(default_factory=list)
    generated_at: str | None = None

    @property
    def count(self) -> int:
        return len(self.bookmarks)

    def ids(self) -> list[str]:
        return [bookmark_id(item) for item in self.bookmarks]

    def entries(self) -> list[PendingEntry]:
        return [PendingEntry.from_payload(item) for item in self.bookmarks]

    def without(self, processed_ids: set[str]) -> PendingQueue:
        """Drop processed bookmarks; items without an id are never matched."""

        remaining = [
            item
            for item in self.bookmarks
            if not bookmark_id(item) or bookmark_id(item) not in processed_ids
        ]
        return PendingQueue(bookmarks=remaining, generated_at=self.generated_at)

    def head(self, limit: int) -> PendingQueue:
        return PendingQueue(bookmarks=list(self.bookmarks[:limit]), generated_at=self.generated_at)

    def to_payload(self) -> dict[str, Any]:
        return {
            "generatedAt": self.generated_at or to_iso(utc_now()),
            "count": self.count,
            "bookmarks": self.bookmarks,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> PendingQueue:
        raw_bookmarks = payload.get("bookmarks", [])
        if not isinstance(raw_bookmarks, list):
            raise TypeError("pending.bookmarks must be an array")
        bookmarks = [item for item in raw_bookmarks if isinstance(item, dict)]
        generated_at = payload.get("generatedAt")
        return cls(
            bookmarks=bookmarks,
            generated_at=generated_at if isinstance(generated_at, str) else None,
        )


def bookmark_id(payload: dict[str, Any]) -> str:
    return str(payload.get("id", ""))


class PendingStore:
    """Reads and rewrites the pending queue file and its truncation backup.

    The truncation backup (``<pending>.full``) holds the untouched superset
    while the working file carries a limited batch for the agent.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self.full_path = path.with_name(f"{path.name}.full")

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> PendingQueue:
        """Return the working queue; missing or corrupt files read as empty."""

        return self._load_from(self.path)

    def save(self, queue: PendingQueue) -> None:
        write_json(self.path, queue.to_payload())

    def has_truncation_backup(self) -> bool:
        return self.full_path.exists()

    def truncate(self, limit: int | None) -> PendingQueue | None:
        """Limit the working file to the first ``limit`` bookmarks.

        The superset is copied byte for byte to the truncation backup before
        the working file is overwritten. Returns the truncated batch, or None
        if no truncation was needed.
        """

        if not limit or limit <= 0:
            return None
        queue = self.load()
        if queue.count <= limit:
            return None

        shutil.copyfile(self.path, self.full_path)
        batch = queue.head(limit)
        self.save(batch)
        logger.info("Limited pending queue to %d of %d bookmarks", limit, queue.count)
        return batch

    def restore_superset(self) -> bool:
        """Put the truncation backup back in place of the working file."""

        if not self.full_path.exists():
            return False
        os.replace(self.full_path, self.path)
        logger.info("Restored full pending queue from %s", self.full_path)
        return True

    def consume(self, processed_ids: set[str]) -> PendingQueue:
        """Drop processed bookmarks from the authoritative queue and persist the rest.

        The truncation backup is authoritative when present; it is deleted only
        after the remainder has been written.
        """

        source_path = self.full_path if self.full_path.exists() else self.path
        source = self._load_from(source_path)
        remaining = source.without(processed_ids)
        self.save(remaining)
        if source_path == self.full_path:
            self.full_path.unlink(missing_ok=True)
        logger.info(
            "Cleaned up %d processed bookmarks, %d remaining",
            len(processed_ids),
            remaining.count,
        )
        return remaining

    def _load_from(self, path: Path) -> PendingQueue:
        if not path.exists():
            return PendingQueue()
        try:
            return PendingQueue.from_payload(load_json(path))
        except (OSError, ValueError, TypeError) as error:
            logger.warning("Pending file %s is unreadable, treating as empty: %s", path, error)
            return PendingQueue()

