"""Boundary to the bookmark fetcher that fills the pending queue."""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from bookmark_hoard.pending import PendingStore

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 300
_OUTPUT_TAIL_CHARS = 500


class FetchError(RuntimeError):
    """Raised when the configured fetcher fails."""


@dataclass(slots=True)
class FetchOutcome:
    """Pending queue size before and after one fetch."""

    before: int
    after: int
    ran: bool = True

    @property
    def fetched(self) -> int:
        return max(0, self.after - self.before)


class BookmarkFetcher(Protocol):
    def fetch(self) -> FetchOutcome:
        """Merge newly bookmarked items into the pending queue."""


class CommandBookmarkFetcher:
    """Runs an external command that merges new bookmarks into the pending file.

    ``{pending_file}`` in the command is replaced with the quoted pending
    path. Without a command the fetcher is a no-op.
    """

    def __init__(
        self,
        command: str | None,
        pending: PendingStore,
        *,
        cwd: Path | None = None,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.command = command
        self.pending = pending
        self.cwd = cwd
        self.timeout_seconds = timeout_seconds

    def fetch(self) -> FetchOutcome:
        before = self.pending.load().count
        if not self.command or not self.command.strip():
            logger.info("No fetch command configured, using existing pending queue")
            return FetchOutcome(before=before, after=before, ran=False)

        argv = self._build_argv(self.command)
        logger.info("Fetching bookmarks with %s", argv[0])
        try:
            completed = subprocess.run(  # noqa: S603
                argv,
                cwd=self.cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except FileNotFoundError as error:
            raise FetchError(f"Fetch command not found: {argv[0]}") from error
        except subprocess.TimeoutExpired as error:
            raise FetchError(f"Fetch command timed out after {self.timeout_seconds}s") from error
        except OSError as error:
            raise FetchError(f"Fetch command failed to start: {error}") from error

        if completed.returncode != 0:
            detail = (completed.stderr or completed.stdout or "").strip()[-_OUTPUT_TAIL_CHARS:]
            raise FetchError(
                f"Fetch command exited with code {completed.returncode}: {detail or 'no output'}",
            )

        after = self.pending.load().count
        outcome = FetchOutcome(before=before, after=after)
        logger.info("Fetched %d new bookmark(s), %d pending", outcome.fetched, after)
        return outcome

    def _build_argv(self, command: str) -> list[str]:
        try:
            rendered = command.strip().format(pending_file=shlex.quote(str(self.pending.path)))
        except (KeyError, IndexError, ValueError) as error:
            raise FetchError(f"Unsupported fetch command placeholder: {error}") from error
        argv = shlex.split(rendered)
        if not argv:
            raise FetchError("Fetch command rendered empty command.")
        return argv
