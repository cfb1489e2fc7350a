"""Filesystem marker lock that keeps scheduled runs from overlapping."""

from __future__ import annotations

import json
import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER_SECONDS = 20 * 60


@dataclass(slots=True, frozen=True)
class LockRecord:
    """Owner of the marker file and acquisition time in epoch milliseconds."""

    pid: int
    timestamp: int

    def age_seconds(self, now_ms: int) -> float:
        return max(0, now_ms - self.timestamp) / 1000.0


def pid_alive(pid: int) -> bool:
    """Return True if a process with this pid exists."""

    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


class RunLock:
    """Cooperative single-instance guard backed by one marker file.

    A held lock is honored only while its owner is alive and younger than
    ``stale_after_seconds``. Anything else is reclaimed with a warning, so a
    hung run cannot block the schedule forever.
    """

    def __init__(
        self,
        path: Path,
        *,
        stale_after_seconds: int = DEFAULT_STALE_AFTER_SECONDS,
        pid: int | None = None,
        clock: Callable[[], float] = time.time,
        is_alive: Callable[[int], bool] = pid_alive,
    ) -> None:
        self.path = path
        self.stale_after_seconds = stale_after_seconds
        self.pid = os.getpid() if pid is None else pid
        self._clock = clock
        self._is_alive = is_alive

    def read(self) -> LockRecord | None:
        """Return the current marker, or None if missing or unreadable."""

        try:
            raw = json.loads(self.path.read_text("utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError):
            return None
        if not isinstance(raw, dict):
            return None
        pid = raw.get("pid")
        timestamp = raw.get("timestamp")
        if not isinstance(pid, int) or not isinstance(timestamp, (int, float)):
            return None
        return LockRecord(pid=pid, timestamp=int(timestamp))

    def acquire(self) -> bool:
        """Take the lock, or return False if a live, fresh owner holds it."""

        if self.path.exists():
            record = self.read()
            now_ms = self._now_ms()
            if record is None:
                logger.warning("Removing unreadable lock file %s", self.path)
            elif self._is_alive(record.pid):
                age = record.age_seconds(now_ms)
                if age < self.stale_after_seconds:
                    logger.info("Previous run still in progress (pid %d). Skipping.", record.pid)
                    return False
                logger.warning(
                    "Stale lock found (pid %d, %d min old). Reclaiming.",
                    record.pid,
                    round(age / 60),
                )
            else:
                logger.warning("Removing stale lock (pid %d no longer running)", record.pid)
            self.path.unlink(missing_ok=True)

        return self._create()

    def release(self) -> None:
        """Delete the marker if this process owns it."""

        record = self.read()
        if record is None or record.pid != self.pid:
            return
        try:
            self.path.unlink()
        except FileNotFoundError:
            return

    def _create(self) -> bool:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            logger.info("Lock %s was taken by another run. Skipping.", self.path)
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump({"pid": self.pid, "timestamp": self._now_ms()}, handle)
        return True

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)
