"""Timestamped copies of the archive taken before each agent run."""

from __future__ import annotations

import logging
import shutil
from datetime import datetime
from pathlib import Path

from bookmark_hoard.archive.scanner import count_entries
from bookmark_hoard.storage import utc_now

logger = logging.getLogger(__name__)


def backup_archive(
    archive_path: Path,
    backup_dir: Path,
    *,
    now: datetime | None = None,
) -> Path | None:
    """Copy the archive into ``backup_dir``; skip missing or blank archives."""

    if not archive_path.exists():
        return None
    content = archive_path.read_text("utf-8")
    if not content.strip():
        return None

    backup_dir.mkdir(parents=True, exist_ok=True)
    stamp = (now or utc_now()).strftime("%Y-%m-%dT%H-%M-%S")
    backup_path = backup_dir / f"{archive_path.stem}-{stamp}{archive_path.suffix}"
    suffix = 1
    while backup_path.exists():
        backup_path = backup_dir / f"{archive_path.stem}-{stamp}-{suffix}{archive_path.suffix}"
        suffix += 1
    shutil.copyfile(archive_path, backup_path)
    logger.info("Created archive backup %s (%d entries)", backup_path, count_entries(content))
    return backup_path
