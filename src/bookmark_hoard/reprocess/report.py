"""Human-readable rendering of the reprocess state."""

from __future__ import annotations

from bookmark_hoard.reprocess.models import ReprocessState, ReprocessStatus


def format_reprocess_status(state: ReprocessState, *, max_retries: int) -> list[str]:
    """Render summary counts, notable entries and a next-step hint."""

    stats = state.recompute_stats()
    lines = [
        "Reprocess status",
        f"Last run: {state.last_run or 'never'}",
        "",
        "Summary:",
        f"  completed:   {stats.completed}",
        f"  failed:      {stats.failed}",
        f"  pending:     {stats.pending}",
        f"  in progress: {stats.in_progress}",
    ]
    if stats.skipped:
        lines.append(f"  skipped:     {stats.skipped}")
    if stats.removed:
        lines.append(f"  removed:     {stats.removed}")
    lines.append(f"  total:       {stats.total}")

    in_progress = state.by_status(ReprocessStatus.IN_PROGRESS)
    if in_progress:
        lines.extend(["", "In progress (interrupted?):"])
        for entry in in_progress:
            lines.append(f"  - @{entry.author}: {_short(entry.url, 60)}")
            lines.append(f"    started: {entry.started_at or 'unknown'}")

    failed = state.by_status(ReprocessStatus.FAILED)
    if failed:
        lines.extend(["", "Failed:"])
        for entry in failed[:5]:
            lines.append(f"  - @{entry.author}: {_short(entry.url, 50)}")
            lines.append(
                f"    {entry.error or 'Unknown error'} ({entry.attempts or 1} attempts)",
            )
        _append_overflow(lines, len(failed), 5)

    pending = state.by_status(ReprocessStatus.PENDING)
    if pending:
        lines.extend(["", "Pending:"])
        for entry in pending[:5]:
            lines.append(f"  - @{entry.author}: {_short(entry.url, 60)}")
        _append_overflow(lines, len(pending), 5)

    skipped = state.by_status(ReprocessStatus.SKIPPED)
    if skipped:
        lines.extend(["", f"Skipped (max {max_retries} attempts):"])
        for entry in skipped[:3]:
            lines.append(f"  - @{entry.author}: {_short(entry.url, 60)}")
        _append_overflow(lines, len(skipped), 3)

    lines.append("")
    if stats.pending or stats.failed or stats.in_progress:
        lines.append("Run 'bookmark-hoard reprocess --limit 5' to continue processing.")
    elif stats.total == 0:
        lines.append("No entries found needing knowledge files.")
    else:
        lines.append("All entries processed.")
    return lines


def _short(url: str, width: int) -> str:
    return url if len(url) <= width else f"{url[:width]}..."


def _append_overflow(lines: list[str], total: int, shown: int) -> None:
    if total > shown:
        lines.append(f"  ... and {total - shown} more")
