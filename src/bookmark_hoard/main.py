"""CLI entrypoint for bookmark-hoard."""

import logging
from collections.abc import Callable
from typing import TypeVar

import rich_click as click

from bookmark_hoard import __version__
from bookmark_hoard.config import ConfigError
from bookmark_hoard.controllers import (
    BookmarkCliController,
    ReprocessCommand,
    RunCommand,
)

click.rich_click.USE_MARKDOWN = True
CONTROLLER = BookmarkCliController()
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
T = TypeVar("T")


@click.group()
@click.version_option(version=__version__, prog_name="bookmark-hoard")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity.",
)
def bookmark_hoard(log_level: str) -> None:
    """Archive bookmarks into a markdown knowledge base with an external AI agent."""

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@bookmark_hoard.command("run")
@click.option(
    "--limit",
    type=click.IntRange(min=1),
    default=None,
    help="Process at most this many pending bookmarks; the rest stay queued.",
)
@click.option(
    "--force-fetch",
    is_flag=True,
    default=False,
    help="Fetch new bookmarks even if the pending queue is not empty.",
)
@click.option(
    "--track-tokens",
    is_flag=True,
    default=False,
    help="Print token usage and estimated cost after the agent run.",
)
def run(limit: int | None, force_fetch: bool, track_tokens: bool) -> None:
    """Fetch bookmarks if needed and hand the pending batch to the agent."""

    result = _guarded(
        lambda: CONTROLLER.run(
            RunCommand(limit=limit, force_fetch=force_fetch, track_tokens=track_tokens),
            click.echo,
        ),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Bookmark job failed.")


@bookmark_hoard.command("reprocess")
@click.option(
    "--limit",
    type=click.IntRange(min=1),
    default=None,
    help="Reprocess at most this many entries.",
)
@click.option(
    "--force",
    is_flag=True,
    default=False,
    help="Include completed and skipped entries (everything not removed).",
)
@click.option(
    "--track-tokens",
    is_flag=True,
    default=False,
    help="Print token usage and estimated cost after the agent run.",
)
def reprocess(limit: int | None, force: bool, track_tokens: bool) -> None:
    """Create missing knowledge files for links already in the archive."""

    result = _guarded(
        lambda: CONTROLLER.reprocess(
            ReprocessCommand(limit=limit, force=force, track_tokens=track_tokens),
            click.echo,
        ),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Reprocess failed.")


@bookmark_hoard.command("status")
def status() -> None:
    """Show pending queue, lock and reprocess state."""

    _emit_lines(_guarded(CONTROLLER.status))


@bookmark_hoard.command("pending")
def pending() -> None:
    """List bookmarks waiting for the agent."""

    _emit_lines(_guarded(CONTROLLER.pending))


def _guarded(action: Callable[[], T]) -> T:
    try:
        return action()
    except ConfigError as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    bookmark_hoard()
