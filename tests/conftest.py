"""Shared test fixtures."""

from __future__ import annotations

import json
import os
import shlex
import sys
from pathlib import Path

import pytest

from bookmark_hoard.config import (
    AgentSettings,
    LockSettings,
    NotifySettings,
    PathSettings,
    Settings,
)
from bookmark_hoard.notify import Notification

ECHO_AGENT_COMMAND = f"{shlex.quote(sys.executable)} -m bookmark_hoard.agent.echo_agent"


class RecordingNotifier:
    """Collects notifications instead of posting them."""

    def __init__(self) -> None:
        self.sent: list[Notification] = []

    def notify(self, notification: Notification) -> bool:
        self.sent.append(notification)
        return True


def make_bookmarks(count: int, *, start: int = 1) -> list[dict[str, object]]:
    return [
        {
            "id": str(1000 + index),
            "author": f"user{index}",
            "text": f"Interesting thread number {index}",
            "tweetUrl": f"https://x.com/user{index}/status/{1000 + index}",
            "addedAt": "2026-01-05T10:00:00.000Z",
            "extra": {"kept": index},
        }
        for index in range(start, start + count)
    ]


def write_pending(path: Path, bookmarks: list[dict[str, object]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(
            {
                "generatedAt": "2026-01-05T10:00:00.000Z",
                "count": len(bookmarks),
                "bookmarks": bookmarks,
            },
            indent=2,
        ),
        "utf-8",
    )


def read_pending_ids(path: Path) -> list[str]:
    payload = json.loads(path.read_text("utf-8"))
    return [str(item["id"]) for item in payload["bookmarks"]]


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path: Path):
    """Keep real configuration out of tests."""

    for name in list(os.environ):
        if name.startswith("BOOKMARK_HOARD_") or name == "ANTHROPIC_API_KEY":
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        paths=PathSettings(project_root=tmp_path),
        agent=AgentSettings(command=ECHO_AGENT_COMMAND, timeout_seconds=30.0),
        lock=LockSettings(path=tmp_path / "run.lock"),
        notify=NotifySettings(),
    )


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()
