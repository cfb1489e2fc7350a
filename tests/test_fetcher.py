from __future__ import annotations

import shlex
import sys
from pathlib import Path

import allure
import pytest
from conftest import make_bookmarks, write_pending

from bookmark_hoard.fetcher import CommandBookmarkFetcher, FetchError
from bookmark_hoard.pending import PendingStore

pytestmark = [
    allure.epic("Bookmark Job"),
    allure.feature("Fetcher Boundary"),
]

PYTHON = shlex.quote(sys.executable)

MERGE_SCRIPT = """
import json, sys
path = sys.argv[1]
with open(path, encoding="utf-8") as handle:
    payload = json.load(handle)
payload["bookmarks"].append({"id": "2001", "author": "new", "text": "fresh"})
with open(path, "w", encoding="utf-8") as handle:
    json.dump(payload, handle)
"""


@pytest.fixture()
def pending(tmp_path: Path) -> PendingStore:
    store = PendingStore(tmp_path / ".state" / "pending-bookmarks.json")
    write_pending(store.path, make_bookmarks(1))
    return store


def test_without_command_is_a_no_op(pending: PendingStore) -> None:
    outcome = CommandBookmarkFetcher(None, pending).fetch()

    assert outcome.ran is False
    assert outcome.before == outcome.after == 1
    assert outcome.fetched == 0


def test_command_merges_into_pending_file(pending: PendingStore, tmp_path: Path) -> None:
    script = tmp_path / "merge.py"
    script.write_text(MERGE_SCRIPT, "utf-8")

    outcome = CommandBookmarkFetcher(
        f"{PYTHON} {shlex.quote(str(script))} {{pending_file}}",
        pending,
        cwd=tmp_path,
    ).fetch()

    assert outcome.ran is True
    assert outcome.fetched == 1
    assert pending.load().ids() == ["1001", "2001"]


def test_non_zero_exit_raises_fetch_error(pending: PendingStore) -> None:
    command = f"{PYTHON} -c \"import sys; sys.stderr.write('rate limited'); sys.exit(3)\""

    with pytest.raises(FetchError, match="exited with code 3: rate limited"):
        CommandBookmarkFetcher(command, pending).fetch()


def test_missing_command_raises_fetch_error(pending: PendingStore, tmp_path: Path) -> None:
    with pytest.raises(FetchError, match="not found"):
        CommandBookmarkFetcher(str(tmp_path / "no-such-fetcher"), pending).fetch()


def test_timeout_raises_fetch_error(pending: PendingStore) -> None:
    command = f'{PYTHON} -c "import time; time.sleep(10)"'

    with pytest.raises(FetchError, match="timed out after 1s"):
        CommandBookmarkFetcher(command, pending, timeout_seconds=1).fetch()


def test_unknown_placeholder_is_rejected(pending: PendingStore) -> None:
    with pytest.raises(FetchError, match="Unsupported fetch command placeholder"):
        CommandBookmarkFetcher("fetch {archive}", pending).fetch()
