from __future__ import annotations

import json
from pathlib import Path

import allure
from conftest import make_bookmarks, read_pending_ids, write_pending

from bookmark_hoard.pending import PendingStore

pytestmark = [
    allure.epic("Scheduled Job"),
    allure.feature("Pending Queue"),
]


def test_missing_file_loads_as_empty_queue(tmp_path: Path) -> None:
    queue = PendingStore(tmp_path / "pending.json").load()

    assert queue.count == 0
    assert queue.bookmarks == []


def test_corrupt_file_loads_as_empty_queue(tmp_path: Path, caplog) -> None:
    path = tmp_path / "pending.json"
    path.write_text("{ truncated")

    assert PendingStore(path).load().count == 0
    assert "unreadable" in caplog.text


def test_entries_expose_typed_view_and_keep_unknown_fields(tmp_path: Path) -> None:
    path = tmp_path / "pending.json"
    write_pending(path, make_bookmarks(2))
    store = PendingStore(path)

    queue = store.load()
    entry = queue.entries()[0]
    assert entry.id == "1001"
    assert entry.author == "user1"
    assert entry.url == "https://x.com/user1/status/1001"

    store.save(queue)
    saved = json.loads(path.read_text())
    assert saved["count"] == 2
    assert saved["generatedAt"] == "2026-01-05T10:00:00.000Z"
    assert saved["bookmarks"][0]["extra"] == {"kept": 1}


def test_truncate_keeps_verbatim_superset_in_backup(tmp_path: Path) -> None:
    path = tmp_path / "pending.json"
    write_pending(path, make_bookmarks(10))
    original = path.read_bytes()
    store = PendingStore(path)

    batch = store.truncate(4)

    assert batch is not None
    assert batch.count == 4
    assert store.full_path.read_bytes() == original
    assert read_pending_ids(path) == ["1001", "1002", "1003", "1004"]
    assert json.loads(path.read_text())["count"] == 4


def test_truncate_is_noop_when_queue_fits(tmp_path: Path) -> None:
    path = tmp_path / "pending.json"
    write_pending(path, make_bookmarks(3))
    store = PendingStore(path)

    assert store.truncate(5) is None
    assert store.truncate(None) is None
    assert not store.has_truncation_backup()


def test_restore_superset_puts_backup_back(tmp_path: Path) -> None:
    path = tmp_path / "pending.json"
    write_pending(path, make_bookmarks(10))
    original = path.read_bytes()
    store = PendingStore(path)
    store.truncate(4)

    assert store.restore_superset() is True

    assert path.read_bytes() == original
    assert not store.has_truncation_backup()
    assert store.restore_superset() is False


def test_consume_removes_processed_ids_from_superset(tmp_path: Path) -> None:
    path = tmp_path / "pending.json"
    write_pending(path, make_bookmarks(10))
    store = PendingStore(path)
    batch = store.truncate(4)

    remaining = store.consume(set(batch.ids()))

    assert remaining.count == 6
    assert read_pending_ids(path) == [str(1000 + index) for index in range(5, 11)]
    assert not store.has_truncation_backup()


def test_consume_without_backup_uses_working_file(tmp_path: Path) -> None:
    path = tmp_path / "pending.json"
    write_pending(path, make_bookmarks(3))
    store = PendingStore(path)

    remaining = store.consume({"1001", "1003"})

    assert remaining.count == 1
    assert read_pending_ids(path) == ["1002"]


def test_consume_never_drops_bookmarks_without_id(tmp_path: Path) -> None:
    path = tmp_path / "pending.json"
    bookmarks = make_bookmarks(3)
    del bookmarks[1]["id"]
    write_pending(path, bookmarks)
    store = PendingStore(path)

    remaining = store.consume({"", "1001", "1003"})

    assert remaining.count == 1
    kept = json.loads(path.read_text("utf-8"))["bookmarks"]
    assert kept == [bookmarks[1]]
