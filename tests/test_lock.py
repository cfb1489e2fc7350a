from __future__ import annotations

import json
from pathlib import Path

import allure

from bookmark_hoard.lock import RunLock

pytestmark = [
    allure.epic("Scheduled Job"),
    allure.feature("Concurrency Guard"),
]

NOW = 1_800_000_000.0


def _write_marker(path: Path, *, pid: int, age_seconds: float) -> None:
    path.write_text(json.dumps({"pid": pid, "timestamp": int((NOW - age_seconds) * 1000)}))


def _lock(path: Path, *, alive: set[int], pid: int = 100) -> RunLock:
    return RunLock(path, pid=pid, clock=lambda: NOW, is_alive=lambda candidate: candidate in alive)


def test_acquire_creates_marker_with_pid_and_millisecond_timestamp(tmp_path: Path) -> None:
    path = tmp_path / "run.lock"
    lock = _lock(path, alive={100})

    assert lock.acquire() is True

    payload = json.loads(path.read_text())
    assert payload == {"pid": 100, "timestamp": int(NOW * 1000)}


def test_live_fresh_lock_blocks_without_touching_marker(tmp_path: Path) -> None:
    path = tmp_path / "run.lock"
    _write_marker(path, pid=42, age_seconds=60)
    before = path.read_bytes()
    before_mtime = path.stat().st_mtime_ns

    assert _lock(path, alive={42}).acquire() is False

    assert path.read_bytes() == before
    assert path.stat().st_mtime_ns == before_mtime


def test_dead_owner_is_reclaimed(tmp_path: Path, caplog) -> None:
    path = tmp_path / "run.lock"
    _write_marker(path, pid=42, age_seconds=5)

    assert _lock(path, alive=set()).acquire() is True

    assert json.loads(path.read_text())["pid"] == 100
    assert "no longer running" in caplog.text


def test_expired_lock_is_reclaimed_even_if_owner_alive(tmp_path: Path, caplog) -> None:
    path = tmp_path / "run.lock"
    _write_marker(path, pid=42, age_seconds=21 * 60)

    assert _lock(path, alive={42}).acquire() is True

    assert json.loads(path.read_text())["pid"] == 100
    assert "Stale lock" in caplog.text


def test_custom_staleness_threshold(tmp_path: Path) -> None:
    path = tmp_path / "run.lock"
    _write_marker(path, pid=42, age_seconds=90)
    lock = RunLock(
        path,
        stale_after_seconds=60,
        pid=100,
        clock=lambda: NOW,
        is_alive=lambda _pid: True,
    )

    assert lock.acquire() is True


def test_unreadable_marker_is_reclaimed(tmp_path: Path) -> None:
    path = tmp_path / "run.lock"
    path.write_text("{not json")

    assert _lock(path, alive=set()).acquire() is True
    assert json.loads(path.read_text())["pid"] == 100


def test_release_only_deletes_own_marker(tmp_path: Path) -> None:
    path = tmp_path / "run.lock"
    _write_marker(path, pid=42, age_seconds=1)

    _lock(path, alive={42}, pid=100).release()
    assert path.exists()

    _lock(path, alive={42}, pid=42).release()
    assert not path.exists()


def test_release_without_marker_is_noop(tmp_path: Path) -> None:
    _lock(tmp_path / "missing.lock", alive=set()).release()


def test_second_acquire_in_same_process_is_refused(tmp_path: Path) -> None:
    path = tmp_path / "run.lock"
    first = _lock(path, alive={100})
    second = _lock(path, alive={100})

    assert first.acquire() is True
    assert second.acquire() is False
    first.release()
    assert second.acquire() is True
