from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner
from conftest import ECHO_AGENT_COMMAND, make_bookmarks, read_pending_ids, write_pending

from bookmark_hoard import __version__
from bookmark_hoard.main import bookmark_hoard

pytestmark = [
    allure.epic("Command Line"),
    allure.feature("Run, Reprocess, Inspection"),
]


@pytest.fixture()
def project(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.setenv("BOOKMARK_HOARD_PROJECT_ROOT", str(tmp_path))
    monkeypatch.setenv("BOOKMARK_HOARD_AGENT_COMMAND", ECHO_AGENT_COMMAND)
    monkeypatch.setenv("BOOKMARK_HOARD_LOCK_FILE", str(tmp_path / "run.lock"))
    return tmp_path


def test_version():
    assert __version__


def test_version_option():
    runner = CliRunner()
    result = runner.invoke(bookmark_hoard, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_run_processes_limited_batch(project: Path) -> None:
    pending_path = project / ".state" / "pending-bookmarks.json"
    write_pending(pending_path, make_bookmarks(5))

    result = CliRunner().invoke(bookmark_hoard, ["run", "--limit", "2", "--track-tokens"])

    assert result.exit_code == 0, result.output
    assert "Processed 2 bookmark(s)." in result.output
    assert "Remaining: 3" in result.output
    assert "subtask finished (1/1)" in result.output
    assert "Token usage (claude/sonnet):" in result.output
    assert read_pending_ids(pending_path) == ["1003", "1004", "1005"]


def test_run_with_empty_queue(project: Path) -> None:
    result = CliRunner().invoke(bookmark_hoard, ["run"])

    assert result.exit_code == 0, result.output
    assert "Nothing to do: no bookmarks to process." in result.output


def test_run_failure_exits_non_zero(project: Path, monkeypatch) -> None:
    monkeypatch.setenv("BOOKMARK_HOARD_AGENT_COMMAND", f"{ECHO_AGENT_COMMAND} --exit-code 4")
    pending_path = project / ".state" / "pending-bookmarks.json"
    write_pending(pending_path, make_bookmarks(2))

    result = CliRunner().invoke(bookmark_hoard, ["run"])

    assert result.exit_code == 1
    assert "Failed: Agent exited with code 4" in result.output
    assert "Bookmark job failed." in result.output
    assert read_pending_ids(pending_path) == ["1001", "1002"]


def test_run_rejects_non_positive_limit(project: Path) -> None:
    result = CliRunner().invoke(bookmark_hoard, ["run", "--limit", "0"])

    assert result.exit_code == 2


def test_reprocess_reports_created_files(project: Path) -> None:
    (project / "bookmarks.md").write_text(
        "# Monday\n\n## @alice - tool\n> https://github.com/alice/neat-tool\n",
        "utf-8",
    )

    result = CliRunner().invoke(bookmark_hoard, ["reprocess"])

    assert result.exit_code == 0, result.output
    assert "filed tools/neat-tool.md" in result.output
    assert "Processed 1 knowledge file(s)." in result.output
    state = json.loads((project / ".state" / "reprocess-state.json").read_text("utf-8"))
    assert state["stats"]["completed"] == 1


def test_status_and_pending_do_not_write_state(project: Path) -> None:
    write_pending(project / ".state" / "pending-bookmarks.json", make_bookmarks(2))
    (project / "bookmarks.md").write_text(
        "# Monday\n\n## @alice - tool\n> https://github.com/alice/neat-tool\n",
        "utf-8",
    )
    runner = CliRunner()

    status = runner.invoke(bookmark_hoard, ["status"])
    listing = runner.invoke(bookmark_hoard, ["pending"])

    assert status.exit_code == 0, status.output
    assert "Pending bookmarks: 2" in status.output
    assert "  pending:     1" in status.output
    assert not (project / ".state" / "reprocess-state.json").exists()
    assert listing.exit_code == 0, listing.output
    assert "2 pending bookmark(s):" in listing.output
    assert "1001  @user1  https://x.com/user1/status/1001" in listing.output


def test_pending_with_empty_queue(project: Path) -> None:
    result = CliRunner().invoke(bookmark_hoard, ["pending"])

    assert result.exit_code == 0
    assert "No pending bookmarks." in result.output


def test_invalid_configuration_is_reported(project: Path, monkeypatch) -> None:
    monkeypatch.setenv("BOOKMARK_HOARD_AGENT_PROVIDER", "gpt")

    result = CliRunner().invoke(bookmark_hoard, ["status"])

    assert result.exit_code == 1
    assert "Unsupported agent provider" in result.output
