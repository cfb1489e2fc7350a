"""Local deterministic agent for integration tests and dry runs.

Accepts the Claude and OpenCode command lines, files every bookmark of the
batch into the archive (or writes a knowledge file per reprocess entry) and
reports progress in Claude stream-json, or OpenCode JSON with ``--format``.
"""

from __future__ import annotations

import argparse
import json
import os
import re
import sys
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from bookmark_hoard.agent.base import ARCHIVE_FILE_ENV, BATCH_FILE_ENV


def main(argv: list[str] | None = None) -> int:
    """Process the batch named in the environment and stream events to stdout."""

    parser = argparse.ArgumentParser()
    parser.add_argument("words", nargs="*")
    parser.add_argument("--print", action="store_true")
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("--output-format", default="stream-json")
    parser.add_argument("--format", default=None)
    parser.add_argument("--model", default="echo")
    parser.add_argument("--allowedTools", default="")
    parser.add_argument("--sleep", type=float, default=0.0)
    parser.add_argument("--exit-code", type=int, default=0)
    args, _unknown = parser.parse_known_args(argv)

    emitter = _Emitter(opencode=args.format == "json")
    print("echo agent starting", flush=True)

    batch_path = Path(os.environ[BATCH_FILE_ENV])
    archive_path = Path(os.environ[ARCHIVE_FILE_ENV])
    emitter.file_event("Read", str(batch_path))

    if args.sleep > 0:
        time.sleep(args.sleep)
    if args.exit_code != 0:
        print(f"echo agent failing with exit code {args.exit_code}", file=sys.stderr, flush=True)
        return args.exit_code

    payload = json.loads(batch_path.read_text("utf-8"))
    emitter.task_started("task-1", "file batch")
    if isinstance(payload.get("entries"), list):
        count = _write_knowledge_files(payload["entries"], Path.cwd() / "knowledge", emitter)
    else:
        count = _file_bookmarks(payload.get("bookmarks", []), archive_path, emitter)
    emitter.task_finished(
        "task-1",
        f"Processed {count} bookmark(s) with haiku. usage: input 120 output 40",
    )
    emitter.result(f"Processed {count} bookmark(s)")
    return 0


def _file_bookmarks(
    bookmarks: list[dict[str, Any]],
    archive_path: Path,
    emitter: _Emitter,
) -> int:
    existing = archive_path.read_text("utf-8") if archive_path.exists() else ""
    today = datetime.now(tz=UTC).strftime("%A, %B %d, %Y")
    blocks = [existing.rstrip("\n")] if existing.strip() else [f"# {today}"]
    for bookmark in bookmarks:
        author = str(bookmark.get("author") or "unknown")
        text = str(bookmark.get("text") or "").replace("\n", " ")
        lines = [f"## @{author} - {text[:50]}", f"> {text}", ""]
        lines.append(f"- **Tweet:** {bookmark.get('tweetUrl') or bookmark.get('url') or ''}")
        link = bookmark.get("link")
        if link:
            lines.append(f"- **Link:** {link}")
        note = f"knowledge/articles/{bookmark.get('id')}.md"
        lines.append(f"- **Filed:** [{bookmark.get('id')}]({note})")
        blocks.append("\n".join(lines))
        emitter.file_event("Edit", str(archive_path))
    archive_path.write_text("\n\n".join(blocks) + "\n", "utf-8")
    return len(bookmarks)


def _write_knowledge_files(
    entries: list[dict[str, Any]],
    knowledge_dir: Path,
    emitter: _Emitter,
) -> int:
    for entry in entries:
        url = str(entry.get("url") or "")
        subdir = "tools" if entry.get("type") == "code-repository" else "articles"
        slug = re.sub(r"[^a-zA-Z0-9-]", "", url.rstrip("/").rsplit("/", 1)[-1]) or "untitled"
        path = knowledge_dir / subdir / f"{slug.lower()}.md"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            f'---\ntitle: "{slug}"\nsource: "{url}"\nvia: "@{entry.get("author")}"\n---\n',
            "utf-8",
        )
        emitter.file_event("Write", str(path))
    return len(entries)


class _Emitter:
    def __init__(self, *, opencode: bool) -> None:
        self.opencode = opencode

    def file_event(self, tool: str, path: str) -> None:
        if self.opencode:
            self._emit_tool(tool.lower(), {"filePath": path}, "completed")
            return
        self._emit(
            {
                "type": "assistant",
                "message": {
                    "content": [
                        {"type": "tool_use", "name": tool, "input": {"file_path": path}},
                    ],
                },
            },
        )

    def task_started(self, task_id: str, description: str) -> None:
        if self.opencode:
            self._emit_tool("task", {"description": description}, "running", call_id=task_id)
            return
        self._emit(
            {
                "type": "assistant",
                "message": {
                    "content": [
                        {
                            "type": "tool_use",
                            "id": task_id,
                            "name": "Task",
                            "input": {"description": description},
                        },
                    ],
                },
            },
        )

    def task_finished(self, task_id: str, content: str) -> None:
        if self.opencode:
            self._emit_tool("task", {"description": content}, "completed", call_id=task_id)
            return
        self._emit(
            {
                "type": "user",
                "message": {
                    "content": [
                        {"type": "tool_result", "tool_use_id": task_id, "content": content},
                    ],
                },
            },
        )

    def result(self, summary: str) -> None:
        if self.opencode:
            self._emit(
                {
                    "type": "step_finish",
                    "part": {
                        "reason": "stop",
                        "tokens": {
                            "input": 1000,
                            "output": 200,
                            "reasoning": 0,
                            "cache": {"read": 50, "write": 10},
                        },
                    },
                },
            )
            return
        self._emit(
            {
                "type": "result",
                "subtype": "success",
                "is_error": False,
                "result": summary,
                "usage": {
                    "input_tokens": 1000,
                    "output_tokens": 200,
                    "cache_read_input_tokens": 50,
                    "cache_creation_input_tokens": 10,
                },
            },
        )

    def _emit_tool(
        self,
        tool: str,
        tool_input: dict[str, Any],
        status: str,
        *,
        call_id: str | None = None,
    ) -> None:
        part: dict[str, Any] = {
            "type": "tool",
            "tool": tool,
            "state": {"status": status, "input": tool_input},
        }
        if call_id:
            part["callID"] = call_id
        self._emit({"type": "tool_use", "part": part})

    def _emit(self, payload: dict[str, Any]) -> None:
        sys.stdout.write(json.dumps(payload) + "\n")
        sys.stdout.flush()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
