"""Backend interface and shared launch helpers for external agent CLIs."""

from __future__ import annotations

import os
import shutil
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from bookmark_hoard.agent.events import AgentEvent, TelemetrySnapshot

BATCH_FILE_ENV = "BOOKMARK_HOARD_BATCH_FILE"
ARCHIVE_FILE_ENV = "BOOKMARK_HOARD_ARCHIVE_FILE"
NESTED_SESSION_VARS = ("CLAUDECODE", "CLAUDE_CODE_ENTRYPOINT")
INSTRUCTIONS_PLACEHOLDER = "{instructions}"


@dataclass(slots=True)
class AgentWork:
    """What the agent is asked to do in one invocation.

    ``task`` may contain ``{instructions}``; backends substitute the path of
    their own copy of the instruction document.
    """

    task: str
    batch_file: Path
    archive_file: Path
    project_root: Path
    count: int
    instruction_name: str = "process-bookmarks"


@dataclass(slots=True)
class AgentInvocation:
    """Fully resolved child process launch."""

    argv: list[str]
    cwd: Path
    env: dict[str, str]


class FailureKind(str, Enum):
    TIMEOUT = "timeout"
    NON_ZERO_EXIT = "non_zero_exit"
    SPAWN_ERROR = "spawn_error"


@dataclass(slots=True)
class AgentResult:
    """Outcome of one agent invocation."""

    succeeded: bool
    exit_code: int | None
    elapsed_seconds: float
    telemetry: TelemetrySnapshot
    failure: FailureKind | None = None
    error: str | None = None
    stdout: str = ""
    stderr: str = ""

    @property
    def timed_out(self) -> bool:
        return self.failure == FailureKind.TIMEOUT


class AgentBackend(Protocol):
    """Capabilities the invocation channel needs from one agent CLI."""

    name: str
    model: str

    def resolve_binary(self) -> str:
        """Return the executable to launch."""

    def build_invocation(self, work: AgentWork, binary: str) -> AgentInvocation:
        """Return argv, working directory and environment for ``work``."""

    def parse_event(self, payload: dict[str, Any]) -> list[AgentEvent]:
        """Translate one decoded stream line into normalized events."""


@dataclass(slots=True)
class BinaryLocator:
    """Ordered probe of well-known install locations, then ``PATH``."""

    name: str
    extra_candidates: Sequence[Path] = field(default_factory=tuple)

    def candidates(self) -> list[Path]:
        home = Path.home()
        return [
            Path("/usr/local/bin") / self.name,
            Path("/opt/homebrew/bin") / self.name,
            *self.extra_candidates,
            home / ".local" / "bin" / self.name,
        ]

    def resolve(self) -> str:
        for candidate in self.candidates():
            if candidate.is_file() and os.access(candidate, os.X_OK):
                return str(candidate)
        return shutil.which(self.name) or self.name


def render_prompt(work: AgentWork, instructions_path: Path) -> str:
    return work.task.replace(INSTRUCTIONS_PLACEHOLDER, str(instructions_path))


def augmented_path(environ: Mapping[str, str]) -> str:
    """Prepend common Node/Bun install dirs so CLI shebangs resolve under cron."""

    home = Path.home()
    dirs = [
        "/usr/local/bin",
        "/opt/homebrew/bin",
        environ.get("NVM_BIN", ""),
        str(home / ".local" / "bin"),
        str(home / ".bun" / "bin"),
    ]
    current = environ.get("PATH", "")
    return os.pathsep.join([item for item in dirs if item] + ([current] if current else []))


def build_environment(
    work: AgentWork,
    *,
    api_key: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Child environment: PATH augmented, nested-session markers stripped."""

    source = os.environ if environ is None else environ
    env = {key: value for key, value in source.items() if key not in NESTED_SESSION_VARS}
    env["PATH"] = augmented_path(source)
    env[BATCH_FILE_ENV] = str(work.batch_file)
    env[ARCHIVE_FILE_ENV] = str(work.archive_file)
    key = api_key or source.get("ANTHROPIC_API_KEY")
    if key:
        env["ANTHROPIC_API_KEY"] = key
    return env


def command_prefix(command: Sequence[str] | None, binary: str) -> list[str]:
    """Explicit command override wins over the resolved binary."""

    return list(command) if command else [binary]
