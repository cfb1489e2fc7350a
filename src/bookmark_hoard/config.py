"""Runtime configuration for the bookmark archiving job."""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

DEFAULT_CONFIG_FILENAME = "bookmark-hoard.config.json"
SUPPORTED_PROVIDERS = ("claude", "opencode")
SUPPORTED_WEBHOOK_TYPES = ("discord", "slack")


class ConfigError(ValueError):
    """Raised when settings are missing or invalid."""


@dataclass(slots=True)
class PathSettings:
    """Locations of the archive, the pending queue and generated knowledge files."""

    project_root: Path = Path(".")
    archive_file: Path = Path("bookmarks.md")
    pending_file: Path = Path(".state/pending-bookmarks.json")
    knowledge_dir: Path = Path("knowledge")

    def resolve(self, path: Path) -> Path:
        return path if path.is_absolute() else self.project_root / path

    @property
    def archive_path(self) -> Path:
        return self.resolve(self.archive_file)

    @property
    def pending_path(self) -> Path:
        return self.resolve(self.pending_file)

    @property
    def knowledge_path(self) -> Path:
        return self.resolve(self.knowledge_dir)

    @property
    def state_dir(self) -> Path:
        return self.pending_path.parent

    @property
    def reprocess_state_path(self) -> Path:
        return self.state_dir / "reprocess-state.json"

    @property
    def reprocess_batch_path(self) -> Path:
        return self.state_dir / "reprocess-bookmarks.json"

    @property
    def backup_dir(self) -> Path:
        return self.state_dir / "backups"


@dataclass(slots=True)
class AgentSettings:
    """External agent invocation settings."""

    provider: str = "claude"
    auto_invoke: bool = True
    timeout_seconds: float = 900.0
    claude_model: str = "sonnet"
    opencode_model: str = "openrouter/minimax/minimax-m2.1"
    allowed_tools: str = "Read,Write,Edit,Glob,Grep,Bash,Task,TodoWrite"
    api_key: str | None = None
    command: str | None = None

    @property
    def model(self) -> str:
        return self.opencode_model if self.provider == "opencode" else self.claude_model


@dataclass(slots=True)
class LockSettings:
    """Single-instance guard settings."""

    path: Path = field(default_factory=lambda: Path(tempfile.gettempdir()) / "bookmark-hoard.lock")
    stale_after_seconds: int = 1_200


@dataclass(slots=True)
class ReprocessSettings:
    """Knowledge-file reprocessing settings."""

    max_retries: int = 5


@dataclass(slots=True)
class NotifySettings:
    """Optional webhook notification settings."""

    webhook_url: str | None = None
    webhook_type: str = "discord"
    timeout_seconds: float = 10.0


@dataclass(slots=True)
class FetchSettings:
    """Bookmark fetcher collaborator settings."""

    command: str | None = None
    timeout_seconds: int = 300


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    paths: PathSettings = field(default_factory=PathSettings)
    agent: AgentSettings = field(default_factory=AgentSettings)
    lock: LockSettings = field(default_factory=LockSettings)
    reprocess: ReprocessSettings = field(default_factory=ReprocessSettings)
    notify: NotifySettings = field(default_factory=NotifySettings)
    fetch: FetchSettings = field(default_factory=FetchSettings)

    @classmethod
    def from_env(cls, config_path: Path | None = None) -> Settings:
        """Load settings from an optional JSON config file, then environment overrides."""

        file_values = _load_config_file(config_path)
        source = _SettingSource(file_values)
        defaults = cls()

        project_root = Path(
            source.get("BOOKMARK_HOARD_PROJECT_ROOT", "projectRoot", str(Path.cwd())),
        )
        return cls(
            paths=PathSettings(
                project_root=project_root,
                archive_file=Path(
                    source.get("BOOKMARK_HOARD_ARCHIVE_FILE", "archiveFile", "bookmarks.md"),
                ),
                pending_file=Path(
                    source.get(
                        "BOOKMARK_HOARD_PENDING_FILE",
                        "pendingFile",
                        ".state/pending-bookmarks.json",
                    ),
                ),
                knowledge_dir=Path(
                    source.get("BOOKMARK_HOARD_KNOWLEDGE_DIR", "knowledgeDir", "knowledge"),
                ),
            ),
            agent=AgentSettings(
                provider=source.get("BOOKMARK_HOARD_AGENT_PROVIDER", "aiProvider", "claude")
                .strip()
                .lower(),
                auto_invoke=source.get_bool(
                    "BOOKMARK_HOARD_AUTO_INVOKE",
                    "autoInvokeClaude",
                    default=True,
                ),
                timeout_seconds=source.get_float(
                    "BOOKMARK_HOARD_AGENT_TIMEOUT_SECONDS",
                    "agentTimeoutSeconds",
                    default=defaults.agent.timeout_seconds,
                ),
                claude_model=source.get("BOOKMARK_HOARD_CLAUDE_MODEL", "claudeModel", "sonnet"),
                opencode_model=source.get(
                    "BOOKMARK_HOARD_OPENCODE_MODEL",
                    "opencodeModel",
                    defaults.agent.opencode_model,
                ),
                allowed_tools=source.get(
                    "BOOKMARK_HOARD_ALLOWED_TOOLS",
                    "allowedTools",
                    defaults.agent.allowed_tools,
                ),
                api_key=source.get_optional("ANTHROPIC_API_KEY", "anthropicApiKey"),
                command=source.get_optional("BOOKMARK_HOARD_AGENT_COMMAND", "agentCommand"),
            ),
            lock=LockSettings(
                path=Path(
                    source.get("BOOKMARK_HOARD_LOCK_FILE", "lockFile", str(defaults.lock.path)),
                ),
                stale_after_seconds=source.get_int(
                    "BOOKMARK_HOARD_LOCK_STALE_AFTER_SECONDS",
                    "lockStaleAfterSeconds",
                    default=defaults.lock.stale_after_seconds,
                ),
            ),
            reprocess=ReprocessSettings(
                max_retries=source.get_int(
                    "BOOKMARK_HOARD_REPROCESS_MAX_RETRIES",
                    "reprocessMaxRetries",
                    default=defaults.reprocess.max_retries,
                ),
            ),
            notify=NotifySettings(
                webhook_url=source.get_optional("BOOKMARK_HOARD_WEBHOOK_URL", "webhookUrl"),
                webhook_type=source.get("BOOKMARK_HOARD_WEBHOOK_TYPE", "webhookType", "discord")
                .strip()
                .lower(),
                timeout_seconds=source.get_float(
                    "BOOKMARK_HOARD_WEBHOOK_TIMEOUT_SECONDS",
                    "webhookTimeoutSeconds",
                    default=defaults.notify.timeout_seconds,
                ),
            ),
            fetch=FetchSettings(
                command=source.get_optional("BOOKMARK_HOARD_FETCH_COMMAND", "fetchCommand"),
                timeout_seconds=source.get_int(
                    "BOOKMARK_HOARD_FETCH_TIMEOUT_SECONDS",
                    "fetchTimeoutSeconds",
                    default=defaults.fetch.timeout_seconds,
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if values are out of range."""

        if self.agent.provider not in SUPPORTED_PROVIDERS:
            raise ConfigError(
                f"Unsupported agent provider: {self.agent.provider!r}. "
                f"Expected one of: {', '.join(SUPPORTED_PROVIDERS)}.",
            )
        if self.agent.timeout_seconds <= 0:
            raise ConfigError("BOOKMARK_HOARD_AGENT_TIMEOUT_SECONDS must be > 0.")
        if self.lock.stale_after_seconds <= 0:
            raise ConfigError("BOOKMARK_HOARD_LOCK_STALE_AFTER_SECONDS must be > 0.")
        if self.reprocess.max_retries <= 0:
            raise ConfigError("BOOKMARK_HOARD_REPROCESS_MAX_RETRIES must be > 0.")
        if self.fetch.timeout_seconds <= 0:
            raise ConfigError("BOOKMARK_HOARD_FETCH_TIMEOUT_SECONDS must be > 0.")
        if self.notify.webhook_type not in SUPPORTED_WEBHOOK_TYPES:
            raise ConfigError(
                f"Unsupported webhook type: {self.notify.webhook_type!r}. "
                f"Expected one of: {', '.join(SUPPORTED_WEBHOOK_TYPES)}.",
            )
        if self.notify.webhook_url:
            parsed = urlparse(self.notify.webhook_url)
            if parsed.scheme not in {"http", "https"} or not parsed.netloc:
                raise ConfigError(
                    "Invalid webhook URL: "
                    f"{self.notify.webhook_url!r}. Expected an absolute http(s) URL.",
                )


class _SettingSource:
    """Environment-first lookup with config-file fallback."""

    def __init__(self, file_values: dict[str, Any]) -> None:
        self._file_values = file_values

    def get_optional(self, env_name: str, file_key: str) -> str | None:
        value = os.getenv(env_name)
        if value is not None and value.strip():
            return value.strip()
        file_value = self._file_values.get(file_key)
        if file_value is None:
            return None
        text = str(file_value).strip()
        return text or None

    def get(self, env_name: str, file_key: str, default: str) -> str:
        value = self.get_optional(env_name, file_key)
        return default if value is None else value

    def get_int(self, env_name: str, file_key: str, *, default: int) -> int:
        raw = self.get_optional(env_name, file_key)
        if raw is None:
            return default
        try:
            return int(raw)
        except ValueError as error:
            raise ConfigError(f"Invalid integer value for {env_name}: {raw!r}") from error

    def get_float(self, env_name: str, file_key: str, *, default: float) -> float:
        raw = self.get_optional(env_name, file_key)
        if raw is None:
            return default
        try:
            return float(raw)
        except ValueError as error:
            raise ConfigError(f"Invalid numeric value for {env_name}: {raw!r}") from error

    def get_bool(self, env_name: str, file_key: str, *, default: bool) -> bool:
        raw = self.get_optional(env_name, file_key)
        if raw is None:
            return default
        normalized = raw.lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
        raise ConfigError(f"Invalid boolean value for {env_name}: {raw!r}")


def _load_config_file(config_path: Path | None) -> dict[str, Any]:
    if config_path is None:
        env_path = os.getenv("BOOKMARK_HOARD_CONFIG", "").strip()
        config_path = Path(env_path) if env_path else Path(DEFAULT_CONFIG_FILENAME)
        if not config_path.exists():
            return {}
    try:
        payload = json.loads(config_path.read_text("utf-8"))
    except FileNotFoundError as error:
        raise ConfigError(f"Config file not found: {config_path}") from error
    except json.JSONDecodeError as error:
        raise ConfigError(f"Config file is not valid JSON: {config_path}") from error
    if not isinstance(payload, dict):
        raise ConfigError(f"Expected JSON object in {config_path}")
    return payload
