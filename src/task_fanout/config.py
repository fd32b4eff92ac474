"""Runtime configuration for task orchestration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_LOCAL_FILES: tuple[str, ...] = (
    "settings.local.json",
    ".claude/settings.local.json",
    ".vscode/settings.json",
)
SUPPORTED_PROVIDERS: tuple[str, ...] = ("claude", "codex")
SUPPORTED_TERMINAL_APPS: tuple[str, ...] = (
    "none",
    "iterm",
    "terminal",
    "gnome-terminal",
    "wezterm",
    "alacritty",
)


@dataclass(slots=True)
class WorkspaceSettings:
    """Worktree layout and branch naming."""

    worktrees_root: Path = Path.home() / ".task-fanout" / "worktrees"
    default_base_branch: str = "main"
    branch_prefix: str = "fix/"
    local_files: tuple[str, ...] = DEFAULT_LOCAL_FILES


@dataclass(slots=True)
class MergeSettings:
    """Integration behavior for finished tasks."""

    auto_merge: bool = True
    delete_merged_branch: bool = True
    remote: str = "origin"
    fetch_timeout_seconds: int = 60


@dataclass(slots=True)
class SessionSettings:
    """Assistant session launch settings."""

    provider: str = "claude"
    claude_command: str = "claude"
    codex_command: str = "codex"
    terminal_app: str = "none"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    home_dir: Path = Path.home() / ".task-fanout"
    db_path: Path = Path.home() / ".task-fanout" / "data" / "tasks.db"
    sqlite_busy_timeout_ms: int = 5_000
    workspace: WorkspaceSettings = field(default_factory=WorkspaceSettings)
    merge: MergeSettings = field(default_factory=MergeSettings)
    session: SessionSettings = field(default_factory=SessionSettings)

    @property
    def log_path(self) -> Path:
        return self.home_dir / "logs" / "orchestrator.log"

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with defaults rooted in ~/.task-fanout."""

        home_dir = Path(
            os.getenv("TASK_FANOUT_HOME", str(Path.home() / ".task-fanout")),
        ).expanduser()
        return cls(
            home_dir=home_dir,
            db_path=db_path
            or Path(
                os.getenv("TASK_FANOUT_DB_PATH", str(home_dir / "data" / "tasks.db")),
            ).expanduser(),
            sqlite_busy_timeout_ms=int(os.getenv("TASK_FANOUT_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            workspace=WorkspaceSettings(
                worktrees_root=Path(
                    os.getenv("TASK_FANOUT_WORKTREES_ROOT", str(home_dir / "worktrees")),
                ).expanduser(),
                default_base_branch=os.getenv("TASK_FANOUT_DEFAULT_BASE_BRANCH", "main").strip(),
                branch_prefix=os.getenv("TASK_FANOUT_BRANCH_PREFIX", "fix/").strip(),
                local_files=_collect_local_files(),
            ),
            merge=MergeSettings(
                auto_merge=_env_bool("TASK_FANOUT_AUTO_MERGE", default=True),
                delete_merged_branch=_env_bool("TASK_FANOUT_DELETE_MERGED_BRANCH", default=True),
                remote=os.getenv("TASK_FANOUT_REMOTE", "origin").strip(),
                fetch_timeout_seconds=int(os.getenv("TASK_FANOUT_FETCH_TIMEOUT_SECONDS", "60")),
            ),
            session=SessionSettings(
                provider=os.getenv("TASK_FANOUT_PROVIDER", "claude").strip().lower(),
                claude_command=os.getenv("TASK_FANOUT_CLAUDE_COMMAND", "claude").strip(),
                codex_command=os.getenv("TASK_FANOUT_CODEX_COMMAND", "codex").strip(),
                terminal_app=os.getenv("TASK_FANOUT_TERMINAL_APP", "none").strip().lower(),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the orchestrator cannot work with."""

        if self.session.provider not in SUPPORTED_PROVIDERS:
            raise ValueError(
                f"TASK_FANOUT_PROVIDER must be one of {', '.join(SUPPORTED_PROVIDERS)}: "
                f"{self.session.provider!r}",
            )
        if self.session.terminal_app not in SUPPORTED_TERMINAL_APPS:
            raise ValueError(
                "TASK_FANOUT_TERMINAL_APP must be one of "
                f"{', '.join(SUPPORTED_TERMINAL_APPS)}: {self.session.terminal_app!r}",
            )
        if not self.workspace.default_base_branch:
            raise ValueError("TASK_FANOUT_DEFAULT_BASE_BRANCH must not be empty.")
        if self.workspace.branch_prefix.startswith("-"):
            raise ValueError("TASK_FANOUT_BRANCH_PREFIX must not start with '-'.")
        if self.merge.fetch_timeout_seconds <= 0:
            raise ValueError("TASK_FANOUT_FETCH_TIMEOUT_SECONDS must be > 0.")
        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("TASK_FANOUT_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        for local_file in self.workspace.local_files:
            if Path(local_file).is_absolute() or ".." in Path(local_file).parts:
                raise ValueError(
                    "TASK_FANOUT_LOCAL_FILES entries must be relative paths inside the "
                    f"repository: {local_file!r}",
                )

    def ensure_dirs(self) -> None:
        """Create state directories used by the store, worktrees, and activity log."""

        for directory in (
            self.db_path.parent,
            self.workspace.worktrees_root,
            self.log_path.parent,
        ):
            directory.mkdir(parents=True, exist_ok=True)


def _collect_local_files() -> tuple[str, ...]:
    raw = os.getenv("TASK_FANOUT_LOCAL_FILES")
    if raw is None:
        return DEFAULT_LOCAL_FILES
    deduped: list[str] = []
    for part in raw.split(","):
        normalized = part.strip()
        if not normalized or normalized in deduped:
            continue
        deduped.append(normalized)
    return tuple(deduped)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
