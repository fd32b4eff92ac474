"""Shared test fixtures."""

from __future__ import annotations

import subprocess
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from task_fanout.config import MergeSettings, SessionSettings, Settings, WorkspaceSettings
from task_fanout.orchestrator.backend import session_name_for
from task_fanout.orchestrator.contracts import ARTIFACTS_DIR_NAME, artifact_prefix
from task_fanout.orchestrator.errors import SessionLaunchFailed
from task_fanout.orchestrator.lifecycle import TaskLifecycleController
from task_fanout.orchestrator.models import TaskView
from task_fanout.orchestrator.repository import TaskRepository


def git(cwd: Path, *args: str) -> str:
    """Run git in ``cwd`` and return stripped stdout."""

    completed = subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return completed.stdout.strip()


def configure_identity(repo: Path) -> None:
    git(repo, "config", "user.email", "dev@example.com")
    git(repo, "config", "user.name", "Dev")
    git(repo, "config", "commit.gpgsign", "false")


def init_repo(path: Path) -> Path:
    """Create a repository on ``main`` with one commit."""

    path.mkdir(parents=True, exist_ok=True)
    git(path, "init")
    git(path, "symbolic-ref", "HEAD", "refs/heads/main")
    configure_identity(path)
    (path / "README.md").write_text("# app\n", "utf-8")
    git(path, "add", "-A")
    git(path, "commit", "-m", "initial")
    return path.resolve()


def commit_file(repo: Path, name: str, content: str, message: str | None = None) -> str:
    target = repo / name
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, "utf-8")
    git(repo, "add", name)
    git(repo, "commit", "-m", message or f"add {name}")
    return git(repo, "rev-parse", "HEAD")


def finish_task(task: TaskView, files: dict[str, str] | None = None) -> Path:
    """Write ``files`` into the task worktree and drop a completion marker."""

    for name, content in (files or {}).items():
        target = task.workspace_path / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, "utf-8")
    marker = task.workspace_path / ARTIFACTS_DIR_NAME / f"{artifact_prefix(task)}.task_complete"
    marker.parent.mkdir(parents=True, exist_ok=True)
    marker.write_text("done\n", "utf-8")
    return marker


@dataclass
class FakeProvider:
    """Records launches instead of opening terminals."""

    name: str = "fake"
    problem: str | None = None
    fail_launch: bool = False
    launched: list[TaskView] = field(default_factory=list)

    def validate(self, settings: SessionSettings) -> str | None:
        return self.problem

    def launch(self, task: TaskView, settings: SessionSettings) -> str | None:
        if self.fail_launch:
            raise SessionLaunchFailed("terminal exploded", remediation="use tmux")
        self.launched.append(task)
        return session_name_for(task.branch)


@dataclass
class FakeSessions:
    """In-memory stand-in for tmux."""

    alive: set[str] = field(default_factory=set)
    sent: list[tuple[str, str]] = field(default_factory=list)
    killed: list[str] = field(default_factory=list)
    output: str = "line one\nline two\n"

    def send_keys(self, handle: str, text: str) -> None:
        self.sent.append((handle, text))

    def capture(self, handle: str, lines: int = 100) -> str:
        return self.output

    def exists(self, handle: str) -> bool:
        return handle in self.alive

    def kill(self, handle: str) -> bool:
        self.killed.append(handle)
        if handle in self.alive:
            self.alive.discard(handle)
            return True
        return False


@pytest.fixture()
def git_repo(tmp_path: Path) -> Path:
    return init_repo(tmp_path / "app")


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    home = tmp_path / "home"
    settings = Settings(
        home_dir=home,
        db_path=home / "data" / "tasks.db",
        workspace=WorkspaceSettings(worktrees_root=home / "worktrees"),
        merge=MergeSettings(),
        session=SessionSettings(),
    )
    settings.ensure_dirs()
    return settings


@pytest.fixture()
def repository(settings: Settings) -> Iterator[TaskRepository]:
    repository = TaskRepository(settings.db_path)
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@pytest.fixture()
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture()
def fake_sessions() -> FakeSessions:
    return FakeSessions()


@pytest.fixture()
def lifecycle(
    settings: Settings,
    repository: TaskRepository,
    fake_provider: FakeProvider,
    fake_sessions: FakeSessions,
    git_repo: Path,
) -> TaskLifecycleController:
    return TaskLifecycleController(
        settings=settings,
        repository=repository,
        provider=fake_provider,
        sessions=fake_sessions,
        cwd=git_repo,
    )
