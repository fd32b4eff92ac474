from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import allure
import pytest
from conftest import git

from task_fanout.config import Settings
from task_fanout.orchestrator.errors import InvalidTaskName, WorkspaceCreationError
from task_fanout.orchestrator.git import branch_exists
from task_fanout.orchestrator.models import ProjectView
from task_fanout.orchestrator.workspace import (
    WorkspaceManager,
    WorkspaceRemoval,
    validate_task_name,
)

pytestmark = [
    allure.epic("Workspace Manager"),
    allure.feature("Worktree Provisioning"),
]


def _project(path: Path) -> ProjectView:
    return ProjectView(
        path=path,
        name=path.name,
        last_used=datetime.now(tz=UTC),
        default_branch="main",
    )


@pytest.mark.parametrize("name", ["fix-auth", "v1.2_hotfix", "UI"])
def test_validate_task_name_accepts_slugs(name: str) -> None:
    assert validate_task_name(name) == name


@pytest.mark.parametrize("name", ["", "-rf", "has space", "a/b", "..", "semi;colon"])
def test_validate_task_name_rejects_unsafe_names(name: str) -> None:
    with pytest.raises(InvalidTaskName) as error_info:
        validate_task_name(name)

    assert isinstance(error_info.value, ValueError)
    assert error_info.value.remediation


def test_create_workspace_names_branch_and_path_from_slug(
    settings: Settings,
    git_repo: Path,
) -> None:
    manager = WorkspaceManager(settings.workspace)

    created = manager.create_workspace(_project(git_repo), "fix-auth", "main")

    assert created.branch.startswith("fix/fix-auth-")
    assert created.path.parent == settings.workspace.worktrees_root / "app"
    assert created.path.name == created.branch.removeprefix("fix/")
    assert git(created.path, "branch", "--show-current") == created.branch
    assert git(created.path, "rev-parse", "HEAD") == git(git_repo, "rev-parse", "main")


def test_same_slug_spawns_never_collide(settings: Settings, git_repo: Path) -> None:
    manager = WorkspaceManager(settings.workspace)

    first = manager.create_workspace(_project(git_repo), "fix-ui", "main")
    second = manager.create_workspace(_project(git_repo), "fix-ui", "main")

    assert first.branch != second.branch
    assert first.path != second.path
    assert first.path.is_dir()
    assert second.path.is_dir()


def test_create_workspace_rejects_missing_base_without_side_effects(
    settings: Settings,
    git_repo: Path,
) -> None:
    manager = WorkspaceManager(settings.workspace)

    with pytest.raises(WorkspaceCreationError, match="does-not-exist"):
        manager.create_workspace(_project(git_repo), "fix-auth", "does-not-exist")

    assert not (settings.workspace.worktrees_root / "app").exists()
    assert git(git_repo, "branch", "--list", "fix/*") == ""


def test_exclude_local_files_is_idempotent(settings: Settings, git_repo: Path) -> None:
    manager = WorkspaceManager(settings.workspace)
    created = manager.create_workspace(_project(git_repo), "fix-auth", "main")

    manager.exclude_local_files(created.path)
    manager.exclude_local_files(created.path)

    exclude_file = Path(git(created.path, "rev-parse", "--git-path", "info/exclude"))
    if not exclude_file.is_absolute():
        exclude_file = created.path / exclude_file
    lines = exclude_file.read_text("utf-8").splitlines()
    for pattern in (*settings.workspace.local_files, ".task-fanout/", "/.task_complete"):
        assert lines.count(pattern) == 1

    (created.path / ".vscode").mkdir()
    (created.path / ".vscode" / "settings.json").write_text("{}", "utf-8")
    (created.path / "settings.local.json").write_text("{}", "utf-8")
    (created.path / ".task_complete").write_text("done", "utf-8")
    assert git(created.path, "status", "--porcelain") == ""


def test_remove_workspace_reports_outcomes(settings: Settings, git_repo: Path) -> None:
    manager = WorkspaceManager(settings.workspace)
    created = manager.create_workspace(_project(git_repo), "fix-auth", "main")
    (created.path / "dirty.txt").write_text("x", "utf-8")

    assert manager.remove_workspace(git_repo, created.path, force=True) is WorkspaceRemoval.REMOVED
    assert not created.path.exists()
    assert (
        manager.remove_workspace(git_repo, created.path) is WorkspaceRemoval.ALREADY_ABSENT
    )


def test_remove_workspace_falls_back_to_directory_delete(
    settings: Settings,
    git_repo: Path,
) -> None:
    manager = WorkspaceManager(settings.workspace)
    created = manager.create_workspace(_project(git_repo), "fix-auth", "main")
    (created.path / "dirty.txt").write_text("x", "utf-8")

    outcome = manager.remove_workspace(git_repo, created.path, force=False)

    assert outcome is WorkspaceRemoval.FORCE_DELETED
    assert not created.path.exists()
    assert all(entry.path != created.path for entry in manager.list_worktrees(git_repo))


def test_delete_branch_tolerates_missing_branch(settings: Settings, git_repo: Path) -> None:
    manager = WorkspaceManager(settings.workspace)
    created = manager.create_workspace(_project(git_repo), "fix-auth", "main")
    manager.remove_workspace(git_repo, created.path, force=True)

    assert manager.delete_branch(git_repo, created.branch)
    assert not branch_exists(git_repo, created.branch)
    assert not manager.delete_branch(git_repo, created.branch)
