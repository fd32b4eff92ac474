"""Git worktree provisioning and teardown for tasks."""

from __future__ import annotations

import logging
import re
import secrets
import shutil
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from task_fanout.config import WorkspaceSettings
from task_fanout.orchestrator.contracts import ARTIFACTS_DIR_NAME, LEGACY_MARKER_NAME
from task_fanout.orchestrator.errors import InvalidTaskName, WorkspaceCreationError
from task_fanout.orchestrator.git import (
    GitCommandError,
    WorktreeEntry,
    branch_exists,
    list_worktrees,
    rev_parse,
    run_git,
)
from task_fanout.orchestrator.models import ProjectView

logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"^[A-Za-z0-9._-]+$")


@dataclass(slots=True)
class CreatedWorkspace:
    """Worktree and branch created for one task."""

    path: Path
    branch: str


class WorkspaceRemoval(str, Enum):
    """How a worktree went away."""

    REMOVED = "removed"
    FORCE_DELETED = "force_deleted"
    ALREADY_ABSENT = "already_absent"


def validate_task_name(task_name: str) -> str:
    """Return ``task_name`` if usable in branch and directory names."""

    if not _SLUG_RE.match(task_name) or task_name.startswith("-") or task_name in {".", ".."}:
        raise InvalidTaskName(
            f"Invalid task name: {task_name!r}",
            remediation=(
                "Use letters, digits, '.', '_' or '-' only, not starting with '-' "
                "(for example: fix-auth)."
            ),
        )
    return task_name


def creation_stamp() -> str:
    """Milliseconds since epoch plus a short random token."""

    return f"{time.time_ns() // 1_000_000}-{secrets.token_hex(2)}"


class WorkspaceManager:
    """Creates, excludes, and removes per-task worktrees."""

    def __init__(self, settings: WorkspaceSettings) -> None:
        self.settings = settings

    def create_workspace(
        self,
        project: ProjectView,
        task_name: str,
        base_branch: str,
    ) -> CreatedWorkspace:
        """Create ``<prefix><slug>-<stamp>`` checked out in its own worktree."""

        slug = validate_task_name(task_name)
        stamp = creation_stamp()
        branch = f"{self.settings.branch_prefix}{slug}-{stamp}"
        path = self.settings.worktrees_root / project.name / f"{slug}-{stamp}"

        if rev_parse(project.path, base_branch) is None:
            raise WorkspaceCreationError(
                f"Base branch {base_branch!r} does not exist in {project.path}",
                remediation="Create the branch first or pass an existing one with --base.",
            )
        if branch_exists(project.path, branch):
            raise WorkspaceCreationError(
                f"Branch already exists: {branch}",
                remediation="Retry the spawn; a fresh stamp is generated every time.",
            )
        if path.exists():
            raise WorkspaceCreationError(
                f"Workspace path already exists: {path}",
                remediation="Retry the spawn; a fresh stamp is generated every time.",
            )

        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            run_git(
                ["worktree", "add", "-b", branch, str(path), base_branch],
                cwd=project.path,
            )
        except GitCommandError as error:
            self._discard_partial(project.path, path, branch)
            raise WorkspaceCreationError(
                f"git worktree add failed for {branch}: {error.stderr.strip()}",
                remediation="Check `git worktree list` in the project and retry.",
            ) from error

        logger.info("Created worktree %s on branch %s (base %s)", path, branch, base_branch)
        return CreatedWorkspace(path=path, branch=branch)

    def exclude_local_files(self, workspace_path: Path) -> None:
        """Keep local-only files and task artifacts out of ``git add -A``."""

        exclude_path = Path(
            run_git(["rev-parse", "--git-path", "info/exclude"], cwd=workspace_path).stdout.strip(),
        )
        if not exclude_path.is_absolute():
            exclude_path = workspace_path / exclude_path
        patterns = [
            *self.settings.local_files,
            f"{ARTIFACTS_DIR_NAME}/",
            f"/{LEGACY_MARKER_NAME}",
        ]
        existing: set[str] = set()
        if exclude_path.exists():
            existing = {line.strip() for line in exclude_path.read_text("utf-8").splitlines()}
        missing = [pattern for pattern in patterns if pattern not in existing]
        if not missing:
            return
        exclude_path.parent.mkdir(parents=True, exist_ok=True)
        with exclude_path.open("a", encoding="utf-8") as handle:
            handle.write("\n# task-fanout local files\n")
            handle.write("\n".join(missing) + "\n")

    def remove_workspace(
        self,
        project_path: Path,
        workspace_path: Path,
        *,
        force: bool = False,
    ) -> WorkspaceRemoval:
        """Remove a worktree, falling back to deleting the directory."""

        if not workspace_path.exists():
            self.prune(project_path)
            return WorkspaceRemoval.ALREADY_ABSENT

        args = ["worktree", "remove"]
        if force:
            args.append("--force")
        args.append(str(workspace_path))
        try:
            run_git(args, cwd=project_path)
        except GitCommandError as error:
            logger.warning(
                "git worktree remove %s failed, deleting directory: %s",
                workspace_path,
                error.stderr.strip(),
            )
            shutil.rmtree(workspace_path, ignore_errors=True)
            self.prune(project_path)
            return WorkspaceRemoval.FORCE_DELETED
        return WorkspaceRemoval.REMOVED

    def delete_branch(self, project_path: Path, branch: str) -> bool:
        try:
            run_git(["branch", "-D", branch], cwd=project_path)
        except GitCommandError as error:
            logger.warning("git branch -D %s failed: %s", branch, error.stderr.strip())
            return False
        return True

    def prune(self, project_path: Path) -> None:
        try:
            run_git(["worktree", "prune"], cwd=project_path)
        except GitCommandError as error:
            logger.warning("git worktree prune failed: %s", error.stderr.strip())

    def list_worktrees(self, project_path: Path) -> list[WorktreeEntry]:
        return list_worktrees(project_path)

    def _discard_partial(self, project_path: Path, path: Path, branch: str) -> None:
        if path.exists():
            shutil.rmtree(path, ignore_errors=True)
        self.prune(project_path)
        if branch_exists(project_path, branch):
            self.delete_branch(project_path, branch)
