"""Project detection and lookup."""

from __future__ import annotations

from pathlib import Path

from task_fanout.orchestrator.errors import NotAGitRepository, ProjectNotFound
from task_fanout.orchestrator.git import current_branch, run_git
from task_fanout.orchestrator.models import ProjectView
from task_fanout.orchestrator.repository import TaskRepository


class ProjectRegistry:
    """Maps working directories and user references onto registered projects."""

    def __init__(self, repository: TaskRepository, *, default_base_branch: str) -> None:
        self.repository = repository
        self.default_base_branch = default_base_branch

    def detect(self, cwd: Path) -> ProjectView:
        """Register the repository containing ``cwd`` and return it.

        Called from inside a task worktree, this resolves to the repository the
        worktree was created from.
        """

        root = find_repository_root(cwd)
        branch = current_branch(root) or self.default_base_branch
        return self.repository.upsert_project(path=root, name=root.name, default_branch=branch)

    def get_project(self, identifier: str) -> ProjectView:
        """Look a registered project up by absolute path or by name."""

        candidate = Path(identifier).expanduser()
        if candidate.is_absolute():
            project = self.repository.get_project(candidate.resolve())
            if project is not None:
                return project
        project = self.repository.find_project_by_name(identifier)
        if project is not None:
            return project
        raise ProjectNotFound(
            f"Unknown project: {identifier}",
            remediation=(
                "Run task-fanout once from inside the repository to register it, "
                "or pass the absolute repository path."
            ),
        )

    def resolve(self, identifier: str | None, *, cwd: Path) -> ProjectView:
        """Explicit project reference wins; otherwise detect from ``cwd``."""

        if identifier:
            return self.get_project(identifier)
        return self.detect(cwd)

    def list_projects(self) -> list[ProjectView]:
        return self.repository.list_projects()


def find_repository_root(cwd: Path) -> Path:
    """Return the main working directory of the repository containing ``cwd``."""

    toplevel = run_git(["rev-parse", "--show-toplevel"], cwd=cwd, check=False)
    if not toplevel.ok:
        raise NotAGitRepository(
            f"Not inside a git repository: {cwd}",
            remediation="Run the command from inside a git repository or pass --project.",
        )
    common = run_git(["rev-parse", "--git-common-dir"], cwd=cwd).stdout.strip()
    common_dir = Path(common)
    if not common_dir.is_absolute():
        common_dir = cwd / common_dir
    common_dir = common_dir.resolve()
    if common_dir.name == ".git":
        return common_dir.parent
    return Path(toplevel.stdout.strip()).resolve()
