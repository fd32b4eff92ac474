"""Integrate finished task branches back into their base branch.

Integration is a rebase of the task branch onto the base branch followed by a
fast-forward of the base branch, wherever that branch happens to be checked
out. Nothing that can fail runs after the base branch moves, so a failed
attempt leaves the task retryable with ``task-fanout merge <id8>``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from task_fanout.config import Settings
from task_fanout.orchestrator.errors import (
    BranchInUseElsewhere,
    CommitFailed,
    FastForwardFailed,
    RebaseConflict,
    TaskFanoutError,
    WorkspaceMissing,
)
from task_fanout.orchestrator.git import (
    GitCommandError,
    is_ancestor,
    list_worktrees,
    porcelain_path,
    rev_parse,
    run_git,
    status_porcelain,
)
from task_fanout.orchestrator.models import IntegrationResult, TaskView
from task_fanout.orchestrator.repository import TaskRepository
from task_fanout.orchestrator.workspace import WorkspaceManager

logger = logging.getLogger(__name__)

STRAY_ROOT_FILES: tuple[str, ...] = ("TASK.md",)
COMMIT_TRAILER = "Completed by task-fanout"


@dataclass(slots=True)
class BaseCheckout:
    """Where the base branch lives at integration time."""

    path: Path
    checked_out: bool


class MergeOrchestrator:
    """Runs the commit, rebase, fast-forward, and teardown sequence for one task."""

    def __init__(
        self,
        *,
        repository: TaskRepository,
        workspace: WorkspaceManager,
        settings: Settings,
    ) -> None:
        self.repository = repository
        self.workspace = workspace
        self.settings = settings

    def integrate(self, task: TaskView) -> IntegrationResult:
        """Integrate ``task``; failures come back inside the result, never raised."""

        steps: list[str] = []
        try:
            base = self._integrate_branch(task, steps)
        except TaskFanoutError as error:
            logger.warning("Integration of %s failed: %s", task.task_name, error)
            return self._failed(task, error, steps)
        except GitCommandError as error:
            wrapped = TaskFanoutError(
                str(error),
                remediation=(
                    f"Fix the repository state, then run `task-fanout merge {task.short_id}`."
                ),
            )
            logger.warning("Integration of %s failed: %s", task.task_name, error)
            return self._failed(task, wrapped, steps)

        self._teardown(task, steps)
        if self.repository.mark_merged(task_id=task.task_id):
            steps.append("marked merged")
        else:
            logger.warning(
                "Task %s was no longer active or completed; status left as is",
                task.task_id,
            )
        logger.info(
            "Merged %s (%s) into %s at %s",
            task.task_name,
            task.short_id,
            task.base_branch,
            base.path,
        )
        current = self.repository.get_task(task.task_id) or task
        return IntegrationResult(success=True, task=current, base_location=base.path, steps=steps)

    def locate_base_checkout(self, task: TaskView) -> BaseCheckout:
        """Find the worktree that has the base branch checked out, if any."""

        for entry in list_worktrees(task.project_path):
            if entry.branch == task.base_branch and not entry.bare:
                return BaseCheckout(path=entry.path, checked_out=True)
        return BaseCheckout(path=task.project_path, checked_out=False)

    def _integrate_branch(self, task: TaskView, steps: list[str]) -> BaseCheckout:
        if not task.workspace_path.is_dir():
            raise WorkspaceMissing(
                f"Workspace not found: {task.workspace_path}",
                remediation=f"Run `task-fanout kill {task.short_id}` to discard the task.",
            )
        steps.append("workspace present")

        base = self.locate_base_checkout(task)
        snapshot = self._snapshot_local_files(base.path)
        try:
            self.workspace.exclude_local_files(task.workspace_path)
            self._remove_stray_files(task, steps)
            self._commit_pending(task, steps)
            target = self._upstream_target(task, steps)
            self._rebase(task, target, steps)
            self._revert_local_files(task, target, steps)
            self._fast_forward(task, base, steps)
        finally:
            self._restore_local_files(base.path, snapshot)
        steps.append(f"restored local files at {base.path}")
        return base

    def _remove_stray_files(self, task: TaskView, steps: list[str]) -> None:
        for name in STRAY_ROOT_FILES:
            path = task.workspace_path / name
            if not path.is_file():
                continue
            tracked = run_git(
                ["ls-files", "--error-unmatch", name],
                cwd=task.workspace_path,
                check=False,
            ).ok
            if tracked:
                continue
            path.unlink()
            steps.append(f"removed stray {name}")

    def _commit_pending(self, task: TaskView, steps: list[str]) -> None:
        if not status_porcelain(task.workspace_path):
            return
        remediation = (
            f"Inspect `git status` in {task.workspace_path}, commit manually, "
            f"then run `task-fanout merge {task.short_id}`."
        )
        try:
            run_git(["add", "-A"], cwd=task.workspace_path)
            run_git(
                ["commit", "-m", f"fix: {task.task_name}\n\n{COMMIT_TRAILER}"],
                cwd=task.workspace_path,
            )
        except GitCommandError as error:
            raise CommitFailed(
                f"Could not commit pending changes in {task.workspace_path}: "
                f"{error.stderr.strip()}",
                remediation=remediation,
            ) from error
        steps.append("committed pending changes")

    def _upstream_target(self, task: TaskView, steps: list[str]) -> str:
        """Pick the rebase target: the fetched upstream tip if it extends the local base."""

        base = task.base_branch
        remote = self.settings.merge.remote
        project_path = task.project_path
        if not run_git(["remote", "get-url", remote], cwd=project_path, check=False).ok:
            return base

        fetched: str | None = None
        try:
            run_git(
                ["fetch", remote, base],
                cwd=project_path,
                timeout=self.settings.merge.fetch_timeout_seconds,
            )
            fetched = rev_parse(project_path, "FETCH_HEAD")
        except GitCommandError as error:
            if error.timed_out:
                logger.warning("git fetch %s %s timed out; using local %s", remote, base, base)
                return base
            logger.warning("git fetch %s %s failed: %s", remote, base, error.stderr.strip())
            fetched = rev_parse(project_path, f"refs/remotes/{remote}/{base}")

        local = rev_parse(project_path, base)
        if fetched is None or local is None or fetched == local:
            return base
        if not is_ancestor(project_path, local, fetched):
            logger.warning(
                "%s/%s has diverged from local %s; integrating onto local %s",
                remote,
                base,
                base,
                base,
            )
            return base
        steps.append(f"rebasing onto upstream {remote}/{base} {fetched[:12]}")
        return fetched

    def _rebase(self, task: TaskView, target: str, steps: list[str]) -> None:
        result = run_git(["rebase", target], cwd=task.workspace_path, check=False)
        if result.ok:
            steps.append(f"rebased {task.branch} onto {task.base_branch}")
            return
        run_git(["rebase", "--abort"], cwd=task.workspace_path, check=False)
        raise RebaseConflict(
            f"Rebase of {task.branch} onto {task.base_branch} hit conflicts in "
            f"{task.workspace_path}. Conflict markers must be resolved manually.",
            remediation=(
                f"cd {task.workspace_path}\n"
                f"git rebase {task.base_branch}\n"
                "# resolve conflicts, then: git add <files> && git rebase --continue\n"
                f"task-fanout merge {task.short_id}"
            ),
        )

    def _revert_local_files(self, task: TaskView, target: str, steps: list[str]) -> None:
        """Reset tracked local-only files on the task branch to their state at ``target``."""

        local_files = list(self.settings.workspace.local_files)
        if not local_files:
            return
        workspace_path = task.workspace_path
        changed = run_git(
            ["diff", "--name-only", target, "HEAD", "--", *local_files],
            cwd=workspace_path,
        ).stdout.splitlines()
        if not changed:
            return

        for path in changed:
            in_target = run_git(
                ["cat-file", "-e", f"{target}:{path}"],
                cwd=workspace_path,
                check=False,
            ).ok
            if in_target:
                run_git(["checkout", target, "--", path], cwd=workspace_path)
            else:
                run_git(["rm", "--cached", "--quiet", "--", path], cwd=workspace_path)
        try:
            run_git(
                [
                    "commit",
                    "-m",
                    f"chore: keep local files out of {task.task_name}\n\n{COMMIT_TRAILER}",
                ],
                cwd=workspace_path,
            )
        except GitCommandError as error:
            raise CommitFailed(
                f"Could not revert local files in {workspace_path}: {error.stderr.strip()}",
                remediation=(
                    f"Restore {', '.join(changed)} from {task.base_branch} in {workspace_path}, "
                    f"commit, then run `task-fanout merge {task.short_id}`."
                ),
            ) from error
        steps.append(f"reverted local files {', '.join(changed)}")

    def _fast_forward(self, task: TaskView, base: BaseCheckout, steps: list[str]) -> None:
        project_path = task.project_path
        retry = f"task-fanout merge {task.short_id}"
        if not is_ancestor(project_path, task.base_branch, task.branch):
            raise FastForwardFailed(
                f"{task.base_branch} is not an ancestor of {task.branch}; "
                "it moved during integration.",
                remediation=f"Run `{retry}` again.",
            )

        try:
            if base.checked_out:
                dirty = self._tracked_changes(base.path)
                if dirty:
                    raise BranchInUseElsewhere(
                        f"{task.base_branch} is checked out at {base.path} with uncommitted "
                        f"changes: {', '.join(dirty)}",
                        remediation=(
                            f"Commit or stash the changes in {base.path}, then run `{retry}`."
                        ),
                    )
                run_git(["reset", "--hard", task.branch], cwd=base.path)
            else:
                run_git(["branch", "-f", task.base_branch, task.branch], cwd=project_path)
        except GitCommandError as error:
            raise FastForwardFailed(
                f"Could not move {task.base_branch} to {task.branch}: {error.stderr.strip()}",
                remediation=f"Run `{retry}` again.",
            ) from error

        if rev_parse(project_path, task.base_branch) != rev_parse(project_path, task.branch):
            raise FastForwardFailed(
                f"{task.base_branch} does not point at {task.branch} after fast-forward.",
                remediation=(
                    f"Inspect `git log {task.base_branch}` in {base.path}, then run `{retry}`."
                ),
            )
        steps.append(f"fast-forwarded {task.base_branch} at {base.path}")

    def _tracked_changes(self, checkout: Path) -> list[str]:
        local_files = set(self.settings.workspace.local_files)
        return [
            path
            for path in (
                porcelain_path(line)
                for line in status_porcelain(checkout, include_untracked=False)
            )
            if path not in local_files
        ]

    def _teardown(self, task: TaskView, steps: list[str]) -> None:
        removal = self.workspace.remove_workspace(
            task.project_path,
            task.workspace_path,
            force=True,
        )
        steps.append(f"workspace {removal.value}")
        if self.settings.merge.delete_merged_branch and self.workspace.delete_branch(
            task.project_path,
            task.branch,
        ):
            steps.append(f"deleted {task.branch}")

    def _snapshot_local_files(self, checkout: Path) -> dict[str, bytes | None]:
        snapshot: dict[str, bytes | None] = {}
        for relative in self.settings.workspace.local_files:
            path = checkout / relative
            snapshot[relative] = path.read_bytes() if path.is_file() else None
        return snapshot

    def _restore_local_files(self, checkout: Path, snapshot: dict[str, bytes | None]) -> None:
        for relative, content in snapshot.items():
            path = checkout / relative
            if content is None:
                if path.is_file():
                    path.unlink()
                continue
            if path.is_file() and path.read_bytes() == content:
                continue
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)

    def _failed(
        self,
        task: TaskView,
        error: TaskFanoutError,
        steps: list[str],
    ) -> IntegrationResult:
        current = self.repository.get_task(task.task_id) or task
        return IntegrationResult(success=False, task=current, error=error, steps=steps)
