"""Task lifecycle: spawn, completion sweep, integration, and removal."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from uuid import uuid4

from task_fanout.config import Settings
from task_fanout.orchestrator.backend import (
    SessionControl,
    SessionProvider,
    TmuxSessions,
    get_provider,
)
from task_fanout.orchestrator.completion import is_complete
from task_fanout.orchestrator.contracts import write_task_context
from task_fanout.orchestrator.errors import (
    NotAGitRepository,
    SessionLaunchFailed,
    SessionUnavailable,
    TaskFanoutError,
    TaskNotFound,
)
from task_fanout.orchestrator.git import GitCommandError, branch_exists
from task_fanout.orchestrator.merge import MergeOrchestrator
from task_fanout.orchestrator.models import (
    CLEANABLE_STATUSES,
    LISTED_STATUSES,
    MERGEABLE_STATUSES,
    CheckSummary,
    IntegrationResult,
    ProjectView,
    RemovalSummary,
    SessionInfo,
    SpawnResult,
    TaskCreate,
    TaskMetadata,
    TaskStatus,
    TaskView,
)
from task_fanout.orchestrator.projects import ProjectRegistry
from task_fanout.orchestrator.repository import TaskRepository
from task_fanout.orchestrator.workspace import (
    CreatedWorkspace,
    WorkspaceManager,
    WorkspaceRemoval,
    validate_task_name,
)
from task_fanout.storage.common import utc_now

logger = logging.getLogger(__name__)

SCOPE_CURRENT = "current"
SCOPE_ALL = "all"
ALL_STATUSES: tuple[TaskStatus, ...] = tuple(TaskStatus)


class TaskLifecycleController:
    """Coordinates the task store, worktrees, sessions, and integration."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        settings: Settings,
        repository: TaskRepository,
        provider: SessionProvider | None = None,
        sessions: SessionControl | None = None,
        cwd: Path | None = None,
    ) -> None:
        tmux = TmuxSessions()
        self.settings = settings
        self.repository = repository
        self.sessions: SessionControl = sessions or tmux
        self.provider = provider or get_provider(settings.session.provider, tmux)
        self.projects = ProjectRegistry(
            repository,
            default_base_branch=settings.workspace.default_base_branch,
        )
        self.workspace = WorkspaceManager(settings.workspace)
        self.merger = MergeOrchestrator(
            repository=repository,
            workspace=self.workspace,
            settings=settings,
        )
        self.cwd = cwd or Path.cwd()

    def spawn(
        self,
        task_name: str,
        description: str,
        *,
        base_branch: str | None = None,
        project: str | None = None,
    ) -> SpawnResult:
        """Create a worktree, record the task, and start its assistant session."""

        validate_task_name(task_name)
        project_view = self.projects.resolve(project, cwd=self.cwd)
        base = base_branch or project_view.default_branch
        created = self.workspace.create_workspace(project_view, task_name, base)

        pending = TaskView(
            task_id=str(uuid4()),
            project_path=project_view.path,
            project_name=project_view.name,
            task_name=task_name,
            description=description,
            workspace_path=created.path,
            branch=created.branch,
            base_branch=base,
            status=TaskStatus.ACTIVE,
            created_at=utc_now(),
        )
        # Once the row exists the task is kept for retry; nothing after it rolls back.
        try:
            write_task_context(pending, self.settings)
            self.workspace.exclude_local_files(created.path)
            task = self.repository.create_task(
                TaskCreate(
                    project_path=pending.project_path,
                    project_name=pending.project_name,
                    task_name=pending.task_name,
                    description=pending.description,
                    workspace_path=pending.workspace_path,
                    branch=pending.branch,
                    base_branch=pending.base_branch,
                    task_id=pending.task_id,
                    created_at=pending.created_at,
                ),
            )
        except Exception:
            self._rollback_spawn(project_view, created)
            raise

        logger.info(
            "Spawned %s (%s) in %s on %s from %s",
            task.task_name,
            task.short_id,
            task.workspace_path,
            task.branch,
            task.base_branch,
        )
        handle, warning = self._start_session(task)
        current = self.repository.get_task(task.task_id) or task
        return SpawnResult(task=current, session_handle=handle, warning=warning)

    def check(self, project: str | None = None) -> CheckSummary:
        """Sweep active tasks for completion markers and integrate finished ones."""

        project_view = self.projects.resolve(project, cwd=self.cwd)
        summary = CheckSummary()
        tasks = self.repository.list_tasks(
            project_path=project_view.path,
            statuses=MERGEABLE_STATUSES,
        )
        for task in tasks:
            summary.checked += 1
            if not is_complete(task.workspace_path):
                continue
            summary.completed += 1
            if task.status is TaskStatus.COMPLETED:
                continue
            if not self.settings.merge.auto_merge:
                if self.repository.mark_completed(task_id=task.task_id):
                    logger.info("Task %s (%s) completed", task.task_name, task.short_id)
                continue
            result = self.merger.integrate(task)
            if result.success:
                summary.merged += 1
            else:
                summary.failures.append(result)
        return summary

    def close(self, reference: str, project: str | None = None) -> TaskView:
        """Mark an active task completed and stop its session."""

        task = self._find(reference, project, statuses=(TaskStatus.ACTIVE,))
        if task.session_handle:
            self.sessions.kill(task.session_handle)
        if not self.repository.mark_completed(task_id=task.task_id):
            raise TaskNotFound(
                f"Task {task.task_name} ({task.short_id}) is no longer active.",
                remediation="Run `task-fanout list` to see its current status.",
            )
        logger.info("Closed %s (%s)", task.task_name, task.short_id)
        return self.repository.get_task(task.task_id) or task

    def merge(self, reference: str, project: str | None = None) -> IntegrationResult:
        task = self._find(reference, project, statuses=MERGEABLE_STATUSES)
        return self.merger.integrate(task)

    def kill(self, reference: str, project: str | None = None) -> TaskView:
        """Discard a task: session, worktree, branch, and row."""

        task = self._find(reference, project, statuses=ALL_STATUSES)
        self._remove_task(task)
        logger.info("Killed %s (%s)", task.task_name, task.short_id)
        return task

    def nuke(self, project: str | None = None, *, confirm: bool = False) -> RemovalSummary:
        """Remove every task of a project regardless of status."""

        if not confirm:
            raise TaskFanoutError(
                "Refusing to remove every task without confirmation.",
                remediation="Re-run with --confirm.",
            )
        project_view = self.projects.resolve(project, cwd=self.cwd)
        tasks = self.repository.list_tasks(project_path=project_view.path)
        summary = self._remove_all(tasks)
        self.workspace.prune(project_view.path)
        self.repository.sync_task_count(project_path=project_view.path)
        logger.info(
            "Nuked %s: removed=%d failed=%d",
            project_view.name,
            summary.removed,
            summary.failed,
        )
        return summary

    def clean(self, scope: str = SCOPE_CURRENT) -> RemovalSummary:
        """Remove completed and merged tasks in ``scope``."""

        summary = RemovalSummary()
        for project_view in self._projects_in_scope(scope):
            tasks = self.repository.list_tasks(
                project_path=project_view.path,
                statuses=CLEANABLE_STATUSES,
            )
            partial = self._remove_all(tasks)
            summary.removed += partial.removed
            summary.failed += partial.failed
            summary.errors.extend(partial.errors)
            if project_view.path.is_dir():
                self.workspace.prune(project_view.path)
            self.repository.sync_task_count(project_path=project_view.path)
        return summary

    def list_tasks(self, scope: str = SCOPE_CURRENT) -> list[TaskView]:
        """Active and completed tasks, by project name then newest first."""

        if scope == SCOPE_ALL:
            return self.repository.list_tasks(statuses=LISTED_STATUSES)
        project_view = self._projects_in_scope(scope)[0]
        return self.repository.list_tasks(
            project_path=project_view.path,
            statuses=LISTED_STATUSES,
        )

    def send_command(self, reference: str, text: str, project: str | None = None) -> TaskView:
        task = self._find(reference, project, statuses=LISTED_STATUSES)
        self.sessions.send_keys(self._require_session(task), text)
        logger.info("Sent command to %s (%s)", task.task_name, task.short_id)
        return task

    def read_output(self, reference: str, lines: int = 100, project: str | None = None) -> str:
        task = self._find(reference, project, statuses=LISTED_STATUSES)
        return self.sessions.capture(self._require_session(task), lines)

    def list_sessions(self) -> list[SessionInfo]:
        return [
            SessionInfo(
                task_id=task.task_id,
                task_name=task.task_name,
                handle=task.session_handle,
                running=self.sessions.exists(task.session_handle),
            )
            for task in self.repository.list_tasks(statuses=LISTED_STATUSES)
            if task.session_handle
        ]

    def _find(
        self,
        reference: str,
        project: str | None,
        *,
        statuses: Iterable[TaskStatus],
    ) -> TaskView:
        statuses = tuple(statuses)
        project_path: Path | None = None
        if project:
            project_path = self.projects.get_project(project).path
        else:
            try:
                project_path = self.projects.detect(self.cwd).path
            except NotAGitRepository:
                project_path = None
        task = self.repository.find_task(reference, statuses=statuses, project_path=project_path)
        if task is None:
            where = f" in {project_path}" if project_path is not None else ""
            raise TaskNotFound(
                f"No {'/'.join(status.value for status in statuses)} task matches "
                f"{reference!r}{where}.",
                remediation="Run `task-fanout list --scope all` to see known tasks.",
            )
        return task

    def _projects_in_scope(self, scope: str) -> list[ProjectView]:
        if scope == SCOPE_ALL:
            return self.projects.list_projects()
        if scope == SCOPE_CURRENT:
            return [self.projects.detect(self.cwd)]
        return [self.projects.get_project(scope)]

    def _start_session(self, task: TaskView) -> tuple[str | None, str | None]:
        problem = self.provider.validate(self.settings.session)
        if problem is not None:
            logger.warning("Session for %s not started: %s", task.task_name, problem)
            return None, problem
        try:
            handle = self.provider.launch(task, self.settings.session)
        except SessionLaunchFailed as error:
            logger.warning("Session for %s not started: %s", task.task_name, error)
            return None, error.render()
        if handle is not None:
            self.repository.update_metadata(
                task_id=task.task_id,
                metadata=TaskMetadata(session_handle=handle, extra=dict(task.metadata.extra)),
            )
        return handle, None

    def _require_session(self, task: TaskView) -> str:
        handle = task.session_handle
        if not handle:
            raise SessionUnavailable(
                f"Task {task.task_name} ({task.short_id}) has no tracked session.",
                remediation=f"Open a terminal in {task.workspace_path} and start the assistant.",
            )
        if not self.sessions.exists(handle):
            raise SessionUnavailable(
                f"Session {handle} for {task.task_name} is not running.",
                remediation=f"Open a terminal in {task.workspace_path} and start the assistant.",
            )
        return handle

    def _remove_task(self, task: TaskView) -> WorkspaceRemoval:
        if task.session_handle:
            self.sessions.kill(task.session_handle)
        if task.project_path.is_dir():
            removal = self.workspace.remove_workspace(
                task.project_path,
                task.workspace_path,
                force=True,
            )
            if branch_exists(task.project_path, task.branch):
                self.workspace.delete_branch(task.project_path, task.branch)
        else:
            logger.warning("Project %s is gone; dropping task record only", task.project_path)
            removal = WorkspaceRemoval.ALREADY_ABSENT
        self.repository.delete_task(task_id=task.task_id)
        return removal

    def _remove_all(self, tasks: Iterable[TaskView]) -> RemovalSummary:
        summary = RemovalSummary()
        for task in tasks:
            try:
                self._remove_task(task)
            except (GitCommandError, OSError) as error:
                summary.failed += 1
                summary.errors.append(f"{task.task_name} ({task.short_id}): {error}")
                logger.warning("Failed to remove %s: %s", task.task_name, error)
                continue
            summary.removed += 1
        return summary

    def _rollback_spawn(self, project: ProjectView, created: CreatedWorkspace) -> None:
        logger.warning("Spawn of %s failed; rolling back %s", created.branch, created.path)
        self.workspace.remove_workspace(project.path, created.path, force=True)
        self.workspace.delete_branch(project.path, created.branch)
