"""Controllers for task CLI commands."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from task_fanout.config import Settings
from task_fanout.orchestrator.backend import SessionControl, SessionProvider
from task_fanout.orchestrator.errors import NotAGitRepository
from task_fanout.orchestrator.lifecycle import TaskLifecycleController
from task_fanout.orchestrator.models import IntegrationResult, RemovalSummary, TaskView
from task_fanout.orchestrator.repository import TaskRepository
from task_fanout.orchestrator.smoke import check_tools, run_smoke_checks

ACTIVITY_LOGGER_NAME = "task_fanout"


@dataclass(slots=True)
class SpawnCommand:
    """CLI input for task spawn."""

    db_path: Path | None
    task_name: str
    description: str
    base_branch: str | None
    project: str | None


@dataclass(slots=True)
class ListCommand:
    """CLI input for task listing."""

    db_path: Path | None
    scope: str


@dataclass(slots=True)
class CheckCommand:
    """CLI input for the completion sweep."""

    db_path: Path | None
    project: str | None


@dataclass(slots=True)
class TaskRefCommand:
    """CLI input for close/merge/kill."""

    db_path: Path | None
    reference: str
    project: str | None


@dataclass(slots=True)
class NukeCommand:
    """CLI input for removing every task of a project."""

    db_path: Path | None
    project: str | None
    confirm: bool


@dataclass(slots=True)
class CleanCommand:
    """CLI input for removing finished tasks."""

    db_path: Path | None
    scope: str


@dataclass(slots=True)
class SendCommand:
    """CLI input for typing into a task session."""

    db_path: Path | None
    reference: str
    text: str
    project: str | None


@dataclass(slots=True)
class ReadCommand:
    """CLI input for reading a task session's output."""

    db_path: Path | None
    reference: str
    lines: int
    project: str | None


@dataclass(slots=True)
class SessionsCommand:
    """CLI input for listing tracked sessions."""

    db_path: Path | None


@dataclass(slots=True)
class CommandResult:
    """Lines to render plus an overall success flag."""

    lines: list[str]
    success: bool


class TaskCliController:
    """Builds the lifecycle controller per command and renders its results."""

    def __init__(
        self,
        *,
        provider: SessionProvider | None = None,
        sessions: SessionControl | None = None,
    ) -> None:
        self.provider = provider
        self.sessions = sessions

    def spawn(self, command: SpawnCommand) -> list[str]:
        with self._lifecycle(command.db_path) as lifecycle:
            result = lifecycle.spawn(
                command.task_name,
                command.description,
                base_branch=command.base_branch,
                project=command.project,
            )
        task = result.task
        lines = [
            f"Task spawned: {task.task_name} ({task.short_id})",
            f"  workspace={task.workspace_path}",
            f"  branch={task.branch} base={task.base_branch}",
        ]
        if result.session_handle:
            lines.append(
                f"  session={result.session_handle} "
                f"(tmux attach -t {result.session_handle})",
            )
        if result.warning:
            lines.append(f"  warning: session not started: {result.warning}")
        return lines

    def list_tasks(self, command: ListCommand) -> list[str]:
        with self._lifecycle(command.db_path) as lifecycle:
            tasks = lifecycle.list_tasks(command.scope)
        if not tasks:
            return ["No active tasks."]
        lines = [f"Tasks: {len(tasks)}"]
        current_project: str | None = None
        for task in tasks:
            if task.project_name != current_project:
                current_project = task.project_name
                lines.append(f"{task.project_name} ({task.project_path})")
            lines.append(_task_line(task))
        return lines

    def check(self, command: CheckCommand) -> CommandResult:
        with self._lifecycle(command.db_path) as lifecycle:
            summary = lifecycle.check(command.project)
        lines = [
            f"Checked: {summary.checked} completed={summary.completed} merged={summary.merged} "
            f"failed={len(summary.failures)}",
        ]
        for failure in summary.failures:
            lines.extend(_integration_lines(failure))
        return CommandResult(lines=lines, success=not summary.failures)

    def close(self, command: TaskRefCommand) -> list[str]:
        with self._lifecycle(command.db_path) as lifecycle:
            task = lifecycle.close(command.reference, command.project)
        return [f"Task closed: {task.task_name} ({task.short_id}) status={task.status.value}"]

    def merge(self, command: TaskRefCommand) -> CommandResult:
        with self._lifecycle(command.db_path) as lifecycle:
            result = lifecycle.merge(command.reference, command.project)
        return CommandResult(lines=_integration_lines(result), success=result.success)

    def kill(self, command: TaskRefCommand) -> list[str]:
        with self._lifecycle(command.db_path) as lifecycle:
            task = lifecycle.kill(command.reference, command.project)
        return [f"Task killed: {task.task_name} ({task.short_id})"]

    def nuke(self, command: NukeCommand) -> CommandResult:
        with self._lifecycle(command.db_path) as lifecycle:
            try:
                summary = lifecycle.nuke(command.project, confirm=command.confirm)
            except NotAGitRepository as error:
                projects = lifecycle.projects.list_projects()
                lines = [error.render(), "Known projects:"]
                lines.extend(f"  {project.name} {project.path}" for project in projects)
                return CommandResult(lines=lines, success=False)
        return CommandResult(
            lines=_removal_lines("Nuked", summary),
            success=summary.failed == 0,
        )

    def clean(self, command: CleanCommand) -> CommandResult:
        with self._lifecycle(command.db_path) as lifecycle:
            summary = lifecycle.clean(command.scope)
        return CommandResult(
            lines=_removal_lines("Cleaned", summary),
            success=summary.failed == 0,
        )

    def send(self, command: SendCommand) -> list[str]:
        with self._lifecycle(command.db_path) as lifecycle:
            task = lifecycle.send_command(command.reference, command.text, command.project)
        return [f"Sent to {task.task_name} ({task.short_id}): {command.text}"]

    def read(self, command: ReadCommand) -> list[str]:
        with self._lifecycle(command.db_path) as lifecycle:
            output = lifecycle.read_output(command.reference, command.lines, command.project)
        return output.rstrip("\n").splitlines()

    def sessions_report(self, command: SessionsCommand) -> list[str]:
        with self._lifecycle(command.db_path) as lifecycle:
            sessions = lifecycle.list_sessions()
        if not sessions:
            return ["No tracked sessions."]
        return [
            f"  {info.handle} task={info.task_name} ({info.task_id[:8]}) "
            f"{'running' if info.running else 'terminated'}"
            for info in sessions
        ]

    def providers(self) -> CommandResult:
        settings = Settings.from_env()
        settings.validate()
        results = run_smoke_checks(settings)
        lines = [
            "Provider check:",
            f"provider={settings.session.provider}",
            f"terminal_app={settings.session.terminal_app}",
        ]
        success = True
        for result in results:
            line = (
                f"  provider={result.provider}{' (selected)' if result.selected else ''} "
                f"executable={result.executable} "
                f"available={'yes' if result.available else 'no'}"
            )
            if result.resolved_path:
                line += f" path={result.resolved_path}"
            if result.error:
                line += f" error={result.error}"
            lines.append(line)
            if result.version_preview:
                lines.append(f"    version={result.version_preview}")
            if result.selected and not result.available:
                success = False
        for tool in check_tools(settings):
            lines.append(
                f"  tool={tool.tool} available={'yes' if tool.resolved_path else 'no'}"
                f"{' (required)' if tool.required else ''}",
            )
            if tool.required and tool.resolved_path is None:
                success = False
        lines.append(f"Provider status: {'ready' if success else 'not ready'}")
        return CommandResult(lines=lines, success=success)

    @contextmanager
    def _lifecycle(self, db_path: Path | None) -> Iterator[TaskLifecycleController]:
        settings = Settings.from_env(db_path=db_path)
        settings.validate()
        settings.ensure_dirs()
        configure_activity_log(settings.log_path)
        with _repository(settings) as repository:
            yield TaskLifecycleController(
                settings=settings,
                repository=repository,
                provider=self.provider,
                sessions=self.sessions,
            )


def configure_activity_log(log_path: Path) -> None:
    """Append INFO lifecycle events to ``log_path`` (idempotent per path)."""

    activity_logger = logging.getLogger(ACTIVITY_LOGGER_NAME)
    target = os.path.abspath(log_path)
    for handler in activity_logger.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == target:
            return
    handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    activity_logger.addHandler(handler)
    if activity_logger.level == logging.NOTSET or activity_logger.level > logging.INFO:
        activity_logger.setLevel(logging.INFO)


def _task_line(task: TaskView) -> str:
    return (
        f"  {task.short_id} {task.task_name} status={task.status.value} "
        f"branch={task.branch} base={task.base_branch} "
        f"created={task.created_at.isoformat(timespec='seconds')} "
        f"session={task.session_handle or '-'}"
    )


def _integration_lines(result: IntegrationResult) -> list[str]:
    task = result.task
    if result.success:
        lines = [
            f"Merged: {task.task_name} ({task.short_id}) into {task.base_branch} "
            f"at {result.base_location}",
        ]
    else:
        lines = [f"Merge failed: {task.task_name} ({task.short_id}) status={task.status.value}"]
        if result.error is not None:
            lines.extend(f"  {line}" for line in result.error.render().splitlines())
    lines.extend(f"    - {step}" for step in result.steps)
    return lines


def _removal_lines(verb: str, summary: RemovalSummary) -> list[str]:
    lines = [f"{verb}: removed={summary.removed} failed={summary.failed}"]
    lines.extend(f"  error: {error}" for error in summary.errors)
    return lines


@contextmanager
def _repository(settings: Settings) -> Iterator[TaskRepository]:
    repository = TaskRepository(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
