"""CLI entrypoint for task-fanout."""

from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from task_fanout import __version__
from task_fanout.orchestrator.controllers import (
    CheckCommand,
    CleanCommand,
    CommandResult,
    ListCommand,
    NukeCommand,
    ReadCommand,
    SendCommand,
    SessionsCommand,
    SpawnCommand,
    TaskCliController,
    TaskRefCommand,
)
from task_fanout.orchestrator.errors import TaskFanoutError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = TaskCliController()

T = TypeVar("T")

_db_path_option = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)
_project_option = click.option(
    "--project",
    default=None,
    help="Project name or absolute path. Defaults to the repository of the current directory.",
)
_scope_option = click.option(
    "--scope",
    default="current",
    show_default=True,
    help="`current`, `all`, or a project name.",
)


@click.group()
@click.version_option(version=__version__, prog_name="task-fanout")
def task_fanout() -> None:
    """Fan tasks out into git worktrees with their own assistant sessions."""


@task_fanout.command("spawn")
@_db_path_option
@_project_option
@click.option(
    "--base",
    "base_branch",
    default=None,
    help="Base branch to fork from and merge into.",
)
@click.argument("task_name")
@click.argument("description", required=False, default="")
def spawn(
    db_path: Path | None,
    project: str | None,
    base_branch: str | None,
    task_name: str,
    description: str,
) -> None:
    """Create a worktree and branch for TASK_NAME and launch an assistant in it."""

    _emit_lines(
        _call(
            CONTROLLER.spawn,
            SpawnCommand(
                db_path=db_path,
                task_name=task_name,
                description=description,
                base_branch=base_branch,
                project=project,
            ),
        ),
    )


@task_fanout.command("list")
@_db_path_option
@_scope_option
def list_tasks(db_path: Path | None, scope: str) -> None:
    """List active and completed tasks."""

    _emit_lines(_call(CONTROLLER.list_tasks, ListCommand(db_path=db_path, scope=scope)))


@task_fanout.command("check")
@_db_path_option
@_project_option
def check(db_path: Path | None, project: str | None) -> None:
    """Detect finished tasks and integrate them into their base branch."""

    _emit_result(_call(CONTROLLER.check, CheckCommand(db_path=db_path, project=project)))


@task_fanout.command("close")
@_db_path_option
@_project_option
@click.argument("reference")
def close(db_path: Path | None, project: str | None, reference: str) -> None:
    """Mark a task completed and stop its session."""

    _emit_lines(
        _call(
            CONTROLLER.close,
            TaskRefCommand(db_path=db_path, reference=reference, project=project),
        ),
    )


@task_fanout.command("merge")
@_db_path_option
@_project_option
@click.argument("reference")
def merge(db_path: Path | None, project: str | None, reference: str) -> None:
    """Rebase a task onto its base branch and fast-forward the base branch."""

    _emit_result(
        _call(
            CONTROLLER.merge,
            TaskRefCommand(db_path=db_path, reference=reference, project=project),
        ),
    )


@task_fanout.command("kill")
@_db_path_option
@_project_option
@click.argument("reference")
def kill(db_path: Path | None, project: str | None, reference: str) -> None:
    """Discard a task together with its worktree, branch, and session."""

    _emit_lines(
        _call(
            CONTROLLER.kill,
            TaskRefCommand(db_path=db_path, reference=reference, project=project),
        ),
    )


@task_fanout.command("nuke")
@_db_path_option
@_project_option
@click.option("--confirm", is_flag=True, default=False, help="Required: remove every task.")
def nuke(db_path: Path | None, project: str | None, confirm: bool) -> None:
    """Remove every task of a project regardless of status."""

    _emit_result(
        _call(CONTROLLER.nuke, NukeCommand(db_path=db_path, project=project, confirm=confirm)),
    )


@task_fanout.command("clean")
@_db_path_option
@_scope_option
def clean(db_path: Path | None, scope: str) -> None:
    """Remove completed and merged tasks."""

    _emit_result(_call(CONTROLLER.clean, CleanCommand(db_path=db_path, scope=scope)))


@task_fanout.command("send")
@_db_path_option
@_project_option
@click.argument("reference")
@click.argument("text")
def send(db_path: Path | None, project: str | None, reference: str, text: str) -> None:
    """Type TEXT into a task's session and press Enter."""

    _emit_lines(
        _call(
            CONTROLLER.send,
            SendCommand(db_path=db_path, reference=reference, text=text, project=project),
        ),
    )


@task_fanout.command("read")
@_db_path_option
@_project_option
@click.option(
    "--lines",
    type=click.IntRange(min=1, max=10_000),
    default=100,
    show_default=True,
    help="How many lines of output to capture.",
)
@click.argument("reference")
def read(db_path: Path | None, project: str | None, lines: int, reference: str) -> None:
    """Print recent output of a task's session."""

    _emit_lines(
        _call(
            CONTROLLER.read,
            ReadCommand(db_path=db_path, reference=reference, lines=lines, project=project),
        ),
    )


@task_fanout.command("sessions")
@_db_path_option
def sessions(db_path: Path | None) -> None:
    """List tracked sessions and whether they are still running."""

    _emit_lines(_call(CONTROLLER.sessions_report, SessionsCommand(db_path=db_path)))


@task_fanout.command("providers")
def providers() -> None:
    """Check that assistant CLIs and launch tooling are installed."""

    _emit_result(_call(CONTROLLER.providers))


def _call(func: Callable[..., T], *args: object) -> T:
    try:
        return func(*args)
    except TaskFanoutError as error:
        raise click.ClickException(error.render()) from error
    except ValueError as error:
        raise click.ClickException(str(error)) from error


def _emit_result(result: CommandResult) -> None:
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Command finished with failures.")


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    task_fanout()
