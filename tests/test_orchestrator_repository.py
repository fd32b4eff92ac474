from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import allure
from sqlalchemy import text

from task_fanout.orchestrator.models import (
    MERGEABLE_STATUSES,
    TaskCreate,
    TaskMetadata,
    TaskStatus,
)
from task_fanout.orchestrator.repository import TaskRepository

pytestmark = [
    allure.epic("Task Store"),
    allure.feature("Task Rows and Status Guards"),
]

PROJECT = Path("/work/app")


def _create(
    repository: TaskRepository,
    task_name: str,
    *,
    task_id: str | None = None,
    created_at: datetime | None = None,
    project_path: Path = PROJECT,
):
    repository.upsert_project(path=project_path, name=project_path.name, default_branch="main")
    return repository.create_task(
        TaskCreate(
            project_path=project_path,
            project_name=project_path.name,
            task_name=task_name,
            description=f"do {task_name}",
            workspace_path=Path("/work/trees") / task_name,
            branch=f"fix/{task_name}-1",
            base_branch="main",
            task_id=task_id,
            created_at=created_at,
        ),
    )


def test_create_task_persists_row_and_bumps_task_count(repository: TaskRepository) -> None:
    task = _create(repository, "fix-auth")

    assert task.status is TaskStatus.ACTIVE
    assert task.created_at.tzinfo is not None
    assert task.metadata == TaskMetadata()
    project = repository.get_project(PROJECT)
    assert project is not None
    assert project.task_count == 1
    assert repository.get_task(task.task_id) == task


def test_upsert_project_refreshes_default_branch(repository: TaskRepository) -> None:
    first = repository.upsert_project(path=PROJECT, name="app", default_branch="main")
    second = repository.upsert_project(path=PROJECT, name="app", default_branch="develop")

    assert second.default_branch == "develop"
    assert second.last_used >= first.last_used
    assert repository.find_project_by_name("app") == second
    assert repository.find_project_by_name("missing") is None


def test_find_task_matches_name_or_id_prefix_newest_first(repository: TaskRepository) -> None:
    now = datetime.now(tz=UTC)
    older = _create(repository, "fix-ui", task_id="aaaa1111-old", created_at=now - timedelta(1))
    newer = _create(repository, "fix-ui", task_id="bbbb2222-new", created_at=now)

    by_name = repository.find_task("fix-ui", statuses=MERGEABLE_STATUSES)
    by_prefix = repository.find_task("aaaa", statuses=MERGEABLE_STATUSES)

    assert by_name is not None
    assert by_name.task_id == newer.task_id
    assert by_prefix is not None
    assert by_prefix.task_id == older.task_id


def test_find_task_treats_like_wildcards_literally(repository: TaskRepository) -> None:
    _create(repository, "fix-auth", task_id="abc-1")

    assert repository.find_task("%", statuses=MERGEABLE_STATUSES) is None
    assert repository.find_task("_bc", statuses=MERGEABLE_STATUSES) is None


def test_find_task_respects_status_and_project_scope(repository: TaskRepository) -> None:
    task = _create(repository, "fix-auth")
    other_project = Path("/work/other")
    _create(repository, "fix-auth", project_path=other_project)

    assert repository.mark_completed(task_id=task.task_id)
    assert repository.find_task(
        "fix-auth",
        statuses=(TaskStatus.ACTIVE,),
        project_path=PROJECT,
    ) is None
    scoped = repository.find_task(
        "fix-auth",
        statuses=(TaskStatus.COMPLETED,),
        project_path=PROJECT,
    )
    assert scoped is not None
    assert scoped.task_id == task.task_id


def test_status_transitions_only_advance(repository: TaskRepository) -> None:
    task = _create(repository, "fix-auth")

    assert repository.mark_completed(task_id=task.task_id)
    assert not repository.mark_completed(task_id=task.task_id)
    assert repository.mark_merged(task_id=task.task_id)
    assert not repository.mark_merged(task_id=task.task_id)
    assert not repository.mark_completed(task_id=task.task_id)

    merged = repository.get_task(task.task_id)
    assert merged is not None
    assert merged.status is TaskStatus.MERGED
    assert merged.completed_at is not None
    assert merged.merged_at is not None
    assert merged.completed_at <= merged.merged_at


def test_mark_merged_from_active_stamps_completion(repository: TaskRepository) -> None:
    task = _create(repository, "fix-auth")

    assert repository.mark_merged(task_id=task.task_id)

    merged = repository.get_task(task.task_id)
    assert merged is not None
    assert merged.completed_at is not None
    assert merged.merged_at is not None


def test_delete_task_never_drives_task_count_negative(repository: TaskRepository) -> None:
    task = _create(repository, "fix-auth")
    with repository.engine.begin() as connection:
        connection.execute(text("UPDATE projects SET task_count = 0"))

    assert repository.delete_task(task_id=task.task_id)
    assert not repository.delete_task(task_id=task.task_id)
    project = repository.get_project(PROJECT)
    assert project is not None
    assert project.task_count == 0


def test_sync_task_count_matches_remaining_rows(repository: TaskRepository) -> None:
    _create(repository, "one")
    _create(repository, "two")

    assert repository.sync_task_count(project_path=PROJECT) == 2


def test_list_tasks_orders_by_project_then_newest(repository: TaskRepository) -> None:
    now = datetime.now(tz=UTC)
    _create(repository, "b-old", project_path=Path("/work/beta"), created_at=now - timedelta(2))
    _create(repository, "b-new", project_path=Path("/work/beta"), created_at=now)
    _create(repository, "a-only", project_path=Path("/work/alpha"), created_at=now - timedelta(5))

    names = [task.task_name for task in repository.list_tasks()]

    assert names == ["a-only", "b-new", "b-old"]


def test_metadata_update_preserves_unknown_keys(repository: TaskRepository) -> None:
    task = _create(repository, "fix-auth")
    stored = TaskMetadata.from_json('{"pane": "%3", "session_handle": "old"}')

    assert repository.update_metadata(
        task_id=task.task_id,
        metadata=TaskMetadata(session_handle="fix-fix-auth-1", extra=stored.extra),
    )

    reloaded = repository.get_task(task.task_id)
    assert reloaded is not None
    assert reloaded.session_handle == "fix-fix-auth-1"
    assert reloaded.metadata.extra == {"pane": "%3"}
    assert not repository.update_metadata(task_id="missing", metadata=TaskMetadata())


def test_empty_metadata_serializes_to_null() -> None:
    assert TaskMetadata().to_json() is None
    assert TaskMetadata.from_json(None) == TaskMetadata()
