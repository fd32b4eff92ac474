"""Persistent store for projects and tasks."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from uuid import uuid4

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, or_
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from task_fanout.orchestrator.models import (
    MERGEABLE_STATUSES,
    ProjectView,
    TaskCreate,
    TaskMetadata,
    TaskStatus,
    TaskView,
)
from task_fanout.storage.alembic_runner import current_revision, head_revision, upgrade_head
from task_fanout.storage.common import (
    build_sqlite_engine,
    from_db_datetime,
    to_db_datetime,
    utc_now,
)
from task_fanout.storage.sqlmodel_models import ProjectRecord, TaskRecord


class TaskRepository:
    """Task/project persistence facade backed by SQLModel + SQLite.

    Status transitions are guarded ``UPDATE ... WHERE status IN (...)``
    statements; callers learn from the boolean result whether the row was in
    a state that allowed the transition.
    """

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Create the database file if needed and migrate it to the latest revision."""

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        if current_revision(self.engine) != head_revision(self.db_path):
            upgrade_head(self.db_path)

    # Projects

    def upsert_project(self, *, path: Path, name: str, default_branch: str) -> ProjectView:
        """Register a project or refresh its last-used time and default branch."""

        now = utc_now()
        with Session(self.engine) as session:
            row = session.get(ProjectRecord, str(path))
            if row is None:
                row = ProjectRecord(
                    path=str(path),
                    name=name,
                    last_used=to_db_datetime(now),
                    default_branch=default_branch,
                    task_count=0,
                )
            else:
                row.last_used = to_db_datetime(now)
                row.default_branch = default_branch
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_project_view(row)

    def get_project(self, path: Path) -> ProjectView | None:
        with Session(self.engine) as session:
            row = session.get(ProjectRecord, str(path))
            return _to_project_view(row) if row is not None else None

    def find_project_by_name(self, name: str) -> ProjectView | None:
        """Most recently used project registered under ``name``."""

        with Session(self.engine) as session:
            row = session.exec(
                select(ProjectRecord)
                .where(ProjectRecord.name == name)
                .order_by(col(ProjectRecord.last_used).desc())
                .limit(1),
            ).one_or_none()
            return _to_project_view(row) if row is not None else None

    def list_projects(self) -> list[ProjectView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(ProjectRecord).order_by(col(ProjectRecord.last_used).desc()),
            ).all()
            return [_to_project_view(row) for row in rows]

    # Tasks

    def create_task(self, payload: TaskCreate) -> TaskView:
        """Insert an active task and bump the owning project's task count."""

        created_at = payload.created_at or utc_now()
        task_id = payload.task_id or str(uuid4())
        with Session(self.engine) as session:
            row = TaskRecord(
                task_id=task_id,
                project_path=str(payload.project_path),
                project_name=payload.project_name,
                task_name=payload.task_name,
                description=payload.description,
                workspace_path=str(payload.workspace_path),
                branch=payload.branch,
                base_branch=payload.base_branch,
                status=TaskStatus.ACTIVE.value,
                created_at=to_db_datetime(created_at),
            )
            session.add(row)
            session.exec(
                sa_update(ProjectRecord)
                .where(col(ProjectRecord.path) == str(payload.project_path))
                .values(task_count=col(ProjectRecord.task_count) + 1),
            )
            session.commit()
            session.refresh(row)
            return _to_task_view(row)

    def get_task(self, task_id: str) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.get(TaskRecord, task_id)
            return _to_task_view(row) if row is not None else None

    def find_task(
        self,
        reference: str,
        *,
        statuses: Iterable[TaskStatus],
        project_path: Path | None = None,
    ) -> TaskView | None:
        """Find the newest task whose name equals, or whose id starts with, ``reference``."""

        status_values = [status.value for status in statuses]
        with Session(self.engine) as session:
            query = select(TaskRecord).where(
                or_(
                    col(TaskRecord.task_name) == reference,
                    col(TaskRecord.task_id).startswith(reference, autoescape=True),
                ),
                col(TaskRecord.status).in_(status_values),
            )
            if project_path is not None:
                query = query.where(TaskRecord.project_path == str(project_path))
            row = session.exec(
                query.order_by(col(TaskRecord.created_at).desc()).limit(1),
            ).one_or_none()
            return _to_task_view(row) if row is not None else None

    def list_tasks(
        self,
        *,
        project_path: Path | None = None,
        statuses: Iterable[TaskStatus] | None = None,
    ) -> list[TaskView]:
        """List tasks grouped by project name, newest first within a project."""

        with Session(self.engine) as session:
            query = select(TaskRecord)
            if project_path is not None:
                query = query.where(TaskRecord.project_path == str(project_path))
            if statuses is not None:
                query = query.where(
                    col(TaskRecord.status).in_([status.value for status in statuses]),
                )
            rows = session.exec(
                query.order_by(
                    col(TaskRecord.project_name).asc(),
                    col(TaskRecord.created_at).desc(),
                ),
            ).all()
            return [_to_task_view(row) for row in rows]

    def update_metadata(self, *, task_id: str, metadata: TaskMetadata) -> bool:
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(TaskRecord)
                .where(col(TaskRecord.task_id) == task_id)
                .values(metadata_json=metadata.to_json()),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def mark_completed(self, *, task_id: str) -> bool:
        """Move an active task to completed."""

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(TaskRecord)
                .where(
                    col(TaskRecord.task_id) == task_id,
                    col(TaskRecord.status) == TaskStatus.ACTIVE.value,
                )
                .values(
                    status=TaskStatus.COMPLETED.value,
                    completed_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def mark_merged(self, *, task_id: str) -> bool:
        """Move an active or completed task to merged, keeping an earlier completion time."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(TaskRecord)
                .where(
                    col(TaskRecord.task_id) == task_id,
                    col(TaskRecord.status).in_([status.value for status in MERGEABLE_STATUSES]),
                )
                .values(
                    status=TaskStatus.MERGED.value,
                    completed_at=func.coalesce(col(TaskRecord.completed_at), now),
                    merged_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def delete_task(self, *, task_id: str) -> bool:
        """Delete a task row and decrement its project's task count (never below zero)."""

        with Session(self.engine) as session:
            row = session.get(TaskRecord, task_id)
            if row is None:
                return False
            project_path = row.project_path
            session.exec(sa_delete(TaskRecord).where(col(TaskRecord.task_id) == task_id))
            session.exec(
                sa_update(ProjectRecord)
                .where(col(ProjectRecord.path) == project_path)
                .values(task_count=func.max(col(ProjectRecord.task_count) - 1, 0)),
            )
            session.commit()
            return True

    def sync_task_count(self, *, project_path: Path) -> int:
        """Reset a project's task count to the number of task rows it still owns."""

        with Session(self.engine) as session:
            remaining = session.exec(
                select(func.count())
                .select_from(TaskRecord)
                .where(TaskRecord.project_path == str(project_path)),
            ).one()
            session.exec(
                sa_update(ProjectRecord)
                .where(col(ProjectRecord.path) == str(project_path))
                .values(task_count=int(remaining)),
            )
            session.commit()
            return int(remaining)


def _to_project_view(row: ProjectRecord) -> ProjectView:
    return ProjectView(
        path=Path(row.path),
        name=row.name,
        last_used=from_db_datetime(row.last_used),
        default_branch=row.default_branch,
        task_count=row.task_count,
    )


def _to_task_view(row: TaskRecord) -> TaskView:
    return TaskView(
        task_id=row.task_id,
        project_path=Path(row.project_path),
        project_name=row.project_name,
        task_name=row.task_name,
        description=row.description,
        workspace_path=Path(row.workspace_path),
        branch=row.branch,
        base_branch=row.base_branch,
        status=TaskStatus(row.status),
        created_at=from_db_datetime(row.created_at),
        completed_at=(
            from_db_datetime(row.completed_at) if row.completed_at is not None else None
        ),
        merged_at=from_db_datetime(row.merged_at) if row.merged_at is not None else None,
        metadata=TaskMetadata.from_json(row.metadata_json),
    )
