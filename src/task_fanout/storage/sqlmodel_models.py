"""SQLModel ORM tables for the project registry and task store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Text
from sqlmodel import Field, SQLModel


class ProjectRecord(SQLModel, table=True):
    __tablename__ = "projects"  # type: ignore[bad-override]

    path: str = Field(primary_key=True)
    name: str = Field(index=True)
    last_used: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    default_branch: str
    task_count: int = Field(default=0)


class TaskRecord(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_tasks_project_status", "project_path", "status"),)

    task_id: str = Field(primary_key=True)
    project_path: str = Field(index=True)
    project_name: str
    task_name: str = Field(index=True)
    description: str = Field(default="", sa_column=Column(Text, nullable=False))
    workspace_path: str
    branch: str
    base_branch: str
    status: str = Field(index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    merged_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    metadata_json: str | None = Field(default=None, sa_column=Column(Text))
