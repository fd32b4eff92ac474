"""Domain models for projects, tasks, and lifecycle outcomes."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from task_fanout.orchestrator.errors import TaskFanoutError

SHORT_ID_LENGTH = 8


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    MERGED = "merged"


MERGEABLE_STATUSES: tuple[TaskStatus, ...] = (TaskStatus.ACTIVE, TaskStatus.COMPLETED)
LISTED_STATUSES: tuple[TaskStatus, ...] = (TaskStatus.ACTIVE, TaskStatus.COMPLETED)
CLEANABLE_STATUSES: tuple[TaskStatus, ...] = (TaskStatus.COMPLETED, TaskStatus.MERGED)


@dataclass(slots=True)
class TaskMetadata:
    """Side-channel data remembered for a task.

    Only ``session_handle`` is interpreted; keys written by newer providers are
    kept in ``extra`` so a read-modify-write cycle never drops them.
    """

    session_handle: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str | None:
        payload: dict[str, Any] = dict(self.extra)
        if self.session_handle is not None:
            payload["session_handle"] = self.session_handle
        if not payload:
            return None
        return json.dumps(payload, ensure_ascii=False, sort_keys=True)

    @classmethod
    def from_json(cls, raw: str | None) -> TaskMetadata:
        if not raw:
            return cls()
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            raise TypeError("Task metadata must be a JSON object")
        handle = payload.pop("session_handle", None)
        return cls(
            session_handle=str(handle) if handle is not None else None,
            extra=payload,
        )


@dataclass(slots=True)
class ProjectView:
    """Registered repository root."""

    path: Path
    name: str
    last_used: datetime
    default_branch: str
    task_count: int = 0


@dataclass(slots=True)
class TaskCreate:
    """Input payload for recording a freshly spawned task."""

    project_path: Path
    project_name: str
    task_name: str
    description: str
    workspace_path: Path
    branch: str
    base_branch: str
    task_id: str | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class TaskView:
    """Readable task view for lifecycle logic and front ends."""

    task_id: str
    project_path: Path
    project_name: str
    task_name: str
    description: str
    workspace_path: Path
    branch: str
    base_branch: str
    status: TaskStatus
    created_at: datetime
    completed_at: datetime | None = None
    merged_at: datetime | None = None
    metadata: TaskMetadata = field(default_factory=TaskMetadata)

    @property
    def short_id(self) -> str:
        return self.task_id[:SHORT_ID_LENGTH]

    @property
    def session_handle(self) -> str | None:
        return self.metadata.session_handle


@dataclass(slots=True)
class SpawnResult:
    """Outcome of spawning one task."""

    task: TaskView
    session_handle: str | None
    warning: str | None = None


@dataclass(slots=True)
class IntegrationResult:
    """Outcome of one integration attempt; ``task`` is the post-attempt view."""

    success: bool
    task: TaskView
    base_location: Path | None = None
    error: TaskFanoutError | None = None
    steps: list[str] = field(default_factory=list)


@dataclass(slots=True)
class CheckSummary:
    """Completion sweep counters for one project."""

    checked: int = 0
    completed: int = 0
    merged: int = 0
    failures: list[IntegrationResult] = field(default_factory=list)


@dataclass(slots=True)
class RemovalSummary:
    """Bulk removal counters shared by nuke and clean."""

    removed: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass(slots=True)
class SessionInfo:
    """Tracked session with its liveness at query time."""

    task_id: str
    task_name: str
    handle: str
    running: bool
