"""Completion marker detection."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from task_fanout.orchestrator.contracts import (
    ARTIFACTS_DIR_NAME,
    COMPLETION_SUFFIX,
    LEGACY_MARKER_NAME,
)
from task_fanout.orchestrator.models import TaskView


def is_complete(workspace_path: Path) -> bool:
    """True when the assistant has dropped a completion marker in its worktree."""

    if (workspace_path / LEGACY_MARKER_NAME).is_file():
        return True
    artifacts_dir = workspace_path / ARTIFACTS_DIR_NAME
    if not artifacts_dir.is_dir():
        return False
    return any(entry.name.endswith(COMPLETION_SUFFIX) for entry in artifacts_dir.iterdir())


def find_ready(tasks: Iterable[TaskView]) -> list[TaskView]:
    return [task for task in tasks if is_complete(task.workspace_path)]
