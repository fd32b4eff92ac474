"""File-based task context handed to the assistant inside its worktree."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from task_fanout import __version__
from task_fanout.config import Settings
from task_fanout.orchestrator.models import TaskView

ARTIFACTS_DIR_NAME = ".task-fanout"
COMPLETION_SUFFIX = ".task_complete"
LEGACY_MARKER_NAME = ".task_complete"


@dataclass(slots=True)
class TaskArtifacts:
    """Paths of the context files written for one task."""

    context_path: Path
    instructions_path: Path


def write_json(path: Path, payload: dict[str, Any]) -> None:
    """Persist JSON payload using deterministic formatting."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True), "utf-8")


def load_json(path: Path) -> dict[str, Any]:
    """Load JSON document and validate top-level object type."""

    payload = json.loads(path.read_text("utf-8"))
    if not isinstance(payload, dict):
        raise TypeError(f"Expected JSON object in {path}")
    return payload


def artifact_prefix(task: TaskView) -> str:
    """``<created-stamp>_<slug>-<id8>``; sorts chronologically inside the directory."""

    created = task.created_at
    stamp = created.strftime("%Y-%m-%dT%H-%M-%S-") + f"{created.microsecond // 1000:03d}"
    return f"{stamp}_{task.task_name}-{task.short_id}"


def initial_prompt(task: TaskView) -> str:
    """First instruction typed into a freshly launched assistant."""

    return (
        f"Read {ARTIFACTS_DIR_NAME}/*_{task.task_name}-{task.short_id}.task.md "
        f"for your focused task: {task.task_name}"
    )


def write_task_context(task: TaskView, settings: Settings) -> TaskArtifacts:
    """Write ``<prefix>.context.json`` and ``<prefix>.task.md`` into the worktree."""

    artifacts_dir = task.workspace_path / ARTIFACTS_DIR_NAME
    artifacts_dir.mkdir(parents=True, exist_ok=True)
    prefix = artifact_prefix(task)
    instructions = render_instructions(task)

    context_path = artifacts_dir / f"{prefix}.context.json"
    write_json(
        context_path,
        {
            "task": _task_payload(task),
            "orchestrator": {
                "version": __version__,
                "home_dir": str(settings.home_dir),
                "settings": {
                    "auto_merge": settings.merge.auto_merge,
                    "delete_merged_branch": settings.merge.delete_merged_branch,
                    "provider": settings.session.provider,
                    "worktrees_root": str(settings.workspace.worktrees_root),
                },
            },
            "instructions": instructions,
        },
    )
    instructions_path = artifacts_dir / f"{prefix}.task.md"
    instructions_path.write_text(instructions, "utf-8")
    return TaskArtifacts(context_path=context_path, instructions_path=instructions_path)


def render_instructions(task: TaskView) -> str:
    prefix = artifact_prefix(task)
    base = task.base_branch
    return f"""# Task: {task.task_name}

## Description
{task.description or "(no description given)"}

## Project
- Name: {task.project_name}
- Path: {task.project_path}
- Branch: {task.branch}
- Base: {base}

## Instructions
1. Work only on this task; do not refactor unrelated code.
2. Stay inside this worktree directory.
3. Keep the branch current: run `git rebase {base}` periodically so that
   integration stays a fast-forward.
4. The orchestrator may read your terminal output and type follow-up requests.
   Append each new request to `{ARTIFACTS_DIR_NAME}/{prefix}.task.md` under an
   `## Update` heading before acting on it.
5. Files under `{ARTIFACTS_DIR_NAME}/` are local to this worktree and never committed.

## Testing
Detect the project type (pyproject.toml, package.json, go.mod, Cargo.toml,
Makefile, ...) and run its tests and build before finishing. Integration does
not run them for you.

## Completion checklist
1. `git rebase {base}` one final time.
2. Run the project's tests and build.
3. Commit all work: `git add -A && git commit`.
4. Create `{ARTIFACTS_DIR_NAME}/{prefix}{COMPLETION_SUFFIX}` containing a short summary.

Once the marker exists, `task-fanout check` rebases this branch onto {base},
fast-forwards {base} and removes this worktree.
"""


def _task_payload(task: TaskView) -> dict[str, Any]:
    return {
        "task_id": task.task_id,
        "task_name": task.task_name,
        "description": task.description,
        "project_name": task.project_name,
        "project_path": str(task.project_path),
        "workspace_path": str(task.workspace_path),
        "branch": task.branch,
        "base_branch": task.base_branch,
        "status": task.status.value,
        "created_at": task.created_at.isoformat(),
    }
