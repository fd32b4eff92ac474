"""Session provider interface for assistant launches."""

from __future__ import annotations

from typing import Protocol

from task_fanout.config import SessionSettings
from task_fanout.orchestrator.models import TaskView


class SessionProvider(Protocol):
    """Protocol implemented by assistant launchers."""

    name: str

    def validate(self, settings: SessionSettings) -> str | None:
        """Return a human-readable problem description, or None when usable."""

    def launch(self, task: TaskView, settings: SessionSettings) -> str | None:
        """Start the assistant in ``task.workspace_path`` without blocking.

        Returns the tmux session name when a named session was created, None for
        fire-and-forget launches.
        """


class SessionControl(Protocol):
    """Protocol for interacting with running named sessions."""

    def send_keys(self, handle: str, text: str) -> None:
        """Type ``text`` into the session and press Enter."""

    def capture(self, handle: str, lines: int = 100) -> str:
        """Return the last ``lines`` lines of the session's visible output."""

    def exists(self, handle: str) -> bool:
        """Whether the session is still running."""

    def kill(self, handle: str) -> bool:
        """Terminate the session; False when it was already gone."""


def session_name_for(branch: str) -> str:
    """tmux session name for a task branch."""

    return branch.replace("/", "-").replace(".", "-").replace(":", "-")
