"""Error taxonomy for task orchestration.

Every error carries an optional ``remediation`` text: the concrete command or
operation sequence the user should run next. Front ends render both.
"""

from __future__ import annotations


class TaskFanoutError(RuntimeError):
    """Base class for recoverable orchestration failures."""

    def __init__(self, message: str, *, remediation: str | None = None) -> None:
        super().__init__(message)
        self.remediation = remediation

    def render(self) -> str:
        message = str(self)
        if self.remediation:
            return f"{message}\n{self.remediation}"
        return message


class NotAGitRepository(TaskFanoutError):
    """Current directory (or given path) is not inside a git repository."""


class ProjectNotFound(TaskFanoutError):
    """Project reference matches neither a path nor a registered name."""


class TaskNotFound(TaskFanoutError):
    """No task matches the name/id reference in the requested statuses."""


class InvalidTaskName(TaskFanoutError, ValueError):
    """Task slug cannot be used in branch and directory names."""


class WorkspaceCreationError(TaskFanoutError):
    """Worktree or task branch could not be created."""


class WorkspaceMissing(TaskFanoutError):
    """Task worktree no longer exists on disk."""


class SessionLaunchFailed(TaskFanoutError):
    """Assistant session could not be started."""


class SessionUnavailable(TaskFanoutError):
    """Task has no tracked session handle, or the session is gone."""


class CommitFailed(TaskFanoutError):
    """Uncommitted workspace changes could not be committed."""


class RebaseConflict(TaskFanoutError):
    """Task branch could not be rebased onto its base branch."""


class FastForwardFailed(TaskFanoutError):
    """Base branch could not be moved to the rebased task branch tip."""


class BranchInUseElsewhere(TaskFanoutError):
    """Base branch is checked out in a location that cannot be updated safely."""
