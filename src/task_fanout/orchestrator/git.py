"""Thin git command layer.

Every call receives an explicit working directory; the process-wide current
directory is never changed.
"""

from __future__ import annotations

import os
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

_GIT_ENV_OVERRIDES = {
    "GIT_TERMINAL_PROMPT": "0",
    "GIT_EDITOR": "true",
    "GIT_SEQUENCE_EDITOR": "true",
    "GIT_MERGE_AUTOEDIT": "no",
    "LC_ALL": "C",
}


@dataclass(slots=True)
class GitResult:
    """Captured outcome of one git invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class GitCommandError(RuntimeError):
    """Git exited non-zero, timed out, or could not be started."""

    def __init__(self, result: GitResult, *, timed_out: bool = False) -> None:
        detail = result.stderr.strip() or result.stdout.strip() or f"exit code {result.returncode}"
        super().__init__(f"git {' '.join(result.args)} failed: {detail}")
        self.result = result
        self.timed_out = timed_out

    @property
    def stderr(self) -> str:
        return self.result.stderr


@dataclass(slots=True)
class WorktreeEntry:
    """One binding reported by ``git worktree list --porcelain``."""

    path: Path
    head: str | None = None
    branch: str | None = None
    bare: bool = False
    detached: bool = False


def run_git(
    args: Sequence[str],
    *,
    cwd: Path,
    check: bool = True,
    timeout: float | None = None,
) -> GitResult:
    """Run ``git <args>`` inside ``cwd`` and capture its output."""

    argv = ("git", *args)
    env = os.environ.copy()
    env.update(_GIT_ENV_OVERRIDES)
    try:
        completed = subprocess.run(  # noqa: S603
            argv,
            cwd=cwd,
            env=env,
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout,
        )
    except FileNotFoundError as error:
        result = GitResult(args=tuple(args), returncode=127, stdout="", stderr=str(error))
        raise GitCommandError(result) from error
    except subprocess.TimeoutExpired as error:
        result = GitResult(
            args=tuple(args),
            returncode=124,
            stdout=_as_text(error.stdout),
            stderr=_as_text(error.stderr) or f"timed out after {timeout}s",
        )
        raise GitCommandError(result, timed_out=True) from error

    result = GitResult(
        args=tuple(args),
        returncode=completed.returncode,
        stdout=completed.stdout,
        stderr=completed.stderr,
    )
    if check and not result.ok:
        raise GitCommandError(result)
    return result


def rev_parse(cwd: Path, ref: str) -> str | None:
    """Resolve ``ref`` to a commit sha, or None if it does not exist."""

    result = run_git(
        ["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"],
        cwd=cwd,
        check=False,
    )
    if not result.ok:
        return None
    return result.stdout.strip() or None


def branch_exists(cwd: Path, branch: str) -> bool:
    result = run_git(
        ["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"],
        cwd=cwd,
        check=False,
    )
    return result.ok


def current_branch(cwd: Path) -> str:
    """Checked-out branch name; empty string for a detached HEAD."""

    return run_git(["branch", "--show-current"], cwd=cwd).stdout.strip()


def is_ancestor(cwd: Path, ancestor: str, descendant: str) -> bool:
    result = run_git(
        ["merge-base", "--is-ancestor", ancestor, descendant],
        cwd=cwd,
        check=False,
    )
    return result.ok


def status_porcelain(cwd: Path, *, include_untracked: bool = True) -> list[str]:
    """Return ``git status --porcelain`` lines for the worktree at ``cwd``."""

    args = ["status", "--porcelain"]
    if not include_untracked:
        args.append("--untracked-files=no")
    output = run_git(args, cwd=cwd).stdout
    return [line for line in output.splitlines() if line.strip()]


def porcelain_path(line: str) -> str:
    """Extract the (post-rename) path from one porcelain status line."""

    path = line[3:]
    if " -> " in path:
        path = path.split(" -> ", 1)[1]
    return path.strip().strip('"')


def list_worktrees(cwd: Path) -> list[WorktreeEntry]:
    """Parse every working-directory binding of the repository at ``cwd``."""

    output = run_git(["worktree", "list", "--porcelain"], cwd=cwd).stdout
    return parse_worktree_porcelain(output)


def parse_worktree_porcelain(output: str) -> list[WorktreeEntry]:
    entries: list[WorktreeEntry] = []
    current: WorktreeEntry | None = None
    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line:
            current = None
            continue
        key, _, value = line.partition(" ")
        if key == "worktree":
            current = WorktreeEntry(path=Path(value))
            entries.append(current)
            continue
        if current is None:
            continue
        if key == "HEAD":
            current.head = value
        elif key == "branch":
            current.branch = value.removeprefix("refs/heads/")
        elif key == "bare":
            current.bare = True
        elif key == "detached":
            current.detached = True
    return entries


def _as_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value
