"""tmux-backed session control."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from pathlib import Path

from task_fanout.orchestrator.errors import SessionLaunchFailed, SessionUnavailable

logger = logging.getLogger(__name__)

_INSTALL_HINT = "Install tmux (for example `apt install tmux` or `brew install tmux`)."


class TmuxSessions:
    """Create, drive, and tear down named tmux sessions."""

    def __init__(self, executable: str = "tmux") -> None:
        self.executable = executable

    def new_session(
        self,
        handle: str,
        *,
        cwd: Path,
        window_name: str,
        command: str,
    ) -> None:
        """Start ``command`` in a detached session rooted at ``cwd``."""

        try:
            completed = self._run(
                ["new-session", "-d", "-s", handle, "-n", window_name, "-c", str(cwd), command],
            )
        except FileNotFoundError as error:
            raise SessionLaunchFailed(
                f"tmux executable not found: {self.executable}",
                remediation=_INSTALL_HINT,
            ) from error
        if completed.returncode != 0:
            raise SessionLaunchFailed(
                f"tmux new-session {handle} failed: {completed.stderr.strip()}",
                remediation=f"Check `{self.executable} ls` for a clashing session name.",
            )

    def send_keys(self, handle: str, text: str) -> None:
        self._checked(["send-keys", "-t", handle, "-l", text], handle=handle)
        self._checked(["send-keys", "-t", handle, "C-m"], handle=handle)

    def capture(self, handle: str, lines: int = 100) -> str:
        completed = self._checked(
            ["capture-pane", "-p", "-t", handle, "-S", f"-{max(1, lines)}"],
            handle=handle,
        )
        return completed.stdout

    def exists(self, handle: str) -> bool:
        try:
            completed = self._run(["has-session", "-t", f"={handle}"])
        except FileNotFoundError:
            return False
        return completed.returncode == 0

    def kill(self, handle: str) -> bool:
        try:
            completed = self._run(["kill-session", "-t", f"={handle}"])
        except FileNotFoundError:
            logger.warning("tmux not available; cannot kill session %s", handle)
            return False
        if completed.returncode != 0:
            logger.debug("tmux kill-session %s: %s", handle, completed.stderr.strip())
            return False
        return True

    def _checked(self, args: Sequence[str], *, handle: str) -> subprocess.CompletedProcess[str]:
        try:
            completed = self._run(args)
        except FileNotFoundError as error:
            raise SessionUnavailable(
                f"tmux executable not found: {self.executable}",
                remediation=_INSTALL_HINT,
            ) from error
        if completed.returncode != 0:
            raise SessionUnavailable(
                f"Session {handle} is not running: {completed.stderr.strip()}",
                remediation="Run `task-fanout sessions` to see which sessions are alive.",
            )
        return completed

    def _run(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        return subprocess.run(  # noqa: S603
            [self.executable, *args],
            check=False,
            capture_output=True,
            text=True,
        )
