"""Subprocess launchers for interactive CLI assistants."""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

from task_fanout.config import SessionSettings
from task_fanout.orchestrator.backend.base import SessionProvider, session_name_for
from task_fanout.orchestrator.backend.tmux import TmuxSessions
from task_fanout.orchestrator.contracts import initial_prompt
from task_fanout.orchestrator.errors import SessionLaunchFailed
from task_fanout.orchestrator.models import TaskView

logger = logging.getLogger(__name__)

_LINUX_TERMINALS: dict[str, tuple[str, ...]] = {
    "gnome-terminal": ("gnome-terminal", "--"),
    "wezterm": ("wezterm", "start", "--"),
    "alacritty": ("alacritty", "-e"),
}


class CliAssistantProvider(ABC):
    """Launch a CLI assistant bound to a task worktree.

    With ``terminal_app == "none"`` the assistant runs in a detached tmux
    session. macOS terminal apps get a window attached to a fresh tmux session
    via ``osascript``; Linux terminal apps run the same tmux command detached.
    On Windows the assistant opens in a new console and no handle is tracked.
    """

    name = "cli"
    install_hint = ""

    def __init__(self, sessions: TmuxSessions | None = None, *, os_name: str | None = None) -> None:
        self.sessions = sessions or TmuxSessions()
        self.os_name = os_name or os.name

    @abstractmethod
    def command(self, settings: SessionSettings) -> str:
        """Shell command that starts the assistant."""

    def validate(self, settings: SessionSettings) -> str | None:
        command = self.command(settings).strip()
        if not command:
            return f"{self.name}: assistant command is empty."
        executable = shlex.split(command)[0]
        if shutil.which(executable) is None:
            return f"{self.name}: command '{executable}' not found in PATH. {self.install_hint}"
        return None

    def launch(self, task: TaskView, settings: SessionSettings) -> str | None:
        assistant = shlex.join([*shlex.split(self.command(settings)), initial_prompt(task)])
        if self.os_name == "nt":
            self._launch_windows_console(task.workspace_path, assistant)
            return None

        handle = session_name_for(task.branch)
        if settings.terminal_app == "none":
            self.sessions.new_session(
                handle,
                cwd=task.workspace_path,
                window_name=task.task_name,
                command=assistant,
            )
        elif settings.terminal_app in {"iterm", "terminal"}:
            self._launch_macos_terminal(
                settings.terminal_app,
                _tmux_attach_command(task, handle, assistant),
            )
        else:
            self._launch_linux_terminal(
                settings.terminal_app,
                _tmux_attach_command(task, handle, assistant),
            )
        logger.info("Launched %s for %s in session %s", self.name, task.task_name, handle)
        return handle

    def _launch_macos_terminal(self, terminal_app: str, shell_command: str) -> None:
        quoted = _applescript_string(shell_command)
        if terminal_app == "iterm":
            script = (
                'tell application "iTerm" to tell (create window with default profile) '
                f"to tell current session to write text {quoted}"
            )
        else:
            script = f'tell application "Terminal" to do script {quoted}'
        try:
            completed = subprocess.run(  # noqa: S603
                ["osascript", "-e", script],  # noqa: S607
                check=False,
                capture_output=True,
                text=True,
            )
        except FileNotFoundError as error:
            raise SessionLaunchFailed(
                "osascript not found; iterm/terminal launchers require macOS.",
                remediation="Set TASK_FANOUT_TERMINAL_APP=none to use detached tmux sessions.",
            ) from error
        if completed.returncode != 0:
            raise SessionLaunchFailed(
                f"Failed to open {terminal_app}: {completed.stderr.strip()}",
                remediation="Set TASK_FANOUT_TERMINAL_APP=none to use detached tmux sessions.",
            )

    def _launch_linux_terminal(self, terminal_app: str, shell_command: str) -> None:
        argv = [*_LINUX_TERMINALS[terminal_app], "bash", "-c", shell_command]
        try:
            subprocess.Popen(  # noqa: S603
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as error:
            raise SessionLaunchFailed(
                f"Failed to start {terminal_app}: {error}",
                remediation="Set TASK_FANOUT_TERMINAL_APP=none to use detached tmux sessions.",
            ) from error

    def _launch_windows_console(self, workspace_path: Path, assistant: str) -> None:
        console_command = f'cd /d "{workspace_path}" && {assistant}'
        try:
            subprocess.Popen(  # noqa: S603
                ["cmd", "/c", "start", "cmd", "/k", console_command],  # noqa: S607
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as error:
            raise SessionLaunchFailed(f"Failed to open a console window: {error}") from error


class ClaudeProvider(CliAssistantProvider):
    name = "claude"
    install_hint = "Install the Claude Code CLI: npm install -g @anthropic-ai/claude-code"

    def command(self, settings: SessionSettings) -> str:
        return settings.claude_command


class CodexProvider(CliAssistantProvider):
    name = "codex"
    install_hint = "Install the Codex CLI: npm i -g @openai/codex or brew install --cask codex"

    def command(self, settings: SessionSettings) -> str:
        return settings.codex_command


PROVIDERS: dict[str, type[CliAssistantProvider]] = {
    "claude": ClaudeProvider,
    "codex": CodexProvider,
}


def get_provider(name: str, sessions: TmuxSessions | None = None) -> SessionProvider:
    """Instantiate the provider registered under ``name``."""

    try:
        provider_cls = PROVIDERS[name]
    except KeyError as error:
        raise ValueError(
            f"Unsupported provider {name!r}; expected one of {', '.join(sorted(PROVIDERS))}",
        ) from error
    return provider_cls(sessions)


def _tmux_attach_command(task: TaskView, handle: str, assistant: str) -> str:
    return (
        f"cd {shlex.quote(str(task.workspace_path))} && "
        f"tmux new-session -s {shlex.quote(handle)} -n {shlex.quote(task.task_name)} "
        f"{shlex.quote(assistant)}"
    )


def _applescript_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'
