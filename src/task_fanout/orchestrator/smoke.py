"""Availability checks for assistant providers and their launch tooling."""

from __future__ import annotations

import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass

from task_fanout.config import Settings
from task_fanout.orchestrator.backend import PROVIDERS


@dataclass(slots=True)
class ProviderSmokeResult:
    """One provider availability result."""

    provider: str
    executable: str
    resolved_path: str | None
    selected: bool
    error: str | None
    version_preview: str = ""

    @property
    def available(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class ToolSmokeResult:
    """Availability of a helper binary the launchers depend on."""

    tool: str
    resolved_path: str | None
    required: bool


def run_smoke_checks(settings: Settings, *, timeout_seconds: int = 10) -> list[ProviderSmokeResult]:
    """Validate every registered provider against current settings."""

    results: list[ProviderSmokeResult] = []
    for name in sorted(PROVIDERS):
        provider = PROVIDERS[name]()
        command = provider.command(settings.session)
        parts = shlex.split(command) if command.strip() else [""]
        executable = parts[0]
        error = provider.validate(settings.session)
        resolved = shutil.which(executable) if executable else None
        version_preview = ""
        if error is None and resolved is not None:
            version_preview = _probe_version(resolved, timeout_seconds=timeout_seconds)
        results.append(
            ProviderSmokeResult(
                provider=name,
                executable=executable,
                resolved_path=resolved,
                selected=name == settings.session.provider,
                error=error,
                version_preview=version_preview,
            ),
        )
    return results


def check_tools(settings: Settings) -> list[ToolSmokeResult]:
    """Report git, tmux, and the configured terminal launcher."""

    tools = [("git", True), ("tmux", os.name != "nt")]
    terminal_app = settings.session.terminal_app
    if terminal_app in {"iterm", "terminal"}:
        tools.append(("osascript", True))
    elif terminal_app != "none":
        tools.append((terminal_app, True))
    return [
        ToolSmokeResult(tool=tool, resolved_path=shutil.which(tool), required=required)
        for tool, required in tools
    ]


def _probe_version(executable: str, *, timeout_seconds: int) -> str:
    try:
        completed = subprocess.run(  # noqa: S603
            [executable, "--version"],
            check=False,
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
        )
    except subprocess.TimeoutExpired:
        return "version probe timed out"
    except OSError as error:
        return f"version probe failed to start: {error}"
    return _truncate(completed.stdout or completed.stderr)


def _truncate(value: str, *, limit: int = 120) -> str:
    compact = value.strip().replace("\n", " ")
    if len(compact) <= limit:
        return compact
    return compact[:limit] + "..."
