"""Assistant session providers and session control."""

from task_fanout.orchestrator.backend.base import SessionControl, SessionProvider, session_name_for
from task_fanout.orchestrator.backend.cli_backend import (
    PROVIDERS,
    ClaudeProvider,
    CliAssistantProvider,
    CodexProvider,
    get_provider,
)
from task_fanout.orchestrator.backend.tmux import TmuxSessions

__all__ = [
    "PROVIDERS",
    "ClaudeProvider",
    "CliAssistantProvider",
    "CodexProvider",
    "SessionControl",
    "SessionProvider",
    "TmuxSessions",
    "get_provider",
    "session_name_for",
]
