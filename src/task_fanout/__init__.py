"""Fan out coding tasks into isolated git worktrees and integrate finished work back."""

__version__ = "0.3.0"
