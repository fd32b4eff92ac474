"""Task lifecycle orchestration over git worktrees.

Each task gets its own worktree and branch, an interactive assistant session
bound to that worktree, and a row in the SQLite task store. Finished work is
rebased onto its base branch and fast-forwarded wherever that branch is
checked out, then the worktree is torn down.
"""
