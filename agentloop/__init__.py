"""
Agentloop - Per-agent task lifecycle engine.

This package runs one autonomous coding agent against a shared backlog and a
shared git remote: claim a task, isolate it in a worktree, gate it behind
human approval when needed, then rebase, test, merge and push.
"""

__version__ = "0.1.0"
