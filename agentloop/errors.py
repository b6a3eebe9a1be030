"""Shared error types for the agentloop package."""


class AgentLoopError(Exception):
    """Base exception for agentloop errors.

    Use this for user-facing errors that should have actionable messages.
    """

    pass


class GitError(AgentLoopError):
    """Raised when a required git operation fails."""

    pass


class BacklogError(AgentLoopError):
    """Raised when the backlog CLI fails or returns unparseable output."""

    pass


class WorkspaceError(AgentLoopError):
    """Raised when a task workspace cannot be created."""

    pass


class ApprovalTimeoutError(AgentLoopError):
    """Raised when no approval response arrives within the configured timeout."""

    pass
