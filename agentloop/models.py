"""Data models for agentloop.

Defines dataclasses and enums for backlog tasks, task workspaces, approval
requests/responses, typed failures and task outcomes. Stages return
``Failure | None`` explicitly instead of sharing mutable failure state.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Literal


class AgentMode(str, Enum):
    """How the agent process consumes the backlog."""

    AUTONOMOUS = "autonomous"
    INTERACTIVE = "interactive"


class AgentStatus(str, Enum):
    """Display status published for the dashboard.

    Distinct from the backlog's task status.
    """

    IDLE = "idle"
    WORKING = "working"
    NEEDS_APPROVAL = "needs_approval"
    BLOCKED = "blocked"


class InstructionMode(str, Enum):
    """Instruction set appended to the coding agent's task prompt."""

    AUTONOMOUS = "autonomous"
    INTERACTIVE = "interactive"
    POST_APPROVAL = "post_approval"
    REVISION = "revision"


class FailureReason(str, Enum):
    """Closed set of reasons a task attempt can end blocked."""

    CLAUDE_FAILED = "claude_failed"
    MERGE_CONFLICT = "merge_conflict"
    TEST_FAILURE = "test_failure"
    MERGE_FAILED = "merge_failed"
    PUSH_FAILED = "push_failed"
    WORKTREE_FAILED = "worktree_failed"
    REVISION_FAILED = "revision_failed"
    APPROVAL_TIMEOUT = "approval_timeout"


class ApprovalDecision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class Task:
    """A backlog item as read from the backlog store.

    The store owns the task; agentloop only reads it and requests
    transitions (claim, close, block, comment).
    """

    id: str
    type: str
    status: str
    assignee: str
    title: str
    description: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Build a Task from the backlog CLI's JSON representation.

        Accepts both ``issue_type`` and ``type`` for the task type and treats
        missing or null fields as empty.
        """
        return cls(
            id=str(data.get("id") or ""),
            type=str(data.get("issue_type") or data.get("type") or "unknown"),
            status=str(data.get("status") or ""),
            assignee=str(data.get("assignee") or ""),
            title=str(data.get("title") or "Unknown task"),
            description=str(data.get("description") or ""),
        )


@dataclass
class Workspace:
    """An isolated worktree on a task branch."""

    path: Path
    branch: str
    task_id: str
    base_ref: str


@dataclass
class Failure:
    """Why a task attempt failed.

    Attributes:
        reason: Classified failure reason
        details: Human-readable explanation surfaced as a backlog comment
    """

    reason: FailureReason
    details: str

    def comment(self, agent_id: str) -> str:
        """Render the backlog comment for this failure."""
        return f"[Agent {agent_id}] {self.details}"


@dataclass
class ApprovalRequest:
    """What the dashboard shows a reviewer."""

    task_type: str
    diff: str
    commit_message: str


@dataclass
class ApprovalResponse:
    """A reviewer's decision, consumed exactly once."""

    decision: ApprovalDecision
    feedback: str = ""

    @property
    def approved(self) -> bool:
        return self.decision is ApprovalDecision.APPROVED


@dataclass
class WorkOutcome:
    """Result of one coding agent invocation."""

    exit_code: int
    duration_seconds: float
    output_lines: int = 0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and self.error is None


@dataclass
class ApprovalOutcome:
    """Result of a full approval gate pass (one or more review rounds)."""

    failure: Failure | None
    revisions: int = 0


@dataclass
class TaskOutcome:
    """Result of one full task attempt.

    Status values:
        closed: Work merged and pushed, task closed in the backlog
        blocked: Attempt failed, task blocked with an explanatory comment
    """

    task_id: str
    status: Literal["closed", "blocked"]
    duration_seconds: float
    failure: Failure | None = None
    revisions: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == "closed"
