"""Status publisher for dashboard polling.

Writes and reads the small set of well-known files that represent one
agent's state. The layout is the whole contract with the dashboard:

    <status_root>/<agent_id>/status             idle | working | needs_approval | blocked
    <status_root>/<agent_id>/task               current task id
    <status_root>/<agent_id>/output.log         append-only coding agent output
    <status_root>/<agent_id>/approval/type      request, written by the agent
    <status_root>/<agent_id>/approval/diff      request
    <status_root>/<agent_id>/approval/message   request
    <status_root>/<agent_id>/approval/response  response, written by the dashboard
    <status_root>/<agent_id>/approval/feedback  optional rejection feedback
"""

import logging
import shutil
from pathlib import Path

from agentloop.models import (
    AgentStatus,
    ApprovalDecision,
    ApprovalRequest,
    ApprovalResponse,
)

logger = logging.getLogger(__name__)

STATUS_FILE = "status"
TASK_FILE = "task"
OUTPUT_LOG = "output.log"
APPROVAL_DIR = "approval"


def classify_response(raw: str, feedback: str | None = None) -> ApprovalResponse:
    """Turn raw response text into a classified ApprovalResponse.

    Anything that does not start with "approve" counts as a rejection. The
    feedback defaults to the raw response text when no feedback file exists.
    """
    text = raw.strip()
    if text.lower().startswith("approve"):
        return ApprovalResponse(decision=ApprovalDecision.APPROVED)

    feedback = (feedback or "").strip() or text
    return ApprovalResponse(decision=ApprovalDecision.REJECTED, feedback=feedback)


class StatusPublisher:
    """Publishes one agent's state to its status directory.

    Attributes:
        status_dir: Directory keyed by agent id
    """

    def __init__(self, status_dir: Path) -> None:
        self.status_dir = status_dir

    @property
    def approval_dir(self) -> Path:
        return self.status_dir / APPROVAL_DIR

    def setup(self) -> None:
        """Create the status directory."""
        self.status_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Status directory: {self.status_dir}")

    def write_status(self, status: AgentStatus, task_id: str | None = None) -> None:
        """Write the display status and, when given, the current task.

        An empty string clears the current task.
        """
        self.status_dir.mkdir(parents=True, exist_ok=True)
        (self.status_dir / STATUS_FILE).write_text(f"{status.value}\n")
        if task_id is not None:
            (self.status_dir / TASK_FILE).write_text(f"{task_id}\n" if task_id else "")

    def read_status(self) -> AgentStatus | None:
        path = self.status_dir / STATUS_FILE
        if not path.exists():
            return None
        try:
            return AgentStatus(path.read_text().strip())
        except ValueError:
            return None

    def read_task(self) -> str:
        path = self.status_dir / TASK_FILE
        return path.read_text().strip() if path.exists() else ""

    def append_output(self, message: str) -> None:
        """Append one line to the dashboard output log."""
        self.status_dir.mkdir(parents=True, exist_ok=True)
        with open(self.status_dir / OUTPUT_LOG, "a") as f:
            f.write(message.rstrip("\n") + "\n")

    def clear_output(self) -> None:
        """Truncate the output log (called when a new task starts)."""
        self.status_dir.mkdir(parents=True, exist_ok=True)
        (self.status_dir / OUTPUT_LOG).write_text("")

    def read_output(self) -> list[str]:
        path = self.status_dir / OUTPUT_LOG
        return path.read_text().splitlines() if path.exists() else []

    # -- approval side-channel -------------------------------------------

    def write_approval_request(self, request: ApprovalRequest) -> None:
        """Publish an approval request.

        Any previous request, response and feedback are removed first so a
        stale response can never satisfy the new request.
        """
        self.clear_approval()
        self.approval_dir.mkdir(parents=True)
        (self.approval_dir / "type").write_text(f"{request.task_type}\n")
        (self.approval_dir / "diff").write_text(request.diff)
        (self.approval_dir / "message").write_text(request.commit_message)
        logger.info(f"Approval request written to {self.approval_dir}")

    def read_approval_request(self) -> ApprovalRequest | None:
        type_file = self.approval_dir / "type"
        if not type_file.exists():
            return None
        diff_file = self.approval_dir / "diff"
        message_file = self.approval_dir / "message"
        return ApprovalRequest(
            task_type=type_file.read_text().strip(),
            diff=diff_file.read_text() if diff_file.exists() else "",
            commit_message=message_file.read_text() if message_file.exists() else "",
        )

    def take_approval_response(self) -> ApprovalResponse | None:
        """Consume the approval response if one has been written.

        Returns None while no (or an empty, partially written) response file
        exists. Once a response is read the whole approval side-channel is
        cleared, so the same response is never returned twice.
        """
        response_file = self.approval_dir / "response"
        if not response_file.exists():
            return None

        raw = response_file.read_text()
        if not raw.strip():
            return None

        feedback_file = self.approval_dir / "feedback"
        feedback = feedback_file.read_text() if feedback_file.exists() else None

        response = classify_response(raw, feedback)
        logger.info(f"Received approval response: {response.decision.value}")
        self.clear_approval()
        return response

    def write_approval_response(self, decision: ApprovalDecision, feedback: str = "") -> None:
        """Write a response the way the dashboard does."""
        self.approval_dir.mkdir(parents=True, exist_ok=True)
        if feedback:
            (self.approval_dir / "feedback").write_text(feedback)
        (self.approval_dir / "response").write_text(f"{decision.value}\n")

    def approval_pending(self) -> bool:
        return (self.approval_dir / "type").exists()

    def clear_approval(self) -> None:
        """Remove request, response and feedback. Safe when nothing exists."""
        if self.approval_dir.exists():
            shutil.rmtree(self.approval_dir)
            logger.debug("Cleared approval request")
