"""Approval gate for human review before merge.

Publishes the task's diff and commit message through the status directory,
waits for the dashboard's response and loops through revisions until the
reviewer approves. Rejections carry feedback that is handed to the coding
agent in revision mode.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from agentloop import telemetry
from agentloop.errors import ApprovalTimeoutError
from agentloop.executor import WorkExecutor
from agentloop.git import GitRepo
from agentloop.models import (
    AgentStatus,
    ApprovalOutcome,
    ApprovalRequest,
    ApprovalResponse,
    Failure,
    FailureReason,
    InstructionMode,
    Task,
    Workspace,
)
from agentloop.status import StatusPublisher

logger = logging.getLogger(__name__)

RequestCallback = Callable[[Task, ApprovalRequest], Awaitable[None]]


class ApprovalGate:
    """Request/response approval loop for one agent.

    Attributes:
        status: Publisher owning the approval side-channel
        repo: Repository the task worktrees belong to (for the diff)
        executor: Runs revisions after a rejection
        poll_interval: Seconds between response polls
        timeout: Seconds to wait for a response per round (None = unbounded)
        on_request: Optional coroutine called after each request is published
    """

    def __init__(
        self,
        status: StatusPublisher,
        repo: GitRepo,
        executor: WorkExecutor,
        poll_interval: float = 2.0,
        timeout: float | None = None,
        on_request: RequestCallback | None = None,
    ) -> None:
        self.status = status
        self.repo = repo
        self.executor = executor
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.on_request = on_request

    def request(self, task: Task, workspace: Workspace) -> ApprovalRequest:
        """Publish an approval request for the workspace's current commits."""
        worktree = self.repo.at(workspace.path)
        approval_request = ApprovalRequest(
            task_type=task.type,
            diff=worktree.diff(workspace.base_ref),
            commit_message=worktree.last_commit_message(),
        )
        self.status.write_approval_request(approval_request)
        self.status.write_status(AgentStatus.NEEDS_APPROVAL, task.id)
        logger.info(f"Waiting for approval of {task.id}")
        return approval_request

    async def await_response(self) -> ApprovalResponse:
        """Poll until the dashboard writes a response.

        The response is consumed (request, response and feedback cleared)
        before it is returned.

        Raises:
            ApprovalTimeoutError: If a timeout is configured and expires
        """
        deadline = None if self.timeout is None else time.monotonic() + self.timeout

        while True:
            response = self.status.take_approval_response()
            if response is not None:
                return response

            if deadline is not None and time.monotonic() >= deadline:
                raise ApprovalTimeoutError(
                    f"No approval response after {self.timeout:.0f} seconds"
                )
            await asyncio.sleep(self.poll_interval)

    async def run(self, task: Task, workspace: Workspace) -> ApprovalOutcome:
        """Run review rounds until approved or a revision fails.

        Each rejection triggers one revision with the reviewer's feedback and
        a fresh request. There is no limit on the number of rounds.
        """
        revisions = 0

        while True:
            approval_request = self.request(task, workspace)
            if self.on_request is not None:
                await self.on_request(task, approval_request)

            try:
                response = await self.await_response()
            except ApprovalTimeoutError as e:
                self.status.clear_approval()
                logger.warning(f"Approval of {task.id} timed out")
                return ApprovalOutcome(
                    failure=Failure(
                        reason=FailureReason.APPROVAL_TIMEOUT,
                        details=f"{e}. The task was not reviewed in time.",
                    ),
                    revisions=revisions,
                )

            _record_round(response.decision.value)
            self.status.write_status(AgentStatus.WORKING, task.id)

            if response.approved:
                logger.info(f"Task {task.id} approved after {revisions} revision(s)")
                return ApprovalOutcome(failure=None, revisions=revisions)

            logger.info(f"Task {task.id} rejected: {response.feedback}")
            failure = await self.executor.run(
                task, workspace, InstructionMode.REVISION, response.feedback
            )
            revisions += 1
            if failure is not None:
                return ApprovalOutcome(failure=failure, revisions=revisions)


def _record_round(decision: str) -> None:
    """Record an approval round if metrics are initialized."""
    try:
        telemetry.approval_rounds_counter.add(1, {"decision": decision})
    except (AttributeError, NameError):
        # Counters not initialized - telemetry disabled
        pass
