"""Lifecycle controller: the per-agent task loop.

Drives one agent through claim, workspace setup, work, optional approval,
merge, cleanup and report. Every failure is contained at the task boundary:
an attempt always ends with the task closed or blocked (with a comment), and
the workspace is always torn down.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import cast

from opentelemetry import trace

from agentloop import telemetry
from agentloop.approval import ApprovalGate
from agentloop.backlog import BacklogStore, BeadsBacklog
from agentloop.claim import TaskClaimCoordinator
from agentloop.config import AgentConfig
from agentloop.errors import AgentLoopError, BacklogError
from agentloop.executor import WorkExecutor
from agentloop.git import GitRepo
from agentloop.merge import MergePipeline
from agentloop.models import (
    AgentStatus,
    ApprovalRequest,
    Failure,
    FailureReason,
    InstructionMode,
    Task,
    TaskOutcome,
    Workspace,
)
from agentloop.notifier import (
    DiscordEmbed,
    format_approval_needed,
    format_task_blocked,
    format_task_closed,
    send_discord_message,
)
from agentloop.status import StatusPublisher
from agentloop.workspace import WorkspaceManager

logger = logging.getLogger(__name__)

WORKTREE_FAILED_DETAILS = (
    "Failed to set up git worktree for this task. This may indicate git "
    "repository issues or disk space problems."
)


class LifecycleController:
    """Runs the agent's claim-work-merge loop.

    Collaborators are injected so tests can substitute fakes; use
    from_config() to build the production wiring.
    """

    def __init__(
        self,
        config: AgentConfig,
        backlog: BacklogStore,
        status: StatusPublisher,
        claimer: TaskClaimCoordinator,
        workspaces: WorkspaceManager,
        executor: WorkExecutor,
        gate: ApprovalGate,
        pipeline: MergePipeline,
        tracer: trace.Tracer | None = None,
    ) -> None:
        self.config = config
        self.backlog = backlog
        self.status = status
        self.claimer = claimer
        self.workspaces = workspaces
        self.executor = executor
        self.gate = gate
        self.pipeline = pipeline
        self.tracer = tracer or trace.get_tracer(config.service_name)

        if config.discord_enabled and gate.on_request is None:
            gate.on_request = self._notify_approval_needed

    @classmethod
    def from_config(
        cls, config: AgentConfig, tracer: trace.Tracer | None = None
    ) -> "LifecycleController":
        """Wire the production collaborators from configuration."""
        main_checkout = cast(Path, config.main_checkout)
        repo = GitRepo(path=main_checkout)
        status = StatusPublisher(config.status_dir)
        backlog = BeadsBacklog(bd_bin=config.bd_bin, cwd=str(main_checkout))
        executor = WorkExecutor(
            status,
            claude_bin=config.claude_bin,
            timeout=config.task_timeout_seconds,
            base_ref=config.baseline_ref,
        )

        return cls(
            config=config,
            backlog=backlog,
            status=status,
            claimer=TaskClaimCoordinator(backlog, config.agent_id),
            workspaces=WorkspaceManager(
                repo,
                config.agent_id,
                config.worktree_path,
                remote=config.remote,
                baseline=config.baseline,
            ),
            executor=executor,
            gate=ApprovalGate(
                status,
                repo,
                executor,
                poll_interval=config.approval_poll_interval,
                timeout=config.approval_timeout,
            ),
            pipeline=MergePipeline(
                repo,
                remote=config.remote,
                baseline=config.baseline,
                push_retries=config.push_retries,
                push_retry_delay=config.push_retry_delay,
                ff_merge_retries=config.ff_merge_retries,
                test_command=config.test_command,
                test_timeout=config.test_timeout_seconds,
            ),
            tracer=tracer,
        )

    # -- loops ----------------------------------------------------------------

    async def run_autonomous(self) -> int:
        """Claim and process tasks until the backlog stays empty.

        Exits after max_idle_cycles consecutive polls that found no work.

        Returns:
            Process exit code (always 0)
        """
        self.status.setup()
        idle_cycles = 0
        logger.info(f"Agent {self.config.agent_id} starting in autonomous mode")

        while True:
            self.status.write_status(AgentStatus.IDLE, "")
            task_id = self.claimer.claim_next()

            if task_id is None:
                idle_cycles += 1
                _record_idle()
                if idle_cycles >= self.config.max_idle_cycles:
                    logger.info(
                        f"No work after {idle_cycles} cycles, shutting down"
                    )
                    return 0
                logger.info(
                    f"No work available (idle {idle_cycles}/{self.config.max_idle_cycles})"
                )
                await asyncio.sleep(self.config.idle_sleep)
                continue

            idle_cycles = 0
            await self.process_task(task_id, gated=False)

    async def run_interactive(self) -> int:
        """Claim and process a single task, with approval for gated types.

        Returns:
            0 when the task closed or no work was available, 1 when blocked
        """
        self.status.setup()
        self.status.write_status(AgentStatus.IDLE, "")
        logger.info(f"Agent {self.config.agent_id} starting in interactive mode")

        task_id = self.claimer.claim_next()
        if task_id is None:
            logger.info("No work available")
            return 0

        outcome = await self.process_task(task_id, gated=True)
        return 0 if outcome.succeeded else 1

    # -- one task -------------------------------------------------------------

    async def process_task(self, task_id: str, gated: bool) -> TaskOutcome:
        """Run one claimed task from workspace setup to report.

        Args:
            task_id: Task already claimed by this agent
            gated: Whether the approval gate applies (for task types that
                require approval)

        Returns:
            TaskOutcome with status closed or blocked
        """
        start_time = time.time()

        with self.tracer.start_as_current_span("agentloop.task") as span:
            span.set_attribute("agent.id", self.config.agent_id)
            span.set_attribute("task.id", task_id)

            task, failure = self._read_task(task_id)
            span.set_attribute("task.type", task.type)
            needs_review = gated and self.config.requires_approval(task.type)

            workspace: Workspace | None = None
            revisions = 0

            try:
                if failure is None:
                    logger.info(f"Working on {task.id} ({task.type}): {task.title}")
                    workspace, failure = self._setup(task)

                if failure is None and workspace is not None:
                    failure = await self._work(task, workspace, needs_review)

                if failure is None and workspace is not None and needs_review:
                    failure, revisions = await self._approve(task, workspace)

                if failure is None and workspace is not None:
                    failure = await self._merge(task, workspace)
            finally:
                self._cleanup(workspace, task.id)

            outcome = TaskOutcome(
                task_id=task.id,
                status="closed" if failure is None else "blocked",
                duration_seconds=time.time() - start_time,
                failure=failure,
                revisions=revisions,
            )
            await self._report(task, outcome)

            span.set_attribute("task.status", outcome.status)
            span.set_attribute("task.revisions", revisions)
            if failure is not None:
                span.set_attribute("task.failure_reason", failure.reason.value)

        _record_metrics(outcome)
        return outcome

    def _read_task(self, task_id: str) -> tuple[Task, Failure | None]:
        """Read the claimed task; an unreadable task is never worked on.

        Without its type the approval policy cannot be applied, so the
        attempt fails before setup instead of guessing.
        """
        try:
            return self.backlog.read(task_id), None
        except Exception as e:
            logger.error(f"Could not read task {task_id}: {e}")
            failure = Failure(
                reason=FailureReason.WORKTREE_FAILED,
                details=(
                    f"Could not read task {task_id} from the backlog, so no work "
                    f"was started. Check the backlog and unblock to retry. ({e})"
                ),
            )
            return Task.from_dict({"id": task_id}), failure

    def _setup(self, task: Task) -> tuple[Workspace | None, Failure | None]:
        with self.tracer.start_as_current_span("agentloop.setup"):
            try:
                self.status.clear_output()
                self.status.write_status(AgentStatus.WORKING, task.id)
                return self.workspaces.setup(task.id), None
            except Exception as e:
                failure = _stage_failure(FailureReason.WORKTREE_FAILED, "Setup", e)
                failure.details = f"{WORKTREE_FAILED_DETAILS} ({failure.details})"
                return None, failure

    async def _work(
        self, task: Task, workspace: Workspace, needs_review: bool
    ) -> Failure | None:
        mode = InstructionMode.INTERACTIVE if needs_review else InstructionMode.AUTONOMOUS
        with self.tracer.start_as_current_span("agentloop.work") as span:
            span.set_attribute("work.mode", mode.value)
            try:
                return await self.executor.run(task, workspace, mode)
            except Exception as e:
                return _stage_failure(FailureReason.CLAUDE_FAILED, "Work", e)

    async def _approve(
        self, task: Task, workspace: Workspace
    ) -> tuple[Failure | None, int]:
        with self.tracer.start_as_current_span("agentloop.approval") as span:
            try:
                result = await self.gate.run(task, workspace)
            except Exception as e:
                return _stage_failure(FailureReason.REVISION_FAILED, "Approval", e), 0
            span.set_attribute("approval.revisions", result.revisions)
            return result.failure, result.revisions

    async def _merge(self, task: Task, workspace: Workspace) -> Failure | None:
        with self.tracer.start_as_current_span("agentloop.merge") as span:
            try:
                failure = await self.pipeline.finalize(task, workspace)
            except Exception as e:
                failure = _stage_failure(FailureReason.MERGE_FAILED, "Merge", e)
            if failure is not None:
                span.set_attribute("merge.failure_reason", failure.reason.value)
            return failure

    def _cleanup(self, workspace: Workspace | None, task_id: str) -> None:
        """Clear the approval side-channel and tear down the workspace."""
        try:
            self.status.clear_approval()
        except OSError as e:
            logger.error(f"Could not clear approval files for {task_id}: {e}")
        try:
            self.workspaces.teardown(workspace, task_id)
        except Exception as e:
            logger.error(f"Workspace teardown failed for {task_id}: {e}")

    async def _report(self, task: Task, outcome: TaskOutcome) -> None:
        """Close or block the task in the backlog and publish the result."""
        if outcome.failure is None:
            try:
                self.backlog.close(task.id)
            except BacklogError as e:
                logger.error(f"Could not close {task.id}: {e}")
            self._publish(AgentStatus.IDLE, "")
            logger.info(f"Task {task.id} completed")
            await self._notify(
                format_task_closed(
                    self.config.agent_id,
                    task.id,
                    task.title,
                    outcome.duration_seconds,
                    outcome.revisions,
                )
            )
        else:
            failure = outcome.failure
            try:
                self.backlog.block(task.id, failure.comment(self.config.agent_id))
            except BacklogError as e:
                logger.error(f"Could not block {task.id}: {e}")
            self._publish(AgentStatus.BLOCKED, task.id)
            logger.warning(f"Task {task.id} blocked: {failure.reason.value}")
            await self._notify(
                format_task_blocked(
                    self.config.agent_id,
                    task.id,
                    task.title,
                    failure.reason.value,
                    failure.details,
                )
            )

        try:
            self.backlog.sync()
        except BacklogError as e:
            logger.warning(f"Backlog sync failed: {e}")

    def _publish(self, status: AgentStatus, task_id: str) -> None:
        try:
            self.status.write_status(status, task_id)
        except OSError as e:
            logger.error(f"Could not publish status {status.value}: {e}")

    # -- notifications ----------------------------------------------------------

    async def _notify(self, embed: DiscordEmbed) -> None:
        if self.config.discord_webhook_url:
            await send_discord_message(self.config.discord_webhook_url, embed)

    async def _notify_approval_needed(self, task: Task, request: ApprovalRequest) -> None:
        await self._notify(
            format_approval_needed(
                self.config.agent_id, task.id, task.title, request.commit_message
            )
        )


def _record_metrics(outcome: TaskOutcome) -> None:
    """Record task metrics if counters are initialized.

    Safely handles the case where create_metrics() hasn't been called.
    """
    reason = outcome.failure.reason.value if outcome.failure else "none"
    try:
        telemetry.tasks_counter.add(1, {"outcome": outcome.status, "reason": reason})
        telemetry.task_duration.record(
            outcome.duration_seconds, {"outcome": outcome.status}
        )
    except (AttributeError, NameError):
        # Counters not initialized - telemetry disabled
        pass


def _record_idle() -> None:
    try:
        telemetry.idle_cycles_counter.add(1)
    except (AttributeError, NameError):
        pass


def _stage_failure(reason: FailureReason, stage: str, error: Exception) -> Failure:
    """Convert an exception raised inside a stage into that stage's failure."""
    if isinstance(error, AgentLoopError):
        logger.error(f"{stage} stage failed: {error}")
        return Failure(reason=reason, details=str(error))

    logger.exception(f"Unexpected error in {stage.lower()} stage")
    return Failure(
        reason=reason,
        details=f"Unexpected error during {stage.lower()}: {type(error).__name__}: {error}",
    )
