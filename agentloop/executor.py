"""Work executor for the external coding agent.

Builds a task-scoped prompt and invokes Claude Code in the task workspace,
streaming its output into the dashboard output log. A non-zero exit is the
only failure signal; whether the work is actually good is left to the merge
pipeline (rebase and tests).
"""

import asyncio
import logging
import time
from pathlib import Path

from agentloop.models import (
    Failure,
    FailureReason,
    InstructionMode,
    Task,
    WorkOutcome,
    Workspace,
)
from agentloop.status import StatusPublisher

logger = logging.getLogger(__name__)

# Bytes read from the agent's stdout at a time; lines may be longer
_READ_CHUNK = 64 * 1024

_INSTRUCTIONS = {
    InstructionMode.AUTONOMOUS: (
        "Complete this task. When done, commit your changes with a descriptive message.\n"
        "Do not push - that will be handled separately.\n"
        "If you cannot complete the task, explain why in a comment."
    ),
    InstructionMode.INTERACTIVE: (
        "Complete this task. When done, commit your changes with a descriptive message.\n"
        "Then stop and wait: your changes will be reviewed by a human before they are merged.\n"
        "Do not push."
    ),
    InstructionMode.POST_APPROVAL: (
        "Your changes have been approved. Rebase onto {base_ref}, make sure the tests "
        "pass, fast-forward merge into the baseline and push."
    ),
    InstructionMode.REVISION: (
        "Your changes were rejected by the reviewer with this feedback:\n\n"
        "{feedback}\n\n"
        "Revise your work to address the feedback and commit the result.\n"
        "Then stop and wait for another review. Do not push."
    ),
}

_FAILURE_DETAILS = {
    InstructionMode.REVISION: (
        FailureReason.REVISION_FAILED,
        "Claude Code failed while revising the task per reviewer feedback. "
        "The feedback may need clarification or manual intervention.",
    ),
}

_DEFAULT_FAILURE = (
    FailureReason.CLAUDE_FAILED,
    "Claude Code failed to complete the task. This may require manual "
    "intervention or the task may need to be broken down into smaller pieces.",
)


def build_prompt(
    task: Task,
    mode: InstructionMode,
    feedback: str | None = None,
    base_ref: str = "origin/main",
) -> str:
    """Build the natural-language prompt for the coding agent.

    Args:
        task: Task being worked on (title and description go in the prompt)
        mode: Which instruction set to append
        feedback: Reviewer feedback, required for REVISION
        base_ref: Baseline ref named in the POST_APPROVAL instructions

    Returns:
        Prompt text
    """
    header = f"You are working on task {task.id}: {task.title}"
    if task.description:
        header += f"\n\n{task.description}"

    instructions = _INSTRUCTIONS[mode].format(
        feedback=(feedback or "").strip() or "(no feedback given)",
        base_ref=base_ref,
    )
    return f"{header}\n\n{instructions}"


class WorkExecutor:
    """Invokes Claude Code for a task.

    Attributes:
        status: Publisher receiving the streamed output
        claude_bin: Coding agent executable
        timeout: Optional invocation timeout in seconds (None = unbounded)
        base_ref: Baseline ref used in prompts
    """

    def __init__(
        self,
        status: StatusPublisher,
        claude_bin: str = "claude",
        timeout: float | None = None,
        base_ref: str = "origin/main",
    ) -> None:
        self.status = status
        self.claude_bin = claude_bin
        self.timeout = timeout
        self.base_ref = base_ref

    async def run(
        self,
        task: Task,
        workspace: Workspace,
        mode: InstructionMode,
        feedback: str | None = None,
    ) -> Failure | None:
        """Run the coding agent on a task in its workspace.

        Revisions continue the agent's previous session in the workspace.

        Returns:
            None on success, otherwise a claude_failed (revision_failed for
            REVISION) Failure
        """
        prompt = build_prompt(task, mode, feedback, base_ref=self.base_ref)
        logger.info(f"Starting {mode.value} work on: {task.title}")

        outcome = await self.invoke(
            prompt,
            cwd=workspace.path,
            continue_session=mode is InstructionMode.REVISION,
        )

        if outcome.succeeded:
            logger.info(f"Claude completed work on {task.id} ({outcome.duration_seconds:.0f}s)")
            return None

        reason, details = _FAILURE_DETAILS.get(mode, _DEFAULT_FAILURE)
        if outcome.error:
            details = f"{details} ({outcome.error})"
        logger.error(f"Claude failed on {task.id} (exit code {outcome.exit_code})")
        return Failure(reason=reason, details=details)

    async def invoke(
        self, prompt: str, cwd: Path, continue_session: bool = False
    ) -> WorkOutcome:
        """Invoke Claude Code and stream its output to the status log."""
        cmd = [self.claude_bin, "--dangerously-skip-permissions"]
        if continue_session:
            cmd.append("--continue")
        cmd.extend(["-p", prompt])

        start_time = time.time()
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(cwd),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError:
            return WorkOutcome(
                exit_code=127,
                duration_seconds=0.0,
                error=f"{self.claude_bin} not found",
            )

        try:
            lines = await asyncio.wait_for(self._stream(process), timeout=self.timeout)
            exit_code = await process.wait()
        except asyncio.TimeoutError:
            await _kill(process)
            return WorkOutcome(
                exit_code=-1,
                duration_seconds=time.time() - start_time,
                error=f"Timeout after {self.timeout} seconds",
            )
        except (OSError, ValueError) as e:
            logger.error(f"Lost output stream of {self.claude_bin}: {e}")
            await _kill(process)
            return WorkOutcome(
                exit_code=-1,
                duration_seconds=time.time() - start_time,
                error=f"Output streaming failed: {e}",
            )

        return WorkOutcome(
            exit_code=exit_code,
            duration_seconds=time.time() - start_time,
            output_lines=lines,
        )

    async def _stream(self, process: asyncio.subprocess.Process) -> int:
        """Copy stdout into the output log line by line.

        Reads fixed-size chunks rather than lines, so a single huge line
        cannot overrun the stream reader's buffer limit.
        """
        lines = 0
        if process.stdout is None:
            return lines

        pending = b""
        while True:
            chunk = await process.stdout.read(_READ_CHUNK)
            if not chunk:
                break
            *complete, pending = (pending + chunk).split(b"\n")
            for raw in complete:
                self._emit(raw)
                lines += 1

        if pending:
            self._emit(pending)
            lines += 1
        return lines

    def _emit(self, raw: bytes) -> None:
        line = raw.decode("utf-8", errors="replace").rstrip("\r")
        self.status.append_output(line)
        logger.debug(line)


async def _kill(process: asyncio.subprocess.Process) -> None:
    try:
        process.kill()
    except ProcessLookupError:
        pass
    await process.wait()
