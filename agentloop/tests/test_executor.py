"""Tests for the work executor.

asyncio.create_subprocess_exec is patched; the fake process serves its
output in small reads that split lines, the way a real stdout pipe can.
"""

import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from agentloop.executor import WorkExecutor, build_prompt
from agentloop.models import FailureReason, InstructionMode, Task, Workspace
from agentloop.status import StatusPublisher


class FakeStdout:
    """Serves the joined lines in small reads, splitting lines across chunks."""

    def __init__(self, lines: list[bytes], chunk: int = 3) -> None:
        self.data = b"".join(lines)
        self.chunk = chunk

    async def read(self, n: int = -1) -> bytes:
        size = min(n, self.chunk) if n > 0 else len(self.data)
        head, self.data = self.data[:size], self.data[size:]
        return head


def make_process(lines: list[bytes], returncode: int = 0) -> MagicMock:
    process = MagicMock()
    process.stdout = FakeStdout(lines)
    process.wait = AsyncMock(return_value=returncode)
    return process


def make_task() -> Task:
    return Task(
        id="bd-4",
        type="feature",
        status="in_progress",
        assignee="agent-1",
        title="Add export",
        description="Export reports as CSV.",
    )


def make_workspace(tmp_path: Path) -> Workspace:
    return Workspace(
        path=tmp_path / "agent-1",
        branch="agent-1/bd-4",
        task_id="bd-4",
        base_ref="origin/main",
    )


class TestBuildPrompt:
    """Test prompt construction for each instruction mode."""

    def test_autonomous_prompt(self):
        """Autonomous prompts say to commit and not push."""
        prompt = build_prompt(make_task(), InstructionMode.AUTONOMOUS)

        assert prompt.startswith("You are working on task bd-4: Add export")
        assert "Export reports as CSV." in prompt
        assert "commit your changes" in prompt
        assert "Do not push" in prompt

    def test_interactive_prompt_waits_for_review(self):
        """Interactive prompts tell the agent to stop for review."""
        prompt = build_prompt(make_task(), InstructionMode.INTERACTIVE)

        assert "reviewed" in prompt
        assert "wait" in prompt

    def test_revision_prompt_carries_feedback(self):
        """Revision prompts include the reviewer's feedback."""
        prompt = build_prompt(make_task(), InstructionMode.REVISION, "fix naming")

        assert "fix naming" in prompt
        assert "Revise" in prompt

    def test_post_approval_prompt_names_baseline(self):
        """Post-approval prompts name the baseline to rebase onto."""
        prompt = build_prompt(
            make_task(), InstructionMode.POST_APPROVAL, base_ref="upstream/trunk"
        )

        assert "approved" in prompt
        assert "upstream/trunk" in prompt

    def test_missing_description(self):
        """A task without a description still gets a complete prompt."""
        task = make_task()
        task.description = ""

        prompt = build_prompt(task, InstructionMode.AUTONOMOUS)

        assert "\n\n\n" not in prompt


class TestRun:
    """Test invoking the coding agent."""

    @pytest.mark.asyncio
    async def test_success_streams_output(self, tmp_path):
        """Output lines are appended to the status log; exit 0 is success."""
        status = StatusPublisher(tmp_path / "status")
        process = make_process([b"thinking\n", b"done\n"])

        with patch(
            "asyncio.create_subprocess_exec", AsyncMock(return_value=process)
        ) as mock_exec:
            failure = await WorkExecutor(status).run(
                make_task(), make_workspace(tmp_path), InstructionMode.AUTONOMOUS
            )

        assert failure is None
        assert status.read_output() == ["thinking", "done"]
        args = mock_exec.call_args[0]
        assert args[:2] == ("claude", "--dangerously-skip-permissions")
        assert "--continue" not in args
        assert args[-2] == "-p"
        assert mock_exec.call_args[1]["cwd"] == str(tmp_path / "agent-1")

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_claude_failed(self, tmp_path):
        """A non-zero exit maps to claude_failed."""
        status = StatusPublisher(tmp_path / "status")

        with patch(
            "asyncio.create_subprocess_exec",
            AsyncMock(return_value=make_process([b"error\n"], returncode=1)),
        ):
            failure = await WorkExecutor(status).run(
                make_task(), make_workspace(tmp_path), InstructionMode.AUTONOMOUS
            )

        assert failure is not None
        assert failure.reason is FailureReason.CLAUDE_FAILED
        assert "broken down into smaller pieces" in failure.details

    @pytest.mark.asyncio
    async def test_revision_continues_session(self, tmp_path):
        """Revisions pass --continue and fail as revision_failed."""
        status = StatusPublisher(tmp_path / "status")

        with patch(
            "asyncio.create_subprocess_exec",
            AsyncMock(return_value=make_process([], returncode=2)),
        ) as mock_exec:
            failure = await WorkExecutor(status).run(
                make_task(),
                make_workspace(tmp_path),
                InstructionMode.REVISION,
                feedback="fix naming",
            )

        assert "--continue" in mock_exec.call_args[0]
        assert "fix naming" in mock_exec.call_args[0][-1]
        assert failure is not None
        assert failure.reason is FailureReason.REVISION_FAILED

    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path):
        """A missing coding agent binary is a claude_failed failure."""
        status = StatusPublisher(tmp_path / "status")

        with patch(
            "asyncio.create_subprocess_exec",
            AsyncMock(side_effect=FileNotFoundError()),
        ):
            failure = await WorkExecutor(status, claude_bin="no-claude").run(
                make_task(), make_workspace(tmp_path), InstructionMode.AUTONOMOUS
            )

        assert failure is not None
        assert failure.reason is FailureReason.CLAUDE_FAILED
        assert "no-claude not found" in failure.details

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, tmp_path):
        """A configured timeout kills the agent and fails the work."""
        status = StatusPublisher(tmp_path / "status")

        class HangingStdout:
            async def read(self, n: int = -1) -> bytes:
                await asyncio.sleep(10)
                return b"never\n"

        process = MagicMock()
        process.stdout = HangingStdout()
        process.wait = AsyncMock(return_value=-9)

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            outcome = await WorkExecutor(status, timeout=0.01).invoke(
                "prompt", cwd=tmp_path
            )

        process.kill.assert_called_once()
        assert not outcome.succeeded
        assert "Timeout" in (outcome.error or "")

    @pytest.mark.asyncio
    async def test_stream_error_kills_process(self, tmp_path):
        """A broken output stream fails the work and reaps the agent."""
        status = StatusPublisher(tmp_path / "status")

        class BrokenStdout:
            async def read(self, n: int = -1) -> bytes:
                raise OSError("pipe closed")

        process = MagicMock()
        process.stdout = BrokenStdout()
        process.wait = AsyncMock(return_value=-9)

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            failure = await WorkExecutor(status).run(
                make_task(), make_workspace(tmp_path), InstructionMode.AUTONOMOUS
            )

        process.kill.assert_called_once()
        process.wait.assert_awaited()
        assert failure is not None
        assert failure.reason is FailureReason.CLAUDE_FAILED
        assert "pipe closed" in failure.details


class TestRealProcess:
    """Test streaming from an actual child process."""

    @pytest.mark.asyncio
    async def test_very_long_line(self, tmp_path):
        """A single line far beyond the stream buffer limit is kept whole."""
        script = tmp_path / "fake-claude"
        script.write_text(
            f"#!{sys.executable}\n"
            "import sys\n"
            "sys.stdout.write('x' * 200000 + '\\n')\n"
            "sys.stdout.write('done\\n')\n"
        )
        script.chmod(0o755)
        workspace = make_workspace(tmp_path)
        workspace.path.mkdir()
        status = StatusPublisher(tmp_path / "status")

        failure = await WorkExecutor(status, claude_bin=str(script)).run(
            make_task(), workspace, InstructionMode.AUTONOMOUS
        )

        assert failure is None
        output = status.read_output()
        assert output == ["x" * 200000, "done"]
