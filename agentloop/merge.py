"""Merge pipeline: rebase, test, fast-forward merge and push.

Moves a task branch's commits onto the shared baseline. The steps run in a
fixed order and stop at the first failure, so a test failure is only ever
reported after a clean rebase and a push failure only after a successful
local merge.
"""

import asyncio
import json
import logging
import re
import shlex
import shutil
import sys
from pathlib import Path

from agentloop import telemetry
from agentloop.errors import GitError
from agentloop.git import GitRepo
from agentloop.models import Failure, FailureReason, Task, Workspace

logger = logging.getLogger(__name__)

# Lines of test output kept in a test_failure comment
TEST_OUTPUT_TAIL = 20

_MAKE_TEST_TARGET = re.compile(r"^test\s*:", re.MULTILINE)


def detect_test_command(path: Path, override: str | None = None) -> list[str] | None:
    """Work out how to run the project's tests.

    Checked in order: the configured override, a package.json "test" script,
    a Makefile ``test`` target, then pytest configuration.

    Returns:
        The command as an argument list, or None when the project has no
        detectable test suite
    """
    if override:
        return shlex.split(override)

    package_json = path / "package.json"
    if package_json.exists():
        try:
            scripts = json.loads(package_json.read_text()).get("scripts") or {}
        except (json.JSONDecodeError, AttributeError):
            logger.warning(f"Could not parse {package_json}")
            scripts = {}
        if "test" in scripts:
            return ["npm", "test"]

    makefile = path / "Makefile"
    if makefile.exists() and _MAKE_TEST_TARGET.search(makefile.read_text()):
        return ["make", "test"]

    if _has_pytest_config(path):
        return [_python(), "-m", "pytest"]

    return None


def _python() -> str:
    """Interpreter for the project's tests: python3, then python, then our own."""
    for name in ("python3", "python"):
        if shutil.which(name):
            return name
    return sys.executable


def _has_pytest_config(path: Path) -> bool:
    if (path / "pytest.ini").exists() or (path / "conftest.py").exists():
        return True
    markers = {
        "pyproject.toml": "[tool.pytest.ini_options]",
        "setup.cfg": "[tool:pytest]",
        "tox.ini": "[pytest]",
    }
    for filename, marker in markers.items():
        config_file = path / filename
        if config_file.exists() and marker in config_file.read_text():
            return True
    return False


class MergePipeline:
    """Finalizes a task branch into the baseline.

    Attributes:
        repo: The main checkout (owns the local baseline branch)
        remote: Remote holding the shared baseline
        baseline: Baseline branch name
        push_retries: Push attempts before giving up
        push_retry_delay: Seconds to wait between push attempts
        ff_merge_retries: Extra rebase-test-merge passes when the
            fast-forward merge loses a race (0 = report immediately)
        test_command: Test command override (None = detect)
        test_timeout: Seconds before the test run is killed (None = unbounded)
    """

    def __init__(
        self,
        repo: GitRepo,
        remote: str = "origin",
        baseline: str = "main",
        push_retries: int = 3,
        push_retry_delay: float = 5.0,
        ff_merge_retries: int = 0,
        test_command: str | None = None,
        test_timeout: float | None = None,
    ) -> None:
        self.repo = repo
        self.remote = remote
        self.baseline = baseline
        self.push_retries = push_retries
        self.push_retry_delay = push_retry_delay
        self.ff_merge_retries = ff_merge_retries
        self.test_command = test_command
        self.test_timeout = test_timeout

    @property
    def base_ref(self) -> str:
        return f"{self.remote}/{self.baseline}"

    async def finalize(self, task: Task, workspace: Workspace) -> Failure | None:
        """Rebase, test, merge and push the task branch.

        Returns:
            None once the baseline has been pushed, otherwise the Failure of
            the first step that failed
        """
        logger.info(f"Finalizing {task.id} from {workspace.branch}")
        passes = self.ff_merge_retries + 1

        for attempt in range(1, passes + 1):
            failure = self.rebase(workspace)
            if failure is not None:
                return failure

            failure = await self.run_tests(workspace)
            if failure is not None:
                return failure

            failure = self.merge(workspace)
            if failure is None:
                break
            if attempt == passes:
                return failure
            logger.warning(
                f"Baseline moved during merge, re-rebasing (pass {attempt + 1}/{passes})"
            )

        return await self.push()

    def rebase(self, workspace: Workspace) -> Failure | None:
        """Rebase the task branch onto the freshly fetched baseline.

        A conflicting rebase is aborted before returning, so the workspace is
        never left mid-rebase.
        """
        worktree = self.repo.at(workspace.path)
        try:
            worktree.fetch(self.remote, self.baseline)
        except GitError as e:
            logger.warning(f"Fetch before rebase failed, using last known baseline: {e}")

        if worktree.rebase(self.base_ref):
            logger.info(f"Rebased {workspace.branch} onto {self.base_ref}")
            return None

        files = worktree.conflict_files()
        worktree.rebase_abort()

        details = f"Rebase onto {self.base_ref} failed."
        if files:
            details += f" Conflicting files: {', '.join(files)}."
        details += " Agent cannot automatically resolve these conflicts."
        logger.error(f"Rebase conflict in {workspace.branch}: {files}")
        return Failure(reason=FailureReason.MERGE_CONFLICT, details=details)

    async def run_tests(self, workspace: Workspace) -> Failure | None:
        """Run the detected test command in the workspace.

        Projects without a detectable test suite pass.
        """
        cmd = detect_test_command(workspace.path, self.test_command)
        if cmd is None:
            logger.info("No test command detected, skipping tests")
            return None

        logger.info(f"Running tests: {' '.join(cmd)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(workspace.path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError:
            return self._test_failure(f"{cmd[0]} not found")

        try:
            stdout, _ = await asyncio.wait_for(
                process.communicate(), timeout=self.test_timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return self._test_failure(f"Tests timed out after {self.test_timeout} seconds")

        if process.returncode == 0:
            logger.info("Tests passed")
            return None

        output = stdout.decode("utf-8", errors="replace") if stdout else ""
        tail = "\n".join(output.splitlines()[-TEST_OUTPUT_TAIL:])
        logger.error(f"Tests failed with exit code {process.returncode}")
        return self._test_failure(tail)

    def _test_failure(self, output: str) -> Failure:
        details = (
            f"Tests failed after rebasing onto {self.base_ref}. The changes may "
            "have introduced breaking behavior or conflicted with recent changes "
            f"in {self.baseline}."
        )
        if output.strip():
            details += f"\n\n{output.strip()}"
        return Failure(reason=FailureReason.TEST_FAILURE, details=details)

    def merge(self, workspace: Workspace) -> Failure | None:
        """Fast-forward the local baseline in the main checkout to the task branch."""
        try:
            self.repo.fetch(self.remote, self.baseline)
            self.repo.checkout(self.baseline)
            self.repo.reset_hard(self.base_ref)
        except GitError as e:
            logger.error(f"Could not prepare {self.baseline} for merge: {e}")
            return Failure(
                reason=FailureReason.MERGE_FAILED,
                details=f"Could not prepare {self.baseline} for merging {workspace.branch}: {e}",
            )

        if self.repo.merge_ff_only(workspace.branch):
            logger.info(f"Merged {workspace.branch} into {self.baseline}")
            return None

        logger.error(f"Fast-forward merge of {workspace.branch} failed")
        return Failure(
            reason=FailureReason.MERGE_FAILED,
            details=(
                f"Fast-forward merge of {workspace.branch} to {self.baseline} failed. "
                f"{self.baseline} has diverged since the rebase. This may indicate "
                "a race condition with another agent."
            ),
        )

    async def push(self) -> Failure | None:
        """Push the baseline, retrying with a pull-rebase between attempts.

        When every attempt fails the local baseline is reset to the remote so
        the unpushed merge does not leak into the next task.
        """
        for attempt in range(1, self.push_retries + 1):
            if self.repo.push(self.remote, self.baseline):
                _record_push("success")
                logger.info(f"Pushed {self.baseline} (attempt {attempt})")
                return None

            _record_push("failure")
            logger.warning(f"Push attempt {attempt}/{self.push_retries} failed")
            if attempt == self.push_retries:
                break

            await asyncio.sleep(self.push_retry_delay)
            if not self.repo.pull_rebase(self.remote, self.baseline):
                logger.warning("Pull --rebase failed before retrying push")
                if self.repo.rebase_in_progress():
                    self.repo.rebase_abort()

        try:
            self.repo.reset_hard(self.base_ref)
        except GitError as e:
            logger.error(f"Could not reset {self.baseline} after failed push: {e}")

        return Failure(
            reason=FailureReason.PUSH_FAILED,
            details=(
                f"Push to {self.base_ref} failed after {self.push_retries} attempts "
                f"with {self.push_retry_delay:.0f}s delays between retries. This may "
                "indicate persistent conflicts with other agents or remote access issues."
            ),
        )


def _record_push(result: str) -> None:
    """Record a push attempt if metrics are initialized."""
    try:
        telemetry.push_attempts_counter.add(1, {"result": result})
    except (AttributeError, NameError):
        # Counters not initialized - telemetry disabled
        pass
