"""Workspace manager for task isolation.

Creates and destroys the per-agent git worktree a task is implemented in.
Each agent owns exactly one workspace path; creating a workspace first
force-removes whatever a crashed previous run left behind.
"""

import logging
import shutil
from pathlib import Path

from agentloop.errors import GitError, WorkspaceError
from agentloop.git import GitRepo
from agentloop.models import Workspace

logger = logging.getLogger(__name__)


def branch_name(agent_id: str, task_id: str) -> str:
    """Task branch name: ``{agent_id}/{task_id}``."""
    return f"{agent_id}/{task_id}"


class WorkspaceManager:
    """Manages the agent's task worktree.

    Attributes:
        repo: Main checkout the worktrees are attached to
        agent_id: Owner of the workspace (path and branch prefix)
        worktree_path: Location of the agent's workspace
        remote: Remote the baseline is fetched from
        baseline: Baseline branch name
    """

    def __init__(
        self,
        repo: GitRepo,
        agent_id: str,
        worktree_path: Path,
        remote: str = "origin",
        baseline: str = "main",
    ) -> None:
        self.repo = repo
        self.agent_id = agent_id
        self.worktree_path = worktree_path
        self.remote = remote
        self.baseline = baseline

    @property
    def base_ref(self) -> str:
        return f"{self.remote}/{self.baseline}"

    def setup(self, task_id: str) -> Workspace:
        """Create a fresh worktree for a claimed task.

        Fetches the baseline, removes any leftover workspace and agent
        branches, then cuts ``{agent_id}/{task_id}`` from the fetched
        baseline.

        Raises:
            WorkspaceError: If the baseline cannot be fetched or the worktree
                cannot be created
        """
        branch = branch_name(self.agent_id, task_id)

        try:
            self.repo.fetch(self.remote, self.baseline)
        except GitError as e:
            raise WorkspaceError(f"Could not fetch {self.base_ref}: {e}") from e

        self._remove_worktree()
        for stale in self.repo.list_branches(f"{self.agent_id}/*"):
            logger.info(f"Deleting leftover branch {stale}")
            self.repo.delete_branch(stale)

        try:
            self.repo.worktree_add(self.worktree_path, branch, self.base_ref)
        except GitError as e:
            raise WorkspaceError(f"Could not create worktree: {e}") from e

        logger.info(f"Created worktree at {self.worktree_path} on branch {branch}")
        return Workspace(
            path=self.worktree_path,
            branch=branch,
            task_id=task_id,
            base_ref=self.base_ref,
        )

    def teardown(self, workspace: Workspace | None, task_id: str) -> None:
        """Remove the worktree and delete the task branch.

        Tolerates either already being gone; never raises for a missing
        worktree or branch.
        """
        path = workspace.path if workspace is not None else self.worktree_path
        branch = (
            workspace.branch if workspace is not None else branch_name(self.agent_id, task_id)
        )

        self._remove_worktree(path)
        if self.repo.branch_exists(branch):
            self.repo.delete_branch(branch)
        logger.info(f"Removed workspace for {task_id}")

    def _remove_worktree(self, path: Path | None = None) -> None:
        path = path or self.worktree_path
        if path.exists():
            if not self.repo.worktree_remove(path):
                logger.debug(f"git worktree remove failed for {path}, deleting directory")
            if path.exists():
                shutil.rmtree(path, ignore_errors=True)
        self.repo.worktree_prune()
