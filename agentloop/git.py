"""Git adapter for agentloop.

Wraps the git primitives the lifecycle engine relies on: fetch, worktree
add/remove, rebase with abort, checkout, fast-forward merge, push and branch
delete. Operations whose failure is an expected outcome (rebase conflict,
non-fast-forward merge, rejected push) return a bool; operations that must
succeed raise GitError.
"""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from agentloop.errors import GitError

logger = logging.getLogger(__name__)


@dataclass
class GitRepo:
    """A git working tree (the main checkout or a task worktree).

    Attributes:
        path: Working tree directory commands run in
        timeout: Per-command timeout in seconds
    """

    path: Path
    timeout: int = 300

    def run(self, *args: str, check: bool = False) -> subprocess.CompletedProcess:
        """Run a git command in this working tree.

        Args:
            *args: Arguments after ``git``
            check: Raise GitError on non-zero exit

        Raises:
            GitError: If git is missing, times out, or (with check) fails
        """
        cmd = ["git", *args]
        try:
            result = subprocess.run(
                cmd,
                cwd=self.path,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise GitError("Git not installed") from e
        except subprocess.TimeoutExpired as e:
            raise GitError(f"git {args[0]} timed out after {self.timeout}s") from e

        if check and result.returncode != 0:
            raise GitError(f"git {' '.join(args)} failed: {result.stderr.strip()}")
        return result

    def at(self, path: Path) -> "GitRepo":
        """Return an adapter for another working tree of the same repository."""
        return GitRepo(path=path, timeout=self.timeout)

    # -- repository state -------------------------------------------------

    def is_work_tree(self) -> bool:
        try:
            result = self.run("rev-parse", "--is-inside-work-tree")
        except GitError:
            return False
        return result.returncode == 0 and result.stdout.strip() == "true"

    def fetch(self, remote: str, branch: str) -> None:
        self.run("fetch", remote, branch, check=True)

    def branch_exists(self, branch: str) -> bool:
        result = self.run("show-ref", "--verify", "--quiet", f"refs/heads/{branch}")
        return result.returncode == 0

    def list_branches(self, pattern: str) -> list[str]:
        result = self.run("branch", "--list", "--format=%(refname:short)", pattern)
        if result.returncode != 0:
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def delete_branch(self, branch: str) -> bool:
        return self.run("branch", "-D", branch).returncode == 0

    def config(self, key: str, value: str) -> None:
        self.run("config", key, value, check=True)

    # -- worktrees ----------------------------------------------------------

    def worktree_add(self, path: Path, branch: str, start_point: str) -> None:
        self.run("worktree", "add", str(path), "-b", branch, start_point, check=True)

    def worktree_remove(self, path: Path) -> bool:
        return self.run("worktree", "remove", str(path), "--force").returncode == 0

    def worktree_prune(self) -> None:
        self.run("worktree", "prune")

    # -- rebase / merge / push ------------------------------------------------

    def rebase(self, onto: str) -> bool:
        return self.run("rebase", onto).returncode == 0

    def rebase_abort(self) -> None:
        self.run("rebase", "--abort")

    def rebase_in_progress(self) -> bool:
        for name in ("rebase-merge", "rebase-apply"):
            result = self.run("rev-parse", "--git-path", name)
            if result.returncode != 0:
                continue
            git_path = Path(result.stdout.strip())
            if not git_path.is_absolute():
                git_path = self.path / git_path
            if git_path.exists():
                return True
        return False

    def conflict_files(self) -> list[str]:
        result = self.run("diff", "--name-only", "--diff-filter=U")
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def checkout(self, branch: str) -> None:
        self.run("checkout", branch, check=True)

    def reset_hard(self, ref: str) -> None:
        self.run("reset", "--hard", ref, check=True)

    def merge_ff_only(self, branch: str) -> bool:
        return self.run("merge", "--ff-only", branch).returncode == 0

    def push(self, remote: str, branch: str) -> bool:
        return self.run("push", remote, branch).returncode == 0

    def pull_rebase(self, remote: str, branch: str) -> bool:
        return self.run("pull", "--rebase", remote, branch).returncode == 0

    # -- review material ------------------------------------------------------

    def diff(self, base_ref: str) -> str:
        """Diff of this branch against the merge base with base_ref."""
        result = self.run("diff", f"{base_ref}...HEAD")
        return result.stdout if result.returncode == 0 else ""

    def last_commit_message(self) -> str:
        result = self.run("log", "-1", "--format=%s%n%n%b")
        return result.stdout if result.returncode == 0 else ""
