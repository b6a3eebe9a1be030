"""Shared fixtures for agentloop tests.

Git-backed tests use a throwaway bare remote plus a main checkout cloned
from it, laid out the way agents see the shared workspace.
"""

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

import pytest

from agentloop.config import AgentConfig


def git(path: Path, *args: str) -> str:
    """Run a git command in path and return stdout (raises on failure)."""
    result = subprocess.run(
        ["git", *args],
        cwd=path,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout


def commit_file(path: Path, name: str, content: str, message: str) -> None:
    (path / name).write_text(content)
    git(path, "add", name)
    git(path, "commit", "-q", "-m", message)


def set_identity(path: Path, name: str = "tester") -> None:
    git(path, "config", "user.name", name)
    git(path, "config", "user.email", f"{name}@example.com")


@dataclass
class GitWorld:
    """A bare remote and the clones used to drive it."""

    root: Path
    remote: Path
    main: Path

    git = staticmethod(git)
    commit = staticmethod(commit_file)

    def clone(self, name: str) -> Path:
        """Clone the remote as another agent's or human's checkout."""
        target = self.root / name
        git(self.root, "clone", "-q", str(self.remote), str(target))
        set_identity(target, name)
        return target


@pytest.fixture
def git_world(tmp_path: Path) -> GitWorld:
    """Bare remote with one commit on main, cloned to <root>/main."""
    if shutil.which("git") is None:
        pytest.skip("git not installed")

    root = tmp_path / "workspace"
    root.mkdir()
    remote = tmp_path / "remote.git"
    git(tmp_path, "init", "-q", "--bare", "-b", "main", str(remote))

    main = root / "main"
    git(root, "clone", "-q", str(remote), str(main))
    set_identity(main)
    git(main, "symbolic-ref", "HEAD", "refs/heads/main")
    commit_file(main, "README.md", "hello\n", "Initial commit")
    git(main, "push", "-q", "origin", "main")

    return GitWorld(root=root, remote=remote, main=main)


@pytest.fixture
def config(tmp_path: Path) -> AgentConfig:
    """Agent config with no delays, rooted in tmp_path."""
    return AgentConfig(
        agent_id="agent-1",
        workspace_root=tmp_path / "workspace",
        push_retry_delay=0,
        idle_sleep=0,
        approval_poll_interval=0,
    )
