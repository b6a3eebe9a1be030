"""Environment validation and git identity for agent processes.

Validates that an agent can run before it claims anything:
- The main checkout is a git work tree
- git, the backlog CLI and the coding agent CLI are on PATH
"""

import logging
import shutil
from pathlib import Path
from typing import cast

from agentloop.config import AgentConfig
from agentloop.errors import AgentLoopError
from agentloop.git import GitRepo

logger = logging.getLogger(__name__)

# Credential helper that answers with the token from the environment
_TOKEN_HELPER = (
    "!f() { echo username=x-access-token; echo password=$GITHUB_TOKEN; }; f"
)


def validate_environment(config: AgentConfig) -> GitRepo:
    """Validate agent prerequisites and return the main checkout.

    Returns:
        GitRepo for the main checkout on success.

    Raises:
        AgentLoopError: If any prerequisite is not met. The error message
            says how to fix it.
    """
    if shutil.which("git") is None:
        raise AgentLoopError("git not found. Install git and ensure it is in PATH.")

    main_checkout = cast(Path, config.main_checkout)
    repo = GitRepo(path=main_checkout)
    if not main_checkout.is_dir() or not repo.is_work_tree():
        raise AgentLoopError(
            f"{main_checkout} is not a git checkout. "
            "Clone the repository there or set AGENTLOOP_MAIN_CHECKOUT."
        )

    if shutil.which(config.bd_bin) is None:
        raise AgentLoopError(
            f"Backlog CLI '{config.bd_bin}' not found. "
            "Install beads or set AGENTLOOP_BD_BIN."
        )

    if shutil.which(config.claude_bin) is None:
        raise AgentLoopError(
            f"Coding agent CLI '{config.claude_bin}' not found. "
            "Install Claude Code or set AGENTLOOP_CLAUDE_BIN."
        )

    return repo


def setup_git_identity(repo: GitRepo, agent_id: str, token: str | None = None) -> None:
    """Configure commit identity and, with a token, HTTPS credentials.

    Raises:
        GitError: If git config cannot be written
    """
    repo.config("user.name", agent_id)
    repo.config("user.email", f"{agent_id}@agent.local")
    if token:
        repo.config("credential.helper", _TOKEN_HELPER)
        logger.info("Configured git credential helper from GITHUB_TOKEN")
    logger.info(f"Git identity set to {agent_id}")
