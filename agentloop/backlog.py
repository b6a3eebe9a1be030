"""Backlog store adapter.

The backlog store owns tasks and provides the only cross-agent claim
primitive. agentloop talks to it through the BacklogStore protocol;
BeadsBacklog implements it on top of the ``bd`` CLI.
"""

import json
import logging
import subprocess
from typing import Any, Protocol

from agentloop.errors import BacklogError
from agentloop.models import Task

logger = logging.getLogger(__name__)


class BacklogStore(Protocol):
    """Operations the lifecycle engine needs from the backlog."""

    def list_ready(self) -> list[Task]: ...

    def claim(self, task_id: str, agent_id: str) -> None: ...

    def read(self, task_id: str) -> Task: ...

    def close(self, task_id: str) -> None: ...

    def block(self, task_id: str, comment: str) -> None: ...

    def add_comment(self, task_id: str, text: str) -> None: ...

    def sync(self) -> None: ...


class BeadsBacklog:
    """BacklogStore backed by the ``bd`` (beads) command-line tool.

    Every call shells out to ``bd``; any non-zero exit, missing binary or
    unparseable JSON raises BacklogError.
    """

    def __init__(self, bd_bin: str = "bd", cwd: str | None = None, timeout: int = 60):
        self.bd_bin = bd_bin
        self.cwd = cwd
        self.timeout = timeout

    def _run(self, *args: str) -> str:
        cmd = [self.bd_bin, *args]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                cwd=self.cwd,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise BacklogError(f"{self.bd_bin} not installed") from e
        except subprocess.TimeoutExpired as e:
            raise BacklogError(f"{' '.join(args[:2])} timed out") from e

        if result.returncode != 0:
            raise BacklogError(
                f"{self.bd_bin} {' '.join(args[:2])} failed: {result.stderr.strip()}"
            )
        return result.stdout

    def _run_json(self, *args: str) -> Any:
        output = self._run(*args, "--json")
        try:
            return json.loads(output or "null")
        except json.JSONDecodeError as e:
            raise BacklogError(f"Failed to parse {self.bd_bin} JSON output: {e}") from e

    def list_ready(self) -> list[Task]:
        data = self._run_json("ready")
        if not data:
            return []
        return [Task.from_dict(item) for item in data]

    def claim(self, task_id: str, agent_id: str) -> None:
        self._run("update", task_id, "--status", "in_progress", "--assignee", agent_id)

    def read(self, task_id: str) -> Task:
        data = self._run_json("show", task_id)
        # bd show returns a one-element list
        if isinstance(data, list):
            if not data:
                raise BacklogError(f"Task {task_id} not found")
            data = data[0]
        if not isinstance(data, dict):
            raise BacklogError(f"Unexpected {self.bd_bin} show output for {task_id}")
        return Task.from_dict(data)

    def close(self, task_id: str) -> None:
        self._run("close", task_id)

    def block(self, task_id: str, comment: str) -> None:
        """Comment on the task, then mark it blocked.

        A failed comment is logged and does not prevent the status change.
        """
        try:
            self.add_comment(task_id, comment)
        except BacklogError as e:
            logger.warning(f"Could not comment on {task_id}: {e}")
        self._run("update", task_id, "--status", "blocked")

    def add_comment(self, task_id: str, text: str) -> None:
        self._run("comments", "add", task_id, text)

    def sync(self) -> None:
        self._run("sync")
