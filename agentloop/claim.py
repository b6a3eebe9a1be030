"""Task claim coordination.

Claims one ready backlog item for this agent. The ready-set read and the
claim write are not atomic across agents, so a claim only counts once the
item's assignee has been re-read and matches this agent.
"""

import logging

from agentloop.backlog import BacklogStore
from agentloop.errors import BacklogError

logger = logging.getLogger(__name__)


class TaskClaimCoordinator:
    """Finds and claims the first ready task.

    Attributes:
        backlog: Backlog store providing list-ready, claim and read
        agent_id: Identity written as the task assignee
    """

    def __init__(self, backlog: BacklogStore, agent_id: str) -> None:
        self.backlog = backlog
        self.agent_id = agent_id

    def claim_next(self) -> str | None:
        """Claim the first ready task.

        Returns:
            The claimed task id, or None when nothing is ready, another agent
            won the race, or the backlog could not be reached. Never blocks.
        """
        try:
            ready = self.backlog.list_ready()
        except BacklogError as e:
            logger.warning(f"Could not list ready tasks: {e}")
            return None

        if not ready:
            return None

        task_id = ready[0].id
        logger.info(f"Attempting to claim task: {task_id}")

        try:
            self.backlog.claim(task_id, self.agent_id)
        except BacklogError as e:
            logger.info(f"Claim of {task_id} failed: {e}")
            return None

        try:
            self.backlog.sync()
        except BacklogError as e:
            logger.debug(f"Backlog sync failed after claim: {e}")

        try:
            assignee = self.backlog.read(task_id).assignee
        except BacklogError as e:
            logger.warning(f"Could not verify claim of {task_id}: {e}")
            return None

        if assignee != self.agent_id:
            logger.info(f"Task {task_id} claimed by another agent ({assignee})")
            return None

        logger.info(f"Successfully claimed task: {task_id}")
        return task_id
