"""Logging configuration for agentloop.

Console logging goes through rich; each record is stamped with the agent id
so interleaved logs from several agent containers stay attributable.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

# RichHandler renders time and level columns itself
_CONSOLE_FORMAT = "[%(agent_id)s] %(name)s | %(message)s"

# Third-party loggers that are too chatty at INFO
_QUIET_LOGGERS = ("httpx", "httpcore")


class AgentIdFilter(logging.Filter):
    """Adds ``agent_id`` to every record passing through the handler."""

    def __init__(self, agent_id: str) -> None:
        super().__init__()
        self.agent_id = agent_id

    def filter(self, record: logging.LogRecord) -> bool:
        record.agent_id = self.agent_id
        return True


def configure_logging(agent_id: str, verbose: bool = False) -> None:
    """Configure root logging for an agent process.

    Args:
        agent_id: Identity stamped on every record
        verbose: Log at DEBUG instead of INFO (includes coding agent output)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Clear any existing handlers to avoid duplicates if reconfigured
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        log_time_format="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    handler.addFilter(AgentIdFilter(agent_id))
    root_logger.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
