"""Configuration for agentloop.

Provides centralized configuration with sensible defaults and environment
variable overrides for agent identity, workspace layout, retry budgets,
approval policy and telemetry.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import cast

from agentloop.models import AgentMode

DEFAULT_APPROVAL_TYPES = frozenset({"feature", "bug"})


def _optional_float(value: str | None) -> float | None:
    if value is None or value.strip() == "":
        return None
    return float(value)


def _parse_types(value: str | None) -> frozenset[str]:
    if value is None:
        return DEFAULT_APPROVAL_TYPES
    return frozenset(part.strip() for part in value.split(",") if part.strip())


@dataclass
class AgentConfig:
    """Configuration for one agent process.

    All settings have sensible defaults but can be overridden via environment
    variables using the from_env() factory method. ``main_checkout`` and
    ``status_root`` default to locations under ``workspace_root``.
    """

    # Identity
    agent_id: str = "agent"
    mode: AgentMode = AgentMode.AUTONOMOUS

    # Workspace layout
    workspace_root: Path = field(default_factory=lambda: Path("/workspace"))
    main_checkout: Path | None = None
    status_root: Path | None = None

    # Baseline
    remote: str = "origin"
    baseline: str = "main"

    # Merge pipeline
    push_retries: int = 3
    push_retry_delay: float = 5.0
    ff_merge_retries: int = 0
    test_command: str | None = None
    test_timeout_seconds: float | None = None

    # Lifecycle loop
    max_idle_cycles: int = 10
    idle_sleep: float = 30.0

    # Approval gate
    approval_types: frozenset[str] = DEFAULT_APPROVAL_TYPES
    approval_poll_interval: float = 2.0
    approval_timeout: float | None = None

    # External tools
    claude_bin: str = "claude"
    bd_bin: str = "bd"
    task_timeout_seconds: float | None = None
    github_token: str | None = None

    # Notifications
    discord_webhook_url: str | None = None

    # Telemetry settings
    otlp_enabled: bool = False
    otlp_endpoint: str = field(
        default_factory=lambda: os.getenv("OTLP_ENDPOINT", "http://localhost:4317")
    )
    service_name: str = "agentloop"

    def __post_init__(self) -> None:
        self.workspace_root = Path(self.workspace_root)
        if self.main_checkout is None:
            self.main_checkout = self.workspace_root / "main"
        if self.status_root is None:
            self.status_root = self.workspace_root / ".csb"
        self.mode = AgentMode(self.mode)

    @property
    def worktree_path(self) -> Path:
        """Path of this agent's task workspace."""
        return self.workspace_root / self.agent_id

    @property
    def status_dir(self) -> Path:
        """Directory holding this agent's dashboard status files."""
        return cast(Path, self.status_root) / self.agent_id

    @property
    def baseline_ref(self) -> str:
        """Remote-tracking ref every task branch is cut from and rebased onto."""
        return f"{self.remote}/{self.baseline}"

    @property
    def discord_enabled(self) -> bool:
        """Whether Discord notifications should be sent."""
        return bool(self.discord_webhook_url)

    def requires_approval(self, task_type: str) -> bool:
        """Check if a task type must pass the approval gate before merging."""
        return task_type in self.approval_types

    @classmethod
    def from_env(cls) -> "AgentConfig":
        """Load config with environment variable overrides.

        Environment variables:
            AGENT_ID: Agent identity (default: agent)
            AGENT_MODE: autonomous | interactive (default: autonomous)
            AGENTLOOP_WORKSPACE_ROOT: Workspace root (default: /workspace)
            AGENTLOOP_MAIN_CHECKOUT: Baseline checkout (default: <root>/main)
            AGENTLOOP_STATUS_ROOT: Status directory root (default: <root>/.csb)
            AGENTLOOP_REMOTE / AGENTLOOP_BASELINE: Baseline ref (origin/main)
            AGENTLOOP_PUSH_RETRIES: Push attempts (default: 3)
            AGENTLOOP_PUSH_RETRY_DELAY: Seconds between pushes (default: 5)
            AGENTLOOP_FF_MERGE_RETRIES: Re-rebase attempts on non-ff (default: 0)
            AGENTLOOP_TEST_COMMAND: Test command override (default: detect)
            AGENTLOOP_MAX_IDLE_CYCLES: Empty polls before exit (default: 10)
            AGENTLOOP_IDLE_SLEEP: Seconds between empty polls (default: 30)
            AGENTLOOP_APPROVAL_TYPES: Comma list of gated types (feature,bug)
            AGENTLOOP_APPROVAL_POLL_INTERVAL: Seconds between polls (default: 2)
            AGENTLOOP_APPROVAL_TIMEOUT: Seconds to wait (default: unbounded)
            AGENTLOOP_TASK_TIMEOUT: Coding agent timeout (default: unbounded)
            AGENTLOOP_CLAUDE_BIN / AGENTLOOP_BD_BIN: CLI executables
            GITHUB_TOKEN: Token for the git credential helper
            DISCORD_WEBHOOK_URL: Discord webhook for notifications
            OTLP_ENABLED: "true" to export traces and metrics (default: false)
            OTLP_ENDPOINT: Override otlp_endpoint (default: http://localhost:4317)
        """
        workspace_root = Path(os.getenv("AGENTLOOP_WORKSPACE_ROOT", "/workspace"))
        main_checkout = os.getenv("AGENTLOOP_MAIN_CHECKOUT")
        status_root = os.getenv("AGENTLOOP_STATUS_ROOT")

        return cls(
            agent_id=os.getenv("AGENT_ID", "agent"),
            mode=AgentMode(os.getenv("AGENT_MODE", "autonomous")),
            workspace_root=workspace_root,
            main_checkout=Path(main_checkout) if main_checkout else None,
            status_root=Path(status_root) if status_root else None,
            remote=os.getenv("AGENTLOOP_REMOTE", "origin"),
            baseline=os.getenv("AGENTLOOP_BASELINE", "main"),
            push_retries=int(os.getenv("AGENTLOOP_PUSH_RETRIES", "3")),
            push_retry_delay=float(os.getenv("AGENTLOOP_PUSH_RETRY_DELAY", "5")),
            ff_merge_retries=int(os.getenv("AGENTLOOP_FF_MERGE_RETRIES", "0")),
            test_command=os.getenv("AGENTLOOP_TEST_COMMAND") or None,
            test_timeout_seconds=_optional_float(
                os.getenv("AGENTLOOP_TEST_TIMEOUT")
            ),
            max_idle_cycles=int(os.getenv("AGENTLOOP_MAX_IDLE_CYCLES", "10")),
            idle_sleep=float(os.getenv("AGENTLOOP_IDLE_SLEEP", "30")),
            approval_types=_parse_types(os.getenv("AGENTLOOP_APPROVAL_TYPES")),
            approval_poll_interval=float(
                os.getenv("AGENTLOOP_APPROVAL_POLL_INTERVAL", "2")
            ),
            approval_timeout=_optional_float(os.getenv("AGENTLOOP_APPROVAL_TIMEOUT")),
            claude_bin=os.getenv("AGENTLOOP_CLAUDE_BIN", "claude"),
            bd_bin=os.getenv("AGENTLOOP_BD_BIN", "bd"),
            task_timeout_seconds=_optional_float(os.getenv("AGENTLOOP_TASK_TIMEOUT")),
            github_token=os.getenv("GITHUB_TOKEN") or None,
            discord_webhook_url=os.getenv("DISCORD_WEBHOOK_URL") or None,
            otlp_enabled=os.getenv("OTLP_ENABLED", "false").lower() == "true",
            otlp_endpoint=os.getenv("OTLP_ENDPOINT", "http://localhost:4317"),
        )
