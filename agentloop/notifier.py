"""Discord webhook notifier for agent events.

Sends embed notifications when a task needs approval, is closed or is
blocked. Webhook failures are logged but never raised, so notification
issues can't affect a task's outcome.
"""

import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

# Color scheme for Discord embeds
COLORS = {
    "approval": 0xF39C12,  # Orange
    "closed": 0x2ECC71,  # Green
    "blocked": 0xE74C3C,  # Red
}

# Maximum description length for Discord embeds
MAX_DESCRIPTION_LENGTH = 4096
TRUNCATION_SUFFIX = "... [truncated]"


@dataclass
class DiscordEmbed:
    """Discord embed message structure.

    Attributes:
        title: Bold title text at the top of the embed
        description: Main body text (max 4096 chars)
        color: Integer color value
        fields: Optional list of field dicts with name, value, inline keys
    """

    title: str
    description: str
    color: int
    fields: list[dict] | None = None

    def to_dict(self) -> dict:
        """Convert embed to Discord API format."""
        result = {
            "title": self.title,
            "description": self.description,
            "color": self.color,
        }
        if self.fields is not None:
            result["fields"] = self.fields
        return result


async def send_discord_message(webhook_url: str, embed: DiscordEmbed) -> None:
    """Post an embed to a Discord webhook.

    Uses a 5 second timeout. Discord returns 204 No Content on success; any
    failure is logged as a warning.
    """
    payload = {"embeds": [embed.to_dict()]}

    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.post(webhook_url, json=payload)

            if response.status_code >= 400:
                logger.warning(
                    f"Discord webhook returned {response.status_code}: {response.text}"
                )
    except httpx.TimeoutException:
        logger.warning("Discord webhook request timed out")
    except httpx.ConnectError:
        logger.warning("Failed to connect to Discord webhook")
    except Exception as e:
        logger.warning(f"Discord webhook error: {e}")


def _truncate_text(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - len(TRUNCATION_SUFFIX)] + TRUNCATION_SUFFIX


def _format_duration(seconds: float) -> str:
    """Format duration like "45s", "2m 30s" or "1h 15m"."""
    if seconds < 60:
        return f"{seconds:.0f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{minutes}m {secs}s" if secs > 0 else f"{minutes}m"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        return f"{hours}h {minutes}m" if minutes > 0 else f"{hours}h"


def format_approval_needed(
    agent_id: str, task_id: str, title: str, commit_message: str
) -> DiscordEmbed:
    """Format an approval request as a Discord embed."""
    description = "\n".join(
        [
            f"Task {task_id}: {title}",
            "",
            "**Commit:**",
            commit_message.strip() or "(no commit message)",
        ]
    )
    return DiscordEmbed(
        title=f"👀 Approval Needed ({agent_id})",
        description=_truncate_text(description, MAX_DESCRIPTION_LENGTH),
        color=COLORS["approval"],
    )


def format_task_closed(
    agent_id: str, task_id: str, title: str, duration_s: float, revisions: int = 0
) -> DiscordEmbed:
    """Format a merged-and-closed task as a Discord embed."""
    return DiscordEmbed(
        title=f"✅ Task {task_id}: {title}",
        description=f"Merged by {agent_id} in {_format_duration(duration_s)}",
        color=COLORS["closed"],
        fields=[
            {"name": "Duration", "value": _format_duration(duration_s), "inline": True},
            {"name": "Revisions", "value": str(revisions), "inline": True},
        ],
    )


def format_task_blocked(
    agent_id: str, task_id: str, title: str, reason: str, details: str
) -> DiscordEmbed:
    """Format a blocked task as a Discord embed.

    Args:
        agent_id: Agent that attempted the task
        task_id: Backlog task id
        title: Task title
        reason: Failure reason value (e.g. "merge_conflict")
        details: Failure details posted to the backlog

    Returns:
        DiscordEmbed ready to send to Discord
    """
    description = "\n".join(
        [
            f"Task {task_id}: {title}",
            "",
            f"**Reason:** {reason}",
            details,
        ]
    )
    return DiscordEmbed(
        title=f"❌ Task Blocked ({agent_id})",
        description=_truncate_text(description, MAX_DESCRIPTION_LENGTH),
        color=COLORS["blocked"],
    )
