"""Tests for Discord notifier module.

Tests cover:
- send_discord_message() posts to webhook URL
- Webhook failures are logged, not raised
- Embed formatting for approval, closed and blocked events
"""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from agentloop.notifier import (
    COLORS,
    MAX_DESCRIPTION_LENGTH,
    DiscordEmbed,
    format_approval_needed,
    format_task_blocked,
    format_task_closed,
    send_discord_message,
)


def mock_client(post: AsyncMock) -> MagicMock:
    client = MagicMock()
    client.post = post
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=None)
    return client


class TestDiscordEmbed:
    """Test the DiscordEmbed dataclass."""

    def test_to_dict_omits_unset_fields(self):
        """Optional fields should not be included if None."""
        embed = DiscordEmbed(title="T", description="D", color=0x3498DB)

        assert embed.to_dict() == {"title": "T", "description": "D", "color": 0x3498DB}

    def test_to_dict_with_fields(self):
        """Fields should be included when set."""
        fields = [{"name": "F", "value": "V", "inline": True}]
        embed = DiscordEmbed(title="T", description="D", color=1, fields=fields)

        assert embed.to_dict()["fields"] == fields


class TestSendDiscordMessage:
    """Test webhook delivery."""

    @pytest.mark.asyncio
    async def test_posts_embed(self):
        """Should POST the embed payload to the webhook."""
        post = AsyncMock(return_value=MagicMock(status_code=204))
        embed = DiscordEmbed(title="T", description="D", color=1)

        with patch("httpx.AsyncClient", return_value=mock_client(post)):
            await send_discord_message("https://discord.example/hook", embed)

        post.assert_awaited_once_with(
            "https://discord.example/hook", json={"embeds": [embed.to_dict()]}
        )

    @pytest.mark.asyncio
    async def test_http_error_is_logged(self, caplog):
        """A 4xx response should be logged, not raised."""
        post = AsyncMock(return_value=MagicMock(status_code=404, text="Unknown Webhook"))

        with patch("httpx.AsyncClient", return_value=mock_client(post)):
            await send_discord_message("https://x", DiscordEmbed("T", "D", 1))

        assert "404" in caplog.text

    @pytest.mark.asyncio
    async def test_timeout_is_swallowed(self, caplog):
        """A timeout should be logged, not raised."""
        post = AsyncMock(side_effect=httpx.TimeoutException("slow"))

        with patch("httpx.AsyncClient", return_value=mock_client(post)):
            await send_discord_message("https://x", DiscordEmbed("T", "D", 1))

        assert "timed out" in caplog.text

    @pytest.mark.asyncio
    async def test_connect_error_is_swallowed(self, caplog):
        """A connection failure should be logged, not raised."""
        post = AsyncMock(side_effect=httpx.ConnectError("refused"))

        with patch("httpx.AsyncClient", return_value=mock_client(post)):
            await send_discord_message("https://x", DiscordEmbed("T", "D", 1))

        assert "Failed to connect" in caplog.text


class TestFormatters:
    """Test event formatting."""

    def test_approval_needed(self):
        """Approval embeds name the agent and show the commit."""
        embed = format_approval_needed("agent-1", "bd-1", "Add search", "Add search\n")

        assert "agent-1" in embed.title
        assert "Add search" in embed.description
        assert embed.color == COLORS["approval"]

    def test_task_closed(self):
        """Closed embeds include duration and revisions."""
        embed = format_task_closed("agent-1", "bd-1", "Add search", 150.0, revisions=2)

        assert embed.title == "✅ Task bd-1: Add search"
        assert "2m 30s" in embed.description
        assert {"name": "Revisions", "value": "2", "inline": True} in embed.fields

    def test_task_blocked_truncates(self):
        """Blocked embeds respect Discord's description limit."""
        embed = format_task_blocked(
            "agent-1", "bd-1", "Add search", "test_failure", "x" * 5000
        )

        assert "test_failure" in embed.description
        assert len(embed.description) == MAX_DESCRIPTION_LENGTH
        assert embed.description.endswith("... [truncated]")
        assert embed.color == COLORS["blocked"]
