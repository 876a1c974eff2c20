"""Tests for the admin slash commands.

Covers:
- Administrator check
- Each slash command's call into the service and its reply
- Ephemeral responses and failure messages
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import discord
import pytest

from resetkeeper.commands import FAILURE_MESSAGES, AdminCommands, describe_failure
from resetkeeper.config import Config
from resetkeeper.models import ErrorKind, GuildStatus, OperationResult

from conftest import CHANNEL_ID, GUILD_ID, OTHER_CHANNEL_ID


class MockInteraction:
    """Mock Discord interaction for testing."""

    def __init__(
        self,
        administrator: bool = True,
        in_guild: bool = True,
        command_name: str = "test",
    ) -> None:
        """Initialize mock interaction.

        Args:
            administrator: Whether the user has the Administrator permission.
            in_guild: Whether the interaction is in a guild.
            command_name: Name of the command being invoked.
        """
        self.user = MagicMock(spec=discord.Member)
        self.user.id = 123456
        self.user.guild_permissions = MagicMock(administrator=administrator)

        self.guild = MagicMock() if in_guild else None
        self.guild_id = int(GUILD_ID) if in_guild else None

        self.command = MagicMock()
        self.command.name = command_name

        self.response = MagicMock()
        self.response.send_message = AsyncMock()
        self.response.defer = AsyncMock()

        self.followup = MagicMock()
        self.followup.send = AsyncMock()


class MockResetBot:
    """Mock ResetBot for testing commands."""

    def __init__(self, config: Config, config_path: Path | None = None) -> None:
        self.config = config
        self.config_path = config_path
        self.service = MagicMock()
        self.service.get_state = MagicMock(return_value=None)
        for operation in (
            "handle_channel_move",
            "send_announcement",
            "delete_reset_message",
            "stop",
        ):
            setattr(self.service, operation, AsyncMock(return_value=OperationResult.success()))


def sent_text(mock: AsyncMock) -> str:
    return mock.call_args.args[0]


@pytest.fixture
def bot(config: Config) -> MockResetBot:
    return MockResetBot(config)


@pytest.fixture
def cog(bot: MockResetBot) -> AdminCommands:
    return AdminCommands(bot)  # type: ignore[arg-type]


class TestAdminCheck:
    """Tests for administrator access control."""

    def test_administrator_passes(self, cog: AdminCommands) -> None:
        assert cog.is_admin(MockInteraction()) is True  # type: ignore[arg-type]

    def test_non_administrator_fails(self, cog: AdminCommands) -> None:
        interaction = MockInteraction(administrator=False)
        assert cog.is_admin(interaction) is False  # type: ignore[arg-type]

    def test_outside_guild_fails(self, cog: AdminCommands) -> None:
        interaction = MockInteraction(in_guild=False)
        assert cog.is_admin(interaction) is False  # type: ignore[arg-type]

    def test_non_member_user_fails(self, cog: AdminCommands) -> None:
        interaction = MockInteraction()
        interaction.user = MagicMock(spec=discord.User)
        assert cog.is_admin(interaction) is False  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_rejection_is_ephemeral(self, cog: AdminCommands, bot: MockResetBot) -> None:
        interaction = MockInteraction(administrator=False, command_name="reset-delete")

        with patch("resetkeeper.commands.log") as mock_log:
            await cog.reset_delete.callback(cog, interaction)  # type: ignore[arg-type]

        interaction.response.send_message.assert_awaited_once()
        assert interaction.response.send_message.call_args.kwargs["ephemeral"] is True
        assert "administrators" in sent_text(interaction.response.send_message)
        bot.service.delete_reset_message.assert_not_awaited()
        mock_log.info.assert_called_once()
        assert mock_log.info.call_args.kwargs["reason"] == "not_admin"


class TestAnnouncementChannel:
    """Tests for /announcement-channel."""

    @pytest.mark.asyncio
    async def test_moves_from_configured_channel(
        self, cog: AdminCommands, bot: MockResetBot, config: Config
    ) -> None:
        interaction = MockInteraction()
        channel = MagicMock(id=int(OTHER_CHANNEL_ID), mention=f"<#{OTHER_CHANNEL_ID}>")

        with patch("resetkeeper.commands.log"):
            await cog.announcement_channel.callback(cog, interaction, channel)  # type: ignore[arg-type]

        interaction.response.defer.assert_awaited_once_with(ephemeral=True)
        bot.service.handle_channel_move.assert_awaited_once_with(
            GUILD_ID, CHANNEL_ID, OTHER_CHANNEL_ID
        )
        assert config.get_guild_settings(GUILD_ID).channel_id == OTHER_CHANNEL_ID
        assert f"<#{OTHER_CHANNEL_ID}>" in sent_text(interaction.followup.send)

    @pytest.mark.asyncio
    async def test_prefers_live_channel_over_config(
        self, cog: AdminCommands, bot: MockResetBot
    ) -> None:
        bot.service.get_state.return_value = GuildStatus(guild_id=GUILD_ID, channel_id="777")
        interaction = MockInteraction()
        channel = MagicMock(id=int(OTHER_CHANNEL_ID))

        with patch("resetkeeper.commands.log"):
            await cog.announcement_channel.callback(cog, interaction, channel)  # type: ignore[arg-type]

        bot.service.handle_channel_move.assert_awaited_once_with(GUILD_ID, "777", OTHER_CHANNEL_ID)

    @pytest.mark.asyncio
    async def test_saves_config_when_path_known(
        self, config: Config, tmp_path: Path
    ) -> None:
        path = tmp_path / "config.yaml"
        bot = MockResetBot(config, config_path=path)
        cog = AdminCommands(bot)  # type: ignore[arg-type]
        channel = MagicMock(id=int(OTHER_CHANNEL_ID))

        with patch("resetkeeper.commands.log"):
            await cog.announcement_channel.callback(cog, MockInteraction(), channel)  # type: ignore[arg-type]

        saved = Config.load(path)
        assert saved.get_guild_settings(GUILD_ID).channel_id == OTHER_CHANNEL_ID

    @pytest.mark.asyncio
    async def test_reports_failure(self, cog: AdminCommands, bot: MockResetBot) -> None:
        bot.service.handle_channel_move.return_value = OperationResult.failure(
            ErrorKind.TRANSPORT_UNAVAILABLE
        )
        interaction = MockInteraction()

        with patch("resetkeeper.commands.log"):
            await cog.announcement_channel.callback(cog, interaction, MagicMock(id=555))  # type: ignore[arg-type]

        assert sent_text(interaction.followup.send) == FAILURE_MESSAGES[ErrorKind.TRANSPORT_UNAVAILABLE]


class TestResetNotify:
    """Tests for /reset-notify."""

    @pytest.mark.asyncio
    async def test_sets_role(self, cog: AdminCommands, config: Config) -> None:
        interaction = MockInteraction()
        role = MagicMock(id=555)
        role.name = "raiders"

        with patch("resetkeeper.commands.log") as mock_log:
            await cog.reset_notify.callback(cog, interaction, role)  # type: ignore[arg-type]

        assert config.get_guild_settings(GUILD_ID).notify_role_id == "555"
        assert sent_text(interaction.followup.send) == "Reset announcements will now mention raiders."
        assert interaction.followup.send.call_args.kwargs["ephemeral"] is True
        assert mock_log.info.call_args.kwargs["role_id"] == "555"

    @pytest.mark.asyncio
    async def test_unconfigured_guild_is_rejected(self, config: Config) -> None:
        config.countdown.guilds.clear()
        bot = MockResetBot(config)
        cog = AdminCommands(bot)  # type: ignore[arg-type]
        interaction = MockInteraction()

        with patch("resetkeeper.commands.log"):
            await cog.reset_notify.callback(cog, interaction, MagicMock(id=555))  # type: ignore[arg-type]

        assert sent_text(interaction.followup.send) == FAILURE_MESSAGES[ErrorKind.CONFIGURATION_MISSING]
        assert config.countdown.guilds == {}

    @pytest.mark.asyncio
    async def test_saves_config_when_path_known(self, config: Config, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        bot = MockResetBot(config, config_path=path)
        cog = AdminCommands(bot)  # type: ignore[arg-type]

        with patch("resetkeeper.commands.log"):
            await cog.reset_notify.callback(cog, MockInteraction(), MagicMock(id=555))  # type: ignore[arg-type]

        assert Config.load(path).get_guild_settings(GUILD_ID).notify_role_id == "555"


class TestResetCommands:
    """Tests for /reset-announcement and /reset-delete."""

    @pytest.mark.asyncio
    async def test_reset_announcement(self, cog: AdminCommands, bot: MockResetBot) -> None:
        interaction = MockInteraction()

        with patch("resetkeeper.commands.log"):
            await cog.reset_announcement.callback(cog, interaction)  # type: ignore[arg-type]

        bot.service.send_announcement.assert_awaited_once_with(GUILD_ID, CHANNEL_ID)
        assert sent_text(interaction.followup.send) == "Reset announcement posted."
        assert interaction.followup.send.call_args.kwargs["ephemeral"] is True

    @pytest.mark.asyncio
    async def test_reset_announcement_without_channel(self, config: Config) -> None:
        config.countdown.guilds.clear()
        bot = MockResetBot(config)
        cog = AdminCommands(bot)  # type: ignore[arg-type]
        interaction = MockInteraction()

        with patch("resetkeeper.commands.log"):
            await cog.reset_announcement.callback(cog, interaction)  # type: ignore[arg-type]

        bot.service.send_announcement.assert_not_awaited()
        assert sent_text(interaction.followup.send) == FAILURE_MESSAGES[ErrorKind.CONFIGURATION_MISSING]

    @pytest.mark.asyncio
    async def test_reset_delete(self, cog: AdminCommands, bot: MockResetBot) -> None:
        interaction = MockInteraction()

        with patch("resetkeeper.commands.log"):
            await cog.reset_delete.callback(cog, interaction)  # type: ignore[arg-type]

        bot.service.delete_reset_message.assert_awaited_once_with(GUILD_ID)
        assert sent_text(interaction.followup.send) == "Reset announcement deleted."

    @pytest.mark.asyncio
    async def test_reset_delete_nothing_to_delete(
        self, cog: AdminCommands, bot: MockResetBot
    ) -> None:
        bot.service.delete_reset_message.return_value = OperationResult.failure(
            ErrorKind.MESSAGE_VANISHED
        )
        interaction = MockInteraction()

        with patch("resetkeeper.commands.log"):
            await cog.reset_delete.callback(cog, interaction)  # type: ignore[arg-type]

        assert sent_text(interaction.followup.send) == FAILURE_MESSAGES[ErrorKind.MESSAGE_VANISHED]


class TestCountdownCommands:
    """Tests for /countdown-stop and /countdown-status."""

    @pytest.mark.asyncio
    async def test_countdown_stop(self, cog: AdminCommands, bot: MockResetBot) -> None:
        interaction = MockInteraction()

        with patch("resetkeeper.commands.log"):
            await cog.countdown_stop.callback(cog, interaction)  # type: ignore[arg-type]

        bot.service.stop.assert_awaited_once_with(GUILD_ID)
        interaction.response.send_message.assert_awaited_once_with("Countdown stopped.", ephemeral=True)

    @pytest.mark.asyncio
    async def test_status_when_idle(self, cog: AdminCommands, bot: MockResetBot) -> None:
        bot.service.countdowns.time_remaining.return_value = MagicMock(
            next_reset=datetime(2024, 1, 1, 4, tzinfo=timezone.utc)
        )
        interaction = MockInteraction()

        with patch("resetkeeper.commands.log"):
            await cog.countdown_status.callback(cog, interaction)  # type: ignore[arg-type]

        text = sent_text(interaction.response.send_message)
        assert "Schedule: 00:00:00 UTC-4" in text
        assert "<t:1704081600:R>" in text
        assert "Countdown: not running" in text

    @pytest.mark.asyncio
    async def test_status_with_running_announcement(
        self, cog: AdminCommands, bot: MockResetBot
    ) -> None:
        bot.service.countdowns.time_remaining.return_value = MagicMock(
            next_reset=datetime(2024, 1, 2, 4, tzinfo=timezone.utc)
        )
        bot.service.get_state.return_value = GuildStatus(
            guild_id=GUILD_ID,
            channel_id=CHANNEL_ID,
            countdown_running=True,
            reset_running=True,
            last_reset_at=datetime(2024, 1, 1, 4, tzinfo=timezone.utc),
        )
        interaction = MockInteraction()

        with patch("resetkeeper.commands.log"):
            await cog.countdown_status.callback(cog, interaction)  # type: ignore[arg-type]

        text = sent_text(interaction.response.send_message)
        assert f"Channel: <#{CHANNEL_ID}>" in text
        assert "Countdown: running" in text
        assert "Announcement: running" in text
        assert "Last reset: <t:1704081600:R>" in text


def test_describe_failure_without_kind() -> None:
    result = OperationResult(ok=False)
    assert describe_failure(result) == FAILURE_MESSAGES[ErrorKind.UNEXPECTED]
