"""Discord slash commands for ResetKeeper administrators.

A thin layer over ResetScheduleService: each command resolves the guild
and channel from the interaction, calls one exposed operation and reports
the outcome.

All commands respond ephemerally (only visible to the caller) and are
restricted to members with the Administrator permission.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from resetkeeper.logging import get_logger
from resetkeeper.models import ErrorKind, OperationResult

if TYPE_CHECKING:
    from resetkeeper.bot import ResetBot

log = get_logger("commands")

FAILURE_MESSAGES = {
    ErrorKind.CONFIGURATION_MISSING: "This server has no reset schedule or channel configured.",
    ErrorKind.TRANSPORT_UNAVAILABLE: "I couldn't reach that channel. Check that I can send messages and embeds there.",
    ErrorKind.MESSAGE_VANISHED: "There is no announcement to act on.",
    ErrorKind.UNEXPECTED: "Something went wrong. Check the bot logs.",
}


def describe_failure(result: OperationResult) -> str:
    """User-facing text for a failed operation."""
    if result.error is None:
        return FAILURE_MESSAGES[ErrorKind.UNEXPECTED]
    return FAILURE_MESSAGES[result.error]


class AdminCommands(commands.Cog):
    """Slash commands for server administrators."""

    def __init__(self, bot: ResetBot) -> None:
        """Initialize the commands cog.

        Args:
            bot: The ResetBot instance.
        """
        self.bot = bot
        self.config = bot.config
        self.service = bot.service

    def is_admin(self, interaction: discord.Interaction) -> bool:
        """Check the caller is a guild member with the Administrator permission."""
        if interaction.guild is None:
            return False
        member = interaction.user
        if not isinstance(member, discord.Member):
            return False
        return member.guild_permissions.administrator

    async def admin_check(self, interaction: discord.Interaction) -> bool:
        """Interaction check for admin commands.

        Sends a rejection message if the user is not an administrator.
        """
        if not self.is_admin(interaction):
            await interaction.response.send_message(
                "This command is restricted to server administrators.",
                ephemeral=True,
            )
            log.info(
                "command_rejected",
                command=interaction.command.name if interaction.command else "unknown",
                user=str(interaction.user),
                reason="not_admin",
            )
            return False
        return True

    def _current_channel(self, guild_id: str) -> str | None:
        state = self.service.get_state(guild_id)
        if state is not None and state.channel_id:
            return state.channel_id
        settings = self.config.get_guild_settings(guild_id)
        return settings.channel_id if settings is not None else None

    @app_commands.command(
        name="announcement-channel",
        description="Set the channel for the reset countdown and announcements",
    )
    @app_commands.describe(channel="Channel that receives the countdown")
    @app_commands.default_permissions(administrator=True)
    async def announcement_channel(
        self, interaction: discord.Interaction, channel: discord.TextChannel
    ) -> None:
        """Point the guild at a channel and move any running displays there."""
        if not await self.admin_check(interaction):
            return

        await interaction.response.defer(ephemeral=True)

        guild_id = str(interaction.guild_id)
        new_channel_id = str(channel.id)
        old_channel_id = self._current_channel(guild_id)

        self.config.set_guild_channel(guild_id, new_channel_id)
        if self.bot.config_path is not None:
            try:
                self.config.save(self.bot.config_path)
            except OSError as e:
                log.error("config_save_failed", guild_id=guild_id, error=str(e))

        result = await self.service.handle_channel_move(guild_id, old_channel_id, new_channel_id)
        if result:
            message = f"Countdown is now running in {channel.mention}."
        else:
            message = describe_failure(result)

        await interaction.followup.send(message, ephemeral=True)
        log.info(
            "announcement_channel_command",
            user=str(interaction.user),
            guild_id=guild_id,
            channel_id=new_channel_id,
            ok=result.ok,
        )

    @app_commands.command(
        name="reset-notify",
        description="Set the role mentioned when the server resets",
    )
    @app_commands.describe(role="Role to mention in reset announcements")
    @app_commands.default_permissions(administrator=True)
    async def reset_notify(self, interaction: discord.Interaction, role: discord.Role) -> None:
        if not await self.admin_check(interaction):
            return

        await interaction.response.defer(ephemeral=True)

        guild_id = str(interaction.guild_id)
        if self.config.get_guild_settings(guild_id) is None:
            await interaction.followup.send(
                describe_failure(OperationResult.failure(ErrorKind.CONFIGURATION_MISSING)),
                ephemeral=True,
            )
            return

        self.config.set_guild_notify_role(guild_id, str(role.id))
        if self.bot.config_path is not None:
            try:
                self.config.save(self.bot.config_path)
            except OSError as e:
                log.error("config_save_failed", guild_id=guild_id, error=str(e))

        await interaction.followup.send(
            f"Reset announcements will now mention {role.name}.", ephemeral=True
        )
        log.info(
            "reset_notify_command",
            user=str(interaction.user),
            guild_id=guild_id,
            role_id=str(role.id),
        )

    @app_commands.command(
        name="reset-announcement",
        description="Post the reset announcement now",
    )
    @app_commands.default_permissions(administrator=True)
    async def reset_announcement(self, interaction: discord.Interaction) -> None:
        if not await self.admin_check(interaction):
            return

        await interaction.response.defer(ephemeral=True)

        guild_id = str(interaction.guild_id)
        channel_id = self._current_channel(guild_id)
        if channel_id is None:
            await interaction.followup.send(
                describe_failure(OperationResult.failure(ErrorKind.CONFIGURATION_MISSING)),
                ephemeral=True,
            )
            return

        result = await self.service.send_announcement(guild_id, channel_id)
        message = "Reset announcement posted." if result else describe_failure(result)
        await interaction.followup.send(message, ephemeral=True)
        log.info("reset_announcement_command", user=str(interaction.user), guild_id=guild_id, ok=result.ok)

    @app_commands.command(
        name="reset-delete",
        description="Delete the current reset announcement",
    )
    @app_commands.default_permissions(administrator=True)
    async def reset_delete(self, interaction: discord.Interaction) -> None:
        if not await self.admin_check(interaction):
            return

        await interaction.response.defer(ephemeral=True)

        guild_id = str(interaction.guild_id)
        result = await self.service.delete_reset_message(guild_id)
        message = "Reset announcement deleted." if result else describe_failure(result)
        await interaction.followup.send(message, ephemeral=True)
        log.info("reset_delete_command", user=str(interaction.user), guild_id=guild_id, ok=result.ok)

    @app_commands.command(
        name="countdown-stop",
        description="Stop updating the countdown (the message stays)",
    )
    @app_commands.default_permissions(administrator=True)
    async def countdown_stop(self, interaction: discord.Interaction) -> None:
        if not await self.admin_check(interaction):
            return

        guild_id = str(interaction.guild_id)
        result = await self.service.stop(guild_id)
        message = "Countdown stopped." if result else describe_failure(result)
        await interaction.response.send_message(message, ephemeral=True)
        log.info("countdown_stop_command", user=str(interaction.user), guild_id=guild_id)

    @app_commands.command(
        name="countdown-status",
        description="Show the countdown and announcement state for this server",
    )
    @app_commands.default_permissions(administrator=True)
    async def countdown_status(self, interaction: discord.Interaction) -> None:
        """Show what is running for this guild and when the next reset is."""
        if not await self.admin_check(interaction):
            return

        guild_id = str(interaction.guild_id)
        settings = self.config.get_guild_settings(guild_id)
        state = self.service.get_state(guild_id)

        lines = ["**Reset Status**", ""]
        if settings is None:
            lines.append("Schedule: not configured")
        else:
            remaining = self.service.countdowns.time_remaining(settings)
            lines.append(f"Schedule: {settings.reset_time_label} {settings.timezone_label}")
            lines.append(f"Next reset: <t:{int(remaining.next_reset.timestamp())}:R>")

        if state is None:
            lines.append("Countdown: not running")
        else:
            lines.append(f"Channel: <#{state.channel_id}>" if state.channel_id else "Channel: none")
            lines.append(f"Countdown: {'running' if state.countdown_running else 'stopped'}")
            if state.last_reset_at is not None:
                lines.append(f"Last reset: <t:{int(state.last_reset_at.timestamp())}:R>")
            lines.append(f"Announcement: {'running' if state.reset_running else 'none'}")

        await interaction.response.send_message("\n".join(lines), ephemeral=True)
        log.info("countdown_status_command", user=str(interaction.user), guild_id=guild_id)
