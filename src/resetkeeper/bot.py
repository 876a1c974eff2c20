"""Discord bot for ResetKeeper.

Connects to the Discord gateway, runs the scheduling core on the bot's
event loop and exposes the administrator slash commands.

On the first ready event the timer registry is reset and, if enabled,
countdowns are started for every guild that has a channel configured.
Starting a countdown sweeps the channel, so displays orphaned by an earlier
process are removed rather than duplicated.
"""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path

import discord
from discord.ext import commands

from resetkeeper.config import Config
from resetkeeper.logging import get_logger
from resetkeeper.scheduler import APSchedulerPort
from resetkeeper.service import ResetScheduleService
from resetkeeper.transport import DiscordTransport

log = get_logger("bot")


class ResetBot(commands.Bot):
    """Discord bot that keeps reset countdowns and announcements posted.

    Uses commands.Bot instead of discord.Client to support slash commands
    via cogs.

    Attributes:
        config: Application configuration.
        timers: APScheduler-backed timer port.
        service: Reset schedule service driving all displays.
    """

    def __init__(self, config: Config, config_path: Path | None = None) -> None:
        """Initialize the bot with required intents.

        Args:
            config: Application configuration.
            config_path: File that channel changes are saved to. If None,
                changes only last for the process lifetime.
        """
        # Slash commands and embeds need no privileged intents
        intents = discord.Intents.default()

        # commands.Bot requires a command_prefix even though we use slash commands
        super().__init__(command_prefix="!", intents=intents)
        self.config = config
        self.config_path = config_path
        self.timers = APSchedulerPort()
        self.service = ResetScheduleService(config, DiscordTransport(self), self.timers)
        self._started = False

    async def setup_hook(self) -> None:
        """Load the admin cog, sync slash commands and start the timer port."""
        from resetkeeper.commands import AdminCommands

        await self.add_cog(AdminCommands(self))
        log.info("cog_loaded", cog="AdminCommands")

        await self.tree.sync()
        log.info("commands_synced")

        self.timers.start()

    async def on_ready(self) -> None:
        """Called when connected to Discord.

        Autostart runs only on the first ready event; later ones follow a
        reconnect and keep the running timers.
        """
        log.info("discord_ready", user=str(self.user), guilds=len(self.guilds))

        if self._started:
            return
        self._started = True

        self.service.init()
        results = await self.service.autostart()
        for guild_id, result in results.items():
            if not result:
                log.warning(
                    "autostart_guild_failed",
                    guild_id=guild_id,
                    error=result.error.value if result.error else None,
                )

    async def on_disconnect(self) -> None:
        """discord.py reconnects on its own; this only logs."""
        log.warning("discord_disconnected")

    async def on_resumed(self) -> None:
        log.info("discord_resumed")

    async def graceful_shutdown(self) -> None:
        """Cancel every timer, stop the timer port, then disconnect.

        Posted countdowns stay in their channels and are swept on the next
        start.
        """
        log.info("shutdown_initiated")

        self.service.shutdown()
        self.timers.stop()

        await self.close()
        await asyncio.sleep(0)  # Allow pending aiohttp callbacks to finalize
        log.info("shutdown_complete")


def setup_signal_handlers(bot: ResetBot, loop: asyncio.AbstractEventLoop) -> None:
    """Setup graceful shutdown handlers for SIGINT and SIGTERM.

    Args:
        bot: The ResetBot instance to shut down.
        loop: The event loop to add signal handlers to.
    """

    def handle_signal(sig: signal.Signals) -> None:
        log.info("signal_received", signal=sig.name)
        loop.create_task(bot.graceful_shutdown())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))

    log.debug("signal_handlers_registered", signals=["SIGINT", "SIGTERM"])


async def run_bot(config: Config, config_path: Path | None = None) -> None:
    """Run the bot until it is shut down.

    This is the main entry point for the serve command.

    Args:
        config: Application configuration. The token comes from DISCORD_TOKEN.
        config_path: File that channel changes are saved to.
    """
    bot = ResetBot(config, config_path)
    loop = asyncio.get_running_loop()

    setup_signal_handlers(bot, loop)

    try:
        log.info("bot_starting")
        await bot.start(config.discord_token)  # type: ignore[arg-type]
    except asyncio.CancelledError:
        log.debug("bot_cancelled")
    finally:
        if not bot.is_closed():
            await bot.close()
