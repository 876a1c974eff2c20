"""Channel migration for a guild's countdown and announcement.

Moving a guild to a new channel tears down everything in the old channel
and starts fresh in the new one. An announcement that was still running
keeps its original reset instant, so its elapsed time and auto-delete
deadline carry over instead of restarting from zero.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from resetkeeper.logging import get_logger
from resetkeeper.models import ErrorKind, OperationResult
from resetkeeper.sweeper import sweep_channel
from resetkeeper.transport import MessageNotFoundError, TransportError

if TYPE_CHECKING:
    from resetkeeper.config import Config
    from resetkeeper.countdown import CountdownController
    from resetkeeper.models import MessageRef
    from resetkeeper.registry import TimerRegistry
    from resetkeeper.rendering import DisplayRenderer
    from resetkeeper.reset import ResetController
    from resetkeeper.transport import Transport

log = get_logger("migration")


class ChannelMigrationCoordinator:
    """Moves a guild's schedule from one channel to another."""

    def __init__(
        self,
        registry: TimerRegistry,
        transport: Transport,
        config: Config,
        renderer: DisplayRenderer,
        countdowns: CountdownController,
        resets: ResetController,
    ) -> None:
        self.registry = registry
        self.transport = transport
        self.config = config
        self.renderer = renderer
        self.countdowns = countdowns
        self.resets = resets

    async def handle_channel_move(
        self,
        guild_id: str,
        old_channel_id: str | None,
        new_channel_id: str,
    ) -> OperationResult:
        """Move the countdown (and any running announcement) to a new channel.

        Args:
            guild_id: Guild being moved.
            old_channel_id: Previous channel, if any. Cleanup there is
                best-effort.
            new_channel_id: Channel to start in.

        Returns:
            The result of starting the countdown in the new channel. A failed
            re-announcement is logged but does not fail the move.
        """
        if self.config.get_guild_settings(guild_id) is None:
            log.warning("channel_move_guild_not_configured", guild_id=guild_id)
            return OperationResult.failure(ErrorKind.CONFIGURATION_MISSING, "guild not configured")

        state = self.registry.get(guild_id)
        carried_reset = state.last_reset_at if state is not None else None
        live_messages: list[MessageRef] = []
        if state is not None:
            live_messages = [m for m in (state.countdown_message, state.reset_message) if m is not None]

        if old_channel_id and old_channel_id != new_channel_id:
            await self._clean_old_channel(guild_id, old_channel_id, live_messages)

        self.countdowns.stop(guild_id)
        self.resets.stop_reset_cycle(guild_id)
        self.registry.clear(guild_id)

        result = await self.countdowns.start(guild_id, new_channel_id)
        if not result:
            log.error(
                "channel_move_start_failed",
                guild_id=guild_id,
                new_channel_id=new_channel_id,
                error=result.error.value if result.error else None,
            )
            return result

        if carried_reset is not None and not self.resets.is_expired(carried_reset):
            announced = await self.resets.send_announcement(guild_id, new_channel_id, carried_reset)
            if not announced:
                log.warning(
                    "channel_move_reannounce_failed",
                    guild_id=guild_id,
                    error=announced.error.value if announced.error else None,
                )

        log.info(
            "channel_moved",
            guild_id=guild_id,
            old_channel_id=old_channel_id,
            new_channel_id=new_channel_id,
            carried_reset=carried_reset.isoformat() if carried_reset else None,
        )
        return OperationResult.success()

    async def _clean_old_channel(
        self,
        guild_id: str,
        channel_id: str,
        live_messages: list[MessageRef],
    ) -> None:
        try:
            channel = await self.transport.fetch_channel(channel_id)
        except TransportError as e:
            log.warning("old_channel_fetch_failed", guild_id=guild_id, channel_id=channel_id, error=str(e))
            return
        if channel is None:
            log.info("old_channel_unavailable", guild_id=guild_id, channel_id=channel_id)
            return

        for ref in live_messages:
            if ref.channel_id != channel_id:
                continue
            try:
                await self.transport.delete_message(ref)
            except MessageNotFoundError:
                continue
            except TransportError as e:
                log.warning(
                    "old_message_delete_failed",
                    guild_id=guild_id,
                    message_id=ref.message_id,
                    error=str(e),
                )

        await sweep_channel(
            self.transport,
            channel_id,
            self.renderer.tracking_titles(),
            limit=self.config.countdown.sweep_history_limit,
        )
