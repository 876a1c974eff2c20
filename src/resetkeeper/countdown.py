"""Countdown controller.

Keeps one live countdown message per guild in sync with the time left
until the next reset, and hands off to the ResetController when the reset
is about to happen.

Each guild has at most one recurring countdown timer. Starting again
always clears the previous timer and message first, so a second start
supersedes the first instead of running alongside it.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from resetkeeper.logging import get_logger
from resetkeeper.models import ErrorKind, OperationResult
from resetkeeper.resettime import calculate_time_remaining
from resetkeeper.sweeper import sweep_channel
from resetkeeper.transport import MessageNotFoundError, TransportError

if TYPE_CHECKING:
    from resetkeeper.config import Config, GuildSettings
    from resetkeeper.models import GuildScheduleState, MessageRef, TimeRemaining
    from resetkeeper.registry import TimerRegistry
    from resetkeeper.rendering import DisplayRenderer
    from resetkeeper.reset import ResetController
    from resetkeeper.scheduler import Scheduler, TimerHandle
    from resetkeeper.transport import Transport

log = get_logger("countdown")


class CountdownController:
    """Runs the countdown phase for every guild.

    Attributes:
        registry: Shared per-guild timer registry.
        scheduler: Timer port.
        transport: Message transport.
        config: Application configuration, re-read on every tick.
        renderer: Display renderer.
        resets: Controller that takes over at the reset instant.
    """

    def __init__(
        self,
        registry: TimerRegistry,
        scheduler: Scheduler,
        transport: Transport,
        config: Config,
        renderer: DisplayRenderer,
        resets: ResetController,
    ) -> None:
        self.registry = registry
        self.scheduler = scheduler
        self.transport = transport
        self.config = config
        self.renderer = renderer
        self.resets = resets

    @property
    def interval(self) -> float:
        return self.config.countdown.update_interval_seconds

    def time_remaining(self, settings: GuildSettings) -> TimeRemaining:
        """Time until the guild's next reset, as of the scheduler clock."""
        return calculate_time_remaining(
            settings.reset_time,
            settings.utc_offset_hours,
            self.scheduler.now(),
            imminent_seconds=self.config.countdown.imminent_threshold_seconds,
        )

    async def start(self, guild_id: str, channel_id: str) -> OperationResult:
        """Start (or restart) the countdown for a guild in a channel.

        Posts a fresh countdown, sweeps leftover displays from the channel,
        replaces any existing state for the guild and arms the timer.
        Displays the guild still had in another channel are deleted. An
        announcement cycle that was in flight is re-posted in the channel
        after a short settle delay. A reset that lands before the first tick
        is handed off right away.

        Args:
            guild_id: Guild to start.
            channel_id: Channel that receives the countdown.

        Returns:
            Success, or the failure kind. Nothing is changed when the channel
            can't be resolved or the countdown can't be posted.
        """
        settings = self.config.get_guild_settings(guild_id)
        if settings is None:
            log.warning("countdown_guild_not_configured", guild_id=guild_id)
            return OperationResult.failure(ErrorKind.CONFIGURATION_MISSING, "guild not configured")

        try:
            channel = await self.transport.fetch_channel(channel_id)
        except TransportError as e:
            log.error("countdown_channel_fetch_failed", guild_id=guild_id, channel_id=channel_id, error=str(e))
            return OperationResult.failure(ErrorKind.TRANSPORT_UNAVAILABLE, str(e))

        if channel is None:
            log.error("countdown_channel_not_found", guild_id=guild_id, channel_id=channel_id)
            return OperationResult.failure(ErrorKind.TRANSPORT_UNAVAILABLE, "channel not found")
        if not channel.can_send:
            log.error("countdown_channel_not_writable", guild_id=guild_id, channel_id=channel_id)
            return OperationResult.failure(ErrorKind.TRANSPORT_UNAVAILABLE, "missing send permission")

        remaining = self.time_remaining(settings)
        display = self.renderer.render_countdown(settings, remaining, self.scheduler.now())
        try:
            ref = await self.transport.send(channel_id, display)
        except TransportError as e:
            log.error("countdown_send_failed", guild_id=guild_id, channel_id=channel_id, error=str(e))
            return OperationResult.failure(ErrorKind.TRANSPORT_UNAVAILABLE, str(e))

        await sweep_channel(
            self.transport,
            channel_id,
            self.renderer.tracking_titles(),
            limit=self.config.countdown.sweep_history_limit,
            keep={ref},
        )

        previous = self.registry.clear(guild_id)
        carried_reset = previous.last_reset_at if previous is not None else None
        if previous is not None:
            await self._retire_elsewhere(guild_id, previous, channel_id)

        self.registry.upsert(
            guild_id,
            channel_id=channel_id,
            countdown_message=ref,
            countdown_timer=self._arm(guild_id),
        )

        if carried_reset is not None and not self.resets.is_expired(carried_reset):
            self.registry.upsert(guild_id, last_reset_at=carried_reset)
            self.resets.schedule_announcement(
                guild_id,
                channel_id,
                carried_reset,
                delay=self.config.countdown.settle_delay_seconds,
            )
            log.info("reset_cycle_carried_over", guild_id=guild_id, reset_at=carried_reset.isoformat())

        if self._reset_due(remaining):
            self.resets.schedule_announcement(guild_id, channel_id, remaining.next_reset)

        log.info(
            "countdown_started",
            guild_id=guild_id,
            channel_id=channel_id,
            channel=channel.name,
            next_reset=remaining.next_reset.isoformat(),
        )
        return OperationResult.success()

    def stop(self, guild_id: str) -> None:
        """Stop the countdown timer and forget its message (the message stays posted)."""
        self.registry.cancel_handoff(guild_id)
        self.registry.cancel_countdown(guild_id)
        log.info("countdown_stopped", guild_id=guild_id)

    def stop_all(self) -> int:
        """Stop every running countdown.

        Returns:
            Number of guilds stopped.
        """
        guild_ids = self.registry.guild_ids()
        for guild_id in guild_ids:
            self.stop(guild_id)
        return len(guild_ids)

    async def update(self, guild_id: str) -> OperationResult:
        """Recompute and redisplay the countdown; hand off if the reset is near.

        A countdown message that was deleted externally stops the timer and
        leaves the guild waiting for a restart.
        """
        state = self.registry.get(guild_id)
        if state is None or state.countdown_message is None:
            self.registry.cancel_countdown(guild_id)
            return OperationResult.failure(ErrorKind.MESSAGE_VANISHED, "no countdown tracked")

        settings = self.config.get_guild_settings(guild_id)
        if settings is None:
            log.warning("countdown_update_guild_not_configured", guild_id=guild_id)
            return OperationResult.failure(ErrorKind.CONFIGURATION_MISSING, "guild not configured")

        ref = state.countdown_message
        remaining = self.time_remaining(settings)
        result = await self._edit(guild_id, ref, settings, remaining)
        if result.error is ErrorKind.MESSAGE_VANISHED:
            return result

        if self._reset_due(remaining) and state.channel_id:
            self.resets.schedule_announcement(guild_id, state.channel_id, remaining.next_reset)
        return result

    async def refresh(self, guild_id: str) -> OperationResult:
        """Update the countdown now, recreating the message if it is gone.

        Unlike the timer-driven update, a missing message is posted again in
        the guild's channel and the timer is re-armed if needed.
        """
        settings = self.config.get_guild_settings(guild_id)
        if settings is None:
            return OperationResult.failure(ErrorKind.CONFIGURATION_MISSING, "guild not configured")

        state = self.registry.get(guild_id)
        if state is not None and state.countdown_message is not None:
            return await self.update(guild_id)

        channel_id = (state.channel_id if state is not None else None) or settings.channel_id
        if not channel_id:
            return OperationResult.failure(ErrorKind.CONFIGURATION_MISSING, "no channel configured")

        remaining = self.time_remaining(settings)
        display = self.renderer.render_countdown(settings, remaining, self.scheduler.now())
        try:
            ref = await self.transport.send(channel_id, display)
        except TransportError as e:
            log.error("countdown_recreate_failed", guild_id=guild_id, channel_id=channel_id, error=str(e))
            return OperationResult.failure(ErrorKind.TRANSPORT_UNAVAILABLE, str(e))

        changes = {"channel_id": channel_id, "countdown_message": ref}
        if state is None or state.countdown_timer is None or state.countdown_timer.cancelled:
            changes["countdown_timer"] = self._arm(guild_id)
        self.registry.upsert(guild_id, **changes)

        if self._reset_due(remaining):
            self.resets.schedule_announcement(guild_id, channel_id, remaining.next_reset)

        log.info("countdown_message_recreated", guild_id=guild_id, channel_id=channel_id)
        return OperationResult.success()

    async def _retire_elsewhere(
        self,
        guild_id: str,
        previous: GuildScheduleState,
        channel_id: str,
    ) -> None:
        """Delete displays the guild left behind in a channel other than ``channel_id``."""
        for ref in (previous.countdown_message, previous.reset_message):
            if ref is None or ref.channel_id == channel_id:
                continue
            try:
                await self.transport.delete_message(ref)
            except MessageNotFoundError:
                continue
            except TransportError as e:
                log.warning(
                    "previous_display_delete_failed",
                    guild_id=guild_id,
                    message_id=ref.message_id,
                    error=str(e),
                )

    def _reset_due(self, remaining: TimeRemaining) -> bool:
        """Hand off when the reset is imminent or lands before the next tick."""
        return remaining.is_imminent or remaining.remaining <= timedelta(seconds=self.interval)

    async def _edit(
        self,
        guild_id: str,
        ref: MessageRef,
        settings: GuildSettings,
        remaining: TimeRemaining,
    ) -> OperationResult:
        display = self.renderer.render_countdown(settings, remaining, self.scheduler.now())
        try:
            await self.transport.edit_message(ref, display)
        except MessageNotFoundError:
            current = self.registry.get(guild_id)
            if current is not None and current.countdown_message == ref:
                self.registry.cancel_countdown(guild_id)
            log.warning("countdown_message_vanished", guild_id=guild_id, message_id=ref.message_id)
            return OperationResult.failure(ErrorKind.MESSAGE_VANISHED)
        except TransportError as e:
            log.error("countdown_update_failed", guild_id=guild_id, error=str(e))
            return OperationResult.failure(ErrorKind.TRANSPORT_UNAVAILABLE, str(e))
        return OperationResult.success()

    def _arm(self, guild_id: str) -> TimerHandle:
        return self.scheduler.schedule_interval(
            self.interval,
            self._tick,
            guild_id,
            name=f"countdown:{guild_id}",
        )

    async def _tick(self, guild_id: str) -> None:
        try:
            await self.update(guild_id)
        except Exception as e:
            log.error("countdown_tick_failed", guild_id=guild_id, error=str(e))
