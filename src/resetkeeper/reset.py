"""Reset announcement controller.

Owns the post-reset phase of a guild's cycle:
- Posts the announcement (scheduled at the exact reset instant, or on demand)
- Re-renders the elapsed time on a recurring timer
- Deletes the announcement once it is older than the auto-delete window

A vanished announcement (deleted by someone else) ends the cycle quietly
instead of being retried.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from resetkeeper.logging import get_logger
from resetkeeper.models import ErrorKind, OperationResult
from resetkeeper.transport import MessageNotFoundError, TransportError

if TYPE_CHECKING:
    from resetkeeper.config import Config
    from resetkeeper.registry import TimerRegistry
    from resetkeeper.rendering import DisplayRenderer
    from resetkeeper.scheduler import Scheduler
    from resetkeeper.transport import Transport

log = get_logger("reset")


class ResetController:
    """Runs reset announcements for every guild.

    Attributes:
        registry: Shared per-guild timer registry.
        scheduler: Timer port.
        transport: Message transport.
        config: Application configuration, re-read on every tick.
        renderer: Display renderer.
    """

    def __init__(
        self,
        registry: TimerRegistry,
        scheduler: Scheduler,
        transport: Transport,
        config: Config,
        renderer: DisplayRenderer,
    ) -> None:
        self.registry = registry
        self.scheduler = scheduler
        self.transport = transport
        self.config = config
        self.renderer = renderer

    @property
    def auto_delete_after(self) -> timedelta:
        return timedelta(hours=self.config.countdown.auto_delete_hours)

    def is_expired(self, reset_at: datetime) -> bool:
        """True once more than the auto-delete period has passed since ``reset_at``."""
        return self.scheduler.now() - reset_at > self.auto_delete_after

    async def send_announcement(
        self,
        guild_id: str,
        channel_id: str,
        reset_at: datetime | None = None,
    ) -> OperationResult:
        """Post a reset announcement and start its update timer.

        Scheduled hand-offs and manual announcements both land here. Any
        previous announcement for the guild is replaced.

        Args:
            guild_id: Guild to announce for.
            channel_id: Channel to post in.
            reset_at: Instant of the reset; defaults to now.

        Returns:
            Success, or the failure kind that aborted the announcement.
        """
        if not guild_id or not channel_id:
            log.error("announcement_invalid_parameters", guild_id=guild_id, channel_id=channel_id)
            return OperationResult.failure(ErrorKind.CONFIGURATION_MISSING, "guild or channel missing")

        if not self.transport.is_ready():
            log.error("announcement_transport_not_ready", guild_id=guild_id)
            return OperationResult.failure(ErrorKind.TRANSPORT_UNAVAILABLE, "transport not ready")

        settings = self.config.get_guild_settings(guild_id)
        if settings is None:
            log.warning("announcement_guild_not_configured", guild_id=guild_id)
            return OperationResult.failure(ErrorKind.CONFIGURATION_MISSING, "guild not configured")

        try:
            guild = await self.transport.fetch_guild(guild_id)
            channel = await self.transport.fetch_channel(channel_id)
        except TransportError as e:
            log.error("announcement_fetch_failed", guild_id=guild_id, channel_id=channel_id, error=str(e))
            return OperationResult.failure(ErrorKind.TRANSPORT_UNAVAILABLE, str(e))

        if guild is None or channel is None or not channel.can_send:
            log.error("announcement_target_unavailable", guild_id=guild_id, channel_id=channel_id)
            return OperationResult.failure(ErrorKind.TRANSPORT_UNAVAILABLE, "guild or channel unavailable")

        await self._retire_previous(guild_id)

        reset_at = reset_at or self.scheduler.now()
        display = self.renderer.render_reset(settings, reset_at, self.scheduler.now())
        mention = await self._role_mention(guild_id, settings.notify_role_id)

        try:
            ref = await self.transport.send(channel_id, display, content=mention)
        except TransportError as e:
            log.error("announcement_send_failed", guild_id=guild_id, channel_id=channel_id, error=str(e))
            return OperationResult.failure(ErrorKind.TRANSPORT_UNAVAILABLE, str(e))

        timer = self.scheduler.schedule_interval(
            self.config.countdown.reset_update_interval_seconds,
            self._tick,
            guild_id,
            name=f"reset:{guild_id}",
        )
        self.registry.upsert(
            guild_id,
            last_reset_at=reset_at,
            reset_message=ref,
            reset_timer=timer,
        )

        log.info(
            "reset_announcement_sent",
            guild_id=guild_id,
            channel_id=channel_id,
            channel=channel.name,
            reset_at=reset_at.isoformat(),
            mentioned_role=mention is not None,
        )
        return OperationResult.success()

    def schedule_announcement(
        self,
        guild_id: str,
        channel_id: str,
        reset_at: datetime,
        delay: float | None = None,
    ) -> bool:
        """Arm a one-shot timer that announces the reset at ``reset_at``.

        Repeated calls for the same reset instant are ignored, so racing
        countdown ticks hand off at most once per cycle.

        Args:
            guild_id: Guild to announce for.
            channel_id: Channel to post in.
            reset_at: The reset instant.
            delay: Seconds to wait; defaults to the time until ``reset_at``.

        Returns:
            True if a new hand-off was armed.
        """
        state = self.registry.get(guild_id)
        if state is not None:
            pending = state.handoff_timer is not None and not state.handoff_timer.cancelled
            if pending and state.handoff_target == reset_at:
                return False
            if state.reset_message is not None and state.last_reset_at == reset_at:
                return False

        if delay is None:
            delay = (reset_at - self.scheduler.now()).total_seconds()
        delay = max(delay, 0.0)

        handle = self.scheduler.schedule(
            delay,
            self._fire_handoff,
            guild_id,
            channel_id,
            reset_at,
            name=f"reset-handoff:{guild_id}",
        )
        self.registry.upsert(guild_id, handoff_timer=handle, handoff_target=reset_at)

        log.info(
            "reset_handoff_scheduled",
            guild_id=guild_id,
            reset_at=reset_at.isoformat(),
            delay_seconds=round(delay, 3),
        )
        return True

    async def update(self, guild_id: str) -> OperationResult:
        """Refresh the elapsed time, or delete the announcement when it expires."""
        state = self.registry.get(guild_id)
        if state is None or state.last_reset_at is None:
            self._stop_timer(guild_id)
            return OperationResult.success()

        if self.is_expired(state.last_reset_at):
            await self._expire(guild_id)
            return OperationResult.success()

        ref = state.reset_message
        if ref is None:
            self._stop_timer(guild_id)
            return OperationResult.failure(ErrorKind.MESSAGE_VANISHED, "no announcement tracked")

        settings = self.config.get_guild_settings(guild_id)
        if settings is None:
            log.warning("reset_update_guild_not_configured", guild_id=guild_id)
            return OperationResult.failure(ErrorKind.CONFIGURATION_MISSING, "guild not configured")

        display = self.renderer.render_reset(settings, state.last_reset_at, self.scheduler.now())
        try:
            await self.transport.edit_message(ref, display)
        except MessageNotFoundError:
            current = self.registry.get(guild_id)
            if current is not None and current.reset_message == ref:
                self.registry.cancel_reset(guild_id)
                current.last_reset_at = None
            log.warning("reset_message_vanished", guild_id=guild_id, message_id=ref.message_id)
            return OperationResult.failure(ErrorKind.MESSAGE_VANISHED)
        except TransportError as e:
            log.error("reset_update_failed", guild_id=guild_id, error=str(e))
            return OperationResult.failure(ErrorKind.TRANSPORT_UNAVAILABLE, str(e))

        return OperationResult.success()

    def stop_reset_cycle(self, guild_id: str) -> None:
        """Stop the announcement cycle without deleting the message."""
        self.registry.cancel_handoff(guild_id)
        self.registry.cancel_reset(guild_id)
        state = self.registry.get(guild_id)
        if state is not None:
            state.last_reset_at = None
        log.info("reset_cycle_stopped", guild_id=guild_id)

    async def delete_reset_message(self, guild_id: str) -> OperationResult:
        """Delete the current announcement now and end its cycle.

        Returns:
            Success if a tracked announcement was removed, MESSAGE_VANISHED if
            there was nothing left to delete.
        """
        state = self.registry.get(guild_id)
        ref = state.reset_message if state is not None else None
        self.stop_reset_cycle(guild_id)

        if ref is None:
            return OperationResult.failure(ErrorKind.MESSAGE_VANISHED, "no announcement tracked")

        try:
            await self.transport.delete_message(ref)
        except MessageNotFoundError:
            return OperationResult.failure(ErrorKind.MESSAGE_VANISHED)
        except TransportError as e:
            log.error("reset_message_delete_failed", guild_id=guild_id, error=str(e))
            return OperationResult.failure(ErrorKind.TRANSPORT_UNAVAILABLE, str(e))

        log.info("reset_message_deleted", guild_id=guild_id, message_id=ref.message_id)
        return OperationResult.success()

    async def _expire(self, guild_id: str) -> None:
        """Terminal transition: delete the announcement and forget the cycle."""
        state = self.registry.get(guild_id)
        ref = state.reset_message if state is not None else None

        self.registry.cancel_reset(guild_id)
        if state is not None:
            state.last_reset_at = None

        if ref is not None:
            try:
                await self.transport.delete_message(ref)
            except MessageNotFoundError:
                pass
            except TransportError as e:
                log.error("reset_auto_delete_failed", guild_id=guild_id, error=str(e))

        log.info(
            "reset_announcement_auto_deleted",
            guild_id=guild_id,
            after_hours=self.config.countdown.auto_delete_hours,
        )

    async def _retire_previous(self, guild_id: str) -> None:
        """Cancel the running cycle and remove its message before a new one."""
        state = self.registry.get(guild_id)
        previous = state.reset_message if state is not None else None
        self.registry.cancel_reset(guild_id)

        if previous is None:
            return
        try:
            await self.transport.delete_message(previous)
        except MessageNotFoundError:
            pass
        except TransportError as e:
            log.warning("previous_announcement_delete_failed", guild_id=guild_id, error=str(e))

    async def _role_mention(self, guild_id: str, role_id: str | None) -> str | None:
        if not role_id:
            return None
        try:
            role = await self.transport.fetch_guild_role(guild_id, role_id)
        except TransportError as e:
            log.warning("notify_role_fetch_failed", guild_id=guild_id, role_id=role_id, error=str(e))
            return None
        if role is None:
            log.warning("notify_role_not_found", guild_id=guild_id, role_id=role_id)
            return None
        return role.mention

    def _stop_timer(self, guild_id: str) -> None:
        state = self.registry.get(guild_id)
        if state is not None and state.reset_timer is not None:
            self.registry.upsert(guild_id, reset_timer=None)

    async def _tick(self, guild_id: str) -> None:
        try:
            await self.update(guild_id)
        except Exception as e:
            log.error("reset_tick_failed", guild_id=guild_id, error=str(e))

    async def _fire_handoff(self, guild_id: str, channel_id: str, reset_at: datetime) -> None:
        state = self.registry.get(guild_id)
        if state is not None and state.handoff_target == reset_at:
            state.handoff_timer = None
            state.handoff_target = None

        try:
            result = await self.send_announcement(guild_id, channel_id, reset_at)
        except Exception as e:
            log.error("reset_handoff_failed", guild_id=guild_id, error=str(e))
            return
        if not result:
            log.error("reset_handoff_failed", guild_id=guild_id, error=result.error.value if result.error else None)
