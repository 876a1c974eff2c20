"""Reset schedule service.

The composition root of the scheduling core. It owns the TimerRegistry,
wires the controllers together and exposes the operations the command
surface calls:

- start / stop / refresh of a guild's countdown
- send_announcement / stop_reset_cycle / delete_reset_message
- handle_channel_move
- get_state for operators

Every exposed operation returns an OperationResult. An unexpected exception
inside an operation is logged with the guild and reported as
ErrorKind.UNEXPECTED instead of propagating.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from resetkeeper.countdown import CountdownController
from resetkeeper.logging import get_logger
from resetkeeper.migration import ChannelMigrationCoordinator
from resetkeeper.models import ErrorKind, GuildStatus, OperationResult
from resetkeeper.registry import TimerRegistry
from resetkeeper.rendering import DisplayRenderer
from resetkeeper.reset import ResetController
from resetkeeper.templates import TemplateEngine

if TYPE_CHECKING:
    from resetkeeper.config import Config
    from resetkeeper.scheduler import Scheduler
    from resetkeeper.transport import Transport

log = get_logger("service")


class ResetScheduleService:
    """Entry point for all countdown and announcement operations.

    Attributes:
        config: Application configuration.
        transport: Message transport.
        scheduler: Timer port.
        registry: Per-guild timer registry.
        countdowns: Countdown controller.
        resets: Reset controller.
        migrations: Channel migration coordinator.
    """

    def __init__(
        self,
        config: Config,
        transport: Transport,
        scheduler: Scheduler,
        templates: TemplateEngine | None = None,
        registry: TimerRegistry | None = None,
    ) -> None:
        self.config = config
        self.transport = transport
        self.scheduler = scheduler
        self.registry = registry or TimerRegistry()

        templates = templates or TemplateEngine(config.language_file)
        self.renderer = DisplayRenderer(
            templates,
            auto_delete_after=timedelta(hours=config.countdown.auto_delete_hours),
        )
        self.resets = ResetController(self.registry, scheduler, transport, config, self.renderer)
        self.countdowns = CountdownController(
            self.registry, scheduler, transport, config, self.renderer, self.resets
        )
        self.migrations = ChannelMigrationCoordinator(
            self.registry, transport, config, self.renderer, self.countdowns, self.resets
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def init(self) -> int:
        """Drop every timer left from an earlier start in this process.

        Returns:
            Number of guild entries cleared.
        """
        cleared = self.registry.clear_all()
        log.info("service_initialized", cleared_guilds=cleared)
        return cleared

    async def autostart(self) -> dict[str, OperationResult]:
        """Start countdowns for every configured guild that has a channel.

        Returns:
            Mapping of guild ID to its start result.
        """
        results: dict[str, OperationResult] = {}
        if not self.config.countdown.autostart:
            log.info("autostart_disabled")
            return results

        for settings in self.config.configured_guilds():
            results[settings.guild_id] = await self.start(settings.guild_id, settings.channel_id)

        started = sum(1 for result in results.values() if result)
        log.info("autostart_complete", started=started, failed=len(results) - started)
        return results

    def shutdown(self) -> int:
        """Cancel every timer. Posted messages are left in place.

        Returns:
            Number of guild entries cleared.
        """
        stopped = self.countdowns.stop_all()
        self.registry.clear_all()
        log.info("service_shutdown", stopped_guilds=stopped)
        return stopped

    # =========================================================================
    # Countdown Operations
    # =========================================================================

    async def start(self, guild_id: str, channel_id: str) -> OperationResult:
        return await self._guard("start", guild_id, self.countdowns.start, guild_id, channel_id)

    async def stop(self, guild_id: str) -> OperationResult:
        """Stop the countdown without deleting its message."""

        async def _stop() -> OperationResult:
            self.countdowns.stop(guild_id)
            return OperationResult.success()

        return await self._guard("stop", guild_id, _stop)

    async def refresh(self, guild_id: str) -> OperationResult:
        return await self._guard("refresh", guild_id, self.countdowns.refresh, guild_id)

    # =========================================================================
    # Reset Operations
    # =========================================================================

    async def send_announcement(
        self,
        guild_id: str,
        channel_id: str,
        reset_at: datetime | None = None,
    ) -> OperationResult:
        return await self._guard(
            "send_announcement",
            guild_id,
            self.resets.send_announcement,
            guild_id,
            channel_id,
            reset_at,
        )

    async def stop_reset_cycle(self, guild_id: str) -> OperationResult:
        async def _stop() -> OperationResult:
            self.resets.stop_reset_cycle(guild_id)
            return OperationResult.success()

        return await self._guard("stop_reset_cycle", guild_id, _stop)

    async def delete_reset_message(self, guild_id: str) -> OperationResult:
        return await self._guard(
            "delete_reset_message", guild_id, self.resets.delete_reset_message, guild_id
        )

    # =========================================================================
    # Migration and Status
    # =========================================================================

    async def handle_channel_move(
        self,
        guild_id: str,
        old_channel_id: str | None,
        new_channel_id: str,
    ) -> OperationResult:
        return await self._guard(
            "handle_channel_move",
            guild_id,
            self.migrations.handle_channel_move,
            guild_id,
            old_channel_id,
            new_channel_id,
        )

    def get_state(self, guild_id: str) -> GuildStatus | None:
        """Snapshot of a guild's schedule state, or None if nothing is tracked."""
        state = self.registry.get(guild_id)
        if state is None:
            return None
        return GuildStatus.from_state(state)

    async def _guard(
        self,
        operation: str,
        guild_id: str,
        func: Callable[..., Awaitable[OperationResult]],
        *args: Any,
    ) -> OperationResult:
        try:
            return await func(*args)
        except Exception as e:
            log.exception("operation_failed", operation=operation, guild_id=guild_id, error=str(e))
            return OperationResult.failure(ErrorKind.UNEXPECTED, str(e))
