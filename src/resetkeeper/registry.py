"""Per-guild timer registry.

The registry is the only shared mutable state in the scheduling core. It
maps guild IDs to their GuildScheduleState and guarantees that every path
that drops state also cancels the timers held in it.

One instance is created per process (or per test) and handed to the
controllers; ``clear_all`` runs once at startup so no stale timer from an
earlier start within the same process survives.
"""

from __future__ import annotations

import threading
from dataclasses import fields
from typing import Any

from resetkeeper.logging import get_logger
from resetkeeper.models import GuildScheduleState

log = get_logger("registry")

_STATE_FIELDS = {f.name for f in fields(GuildScheduleState)} - {"guild_id"}


class TimerRegistry:
    """Mapping of guild ID to schedule state with idempotent teardown."""

    def __init__(self) -> None:
        self._states: dict[str, GuildScheduleState] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def __contains__(self, guild_id: object) -> bool:
        with self._lock:
            return guild_id in self._states

    def guild_ids(self) -> list[str]:
        with self._lock:
            return list(self._states)

    def get(self, guild_id: str) -> GuildScheduleState | None:
        """Return the live state for a guild, or None."""
        with self._lock:
            return self._states.get(guild_id)

    def upsert(self, guild_id: str, **changes: Any) -> GuildScheduleState:
        """Create the guild's state if needed and apply field changes.

        Replacing a timer handle cancels the one it replaces.

        Raises:
            TypeError: If a change names an unknown field.
        """
        unknown = set(changes) - _STATE_FIELDS
        if unknown:
            raise TypeError(f"Unknown schedule state fields: {sorted(unknown)}")

        with self._lock:
            state = self._states.get(guild_id)
            if state is None:
                state = GuildScheduleState(guild_id=guild_id)
                self._states[guild_id] = state
                log.debug("guild_state_created", guild_id=guild_id)

            for name, value in changes.items():
                previous = getattr(state, name)
                if name.endswith("_timer") and previous is not None and previous is not value:
                    previous.cancel()
                setattr(state, name, value)
            return state

    def cancel_countdown(self, guild_id: str) -> None:
        """Cancel the countdown timer and drop the countdown message reference."""
        with self._lock:
            state = self._states.get(guild_id)
            if state is None:
                return
            if state.countdown_timer is not None:
                state.countdown_timer.cancel()
            state.countdown_timer = None
            state.countdown_message = None

    def cancel_reset(self, guild_id: str) -> None:
        """Cancel the reset timer and drop the reset message reference.

        ``last_reset_at`` is kept so an in-flight cycle can be re-armed.
        """
        with self._lock:
            state = self._states.get(guild_id)
            if state is None:
                return
            if state.reset_timer is not None:
                state.reset_timer.cancel()
            state.reset_timer = None
            state.reset_message = None

    def cancel_handoff(self, guild_id: str) -> None:
        """Cancel a pending exact-instant reset hand-off."""
        with self._lock:
            state = self._states.get(guild_id)
            if state is None:
                return
            if state.handoff_timer is not None:
                state.handoff_timer.cancel()
            state.handoff_timer = None
            state.handoff_target = None

    def clear(self, guild_id: str) -> GuildScheduleState | None:
        """Cancel every timer for a guild and remove its entry.

        Returns:
            The removed state (timers cancelled), or None if there was none.
        """
        with self._lock:
            state = self._states.pop(guild_id, None)
        if state is None:
            return None

        for handle in state.timer_handles():
            handle.cancel()
        log.debug("guild_state_cleared", guild_id=guild_id)
        return state

    def clear_all(self) -> int:
        """Cancel every timer for every guild and empty the registry.

        Returns:
            Number of guild entries removed.
        """
        with self._lock:
            states = list(self._states.values())
            self._states.clear()

        for state in states:
            for handle in state.timer_handles():
                handle.cancel()

        log.info("registry_cleared", guilds=len(states))
        return len(states)
