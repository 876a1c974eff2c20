"""Models for ResetKeeper schedule state and display content.

Display and time values are immutable pydantic models. Per-guild schedule
state holds live timer handles and is a plain mutable dataclass owned by
the TimerRegistry.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from resetkeeper.scheduler import TimerHandle


# =============================================================================
# Enums
# =============================================================================


class DisplayMode(str, Enum):
    """Which phase a display belongs to."""

    COUNTDOWN = "countdown"
    RESET = "reset"


class ErrorKind(str, Enum):
    """Recoverable failure kinds absorbed at the operation boundary.

    - configuration_missing: guild has no schedule or no channel configured
    - transport_unavailable: channel, guild or message fetch failed
    - message_vanished: edit/delete target was removed externally
    - unexpected: anything else, logged with guild context
    """

    CONFIGURATION_MISSING = "configuration_missing"
    TRANSPORT_UNAVAILABLE = "transport_unavailable"
    MESSAGE_VANISHED = "message_vanished"
    UNEXPECTED = "unexpected"


# =============================================================================
# Helper Functions
# =============================================================================


def utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


# =============================================================================
# Operation Results
# =============================================================================


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a public schedule operation.

    Truthy when the operation succeeded, so callers can write
    ``if await service.start(...)`` and still inspect ``error`` when needed.
    """

    ok: bool
    error: ErrorKind | None = None
    detail: str | None = None

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def success(cls) -> "OperationResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, error: ErrorKind, detail: str | None = None) -> "OperationResult":
        return cls(ok=False, error=error, detail=detail)


# =============================================================================
# Value Models
# =============================================================================


class MessageRef(BaseModel):
    """Opaque handle to a message posted by the bot."""

    model_config = ConfigDict(frozen=True)

    channel_id: str
    message_id: str


class TimeRemaining(BaseModel):
    """Result of a reset-time calculation."""

    model_config = ConfigDict(frozen=True)

    hours: int
    minutes: int
    seconds: int
    remaining: timedelta
    next_reset: datetime
    is_imminent: bool


class DisplayField(BaseModel):
    """A single name/value field of a rendered display."""

    model_config = ConfigDict(frozen=True)

    name: str
    value: str
    inline: bool = True


class Display(BaseModel):
    """Rendered, transport-neutral content of a countdown or announcement."""

    model_config = ConfigDict(frozen=True)

    mode: DisplayMode
    title: str
    description: str = ""
    color: int = 0x3498DB
    thumbnail: str | None = None
    fields: tuple[DisplayField, ...] = Field(default_factory=tuple)
    footer: str | None = None
    is_fallback: bool = False


# =============================================================================
# Schedule State
# =============================================================================


@dataclass
class GuildScheduleState:
    """Live timers and message references for one guild.

    Invariants: at most one timer and one message per phase. A timer without
    a message is a transient state that the next tick resolves. A reset
    message implies ``last_reset_at`` is set.
    """

    guild_id: str
    channel_id: str | None = None
    countdown_message: MessageRef | None = None
    countdown_timer: "TimerHandle | None" = None
    reset_message: MessageRef | None = None
    reset_timer: "TimerHandle | None" = None
    last_reset_at: datetime | None = None
    # One-shot timer armed for the exact reset instant, and the instant it targets
    handoff_timer: "TimerHandle | None" = None
    handoff_target: datetime | None = None

    def timer_handles(self) -> list["TimerHandle"]:
        """All timer handles currently held, armed or not."""
        return [
            handle
            for handle in (self.countdown_timer, self.reset_timer, self.handoff_timer)
            if handle is not None
        ]

    @property
    def has_reset_cycle(self) -> bool:
        """True while a post-reset announcement cycle is in flight."""
        return self.last_reset_at is not None


class GuildStatus(BaseModel):
    """Read-only snapshot of a guild's schedule state for operators."""

    model_config = ConfigDict(frozen=True)

    guild_id: str
    channel_id: str | None = None
    countdown_running: bool = False
    countdown_message_id: str | None = None
    reset_running: bool = False
    reset_message_id: str | None = None
    last_reset_at: datetime | None = None
    handoff_at: datetime | None = None

    @classmethod
    def from_state(cls, state: GuildScheduleState) -> "GuildStatus":
        def armed(handle: "TimerHandle | None") -> bool:
            return handle is not None and not handle.cancelled

        return cls(
            guild_id=state.guild_id,
            channel_id=state.channel_id,
            countdown_running=armed(state.countdown_timer),
            countdown_message_id=state.countdown_message.message_id if state.countdown_message else None,
            reset_running=armed(state.reset_timer),
            reset_message_id=state.reset_message.message_id if state.reset_message else None,
            last_reset_at=state.last_reset_at,
            handoff_at=state.handoff_target if armed(state.handoff_timer) else None,
        )
