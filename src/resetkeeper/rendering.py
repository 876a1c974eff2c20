"""Display rendering for countdowns and reset announcements.

Rendering is pure: it maps durations and guild settings to a Display via
the template engine and performs no I/O. A render that fails for any
reason produces a fixed, guild-agnostic fallback notice so a broken
template never stops a timer.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from resetkeeper.logging import get_logger
from resetkeeper.models import Display, DisplayField, DisplayMode, TimeRemaining
from resetkeeper.resettime import format_duration, split_duration

if TYPE_CHECKING:
    from resetkeeper.config import GuildSettings
    from resetkeeper.templates import TemplateEngine

log = get_logger("rendering")

FALLBACK_COLOR = 0xFF0000

FALLBACK_TITLES = {
    DisplayMode.COUNTDOWN: "⚠️ Error Creating Countdown",
    DisplayMode.RESET: "⚠️ Error Creating Reset Announcement",
}

FALLBACK_DESCRIPTION = (
    "There was an error creating this display. Please check the bot logs."
)

DEFAULT_COLORS = {
    DisplayMode.COUNTDOWN: 0x3498DB,
    DisplayMode.RESET: 0xF1C40F,
}

FIELD_KEYS = {
    DisplayMode.COUNTDOWN: ("time_remaining", "next_reset", "server"),
    DisplayMode.RESET: ("time_elapsed", "reset_time", "server"),
}


def parse_color(value: Any, default: int) -> int:
    """Parse a color from the language pack.

    Accepts ints and hex strings with or without a ``0x`` or ``#`` prefix.
    Anything unparseable or outside 24-bit RGB yields ``default``.
    """
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        color = value
    elif isinstance(value, str):
        text = value.strip().lower().removeprefix("0x").removeprefix("#")
        try:
            color = int(text, 16)
        except ValueError:
            return default
    else:
        return default

    if not 0 <= color <= 0xFFFFFF:
        return default
    return color


def fallback_display(mode: DisplayMode) -> Display:
    """The pinned notice shown when a display cannot be rendered."""
    return Display(
        mode=mode,
        title=FALLBACK_TITLES[mode],
        description=FALLBACK_DESCRIPTION,
        color=FALLBACK_COLOR,
        is_fallback=True,
    )


class DisplayRenderer:
    """Builds countdown and reset displays from the language pack.

    Attributes:
        templates: Template engine holding the language pack.
        auto_delete_after: How long an announcement lives, used for its footer.
    """

    def __init__(self, templates: TemplateEngine, auto_delete_after: timedelta) -> None:
        self.templates = templates
        self.auto_delete_after = auto_delete_after

    def render_countdown(
        self,
        settings: GuildSettings,
        remaining: TimeRemaining,
        now: datetime,
    ) -> Display:
        """Render the countdown display. Seconds are never shown."""
        substitutions = {
            "server_name": settings.server_name,
            "reset_time": settings.reset_time_label,
            "timezone": settings.timezone_label,
            "time_remaining": format_duration(remaining.hours, remaining.minutes),
            "current_time": _local_clock(now, settings.utc_offset_hours),
        }
        return self._render(DisplayMode.COUNTDOWN, settings.guild_id, substitutions)

    def render_reset(
        self,
        settings: GuildSettings,
        reset_at: datetime,
        now: datetime,
    ) -> Display:
        """Render the post-reset announcement with elapsed and time-to-delete."""
        elapsed = now - reset_at
        hours, minutes, _ = split_duration(elapsed)
        left_h, left_m, _ = split_duration(self.auto_delete_after - elapsed)

        substitutions = {
            "server_name": settings.server_name,
            "reset_time": _local_clock(reset_at, settings.utc_offset_hours),
            "timezone": settings.timezone_label,
            "time_elapsed": format_duration(hours, minutes),
            "delete_time": format_duration(left_h, left_m),
        }
        return self._render(DisplayMode.RESET, settings.guild_id, substitutions)

    def tracking_titles(self) -> set[str]:
        """Titles that identify bot-posted countdowns and announcements.

        Used to find leftovers when sweeping a channel.
        """
        titles = set(FALLBACK_TITLES.values())
        for mode in DisplayMode:
            try:
                titles.add(self.templates.render(f"{mode.value}.embed.title", {}))
            except Exception as e:
                log.warning("tracking_title_unavailable", mode=mode.value, error=str(e))
        return titles

    def _render(self, mode: DisplayMode, guild_id: str, substitutions: dict[str, Any]) -> Display:
        prefix = f"{mode.value}.embed"
        try:
            fields = []
            for key in FIELD_KEYS[mode]:
                field_prefix = f"{prefix}.fields.{key}"
                if self.templates.get_value(field_prefix) is None:
                    continue
                fields.append(
                    DisplayField(
                        name=self.templates.render(f"{field_prefix}.name", substitutions),
                        value=self.templates.render(f"{field_prefix}.value", substitutions),
                        inline=bool(self.templates.get_value(f"{field_prefix}.inline", True)),
                    )
                )

            footer = None
            if self.templates.get_value(f"{prefix}.footer"):
                footer = self.templates.render(f"{prefix}.footer", substitutions)

            return Display(
                mode=mode,
                title=self.templates.render(f"{prefix}.title", substitutions),
                description=self.templates.render(f"{prefix}.description", substitutions),
                color=parse_color(self.templates.get_value(f"{prefix}.color"), DEFAULT_COLORS[mode]),
                thumbnail=self.templates.get_value(f"{prefix}.thumbnail") or None,
                fields=tuple(fields),
                footer=footer,
            )
        except Exception as e:
            log.error(
                "display_render_failed",
                mode=mode.value,
                guild_id=guild_id,
                error=str(e),
            )
            return fallback_display(mode)


def _local_clock(instant: datetime, utc_offset_hours: int) -> str:
    """HH:MM of an instant in a fixed-offset zone."""
    local = instant.astimezone(timezone(timedelta(hours=utc_offset_hours)))
    return local.strftime("%H:%M")
