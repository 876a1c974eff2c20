"""Reset-time arithmetic for ResetKeeper.

A guild's reset is a daily time-of-day at a fixed UTC offset (no daylight
saving). Everything here is pure: callers pass ``now`` explicitly so the
scheduling core can run against a fake clock.
"""

from __future__ import annotations

import re
from datetime import datetime, time, timedelta, timezone

from resetkeeper.models import TimeRemaining

# "UTC", "UTC+9", "UTC-4", "UTC+05"
UTC_OFFSET_PATTERN = re.compile(r"^UTC(?:([+-])(\d{1,2}))?$")

RESET_TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")

MIN_UTC_OFFSET = -12
MAX_UTC_OFFSET = 14

DEFAULT_IMMINENT_SECONDS = 5

ONE_DAY = timedelta(days=1)


def parse_reset_time(value: str) -> time:
    """Parse a ``HH:MM[:SS]`` string into a time-of-day.

    Raises:
        ValueError: If the string is malformed or out of range.
    """
    match = RESET_TIME_PATTERN.match(value.strip())
    if not match:
        raise ValueError(f"Reset time must be HH:MM:SS, got {value!r}")

    hours, minutes, seconds = (int(part) if part else 0 for part in match.groups())
    if hours > 23 or minutes > 59 or seconds > 59:
        raise ValueError(f"Reset time out of range: {value!r}")
    return time(hours, minutes, seconds)


def parse_utc_offset(value: str) -> int:
    """Parse a ``UTC±N`` label into a signed hour offset.

    Raises:
        ValueError: If the label is malformed or outside -12..+14.
    """
    match = UTC_OFFSET_PATTERN.match(value.strip().upper())
    if not match:
        raise ValueError(f"Timezone must look like UTC, UTC+N or UTC-N, got {value!r}")

    sign, hours = match.groups()
    if hours is None:
        return 0

    offset = int(hours) if sign == "+" else -int(hours)
    if not MIN_UTC_OFFSET <= offset <= MAX_UTC_OFFSET:
        raise ValueError(f"UTC offset out of range: {value!r}")
    return offset


def format_utc_offset(offset_hours: int) -> str:
    """Inverse of parse_utc_offset."""
    if offset_hours == 0:
        return "UTC"
    return f"UTC{offset_hours:+d}"


def split_duration(duration: timedelta) -> tuple[int, int, int]:
    """Decompose a duration into non-negative whole hours, minutes, seconds.

    Negative durations clamp to zero.
    """
    total = max(int(duration.total_seconds() // 1), 0)
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    return hours, minutes, seconds


def next_reset_instant(
    reset_time: time,
    utc_offset_hours: int,
    now: datetime,
) -> datetime:
    """Compute the next future UTC instant of a daily reset.

    Today's reset is built in UTC by subtracting the offset from the
    configured hour. If that instant is not strictly after ``now`` it rolls
    forward one day. Offsets that push the local day across the UTC date
    boundary can overshoot by a day, so the result is pulled back while the
    previous occurrence is still in the future.

    Args:
        reset_time: Local time-of-day of the reset.
        utc_offset_hours: Fixed UTC offset of the guild.
        now: Timezone-aware current instant.

    Returns:
        Timezone-aware UTC datetime strictly after ``now``.
    """
    now = now.astimezone(timezone.utc)
    midnight = datetime(now.year, now.month, now.day, tzinfo=timezone.utc)
    candidate = midnight + timedelta(
        hours=reset_time.hour - utc_offset_hours,
        minutes=reset_time.minute,
        seconds=reset_time.second,
    )

    while candidate <= now:
        candidate += ONE_DAY
    while candidate - ONE_DAY > now:
        candidate -= ONE_DAY

    return candidate


def calculate_time_remaining(
    reset_time: time,
    utc_offset_hours: int,
    now: datetime,
    imminent_seconds: int = DEFAULT_IMMINENT_SECONDS,
) -> TimeRemaining:
    """Compute how long until the next reset and whether it is imminent.

    Imminent means the remaining time floors to 0h 0m and at most
    ``imminent_seconds`` seconds. It is the countdown-to-reset hand-off
    trigger.
    """
    next_reset = next_reset_instant(reset_time, utc_offset_hours, now)
    remaining = next_reset - now.astimezone(timezone.utc)
    hours, minutes, seconds = split_duration(remaining)

    return TimeRemaining(
        hours=hours,
        minutes=minutes,
        seconds=seconds,
        remaining=remaining,
        next_reset=next_reset,
        is_imminent=hours == 0 and minutes == 0 and seconds <= imminent_seconds,
    )


def format_duration(hours: int, minutes: int) -> str:
    """Format a duration at whole-minute resolution.

    >>> format_duration(1, 1)
    '1hr 1min'
    >>> format_duration(0, 5)
    '5mins'
    """
    hour_text = "1hr" if hours == 1 else f"{hours}hrs"
    minute_text = "1min" if minutes == 1 else f"{minutes}mins"
    if hours > 0:
        return f"{hour_text} {minute_text}"
    return minute_text
