"""ResetKeeper - per-guild daily reset countdowns and announcements for Discord."""

__version__ = "0.1.0"
